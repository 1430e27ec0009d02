"""
Favorite merge rules.

An add for (user, target_id, target_type) resolves to exactly one of
noop, restored or created, so a user never holds two live favorites for
the same target.
"""

from __future__ import annotations

import uuid
from typing import Optional

from sqlalchemy.orm import Session

from listsync.models import Favorite
from listsync.timestamps import utcnow

FAVORITE_FIELDS = ("notes", "sort_order", "is_public")


def _find(db: Session, user_id: str, target_id: str, target_type: str, live: bool) -> Optional[Favorite]:
    query = db.query(Favorite).filter(
        Favorite.user_id == user_id,
        Favorite.target_id == target_id,
        Favorite.target_type == target_type,
    )
    if live:
        query = query.filter(Favorite.deleted_at.is_(None))
    else:
        query = query.filter(Favorite.deleted_at.isnot(None)).order_by(Favorite.deleted_at.desc())
    return query.first()


def add_favorite(
    db: Session,
    user_id: str,
    target_id: str,
    target_type: str,
    values: Optional[dict] = None,
    favorite_id: Optional[str] = None,
) -> tuple[str, Favorite]:
    values = {k: v for k, v in (values or {}).items() if k in FAVORITE_FIELDS}

    active = _find(db, user_id, target_id, target_type, live=True)
    if active is not None:
        return "noop", active

    now = utcnow()
    deleted = _find(db, user_id, target_id, target_type, live=False)
    if deleted is not None:
        deleted.deleted_at = None
        deleted.updated_at = now
        for key, value in values.items():
            setattr(deleted, key, value)
        db.flush()
        return "restored", deleted

    favorite_id = favorite_id or str(uuid.uuid4())
    if db.get(Favorite, favorite_id) is not None:
        # Client reused an id that already belongs to another target
        favorite_id = str(uuid.uuid4())
    favorite = Favorite(
        id=favorite_id,
        user_id=user_id,
        target_id=target_id,
        target_type=target_type,
        created_at=now,
        updated_at=now,
        **values,
    )
    db.add(favorite)
    db.flush()
    return "created", favorite


def remove_favorite(db: Session, user_id: str, target_id: str, target_type: str) -> tuple[str, Optional[Favorite]]:
    active = _find(db, user_id, target_id, target_type, live=True)
    if active is None:
        return "not_found", None
    now = utcnow()
    active.deleted_at = now
    active.updated_at = now
    db.flush()
    return "deleted", active
