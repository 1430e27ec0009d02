"""
Gift reservation status for items on other people's gift lists.
"""

from __future__ import annotations

from typing import Iterable

from sqlalchemy.orm import Session

from listsync.models import GiftReservation, User

GIFT_LIST_TYPES = {"gift", "gifts"}


def gift_list_ids(lists: Iterable, user_id: str) -> set[str]:
    """Ids of gift lists (rows or serialized dicts) not owned by the user."""
    ids = set()
    for entry in lists:
        if isinstance(entry, dict):
            list_type, owner_id, list_id = entry.get("list_type"), entry.get("owner_id"), entry.get("id")
        else:
            list_type, owner_id, list_id = entry.list_type, entry.owner_id, entry.id
        if list_type in GIFT_LIST_TYPES and owner_id != user_id:
            ids.add(list_id)
    return ids


def reservation_status(db: Session, item_ids: Iterable[str], user_id: str) -> dict[str, dict]:
    ids = sorted(set(item_ids))
    if not ids:
        return {}
    rows = (
        db.query(GiftReservation, User)
        .outerjoin(User, GiftReservation.reserved_by == User.id)
        .filter(GiftReservation.item_id.in_(ids), GiftReservation.deleted_at.is_(None))
        .order_by(GiftReservation.created_at.asc())
        .all()
    )
    statuses: dict[str, dict] = {}
    for reservation, user in rows:
        status = statuses.setdefault(
            reservation.item_id,
            {"is_reserved": False, "is_purchased": False, "reserved_quantity": 0, "reserved_by": None},
        )
        if reservation.reserved_by:
            status["is_reserved"] = True
            status["reserved_quantity"] += reservation.quantity or 1
            if status["reserved_by"] is None:
                status["reserved_by"] = {
                    "id": reservation.reserved_by,
                    "username": user.username if user else None,
                    "full_name": user.full_name if user else None,
                    "is_me": reservation.reserved_by == user_id,
                }
        if reservation.is_purchased:
            status["is_purchased"] = True
    return statuses


def attach_gift_status(db: Session, user_id: str, items: list[dict], gift_lists: set[str]) -> int:
    """Add `gift_status` to serialized items on the given gift lists; returns items touched."""
    targets = [item for item in items if item.get("list_id") in gift_lists]
    if not targets:
        return 0
    statuses = reservation_status(db, (item["id"] for item in targets), user_id)
    touched = 0
    for item in targets:
        status = statuses.get(item["id"])
        if status is not None:
            item["gift_status"] = status
            touched += 1
    return touched
