"""
Access resolution for shared lists.

A user sees a list when they own it, when one of their active groups holds
an active role on it, when they hold a personal override on it, or when they
take part in one of its active secret-santa rounds. Blocked overrides remove
visibility for everyone except the owner. Every function here issues a fixed
number of set-based queries regardless of how many lists are involved.
"""

from __future__ import annotations

from typing import Iterable, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from listsync.models import (
    CollaborationGroup,
    CollaborationGroupMember,
    List,
    ListGroupRole,
    ListUserOverride,
    SecretSantaParticipant,
    SecretSantaRound,
)

NON_GRANTING_ROLES = ("blocked", "inherit")
WRITE_ROLES = frozenset({"owner", "admin", "editor"})
ACTIVE_ROUND_STATUSES = ("active", "closed")
PARTICIPANT_ROLE = "participant"


def _owned_query(user_id: str, include_deleted: bool = False):
    query = select(List.id).where(List.owner_id == user_id)
    if not include_deleted:
        query = query.where(List.deleted_at.is_(None))
    return query


def _group_role_query(user_id: str):
    return (
        select(ListGroupRole.list_id, ListGroupRole.role)
        .join(CollaborationGroupMember, CollaborationGroupMember.group_id == ListGroupRole.group_id)
        .join(CollaborationGroup, CollaborationGroup.id == ListGroupRole.group_id)
        .where(
            CollaborationGroupMember.user_id == user_id,
            CollaborationGroupMember.deleted_at.is_(None),
            CollaborationGroup.deleted_at.is_(None),
            ListGroupRole.deleted_at.is_(None),
            ListGroupRole.role.notin_(NON_GRANTING_ROLES),
        )
    )


def _override_query(user_id: str):
    return select(ListUserOverride.list_id, ListUserOverride.role).where(
        ListUserOverride.user_id == user_id,
        ListUserOverride.deleted_at.is_(None),
    )


def _participation_query(user_id: str):
    return (
        select(SecretSantaRound.list_id)
        .join(SecretSantaParticipant, SecretSantaParticipant.round_id == SecretSantaRound.id)
        .where(
            SecretSantaParticipant.user_id == user_id,
            SecretSantaRound.status.in_(ACTIVE_ROUND_STATUSES),
        )
    )


def _existing_list_ids(db: Session, list_ids: Iterable[str], include_deleted: bool = False) -> set[str]:
    ids = set(list_ids)
    if not ids:
        return set()
    query = select(List.id).where(List.id.in_(ids))
    if not include_deleted:
        query = query.where(List.deleted_at.is_(None))
    rows = db.execute(query)
    return {row[0] for row in rows}


def resolve_list_roles(db: Session, user_id: str, include_deleted: bool = False) -> dict[str, str]:
    """Map every list the user can see to their effective role on it.

    Precedence: owner, then personal override, then the strongest group role.
    With `include_deleted`, soft-deleted lists the user could see are kept so
    their deletions can still be delivered.
    """
    owned = {row[0] for row in db.execute(_owned_query(user_id, include_deleted))}

    group_roles: dict[str, str] = {}
    for list_id, role in db.execute(_group_role_query(user_id)):
        current = group_roles.get(list_id)
        if current is None or (role in WRITE_ROLES and current not in WRITE_ROLES):
            group_roles[list_id] = role

    granted_overrides: dict[str, str] = {}
    blocked: set[str] = set()
    for list_id, role in db.execute(_override_query(user_id)):
        if role == "blocked":
            blocked.add(list_id)
        elif role != "inherit":
            granted_overrides[list_id] = role

    participation = {row[0] for row in db.execute(_participation_query(user_id))}

    shared_candidates = (set(group_roles) | set(granted_overrides) | participation) - owned
    shared = _existing_list_ids(db, shared_candidates, include_deleted) - blocked

    roles: dict[str, str] = {list_id: "owner" for list_id in owned}
    for list_id in shared:
        if list_id in granted_overrides:
            roles[list_id] = granted_overrides[list_id]
        elif list_id in group_roles:
            roles[list_id] = group_roles[list_id]
        else:
            roles[list_id] = PARTICIPANT_ROLE
    return roles


def visible_list_ids(db: Session, user_id: str, include_deleted: bool = False) -> set[str]:
    return set(resolve_list_roles(db, user_id, include_deleted))


def writable_list_ids(db: Session, user_id: str) -> set[str]:
    return {list_id for list_id, role in resolve_list_roles(db, user_id).items() if role in WRITE_ROLES}


def resolve_list_role(db: Session, user_id: str, list_id: str) -> Optional[str]:
    """Effective role of one user on one list, or None when it is not visible."""
    owner_id = db.execute(
        select(List.owner_id).where(List.id == list_id, List.deleted_at.is_(None))
    ).scalar_one_or_none()
    if owner_id is None:
        return None
    if owner_id == user_id:
        return "owner"

    override_roles = {
        row[1] for row in db.execute(_override_query(user_id).where(ListUserOverride.list_id == list_id))
    }
    if "blocked" in override_roles:
        return None
    override_roles.discard("inherit")
    if override_roles:
        writable = override_roles & WRITE_ROLES
        return sorted(writable)[0] if writable else sorted(override_roles)[0]

    group_roles = {
        row[1] for row in db.execute(_group_role_query(user_id).where(ListGroupRole.list_id == list_id))
    }
    if group_roles:
        writable = group_roles & WRITE_ROLES
        return sorted(writable)[0] if writable else sorted(group_roles)[0]

    participating = db.execute(
        _participation_query(user_id).where(SecretSantaRound.list_id == list_id).limit(1)
    ).first()
    return PARTICIPANT_ROLE if participating else None


def visible_lists_of_owner(db: Session, viewer_id: str, owner_id: str) -> list[List]:
    """Live lists of `owner_id` that `viewer_id` may currently see."""
    visible = visible_list_ids(db, viewer_id)
    if not visible:
        return []
    return (
        db.query(List)
        .filter(
            List.owner_id == owner_id,
            List.id.in_(visible),
            List.deleted_at.is_(None),
        )
        .order_by(List.sort_order.asc(), List.created_at.asc())
        .all()
    )
