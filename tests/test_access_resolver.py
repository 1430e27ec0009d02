from listsync.db import session_scope
from listsync.models import (
    CollaborationGroup,
    CollaborationGroupMember,
    List,
    ListGroupRole,
    ListUserOverride,
    SecretSantaParticipant,
    SecretSantaRound,
)
from listsync.services import access_resolver
from listsync.timestamps import utcnow


def _seed_lists(owner_id, *list_ids):
    now = utcnow()
    with session_scope() as db:
        for list_id in list_ids:
            db.add(List(id=list_id, owner_id=owner_id, title=list_id, created_at=now, updated_at=now))


def _group(db, group_id, owner_id, member_id, member_deleted=False):
    now = utcnow()
    db.add(CollaborationGroup(id=group_id, owner_id=owner_id, name=group_id, created_at=now, updated_at=now))
    db.flush()
    db.add(
        CollaborationGroupMember(
            id=f"{group_id}-{member_id}",
            group_id=group_id,
            user_id=member_id,
            created_at=now,
            deleted_at=now if member_deleted else None,
        )
    )


def test_role_precedence(users):
    user_a, user_b, _ = users
    _seed_lists(user_a, "by-group", "by-override", "by-round", "strongest", "blocked", "left-group")
    _seed_lists(user_b, "own")
    now = utcnow()
    with session_scope() as db:
        _group(db, "g-view", user_a, user_b)
        _group(db, "g-edit", user_a, user_b)
        _group(db, "g-old", user_a, user_b, member_deleted=True)
        db.flush()
        db.add(ListGroupRole(id="r1", list_id="by-group", group_id="g-view", role="viewer", created_at=now))
        db.add(ListGroupRole(id="r2", list_id="by-override", group_id="g-view", role="viewer", created_at=now))
        db.add(ListGroupRole(id="r3", list_id="strongest", group_id="g-view", role="viewer", created_at=now))
        db.add(ListGroupRole(id="r4", list_id="strongest", group_id="g-edit", role="editor", created_at=now))
        db.add(ListGroupRole(id="r5", list_id="blocked", group_id="g-edit", role="editor", created_at=now))
        db.add(ListGroupRole(id="r6", list_id="left-group", group_id="g-old", role="editor", created_at=now))
        db.add(ListUserOverride(id="o1", list_id="by-override", user_id=user_b, role="admin", created_at=now))
        db.add(ListUserOverride(id="o2", list_id="blocked", user_id=user_b, role="blocked", created_at=now))
        db.add(SecretSantaRound(id="round-1", list_id="by-round", status="active", created_by=user_a, created_at=now, updated_at=now))
        db.flush()
        db.add(SecretSantaParticipant(id="p1", round_id="round-1", user_id=user_b, created_at=now))

    with session_scope() as db:
        roles = access_resolver.resolve_list_roles(db, user_b)
        assert roles == {
            "own": "owner",
            "by-group": "viewer",
            "by-override": "admin",
            "by-round": "participant",
            "strongest": "editor",
        }
        assert access_resolver.writable_list_ids(db, user_b) == {"own", "by-override", "strongest"}
        for list_id, role in roles.items():
            assert access_resolver.resolve_list_role(db, user_b, list_id) == role
        assert access_resolver.resolve_list_role(db, user_b, "blocked") is None
        assert access_resolver.resolve_list_role(db, user_b, "left-group") is None
        assert access_resolver.resolve_list_role(db, user_b, "strongest") in access_resolver.WRITE_ROLES
        assert access_resolver.resolve_list_role(db, user_b, "by-group") not in access_resolver.WRITE_ROLES


def test_draft_rounds_and_deleted_lists_grant_nothing(users):
    user_a, user_b, _ = users
    _seed_lists(user_a, "draft-round", "gone")
    now = utcnow()
    with session_scope() as db:
        db.add(SecretSantaRound(id="round-1", list_id="draft-round", status="draft", created_by=user_a, created_at=now, updated_at=now))
        db.add(ListUserOverride(id="o1", list_id="gone", user_id=user_b, role="editor", created_at=now))
        db.flush()
        db.add(SecretSantaParticipant(id="p1", round_id="round-1", user_id=user_b, created_at=now))
        db.get(List, "gone").deleted_at = now

    with session_scope() as db:
        assert access_resolver.visible_list_ids(db, user_b) == set()
        assert access_resolver.visible_list_ids(db, user_b, include_deleted=True) == {"gone"}


def test_visible_lists_of_owner_filters_by_owner(users):
    user_a, user_b, user_c = users
    _seed_lists(user_a, "a-shared", "a-private")
    _seed_lists(user_c, "c-shared")
    now = utcnow()
    with session_scope() as db:
        db.add(ListUserOverride(id="o1", list_id="a-shared", user_id=user_b, role="viewer", created_at=now))
        db.add(ListUserOverride(id="o2", list_id="c-shared", user_id=user_b, role="viewer", created_at=now))

    with session_scope() as db:
        rows = access_resolver.visible_lists_of_owner(db, user_b, user_a)
        assert [row.id for row in rows] == ["a-shared"]
