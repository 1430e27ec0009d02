import time
from datetime import timedelta

from listsync.db import session_scope
from listsync.models import (
    ChangeLogEntry,
    CollaborationGroup,
    CollaborationGroupMember,
    GiftReservation,
    ListGroupRole,
    ListUserOverride,
)
from listsync.services.pull_assembler import owner_snapshot, pull_changes, read_record
from listsync.services.push_reconciler import push_changes
from listsync.timestamps import to_epoch_ms, utcnow

from sync_helpers import changes, create, delete, update


def _ids(bucket):
    return {record["id"] for record in bucket}


def _grant_group_role(owner_id, member_id, list_id, role):
    now = utcnow()
    with session_scope() as db:
        db.add(CollaborationGroup(id=f"group-{list_id}", owner_id=owner_id, name="Family", created_at=now, updated_at=now))
        db.flush()
        db.add(
            CollaborationGroupMember(
                id=f"member-{list_id}", group_id=f"group-{list_id}", user_id=member_id, role="member", created_at=now
            )
        )
        db.add(ListGroupRole(id=f"role-{list_id}", list_id=list_id, group_id=f"group-{list_id}", role=role, created_at=now))


def test_initial_pull_returns_visible_state_without_deletes(users):
    user_a, _, _ = users
    push_changes(
        user_a,
        changes(
            create("lists", "list-1", title="Keep"),
            create("lists", "list-2", title="Drop"),
            create("list_items", "item-1", list_id="list-1", title="x"),
        ),
    )
    push_changes(user_a, changes(delete("lists", "list-2")))

    response = pull_changes(user_a, 0)

    assert response["has_more"] is False
    assert _ids(response["changes"]["lists"]["created"]) == {"list-1"}
    assert _ids(response["changes"]["list_items"]["created"]) == {"item-1"}
    for bucket in response["changes"].values():
        assert bucket["deleted"] == []
        assert bucket["updated"] == []
    record = response["changes"]["lists"]["created"][0]
    assert isinstance(record["created_at"], int)
    assert response["timestamp"] > 0


def test_incremental_pull_delivers_updates_and_deletes(users):
    user_a, _, _ = users
    push_changes(
        user_a,
        changes(create("lists", "list-1", title="One"), create("lists", "list-2", title="Two")),
    )
    watermark = pull_changes(user_a, 0)["timestamp"]

    push_changes(user_a, changes(update("lists", "list-1", title="Uno"), delete("lists", "list-2")))
    push_changes(user_a, changes(create("lists", "list-3", title="Three")))

    response = pull_changes(user_a, watermark)
    lists = response["changes"]["lists"]

    assert "list-2" in lists["deleted"]
    assert "list-3" in _ids(lists["created"])
    delivered = {record["id"]: record for record in lists["created"] + lists["updated"]}
    assert delivered["list-1"]["title"] == "Uno"
    assert "list-2" not in delivered


def test_pull_timestamp_steps_back_for_late_commits(users):
    user_a, _, _ = users
    before = int(time.time() * 1000)

    response = pull_changes(user_a, before)

    after = int(time.time() * 1000)
    assert before - 1000 <= response["timestamp"] <= after - 1000


def test_paging_resumes_without_losing_changes(users):
    user_a, _, _ = users
    for index in range(5):
        push_changes(user_a, changes(create("lists", f"list-{index}", title=f"L{index}")))

    watermark = 1
    seen = set()
    for _ in range(10):
        response = pull_changes(user_a, watermark, page_size=2)
        seen |= _ids(response["changes"]["lists"]["created"] + response["changes"]["lists"]["updated"])
        if not response["has_more"]:
            break
        assert response["timestamp"] > watermark
        watermark = response["timestamp"]

    assert seen == {f"list-{index}" for index in range(5)}


def test_shared_list_flow_between_two_users(users):
    user_a, user_b, _ = users
    push_changes(
        user_a,
        changes(
            create("lists", "list-1", title="Trip"),
            create("lists", "list-2", title="Secret"),
            create("list_items", "item-a", list_id="list-1", title="Passports"),
        ),
    )

    initial_b = pull_changes(user_b, 0)
    assert initial_b["changes"]["lists"]["created"] == []
    assert owner_snapshot(user_b, user_a)["lists"] == []

    _grant_group_role(user_a, user_b, "list-1", "editor")

    live = owner_snapshot(user_b, user_a)
    assert [entry["id"] for entry in live["lists"]] == ["list-1"]
    assert live["lists"][0]["can_edit"] is True
    assert _ids(live["list_items"]) == {"item-a"}

    watermark_a = pull_changes(user_a, 0)["timestamp"]
    outcome = push_changes(user_b, changes(create("list_items", "item-b", list_id="list-1", title="Tickets")))
    assert outcome.results[0]["status"] == "created"

    response_a = pull_changes(user_a, watermark_a)
    items = {record["id"]: record for record in response_a["changes"]["list_items"]["created"]}
    assert items["item-b"]["owner_id"] == user_b

    rebaseline_b = pull_changes(user_b, 0)
    assert _ids(rebaseline_b["changes"]["lists"]["created"]) == {"list-1"}
    assert _ids(rebaseline_b["changes"]["list_items"]["created"]) == {"item-a", "item-b"}


def test_blocked_override_hides_a_group_shared_list(users):
    user_a, user_b, _ = users
    push_changes(user_a, changes(create("lists", "list-1", title="Shared")))
    _grant_group_role(user_a, user_b, "list-1", "viewer")
    assert _ids(pull_changes(user_b, 0)["changes"]["lists"]["created"]) == {"list-1"}

    with session_scope() as db:
        db.add(ListUserOverride(id="override-1", list_id="list-1", user_id=user_b, role="blocked", created_at=utcnow()))

    assert pull_changes(user_b, 0)["changes"]["lists"]["created"] == []
    assert read_record(user_b, "lists", "list-1") is None


def test_viewer_cannot_write_a_shared_list(users):
    user_a, user_b, _ = users
    push_changes(user_a, changes(create("lists", "list-1", title="Look only")))
    _grant_group_role(user_a, user_b, "list-1", "viewer")

    outcome = push_changes(user_b, changes(create("list_items", "item-1", list_id="list-1", title="Nope")))

    assert outcome.results[0]["status"] == "forbidden"


def test_collaborators_receive_deletions_of_shared_lists(users):
    user_a, user_b, _ = users
    push_changes(user_a, changes(create("lists", "list-1", title="Shared")))
    _grant_group_role(user_a, user_b, "list-1", "editor")
    watermark_b = pull_changes(user_b, 0)["timestamp"]

    push_changes(user_a, changes(delete("lists", "list-1")))

    response = pull_changes(user_b, watermark_b)
    assert "list-1" in response["changes"]["lists"]["deleted"]


def test_gift_status_is_attached_for_non_owners_only(users):
    user_a, user_b, user_c = users
    push_changes(
        user_a,
        changes(
            create("lists", "list-1", title="Wishlist", list_type="gift"),
            create("list_items", "item-1", list_id="list-1", title="Book"),
        ),
    )
    now = utcnow()
    with session_scope() as db:
        db.add(ListUserOverride(id="override-1", list_id="list-1", user_id=user_b, role="viewer", created_at=now))
        db.add(
            GiftReservation(
                id="res-1", item_id="item-1", reserved_by=user_c, quantity=1, created_at=now, updated_at=now
            )
        )

    owner_item = pull_changes(user_a, 0)["changes"]["list_items"]["created"][0]
    assert "gift_status" not in owner_item

    viewer_item = pull_changes(user_b, 0)["changes"]["list_items"]["created"][0]
    status = viewer_item["gift_status"]
    assert status["is_reserved"] is True
    assert status["reserved_quantity"] == 1
    assert status["reserved_by"]["username"] == "carol"
    assert status["reserved_by"]["is_me"] is False


def test_items_carry_their_parent_list_when_the_list_is_unchanged(users):
    user_a, _, _ = users
    push_changes(user_a, changes(create("lists", "list-1", title="Parent", list_type="custom")))
    with session_scope() as db:
        entry = db.query(ChangeLogEntry).filter(ChangeLogEntry.record_id == "list-1").one()
        entry.created_at = utcnow() - timedelta(hours=1)
    watermark = to_epoch_ms(utcnow() - timedelta(minutes=10))

    push_changes(user_a, changes(create("list_items", "item-1", list_id="list-1", title="Child")))

    response = pull_changes(user_a, watermark)
    assert response["changes"]["lists"]["created"] == []
    item = response["changes"]["list_items"]["created"][0]
    assert item["parent_list"] == {"id": "list-1", "title": "Parent", "list_type": "custom", "owner_id": user_a}


def test_read_record_respects_access(users):
    user_a, user_b, _ = users
    push_changes(user_a, changes(create("lists", "list-1", title="Mine")))

    record = read_record(user_a, "lists", "list-1")
    assert record["title"] == "Mine"
    assert record["viewer_role"] == "owner"
    assert read_record(user_b, "lists", "list-1") is None
    assert read_record(user_a, "lists", "missing") is None


def _apply(state, response):
    lists = response["changes"]["lists"]
    for record in lists["created"] + lists["updated"]:
        state[record["id"]] = record["title"]
    for record_id in lists["deleted"]:
        state.pop(record_id, None)
    return state


def test_incremental_pulls_compose_to_a_fresh_snapshot(users):
    user_a, _, _ = users
    push_changes(user_a, changes(create("lists", "list-1", title="One"), create("lists", "list-2", title="Two")))
    first = pull_changes(user_a, 0)
    state = _apply({}, first)

    push_changes(user_a, changes(update("lists", "list-1", title="Uno"), delete("lists", "list-2")))
    push_changes(user_a, changes(create("lists", "list-3", title="Tres")))
    state = _apply(state, pull_changes(user_a, first["timestamp"]))

    assert state == _apply({}, pull_changes(user_a, 0))
    assert state == {"list-1": "Uno", "list-3": "Tres"}


def test_created_record_is_returned_by_a_pull_from_just_before_it(users):
    user_a, _, _ = users
    before = int(time.time() * 1000) - 1

    push_changes(user_a, changes(create("lists", "list-1", title="Fresh")))

    response = pull_changes(user_a, before)
    assert [record["id"] for record in response["changes"]["lists"]["created"]] == ["list-1"]


def test_pull_from_after_a_create_does_not_return_it(users):
    user_a, _, _ = users
    push_changes(user_a, changes(create("lists", "list-1", title="Fresh")))
    with session_scope() as db:
        entry = db.query(ChangeLogEntry).filter(ChangeLogEntry.record_id == "list-1").one()
        after = to_epoch_ms(entry.created_at) + 1

    response = pull_changes(user_a, after)

    lists = response["changes"]["lists"]
    assert "list-1" not in _ids(lists["created"] + lists["updated"])
    assert "list-1" not in lists["deleted"]


def test_returned_timestamp_redelivers_a_create_inside_the_overlap(users):
    user_a, _, _ = users
    push_changes(user_a, changes(create("lists", "list-1", title="Fresh")))

    # The returned watermark steps back by the overlap window, so the next
    # pull sees the same create again and clients apply it idempotently.
    first = pull_changes(user_a, 1)
    second = pull_changes(user_a, first["timestamp"])

    assert "list-1" in _ids(second["changes"]["lists"]["created"])
