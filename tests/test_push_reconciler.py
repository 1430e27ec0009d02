import pytest
from sqlalchemy.exc import SQLAlchemyError

from listsync.db import session_scope
from listsync.models import ChangeLogEntry, Favorite, List, ListItem, MovieDetail, UserSettings
from listsync.services import change_log
from listsync.services.content_notifier import NullNotifier, PendingNotifications
from listsync.services.push_reconciler import push_changes, sort_changes
from listsync.timestamps import ensure_aware, utcnow

from sync_helpers import changes, create, delete, update


def _statuses(outcome):
    return [result["status"] for result in outcome.results]


def test_children_are_applied_after_parents(users):
    user_a, _, _ = users
    items = changes(
        create("list_items", "item-1", list_id="list-1", title="Milk"),
        create("lists", "list-1", title="Groceries"),
    )
    assert [item.table_name for item in sort_changes(items)] == ["lists", "list_items"]

    outcome = push_changes(user_a, items)

    assert outcome.committed
    assert _statuses(outcome) == ["created", "created"]
    with session_scope() as db:
        item = db.get(ListItem, "item-1")
        assert item.owner_id == user_a
        assert item.list_id == "list-1"


def test_create_is_idempotent_and_update_converges(users):
    user_a, _, _ = users
    push_changes(user_a, changes(create("lists", "list-1", title="Books")))

    again = push_changes(user_a, changes(create("lists", "list-1", title="Books")))
    assert _statuses(again) == ["updated"]

    first = push_changes(user_a, changes(update("lists", "list-1", title="Novels", sort_order=3)))
    second = push_changes(user_a, changes(update("lists", "list-1", title="Novels", sort_order=3)))
    assert _statuses(first) == _statuses(second) == ["updated"]

    with session_scope() as db:
        row = db.get(List, "list-1")
        assert row.title == "Novels"
        assert row.sort_order == 3
        assert db.query(ChangeLogEntry).filter(ChangeLogEntry.record_id == "list-1").count() == 1


def test_immutable_columns_are_ignored_on_update(users):
    user_a, user_b, _ = users
    push_changes(user_a, changes(create("lists", "list-1", title="Mine")))

    outcome = push_changes(user_a, changes(update("lists", "list-1", owner_id=user_b, title="Still mine")))

    assert outcome.committed
    with session_scope() as db:
        assert db.get(List, "list-1").owner_id == user_a


def test_unknown_fields_are_reported_as_warnings(users):
    user_a, _, _ = users
    outcome = push_changes(user_a, changes(create("lists", "list-1", title="Trips", colour="blue")))

    assert outcome.results[0]["status"] == "created"
    assert outcome.results[0]["warnings"] == ["unknown_field:colour"]


def test_unsupported_table_is_skipped(users):
    user_a, _, _ = users
    outcome = push_changes(
        user_a,
        changes(
            {"table_name": "sessions", "operation": "create", "data_payload": {"id": "s-1"}},
            create("lists", "list-1", title="Kept"),
        ),
    )

    assert outcome.committed
    by_table = {result["table_name"]: result for result in outcome.results}
    assert by_table["sessions"]["status"] == "skipped"
    assert by_table["sessions"]["error"] == "unsupported_table"
    assert by_table["lists"]["status"] == "created"


def test_update_of_missing_record_is_not_found(users):
    user_a, _, _ = users
    outcome = push_changes(user_a, changes(update("lists", "nope", title="Ghost")))

    assert outcome.committed
    assert _statuses(outcome) == ["not_found"]


def test_writes_without_access_are_forbidden(users):
    user_a, user_b, _ = users
    push_changes(user_a, changes(create("lists", "list-1", title="Private")))

    outcome = push_changes(
        user_b,
        changes(
            update("lists", "list-1", title="Hijacked"),
            create("list_items", "item-1", list_id="list-1", title="Sneaky"),
        ),
    )

    assert outcome.committed
    assert sorted(_statuses(outcome)) == ["forbidden", "forbidden"]
    with session_scope() as db:
        assert db.get(List, "list-1").title == "Private"
        assert db.get(ListItem, "item-1") is None


def test_delete_is_soft_and_recreate_restores(users):
    user_a, _, _ = users
    push_changes(user_a, changes(create("lists", "list-1", title="Temp")))

    deleted = push_changes(user_a, changes(delete("lists", "list-1")))
    assert _statuses(deleted) == ["deleted"]
    assert deleted.pending.calls == [("deactivate", "list-1", "list", None)]

    with session_scope() as db:
        assert db.get(List, "list-1").deleted_at is not None
        entry = db.query(ChangeLogEntry).filter(ChangeLogEntry.record_id == "list-1").one()
        assert entry.operation == "delete"

    restored = push_changes(user_a, changes(create("lists", "list-1", title="Back")))
    assert _statuses(restored) == ["restored"]
    with session_scope() as db:
        row = db.get(List, "list-1")
        assert row.deleted_at is None
        assert row.title == "Back"


def test_user_settings_create_merges_into_existing_row(users):
    user_a, _, _ = users
    push_changes(user_a, changes(create("user_settings", "settings-1", theme="dark")))

    outcome = push_changes(user_a, changes(create("user_settings", "settings-2", locale="fr")))

    assert _statuses(outcome) == ["updated"]
    with session_scope() as db:
        rows = db.query(UserSettings).filter(UserSettings.user_id == user_a).all()
        assert len(rows) == 1
        assert rows[0].theme == "dark"
        assert rows[0].locale == "fr"


def test_out_of_range_client_timestamps_fall_back_to_server_time(users):
    user_a, _, _ = users
    before = utcnow()

    outcome = push_changes(user_a, changes(create("lists", "list-1", title="Far", created_at=10**16, updated_at="1e400")))

    assert outcome.committed
    assert _statuses(outcome) == ["created"]
    with session_scope() as db:
        row = db.get(List, "list-1")
        assert ensure_aware(row.created_at) >= before
        assert ensure_aware(row.updated_at) >= before


def test_updated_at_never_precedes_created_at(users):
    user_a, _, _ = users
    outcome = push_changes(
        user_a,
        changes(create("lists", "list-1", title="Clock", created_at=2_000_000_000_000, updated_at=1_000_000_000_000)),
    )

    assert outcome.committed
    with session_scope() as db:
        row = db.get(List, "list-1")
        assert row.updated_at == row.created_at


def test_batch_reorder_reports_missing_ids(users):
    user_a, user_b, _ = users
    push_changes(
        user_a,
        changes(create("lists", "list-1", title="One"), create("lists", "list-2", title="Two")),
    )
    push_changes(user_b, changes(create("lists", "list-b", title="Not yours")))

    outcome = push_changes(
        user_a,
        changes(
            {
                "table_name": "lists",
                "operation": "batch_reorder",
                "data_payload": {
                    "orders": [
                        {"id": "list-1", "sort_order": 2},
                        {"id": "list-2", "sort_order": 1},
                        {"id": "list-b", "sort_order": 0},
                        {"id": "gone", "sort_order": 5},
                    ]
                },
            }
        ),
    )

    result = outcome.results[0]
    assert result["status"] == "reordered"
    assert result["updated"] == 2
    assert sorted(result["missing"]) == ["gone", "list-b"]
    with session_scope() as db:
        assert db.get(List, "list-1").sort_order == 2
        assert db.get(List, "list-2").sort_order == 1
        assert db.get(List, "list-b").sort_order == 0


def test_batch_favorites_merge_rules(users):
    user_a, _, _ = users
    push_changes(user_a, changes(create("lists", "list-1", title="Faves")))

    def batch(*entries):
        return changes({"table_name": "favorites", "operation": "batch_favorites", "data_payload": list(entries)})

    add = {"action": "add", "target_id": "list-1", "target_type": "list"}
    remove = {"action": "delete", "target_id": "list-1", "target_type": "list"}

    first = push_changes(user_a, batch(dict(add, id="fav-1"), add))
    assert [entry["status"] for entry in first.results[0]["items"]] == ["created", "noop"]

    removed = push_changes(user_a, batch(remove, remove))
    assert [entry["status"] for entry in removed.results[0]["items"]] == ["deleted", "not_found"]

    restored = push_changes(user_a, batch(add))
    assert restored.results[0]["items"][0]["status"] == "restored"
    assert restored.results[0]["items"][0]["server_id"] == "fav-1"

    with session_scope() as db:
        live = db.query(Favorite).filter(Favorite.user_id == user_a, Favorite.deleted_at.is_(None)).all()
        assert [favorite.id for favorite in live] == ["fav-1"]


def test_favorite_create_with_existing_target_is_noop(users):
    user_a, _, _ = users
    push_changes(user_a, changes(create("favorites", "fav-1", target_id="list-x", target_type="list")))

    outcome = push_changes(user_a, changes(create("favorites", "fav-2", target_id="list-x", target_type="list")))

    assert outcome.results[0]["status"] == "noop"
    assert outcome.results[0]["server_id"] == "fav-1"


def test_update_cannot_retarget_a_favorite_onto_a_live_one(users):
    user_a, _, _ = users
    push_changes(
        user_a,
        changes(
            create("favorites", "fav-1", target_id="list-1", target_type="list"),
            create("favorites", "fav-2", target_id="list-2", target_type="list"),
        ),
    )

    outcome = push_changes(user_a, changes(update("favorites", "fav-2", target_id="list-1", notes="moved")))

    assert outcome.committed
    with session_scope() as db:
        live = (
            db.query(Favorite)
            .filter(
                Favorite.user_id == user_a,
                Favorite.target_id == "list-1",
                Favorite.target_type == "list",
                Favorite.deleted_at.is_(None),
            )
            .all()
        )
        assert [favorite.id for favorite in live] == ["fav-1"]
        moved = db.get(Favorite, "fav-2")
        assert moved.target_id == "list-2"
        assert moved.notes == "moved"


def test_item_creates_detail_record_from_api_metadata(users):
    user_a, _, _ = users
    outcome = push_changes(
        user_a,
        changes(
            create("lists", "list-1", title="Watchlist", list_type="movies"),
            create(
                "list_items",
                "item-1",
                list_id="list-1",
                title="The Matrix",
                api_source="tmdb",
                api_metadata={
                    "source_id": "603",
                    "title": "The Matrix",
                    "rawDetails": {"vote_average": 8.2, "runtime": 136, "genres": [{"id": 28, "name": "Action"}]},
                },
            ),
        ),
    )

    item_result = next(result for result in outcome.results if result["table_name"] == "list_items")
    assert item_result["status"] == "created"
    with session_scope() as db:
        item = db.get(ListItem, "item-1")
        assert item.movie_detail_id == item_result["detail_id"]
        detail = db.get(MovieDetail, item.movie_detail_id)
        assert detail.tmdb_id == 603
        assert detail.runtime_minutes == 136
        assert detail.genres == ["Action"]


def test_gift_fields_land_on_gift_detail(users):
    user_a, _, _ = users
    outcome = push_changes(
        user_a,
        changes(
            create("lists", "list-1", title="Birthday", list_type="gifts"),
            create("list_items", "item-1", list_id="list-1", title="Scarf", quantity=2, where_to_buy="Market"),
        ),
    )

    item_result = next(result for result in outcome.results if result["table_name"] == "list_items")
    assert "warnings" not in item_result
    assert item_result["detail_id"]


def test_change_log_rows_of_one_push_share_a_stamp(users):
    user_a, _, _ = users
    push_changes(
        user_a,
        changes(
            create("lists", "list-1", title="A"),
            create("list_items", "item-1", list_id="list-1", title="x"),
            create("list_items", "item-2", list_id="list-1", title="y"),
        ),
    )

    with session_scope() as db:
        stamps = {entry.created_at for entry in db.query(ChangeLogEntry).all()}
    assert len(stamps) == 1


def test_store_failure_rolls_back_the_whole_push(users, monkeypatch):
    user_a, _, _ = users
    original = change_log.record_change
    calls = {"count": 0}

    def flaky_record_change(*args, **kwargs):
        calls["count"] += 1
        if calls["count"] == 2:
            raise SQLAlchemyError("disk full")
        return original(*args, **kwargs)

    monkeypatch.setattr(change_log, "record_change", flaky_record_change)

    outcome = push_changes(
        user_a,
        changes(create("lists", "list-1", title="A"), create("lists", "list-2", title="B")),
        notifier=NullNotifier(),
    )

    assert not outcome.committed
    assert outcome.error == "transaction_rolled_back"
    assert outcome.pending.calls == []
    with session_scope() as db:
        assert db.query(List).count() == 0
        assert db.query(ChangeLogEntry).count() == 0


def test_notifications_wait_for_commit(users):
    user_a, _, _ = users
    outcome = push_changes(user_a, changes(create("lists", "list-1", title="Ideas", list_type="custom")))

    assert isinstance(outcome.pending, PendingNotifications)
    assert outcome.pending.calls == [
        ("enqueue", "list-1", "list", {"title": "Ideas", "owner_id": user_a, "list_type": "custom"})
    ]
    assert outcome.notifications == {}


@pytest.mark.parametrize("operation", ["create", "update"])
def test_touched_owners_include_the_pusher(users, operation):
    user_a, _, _ = users
    if operation == "update":
        push_changes(user_a, changes(create("lists", "list-1", title="x")))
        entry = update("lists", "list-1", title="y")
    else:
        entry = create("lists", "list-1", title="x")

    outcome = push_changes(user_a, changes(entry))

    assert outcome.touched_user_ids == {user_a}
