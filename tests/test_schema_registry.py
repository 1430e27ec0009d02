from listsync.schema_registry import REGISTRY, SCHEMA_VERSION, TABLE_ORDER, check_registry, filter_payload, get_table


def test_registry_matches_the_created_schema(db_engine):
    report = check_registry(db_engine)

    assert report["version"] == SCHEMA_VERSION
    assert report["tables"] == sorted(TABLE_ORDER)
    assert report["untracked"] == {}


def test_registry_describes_ownership_and_scope():
    assert get_table("lists").owner_column == "owner_id"
    assert get_table("list_items").scope_column == "list_id"
    assert get_table("favorites").owner_column == "user_id"
    assert get_table("sessions") is None
    assert set(REGISTRY) == set(TABLE_ORDER)


def test_filter_payload_drops_unknown_and_immutable_fields():
    table = get_table("lists")
    values, dropped = filter_payload(
        table,
        {"id": "l-1", "owner_id": "someone", "title": "x", "background": '{"color": "red"}', "bogus": 1},
    )

    assert values == {"title": "x", "background": {"color": "red"}}
    assert dropped == ["bogus"]

    values, _ = filter_payload(table, {"id": "l-1", "title": "x"}, allow_immutable=True)
    assert values == {"id": "l-1", "title": "x"}


def test_favorite_targets_are_not_writable():
    table = get_table("favorites")

    assert {"target_id", "target_type"} <= table.immutable_columns
    values, dropped = filter_payload(table, {"target_id": "list-9", "target_type": "list", "notes": "n"})
    assert values == {"notes": "n"}
    assert dropped == []
