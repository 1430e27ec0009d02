"""
Versioned column registry for syncable tables.

Client payloads are filtered against this registry instead of querying the
live schema per request. `check_registry` compares it with the database once
at startup.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import JSON, inspect

import listsync.config as config
from listsync.models import Favorite, List, ListItem, UserSettings

SCHEMA_VERSION = 1

# Parents before children
TABLE_ORDER = ("user_settings", "lists", "list_items", "favorites")


@dataclass(frozen=True)
class TableSchema:
    name: str
    model: type
    owner_column: str
    columns: frozenset[str]
    json_columns: frozenset[str]
    scope_column: Optional[str] = None
    embedding_type: Optional[str] = None
    # Columns that identify the record beyond its id
    fixed_columns: frozenset[str] = frozenset()

    @property
    def immutable_columns(self) -> frozenset[str]:
        return frozenset({"id", "created_at", self.owner_column}) | self.fixed_columns

    @property
    def writable_columns(self) -> frozenset[str]:
        return self.columns - self.immutable_columns


def _columns_of(model) -> frozenset[str]:
    return frozenset(column.name for column in model.__table__.columns)


def _json_columns_of(model) -> frozenset[str]:
    return frozenset(
        column.name
        for column in model.__table__.columns
        if isinstance(column.type, JSON)
    )


def _build(model, owner_column: str, scope_column=None, embedding_type=None, fixed_columns=()) -> TableSchema:
    return TableSchema(
        name=model.__tablename__,
        model=model,
        owner_column=owner_column,
        columns=_columns_of(model),
        json_columns=_json_columns_of(model),
        scope_column=scope_column,
        embedding_type=embedding_type,
        fixed_columns=frozenset(fixed_columns),
    )


REGISTRY: dict[str, TableSchema] = {
    "user_settings": _build(UserSettings, "user_id"),
    "lists": _build(List, "owner_id", scope_column="id", embedding_type="list"),
    "list_items": _build(ListItem, "owner_id", scope_column="list_id", embedding_type="list_item"),
    # A favorite is re-targeted by removing it and adding a new one
    "favorites": _build(Favorite, "user_id", fixed_columns=("target_id", "target_type")),
}


def get_table(table_name: str) -> Optional[TableSchema]:
    return REGISTRY.get(table_name)


def table_rank(table_name: str) -> int:
    try:
        return TABLE_ORDER.index(table_name)
    except ValueError:
        return len(TABLE_ORDER)


def _coerce_json(value):
    """Strings that parse as JSON are decoded; anything else is kept as-is."""
    if isinstance(value, str):
        try:
            return json.loads(value)
        except ValueError:
            return value
    return value


def filter_payload(table: TableSchema, payload: dict, allow_immutable: bool = False) -> tuple[dict, list[str]]:
    """Split a client payload into known column values and dropped field names."""
    allowed = table.columns if allow_immutable else table.writable_columns
    values: dict = {}
    dropped: list[str] = []
    for key, value in payload.items():
        if key not in allowed:
            if key not in table.columns:
                dropped.append(key)
            continue
        if key in table.json_columns:
            value = _coerce_json(value)
        values[key] = value
    return values, dropped


def check_registry(engine) -> dict:
    """Compare registry columns with the live schema; missing columns are fatal."""
    inspector = inspect(engine)
    missing: dict[str, list[str]] = {}
    extra: dict[str, list[str]] = {}
    for name, table in REGISTRY.items():
        live = {column["name"] for column in inspector.get_columns(name)}
        absent = sorted(table.columns - live)
        unexpected = sorted(live - table.columns)
        if absent:
            missing[name] = absent
        if unexpected:
            extra[name] = unexpected
    if extra:
        config.logger.warning(f"Schema registry v{SCHEMA_VERSION}: untracked columns {extra}")
    if missing:
        raise RuntimeError(f"Schema registry v{SCHEMA_VERSION} does not match database: missing {missing}")
    return {"version": SCHEMA_VERSION, "tables": sorted(REGISTRY), "untracked": extra}
