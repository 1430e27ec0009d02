"""
Batch retrieval of changed records, one query per table.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Iterable, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

import listsync.config as config
from listsync.models import GiftDetail, List, ListItem
from listsync.schema_registry import TableSchema, get_table
from listsync.timestamps import to_epoch_ms

GIFT_DETAIL_FIELDS = ("quantity", "where_to_buy", "amazon_url", "web_link", "rating")


def serialize_row(row) -> dict:
    """Column values of an ORM row as a plain dict (timestamps left as datetimes)."""
    data = {}
    for column in row.__table__.columns:
        value = getattr(row, column.key)
        if isinstance(value, Decimal):
            value = float(value)
        data[column.name] = value
    return data


def snapshot_row(row) -> dict:
    """JSON-safe copy of a row for the change log."""
    data = serialize_row(row)
    for key, value in data.items():
        if isinstance(value, datetime):
            data[key] = to_epoch_ms(value)
    return data


def access_predicate(table: TableSchema, user_id: str, visible_list_ids: Iterable[str]):
    """Ownership or visible-scope filter for one registry table."""
    model = table.model
    owner = getattr(model, table.owner_column) == user_id
    visible = list(visible_list_ids)
    if table.scope_column and visible:
        return or_(owner, getattr(model, table.scope_column).in_(visible))
    return owner


def fetch_records(
    db: Session,
    table_name: str,
    record_ids: Iterable[str],
    user_id: str,
    visible_list_ids: Iterable[str],
) -> dict[str, object]:
    """Live rows among `record_ids` that the user may read, keyed by id."""
    table = get_table(table_name)
    ids = sorted(set(record_ids))
    if table is None or not ids:
        return {}
    model = table.model
    rows = (
        db.query(model)
        .filter(
            model.id.in_(ids),
            model.deleted_at.is_(None),
            access_predicate(table, user_id, visible_list_ids),
        )
        .all()
    )
    return {row.id: row for row in rows}


def fetch_visible_state(
    db: Session,
    table_name: str,
    user_id: str,
    visible_list_ids: Iterable[str],
) -> list:
    """Every live row of a table the user may read (initial snapshot)."""
    table = get_table(table_name)
    if table is None:
        return []
    model = table.model
    return (
        db.query(model)
        .filter(model.deleted_at.is_(None), access_predicate(table, user_id, visible_list_ids))
        .order_by(model.created_at.asc())
        .all()
    )


def fetch_record(
    db: Session,
    table_name: str,
    record_id: str,
    user_id: str,
    visible_list_ids: Iterable[str],
) -> Optional[object]:
    return fetch_records(db, table_name, [record_id], user_id, visible_list_ids).get(record_id)


def fetch_lists_by_id(db: Session, list_ids: Iterable[str]) -> dict[str, List]:
    ids = sorted(set(list_ids))
    if not ids:
        return {}
    rows = db.query(List).filter(List.id.in_(ids)).all()
    return {row.id: row for row in rows}


def fetch_items_for_lists(db: Session, list_ids: Iterable[str]) -> list[ListItem]:
    ids = sorted(set(list_ids))
    if not ids:
        return []
    return (
        db.query(ListItem)
        .filter(ListItem.list_id.in_(ids), ListItem.deleted_at.is_(None))
        .order_by(ListItem.sort_order.asc(), ListItem.created_at.asc())
        .all()
    )


def merge_gift_details(db: Session, items: list[dict]) -> None:
    """Flatten gift detail columns onto serialized list items in one query."""
    detail_ids = {item["gift_detail_id"] for item in items if item.get("gift_detail_id")}
    if not detail_ids:
        return
    details = {
        row.id: row
        for row in db.query(GiftDetail).filter(GiftDetail.id.in_(sorted(detail_ids))).all()
    }
    for item in items:
        detail = details.get(item.get("gift_detail_id"))
        if detail is None:
            continue
        for field in GIFT_DETAIL_FIELDS:
            if item.get(field) is None:
                item[field] = getattr(detail, field)
    config.logger.debug("gift_details_merged", extra={"count": len(details)})
