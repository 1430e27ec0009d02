"""
Change log: one upserted row per (table_name, record_id).
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Iterable, Optional

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from listsync.models import ChangeLogEntry
from listsync.timestamps import utcnow

OPERATIONS = ("create", "update", "delete")


def record_change(
    db: Session,
    table_name: str,
    record_id: str,
    user_id: str,
    operation: str,
    list_id: Optional[str] = None,
    change_data: Optional[dict] = None,
    changed_at: Optional[datetime] = None,
) -> ChangeLogEntry:
    """Upsert the change-log row for a record in the caller's transaction."""
    if operation not in OPERATIONS:
        raise ValueError(f"Unknown change-log operation: {operation}")
    changed_at = changed_at or utcnow()
    entry = (
        db.query(ChangeLogEntry)
        .filter(ChangeLogEntry.table_name == table_name, ChangeLogEntry.record_id == record_id)
        .first()
    )
    if entry is None:
        entry = ChangeLogEntry(table_name=table_name, record_id=record_id)
        db.add(entry)
    entry.user_id = user_id
    entry.list_id = list_id
    entry.operation = operation
    entry.created_at = changed_at
    entry.change_data = change_data
    db.flush()
    return entry


def fetch_changes(
    db: Session,
    user_id: str,
    visible_list_ids: Iterable[str],
    since: datetime,
    limit: int,
) -> list[ChangeLogEntry]:
    """Rows the user may see, oldest first, at most `limit` of them."""
    visible = list(visible_list_ids)
    scope = ChangeLogEntry.user_id == user_id
    if visible:
        scope = or_(scope, ChangeLogEntry.list_id.in_(visible))
    return (
        db.query(ChangeLogEntry)
        .filter(scope, ChangeLogEntry.created_at >= since)
        .order_by(ChangeLogEntry.created_at.asc(), ChangeLogEntry.id.asc())
        .limit(limit)
        .all()
    )


def fetch_changes_between(
    db: Session,
    user_id: str,
    visible_list_ids: Iterable[str],
    start: datetime,
    end: datetime,
) -> list[ChangeLogEntry]:
    """All visible rows in [start, end); used to close out a page boundary."""
    visible = list(visible_list_ids)
    scope = ChangeLogEntry.user_id == user_id
    if visible:
        scope = or_(scope, ChangeLogEntry.list_id.in_(visible))
    return (
        db.query(ChangeLogEntry)
        .filter(scope, ChangeLogEntry.created_at >= start, ChangeLogEntry.created_at < end)
        .order_by(ChangeLogEntry.created_at.asc(), ChangeLogEntry.id.asc())
        .all()
    )


def recent_stats(db: Session, hours: int = 24) -> dict:
    since = utcnow() - timedelta(hours=hours)
    rows = (
        db.query(ChangeLogEntry.table_name, ChangeLogEntry.operation, func.count(ChangeLogEntry.id))
        .filter(ChangeLogEntry.created_at >= since)
        .group_by(ChangeLogEntry.table_name, ChangeLogEntry.operation)
        .all()
    )
    by_table: dict[str, dict[str, int]] = {}
    total = 0
    for table_name, operation, count in rows:
        by_table.setdefault(table_name, {})[operation] = count
        total += count
    active_users = (
        db.query(func.count(func.distinct(ChangeLogEntry.user_id)))
        .filter(ChangeLogEntry.created_at >= since)
        .scalar()
    )
    return {
        "window_hours": hours,
        "total_changes": total,
        "active_users": active_users or 0,
        "by_table": by_table,
    }
