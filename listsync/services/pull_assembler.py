"""
Pull assembly: permission-scoped deltas since a client watermark.
"""

from __future__ import annotations

from datetime import timedelta
from typing import Optional

from sqlalchemy.orm import Session

import listsync.config as config
from listsync.db import session_scope
from listsync.schema_registry import TABLE_ORDER
from listsync.services import access_resolver, change_log
from listsync.services.batch_fetcher import (
    fetch_items_for_lists,
    fetch_lists_by_id,
    fetch_record,
    fetch_records,
    fetch_visible_state,
    merge_gift_details,
    serialize_row,
)
from listsync.services.gift_status import attach_gift_status, gift_list_ids
from listsync.timestamps import from_epoch_ms, normalize_record, to_epoch_ms, utcnow


def empty_changes() -> dict:
    return {table: {"created": [], "updated": [], "deleted": []} for table in TABLE_ORDER}


class PullAssembler:
    def __init__(self, db: Session, user_id: str, page_size: Optional[int] = None):
        self.db = db
        self.user_id = user_id
        self.page_size = page_size or config.SYNC_PULL_PAGE_SIZE

    def pull(self, watermark_ms: int) -> dict:
        started = utcnow()
        visible = access_resolver.visible_list_ids(self.db, self.user_id)
        if watermark_ms <= 0:
            changes, processed = self._initial(visible)
            has_more = False
            timestamp = None
        else:
            scope = access_resolver.visible_list_ids(self.db, self.user_id, include_deleted=True)
            changes, processed, has_more, timestamp = self._incremental(visible, scope, watermark_ms)
        if timestamp is None:
            # Pushes stamp their change-log rows just before commit; step back so late commits are not skipped
            timestamp = max(0, to_epoch_ms(started) - config.SYNC_PULL_OVERLAP_MS)
        self._post_process(changes, visible)
        return {
            "changes": changes,
            "timestamp": timestamp,
            "has_more": has_more,
            "records_processed": processed,
        }

    # ------------------------------------------------------------------
    # Modes
    # ------------------------------------------------------------------

    def _initial(self, visible: set[str]) -> tuple[dict, int]:
        changes = empty_changes()
        processed = 0
        for table_name in TABLE_ORDER:
            rows = fetch_visible_state(self.db, table_name, self.user_id, visible)
            changes[table_name]["created"] = [serialize_row(row) for row in rows]
            processed += len(rows)
        config.logger.info(
            f"Initial sync for user {self.user_id}: "
            f"{len(changes['lists']['created'])} lists, {len(changes['list_items']['created'])} items"
        )
        return changes, processed

    def _page(self, scope: set[str], since) -> tuple[list, bool, Optional[int]]:
        """Read one page of change-log rows and the watermark that resumes after it."""
        rows = change_log.fetch_changes(self.db, self.user_id, scope, since, self.page_size + 1)
        if len(rows) <= self.page_size:
            return rows, False, None

        config.logger.warning(
            f"Change log overflow for user {self.user_id}: more than {self.page_size} rows; client must page"
        )
        boundary_ms = to_epoch_ms(rows[self.page_size].created_at)
        page = rows[: self.page_size]
        if to_epoch_ms(page[0].created_at) == boundary_ms:
            # Whole page shares one millisecond; take the full bucket so the next page advances
            bucket_end = from_epoch_ms(boundary_ms) + timedelta(milliseconds=1)
            page = change_log.fetch_changes_between(
                self.db, self.user_id, scope, from_epoch_ms(boundary_ms), bucket_end
            )
            return page, True, boundary_ms + 1
        return page, True, boundary_ms

    def _incremental(self, visible: set[str], scope: set[str], watermark_ms: int) -> tuple[dict, int, bool, Optional[int]]:
        watermark = from_epoch_ms(watermark_ms)
        entries, has_more, resume_ms = self._page(scope, watermark)

        ids_by_table: dict[str, set[str]] = {}
        for entry in entries:
            if entry.operation != "delete":
                ids_by_table.setdefault(entry.table_name, set()).add(entry.record_id)

        fetched = {
            table_name: fetch_records(self.db, table_name, ids, self.user_id, visible)
            for table_name, ids in ids_by_table.items()
        }

        changes = empty_changes()
        for entry in entries:
            bucket = changes.setdefault(entry.table_name, {"created": [], "updated": [], "deleted": []})
            if entry.operation == "delete":
                bucket["deleted"].append(entry.record_id)
                continue
            row = fetched.get(entry.table_name, {}).get(entry.record_id)
            if row is not None:
                data = serialize_row(row)
                created_ms = to_epoch_ms(row.created_at)
            elif self._snapshot_visible(entry, visible):
                data = dict(entry.change_data)
                created_ms = data.get("created_at") or 0
            else:
                continue
            key = "created" if created_ms >= watermark_ms else "updated"
            bucket[key].append(data)
        return changes, len(entries), has_more, resume_ms

    def _snapshot_visible(self, entry, visible: set[str]) -> bool:
        """A change-log snapshot may stand in for a row only while its scope is readable."""
        if not entry.change_data:
            return False
        snapshot = entry.change_data
        if snapshot.get("deleted_at"):
            return False
        if entry.list_id:
            return entry.list_id in visible
        owner = snapshot.get("owner_id") or snapshot.get("user_id")
        return owner == self.user_id

    # ------------------------------------------------------------------
    # Post passes
    # ------------------------------------------------------------------

    def _post_process(self, changes: dict, visible: set[str]) -> None:
        lists = changes["lists"]["created"] + changes["lists"]["updated"]
        items = changes["list_items"]["created"] + changes["list_items"]["updated"]

        merge_gift_details(self.db, items)

        listed_ids = {entry["id"] for entry in lists}
        parent_ids = {item["list_id"] for item in items if item.get("list_id")} - listed_ids
        parents = fetch_lists_by_id(self.db, parent_ids)

        gift_lists = gift_list_ids(lists, self.user_id) | gift_list_ids(parents.values(), self.user_id)
        attach_gift_status(self.db, self.user_id, items, gift_lists)

        for item in items:
            parent = parents.get(item.get("list_id"))
            if parent is not None and parent.id in visible:
                item["parent_list"] = {
                    "id": parent.id,
                    "title": parent.title,
                    "list_type": parent.list_type,
                    "owner_id": parent.owner_id,
                }

        for bucket in changes.values():
            for key in ("created", "updated"):
                for record in bucket[key]:
                    normalize_record(record)


def pull_changes(user_id: str, watermark_ms: int, page_size: Optional[int] = None) -> dict:
    with session_scope() as db:
        return PullAssembler(db, user_id, page_size=page_size).pull(watermark_ms)


def owner_snapshot(viewer_id: str, owner_id: str) -> dict:
    """Live view of another user's lists, recomputed on every call."""
    with session_scope() as db:
        lists = access_resolver.visible_lists_of_owner(db, viewer_id, owner_id)
        items = fetch_items_for_lists(db, (row.id for row in lists))
        writable = access_resolver.writable_list_ids(db, viewer_id)
        list_data = []
        for row in lists:
            data = normalize_record(serialize_row(row))
            data["can_edit"] = row.id in writable
            list_data.append(data)
        item_data = [serialize_row(row) for row in items]
        merge_gift_details(db, item_data)
        attach_gift_status(db, viewer_id, item_data, gift_list_ids(lists, viewer_id))
        for item in item_data:
            normalize_record(item)
        return {
            "owner_id": owner_id,
            "lists": list_data,
            "list_items": item_data,
            "timestamp": to_epoch_ms(utcnow()),
        }


def read_record(user_id: str, table_name: str, record_id: str) -> Optional[dict]:
    with session_scope() as db:
        visible = access_resolver.visible_list_ids(db, user_id)
        row = fetch_record(db, table_name, record_id, user_id, visible)
        if row is None:
            return None
        data = serialize_row(row)
        if table_name == "list_items":
            merge_gift_details(db, [data])
            parents = fetch_lists_by_id(db, [row.list_id])
            attach_gift_status(db, user_id, [data], gift_list_ids(parents.values(), user_id))
        scope_id = row.id if table_name == "lists" else getattr(row, "list_id", None)
        if scope_id:
            data["viewer_role"] = access_resolver.resolve_list_role(db, user_id, scope_id)
        return normalize_record(data)
