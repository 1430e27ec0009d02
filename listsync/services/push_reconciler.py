"""
Push reconciliation: apply a client's ordered change batch in one transaction.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

import listsync.config as config
from listsync.db import session_scope
from listsync.errors import ItemForbidden, ItemNotFound, ItemRejected
from listsync.models import List, ListItem, UserSettings
from listsync.schema_registry import TableSchema, filter_payload, get_table, table_rank
from listsync.services import access_resolver, change_log, detail_records, favorites
from listsync.services.batch_fetcher import snapshot_row
from listsync.services.content_notifier import ContentChangeNotifier, PendingNotifications
from listsync.timestamps import coerce_client_timestamp, ensure_aware, utcnow
from listsync.validators import ChangeItem

REORDERABLE_TABLES = ("lists", "list_items", "favorites")

# Item payload keys consumed by detail records rather than stored on list_items
ITEM_PAYLOAD_HINTS = frozenset({"type", "item_type"}) | frozenset(
    detail_records.DETAIL_KINDS["gift"].field_map
)


@dataclass
class PushOutcome:
    results: list = field(default_factory=list)
    committed: bool = False
    error: Optional[str] = None
    touched_user_ids: set = field(default_factory=set)
    pending: PendingNotifications = field(default_factory=PendingNotifications)
    notifications: dict = field(default_factory=dict)


def sort_changes(items: list[ChangeItem]) -> list[ChangeItem]:
    """Parents before children; unknown tables last; otherwise stable."""
    return sorted(items, key=lambda item: (table_rank(item.table_name), item.position))


class PushReconciler:
    def __init__(self, db: Session, user_id: str, notifications: Optional[PendingNotifications] = None):
        self.db = db
        self.user_id = user_id
        self.notifications = notifications or PendingNotifications()
        self.results: list[dict] = []
        self.touched_user_ids: set[str] = {user_id}
        self._roles: Optional[dict[str, str]] = None
        self._log_entries: list = []

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def apply(self, items: list[ChangeItem]) -> list[dict]:
        handlers = {
            "create": self._create,
            "update": self._update,
            "delete": self._delete,
            "batch_reorder": self._batch_reorder,
            "batch_favorites": self._batch_favorites,
        }
        for item in sort_changes(items):
            result = {
                "client_record_id": item.record_id,
                "table_name": item.table_name,
                "operation": item.operation,
            }
            table = get_table(item.table_name)
            if table is None:
                config.logger.warning(f"Skipping change for unsupported table {item.table_name!r}")
                result.update(status="skipped", error="unsupported_table")
                self.results.append(result)
                continue
            try:
                result.update(handlers[item.operation](table, item))
            except ItemRejected as exc:
                config.logger.info(
                    f"Push item {item.table_name}:{item.record_id} {exc.status}: {exc}",
                )
                result.update(status=exc.status, error=str(exc))
                if exc.detail:
                    result["detail"] = exc.detail
            self.results.append(result)
        self._stamp_log_entries()
        return self.results

    # ------------------------------------------------------------------
    # Access helpers
    # ------------------------------------------------------------------

    def _list_roles(self) -> dict[str, str]:
        if self._roles is None:
            self._roles = access_resolver.resolve_list_roles(self.db, self.user_id)
        return self._roles

    def _require_list_write(self, list_id: Optional[str]) -> List:
        if not list_id:
            raise ItemRejected("list_id is required for list items")
        parent = self.db.get(List, list_id)
        if parent is None or parent.deleted_at is not None:
            raise ItemNotFound(f"Parent list {list_id} not found")
        role = self._list_roles().get(list_id)
        if role not in access_resolver.WRITE_ROLES:
            raise ItemForbidden(f"No write access to list {list_id}", detail={"role": role})
        return parent

    def _require_row_write(self, table: TableSchema, row) -> None:
        if getattr(row, table.owner_column) == self.user_id:
            return
        if table.name == "lists":
            if self._list_roles().get(row.id) in access_resolver.WRITE_ROLES:
                return
        elif table.name == "list_items":
            if self._list_roles().get(row.list_id) in access_resolver.WRITE_ROLES:
                return
        raise ItemForbidden(f"No write access to {table.name} record {row.id}")

    def _scope_of(self, table: TableSchema, row) -> Optional[str]:
        if table.scope_column is None:
            return None
        return getattr(row, table.scope_column)

    # ------------------------------------------------------------------
    # Side effects recorded in the same transaction
    # ------------------------------------------------------------------

    def _stamp_log_entries(self) -> None:
        """Give every change-log row of this push the same instant, taken just before commit."""
        stamp = utcnow()
        for entry in self._log_entries:
            entry.created_at = stamp
        self.db.flush()

    def _log(self, table: TableSchema, row, operation: str) -> None:
        entry = change_log.record_change(
            self.db,
            table_name=table.name,
            record_id=row.id,
            user_id=self.user_id,
            list_id=self._scope_of(table, row),
            operation=operation,
            change_data=snapshot_row(row),
        )
        self._log_entries.append(entry)
        owner_id = getattr(row, table.owner_column, None)
        if owner_id:
            self.touched_user_ids.add(owner_id)

    def _notify_changed(self, table: TableSchema, row) -> None:
        if table.embedding_type is None:
            return
        metadata = {"title": row.title, "owner_id": getattr(row, table.owner_column)}
        if table.name == "list_items":
            metadata["list_id"] = row.list_id
        else:
            metadata["list_type"] = row.list_type
        self.notifications.enqueue(row.id, table.embedding_type, metadata)

    # ------------------------------------------------------------------
    # Payload shaping
    # ------------------------------------------------------------------

    def _timestamps(self, values: dict, now) -> None:
        for key in ("created_at", "updated_at"):
            if key in values:
                values[key] = coerce_client_timestamp(values[key]) or now
        values.pop("deleted_at", None)

    def _clamp_updated(self, row) -> None:
        if row.created_at and row.updated_at and ensure_aware(row.updated_at) < ensure_aware(row.created_at):
            row.updated_at = row.created_at

    def _warnings(self, table: TableSchema, dropped: list[str]) -> dict:
        if table.name == "list_items":
            dropped = [name for name in dropped if name not in ITEM_PAYLOAD_HINTS]
        if not dropped:
            return {}
        config.logger.warning(f"Dropped unknown fields from push payload: {sorted(dropped)}")
        return {"warnings": [f"unknown_field:{name}" for name in sorted(dropped)]}

    def _attach_detail(self, item_row: ListItem, payload: dict, parent: Optional[List]) -> Optional[str]:
        parent_type = parent.list_type if parent is not None else None
        kind = detail_records.derive_source_kind(payload, parent_type)
        if not kind:
            return None
        return detail_records.attach_detail_record(self.db, item_row, kind, payload)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def _create(self, table: TableSchema, item: ChangeItem) -> dict:
        payload = item.data_payload
        record_id = str(payload.get("id") or item.client_record_id)

        if table.name == "favorites":
            return self._create_favorite(table, item, record_id)

        values, dropped = filter_payload(table, payload, allow_immutable=True)
        now = utcnow()
        self._timestamps(values, now)
        values["id"] = record_id
        values[table.owner_column] = self.user_id

        parent = None
        if table.name == "list_items":
            parent = self._require_list_write(values.get("list_id"))

        model = table.model
        row = self.db.get(model, record_id)
        if row is None and table.name == "user_settings":
            row = self.db.query(UserSettings).filter(UserSettings.user_id == self.user_id).first()

        if row is not None:
            self._require_row_write(table, row)
            status = "restored" if row.deleted_at is not None else "updated"
            for key, value in values.items():
                if key in table.immutable_columns:
                    continue
                setattr(row, key, value)
            row.deleted_at = None
            if "updated_at" not in values:
                row.updated_at = now
            operation = "update"
        else:
            values.setdefault("created_at", now)
            values.setdefault("updated_at", values["created_at"])
            row = model(**values)
            self.db.add(row)
            status = "created"
            operation = "create"
            if table.name == "lists":
                self._list_roles()[row.id] = "owner"
        self._clamp_updated(row)
        self.db.flush()

        result = {"status": status, "server_id": row.id}
        if table.name == "list_items":
            detail_id = self._attach_detail(row, payload, parent)
            if detail_id:
                result["detail_id"] = detail_id

        self._log(table, row, operation)
        self._notify_changed(table, row)
        result.update(self._warnings(table, dropped))
        return result

    def _create_favorite(self, table: TableSchema, item: ChangeItem, record_id: str) -> dict:
        payload = item.data_payload
        target_id = payload.get("target_id")
        target_type = payload.get("target_type")
        if not target_id or target_type not in {"list", "list_item"}:
            raise ItemRejected("favorites require target_id and target_type")
        values, dropped = filter_payload(table, payload)
        status, favorite = favorites.add_favorite(
            self.db,
            self.user_id,
            str(target_id),
            target_type,
            values=values,
            favorite_id=record_id,
        )
        if status != "noop":
            self._log(table, favorite, "create" if status == "created" else "update")
        result = {"status": status, "server_id": favorite.id}
        result.update(self._warnings(table, dropped))
        return result

    def _load_for_write(self, table: TableSchema, record_id: Optional[str]):
        row = self.db.get(table.model, record_id) if record_id else None
        if row is None or row.deleted_at is not None:
            raise ItemNotFound(f"{table.name} record {record_id} not found")
        self._require_row_write(table, row)
        return row

    def _update(self, table: TableSchema, item: ChangeItem) -> dict:
        row = self._load_for_write(table, item.record_id)
        values, dropped = filter_payload(table, item.data_payload)
        now = utcnow()
        self._timestamps(values, now)

        parent = None
        if table.name == "list_items":
            new_list_id = values.get("list_id")
            if new_list_id and new_list_id != row.list_id:
                parent = self._require_list_write(new_list_id)
            else:
                parent = self.db.get(List, row.list_id)

        for key, value in values.items():
            setattr(row, key, value)
        if "updated_at" not in values:
            row.updated_at = now
        self._clamp_updated(row)
        self.db.flush()

        result = {"status": "updated", "server_id": row.id}
        if table.name == "list_items":
            payload = item.data_payload
            has_kind_hint = any(key in payload for key in ("type", "item_type", "api_source", "api_metadata"))
            if has_kind_hint or not any(
                getattr(row, kind.fk_column) for kind in detail_records.DETAIL_KINDS.values()
            ):
                detail_id = self._attach_detail(row, payload, parent)
                if detail_id:
                    result["detail_id"] = detail_id

        self._log(table, row, "update")
        self._notify_changed(table, row)
        result.update(self._warnings(table, dropped))
        return result

    def _delete(self, table: TableSchema, item: ChangeItem) -> dict:
        row = self._load_for_write(table, item.record_id)
        now = utcnow()
        row.deleted_at = now
        row.updated_at = now
        self._clamp_updated(row)
        self.db.flush()
        self._log(table, row, "delete")
        if table.embedding_type:
            self.notifications.deactivate(row.id, table.embedding_type)
        elif table.name == "favorites":
            self.notifications.deactivate(row.id, "favorite")
        return {"status": "deleted", "server_id": row.id}

    def _batch_reorder(self, table: TableSchema, item: ChangeItem) -> dict:
        if table.name not in REORDERABLE_TABLES:
            raise ItemRejected(f"{table.name} does not support batch_reorder")
        model = table.model
        orders = {entry["id"]: entry["sort_order"] for entry in item.sub_items}
        rows = (
            self.db.query(model)
            .filter(model.id.in_(sorted(orders)), model.deleted_at.is_(None))
            .all()
        )
        found = {}
        for row in rows:
            try:
                self._require_row_write(table, row)
            except ItemForbidden:
                continue
            found[row.id] = row

        now = utcnow()
        missing = []
        for record_id, sort_order in orders.items():
            row = found.get(record_id)
            if row is None:
                missing.append(record_id)
                continue
            row.sort_order = sort_order
            row.updated_at = now
        self.db.flush()
        for row in found.values():
            self._log(table, row, "update")
        if missing:
            config.logger.warning(
                f"batch_reorder on {table.name}: {len(missing)} ids not found or not writable"
            )
        return {"status": "reordered", "updated": len(found), "missing": missing}

    def _batch_favorites(self, table: TableSchema, item: ChangeItem) -> dict:
        if table.name != "favorites":
            raise ItemRejected("batch_favorites is only valid for the favorites table")
        outcomes = []
        for entry in item.sub_items:
            target_id = entry["target_id"]
            target_type = entry["target_type"]
            if entry["action"] == "add":
                values, _ = filter_payload(table, entry)
                status, favorite = favorites.add_favorite(
                    self.db,
                    self.user_id,
                    target_id,
                    target_type,
                    values=values,
                    favorite_id=entry.get("id"),
                )
                if status != "noop":
                    self._log(table, favorite, "create" if status == "created" else "update")
            else:
                status, favorite = favorites.remove_favorite(self.db, self.user_id, target_id, target_type)
                if favorite is not None:
                    self._log(table, favorite, "delete")
                    self.notifications.deactivate(favorite.id, "favorite")
            outcomes.append(
                {
                    "action": entry["action"],
                    "target_id": target_id,
                    "target_type": target_type,
                    "status": status,
                    "server_id": favorite.id if favorite is not None else None,
                }
            )
        return {"status": "processed", "items": outcomes}


def push_changes(
    user_id: str,
    items: list[ChangeItem],
    notifier: Optional[ContentChangeNotifier] = None,
) -> PushOutcome:
    """Apply a validated batch all-or-nothing.

    Notifications are dispatched here when a notifier is given; otherwise they
    stay on `outcome.pending` for the caller to dispatch once locks are released.
    """
    outcome = PushOutcome()
    pending = outcome.pending
    reconciler = None
    try:
        with session_scope() as db:
            reconciler = PushReconciler(db, user_id, pending)
            reconciler.apply(items)
    except SQLAlchemyError as exc:
        config.logger.error(f"Push for user {user_id} rolled back: {exc}")
        outcome.results = list(reconciler.results) if reconciler else []
        outcome.error = "transaction_rolled_back"
        outcome.pending = PendingNotifications()
        return outcome

    outcome.results = reconciler.results
    outcome.committed = True
    outcome.touched_user_ids = reconciler.touched_user_ids
    if notifier is not None:
        outcome.notifications = pending.dispatch(notifier)
    return outcome
