"""
Validation of client push envelopes.

Everything here runs before the store is touched; failures raise
ValidationIssue and become a 400.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Optional

from listsync.config import (
    MAX_BATCH_SUB_ITEMS,
    MAX_PAYLOAD_BYTES,
    MAX_PUSH_CHANGES,
)
from listsync.errors import ValidationIssue

OPERATIONS = {"create", "update", "delete", "batch_reorder", "batch_favorites"}
FAVORITE_ACTIONS = {"add", "delete"}
FAVORITE_TARGET_TYPES = {"list", "list_item"}
MAX_TABLE_NAME_LENGTH = 100
MAX_RECORD_ID_LENGTH = 36


@dataclass
class ChangeItem:
    table_name: str
    operation: str
    client_record_id: Optional[str]
    data_payload: Any
    position: int = 0
    sub_items: list = field(default_factory=list)

    @property
    def record_id(self) -> Optional[str]:
        """Identifier from the envelope, falling back to the payload `id`."""
        if self.client_record_id:
            return self.client_record_id
        if isinstance(self.data_payload, dict):
            value = self.data_payload.get("id")
            return str(value) if value is not None else None
        return None


def validate_record_id(value: Any, field_name: str) -> str:
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValidationIssue(f"{field_name} is required", field=field_name, error_type="required")
    if not isinstance(value, (str, int)) or isinstance(value, bool):
        raise ValidationIssue(f"{field_name} must be a string", field=field_name, error_type="invalid_type")
    text_value = str(value).strip()
    if len(text_value) > MAX_RECORD_ID_LENGTH:
        raise ValidationIssue(
            f"{field_name} exceeds max length {MAX_RECORD_ID_LENGTH}",
            field=field_name,
            error_type="max_length",
        )
    return text_value


def validate_payload_size(payload: Any, field_name: str) -> None:
    try:
        size = len(json.dumps(payload))
    except (TypeError, ValueError) as exc:
        raise ValidationIssue(
            f"{field_name} must be JSON-serializable",
            field=field_name,
            error_type="invalid_type",
        ) from exc
    if size > MAX_PAYLOAD_BYTES:
        raise ValidationIssue(
            f"{field_name} exceeds max size {MAX_PAYLOAD_BYTES} bytes",
            field=field_name,
            error_type="max_size",
        )


def _sub_items(payload: Any, field_name: str) -> list:
    if isinstance(payload, dict):
        for key in ("items", "orders", "favorites"):
            if isinstance(payload.get(key), list):
                payload = payload[key]
                break
    if not isinstance(payload, list):
        raise ValidationIssue(f"{field_name} must be a list", field=field_name, error_type="invalid_type")
    if len(payload) > MAX_BATCH_SUB_ITEMS:
        raise ValidationIssue(
            f"{field_name} exceeds max items {MAX_BATCH_SUB_ITEMS}",
            field=field_name,
            error_type="max_items",
        )
    return payload


def _validate_reorder_entries(entries: list, field_name: str) -> list[dict]:
    cleaned = []
    for index, entry in enumerate(entries):
        entry_field = f"{field_name}[{index}]"
        if not isinstance(entry, dict):
            raise ValidationIssue(f"{entry_field} must be an object", field=entry_field, error_type="invalid_type")
        record_id = validate_record_id(entry.get("id"), f"{entry_field}.id")
        sort_order = entry.get("sort_order")
        if isinstance(sort_order, bool) or not isinstance(sort_order, int):
            raise ValidationIssue(
                f"{entry_field}.sort_order must be an integer",
                field=f"{entry_field}.sort_order",
                error_type="invalid_type",
            )
        cleaned.append({"id": record_id, "sort_order": sort_order})
    return cleaned


def _validate_favorite_entries(entries: list, field_name: str) -> list[dict]:
    cleaned = []
    for index, entry in enumerate(entries):
        entry_field = f"{field_name}[{index}]"
        if not isinstance(entry, dict):
            raise ValidationIssue(f"{entry_field} must be an object", field=entry_field, error_type="invalid_type")
        action = entry.get("action")
        if action not in FAVORITE_ACTIONS:
            raise ValidationIssue(
                f"{entry_field}.action must be one of {sorted(FAVORITE_ACTIONS)}",
                field=f"{entry_field}.action",
                error_type="invalid_value",
            )
        target_type = entry.get("target_type")
        if target_type not in FAVORITE_TARGET_TYPES:
            raise ValidationIssue(
                f"{entry_field}.target_type must be one of {sorted(FAVORITE_TARGET_TYPES)}",
                field=f"{entry_field}.target_type",
                error_type="invalid_value",
            )
        cleaned_entry = dict(entry)
        cleaned_entry["target_id"] = validate_record_id(entry.get("target_id"), f"{entry_field}.target_id")
        if entry.get("id") is not None:
            cleaned_entry["id"] = validate_record_id(entry.get("id"), f"{entry_field}.id")
        cleaned.append(cleaned_entry)
    return cleaned


def validate_change_item(raw: Any, position: int) -> ChangeItem:
    field_name = f"changes[{position}]"
    if not isinstance(raw, dict):
        raise ValidationIssue(f"{field_name} must be an object", field=field_name, error_type="invalid_type")

    table_name = raw.get("table_name")
    if not isinstance(table_name, str) or not table_name.strip():
        raise ValidationIssue(
            f"{field_name}.table_name must be a non-empty string",
            field=f"{field_name}.table_name",
            error_type="required",
        )
    if len(table_name) > MAX_TABLE_NAME_LENGTH:
        raise ValidationIssue(
            f"{field_name}.table_name exceeds max length {MAX_TABLE_NAME_LENGTH}",
            field=f"{field_name}.table_name",
            error_type="max_length",
        )

    operation = raw.get("operation")
    if operation not in OPERATIONS:
        raise ValidationIssue(
            f"{field_name}.operation must be one of {sorted(OPERATIONS)}",
            field=f"{field_name}.operation",
            error_type="invalid_value",
        )

    record_id = raw.get("client_record_id")
    if record_id is None:
        record_id = raw.get("record_id")
    if record_id is not None:
        record_id = validate_record_id(record_id, f"{field_name}.client_record_id")

    payload = raw.get("data_payload")
    if payload is None:
        payload = raw.get("data")
    if isinstance(payload, str):
        try:
            payload = json.loads(payload)
        except ValueError as exc:
            raise ValidationIssue(
                f"{field_name}.data_payload is not valid JSON",
                field=f"{field_name}.data_payload",
                error_type="invalid_type",
            ) from exc
    if payload is not None:
        validate_payload_size(payload, f"{field_name}.data_payload")

    item = ChangeItem(
        table_name=table_name.strip(),
        operation=operation,
        client_record_id=record_id,
        data_payload=payload,
        position=position,
    )

    if operation in {"create", "update"}:
        if not isinstance(payload, dict):
            raise ValidationIssue(
                f"{field_name}.data_payload is required for {operation}",
                field=f"{field_name}.data_payload",
                error_type="required",
            )
        if operation == "create":
            validate_record_id(payload.get("id") or record_id, f"{field_name}.data_payload.id")
        else:
            validate_record_id(item.record_id, f"{field_name}.client_record_id")
    elif operation == "delete":
        validate_record_id(item.record_id, f"{field_name}.client_record_id")
    elif operation == "batch_reorder":
        item.sub_items = _validate_reorder_entries(
            _sub_items(payload, f"{field_name}.data_payload"),
            f"{field_name}.data_payload",
        )
    elif operation == "batch_favorites":
        item.sub_items = _validate_favorite_entries(
            _sub_items(payload, f"{field_name}.data_payload"),
            f"{field_name}.data_payload",
        )
    return item


def validate_push_envelope(body: Any) -> list[ChangeItem]:
    if not isinstance(body, dict):
        raise ValidationIssue("Request body must be an object", field="body", error_type="invalid_type")
    changes = body.get("changes")
    if not isinstance(changes, list):
        raise ValidationIssue("changes must be an array", field="changes", error_type="required")
    if len(changes) > MAX_PUSH_CHANGES:
        raise ValidationIssue(
            f"changes exceeds max items {MAX_PUSH_CHANGES}",
            field="changes",
            error_type="max_items",
        )
    return [validate_change_item(raw, position) for position, raw in enumerate(changes)]
