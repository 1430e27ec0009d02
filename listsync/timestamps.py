"""
Timestamp normalisation and watermark parsing.
"""

from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Any, Optional

import listsync.config as config

TIMESTAMP_FIELDS = ("created_at", "updated_at", "deleted_at")

# Values below this are treated as epoch seconds rather than milliseconds
_EPOCH_SECONDS_CEILING = 10_000_000_000

# Last millisecond a datetime can hold
MAX_EPOCH_MS = 253_402_300_799_999


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_aware(value: datetime) -> datetime:
    """Naive datetimes coming back from sqlite are stored as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def to_epoch_ms(value: datetime) -> int:
    return int(ensure_aware(value).timestamp() * 1000)


def from_epoch_ms(value: int) -> datetime:
    return datetime.fromtimestamp(value / 1000, tz=timezone.utc)


def _parse_number(value: float) -> int:
    if not math.isfinite(value):
        raise OverflowError(f"timestamp {value!r} is not finite")
    if value <= 0:
        return 0
    millis = int(value * 1000) if value < _EPOCH_SECONDS_CEILING else int(value)
    if millis > MAX_EPOCH_MS:
        raise OverflowError(f"timestamp {value!r} is out of range")
    return millis


def _parse_in_range(value: float) -> int:
    try:
        return _parse_number(value)
    except OverflowError:
        config.logger.warning(f"Ignoring out-of-range timestamp {value!r}")
        return 0


def parse_watermark(raw: Any) -> int:
    """Turn a client `last_pulled_at` into epoch milliseconds.

    Accepts ISO-8601 strings, epoch milliseconds and ten-digit epoch seconds.
    Missing, unparseable or out-of-range values mean an initial pull (0).
    """
    if raw is None:
        return 0
    if isinstance(raw, bool):
        config.logger.warning(f"Ignoring boolean watermark {raw!r}")
        return 0
    if isinstance(raw, (int, float)):
        return _parse_in_range(raw)

    text_value = str(raw).strip()
    if not text_value or text_value.lower() in {"null", "undefined", "none"}:
        return 0
    try:
        number = float(text_value)
    except ValueError:
        pass
    else:
        return _parse_in_range(number)

    iso_value = text_value[:-1] + "+00:00" if text_value.endswith("Z") else text_value
    try:
        millis = to_epoch_ms(datetime.fromisoformat(iso_value))
    except (ValueError, OverflowError):
        config.logger.warning(f"Unparseable watermark {text_value!r}; falling back to initial sync")
        return 0
    if millis > MAX_EPOCH_MS:
        config.logger.warning(f"Ignoring out-of-range timestamp {text_value!r}")
        return 0
    return max(0, millis)


def coerce_client_timestamp(value: Any) -> Optional[datetime]:
    """Client-supplied timestamps may be epoch numbers or ISO strings."""
    if value is None or isinstance(value, datetime):
        return value
    millis = parse_watermark(value)
    if millis <= 0:
        return None
    return from_epoch_ms(millis)


def normalize_record(record: dict) -> dict:
    """Convert store timestamps on a serialized row to epoch milliseconds in place."""
    for field in TIMESTAMP_FIELDS:
        value = record.get(field)
        if isinstance(value, datetime):
            record[field] = to_epoch_ms(value)
        elif isinstance(value, str) and value:
            parsed = parse_watermark(value)
            record[field] = parsed or None
    return record
