"""
Outbound port for content-change notifications (embedding generation).

Notifications raised during a push are buffered and only dispatched after
the transaction commits. Dispatch failures are logged and never reach the
sync caller.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from typing import Optional

import httpx
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError

import listsync.config as config
from listsync.db import session_scope
from listsync.errors import NotifierError
from listsync.models import EmbeddingQueueEntry
from listsync.timestamps import utcnow


class ContentChangeNotifier:
    """Interface: subclasses deliver notifications to the embedding pipeline."""

    name = "abstract"

    def enqueue(self, entity_id: str, entity_type: str, metadata: Optional[dict] = None) -> None:
        raise NotImplementedError

    def deactivate(self, entity_id: str, entity_type: str) -> None:
        raise NotImplementedError

    def status(self) -> dict:
        return {"mode": self.name}

    def close(self) -> None:
        return None


class NullNotifier(ContentChangeNotifier):
    name = "none"

    def enqueue(self, entity_id: str, entity_type: str, metadata: Optional[dict] = None) -> None:
        return None

    def deactivate(self, entity_id: str, entity_type: str) -> None:
        return None


class QueueNotifier(ContentChangeNotifier):
    """Upserts rows into embedding_queue for the external worker."""

    name = "queue"

    def _upsert(self, entity_id: str, entity_type: str, action: str, metadata: Optional[dict]) -> None:
        try:
            with session_scope() as db:
                entry = (
                    db.query(EmbeddingQueueEntry)
                    .filter(
                        EmbeddingQueueEntry.entity_id == entity_id,
                        EmbeddingQueueEntry.entity_type == entity_type,
                    )
                    .first()
                )
                now = utcnow()
                if entry is None:
                    entry = EmbeddingQueueEntry(entity_id=entity_id, entity_type=entity_type, created_at=now)
                    db.add(entry)
                entry.action = action
                entry.status = "pending"
                entry.retry_count = 0
                entry.metadata_ = metadata or {}
                entry.updated_at = now
        except SQLAlchemyError as exc:
            raise NotifierError(f"embedding queue write failed: {exc}") from exc

    def enqueue(self, entity_id: str, entity_type: str, metadata: Optional[dict] = None) -> None:
        self._upsert(entity_id, entity_type, "generate", metadata)

    def deactivate(self, entity_id: str, entity_type: str) -> None:
        self._upsert(entity_id, entity_type, "deactivate", None)


class NotifierCircuitBreaker:
    def __init__(self, failure_threshold: int, cooldown_seconds: int):
        self._failure_threshold = max(1, failure_threshold)
        self._cooldown_seconds = max(1, cooldown_seconds)
        self._lock = threading.Lock()
        self._consecutive_failures = 0
        self._cooldown_until = 0.0
        self._last_error: Optional[str] = None
        self._last_failure_ts: Optional[float] = None
        self._last_success_ts: Optional[float] = None

    def is_open(self) -> bool:
        with self._lock:
            return time.time() < self._cooldown_until

    def record_success(self) -> None:
        with self._lock:
            self._consecutive_failures = 0
            self._cooldown_until = 0.0
            self._last_success_ts = time.time()

    def record_failure(self, error: str) -> None:
        with self._lock:
            self._consecutive_failures += 1
            self._last_error = error
            self._last_failure_ts = time.time()
            if self._consecutive_failures >= self._failure_threshold:
                self._cooldown_until = time.time() + self._cooldown_seconds

    def status(self) -> dict:
        with self._lock:
            return {
                "open": time.time() < self._cooldown_until,
                "consecutive_failures": self._consecutive_failures,
                "cooldown_until_epoch": int(self._cooldown_until) if self._cooldown_until else None,
                "last_error": self._last_error,
                "last_failure_epoch": int(self._last_failure_ts) if self._last_failure_ts else None,
                "last_success_epoch": int(self._last_success_ts) if self._last_success_ts else None,
            }


class HttpNotifier(ContentChangeNotifier):
    """Posts notifications to the AI server's embedding endpoints."""

    name = "http"

    def __init__(self, base_url: str, timeout_seconds: float, client: Optional[httpx.Client] = None):
        self.base_url = base_url.rstrip("/")
        self.breaker = NotifierCircuitBreaker(
            failure_threshold=config.EMBEDDING_FAILURE_THRESHOLD,
            cooldown_seconds=config.EMBEDDING_COOLDOWN_SECONDS,
        )
        self._client = client or httpx.Client(
            timeout=httpx.Timeout(timeout_seconds),
            limits=httpx.Limits(max_keepalive_connections=10, max_connections=100),
        )

    def _post(self, path: str, body: dict) -> None:
        if self.breaker.is_open():
            raise NotifierError("embedding notifier circuit open")
        try:
            response = self._client.post(f"{self.base_url}{path}", json=body)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            self.breaker.record_failure(str(exc))
            raise NotifierError(f"embedding notify failed: {exc}") from exc
        self.breaker.record_success()

    def enqueue(self, entity_id: str, entity_type: str, metadata: Optional[dict] = None) -> None:
        self._post(
            "/api/embeddings/queue",
            {"entity_id": entity_id, "entity_type": entity_type, "metadata": metadata or {}},
        )

    def deactivate(self, entity_id: str, entity_type: str) -> None:
        self._post("/api/embeddings/deactivate", {"entity_id": entity_id, "entity_type": entity_type})

    def status(self) -> dict:
        return {"mode": self.name, "base_url": self.base_url, "circuit_breaker": self.breaker.status()}

    def close(self) -> None:
        self._client.close()


def build_notifier(mode: Optional[str] = None) -> ContentChangeNotifier:
    mode = (mode or config.EMBEDDING_NOTIFY_MODE).strip().lower()
    if mode == "http":
        return HttpNotifier(config.AI_SERVER_URL, config.EMBEDDING_TIMEOUT_SECONDS)
    if mode == "none":
        return NullNotifier()
    return QueueNotifier()


@dataclass
class PendingNotifications:
    """Notifications collected inside a push, dispatched after commit."""

    calls: list = field(default_factory=list)

    def enqueue(self, entity_id: str, entity_type: str, metadata: Optional[dict] = None) -> None:
        self.calls.append(("enqueue", entity_id, entity_type, metadata))

    def deactivate(self, entity_id: str, entity_type: str) -> None:
        self.calls.append(("deactivate", entity_id, entity_type, None))

    def dispatch(self, notifier: ContentChangeNotifier) -> dict:
        sent = 0
        failed = 0
        for action, entity_id, entity_type, metadata in self.calls:
            try:
                if action == "enqueue":
                    notifier.enqueue(entity_id, entity_type, metadata)
                else:
                    notifier.deactivate(entity_id, entity_type)
                sent += 1
            except NotifierError as exc:
                failed += 1
                config.logger.warning(f"Embedding {action} failed for {entity_type}:{entity_id}: {exc}")
        self.calls = []
        return {"sent": sent, "failed": failed}


def queue_stats(db) -> dict:
    """Embedding queue depth by status and action."""
    rows = (
        db.query(EmbeddingQueueEntry.status, EmbeddingQueueEntry.action, func.count(EmbeddingQueueEntry.id))
        .group_by(EmbeddingQueueEntry.status, EmbeddingQueueEntry.action)
        .all()
    )
    by_status: dict[str, dict[str, int]] = {}
    for status, action, count in rows:
        by_status.setdefault(status, {})[action] = count
    pending = sum(by_status.get("pending", {}).values())
    return {"pending": pending, "by_status": by_status}
