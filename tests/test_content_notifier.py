import httpx
import pytest

import listsync.config as config
from listsync.db import session_scope
from listsync.errors import NotifierError
from listsync.models import EmbeddingQueueEntry
from listsync.services.content_notifier import (
    HttpNotifier,
    NullNotifier,
    PendingNotifications,
    QueueNotifier,
    build_notifier,
    queue_stats,
)


def _http_notifier(handler):
    client = httpx.Client(transport=httpx.MockTransport(handler))
    return HttpNotifier("http://ai-server:8000/", timeout_seconds=1, client=client)


def test_http_notifier_posts_to_embedding_endpoints():
    seen = []

    def handler(request):
        seen.append((request.url.path, request.read()))
        return httpx.Response(200, json={"ok": True})

    notifier = _http_notifier(handler)
    notifier.enqueue("list-1", "list", {"title": "Books"})
    notifier.deactivate("item-1", "list_item")

    assert [path for path, _ in seen] == ["/api/embeddings/queue", "/api/embeddings/deactivate"]
    assert b'"entity_type":"list"' in seen[0][1].replace(b" ", b"")
    assert notifier.status()["circuit_breaker"]["consecutive_failures"] == 0


def test_http_notifier_opens_circuit_after_repeated_failures():
    calls = {"count": 0}

    def handler(request):
        calls["count"] += 1
        return httpx.Response(503)

    notifier = _http_notifier(handler)
    for _ in range(config.EMBEDDING_FAILURE_THRESHOLD):
        with pytest.raises(NotifierError):
            notifier.enqueue("list-1", "list")

    with pytest.raises(NotifierError, match="circuit open"):
        notifier.enqueue("list-1", "list")
    assert calls["count"] == config.EMBEDDING_FAILURE_THRESHOLD
    assert notifier.status()["circuit_breaker"]["open"] is True


def test_pending_notifications_swallow_delivery_failures():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    pending = PendingNotifications()
    pending.enqueue("list-1", "list", {"title": "x"})
    pending.deactivate("item-1", "list_item")

    summary = pending.dispatch(_http_notifier(handler))

    assert summary == {"sent": 0, "failed": 2}
    assert pending.calls == []


def test_queue_notifier_upserts_one_row_per_entity(db_engine):
    notifier = QueueNotifier()
    notifier.enqueue("list-1", "list", {"title": "First"})
    notifier.enqueue("list-1", "list", {"title": "Second"})
    notifier.deactivate("item-1", "list_item")

    with session_scope() as db:
        rows = {row.entity_id: row for row in db.query(EmbeddingQueueEntry).all()}
        stats = queue_stats(db)

    assert set(rows) == {"list-1", "item-1"}
    assert rows["list-1"].metadata_ == {"title": "Second"}
    assert rows["item-1"].action == "deactivate"
    assert stats["pending"] == 2
    assert stats["by_status"]["pending"] == {"generate": 1, "deactivate": 1}


def test_build_notifier_modes():
    assert isinstance(build_notifier("none"), NullNotifier)
    assert isinstance(build_notifier("queue"), QueueNotifier)
    notifier = build_notifier("http")
    try:
        assert isinstance(notifier, HttpNotifier)
    finally:
        notifier.close()
