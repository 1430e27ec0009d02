"""
Pull response cache keyed by (user, watermark).
"""

from __future__ import annotations

import json
import os
import threading
import time
from typing import Optional

from redis.exceptions import RedisError

import listsync.config as config

EVICT_FRACTION = 0.1


class PullCache:
    """Bounded in-process TTL cache with optional Redis backing and file persistence."""

    def __init__(
        self,
        ttl_seconds: int,
        max_entries: int,
        persist_path: str = "",
        redis_client=None,
        prefix: str = "listsync:pull",
    ):
        self.ttl_seconds = ttl_seconds
        self.max_entries = max(1, max_entries)
        self.persist_path = persist_path
        self._redis = redis_client
        self._prefix = prefix
        self._lock = threading.Lock()
        self._entries: dict[str, tuple[float, dict]] = {}
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    @staticmethod
    def key(user_id: str, watermark_ms: int) -> str:
        return f"{user_id}:{watermark_ms}"

    def _redis_key(self, key: str) -> str:
        return f"{self._prefix}:{key}"

    # ------------------------------------------------------------------
    # In-process store
    # ------------------------------------------------------------------

    def _get_local(self, key: str) -> Optional[dict]:
        now = time.time()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if now - entry[0] > self.ttl_seconds:
                del self._entries[key]
                return None
            return entry[1]

    def _set_local(self, key: str, value: dict) -> None:
        with self._lock:
            if key not in self._entries and len(self._entries) >= self.max_entries:
                self._evict_oldest()
            self._entries[key] = (time.time(), value)

    def _evict_oldest(self) -> None:
        count = max(1, int(len(self._entries) * EVICT_FRACTION))
        oldest = sorted(self._entries.items(), key=lambda item: item[1][0])[:count]
        for key, _ in oldest:
            del self._entries[key]
        self._evictions += count

    def sweep(self) -> int:
        now = time.time()
        with self._lock:
            expired = [key for key, (stored, _) in self._entries.items() if now - stored > self.ttl_seconds]
            for key in expired:
                del self._entries[key]
        return len(expired)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def get(self, user_id: str, watermark_ms: int) -> Optional[dict]:
        key = self.key(user_id, watermark_ms)
        value = self._get_local(key)
        if value is None and self._redis is not None:
            try:
                raw = await self._redis.get(self._redis_key(key))
            except RedisError as exc:
                config.logger.warning(f"Redis cache read failed: {exc}")
                raw = None
            if raw is not None:
                value = json.loads(raw)
                self._set_local(key, value)
        with self._lock:
            if value is None:
                self._misses += 1
            else:
                self._hits += 1
        return value

    async def set(self, user_id: str, watermark_ms: int, value: dict) -> None:
        key = self.key(user_id, watermark_ms)
        self._set_local(key, value)
        if self._redis is not None:
            try:
                await self._redis.setex(self._redis_key(key), self.ttl_seconds, json.dumps(value))
            except RedisError as exc:
                config.logger.warning(f"Redis cache write failed: {exc}")

    async def invalidate_user(self, user_id: str) -> int:
        prefix = f"{user_id}:"
        with self._lock:
            keys = [key for key in self._entries if key.startswith(prefix)]
            for key in keys:
                del self._entries[key]
        removed = len(keys)
        if self._redis is not None:
            try:
                async for redis_key in self._redis.scan_iter(match=self._redis_key(f"{prefix}*")):
                    await self._redis.delete(redis_key)
                    removed += 1
            except RedisError as exc:
                config.logger.warning(f"Redis cache invalidation failed: {exc}")
        return removed

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def size(self) -> int:
        with self._lock:
            return len(self._entries)

    def stats(self) -> dict:
        with self._lock:
            lookups = self._hits + self._misses
            return {
                "size": len(self._entries),
                "max_entries": self.max_entries,
                "ttl_seconds": self.ttl_seconds,
                "hits": self._hits,
                "misses": self._misses,
                "hit_rate": round(self._hits / lookups, 4) if lookups else 0.0,
                "evictions": self._evictions,
                "backend": "redis" if self._redis is not None else "memory",
                "persist_path": self.persist_path or None,
            }

    # ------------------------------------------------------------------
    # Persistence for warm restarts
    # ------------------------------------------------------------------

    def persist(self) -> int:
        if not self.persist_path:
            return 0
        self.sweep()
        with self._lock:
            snapshot = {key: [stored, value] for key, (stored, value) in self._entries.items()}
        tmp_path = f"{self.persist_path}.tmp"
        try:
            with open(tmp_path, "w", encoding="utf-8") as handle:
                json.dump({"saved_at": time.time(), "entries": snapshot}, handle)
            os.replace(tmp_path, self.persist_path)
        except OSError as exc:
            config.logger.warning(f"Pull cache persist failed: {exc}")
            return 0
        return len(snapshot)

    def load(self) -> int:
        if not self.persist_path or not os.path.exists(self.persist_path):
            return 0
        try:
            with open(self.persist_path, "r", encoding="utf-8") as handle:
                payload = json.load(handle)
        except (OSError, ValueError) as exc:
            config.logger.warning(f"Pull cache load failed: {exc}")
            return 0
        now = time.time()
        loaded = 0
        with self._lock:
            for key, (stored, value) in payload.get("entries", {}).items():
                if now - stored > self.ttl_seconds or len(self._entries) >= self.max_entries:
                    continue
                self._entries[key] = (stored, value)
                loaded += 1
        config.logger.info(f"Pull cache restored {loaded} entries from {self.persist_path}")
        return loaded
