"""
Concurrency governor wrapping every sync entry point.

Lifecycle: `start()` on application startup (restores the persisted cache
and launches sweep/persist loops), `stop()` on shutdown (cancels the loops,
flushes the cache to disk, closes Redis).
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Optional

import redis.asyncio as redis_asyncio

import listsync.config as config
from listsync.errors import ThrottledError
from listsync.governor.cache import PullCache
from listsync.governor.lock import RedisUserLock, UserMutationLock
from listsync.governor.throttle import SyncThrottle, ThrottleConfig, load_throttle_config_from_env


@dataclass
class AdmissionTicket:
    """Handed to the wrapped request; set `failed` to count a handled failure."""

    failed: bool = False


class ConcurrencyGovernor:
    def __init__(
        self,
        lock: UserMutationLock,
        throttle: SyncThrottle,
        cache: Optional[PullCache] = None,
        redis_client=None,
        cleanup_interval_seconds: int = 60,
        persist_interval_seconds: int = 300,
    ):
        self.lock = lock
        self.throttle = throttle
        self.cache = cache
        self._redis = redis_client
        self.cleanup_interval_seconds = cleanup_interval_seconds
        self.persist_interval_seconds = persist_interval_seconds
        self._tasks: list[asyncio.Task] = []

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        if self.cache is not None:
            self.cache.load()
            if self.cache.persist_path and self.persist_interval_seconds > 0:
                self._tasks.append(asyncio.create_task(self._persist_loop()))
        if self.cleanup_interval_seconds > 0:
            self._tasks.append(asyncio.create_task(self._cleanup_loop()))

    async def stop(self) -> None:
        for task in self._tasks:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks = []
        if self.cache is not None:
            self.cache.persist()
        await self.lock.close()
        if self._redis is not None:
            await self._redis.aclose()

    def sweep(self) -> dict:
        return {
            "cache_expired": self.cache.sweep() if self.cache is not None else 0,
            "locks_expired": self.lock.sweep(),
        }

    async def _cleanup_loop(self) -> None:
        while True:
            await asyncio.sleep(self.cleanup_interval_seconds)
            try:
                self.throttle.sweep()
                stats = self.sweep()
                if any(stats.values()):
                    config.logger.debug("governor_sweep", extra=stats)
            except Exception as exc:
                config.logger.warning(f"Governor cleanup error: {exc}")

    async def _persist_loop(self) -> None:
        while True:
            await asyncio.sleep(self.persist_interval_seconds)
            try:
                await asyncio.to_thread(self.cache.persist)
            except Exception as exc:
                config.logger.warning(f"Pull cache persist error: {exc}")

    # ------------------------------------------------------------------
    # Request wrapping
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def admit(self, user_id: Optional[str], path: str = ""):
        """Shed the request with a retry hint, or track it until completion."""
        decision = self.throttle.check(user_id)
        if decision is not None:
            raise ThrottledError(
                "Server overloaded, please try again later",
                retry_after=decision.retry_after,
                reason=decision.reason,
            )
        started = self.throttle.begin()
        ticket = AdmissionTicket()
        try:
            yield ticket
        except Exception:
            ticket.failed = True
            raise
        finally:
            self.throttle.end(started, error=ticket.failed, path=path)

    def mutation(self, user_id: str):
        return self.lock.hold(user_id)

    async def cached_pull(self, user_id: str, watermark_ms: int) -> Optional[dict]:
        if self.cache is None:
            return None
        return await self.cache.get(user_id, watermark_ms)

    async def store_pull(self, user_id: str, watermark_ms: int, response: dict) -> None:
        if self.cache is not None:
            await self.cache.set(user_id, watermark_ms, response)

    async def invalidate(self, user_ids) -> int:
        if self.cache is None:
            return 0
        removed = 0
        for user_id in user_ids:
            removed += await self.cache.invalidate_user(user_id)
        return removed

    async def status(self) -> dict:
        return {
            "lock_backend": self.lock.backend,
            "active_locks": await self.lock.count(),
            "cache": self.cache.stats() if self.cache is not None else {"enabled": False},
            "throttle": self.throttle.metrics(),
        }


def _build_redis_client(url: Optional[str]):
    if not url:
        return None
    return redis_asyncio.from_url(url, decode_responses=True)


def build_governor_from_env(throttle_config: Optional[ThrottleConfig] = None) -> ConcurrencyGovernor:
    redis_client = _build_redis_client(config.REDIS_URL)
    if redis_client is not None:
        lock = RedisUserLock(
            redis_client,
            ttl_seconds=config.SYNC_LOCK_TTL_SECONDS,
            wait_seconds=config.SYNC_LOCK_WAIT_SECONDS,
            fail_open=config.REDIS_FAIL_OPEN,
        )
    else:
        lock = UserMutationLock(
            ttl_seconds=config.SYNC_LOCK_TTL_SECONDS,
            wait_seconds=config.SYNC_LOCK_WAIT_SECONDS,
        )
    cache = None
    if config.SYNC_CACHE_ENABLED:
        cache = PullCache(
            ttl_seconds=config.SYNC_CACHE_TTL_SECONDS,
            max_entries=config.SYNC_CACHE_MAX_ENTRIES,
            persist_path=config.SYNC_CACHE_FILE,
            redis_client=redis_client,
        )
    return ConcurrencyGovernor(
        lock=lock,
        throttle=SyncThrottle(throttle_config or load_throttle_config_from_env()),
        cache=cache,
        redis_client=redis_client,
        cleanup_interval_seconds=config.SYNC_CACHE_CLEANUP_SECONDS,
        persist_interval_seconds=config.SYNC_CACHE_PERSIST_SECONDS,
    )
