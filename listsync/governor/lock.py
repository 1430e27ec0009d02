"""
Per-user mutation locks.

Serializes one user's pushes. The in-process lock only guards a single
worker; RedisUserLock extends the guarantee across instances.
"""

from __future__ import annotations

import asyncio
import threading
import time
import uuid
from contextlib import asynccontextmanager
from typing import Optional

from redis.exceptions import RedisError

import listsync.config as config
from listsync.errors import SyncBusyError

_POLL_INTERVAL_SECONDS = 0.05
BUSY_RETRY_AFTER_SECONDS = 5

_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
end
return 0
"""


class UserMutationLock:
    """In-process TTL lock keyed by user id."""

    backend = "memory"

    def __init__(self, ttl_seconds: float, wait_seconds: float):
        self.ttl_seconds = ttl_seconds
        self.wait_seconds = wait_seconds
        self._lock = threading.Lock()
        self._holders: dict[str, tuple[str, float]] = {}

    def try_acquire(self, user_id: str) -> Optional[str]:
        now = time.monotonic()
        with self._lock:
            holder = self._holders.get(user_id)
            if holder is not None and holder[1] > now:
                return None
            if holder is not None:
                config.logger.warning(f"Mutation lock for user {user_id} expired; taking over")
            token = uuid.uuid4().hex
            self._holders[user_id] = (token, now + self.ttl_seconds)
            return token

    def release_token(self, user_id: str, token: str) -> bool:
        with self._lock:
            holder = self._holders.get(user_id)
            if holder is None or holder[0] != token:
                return False
            del self._holders[user_id]
            return True

    async def acquire(self, user_id: str) -> str:
        deadline = time.monotonic() + self.wait_seconds
        while True:
            token = self.try_acquire(user_id)
            if token is not None:
                return token
            if time.monotonic() >= deadline:
                raise SyncBusyError(
                    "Another sync for this user is in progress",
                    retry_after=BUSY_RETRY_AFTER_SECONDS,
                    reason="user_lock_held",
                )
            await asyncio.sleep(_POLL_INTERVAL_SECONDS)

    async def release(self, user_id: str, token: str) -> bool:
        released = self.release_token(user_id, token)
        if not released:
            config.logger.warning(f"Mutation lock for user {user_id} was not held by this token")
        return released

    async def count(self) -> int:
        now = time.monotonic()
        with self._lock:
            return sum(1 for _, expires in self._holders.values() if expires > now)

    def sweep(self) -> int:
        now = time.monotonic()
        with self._lock:
            expired = [user_id for user_id, (_, expires) in self._holders.items() if expires <= now]
            for user_id in expired:
                del self._holders[user_id]
        return len(expired)

    @asynccontextmanager
    async def hold(self, user_id: str):
        token = await self.acquire(user_id)
        try:
            yield token
        finally:
            await self.release(user_id, token)

    async def close(self) -> None:
        with self._lock:
            self._holders.clear()


class RedisUserLock(UserMutationLock):
    """SET NX PX lock with compare-and-delete release.

    When Redis is unreachable and `fail_open` is set, the in-process lock
    takes over so a single worker still serializes its own pushes.
    """

    backend = "redis"

    def __init__(
        self,
        redis_client,
        ttl_seconds: float,
        wait_seconds: float,
        fail_open: bool = True,
        prefix: str = "listsync:lock",
    ):
        super().__init__(ttl_seconds, wait_seconds)
        self._redis = redis_client
        self._fail_open = fail_open
        self._prefix = prefix
        self._local_tokens: set[str] = set()

    def _key(self, user_id: str) -> str:
        return f"{self._prefix}:{user_id}"

    async def acquire(self, user_id: str) -> str:
        deadline = time.monotonic() + self.wait_seconds
        token = uuid.uuid4().hex
        ttl_ms = int(self.ttl_seconds * 1000)
        while True:
            try:
                acquired = await self._redis.set(self._key(user_id), token, nx=True, px=ttl_ms)
            except RedisError as exc:
                if not self._fail_open:
                    raise
                config.logger.warning(f"Redis lock unavailable, using in-process lock: {exc}")
                local_token = await super().acquire(user_id)
                self._local_tokens.add(local_token)
                return local_token
            if acquired:
                return token
            if time.monotonic() >= deadline:
                raise SyncBusyError(
                    "Another sync for this user is in progress",
                    retry_after=BUSY_RETRY_AFTER_SECONDS,
                    reason="user_lock_held",
                )
            await asyncio.sleep(_POLL_INTERVAL_SECONDS)

    async def release(self, user_id: str, token: str) -> bool:
        if token in self._local_tokens:
            self._local_tokens.discard(token)
            return await super().release(user_id, token)
        try:
            released = await self._redis.eval(_RELEASE_SCRIPT, 1, self._key(user_id), token)
        except RedisError as exc:
            config.logger.warning(f"Redis lock release failed for user {user_id}: {exc}")
            return False
        if not released:
            config.logger.warning(f"Redis mutation lock for user {user_id} expired before release")
        return bool(released)

    async def count(self) -> int:
        total = await super().count()
        try:
            async for _ in self._redis.scan_iter(match=f"{self._prefix}:*"):
                total += 1
        except RedisError as exc:
            config.logger.warning(f"Redis lock count failed: {exc}")
        return total
