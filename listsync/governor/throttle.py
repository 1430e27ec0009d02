"""
Adaptive throttling for sync endpoints.
"""

from __future__ import annotations

import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Optional

import listsync.config as config


@dataclass(frozen=True)
class ThrottleDecision:
    retry_after: int
    reason: str


@dataclass(frozen=True)
class ThrottleConfig:
    enabled: bool
    rate_limit_requests: int
    rate_limit_window_seconds: int
    min_interval_seconds: float
    max_active_connections: int
    slow_response_ms: int
    slow_log_ms: int
    max_error_rate: float
    metrics_window: int
    error_window_seconds: int


def load_throttle_config_from_env() -> ThrottleConfig:
    return ThrottleConfig(
        enabled=config.SYNC_THROTTLE_ENABLED,
        rate_limit_requests=config.SYNC_RATE_LIMIT_REQUESTS,
        rate_limit_window_seconds=config.SYNC_RATE_LIMIT_WINDOW_SECONDS,
        min_interval_seconds=config.SYNC_MIN_INTERVAL_SECONDS,
        max_active_connections=config.SYNC_MAX_ACTIVE_CONNECTIONS,
        slow_response_ms=config.SYNC_SLOW_RESPONSE_MS,
        slow_log_ms=config.SYNC_SLOW_LOG_MS,
        max_error_rate=config.SYNC_MAX_ERROR_RATE,
        metrics_window=config.SYNC_METRICS_WINDOW,
        error_window_seconds=config.SYNC_ERROR_WINDOW_SECONDS,
    )


class SyncThrottle:
    """Tracks live load and per-user request rates; sheds load with retry hints."""

    def __init__(self, throttle_config: ThrottleConfig):
        self.config = throttle_config
        self._lock = threading.Lock()
        self._active = 0
        self._durations: deque[float] = deque(maxlen=max(1, throttle_config.metrics_window))
        self._completions: deque[float] = deque(maxlen=1000)
        self._errors: deque[float] = deque()
        self._windows: dict[str, tuple[int, int]] = {}
        self._last_seen: dict[str, float] = {}
        self._rejected = 0

    # ------------------------------------------------------------------
    # Metrics
    # ------------------------------------------------------------------

    def _avg_response_ms(self) -> float:
        if not self._durations:
            return 0.0
        return sum(self._durations) / len(self._durations)

    def _requests_per_second(self, now: float) -> float:
        recent = [ts for ts in self._completions if now - ts < 60]
        return len(recent) / 60

    def _error_rate(self, now: float) -> float:
        while self._errors and now - self._errors[0] >= self.config.error_window_seconds:
            self._errors.popleft()
        total = len(self._durations)
        return len(self._errors) / total if total else 0.0

    def _retry_after(self) -> int:
        if self._active > self.config.max_active_connections * 2:
            return 120
        if self._active > self.config.max_active_connections:
            return 60
        if self._avg_response_ms() > self.config.slow_response_ms:
            return 30
        return 15

    # ------------------------------------------------------------------
    # Admission
    # ------------------------------------------------------------------

    def _rate_limited(self, user_id: str, now: float) -> bool:
        window = self.config.rate_limit_window_seconds
        if self.config.rate_limit_requests <= 0 or window <= 0:
            return False
        window_start = int(now // window) * window
        start, count = self._windows.get(user_id, (window_start, 0))
        if start != window_start:
            start, count = window_start, 0
        count += 1
        self._windows[user_id] = (start, count)
        return count > self.config.rate_limit_requests

    def _too_frequent(self, user_id: str, now: float) -> bool:
        if self.config.min_interval_seconds <= 0:
            return False
        last = self._last_seen.get(user_id)
        return last is not None and now - last < self.config.min_interval_seconds

    def check(self, user_id: Optional[str]) -> Optional[ThrottleDecision]:
        """Return a decision when the request should be shed, else None."""
        if not self.config.enabled:
            return None
        now = time.time()
        with self._lock:
            decision = None
            if user_id and self._rate_limited(user_id, now):
                decision = ThrottleDecision(self._retry_after(), "user_rate_limited")
            elif self._active >= self.config.max_active_connections:
                decision = ThrottleDecision(self._retry_after(), "active_connections")
            elif self._avg_response_ms() > self.config.slow_response_ms and (
                self._active > 10 or self._requests_per_second(now) > 2
            ):
                decision = ThrottleDecision(self._retry_after(), "slow_responses")
            elif self._error_rate(now) > self.config.max_error_rate:
                decision = ThrottleDecision(self._retry_after(), "error_rate")
            elif user_id and self._too_frequent(user_id, now):
                decision = ThrottleDecision(
                    max(1, int(self.config.min_interval_seconds)), "min_interval"
                )
            if decision is not None:
                self._rejected += 1
            elif user_id:
                self._last_seen[user_id] = now
        if decision is not None:
            config.logger.warning(f"Throttling sync request ({decision.reason}) for user {user_id}")
        return decision

    def begin(self) -> float:
        with self._lock:
            self._active += 1
        return time.monotonic()

    def end(self, started: float, error: bool = False, path: str = "") -> float:
        duration_ms = (time.monotonic() - started) * 1000
        now = time.time()
        with self._lock:
            self._active = max(0, self._active - 1)
            self._durations.append(duration_ms)
            self._completions.append(now)
            if error:
                self._errors.append(now)
        if duration_ms > self.config.slow_log_ms:
            config.logger.warning(f"Slow sync request: {path} took {duration_ms:.0f}ms")
        return duration_ms

    def sweep(self) -> None:
        """Drop per-user bookkeeping that can no longer affect a decision."""
        now = time.time()
        horizon = max(self.config.rate_limit_window_seconds, self.config.min_interval_seconds, 1)
        with self._lock:
            for user_id in [u for u, seen in self._last_seen.items() if now - seen > horizon]:
                del self._last_seen[user_id]
            window = self.config.rate_limit_window_seconds
            if window > 0:
                current = int(now // window) * window
                for user_id in [u for u, (start, _) in self._windows.items() if start != current]:
                    del self._windows[user_id]
            self._error_rate(now)

    def metrics(self) -> dict:
        now = time.time()
        with self._lock:
            return {
                "enabled": self.config.enabled,
                "active_connections": self._active,
                "avg_response_ms": round(self._avg_response_ms(), 1),
                "requests_per_second": round(self._requests_per_second(now), 3),
                "error_rate": round(self._error_rate(now), 4),
                "rejected": self._rejected,
                "tracked_users": len(self._windows),
            }
