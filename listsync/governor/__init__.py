"""
Concurrency governor: per-user locks, adaptive throttling, pull cache.
"""

from listsync.governor.cache import PullCache
from listsync.governor.governor import ConcurrencyGovernor, build_governor_from_env
from listsync.governor.lock import RedisUserLock, UserMutationLock
from listsync.governor.throttle import SyncThrottle, ThrottleConfig, ThrottleDecision, load_throttle_config_from_env

__all__ = [
    "ConcurrencyGovernor",
    "PullCache",
    "RedisUserLock",
    "SyncThrottle",
    "ThrottleConfig",
    "ThrottleDecision",
    "UserMutationLock",
    "build_governor_from_env",
    "load_throttle_config_from_env",
]
