"""
Shared configuration for the ListSync engine.
"""

from __future__ import annotations

import logging
import os

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("listsync")


def _get_bool(env_name: str, default: bool) -> bool:
    value = os.environ.get(env_name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_int(env_name: str, default: int) -> int:
    value = os.environ.get(env_name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _get_float(env_name: str, default: float) -> float:
    value = os.environ.get(env_name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


# Database settings
DB_BACKEND = os.environ.get("DB_BACKEND", "postgres").strip().lower()
SQLITE_PATH = os.environ.get("SQLITE_PATH", "/data/listsync.db")
DATABASE_URL = os.environ.get("DATABASE_URL")
DB_BACKEND_EFFECTIVE = DB_BACKEND if DB_BACKEND in {"postgres", "sqlite"} else "postgres"
AUTO_MIGRATE_ON_STARTUP = _get_bool("AUTO_MIGRATE_ON_STARTUP", True)

# Authentication is terminated upstream; the gateway forwards the user id
TRUSTED_USER_HEADER = os.environ.get("TRUSTED_USER_HEADER", "X-User-Id")

# Push limits
MAX_PUSH_CHANGES = _get_int("MAX_PUSH_CHANGES", 2000)
MAX_BATCH_SUB_ITEMS = _get_int("MAX_BATCH_SUB_ITEMS", 500)
MAX_PAYLOAD_BYTES = _get_int("MAX_PAYLOAD_BYTES", 200000)

# Pull settings
SYNC_PULL_PAGE_SIZE = _get_int("SYNC_PULL_PAGE_SIZE", 1000)
SYNC_PULL_OVERLAP_MS = _get_int("SYNC_PULL_OVERLAP_MS", 1000)

# Per-user mutation lock
SYNC_LOCK_TTL_SECONDS = _get_float("SYNC_LOCK_TTL_SECONDS", 30.0)
SYNC_LOCK_WAIT_SECONDS = _get_float("SYNC_LOCK_WAIT_SECONDS", 2.0)

# Adaptive throttling
SYNC_THROTTLE_ENABLED = _get_bool("SYNC_THROTTLE_ENABLED", True)
SYNC_RATE_LIMIT_REQUESTS = _get_int("SYNC_RATE_LIMIT_REQUESTS", 30)
SYNC_RATE_LIMIT_WINDOW_SECONDS = _get_int("SYNC_RATE_LIMIT_WINDOW_SECONDS", 60)
SYNC_MIN_INTERVAL_SECONDS = _get_float("SYNC_MIN_INTERVAL_SECONDS", 0.0)
SYNC_MAX_ACTIVE_CONNECTIONS = _get_int("SYNC_MAX_ACTIVE_CONNECTIONS", 500)
SYNC_SLOW_RESPONSE_MS = _get_int("SYNC_SLOW_RESPONSE_MS", 10000)
SYNC_SLOW_LOG_MS = _get_int("SYNC_SLOW_LOG_MS", 5000)
SYNC_MAX_ERROR_RATE = _get_float("SYNC_MAX_ERROR_RATE", 0.1)
SYNC_METRICS_WINDOW = _get_int("SYNC_METRICS_WINDOW", 100)
SYNC_ERROR_WINDOW_SECONDS = _get_int("SYNC_ERROR_WINDOW_SECONDS", 300)

# Pull response cache
SYNC_CACHE_ENABLED = _get_bool("SYNC_CACHE_ENABLED", True)
SYNC_CACHE_TTL_SECONDS = _get_int("SYNC_CACHE_TTL_SECONDS", 300)
SYNC_CACHE_MAX_ENTRIES = _get_int("SYNC_CACHE_MAX_ENTRIES", 10000)
SYNC_CACHE_FILE = os.environ.get("SYNC_CACHE_FILE", "")
SYNC_CACHE_PERSIST_SECONDS = _get_int("SYNC_CACHE_PERSIST_SECONDS", 300)
SYNC_CACHE_CLEANUP_SECONDS = _get_int("SYNC_CACHE_CLEANUP_SECONDS", 60)
REDIS_URL = os.environ.get("VALKEY_URL") or os.environ.get("REDIS_URL")
REDIS_FAIL_OPEN = _get_bool("REDIS_FAIL_OPEN", True)

# Embedding side effects
EMBEDDING_NOTIFY_MODE = os.environ.get("EMBEDDING_NOTIFY_MODE", "queue").strip().lower()
AI_SERVER_URL = os.environ.get("AI_SERVER_URL", "http://ai-server:8000")
EMBEDDING_TIMEOUT_SECONDS = _get_float("EMBEDDING_TIMEOUT_SECONDS", 5.0)
EMBEDDING_FAILURE_THRESHOLD = _get_int("EMBEDDING_FAILURE_THRESHOLD", 5)
EMBEDDING_COOLDOWN_SECONDS = _get_int("EMBEDDING_COOLDOWN_SECONDS", 60)


def validate_and_prepare_config() -> None:
    """Validate configuration and apply derived settings at startup."""
    global DATABASE_URL, DB_BACKEND_EFFECTIVE

    errors = []
    if DB_BACKEND not in {"postgres", "sqlite"}:
        errors.append("DB_BACKEND must be 'postgres' or 'sqlite'")

    if not DATABASE_URL:
        if DB_BACKEND == "sqlite":
            if not SQLITE_PATH:
                errors.append("SQLITE_PATH environment variable is required for sqlite")
            else:
                DATABASE_URL = f"sqlite:///{SQLITE_PATH}"
        else:
            errors.append("DATABASE_URL environment variable is required")
    else:
        is_sqlite_url = DATABASE_URL.lower().startswith("sqlite")
        if DB_BACKEND == "sqlite" and not is_sqlite_url:
            errors.append("DATABASE_URL must be a sqlite URL when DB_BACKEND=sqlite")
        if DB_BACKEND == "postgres" and is_sqlite_url:
            errors.append("DATABASE_URL must be a postgres URL when DB_BACKEND=postgres")

    if EMBEDDING_NOTIFY_MODE not in {"queue", "http", "none"}:
        errors.append("EMBEDDING_NOTIFY_MODE must be 'queue', 'http', or 'none'")
    if SYNC_PULL_PAGE_SIZE <= 0:
        errors.append("SYNC_PULL_PAGE_SIZE must be positive")
    if SYNC_LOCK_TTL_SECONDS <= 0:
        errors.append("SYNC_LOCK_TTL_SECONDS must be positive")

    DB_BACKEND_EFFECTIVE = DB_BACKEND if DB_BACKEND in {"postgres", "sqlite"} else "postgres"

    if errors:
        raise RuntimeError("Configuration invalid: " + "; ".join(errors))
