"""
Root endpoint with service metadata.
"""

from __future__ import annotations

from fastapi import APIRouter

import listsync.config as config
from listsync import __version__
from listsync.schema_registry import REGISTRY, SCHEMA_VERSION


router = APIRouter()


@router.get("/")
async def root():
    """Root endpoint with service info."""
    return {
        "service": "ListSync",
        "version": __version__,
        "description": "Offline-first list synchronization engine",
        "schema_version": SCHEMA_VERSION,
        "tables": sorted(REGISTRY),
        "auth_header": config.TRUSTED_USER_HEADER,
        "endpoints": {
            "health": "/health",
            "health_deps": "/health/deps",
            "push": "/sync/push",
            "pull": "/sync/changes",
            "owner_lists": "/sync/users/{owner_id}/lists",
            "record": "/sync/record/{table_name}/{record_id}",
            "queue": "/sync/queue",
            "stats": "/sync/stats",
            "sync_health": "/sync/health",
        },
    }
