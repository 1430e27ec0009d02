"""
Health and dependency endpoints.
"""

from __future__ import annotations

import asyncio
import os

from fastapi import APIRouter, HTTPException, Request

import listsync.config as config
from listsync import __version__
from listsync.db import DB, _get_schema_revisions, ping
from listsync.schema_registry import SCHEMA_VERSION


router = APIRouter()


def _check_db_health() -> dict:
    status = ping()
    if not status.get("ok"):
        return status

    try:
        current_rev, head_rev = _get_schema_revisions(DB.engine)
    except Exception as exc:
        return {"ok": False, "error": f"schema revision check failed: {exc}"}
    schema_ok = head_rev is None or current_rev == head_rev
    return {
        "ok": schema_ok,
        "backend": config.DB_BACKEND_EFFECTIVE,
        "schema_revision": current_rev,
        "schema_expected": head_rev,
        "schema_up_to_date": schema_ok,
    }


@router.get("/health")
async def health():
    """Health check endpoint."""
    db_health = await asyncio.to_thread(_check_db_health)
    if not db_health.get("ok"):
        raise HTTPException(status_code=503, detail={"database": db_health})

    return {
        "status": "healthy",
        "service": "ListSync",
        "version": __version__,
        "instance_id": os.environ.get("LISTSYNC_INSTANCE_ID", "listsync-1"),
        "schema_version": SCHEMA_VERSION,
        "database": db_health,
    }


@router.get("/health/deps")
async def health_deps(request: Request):
    """Dependency health: database plus the embedding notifier."""
    db_health = await asyncio.to_thread(_check_db_health)
    if not db_health.get("ok"):
        raise HTTPException(status_code=503, detail={"database": db_health})

    notifier = getattr(request.app.state, "notifier", None)
    return {
        "status": "healthy",
        "service": "ListSync",
        "database": db_health,
        "embedding_notifier": notifier.status() if notifier is not None else {"mode": "none"},
        "redis_configured": bool(config.REDIS_URL),
    }
