"""
Sync protocol endpoints: push, pull and diagnostics.
"""

from __future__ import annotations

import asyncio
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

import listsync.config as config
from listsync.db import ping, session_scope
from listsync.errors import RetryLater, ValidationIssue
from listsync.governor import ConcurrencyGovernor
from listsync.schema_registry import SCHEMA_VERSION, get_table
from listsync.services import change_log
from listsync.services.content_notifier import ContentChangeNotifier, queue_stats
from listsync.services.pull_assembler import owner_snapshot, pull_changes, read_record
from listsync.services.push_reconciler import push_changes
from listsync.timestamps import parse_watermark
from listsync.validators import validate_push_envelope, validate_record_id
from app.deps import get_current_user_id, get_governor, get_notifier


router = APIRouter(prefix="/sync")


def _retry_response(exc: RetryLater) -> JSONResponse:
    return JSONResponse(
        status_code=429,
        content=exc.payload(),
        headers={"Retry-After": str(exc.retry_after)},
    )


def _validation_response(exc: ValidationIssue) -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content={
            "success": False,
            "committed": False,
            "error": "validation_error",
            "message": str(exc),
            "field": exc.field,
            "error_type": exc.error_type,
            "results": [],
        },
    )


@router.post("/push")
async def push(
    request: Request,
    user_id: str = Depends(get_current_user_id),
    governor: ConcurrencyGovernor = Depends(get_governor),
    notifier: ContentChangeNotifier = Depends(get_notifier),
):
    """Apply a batch of client mutations in one transaction."""
    try:
        body = await request.json()
    except ValueError:
        return _validation_response(ValidationIssue("Request body must be valid JSON", field="body"))
    try:
        items = validate_push_envelope(body)
    except ValidationIssue as exc:
        return _validation_response(exc)

    try:
        async with governor.admit(user_id, "/sync/push") as ticket:
            async with governor.mutation(user_id):
                outcome = await asyncio.to_thread(push_changes, user_id, items)
            ticket.failed = not outcome.committed
    except RetryLater as exc:
        return _retry_response(exc)

    if not outcome.committed:
        return JSONResponse(
            status_code=500,
            content={
                "success": False,
                "committed": False,
                "error": outcome.error,
                "message": "Push rolled back; per-item results are advisory",
                "results": outcome.results,
            },
        )

    await governor.invalidate(outcome.touched_user_ids)
    await asyncio.to_thread(outcome.pending.dispatch, notifier)
    config.logger.info(f"Push for user {user_id}: {len(items)} changes applied")
    return {
        "success": True,
        "committed": True,
        "results": outcome.results,
        "message": f"Processed {len(items)} changes",
    }


@router.get("/changes")
async def changes(
    last_pulled_at: Optional[str] = None,
    live: bool = False,
    user_id: str = Depends(get_current_user_id),
    governor: ConcurrencyGovernor = Depends(get_governor),
):
    """Deltas visible to the caller since `last_pulled_at`."""
    watermark = parse_watermark(last_pulled_at)
    try:
        async with governor.admit(user_id, "/sync/changes"):
            if not live:
                cached = await governor.cached_pull(user_id, watermark)
                if cached is not None:
                    return cached
            response = await asyncio.to_thread(pull_changes, user_id, watermark)
            if not live:
                await governor.store_pull(user_id, watermark, response)
    except RetryLater as exc:
        return _retry_response(exc)
    except SQLAlchemyError as exc:
        config.logger.error(f"Pull for user {user_id} failed: {exc}")
        raise HTTPException(status_code=500, detail={"error": "pull_failed"}) from exc
    return response


@router.get("/users/{owner_id}/lists")
async def owner_lists(
    owner_id: str,
    user_id: str = Depends(get_current_user_id),
    governor: ConcurrencyGovernor = Depends(get_governor),
):
    """Live view of another user's lists; never served from cache."""
    try:
        owner_id = validate_record_id(owner_id, "owner_id")
    except ValidationIssue as exc:
        return _validation_response(exc)
    try:
        async with governor.admit(user_id, "/sync/users/lists"):
            return await asyncio.to_thread(owner_snapshot, user_id, owner_id)
    except RetryLater as exc:
        return _retry_response(exc)


@router.get("/record/{table_name}/{record_id}")
async def record(
    table_name: str,
    record_id: str,
    user_id: str = Depends(get_current_user_id),
):
    """One record the caller may read."""
    if get_table(table_name) is None:
        raise HTTPException(status_code=404, detail={"error": "unknown_table", "table_name": table_name})
    data = await asyncio.to_thread(read_record, user_id, table_name, record_id)
    if data is None:
        raise HTTPException(status_code=404, detail={"error": "not_found"})
    return {"table_name": table_name, "record": data}


def _queue_snapshot() -> dict:
    with session_scope() as db:
        return queue_stats(db)


def _change_stats() -> dict:
    with session_scope() as db:
        return change_log.recent_stats(db)


@router.get("/queue")
async def queue_status(
    governor: ConcurrencyGovernor = Depends(get_governor),
    notifier: ContentChangeNotifier = Depends(get_notifier),
):
    """Lock count, cache size and embedding queue depth."""
    status = await governor.status()
    return {
        "active_locks": status["active_locks"],
        "lock_backend": status["lock_backend"],
        "cache_size": status["cache"].get("size", 0),
        "embedding_queue": await asyncio.to_thread(_queue_snapshot),
        "notifier": notifier.status(),
    }


@router.get("/stats")
async def stats(governor: ConcurrencyGovernor = Depends(get_governor)):
    """Governor metrics plus change-log activity over the last 24 hours."""
    return {
        "governor": await governor.status(),
        "change_log": await asyncio.to_thread(_change_stats),
        "schema_version": SCHEMA_VERSION,
    }


@router.get("/health")
async def sync_health(governor: ConcurrencyGovernor = Depends(get_governor)):
    """Synthetic store round-trip plus governor status."""
    db_health = await asyncio.to_thread(ping)
    status = await governor.status()
    body = {
        "status": "healthy" if db_health.get("ok") else "unhealthy",
        "database": db_health,
        "active_locks": status["active_locks"],
        "cache_size": status["cache"].get("size", 0),
        "throttle": status["throttle"],
    }
    if not db_health.get("ok"):
        return JSONResponse(status_code=503, content=body)
    return body
