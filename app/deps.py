"""
Dependency helpers for the standalone FastAPI app.
"""

from __future__ import annotations

from typing import Optional

from fastapi import HTTPException, Request

import listsync.config as config
from listsync.errors import ValidationIssue
from listsync.governor import ConcurrencyGovernor
from listsync.services.content_notifier import ContentChangeNotifier, NullNotifier
from listsync.validators import validate_record_id


def get_current_user_id(request: Request) -> str:
    """Authenticated user id forwarded by the upstream gateway."""
    raw: Optional[str] = request.headers.get(config.TRUSTED_USER_HEADER)
    if not raw or not raw.strip():
        raise HTTPException(status_code=401, detail={"error": "unauthenticated"})
    try:
        return validate_record_id(raw, config.TRUSTED_USER_HEADER)
    except ValidationIssue as exc:
        raise HTTPException(status_code=401, detail={"error": "unauthenticated", "message": str(exc)}) from exc


def get_governor(request: Request) -> ConcurrencyGovernor:
    governor = getattr(request.app.state, "governor", None)
    if governor is None:
        raise RuntimeError("Concurrency governor not initialized")
    return governor


def get_notifier(request: Request) -> ContentChangeNotifier:
    return getattr(request.app.state, "notifier", None) or NullNotifier()
