"""
Standalone FastAPI app wiring for ListSync.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

import listsync.config as config
from listsync.db import DB, init_db
from listsync.governor import ConcurrencyGovernor, build_governor_from_env
from listsync.schema_registry import check_registry
from listsync.services.content_notifier import ContentChangeNotifier, build_notifier
from app.middleware import configure_middleware
from app.routes.health import router as health_router
from app.routes.root import router as root_router
from app.routes.sync import router as sync_router


def create_app(
    manage_db: bool = True,
    governor: Optional[ConcurrencyGovernor] = None,
    notifier: Optional[ContentChangeNotifier] = None,
) -> FastAPI:
    """Build the app; tests pass `manage_db=False` with a pre-initialized DB."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Initialize on startup, cleanup on shutdown."""
        if manage_db:
            await asyncio.to_thread(init_db)
        registry = await asyncio.to_thread(check_registry, DB.engine)
        config.logger.info(f"Schema registry v{registry['version']} verified for {len(registry['tables'])} tables")

        app.state.governor = governor or build_governor_from_env()
        app.state.notifier = notifier or build_notifier()
        await app.state.governor.start()
        try:
            yield
        finally:
            await app.state.governor.stop()
            app.state.notifier.close()
            if manage_db and DB.engine:
                DB.engine.dispose()

    app = FastAPI(title="ListSync", redirect_slashes=False, lifespan=lifespan)
    configure_middleware(app)

    app.include_router(health_router)
    app.include_router(root_router)
    app.include_router(sync_router)
    return app


# =============================================================================
# ASGI Application (module-level for production deployment)
# =============================================================================

app = create_app()
