"""FastAPI application factory.

The app is a thin presentation layer over a :class:`SnapshotReader` and a
:class:`SyncScheduler`; it never writes bookings. Lifecycle of the store and
the scheduler belongs to the daemon, so the app has no lifespan of its own.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime

from fastapi import FastAPI

from room_overview import __version__
from room_overview.api.deps import wire_dependencies
from room_overview.api.middleware import register_error_handlers
from room_overview.api.models import HealthResponse
from room_overview.api.routers.bookings import router as bookings_router
from room_overview.api.routers.ics import router as ics_router
from room_overview.api.routers.pages import router as pages_router
from room_overview.api.routers.sync import router as sync_router
from room_overview.config import AppConfig
from room_overview.scheduler import SyncScheduler
from room_overview.snapshot import SnapshotReader

logger = logging.getLogger(__name__)


def create_app(
    *,
    reader: SnapshotReader,
    scheduler: SyncScheduler,
    config: AppConfig,
    clock: Callable[[], datetime] | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Parameters
    ----------
    reader:
        Snapshot source for every page, feed and JSON listing.
    scheduler:
        Sync engine, used for status and manual triggers.
    config:
        Rooms, timezone and calendar naming.
    clock:
        Optional override of "now" for rendering.
    """
    app = FastAPI(
        title="room-overview",
        version=__version__,
    )
    app.router.redirect_slashes = False

    register_error_handlers(app)
    wire_dependencies(app, reader=reader, scheduler=scheduler, config=config, clock=clock)

    app.include_router(pages_router)
    app.include_router(ics_router)
    app.include_router(bookings_router)
    app.include_router(sync_router)

    @app.get("/api/health", response_model=HealthResponse)
    async def health() -> HealthResponse:
        return HealthResponse()

    return app
