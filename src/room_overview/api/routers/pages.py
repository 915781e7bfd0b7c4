"""HTML overview of today's remaining bookings."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime

from fastapi import APIRouter, Depends, Request
from fastapi.responses import FileResponse, HTMLResponse

from room_overview.api.deps import get_clock, get_config, get_reader, get_scheduler
from room_overview.api.templating import STYLESHEET_PATH, templates
from room_overview.config import AppConfig
from room_overview.rendering import build_overview
from room_overview.scheduler import SyncScheduler
from room_overview.snapshot import SnapshotReader

router = APIRouter(tags=["pages"])


@router.get("/", response_class=HTMLResponse)
async def landing(
    request: Request,
    reader: SnapshotReader = Depends(get_reader),
    scheduler: SyncScheduler = Depends(get_scheduler),
    config: AppConfig = Depends(get_config),
    clock: Callable[[], datetime] = Depends(get_clock),
) -> HTMLResponse:
    now = clock()
    tz = config.web.tz
    snapshot = await reader.current(resource_ids=config.resource_ids)
    entries = build_overview(snapshot, config.rooms, now, tz)
    return templates.TemplateResponse(
        request,
        "landing.html",
        {
            "title": config.web.calendar_name,
            "entries": entries,
            "rooms": config.rooms,
            "now": now.astimezone(tz),
            "last_success_at": _local(scheduler.status.last_success_at, config),
        },
    )


@router.get("/style.css", include_in_schema=False)
async def stylesheet() -> FileResponse:
    return FileResponse(STYLESHEET_PATH, media_type="text/css")


def _local(value: datetime | None, config: AppConfig) -> datetime | None:
    return value.astimezone(config.web.tz) if value is not None else None
