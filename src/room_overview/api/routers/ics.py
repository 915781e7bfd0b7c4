"""Subscribable iCalendar feeds, one for all rooms and one per room."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Response

from room_overview.api.deps import get_clock, get_config, get_reader
from room_overview.config import AppConfig, RoomConfig
from room_overview.rendering import ICS_CONTENT_TYPE, render_ics
from room_overview.snapshot import SnapshotReader

router = APIRouter(prefix="/ics", tags=["ics"])


async def _feed(
    reader: SnapshotReader,
    config: AppConfig,
    clock: Callable[[], datetime],
    rooms: list[RoomConfig],
    calendar_name: str,
    filename: str,
) -> Response:
    snapshot = await reader.current(resource_ids=[room.churchtools_id for room in rooms])
    body = render_ics(
        snapshot.bookings,
        config.rooms,
        calendar_name=calendar_name,
        # Stable per snapshot so unchanged feeds serialize identically.
        dtstamp=snapshot.applied_at or clock(),
    )
    return Response(
        content=body,
        media_type=ICS_CONTENT_TYPE,
        headers={
            "Content-Disposition": f'inline; filename="{filename}"',
            "X-Snapshot-Version": str(snapshot.version),
        },
    )


@router.get("/all.ics")
async def all_rooms_feed(
    reader: SnapshotReader = Depends(get_reader),
    config: AppConfig = Depends(get_config),
    clock: Callable[[], datetime] = Depends(get_clock),
) -> Response:
    return await _feed(
        reader, config, clock, config.rooms, config.web.calendar_name, "all.ics"
    )


@router.get("/{room_id}.ics")
async def room_feed(
    room_id: str,
    reader: SnapshotReader = Depends(get_reader),
    config: AppConfig = Depends(get_config),
    clock: Callable[[], datetime] = Depends(get_clock),
) -> Response:
    room = config.room_by_id(int(room_id)) if room_id.isdigit() else None
    if room is None:
        raise HTTPException(status_code=404, detail=f"Unknown room: {room_id}")
    return await _feed(
        reader,
        config,
        clock,
        [room],
        f"{config.web.calendar_name} - {room.name}",
        f"{room.churchtools_id}.ics",
    )
