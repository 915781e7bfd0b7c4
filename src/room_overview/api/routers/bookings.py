"""JSON view of the current booking snapshot."""

from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, Query

from room_overview.api.deps import get_config, get_reader
from room_overview.api.models import ApiMeta, ApiResponse, BookingsPayload
from room_overview.config import AppConfig
from room_overview.models import TimeWindow
from room_overview.snapshot import SnapshotReader

router = APIRouter(prefix="/api", tags=["bookings"])


@router.get("/bookings", response_model=ApiResponse[BookingsPayload])
async def list_bookings(
    resource_id: list[int] | None = Query(default=None),
    start: datetime | None = Query(default=None),
    end: datetime | None = Query(default=None),
    reader: SnapshotReader = Depends(get_reader),
    config: AppConfig = Depends(get_config),
) -> ApiResponse[BookingsPayload]:
    """Return stored bookings, optionally filtered by room and time window.

    ``start`` and ``end`` must be given together as timezone-aware timestamps;
    a booking matches when it overlaps the closed interval.
    """
    if (start is None) != (end is None):
        raise ValueError("start and end must be given together")
    window = TimeWindow(start=start, end=end) if start is not None and end is not None else None
    resource_ids = resource_id if resource_id else config.resource_ids

    snapshot = await reader.current(resource_ids=resource_ids, window=window)
    return ApiResponse[BookingsPayload](
        data=BookingsPayload(
            version=snapshot.version,
            applied_at=snapshot.applied_at,
            bookings=list(snapshot.bookings),
        ),
        meta=ApiMeta(count=len(snapshot)),
    )
