"""Sync engine status and manual trigger."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends

from room_overview.api.deps import get_scheduler
from room_overview.api.models import ApiResponse, SyncTriggerResponse
from room_overview.scheduler import SyncScheduler, SyncStatus

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/sync", tags=["sync"])


@router.get("/status", response_model=ApiResponse[SyncStatus])
async def sync_status(
    scheduler: SyncScheduler = Depends(get_scheduler),
) -> ApiResponse[SyncStatus]:
    return ApiResponse[SyncStatus](data=scheduler.status)


@router.post("", status_code=202, response_model=ApiResponse[SyncTriggerResponse])
async def trigger_sync(
    scheduler: SyncScheduler = Depends(get_scheduler),
) -> ApiResponse[SyncTriggerResponse]:
    """Request an immediate sync cycle; also resumes a loop parked on an auth failure."""
    logger.info("Manual sync requested")
    scheduler.trigger()
    return ApiResponse[SyncTriggerResponse](
        data=SyncTriggerResponse(running=scheduler.is_running),
    )
