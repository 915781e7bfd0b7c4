"""Pydantic response models for the JSON API."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from room_overview.models import Booking


class ApiMeta(BaseModel):
    """Extensible metadata bag attached to every API response."""

    model_config = {"extra": "allow"}


class ApiResponse[T](BaseModel):
    """Generic API response wrapper.

    All successful responses follow ``{"data": T, "meta": {...}}``.
    """

    data: T
    meta: ApiMeta = Field(default_factory=ApiMeta)


class ErrorDetail(BaseModel):
    """Structured error payload."""

    code: str
    message: str
    error_id: str | None = None


class ErrorResponse(BaseModel):
    """Standard error response envelope."""

    error: ErrorDetail


class HealthResponse(BaseModel):
    status: str = "ok"


class BookingsPayload(BaseModel):
    """A (possibly filtered) snapshot as served by ``GET /api/bookings``."""

    version: int
    applied_at: datetime | None = None
    bookings: list[Booking]


class SyncTriggerResponse(BaseModel):
    accepted: bool = True
    running: bool
