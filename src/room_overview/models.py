"""Booking value types shared by the fetcher, reconciler, store and readers.

A :class:`Booking` is immutable for the lifetime of a sync cycle. All
timestamps are timezone-aware and normalised to UTC on construction, so two
bookings compare equal field-for-field regardless of the offset the upstream
service reported them in.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from datetime import UTC, datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


def _require_aware_utc(value: datetime) -> datetime:
    if value.tzinfo is None or value.tzinfo.utcoffset(value) is None:
        raise ValueError("timestamp must be timezone-aware")
    return value.astimezone(UTC)


class Booking(BaseModel):
    """One upstream reservation of a resource for a time interval."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    booking_id: int
    title: str
    resource_id: int
    start_time: datetime
    end_time: datetime

    @field_validator("start_time", "end_time")
    @classmethod
    def _normalize_timestamp(cls, value: datetime) -> datetime:
        return _require_aware_utc(value)

    @model_validator(mode="after")
    def _check_interval(self) -> Booking:
        if self.start_time >= self.end_time:
            raise ValueError(
                f"booking {self.booking_id}: start_time must be before end_time "
                f"({self.start_time.isoformat()} >= {self.end_time.isoformat()})"
            )
        return self

    def intersects(self, window: TimeWindow) -> bool:
        """Return True when the booking overlaps *window* (closed interval)."""
        return self.start_time <= window.end and window.start <= self.end_time


class TimeWindow(BaseModel):
    """A closed time interval ``[start, end]`` bounding a fetch or a read."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    start: datetime
    end: datetime

    @field_validator("start", "end")
    @classmethod
    def _normalize_timestamp(cls, value: datetime) -> datetime:
        return _require_aware_utc(value)

    @model_validator(mode="after")
    def _check_order(self) -> TimeWindow:
        if self.start >= self.end:
            raise ValueError("window start must be before window end")
        return self


def _sort_key(booking: Booking) -> tuple[datetime, int]:
    return booking.start_time, booking.booking_id


class BookingSnapshot(BaseModel):
    """Point-in-time view of the store as of one fully applied sync cycle.

    ``version`` increases by one with every committed non-empty apply, so
    consumers can tell two snapshots apart without comparing their rows.
    ``applied_at`` is ``None`` for a store that has never been written.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    version: int = Field(default=0, ge=0)
    applied_at: datetime | None = None
    bookings: tuple[Booking, ...] = ()

    @field_validator("bookings")
    @classmethod
    def _sort_bookings(cls, value: tuple[Booking, ...]) -> tuple[Booking, ...]:
        return tuple(sorted(value, key=_sort_key))

    @classmethod
    def of(
        cls,
        bookings: Iterable[Booking],
        *,
        version: int = 0,
        applied_at: datetime | None = None,
    ) -> BookingSnapshot:
        return cls(version=version, applied_at=applied_at, bookings=tuple(bookings))

    def __len__(self) -> int:
        return len(self.bookings)

    def by_id(self) -> Mapping[int, Booking]:
        return {booking.booking_id: booking for booking in self.bookings}

    def filter(
        self,
        *,
        resource_ids: Iterable[int] | None = None,
        window: TimeWindow | None = None,
    ) -> BookingSnapshot:
        """Return a snapshot with the same version restricted to matching bookings."""
        wanted = set(resource_ids) if resource_ids is not None else None
        selected = [
            booking
            for booking in self.bookings
            if (wanted is None or booking.resource_id in wanted)
            and (window is None or booking.intersects(window))
        ]
        return self.model_copy(update={"bookings": tuple(selected)})
