"""Shared fixtures: booking factory, in-memory store and fetcher doubles."""

from __future__ import annotations

import asyncio
import shutil
from collections.abc import Callable, Iterable
from datetime import UTC, datetime
from typing import Any

import pytest

from room_overview.config import AppConfig, parse_config
from room_overview.errors import StoreConstraintError, StoreUnavailableError
from room_overview.fetcher import UpstreamFetcher
from room_overview.models import Booking, BookingSnapshot, TimeWindow
from room_overview.reconciler import BookingDelta

docker_available = shutil.which("docker") is not None

BASE_DAY = datetime(2026, 3, 2, tzinfo=UTC)


def _at(hhmm: str) -> datetime:
    hours, minutes = (int(part) for part in hhmm.split(":"))
    return BASE_DAY.replace(hour=hours, minute=minutes)


def booking(
    booking_id: int = 1,
    title: str = "Choir",
    resource_id: int = 10,
    start: str = "09:00",
    end: str = "10:00",
) -> Booking:
    """Build a booking on 2026-03-02 (UTC) from ``HH:MM`` strings."""
    return Booking(
        booking_id=booking_id,
        title=title,
        resource_id=resource_id,
        start_time=_at(start),
        end_time=_at(end),
    )


class InMemoryBookingStore:
    """``BookingStore`` double with copy-on-write applies and fault injection.

    ``fail_after`` makes the next apply raise after that many row operations;
    ``unavailable`` makes every call raise ``StoreUnavailableError``.
    """

    def __init__(self, bookings: Iterable[Booking] = ()) -> None:
        self.rows: dict[int, Booking] = {b.booking_id: b for b in bookings}
        self.version = 0
        self.applied_at: datetime | None = None
        self.unavailable = False
        self.fail_after: int | None = None
        self.apply_calls: list[BookingDelta] = []
        self.snapshot_calls = 0

    async def snapshot(self) -> BookingSnapshot:
        self.snapshot_calls += 1
        if self.unavailable:
            raise StoreUnavailableError("store offline")
        return BookingSnapshot.of(
            self.rows.values(), version=self.version, applied_at=self.applied_at
        )

    async def apply(self, delta: BookingDelta) -> int:
        self.apply_calls.append(delta)
        if self.unavailable:
            raise StoreUnavailableError("store offline")

        working = dict(self.rows)
        operations = 0

        def _step() -> None:
            nonlocal operations
            if self.fail_after is not None and operations >= self.fail_after:
                self.fail_after = None
                raise StoreUnavailableError("connection lost mid-apply")
            operations += 1

        for booking_id in delta.deletes:
            _step()
            if working.pop(booking_id, None) is None:
                raise StoreConstraintError(f"delete of missing booking {booking_id}")
        for item in delta.updates:
            _step()
            if item.booking_id not in working:
                raise StoreConstraintError(f"update of missing booking {item.booking_id}")
            working[item.booking_id] = item
        for item in delta.inserts:
            _step()
            if item.booking_id in working:
                raise StoreConstraintError(f"duplicate booking {item.booking_id}")
            working[item.booking_id] = item

        self.rows = working
        self.version += 1
        self.applied_at = datetime.now(UTC)
        return self.version


class FetcherDouble(UpstreamFetcher):
    """Scripted fetcher: each call pops the next result (the last one repeats).

    A result is either a list of bookings or an exception to raise. Set
    ``gate`` to hold every fetch until the event is set.
    """

    def __init__(self, *results: list[Booking] | Exception) -> None:
        self.results: list[list[Booking] | Exception] = list(results) or [[]]
        self.windows: list[TimeWindow] = []
        self.gate: asyncio.Event | None = None
        self.started = asyncio.Event()
        self.in_flight = 0
        self.max_in_flight = 0
        self.closed = False

    @property
    def name(self) -> str:
        return "double"

    async def fetch(self, window: TimeWindow) -> list[Booking]:
        self.windows.append(window)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        self.started.set()
        try:
            if self.gate is not None:
                await self.gate.wait()
            result = self.results.pop(0) if len(self.results) > 1 else self.results[0]
            if isinstance(result, Exception):
                raise result
            return list(result)
        finally:
            self.in_flight -= 1

    async def shutdown(self) -> None:
        self.closed = True


def config_data(**overrides: Any) -> dict[str, Any]:
    data: dict[str, Any] = {
        "churchtools": {
            "host": "example.church.tools",
            "login_token": "secret-token",
            "pull_frequency_seconds": 60,
        },
        "web": {"timezone": "Europe/Berlin", "calendar_name": "Gemeindehaus"},
        "rooms": [
            {"churchtools_id": 10, "name": "Saal", "location_hint": "EG"},
            {"churchtools_id": 11, "name": "Jugendraum", "location_hint": "UG"},
        ],
    }
    data.update(overrides)
    return data


@pytest.fixture
def make_booking() -> Callable[..., Booking]:
    return booking


@pytest.fixture
def store() -> InMemoryBookingStore:
    return InMemoryBookingStore()


@pytest.fixture
def store_factory() -> Callable[..., InMemoryBookingStore]:
    return InMemoryBookingStore


@pytest.fixture
def fetcher_factory() -> Callable[..., FetcherDouble]:
    return FetcherDouble


@pytest.fixture
def app_config() -> AppConfig:
    return parse_config(config_data())


@pytest.fixture
def config_data_factory() -> Callable[..., dict[str, Any]]:
    return config_data
