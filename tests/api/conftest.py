"""Fixtures for API tests: a seeded store, an idle scheduler and the app under test."""

from __future__ import annotations

from datetime import UTC, datetime

import httpx
import pytest
from fastapi import FastAPI

from room_overview.api import create_app
from room_overview.reconciler import Reconciler
from room_overview.scheduler import SyncPolicy, SyncScheduler
from room_overview.snapshot import SnapshotReader

# 09:30 in Berlin
NOW = datetime(2026, 3, 2, 8, 30, tzinfo=UTC)


@pytest.fixture
def api_store(store_factory, make_booking):
    return store_factory(
        [
            make_booking(booking_id=1, title="Choir", resource_id=10, start="09:00", end="10:00"),
            make_booking(booking_id=2, title="Youth", resource_id=11, start="17:00", end="19:00"),
            make_booking(booking_id=3, title="Hidden", resource_id=99, start="12:00", end="13:00"),
            make_booking(booking_id=4, title="Early", resource_id=10, start="06:00", end="07:00"),
        ]
    )


@pytest.fixture
def scheduler(api_store, fetcher_factory) -> SyncScheduler:
    return SyncScheduler(
        fetcher_factory([]),
        Reconciler(api_store),
        policy=SyncPolicy(pull_frequency_seconds=3600),
        clock=lambda: NOW,
    )


@pytest.fixture
def app(api_store, scheduler, app_config) -> FastAPI:
    return create_app(
        reader=SnapshotReader(api_store),
        scheduler=scheduler,
        config=app_config,
        clock=lambda: NOW,
    )


@pytest.fixture
async def client(app):
    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app), base_url="http://test"
    ) as client:
        yield client
