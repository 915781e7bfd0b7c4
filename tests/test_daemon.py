"""Tests for the daemon startup/shutdown sequence and one-shot sync."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from room_overview.daemon import RoomOverviewDaemon, build_database, build_fetcher, sync_once
from room_overview.errors import ErrorKind, StoreUnavailableError, UpstreamNetworkError

pytestmark = pytest.mark.unit


@pytest.fixture
def database():
    db = MagicMock()
    db.close = AsyncMock()
    return db


@pytest.fixture
def patched_startup(monkeypatch, store):
    open_database = AsyncMock(return_value=store)
    monkeypatch.setattr("room_overview.daemon.open_database", open_database)
    monkeypatch.setattr("room_overview.daemon.setup_observability", lambda config: None)
    monkeypatch.setattr(RoomOverviewDaemon, "_start_http_server", AsyncMock())
    return open_database


async def _until_version(store, version: int) -> None:
    async def _poll() -> None:
        while store.version < version:
            await asyncio.sleep(0.005)

    await asyncio.wait_for(_poll(), timeout=2.0)


class TestBuilders:
    def test_fetcher_uses_configured_rooms_and_timezone(self, app_config):
        fetcher = build_fetcher(app_config)
        assert fetcher.name == "churchtools"
        assert fetcher._resource_ids == [10, 11]
        assert str(fetcher._timezone) == "Europe/Berlin"

    def test_database_from_config_url(self, config_data_factory):
        from room_overview.config import parse_config

        config = parse_config(
            config_data_factory(database={"url": "postgresql://u:p@db:5432/rooms"})
        )
        db = build_database(config)
        assert (db.host, db.db_name) == ("db", "rooms")

    def test_database_from_environment(self, app_config, monkeypatch):
        monkeypatch.setenv("DATABASE_URL", "postgresql://u:p@env-host:5432/env_db")
        db = build_database(app_config)
        assert (db.host, db.db_name) == ("env-host", "env_db")


class TestDaemon:
    async def test_start_syncs_and_shutdown_releases_everything(
        self, app_config, database, fetcher_factory, store, make_booking, patched_startup
    ):
        fetcher = fetcher_factory([make_booking(booking_id=1)])
        daemon = RoomOverviewDaemon(app_config, database=database, fetcher=fetcher)

        await daemon.start()
        try:
            patched_startup.assert_awaited_once_with(database)
            assert daemon.scheduler is not None and daemon.scheduler.is_running
            await _until_version(store, 1)
            assert (await daemon.reader.current()).version == 1
        finally:
            await daemon.shutdown()

        assert not daemon.scheduler.is_running
        assert fetcher.closed
        database.close.assert_awaited_once()

    async def test_failed_startup_releases_database(
        self, app_config, database, fetcher_factory, patched_startup
    ):
        patched_startup.side_effect = StoreUnavailableError("connection refused")
        fetcher = fetcher_factory([])
        daemon = RoomOverviewDaemon(app_config, database=database, fetcher=fetcher)

        with pytest.raises(StoreUnavailableError):
            await daemon.start()

        assert daemon.scheduler is None
        database.close.assert_awaited_once()


class TestSyncOnce:
    async def test_success(
        self, app_config, database, fetcher_factory, store, make_booking, patched_startup
    ):
        fetcher = fetcher_factory([make_booking(booking_id=1), make_booking(booking_id=2)])

        outcome = await sync_once(app_config, database=database, fetcher=fetcher)

        assert outcome.ok
        assert outcome.result is not None and outcome.result.inserted == 2
        assert set(store.rows) == {1, 2}
        assert fetcher.closed
        database.close.assert_awaited_once()

    async def test_failure_is_an_outcome_not_an_exception(
        self, app_config, database, fetcher_factory, store, patched_startup
    ):
        fetcher = fetcher_factory(UpstreamNetworkError("timeout"))

        outcome = await sync_once(app_config, database=database, fetcher=fetcher)

        assert outcome.error_kind == ErrorKind.TRANSIENT_UPSTREAM
        assert store.apply_calls == []
        assert fetcher.closed
