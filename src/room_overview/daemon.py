"""Service orchestrator: wires config, database, sync engine and web server.

Startup sequence:

1. Configure logging
2. Initialize telemetry (traces and metrics)
3. Provision the database and open the connection pool
4. Run Alembic migrations
5. Build fetcher, store, reconciler, snapshot reader and scheduler
6. Start the sync loop
7. Start the uvicorn HTTP server

Shutdown runs the same steps in reverse.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

import uvicorn

from room_overview.api import create_app
from room_overview.config import AppConfig
from room_overview.core.logging import SERVICE_NAME, configure_logging
from room_overview.core.telemetry import init_metrics, init_telemetry
from room_overview.db import Database
from room_overview.fetcher import ChurchToolsFetcher, UpstreamFetcher
from room_overview.migrations import run_migrations
from room_overview.reconciler import Reconciler
from room_overview.scheduler import CycleOutcome, SyncPolicy, SyncScheduler, SyncStatusTracker
from room_overview.snapshot import SnapshotReader
from room_overview.store import PostgresBookingStore

logger = logging.getLogger(__name__)


def setup_observability(config: AppConfig) -> None:
    log_root = Path(config.logging.log_root) if config.logging.log_root else None
    configure_logging(config.logging.level, config.logging.format, log_root)
    init_telemetry(SERVICE_NAME)
    init_metrics(SERVICE_NAME)


def build_database(config: AppConfig) -> Database:
    """Database handle from ``[database]``, falling back to the environment."""
    db_config = config.database
    kwargs = {
        "db_name": db_config.name,
        "min_pool_size": db_config.min_pool_size,
        "max_pool_size": db_config.max_pool_size,
    }
    if db_config.url:
        return Database.from_url(db_config.url, **kwargs)
    return Database.from_env(**kwargs)


def build_fetcher(config: AppConfig) -> ChurchToolsFetcher:
    return ChurchToolsFetcher(
        host=config.churchtools.host,
        login_token=config.churchtools.login_token,
        resource_ids=config.resource_ids,
        timeout_seconds=config.churchtools.request_timeout_seconds,
        timezone=config.web.tz,
    )


async def open_database(database: Database) -> PostgresBookingStore:
    """Provision, connect and migrate; return a store over the new pool."""
    await database.provision()
    pool = await database.connect()
    await run_migrations(database.url)
    return PostgresBookingStore(pool)


class RoomOverviewDaemon:
    """Central orchestrator for one room-overview instance."""

    def __init__(
        self,
        config: AppConfig,
        *,
        database: Database | None = None,
        fetcher: UpstreamFetcher | None = None,
    ) -> None:
        self.config = config
        self.db = database
        self.fetcher = fetcher
        self.store: PostgresBookingStore | None = None
        self.reader: SnapshotReader | None = None
        self.scheduler: SyncScheduler | None = None
        self._server: uvicorn.Server | None = None
        self._server_task: asyncio.Task | None = None

    async def start(self) -> None:
        """Execute the full startup sequence.

        Steps execute in order. A failure at any step tears down what was
        already started and re-raises.
        """
        # 1-2. Logging and telemetry
        setup_observability(self.config)
        logger.info(
            "Starting room-overview for %d room(s) from %s",
            len(self.config.rooms),
            self.config.churchtools.host,
        )

        try:
            # 3-4. Database and migrations
            if self.db is None:
                self.db = build_database(self.config)
            self.store = await open_database(self.db)

            # 5. Sync engine
            if self.fetcher is None:
                self.fetcher = build_fetcher(self.config)
            self.reader = SnapshotReader(self.store)
            self.scheduler = SyncScheduler(
                self.fetcher,
                Reconciler(self.store),
                policy=SyncPolicy.from_config(self.config),
                tracker=SyncStatusTracker(),
            )

            # 6. Sync loop
            await self.scheduler.start()

            # 7. HTTP server
            await self._start_http_server()
        except Exception:
            logger.exception("Startup failed; releasing resources")
            await self.shutdown()
            raise

    async def _start_http_server(self) -> None:
        """Start uvicorn as a background task so that ``start()`` returns immediately."""
        assert self.reader is not None and self.scheduler is not None
        app = create_app(reader=self.reader, scheduler=self.scheduler, config=self.config)
        server_config = uvicorn.Config(
            app,
            host=self.config.web.addr,
            port=self.config.web.port,
            log_config=None,
            timeout_graceful_shutdown=5,
        )
        self._server = uvicorn.Server(server_config)
        self._server_task = asyncio.create_task(self._server.serve(), name="http-server")
        logger.info("HTTP server listening on %s:%d", self.config.web.addr, self.config.web.port)

    async def shutdown(self) -> None:
        """Graceful shutdown.

        1. Stop HTTP server
        2. Stop the sync loop (an in-flight fetch is abandoned)
        3. Close the upstream client
        4. Close DB pool
        """
        logger.info("Shutting down room-overview")

        if self._server is not None:
            self._server.should_exit = True
        if self._server_task is not None:
            try:
                await self._server_task
            except Exception:
                logger.exception("Error while stopping HTTP server")
            self._server_task = None
            self._server = None

        if self.scheduler is not None:
            await self.scheduler.stop()

        if self.fetcher is not None:
            try:
                await self.fetcher.shutdown()
            except Exception:
                logger.exception("Error while closing upstream client")

        if self.db is not None:
            await self.db.close()

        logger.info("Shutdown complete")


async def sync_once(
    config: AppConfig,
    *,
    database: Database | None = None,
    fetcher: UpstreamFetcher | None = None,
) -> CycleOutcome:
    """Run a single sync cycle against the configured database and return its outcome."""
    database = database or build_database(config)
    fetcher = fetcher or build_fetcher(config)
    try:
        store = await open_database(database)
        scheduler = SyncScheduler(
            fetcher,
            Reconciler(store),
            policy=SyncPolicy.from_config(config),
        )
        return await scheduler.run_cycle()
    finally:
        await fetcher.shutdown()
        await database.close()
