"""Dependency stubs for the API routers.

Each stub raises until :func:`wire_dependencies` overrides it with the
daemon's live object; tests override them the same way.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime

from fastapi import FastAPI

from room_overview.config import AppConfig
from room_overview.scheduler import SyncScheduler
from room_overview.snapshot import SnapshotReader


def get_reader() -> SnapshotReader:
    """Dependency stub -- overridden at app startup or in tests."""
    raise RuntimeError("SnapshotReader not initialized")


def get_scheduler() -> SyncScheduler:
    """Dependency stub -- overridden at app startup or in tests."""
    raise RuntimeError("SyncScheduler not initialized")


def get_config() -> AppConfig:
    """Dependency stub -- overridden at app startup or in tests."""
    raise RuntimeError("AppConfig not initialized")


def get_clock() -> Callable[[], datetime]:
    return lambda: datetime.now(UTC)


def wire_dependencies(
    app: FastAPI,
    *,
    reader: SnapshotReader,
    scheduler: SyncScheduler,
    config: AppConfig,
    clock: Callable[[], datetime] | None = None,
) -> None:
    app.dependency_overrides[get_reader] = lambda: reader
    app.dependency_overrides[get_scheduler] = lambda: scheduler
    app.dependency_overrides[get_config] = lambda: config
    if clock is not None:
        app.dependency_overrides[get_clock] = lambda: clock
