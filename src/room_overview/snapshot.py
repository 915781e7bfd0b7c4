"""Read-only snapshot access for the presentation layer."""

from __future__ import annotations

import logging
from collections.abc import Iterable

from room_overview.errors import StoreUnavailableError
from room_overview.models import BookingSnapshot, TimeWindow
from room_overview.store import BookingStore

logger = logging.getLogger(__name__)


class SnapshotReader:
    """Serve consistent, optionally filtered snapshots to renderers.

    Every call takes a fresh snapshot from the store, so readers only wait for
    an in-flight apply's commit. The newest snapshot served so far is kept in
    memory: when the store is unreachable it is served instead, and a store
    snapshot older than it is never handed out.
    """

    def __init__(self, store: BookingStore) -> None:
        self._store = store
        self._latest: BookingSnapshot | None = None

    @property
    def latest(self) -> BookingSnapshot | None:
        """The newest snapshot served so far, if any."""
        return self._latest

    async def current(
        self,
        *,
        resource_ids: Iterable[int] | None = None,
        window: TimeWindow | None = None,
    ) -> BookingSnapshot:
        snapshot = await self._load()
        if resource_ids is None and window is None:
            return snapshot
        return snapshot.filter(resource_ids=resource_ids, window=window)

    async def _load(self) -> BookingSnapshot:
        try:
            snapshot = await self._store.snapshot()
        except StoreUnavailableError as exc:
            if self._latest is None:
                raise
            logger.warning(
                "Booking store unavailable, serving cached snapshot version %d: %s",
                self._latest.version,
                exc,
            )
            return self._latest

        if self._latest is not None and snapshot.version < self._latest.version:
            logger.debug(
                "Ignoring snapshot version %d older than served version %d",
                snapshot.version,
                self._latest.version,
            )
            return self._latest
        self._latest = snapshot
        return snapshot
