"""Diff fetched bookings against the stored snapshot and apply the result.

The upstream service is the single source of truth, so the diff needs no
tie-breaking: bookings are partitioned by ``booking_id`` into inserts,
updates (full row replace) and deletes. The store applies the resulting
delta as one atomic unit.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict

from room_overview.errors import DuplicateBookingError
from room_overview.models import Booking

if TYPE_CHECKING:
    from room_overview.store import BookingStore

logger = logging.getLogger(__name__)


class BookingDelta(BaseModel):
    """Mutations that move the store from one snapshot to the next."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    inserts: tuple[Booking, ...] = ()
    updates: tuple[Booking, ...] = ()
    deletes: tuple[int, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not (self.inserts or self.updates or self.deletes)

    def __len__(self) -> int:
        return len(self.inserts) + len(self.updates) + len(self.deletes)


class ReconcileResult(BaseModel):
    """Outcome summary of one reconcile-and-apply pass."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    inserted: int
    updated: int
    deleted: int
    unchanged: int
    version: int


def _index_by_id(bookings: Iterable[Booking], *, strict: bool) -> dict[int, Booking]:
    indexed: dict[int, Booking] = {}
    for booking in bookings:
        previous = indexed.get(booking.booking_id)
        if previous is not None and previous != booking and strict:
            raise DuplicateBookingError(booking.booking_id)
        indexed[booking.booking_id] = booking
    return indexed


def reconcile(current: Iterable[Booking], fetched: Iterable[Booking]) -> BookingDelta:
    """Compute the delta turning *current* into exactly *fetched*.

    - id only in *fetched* → insert
    - id only in *current* → delete
    - id in both with different fields → update
    - id in both and equal → no-op

    Identical duplicates in *fetched* collapse; conflicting duplicates raise
    :class:`DuplicateBookingError`.
    """
    stored = _index_by_id(current, strict=False)
    incoming = _index_by_id(fetched, strict=True)

    stored_ids = stored.keys()
    incoming_ids = incoming.keys()

    inserts = tuple(incoming[i] for i in sorted(incoming_ids - stored_ids))
    deletes = tuple(sorted(stored_ids - incoming_ids))
    updates = tuple(
        incoming[i] for i in sorted(incoming_ids & stored_ids) if incoming[i] != stored[i]
    )
    return BookingDelta(inserts=inserts, updates=updates, deletes=deletes)


class Reconciler:
    """Applies fetched booking sets to a :class:`~room_overview.store.BookingStore`."""

    def __init__(self, store: BookingStore) -> None:
        self._store = store

    async def sync(self, fetched: Iterable[Booking]) -> ReconcileResult:
        fetched = list(fetched)
        snapshot = await self._store.snapshot()
        delta = reconcile(snapshot.bookings, fetched)
        unchanged = len(snapshot) - len(delta.deletes) - len(delta.updates)

        logger.debug("Stored: %s", snapshot.bookings)
        logger.debug("Fetched: %s", fetched)

        if delta.is_empty:
            logger.debug("No booking changes (version=%d)", snapshot.version)
            return ReconcileResult(
                inserted=0,
                updated=0,
                deleted=0,
                unchanged=unchanged,
                version=snapshot.version,
            )

        version = await self._store.apply(delta)

        previous = snapshot.by_id()
        for booking in delta.inserts:
            logger.info("Inserted new booking: %r", booking)
        for booking in delta.updates:
            logger.info(
                "Updated booking %d: %r -> %r",
                booking.booking_id,
                previous[booking.booking_id],
                booking,
            )
        for booking_id in delta.deletes:
            logger.info("Deleted booking %d (no longer upstream)", booking_id)

        return ReconcileResult(
            inserted=len(delta.inserts),
            updated=len(delta.updates),
            deleted=len(delta.deletes),
            unchanged=unchanged,
            version=version,
        )
