"""Durable booking store backed by PostgreSQL.

The store has exactly one writer (the reconciler, serialised by the
scheduler) and any number of concurrent readers. ``apply()`` commits a whole
delta plus a version bump in one transaction; ``snapshot()`` reads the
version row and the booking rows inside one ``REPEATABLE READ`` transaction,
so a reader sees either the state before a commit or after it, never a mix.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Any, Protocol

import asyncpg

from room_overview.errors import StoreConstraintError, StoreUnavailableError
from room_overview.models import Booking, BookingSnapshot
from room_overview.reconciler import BookingDelta

logger = logging.getLogger(__name__)

_SELECT_STATE = "SELECT version, applied_at FROM booking_store_state WHERE id = 1"
_SELECT_BOOKINGS = """
    SELECT booking_id, title, resource_id, start_time, end_time
    FROM bookings
    ORDER BY start_time, booking_id
"""
_DELETE_BOOKINGS = "DELETE FROM bookings WHERE booking_id = ANY($1::bigint[])"
_UPDATE_BOOKING = """
    UPDATE bookings
    SET title = $2, resource_id = $3, start_time = $4, end_time = $5
    WHERE booking_id = $1
"""
_INSERT_BOOKING = """
    INSERT INTO bookings (booking_id, title, resource_id, start_time, end_time)
    VALUES ($1, $2, $3, $4, $5)
"""
_BUMP_VERSION = """
    INSERT INTO booking_store_state (id, version, applied_at)
    VALUES (1, 1, now())
    ON CONFLICT (id) DO UPDATE
        SET version = booking_store_state.version + 1,
            applied_at = EXCLUDED.applied_at
    RETURNING version
"""

# Failures that mean "the database is not there right now".
_UNAVAILABLE_ERRORS: tuple[type[BaseException], ...] = (
    OSError,
    TimeoutError,
    asyncpg.InterfaceError,
    asyncpg.PostgresConnectionError,
)


class BookingStore(Protocol):
    """Persistence contract shared by the reconciler and the snapshot reader."""

    async def snapshot(self) -> BookingSnapshot:
        """Return the full current booking set as one consistent view."""
        ...

    async def apply(self, delta: BookingDelta) -> int:
        """Apply *delta* atomically and return the new snapshot version."""
        ...


def _booking_from_row(row: Any) -> Booking:
    return Booking(
        booking_id=row["booking_id"],
        title=row["title"],
        resource_id=row["resource_id"],
        start_time=row["start_time"],
        end_time=row["end_time"],
    )


def _booking_args(booking: Booking) -> tuple[Any, ...]:
    return (
        booking.booking_id,
        booking.title,
        booking.resource_id,
        booking.start_time,
        booking.end_time,
    )


def _affected_rows(status: str) -> int:
    """Parse the row count out of an asyncpg command status like ``UPDATE 1``."""
    try:
        return int(status.rsplit(" ", 1)[-1])
    except (ValueError, AttributeError):
        return -1


class PostgresBookingStore:
    """``BookingStore`` implementation on an asyncpg pool."""

    def __init__(self, pool: asyncpg.Pool) -> None:
        self._pool = pool
        self._write_lock = asyncio.Lock()

    async def snapshot(self) -> BookingSnapshot:
        async def _read(conn: asyncpg.Connection) -> BookingSnapshot:
            async with conn.transaction(isolation="repeatable_read", readonly=True):
                state = await conn.fetchrow(_SELECT_STATE)
                rows = await conn.fetch(_SELECT_BOOKINGS)
            version = int(state["version"]) if state is not None else 0
            applied_at: datetime | None = state["applied_at"] if state is not None else None
            return BookingSnapshot.of(
                (_booking_from_row(row) for row in rows),
                version=version,
                applied_at=applied_at,
            )

        return await self._run("snapshot", _read)

    async def apply(self, delta: BookingDelta) -> int:
        async def _write(conn: asyncpg.Connection) -> int:
            async with conn.transaction():
                if delta.deletes:
                    status = await conn.execute(_DELETE_BOOKINGS, list(delta.deletes))
                    deleted = _affected_rows(status)
                    if deleted != len(delta.deletes):
                        raise StoreConstraintError(
                            f"Expected to delete {len(delta.deletes)} booking(s), "
                            f"deleted {deleted}"
                        )
                for booking in delta.updates:
                    status = await conn.execute(_UPDATE_BOOKING, *_booking_args(booking))
                    if _affected_rows(status) != 1:
                        raise StoreConstraintError(
                            f"Update of booking {booking.booking_id} matched no stored row"
                        )
                if delta.inserts:
                    await conn.executemany(
                        _INSERT_BOOKING,
                        [_booking_args(booking) for booking in delta.inserts],
                    )
                return int(await conn.fetchval(_BUMP_VERSION))

        async with self._write_lock:
            version = await self._run("apply", _write)
        logger.debug(
            "Applied delta (inserts=%d, updates=%d, deletes=%d) -> version %d",
            len(delta.inserts),
            len(delta.updates),
            len(delta.deletes),
            version,
        )
        return version

    async def count(self) -> int:
        async def _count(conn: asyncpg.Connection) -> int:
            return int(await conn.fetchval("SELECT count(*) FROM bookings"))

        return await self._run("count", _count)

    async def _run[T](
        self,
        operation: str,
        fn: Callable[[asyncpg.Connection], Awaitable[T]],
    ) -> T:
        """Run *fn* on a pooled connection, translating driver errors."""
        try:
            async with self._pool.acquire() as conn:
                return await fn(conn)
        except StoreConstraintError:
            raise
        except asyncpg.IntegrityConstraintViolationError as exc:
            raise StoreConstraintError(
                f"Booking store {operation} violated a constraint: {exc}"
            ) from exc
        except _UNAVAILABLE_ERRORS as exc:
            raise StoreUnavailableError(f"Booking store {operation} failed: {exc}") from exc
        except asyncpg.PostgresError as exc:
            raise StoreUnavailableError(
                f"Booking store {operation} rejected by database: {exc}"
            ) from exc
