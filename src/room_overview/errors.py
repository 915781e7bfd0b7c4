"""Error taxonomy for sync cycles.

Every failure a cycle can hit is a :class:`SyncError` carrying an
:class:`ErrorKind`. The scheduler decides its retry policy from the kind
alone, so new concrete errors only need to pick the right base class.
"""

from __future__ import annotations

import enum


class ErrorKind(enum.StrEnum):
    """Coarse failure classes driving the scheduler's retry policy."""

    TRANSIENT_UPSTREAM = "transient_upstream"
    AUTH_FAILURE = "auth_failure"
    STORE_UNAVAILABLE = "store_unavailable"
    DATA_INTEGRITY = "data_integrity"


class SyncError(RuntimeError):
    """Base error for anything that aborts a sync cycle."""

    kind: ErrorKind = ErrorKind.TRANSIENT_UPSTREAM


class FetchError(SyncError):
    """Raised when the upstream booking set cannot be retrieved."""


class UpstreamNetworkError(FetchError):
    """Connection failure, timeout, rate limiting or upstream 5xx."""

    kind = ErrorKind.TRANSIENT_UPSTREAM


class UpstreamUnauthorizedError(FetchError):
    """The upstream service rejected our credentials."""

    kind = ErrorKind.AUTH_FAILURE

    def __init__(self, *, status_code: int, message: str) -> None:
        self.status_code = status_code
        self.message = message
        super().__init__(f"Upstream rejected credentials ({status_code}): {message}")


class MalformedResponseError(FetchError):
    """The upstream response does not match the expected schema."""

    kind = ErrorKind.TRANSIENT_UPSTREAM


class DuplicateBookingError(SyncError):
    """One fetch returned the same booking id with conflicting contents."""

    kind = ErrorKind.DATA_INTEGRITY

    def __init__(self, booking_id: int) -> None:
        self.booking_id = booking_id
        super().__init__(f"Booking id {booking_id} appears more than once with different fields")


class StoreError(SyncError):
    """Base error for booking store failures."""


class StoreUnavailableError(StoreError):
    """The underlying database could not be reached or refused the operation."""

    kind = ErrorKind.STORE_UNAVAILABLE


class StoreConstraintError(StoreError):
    """A write violated a store invariant; the delta was rolled back."""

    kind = ErrorKind.DATA_INTEGRITY
