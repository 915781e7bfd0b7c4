"""Timer-driven sync cycles with single-flight execution and backoff.

One background task runs cycles of fetch → reconcile → apply. A cycle is
never started while another one is outstanding: ``run_cycle()`` holds an
``asyncio.Lock`` for the whole fetch and apply, and the loop only re-arms its
timer after a cycle has finished. Cycle failures are converted into a
:class:`CycleOutcome` at this boundary and never escape to the caller.

Delay after a cycle (see :func:`compute_backoff`):

- success → ``pull_frequency_seconds``
- ``transient_upstream`` / ``store_unavailable`` → exponential backoff
- ``data_integrity`` → ``pull_frequency_seconds``
- ``auth_failure`` → parked until :meth:`SyncScheduler.trigger`
"""

from __future__ import annotations

import asyncio
import enum
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta, tzinfo
from datetime import time as dt_time
from typing import TYPE_CHECKING

from opentelemetry import trace
from pydantic import BaseModel, ConfigDict

from room_overview.core.telemetry import SyncMetrics, get_tracer
from room_overview.errors import ErrorKind, SyncError
from room_overview.fetcher import UpstreamFetcher
from room_overview.models import TimeWindow
from room_overview.reconciler import Reconciler, ReconcileResult

if TYPE_CHECKING:
    from room_overview.config import AppConfig

logger = logging.getLogger(__name__)

_BACKOFF_KINDS = frozenset({ErrorKind.TRANSIENT_UPSTREAM, ErrorKind.STORE_UNAVAILABLE})


def _utcnow() -> datetime:
    return datetime.now(UTC)


class SyncPhase(enum.StrEnum):
    """Where the current cycle is; ``IDLE`` between cycles."""

    IDLE = "idle"
    FETCHING = "fetching"
    RECONCILING = "reconciling"


@dataclass(frozen=True)
class SyncPolicy:
    """Timing knobs for the sync loop."""

    pull_frequency_seconds: float = 60.0
    window_days: int = 1
    timezone: tzinfo = UTC
    run_on_startup: bool = True
    backoff_base_seconds: float = 30.0
    backoff_max_seconds: float = 900.0

    @classmethod
    def from_config(cls, config: AppConfig) -> SyncPolicy:
        return cls(
            pull_frequency_seconds=config.churchtools.pull_frequency_seconds,
            window_days=config.churchtools.window_days,
            timezone=config.web.tz,
            run_on_startup=config.sync.run_on_startup,
            backoff_base_seconds=config.sync.backoff_base_seconds,
            backoff_max_seconds=config.sync.backoff_max_seconds,
        )


class CycleOutcome(BaseModel):
    """Result of one sync cycle, successful or not."""

    model_config = ConfigDict(frozen=True)

    started_at: datetime
    finished_at: datetime
    duration_ms: float
    result: ReconcileResult | None = None
    error: str | None = None
    error_kind: ErrorKind | None = None

    @property
    def ok(self) -> bool:
        return self.error_kind is None


class SyncStatus(BaseModel):
    """Observable state of the sync engine, served by ``/api/sync/status``."""

    model_config = ConfigDict(frozen=True)

    phase: SyncPhase = SyncPhase.IDLE
    running: bool = False
    last_attempt_at: datetime | None = None
    last_success_at: datetime | None = None
    last_error: str | None = None
    last_error_kind: ErrorKind | None = None
    consecutive_failures: int = 0
    next_attempt_at: datetime | None = None
    snapshot_version: int | None = None
    auth_blocked: bool = False
    last_result: ReconcileResult | None = None


class SyncStatusTracker:
    """Observability collaborator: keeps the latest :class:`SyncStatus` and emits metrics."""

    def __init__(self, metrics: SyncMetrics | None = None) -> None:
        self._status = SyncStatus()
        self._metrics = metrics or SyncMetrics()

    @property
    def status(self) -> SyncStatus:
        return self._status

    def _update(self, **changes: object) -> None:
        self._status = self._status.model_copy(update=changes)

    def set_running(self, running: bool) -> None:
        self._update(running=running)

    def set_phase(self, phase: SyncPhase) -> None:
        self._update(phase=phase)

    def begin_cycle(self, started_at: datetime) -> None:
        self._update(last_attempt_at=started_at, next_attempt_at=None)

    def set_next_attempt(self, when: datetime | None) -> None:
        self._update(next_attempt_at=when)

    def record(self, outcome: CycleOutcome) -> None:
        if outcome.ok:
            result = outcome.result
            self._update(
                last_success_at=outcome.finished_at,
                last_error=None,
                last_error_kind=None,
                consecutive_failures=0,
                auth_blocked=False,
                snapshot_version=result.version if result else self._status.snapshot_version,
                last_result=result,
            )
            self._metrics.record_cycle("success", outcome.duration_ms)
            if result is not None:
                self._metrics.record_changes(
                    inserted=result.inserted,
                    updated=result.updated,
                    deleted=result.deleted,
                )
            return

        self._update(
            last_error=outcome.error,
            last_error_kind=outcome.error_kind,
            consecutive_failures=self._status.consecutive_failures + 1,
            auth_blocked=outcome.error_kind == ErrorKind.AUTH_FAILURE,
        )
        self._metrics.record_cycle(str(outcome.error_kind), outcome.duration_ms)


def sync_window(now: datetime, tz: tzinfo, window_days: int) -> TimeWindow:
    """Window of *window_days* local days starting at today's midnight in *tz*."""
    if window_days < 1:
        raise ValueError("window_days must be at least 1")
    today = now.astimezone(tz).date()
    start = datetime.combine(today, dt_time.min, tzinfo=tz)
    end = datetime.combine(today + timedelta(days=window_days), dt_time.min, tzinfo=tz)
    return TimeWindow(start=start, end=end)


def compute_backoff(
    policy: SyncPolicy,
    error_kind: ErrorKind | None,
    consecutive_failures: int,
) -> float | None:
    """Seconds to wait before the next cycle, or ``None`` to wait for a manual trigger."""
    if error_kind is None or error_kind == ErrorKind.DATA_INTEGRITY:
        return policy.pull_frequency_seconds
    if error_kind == ErrorKind.AUTH_FAILURE:
        return None
    if error_kind in _BACKOFF_KINDS:
        exponent = max(consecutive_failures, 1) - 1
        # Cap the exponent so huge failure streaks cannot overflow the float.
        delay = policy.backoff_base_seconds * 2 ** min(exponent, 32)
        return min(delay, policy.backoff_max_seconds)
    return policy.pull_frequency_seconds


class SyncScheduler:
    """Drives sync cycles on a timer, one at a time."""

    def __init__(
        self,
        fetcher: UpstreamFetcher,
        reconciler: Reconciler,
        *,
        policy: SyncPolicy | None = None,
        tracker: SyncStatusTracker | None = None,
        clock: Callable[[], datetime] = _utcnow,
        tracer: trace.Tracer | None = None,
    ) -> None:
        self._fetcher = fetcher
        self._reconciler = reconciler
        self._policy = policy or SyncPolicy()
        self._tracker = tracker or SyncStatusTracker()
        self._clock = clock
        self._tracer = tracer or get_tracer()
        self._cycle_lock = asyncio.Lock()
        self._trigger_event = asyncio.Event()
        self._task: asyncio.Task[None] | None = None

    @property
    def policy(self) -> SyncPolicy:
        return self._policy

    @property
    def tracker(self) -> SyncStatusTracker:
        return self._tracker

    @property
    def status(self) -> SyncStatus:
        return self._tracker.status

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    # ------------------------------------------------------------------
    # One cycle
    # ------------------------------------------------------------------

    async def run_cycle(self) -> CycleOutcome:
        """Run exactly one fetch-diff-apply cycle.

        Callers arriving while a cycle is in progress wait for it to finish
        and then run their own.
        """
        async with self._cycle_lock:
            outcome = await self._execute_cycle()
        self._tracker.record(outcome)
        return outcome

    async def _execute_cycle(self) -> CycleOutcome:
        started_at = self._clock()
        started = time.monotonic()
        window = sync_window(started_at, self._policy.timezone, self._policy.window_days)
        self._tracker.begin_cycle(started_at)

        result: ReconcileResult | None = None
        error: str | None = None
        error_kind: ErrorKind | None = None

        with self._tracer.start_as_current_span("room_overview.sync_cycle") as span:
            span.set_attribute("sync.fetcher", self._fetcher.name)
            span.set_attribute("sync.window_start", window.start.isoformat())
            span.set_attribute("sync.window_end", window.end.isoformat())
            try:
                self._tracker.set_phase(SyncPhase.FETCHING)
                fetched = await self._fetcher.fetch(window)
                span.set_attribute("sync.fetched", len(fetched))

                self._tracker.set_phase(SyncPhase.RECONCILING)
                result = await self._reconciler.sync(fetched)
                span.set_attribute("sync.version", result.version)
            except SyncError as exc:
                error, error_kind = str(exc), exc.kind
                self._log_failure(exc)
                span.record_exception(exc)
                span.set_status(trace.StatusCode.ERROR, str(exc))
            except Exception as exc:
                # Unknown failures are retried like transient ones.
                error, error_kind = f"{type(exc).__name__}: {exc}", ErrorKind.TRANSIENT_UPSTREAM
                logger.exception("Unexpected error during booking sync cycle")
                span.record_exception(exc)
                span.set_status(trace.StatusCode.ERROR, str(exc))
            finally:
                self._tracker.set_phase(SyncPhase.IDLE)

        duration_ms = (time.monotonic() - started) * 1000
        if result is not None:
            logger.info(
                "Sync cycle complete: +%d ~%d -%d =%d (version %d, %.0fms)",
                result.inserted,
                result.updated,
                result.deleted,
                result.unchanged,
                result.version,
                duration_ms,
            )
        return CycleOutcome(
            started_at=started_at,
            finished_at=self._clock(),
            duration_ms=duration_ms,
            result=result,
            error=error,
            error_kind=error_kind,
        )

    @staticmethod
    def _log_failure(exc: SyncError) -> None:
        match exc.kind:
            case ErrorKind.AUTH_FAILURE:
                logger.error(
                    "Upstream rejected credentials; serving stale bookings until "
                    "credentials are fixed and a sync is triggered: %s",
                    exc,
                )
            case ErrorKind.DATA_INTEGRITY:
                logger.error("Data integrity anomaly, cycle aborted: %s", exc)
            case _:
                logger.warning("Failed to update bookings from upstream (%s): %s", exc.kind, exc)

    # ------------------------------------------------------------------
    # Timer loop
    # ------------------------------------------------------------------

    def trigger(self) -> None:
        """Request an immediate cycle; coalesces with any pending request."""
        self._trigger_event.set()

    async def start(self) -> None:
        if self.is_running:
            return
        self._task = asyncio.create_task(self._run_loop(), name="booking-sync-loop")
        self._tracker.set_running(True)
        logger.info(
            "Booking sync loop started (interval=%ss, window_days=%d)",
            self._policy.pull_frequency_seconds,
            self._policy.window_days,
        )

    async def stop(self) -> None:
        """Cancel the loop; an in-flight fetch is abandoned without touching the store."""
        if self._task is not None and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
        self._tracker.set_running(False)
        self._tracker.set_next_attempt(None)

    async def _run_loop(self) -> None:
        run_now = self._policy.run_on_startup
        while True:
            delay: float | None = self._policy.pull_frequency_seconds
            if run_now:
                outcome = await self.run_cycle()
                delay = compute_backoff(
                    self._policy,
                    outcome.error_kind,
                    self._tracker.status.consecutive_failures,
                )
            run_now = True

            if delay is None:
                self._tracker.set_next_attempt(None)
                logger.warning("Booking sync parked until a sync is triggered manually")
            else:
                self._tracker.set_next_attempt(self._clock() + timedelta(seconds=delay))
                logger.debug("Next booking sync in %.1fs", delay)
            await self._wait_for_trigger(delay)

    async def _wait_for_trigger(self, timeout: float | None) -> None:
        try:
            await asyncio.wait_for(self._trigger_event.wait(), timeout=timeout)
        except TimeoutError:
            return
        self._trigger_event.clear()
        logger.debug("Booking sync triggered manually")
