"""OpenTelemetry tracing and metrics setup plus the sync-cycle instruments.

When ``OTEL_EXPORTER_OTLP_ENDPOINT`` is not set, the global no-op providers
stay installed and every span and recording is a silent no-op.

Instruments
-----------
  room_overview.sync.cycles            Counter  (label: outcome)
      Completed sync cycles, ``success`` or the failing error kind.

  room_overview.sync.booking_changes   Counter  (label: operation)
      Rows inserted, updated or deleted by applied deltas.

  room_overview.sync.cycle_duration_ms Histogram
      Wall-clock duration of one fetch-diff-apply cycle.
"""

from __future__ import annotations

import logging
import os

from opentelemetry import metrics, trace

logger = logging.getLogger(__name__)

_INSTRUMENTATION_NAME = "room_overview"

# True once the global providers have been installed by this process.
_tracer_provider_installed: bool = False
_meter_provider_installed: bool = False


def init_telemetry(service_name: str) -> trace.Tracer:
    """Initialize OpenTelemetry tracing.

    With ``OTEL_EXPORTER_OTLP_ENDPOINT`` set, installs a TracerProvider with an
    OTLP gRPC exporter on the first call. Later calls reuse it.
    """
    global _tracer_provider_installed

    endpoint = os.environ.get("OTEL_EXPORTER_OTLP_ENDPOINT")
    if not endpoint:
        logger.info("OTEL_EXPORTER_OTLP_ENDPOINT not set, using no-op tracer")
        return trace.get_tracer(_INSTRUMENTATION_NAME)

    if _tracer_provider_installed:
        return trace.get_tracer(_INSTRUMENTATION_NAME)

    # Import exporter only when needed
    from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
    from opentelemetry.sdk.resources import Resource
    from opentelemetry.sdk.trace import TracerProvider
    from opentelemetry.sdk.trace.export import BatchSpanProcessor

    provider = TracerProvider(resource=Resource.create({"service.name": service_name}))
    provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint)))
    trace.set_tracer_provider(provider)
    _tracer_provider_installed = True
    logger.info("Telemetry initialized: service=%s, endpoint=%s", service_name, endpoint)

    return trace.get_tracer(_INSTRUMENTATION_NAME)


def init_metrics(service_name: str) -> metrics.Meter:
    """Initialize OpenTelemetry metrics with a periodic OTLP gRPC exporter."""
    global _meter_provider_installed

    endpoint = os.environ.get("OTEL_EXPORTER_OTLP_ENDPOINT")
    if not endpoint:
        logger.info("OTEL_EXPORTER_OTLP_ENDPOINT not set, using no-op meter")
        return metrics.get_meter(_INSTRUMENTATION_NAME)

    if _meter_provider_installed:
        return metrics.get_meter(_INSTRUMENTATION_NAME)

    from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter
    from opentelemetry.sdk.metrics import MeterProvider
    from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
    from opentelemetry.sdk.resources import Resource

    reader = PeriodicExportingMetricReader(
        OTLPMetricExporter(endpoint=endpoint), export_interval_millis=15_000
    )
    provider = MeterProvider(
        resource=Resource.create({"service.name": service_name}),
        metric_readers=[reader],
    )
    metrics.set_meter_provider(provider)
    _meter_provider_installed = True
    logger.info("Metrics initialized: service=%s, endpoint=%s", service_name, endpoint)

    return metrics.get_meter(_INSTRUMENTATION_NAME)


def get_tracer() -> trace.Tracer:
    return trace.get_tracer(_INSTRUMENTATION_NAME)


def get_meter() -> metrics.Meter:
    return metrics.get_meter(_INSTRUMENTATION_NAME)


class SyncMetrics:
    """Lazily created sync instruments bound to the current global MeterProvider.

    Safe to construct before :func:`init_metrics`; recordings made before a
    real provider exists are dropped.
    """

    def __init__(self) -> None:
        self.__cycles: metrics.Counter | None = None
        self.__changes: metrics.Counter | None = None
        self.__duration: metrics.Histogram | None = None

    @property
    def _cycles(self) -> metrics.Counter:
        if self.__cycles is None:
            self.__cycles = get_meter().create_counter(
                name="room_overview.sync.cycles",
                description="Completed booking sync cycles by outcome",
                unit="cycles",
            )
        return self.__cycles

    @property
    def _changes(self) -> metrics.Counter:
        if self.__changes is None:
            self.__changes = get_meter().create_counter(
                name="room_overview.sync.booking_changes",
                description="Booking rows changed by applied deltas",
                unit="bookings",
            )
        return self.__changes

    @property
    def _duration(self) -> metrics.Histogram:
        if self.__duration is None:
            self.__duration = get_meter().create_histogram(
                name="room_overview.sync.cycle_duration_ms",
                description="Duration of one fetch-diff-apply cycle in milliseconds",
                unit="ms",
            )
        return self.__duration

    def record_cycle(self, outcome: str, duration_ms: float) -> None:
        self._cycles.add(1, {"outcome": outcome})
        self._duration.record(duration_ms, {"outcome": outcome})

    def record_changes(self, *, inserted: int, updated: int, deleted: int) -> None:
        for operation, count in (
            ("insert", inserted),
            ("update", updated),
            ("delete", deleted),
        ):
            if count:
                self._changes.add(count, {"operation": operation})
