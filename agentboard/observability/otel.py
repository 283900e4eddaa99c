"""Optional tracing and metrics for agentboard.

OpenTelemetry (traces, counters, FastAPI instrumentation) is switched on with
`AGENTBOARD_OTEL_ENABLED`. A Prometheus scrape endpoint can be exposed on
`AGENTBOARD_PROM_PORT` whether or not OpenTelemetry is on. Both stacks live in
the `otel` extra and are imported lazily; every `record_*` helper is a no-op
until `initialize` has wired something up.
"""
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Optional

from fastapi import FastAPI

from agentboard.config import BoardConfig

logger = logging.getLogger("agentboard.observability")

STREAM_EVENTS = ("agentboard_stream_events_total", "Push events produced by stream sessions, by outcome")
PARSER_FAILURES = ("agentboard_parser_failures_total", "Log lines or metadata files that failed to decode")
ACTIVE_WATCHES = ("agentboard_active_watches", "Native file watches currently armed")


class _Instruments:
    """One set of meters, from either backend."""

    def __init__(self) -> None:
        self.stream_events: Any = None
        self.parser_failures: Any = None
        self.active_watches: Any = None


_initialized = False
_otel = _Instruments()
_prom = _Instruments()
_tracer: Any = None
_providers: list[Any] = []
_instrumentor: Any = None


def _signal_endpoint(base_endpoint: str, signal_path: str) -> Optional[str]:
    """Append `/v1/<signal>` to a collector base URL unless it is already there."""
    endpoint = (base_endpoint or "").strip().rstrip("/")
    if not endpoint:
        return None
    if endpoint.endswith(signal_path):
        return endpoint
    if endpoint.endswith("/v1"):
        endpoint = endpoint[: -len("/v1")]
    return endpoint + signal_path


def _start_otel(app: FastAPI | None, config: BoardConfig) -> None:
    global _tracer, _instrumentor

    try:
        from opentelemetry import metrics, trace
        from opentelemetry.exporter.otlp.proto.http.metric_exporter import OTLPMetricExporter
        from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
        from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
        from opentelemetry.sdk.metrics import MeterProvider
        from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
        from opentelemetry.sdk.resources import Resource
        from opentelemetry.sdk.trace import TracerProvider
        from opentelemetry.sdk.trace.export import BatchSpanProcessor
    except ImportError as exc:
        logger.warning(f"OpenTelemetry requested but not installed (pip install agentboard[otel]): {exc}")
        return

    service_name = config.otel_service_name or "agentboard"
    resource = Resource.create({"service.name": service_name, "service.namespace": "agentboard"})

    tracer_provider = TracerProvider(resource=resource)
    span_exporter = OTLPSpanExporter(endpoint=_signal_endpoint(config.otel_endpoint, "/v1/traces"))
    tracer_provider.add_span_processor(BatchSpanProcessor(span_exporter))
    trace.set_tracer_provider(tracer_provider)

    metric_exporter = OTLPMetricExporter(endpoint=_signal_endpoint(config.otel_endpoint, "/v1/metrics"))
    meter_provider = MeterProvider(
        resource=resource,
        metric_readers=[PeriodicExportingMetricReader(metric_exporter)],
    )
    metrics.set_meter_provider(meter_provider)

    meter = metrics.get_meter("agentboard")
    _otel.stream_events = meter.create_counter(STREAM_EVENTS[0], unit="1", description=STREAM_EVENTS[1])
    _otel.parser_failures = meter.create_counter(PARSER_FAILURES[0], unit="1", description=PARSER_FAILURES[1])
    _otel.active_watches = meter.create_up_down_counter(
        ACTIVE_WATCHES[0], unit="1", description=ACTIVE_WATCHES[1]
    )

    _providers.extend([tracer_provider, meter_provider])
    _tracer = trace.get_tracer("agentboard")
    _instrumentor = FastAPIInstrumentor()
    if app is not None:
        _instrumentor.instrument_app(app)
    logger.info(f"OpenTelemetry exporting to {config.otel_endpoint} as {service_name}")


def _start_prometheus(port: int) -> None:
    try:
        from prometheus_client import Counter, Gauge, start_http_server
    except ImportError as exc:
        logger.warning(f"Prometheus port set but prometheus_client is not installed: {exc}")
        return

    try:
        start_http_server(port)
    except OSError as exc:
        logger.warning(f"Prometheus endpoint not started on port {port}: {exc}")
        return
    _prom.stream_events = Counter(*STREAM_EVENTS, ["stream", "result"])
    _prom.parser_failures = Counter(*PARSER_FAILURES, ["parser"])
    _prom.active_watches = Gauge(*ACTIVE_WATCHES)
    logger.info(f"Prometheus metrics listening on port {port}")


def initialize(app: FastAPI | None = None, config: Optional[BoardConfig] = None) -> None:
    """Wire up whatever the config asks for. Later calls only instrument new apps."""
    global _initialized

    if _initialized:
        if app is not None and _instrumentor is not None:
            _instrumentor.instrument_app(app)
        return
    _initialized = True
    config = config or BoardConfig()

    if config.otel_enabled:
        _start_otel(app, config)
    else:
        logger.info("OpenTelemetry disabled (AGENTBOARD_OTEL_ENABLED=false)")
    if config.prom_port > 0:
        _start_prometheus(config.prom_port)


def shutdown(app: FastAPI | None = None) -> None:
    global _tracer

    if app is not None and _instrumentor is not None:
        try:
            _instrumentor.uninstrument_app(app)
        except Exception:  # noqa: BLE001
            logger.debug("FastAPI uninstrument failed", exc_info=True)
    while _providers:
        provider = _providers.pop()
        try:
            provider.shutdown()
        except Exception:  # noqa: BLE001
            logger.debug(f"{type(provider).__name__} shutdown failed", exc_info=True)
    _tracer = None
    _otel.__init__()


@contextmanager
def start_span(name: str, attributes: dict[str, Any] | None = None):
    if _tracer is None:
        yield None
        return
    with _tracer.start_as_current_span(name) as span:
        for key, value in (attributes or {}).items():
            if value is not None:
                span.set_attribute(key, value)
        yield span


def record_stream_event(stream: str, result: str) -> None:
    labels = {"stream": stream or "unknown", "result": result or "unknown"}
    if _otel.stream_events is not None:
        _otel.stream_events.add(1, labels)
    if _prom.stream_events is not None:
        _prom.stream_events.labels(**labels).inc()


def record_parser_failure(parser: str, count: int = 1) -> None:
    count = max(0, int(count))
    if not count:
        return
    labels = {"parser": parser or "unknown"}
    if _otel.parser_failures is not None:
        _otel.parser_failures.add(count, labels)
    if _prom.parser_failures is not None:
        _prom.parser_failures.labels(**labels).inc(count)


def record_watch_delta(delta: int) -> None:
    if _otel.active_watches is not None:
        _otel.active_watches.add(int(delta))
    if _prom.active_watches is not None:
        _prom.active_watches.inc(int(delta))
