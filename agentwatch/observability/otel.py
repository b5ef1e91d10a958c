"""OpenTelemetry + Prometheus fallback wiring for agentwatch."""
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any

from fastapi import FastAPI

from agentwatch import config

logger = logging.getLogger("agentwatch.observability")


_initialized = False
_enabled = False
_tracer: Any | None = None
_trace_provider: Any | None = None
_meter_provider: Any | None = None
_fastapi_instrumentor: Any | None = None

_ingestion_counter: Any | None = None
_ingestion_lines_counter: Any | None = None
_ingestion_latency_hist: Any | None = None
_parser_failure_counter: Any | None = None
_activity_event_counter: Any | None = None

_prom_enabled = False
_prom_ingestion_counter: Any | None = None
_prom_ingestion_lines_counter: Any | None = None
_prom_ingestion_latency_hist: Any | None = None
_prom_parser_failure_counter: Any | None = None
_prom_activity_event_counter: Any | None = None


def _normalize_otlp_endpoint(base_endpoint: str, signal_path: str) -> str:
    endpoint = (base_endpoint or "").strip()
    if not endpoint:
        return ""
    if endpoint.endswith(signal_path):
        return endpoint
    if endpoint.endswith("/"):
        endpoint = endpoint[:-1]
    if endpoint.endswith("/v1"):
        return f"{endpoint}{signal_path[3:]}"
    return f"{endpoint}{signal_path}"


def _prom_labels(**labels: str) -> dict[str, str]:
    return {key: (value or "").strip() or "unknown" for key, value in labels.items()}


def initialize(app: FastAPI | None = None) -> None:
    global _initialized, _enabled, _tracer, _trace_provider, _meter_provider, _fastapi_instrumentor
    global _ingestion_counter, _ingestion_lines_counter, _ingestion_latency_hist
    global _parser_failure_counter, _activity_event_counter
    global _prom_enabled
    global _prom_ingestion_counter, _prom_ingestion_lines_counter, _prom_ingestion_latency_hist
    global _prom_parser_failure_counter, _prom_activity_event_counter

    if _initialized:
        if _enabled and app and _fastapi_instrumentor:
            _fastapi_instrumentor.instrument_app(app)
        return

    _initialized = True

    if not config.OTEL_ENABLED:
        logger.info("OpenTelemetry disabled (AGENTWATCH_OTEL_ENABLED=false)")
        return

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
        logger.warning("OpenTelemetry dependencies unavailable: %s", exc)
        return

    traces_endpoint = _normalize_otlp_endpoint(config.OTEL_ENDPOINT, "/v1/traces")
    metrics_endpoint = _normalize_otlp_endpoint(config.OTEL_ENDPOINT, "/v1/metrics")
    service_name = config.OTEL_SERVICE_NAME or "agentwatch"

    resource = Resource.create(
        {
            "service.name": service_name,
            "service.namespace": "agentwatch",
        }
    )

    trace_provider = TracerProvider(resource=resource)
    trace_exporter = OTLPSpanExporter(endpoint=traces_endpoint or None)
    trace_provider.add_span_processor(BatchSpanProcessor(trace_exporter))
    trace.set_tracer_provider(trace_provider)
    tracer = trace.get_tracer("agentwatch")

    metric_reader = PeriodicExportingMetricReader(
        OTLPMetricExporter(endpoint=metrics_endpoint or None)
    )
    meter_provider = MeterProvider(resource=resource, metric_readers=[metric_reader])
    metrics.set_meter_provider(meter_provider)
    meter = metrics.get_meter("agentwatch")

    _ingestion_counter = meter.create_counter(
        "agentwatch_tail_reads_total",
        unit="1",
        description="Count of transcript read passes that consumed new bytes",
    )
    _ingestion_lines_counter = meter.create_counter(
        "agentwatch_transcript_lines_total",
        unit="1",
        description="Transcript lines dispatched to vendor parsers",
    )
    _ingestion_latency_hist = meter.create_histogram(
        "agentwatch_tail_read_latency_ms",
        unit="ms",
        description="Latency of a transcript read pass including parsing",
    )
    _parser_failure_counter = meter.create_counter(
        "agentwatch_parser_failures_total",
        unit="1",
        description="Transcript lines that raised inside a vendor parser",
    )
    _activity_event_counter = meter.create_counter(
        "agentwatch_activity_events_total",
        unit="1",
        description="Canonical activity events emitted",
    )

    _trace_provider = trace_provider
    _meter_provider = meter_provider
    _tracer = tracer
    _fastapi_instrumentor = FastAPIInstrumentor()
    _enabled = True

    if app:
        _fastapi_instrumentor.instrument_app(app)

    if config.PROM_PORT > 0:
        try:
            from prometheus_client import Counter, Histogram, start_http_server

            start_http_server(config.PROM_PORT)
            _prom_enabled = True
            _prom_ingestion_counter = Counter(
                "agentwatch_tail_reads_total",
                "Count of transcript read passes that consumed new bytes",
                ["vendor", "result"],
            )
            _prom_ingestion_lines_counter = Counter(
                "agentwatch_transcript_lines_total",
                "Transcript lines dispatched to vendor parsers",
                ["vendor"],
            )
            _prom_ingestion_latency_hist = Histogram(
                "agentwatch_tail_read_latency_ms",
                "Latency of a transcript read pass including parsing",
                ["vendor", "result"],
            )
            _prom_parser_failure_counter = Counter(
                "agentwatch_parser_failures_total",
                "Transcript lines that raised inside a vendor parser",
                ["vendor"],
            )
            _prom_activity_event_counter = Counter(
                "agentwatch_activity_events_total",
                "Canonical activity events emitted",
                ["event"],
            )
            logger.info("Prometheus fallback metrics server listening on port %s", config.PROM_PORT)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Prometheus fallback not started: %s", exc)
            _prom_enabled = False

    logger.info(
        "OpenTelemetry initialized (service=%s endpoint=%s)",
        service_name,
        config.OTEL_ENDPOINT,
    )


def shutdown(app: FastAPI | None = None) -> None:
    global _enabled
    if not _initialized:
        return
    try:
        if app and _fastapi_instrumentor:
            _fastapi_instrumentor.uninstrument_app(app)
    except Exception:
        pass
    try:
        if _meter_provider is not None:
            _meter_provider.shutdown()
    except Exception:
        pass
    try:
        if _trace_provider is not None:
            _trace_provider.shutdown()
    except Exception:
        pass
    _enabled = False


@contextmanager
def start_span(name: str, attributes: dict[str, Any] | None = None):
    if not _enabled or _tracer is None:
        yield None
        return
    with _tracer.start_as_current_span(name) as span:
        if attributes:
            for key, value in attributes.items():
                if value is not None:
                    span.set_attribute(key, value)
        yield span


def record_ingestion(vendor: str, result: str, duration_ms: float, *, lines: int = 0) -> None:
    labels = {
        "vendor": vendor or "unknown",
        "result": result or "unknown",
    }
    safe_lines = max(0, int(lines))
    if _enabled and _ingestion_counter is not None:
        _ingestion_counter.add(1, labels)
    if _enabled and _ingestion_lines_counter is not None and safe_lines:
        _ingestion_lines_counter.add(safe_lines, {"vendor": labels["vendor"]})
    if _enabled and _ingestion_latency_hist is not None:
        _ingestion_latency_hist.record(max(0.0, float(duration_ms)), labels)
    if _prom_enabled and _prom_ingestion_counter is not None:
        _prom_ingestion_counter.labels(**_prom_labels(vendor=vendor, result=result)).inc()
    if _prom_enabled and _prom_ingestion_lines_counter is not None and safe_lines:
        _prom_ingestion_lines_counter.labels(**_prom_labels(vendor=vendor)).inc(safe_lines)
    if _prom_enabled and _prom_ingestion_latency_hist is not None:
        prom = _prom_labels(vendor=vendor, result=result)
        _prom_ingestion_latency_hist.labels(**prom).observe(max(0.0, float(duration_ms)))


def record_parser_failure(vendor: str) -> None:
    labels = {"vendor": vendor or "unknown"}
    if _enabled and _parser_failure_counter is not None:
        _parser_failure_counter.add(1, labels)
    if _prom_enabled and _prom_parser_failure_counter is not None:
        _prom_parser_failure_counter.labels(**_prom_labels(vendor=vendor)).inc()


def record_activity_event(event_type: str) -> None:
    if _enabled and _activity_event_counter is not None:
        _activity_event_counter.add(1, {"event": event_type or "unknown"})
    if _prom_enabled and _prom_activity_event_counter is not None:
        _prom_activity_event_counter.labels(**_prom_labels(event=event_type)).inc()
