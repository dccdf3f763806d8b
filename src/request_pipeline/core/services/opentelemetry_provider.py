"""
OpenTelemetry telemetry provider.

Maps the pipeline's span and metric calls onto the OpenTelemetry API. Only
``opentelemetry-api`` is required here; exporters and the SDK providers are
configured by the application, and without them every call is a no-op.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from opentelemetry import metrics, trace
from opentelemetry.trace import (
    Span,
    SpanKind,
    Status,
    StatusCode,
    format_span_id,
    format_trace_id,
)

from request_pipeline.core.interfaces.telemetry_interface import (
    ITelemetryProvider,
    ITelemetrySpan,
)

INSTRUMENTATION_NAME = "request_pipeline"


def _attribute_value(value: Any) -> bool | int | float | str:
    """OpenTelemetry attributes only accept primitive values."""
    if isinstance(value, bool | int | float | str):
        return value
    if value is None:
        return "null"
    return str(value)


def _attributes(tags: Mapping[str, Any] | None) -> dict[str, bool | int | float | str]:
    return {key: _attribute_value(value) for key, value in (tags or {}).items()}


class OpenTelemetrySpan(ITelemetrySpan):
    """Wraps an OpenTelemetry ``Span``."""

    def __init__(self, span: Span) -> None:
        self._span = span

    @property
    def span(self) -> Span:
        return self._span

    def set_tag(self, key: str, value: Any) -> None:
        self._span.set_attribute(key, _attribute_value(value))

    def set_error(self, error: Any) -> None:
        if isinstance(error, BaseException):
            self._span.record_exception(error)
        self._span.set_status(Status(StatusCode.ERROR, str(error)))

    def finish(self) -> None:
        self._span.end()

    def get_context(self) -> dict[str, Any] | None:
        span_context = self._span.get_span_context()
        if not span_context.is_valid:
            return None
        return {
            "traceId": format_trace_id(span_context.trace_id),
            "spanId": format_span_id(span_context.span_id),
        }


class OpenTelemetryProvider(ITelemetryProvider):
    """Telemetry provider backed by an OpenTelemetry tracer and meter.

    Timings are recorded on millisecond histograms, increments on counters
    and gauges on synchronous gauges. Instruments are created lazily, one
    per metric name.
    """

    def __init__(
        self,
        tracer: trace.Tracer | None = None,
        meter: metrics.Meter | None = None,
    ) -> None:
        self._tracer = tracer or trace.get_tracer(INSTRUMENTATION_NAME)
        self._meter = meter or metrics.get_meter(INSTRUMENTATION_NAME)
        self._instruments: dict[tuple[str, str], Any] = {}

    def start_span(
        self,
        name: str,
        *,
        operation: str,
        tags: Mapping[str, Any] | None = None,
        parent: ITelemetrySpan | None = None,
    ) -> ITelemetrySpan:
        parent_context = None
        if isinstance(parent, OpenTelemetrySpan):
            parent_context = trace.set_span_in_context(parent.span)
        kind = (
            SpanKind.SERVER
            if operation == "http" and parent_context is None
            else SpanKind.INTERNAL
        )
        attributes = _attributes(tags)
        attributes["operation"] = operation
        span = self._tracer.start_span(
            name, context=parent_context, kind=kind, attributes=attributes
        )
        return OpenTelemetrySpan(span)

    def _instrument(self, kind: str, name: str) -> Any:
        key = (kind, name)
        instrument = self._instruments.get(key)
        if instrument is None:
            if kind == "counter":
                instrument = self._meter.create_counter(name)
            elif kind == "gauge":
                instrument = self._meter.create_gauge(name)
            elif kind == "timing":
                instrument = self._meter.create_histogram(name, unit="ms")
            else:
                instrument = self._meter.create_histogram(name)
            self._instruments[key] = instrument
        return instrument

    def timing(
        self, name: str, value: float, tags: Mapping[str, Any] | None = None
    ) -> None:
        self._instrument("timing", name).record(value, attributes=_attributes(tags))

    def increment(
        self, name: str, value: float = 1, tags: Mapping[str, Any] | None = None
    ) -> None:
        self._instrument("counter", name).add(value, attributes=_attributes(tags))

    def histogram(
        self, name: str, value: float, tags: Mapping[str, Any] | None = None
    ) -> None:
        self._instrument("histogram", name).record(value, attributes=_attributes(tags))

    def gauge(
        self, name: str, value: float, tags: Mapping[str, Any] | None = None
    ) -> None:
        self._instrument("gauge", name).set(value, attributes=_attributes(tags))
