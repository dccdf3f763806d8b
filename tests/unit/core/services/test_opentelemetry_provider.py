"""
Tests for the OpenTelemetry-backed telemetry provider.

Spans and metrics are captured with the OpenTelemetry SDK's in-memory
exporter and reader.
"""

from typing import Any

import pytest
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import InMemoryMetricReader
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import (
    InMemorySpanExporter,
)
from opentelemetry.trace import SpanKind, StatusCode
from request_pipeline.core.domain.actions import Action
from request_pipeline.core.domain.router_config import RouterConfig
from request_pipeline.core.services.opentelemetry_provider import (
    OpenTelemetryProvider,
)
from request_pipeline.core.services.request_processor import RequestProcessor
from request_pipeline.core.services.route_resolver import RouteTable
from request_pipeline.core.transport.fastapi.request_adapters import build_request


@pytest.fixture
def exporter() -> InMemorySpanExporter:
    return InMemorySpanExporter()


@pytest.fixture
def reader() -> InMemoryMetricReader:
    return InMemoryMetricReader()


@pytest.fixture
def provider(
    exporter: InMemorySpanExporter, reader: InMemoryMetricReader
) -> OpenTelemetryProvider:
    tracer_provider = TracerProvider()
    tracer_provider.add_span_processor(SimpleSpanProcessor(exporter))
    meter_provider = MeterProvider(metric_readers=[reader])
    return OpenTelemetryProvider(
        tracer=tracer_provider.get_tracer("tests"),
        meter=meter_provider.get_meter("tests"),
    )


def collected_metrics(reader: InMemoryMetricReader) -> dict[str, Any]:
    data = reader.get_metrics_data()
    return {
        metric.name: metric
        for resource_metrics in data.resource_metrics
        for scope_metrics in resource_metrics.scope_metrics
        for metric in scope_metrics.metrics
    }


class TestSpans:
    def test_root_http_span_is_server_kind(
        self, provider: OpenTelemetryProvider, exporter: InMemorySpanExporter
    ) -> None:
        span = provider.start_span(
            "HTTP GET /a", operation="http", tags={"http.method": "GET", "n": None}
        )
        span.set_tag("http.status_code", 200)
        span.finish()

        [finished] = exporter.get_finished_spans()
        assert finished.name == "HTTP GET /a"
        assert finished.kind == SpanKind.SERVER
        assert finished.attributes["http.method"] == "GET"
        assert finished.attributes["http.status_code"] == 200
        assert finished.attributes["n"] == "null"
        assert finished.attributes["operation"] == "http"

    def test_child_span_shares_trace(
        self, provider: OpenTelemetryProvider, exporter: InMemorySpanExporter
    ) -> None:
        parent = provider.start_span("HTTP GET /a", operation="http")
        child = provider.start_span("body.parsing", operation="http", parent=parent)
        child.finish()
        parent.finish()

        child_span, parent_span = exporter.get_finished_spans()
        assert child_span.kind == SpanKind.INTERNAL
        assert child_span.parent.span_id == parent_span.context.span_id
        assert child_span.context.trace_id == parent_span.context.trace_id

    def test_error_sets_status_and_records_exception(
        self, provider: OpenTelemetryProvider, exporter: InMemorySpanExporter
    ) -> None:
        span = provider.start_span("work", operation="middleware")
        span.set_error(RuntimeError("db down"))
        span.finish()

        [finished] = exporter.get_finished_spans()
        assert finished.status.status_code == StatusCode.ERROR
        assert finished.status.description == "db down"
        assert finished.events[0].name == "exception"

    def test_context_uses_hex_ids(self, provider: OpenTelemetryProvider) -> None:
        span = provider.start_span("work", operation="http")

        context = span.get_context()

        assert context is not None
        assert len(context["traceId"]) == 32
        assert len(context["spanId"]) == 16


class TestMetrics:
    def test_instruments_by_kind(
        self, provider: OpenTelemetryProvider, reader: InMemoryMetricReader
    ) -> None:
        provider.increment("http.requests.total", 1, {"status": "2xx"})
        provider.increment("http.requests.total", 2, {"status": "2xx"})
        provider.timing("http.request.duration", 12.5, {"method": "GET"})
        provider.histogram("body.size.bytes", 128)
        provider.gauge("context.plugins.injected", 3)

        collected = collected_metrics(reader)

        [total] = collected["http.requests.total"].data.data_points
        assert total.value == 3
        assert dict(total.attributes) == {"status": "2xx"}
        duration = collected["http.request.duration"]
        assert duration.unit == "ms"
        assert duration.data.data_points[0].sum == 12.5
        assert collected["body.size.bytes"].data.data_points[0].count == 1
        assert collected["context.plugins.injected"].data.data_points[0].value == 3


class TestWithPipeline:
    @pytest.mark.asyncio
    async def test_request_produces_one_trace(
        self,
        provider: OpenTelemetryProvider,
        exporter: InMemorySpanExporter,
        reader: InMemoryMetricReader,
    ) -> None:
        action = Action(name="a", method="GET", path="/a", handler=lambda ctx: {"ok": True})
        config = RouterConfig(routes=RouteTable("/api/v1", [action]), telemetry=provider)
        processor = RequestProcessor(config)

        response = await processor.process(build_request("GET", "/api/v1/a"))

        assert response.status_code == 200
        spans = exporter.get_finished_spans()
        [root] = [span for span in spans if span.parent is None]
        assert root.name == "HTTP GET /api/v1/a"
        assert {span.context.trace_id for span in spans} == {root.context.trace_id}
        assert "http.requests.total" in collected_metrics(reader)
