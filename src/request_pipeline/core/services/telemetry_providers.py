"""
Telemetry provider implementations.

``NullTelemetryProvider`` is the null object selected when no tracing backend
is configured. ``InMemoryTelemetryProvider`` is a test double that records
spans and metrics in process for assertions; production deployments use
``OpenTelemetryProvider``.
"""

from __future__ import annotations

import threading
import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from request_pipeline.core.interfaces.telemetry_interface import (
    ITelemetryProvider,
    ITelemetrySpan,
)


class NullSpan(ITelemetrySpan):
    def set_tag(self, key: str, value: Any) -> None:
        return None

    def set_error(self, error: Any) -> None:
        return None

    def finish(self) -> None:
        return None

    def get_context(self) -> dict[str, Any] | None:
        return None


class NullTelemetryProvider(ITelemetryProvider):
    """Telemetry provider that discards everything."""

    def start_span(
        self,
        name: str,
        *,
        operation: str,
        tags: Mapping[str, Any] | None = None,
        parent: ITelemetrySpan | None = None,
    ) -> ITelemetrySpan:
        return NullSpan()

    def timing(
        self, name: str, value: float, tags: Mapping[str, Any] | None = None
    ) -> None:
        return None

    def increment(
        self, name: str, value: float = 1, tags: Mapping[str, Any] | None = None
    ) -> None:
        return None

    def histogram(
        self, name: str, value: float, tags: Mapping[str, Any] | None = None
    ) -> None:
        return None

    def gauge(
        self, name: str, value: float, tags: Mapping[str, Any] | None = None
    ) -> None:
        return None


@dataclass
class RecordedSpan(ITelemetrySpan):
    name: str
    operation: str
    tags: dict[str, Any] = field(default_factory=dict)
    parent: RecordedSpan | None = None
    error: Any = None
    finished: bool = False
    finish_count: int = 0
    trace_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    span_id: str = field(default_factory=lambda: uuid.uuid4().hex[:16])

    def set_tag(self, key: str, value: Any) -> None:
        self.tags[key] = value

    def set_error(self, error: Any) -> None:
        self.error = error

    def finish(self) -> None:
        self.finished = True
        self.finish_count += 1

    def get_context(self) -> dict[str, Any] | None:
        return {"traceId": self.trace_id, "spanId": self.span_id}


@dataclass
class RecordedMetric:
    kind: str
    name: str
    value: float
    tags: dict[str, Any]


class InMemoryTelemetryProvider(ITelemetryProvider):
    """Test double collecting spans and metrics in memory."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.spans: list[RecordedSpan] = []
        self.metrics: list[RecordedMetric] = []

    def start_span(
        self,
        name: str,
        *,
        operation: str,
        tags: Mapping[str, Any] | None = None,
        parent: ITelemetrySpan | None = None,
    ) -> ITelemetrySpan:
        span = RecordedSpan(
            name=name,
            operation=operation,
            tags=dict(tags or {}),
            parent=parent if isinstance(parent, RecordedSpan) else None,
        )
        if span.parent is not None:
            span.trace_id = span.parent.trace_id
        with self._lock:
            self.spans.append(span)
        return span

    def _record(
        self, kind: str, name: str, value: float, tags: Mapping[str, Any] | None
    ) -> None:
        with self._lock:
            self.metrics.append(RecordedMetric(kind, name, value, dict(tags or {})))

    def timing(
        self, name: str, value: float, tags: Mapping[str, Any] | None = None
    ) -> None:
        self._record("timing", name, value, tags)

    def increment(
        self, name: str, value: float = 1, tags: Mapping[str, Any] | None = None
    ) -> None:
        self._record("increment", name, value, tags)

    def histogram(
        self, name: str, value: float, tags: Mapping[str, Any] | None = None
    ) -> None:
        self._record("histogram", name, value, tags)

    def gauge(
        self, name: str, value: float, tags: Mapping[str, Any] | None = None
    ) -> None:
        self._record("gauge", name, value, tags)

    def spans_named(self, name: str) -> list[RecordedSpan]:
        return [s for s in self.spans if s.name == name]

    def metrics_named(self, name: str) -> list[RecordedMetric]:
        return [m for m in self.metrics if m.name == name]
