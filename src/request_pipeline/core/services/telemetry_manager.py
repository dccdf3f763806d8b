"""
Telemetry manager for the request pipeline.

Creates and finishes tracing spans and records counters/timers for every
traceable stage. Telemetry is strictly best-effort: every public method
contains its own failures and logs them, and when no provider is configured
``create_*`` returns None and ``finish_*``/``record_*`` return without effect.
"""

from __future__ import annotations

import time
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Literal

from request_pipeline.core.common.logging_utils import child_logger, describe_exception
from request_pipeline.core.domain.processed_context import ProcessedContext
from request_pipeline.core.interfaces.model_bases import InternalDTO
from request_pipeline.core.interfaces.telemetry_interface import (
    ITelemetryProvider,
    ITelemetrySpan,
)
from request_pipeline.core.services.telemetry_providers import NullTelemetryProvider

MiddlewareType = Literal["global", "action"]
MiddlewareResult = Literal["success", "early_return", "error"]
ErrorType = Literal["validation", "framework", "generic", "initialization"]


def elapsed_ms(start_time: float) -> float:
    """Milliseconds elapsed since a ``time.monotonic()`` reading."""
    return round((time.monotonic() - start_time) * 1000, 3)


def status_category(status_code: int) -> str:
    if 200 <= status_code < 300:
        return "2xx"
    if 300 <= status_code < 400:
        return "3xx"
    if 400 <= status_code < 500:
        return "4xx"
    if status_code >= 500:
        return "5xx"
    return "other"


@dataclass
class TelemetrySpan(InternalDTO):
    """Pipeline-level wrapper around the provider's HTTP span.

    Moves once from created to finished-success, finished-error or
    cleaned-up; any later finish call is ignored.
    """

    span: ITelemetrySpan
    start_time: float
    method: str
    path: str
    context: ProcessedContext | None = None
    state: str = "created"

    @property
    def finished(self) -> bool:
        return self.state != "created"


class TelemetryManager:
    """Stage-level span and metric helpers bound to one provider."""

    def __init__(
        self, provider: ITelemetryProvider | None = None, logger: Any | None = None
    ) -> None:
        self._enabled = provider is not None and not isinstance(
            provider, NullTelemetryProvider
        )
        self._provider: ITelemetryProvider = provider or NullTelemetryProvider()
        self._logger = child_logger(logger, "TelemetryManager")

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def provider(self) -> ITelemetryProvider:
        return self._provider

    @contextmanager
    def _guard(self, operation: str, **fields: Any) -> Iterator[None]:
        try:
            yield
        except Exception as e:  # telemetry must never fail a request
            self._logger.error(
                f"{operation} failed",
                error=describe_exception(e),
                **fields,
            )

    # ==========================================
    # HTTP REQUEST
    # ==========================================

    def create_http_span(
        self, request: Any, start_time: float | None = None
    ) -> TelemetrySpan | None:
        if not self._enabled:
            self._logger.debug("Telemetry unavailable")
            return None

        method = str(getattr(request, "method", "UNKNOWN"))
        url = getattr(request, "url", None)
        path = str(getattr(url, "path", "") or "")
        headers = getattr(request, "headers", None) or {}
        with self._guard("HTTP span creation"):
            span = self._provider.start_span(
                f"HTTP {method} {path}",
                operation="http",
                tags={
                    "http.method": method,
                    "http.url": str(url),
                    "http.user_agent": headers.get("user-agent", "unknown"),
                    "http.path": path,
                },
            )
            self._logger.debug("HTTP span created")
            return TelemetrySpan(
                span=span,
                start_time=start_time if start_time is not None else time.monotonic(),
                method=method,
                path=path,
            )
        return None

    def bind_context(
        self, telemetry_span: TelemetrySpan | None, context: ProcessedContext
    ) -> ProcessedContext:
        """Attach the HTTP span to a context.

        Returns a new context carrying the reserved ``span`` and
        ``traceContext`` keys; the original context is returned untouched
        when telemetry is off or binding fails.
        """
        if telemetry_span is None:
            return context
        with self._guard("Span context binding"):
            bound = context.merge_context(
                {
                    "span": telemetry_span.span,
                    "traceContext": telemetry_span.span.get_context(),
                }
            )
            telemetry_span.context = bound
            return bound
        return context

    def _record_http(
        self, telemetry_span: TelemetrySpan, status_code: int, duration: float, result: str
    ) -> None:
        self._provider.timing(
            "http.request.duration",
            duration,
            {
                "method": telemetry_span.method,
                "status": str(status_code),
                "endpoint": telemetry_span.path,
            },
        )
        self._provider.increment(
            "http.requests.total",
            1,
            {
                "method": telemetry_span.method,
                "status": status_category(status_code),
                "result": result,
            },
        )

    def finish_span_success(
        self, telemetry_span: TelemetrySpan | None, status_code: int = 200
    ) -> None:
        if telemetry_span is None or telemetry_span.finished:
            return
        telemetry_span.state = "finished-success"
        with self._guard("Success span finish"):
            duration = elapsed_ms(telemetry_span.start_time)
            span = telemetry_span.span
            span.set_tag("http.status_code", status_code)
            span.set_tag("http.response_time_ms", duration)
            span.finish()
            self._record_http(telemetry_span, status_code, duration, "success")
            self._logger.debug(
                "Success metrics recorded", duration=duration, status_code=status_code
            )

    def finish_span_error(
        self, telemetry_span: TelemetrySpan | None, status_code: int, error: Any
    ) -> None:
        if telemetry_span is None or telemetry_span.finished:
            return
        telemetry_span.state = "finished-error"
        with self._guard("Error span finish"):
            duration = elapsed_ms(telemetry_span.start_time)
            span = telemetry_span.span
            span.set_tag("http.status_code", status_code)
            span.set_tag("http.response_time_ms", duration)
            span.set_error(error)
            span.finish()
            self._record_http(telemetry_span, status_code, duration, "error")
            self._logger.debug(
                "Error metrics recorded", duration=duration, status_code=status_code
            )

    def cleanup_span(
        self,
        telemetry_span: TelemetrySpan | None,
        status_code: int = 500,
        error: Any = None,
    ) -> None:
        """Close a span whose owning stage aborted before its normal finish."""
        if telemetry_span is None or telemetry_span.finished:
            return
        telemetry_span.state = "cleaned-up"
        self._logger.warning("Orphaned span cleanup", status_code=status_code)
        with self._guard("Span cleanup"):
            duration = elapsed_ms(telemetry_span.start_time)
            span = telemetry_span.span
            span.set_tag("http.status_code", status_code)
            span.set_tag("http.response_time_ms", duration)
            if error is not None:
                span.set_error(error)
            span.finish()

    # ==========================================
    # ROUTE RESOLUTION
    # ==========================================

    def create_route_resolution_span(
        self, method: str, path: str, parent: ITelemetrySpan | None = None
    ) -> ITelemetrySpan | None:
        if not self._enabled:
            return None
        with self._guard("Route resolution span creation"):
            return self._provider.start_span(
                "route.resolution",
                operation="http",
                parent=parent,
                tags={"route.method": method, "route.path": path},
            )
        return None

    def finish_route_resolution_span(
        self,
        span: ITelemetrySpan | None,
        matched: bool,
        params_count: int,
        duration: float,
    ) -> None:
        if span is None:
            return
        with self._guard("Route resolution span finish"):
            span.set_tag("route.matched", matched)
            span.set_tag("route.params_count", params_count)
            span.set_tag("route.duration_ms", duration)
            span.finish()

    def record_route_resolution(
        self, method: str, path: str, matched: bool, duration: float
    ) -> None:
        if not self._enabled:
            return
        with self._guard("Route resolution metrics"):
            self._provider.timing(
                "route.resolution.duration",
                duration,
                {"method": method, "matched": str(matched).lower()},
            )
            self._provider.increment(
                "route.resolution.total",
                1,
                {"method": method, "result": "matched" if matched else "not_found"},
            )
            if not matched:
                self._provider.increment(
                    "route.not_found", 1, {"method": method, "path": path}
                )

    # ==========================================
    # BODY PARSING
    # ==========================================

    def create_body_parsing_span(
        self,
        content_type: str,
        has_schema: bool,
        parent: ITelemetrySpan | None = None,
    ) -> ITelemetrySpan | None:
        if not self._enabled:
            return None
        with self._guard("Body parsing span creation"):
            return self._provider.start_span(
                "body.parsing",
                operation="http",
                parent=parent,
                tags={
                    "body.content_type": content_type or "none",
                    "body.has_schema": has_schema,
                },
            )
        return None

    def finish_body_parsing_span(
        self, span: ITelemetrySpan | None, success: bool, size: int, duration: float
    ) -> None:
        if span is None:
            return
        with self._guard("Body parsing span finish"):
            span.set_tag("body.success", success)
            span.set_tag("body.size_bytes", size)
            span.set_tag("body.duration_ms", duration)
            span.finish()

    def record_body_parsing(
        self, content_type: str, size: int, duration: float, success: bool
    ) -> None:
        if not self._enabled:
            return
        content_type = content_type or "none"
        with self._guard("Body parsing metrics"):
            self._provider.timing(
                "body.parsing.duration",
                duration,
                {"content_type": content_type, "success": str(success).lower()},
            )
            self._provider.histogram(
                "body.size.bytes", size, {"content_type": content_type}
            )
            if not success:
                self._provider.increment(
                    "body.parsing.errors", 1, {"content_type": content_type}
                )

    # ==========================================
    # CONTEXT BUILD
    # ==========================================

    def create_context_build_span(
        self, parent: ITelemetrySpan | None = None
    ) -> ITelemetrySpan | None:
        if not self._enabled:
            return None
        with self._guard("Context build span creation"):
            return self._provider.start_span(
                "context.build", operation="http", parent=parent, tags={}
            )
        return None

    def finish_context_build_span(
        self,
        span: ITelemetrySpan | None,
        has_plugins: bool,
        plugin_count: int,
        duration: float,
    ) -> None:
        if span is None:
            return
        with self._guard("Context build span finish"):
            span.set_tag("context.has_plugins", has_plugins)
            span.set_tag("context.plugin_count", plugin_count)
            span.set_tag("context.duration_ms", duration)
            span.finish()

    def record_context_build(self, duration: float, plugin_count: int) -> None:
        if not self._enabled:
            return
        with self._guard("Context build metrics"):
            self._provider.timing(
                "context.build.duration",
                duration,
                {"has_plugins": str(plugin_count > 0).lower()},
            )
            self._provider.gauge("context.plugins.injected", plugin_count, {})

    # ==========================================
    # MIDDLEWARE
    # ==========================================

    def create_middleware_span(
        self,
        middleware_name: str,
        middleware_type: MiddlewareType,
        parent: ITelemetrySpan | None = None,
    ) -> ITelemetrySpan | None:
        if not self._enabled:
            return None
        with self._guard("Middleware span creation", middleware_name=middleware_name):
            return self._provider.start_span(
                f"middleware.{middleware_name}",
                operation="middleware",
                parent=parent,
                tags={
                    "middleware.name": middleware_name,
                    "middleware.type": middleware_type,
                },
            )
        return None

    def finish_middleware_span(
        self,
        span: ITelemetrySpan | None,
        result: MiddlewareResult,
        duration: float,
        error: Any = None,
    ) -> None:
        if span is None:
            return
        with self._guard("Middleware span finish"):
            span.set_tag("middleware.result", result)
            span.set_tag("middleware.duration_ms", duration)
            if error is not None:
                span.set_error(error)
            span.finish()

    def record_middleware_execution(
        self,
        middleware_name: str,
        middleware_type: MiddlewareType,
        duration: float,
        result: MiddlewareResult,
    ) -> None:
        if not self._enabled:
            return
        tags = {"name": middleware_name, "type": middleware_type}
        with self._guard("Middleware metrics"):
            self._provider.timing("middleware.duration", duration, {**tags, "result": result})
            self._provider.increment("middleware.total", 1, {**tags, "result": result})
            if result == "early_return":
                self._provider.increment("middleware.early_returns", 1, tags)
            if result == "error":
                self._provider.increment("middleware.errors", 1, tags)

    # ==========================================
    # RESPONSE PROCESSING
    # ==========================================

    def create_response_processing_span(
        self, response_type: str, parent: ITelemetrySpan | None = None
    ) -> ITelemetrySpan | None:
        if not self._enabled:
            return None
        with self._guard("Response processing span creation"):
            return self._provider.start_span(
                "response.processing",
                operation="http",
                parent=parent,
                tags={"response.type": response_type},
            )
        return None

    def finish_response_processing_span(
        self,
        span: ITelemetrySpan | None,
        response_type: str,
        status_code: int,
        size: int,
        duration: float,
    ) -> None:
        if span is None:
            return
        with self._guard("Response processing span finish"):
            span.set_tag("response.type", response_type)
            span.set_tag("response.status_code", status_code)
            span.set_tag("response.size_bytes", size)
            span.set_tag("response.duration_ms", duration)
            span.finish()

    def record_response_processing(
        self, response_type: str, status_code: int, size: int
    ) -> None:
        if not self._enabled:
            return
        with self._guard("Response processing metrics"):
            self._provider.histogram(
                "response.size.bytes", size, {"type": response_type}
            )
            self._provider.increment(
                "response.total",
                1,
                {"type": response_type, "status": status_category(status_code)},
            )

    # ==========================================
    # VALIDATION & ERRORS
    # ==========================================

    def record_validation(
        self, validation_type: str, success: bool, error_count: int = 0
    ) -> None:
        if not self._enabled:
            return
        with self._guard("Validation metrics"):
            self._provider.increment(
                "validation.total",
                1,
                {"type": validation_type, "result": "success" if success else "failed"},
            )
            if not success:
                self._provider.increment(
                    "validation.errors", error_count, {"type": validation_type}
                )

    def record_error(self, error_type: ErrorType, error_code: str, endpoint: str) -> None:
        if not self._enabled:
            return
        with self._guard("Error metrics"):
            self._provider.increment(
                "errors.total",
                1,
                {"type": error_type, "code": error_code, "endpoint": endpoint},
            )
