"""
Tests for ErrorHandler and error normalization.
"""

import time
from collections.abc import Callable
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from pydantic import BaseModel, ValidationError
from request_pipeline.core.common.exceptions import (
    BodyParseError,
    PipelineError,
    RateLimitExceededError,
    SchemaValidationError,
)
from request_pipeline.core.config.app_config import PipelineSettings
from request_pipeline.core.domain.processed_context import ProcessedContext
from request_pipeline.core.services.error_handler import ErrorHandler, normalize_error
from request_pipeline.core.services.telemetry_manager import TelemetryManager
from request_pipeline.core.services.telemetry_providers import (
    InMemoryTelemetryProvider,
)


class TestNormalizeError:
    def test_none(self) -> None:
        normalized = normalize_error(None)
        assert normalized.code == "UNKNOWN_ERROR"
        assert normalized.message == "Unknown error occurred"

    def test_string(self) -> None:
        normalized = normalize_error("boom")
        assert (normalized.message, normalized.code) == ("boom", "GENERIC_ERROR")

    def test_framework_error_keeps_its_fields(self) -> None:
        error = PipelineError("Bad thing", {"k": 1}, code="BAD_THING", status_code=418)
        normalized = normalize_error(error)

        assert normalized.message == "Bad thing"
        assert normalized.code == "BAD_THING"
        assert normalized.details == {"k": 1}
        assert normalized.stack

    def test_exception_with_and_without_code(self) -> None:
        plain = normalize_error(RuntimeError("db down"))
        assert (plain.message, plain.code) == ("db down", "GENERIC_ERROR")

        coded = RuntimeError("conflict")
        coded.code = "E_CONFLICT"  # type: ignore[attr-defined]
        assert normalize_error(coded).code == "E_CONFLICT"

    def test_issues_mapping_is_validation_shaped(self) -> None:
        normalized = normalize_error({"issues": [{"path": ["a"]}], "code": "X"})

        assert normalized.code == "X"
        assert normalized.message == "Validation failed"
        assert normalized.details == [{"path": ["a"]}]

    def test_pydantic_validation_error(self) -> None:
        class Counter(BaseModel):
            n: int

        with pytest.raises(ValidationError) as exc_info:
            Counter.model_validate({})

        normalized = normalize_error(exc_info.value)

        assert normalized.code == "VALIDATION_ERROR"
        assert normalized.message == "Validation failed for Counter"
        assert normalized.details[0]["type"] == "missing"

    def test_other_objects(self) -> None:
        normalized = normalize_error(SimpleNamespace(message="custom", code="C1"))
        assert (normalized.message, normalized.code) == ("custom", "C1")

        bare = normalize_error({"detail": "x"})
        assert (bare.message, bare.code) == ("Object-based error", "GENERIC_ERROR")
        assert bare.details == {"detail": "x"}

    def test_anything_else(self) -> None:
        normalized = normalize_error(42)
        assert (normalized.message, normalized.code) == ("42", "UNKNOWN_ERROR")


class TestErrorHandlerClassification:
    @pytest.fixture
    def handler(self, settings: PipelineSettings) -> ErrorHandler:
        return ErrorHandler(settings)

    @pytest.mark.asyncio
    async def test_pydantic_validation_error_is_validation(
        self, handler: ErrorHandler, make_context: Callable[..., ProcessedContext]
    ) -> None:
        class Counter(BaseModel):
            n: int

        with pytest.raises(ValidationError) as exc_info:
            Counter.model_validate({"n": "x"})

        result = await handler.handle_error(
            exc_info.value, make_context(), None, time.monotonic()
        )

        assert result.response.status_code == 400
        error = result.response.content["error"]
        assert error["message"] == "Validation Error"
        assert error["code"] == "VALIDATION_ERROR"
        assert [issue["loc"] for issue in error["details"]] == [["n"]]
        assert error["details"][0]["type"] == "int_parsing"

    @pytest.mark.asyncio
    async def test_issues_always_classify_as_validation(
        self, handler: ErrorHandler, make_context: Callable[..., ProcessedContext]
    ) -> None:
        error = PipelineError("looks framework", code="OTHER", status_code=409)
        error.issues = [{"msg": "bad"}]  # type: ignore[attr-defined]

        result = await handler.handle_error(error, make_context(), None, time.monotonic())

        assert result.handled is True
        assert result.response.status_code == 400
        assert result.response.content == {
            "error": {
                "message": "Validation Error",
                "code": "VALIDATION_ERROR",
                "details": [{"msg": "bad"}],
            },
            "data": None,
        }

    @pytest.mark.asyncio
    async def test_schema_validation_error(
        self, handler: ErrorHandler, make_context: Callable[..., ProcessedContext]
    ) -> None:
        issues = [{"type": "missing", "loc": ["name"], "msg": "Field required"}]

        result = await handler.handle_error(
            SchemaValidationError(issues), make_context(), None, time.monotonic()
        )

        assert result.response.status_code == 400
        assert result.response.content["error"]["details"] == issues

    @pytest.mark.asyncio
    async def test_framework_error_uses_its_status(
        self, handler: ErrorHandler, make_context: Callable[..., ProcessedContext]
    ) -> None:
        error = RateLimitExceededError(
            "Too many requests", details={"limit": 1, "retry_after": 30}
        )

        result = await handler.handle_error(error, make_context(), None, time.monotonic())

        assert result.response.status_code == 429
        assert result.response.content["error"]["code"] == "RATE_LIMIT_EXCEEDED"
        assert result.response.headers["Retry-After"] == "30"
        assert result.response.headers["Content-Type"] == "application/json"

    @pytest.mark.asyncio
    async def test_generic_error_hides_details_outside_development(
        self, handler: ErrorHandler, make_context: Callable[..., ProcessedContext]
    ) -> None:
        result = await handler.handle_error(
            RuntimeError("db down"), make_context(), None, time.monotonic()
        )

        assert result.response.status_code == 500
        assert result.response.content == {
            "error": {
                "message": "db down",
                "code": "INTERNAL_SERVER_ERROR",
                "details": None,
            },
            "data": None,
        }

    @pytest.mark.asyncio
    async def test_generic_error_details_in_development(
        self,
        dev_settings: PipelineSettings,
        make_context: Callable[..., ProcessedContext],
    ) -> None:
        handler = ErrorHandler(dev_settings)

        result = await handler.handle_error(
            RuntimeError("db down"), make_context(), None, time.monotonic()
        )

        details = result.response.content["error"]["details"]
        assert details["code"] == "GENERIC_ERROR"
        assert "RuntimeError: db down" in details["stack"]

    @pytest.mark.asyncio
    async def test_string_error_is_generic(
        self, handler: ErrorHandler, make_context: Callable[..., ProcessedContext]
    ) -> None:
        result = await handler.handle_error("boom", make_context(), None, time.monotonic())

        assert result.response.status_code == 500
        assert result.response.content["error"]["message"] == "boom"

    @pytest.mark.asyncio
    async def test_initialization_error(self, handler: ErrorHandler) -> None:
        result = await handler.handle_initialization_error(
            RuntimeError("factory exploded"), None, None, time.monotonic()
        )

        assert result.response.status_code == 500
        assert result.response.content["error"] == {
            "message": "Request initialization failed",
            "code": "INITIALIZATION_ERROR",
            "details": None,
        }


class TestErrorHandlerTelemetry:
    @pytest.mark.asyncio
    async def test_span_finished_with_error_status(
        self,
        settings: PipelineSettings,
        make_context: Callable[..., ProcessedContext],
        make_request: Callable,
    ) -> None:
        provider = InMemoryTelemetryProvider()
        telemetry = TelemetryManager(provider)
        handler = ErrorHandler(settings, telemetry)
        span = telemetry.create_http_span(make_request("GET", "/api/v1/x"))

        await handler.handle_error(
            BodyParseError(details="bad"), make_context(), span, time.monotonic()
        )

        assert span is not None and span.state == "finished-error"
        assert span.span.tags["http.status_code"] == 400
        [error_metric] = provider.metrics_named("errors.total")
        assert error_metric.tags["type"] == "framework"
        assert error_metric.tags["code"] == "BODY_PARSE_ERROR"

    @pytest.mark.asyncio
    async def test_initialization_error_cleans_up_span(
        self, settings: PipelineSettings, make_request: Callable
    ) -> None:
        telemetry = TelemetryManager(InMemoryTelemetryProvider())
        handler = ErrorHandler(settings, telemetry)
        span = telemetry.create_http_span(make_request("GET", "/x"))

        await handler.handle_initialization_error(
            RuntimeError("x"), None, span, time.monotonic()
        )

        assert span is not None and span.state == "cleaned-up"
        assert span.span.finish_count == 1


class TestErrorTracking:
    @pytest.mark.asyncio
    async def test_error_tracker_plugin_is_called(
        self, settings: PipelineSettings, make_context: Callable[..., ProcessedContext]
    ) -> None:
        tracker = MagicMock()
        tracker.capture_exception = AsyncMock()
        error = RuntimeError("db down")

        await ErrorHandler(settings).handle_error(
            error,
            make_context(plugins={"error_tracker": tracker}),
            None,
            time.monotonic(),
        )

        tracker.capture_exception.assert_awaited_once()
        args, kwargs = tracker.capture_exception.call_args
        assert args == (error,)
        assert kwargs["extra"]["status_code"] == 500

    @pytest.mark.asyncio
    async def test_tracking_can_be_disabled(
        self, make_context: Callable[..., ProcessedContext]
    ) -> None:
        tracker = MagicMock()
        handler = ErrorHandler(PipelineSettings(disable_error_tracking=True))

        await handler.handle_error(
            RuntimeError("x"),
            make_context(plugins={"error_tracker": tracker}),
            None,
            time.monotonic(),
        )

        tracker.capture_exception.assert_not_called()

    @pytest.mark.asyncio
    async def test_tracker_failure_never_escapes(
        self, settings: PipelineSettings, make_context: Callable[..., ProcessedContext]
    ) -> None:
        tracker = MagicMock()
        tracker.capture_exception.side_effect = RuntimeError("tracker down")

        result = await ErrorHandler(settings).handle_error(
            RuntimeError("original"),
            make_context(plugins={"error_tracker": tracker}),
            None,
            time.monotonic(),
        )

        assert result.response.status_code == 500
        assert result.response.content["error"]["message"] == "original"
