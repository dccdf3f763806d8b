"""
Unified error handling for the request pipeline.

Every failure that escapes a pipeline stage ends up here and is rendered as
the fixed ``{"error": {...}, "data": null}`` envelope. Handling never raises:
logging, telemetry and error tracking failures are contained.
"""

from __future__ import annotations

import inspect
import json
import logging
import traceback
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Literal

from pydantic import ValidationError

from request_pipeline.core.common.exceptions import PipelineError
from request_pipeline.core.common.logging_utils import child_logger
from request_pipeline.core.config.app_config import PipelineSettings
from request_pipeline.core.domain.processed_context import ProcessedContext
from request_pipeline.core.domain.response_envelope import (
    ResponseEnvelope,
    build_error_envelope,
)
from request_pipeline.core.interfaces.model_bases import InternalDTO
from request_pipeline.core.services.telemetry_manager import (
    TelemetryManager,
    TelemetrySpan,
    elapsed_ms,
)

# Last-resort sink when the structured logger itself fails
_fallback_logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NormalizedError(InternalDTO):
    message: str
    code: str
    details: Any = None
    stack: str | None = None


@dataclass(frozen=True)
class ErrorHandlingResult(InternalDTO):
    response: ResponseEnvelope
    handled: Literal[True] = True


def _stack_of(error: BaseException) -> str:
    return "".join(
        traceback.format_exception(type(error), error, error.__traceback__)
    )


def validation_issues(error: ValidationError) -> list[Any]:
    """JSON-safe issue list of a pydantic ``ValidationError``."""
    return json.loads(error.json(include_url=False))


def _issues_of(error: Any) -> list[Any] | None:
    """Return the validation issue list of ``error``, if it has one."""
    if isinstance(error, ValidationError):
        return validation_issues(error)
    if isinstance(error, Mapping):
        issues = error.get("issues")
    else:
        issues = getattr(error, "issues", None)
    return issues if isinstance(issues, list) else None


def _attr(error: Any, name: str) -> Any:
    if isinstance(error, Mapping):
        return error.get(name)
    return getattr(error, name, None)


def normalize_error(error: Any) -> NormalizedError:
    """Reduce any raised or reported value to message/code/details/stack."""
    if error is None:
        return NormalizedError(message="Unknown error occurred", code="UNKNOWN_ERROR")

    if isinstance(error, str):
        return NormalizedError(message=error, code="GENERIC_ERROR")

    if isinstance(error, PipelineError):
        return NormalizedError(
            message=error.message,
            code=error.code,
            details=error.details,
            stack=_stack_of(error),
        )

    if isinstance(error, ValidationError):
        return NormalizedError(
            message=f"Validation failed for {error.title}",
            code="VALIDATION_ERROR",
            details=validation_issues(error),
            stack=_stack_of(error),
        )

    if isinstance(error, BaseException):
        code = getattr(error, "code", None)
        return NormalizedError(
            message=str(error) or "Unknown error",
            code=code if isinstance(code, str) and code else "GENERIC_ERROR",
            details=getattr(error, "details", None),
            stack=_stack_of(error),
        )

    issues = _issues_of(error)
    if issues is not None:
        return NormalizedError(
            message=_attr(error, "message") or "Validation failed",
            code=_attr(error, "code") or "VALIDATION_ERROR",
            details=issues,
            stack=_attr(error, "stack"),
        )

    if isinstance(error, Mapping) or hasattr(error, "__dict__"):
        return NormalizedError(
            message=_attr(error, "message") or "Object-based error",
            code=_attr(error, "code") or "GENERIC_ERROR",
            details=_attr(error, "details") or error,
            stack=_attr(error, "stack"),
        )

    return NormalizedError(message=str(error), code="UNKNOWN_ERROR")


class ErrorHandler:
    """Classifies pipeline failures and renders their error responses."""

    def __init__(
        self,
        settings: PipelineSettings | None = None,
        telemetry: TelemetryManager | None = None,
        logger: Any | None = None,
    ) -> None:
        self._settings = settings or PipelineSettings()
        self._telemetry = telemetry or TelemetryManager(logger=logger)
        self._logger = child_logger(logger, "ErrorHandler")

    async def handle_error(
        self,
        error: Any,
        context: ProcessedContext,
        telemetry_span: TelemetrySpan | None,
        start_time: float,
    ) -> ErrorHandlingResult:
        """Route ``error`` to the validation, framework or generic path."""
        issues = _issues_of(error)
        if issues is not None:
            return await self.handle_validation_error(
                error, issues, context, telemetry_span, start_time
            )
        if isinstance(error, PipelineError):
            return await self.handle_framework_error(
                error, context, telemetry_span, start_time
            )
        return await self.handle_generic_error(
            error, context, telemetry_span, start_time
        )

    async def handle_validation_error(
        self,
        error: Any,
        issues: list[Any],
        context: ProcessedContext,
        telemetry_span: TelemetrySpan | None,
        start_time: float,
    ) -> ErrorHandlingResult:
        status_code = 400
        normalized = normalize_error(error)
        self._logger.warning(
            "Request validation failed",
            code=normalized.code,
            message=normalized.message,
            path=context.request.path,
            method=context.request.method,
        )
        await self._track_error(context, start_time, status_code, error)
        self._telemetry.finish_span_error(telemetry_span, status_code, error)
        self._telemetry.record_error("validation", "VALIDATION_ERROR", context.request.path)

        return ErrorHandlingResult(
            response=build_error_envelope(
                status_code, "Validation Error", "VALIDATION_ERROR", issues
            )
        )

    async def handle_framework_error(
        self,
        error: PipelineError,
        context: ProcessedContext,
        telemetry_span: TelemetrySpan | None,
        start_time: float,
    ) -> ErrorHandlingResult:
        status_code = error.status_code
        self._logger.error(
            "Framework error",
            code=error.code,
            message=error.message,
            path=context.request.path,
            method=context.request.method,
        )
        await self._track_error(context, start_time, status_code, error)
        self._telemetry.finish_span_error(telemetry_span, status_code, error)
        self._telemetry.record_error("framework", error.code, context.request.path)

        headers: dict[str, str] = {}
        details = error.details
        if isinstance(details, Mapping) and details.get("retry_after") is not None:
            headers["Retry-After"] = str(details["retry_after"])

        return ErrorHandlingResult(
            response=build_error_envelope(
                status_code, error.message, error.code, error.details, headers
            )
        )

    async def handle_generic_error(
        self,
        error: Any,
        context: ProcessedContext,
        telemetry_span: TelemetrySpan | None,
        start_time: float,
    ) -> ErrorHandlingResult:
        status_code = 500
        normalized = normalize_error(error)
        message = normalized.message or "Internal Server Error"
        self._logger.error(
            "Unhandled error occurred",
            code=normalized.code,
            message=message,
            path=context.request.path,
            method=context.request.method,
            stack=normalized.stack,
        )
        await self._track_error(context, start_time, status_code, error)
        self._telemetry.finish_span_error(telemetry_span, status_code, error)
        self._telemetry.record_error("generic", normalized.code, context.request.path)

        return ErrorHandlingResult(
            response=build_error_envelope(
                status_code,
                message,
                "INTERNAL_SERVER_ERROR",
                self._development_details(normalized),
            )
        )

    async def handle_initialization_error(
        self,
        error: Any,
        context: ProcessedContext | None,
        telemetry_span: TelemetrySpan | None,
        start_time: float,
    ) -> ErrorHandlingResult:
        """Render a failure that happened before a usable context existed."""
        status_code = 500
        normalized = normalize_error(error)
        path = context.request.path if context is not None else None
        self._logger.error(
            "Context initialization failed",
            code=normalized.code,
            message=normalized.message,
            path=path,
            method=context.request.method if context is not None else None,
        )
        self._telemetry.cleanup_span(telemetry_span, status_code, error)
        self._telemetry.record_error("initialization", normalized.code, path or "unknown")
        if context is not None:
            await self._track_error(context, start_time, status_code, error)

        return ErrorHandlingResult(
            response=build_error_envelope(
                status_code,
                "Request initialization failed",
                "INITIALIZATION_ERROR",
                self._development_details(normalized),
            )
        )

    def _development_details(self, normalized: NormalizedError) -> Any:
        if not self._settings.is_development:
            return None
        return {
            "message": normalized.message,
            "code": normalized.code,
            "details": normalized.details,
            "stack": normalized.stack,
        }

    async def _track_error(
        self,
        context: ProcessedContext | None,
        start_time: float,
        status_code: int,
        error: Any,
    ) -> None:
        try:
            if context is None or context.request is None:
                self._logger.warning(
                    "Error tracking skipped", reason="request context missing"
                )
                return
            if self._settings.disable_error_tracking:
                self._logger.debug(
                    "Error tracking disabled", reason="DISABLE_ERROR_TRACKING=true"
                )
                return

            request = context.request
            normalized = normalize_error(error)
            duration = elapsed_ms(start_time)

            tracker = context.plugins.get("error_tracker")
            capture = getattr(tracker, "capture_exception", None)
            if callable(capture):
                result = capture(
                    error,
                    extra={
                        "request": {"path": request.path, "method": request.method},
                        "status_code": status_code,
                        "duration_ms": duration,
                    },
                )
                if inspect.isawaitable(result):
                    await result

            self._logger.debug(
                "Error tracking completed",
                error={"code": normalized.code, "message": normalized.message},
                request={
                    "path": request.path,
                    "method": request.method,
                    "header_keys": list(request.headers.keys()),
                    "has_body": bool(request.body),
                },
                status_code=status_code,
                duration_ms=duration,
            )
        except Exception as e:  # tracking must never replace the real error
            _fallback_logger.debug("Error tracking failed: %s", e)
