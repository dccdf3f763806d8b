"""
Common exception classes for the request pipeline.

This module defines the structured framework errors raised by pipeline
stages and procedures. Every framework error carries its own ``code`` and
``status_code`` so the error handler can render it without guessing.
"""

from __future__ import annotations

from typing import Any


class PipelineError(Exception):
    """Base exception class for all framework errors."""

    default_code = "PIPELINE_ERROR"
    default_status_code = 500

    def __init__(
        self,
        message: str,
        details: Any | None = None,
        *,
        code: str | None = None,
        status_code: int | None = None,
        **kwargs: Any,
    ):
        """Initialize the exception.

        Args:
            message: Human-readable error message
            details: Optional payload echoed to the client under ``details``
            code: Stable machine-readable error code
            status_code: HTTP status code used when rendering the error
        """
        super().__init__(message)
        self.message = message
        self.details = details
        self.code = code or self.default_code
        self.status_code = status_code or self.default_status_code
        # Attach any extra attributes provided by callers
        for key, value in (kwargs or {}).items():
            setattr(self, key, value)


class BodyParseError(PipelineError):
    """Raised when a request body cannot be decoded for a schema'd route."""

    default_code = "BODY_PARSE_ERROR"
    default_status_code = 400

    def __init__(
        self,
        message: str = "Failed to parse request body",
        details: Any | None = None,
        **kwargs: Any,
    ):
        super().__init__(message, details, **kwargs)


class SchemaValidationError(PipelineError):
    """Raised when request input does not satisfy an action schema.

    The ``issues`` list is what the error handler keys on, so any object
    exposing an ``issues`` list is treated the same way.
    """

    default_code = "VALIDATION_ERROR"
    default_status_code = 400

    def __init__(
        self,
        issues: list[Any],
        message: str = "Request validation failed",
        *,
        source: str = "body",
        **kwargs: Any,
    ):
        super().__init__(message, issues, **kwargs)
        self.issues = issues
        self.source = source


class RateLimitExceededError(PipelineError):
    """Raised when a client exceeds its request budget."""

    default_code = "RATE_LIMIT_EXCEEDED"
    default_status_code = 429

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        details: Any | None = None,
        **kwargs: Any,
    ):
        reset_at = kwargs.pop("reset_at", None)
        super().__init__(message, details, **kwargs)
        # epoch seconds at which the window resets, used for Retry-After
        self.reset_at: float | None = reset_at


class RequestTimeoutError(PipelineError):
    """Raised by the orchestrator when the whole pipeline exceeds its budget."""

    default_code = "REQUEST_TIMEOUT"
    default_status_code = 504

    def __init__(
        self,
        message: str = "Request processing timed out",
        details: Any | None = None,
        **kwargs: Any,
    ):
        super().__init__(message, details, **kwargs)


class RouteNotFoundError(PipelineError):
    """Raised when a direct call targets an action that is not registered."""

    default_code = "ROUTE_NOT_FOUND"
    default_status_code = 404

    def __init__(
        self, message: str = "Route not found", details: Any | None = None, **kwargs: Any
    ):
        super().__init__(message, details, **kwargs)


class ConfigurationError(PipelineError):
    """Raised when there's a configuration issue."""

    default_code = "CONFIGURATION_ERROR"
    default_status_code = 500

    def __init__(
        self,
        message: str = "Configuration error",
        details: Any | None = None,
        **kwargs: Any,
    ):
        super().__init__(message, details, **kwargs)


class PluginError(PipelineError):
    """Raised when a plugin cannot be registered or dispatched to."""

    default_code = "PLUGIN_ERROR"
    default_status_code = 500

    def __init__(
        self,
        message: str = "Plugin error",
        plugin_name: str | None = None,
        details: Any | None = None,
        **kwargs: Any,
    ):
        super().__init__(message, details, **kwargs)
        self.plugin_name = plugin_name
