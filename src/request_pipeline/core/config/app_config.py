from __future__ import annotations

import logging
import os
from collections.abc import Callable, Mapping
from enum import Enum
from typing import Any

from pydantic import ConfigDict, Field, field_validator

from request_pipeline.core.common.logging_utils import LogFormat
from request_pipeline.core.interfaces.model_bases import DomainModel

logger = logging.getLogger(__name__)


def _env_to_bool(name: str, default: bool, env: Mapping[str, str]) -> bool:
    """Return an environment variable parsed as a boolean flag."""
    value = env.get(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_env_value(
    env: Mapping[str, str],
    name: str,
    default: Any,
    *,
    transform: Callable[[str], Any] | None = None,
) -> Any:
    """Return an environment variable value, transformed when requested."""
    if name in env:
        raw_value = env[name]
        return transform(raw_value) if transform is not None else raw_value
    return default


def _to_int(value: str, fallback: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return fallback


def _to_float(value: str, fallback: float | None) -> float | None:
    try:
        return float(value)
    except (TypeError, ValueError):
        return fallback


class Environment(str, Enum):
    """Deployment modes recognised by the pipeline."""

    DEVELOPMENT = "development"
    PRODUCTION = "production"
    TEST = "test"


class LogLevel(str, Enum):
    """Log levels for configuration."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class LoggingConfig(DomainModel):
    """Logging configuration."""

    level: LogLevel = LogLevel.INFO
    format: LogFormat = LogFormat.CONSOLE
    # Emit one access line per response (method, url, status, duration, ip)
    request_logging: bool = True


class RateLimitConfig(DomainModel):
    """Defaults for the rate-limit procedure."""

    max_requests: int = 60
    window_seconds: float = 60.0
    # How often expired windows are evicted from the in-memory store
    cleanup_interval_seconds: float = 300.0

    @field_validator("max_requests")
    @classmethod
    def validate_max_requests(cls, v: int) -> int:
        if v < 1:
            raise ValueError("max_requests must be at least 1")
        return v


class PipelineSettings(DomainModel):
    """Environment-driven settings for the request pipeline."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    environment: Environment = Environment.PRODUCTION
    base_path: str = "/api/v1"
    # Whole-request budget in seconds; None disables the timeout
    request_timeout: float | None = None
    disable_error_tracking: bool = False

    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    rate_limit: RateLimitConfig = Field(default_factory=RateLimitConfig)

    @field_validator("base_path")
    @classmethod
    def validate_base_path(cls, v: str) -> str:
        v = "/" + v.strip("/") if v.strip("/") else ""
        return v

    @field_validator("request_timeout")
    @classmethod
    def validate_request_timeout(cls, v: float | None) -> float | None:
        if v is not None and v <= 0:
            return None
        return v

    @property
    def is_development(self) -> bool:
        return self.environment == Environment.DEVELOPMENT

    @classmethod
    def from_env(cls, *, environ: Mapping[str, str] | None = None) -> PipelineSettings:
        """Create settings from environment variables.

        Returns:
            PipelineSettings instance
        """
        env: Mapping[str, str] = environ if environ is not None else os.environ

        raw_environment = str(_get_env_value(env, "APP_ENV", "production")).lower()
        try:
            environment = Environment(raw_environment)
        except ValueError:
            logger.warning(
                "Unknown APP_ENV %r, falling back to production", raw_environment
            )
            environment = Environment.PRODUCTION

        config: dict[str, Any] = {
            "environment": environment,
            "base_path": _get_env_value(env, "PIPELINE_BASE_PATH", "/api/v1"),
            "request_timeout": _get_env_value(
                env,
                "PIPELINE_REQUEST_TIMEOUT",
                None,
                transform=lambda value: _to_float(value, None),
            ),
            "disable_error_tracking": _env_to_bool(
                "DISABLE_ERROR_TRACKING", False, env
            ),
            "logging": {
                "level": str(_get_env_value(env, "LOG_LEVEL", "INFO")).upper(),
                "format": str(_get_env_value(env, "LOG_FORMAT", "console")).lower(),
                "request_logging": _env_to_bool("REQUEST_LOGGING", True, env),
            },
            "rate_limit": {
                "max_requests": _get_env_value(
                    env,
                    "RATE_LIMIT_MAX",
                    60,
                    transform=lambda value: _to_int(value, 60),
                ),
                "window_seconds": _get_env_value(
                    env,
                    "RATE_LIMIT_WINDOW",
                    60.0,
                    transform=lambda value: _to_float(value, 60.0),
                ),
                "cleanup_interval_seconds": _get_env_value(
                    env,
                    "RATE_LIMIT_CLEANUP_INTERVAL",
                    300.0,
                    transform=lambda value: _to_float(value, 300.0),
                ),
            },
        }

        return cls(**config)
