# Configuration package

from request_pipeline.core.config.app_config import (
    Environment,
    LoggingConfig,
    LogLevel,
    PipelineSettings,
    RateLimitConfig,
)

__all__ = [
    "Environment",
    "LogLevel",
    "LoggingConfig",
    "PipelineSettings",
    "RateLimitConfig",
]
