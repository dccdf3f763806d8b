from collections.abc import Callable
from typing import Any

import pytest
from request_pipeline.core.config.app_config import Environment, PipelineSettings
from request_pipeline.core.domain.cookies import RequestCookies
from request_pipeline.core.domain.processed_context import (
    ProcessedContext,
    ProcessedRequest,
)
from request_pipeline.core.services.response_builder import ResponseBuilder
from request_pipeline.core.services.telemetry_manager import TelemetryManager
from request_pipeline.core.services.telemetry_providers import (
    InMemoryTelemetryProvider,
)
from request_pipeline.core.transport.fastapi.request_adapters import build_request
from starlette.datastructures import Headers
from starlette.requests import Request


@pytest.fixture
def settings() -> PipelineSettings:
    return PipelineSettings(environment=Environment.TEST)


@pytest.fixture
def dev_settings() -> PipelineSettings:
    return PipelineSettings(environment=Environment.DEVELOPMENT)


@pytest.fixture
def telemetry_provider() -> InMemoryTelemetryProvider:
    return InMemoryTelemetryProvider()


@pytest.fixture
def telemetry_manager(telemetry_provider: InMemoryTelemetryProvider) -> TelemetryManager:
    return TelemetryManager(telemetry_provider)


@pytest.fixture
def make_request() -> Callable[..., Request]:
    """Factory for Starlette requests that do not need a server."""
    return build_request


@pytest.fixture
def make_context() -> Callable[..., ProcessedContext]:
    """Factory for a minimal ProcessedContext."""

    def _make(
        context: dict[str, Any] | None = None,
        *,
        path: str = "/api/v1/test",
        method: str = "GET",
        headers: dict[str, str] | None = None,
        body: Any = None,
        plugins: dict[str, Any] | None = None,
    ) -> ProcessedContext:
        raw_headers = Headers(headers or {})
        return ProcessedContext(
            request=ProcessedRequest(
                path=path,
                method=method,
                headers=raw_headers,
                cookies=RequestCookies(raw_headers),
                body=body,
            ),
            response=ResponseBuilder(),
            context=dict(context or {}),
            plugins=dict(plugins or {}),
        )

    return _make
