"""
Application factory for serving a pipeline over FastAPI.

Every path under the app is forwarded to a single ``RequestProcessor``; the
pipeline does its own routing.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import Response

from request_pipeline.core.common.logging_utils import configure_logging
from request_pipeline.core.domain.router_config import RouterConfig
from request_pipeline.core.services.rate_limit_store import InMemoryRateLimitStore
from request_pipeline.core.services.request_processor import RequestProcessor
from request_pipeline.core.transport.fastapi.response_adapters import (
    to_starlette_response,
)

logger = logging.getLogger(__name__)

HTTP_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"]


def create_app(
    config: RouterConfig,
    *,
    rate_limit_store: InMemoryRateLimitStore | None = None,
    configure_logs: bool = False,
) -> FastAPI:
    """Build the FastAPI application for a router configuration.

    Args:
        config: Routes, procedures, plugins and settings of the pipeline
        rate_limit_store: Store whose periodic cleanup runs for the app's
            lifetime, if rate limiting is used
        configure_logs: Apply ``config.settings.logging`` to structlog

    Returns:
        The FastAPI ASGI application instance.
    """
    settings = config.settings
    if configure_logs:
        configure_logging(settings.logging.level.value, settings.logging.format)

    processor = RequestProcessor(config)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        # Startup
        if rate_limit_store is not None:
            rate_limit_store.start_cleanup()
        logger.info("Application startup complete")
        yield
        # Shutdown
        logger.info("Shutting down application")
        if rate_limit_store is not None:
            await rate_limit_store.stop_cleanup()

    app = FastAPI(
        lifespan=lifespan,
        debug=settings.is_development,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.state.processor = processor
    app.state.settings = settings

    async def dispatch(request: Request) -> Response:
        envelope = await processor.process(request)
        return to_starlette_response(envelope)

    app.add_api_route(
        "/{full_path:path}",
        dispatch,
        methods=HTTP_METHODS,
        include_in_schema=False,
    )
    return app
