"""
Rate limiting procedure.

Counts requests per key in a fixed window and rejects the request with
``RATE_LIMIT_EXCEEDED`` (429) once the budget is spent.
"""

from __future__ import annotations

import math
import time
from collections.abc import Callable
from typing import Any

from request_pipeline.core.common.exceptions import RateLimitExceededError
from request_pipeline.core.config.app_config import RateLimitConfig
from request_pipeline.core.domain.processed_context import ProcessedRequest
from request_pipeline.core.domain.procedures import Procedure, ProcedureContext
from request_pipeline.core.interfaces.rate_limit_store_interface import IRateLimitStore

KeyGenerator = Callable[[ProcessedRequest], str]
SkipPredicate = Callable[[ProcessedRequest], bool]


def client_ip(request: ProcessedRequest) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    client = getattr(request.raw, "client", None)
    return getattr(client, "host", None) or "unknown"


def default_key(request: ProcessedRequest) -> str:
    return f"{client_ip(request)}:{request.path}"


def create_rate_limit_procedure(
    store: IRateLimitStore,
    max_requests: int,
    window_seconds: float,
    *,
    key_generator: KeyGenerator | None = None,
    skip: SkipPredicate | None = None,
    error_message: str | None = None,
    name: str = "rateLimit",
    clock: Callable[[], float] = time.time,
) -> Procedure:
    """Build a procedure allowing ``max_requests`` per key per window.

    Args:
        store: Counter store shared by every request
        max_requests: Requests allowed per window
        window_seconds: Window length
        key_generator: Maps a request to its counter key; client IP + path
            by default
        skip: Requests for which it returns True are not counted
        error_message: Overrides the default "Too many requests" message

    Returns:
        A procedure usable in ``RouterConfig.use`` or ``Action.use``
    """
    make_key = key_generator or default_key

    async def handler(ctx: ProcedureContext) -> dict[str, Any]:
        if skip is not None and skip(ctx.request):
            return {}

        window = await store.hit(make_key(ctx.request), window_seconds)
        retry_after = max(0, math.ceil(window.reset_at - clock()))

        if window.count > max_requests:
            raise RateLimitExceededError(
                error_message
                or f"Too many requests. Try again in {retry_after} seconds.",
                details={
                    "limit": max_requests,
                    "remaining": 0,
                    "reset_time": window.reset_at,
                    "retry_after": retry_after,
                },
                reset_at=window.reset_at,
            )

        remaining = max(0, max_requests - window.count)
        ctx.response.set_header("X-RateLimit-Limit", str(max_requests))
        ctx.response.set_header("X-RateLimit-Remaining", str(remaining))
        ctx.response.set_header("X-RateLimit-Reset", str(retry_after))
        return {}

    return Procedure(name=name, handler=handler)


def rate_limit_from_config(
    store: IRateLimitStore, config: RateLimitConfig, **kwargs: Any
) -> Procedure:
    """``create_rate_limit_procedure`` with limits taken from settings."""
    return create_rate_limit_procedure(
        store, config.max_requests, config.window_seconds, **kwargs
    )
