"""
Tests for the rate limiting procedure.
"""

from collections.abc import Callable

import pytest
from request_pipeline.core.common.exceptions import RateLimitExceededError
from request_pipeline.core.config.app_config import RateLimitConfig
from request_pipeline.core.domain.processed_context import (
    ProcessedContext,
    ProcessedRequest,
)
from request_pipeline.core.domain.procedures import ProcedureContext
from request_pipeline.core.procedures.rate_limit import (
    client_ip,
    create_rate_limit_procedure,
    default_key,
    rate_limit_from_config,
)
from request_pipeline.core.services.rate_limit_store import InMemoryRateLimitStore
from request_pipeline.core.transport.fastapi.request_adapters import build_request
from starlette.datastructures import Headers


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def procedure_context(context: ProcessedContext) -> ProcedureContext:
    return ProcedureContext(
        request=context.request, context=context.context, response=context.response
    )


class TestKeys:
    def test_forwarded_for_wins(self) -> None:
        request = ProcessedRequest(
            path="/a",
            method="GET",
            headers=Headers({"x-forwarded-for": "10.0.0.1, 10.0.0.2"}),
        )
        assert client_ip(request) == "10.0.0.1"
        assert default_key(request) == "10.0.0.1:/a"

    def test_peer_address(self) -> None:
        raw = build_request("GET", "/a", client=("192.168.1.9", 5000))
        request = ProcessedRequest(path="/a", method="GET", raw=raw)
        assert client_ip(request) == "192.168.1.9"

    def test_unknown(self) -> None:
        assert client_ip(ProcessedRequest(path="/a", method="GET")) == "unknown"


class TestRateLimitProcedure:
    @pytest.mark.asyncio
    async def test_allows_up_to_limit_then_rejects(
        self, make_context: Callable[..., ProcessedContext]
    ) -> None:
        clock = FakeClock()
        store = InMemoryRateLimitStore(clock=clock)
        limit = create_rate_limit_procedure(store, 2, 60, clock=clock)

        for _ in range(2):
            ctx = procedure_context(make_context())
            assert await limit.handler(ctx) == {}

        clock.now = 1015.2
        with pytest.raises(RateLimitExceededError) as exc_info:
            await limit.handler(procedure_context(make_context()))

        error = exc_info.value
        assert error.status_code == 429
        assert error.code == "RATE_LIMIT_EXCEEDED"
        assert error.details == {
            "limit": 2,
            "remaining": 0,
            "reset_time": 1060.0,
            "retry_after": 45,
        }
        assert error.reset_at == 1060.0
        assert error.message == "Too many requests. Try again in 45 seconds."

    @pytest.mark.asyncio
    async def test_sets_rate_limit_headers(
        self, make_context: Callable[..., ProcessedContext]
    ) -> None:
        clock = FakeClock()
        limit = create_rate_limit_procedure(
            InMemoryRateLimitStore(clock=clock), 5, 30, clock=clock
        )
        context = make_context()

        await limit.handler(procedure_context(context))

        assert context.response.headers == {
            "X-RateLimit-Limit": "5",
            "X-RateLimit-Remaining": "4",
            "X-RateLimit-Reset": "30",
        }

    @pytest.mark.asyncio
    async def test_skip_and_custom_key_and_message(
        self, make_context: Callable[..., ProcessedContext]
    ) -> None:
        store = InMemoryRateLimitStore()
        limit = create_rate_limit_procedure(
            store,
            1,
            60,
            key_generator=lambda request: request.headers.get("x-api-key", "anon"),
            skip=lambda request: request.path == "/health",
            error_message="Slow down",
        )

        for _ in range(3):
            await limit.handler(procedure_context(make_context(path="/health")))
        assert len(store) == 0

        await limit.handler(
            procedure_context(make_context(headers={"x-api-key": "k1"}))
        )
        await limit.handler(
            procedure_context(make_context(headers={"x-api-key": "k2"}))
        )
        with pytest.raises(RateLimitExceededError, match="Slow down"):
            await limit.handler(
                procedure_context(make_context(headers={"x-api-key": "k1"}))
            )

    def test_from_config(self) -> None:
        procedure = rate_limit_from_config(
            InMemoryRateLimitStore(),
            RateLimitConfig(max_requests=10, window_seconds=5),
            name="apiLimit",
        )

        assert procedure.name == "apiLimit"
        assert callable(procedure.handler)
