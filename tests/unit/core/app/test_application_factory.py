"""
End-to-end tests for the FastAPI application built by create_app.
"""

from typing import Any

import pytest
from fastapi.testclient import TestClient
from pydantic import BaseModel
from request_pipeline.core.app.application_factory import create_app
from request_pipeline.core.config.app_config import Environment, PipelineSettings
from request_pipeline.core.domain.actions import Action, ActionContext
from request_pipeline.core.domain.procedures import Procedure, ProcedureContext
from request_pipeline.core.domain.router_config import RouterConfig
from request_pipeline.core.procedures.rate_limit import create_rate_limit_procedure
from request_pipeline.core.services.rate_limit_store import InMemoryRateLimitStore
from request_pipeline.core.services.route_resolver import RouteTable
from starlette.responses import StreamingResponse


class Note(BaseModel):
    title: str = "untitled"


def make_config(
    actions: list[Action],
    environment: Environment = Environment.TEST,
    **config: Any,
) -> RouterConfig:
    settings = PipelineSettings(environment=environment)
    return RouterConfig(
        routes=RouteTable(settings.base_path, actions),
        settings=settings,
        **config,
    )


def db_down(ctx: ActionContext) -> None:
    raise RuntimeError("db down")


class TestEndToEnd:
    def test_empty_json_body_is_empty_object(self) -> None:
        seen: list[Any] = []

        def capture(ctx: ProcedureContext) -> None:
            seen.append(ctx.request.body)

        config = make_config(
            [
                Action(
                    name="create",
                    method="POST",
                    path="/notes",
                    handler=lambda ctx: ctx.request.body.model_dump(),
                    body=Note,
                )
            ],
            use=[Procedure(name="capture", handler=capture)],
        )

        with TestClient(create_app(config)) as client:
            response = client.post(
                "/api/v1/notes",
                content=b"",
                headers={"content-type": "application/json"},
            )

        assert response.status_code == 200
        assert response.json() == {"title": "untitled"}
        assert seen == [{}]

    def test_unhandled_error_is_opaque_500(self) -> None:
        config = make_config([Action(name="a", method="GET", path="/a", handler=db_down)])

        with TestClient(create_app(config)) as client:
            response = client.get("/api/v1/a")

        assert response.status_code == 500
        assert response.headers["content-type"] == "application/json"
        assert response.json() == {
            "error": {
                "message": "db down",
                "code": "INTERNAL_SERVER_ERROR",
                "details": None,
            },
            "data": None,
        }

    def test_unhandled_error_details_in_development(self) -> None:
        config = make_config(
            [Action(name="a", method="GET", path="/a", handler=db_down)],
            environment=Environment.DEVELOPMENT,
        )

        with TestClient(create_app(config)) as client:
            body = client.get("/api/v1/a").json()

        assert body["error"]["message"] == "db down"
        assert body["error"]["details"]["code"] == "GENERIC_ERROR"
        assert "db down" in body["error"]["details"]["stack"]

    def test_handler_validation_error_is_400(self) -> None:
        class Counter(BaseModel):
            n: int

        config = make_config(
            [
                Action(
                    name="count",
                    method="GET",
                    path="/count",
                    handler=lambda ctx: Counter.model_validate({"n": "x"}),
                )
            ]
        )

        with TestClient(create_app(config)) as client:
            response = client.get("/api/v1/count")

        assert response.status_code == 400
        error = response.json()["error"]
        assert error["code"] == "VALIDATION_ERROR"
        assert error["message"] == "Validation Error"
        assert error["details"][0]["loc"] == ["n"]

    def test_middleware_patches_last_write_wins(self) -> None:
        config = make_config(
            [
                Action(
                    name="me",
                    method="GET",
                    path="/me",
                    handler=lambda ctx: ctx.context["user"],
                )
            ],
            use=[
                Procedure(name="m1", handler=lambda ctx: {"user": {"id": 1}}),
                Procedure(name="m2", handler=lambda ctx: {"user": {"id": 2}}),
            ],
        )

        with TestClient(create_app(config)) as client:
            assert client.get("/api/v1/me").json() == {"id": 2}

    def test_rate_limit_renders_429(self) -> None:
        store = InMemoryRateLimitStore()
        config = make_config(
            [Action(name="a", method="GET", path="/a", handler=lambda ctx: {"ok": True})],
            use=[create_rate_limit_procedure(store, 1, 60)],
        )

        with TestClient(create_app(config, rate_limit_store=store)) as client:
            first = client.get("/api/v1/a")
            second = client.get("/api/v1/a")

        assert first.status_code == 200
        assert first.headers["x-ratelimit-limit"] == "1"
        assert first.headers["x-ratelimit-remaining"] == "0"
        assert second.status_code == 429
        error = second.json()["error"]
        assert error["code"] == "RATE_LIMIT_EXCEEDED"
        assert error["details"]["limit"] == 1
        assert error["details"]["remaining"] == 0
        assert int(second.headers["retry-after"]) == error["details"]["retry_after"]

    def test_unknown_route_is_404(self) -> None:
        with TestClient(create_app(make_config([]))) as client:
            response = client.delete("/api/v1/missing")

        assert response.status_code == 404
        assert response.headers["x-status-reason"] == "Not Found - Route not registered"

    def test_cookies_both_ways(self) -> None:
        def handler(ctx: ActionContext) -> Any:
            theme = ctx.request.cookies.get("theme", "light")
            return (
                ctx.response.set_cookie("a", "1")
                .set_cookie("b", "2", http_only=True)
                .success({"theme": theme})
            )

        config = make_config(
            [Action(name="prefs", method="GET", path="/prefs", handler=handler)]
        )

        with TestClient(create_app(config)) as client:
            client.cookies.set("theme", "dark")
            response = client.get("/api/v1/prefs")

        assert response.json() == {"data": {"theme": "dark"}, "error": None}
        assert response.headers.get_list("set-cookie") == ["a=1", "b=2; HttpOnly"]


class TestLifespan:
    def test_rate_limit_cleanup_follows_app_lifetime(self) -> None:
        store = InMemoryRateLimitStore(cleanup_interval_seconds=60)
        app = create_app(make_config([]), rate_limit_store=store)

        with TestClient(app):
            assert store._cleanup_task is not None
            assert not store._cleanup_task.done()

        assert store._cleanup_task is None

    def test_app_state(self) -> None:
        config = make_config([])
        app = create_app(config)

        assert app.state.settings is config.settings
        assert app.state.processor.telemetry.enabled is False


@pytest.mark.parametrize("method", ["get", "post", "put", "patch", "delete"])
def test_methods_are_forwarded(method: str) -> None:
    action = Action(
        name=method,
        method=method.upper(),
        path="/echo",
        handler=lambda ctx: {"method": ctx.request.method},
    )

    with TestClient(create_app(make_config([action]))) as client:
        response = getattr(client, method)("/api/v1/echo")

    assert response.json() == {"method": method.upper()}


def test_streaming_handler_result_keeps_its_body() -> None:
    async def chunks():
        yield b"hel"
        yield b"lo"

    action = Action(
        name="stream",
        method="GET",
        path="/stream",
        handler=lambda ctx: StreamingResponse(chunks(), media_type="text/plain"),
    )

    with TestClient(create_app(make_config([action]))) as client:
        response = client.get("/api/v1/stream")

    assert response.status_code == 200
    assert response.content == b"hello"
