"""
Route table and resolution stage.

``RouteTable`` compiles action path templates with Starlette's path compiler
(``/users/{id}``; ``/users/:id`` is accepted as an alias). ``RouteResolver``
wraps a lookup with its span, metrics and 404 reasons.
"""

from __future__ import annotations

import re
import time
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from starlette.convertors import Convertor
from starlette.routing import compile_path

from request_pipeline.core.common.exceptions import ConfigurationError
from request_pipeline.core.common.logging_utils import child_logger
from request_pipeline.core.domain.actions import Action
from request_pipeline.core.interfaces.model_bases import InternalDTO
from request_pipeline.core.interfaces.route_matcher_interface import (
    IRouteMatcher,
    RouteMatch,
)
from request_pipeline.core.interfaces.telemetry_interface import ITelemetrySpan
from request_pipeline.core.services.telemetry_manager import (
    TelemetryManager,
    elapsed_ms,
)

_COLON_PARAM = re.compile(r"(?<=/):([A-Za-z_][A-Za-z0-9_]*)")


def join_paths(*parts: str) -> str:
    segments = [p.strip("/") for p in parts if p and p.strip("/")]
    return "/" + "/".join(segments)


@dataclass(frozen=True)
class _CompiledRoute:
    method: str
    template: str
    regex: re.Pattern[str]
    convertors: dict[str, Convertor[Any]]
    action: Action


class RouteTable(IRouteMatcher):
    """Method + path template lookup over registered actions."""

    def __init__(self, base_path: str = "", actions: Iterable[Action] = ()) -> None:
        self._base_path = base_path
        self._routes: list[_CompiledRoute] = []
        for action in actions:
            self.add(action)

    def add(self, action: Action) -> None:
        template = join_paths(self._base_path, _COLON_PARAM.sub(r"{\1}", action.path))
        method = action.method.upper()
        if any(r.method == method and r.template == template for r in self._routes):
            raise ConfigurationError(
                f"Duplicate route {method} {template}",
                details={"action": action.name},
            )
        regex, _, convertors = compile_path(template)
        self._routes.append(
            _CompiledRoute(method, template, regex, convertors, action)
        )

    def find(self, method: str, path: str) -> RouteMatch | None:
        method = method.upper()
        for route in self._routes:
            if route.method != method:
                continue
            match = route.regex.match(path)
            if match is None:
                continue
            params = {
                key: route.convertors[key].convert(value)
                for key, value in match.groupdict().items()
            }
            return RouteMatch(action=route.action, params=params)
        return None

    def __len__(self) -> int:
        return len(self._routes)


@dataclass(frozen=True)
class RouteResult(InternalDTO):
    success: bool
    match: RouteMatch | None = None
    status_code: int = 200
    reason: str | None = None


class RouteResolver:
    """Resolves the action for a request and reports resolution telemetry."""

    def __init__(
        self,
        routes: IRouteMatcher,
        telemetry: TelemetryManager | None = None,
        logger: Any | None = None,
    ) -> None:
        self._routes = routes
        self._telemetry = telemetry or TelemetryManager(logger=logger)
        self._logger = child_logger(logger, "RouteResolver")

    def resolve(
        self, method: str, path: str, parent_span: ITelemetrySpan | None = None
    ) -> RouteResult:
        start_time = time.monotonic()
        span = self._telemetry.create_route_resolution_span(method, path, parent_span)
        self._logger.debug("Route resolution started", method=method, path=path)

        if not path:
            self._logger.warning(
                "Route resolution failed", method=method, reason="invalid path"
            )
            self._finish(span, method, "empty", None, start_time)
            return RouteResult(
                success=False, status_code=404, reason="Not Found - Empty path"
            )

        match = self._routes.find(method, path)
        self._finish(span, method, path, match, start_time)

        if match is None:
            self._logger.warning("Route not found", method=method, path=path)
            return RouteResult(
                success=False,
                status_code=404,
                reason="Not Found - Route not registered",
            )

        self._logger.debug(
            "Route resolved",
            method=method,
            path=path,
            action=match.action.name,
            params=list(match.params),
        )
        return RouteResult(success=True, match=match)

    def _finish(
        self,
        span: ITelemetrySpan | None,
        method: str,
        path: str,
        match: RouteMatch | None,
        start_time: float,
    ) -> None:
        duration = elapsed_ms(start_time)
        params_count = len(match.params) if match is not None else 0
        self._telemetry.finish_route_resolution_span(
            span, match is not None, params_count, duration
        )
        self._telemetry.record_route_resolution(method, path, match is not None, duration)
