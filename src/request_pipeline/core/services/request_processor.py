"""
Request pipeline orchestrator.

``RequestProcessor.process`` runs one request through route resolution,
context construction, global and action procedures, input validation, the
action handler and response rendering. Any failure converges in the
``ErrorHandler``; the HTTP span is always finalized and every response is
logged once.
"""

from __future__ import annotations

import asyncio
import inspect
import time
from collections.abc import Mapping
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any

from pydantic import BaseModel, ValidationError
from starlette.requests import Request
from starlette.responses import Response

from request_pipeline.core.common.exceptions import (
    RequestTimeoutError,
    RouteNotFoundError,
    SchemaValidationError,
)
from request_pipeline.core.common.logging_utils import child_logger
from request_pipeline.core.domain.actions import Action, ActionContext
from request_pipeline.core.domain.cookies import RequestCookies
from request_pipeline.core.domain.processed_context import (
    ProcessedContext,
    ProcessedRequest,
)
from request_pipeline.core.domain.response_envelope import ResponseEnvelope
from request_pipeline.core.domain.router_config import RouterConfig
from request_pipeline.core.services.body_parser import BodyParser, measure_body_size
from request_pipeline.core.services.context_builder import ContextBuilder
from request_pipeline.core.services.error_handler import (
    ErrorHandler,
    validation_issues,
)
from request_pipeline.core.services.middleware_executor import MiddlewareExecutor
from request_pipeline.core.services.response_builder import (
    ResponseBuilder,
    to_jsonable,
)
from request_pipeline.core.services.route_resolver import RouteResolver
from request_pipeline.core.services.telemetry_manager import (
    TelemetryManager,
    TelemetrySpan,
    elapsed_ms,
)
from request_pipeline.core.transport.fastapi.request_adapters import build_request
from request_pipeline.core.transport.fastapi.response_adapters import (
    envelope_from_response,
)


@dataclass
class _RequestState:
    """What the pipeline has produced so far, visible to the timeout path."""

    start_time: float
    telemetry_span: TelemetrySpan | None = None
    context: ProcessedContext | None = None


class RequestProcessor:
    """Runs requests through the pipeline configured by a ``RouterConfig``."""

    def __init__(self, config: RouterConfig) -> None:
        self._config = config
        self._settings = config.settings
        logger = config.logger
        self._logger = child_logger(logger, "RequestProcessor")

        self._telemetry = TelemetryManager(config.telemetry, logger)
        self._route_resolver = RouteResolver(config.routes, self._telemetry, logger)
        self._body_parser = BodyParser(self._telemetry, logger)
        self._context_builder = ContextBuilder(
            config, self._telemetry, self._body_parser, logger
        )
        self._middleware_executor = MiddlewareExecutor(self._telemetry, logger)
        self._error_handler = ErrorHandler(self._settings, self._telemetry, logger)

        self._logger.debug(
            "Request processor initialized",
            global_procedures=len(config.use),
            plugins=sorted(config.plugins),
            telemetry=self._telemetry.enabled,
        )

    @property
    def telemetry(self) -> TelemetryManager:
        return self._telemetry

    async def process(self, request: Request) -> ResponseEnvelope:
        """Process one request and return its final response envelope."""
        state = _RequestState(start_time=time.monotonic())
        timeout = self._settings.request_timeout

        try:
            if timeout is None:
                response = await self._run(request, state)
            else:
                response = await asyncio.wait_for(self._run(request, state), timeout)
        except asyncio.TimeoutError:
            self._logger.error(
                "Request processing timed out",
                path=request.url.path,
                method=request.method,
                timeout=timeout,
            )
            context = state.context or self._bare_context(request)
            result = await self._error_handler.handle_error(
                RequestTimeoutError(details={"timeout_seconds": timeout}),
                context,
                state.telemetry_span,
                state.start_time,
            )
            response = result.response

        self._log_response(request, response, state.start_time)
        return response

    async def call(
        self,
        method: str,
        path: str,
        *,
        body: Any = None,
        query: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> ResponseEnvelope:
        """Invoke the action registered for ``method``/``path`` in process.

        Raises:
            RouteNotFoundError: If no action matches
        """
        if self._config.routes.find(method.upper(), path) is None:
            raise RouteNotFoundError(
                f"No action registered for {method.upper()} {path}",
                details={"method": method.upper(), "path": path},
            )
        request = build_request(method, path, body=body, query=query, headers=headers)
        return await self.process(request)

    async def _run(self, request: Request, state: _RequestState) -> ResponseEnvelope:
        method = request.method
        path = request.url.path

        try:
            state.telemetry_span = self._telemetry.create_http_span(
                request, state.start_time
            )
            parent_span = (
                state.telemetry_span.span if state.telemetry_span is not None else None
            )

            route = self._route_resolver.resolve(method, path, parent_span)
            if not route.success or route.match is None:
                self._telemetry.finish_span_success(
                    state.telemetry_span, route.status_code
                )
                return ResponseEnvelope(
                    content=None,
                    headers={"X-Status-Reason": route.reason or "Not Found"},
                    status_code=route.status_code,
                )

            action = route.match.action
            context = await self._context_builder.build(
                request, route.match.params, action.has_body_schema, parent_span
            )
            context = await self._context_builder.enhance_with_plugins(
                context, self._config.plugin_manager
            )
            context = self._telemetry.bind_context(state.telemetry_span, context)
            state.context = context
        except Exception as e:
            self._logger.error(
                "Request initialization failed",
                path=path,
                method=method,
                error=str(e),
            )
            result = await self._error_handler.handle_initialization_error(
                e, state.context, state.telemetry_span, state.start_time
            )
            return result.response

        try:
            return await self._run_action(action, context, state, parent_span)
        except Exception as e:
            self._logger.error(
                "Request processing failed", path=path, method=method, error=str(e)
            )
            result = await self._error_handler.handle_error(
                e, state.context or context, state.telemetry_span, state.start_time
            )
            return result.response

    async def _run_action(
        self,
        action: Action,
        context: ProcessedContext,
        state: _RequestState,
        parent_span: Any,
    ) -> ResponseEnvelope:
        for procedures, execute in (
            (self._config.use, self._middleware_executor.execute_global),
            (action.use, self._middleware_executor.execute_action),
        ):
            if not procedures:
                continue
            outcome = await execute(context, procedures, parent_span)
            context = outcome.updated_context
            state.context = context

            if outcome.early_return is not None:
                self._logger.debug("Middleware early return")
                self._telemetry.finish_span_success(
                    state.telemetry_span, outcome.early_return.status_code
                )
                return outcome.early_return
            if outcome.error is not None:
                result = await self._error_handler.handle_error(
                    outcome.error, context, state.telemetry_span, state.start_time
                )
                return result.response
            if not outcome.success:
                self._logger.debug("Middleware supplied the action result")
                return self._render_result(
                    outcome.custom_result, state, parent_span
                )

        value = await self._execute_action(action, context, state)
        return self._render_result(value, state, parent_span)

    def _validate(
        self, model: type[BaseModel], value: Any, source: str
    ) -> BaseModel:
        self._logger.debug(f"Validating and parsing request {source}")
        try:
            parsed = model.model_validate(value)
        except ValidationError as e:
            issues = validation_issues(e)
            self._telemetry.record_validation(source, False, len(issues))
            raise SchemaValidationError(issues, source=source) from e
        self._telemetry.record_validation(source, True)
        return parsed

    async def _execute_action(
        self, action: Action, context: ProcessedContext, state: _RequestState
    ) -> Any:
        self._logger.debug("Action handler executing", action=action.name)

        changes: dict[str, Any] = {}
        try:
            if action.body is not None:
                changes["body"] = self._validate(action.body, context.request.body, "body")
            if action.query is not None:
                changes["query"] = self._validate(
                    action.query, context.request.query, "query"
                )
        except SchemaValidationError as e:
            self._logger.warning(
                "Request validation failed",
                source=e.source,
                path=context.request.path,
                method=context.request.method,
            )
            raise
        if changes:
            context = context.with_request(**changes)
            state.context = context

        value = action.handler(
            ActionContext(
                request=context.request,
                context=MappingProxyType(context.context),
                plugins=context.plugins,
                response=context.response,
            )
        )
        if inspect.isawaitable(value):
            value = await value
        self._logger.debug("Action handler completed", action=action.name)
        return value

    def _render_result(
        self, value: Any, state: _RequestState, parent_span: Any
    ) -> ResponseEnvelope:
        start_time = time.monotonic()
        if isinstance(value, ResponseEnvelope):
            response_type = "envelope"
            envelope = value
        elif isinstance(value, Response):
            response_type = "raw"
            envelope = envelope_from_response(value)
        elif isinstance(value, ResponseBuilder):
            response_type = "builder"
            envelope = value.to_response()
        else:
            response_type = "json"
            # Headers and cookies set by procedures on the shared builder
            builder = state.context.response if state.context is not None else None
            headers = builder.headers if builder is not None else {}
            if not any(k.lower() == "content-type" for k in headers):
                headers["Content-Type"] = "application/json"
            envelope = ResponseEnvelope(
                content=to_jsonable(value),
                headers=headers,
                status_code=200,
                cookies=builder.cookies if builder is not None else [],
            )

        span = self._telemetry.create_response_processing_span(response_type, parent_span)
        size = measure_body_size(envelope.content)
        self._telemetry.finish_response_processing_span(
            span, response_type, envelope.status_code, size, elapsed_ms(start_time)
        )
        self._telemetry.record_response_processing(
            response_type, envelope.status_code, size
        )
        self._telemetry.finish_span_success(state.telemetry_span, envelope.status_code)
        self._logger.debug(
            "Request processed",
            status=envelope.status_code,
            duration_ms=elapsed_ms(state.start_time),
            response_type=response_type,
        )
        return envelope

    def _bare_context(self, request: Request) -> ProcessedContext:
        return ProcessedContext(
            request=ProcessedRequest(
                path=request.url.path,
                method=request.method,
                headers=request.headers,
                cookies=RequestCookies(request.headers),
                raw=request,
            ),
            response=ResponseBuilder(self._config.logger),
            plugins=dict(self._config.plugins),
        )

    def _log_response(
        self, request: Request, response: ResponseEnvelope, start_time: float
    ) -> None:
        if not self._settings.logging.request_logging:
            return
        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            ip = forwarded.split(",")[0].strip()
        else:
            ip = request.client.host if request.client else "unknown"
        duration = elapsed_ms(start_time)
        self._logger.info(
            f"{request.method} {request.url} {response.status_code} - {duration}ms {ip}",
            method=request.method,
            status=response.status_code,
            duration_ms=duration,
            client_ip=ip,
        )
