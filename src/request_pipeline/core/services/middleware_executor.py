"""
Procedure (middleware) execution.

Runs a list of procedures in order against a ``ProcessedContext``. Each
invocation is turned into exactly one ``MiddlewareOutcome`` by
``_invoke_procedure``; the execution loop only matches on those variants.
"""

from __future__ import annotations

import inspect
import time
from types import MappingProxyType
from collections.abc import Mapping, Sequence
from typing import Any

from starlette.responses import Response

from request_pipeline.core.common.logging_utils import child_logger
from request_pipeline.core.domain.processed_context import (
    RESERVED_CONTEXT_KEYS,
    ProcessedContext,
)
from request_pipeline.core.domain.procedures import (
    ContextPatch,
    Continue,
    EarlyResponse,
    MiddlewareExecutionResult,
    MiddlewareOutcome,
    NextCallback,
    NextFailed,
    NextResult,
    NextSkip,
    NextStop,
    Procedure,
    ProcedureContext,
)
from request_pipeline.core.domain.response_envelope import ResponseEnvelope
from request_pipeline.core.interfaces.telemetry_interface import ITelemetrySpan
from request_pipeline.core.services.response_builder import ResponseBuilder
from request_pipeline.core.services.telemetry_manager import (
    MiddlewareResult,
    MiddlewareType,
    TelemetryManager,
    elapsed_ms,
)
from request_pipeline.core.transport.fastapi.response_adapters import (
    envelope_from_response,
)


def _outcome_from_return(value: Any) -> MiddlewareOutcome:
    if isinstance(value, ResponseEnvelope):
        return EarlyResponse(value)
    if isinstance(value, ResponseBuilder):
        return EarlyResponse(value.to_response())
    if isinstance(value, Response):
        return EarlyResponse(envelope_from_response(value))
    if isinstance(value, Mapping):
        return ContextPatch(dict(value))
    return Continue()


async def _invoke_procedure(
    procedure: Procedure, context: ProcessedContext
) -> MiddlewareOutcome:
    """Run one procedure and classify what it asked for.

    An instruction recorded through ``next`` takes priority over the return
    value. Exceptions raised by the handler propagate.
    """
    next_callback = NextCallback()
    procedure_context = ProcedureContext(
        request=context.request,
        context=MappingProxyType(context.context),
        response=context.response,
        next=next_callback,
    )

    value = procedure.handler(procedure_context)  # type: ignore[misc]
    if inspect.isawaitable(value):
        value = await value

    instruction = next_callback.instruction
    if instruction is not None:
        if instruction.error is not None:
            return NextFailed(instruction.error)
        if instruction.result is not None:
            return NextResult(instruction.result)
        if instruction.stop:
            return NextStop()
        if instruction.skip:
            return NextSkip()
    return _outcome_from_return(value)


class MiddlewareExecutor:
    """Executes global and action procedure lists."""

    def __init__(
        self, telemetry: TelemetryManager | None = None, logger: Any | None = None
    ) -> None:
        self._telemetry = telemetry or TelemetryManager(logger=logger)
        self._logger = child_logger(logger, "MiddlewareExecutor")

    async def execute_global(
        self,
        context: ProcessedContext,
        procedures: Sequence[Procedure],
        parent_span: ITelemetrySpan | None = None,
    ) -> MiddlewareExecutionResult:
        return await self._execute(context, procedures, "global", parent_span)

    async def execute_action(
        self,
        context: ProcessedContext,
        procedures: Sequence[Procedure],
        parent_span: ITelemetrySpan | None = None,
    ) -> MiddlewareExecutionResult:
        return await self._execute(context, procedures, "action", parent_span)

    async def _execute(
        self,
        context: ProcessedContext,
        procedures: Sequence[Procedure],
        middleware_type: MiddlewareType,
        parent_span: ITelemetrySpan | None,
    ) -> MiddlewareExecutionResult:
        # Never hand the caller's context dict back to it
        current = context.evolve()
        self._logger.debug(
            f"Executing {middleware_type} middleware", count=len(procedures)
        )

        for procedure in procedures:
            if not callable(getattr(procedure, "handler", None)):
                self._logger.warning(
                    f"Invalid {middleware_type} middleware, skipping",
                    middleware=getattr(procedure, "name", repr(procedure)),
                )
                continue

            name = procedure.name or "anonymous"
            start_time = time.monotonic()
            span = self._telemetry.create_middleware_span(
                name, middleware_type, parent_span
            )

            try:
                outcome = await _invoke_procedure(procedure, current)
            except Exception as e:
                self._finish(span, name, middleware_type, "error", start_time, e)
                self._logger.error(
                    f"Error executing {middleware_type} middleware",
                    middleware=name,
                    error=str(e),
                )
                raise

            if isinstance(outcome, NextFailed):
                self._finish(
                    span, name, middleware_type, "error", start_time, outcome.error
                )
                self._logger.debug(
                    "Middleware called next() with an error", middleware=name
                )
                return MiddlewareExecutionResult(
                    success=False, updated_context=current, error=outcome.error
                )

            if isinstance(outcome, NextResult):
                self._finish(span, name, middleware_type, "early_return", start_time)
                self._logger.debug(
                    "Middleware called next() with a custom result", middleware=name
                )
                return MiddlewareExecutionResult(
                    success=False,
                    updated_context=current,
                    custom_result=outcome.value,
                )

            if isinstance(outcome, NextStop):
                self._finish(span, name, middleware_type, "success", start_time)
                self._logger.debug("Middleware stopped the chain", middleware=name)
                return MiddlewareExecutionResult(success=True, updated_context=current)

            if isinstance(outcome, EarlyResponse):
                self._finish(span, name, middleware_type, "early_return", start_time)
                self._logger.debug(
                    f"{middleware_type.capitalize()} middleware returned early response",
                    middleware=name,
                )
                return MiddlewareExecutionResult(
                    success=False,
                    updated_context=current,
                    early_return=outcome.response,
                )

            if isinstance(outcome, ContextPatch):
                current = self._merge_protected(current, outcome.values, name)
            elif isinstance(outcome, NextSkip):
                self._logger.debug("Middleware skipped its result", middleware=name)

            self._finish(span, name, middleware_type, "success", start_time)

        return MiddlewareExecutionResult(success=True, updated_context=current)

    def _merge_protected(
        self, context: ProcessedContext, patch: dict[str, Any], middleware_name: str
    ) -> ProcessedContext:
        allowed = {k: v for k, v in patch.items() if k not in RESERVED_CONTEXT_KEYS}
        dropped = sorted(k for k in patch if k in RESERVED_CONTEXT_KEYS)
        if dropped:
            self._logger.warning(
                "Middleware tried to overwrite reserved context keys, ignoring them",
                middleware=middleware_name,
                keys=dropped,
            )
        if not allowed:
            return context
        return context.merge_context(allowed)

    def _finish(
        self,
        span: ITelemetrySpan | None,
        name: str,
        middleware_type: MiddlewareType,
        result: MiddlewareResult,
        start_time: float,
        error: Any = None,
    ) -> None:
        duration = elapsed_ms(start_time)
        self._telemetry.finish_middleware_span(span, result, duration, error)
        self._telemetry.record_middleware_execution(
            name, middleware_type, duration, result
        )
