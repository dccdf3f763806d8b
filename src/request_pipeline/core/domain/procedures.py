"""
Procedure (middleware) domain types.

A procedure handler receives a ``ProcedureContext`` and may either return a
value (a context patch, a final response, or nothing) or call the ``next``
callback with an explicit instruction. The executor never inspects these
shapes directly; an adapter turns each invocation into exactly one
``MiddlewareOutcome`` variant.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Union

from request_pipeline.core.domain.processed_context import (
    ProcessedContext,
    ProcessedRequest,
)
from request_pipeline.core.domain.response_envelope import ResponseEnvelope
from request_pipeline.core.interfaces.model_bases import InternalDTO

if TYPE_CHECKING:
    from request_pipeline.core.services.response_builder import ResponseBuilder


@dataclass(frozen=True)
class NextInstruction(InternalDTO):
    """What a procedure asked for through its ``next`` callback."""

    error: BaseException | None = None
    result: Any = None
    skip: bool = False
    stop: bool = False


class NextCallback:
    """The ``next(error=None, result=None, *, skip=False, stop=False)`` callable.

    One instance is created per procedure invocation. Only the first call is
    recorded; later calls are ignored.
    """

    __slots__ = ("_instruction",)

    def __init__(self) -> None:
        self._instruction: NextInstruction | None = None

    def __call__(
        self,
        error: BaseException | None = None,
        result: Any = None,
        *,
        skip: bool = False,
        stop: bool = False,
    ) -> None:
        if self._instruction is not None:
            return
        self._instruction = NextInstruction(
            error=error, result=result, skip=skip, stop=stop
        )

    @property
    def called(self) -> bool:
        return self._instruction is not None

    @property
    def instruction(self) -> NextInstruction | None:
        return self._instruction


@dataclass(frozen=True)
class ProcedureContext(InternalDTO):
    """The scoped view a procedure handler is invoked with."""

    request: ProcessedRequest
    # Read-only; procedures change the context by returning a patch
    context: Mapping[str, Any]
    response: ResponseBuilder
    next: NextCallback = field(default_factory=NextCallback)


ProcedureHandler = Callable[[ProcedureContext], Union[Any, Awaitable[Any]]]


@dataclass(frozen=True)
class Procedure(InternalDTO):
    """A named middleware function."""

    name: str
    handler: ProcedureHandler | None = None


def procedure(name: str | None = None) -> Callable[[ProcedureHandler], Procedure]:
    """Decorator turning a handler function into a ``Procedure``."""

    def decorator(func: ProcedureHandler) -> Procedure:
        return Procedure(name=name or getattr(func, "__name__", "procedure"), handler=func)

    return decorator


# ---------------------------------------------------------------------------
# Outcome of a single procedure invocation
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class NextFailed:
    error: BaseException


@dataclass(frozen=True)
class NextResult:
    value: Any


@dataclass(frozen=True)
class NextStop:
    pass


@dataclass(frozen=True)
class NextSkip:
    pass


@dataclass(frozen=True)
class EarlyResponse:
    response: ResponseEnvelope


@dataclass(frozen=True)
class ContextPatch:
    values: dict[str, Any]


@dataclass(frozen=True)
class Continue:
    pass


MiddlewareOutcome = Union[
    NextFailed, NextResult, NextStop, NextSkip, EarlyResponse, ContextPatch, Continue
]


@dataclass
class MiddlewareExecutionResult(InternalDTO):
    """Result of running one procedure list.

    When ``success`` is False exactly one of ``early_return``, ``error`` and
    ``custom_result`` is set. When it is True ``updated_context`` is
    authoritative and the others are None.
    """

    success: bool
    updated_context: ProcessedContext
    early_return: ResponseEnvelope | None = None
    error: BaseException | None = None
    custom_result: Any = None
