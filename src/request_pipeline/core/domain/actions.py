from __future__ import annotations

from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Union

from pydantic import BaseModel

from request_pipeline.core.domain.processed_context import ProcessedRequest
from request_pipeline.core.domain.procedures import Procedure
from request_pipeline.core.interfaces.model_bases import InternalDTO

if TYPE_CHECKING:
    from request_pipeline.core.services.response_builder import ResponseBuilder


@dataclass(frozen=True)
class ActionContext(InternalDTO):
    """What an action handler is invoked with."""

    request: ProcessedRequest
    context: Mapping[str, Any]
    plugins: dict[str, Any]
    response: ResponseBuilder


ActionHandler = Callable[[ActionContext], Union[Any, Awaitable[Any]]]


@dataclass(frozen=True)
class Action(InternalDTO):
    """A routable endpoint: method, path template, handler and its schemas."""

    name: str
    method: str
    path: str
    handler: ActionHandler
    body: type[BaseModel] | None = None
    query: type[BaseModel] | None = None
    use: list[Procedure] = field(default_factory=list)

    @property
    def has_body_schema(self) -> bool:
        return self.body is not None
