from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any

from starlette.datastructures import Headers

from request_pipeline.core.domain.cookies import RequestCookies
from request_pipeline.core.interfaces.model_bases import InternalDTO

if TYPE_CHECKING:
    from request_pipeline.core.services.response_builder import ResponseBuilder

# Keys of the application context that only the framework may write.
RESERVED_CONTEXT_KEYS: frozenset[str] = frozenset(
    {"store", "logger", "jobs", "telemetry", "span", "traceContext"}
)


@dataclass(frozen=True)
class ProcessedRequest(InternalDTO):
    """Read-mostly view of the incoming request, built once per request."""

    path: str
    method: str
    params: dict[str, str] = field(default_factory=dict)
    query: dict[str, Any] = field(default_factory=dict)
    headers: Headers = field(default_factory=Headers)
    cookies: RequestCookies = field(default_factory=RequestCookies)
    body: Any = None
    # The untouched transport request, for consumers that need the stream
    raw: Any = None


@dataclass(frozen=True)
class ProcessedContext(InternalDTO):
    """The unit threaded through every pipeline stage.

    ``context`` is the extensible application context and ``plugins`` the
    plugin map configured on the router. Instances are never mutated in
    place: every stage that changes the application context produces a new
    ``ProcessedContext`` with a freshly copied ``context`` dict, so a
    reference captured earlier never observes later writes.
    """

    request: ProcessedRequest
    response: ResponseBuilder
    context: dict[str, Any] = field(default_factory=dict)
    plugins: dict[str, Any] = field(default_factory=dict)

    def evolve(self, **changes: Any) -> ProcessedContext:
        """Return a shallow copy with ``changes`` applied.

        The application context dict is always copied so the new value
        shares no mutable mapping with this one.
        """
        if "context" not in changes:
            changes["context"] = dict(self.context)
        else:
            changes["context"] = dict(changes["context"])
        return replace(self, **changes)

    def merge_context(self, values: Mapping[str, Any]) -> ProcessedContext:
        """Return a copy whose application context includes ``values``.

        No key filtering happens here; this is the framework-side write path.
        """
        merged = dict(self.context)
        merged.update(values)
        return replace(self, context=merged)

    def with_request(self, **changes: Any) -> ProcessedContext:
        return self.evolve(request=replace(self.request, **changes))
