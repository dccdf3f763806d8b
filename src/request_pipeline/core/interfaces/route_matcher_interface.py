from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from request_pipeline.core.interfaces.model_bases import InternalDTO

if TYPE_CHECKING:
    from request_pipeline.core.domain.actions import Action


@dataclass(frozen=True)
class RouteMatch(InternalDTO):
    """A matched action plus the parameters extracted from the path."""

    action: Action
    params: dict[str, Any] = field(default_factory=dict)


class IRouteMatcher(ABC):
    """Interface for the method + path -> action lookup structure."""

    @abstractmethod
    def find(self, method: str, path: str) -> RouteMatch | None:
        """Return the match for ``method``/``path`` or None."""
