from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping
from typing import Any


class ITelemetrySpan(ABC):
    """A single traced unit of work."""

    @abstractmethod
    def set_tag(self, key: str, value: Any) -> None:
        pass

    @abstractmethod
    def set_error(self, error: Any) -> None:
        pass

    @abstractmethod
    def finish(self) -> None:
        pass

    @abstractmethod
    def get_context(self) -> dict[str, Any] | None:
        """Return the propagation context (trace id, span id) if any."""


class ITelemetryProvider(ABC):
    """Interface for tracing and metrics backends.

    Implementations may raise from any method; callers in the pipeline
    always go through ``TelemetryManager`` which contains those failures.
    """

    @abstractmethod
    def start_span(
        self,
        name: str,
        *,
        operation: str,
        tags: Mapping[str, Any] | None = None,
        parent: ITelemetrySpan | None = None,
    ) -> ITelemetrySpan:
        pass

    @abstractmethod
    def timing(
        self, name: str, value: float, tags: Mapping[str, Any] | None = None
    ) -> None:
        pass

    @abstractmethod
    def increment(
        self, name: str, value: float = 1, tags: Mapping[str, Any] | None = None
    ) -> None:
        pass

    @abstractmethod
    def histogram(
        self, name: str, value: float, tags: Mapping[str, Any] | None = None
    ) -> None:
        pass

    @abstractmethod
    def gauge(
        self, name: str, value: float, tags: Mapping[str, Any] | None = None
    ) -> None:
        pass
