from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass

from request_pipeline.core.interfaces.model_bases import InternalDTO


@dataclass(frozen=True)
class RateLimitWindow(InternalDTO):
    """Counter state of one key after a hit."""

    count: int
    reset_at: float  # epoch seconds


class IRateLimitStore(ABC):
    """Interface for fixed-window request counters."""

    @abstractmethod
    async def hit(self, key: str, window_seconds: float) -> RateLimitWindow:
        """Count one request for ``key`` and return the window it landed in."""

    @abstractmethod
    async def reset(self, key: str) -> None:
        """Forget the counter for ``key``."""

    @abstractmethod
    def cleanup(self) -> int:
        """Drop expired windows and return how many were removed."""
