"""
Rate Limit Store

In-memory fixed-window counters with periodic eviction of expired windows.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from collections.abc import Callable

from request_pipeline.core.config.app_config import RateLimitConfig
from request_pipeline.core.interfaces.rate_limit_store_interface import (
    IRateLimitStore,
    RateLimitWindow,
)

logger = logging.getLogger(__name__)


class InMemoryRateLimitStore(IRateLimitStore):
    """In-memory implementation of the rate limit store.

    This implementation keeps counters in process memory and is suitable
    for single-instance deployments. Expired windows are evicted by
    ``cleanup``, which ``start_cleanup`` runs periodically.
    """

    def __init__(
        self,
        cleanup_interval_seconds: float = 300.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the store.

        Args:
            cleanup_interval_seconds: Delay between background evictions
            clock: Source of epoch seconds
        """
        self._windows: dict[str, RateLimitWindow] = {}
        self._cleanup_interval = cleanup_interval_seconds
        self._clock = clock
        self._cleanup_task: asyncio.Task[None] | None = None

    @classmethod
    def from_config(
        cls, config: RateLimitConfig, clock: Callable[[], float] = time.time
    ) -> InMemoryRateLimitStore:
        """Create a store evicting on the configured cleanup interval."""
        return cls(cleanup_interval_seconds=config.cleanup_interval_seconds, clock=clock)

    def __len__(self) -> int:
        return len(self._windows)

    async def hit(self, key: str, window_seconds: float) -> RateLimitWindow:
        now = self._clock()
        window = self._windows.get(key)
        if window is None or window.reset_at <= now:
            window = RateLimitWindow(count=0, reset_at=now + window_seconds)
        window = RateLimitWindow(count=window.count + 1, reset_at=window.reset_at)
        self._windows[key] = window
        logger.debug(f"Rate limit hit: {key} - {window.count} in current window")
        return window

    async def reset(self, key: str) -> None:
        if self._windows.pop(key, None) is not None:
            logger.debug(f"Reset rate limit counter for {key}")

    def cleanup(self) -> int:
        now = self._clock()
        expired = [k for k, w in self._windows.items() if w.reset_at <= now]
        for key in expired:
            del self._windows[key]
        if expired:
            logger.debug(f"Evicted {len(expired)} expired rate limit windows")
        return len(expired)

    async def _cleanup_loop(self) -> None:
        while True:
            await asyncio.sleep(self._cleanup_interval)
            self.cleanup()

    def start_cleanup(self) -> None:
        """Start periodic eviction on the running event loop."""
        if self._cleanup_task is not None and not self._cleanup_task.done():
            return
        self._cleanup_task = asyncio.get_running_loop().create_task(self._cleanup_loop())
        logger.info(
            f"Rate limit store cleanup started, interval={self._cleanup_interval}s"
        )

    async def stop_cleanup(self) -> None:
        task = self._cleanup_task
        self._cleanup_task = None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        logger.info("Rate limit store cleanup stopped")
