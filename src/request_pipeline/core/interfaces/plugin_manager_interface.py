from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any


class IPluginManager(ABC):
    """Interface for the plugin registry consulted once per request."""

    @abstractmethod
    def get_all_plugin_proxies(self) -> dict[str, Any]:
        """Return the proxy object of every registered plugin, keyed by name."""

    @abstractmethod
    async def emit(self, plugin_name: str, event: str, payload: Any = None) -> None:
        """Publish ``event`` on the ``plugin:<name>:<event>`` channel."""
