"""
In-process plugin registry and event bus.

Each registered plugin exposes a ``PluginProxy`` (its callable actions plus a
``context`` slot and an ``emit`` hook). Events are published on the
``plugin:<name>:<event>`` channel to listeners added with ``subscribe``.
"""

from __future__ import annotations

import inspect
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from typing import Any, Union

from request_pipeline.core.common.exceptions import PluginError
from request_pipeline.core.common.logging_utils import child_logger
from request_pipeline.core.interfaces.plugin_manager_interface import IPluginManager

EventListener = Callable[[Any], Union[None, Awaitable[None]]]


def channel_for(plugin_name: str, event: str) -> str:
    return f"plugin:{plugin_name}:{event}"


@dataclass
class PluginProxy:
    """What request handlers see of a plugin under ``context["plugins"]``."""

    name: str
    actions: dict[str, Callable[..., Any]] = field(default_factory=dict)
    context: dict[str, Any] = field(default_factory=dict)
    emit: Callable[..., Awaitable[None]] | None = None

    def __getattr__(self, item: str) -> Any:
        # Only reached for names that are not dataclass fields
        actions = self.__dict__.get("actions", {})
        if item in actions:
            return actions[item]
        raise AttributeError(item)


class PluginManager(IPluginManager):
    """Registry of plugins and their event listeners."""

    def __init__(self, logger: Any | None = None) -> None:
        self._proxies: dict[str, PluginProxy] = {}
        self._listeners: dict[str, list[EventListener]] = {}
        self._logger = child_logger(logger, "PluginManager")

    def register(
        self, name: str, actions: Mapping[str, Callable[..., Any]] | None = None
    ) -> PluginProxy:
        """Register a plugin under ``name``.

        Raises:
            PluginError: If the name is empty, taken, or an action is not callable
        """
        if not isinstance(name, str) or not name:
            raise PluginError("Plugin name must be a non-empty string")
        if name in self._proxies:
            raise PluginError(f"Plugin '{name}' is already registered", plugin_name=name)
        actions = dict(actions or {})
        for action_name, action in actions.items():
            if not callable(action):
                raise PluginError(
                    f"Action '{action_name}' of plugin '{name}' is not callable",
                    plugin_name=name,
                )
        proxy = PluginProxy(name=name, actions=actions)
        self._proxies[name] = proxy
        self._logger.debug("Plugin registered", plugin=name, actions=sorted(actions))
        return proxy

    def get_registered_plugins(self) -> list[str]:
        return list(self._proxies.keys())

    def get_all_plugin_proxies(self) -> dict[str, Any]:
        return dict(self._proxies)

    def subscribe(self, plugin_name: str, event: str, listener: EventListener) -> None:
        if not callable(listener):
            raise PluginError("Event listener must be callable", plugin_name=plugin_name)
        self._listeners.setdefault(channel_for(plugin_name, event), []).append(listener)

    def unsubscribe(self, plugin_name: str, event: str, listener: EventListener) -> None:
        listeners = self._listeners.get(channel_for(plugin_name, event), [])
        if listener in listeners:
            listeners.remove(listener)

    async def emit(self, plugin_name: str, event: str, payload: Any = None) -> None:
        if plugin_name not in self._proxies:
            raise PluginError(f"Plugin '{plugin_name}' is not registered", plugin_name=plugin_name)
        channel = channel_for(plugin_name, event)
        listeners = list(self._listeners.get(channel, []))
        if not listeners:
            self._logger.debug("No listeners for plugin event", channel=channel)
            return
        for listener in listeners:
            try:
                result = listener(payload)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                self._logger.error(
                    "Plugin event listener failed", channel=channel, error=str(e)
                )
