"""
Context construction for the request pipeline.

Builds the initial ``ProcessedContext`` for a request and injects the
framework-provided services (store, logger, jobs, telemetry and plugin
proxies) into it.
"""

from __future__ import annotations

import copy
import inspect
import time
from collections.abc import Mapping
from typing import Any

from starlette.requests import Request

from request_pipeline.core.common.logging_utils import child_logger
from request_pipeline.core.domain.cookies import RequestCookies
from request_pipeline.core.domain.processed_context import (
    ProcessedContext,
    ProcessedRequest,
)
from request_pipeline.core.domain.router_config import RouterConfig
from request_pipeline.core.interfaces.plugin_manager_interface import IPluginManager
from request_pipeline.core.interfaces.telemetry_interface import ITelemetrySpan
from request_pipeline.core.services.body_parser import BodyParser
from request_pipeline.core.services.response_builder import ResponseBuilder
from request_pipeline.core.services.telemetry_manager import (
    TelemetryManager,
    elapsed_ms,
)

# Plugin values copied verbatim into the application context
_DIRECT_PROVIDERS = ("store", "logger", "telemetry")


class ContextBuilder:
    """Builds and enhances per-request contexts."""

    def __init__(
        self,
        config: RouterConfig,
        telemetry: TelemetryManager | None = None,
        body_parser: BodyParser | None = None,
        logger: Any | None = None,
    ) -> None:
        self._config = config
        self._telemetry = telemetry or TelemetryManager(logger=logger)
        self._body_parser = body_parser or BodyParser(self._telemetry, logger)
        self._logger = child_logger(logger, "ContextBuilder")

    async def build(
        self,
        request: Request,
        route_params: Mapping[str, Any],
        has_body_schema: bool = False,
        parent_span: ITelemetrySpan | None = None,
    ) -> ProcessedContext:
        start_time = time.monotonic()
        span = self._telemetry.create_context_build_span(parent_span)

        context_value = await self._evaluate_context_factory()

        cookies = RequestCookies(request.headers)
        response = ResponseBuilder(self._config.logger)

        body: Any = None
        try:
            body = await self._body_parser.parse(request, has_body_schema, span)
        except Exception as e:
            self._logger.error("Failed to parse request body", error=str(e))
            body = None

        processed_request = ProcessedRequest(
            path=request.url.path,
            method=request.method,
            params=dict(route_params),
            query=dict(request.query_params),
            headers=request.headers,
            cookies=cookies,
            body=body,
            raw=request,
        )
        plugins = dict(self._config.plugins or {})
        context = ProcessedContext(
            request=processed_request,
            response=response,
            context=context_value,
            plugins=plugins,
        )

        duration = elapsed_ms(start_time)
        self._telemetry.finish_context_build_span(
            span, bool(plugins), len(plugins), duration
        )
        self._telemetry.record_context_build(duration, len(plugins))
        self._logger.debug(
            "Context built", plugin_count=len(plugins), duration=duration
        )
        return context

    async def _evaluate_context_factory(self) -> dict[str, Any]:
        factory = self._config.context
        if factory is None:
            return {}
        try:
            if isinstance(factory, Mapping):
                return dict(factory)
            value = factory()
            if inspect.isawaitable(value):
                value = await value
            return dict(value or {})
        except Exception as e:
            self._logger.error("Failed to create context", error=str(e), exc_info=True)
            return {}

    async def enhance_with_plugins(
        self,
        context: ProcessedContext,
        plugin_manager: IPluginManager | None = None,
    ) -> ProcessedContext:
        """Return a new context with plugin providers injected.

        ``store``, ``logger`` and ``telemetry`` come straight from the plugin
        map, ``jobs`` from ``plugins["jobs"].create_proxy()`` and ``plugins``
        from the plugin manager's proxies.
        """
        plugins = dict(context.plugins)
        injected: dict[str, Any] = {}

        for key in _DIRECT_PROVIDERS:
            if plugins.get(key):
                injected[key] = plugins[key]

        jobs = plugins.get("jobs")
        create_proxy = getattr(jobs, "create_proxy", None) if jobs else None
        if callable(create_proxy):
            try:
                jobs_proxy = create_proxy()
                if inspect.isawaitable(jobs_proxy):
                    jobs_proxy = await jobs_proxy
                if jobs_proxy:
                    injected["jobs"] = jobs_proxy
            except Exception as e:
                self._logger.error("Failed to inject jobs", error=str(e))

        if plugin_manager is not None:
            proxies = self._inject_plugin_proxies(context, plugin_manager)
            if proxies:
                injected["plugins"] = proxies

        return context.merge_context(injected).evolve(plugins=plugins)

    def _inject_plugin_proxies(
        self, context: ProcessedContext, plugin_manager: IPluginManager
    ) -> dict[str, Any]:
        try:
            all_proxies = plugin_manager.get_all_plugin_proxies()
        except Exception as e:
            self._logger.error("Failed to inject plugin proxies", error=str(e))
            return {}
        if not isinstance(all_proxies, Mapping):
            self._logger.warning("No valid proxies returned from plugin manager")
            return {}

        result: dict[str, Any] = {}
        for plugin_name, proxy in all_proxies.items():
            if proxy is None:
                continue
            try:
                result[plugin_name] = self._bind_proxy(
                    plugin_name, proxy, context.context, plugin_manager
                )
            except Exception as e:
                self._logger.error(
                    "Failed to set up plugin proxy",
                    plugin=plugin_name,
                    error=str(e),
                )

        if result:
            self._logger.debug("Injected plugin proxies", count=len(result))
        return result

    def _bind_proxy(
        self,
        plugin_name: str,
        proxy: Any,
        app_context: dict[str, Any],
        plugin_manager: IPluginManager,
    ) -> Any:
        async def emit(event: str, payload: Any = None) -> None:
            try:
                await plugin_manager.emit(plugin_name, event, payload)
                self._logger.debug(
                    "Plugin emitted event",
                    plugin=plugin_name,
                    channel=f"plugin:{plugin_name}:{event}",
                )
            except Exception as e:
                self._logger.error(
                    "Failed to emit plugin event",
                    plugin=plugin_name,
                    event=event,
                    error=str(e),
                )

        if isinstance(proxy, Mapping):
            return {**proxy, "context": app_context, "emit": emit}

        bound = copy.copy(proxy)
        bound.context = app_context
        bound.emit = emit
        return bound
