from __future__ import annotations

from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from typing import Any, Union

from request_pipeline.core.config.app_config import PipelineSettings
from request_pipeline.core.domain.procedures import Procedure
from request_pipeline.core.interfaces.model_bases import InternalDTO
from request_pipeline.core.interfaces.plugin_manager_interface import IPluginManager
from request_pipeline.core.interfaces.route_matcher_interface import IRouteMatcher
from request_pipeline.core.interfaces.telemetry_interface import ITelemetryProvider

# A plain mapping, or a zero-argument producer (sync or async) of one.
ContextFactory = Union[
    Mapping[str, Any],
    Callable[[], Union[Mapping[str, Any], Awaitable[Mapping[str, Any]]]],
]


@dataclass
class RouterConfig(InternalDTO):
    """Runtime collaborators of one ``RequestProcessor``.

    ``PipelineSettings`` carries the environment-driven knobs; this DTO
    carries the objects the builder wires together.
    """

    routes: IRouteMatcher
    context: ContextFactory | None = None
    plugins: dict[str, Any] = field(default_factory=dict)
    use: list[Procedure] = field(default_factory=list)
    plugin_manager: IPluginManager | None = None
    telemetry: ITelemetryProvider | None = None
    logger: Any | None = None
    settings: PipelineSettings = field(default_factory=PipelineSettings)
