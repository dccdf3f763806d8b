"""
Request processing pipeline for HTTP APIs.

Turns a Starlette request into a response envelope through route
resolution, body parsing, procedures, validation, the action handler and
unified error handling, with telemetry around every stage.
"""

from request_pipeline.core.app.application_factory import create_app
from request_pipeline.core.common.exceptions import PipelineError
from request_pipeline.core.config.app_config import PipelineSettings
from request_pipeline.core.domain.actions import Action, ActionContext
from request_pipeline.core.domain.procedures import (
    Procedure,
    ProcedureContext,
    procedure,
)
from request_pipeline.core.domain.response_envelope import ResponseEnvelope
from request_pipeline.core.domain.router_config import RouterConfig
from request_pipeline.core.services.plugin_manager import PluginManager
from request_pipeline.core.services.request_processor import RequestProcessor
from request_pipeline.core.services.route_resolver import RouteTable

__version__ = "0.1.0"

__all__ = [
    "Action",
    "ActionContext",
    "PipelineError",
    "PipelineSettings",
    "PluginManager",
    "Procedure",
    "ProcedureContext",
    "RequestProcessor",
    "ResponseEnvelope",
    "RouteTable",
    "RouterConfig",
    "create_app",
    "procedure",
]
