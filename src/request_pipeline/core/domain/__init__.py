# Domain package

from .actions import Action, ActionContext
from .processed_context import (
    RESERVED_CONTEXT_KEYS,
    ProcessedContext,
    ProcessedRequest,
)
from .procedures import Procedure, ProcedureContext, procedure
from .response_envelope import ResponseEnvelope
from .router_config import RouterConfig

__all__ = [
    "RESERVED_CONTEXT_KEYS",
    "Action",
    "ActionContext",
    "ProcessedContext",
    "ProcessedRequest",
    "Procedure",
    "ProcedureContext",
    "ResponseEnvelope",
    "RouterConfig",
    "procedure",
]
