from .app import AppState
from .config import Settings
from .definitions import DefinitionStore
from .errors import LangpadError, NotFoundError, ExternalServiceError, ProviderError, AuthenticationError
from .projector import project_flow, project_flow_as_string, stringify_compiled_flow
from .resolver import resolve
from .runner import FlowRunner
from .runs import RunStore
from .types import RunStatus

__all__ = [
    "AppState",
    "Settings",
    "DefinitionStore",
    "RunStore",
    "FlowRunner",
    "RunStatus",
    "resolve",
    "project_flow",
    "project_flow_as_string",
    "stringify_compiled_flow",
    "LangpadError",
    "NotFoundError",
    "ExternalServiceError",
    "ProviderError",
    "AuthenticationError",
]
