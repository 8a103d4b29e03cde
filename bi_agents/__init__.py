import importlib.metadata

try:
    _detected_version = importlib.metadata.version("bi-agents")
    __version__ = _detected_version if _detected_version else "0.0.0-dev"
except importlib.metadata.PackageNotFoundError:
    # Running from a source checkout
    __version__ = "0.0.0-dev"

from bi_agents.config import APISettings, ResilienceSettings, Settings, get_settings
from bi_agents.models import (
    Agent,
    AgentCallRequest,
    AgentCallResult,
    AgentStatus,
    Completion,
    FileSummary,
)
from bi_agents.core.orchestrator import AgentOrchestrator
from bi_agents.core.registry import LLMProvider, ServiceRegistry

__all__ = [
    "__version__",
    "APISettings",
    "ResilienceSettings",
    "Settings",
    "get_settings",
    "Agent",
    "AgentCallRequest",
    "AgentCallResult",
    "AgentStatus",
    "Completion",
    "FileSummary",
    "AgentOrchestrator",
    "LLMProvider",
    "ServiceRegistry",
]
