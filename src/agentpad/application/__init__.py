"""Application services for agentpad."""

from agentpad.application.capabilities import (
    CANONICAL_CAPABILITIES,
    ToolSelection,
    canonicalize,
    normalize_tools,
)
from agentpad.application.providers.registry import ProviderRegistry
from agentpad.application.subagent_orchestrator import SubagentOrchestrator

__all__ = [
    "CANONICAL_CAPABILITIES",
    "ProviderRegistry",
    "SubagentOrchestrator",
    "ToolSelection",
    "canonicalize",
    "normalize_tools",
]
