"""Tool selection normalization and provider capability negotiation."""

import re
from dataclasses import dataclass, field

GROUNDING = "grounding"
CRAWLING = "crawling"
CODE_EXECUTION = "code_execution"

CANONICAL_CAPABILITIES = (GROUNDING, CRAWLING, CODE_EXECUTION)

CAPABILITY_ALIASES = {
    "search": GROUNDING,
    "read": CRAWLING,
    "code": CODE_EXECUTION,
}

ALL = "all"


def canonicalize(name: str) -> str:
    """Map an alias to its canonical capability name."""
    return CAPABILITY_ALIASES.get(name, name)


def _split_raw(tool: str | list[str] | tuple[str, ...] | None) -> list[str]:
    if tool is None:
        return []
    items = [tool] if isinstance(tool, str) else list(tool)
    return [str(item).strip().lower() for item in items if item is not None and str(item).strip()]


@dataclass
class ToolSelection:
    """A caller's normalized tool request.

    Attributes:
        requested: Canonical names in request order, deduplicated
        wants_all: True when ``all`` was requested
    """

    requested: list[str] = field(default_factory=list)
    wants_all: bool = False

    @property
    def is_empty(self) -> bool:
        return not self.requested and not self.wants_all

    def unsupported(self, supported: frozenset[str]) -> list[str]:
        """Requested names the provider cannot honour."""
        return [name for name in self.requested if name not in supported]

    def resolve(self, supported: frozenset[str]) -> list[str]:
        """Tools to enable: all supported for ``all``/nothing, else the request."""
        if self.wants_all or not self.requested:
            return [name for name in CANONICAL_CAPABILITIES if name in supported] + sorted(
                supported.difference(CANONICAL_CAPABILITIES)
            )
        return list(self.requested)


def normalize_tools(tool: str | list[str] | tuple[str, ...] | None) -> ToolSelection:
    """Normalize a string or list tool argument into a ToolSelection.

    Names are lowercased and trimmed, aliases collapse to canonical names
    (``search`` -> ``grounding``, ``read`` -> ``crawling``, ``code`` ->
    ``code_execution``) and ``all`` marks a request for every capability
    the provider exposes.
    """
    selection = ToolSelection()
    for name in _split_raw(tool):
        if name == ALL:
            selection.wants_all = True
            continue
        canonical = canonicalize(name)
        if canonical not in selection.requested:
            selection.requested.append(canonical)
    return selection


def parse_mcp_selection(tool: str | list[str] | tuple[str, ...] | None) -> list[str] | None:
    """Server names requested for the MCP provider.

    Returns:
        None when every configured server is wanted (no selection or ``all``),
        otherwise the requested server names in order
    """
    names: list[str] = []
    items = [tool] if isinstance(tool, str) else list(tool or [])
    for item in items:
        if item is None:
            continue
        for part in re.split(r"[\s,]+", str(item)):
            part = part.strip()
            if part and part not in names:
                names.append(part)
    if not names or any(name.lower() == ALL for name in names):
        return None
    return names


def describe_tools(tools: list[str], *, mcp: bool = False, mcp_servers: list[str] | None = None) -> str:
    """Phrase naming the tools available, for the default system prompt."""
    if mcp:
        if mcp_servers:
            return f"MCP tools ({', '.join(mcp_servers)})"
        return "MCP tools"
    if not tools:
        return "no external tools"
    return ", ".join(tools)


def default_system_prompt(tools_phrase: str) -> str:
    return (
        f"You are a general problem-solving agent with access to {tools_phrase}. "
        "Keep answers concise and accurate."
    )
