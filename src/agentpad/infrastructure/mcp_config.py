"""MCP (Model Context Protocol) server configuration loading."""

import json
import os
import re
from dataclasses import dataclass, field
from pathlib import Path

from agentpad.infrastructure.logger import get_logger

logger = get_logger(__name__)

_ENV_REF = re.compile(r"^\$\{([A-Za-z_][A-Za-z0-9_]*)\}$")


@dataclass
class MCPServer:
    """MCP server launch configuration (stdio transport)."""

    name: str
    command: str
    args: list[str] = field(default_factory=list)
    env: dict[str, str] = field(default_factory=dict)


class MCPConfigLoader:
    """Loads MCP server configurations for the mcp inference provider."""

    CONFIG_FILES = (".mcp.json", ".claude/mcp.json", "subagent_config.json")

    def __init__(self, project_root: Path | None = None):
        """Initialize MCP config loader.

        Args:
            project_root: Project root directory (default: current directory)
        """
        self.project_root = project_root or Path.cwd()

    def load_mcp_config(self) -> dict[str, MCPServer]:
        """Load MCP server configuration.

        Checks, in order, ``.mcp.json``, ``.claude/mcp.json`` and
        ``subagent_config.json`` under the project root; the first file found
        wins.

        Returns:
            Dictionary mapping server names to MCPServer objects
        """
        for relative in self.CONFIG_FILES:
            mcp_path = self.project_root / relative
            if mcp_path.exists():
                logger.info("loading_mcp_config", path=str(mcp_path))
                return self._parse_mcp_config(mcp_path)

        logger.warning("no_mcp_config_found", project_root=str(self.project_root))
        return {}

    def _parse_mcp_config(self, config_path: Path) -> dict[str, MCPServer]:
        """Parse an ``{"mcpServers": {...}}`` configuration file.

        Servers without a command are skipped; ``${VAR}`` env values are
        expanded from the process environment.
        """
        try:
            with open(config_path) as f:
                config = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.error("mcp_config_parse_error", path=str(config_path), error=str(e))
            return {}

        servers: dict[str, MCPServer] = {}
        for name, server_config in (config.get("mcpServers") or {}).items():
            command = server_config.get("command", "")
            if not command:
                logger.warning("mcp_server_missing_command", name=name)
                continue

            env = {}
            for key, value in (server_config.get("env") or {}).items():
                match = _ENV_REF.match(value) if isinstance(value, str) else None
                env[key] = os.getenv(match.group(1), "") if match else str(value)

            servers[name] = MCPServer(
                name=name,
                command=command,
                args=[str(arg) for arg in server_config.get("args", [])],
                env=env,
            )
            logger.info("mcp_server_loaded", name=name, command=command)

        return servers
