"""Infrastructure layer for agentpad."""

from agentpad.infrastructure.config import Config, ConfigManager
from agentpad.infrastructure.database import Database
from agentpad.infrastructure.logger import get_logger, setup_logging
from agentpad.infrastructure.mcp_config import MCPConfigLoader, MCPServer

__all__ = [
    "Config",
    "ConfigManager",
    "Database",
    "MCPConfigLoader",
    "MCPServer",
    "get_logger",
    "setup_logging",
]
