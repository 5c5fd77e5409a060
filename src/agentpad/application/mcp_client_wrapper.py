"""MCP client wrapper exposing stdio MCP server tools to the model."""

from contextlib import AsyncExitStack
from typing import Any

from mcp import ClientSession, StdioServerParameters
from mcp.client.stdio import stdio_client

from agentpad.infrastructure.logger import get_logger
from agentpad.infrastructure.mcp_config import MCPServer

logger = get_logger(__name__)


class MCPClientWrapper:
    """Holds MCP client sessions for the duration of one inference call."""

    def __init__(self) -> None:
        self.sessions: dict[str, ClientSession] = {}
        self.exit_stack = AsyncExitStack()
        self._tool_servers: dict[str, str] = {}

    async def connect_to_servers(self, servers: dict[str, MCPServer]) -> None:
        """Connect to MCP servers; servers that fail to start are skipped.

        Args:
            servers: Dictionary mapping server names to MCPServer configs
        """
        for server_name, server_config in servers.items():
            try:
                logger.info(
                    "connecting_to_mcp_server",
                    server=server_name,
                    command=server_config.command,
                )
                server_params = StdioServerParameters(
                    command=server_config.command,
                    args=server_config.args,
                    env=server_config.env or None,
                )
                read_stream, write_stream = await self.exit_stack.enter_async_context(
                    stdio_client(server_params)
                )
                session = await self.exit_stack.enter_async_context(
                    ClientSession(read_stream, write_stream)
                )
                await session.initialize()
                self.sessions[server_name] = session
                logger.info("mcp_server_connected", server=server_name)
            except Exception as e:
                logger.error(
                    "mcp_server_connection_failed",
                    server=server_name,
                    error=str(e),
                    error_type=type(e).__name__,
                )

    async def get_tools(self) -> list[dict[str, Any]]:
        """Collect tools from every connected server in Claude tool format.

        The first server to declare a tool name owns it.
        """
        all_tools: list[dict[str, Any]] = []
        self._tool_servers.clear()

        for server_name, session in self.sessions.items():
            try:
                response = await session.list_tools()
            except Exception as e:
                logger.error("failed_to_list_tools", server=server_name, error=str(e))
                continue
            for tool in response.tools:
                if tool.name in self._tool_servers:
                    logger.warning(
                        "duplicate_mcp_tool_ignored",
                        tool_name=tool.name,
                        server=server_name,
                        owner=self._tool_servers[tool.name],
                    )
                    continue
                self._tool_servers[tool.name] = server_name
                all_tools.append(
                    {
                        "name": tool.name,
                        "description": tool.description or "",
                        "input_schema": tool.inputSchema,
                    }
                )

        logger.info("tools_collected", tool_count=len(all_tools))
        return all_tools

    def server_for(self, tool_name: str) -> str | None:
        return self._tool_servers.get(tool_name)

    async def execute_tool(self, tool_name: str, tool_input: dict[str, Any]) -> str:
        """Run a tool on the server that declared it.

        Raises:
            ValueError: If no connected server declared the tool
        """
        server_name = self._tool_servers.get(tool_name)
        if server_name is None or server_name not in self.sessions:
            raise ValueError(f"Tool '{tool_name}' not found in any connected MCP server")

        result = await self.sessions[server_name].call_tool(tool_name, tool_input)
        logger.info(
            "mcp_tool_executed",
            server=server_name,
            tool=tool_name,
            success=not result.isError,
        )
        texts = [item.text for item in result.content if getattr(item, "text", None)]
        return "\n".join(texts) if texts else str(result.content)

    async def close(self) -> None:
        """Close all MCP sessions and cleanup resources."""
        await self.exit_stack.aclose()
        self.sessions.clear()
        self._tool_servers.clear()
        logger.info("mcp_sessions_closed")
