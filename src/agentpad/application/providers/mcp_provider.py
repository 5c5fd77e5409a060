"""MCP provider: Claude tool loop over tools served by MCP stdio servers."""

from collections.abc import Callable
from pathlib import Path
from typing import Any

from anthropic import AsyncAnthropic

from agentpad.application.mcp_client_wrapper import MCPClientWrapper
from agentpad.application.providers.anthropic_provider import (
    DEFAULT_MODEL,
    MAX_TURNS,
    AnthropicProvider,
)
from agentpad.domain.models import InferenceRequest, InferenceResult, ToolCall
from agentpad.infrastructure.exceptions import ProviderError
from agentpad.infrastructure.logger import get_logger
from agentpad.infrastructure.mcp_config import MCPConfigLoader, MCPServer

logger = get_logger(__name__)


class MCPProvider(AnthropicProvider):
    """Lets the model call tools exposed by configured MCP servers.

    The caller's tool argument names servers rather than capabilities;
    ``None`` selects all of them. Every tool call is recorded (server,
    tool name and input) in the result.
    """

    name = "mcp"
    default_model = DEFAULT_MODEL
    selects_external_tools = True

    def __init__(
        self,
        config_loader: MCPConfigLoader | None = None,
        skip_servers: bool = False,
        client_factory: Callable[..., AsyncAnthropic] | None = None,
        wrapper_factory: Callable[[], MCPClientWrapper] | None = None,
        project_root: Path | None = None,
    ) -> None:
        super().__init__(client_factory)
        self.config_loader = config_loader or MCPConfigLoader(project_root)
        self.skip_servers = skip_servers
        self._wrapper_factory = wrapper_factory or MCPClientWrapper

    def supported_capabilities(self) -> frozenset[str]:
        return frozenset()

    def select_servers(
        self, servers: dict[str, MCPServer], requested: list[str] | None
    ) -> dict[str, MCPServer]:
        """Pick the requested servers out of the configuration.

        Raises:
            ProviderError: If any requested server is not configured
        """
        if not requested:
            return servers
        missing = [name for name in requested if name not in servers]
        if missing:
            raise ProviderError(f"mcp_requested_servers_not_found: {', '.join(missing)}")
        return {name: servers[name] for name in requested}

    async def infer(self, request: InferenceRequest) -> InferenceResult:
        if self.skip_servers:
            logger.info("mcp_servers_skipped")
            configured: dict[str, MCPServer] = {}
        else:
            configured = self.config_loader.load_mcp_config()
        selected = self.select_servers(configured, request.mcp_servers)

        wrapper = self._wrapper_factory()
        tool_calls: list[ToolCall] = []

        async def execute(tool_name: str, tool_input: dict[str, Any]) -> Any:
            tool_calls.append(
                ToolCall(server=wrapper.server_for(tool_name), name=tool_name, input=tool_input)
            )
            return await wrapper.execute_tool(tool_name, tool_input)

        try:
            await wrapper.connect_to_servers(selected)
            tools = await wrapper.get_tools()
            logger.info(
                "mcp_inference_started",
                servers=list(selected),
                tool_count=len(tools),
                model=request.model,
            )
            client = self._make_client(request)
            blocks, stop_reason = await self.run_conversation(
                client,
                model=request.model,
                system_prompt=request.system_prompt,
                user_content=self._user_content(request),
                tools=tools,
                tool_executor=execute,
                max_turns=MAX_TURNS,
            )
        finally:
            await wrapper.close()

        result = self.collect_result(blocks)
        result.tool_calls = tool_calls
        logger.info(
            "mcp_inference_completed",
            stop_reason=stop_reason,
            tool_calls=[call.name for call in tool_calls],
        )
        return result
