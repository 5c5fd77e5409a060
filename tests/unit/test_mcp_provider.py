"""Unit tests for the MCP provider, client wrapper and configuration loading."""

import json
import os
from pathlib import Path
from types import SimpleNamespace
from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from agentpad.application.mcp_client_wrapper import MCPClientWrapper
from agentpad.application.providers.mcp_provider import MCPProvider
from agentpad.domain.models import InferenceRequest
from agentpad.infrastructure.exceptions import ProviderError
from agentpad.infrastructure.mcp_config import MCPConfigLoader, MCPServer


class FakeWrapper:
    """Stands in for MCPClientWrapper without spawning servers."""

    def __init__(self) -> None:
        self.connected: dict[str, MCPServer] = {}
        self.closed = False
        self.calls: list[tuple[str, dict[str, Any]]] = []

    async def connect_to_servers(self, servers: dict[str, MCPServer]) -> None:
        self.connected = dict(servers)

    async def get_tools(self) -> list[dict[str, Any]]:
        return [{"name": "read_file", "description": "", "input_schema": {"type": "object"}}]

    def server_for(self, tool_name: str) -> str | None:
        return "files" if tool_name == "read_file" else None

    async def execute_tool(self, tool_name: str, tool_input: dict[str, Any]) -> str:
        self.calls.append((tool_name, tool_input))
        return "file contents"

    async def close(self) -> None:
        self.closed = True


def _request(mcp_servers: list[str] | None = None) -> InferenceRequest:
    return InferenceRequest(
        api_key="sk-test",
        model="claude-test",
        system_prompt="system",
        user_prompt="read the file",
        mcp_servers=mcp_servers,
    )


def _loader(servers: dict[str, MCPServer]) -> MagicMock:
    loader = MagicMock(spec=MCPConfigLoader)
    loader.load_mcp_config.return_value = servers
    return loader


SERVERS = {
    "files": MCPServer(name="files", command="files-server"),
    "web": MCPServer(name="web", command="web-server"),
}


@pytest.fixture
def client() -> MagicMock:
    client = MagicMock()
    client.messages.create = AsyncMock(
        side_effect=[
            SimpleNamespace(
                content=[
                    {"type": "tool_use", "id": "t1", "name": "read_file", "input": {"path": "a"}}
                ],
                stop_reason="tool_use",
            ),
            SimpleNamespace(content=[{"type": "text", "text": "It says hi"}], stop_reason="end_turn"),
        ]
    )
    return client


class TestMCPProvider:
    """Tests for MCPProvider.infer."""

    async def test_records_tool_calls(self, client: MagicMock) -> None:
        wrapper = FakeWrapper()
        provider = MCPProvider(
            config_loader=_loader(SERVERS),
            client_factory=MagicMock(return_value=client),
            wrapper_factory=lambda: wrapper,
        )

        result = await provider.infer(_request(["files"]))

        assert result.text == "It says hi"
        assert list(wrapper.connected) == ["files"]
        assert wrapper.calls == [("read_file", {"path": "a"})]
        assert [(c.server, c.name, c.input) for c in result.tool_calls] == [
            ("files", "read_file", {"path": "a"})
        ]
        assert wrapper.closed
        assert client.messages.create.call_args_list[0].kwargs["tools"][0]["name"] == "read_file"

    async def test_none_selects_all_servers(self, client: MagicMock) -> None:
        wrapper = FakeWrapper()
        provider = MCPProvider(
            config_loader=_loader(SERVERS),
            client_factory=MagicMock(return_value=client),
            wrapper_factory=lambda: wrapper,
        )

        await provider.infer(_request(None))

        assert sorted(wrapper.connected) == ["files", "web"]

    async def test_missing_servers_rejected(self) -> None:
        wrapper = FakeWrapper()
        provider = MCPProvider(config_loader=_loader(SERVERS), wrapper_factory=lambda: wrapper)

        with pytest.raises(ProviderError) as exc_info:
            await provider.infer(_request(["files", "db", "queue"]))

        assert str(exc_info.value) == "mcp_requested_servers_not_found: db, queue"
        assert wrapper.connected == {}

    async def test_skip_servers(self) -> None:
        loader = _loader(SERVERS)
        provider = MCPProvider(config_loader=loader, skip_servers=True)

        with pytest.raises(ProviderError):
            await provider.infer(_request(["files"]))
        loader.load_mcp_config.assert_not_called()

    async def test_wrapper_closed_on_error(self) -> None:
        wrapper = FakeWrapper()
        client = MagicMock()
        client.messages.create = AsyncMock(side_effect=ProviderError("upstream"))
        provider = MCPProvider(
            config_loader=_loader(SERVERS),
            client_factory=MagicMock(return_value=client),
            wrapper_factory=lambda: wrapper,
        )

        with pytest.raises(ProviderError):
            await provider.infer(_request(None))
        assert wrapper.closed

    def test_no_capabilities(self) -> None:
        provider = MCPProvider(config_loader=_loader({}))

        assert provider.supported_capabilities() == frozenset()
        assert provider.selects_external_tools


class TestMCPConfigLoader:
    """Tests for MCP server configuration files."""

    def test_loads_and_expands_env(self, tmp_path: Path) -> None:
        (tmp_path / ".mcp.json").write_text(
            json.dumps(
                {
                    "mcpServers": {
                        "files": {
                            "command": "npx",
                            "args": ["files-server", "--root", "/data"],
                            "env": {"TOKEN": "${FILES_TOKEN}"},
                        },
                        "broken": {"args": ["no command"]},
                    }
                }
            )
        )

        with patch.dict(os.environ, {"FILES_TOKEN": "secret"}):
            servers = MCPConfigLoader(tmp_path).load_mcp_config()

        assert list(servers) == ["files"]
        assert servers["files"].args == ["files-server", "--root", "/data"]
        assert servers["files"].env == {"TOKEN": "secret"}

    def test_no_config(self, tmp_path: Path) -> None:
        assert MCPConfigLoader(tmp_path).load_mcp_config() == {}


def _session(*tool_names: str) -> MagicMock:
    session = MagicMock()
    session.list_tools = AsyncMock(
        return_value=SimpleNamespace(
            tools=[
                SimpleNamespace(name=name, description=None, inputSchema={"type": "object"})
                for name in tool_names
            ]
        )
    )
    session.call_tool = AsyncMock(
        return_value=SimpleNamespace(
            isError=False,
            content=[SimpleNamespace(text="line one"), SimpleNamespace(text="line two")],
        )
    )
    return session


class TestMCPClientWrapper:
    """Tests for tool collection and routing across sessions."""

    async def test_first_server_owns_duplicate_tool(self) -> None:
        wrapper = MCPClientWrapper()
        files = _session("read_file", "search")
        web = _session("search", "fetch")
        wrapper.sessions = {"files": files, "web": web}

        tools = await wrapper.get_tools()

        assert [tool["name"] for tool in tools] == ["read_file", "search", "fetch"]
        assert tools[0]["description"] == ""
        assert wrapper.server_for("search") == "files"
        assert wrapper.server_for("fetch") == "web"

    async def test_execute_routes_to_owner(self) -> None:
        wrapper = MCPClientWrapper()
        files = _session("read_file")
        web = _session("fetch")
        wrapper.sessions = {"files": files, "web": web}
        await wrapper.get_tools()

        output = await wrapper.execute_tool("fetch", {"url": "https://a.example"})

        assert output == "line one\nline two"
        web.call_tool.assert_awaited_once_with("fetch", {"url": "https://a.example"})
        files.call_tool.assert_not_called()

    async def test_unknown_tool(self) -> None:
        wrapper = MCPClientWrapper()

        with pytest.raises(ValueError):
            await wrapper.execute_tool("missing", {})
