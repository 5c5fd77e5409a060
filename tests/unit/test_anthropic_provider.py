"""Unit tests for the Anthropic provider and its tool loop."""

from types import SimpleNamespace
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
from agentpad.application.providers.anthropic_provider import AnthropicProvider
from agentpad.domain.models import FileAttachment, InferenceRequest
from agentpad.infrastructure.exceptions import ProviderError
from anthropic import APIConnectionError


def _response(blocks: list[dict[str, Any]], stop_reason: str = "end_turn") -> SimpleNamespace:
    return SimpleNamespace(content=blocks, stop_reason=stop_reason)


def _request(**kwargs: Any) -> InferenceRequest:
    values: dict[str, Any] = {
        "api_key": "sk-test",
        "model": "claude-test",
        "system_prompt": "system",
        "user_prompt": "question",
    }
    values.update(kwargs)
    return InferenceRequest(**values)


@pytest.fixture
def client() -> MagicMock:
    client = MagicMock()
    client.messages.create = AsyncMock()
    client.beta.messages.create = AsyncMock()
    return client


@pytest.fixture
def provider(client: MagicMock) -> AnthropicProvider:
    return AnthropicProvider(client_factory=MagicMock(return_value=client))


class TestAnthropicInfer:
    """Tests for AnthropicProvider.infer."""

    async def test_plain_call_uses_messages_api(
        self, provider: AnthropicProvider, client: MagicMock
    ) -> None:
        client.messages.create.return_value = _response([{"type": "text", "text": " Hello "}])

        result = await provider.infer(_request())

        assert result.text == "Hello"
        kwargs = client.messages.create.call_args.kwargs
        assert kwargs["model"] == "claude-test"
        assert kwargs["system"] == "system"
        assert "tools" not in kwargs
        client.beta.messages.create.assert_not_called()

    async def test_client_settings(self, client: MagicMock) -> None:
        factory = MagicMock(return_value=client)
        client.messages.create.return_value = _response([{"type": "text", "text": "x"}])

        await AnthropicProvider(client_factory=factory).infer(
            _request(base_url="http://proxy", timeout_seconds=30)
        )

        factory.assert_called_once_with(
            api_key="sk-test", timeout=30, max_retries=0, base_url="http://proxy"
        )

    async def test_server_tools_and_betas(
        self, provider: AnthropicProvider, client: MagicMock
    ) -> None:
        client.beta.messages.create.return_value = _response([{"type": "text", "text": "ok"}])

        await provider.infer(_request(tools=["grounding", "crawling", "code_execution"]))

        kwargs = client.beta.messages.create.call_args.kwargs
        assert [tool["name"] for tool in kwargs["tools"]] == [
            "web_search",
            "web_fetch",
            "code_execution",
        ]
        assert kwargs["betas"] == ["web-fetch-2025-09-10", "code-execution-2025-08-25"]

    async def test_collects_sources_and_code(
        self, provider: AnthropicProvider, client: MagicMock
    ) -> None:
        client.messages.create.return_value = _response(
            [
                {"type": "server_tool_use", "id": "s1", "name": "web_search", "input": {"query": "q"}},
                {
                    "type": "web_search_tool_result",
                    "content": [{"url": "https://a.example"}, {"url": "https://b.example"}],
                },
                {"type": "server_tool_use", "id": "s2", "name": "code_execution", "input": {"code": "print(1)"}},
                {"type": "code_execution_tool_result", "content": {"stdout": "1\n", "stderr": ""}},
                {
                    "type": "text",
                    "text": "Answer",
                    "citations": [{"url": "https://a.example"}, {"url": "https://c.example"}],
                },
            ]
        )

        result = await provider.infer(_request(tools=["grounding"]))

        assert result.text == "Answer"
        assert result.urls == ["https://a.example", "https://b.example", "https://c.example"]
        assert result.code_snippets == ["print(1)"]
        assert result.code_results == ["1\n"]

    async def test_pause_turn_is_resumed(
        self, provider: AnthropicProvider, client: MagicMock
    ) -> None:
        client.messages.create.side_effect = [
            _response([{"type": "text", "text": "part one "}], stop_reason="pause_turn"),
            _response([{"type": "text", "text": "part two"}]),
        ]

        result = await provider.infer(_request())

        assert result.text == "part one part two"
        assert client.messages.create.await_count == 2

    async def test_pdf_attachment_becomes_document_block(
        self, provider: AnthropicProvider, client: MagicMock
    ) -> None:
        client.messages.create.return_value = _response([{"type": "text", "text": "x"}])
        attachment = FileAttachment(
            name="doc.pdf", mime_type="application/pdf", kind="pdf", base64_data="JVBERg=="
        )

        await provider.infer(_request(attachment=attachment))

        content = client.messages.create.call_args.kwargs["messages"][0]["content"]
        assert content[0]["type"] == "document"
        assert content[0]["source"]["data"] == "JVBERg=="
        assert content[1] == {"type": "text", "text": "question"}

    async def test_api_error_becomes_provider_error(
        self, provider: AnthropicProvider, client: MagicMock
    ) -> None:
        client.messages.create.side_effect = APIConnectionError(request=MagicMock())

        with pytest.raises(ProviderError):
            await provider.infer(_request())


class TestToolLoop:
    """Tests for run_conversation with client-side tools."""

    async def test_tool_use_round_trip(
        self, provider: AnthropicProvider, client: MagicMock
    ) -> None:
        client.messages.create.side_effect = [
            _response(
                [{"type": "tool_use", "id": "tu1", "name": "lookup", "input": {"q": "x"}}],
                stop_reason="tool_use",
            ),
            _response([{"type": "text", "text": "done"}]),
        ]
        executor = AsyncMock(return_value="tool output")

        blocks, stop_reason = await provider.run_conversation(
            client,
            model="m",
            system_prompt="s",
            user_content=[{"type": "text", "text": "q"}],
            tools=[{"name": "lookup", "input_schema": {"type": "object"}}],
            tool_executor=executor,
        )

        executor.assert_awaited_once_with("lookup", {"q": "x"})
        assert stop_reason == "end_turn"
        second_messages = client.messages.create.call_args_list[1].kwargs["messages"]
        assert second_messages[-1]["content"][0] == {
            "type": "tool_result",
            "tool_use_id": "tu1",
            "content": "tool output",
        }
        assert provider.collect_result(blocks).text == "done"

    async def test_tool_failure_reported_to_model(
        self, provider: AnthropicProvider, client: MagicMock
    ) -> None:
        client.messages.create.side_effect = [
            _response(
                [{"type": "tool_use", "id": "tu1", "name": "lookup", "input": {}}],
                stop_reason="tool_use",
            ),
            _response([{"type": "text", "text": "recovered"}]),
        ]

        await provider.run_conversation(
            client,
            model="m",
            system_prompt="s",
            user_content=[{"type": "text", "text": "q"}],
            tool_executor=AsyncMock(side_effect=ValueError("bad input")),
        )

        tool_result = client.messages.create.call_args_list[1].kwargs["messages"][-1]["content"][0]
        assert tool_result["is_error"] is True
        assert "bad input" in tool_result["content"]

    async def test_max_turns(self, provider: AnthropicProvider, client: MagicMock) -> None:
        client.messages.create.return_value = _response(
            [{"type": "tool_use", "id": "tu", "name": "loop", "input": {}}], stop_reason="tool_use"
        )

        _, stop_reason = await provider.run_conversation(
            client,
            model="m",
            system_prompt="s",
            user_content=[{"type": "text", "text": "q"}],
            tool_executor=AsyncMock(return_value="again"),
            max_turns=3,
        )

        assert stop_reason == "max_turns"
        assert client.messages.create.await_count == 3
