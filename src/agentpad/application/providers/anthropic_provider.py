"""Anthropic provider: messages API with server-side tools."""

from collections.abc import Awaitable, Callable
from typing import Any

from anthropic import APIError, AsyncAnthropic

from agentpad.application.attachments import append_attachment_to_prompt
from agentpad.application.capabilities import CODE_EXECUTION, CRAWLING, GROUNDING
from agentpad.domain.models import FileAttachment, InferenceRequest, InferenceResult
from agentpad.domain.ports.inference_provider import InferenceProvider
from agentpad.infrastructure.exceptions import ProviderError
from agentpad.infrastructure.logger import get_logger

logger = get_logger(__name__)

ToolExecutor = Callable[[str, dict[str, Any]], Awaitable[Any]]

DEFAULT_MODEL = "claude-sonnet-4-5-20250929"
MAX_TOKENS = 8000
MAX_TURNS = 8

# Capability -> (server tool definition, beta flag or None)
SERVER_TOOLS: dict[str, tuple[dict[str, Any], str | None]] = {
    GROUNDING: ({"type": "web_search_20250305", "name": "web_search", "max_uses": 5}, None),
    CRAWLING: (
        {"type": "web_fetch_20250910", "name": "web_fetch", "max_uses": 5},
        "web-fetch-2025-09-10",
    ),
    CODE_EXECUTION: (
        {"type": "code_execution_20250825", "name": "code_execution"},
        "code-execution-2025-08-25",
    ),
}

CODE_RESULT_TYPES = {
    "code_execution_tool_result",
    "bash_code_execution_tool_result",
    "text_editor_code_execution_tool_result",
}


def _as_dict(block: Any) -> dict[str, Any]:
    """Plain dict view of an SDK content block."""
    if isinstance(block, dict):
        return block
    if hasattr(block, "model_dump"):
        return block.model_dump(exclude_none=True)
    return {k: v for k, v in vars(block).items() if not k.startswith("_")}


def _append_unique(items: list[str], value: Any) -> None:
    if isinstance(value, str) and value.strip() and value not in items:
        items.append(value)


class AnthropicProvider(InferenceProvider):
    """Runs prompts through Claude, optionally with web search, web fetch
    and code execution server tools.

    Also hosts the agentic tool loop reused by the MCP provider: when the
    model asks for a client-side tool, ``tool_executor`` runs it and the
    result is sent back until the model stops or ``MAX_TURNS`` is reached.
    """

    name = "anthropic"
    default_model = DEFAULT_MODEL

    def __init__(self, client_factory: Callable[..., AsyncAnthropic] | None = None) -> None:
        self._client_factory = client_factory or AsyncAnthropic

    def supported_capabilities(self) -> frozenset[str]:
        return frozenset(SERVER_TOOLS)

    def _make_client(self, request: InferenceRequest) -> AsyncAnthropic:
        kwargs: dict[str, Any] = {
            "api_key": request.api_key,
            "timeout": request.timeout_seconds,
            "max_retries": 0,
        }
        if request.base_url:
            kwargs["base_url"] = request.base_url
        return self._client_factory(**kwargs)

    def _user_content(self, request: InferenceRequest) -> list[dict[str, Any]]:
        prompt = request.user_prompt if request.user_prompt.strip() else "Prompt missing?"
        content: list[dict[str, Any]] = []
        attachment: FileAttachment | None = request.attachment
        if attachment is not None and attachment.kind == "pdf" and attachment.base64_data:
            content.append(
                {
                    "type": "document",
                    "source": {
                        "type": "base64",
                        "media_type": "application/pdf",
                        "data": attachment.base64_data,
                    },
                    "title": attachment.name,
                }
            )
        content.append({"type": "text", "text": append_attachment_to_prompt(prompt, attachment)})
        return content

    async def infer(self, request: InferenceRequest) -> InferenceResult:
        tools: list[dict[str, Any]] = []
        betas: list[str] = []
        for capability in request.tools:
            if capability not in SERVER_TOOLS:
                continue
            definition, beta = SERVER_TOOLS[capability]
            tools.append(dict(definition))
            if beta:
                betas.append(beta)

        client = self._make_client(request)
        logger.info(
            "anthropic_inference_started",
            model=request.model,
            tools=request.tools,
        )
        blocks, stop_reason = await self.run_conversation(
            client,
            model=request.model,
            system_prompt=request.system_prompt,
            user_content=self._user_content(request),
            tools=tools,
            betas=betas,
        )
        result = self.collect_result(blocks)
        logger.info(
            "anthropic_inference_completed",
            model=request.model,
            stop_reason=stop_reason,
            urls=len(result.urls),
            code_snippets=len(result.code_snippets),
        )
        return result

    async def _create_message(
        self, client: AsyncAnthropic, betas: list[str], **kwargs: Any
    ) -> Any:
        try:
            if betas:
                return await client.beta.messages.create(betas=betas, **kwargs)
            return await client.messages.create(**kwargs)
        except APIError as e:
            logger.error("anthropic_api_error", error=str(e))
            raise ProviderError(str(e)) from e

    async def run_conversation(
        self,
        client: AsyncAnthropic,
        *,
        model: str,
        system_prompt: str,
        user_content: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        betas: list[str] | None = None,
        tool_executor: ToolExecutor | None = None,
        max_turns: int = MAX_TURNS,
    ) -> tuple[list[dict[str, Any]], str | None]:
        """Drive the messages API until the model finishes.

        Returns:
            Every content block produced across turns, and the final stop reason
        """
        messages: list[dict[str, Any]] = [{"role": "user", "content": user_content}]
        all_blocks: list[dict[str, Any]] = []

        for turn in range(max_turns):
            api_kwargs: dict[str, Any] = {
                "model": model,
                "max_tokens": MAX_TOKENS,
                "system": system_prompt,
                "messages": messages,
            }
            if tools:
                api_kwargs["tools"] = tools

            response = await self._create_message(client, betas or [], **api_kwargs)
            blocks = [_as_dict(block) for block in response.content]
            all_blocks.extend(blocks)

            # Server tools may pause a long turn; resend to let it continue
            if response.stop_reason == "pause_turn":
                messages.append({"role": "assistant", "content": blocks})
                continue

            tool_uses = [b for b in blocks if b.get("type") == "tool_use"]
            if not tool_uses or tool_executor is None:
                logger.debug("conversation_finished", turns=turn + 1, stop_reason=response.stop_reason)
                return all_blocks, response.stop_reason

            messages.append({"role": "assistant", "content": blocks})
            tool_results = []
            for block in tool_uses:
                try:
                    output = await tool_executor(block["name"], block.get("input") or {})
                    tool_results.append(
                        {"type": "tool_result", "tool_use_id": block["id"], "content": str(output)}
                    )
                except Exception as e:
                    logger.error("tool_execution_failed", tool_name=block["name"], error=str(e))
                    tool_results.append(
                        {
                            "type": "tool_result",
                            "tool_use_id": block["id"],
                            "content": f"Error: {e}",
                            "is_error": True,
                        }
                    )
            messages.append({"role": "user", "content": tool_results})

        logger.warning("max_turns_reached", turns=max_turns)
        return all_blocks, "max_turns"

    def collect_result(self, blocks: list[dict[str, Any]]) -> InferenceResult:
        """Fold content blocks into text, sources, code and code output."""
        result = InferenceResult()
        text_parts: list[str] = []

        for block in blocks:
            block_type = block.get("type")
            if block_type == "text":
                text_parts.append(block.get("text", ""))
                for citation in block.get("citations") or []:
                    _append_unique(result.urls, (citation or {}).get("url"))
            elif block_type == "server_tool_use":
                tool_input = block.get("input") or {}
                code = tool_input.get("code") or tool_input.get("command")
                if code:
                    result.code_snippets.append(str(code))
            elif block_type == "web_search_tool_result":
                content = block.get("content")
                if isinstance(content, list):
                    for item in content:
                        _append_unique(result.urls, (item or {}).get("url"))
            elif block_type == "web_fetch_tool_result":
                content = block.get("content") or {}
                _append_unique(result.urls, content.get("url"))
            elif block_type in CODE_RESULT_TYPES:
                content = block.get("content") or {}
                output = "\n".join(
                    part for part in (content.get("stdout"), content.get("stderr")) if part
                )
                if output:
                    result.code_results.append(output)

        result.text = "".join(text_parts).strip()
        return result
