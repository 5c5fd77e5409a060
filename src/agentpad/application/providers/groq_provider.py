"""Groq provider: chat completions with built-in browser search and code tools."""

import json
from collections.abc import Callable
from typing import Any

from groq import AsyncGroq, GroqError

from agentpad.application.attachments import append_attachment_to_prompt
from agentpad.application.capabilities import CODE_EXECUTION, GROUNDING
from agentpad.application.providers.openai_provider import make_timeout
from agentpad.domain.models import InferenceRequest, InferenceResult, ToolCall
from agentpad.domain.ports.inference_provider import InferenceProvider
from agentpad.infrastructure.exceptions import ProviderError
from agentpad.infrastructure.logger import get_logger

logger = get_logger(__name__)

DEFAULT_MODEL = "openai/gpt-oss-120b"

# canonical capability -> Groq built-in tool
BUILTIN_TOOLS = {
    GROUNDING: "browser_search",
    CODE_EXECUTION: "code_interpreter",
}


def _get(obj: Any, key: str, default: Any = None) -> Any:
    if isinstance(obj, dict):
        return obj.get(key, default)
    return getattr(obj, key, default)


def _parse_arguments(raw: Any) -> dict[str, Any]:
    if isinstance(raw, dict):
        return raw
    if isinstance(raw, str) and raw.strip():
        try:
            parsed = json.loads(raw)
        except ValueError:
            return {"raw": raw}
        return parsed if isinstance(parsed, dict) else {"value": parsed}
    return {}


class GroqProvider(InferenceProvider):
    """Runs prompts through Groq chat completions.

    Grounding enables ``browser_search`` and code execution enables
    ``code_interpreter``; crawling is not available. Sources, code and tool
    usage are read from the message's ``executed_tools``.
    """

    name = "groq"
    default_model = DEFAULT_MODEL

    def __init__(self, client_factory: Callable[..., AsyncGroq] | None = None) -> None:
        self._client_factory = client_factory or AsyncGroq

    def supported_capabilities(self) -> frozenset[str]:
        return frozenset(BUILTIN_TOOLS)

    async def infer(self, request: InferenceRequest) -> InferenceResult:
        messages = []
        if request.system_prompt.strip():
            messages.append({"role": "system", "content": request.system_prompt})
        prompt = request.user_prompt if request.user_prompt.strip() else "Prompt missing?"
        messages.append(
            {"role": "user", "content": append_attachment_to_prompt(prompt, request.attachment)}
        )

        params: dict[str, Any] = {
            "model": request.model,
            "messages": messages,
            "stream": False,
            "reasoning_effort": "medium",
        }
        tools = [{"type": BUILTIN_TOOLS[name]} for name in request.tools if name in BUILTIN_TOOLS]
        if tools:
            params["tools"] = tools

        client = self._client_factory(
            api_key=request.api_key,
            base_url=request.base_url or None,
            timeout=make_timeout(request.timeout_seconds),
            max_retries=0,
        )
        logger.info("groq_inference_started", model=request.model, tools=request.tools)
        try:
            completion = await client.chat.completions.create(**params)
        except GroqError as e:
            logger.error("groq_api_error", error=str(e))
            raise ProviderError(str(e)) from e

        choices = _get(completion, "choices") or []
        if not choices:
            return InferenceResult()
        return self.collect_result(_get(choices[0], "message"))

    def collect_result(self, message: Any) -> InferenceResult:
        """Build the result from a chat completion message."""
        result = InferenceResult(text=str(_get(message, "content") or ""))
        for executed in _get(message, "executed_tools") or []:
            tool_type = str(_get(executed, "type") or "unknown")
            arguments = _parse_arguments(_get(executed, "arguments"))
            result.tool_calls.append(ToolCall(name=tool_type, input=arguments))

            search_results = _get(executed, "search_results")
            for hit in _get(search_results, "results") or []:
                url = _get(hit, "url")
                if url:
                    result.urls.append(str(url))
            for page in _get(executed, "browser_results") or []:
                url = _get(page, "url")
                if url:
                    result.urls.append(str(url))

            if tool_type in ("code_interpreter", "python"):
                code = arguments.get("code")
                if code:
                    result.code_snippets.append(str(code))
                output = _get(executed, "output")
                if output:
                    result.code_results.append(str(output))
        return result
