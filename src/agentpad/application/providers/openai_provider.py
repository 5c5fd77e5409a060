"""OpenAI provider: Responses API with optional hosted web search."""

from collections.abc import Callable
from typing import Any

import httpx
from openai import AsyncOpenAI, OpenAIError

from agentpad.application.attachments import build_file_context_block
from agentpad.application.capabilities import GROUNDING
from agentpad.domain.models import InferenceRequest, InferenceResult
from agentpad.domain.ports.inference_provider import InferenceProvider
from agentpad.infrastructure.exceptions import ProviderError
from agentpad.infrastructure.logger import get_logger

logger = get_logger(__name__)

DEFAULT_MODEL = "gpt-5-mini"
CONNECT_TIMEOUT_SECONDS = 10.0


def make_timeout(total_seconds: float) -> httpx.Timeout:
    return httpx.Timeout(total_seconds, connect=min(CONNECT_TIMEOUT_SECONDS, total_seconds))


def _get(obj: Any, key: str, default: Any = None) -> Any:
    if isinstance(obj, dict):
        return obj.get(key, default)
    return getattr(obj, key, default)


class OpenAIProvider(InferenceProvider):
    """Runs prompts through the OpenAI Responses API.

    Only grounding is supported; it enables the hosted
    ``web_search_preview`` tool.
    """

    name = "openai"
    default_model = DEFAULT_MODEL

    def __init__(self, client_factory: Callable[..., AsyncOpenAI] | None = None) -> None:
        self._client_factory = client_factory or AsyncOpenAI

    def supported_capabilities(self) -> frozenset[str]:
        return frozenset({GROUNDING})

    def _make_client(self, request: InferenceRequest) -> AsyncOpenAI:
        return self._client_factory(
            api_key=request.api_key,
            base_url=request.base_url or None,
            timeout=make_timeout(request.timeout_seconds),
            max_retries=0,
        )

    def _input(self, request: InferenceRequest) -> list[dict[str, Any]]:
        content: list[dict[str, Any]] = [
            {"type": "input_text", "text": request.user_prompt or "Prompt missing?"}
        ]
        attachment = request.attachment
        if attachment is not None:
            if attachment.kind == "pdf" and attachment.base64_data:
                content.insert(
                    0,
                    {
                        "type": "input_file",
                        "filename": attachment.name,
                        "file_data": f"data:{attachment.mime_type};base64,{attachment.base64_data}",
                    },
                )
            block = build_file_context_block(attachment)
            if block:
                content.append({"type": "input_text", "text": f"\n\n{block}"})
        return [{"role": "user", "content": content}]

    async def infer(self, request: InferenceRequest) -> InferenceResult:
        params: dict[str, Any] = {
            "model": request.model,
            "instructions": request.system_prompt,
            "input": self._input(request),
        }
        if GROUNDING in request.tools:
            params["tools"] = [{"type": "web_search_preview"}]
        if request.model.startswith("gpt-5"):
            params["reasoning"] = {"effort": "low"}

        client = self._make_client(request)
        logger.info("openai_inference_started", model=request.model, tools=request.tools)
        try:
            response = await client.responses.create(**params)
        except OpenAIError as e:
            logger.error("openai_api_error", error=str(e))
            raise ProviderError(str(e)) from e

        result = InferenceResult()
        for item in _get(response, "output") or []:
            if _get(item, "type") != "message":
                continue
            for part in _get(item, "content") or []:
                if _get(part, "type") != "output_text":
                    continue
                if _get(part, "text"):
                    result.text = _get(part, "text")
                for annotation in _get(part, "annotations") or []:
                    url = _get(annotation, "url")
                    if _get(annotation, "type") == "url_citation" and url and url not in result.urls:
                        result.urls.append(url)

        logger.info("openai_inference_completed", model=request.model, urls=len(result.urls))
        return result
