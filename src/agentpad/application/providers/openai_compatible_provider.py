"""OpenAI-compatible endpoint provider (chat completions, no tools)."""

from collections.abc import Callable

from openai import AsyncOpenAI, OpenAIError

from agentpad.application.attachments import append_attachment_to_prompt
from agentpad.application.providers.openai_provider import make_timeout
from agentpad.domain.models import InferenceRequest, InferenceResult
from agentpad.domain.ports.inference_provider import InferenceProvider
from agentpad.infrastructure.exceptions import ProviderError
from agentpad.infrastructure.logger import get_logger

logger = get_logger(__name__)

DEFAULT_MODEL = "gpt-4o-mini"


class OpenAICompatibleProvider(InferenceProvider):
    """Any server speaking the chat completions protocol at ``base_url``."""

    name = "openai_com"
    default_model = DEFAULT_MODEL

    def __init__(self, client_factory: Callable[..., AsyncOpenAI] | None = None) -> None:
        self._client_factory = client_factory or AsyncOpenAI

    def supported_capabilities(self) -> frozenset[str]:
        return frozenset()

    async def infer(self, request: InferenceRequest) -> InferenceResult:
        messages = []
        if request.system_prompt.strip():
            messages.append({"role": "system", "content": request.system_prompt})
        prompt = request.user_prompt if request.user_prompt.strip() else "Prompt missing?"
        messages.append(
            {"role": "user", "content": append_attachment_to_prompt(prompt, request.attachment)}
        )

        client = self._client_factory(
            api_key=request.api_key,
            base_url=request.base_url or None,
            timeout=make_timeout(request.timeout_seconds),
            max_retries=0,
        )
        logger.info("openai_compatible_inference_started", model=request.model)
        try:
            completion = await client.chat.completions.create(
                model=request.model, messages=messages, stream=False
            )
        except OpenAIError as e:
            logger.error("openai_compatible_api_error", error=str(e))
            raise ProviderError(str(e)) from e

        text = ""
        if completion.choices:
            text = completion.choices[0].message.content or ""
        return InferenceResult(text=text)
