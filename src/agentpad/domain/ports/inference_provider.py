"""Abstract inference provider."""

from abc import ABC, abstractmethod

from agentpad.domain.models import InferenceRequest, InferenceResult


class InferenceProvider(ABC):
    """Capability-describing interface to an inference backend.

    Providers are interchangeable and selected at runtime by configuration.
    Each one declares the canonical capabilities it can honour
    (``grounding``, ``crawling``, ``code_execution``); callers negotiate
    against that set before any call is made.
    """

    name: str = ""
    default_model: str = ""

    # When True, the caller's tool selection names external tool servers
    # instead of capabilities, and capability negotiation is skipped.
    selects_external_tools: bool = False

    @abstractmethod
    def supported_capabilities(self) -> frozenset[str]:
        """Get the canonical capabilities this provider supports.

        Returns:
            Frozen set of capability names
        """
        pass

    @abstractmethod
    async def infer(self, request: InferenceRequest) -> InferenceResult:
        """Run one inference call.

        Args:
            request: Prompt, model, credentials and negotiated tools

        Returns:
            Output text plus any sources, code and tool calls surfaced

        Raises:
            ProviderError: If the backend call fails
        """
        pass
