"""Runtime lookup of inference providers by configured key."""

import importlib
from pathlib import Path

from agentpad.domain.ports.inference_provider import InferenceProvider
from agentpad.infrastructure.exceptions import ProviderUnavailableError
from agentpad.infrastructure.logger import get_logger

logger = get_logger(__name__)

DEFAULT_PROVIDER = "anthropic"

PROVIDER_ALIASES = {
    "claude": "anthropic",
    "oa": "openai",
    "oai": "openai",
    "openai-compatible": "openai_com",
    "openai_compat": "openai_com",
    "openai_compatible": "openai_com",
    "compat": "openai_com",
}

# key -> (module, class); imported on first use so a missing SDK only
# disables the providers that need it
PROVIDER_CLASSES = {
    "anthropic": ("agentpad.application.providers.anthropic_provider", "AnthropicProvider"),
    "openai": ("agentpad.application.providers.openai_provider", "OpenAIProvider"),
    "openai_com": (
        "agentpad.application.providers.openai_compatible_provider",
        "OpenAICompatibleProvider",
    ),
    "groq": ("agentpad.application.providers.groq_provider", "GroqProvider"),
    "mcp": ("agentpad.application.providers.mcp_provider", "MCPProvider"),
}


def resolve_provider_key(api_type: str | None) -> str:
    """Canonical provider key for a configured api type (blank -> anthropic)."""
    key = (api_type or "").strip().lower()
    if not key:
        return DEFAULT_PROVIDER
    return PROVIDER_ALIASES.get(key, key)


class ProviderRegistry:
    """Creates and caches one provider instance per key.

    Instances registered explicitly (e.g. in tests or embedding
    applications) take precedence over the built-in classes.
    """

    def __init__(self, mcp_skip_servers: bool = False, project_root: Path | None = None) -> None:
        self.mcp_skip_servers = mcp_skip_servers
        self.project_root = project_root
        self._instances: dict[str, InferenceProvider] = {}

    def register(self, key: str, provider: InferenceProvider) -> None:
        self._instances[resolve_provider_key(key)] = provider

    def get(self, api_type: str | None) -> InferenceProvider:
        """Look up a provider.

        Raises:
            ProviderUnavailableError: ``unsupported_ai_api_type:<key>`` for an
                unknown key, ``provider_unavailable:<key> (<reason>)`` when
                its SDK cannot be loaded
        """
        key = resolve_provider_key(api_type)
        if key in self._instances:
            return self._instances[key]
        if key not in PROVIDER_CLASSES:
            raise ProviderUnavailableError((api_type or "").strip() or key)

        module_name, class_name = PROVIDER_CLASSES[key]
        try:
            module = importlib.import_module(module_name)
        except ImportError as e:
            logger.error("provider_import_failed", provider=key, error=str(e))
            raise ProviderUnavailableError(key, str(e)) from e

        provider_cls = getattr(module, class_name)
        if key == "mcp":
            provider = provider_cls(skip_servers=self.mcp_skip_servers, project_root=self.project_root)
        else:
            provider = provider_cls()
        self._instances[key] = provider
        logger.debug("provider_loaded", provider=key)
        return provider
