"""Inference provider adapters.

Concrete providers are loaded lazily through ``ProviderRegistry`` so that
importing this package does not require every SDK.
"""

from agentpad.application.providers.registry import (
    PROVIDER_ALIASES,
    ProviderRegistry,
    resolve_provider_key,
)

__all__ = ["PROVIDER_ALIASES", "ProviderRegistry", "resolve_provider_key"]
