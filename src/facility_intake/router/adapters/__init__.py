"""Provider adapters and the factory that builds them from configuration."""

from __future__ import annotations

from facility_intake.config.types import FrozenConfig
from facility_intake.core.types import ProviderName

from .base import ProviderAdapter
from .mock import MockAdapter


def build_adapters(config: FrozenConfig) -> dict[ProviderName, ProviderAdapter]:
    """Create one adapter per usable provider.

    With ``use_real_api`` off every provider is served by a local mock.
    Otherwise only providers with a configured key get an adapter; SDK modules
    are imported lazily so unused providers cost nothing.
    """
    if not config.use_real_api:
        return {name: MockAdapter(name) for name in ProviderName}

    adapters: dict[ProviderName, ProviderAdapter] = {}
    for name, key in config.api_keys().items():
        if name is ProviderName.ANTHROPIC:
            from .anthropic import AnthropicAdapter

            adapters[name] = AnthropicAdapter(key)
        elif name is ProviderName.GEMINI:
            from .gemini import GeminiAdapter

            adapters[name] = GeminiAdapter(key)
        elif name is ProviderName.OPENAI:
            from .openai_compat import OpenAICompatibleAdapter

            adapters[name] = OpenAICompatibleAdapter(key)
        elif name is ProviderName.GROK:
            from .openai_compat import OpenAICompatibleAdapter

            adapters[name] = OpenAICompatibleAdapter.grok(key)
    return adapters


__all__ = ["MockAdapter", "ProviderAdapter", "build_adapters"]
