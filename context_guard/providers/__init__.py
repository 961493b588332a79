from __future__ import annotations

import httpx

from ..types import ConfigurationError
from .anthropic import AnthropicProvider
from .base import BaseProvider, LLMProviderError
from .generic_openai import GenericOpenAIProvider


def build_provider(
    provider_name: str,
    provider_config: dict,
    client: httpx.AsyncClient | None = None,
) -> BaseProvider:
    """Build an LLM provider from a ``providers`` config entry."""
    ptype = provider_config.get("type", provider_name)

    if ptype == "generic_openai":
        return GenericOpenAIProvider(
            base_url=provider_config.get("base_url", "http://127.0.0.1:1234/v1"),
            model=provider_config.get("model", "local-model"),
            api_key=provider_config.get("api_key"),
            api_key_env=provider_config.get("api_key_env", ""),
            client=client,
        )

    if ptype == "anthropic":
        return AnthropicProvider(
            api_key=provider_config.get("api_key"),
            api_key_env=provider_config.get("api_key_env", "ANTHROPIC_API_KEY"),
            model=provider_config.get("model", "claude-haiku-4-5"),
            client=client,
        )

    raise ConfigurationError(f"Unknown provider type '{ptype}' for provider '{provider_name}'")


__all__ = [
    "AnthropicProvider",
    "BaseProvider",
    "GenericOpenAIProvider",
    "LLMProviderError",
    "build_provider",
]
