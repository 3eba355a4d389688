"""Provider registry: get the right adapter by name."""

from __future__ import annotations

import httpx

from taskweave.providers.anthropic import AnthropicProvider
from taskweave.providers.base import ProviderBase
from taskweave.providers.google import GoogleProvider
from taskweave.providers.ollama import OllamaProvider
from taskweave.providers.openai import OpenAIProvider
from taskweave.providers.openrouter import OpenRouterProvider
from taskweave.providers.perplexity import PerplexityProvider
from taskweave.providers.xai import XAIProvider

PROVIDER_CLASSES: dict[str, type[ProviderBase]] = {
    "anthropic": AnthropicProvider,
    "openai": OpenAIProvider,
    "google": GoogleProvider,
    "perplexity": PerplexityProvider,
    "openrouter": OpenRouterProvider,
    "xai": XAIProvider,
    "ollama": OllamaProvider,
}

PROVIDER_NAMES = tuple(PROVIDER_CLASSES)


def get_provider(name: str, *, transport: httpx.AsyncBaseTransport | None = None) -> ProviderBase:
    """Return a provider adapter for *name*."""
    cls = PROVIDER_CLASSES.get(name.strip().lower())
    if cls is None:
        raise ValueError(f"Unknown provider: {name}")
    return cls(transport=transport)


def provider_class(name: str) -> type[ProviderBase]:
    cls = PROVIDER_CLASSES.get(name.strip().lower())
    if cls is None:
        raise ValueError(f"Unknown provider: {name}")
    return cls
