"""OpenRouter adapter."""

from __future__ import annotations

from taskweave.providers.base import ProviderCall
from taskweave.providers.openai import OpenAICompatProvider


class OpenRouterProvider(OpenAICompatProvider):
    name = "openrouter"
    env_var = "OPENROUTER_API_KEY"
    default_base_url = "https://openrouter.ai/api/v1"

    def build_headers(self, call: ProviderCall) -> dict[str, str]:
        headers = super().build_headers(call)
        headers["X-Title"] = "taskweave"
        return headers
