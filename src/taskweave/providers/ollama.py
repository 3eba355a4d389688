"""Ollama adapter for local models.  No API key needed."""

from __future__ import annotations

from taskweave.providers.base import ProviderCall
from taskweave.providers.openai import OpenAICompatProvider


class OllamaProvider(OpenAICompatProvider):
    name = "ollama"
    env_var = "OLLAMA_API_KEY"
    requires_api_key = False
    default_base_url = "http://localhost:11434/v1"

    def validate_auth(self, call: ProviderCall) -> None:
        pass
