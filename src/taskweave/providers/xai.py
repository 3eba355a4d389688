"""xAI Grok adapter."""

from __future__ import annotations

from taskweave.providers.openai import OpenAICompatProvider


class XAIProvider(OpenAICompatProvider):
    name = "xai"
    env_var = "XAI_API_KEY"
    default_base_url = "https://api.x.ai/v1"
