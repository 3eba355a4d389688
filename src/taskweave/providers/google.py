"""Google Gemini adapter via the OpenAI-compatible endpoint."""

from __future__ import annotations

from taskweave.providers.openai import OpenAICompatProvider


class GoogleProvider(OpenAICompatProvider):
    name = "google"
    env_var = "GOOGLE_API_KEY"
    default_base_url = "https://generativelanguage.googleapis.com/v1beta/openai"
