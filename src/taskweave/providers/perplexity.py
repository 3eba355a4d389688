"""Perplexity adapter.  Sonar models are search-backed and lack tool calling.

Structured output uses JSON mode instead: the schema goes in
``response_format`` and the object is read back out of the message content.
"""

from __future__ import annotations

from typing import Any

from taskweave.errors import NonRetryableProviderError, ParseFailure
from taskweave.providers.base import ProviderCall, ProviderResult
from taskweave.providers.openai import OpenAICompatProvider
from taskweave.reconcile.extract import extract_json


class PerplexityProvider(OpenAICompatProvider):
    name = "perplexity"
    env_var = "PERPLEXITY_API_KEY"
    default_base_url = "https://api.perplexity.ai"
    tools_by_default = False
    object_mode = "json"

    def build_body(self, call: ProviderCall, *, mode: str) -> dict[str, Any]:
        body = super().build_body(call, mode="text" if mode == "object" else mode)
        # Perplexity rejects stream_options.
        body.pop("stream_options", None)
        if mode == "object":
            body["response_format"] = {
                "type": "json_schema",
                "json_schema": {"schema": call.schema},
            }
        return body

    def parse_object(self, data: dict[str, Any], call: ProviderCall) -> ProviderResult:
        content = self._message(data).get("content") or ""
        try:
            extracted = extract_json(content)
        except ParseFailure as exc:
            raise NonRetryableProviderError(
                f"{self.name} returned no valid JSON for '{call.object_name}': {exc.message}",
                self.name,
                cause=exc,
                context={"content": content[:500]},
            ) from exc
        return ProviderResult(object=extracted.value, usage=self._usage(data))
