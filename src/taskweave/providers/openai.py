"""OpenAI chat-completions adapter and the shared OpenAI-compatible base."""

from __future__ import annotations

import json
from typing import Any

from taskweave.errors import NonRetryableProviderError
from taskweave.providers.base import ProviderBase, ProviderCall, ProviderResult, Usage


class OpenAICompatProvider(ProviderBase):
    """Any backend speaking the ``/chat/completions`` dialect."""

    def build_headers(self, call: ProviderCall) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if call.api_key:
            headers["Authorization"] = f"Bearer {call.api_key}"
        return headers

    def endpoint(self, call: ProviderCall) -> str:
        return "/chat/completions"

    def build_body(self, call: ProviderCall, *, mode: str) -> dict[str, Any]:
        body: dict[str, Any] = {
            "model": call.model_id,
            "messages": call.messages,
        }
        if call.max_tokens is not None:
            body["max_tokens"] = call.max_tokens
        if call.temperature is not None:
            body["temperature"] = call.temperature
        if mode == "stream":
            body["stream"] = True
            body["stream_options"] = {"include_usage": True}
        if mode == "object":
            body["tools"] = [
                {
                    "type": "function",
                    "function": {
                        "name": call.object_name,
                        "description": f"Respond with a {call.object_name} object.",
                        "parameters": call.schema,
                    },
                }
            ]
            body["tool_choice"] = {"type": "function", "function": {"name": call.object_name}}
        body.update(call.provider_specific)
        return body

    @staticmethod
    def _usage(data: dict[str, Any]) -> Usage:
        usage = data.get("usage") or {}
        return Usage(
            input_tokens=int(usage.get("prompt_tokens", 0) or 0),
            output_tokens=int(usage.get("completion_tokens", 0) or 0),
        )

    def _message(self, data: dict[str, Any]) -> dict[str, Any]:
        try:
            return data["choices"][0]["message"] or {}
        except (KeyError, IndexError, TypeError) as exc:
            raise NonRetryableProviderError(
                f"Unexpected response format: {exc}",
                self.name,
                context={"response_data": str(data)[:500]},
            ) from exc

    def parse_text(self, data: dict[str, Any]) -> ProviderResult:
        message = self._message(data)
        return ProviderResult(text=message.get("content") or "", usage=self._usage(data))

    def parse_object(self, data: dict[str, Any], call: ProviderCall) -> ProviderResult:
        message = self._message(data)
        raw: str | None = None
        for tool_call in message.get("tool_calls") or []:
            fn = tool_call.get("function") or {}
            if fn.get("name") == call.object_name:
                raw = fn.get("arguments")
                break
        if raw is None:
            raw = message.get("content")
        if not raw:
            raise NonRetryableProviderError(
                f"{self.name} response did not contain a '{call.object_name}' object",
                self.name,
            )
        try:
            obj = json.loads(raw) if isinstance(raw, str) else raw
        except json.JSONDecodeError as exc:
            raise NonRetryableProviderError(
                f"{self.name} returned malformed tool arguments: {exc}",
                self.name,
                cause=exc,
            ) from exc
        return ProviderResult(object=obj, usage=self._usage(data))

    def parse_stream_event(self, event: dict[str, Any], usage: Usage) -> str:
        if event.get("usage"):
            parsed = self._usage(event)
            usage.input_tokens = parsed.input_tokens
            usage.output_tokens = parsed.output_tokens
        choices = event.get("choices") or []
        if not choices:
            return ""
        delta = choices[0].get("delta") or {}
        return delta.get("content") or ""


class OpenAIProvider(OpenAICompatProvider):
    name = "openai"
    env_var = "OPENAI_API_KEY"
    default_base_url = "https://api.openai.com/v1"
