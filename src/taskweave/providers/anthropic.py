"""Anthropic Messages API adapter."""

from __future__ import annotations

from typing import Any

from taskweave.errors import NonRetryableProviderError
from taskweave.providers.base import ProviderBase, ProviderCall, ProviderResult, Usage, split_system

ANTHROPIC_VERSION = "2023-06-01"
DEFAULT_MAX_TOKENS = 4096


class AnthropicProvider(ProviderBase):
    name = "anthropic"
    env_var = "ANTHROPIC_API_KEY"
    default_base_url = "https://api.anthropic.com/v1"

    def build_headers(self, call: ProviderCall) -> dict[str, str]:
        return {
            "x-api-key": call.api_key or "",
            "anthropic-version": ANTHROPIC_VERSION,
            "content-type": "application/json",
        }

    def endpoint(self, call: ProviderCall) -> str:
        return "/messages"

    def build_body(self, call: ProviderCall, *, mode: str) -> dict[str, Any]:
        system, turns = split_system(call.messages)
        body: dict[str, Any] = {
            "model": call.model_id,
            "max_tokens": call.max_tokens or DEFAULT_MAX_TOKENS,
            "messages": turns,
        }
        if system:
            body["system"] = system
        if call.temperature is not None:
            body["temperature"] = call.temperature
        if mode == "stream":
            body["stream"] = True
        if mode == "object":
            body["tools"] = [
                {
                    "name": call.object_name,
                    "description": f"Respond with a {call.object_name} object.",
                    "input_schema": call.schema,
                }
            ]
            body["tool_choice"] = {"type": "tool", "name": call.object_name}
        body.update(call.provider_specific)
        return body

    @staticmethod
    def _usage(data: dict[str, Any]) -> Usage:
        usage = data.get("usage") or {}
        return Usage(
            input_tokens=int(usage.get("input_tokens", 0) or 0),
            output_tokens=int(usage.get("output_tokens", 0) or 0),
        )

    def parse_text(self, data: dict[str, Any]) -> ProviderResult:
        blocks = data.get("content") or []
        text = "".join(b.get("text", "") for b in blocks if b.get("type") == "text")
        return ProviderResult(text=text, usage=self._usage(data))

    def parse_object(self, data: dict[str, Any], call: ProviderCall) -> ProviderResult:
        for block in data.get("content") or []:
            if block.get("type") == "tool_use" and block.get("name") == call.object_name:
                return ProviderResult(object=block.get("input"), usage=self._usage(data))
        raise NonRetryableProviderError(
            f"anthropic response did not contain a '{call.object_name}' tool call",
            self.name,
            context={"stop_reason": data.get("stop_reason")},
        )

    def parse_stream_event(self, event: dict[str, Any], usage: Usage) -> str:
        match event.get("type"):
            case "message_start":
                msg_usage = (event.get("message") or {}).get("usage") or {}
                usage.input_tokens = int(msg_usage.get("input_tokens", 0) or 0)
            case "message_delta":
                delta_usage = event.get("usage") or {}
                usage.output_tokens = int(delta_usage.get("output_tokens", 0) or 0)
            case "content_block_delta":
                delta = event.get("delta") or {}
                if delta.get("type") == "text_delta":
                    return delta.get("text", "")
        return ""
