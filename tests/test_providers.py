"""Tests for the HTTP provider adapters, driven through httpx.MockTransport."""

from __future__ import annotations

import json

import httpx
import pytest

from taskweave.errors import (
    CapabilityMismatchError,
    NonRetryableProviderError,
    RetryableProviderError,
    ValidationError,
)
from taskweave.providers.anthropic import AnthropicProvider
from taskweave.providers.base import ProviderCall
from taskweave.providers.ollama import OllamaProvider
from taskweave.providers.openai import OpenAIProvider
from taskweave.providers.perplexity import PerplexityProvider
from taskweave.providers.registry import PROVIDER_NAMES, get_provider

SCHEMA = {"type": "object", "properties": {"tasks": {"type": "array"}}}


def _call(**overrides) -> ProviderCall:
    defaults = {
        "api_key": "key-123",
        "model_id": "test-model",
        "messages": [
            {"role": "system", "content": "be brief"},
            {"role": "user", "content": "hi"},
        ],
        "max_tokens": 512,
        "temperature": 0.2,
    }
    defaults.update(overrides)
    return ProviderCall(**defaults)


class _Recorder:
    """MockTransport handler that records requests and replays one response."""

    def __init__(self, status: int = 200, payload=None, *, content: bytes | None = None) -> None:
        self.status = status
        self.payload = payload
        self.content = content
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.content is not None:
            return httpx.Response(self.status, content=self.content)
        return httpx.Response(self.status, json=self.payload)

    @property
    def body(self) -> dict:
        return json.loads(self.requests[-1].content)


# ═══════════════════════════════════════════════════════════════════
#  Anthropic
# ═══════════════════════════════════════════════════════════════════


class TestAnthropic:
    @pytest.mark.asyncio
    async def test_generate_text(self):
        rec = _Recorder(
            payload={
                "content": [{"type": "text", "text": "Hello "}, {"type": "text", "text": "there"}],
                "usage": {"input_tokens": 12, "output_tokens": 3},
            }
        )
        provider = AnthropicProvider(transport=httpx.MockTransport(rec))

        result = await provider.generate_text(_call(model_id="claude-sonnet-4-20250514"))

        assert result.text == "Hello there"
        assert result.usage.input_tokens == 12
        req = rec.requests[0]
        assert str(req.url) == "https://api.anthropic.com/v1/messages"
        assert req.headers["x-api-key"] == "key-123"
        assert rec.body["system"] == "be brief"
        assert rec.body["messages"] == [{"role": "user", "content": "hi"}]

    @pytest.mark.asyncio
    async def test_generate_object_uses_forced_tool(self):
        rec = _Recorder(
            payload={
                "content": [{"type": "tool_use", "name": "tasks_data", "input": {"tasks": [{"id": 1}]}}],
                "usage": {"input_tokens": 1, "output_tokens": 1},
            }
        )
        provider = AnthropicProvider(transport=httpx.MockTransport(rec))

        result = await provider.generate_object(
            _call(model_id="claude-sonnet-4-20250514", schema=SCHEMA, object_name="tasks_data")
        )

        assert result.object == {"tasks": [{"id": 1}]}
        assert rec.body["tool_choice"] == {"type": "tool", "name": "tasks_data"}
        assert rec.body["tools"][0]["input_schema"] == SCHEMA

    @pytest.mark.asyncio
    async def test_missing_tool_block(self):
        rec = _Recorder(payload={"content": [{"type": "text", "text": "sorry"}], "stop_reason": "end_turn"})
        provider = AnthropicProvider(transport=httpx.MockTransport(rec))

        with pytest.raises(NonRetryableProviderError, match="tool call"):
            await provider.generate_object(_call(schema=SCHEMA, object_name="tasks_data"))

    @pytest.mark.asyncio
    async def test_stream_text(self):
        events = [
            {"type": "message_start", "message": {"usage": {"input_tokens": 9}}},
            {"type": "content_block_delta", "delta": {"type": "text_delta", "text": "Hel"}},
            {"type": "content_block_delta", "delta": {"type": "text_delta", "text": "lo"}},
            {"type": "message_delta", "usage": {"output_tokens": 2}},
        ]
        sse = "".join(f"event: x\ndata: {json.dumps(e)}\n\n" for e in events).encode()
        rec = _Recorder(content=sse)
        provider = AnthropicProvider(transport=httpx.MockTransport(rec))

        stream = await provider.stream_text(_call())
        text = await stream.text()

        assert text == "Hello"
        assert stream.usage.input_tokens == 9
        assert stream.usage.output_tokens == 2
        assert rec.body["stream"] is True


# ═══════════════════════════════════════════════════════════════════
#  OpenAI-compatible
# ═══════════════════════════════════════════════════════════════════


class TestOpenAICompat:
    @pytest.mark.asyncio
    async def test_generate_text(self):
        rec = _Recorder(
            payload={
                "choices": [{"message": {"content": "pong"}}],
                "usage": {"prompt_tokens": 4, "completion_tokens": 1},
            }
        )
        provider = OpenAIProvider(transport=httpx.MockTransport(rec))

        result = await provider.generate_text(_call(model_id="gpt-4o"))

        assert result.text == "pong"
        assert result.usage.output_tokens == 1
        assert rec.requests[0].headers["Authorization"] == "Bearer key-123"
        assert rec.body["messages"][0] == {"role": "system", "content": "be brief"}

    @pytest.mark.asyncio
    async def test_generate_object_from_tool_call(self):
        rec = _Recorder(
            payload={
                "choices": [
                    {
                        "message": {
                            "tool_calls": [
                                {"function": {"name": "new_task", "arguments": '{"title": "T", "description": "D"}'}}
                            ]
                        }
                    }
                ],
                "usage": {"prompt_tokens": 1, "completion_tokens": 1},
            }
        )
        provider = OpenAIProvider(transport=httpx.MockTransport(rec))

        result = await provider.generate_object(_call(model_id="gpt-4o", schema=SCHEMA, object_name="new_task"))

        assert result.object == {"title": "T", "description": "D"}
        assert rec.body["tool_choice"]["function"]["name"] == "new_task"

    @pytest.mark.asyncio
    async def test_malformed_arguments(self):
        rec = _Recorder(
            payload={"choices": [{"message": {"tool_calls": [{"function": {"name": "x", "arguments": "{oops"}}]}}]}
        )
        provider = OpenAIProvider(transport=httpx.MockTransport(rec))

        with pytest.raises(NonRetryableProviderError, match="malformed"):
            await provider.generate_object(_call(model_id="gpt-4o", schema=SCHEMA, object_name="x"))

    @pytest.mark.asyncio
    async def test_unexpected_shape(self):
        provider = OpenAIProvider(transport=httpx.MockTransport(_Recorder(payload={"choices": []})))
        with pytest.raises(NonRetryableProviderError, match="Unexpected response format"):
            await provider.generate_text(_call())

    @pytest.mark.asyncio
    async def test_stream_with_usage_chunk(self):
        chunks = [
            {"choices": [{"delta": {"content": "a"}}]},
            {"choices": [{"delta": {"content": "b"}}]},
            {"choices": [], "usage": {"prompt_tokens": 5, "completion_tokens": 2}},
        ]
        sse = "".join(f"data: {json.dumps(c)}\n\n" for c in chunks) + "data: [DONE]\n\n"
        rec = _Recorder(content=sse.encode())
        provider = OpenAIProvider(transport=httpx.MockTransport(rec))

        stream = await provider.stream_text(_call())
        assert [chunk async for chunk in stream] == ["a", "b"]
        assert stream.usage.total_tokens == 7
        assert rec.body["stream_options"] == {"include_usage": True}


# ═══════════════════════════════════════════════════════════════════
#  Error mapping and validation
# ═══════════════════════════════════════════════════════════════════


class TestErrorMapping:
    @pytest.mark.asyncio
    async def test_429_raises_retryable(self):
        rec = _Recorder(429, {"error": {"message": "Rate limit reached"}})
        provider = OpenAIProvider(transport=httpx.MockTransport(rec))
        with pytest.raises(RetryableProviderError) as exc_info:
            await provider.generate_text(_call())
        assert exc_info.value.status_code == 429

    @pytest.mark.asyncio
    async def test_401_raises_non_retryable(self):
        rec = _Recorder(401, {"error": {"message": "invalid x-api-key"}})
        provider = AnthropicProvider(transport=httpx.MockTransport(rec))
        with pytest.raises(NonRetryableProviderError) as exc_info:
            await provider.generate_text(_call())
        assert exc_info.value.message == "HTTP 401: invalid x-api-key"

    @pytest.mark.asyncio
    async def test_stream_error_status(self):
        rec = _Recorder(503, {"error": {"message": "overloaded"}})
        provider = OpenAIProvider(transport=httpx.MockTransport(rec))
        with pytest.raises(RetryableProviderError):
            await provider.stream_text(_call())

    @pytest.mark.asyncio
    async def test_network_error_is_retryable(self):
        def boom(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        provider = OpenAIProvider(transport=httpx.MockTransport(boom))
        with pytest.raises(RetryableProviderError, match="network error"):
            await provider.generate_text(_call())

    @pytest.mark.asyncio
    async def test_tool_unsupported_body_becomes_capability_mismatch(self):
        rec = _Recorder(400, {"error": {"message": "registry.ollama.ai/library/gemma3 does not support tools"}})
        provider = OllamaProvider(transport=httpx.MockTransport(rec))
        with pytest.raises(CapabilityMismatchError):
            await provider.generate_object(_call(model_id="custom-model", schema=SCHEMA, object_name="x"))


class TestValidation:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "overrides, message",
        [
            ({"api_key": None}, "API key is required"),
            ({"model_id": ""}, "model ID is required"),
            ({"temperature": 3.0}, "Temperature"),
            ({"max_tokens": 0}, "max_tokens"),
            ({"messages": []}, "empty messages"),
            ({"messages": [{"role": "user", "content": ""}]}, "Invalid message format"),
        ],
    )
    async def test_rejected_before_http(self, overrides, message):
        rec = _Recorder(payload={})
        provider = OpenAIProvider(transport=httpx.MockTransport(rec))
        with pytest.raises(ValidationError, match=message):
            await provider.generate_text(_call(**overrides))
        assert rec.requests == []

    @pytest.mark.asyncio
    async def test_object_requires_schema(self):
        provider = OpenAIProvider(transport=httpx.MockTransport(_Recorder(payload={})))
        with pytest.raises(ValidationError, match="Schema is required"):
            await provider.generate_object(_call(object_name="x"))

    @pytest.mark.asyncio
    async def test_ollama_needs_no_key(self):
        rec = _Recorder(payload={"choices": [{"message": {"content": "local"}}]})
        provider = OllamaProvider(transport=httpx.MockTransport(rec))
        result = await provider.generate_text(_call(api_key=None, base_url="http://box:11434/v1"))
        assert result.text == "local"
        assert "Authorization" not in rec.requests[0].headers
        assert str(rec.requests[0].url) == "http://box:11434/v1/chat/completions"


class TestCapabilities:
    @pytest.mark.asyncio
    async def test_tool_less_model_is_capability_mismatch(self):
        rec = _Recorder(payload={})
        provider = OpenAIProvider(transport=httpx.MockTransport(rec))
        with pytest.raises(CapabilityMismatchError, match="gpt-4o-search-preview"):
            await provider.generate_object(_call(model_id="gpt-4o-search-preview", schema=SCHEMA, object_name="x"))
        assert rec.requests == []

    def test_perplexity_unknown_model_defaults_to_no_tools(self):
        assert PerplexityProvider().supports_tools("sonar-future") is False

    def test_unknown_openai_model_assumed_capable(self):
        assert OpenAIProvider().supports_tools("gpt-next") is True

    def test_registry(self):
        assert set(PROVIDER_NAMES) == {"anthropic", "openai", "google", "perplexity", "openrouter", "xai", "ollama"}
        assert get_provider("OpenAI").name == "openai"
        with pytest.raises(ValueError, match="Unknown provider"):
            get_provider("acme")


class TestPerplexityJsonMode:
    @pytest.mark.asyncio
    async def test_object_uses_response_format(self):
        content = json.dumps({"tasks": [{"id": 1, "title": "Research"}]})
        rec = _Recorder(payload={
            "choices": [{"message": {"content": content}}],
            "usage": {"prompt_tokens": 12, "completion_tokens": 8},
        })
        provider = PerplexityProvider(transport=httpx.MockTransport(rec))

        result = await provider.generate_object(_call(model_id="sonar-pro", schema=SCHEMA, object_name="tasks_data"))

        assert result.object == {"tasks": [{"id": 1, "title": "Research"}]}
        assert result.usage.total_tokens == 20
        assert rec.body["response_format"] == {"type": "json_schema", "json_schema": {"schema": SCHEMA}}
        assert "tools" not in rec.body
        assert "tool_choice" not in rec.body
        assert str(rec.requests[0].url) == "https://api.perplexity.ai/chat/completions"

    @pytest.mark.asyncio
    async def test_fenced_content_is_extracted(self):
        content = 'Here you go:\n```json\n{"tasks": []}\n```'
        rec = _Recorder(payload={"choices": [{"message": {"content": content}}]})
        provider = PerplexityProvider(transport=httpx.MockTransport(rec))
        result = await provider.generate_object(_call(model_id="sonar", schema=SCHEMA, object_name="x"))
        assert result.object == {"tasks": []}

    @pytest.mark.asyncio
    async def test_non_json_content_is_non_retryable(self):
        rec = _Recorder(payload={"choices": [{"message": {"content": "I could not find anything."}}]})
        provider = PerplexityProvider(transport=httpx.MockTransport(rec))
        with pytest.raises(NonRetryableProviderError, match="no valid JSON"):
            await provider.generate_object(_call(model_id="sonar-pro", schema=SCHEMA, object_name="x"))

    @pytest.mark.asyncio
    async def test_text_mode_has_no_response_format(self):
        rec = _Recorder(payload={"choices": [{"message": {"content": "answer"}}]})
        provider = PerplexityProvider(transport=httpx.MockTransport(rec))
        await provider.generate_text(_call(model_id="sonar-pro"))
        assert "response_format" not in rec.body
