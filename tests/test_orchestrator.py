"""Tests for taskweave.orchestrator: role sequencing, retry/backoff, aggregation."""

from __future__ import annotations

import json

import httpx
import pytest

from conftest import object_result, text_result
from taskweave.errors import (
    AllRolesFailedError,
    CapabilityMismatchError,
    NonRetryableProviderError,
    RetryableProviderError,
    ValidationError,
)
from taskweave.orchestrator import (
    INITIAL_RETRY_DELAY_S,
    MAX_RETRIES,
    retry_delay,
    role_sequence,
)
from taskweave.providers.anthropic import AnthropicProvider
from taskweave.providers.base import ProviderResult


def _rate_limited() -> RetryableProviderError:
    return RetryableProviderError("HTTP 429: rate limit exceeded", "anthropic", 429)


def _auth_failed(provider: str = "anthropic") -> NonRetryableProviderError:
    return NonRetryableProviderError("HTTP 401: invalid x-api-key", provider, 401)


# ═══════════════════════════════════════════════════════════════════
#  Role sequence
# ═══════════════════════════════════════════════════════════════════


class TestRoleSequence:
    @pytest.mark.parametrize(
        "role, expected",
        [
            ("main", ("main", "fallback", "research")),
            ("research", ("research", "fallback", "main")),
            ("fallback", ("fallback", "main", "research")),
        ],
    )
    def test_known_roles(self, role, expected, logger):
        assert role_sequence(role, logger) == expected
        assert logger.messages("warn") == []

    def test_unknown_role_defaults_to_main_with_warning(self, logger):
        assert role_sequence("planner", logger) == ("main", "fallback", "research")
        assert any("planner" in m for m in logger.messages("warn"))

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "role, expected_order",
        [
            ("main", ["anthropic", "openai", "perplexity"]),
            ("research", ["perplexity", "openai", "anthropic"]),
            ("fallback", ["openai", "anthropic", "perplexity"]),
            ("bogus", ["anthropic", "openai", "perplexity"]),
        ],
    )
    async def test_realized_attempt_order(self, role, expected_order, make_config, scripted, make_orchestrator):
        providers, factory = scripted(
            anthropic=[_auth_failed("anthropic")],
            openai=[_auth_failed("openai")],
            perplexity=[_auth_failed("perplexity")],
        )
        orch = make_orchestrator(make_config(), factory)
        with pytest.raises(AllRolesFailedError) as exc_info:
            await orch.generate_text_service(role=role, prompt="hello")
        assert [a.provider for a in exc_info.value.attempts] == expected_order


# ═══════════════════════════════════════════════════════════════════
#  Retry / backoff
# ═══════════════════════════════════════════════════════════════════


class TestRetry:
    def test_delay_formula(self):
        assert retry_delay(1) == INITIAL_RETRY_DELAY_S
        assert retry_delay(2) == INITIAL_RETRY_DELAY_S * 2
        assert MAX_RETRIES == 2

    @pytest.mark.asyncio
    async def test_retryable_error_retried_then_succeeds(self, make_config, scripted, make_orchestrator, sleeps):
        providers, factory = scripted(anthropic=[_rate_limited(), _rate_limited(), text_result("ok")])
        orch = make_orchestrator(make_config(), factory)

        result = await orch.generate_text_service(role="main", prompt="hello")

        assert result.main_result.text == "ok"
        assert result.role == "main"
        assert sleeps == [1.0, 2.0]
        assert len(providers["anthropic"].calls) == 3

    @pytest.mark.asyncio
    async def test_at_most_two_retries_then_next_role(self, make_config, scripted, make_orchestrator, sleeps):
        providers, factory = scripted(
            anthropic=[_rate_limited(), _rate_limited(), _rate_limited()],
            openai=[text_result("from fallback")],
        )
        orch = make_orchestrator(make_config(), factory)

        result = await orch.generate_text_service(role="main", prompt="hello")

        assert len(providers["anthropic"].calls) == 3
        assert sleeps == [1.0, 2.0]
        assert result.role == "fallback"
        assert result.main_result.text == "from fallback"
        assert [a.role for a in result.attempts] == ["main"]

    @pytest.mark.asyncio
    async def test_non_retryable_error_zero_retries(self, make_config, scripted, make_orchestrator, sleeps):
        providers, factory = scripted(anthropic=[_auth_failed()], openai=[text_result("ok")])
        orch = make_orchestrator(make_config(), factory)

        result = await orch.generate_text_service(role="main", prompt="hello")

        assert len(providers["anthropic"].calls) == 1
        assert sleeps == []
        assert result.provider_name == "openai"

    @pytest.mark.asyncio
    async def test_plain_5xx_status_is_retried(self, make_config, scripted, make_orchestrator, sleeps):
        err = NonRetryableProviderError("upstream exploded", "anthropic", 503)
        providers, factory = scripted(anthropic=[err, text_result("ok")])
        orch = make_orchestrator(make_config(), factory)

        await orch.generate_text_service(role="main", prompt="hello")

        assert sleeps == [1.0]


# ═══════════════════════════════════════════════════════════════════
#  Sequencing outcomes
# ═══════════════════════════════════════════════════════════════════


class TestSequencing:
    @pytest.mark.asyncio
    async def test_unconfigured_main_short_circuits_to_fallback(self, make_config, scripted, make_orchestrator):
        providers, factory = scripted(openai=[text_result("fallback answer")])
        orch = make_orchestrator(make_config(main=None), factory)

        result = await orch.generate_text_service(role="main", prompt="hello")

        assert result.main_result.text == "fallback answer"
        assert result.role == "fallback"
        assert result.attempts[0].error_type == "ConfigurationError"

    @pytest.mark.asyncio
    async def test_missing_credential_advances(self, make_config, scripted, make_orchestrator):
        providers, factory = scripted(openai=[text_result("ok")])
        orch = make_orchestrator(make_config(), factory, session_env={"OPENAI_API_KEY": "sk-test"})

        result = await orch.generate_text_service(role="main", prompt="hello")

        assert result.role == "fallback"
        assert result.attempts[0].error_type == "MissingCredentialError"
        assert providers.get("anthropic") is None or providers["anthropic"].calls == []

    @pytest.mark.asyncio
    async def test_first_success_stops_sequence(self, make_config, scripted, make_orchestrator):
        providers, factory = scripted(anthropic=[text_result("main answer")])
        orch = make_orchestrator(make_config(), factory)

        result = await orch.generate_text_service(role="main", prompt="hello")

        assert result.provider_name == "anthropic"
        assert result.attempts == []
        assert "openai" not in providers

    @pytest.mark.asyncio
    async def test_all_roles_fail_aggregates_last_clean_message(self, make_config, scripted, make_orchestrator):
        providers, factory = scripted(
            anthropic=[_auth_failed("anthropic")],
            openai=[_auth_failed("openai")],
            perplexity=[NonRetryableProviderError('{"error": {"message": "model not found"}}', "perplexity", 404)],
        )
        orch = make_orchestrator(make_config(), factory)

        with pytest.raises(AllRolesFailedError) as exc_info:
            await orch.generate_text_service(role="main", prompt="hello")

        err = exc_info.value
        assert err.message == "model not found"
        assert len(err.attempts) == 3
        assert isinstance(err.last_error, NonRetryableProviderError)

    @pytest.mark.asyncio
    async def test_missing_prompt_is_fatal_not_role_advance(self, make_config, scripted, make_orchestrator):
        providers, factory = scripted()
        orch = make_orchestrator(make_config(), factory)

        with pytest.raises(ValidationError):
            await orch.generate_text_service(role="main", prompt="   ")
        assert providers == {}

    @pytest.mark.asyncio
    async def test_system_prompt_goes_first(self, make_config, scripted, make_orchestrator):
        providers, factory = scripted(anthropic=[text_result("ok")])
        orch = make_orchestrator(make_config(), factory)

        await orch.generate_text_service(role="main", prompt="user text", system_prompt="be terse")

        _, call = providers["anthropic"].calls[0]
        assert call.messages == [
            {"role": "system", "content": "be terse"},
            {"role": "user", "content": "user text"},
        ]
        assert call.api_key == "sk-ant-test"
        assert call.max_tokens == 4000


# ═══════════════════════════════════════════════════════════════════
#  Capability mismatch
# ═══════════════════════════════════════════════════════════════════


class TestCapabilityMismatch:
    @pytest.mark.asyncio
    async def test_mismatch_aborts_whole_sequence(self, make_config, scripted, make_orchestrator, sleeps):
        mismatch = CapabilityMismatchError("perplexity", "sonar-pro")
        providers, factory = scripted(perplexity=[mismatch])
        orch = make_orchestrator(make_config(), factory)

        with pytest.raises(CapabilityMismatchError) as exc_info:
            await orch.generate_object_service(role="research", prompt="make tasks", schema={"type": "object"})

        assert "openai" not in providers
        assert "anthropic" not in providers
        assert sleeps == []
        assert exc_info.value.role == "research"
        assert "--set-research" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_mismatch_on_fallback_names_fallback_flag(self, make_config, scripted, make_orchestrator):
        mismatch = CapabilityMismatchError("openai", "gpt-4o-search-preview")
        _, factory = scripted(anthropic=[_auth_failed("anthropic")], openai=[mismatch])
        orch = make_orchestrator(make_config(), factory)

        with pytest.raises(CapabilityMismatchError, match="--set-fallback"):
            await orch.generate_object_service(role="main", prompt="make tasks", schema={"type": "object"})

    @pytest.mark.asyncio
    async def test_object_service_passes_schema_and_default_name(self, make_config, scripted, make_orchestrator):
        providers, factory = scripted(anthropic=[object_result({"tasks": []})])
        orch = make_orchestrator(make_config(), factory)

        result = await orch.generate_object_service(role="main", prompt="p", schema={"type": "object"})

        method, call = providers["anthropic"].calls[0]
        assert method == "generate_object"
        assert call.object_name == "generated_object"
        assert call.schema == {"type": "object"}
        assert result.main_result.object == {"tasks": []}


# ═══════════════════════════════════════════════════════════════════
#  Telemetry
# ═══════════════════════════════════════════════════════════════════


class TestTelemetry:
    @pytest.mark.asyncio
    async def test_success_carries_telemetry(self, make_config, scripted, make_orchestrator):
        providers, factory = scripted(anthropic=[text_result("ok", 1_000_000, 1_000_000)])
        orch = make_orchestrator(make_config(), factory)

        result = await orch.generate_text_service(role="main", prompt="hi", command_name="update-task")

        t = result.telemetry
        assert t is not None
        assert t.command_name == "update-task"
        assert t.total_tokens == 2_000_000
        assert t.total_cost == pytest.approx(18.0)

    @pytest.mark.asyncio
    async def test_result_without_usage_has_no_telemetry(self, make_config, scripted, make_orchestrator):
        providers, factory = scripted(anthropic=[ProviderResult(text="ok", usage=None)])
        orch = make_orchestrator(make_config(), factory)

        result = await orch.generate_text_service(role="main", prompt="hi")

        assert result.telemetry is None


# ═══════════════════════════════════════════════════════════════════
#  Streaming
# ═══════════════════════════════════════════════════════════════════


class TestStreaming:
    @pytest.mark.asyncio
    async def test_stream_telemetry_after_consumption(self, make_config, make_orchestrator):
        events = [
            {"type": "message_start", "message": {"usage": {"input_tokens": 1_000_000}}},
            {"type": "content_block_delta", "delta": {"type": "text_delta", "text": "streamed"}},
            {"type": "message_delta", "usage": {"output_tokens": 0}},
        ]
        sse = "".join(f"data: {json.dumps(e)}\n\n" for e in events).encode()
        transport = httpx.MockTransport(lambda request: httpx.Response(200, content=sse))
        orch = make_orchestrator(make_config(), lambda name: AnthropicProvider(transport=transport))

        result = await orch.stream_text_service(role="main", prompt="hi", command_name="chat")
        assert result.telemetry is None

        assert await result.main_result.text() == "streamed"
        record = orch.stream_telemetry(result, command_name="chat")

        assert record is result.telemetry
        assert record.input_tokens == 1_000_000
        assert record.total_cost == pytest.approx(3.0)
