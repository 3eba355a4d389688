"""Tests for taskweave.errors: classification and message cleanup."""

from __future__ import annotations

import httpx
import pytest

from taskweave.errors import (
    CapabilityMismatchError,
    ConfigurationError,
    FieldDiagnostic,
    NonRetryableProviderError,
    RetryableProviderError,
    SchemaViolation,
    TagNotEmptyError,
    ValidationError,
    clean_error_message,
    extract_error_detail,
    is_retryable,
    looks_like_capability_mismatch,
    provider_error_from_status,
)


# ── is_retryable ─────────────────────────────────────────────────


class TestIsRetryable:
    @pytest.mark.parametrize(
        "exc",
        [
            RetryableProviderError("overloaded", "anthropic", 529),
            httpx.ReadTimeout("slow"),
            httpx.ConnectError("refused"),
            NonRetryableProviderError("gateway", "openai", 502),
            RuntimeError("Request timed out after 120s"),
            RuntimeError("Rate limit reached for requests"),
        ],
    )
    def test_retryable(self, exc):
        assert is_retryable(exc) is True

    @pytest.mark.parametrize(
        "exc",
        [
            NonRetryableProviderError("invalid api key", "openai", 401),
            NonRetryableProviderError("rate limit words but 400", "openai", 400),
            CapabilityMismatchError("perplexity", "sonar-pro"),
            ValidationError("empty prompt"),
            ConfigurationError("no provider"),
            RuntimeError("something odd"),
        ],
    )
    def test_not_retryable(self, exc):
        assert is_retryable(exc) is False


# ── status mapping ───────────────────────────────────────────────


class TestProviderErrorFromStatus:
    def test_429_is_retryable(self):
        err = provider_error_from_status("anthropic", 429, '{"error": {"message": "slow down"}}')
        assert isinstance(err, RetryableProviderError)
        assert err.message == "HTTP 429: slow down"
        assert err.status_code == 429

    def test_500_is_retryable(self):
        assert isinstance(provider_error_from_status("openai", 500, "boom"), RetryableProviderError)

    def test_401_is_not(self):
        err = provider_error_from_status("openai", 401, '{"error": {"message": "Incorrect API key"}}')
        assert isinstance(err, NonRetryableProviderError)
        assert err.provider == "openai"

    def test_400_mentioning_overload_is_retryable(self):
        assert isinstance(provider_error_from_status("xai", 400, "model overloaded"), RetryableProviderError)

    def test_tool_unsupported_is_never_retryable(self):
        err = provider_error_from_status("ollama", 500, "gemma3 does not support tools")
        assert isinstance(err, NonRetryableProviderError)


# ── message helpers ──────────────────────────────────────────────


class TestMessages:
    def test_extract_nested_detail(self):
        body = '{"error": {"type": "invalid_request_error", "message": "max_tokens too large"}}'
        assert extract_error_detail(body) == "max_tokens too large"

    def test_extract_plain_string_error(self):
        assert extract_error_detail('{"error": "nope"}') == "nope"

    def test_extract_non_json(self):
        assert extract_error_detail("  Bad Gateway ") == "Bad Gateway"

    def test_clean_strips_wrapper_prefix(self):
        exc = RuntimeError("Anthropic API error during text generation: invalid model")
        assert clean_error_message(exc) == "invalid model"

    def test_clean_takes_first_line(self):
        assert clean_error_message(RuntimeError("first\nsecond")) == "first"

    def test_clean_empty_falls_back_to_type(self):
        assert clean_error_message(RuntimeError()) == "RuntimeError"

    def test_capability_patterns(self):
        assert looks_like_capability_mismatch("This model does not support tools")
        assert not looks_like_capability_mismatch("rate limit")


# ── structured errors ────────────────────────────────────────────


class TestStructuredErrors:
    def test_schema_violation_summarizes(self):
        diags = [FieldDiagnostic(f"tasks[{i}].title", "is required") for i in range(7)]
        err = SchemaViolation(diags)
        assert "tasks[0].title: is required" in err.message
        assert "(+2 more)" in err.message
        assert err.diagnostics == diags

    def test_tag_not_empty_message(self):
        err = TagNotEmptyError("master", 3)
        assert "already contains 3 tasks" in err.message
        assert "--force" in err.message and "--append" in err.message

    def test_capability_mismatch_names_model(self):
        err = CapabilityMismatchError("perplexity", "sonar-pro")
        assert "sonar-pro" in err.message
        assert err.provider == "perplexity"

    @pytest.mark.parametrize("role", ["main", "research", "fallback"])
    def test_capability_mismatch_names_role_flag(self, role):
        err = CapabilityMismatchError("openai", "gpt-4o-search-preview").with_role(role)
        assert f"taskweave models --set-{role} <provider>:<model>" in err.message
        assert err.role == role
        assert err.model_id == "gpt-4o-search-preview"

    def test_capability_mismatch_without_role_is_generic(self):
        err = CapabilityMismatchError("openai", "gpt-4o-search-preview")
        assert "--set-<role>" in err.message
        assert "--set-main" not in err.message
