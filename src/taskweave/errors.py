"""Error taxonomy and shared classification for provider failures."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any

import httpx


class TaskweaveError(Exception):
    """Base exception for all taskweave errors."""

    def __init__(self, message: str, context: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.context = context or {}


# ── Orchestration ────────────────────────────────────────────────


class ConfigurationError(TaskweaveError):
    """Provider or model missing/invalid for a role."""


class MissingCredentialError(ConfigurationError):
    """No API key could be resolved for a provider that needs one."""

    def __init__(self, message: str, provider: str, env_var: str | None = None) -> None:
        super().__init__(message, {"provider": provider, "env_var": env_var})
        self.provider = provider
        self.env_var = env_var


class ValidationError(TaskweaveError):
    """Caller supplied an unusable request (e.g. empty prompt)."""


class ProviderError(TaskweaveError):
    """A single provider invocation failed."""

    def __init__(
        self,
        message: str,
        provider: str | None = None,
        status_code: int | None = None,
        cause: BaseException | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, context)
        self.provider = provider
        self.status_code = status_code
        self.cause = cause


class RetryableProviderError(ProviderError):
    """Rate-limit, overload, timeout, network or 429/5xx failures."""


class NonRetryableProviderError(ProviderError):
    """Auth and other 4xx failures; retrying will not help."""


class CapabilityMismatchError(ProviderError):
    """Structured output requested from a model without tool/function calling."""

    def __init__(self, provider: str, model_id: str, detail: str = "", role: str | None = None) -> None:
        flag = f"--set-{role}" if role else "--set-<role>"
        message = (
            f"Model '{model_id}' on provider '{provider}' does not support tool use, "
            "which structured (object) generation requires. "
            "Choose a tool-capable model for this role, e.g. "
            f"`taskweave models {flag} <provider>:<model>`."
        )
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message, provider, context={"model_id": model_id, "role": role})
        self.model_id = model_id
        self.detail = detail
        self.role = role

    def with_role(self, role: str) -> CapabilityMismatchError:
        """Same mismatch, with the remediation naming *role*'s flag."""
        return CapabilityMismatchError(self.provider or "", self.model_id, self.detail, role)


@dataclass
class RoleFailure:
    role: str
    provider: str | None
    model_id: str | None
    error: str
    error_type: str


class AllRolesFailedError(TaskweaveError):
    """Every role in the fallback sequence failed for ordinary reasons."""

    def __init__(
        self,
        message: str,
        attempts: list[RoleFailure],
        last_error: BaseException | None = None,
    ) -> None:
        super().__init__(message, {"attempts": [a.__dict__ for a in attempts]})
        self.attempts = attempts
        self.last_error = last_error


# ── Reconciliation ───────────────────────────────────────────────


class ReconcileError(TaskweaveError):
    """Base for fatal reconciliation failures."""


class ParseFailure(ReconcileError):
    """No extraction strategy produced parseable JSON."""

    def __init__(self, message: str, raw_text: str) -> None:
        super().__init__(message, {"raw_text": raw_text[:2000]})
        self.raw_text = raw_text


@dataclass(frozen=True)
class FieldDiagnostic:
    path: str
    message: str

    def __str__(self) -> str:
        return f"{self.path}: {self.message}"


class SchemaViolation(ReconcileError):
    """Parsed payload does not match the expected task schema."""

    def __init__(self, diagnostics: list[FieldDiagnostic]) -> None:
        summary = "; ".join(str(d) for d in diagnostics[:5])
        if len(diagnostics) > 5:
            summary += f" (+{len(diagnostics) - 5} more)"
        super().__init__(f"AI response failed task structure validation: {summary}")
        self.diagnostics = diagnostics


@dataclass(frozen=True)
class DataIntegrityWarning:
    """A correction applied to AI output.  Logged, never raised."""

    kind: str
    message: str
    details: dict[str, Any] = field(default_factory=dict)


# ── Task graph ───────────────────────────────────────────────────


class TaskNotFoundError(TaskweaveError):
    pass


class TagError(TaskweaveError):
    pass


class TagNotEmptyError(TagError):
    """Refusing to overwrite a tag that already has tasks."""

    def __init__(self, tag: str, count: int) -> None:
        super().__init__(
            f"Tag '{tag}' already contains {count} tasks. "
            "Use --force to overwrite or --append to add to existing tasks.",
            {"tag": tag, "count": count},
        )
        self.tag = tag
        self.count = count


class StaleDocumentError(TaskweaveError):
    """The task file changed on disk since it was read."""


# ── Classification ───────────────────────────────────────────────

RATE_LIMIT_PATTERNS: tuple[str, ...] = (
    "rate limit",
    "rate_limit",
    "too many requests",
    "quota exceeded",
)

TRANSIENT_PATTERNS: tuple[str, ...] = (
    "overloaded",
    "service temporarily unavailable",
    "timeout",
    "timed out",
    "network error",
    "connection reset",
    "econnreset",
    "etimedout",
)

CAPABILITY_MISMATCH_PATTERNS: tuple[str, ...] = (
    "does not support tools",
    "does not support tool",
    "tool use is not supported",
    "tools are not supported",
    "function calling is not supported",
    "does not support function calling",
)

_PROVIDER_PREFIX = re.compile(r"^[\w .-]+ API error during [\w ]+:\s*", re.IGNORECASE)


def _contains_any(text: str, patterns: tuple[str, ...]) -> bool:
    lower = text.lower()
    return any(pattern in lower for pattern in patterns)


def looks_like_rate_limit(text: str) -> bool:
    if not text:
        return False
    return _contains_any(text, RATE_LIMIT_PATTERNS)


def looks_like_transient(text: str) -> bool:
    if not text:
        return False
    return looks_like_rate_limit(text) or _contains_any(text, TRANSIENT_PATTERNS)


def looks_like_capability_mismatch(text: str) -> bool:
    if not text:
        return False
    return _contains_any(text, CAPABILITY_MISMATCH_PATTERNS)


def is_retryable_status(status: int | None) -> bool:
    if status is None:
        return False
    return status == 429 or status >= 500


def is_retryable(exc: BaseException) -> bool:
    """Return ``True`` for errors worth retrying against the same role."""
    if isinstance(exc, (CapabilityMismatchError, ValidationError, ConfigurationError)):
        return False
    if isinstance(exc, RetryableProviderError):
        return True
    if isinstance(exc, (httpx.TimeoutException, httpx.NetworkError)):
        return True
    status = getattr(exc, "status_code", None)
    if is_retryable_status(status):
        return True
    if isinstance(exc, NonRetryableProviderError):
        return False
    return looks_like_transient(str(exc))


def provider_error_from_status(
    provider: str,
    status_code: int,
    body: str,
) -> ProviderError:
    """Map an HTTP error response onto the retryable/non-retryable split."""
    message = f"HTTP {status_code}: {extract_error_detail(body)}"
    if looks_like_capability_mismatch(body):
        return NonRetryableProviderError(message, provider, status_code)
    if is_retryable_status(status_code) or looks_like_transient(body):
        return RetryableProviderError(message, provider, status_code)
    return NonRetryableProviderError(message, provider, status_code)


def extract_error_detail(body: str) -> str:
    """Pull the innermost ``message`` out of a JSON error body."""
    text = (body or "").strip()
    try:
        data = json.loads(text)
    except (json.JSONDecodeError, TypeError):
        return text[:500]
    while isinstance(data, dict):
        inner = data.get("error", data.get("message"))
        if inner is None:
            break
        if isinstance(inner, str):
            return inner
        if isinstance(inner, dict) and "message" in inner:
            msg = inner["message"]
            if isinstance(msg, str):
                return msg
        data = inner
    return text[:500]


def clean_error_message(exc: BaseException) -> str:
    """One readable line for the user, without wrapper prefixes."""
    msg = getattr(exc, "message", None) or str(exc) or type(exc).__name__
    msg = _PROVIDER_PREFIX.sub("", msg.strip())
    if msg.startswith("{"):
        msg = extract_error_detail(msg)
    first = msg.splitlines()[0] if msg else ""
    return first or type(exc).__name__
