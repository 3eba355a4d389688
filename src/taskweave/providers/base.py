"""Base class for AI provider adapters."""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass, field
from typing import Any

import httpx

from taskweave.catalog import get_model_info
from taskweave.errors import (
    CapabilityMismatchError,
    NonRetryableProviderError,
    ProviderError,
    RetryableProviderError,
    ValidationError,
    looks_like_capability_mismatch,
    provider_error_from_status,
)

DEFAULT_TIMEOUT_SECONDS = 120.0


@dataclass
class Usage:
    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


@dataclass
class ProviderCall:
    """Everything one provider invocation needs."""

    api_key: str | None
    model_id: str
    messages: list[dict[str, str]]
    max_tokens: int | None = None
    temperature: float | None = None
    schema: dict[str, Any] | None = None
    object_name: str | None = None
    base_url: str | None = None
    provider_specific: dict[str, Any] = field(default_factory=dict)


@dataclass
class ProviderResult:
    """Uniform result from any provider invocation."""

    text: str | None = None
    object: Any = None
    usage: Usage | None = None


class TextStream:
    """Async iterator of text deltas over an open streaming response.

    Owns the HTTP client and response; both are closed when iteration ends.
    ``usage`` is populated once the stream has been consumed.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        response: httpx.Response,
        parse_event: Callable[[dict[str, Any], Usage], str],
    ) -> None:
        self._client = client
        self._response = response
        self._parse_event = parse_event
        self.usage = Usage()
        self._consumed = False

    async def __aiter__(self) -> AsyncIterator[str]:
        if self._consumed:
            return
        self._consumed = True
        try:
            async for line in self._response.aiter_lines():
                event = _parse_sse_line(line)
                if event is None:
                    continue
                delta = self._parse_event(event, self.usage)
                if delta:
                    yield delta
        finally:
            await self.aclose()

    async def text(self) -> str:
        parts = [chunk async for chunk in self]
        return "".join(parts)

    async def aclose(self) -> None:
        await self._response.aclose()
        await self._client.aclose()


def _parse_sse_line(line: str) -> dict[str, Any] | None:
    stripped = line.strip()
    if not stripped.startswith("data:"):
        return None
    payload = stripped[len("data:"):].strip()
    if not payload or payload == "[DONE]":
        return None
    try:
        obj = json.loads(payload)
    except json.JSONDecodeError:
        return None
    return obj if isinstance(obj, dict) else None


class ProviderBase(ABC):
    """Abstract provider adapter.

    Subclasses describe the wire format; this class owns validation, the
    single HTTP attempt and error mapping.  Adapters never retry.
    """

    name: str = "base"
    env_var: str | None = None
    requires_api_key: bool = True
    default_base_url: str = ""
    tools_by_default: bool = True
    # "tools": objects come back as a forced tool call.  "json": response_format JSON mode.
    object_mode: str = "tools"

    def __init__(
        self,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        self._transport = transport
        self._timeout = timeout

    # ── wire format (per backend) ────────────────────────────────

    @abstractmethod
    def build_headers(self, call: ProviderCall) -> dict[str, str]:
        ...

    @abstractmethod
    def endpoint(self, call: ProviderCall) -> str:
        """Path appended to the base URL."""
        ...

    @abstractmethod
    def build_body(self, call: ProviderCall, *, mode: str) -> dict[str, Any]:
        """Request body for ``mode`` in ``text``, ``stream`` or ``object``."""
        ...

    @abstractmethod
    def parse_text(self, data: dict[str, Any]) -> ProviderResult:
        ...

    @abstractmethod
    def parse_object(self, data: dict[str, Any], call: ProviderCall) -> ProviderResult:
        ...

    @abstractmethod
    def parse_stream_event(self, event: dict[str, Any], usage: Usage) -> str:
        """Return the text delta in *event*, updating *usage* in place."""
        ...

    # ── capability surface ───────────────────────────────────────

    def supports_tools(self, model_id: str) -> bool:
        info = get_model_info(self.name, model_id)
        if info is None:
            return self.tools_by_default
        return info.supports_tools

    async def generate_text(self, call: ProviderCall) -> ProviderResult:
        self.validate_call(call)
        data = await self._post(call, self.build_body(call, mode="text"))
        return self.parse_text(data)

    async def stream_text(self, call: ProviderCall) -> TextStream:
        self.validate_call(call)
        client = self._client()
        request = client.build_request(
            "POST",
            self._url(call),
            headers=self.build_headers(call),
            json=self.build_body(call, mode="stream"),
        )
        try:
            response = await client.send(request, stream=True)
        except httpx.HTTPError as exc:
            await client.aclose()
            raise self._transport_error(exc) from exc
        if response.status_code >= 400:
            body = (await response.aread()).decode("utf-8", errors="replace")
            await response.aclose()
            await client.aclose()
            raise provider_error_from_status(self.name, response.status_code, body)
        return TextStream(client, response, self.parse_stream_event)

    async def generate_object(self, call: ProviderCall) -> ProviderResult:
        self.validate_call(call)
        if not call.schema:
            raise ValidationError("Schema is required for object generation")
        if not call.object_name:
            raise ValidationError("Object name is required for object generation")
        if self.object_mode == "tools" and not self.supports_tools(call.model_id):
            raise CapabilityMismatchError(self.name, call.model_id)
        try:
            data = await self._post(call, self.build_body(call, mode="object"))
        except NonRetryableProviderError as exc:
            if looks_like_capability_mismatch(exc.message):
                raise CapabilityMismatchError(self.name, call.model_id, exc.message) from exc
            raise
        return self.parse_object(data, call)

    # ── validation ───────────────────────────────────────────────

    def validate_auth(self, call: ProviderCall) -> None:
        if self.requires_api_key and not call.api_key:
            raise ValidationError(f"{self.name} API key is required")

    def validate_call(self, call: ProviderCall) -> None:
        self.validate_auth(call)
        if not call.model_id:
            raise ValidationError(f"{self.name} model ID is required")
        if call.temperature is not None and not 0 <= call.temperature <= 2:
            raise ValidationError("Temperature must be between 0 and 2")
        if call.max_tokens is not None and call.max_tokens <= 0:
            raise ValidationError("max_tokens must be greater than 0")
        if not call.messages:
            raise ValidationError("Invalid or empty messages array provided")
        for msg in call.messages:
            if not msg.get("role") or not msg.get("content"):
                raise ValidationError(
                    "Invalid message format. Each message must have role and content"
                )

    # ── HTTP ─────────────────────────────────────────────────────

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self._timeout, transport=self._transport)

    def _url(self, call: ProviderCall) -> str:
        base = (call.base_url or self.default_base_url).rstrip("/")
        return base + self.endpoint(call)

    def _transport_error(self, exc: httpx.HTTPError) -> ProviderError:
        if isinstance(exc, httpx.TimeoutException):
            return RetryableProviderError(f"{self.name} request timeout: {exc}", self.name, cause=exc)
        if isinstance(exc, httpx.NetworkError):
            return RetryableProviderError(f"{self.name} network error: {exc}", self.name, cause=exc)
        return NonRetryableProviderError(f"{self.name} transport error: {exc}", self.name, cause=exc)

    async def _post(self, call: ProviderCall, body: dict[str, Any]) -> dict[str, Any]:
        async with self._client() as client:
            try:
                resp = await client.post(self._url(call), headers=self.build_headers(call), json=body)
            except httpx.HTTPError as exc:
                raise self._transport_error(exc) from exc
        if resp.status_code >= 400:
            raise provider_error_from_status(self.name, resp.status_code, resp.text)
        try:
            data = resp.json()
        except ValueError as exc:
            raise NonRetryableProviderError(
                f"{self.name} returned a non-JSON response",
                self.name,
                resp.status_code,
                cause=exc,
                context={"body": resp.text[:500]},
            ) from exc
        if not isinstance(data, dict):
            raise NonRetryableProviderError(f"{self.name} returned unexpected payload", self.name)
        return data


def split_system(messages: list[dict[str, str]]) -> tuple[str, list[dict[str, str]]]:
    """Separate system messages (joined) from the conversation turns."""
    system = "\n\n".join(m["content"] for m in messages if m.get("role") == "system")
    rest = [m for m in messages if m.get("role") != "system"]
    return system, rest
