"""Role-sequenced AI calls with bounded retry and usage telemetry.

Usage::

    orch = CallOrchestrator(RoleResolver(cfg, project_root=root), logger=log)
    result = await orch.generate_text_service(role="main", prompt="...")
    result.main_result.text

Roles are tried strictly in sequence.  Within a role, retryable failures are
retried up to ``MAX_RETRIES`` times with exponential backoff; anything else
advances to the next role.  A capability mismatch ends the whole call.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

import httpx

from taskweave.errors import (
    AllRolesFailedError,
    CapabilityMismatchError,
    RoleFailure,
    ValidationError,
    clean_error_message,
    is_retryable,
)
from taskweave.log import Logger, NullLogger
from taskweave.providers.base import ProviderBase, ProviderCall, ProviderResult, TextStream
from taskweave.providers.registry import get_provider
from taskweave.roles import RoleResolver
from taskweave.telemetry import TelemetryRecord, build_telemetry

MAX_RETRIES = 2
INITIAL_RETRY_DELAY_S = 1.0
DEFAULT_OBJECT_NAME = "generated_object"

ROLE_SEQUENCES: dict[str, tuple[str, ...]] = {
    "main": ("main", "fallback", "research"),
    "research": ("research", "fallback", "main"),
    "fallback": ("fallback", "main", "research"),
}

SleepFn = Callable[[float], Awaitable[None]]
ProviderFactory = Callable[[str], ProviderBase]


def role_sequence(role: str, logger: Logger | None = None) -> tuple[str, ...]:
    """Return the attempt order for *role*; unknown roles use main's order."""
    seq = ROLE_SEQUENCES.get(role)
    if seq is None:
        (logger or NullLogger()).warn(f"Unknown initial role: {role}. Defaulting to main -> fallback -> research sequence.")
        return ROLE_SEQUENCES["main"]
    return seq


def retry_delay(attempt: int) -> float:
    """Backoff before retry number *attempt* (1-based)."""
    return INITIAL_RETRY_DELAY_S * 2 ** (attempt - 1)


@dataclass
class ServiceResult:
    main_result: ProviderResult | TextStream
    telemetry: TelemetryRecord | None
    provider_name: str
    model_id: str
    role: str
    attempts: list[RoleFailure] = field(default_factory=list)


class CallOrchestrator:
    def __init__(
        self,
        resolver: RoleResolver,
        *,
        logger: Logger | None = None,
        sleep: SleepFn = asyncio.sleep,
        provider_factory: ProviderFactory | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.resolver = resolver
        self.logger = logger or NullLogger()
        self._sleep = sleep
        self._provider_factory = provider_factory or (lambda name: get_provider(name, transport=transport))

    # ── public services ──────────────────────────────────────────

    async def generate_text_service(
        self,
        *,
        role: str,
        prompt: str,
        system_prompt: str | None = None,
        command_name: str = "unknown",
        output_type: str = "cli",
    ) -> ServiceResult:
        return await self._unified("text", role, prompt, system_prompt, command_name, output_type)

    async def stream_text_service(
        self,
        *,
        role: str,
        prompt: str,
        system_prompt: str | None = None,
        command_name: str = "unknown",
        output_type: str = "cli",
    ) -> ServiceResult:
        """Open a text stream.  Telemetry is None until :meth:`stream_telemetry`."""
        return await self._unified("stream", role, prompt, system_prompt, command_name, output_type)

    async def generate_object_service(
        self,
        *,
        role: str,
        prompt: str,
        schema: dict[str, Any],
        object_name: str = DEFAULT_OBJECT_NAME,
        system_prompt: str | None = None,
        command_name: str = "unknown",
        output_type: str = "cli",
    ) -> ServiceResult:
        return await self._unified(
            "object",
            role,
            prompt,
            system_prompt,
            command_name,
            output_type,
            schema=schema,
            object_name=object_name,
        )

    def stream_telemetry(self, result: ServiceResult, *, command_name: str, output_type: str = "cli") -> TelemetryRecord | None:
        """Build telemetry for a consumed stream from its accumulated usage."""
        stream = result.main_result
        if not isinstance(stream, TextStream):
            return result.telemetry
        result.telemetry = build_telemetry(
            command_name=command_name,
            provider_name=result.provider_name,
            model_id=result.model_id,
            input_tokens=stream.usage.input_tokens,
            output_tokens=stream.usage.output_tokens,
            output_type=output_type,
            logger=self.logger,
        )
        return result.telemetry

    # ── sequencing ───────────────────────────────────────────────

    async def _unified(
        self,
        service_type: str,
        role: str,
        prompt: str,
        system_prompt: str | None,
        command_name: str,
        output_type: str,
        *,
        schema: dict[str, Any] | None = None,
        object_name: str | None = None,
    ) -> ServiceResult:
        if not prompt or not prompt.strip():
            raise ValidationError("User prompt content is missing.", {"command": command_name})

        messages: list[dict[str, str]] = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})

        failures: list[RoleFailure] = []
        last_error: BaseException | None = None

        for current in role_sequence(role, self.logger):
            provider_name: str | None = None
            model_id: str | None = None
            try:
                binding = self.resolver.resolve(current)
                provider_name, model_id = binding.provider, binding.model_id
                api_key = self.resolver.resolve_credential(provider_name)  # type: ignore[arg-type]
                provider = self._provider_factory(provider_name)  # type: ignore[arg-type]
                call = ProviderCall(
                    api_key=api_key,
                    model_id=model_id,  # type: ignore[arg-type]
                    messages=messages,
                    max_tokens=binding.max_tokens,
                    temperature=binding.temperature,
                    schema=schema,
                    object_name=object_name,
                    base_url=binding.base_url,
                )
                self.logger.info(f"New AI service call with role: {current} ({provider_name}/{model_id})")
                result = await self._attempt_with_retries(provider, service_type, call, current)
            except CapabilityMismatchError as exc:
                if exc.role is not None:
                    self.logger.error(f"{current} ({provider_name}/{model_id}): {exc.message}")
                    raise
                mismatch = exc.with_role(current)
                self.logger.error(f"{current} ({provider_name}/{model_id}): {mismatch.message}")
                raise mismatch from exc
            except Exception as exc:
                last_error = exc
                message = clean_error_message(exc)
                failures.append(RoleFailure(current, provider_name, model_id, message, type(exc).__name__))
                self.logger.warn(f"Service call failed for role {current} ({provider_name or '?'}/{model_id or '?'}): {message}")
                self.logger.debug(f"{current} failure detail: {exc!r}")
                continue

            telemetry = None
            if isinstance(result, ProviderResult) and result.usage is not None:
                telemetry = build_telemetry(
                    command_name=command_name,
                    provider_name=provider_name,  # type: ignore[arg-type]
                    model_id=model_id,  # type: ignore[arg-type]
                    input_tokens=result.usage.input_tokens,
                    output_tokens=result.usage.output_tokens,
                    output_type=output_type,
                    logger=self.logger,
                )
            self.logger.debug(f"{service_type} call succeeded with role {current}")
            return ServiceResult(
                main_result=result,
                telemetry=telemetry,
                provider_name=provider_name,  # type: ignore[arg-type]
                model_id=model_id,  # type: ignore[arg-type]
                role=current,
                attempts=failures,
            )

        final = clean_error_message(last_error) if last_error else "No AI role could be attempted"
        self.logger.error(f"All roles in the sequence [{', '.join(role_sequence(role))}] failed.")
        raise AllRolesFailedError(final, failures, last_error) from last_error

    async def _attempt_with_retries(
        self,
        provider: ProviderBase,
        service_type: str,
        call: ProviderCall,
        role: str,
    ) -> ProviderResult | TextStream:
        retries = 0
        while True:
            try:
                return await self._invoke(provider, service_type, call)
            except Exception as exc:
                if retries >= MAX_RETRIES or not is_retryable(exc):
                    raise
                retries += 1
                delay = retry_delay(retries)
                self.logger.info(
                    f"Attempt {retries} failed for role {role} ({provider.name}): "
                    f"{clean_error_message(exc)}. Retrying in {delay:.1f}s..."
                )
                await self._sleep(delay)

    @staticmethod
    async def _invoke(provider: ProviderBase, service_type: str, call: ProviderCall) -> ProviderResult | TextStream:
        match service_type:
            case "text":
                return await provider.generate_text(call)
            case "stream":
                return await provider.stream_text(call)
            case "object":
                return await provider.generate_object(call)
            case _:
                raise ValueError(f"Unknown service type: {service_type}")
