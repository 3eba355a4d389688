"""Token cost estimation and per-call usage records."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone

from taskweave.catalog import get_model_info
from taskweave.log import Logger


@dataclass(slots=True)
class TelemetryRecord:
    """Usage/cost summary for one successful AI call.  Reporting only."""

    timestamp: str
    command_name: str
    provider_name: str
    model_used: str
    input_tokens: int
    output_tokens: int
    total_tokens: int
    total_cost: float
    currency: str
    output_type: str = "cli"

    def to_dict(self) -> dict[str, object]:
        return {
            "timestamp": self.timestamp,
            "commandName": self.command_name,
            "providerName": self.provider_name,
            "modelUsed": self.model_used,
            "inputTokens": self.input_tokens,
            "outputTokens": self.output_tokens,
            "totalTokens": self.total_tokens,
            "totalCost": self.total_cost,
            "currency": self.currency,
            "outputType": self.output_type,
        }


@dataclass(slots=True)
class CostBreakdown:
    input_cost: float
    output_cost: float
    total_cost: float
    currency: str


def calculate_cost(
    provider_name: str,
    model_id: str,
    input_tokens: int,
    output_tokens: int,
) -> CostBreakdown:
    """Price a call from the catalog rate table; unknown models cost zero."""
    info = get_model_info(provider_name, model_id)
    if info is None:
        return CostBreakdown(0.0, 0.0, 0.0, "USD")
    input_cost = (input_tokens / 1_000_000) * info.input_per_1m
    output_cost = (output_tokens / 1_000_000) * info.output_per_1m
    return CostBreakdown(
        input_cost=input_cost,
        output_cost=output_cost,
        total_cost=round(input_cost + output_cost, 6),
        currency=info.currency,
    )


def build_telemetry(
    *,
    command_name: str,
    provider_name: str,
    model_id: str,
    input_tokens: int | None,
    output_tokens: int | None,
    output_type: str = "cli",
    logger: Logger,
) -> TelemetryRecord | None:
    """Best-effort telemetry.  Never raises; failures are logged and dropped."""
    try:
        inp = int(input_tokens or 0)
        out = int(output_tokens or 0)
        if inp < 0 or out < 0:
            raise ValueError(f"negative token counts ({inp}, {out})")
        cost = calculate_cost(provider_name, model_id, inp, out)
        record = TelemetryRecord(
            timestamp=datetime.now(timezone.utc).isoformat(),
            command_name=command_name,
            provider_name=provider_name,
            model_used=model_id,
            input_tokens=inp,
            output_tokens=out,
            total_tokens=inp + out,
            total_cost=cost.total_cost,
            currency=cost.currency,
            output_type=output_type,
        )
    except Exception as exc:
        logger.error(f"Failed to compute telemetry for {provider_name}/{model_id}: {exc}")
        return None
    log_telemetry(record, logger)
    return record


def log_telemetry(record: TelemetryRecord, logger: Logger) -> None:
    logger.debug(f"telemetry: {record.to_dict()}")
    logger.info(
        f"AI usage ({record.command_name}): {record.provider_name}/{record.model_used} "
        f"tokens in={record.input_tokens} out={record.output_tokens} "
        f"cost={record.total_cost:.6f} {record.currency}"
    )
