"""Known models per provider: pricing, tool support and allowed roles.

Costs are USD per 1M tokens.  A model missing from this table is still
usable; it is simply priced at zero and assumed to support tools.
"""

from __future__ import annotations

from dataclasses import dataclass

ALL_ROLES = ("main", "research", "fallback")


@dataclass(frozen=True)
class ModelInfo:
    """Per-model pricing and capability metadata."""

    model_id: str
    input_per_1m: float = 0.0
    output_per_1m: float = 0.0
    currency: str = "USD"
    supports_tools: bool = True
    allowed_roles: tuple[str, ...] = ("main", "fallback")
    max_tokens: int | None = None


def _m(
    model_id: str,
    inp: float,
    out: float,
    *,
    tools: bool = True,
    roles: tuple[str, ...] = ("main", "fallback"),
    max_tokens: int | None = None,
) -> ModelInfo:
    return ModelInfo(
        model_id=model_id,
        input_per_1m=inp,
        output_per_1m=out,
        supports_tools=tools,
        allowed_roles=roles,
        max_tokens=max_tokens,
    )


MODEL_CATALOG: dict[str, dict[str, ModelInfo]] = {
    "anthropic": {
        m.model_id: m
        for m in (
            _m("claude-sonnet-4-20250514", 3.0, 15.0, max_tokens=64000),
            _m("claude-opus-4-20250514", 15.0, 75.0, max_tokens=32000),
            _m("claude-3-7-sonnet-20250219", 3.0, 15.0, max_tokens=64000),
            _m("claude-3-5-sonnet-20241022", 3.0, 15.0, max_tokens=8192),
            _m("claude-3-5-haiku-20241022", 0.8, 4.0, max_tokens=8192),
        )
    },
    "openai": {
        m.model_id: m
        for m in (
            _m("gpt-4o", 2.5, 10.0, max_tokens=16384),
            _m("gpt-4o-mini", 0.15, 0.6, max_tokens=16384),
            _m("gpt-4.1", 2.0, 8.0, max_tokens=32768),
            _m("o3-mini", 1.1, 4.4, max_tokens=100000),
            _m("gpt-4o-search-preview", 2.5, 10.0, tools=False, roles=("research",)),
        )
    },
    "google": {
        m.model_id: m
        for m in (
            _m("gemini-2.5-pro", 1.25, 10.0, roles=ALL_ROLES, max_tokens=65536),
            _m("gemini-2.5-flash", 0.3, 2.5, roles=ALL_ROLES, max_tokens=65536),
            _m("gemini-2.0-flash", 0.1, 0.4, max_tokens=8192),
        )
    },
    "perplexity": {
        m.model_id: m
        for m in (
            _m("sonar-pro", 3.0, 15.0, tools=False, roles=("main", "research", "fallback"), max_tokens=8700),
            _m("sonar", 1.0, 1.0, tools=False, roles=("research",), max_tokens=8700),
            _m("sonar-reasoning-pro", 2.0, 8.0, tools=False, roles=ALL_ROLES, max_tokens=8700),
        )
    },
    "xai": {
        m.model_id: m
        for m in (
            _m("grok-3", 3.0, 15.0, roles=ALL_ROLES, max_tokens=131072),
            _m("grok-3-mini", 0.3, 0.5, roles=ALL_ROLES, max_tokens=131072),
        )
    },
    "openrouter": {
        m.model_id: m
        for m in (
            _m("openai/gpt-4o", 2.5, 10.0, max_tokens=16384),
            _m("google/gemini-2.5-flash", 0.3, 2.5, max_tokens=65536),
            _m("mistralai/mistral-7b-instruct", 0.03, 0.05, tools=False),
        )
    },
    "ollama": {
        m.model_id: m
        for m in (
            _m("qwen3:latest", 0.0, 0.0),
            _m("llama3.1:latest", 0.0, 0.0),
            _m("gemma3:latest", 0.0, 0.0, tools=False),
            _m("devstral:latest", 0.0, 0.0),
        )
    },
}


def get_model_info(provider: str, model_id: str) -> ModelInfo | None:
    return MODEL_CATALOG.get(provider.strip().lower(), {}).get(model_id.strip())


def model_supports_tools(provider: str, model_id: str) -> bool:
    info = get_model_info(provider, model_id)
    if info is None:
        return True
    return info.supports_tools


def is_known_model(provider: str, model_id: str) -> bool:
    models = MODEL_CATALOG.get(provider.strip().lower())
    if not models:
        return True
    return model_id.strip() in models


def available_models(role: str | None = None) -> list[tuple[str, ModelInfo]]:
    """Flat ``(provider, info)`` list, optionally filtered by allowed role."""
    out: list[tuple[str, ModelInfo]] = []
    for provider, models in MODEL_CATALOG.items():
        for info in models.values():
            if role is None or role in info.allowed_roles:
                out.append((provider, info))
    return out
