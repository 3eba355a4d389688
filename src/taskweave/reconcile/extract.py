"""Pull a JSON value out of free-form model text.

Strategies run in a fixed order and the first one that yields parseable JSON
wins.  Each strategy is a pure function returning either :class:`Extracted`
or :class:`Miss`.
"""

from __future__ import annotations

import json
import re
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any

from taskweave.errors import ParseFailure
from taskweave.log import Logger, NullLogger

_FENCE = re.compile(r"```(?:json|javascript)?\s*([\s\S]*?)\s*```", re.IGNORECASE)
LABEL_PREFIXES = ("json\n", "javascript\n")


@dataclass(frozen=True)
class Extracted:
    strategy: str
    text: str
    value: Any


@dataclass(frozen=True)
class Miss:
    strategy: str
    reason: str


Attempt = Extracted | Miss
Strategy = Callable[[str], Attempt]


def _parse(strategy: str, candidate: str) -> Attempt:
    try:
        return Extracted(strategy, candidate, json.loads(candidate))
    except json.JSONDecodeError as exc:
        return Miss(strategy, f"invalid JSON: {exc.msg} at {exc.pos}")


def from_braces(text: str) -> Attempt:
    """Everything from the first ``{`` to the last ``}``."""
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end <= start:
        return Miss("braces", "no object delimiters")
    candidate = text[start : end + 1]
    if len(candidate) <= 2:
        return Miss("braces", "empty object")
    return _parse("braces", candidate)


def from_code_fence(text: str) -> Attempt:
    m = _FENCE.search(text)
    if not m:
        return Miss("fence", "no fenced code block")
    return _parse("fence", m.group(1).strip())


def from_label_prefix(text: str) -> Attempt:
    stripped = text.strip()
    for prefix in LABEL_PREFIXES:
        if stripped.lower().startswith(prefix):
            return _parse("prefix", stripped[len(prefix):].strip())
    return Miss("prefix", "no label prefix")


def from_raw(text: str) -> Attempt:
    return _parse("raw", text.strip())


STRATEGIES: tuple[Strategy, ...] = (from_braces, from_code_fence, from_label_prefix, from_raw)


def extract_json(
    raw: str,
    strategies: Sequence[Strategy] = STRATEGIES,
    logger: Logger | None = None,
) -> Extracted:
    """Return the first successful extraction or raise :class:`ParseFailure`."""
    log = logger or NullLogger()
    if not raw or not raw.strip():
        raise ParseFailure("AI response was empty", raw or "")
    misses: list[Miss] = []
    for strategy in strategies:
        attempt = strategy(raw)
        if isinstance(attempt, Extracted):
            log.debug(f"Extracted JSON using '{attempt.strategy}' strategy")
            return attempt
        misses.append(attempt)
    detail = "; ".join(f"{m.strategy}: {m.reason}" for m in misses)
    raise ParseFailure(f"Could not extract valid JSON from AI response ({detail})", raw)
