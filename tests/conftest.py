"""Shared fixtures for taskweave tests.

File handling in tests:
- Use tmp_path for any directory or file creation so tests are isolated and cleaned up.
- Providers are replaced by ScriptedProvider; nothing here touches the network.
"""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from taskweave.config import Config, RoleBinding
from taskweave.log import RecordingLogger
from taskweave.operations import Project
from taskweave.orchestrator import CallOrchestrator
from taskweave.providers.base import ProviderCall, ProviderResult, Usage
from taskweave.roles import RoleResolver
from taskweave.tasks.model import Subtask, Tag, Task, TaskDocument
from taskweave.tasks.store import TaskStore

FAKE_KEYS = {
    "ANTHROPIC_API_KEY": "sk-ant-test",
    "OPENAI_API_KEY": "sk-openai-test",
    "PERPLEXITY_API_KEY": "pplx-test",
    "GOOGLE_API_KEY": "g-test",
}


# ── task factories ───────────────────────────────────────────────


def _make_subtask(
    id: int,
    title: str = "",
    status: str = "pending",
    details: str = "",
    dependencies: list[int | str] | None = None,
) -> Subtask:
    return Subtask(
        id=id,
        title=title or f"Subtask {id}",
        description=f"Description of subtask {id}",
        details=details,
        status=status,
        dependencies=dependencies or [],
    )


def _make_task(
    id: int,
    title: str = "",
    status: str = "pending",
    priority: str = "medium",
    dependencies: list[int | str] | None = None,
    subtasks: list[Subtask] | None = None,
) -> Task:
    return Task(
        id=id,
        title=title or f"Task {id}",
        description=f"Description of task {id}",
        details=f"Details of task {id}",
        priority=priority,
        status=status,
        dependencies=dependencies or [],
        subtasks=subtasks or [],
    )


def _make_doc(tasks: list[Task], tag: str = "master") -> TaskDocument:
    doc = TaskDocument()
    doc.ensure_tag(tag).tasks = tasks
    return doc


@pytest.fixture
def make_task():
    """Factory fixture that creates Task instances."""
    return _make_task


@pytest.fixture
def make_subtask():
    """Factory fixture that creates Subtask instances."""
    return _make_subtask


@pytest.fixture
def make_tag():
    def _make(tasks: list[Task]) -> Tag:
        return Tag(tasks=tasks)

    return _make


@pytest.fixture
def make_doc():
    """Factory fixture that creates a TaskDocument with one tag."""
    return _make_doc


# ── config / logging ─────────────────────────────────────────────


def _make_config(
    main: tuple[str, str] | None = ("anthropic", "claude-sonnet-4-20250514"),
    research: tuple[str, str] | None = ("perplexity", "sonar-pro"),
    fallback: tuple[str, str] | None = ("openai", "gpt-4o"),
) -> Config:
    def _b(pair: tuple[str, str] | None) -> RoleBinding:
        if pair is None:
            return RoleBinding()
        return RoleBinding(provider=pair[0], model_id=pair[1], max_tokens=4000, temperature=0.2)

    return Config(models={"main": _b(main), "research": _b(research), "fallback": _b(fallback)})


@pytest.fixture
def make_config():
    """Factory fixture: ``make_config(main=(provider, model), fallback=None, ...)``."""
    return _make_config


@pytest.fixture
def logger() -> RecordingLogger:
    return RecordingLogger()


@pytest.fixture(autouse=True)
def _clean_provider_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep real credentials and overrides in the developer's shell out of tests."""
    for name in (
        *FAKE_KEYS,
        "XAI_API_KEY",
        "OPENROUTER_API_KEY",
        "OLLAMA_API_KEY",
        "TASKWEAVE_DEBUG",
        "TASKWEAVE_LOG_LEVEL",
    ):
        monkeypatch.delenv(name, raising=False)


# ── scripted provider ────────────────────────────────────────────


class ScriptedProvider:
    """Stands in for a ProviderBase: pops one outcome per call.

    Outcomes are exceptions (raised) or results (returned).  Every call is
    recorded as ``(method, ProviderCall)``.
    """

    def __init__(self, name: str, outcomes: list[Any]) -> None:
        self.name = name
        self.outcomes = list(outcomes)
        self.calls: list[tuple[str, ProviderCall]] = []

    async def _next(self, method: str, call: ProviderCall) -> Any:
        self.calls.append((method, call))
        if not self.outcomes:
            raise AssertionError(f"{self.name}: unexpected extra {method} call")
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    async def generate_text(self, call: ProviderCall) -> ProviderResult:
        return await self._next("generate_text", call)

    async def stream_text(self, call: ProviderCall) -> Any:
        return await self._next("stream_text", call)

    async def generate_object(self, call: ProviderCall) -> ProviderResult:
        return await self._next("generate_object", call)


def text_result(text: str, input_tokens: int = 100, output_tokens: int = 50) -> ProviderResult:
    return ProviderResult(text=text, usage=Usage(input_tokens, output_tokens))


def object_result(obj: Any, input_tokens: int = 100, output_tokens: int = 50) -> ProviderResult:
    return ProviderResult(object=obj, usage=Usage(input_tokens, output_tokens))


@pytest.fixture
def scripted():
    """Build ``{provider_name: ScriptedProvider}`` plus a matching factory."""

    def _build(**scripts: list[Any]) -> tuple[dict[str, ScriptedProvider], Callable[[str], Any]]:
        providers = {name: ScriptedProvider(name, outcomes) for name, outcomes in scripts.items()}

        def factory(name: str) -> ScriptedProvider:
            if name not in providers:
                providers[name] = ScriptedProvider(name, [])
            return providers[name]

        return providers, factory

    return _build


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def fake_sleep(sleeps: list[float]):
    async def _sleep(delay: float) -> None:
        sleeps.append(delay)

    return _sleep


@pytest.fixture
def make_orchestrator(logger: RecordingLogger, fake_sleep):
    def _make(config: Config, factory: Callable[[str], Any], session_env: dict[str, str] | None = None) -> CallOrchestrator:
        resolver = RoleResolver(
            config,
            session_env=FAKE_KEYS if session_env is None else session_env,
            logger=logger,
        )
        return CallOrchestrator(resolver, logger=logger, sleep=fake_sleep, provider_factory=factory)

    return _make


@pytest.fixture
def make_project(tmp_path: Path, logger: RecordingLogger, fake_sleep):
    """Project rooted at tmp_path with scripted providers and an optional seed document."""

    def _make(
        factory: Callable[[str], Any],
        doc: TaskDocument | None = None,
        config: Config | None = None,
    ) -> Project:
        if doc is not None:
            TaskStore(tmp_path / ".taskweave" / "tasks.json").save(doc)
        project = Project.open(
            tmp_path,
            logger=logger,
            session_env=FAKE_KEYS,
            sleep=fake_sleep,
            provider_factory=factory,
        )
        if config is not None:
            project.config = config
            project.orchestrator.resolver.config = config
        return project

    return _make
