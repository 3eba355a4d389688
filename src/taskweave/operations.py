"""Project-level operations: AI-backed task edits plus direct graph edits.

Every AI operation follows the same shape: load the document, check
preconditions, call the orchestrator, reconcile the response, then save with
a version check so a concurrent writer is detected instead of overwritten.
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import httpx

from taskweave import prompts
from taskweave.config import Config, load_config, state_path, tasks_path
from taskweave.errors import (
    DataIntegrityWarning,
    FieldDiagnostic,
    ParseFailure,
    SchemaViolation,
    TaskNotFoundError,
    ValidationError,
)
from taskweave.log import ConsoleLogger, LogConfig, Logger
from taskweave.orchestrator import CallOrchestrator, ProviderFactory, SleepFn
from taskweave.providers.base import ProviderResult
from taskweave.reconcile.batch import build_subtask_batch, build_task_batch, merge_batch, preflight
from taskweave.reconcile.pipeline import Reconciliation, Stage
from taskweave.reconcile.schema import (
    NEW_TASK_JSON_SCHEMA,
    SUBTASK_BATCH_JSON_SCHEMA,
    TASK_BATCH_JSON_SCHEMA,
    task_diagnostics,
    validate_subtask_batch,
    validate_task_batch,
    validate_task_update,
    validate_task_updates,
)
from taskweave.reconcile.update import correct_task_update
from taskweave.roles import RoleResolver
from taskweave.tasks import graph
from taskweave.tasks.model import PRIORITIES, Subtask, Task, now_iso
from taskweave.tasks.store import TaskStore
from taskweave.telemetry import TelemetryRecord


@dataclass
class OperationResult:
    value: Any
    telemetry: TelemetryRecord | None = None
    warnings: list[DataIntegrityWarning] = field(default_factory=list)


@dataclass
class Project:
    """Everything an operation needs, wired once per invocation."""

    root: Path
    config: Config
    logger: Logger
    orchestrator: CallOrchestrator
    store: TaskStore
    output_type: str = "cli"

    @classmethod
    def open(
        cls,
        root: Path,
        *,
        logger: Logger | None = None,
        session_env: Mapping[str, str] | None = None,
        sleep: SleepFn = asyncio.sleep,
        provider_factory: ProviderFactory | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        output_type: str = "cli",
    ) -> Project:
        config = load_config(root)
        if logger is None:
            log_cfg = LogConfig.from_level(config.settings.log_level)
            if config.settings.debug:
                log_cfg = LogConfig(verbose=True, silent=log_cfg.silent)
            logger = ConsoleLogger(log_cfg)
        resolver = RoleResolver(config, session_env=session_env, project_root=root, logger=logger)
        orchestrator = CallOrchestrator(
            resolver,
            logger=logger,
            sleep=sleep,
            provider_factory=provider_factory,
            transport=transport,
        )
        return cls(
            root=root,
            config=config,
            logger=logger,
            orchestrator=orchestrator,
            store=TaskStore(tasks_path(root)),
            output_type=output_type,
        )

    @property
    def state_file(self) -> Path:
        return state_path(self.root)

    def resolve_tag(self, tag: str | None) -> str:
        return tag or graph.current_tag(self.state_file, self.config.settings.default_tag)


def _role(research: bool) -> str:
    return "research" if research else "main"


def _object_of(result: ProviderResult) -> Any:
    return result.object if result.object is not None else result.text


# ── AI operations ────────────────────────────────────────────────


async def parse_prd(
    project: Project,
    prd: Path | str,
    *,
    num_tasks: int = 10,
    tag: str | None = None,
    append: bool = False,
    force: bool = False,
    research: bool = False,
) -> OperationResult:
    """Generate a task batch from a PRD and write it into *tag*."""
    log = project.logger
    tag_name = project.resolve_tag(tag)
    prd_text = prd.read_text(encoding="utf-8") if isinstance(prd, Path) else prd
    if not prd_text.strip():
        raise ValidationError("PRD content is empty")

    doc = project.store.load()
    start_id = preflight(doc, tag_name, append=append, force=force)
    if append and start_id > 1:
        log.info(f"Append mode: next ID in tag '{tag_name}' will be {start_id}.")

    result = await project.orchestrator.generate_object_service(
        role=_role(research),
        prompt=prompts.parse_prd_user(prd_text, num_tasks, start_id),
        system_prompt=prompts.parse_prd_system(num_tasks, start_id, research),
        schema=TASK_BATCH_JSON_SCHEMA,
        object_name="tasks_data",
        command_name="parse-prd",
        output_type=project.output_type,
    )

    rec = Reconciliation(_object_of(result.main_result), logger=log)
    items = rec.validate(validate_task_batch)
    existing = doc.tags[tag_name].tasks if append and tag_name in doc.tags else []
    new_tasks, _ = build_task_batch(
        items,
        start_id=start_id,
        existing=existing,
        default_priority=project.config.settings.default_priority,
        logger=log,
    )
    rec.corrected([])
    merge_batch(doc, tag_name, new_tasks, append=append)
    rec.advance(Stage.MERGED)
    project.store.save(doc, expected_version=doc.version)
    rec.advance(Stage.PERSISTED)

    log.success(f"Successfully {'appended' if append else 'generated'} {len(new_tasks)} tasks in tag '{tag_name}'")
    return OperationResult(new_tasks, result.telemetry, rec.warnings)


async def update_task(
    project: Project,
    task_id: int,
    prompt: str,
    *,
    tag: str | None = None,
    research: bool = False,
) -> OperationResult:
    """AI-rewrite one task; completed tasks are refused before any AI call."""
    log = project.logger
    tag_name = project.resolve_tag(tag)
    doc = project.store.load()
    tag_obj = doc.tag(tag_name)
    original = tag_obj.get(task_id)
    if original.is_completed:
        log.warn(f"Task {task_id} is already marked as {original.status} and cannot be updated.")
        return OperationResult(None)

    result = await project.orchestrator.generate_text_service(
        role=_role(research),
        prompt=prompts.update_task_user(original, prompt),
        system_prompt=prompts.UPDATE_TASK_SYSTEM,
        command_name="update-task",
        output_type=project.output_type,
    )

    rec = Reconciliation(result.main_result.text or "", logger=log)
    payload = rec.validate(validate_task_update)
    updated, warnings = correct_task_update(original, payload, prompt, log)
    rec.corrected(warnings)

    tag_obj.tasks = [updated if t.id == task_id else t for t in tag_obj.tasks]
    tag_obj.metadata.touch()
    rec.advance(Stage.MERGED)
    project.store.save(doc, expected_version=doc.version)
    rec.advance(Stage.PERSISTED)

    log.success(f"Successfully updated task {task_id}")
    return OperationResult(updated, result.telemetry, rec.warnings)


async def update_tasks(
    project: Project,
    from_id: int,
    prompt: str,
    *,
    tag: str | None = None,
    research: bool = False,
) -> OperationResult:
    """AI-rewrite every unfinished task with id >= *from_id* in one call.

    Each returned task goes through the same correction as a single update;
    ids the AI invents are ignored.
    """
    log = project.logger
    tag_name = project.resolve_tag(tag)
    doc = project.store.load()
    tag_obj = doc.tag(tag_name)
    targets = [t for t in tag_obj.tasks if t.id >= from_id and not t.is_completed]
    if not targets:
        log.info(f"No tasks to update (ID >= {from_id} and not done).")
        return OperationResult([])

    result = await project.orchestrator.generate_text_service(
        role=_role(research),
        prompt=prompts.update_tasks_user(targets, prompt),
        system_prompt=prompts.UPDATE_TASKS_SYSTEM,
        command_name="update-tasks",
        output_type=project.output_type,
    )

    rec = Reconciliation(result.main_result.text or "", logger=log)
    items = rec.validate(validate_task_updates)
    by_id = {t.id: t for t in targets}
    replaced: dict[int, Task] = {}
    warnings: list[DataIntegrityWarning] = []
    for item in items:
        original = by_id.get(item["id"])
        if original is None:
            warning = DataIntegrityWarning(
                "unknown-id",
                f"Updated task {item['id']} was not among the tasks sent; ignored.",
                {"task_id": item["id"]},
            )
            log.warn(warning.message)
            warnings.append(warning)
            continue
        updated, task_warnings = correct_task_update(original, item, prompt, log)
        warnings.extend(task_warnings)
        replaced[original.id] = updated
    rec.corrected(warnings)

    tag_obj.tasks = [replaced.get(t.id, t) for t in tag_obj.tasks]
    tag_obj.metadata.touch()
    rec.advance(Stage.MERGED)
    project.store.save(doc, expected_version=doc.version)
    rec.advance(Stage.PERSISTED)

    log.success(f"Successfully updated {len(replaced)} tasks")
    return OperationResult(list(replaced.values()), result.telemetry, rec.warnings)


async def update_subtask(
    project: Project,
    ref: str,
    prompt: str,
    *,
    tag: str | None = None,
    research: bool = False,
) -> OperationResult:
    """Append AI-written, timestamped notes to a subtask's details."""
    log = project.logger
    parent_id, sub_id = graph.parse_task_ref(ref)
    if sub_id is None:
        raise ValidationError(f"Invalid subtask ID format: {ref}. Expected parentId.subtaskId")
    tag_name = project.resolve_tag(tag)
    doc = project.store.load()
    parent = doc.tag(tag_name).get(parent_id)
    subtask = parent.get_subtask(sub_id)
    if subtask is None:
        raise TaskNotFoundError(f"Subtask {ref} not found", {"task_id": ref})
    if subtask.is_completed:
        log.warn(f"Subtask {ref} is already marked as {subtask.status} and cannot be updated.")
        return OperationResult(None)

    result = await project.orchestrator.generate_text_service(
        role=_role(research),
        prompt=prompts.update_subtask_user(parent, subtask, prompt),
        system_prompt=prompts.UPDATE_SUBTASK_SYSTEM,
        command_name="update-subtask",
        output_type=project.output_type,
    )
    text = (result.main_result.text or "").strip()
    if not text:
        raise ParseFailure("AI returned an empty response for the subtask update", result.main_result.text or "")

    stamp = now_iso()
    block = f"<info added on {stamp}>\n{text}\n</info added on {stamp}>"
    subtask.details = f"{subtask.details}\n\n{block}" if subtask.details else block
    doc.tag(tag_name).metadata.touch()
    project.store.save(doc, expected_version=doc.version)

    log.success(f"Successfully updated subtask {ref}")
    return OperationResult(subtask, result.telemetry)


async def add_task(
    project: Project,
    prompt: str,
    *,
    dependencies: Iterable[int] = (),
    priority: str | None = None,
    tag: str | None = None,
    research: bool = False,
) -> OperationResult:
    """Create one task from a description; id is ``max + 1``."""
    log = project.logger
    priority = priority or project.config.settings.default_priority
    if priority not in PRIORITIES:
        raise ValidationError(f"Invalid priority '{priority}'. Use one of: {', '.join(PRIORITIES)}")

    tag_name = project.resolve_tag(tag)
    doc = project.store.load()
    tag_obj = doc.ensure_tag(tag_name)
    new_id = tag_obj.max_id() + 1

    known = tag_obj.ids()
    deps: list[int] = []
    for dep in dependencies:
        if dep in known and dep not in deps:
            deps.append(dep)
        else:
            log.warn(f"Dependency {dep} does not exist in tag '{tag_name}' and was removed.")

    result = await project.orchestrator.generate_object_service(
        role=_role(research),
        prompt=prompts.add_task_user(prompt, new_id, tag_obj.tasks),
        system_prompt=prompts.ADD_TASK_SYSTEM,
        schema=NEW_TASK_JSON_SCHEMA,
        object_name="new_task",
        command_name="add-task",
        output_type=project.output_type,
    )

    rec = Reconciliation(_object_of(result.main_result), logger=log)

    def _validate(payload: Any) -> dict[str, Any]:
        if not isinstance(payload, dict):
            raise SchemaViolation([FieldDiagnostic("task", f"expected object, got {type(payload).__name__}")])
        candidate = {**payload, "id": new_id, "priority": priority, "dependencies": deps}
        diags = task_diagnostics(candidate)
        if diags:
            raise SchemaViolation(diags)
        return candidate

    data = rec.validate(_validate)
    task = Task(
        id=new_id,
        title=data["title"],
        description=data["description"],
        details=data.get("details") or "",
        test_strategy=data.get("testStrategy") or "",
        priority=priority,
        status="pending",
        dependencies=deps,
    )
    rec.corrected([])
    tag_obj.tasks.append(task)
    tag_obj.metadata.touch()
    rec.advance(Stage.MERGED)
    project.store.save(doc, expected_version=doc.version)
    rec.advance(Stage.PERSISTED)

    log.success(f"Successfully added new task #{new_id}")
    return OperationResult(task, result.telemetry, rec.warnings)


async def expand_task(
    project: Project,
    task_id: int,
    *,
    num_subtasks: int | None = None,
    context: str = "",
    force: bool = False,
    tag: str | None = None,
    research: bool = False,
) -> OperationResult:
    """Generate subtasks for a task.

    With *force*, pending subtasks are replaced; completed ones are kept.
    """
    log = project.logger
    num = num_subtasks or project.config.settings.default_subtasks
    tag_name = project.resolve_tag(tag)
    doc = project.store.load()
    task = doc.tag(tag_name).get(task_id)
    if task.is_completed:
        log.warn(f"Task {task_id} is already marked as {task.status}; not expanding.")
        return OperationResult(None)

    if force:
        task.subtasks = [st for st in task.subtasks if st.is_completed]
    start_id = task.max_subtask_id() + 1

    result = await project.orchestrator.generate_object_service(
        role=_role(research),
        prompt=prompts.expand_task_user(task, num, context),
        system_prompt=prompts.expand_task_system(num, start_id),
        schema=SUBTASK_BATCH_JSON_SCHEMA,
        object_name="subtasks",
        command_name="expand-task",
        output_type=project.output_type,
    )

    rec = Reconciliation(_object_of(result.main_result), logger=log)
    items = rec.validate(validate_subtask_batch)
    new_subtasks, _ = build_subtask_batch(items, task, start_id=start_id, logger=log)
    rec.corrected([])
    task.subtasks.extend(new_subtasks)
    doc.tag(tag_name).metadata.touch()
    rec.advance(Stage.MERGED)
    project.store.save(doc, expected_version=doc.version)
    rec.advance(Stage.PERSISTED)

    log.success(f"Added {len(new_subtasks)} subtasks to task {task_id}")
    return OperationResult(new_subtasks, result.telemetry, rec.warnings)


# ── direct operations ────────────────────────────────────────────


def set_status(project: Project, refs: str, status: str, *, tag: str | None = None) -> list[str]:
    tag_name = project.resolve_tag(tag)
    with project.store.edit() as doc:
        return graph.set_task_status(doc.tag(tag_name), refs, status, project.logger)


def remove(project: Project, refs: str, *, tag: str | None = None) -> list[str]:
    tag_name = project.resolve_tag(tag)
    with project.store.edit() as doc:
        return graph.remove_task(doc.tag(tag_name), refs, project.logger)


def next_task(project: Project, *, tag: str | None = None) -> Task | None:
    doc = project.store.load()
    tag_name = project.resolve_tag(tag)
    if not doc.has_tag(tag_name):
        return None
    return graph.find_next_task(doc.tag(tag_name))


def fix_dependencies(project: Project, *, tag: str | None = None) -> list[graph.DependencyIssue]:
    tag_name = project.resolve_tag(tag)
    with project.store.edit() as doc:
        return graph.fix_dependencies(doc.tag(tag_name), project.logger)


def add_dependency(project: Project, ref: str, depends_on: str, *, tag: str | None = None) -> bool:
    tag_name = project.resolve_tag(tag)
    with project.store.edit() as doc:
        return graph.add_dependency(doc.tag(tag_name), ref, depends_on, project.logger)


def remove_dependency(project: Project, ref: str, depends_on: str, *, tag: str | None = None) -> bool:
    tag_name = project.resolve_tag(tag)
    with project.store.edit() as doc:
        return graph.remove_dependency(doc.tag(tag_name), ref, depends_on, project.logger)


def add_subtask(
    project: Project,
    parent_id: int,
    *,
    from_task: int | None = None,
    title: str = "",
    description: str = "",
    details: str = "",
    status: str = "pending",
    dependencies: Iterable[str] = (),
    tag: str | None = None,
) -> Subtask:
    """New subtask under *parent_id*, or task *from_task* moved under it."""
    tag_name = project.resolve_tag(tag)
    with project.store.edit() as doc:
        return graph.add_subtask(
            doc.tag(tag_name),
            parent_id,
            title=title,
            description=description,
            details=details,
            status=status,
            dependencies=list(dependencies),
            from_task=from_task,
            logger=project.logger,
        )


def remove_subtask(project: Project, ref: str, *, convert: bool = False, tag: str | None = None) -> Task | None:
    tag_name = project.resolve_tag(tag)
    with project.store.edit() as doc:
        return graph.remove_subtask(doc.tag(tag_name), ref, convert=convert, logger=project.logger)


def clear_subtasks(project: Project, refs: str | None = None, *, tag: str | None = None) -> dict[int, int]:
    tag_name = project.resolve_tag(tag)
    with project.store.edit() as doc:
        return graph.clear_subtasks(doc.tag(tag_name), refs, project.logger)
