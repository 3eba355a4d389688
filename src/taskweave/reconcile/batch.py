"""ID assignment, dependency remapping and merging for generated batches."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from taskweave.errors import TagNotEmptyError
from taskweave.log import Logger, NullLogger
from taskweave.tasks.model import Subtask, Tag, TagMetadata, Task, TaskDocument, now_iso

_BATCH_KEYS = {"id", "title", "description", "details", "testStrategy", "priority", "dependencies", "status", "subtasks"}


@dataclass
class RemapResult:
    id_map: dict[int, int] = field(default_factory=dict)
    # (item id, dependency as the model wrote it)
    dropped: list[tuple[int, int]] = field(default_factory=list)


def preflight(doc: TaskDocument, tag_name: str, *, append: bool, force: bool) -> int:
    """Refuse to touch a non-empty tag unless appending or forcing.

    Returns the next free task id for the batch.
    """
    tag = doc.tags.get(tag_name)
    if tag is None or not tag.tasks:
        return 1
    if append:
        return tag.max_id() + 1
    if not force:
        raise TagNotEmptyError(tag_name, len(tag.tasks))
    return 1


def remap_dependencies(
    local_ids: list[int],
    deps_by_item: list[list[int]],
    start_id: int,
    known_ids: Iterable[int],
) -> tuple[list[list[int]], RemapResult]:
    """Renumber items from *start_id* and rewrite their dependencies.

    A dependency survives only if it maps to a final id that is lower than
    the item's own final id and exists in *known_ids* or the new batch.
    Everything else (forward, self, unknown) is dropped without error.
    """
    result = RemapResult()
    final_ids: list[int] = []
    for offset, local in enumerate(local_ids):
        final = start_id + offset
        result.id_map[local] = final
        final_ids.append(final)

    existing = set(known_ids) | set(final_ids)
    remapped: list[list[int]] = []
    for own, deps in zip(final_ids, deps_by_item):
        kept: list[int] = []
        for dep in deps:
            target = result.id_map.get(dep)
            if target is not None and target < own and target in existing:
                if target not in kept:
                    kept.append(target)
            else:
                result.dropped.append((own, dep))
        remapped.append(kept)
    return remapped, result


def build_task_batch(
    items: list[dict[str, Any]],
    *,
    start_id: int,
    existing: list[Task],
    default_priority: str = "medium",
    logger: Logger | None = None,
) -> tuple[list[Task], RemapResult]:
    """Validated task dicts -> new :class:`Task` objects with final ids."""
    log = logger or NullLogger()
    remapped, result = remap_dependencies(
        [item["id"] for item in items],
        [list(item.get("dependencies") or []) for item in items],
        start_id,
        (t.id for t in existing),
    )
    tasks = [
        Task(
            id=start_id + i,
            title=item["title"],
            description=item["description"],
            details=item.get("details") or "",
            test_strategy=item.get("testStrategy") or "",
            priority=item.get("priority") or default_priority,
            status="pending",
            dependencies=deps,
            subtasks=[],
            extra={k: v for k, v in item.items() if k not in _BATCH_KEYS},
        )
        for i, (item, deps) in enumerate(zip(items, remapped))
    ]
    for own, dep in result.dropped:
        log.debug(f"Task {own}: dropped dependency {dep} (forward, self or unknown reference)")
    return tasks, result


def build_subtask_batch(
    items: list[dict[str, Any]],
    parent: Task,
    *,
    start_id: int,
    logger: Logger | None = None,
) -> tuple[list[Subtask], RemapResult]:
    """Same remap as :func:`build_task_batch`, scoped to one parent's subtasks."""
    log = logger or NullLogger()
    remapped, result = remap_dependencies(
        [item["id"] for item in items],
        [list(item.get("dependencies") or []) for item in items],
        start_id,
        (st.id for st in parent.subtasks),
    )
    subtasks = [
        Subtask(
            id=start_id + i,
            title=item["title"],
            description=item.get("description") or "",
            details=item.get("details") or "",
            test_strategy=item.get("testStrategy") or "",
            status="pending",
            dependencies=list(deps),
        )
        for i, (item, deps) in enumerate(zip(items, remapped))
    ]
    for own, dep in result.dropped:
        log.debug(f"Subtask {parent.id}.{own}: dropped dependency {dep}")
    return subtasks, result


def merge_batch(doc: TaskDocument, tag_name: str, new_tasks: list[Task], *, append: bool) -> Tag:
    """Append to or replace the task list of *tag_name*; other tags are untouched."""
    previous = doc.tags.get(tag_name)
    if append and previous is not None:
        previous.tasks = previous.tasks + new_tasks
        previous.metadata.touch()
        return previous
    created = previous.metadata.created if previous is not None else now_iso()
    description = (previous.metadata.description if previous is not None else "") or f"Tasks for {tag_name} context"
    tag = Tag(
        tasks=list(new_tasks),
        metadata=TagMetadata(created=created, updated=now_iso(), description=description),
    )
    doc.tags[tag_name] = tag
    return tag
