"""Corrections applied to an AI-proposed task update.

:func:`correct_task_update` is total: it never raises for content problems,
it repairs them and reports each repair as a :class:`DataIntegrityWarning`.
Applying it again to its own output yields the same task and no warnings.
"""

from __future__ import annotations

import copy
from typing import Any

from taskweave.errors import DataIntegrityWarning
from taskweave.log import Logger, NullLogger
from taskweave.tasks.model import Subtask, Task


def _proposed_task(original: Task, proposed: dict[str, Any]) -> Task:
    # Fields the model left out keep their current values.
    merged = original.to_dict()
    merged.update(copy.deepcopy(proposed))
    if merged.get("id") is None:
        merged["id"] = original.id
    return Task.from_dict(merged)


def _dedupe_subtasks(task: Task, warnings: list[DataIntegrityWarning]) -> None:
    seen: set[int] = set()
    unique: list[Subtask] = []
    for st in task.subtasks:
        if st.id in seen:
            warnings.append(
                DataIntegrityWarning("duplicate-subtask", f"Duplicate subtask ID {st.id} removed.", {"subtask_id": st.id})
            )
            continue
        seen.add(st.id)
        unique.append(st)
    task.subtasks = unique


def _restore_completed_subtasks(original: Task, task: Task, warnings: list[DataIntegrityWarning]) -> None:
    for done in (st for st in original.subtasks if st.is_completed):
        idx = next((i for i, st in enumerate(task.subtasks) if st.id == done.id), None)
        if idx is None:
            task.subtasks.append(copy.deepcopy(done))
            warnings.append(
                DataIntegrityWarning(
                    "completed-subtask",
                    f"Completed subtask {original.id}.{done.id} was removed by the update; restored.",
                    {"subtask_id": done.id},
                )
            )
        elif task.subtasks[idx].to_dict() != done.to_dict():
            task.subtasks[idx] = copy.deepcopy(done)
            warnings.append(
                DataIntegrityWarning(
                    "completed-subtask",
                    f"Completed subtask {original.id}.{done.id} was modified by the update; restored.",
                    {"subtask_id": done.id},
                )
            )


def correct_task_update(
    original: Task,
    proposed: dict[str, Any],
    instruction: str,
    logger: Logger | None = None,
) -> tuple[Task, list[DataIntegrityWarning]]:
    """Reconcile *proposed* against *original*; returns ``(task, warnings)``.

    *instruction* is the user's prompt.  A status change is kept only if the
    prompt mentions status.
    """
    log = logger or NullLogger()
    warnings: list[DataIntegrityWarning] = []

    if original.is_completed:
        task = copy.deepcopy(original)
        if _proposed_task(original, proposed).to_dict() != original.to_dict():
            warnings.append(
                DataIntegrityWarning(
                    "completed-task",
                    f"Task {original.id} is {original.status}; update discarded.",
                    {"task_id": original.id},
                )
            )
    else:
        task = _proposed_task(original, proposed)

        if task.id != original.id:
            warnings.append(
                DataIntegrityWarning(
                    "id",
                    f"AI changed task ID from {original.id} to {task.id}; restored.",
                    {"expected": original.id, "got": task.id},
                )
            )
            task.id = original.id

        if task.title != original.title:
            warnings.append(
                DataIntegrityWarning(
                    "title",
                    f"AI changed the title of task {original.id}; restored.",
                    {"got": task.title},
                )
            )
            task.title = original.title

        if task.status != original.status and "status" not in instruction.lower():
            warnings.append(
                DataIntegrityWarning(
                    "status",
                    f"AI changed status of task {original.id} from '{original.status}' to "
                    f"'{task.status}' without being asked; restored.",
                    {"expected": original.status, "got": task.status},
                )
            )
            task.status = original.status

        _dedupe_subtasks(task, warnings)
        _restore_completed_subtasks(original, task, warnings)

    for w in warnings:
        log.warn(w.message)
    return task, warnings
