"""Direct (non-AI) task graph operations: status, removal, tags, dependencies."""

from __future__ import annotations

import copy
import json
import re
from dataclasses import dataclass
from pathlib import Path

from taskweave.errors import TagError, TaskNotFoundError, ValidationError
from taskweave.io_utils import atomic_write_json, read_text
from taskweave.log import Logger, NullLogger
from taskweave.tasks.model import (
    COMPLETED_STATUSES,
    DEFAULT_TAG,
    TASK_STATUSES,
    Subtask,
    Tag,
    TagMetadata,
    Task,
    TaskDocument,
    now_iso,
)

_TAG_NAME = re.compile(r"^[a-zA-Z0-9_-]+$")
RESERVED_TAG_NAMES = ("master", "main", "default")
_PRIORITY_RANK = {"high": 3, "medium": 2, "low": 1}


# ── ids ──────────────────────────────────────────────────────────


def parse_task_ref(ref: str | int) -> tuple[int, int | None]:
    """``"5"`` -> ``(5, None)``; ``"5.2"`` -> ``(5, 2)``."""
    text = str(ref).strip()
    parent, dot, child = text.partition(".")
    try:
        if dot:
            return int(parent), int(child)
        return int(parent), None
    except ValueError:
        raise ValidationError(f"Invalid task ID '{text}'. Use N or N.M.") from None


def split_refs(refs: str) -> list[str]:
    return [r.strip() for r in refs.split(",") if r.strip()]


# ── status ───────────────────────────────────────────────────────


def set_task_status(tag: Tag, refs: str, status: str, logger: Logger | None = None) -> list[str]:
    """Set *status* on every task/subtask in the comma list *refs*.

    Marking a parent done also marks its subtasks done.  Returns the ids
    that were updated.
    """
    log = logger or NullLogger()
    if status not in TASK_STATUSES:
        raise ValidationError(f"Invalid status '{status}'. Valid statuses: {', '.join(TASK_STATUSES)}")

    updated: list[str] = []
    for ref in split_refs(refs):
        task_id, sub_id = parse_task_ref(ref)
        task = tag.get(task_id)
        if sub_id is None:
            old = task.status
            task.status = status
            if status in COMPLETED_STATUSES:
                for st in task.subtasks:
                    if not st.is_completed:
                        st.status = status
            log.info(f"Task {task_id} status: {old} -> {status}")
        else:
            subtask = task.get_subtask(sub_id)
            if subtask is None:
                raise TaskNotFoundError(f"Subtask {ref} not found", {"task_id": ref})
            old = subtask.status
            subtask.status = status
            log.info(f"Subtask {ref} status: {old} -> {status}")
            if status in COMPLETED_STATUSES and all(s.is_completed for s in task.subtasks) and not task.is_completed:
                log.info(
                    f"All subtasks of parent task {task_id} are now done. "
                    f"Consider: taskweave set-status --id={task_id} --status=done"
                )
        updated.append(ref)
    tag.metadata.touch()
    return updated


# ── references ───────────────────────────────────────────────────


def normalize_ref(ref: str | int) -> int | str:
    """``"5"`` -> ``5``; ``"5.2"`` stays ``"5.2"``.  Matches the stored form."""
    task_id, sub_id = parse_task_ref(ref)
    return task_id if sub_id is None else f"{task_id}.{sub_id}"


def ref_exists(tag: Tag, ref: int | str) -> bool:
    try:
        task_id, sub_id = parse_task_ref(ref)
    except ValidationError:
        return False
    task = tag.find(task_id)
    if task is None:
        return False
    return sub_id is None or task.get_subtask(sub_id) is not None


def _subtask_refs(task: Task) -> set[str]:
    return {f"{task.id}.{st.id}" for st in task.subtasks}


def _strip_refs(tag: Tag, task_ids: set[int], dotted: set[str]) -> None:
    """Drop references to removed tasks/subtasks from every dependency list.

    Integer entries on a subtask name siblings, so they are matched against
    *dotted* through the parent id rather than against *task_ids*.
    """
    for task in tag.tasks:
        task.dependencies = [
            d for d in task.dependencies if d not in dotted and not (isinstance(d, int) and d in task_ids)
        ]
        for st in task.subtasks:
            st.dependencies = [
                d for d in st.dependencies if d not in dotted and f"{task.id}.{d}" not in dotted
            ]


# ── removal ──────────────────────────────────────────────────────


def remove_task(tag: Tag, refs: str, logger: Logger | None = None) -> list[str]:
    """Remove tasks/subtasks and strip them from every dependency list."""
    log = logger or NullLogger()
    removed: list[str] = []
    for ref in split_refs(refs):
        task_id, sub_id = parse_task_ref(ref)
        task = tag.get(task_id)
        if sub_id is None:
            dotted = _subtask_refs(task)
            tag.tasks = [t for t in tag.tasks if t.id != task_id]
            _strip_refs(tag, {task_id}, dotted)
        else:
            remove_subtask(tag, ref)
        log.info(f"Removed {ref}")
        removed.append(ref)
    tag.metadata.touch()
    return removed


# ── subtasks ─────────────────────────────────────────────────────


def add_subtask(
    tag: Tag,
    parent_id: int,
    *,
    title: str = "",
    description: str = "",
    details: str = "",
    status: str = "pending",
    dependencies: list[int | str] | None = None,
    from_task: int | None = None,
    logger: Logger | None = None,
) -> Subtask:
    """Append a subtask to *parent_id*, either new or converted from task *from_task*.

    A converted task leaves the top level; references to it become references
    to the new subtask.
    """
    log = logger or NullLogger()
    parent = tag.get(parent_id)
    new_id = parent.max_subtask_id() + 1

    if from_task is not None:
        if from_task == parent_id:
            raise ValidationError("Cannot make a task a subtask of itself")
        source = tag.get(from_task)
        if depends_on(tag, parent_id, from_task):
            raise ValidationError(
                f"Cannot create circular dependency: task {parent_id} already depends on task {from_task}"
            )
        if source.subtasks:
            raise ValidationError(f"Task {from_task} has its own subtasks and cannot become a subtask")
        kept = [d for d in source.dependencies if isinstance(d, str) and ref_exists(tag, d)]
        if len(kept) != len(source.dependencies):
            log.warn(f"Task-level dependencies of task {from_task} were dropped; subtasks depend on siblings or N.M refs")
        subtask = Subtask(
            id=new_id,
            title=source.title,
            description=source.description,
            details=source.details,
            test_strategy=source.test_strategy,
            status=source.status,
            dependencies=kept,
            extra=copy.deepcopy(source.extra),
        )
        tag.tasks = [t for t in tag.tasks if t.id != from_task]
        new_ref = f"{parent_id}.{new_id}"
        for task in tag.tasks:
            task.dependencies = [new_ref if d == from_task else d for d in task.dependencies]
        log.info(f"Converted task {from_task} to subtask {new_ref}")
    else:
        if not title.strip():
            raise ValidationError("A title is required for a new subtask")
        if status not in TASK_STATUSES:
            raise ValidationError(f"Invalid status '{status}'. Valid statuses: {', '.join(TASK_STATUSES)}")
        deps = [normalize_ref(d) for d in dependencies or []]
        for dep in deps:
            # bare ids name siblings
            if not _subtask_dep_exists(tag, parent, dep):
                raise TaskNotFoundError(f"Dependency {dep} does not exist", {"task_id": str(dep)})
        subtask = Subtask(
            id=new_id,
            title=title,
            description=description,
            details=details,
            status=status,
            dependencies=deps,
        )
        log.info(f"Created new subtask {parent_id}.{new_id}")

    parent.subtasks.append(subtask)
    tag.metadata.touch()
    return subtask


def remove_subtask(tag: Tag, ref: str, *, convert: bool = False, logger: Logger | None = None) -> Task | None:
    """Delete subtask *ref*, or turn it into a top-level task when *convert*.

    The converted task depends on its former parent.
    """
    log = logger or NullLogger()
    parent_id, sub_id = parse_task_ref(ref)
    if sub_id is None:
        raise ValidationError(f"Invalid subtask ID format: {ref}. Expected parentId.subtaskId")
    parent = tag.get(parent_id)
    subtask = parent.get_subtask(sub_id)
    if subtask is None:
        raise TaskNotFoundError(f"Subtask {ref} not found", {"task_id": ref})

    dotted = f"{parent_id}.{sub_id}"
    parent.subtasks = [st for st in parent.subtasks if st.id != sub_id]

    converted: Task | None = None
    if convert:
        deps: list[int | str] = [
            f"{parent_id}.{d}" if isinstance(d, int) else d for d in subtask.dependencies
        ]
        if parent_id not in deps:
            deps.append(parent_id)
        converted = Task(
            id=tag.max_id() + 1,
            title=subtask.title,
            description=subtask.description,
            details=subtask.details,
            test_strategy=subtask.test_strategy,
            priority=parent.priority,
            status=subtask.status,
            dependencies=deps,
            extra=copy.deepcopy(subtask.extra),
        )
        tag.tasks.append(converted)
        for task in tag.tasks:
            task.dependencies = [converted.id if d == dotted else d for d in task.dependencies]
        log.info(f"Created new task {converted.id} from subtask {ref}")
    else:
        log.info(f"Subtask {ref} deleted")
    _strip_refs(tag, set(), {dotted})
    tag.metadata.touch()
    return converted


def clear_subtasks(tag: Tag, refs: str | None = None, logger: Logger | None = None) -> dict[int, int]:
    """Drop every subtask of the listed tasks (all tasks when *refs* is None).

    Returns ``{task_id: number_cleared}`` for tasks that had subtasks.
    """
    log = logger or NullLogger()
    if refs is None:
        targets = list(tag.tasks)
    else:
        targets = []
        for ref in split_refs(refs):
            task_id, sub_id = parse_task_ref(ref)
            if sub_id is not None:
                raise ValidationError(f"Expected a task ID, got subtask ID {ref}")
            targets.append(tag.get(task_id))

    cleared: dict[int, int] = {}
    dotted: set[str] = set()
    for task in targets:
        if not task.subtasks:
            log.info(f"Task {task.id} has no subtasks to clear")
            continue
        dotted |= _subtask_refs(task)
        cleared[task.id] = len(task.subtasks)
        task.subtasks = []
        log.info(f"Cleared {cleared[task.id]} subtasks from task {task.id}")
    if cleared:
        _strip_refs(tag, set(), dotted)
        tag.metadata.touch()
    return cleared


# ── tags ─────────────────────────────────────────────────────────


@dataclass(frozen=True)
class TagSummary:
    name: str
    task_count: int
    completed: int
    description: str
    created: str
    is_current: bool


def validate_tag_name(name: str) -> None:
    if not name or not _TAG_NAME.match(name):
        raise TagError("Tag name can only contain letters, numbers, hyphens, and underscores")
    if name in RESERVED_TAG_NAMES:
        raise TagError(f'"{name}" is a reserved tag name')


def add_tag(doc: TaskDocument, name: str, *, description: str = "", copy_from: str | None = None) -> Tag:
    validate_tag_name(name)
    if doc.has_tag(name):
        raise TagError(f'Tag "{name}" already exists')
    tasks: list[Task] = []
    if copy_from is not None:
        tasks = copy.deepcopy(doc.tag(copy_from).tasks)
    tag = Tag(
        tasks=tasks,
        metadata=TagMetadata(description=description or f"Tag created on {now_iso()[:10]}"),
    )
    doc.tags[name] = tag
    return tag


def copy_tag(doc: TaskDocument, source: str, target: str, *, description: str = "") -> Tag:
    return add_tag(doc, target, description=description or f"Copy of {source}", copy_from=source)


def delete_tag(doc: TaskDocument, name: str) -> int:
    """Delete *name*; returns the number of tasks it held."""
    if name == DEFAULT_TAG:
        raise TagError('Cannot delete the "master" tag')
    tag = doc.tag(name)
    del doc.tags[name]
    return len(tag.tasks)


def rename_tag(doc: TaskDocument, old: str, new: str) -> None:
    if old == DEFAULT_TAG:
        raise TagError('Cannot rename the "master" tag')
    validate_tag_name(new)
    tag = doc.tag(old)
    if doc.has_tag(new):
        raise TagError(f'Tag "{new}" already exists')
    # preserve insertion order
    doc.tags = {(new if k == old else k): v for k, v in doc.tags.items()}
    tag.metadata.touch()


def list_tags(doc: TaskDocument, current: str = DEFAULT_TAG) -> list[TagSummary]:
    return [
        TagSummary(
            name=name,
            task_count=len(tag.tasks),
            completed=sum(1 for t in tag.tasks if t.is_completed),
            description=tag.metadata.description,
            created=tag.metadata.created,
            is_current=name == current,
        )
        for name, tag in doc.tags.items()
    ]


def current_tag(state_file: Path, default: str = DEFAULT_TAG) -> str:
    if not state_file.is_file():
        return default
    try:
        state = json.loads(read_text(state_file))
    except json.JSONDecodeError:
        return default
    return state.get("currentTag") or default


def use_tag(state_file: Path, doc: TaskDocument, name: str) -> None:
    doc.tag(name)
    state: dict = {}
    if state_file.is_file():
        try:
            state = json.loads(read_text(state_file))
        except json.JSONDecodeError:
            state = {}
    state["currentTag"] = name
    state["lastSwitched"] = now_iso()
    atomic_write_json(state_file, state)


# ── dependencies ─────────────────────────────────────────────────


@dataclass(frozen=True)
class DependencyIssue:
    task_id: int | str
    dependency: int | str
    kind: str  # "missing" | "self" | "cycle" | "duplicate"

    def __str__(self) -> str:
        match self.kind:
            case "missing":
                return f"Task {self.task_id} depends on missing task {self.dependency}"
            case "self":
                return f"Task {self.task_id} depends on itself"
            case "cycle":
                return f"Task {self.task_id} -> {self.dependency} closes a dependency cycle"
            case _:
                return f"Task {self.task_id} lists dependency {self.dependency} more than once"


def _node_deps(tag: Tag, node: str) -> list[str]:
    """Outgoing edges of *node* (``"N"`` or ``"N.M"``) as normalized refs."""
    task_id, sub_id = parse_task_ref(node)
    task = tag.find(task_id)
    if task is None:
        return []
    if sub_id is None:
        return [str(d) for d in task.dependencies]
    subtask = task.get_subtask(sub_id)
    if subtask is None:
        return []
    return [f"{task_id}.{d}" if isinstance(d, int) else str(d) for d in subtask.dependencies]


def depends_on(tag: Tag, source: int | str, target: int | str) -> bool:
    """True when *source* reaches *target* through dependency edges."""
    goal = str(normalize_ref(target))
    stack = [str(normalize_ref(source))]
    seen: set[str] = set()
    while stack:
        node = stack.pop()
        if node in seen:
            continue
        seen.add(node)
        for dep in _node_deps(tag, node):
            if dep == goal:
                return True
            stack.append(dep)
    return False


def _sort_deps(deps: list[int | str]) -> list[int | str]:
    def key(d: int | str) -> tuple[int, int, int]:
        if isinstance(d, int):
            return (0, d, 0)
        parent, _, child = str(d).partition(".")
        return (1, int(parent or 0), int(child or 0))

    return sorted(deps, key=key)


def _dependency_owner(tag: Tag, ref: str | int) -> tuple[Task | Subtask, int | str]:
    task_id, sub_id = parse_task_ref(ref)
    task = tag.get(task_id)
    if sub_id is None:
        return task, task_id
    subtask = task.get_subtask(sub_id)
    if subtask is None:
        raise TaskNotFoundError(f"Subtask {ref} not found", {"task_id": str(ref)})
    return subtask, f"{task_id}.{sub_id}"


def add_dependency(tag: Tag, ref: str | int, dependency: str | int, logger: Logger | None = None) -> bool:
    """Make *ref* depend on *dependency*.

    Refuses missing targets, self references and edges that would close a
    cycle.  Returns False (with a warning) when the edge already exists.
    """
    log = logger or NullLogger()
    owner, owner_ref = _dependency_owner(tag, ref)
    dep = normalize_ref(dependency)
    if not ref_exists(tag, dep):
        raise TaskNotFoundError(f"Dependency target {dep} does not exist", {"task_id": str(dep)})
    if str(dep) == str(owner_ref):
        raise ValidationError(f"Task {owner_ref} cannot depend on itself")
    if any(str(d) == str(dep) for d in owner.dependencies):
        log.warn(f"Dependency {dep} already exists in task {owner_ref}.")
        return False
    if depends_on(tag, dep, owner_ref):
        raise ValidationError(
            f"Cannot add dependency {dep} to task {owner_ref} as it would create a circular dependency."
        )
    owner.dependencies = _sort_deps([*owner.dependencies, dep])
    tag.metadata.touch()
    log.success(f"Added dependency {dep} to task {owner_ref}")
    return True


def remove_dependency(tag: Tag, ref: str | int, dependency: str | int, logger: Logger | None = None) -> bool:
    log = logger or NullLogger()
    owner, owner_ref = _dependency_owner(tag, ref)
    dep = normalize_ref(dependency)
    if isinstance(owner, Subtask) and isinstance(dep, str):
        # siblings may be stored by bare subtask id
        parent_id = parse_task_ref(owner_ref)[0]
        dep_parent, dep_sub = parse_task_ref(dep)
        matches = {dep, dep_sub} if dep_parent == parent_id else {dep}
    else:
        matches = {dep}
    kept = [d for d in owner.dependencies if d not in matches]
    if len(kept) == len(owner.dependencies):
        log.warn(f"Task {owner_ref} does not depend on {dep}, no changes made.")
        return False
    owner.dependencies = kept
    tag.metadata.touch()
    log.success(f"Removed dependency: Task {owner_ref} no longer depends on {dep}")
    return True


def detect_cycles(tag: Tag) -> list[tuple[int, int]]:
    """Return back edges ``(task, dependency)`` that close a cycle between tasks."""
    deps = {t.id: [d for d in t.dependencies if isinstance(d, int)] for t in tag.tasks}
    WHITE, GRAY, BLACK = 0, 1, 2
    color = dict.fromkeys(deps, WHITE)
    back_edges: list[tuple[int, int]] = []

    def visit(node: int) -> None:
        color[node] = GRAY
        for dep in deps[node]:
            if dep == node or dep not in deps:
                continue
            if color[dep] == GRAY:
                back_edges.append((node, dep))
            elif color[dep] == WHITE:
                visit(dep)
        color[node] = BLACK

    for tid in sorted(deps):
        if color[tid] == WHITE:
            visit(tid)
    return back_edges


def _subtask_dep_exists(tag: Tag, parent: Task, dep: int | str) -> bool:
    if isinstance(dep, int):
        return parent.get_subtask(dep) is not None
    return ref_exists(tag, dep)


def _classify(owner_id: int | str, deps: list[int | str], exists, is_self) -> tuple[list[int | str], list[DependencyIssue]]:
    kept: list[int | str] = []
    issues: list[DependencyIssue] = []
    for dep in deps:
        if dep in kept:
            issues.append(DependencyIssue(owner_id, dep, "duplicate"))
        elif is_self(dep):
            issues.append(DependencyIssue(owner_id, dep, "self"))
        elif not exists(dep):
            issues.append(DependencyIssue(owner_id, dep, "missing"))
        else:
            kept.append(dep)
    return kept, issues


def _scan(tag: Tag, *, fix: bool) -> list[DependencyIssue]:
    issues: list[DependencyIssue] = []
    for task in tag.tasks:
        kept, found = _classify(
            task.id,
            task.dependencies,
            lambda d: ref_exists(tag, d),
            lambda d, tid=task.id: d == tid,
        )
        issues.extend(found)
        if fix:
            task.dependencies = kept
        for st in task.subtasks:
            own = f"{task.id}.{st.id}"
            kept, found = _classify(
                own,
                st.dependencies,
                lambda d, parent=task: _subtask_dep_exists(tag, parent, d),
                lambda d, sid=st.id, own=own: d == sid or d == own,
            )
            issues.extend(found)
            if fix:
                st.dependencies = kept
    return issues


def validate_dependencies(tag: Tag) -> list[DependencyIssue]:
    issues = _scan(tag, fix=False)
    issues.extend(DependencyIssue(t, d, "cycle") for t, d in detect_cycles(tag))
    return issues


def fix_dependencies(tag: Tag, logger: Logger | None = None) -> list[DependencyIssue]:
    """Drop self, missing and duplicate references, then break cycles."""
    log = logger or NullLogger()
    fixed = _scan(tag, fix=True)

    while cycles := detect_cycles(tag):
        task_id, dep = cycles[0]
        task = tag.get(task_id)
        task.dependencies = [d for d in task.dependencies if d != dep]
        fixed.append(DependencyIssue(task_id, dep, "cycle"))

    for issue in fixed:
        log.info(f"Fixed: {issue}")
    if fixed:
        tag.metadata.touch()
    return fixed


# ── next task ────────────────────────────────────────────────────


def _dep_done(tag: Tag, dep: int | str) -> bool:
    try:
        task_id, sub_id = parse_task_ref(dep)
    except ValidationError:
        return False
    task = tag.find(task_id)
    if task is None:
        return False
    if sub_id is None:
        return task.is_completed
    subtask = task.get_subtask(sub_id)
    return subtask is not None and subtask.is_completed


def find_next_task(tag: Tag) -> Task | None:
    """Highest-priority pending/in-progress task whose dependencies are all completed.

    Ties break on fewer dependencies, then lower id.
    """
    eligible = [
        t
        for t in tag.tasks
        if t.status in ("pending", "in-progress") and all(_dep_done(tag, d) for d in t.dependencies)
    ]
    if not eligible:
        return None
    eligible.sort(key=lambda t: (-_PRIORITY_RANK.get(t.priority, 2), len(t.dependencies), t.id))
    return eligible[0]
