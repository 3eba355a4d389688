"""Task, Subtask and tagged document models used across the task store and operations."""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from taskweave.errors import TagError, TaskNotFoundError

TASK_STATUSES = (
    "pending",
    "in-progress",
    "done",
    "completed",
    "review",
    "deferred",
    "cancelled",
    "blocked",
)
COMPLETED_STATUSES = frozenset({"done", "completed"})
PRIORITIES = ("high", "medium", "low")
DEFAULT_TAG = "master"

_TASK_KEYS = {
    "id",
    "title",
    "description",
    "details",
    "testStrategy",
    "priority",
    "dependencies",
    "status",
    "subtasks",
}
_SUBTASK_KEYS = _TASK_KEYS - {"priority", "subtasks"}


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def is_completed(status: str | None) -> bool:
    return (status or "").lower() in COMPLETED_STATUSES


def _as_dep(value: Any) -> int | str:
    if isinstance(value, int):
        return value
    text = str(value).strip()
    return int(text) if text.isdigit() else text


@dataclass
class Subtask:
    id: int
    title: str = ""
    description: str = ""
    details: str = ""
    test_strategy: str = ""
    status: str = "pending"
    dependencies: list[int | str] = field(default_factory=list)
    extra: dict[str, Any] = field(default_factory=dict)

    @property
    def is_completed(self) -> bool:
        return is_completed(self.status)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Subtask:
        return cls(
            id=int(data["id"]),
            title=data.get("title") or "",
            description=data.get("description") or "",
            details=data.get("details") or "",
            test_strategy=data.get("testStrategy") or "",
            status=data.get("status") or "pending",
            dependencies=[_as_dep(d) for d in data.get("dependencies") or []],
            extra={k: copy.deepcopy(v) for k, v in data.items() if k not in _SUBTASK_KEYS},
        )

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "details": self.details,
            "testStrategy": self.test_strategy,
            "status": self.status,
            "dependencies": list(self.dependencies),
        }
        out.update(copy.deepcopy(self.extra))
        return out


@dataclass
class Task:
    id: int
    title: str = ""
    description: str = ""
    details: str = ""
    test_strategy: str = ""
    priority: str = "medium"
    status: str = "pending"
    dependencies: list[int | str] = field(default_factory=list)
    subtasks: list[Subtask] = field(default_factory=list)
    extra: dict[str, Any] = field(default_factory=dict)

    @property
    def is_completed(self) -> bool:
        return is_completed(self.status)

    def get_subtask(self, subtask_id: int) -> Subtask | None:
        for st in self.subtasks:
            if st.id == subtask_id:
                return st
        return None

    def max_subtask_id(self) -> int:
        return max((st.id for st in self.subtasks), default=0)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Task:
        return cls(
            id=int(data["id"]),
            title=data.get("title") or "",
            description=data.get("description") or "",
            details=data.get("details") or "",
            test_strategy=data.get("testStrategy") or "",
            priority=data.get("priority") or "medium",
            status=data.get("status") or "pending",
            dependencies=[_as_dep(d) for d in data.get("dependencies") or []],
            subtasks=[Subtask.from_dict(s) for s in data.get("subtasks") or []],
            extra={k: copy.deepcopy(v) for k, v in data.items() if k not in _TASK_KEYS},
        )

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "details": self.details,
            "testStrategy": self.test_strategy,
            "priority": self.priority,
            "dependencies": list(self.dependencies),
            "status": self.status,
            "subtasks": [st.to_dict() for st in self.subtasks],
        }
        out.update(copy.deepcopy(self.extra))
        return out


@dataclass
class TagMetadata:
    created: str = field(default_factory=now_iso)
    updated: str = field(default_factory=now_iso)
    description: str = ""
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> TagMetadata:
        data = data or {}
        return cls(
            created=data.get("created") or now_iso(),
            updated=data.get("updated") or data.get("created") or now_iso(),
            description=data.get("description") or "",
            extra={k: v for k, v in data.items() if k not in ("created", "updated", "description")},
        )

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "created": self.created,
            "updated": self.updated,
            "description": self.description,
        }
        out.update(self.extra)
        return out

    def touch(self) -> None:
        self.updated = now_iso()


@dataclass
class Tag:
    tasks: list[Task] = field(default_factory=list)
    metadata: TagMetadata = field(default_factory=TagMetadata)

    def max_id(self) -> int:
        return max((t.id for t in self.tasks), default=0)

    def ids(self) -> set[int]:
        return {t.id for t in self.tasks}

    def find(self, task_id: int) -> Task | None:
        for t in self.tasks:
            if t.id == task_id:
                return t
        return None

    def get(self, task_id: int) -> Task:
        task = self.find(task_id)
        if task is None:
            raise TaskNotFoundError(f"Task with ID {task_id} not found", {"task_id": task_id})
        return task

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Tag:
        return cls(
            tasks=[Task.from_dict(t) for t in data.get("tasks") or []],
            metadata=TagMetadata.from_dict(data.get("metadata")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "tasks": [t.to_dict() for t in self.tasks],
            "metadata": self.metadata.to_dict(),
        }


@dataclass
class TaskDocument:
    """Every tag in a project's task file, plus the optimistic version."""

    tags: dict[str, Tag] = field(default_factory=dict)
    version: int = 0

    def has_tag(self, name: str) -> bool:
        return name in self.tags

    def tag(self, name: str) -> Tag:
        try:
            return self.tags[name]
        except KeyError:
            raise TagError(f"Tag '{name}' does not exist", {"tag": name}) from None

    def ensure_tag(self, name: str, description: str = "") -> Tag:
        if name not in self.tags:
            self.tags[name] = Tag(metadata=TagMetadata(description=description or f"Tasks for {name} context"))
        return self.tags[name]

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TaskDocument:
        meta = data.get("_meta") or {}
        tags = {
            name: Tag.from_dict(body)
            for name, body in data.items()
            if name != "_meta" and isinstance(body, dict)
        }
        return cls(tags=tags, version=int(meta.get("version", 0)))

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {name: tag.to_dict() for name, tag in self.tags.items()}
        out["_meta"] = {"version": self.version}
        return out
