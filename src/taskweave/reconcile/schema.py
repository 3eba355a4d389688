"""Structural validation of parsed AI payloads, with per-field diagnostics."""

from __future__ import annotations

import re
from typing import Any

from taskweave.errors import FieldDiagnostic, SchemaViolation
from taskweave.tasks.model import PRIORITIES

# JSON Schemas handed to providers for tool-call (object) generation.

_ID = {"type": "integer", "minimum": 1}
_ID_LIST = {"type": "array", "items": {"type": "integer", "minimum": 1}}

TASK_JSON_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "id": _ID,
        "title": {"type": "string", "minLength": 1},
        "description": {"type": "string", "minLength": 1},
        "details": {"type": "string"},
        "testStrategy": {"type": "string"},
        "priority": {"type": "string", "enum": list(PRIORITIES)},
        "dependencies": _ID_LIST,
        "status": {"type": "string"},
    },
    "required": ["id", "title", "description"],
}

SUBTASK_JSON_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "id": _ID,
        "title": {"type": "string", "minLength": 1},
        "description": {"type": "string"},
        "details": {"type": "string"},
        "testStrategy": {"type": "string"},
        "dependencies": _ID_LIST,
        "status": {"type": "string"},
    },
    "required": ["id", "title"],
}

TASK_BATCH_JSON_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {"tasks": {"type": "array", "items": TASK_JSON_SCHEMA}},
    "required": ["tasks"],
}

SUBTASK_BATCH_JSON_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {"subtasks": {"type": "array", "items": SUBTASK_JSON_SCHEMA}},
    "required": ["subtasks"],
}

NEW_TASK_JSON_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        key: TASK_JSON_SCHEMA["properties"][key]
        for key in ("title", "description", "details", "testStrategy")
    },
    "required": ["title", "description"],
}

UPDATED_TASK_JSON_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        **TASK_JSON_SCHEMA["properties"],
        "subtasks": {"type": "array", "items": SUBTASK_JSON_SCHEMA},
    },
    "required": ["id", "title", "description"],
}


# ── field checks ─────────────────────────────────────────────────


def _is_positive_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


_SUBTASK_REF = re.compile(r"^[1-9]\d*\.[1-9]\d*$")


def _is_dependency_ref(value: Any) -> bool:
    """A task id, or a ``"parent.subtask"`` reference."""
    return _is_positive_int(value) or (isinstance(value, str) and bool(_SUBTASK_REF.match(value)))


def _check_string(obj: dict[str, Any], key: str, path: str, *, required: bool, diags: list[FieldDiagnostic]) -> None:
    value = obj.get(key)
    if value is None:
        if required:
            diags.append(FieldDiagnostic(f"{path}.{key}", "is required"))
        return
    if not isinstance(value, str):
        diags.append(FieldDiagnostic(f"{path}.{key}", f"expected string, got {type(value).__name__}"))
    elif required and not value.strip():
        diags.append(FieldDiagnostic(f"{path}.{key}", "must not be empty"))


def _check_id(obj: dict[str, Any], path: str, diags: list[FieldDiagnostic]) -> None:
    if "id" not in obj or obj["id"] is None:
        diags.append(FieldDiagnostic(f"{path}.id", "is required"))
    elif not _is_positive_int(obj["id"]):
        diags.append(FieldDiagnostic(f"{path}.id", f"expected positive integer, got {obj['id']!r}"))


def _check_dependencies(obj: dict[str, Any], path: str, diags: list[FieldDiagnostic]) -> None:
    deps = obj.get("dependencies")
    if deps is None:
        return
    if not isinstance(deps, list):
        diags.append(FieldDiagnostic(f"{path}.dependencies", "expected array"))
        return
    for i, dep in enumerate(deps):
        if not _is_dependency_ref(dep):
            diags.append(FieldDiagnostic(f"{path}.dependencies[{i}]", f"expected positive integer or N.M reference, got {dep!r}"))


def task_diagnostics(obj: Any, path: str = "task") -> list[FieldDiagnostic]:
    """Diagnostics for one task object; empty when valid."""
    if not isinstance(obj, dict):
        return [FieldDiagnostic(path, f"expected object, got {type(obj).__name__}")]
    diags: list[FieldDiagnostic] = []
    _check_id(obj, path, diags)
    _check_string(obj, "title", path, required=True, diags=diags)
    _check_string(obj, "description", path, required=True, diags=diags)
    _check_string(obj, "details", path, required=False, diags=diags)
    _check_string(obj, "testStrategy", path, required=False, diags=diags)
    _check_string(obj, "status", path, required=False, diags=diags)
    priority = obj.get("priority")
    if priority is not None and priority not in PRIORITIES:
        diags.append(FieldDiagnostic(f"{path}.priority", f"must be one of {', '.join(PRIORITIES)}"))
    _check_dependencies(obj, path, diags)
    return diags


def subtask_diagnostics(obj: Any, path: str = "subtask") -> list[FieldDiagnostic]:
    if not isinstance(obj, dict):
        return [FieldDiagnostic(path, f"expected object, got {type(obj).__name__}")]
    diags: list[FieldDiagnostic] = []
    _check_id(obj, path, diags)
    _check_string(obj, "title", path, required=True, diags=diags)
    for key in ("description", "details", "testStrategy", "status"):
        _check_string(obj, key, path, required=False, diags=diags)
    _check_dependencies(obj, path, diags)
    return diags


# ── payload validators ───────────────────────────────────────────


def _list_payload(payload: Any, key: str) -> tuple[list[Any] | None, list[FieldDiagnostic]]:
    if isinstance(payload, list):
        return payload, []
    if isinstance(payload, dict) and isinstance(payload.get(key), list):
        return payload[key], []
    return None, [FieldDiagnostic(key, f"expected an array of {key} (or an object with a '{key}' array)")]


def validate_task_batch(payload: Any) -> list[dict[str, Any]]:
    """Validate a PRD batch (``{"tasks": [...]}``)."""
    items, diags = _list_payload(payload, "tasks")
    if items is None:
        raise SchemaViolation(diags)
    for i, item in enumerate(items):
        diags.extend(task_diagnostics(item, f"tasks[{i}]"))
    if diags:
        raise SchemaViolation(diags)
    return items


def validate_subtask_batch(payload: Any) -> list[dict[str, Any]]:
    items, diags = _list_payload(payload, "subtasks")
    if items is None:
        raise SchemaViolation(diags)
    for i, item in enumerate(items):
        diags.extend(subtask_diagnostics(item, f"subtasks[{i}]"))
    if diags:
        raise SchemaViolation(diags)
    return items


def _update_diagnostics(payload: Any, path: str) -> list[FieldDiagnostic]:
    diags = task_diagnostics(payload, path)
    if isinstance(payload, dict):
        subtasks = payload.get("subtasks")
        if subtasks is not None:
            if not isinstance(subtasks, list):
                diags.append(FieldDiagnostic(f"{path}.subtasks", "expected array"))
            else:
                for i, st in enumerate(subtasks):
                    diags.extend(subtask_diagnostics(st, f"{path}.subtasks[{i}]"))
    return diags


def validate_task_update(payload: Any) -> dict[str, Any]:
    """Validate a single updated task, including any subtasks it carries."""
    if isinstance(payload, dict) and "title" not in payload and isinstance(payload.get("task"), dict):
        payload = payload["task"]
    diags = _update_diagnostics(payload, "task")
    if diags:
        raise SchemaViolation(diags)
    return payload


def validate_task_updates(payload: Any) -> list[dict[str, Any]]:
    """Validate a bulk update: an array of full tasks, subtasks included."""
    items, diags = _list_payload(payload, "tasks")
    if items is None:
        raise SchemaViolation(diags)
    for i, item in enumerate(items):
        diags.extend(_update_diagnostics(item, f"tasks[{i}]"))
    if diags:
        raise SchemaViolation(diags)
    return items
