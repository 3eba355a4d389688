"""Task file persistence with file locking and optimistic versioning."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from filelock import FileLock

from taskweave.errors import StaleDocumentError, TaskweaveError
from taskweave.io_utils import atomic_write_json, read_json
from taskweave.tasks.model import DEFAULT_TAG, TagMetadata, TaskDocument, now_iso

DEFAULT_LOCK_TIMEOUT = 30.0


def migrate_legacy(data: dict[str, Any]) -> dict[str, Any]:
    """Wrap a pre-tag ``{"tasks": [...]}`` file into the ``master`` tag."""
    if isinstance(data.get("tasks"), list):
        created = now_iso()
        legacy_meta = data.get("meta") or {}
        return {
            DEFAULT_TAG: {
                "tasks": data["tasks"],
                "metadata": TagMetadata(
                    created=legacy_meta.get("created") or created,
                    updated=created,
                    description="Tasks for master context",
                ).to_dict(),
            }
        }
    return data


class TaskStore:
    """Read and write the tagged task document at *path*.

    Usage::

        store = TaskStore(tasks_path(root))
        with store.edit() as doc:
            doc.tag("master").tasks.append(task)

    ``save`` refuses to overwrite a document that another writer saved after
    it was loaded.
    """

    def __init__(self, path: Path, *, lock_timeout: float = DEFAULT_LOCK_TIMEOUT) -> None:
        self.path = path
        self.lock_timeout = lock_timeout

    @property
    def lock_path(self) -> Path:
        return self.path.with_name(self.path.name + ".lock")

    def _lock(self) -> FileLock:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        return FileLock(str(self.lock_path), timeout=self.lock_timeout)

    def _read_unlocked(self) -> TaskDocument:
        if not self.path.is_file():
            return TaskDocument()
        try:
            data = read_json(self.path)
        except ValueError as exc:
            raise TaskweaveError(f"Could not parse task file {self.path}: {exc}") from exc
        if not isinstance(data, dict):
            raise TaskweaveError(f"Task file {self.path} must contain a JSON object")
        return TaskDocument.from_dict(migrate_legacy(data))

    def load(self) -> TaskDocument:
        with self._lock():
            return self._read_unlocked()

    def current_version(self) -> int:
        with self._lock():
            return self._read_unlocked().version

    def save(self, doc: TaskDocument, expected_version: int | None = None) -> int:
        """Write *doc* and return its new version.

        With *expected_version* set, raise :class:`StaleDocumentError` if the
        file on disk has moved past it.
        """
        with self._lock():
            on_disk = self._read_unlocked().version if self.path.is_file() else 0
            if expected_version is not None and on_disk != expected_version:
                raise StaleDocumentError(
                    f"Task file {self.path} changed since it was read "
                    f"(expected version {expected_version}, found {on_disk}). Reload and retry.",
                    {"expected": expected_version, "found": on_disk},
                )
            doc.version = on_disk + 1
            atomic_write_json(self.path, doc.to_dict())
        return doc.version

    @contextmanager
    def edit(self) -> Iterator[TaskDocument]:
        """Load, yield for mutation, then save with a version check."""
        doc = self.load()
        yield doc
        self.save(doc, expected_version=doc.version)
