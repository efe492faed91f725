"""Task store contract and the local JSON-file implementation."""

from __future__ import annotations

import copy
import json
import logging
import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

from .addressing import Reference, SubtaskRef, TaskRef, parse_id, serialize_reference
from .errors import NotFoundError, SnapshotError, UnsupportedError
from .model import Item, Snapshot

logger = logging.getLogger(__name__)

_UPDATABLE_FIELDS = {"dependencies"}


def _context_parent(ref: Reference) -> int | None:
    return ref.parent_id if isinstance(ref, SubtaskRef) else None


def _serialize_dependencies(owner: Reference, values: list[Any]) -> list[int | str]:
    parent_id = _context_parent(owner)
    return [serialize_reference(parse_id(value), parent_id) for value in values]


def _check_update(update: dict[str, Any]) -> None:
    unknown = set(update) - _UPDATABLE_FIELDS
    if unknown:
        raise ValueError(f"unsupported update fields: {', '.join(sorted(unknown))}")


class TaskStore(ABC):
    """Where snapshots come from and where dependency changes go.

    Stores that cannot address subtasks individually or cannot rewrite many
    items at once clear the matching capability flag and raise
    UnsupportedError from the corresponding method.
    """

    supports_subtask_updates = True
    supports_bulk_rewrite = True

    @abstractmethod
    def fetch_all(self) -> Snapshot: ...

    def apply_partial_update(self, ref: Reference, update: dict[str, Any]) -> None:
        raise UnsupportedError(
            f"{type(self).__name__} cannot update {ref.canonical} in place"
        )

    def bulk_rewrite(self, snapshot: Snapshot) -> None:
        raise UnsupportedError(f"{type(self).__name__} cannot rewrite tasks in bulk")

    def regenerate_derived_artifacts(self) -> None:
        return None


class MemoryTaskStore(TaskStore):
    """Keeps raw task data in memory; handy for embedding and tests."""

    def __init__(
        self,
        data: dict[str, Any] | list[dict[str, Any]] | None = None,
        *,
        supports_subtask_updates: bool = True,
        supports_bulk_rewrite: bool = True,
    ) -> None:
        if isinstance(data, list):
            data = {"tasks": data}
        self.data: dict[str, Any] = copy.deepcopy(data) if data else {"tasks": []}
        self.supports_subtask_updates = supports_subtask_updates
        self.supports_bulk_rewrite = supports_bulk_rewrite
        self.regenerations = 0

    def fetch_all(self) -> Snapshot:
        return Snapshot.from_dict(copy.deepcopy(self.data))

    def apply_partial_update(self, ref: Reference, update: dict[str, Any]) -> None:
        if isinstance(ref, SubtaskRef) and not self.supports_subtask_updates:
            super().apply_partial_update(ref, update)
        _check_update(update)
        entry = _find_entry(self.data, ref)
        if "dependencies" in update:
            entry["dependencies"] = _serialize_dependencies(ref, update["dependencies"])

    def bulk_rewrite(self, snapshot: Snapshot) -> None:
        if not self.supports_bulk_rewrite:
            super().bulk_rewrite(snapshot)
        _rewrite_dependencies(self.data, snapshot)

    def regenerate_derived_artifacts(self) -> None:
        self.regenerations += 1


def _task_entries(data: dict[str, Any]) -> list[dict[str, Any]]:
    tasks = data.get("tasks")
    if not isinstance(tasks, list):
        raise SnapshotError("'tasks' must be a list")
    return tasks


def _find_entry(data: dict[str, Any], ref: Reference) -> dict[str, Any]:
    task_id = ref.task_id if isinstance(ref, TaskRef) else ref.parent_id
    task = next(
        (row for row in _task_entries(data) if _same_id(row.get("id"), task_id)),
        None,
    )
    if task is None:
        raise NotFoundError(f"task {task_id} not found")
    if isinstance(ref, TaskRef):
        return task
    for sub in task.get("subtasks") or []:
        if _same_id(sub.get("id"), ref.subtask_id):
            return sub
    raise NotFoundError(f"subtask {ref.canonical} not found")


def _same_id(raw: object, wanted: int) -> bool:
    if isinstance(raw, bool):
        return False
    if isinstance(raw, int):
        return raw == wanted
    if isinstance(raw, str) and raw.strip().isdigit():
        return int(raw.strip()) == wanted
    return False


def _rewrite_dependencies(data: dict[str, Any], snapshot: Snapshot) -> None:
    for node in snapshot.nodes():
        entry = _find_entry(data, node.ref)
        parent_id = _context_parent(node.ref)
        entry["dependencies"] = [
            serialize_reference(ref, parent_id) for ref in node.dependencies
        ]


class JsonTaskStore(TaskStore):
    """Task store backed by a ``tasks.json`` file.

    Writes go through a temp file and ``os.replace``. There is no locking:
    two processes doing read-modify-write on the same file race, and the
    last writer wins.
    """

    def __init__(self, path: Path, *, exports_dir: Path | None = None) -> None:
        self.path = path
        self.exports_dir = exports_dir

    @classmethod
    def from_workdir(
        cls,
        root: Path | None = None,
        *,
        path: Path | None = None,
        exports_dir: Path | None = None,
    ) -> JsonTaskStore:
        root = root or Path.cwd()
        tasks_path = path if path is not None else Path("tasks") / "tasks.json"
        if not tasks_path.is_absolute():
            tasks_path = root / tasks_path
        if exports_dir is not None and not exports_dir.is_absolute():
            exports_dir = root / exports_dir
        return cls(tasks_path, exports_dir=exports_dir)

    def _load(self) -> dict[str, Any]:
        if not self.path.exists():
            return {"tasks": []}
        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as exc:
            raise SnapshotError(f"invalid JSON in {self.path}: {exc}") from exc
        if isinstance(data, list):
            data = {"tasks": data}
        if not isinstance(data, dict):
            raise SnapshotError(f"{self.path} must contain an object with 'tasks'")
        return data

    def _save(self, data: dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(".tmp")
        try:
            with open(tmp, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, ensure_ascii=False)
                f.write("\n")
            os.replace(tmp, self.path)
        except Exception:
            tmp.unlink(missing_ok=True)
            raise

    def fetch_all(self) -> Snapshot:
        return Snapshot.from_dict(self._load())

    def apply_partial_update(self, ref: Reference, update: dict[str, Any]) -> None:
        _check_update(update)
        data = self._load()
        entry = _find_entry(data, ref)
        if "dependencies" in update:
            entry["dependencies"] = _serialize_dependencies(ref, update["dependencies"])
        self._save(data)

    def bulk_rewrite(self, snapshot: Snapshot) -> None:
        data = self._load()
        _rewrite_dependencies(data, snapshot)
        self._save(data)

    def regenerate_derived_artifacts(self) -> None:
        if self.exports_dir is None:
            return
        snapshot = self.fetch_all()
        self.exports_dir.mkdir(parents=True, exist_ok=True)
        for item in snapshot.items:
            path = self.exports_dir / f"task_{item.id:03d}.txt"
            path.write_text(render_task_file(item), encoding="utf-8")
        logger.debug("wrote %d task files to %s", len(snapshot.items), self.exports_dir)


def _dependency_text(refs: list[Reference]) -> str:
    return ", ".join(ref.canonical for ref in refs) or "None"


def render_task_file(item: Item) -> str:
    lines = [
        f"# Task ID: {item.id}",
        f"# Title: {item.extra.get('title', '')}",
        f"# Status: {item.status}",
        f"# Dependencies: {_dependency_text(item.dependencies)}",
        f"# Priority: {item.priority or 'medium'}",
        f"# Description: {item.extra.get('description', '')}",
        "# Details:",
        str(item.extra.get("details") or ""),
        "",
        "# Test Strategy:",
        str(item.extra.get("testStrategy") or ""),
    ]
    if item.subtasks:
        lines.append("")
        lines.append("# Subtasks:")
        for sub in item.subtasks:
            lines.append(
                f"## {sub.id}. {sub.extra.get('title', '')} [{sub.status}]"
            )
            lines.append(f"### Dependencies: {_dependency_text(sub.dependencies)}")
            description = str(sub.extra.get("description") or "")
            if description:
                lines.append(f"### Description: {description}")
            lines.append("")
    return "\n".join(lines).rstrip() + "\n"
