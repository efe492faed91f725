"""In-memory snapshot of a task file: items, subitems and their dependencies."""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Any, Iterator, Union

from .addressing import (
    Reference,
    SubtaskRef,
    TaskRef,
    normalize_reference,
    serialize_reference,
)
from .errors import MalformedReferenceError, SnapshotError

TASK_STATUSES = (
    "pending",
    "in-progress",
    "done",
    "blocked",
    "deferred",
    "completed",
)
COMPLETE_STATUSES = {"done", "completed"}
ACTIVE_STATUSES = {"pending", "in-progress"}
PRIORITIES = ("high", "medium", "low")
DEFAULT_PRIORITY = "medium"
PRIORITY_RANK = {"high": 3, "medium": 2, "low": 1}

_STATUS_ALIASES = {
    "in_progress": "in-progress",
    "inprogress": "in-progress",
}
_KNOWN_FIELDS = {"id", "status", "priority", "dependencies", "subtasks"}


def _normalize_status(status: object, *, owner: str) -> str:
    """Known statuses are canonicalized; anything else is carried as written."""
    if status is None:
        return "pending"
    if not isinstance(status, str):
        raise SnapshotError(f"invalid status for {owner}: {status!r}")
    value = status.strip().lower()
    value = _STATUS_ALIASES.get(value, value)
    if value not in TASK_STATUSES:
        return status
    return value


def _normalize_priority(priority: object, *, owner: str) -> str | None:
    if priority is None:
        return None
    if not isinstance(priority, str):
        raise SnapshotError(f"invalid priority for {owner}: {priority!r}")
    value = priority.strip().lower()
    if value not in PRIORITIES:
        return priority
    return value


def _parse_dependencies(
    raw: object,
    *,
    owner: str,
    context_parent_id: int | None = None,
) -> list[Reference]:
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise SnapshotError(f"dependencies for {owner} must be a list")
    refs: list[Reference] = []
    for value in raw:
        try:
            refs.append(normalize_reference(value, context_parent_id))
        except MalformedReferenceError as exc:
            raise SnapshotError(f"{owner}: {exc}") from exc
    return refs


def _parse_id(raw: object, *, what: str) -> int:
    if isinstance(raw, bool):
        raise SnapshotError(f"invalid {what} id: {raw!r}")
    if isinstance(raw, str) and raw.strip().isdigit():
        raw = int(raw.strip())
    if not isinstance(raw, int) or raw < 1:
        raise SnapshotError(f"invalid {what} id: {raw!r}")
    return raw


@dataclass
class Subitem:
    id: int
    parent_id: int
    status: str = "pending"
    priority: str | None = None
    dependencies: list[Reference] = field(default_factory=list)
    extra: dict[str, Any] = field(default_factory=dict)

    @property
    def ref(self) -> SubtaskRef:
        return SubtaskRef(self.parent_id, self.id)

    @classmethod
    def from_dict(cls, raw: object, *, parent_id: int) -> Subitem:
        if not isinstance(raw, dict):
            raise SnapshotError(f"subtask of task {parent_id} must be an object")
        sub_id = _parse_id(raw.get("id"), what=f"subtask (task {parent_id})")
        owner = f"subtask {parent_id}.{sub_id}"
        return cls(
            id=sub_id,
            parent_id=parent_id,
            status=_normalize_status(raw.get("status"), owner=owner),
            priority=_normalize_priority(raw.get("priority"), owner=owner),
            dependencies=_parse_dependencies(
                raw.get("dependencies"),
                owner=owner,
                context_parent_id=parent_id,
            ),
            extra={k: v for k, v in raw.items() if k not in _KNOWN_FIELDS},
        )

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"id": self.id}
        out.update(self.extra)
        out["status"] = self.status
        if self.priority is not None:
            out["priority"] = self.priority
        out["dependencies"] = [
            serialize_reference(ref, self.parent_id) for ref in self.dependencies
        ]
        return out


@dataclass
class Item:
    id: int
    status: str = "pending"
    priority: str | None = None
    dependencies: list[Reference] = field(default_factory=list)
    subtasks: list[Subitem] = field(default_factory=list)
    extra: dict[str, Any] = field(default_factory=dict)

    @property
    def ref(self) -> TaskRef:
        return TaskRef(self.id)

    @classmethod
    def from_dict(cls, raw: object) -> Item:
        if not isinstance(raw, dict):
            raise SnapshotError("task entries must be objects")
        item_id = _parse_id(raw.get("id"), what="task")
        owner = f"task {item_id}"
        raw_subtasks = raw.get("subtasks")
        if raw_subtasks is not None and not isinstance(raw_subtasks, list):
            raise SnapshotError(f"subtasks for {owner} must be a list")

        subtasks: list[Subitem] = []
        seen: set[int] = set()
        for entry in raw_subtasks or []:
            sub = Subitem.from_dict(entry, parent_id=item_id)
            if sub.id in seen:
                raise SnapshotError(f"duplicate subtask id {item_id}.{sub.id}")
            seen.add(sub.id)
            subtasks.append(sub)

        extra = {k: v for k, v in raw.items() if k not in _KNOWN_FIELDS}
        if raw_subtasks is not None and not subtasks:
            # Keep an explicit empty list on write-back.
            extra["subtasks"] = []
        return cls(
            id=item_id,
            status=_normalize_status(raw.get("status"), owner=owner),
            priority=_normalize_priority(raw.get("priority"), owner=owner),
            dependencies=_parse_dependencies(raw.get("dependencies"), owner=owner),
            subtasks=subtasks,
            extra=extra,
        )

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"id": self.id}
        out.update(self.extra)
        out["status"] = self.status
        if self.priority is not None:
            out["priority"] = self.priority
        out["dependencies"] = [serialize_reference(ref) for ref in self.dependencies]
        if self.subtasks:
            out["subtasks"] = [sub.to_dict() for sub in self.subtasks]
        return out


Node = Union[Item, Subitem]


class Snapshot:
    """A full, already-fetched set of items with nested subitems.

    Item and subitem ids never change inside the core, so the lookup index is
    built once; only ``dependencies`` lists are rewritten.
    """

    def __init__(
        self,
        items: list[Item],
        *,
        extra: dict[str, Any] | None = None,
    ) -> None:
        self.items = items
        self.extra = dict(extra or {})
        self._items: dict[int, Item] = {}
        self._subitems: dict[tuple[int, int], Subitem] = {}
        for item in items:
            if item.id in self._items:
                raise SnapshotError(f"duplicate task id {item.id}")
            self._items[item.id] = item
            for sub in item.subtasks:
                self._subitems[(item.id, sub.id)] = sub
        self._canonical_ids = frozenset(
            [str(item_id) for item_id in self._items]
            + [f"{p}.{s}" for p, s in self._subitems]
        )

    @classmethod
    def from_dict(cls, raw: object) -> Snapshot:
        if isinstance(raw, list):
            raw = {"tasks": raw}
        if not isinstance(raw, dict):
            raise SnapshotError("task data must be an object with a 'tasks' list")
        tasks = raw.get("tasks")
        if tasks is None:
            tasks = []
        if not isinstance(tasks, list):
            raise SnapshotError("'tasks' must be a list")
        items = [Item.from_dict(entry) for entry in tasks]
        extra = {k: v for k, v in raw.items() if k != "tasks"}
        return cls(items, extra=extra)

    def to_dict(self) -> dict[str, Any]:
        out = dict(self.extra)
        out["tasks"] = [item.to_dict() for item in self.items]
        return out

    def copy(self) -> Snapshot:
        return Snapshot(copy.deepcopy(self.items), extra=copy.deepcopy(self.extra))

    def __contains__(self, ref: object) -> bool:
        if isinstance(ref, (TaskRef, SubtaskRef)):
            return ref.canonical in self._canonical_ids
        return False

    def get(self, ref: Reference) -> Node | None:
        if isinstance(ref, TaskRef):
            return self._items.get(ref.task_id)
        return self._subitems.get((ref.parent_id, ref.subtask_id))

    def item(self, item_id: int) -> Item | None:
        return self._items.get(item_id)

    def nodes(self) -> Iterator[Node]:
        """Every item followed by its subtasks, in file order."""
        for item in self.items:
            yield item
            yield from item.subtasks

    def subitems(self) -> Iterator[Subitem]:
        for item in self.items:
            yield from item.subtasks

    def dependencies_of(self, ref: Reference) -> list[Reference]:
        node = self.get(ref)
        if node is None:
            return []
        return list(node.dependencies)

    def set_dependencies(self, ref: Reference, refs: list[Reference]) -> None:
        node = self.get(ref)
        if node is None:
            raise KeyError(ref.canonical)
        node.dependencies = list(refs)

    def task_count(self) -> int:
        return len(self.items)

    def subtask_count(self) -> int:
        return len(self._subitems)
