"""Canonical identity for tasks and subtasks.

Dependency lists in a task file mix three spellings: a bare integer naming a
top-level task, a dotted ``"P.S"`` string naming subtask ``S`` of task ``P``,
and (inside a subtask's own list) a small integer naming a sibling subtask.
Everything is folded into :class:`TaskRef` / :class:`SubtaskRef` here, once,
so graph code never sees the sibling shorthand.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union

from .errors import MalformedReferenceError

# Integers below this inside a subtask's dependency list name a sibling.
SIBLING_REF_LIMIT = 100


@dataclass(frozen=True)
class TaskRef:
    task_id: int

    @property
    def canonical(self) -> str:
        return str(self.task_id)

    def __str__(self) -> str:
        return self.canonical


@dataclass(frozen=True)
class SubtaskRef:
    parent_id: int
    subtask_id: int

    @property
    def canonical(self) -> str:
        return f"{self.parent_id}.{self.subtask_id}"

    def __str__(self) -> str:
        return self.canonical


Reference = Union[TaskRef, SubtaskRef]


def _positive_int(text: str, *, raw: object) -> int:
    value = text.strip()
    if not value or not value.isdigit():
        raise MalformedReferenceError(f"invalid task id: {raw!r}")
    number = int(value)
    if number < 1:
        raise MalformedReferenceError(f"task ids must be positive: {raw!r}")
    return number


def parse_id(raw: object) -> Reference:
    """Parse a user- or file-supplied id into a reference.

    Strings containing ``.`` address a subtask; anything else must parse as a
    positive integer.
    """
    if isinstance(raw, (TaskRef, SubtaskRef)):
        return raw
    if isinstance(raw, bool):
        raise MalformedReferenceError(f"invalid task id: {raw!r}")
    if isinstance(raw, int):
        if raw < 1:
            raise MalformedReferenceError(f"task ids must be positive: {raw!r}")
        return TaskRef(raw)
    if not isinstance(raw, str):
        raise MalformedReferenceError(f"invalid task id: {raw!r}")

    text = raw.strip()
    if "." in text:
        parts = text.split(".")
        if len(parts) != 2:
            raise MalformedReferenceError(f"invalid subtask id: {raw!r}")
        return SubtaskRef(
            _positive_int(parts[0], raw=raw),
            _positive_int(parts[1], raw=raw),
        )
    return TaskRef(_positive_int(text, raw=raw))


def normalize_reference(
    raw: object,
    context_parent_id: int | None = None,
) -> Reference:
    """Normalize one dependency entry.

    ``context_parent_id`` is the parent task when the entry comes from a
    subtask's dependency list; small integers there name siblings.
    """
    if (
        context_parent_id is not None
        and isinstance(raw, int)
        and not isinstance(raw, bool)
        and 0 < raw < SIBLING_REF_LIMIT
    ):
        return SubtaskRef(context_parent_id, raw)
    return parse_id(raw)


def reference_sort_key(ref: Reference) -> tuple[int, int, int]:
    # Task refs first, ascending; then subtask refs by (parent, sub).
    if isinstance(ref, TaskRef):
        return (0, ref.task_id, 0)
    return (1, ref.parent_id, ref.subtask_id)


def sort_references(refs: list[Reference]) -> list[Reference]:
    return sorted(refs, key=reference_sort_key)


def serialize_reference(
    ref: Reference,
    context_parent_id: int | None = None,
) -> int | str:
    """Write form of a reference: ``int`` for tasks, ``"P.S"`` for subtasks.

    Inside a subtask's list a small integer would read back as a sibling, so
    task refs below the sibling limit are written as digit strings there.
    """
    if isinstance(ref, TaskRef):
        if context_parent_id is not None and ref.task_id < SIBLING_REF_LIMIT:
            return ref.canonical
        return ref.task_id
    return ref.canonical
