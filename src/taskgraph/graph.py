"""Existence, self-dependency and cycle checks over a snapshot."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable

from .addressing import Reference, SubtaskRef, TaskRef
from .model import Snapshot


@dataclass(frozen=True)
class DependencyIssue:
    type: str
    owner: Reference
    message: str
    dependency: Reference | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "type": self.type,
            "task_id": self.owner.canonical,
            "message": self.message,
        }
        if self.dependency is not None:
            payload["dependency_id"] = self.dependency.canonical
        return payload


@dataclass(frozen=True)
class ValidationReport:
    issues: list[DependencyIssue] = field(default_factory=list)
    task_count: int = 0
    subtask_count: int = 0
    dependency_count: int = 0

    @property
    def valid(self) -> bool:
        return not self.issues

    def to_dict(self) -> dict[str, Any]:
        return {
            "valid": self.valid,
            "task_count": self.task_count,
            "subtask_count": self.subtask_count,
            "dependency_count": self.dependency_count,
            "issues": [issue.to_dict() for issue in self.issues],
        }


def describe(ref: Reference) -> str:
    if isinstance(ref, SubtaskRef):
        return f"subtask {ref.canonical}"
    return f"task {ref.canonical}"


def exists(snapshot: Snapshot, ref: Reference) -> bool:
    return ref in snapshot


def is_self_dependency(owner: Reference, ref: Reference) -> bool:
    return owner.canonical == ref.canonical


def detect_cycle(
    snapshot: Snapshot,
    start: Reference,
    extra_chain: Iterable[Reference] = (),
    *,
    skip_self_loops: bool = False,
) -> bool:
    """Walk ``dependencies`` depth-first from ``start``.

    Returns True the first time the walk reaches an id already on the current
    chain. ``extra_chain`` pre-seeds the chain, so seeding it with an edge's
    source asks "would adding source -> start close a loop?" before the edge
    exists. Targets missing from the snapshot end their branch.
    """
    seeded = tuple(ref.canonical for ref in extra_chain)
    start_id = start.canonical
    if start_id in seeded:
        return True
    node = snapshot.get(start)
    if node is None:
        return False

    # Nodes fully walked without a hit; revisiting them cannot find a new loop.
    cleared: set[str] = set()
    stack = [(start_id, seeded + (start_id,), iter(node.dependencies))]
    while stack:
        node_id, chain, deps = stack[-1]
        descended = False
        for dep in deps:
            dep_id = dep.canonical
            if skip_self_loops and dep_id == node_id:
                continue
            if dep_id in chain:
                return True
            if dep_id in cleared:
                continue
            target = snapshot.get(dep)
            if target is None:
                continue
            stack.append((dep_id, chain + (dep_id,), iter(target.dependencies)))
            descended = True
            break
        if not descended:
            stack.pop()
            cleared.add(node_id)
    return False


def validate_all(snapshot: Snapshot) -> list[DependencyIssue]:
    """Report self, missing and circular dependencies, item before subtasks.

    Self-loops are reported once as ``self`` and ignored by the circular
    check, which otherwise flags every owner whose walk reaches a loop.
    """
    issues: list[DependencyIssue] = []
    for node in snapshot.nodes():
        owner = node.ref
        label = describe(owner).capitalize()
        for dep in node.dependencies:
            if is_self_dependency(owner, dep):
                issues.append(
                    DependencyIssue(
                        type="self",
                        owner=owner,
                        dependency=dep,
                        message=f"{label} depends on itself",
                    )
                )
                continue
            if not exists(snapshot, dep):
                issues.append(
                    DependencyIssue(
                        type="missing",
                        owner=owner,
                        dependency=dep,
                        message=f"{label} depends on non-existent {describe(dep)}",
                    )
                )
        if node.dependencies and detect_cycle(snapshot, owner, skip_self_loops=True):
            issues.append(
                DependencyIssue(
                    type="circular",
                    owner=owner,
                    message=f"{label} is part of a circular dependency chain",
                )
            )
    return issues


def count_dependencies(snapshot: Snapshot) -> int:
    return sum(len(node.dependencies) for node in snapshot.nodes())


def validate_dependencies(snapshot: Snapshot) -> ValidationReport:
    return ValidationReport(
        issues=validate_all(snapshot),
        task_count=snapshot.task_count(),
        subtask_count=snapshot.subtask_count(),
        dependency_count=count_dependencies(snapshot),
    )


def top_level_cycles(snapshot: Snapshot) -> list[TaskRef]:
    """Top-level items whose walk reaches a loop."""
    return [
        item.ref
        for item in snapshot.items
        if item.dependencies
        and detect_cycle(snapshot, item.ref, skip_self_loops=True)
    ]
