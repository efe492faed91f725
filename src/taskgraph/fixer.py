"""Multi-phase dependency repair.

Phases run in a fixed order, each on the previous phase's output:

1. drop duplicate references (first occurrence wins)
2. drop references that do not resolve
3. drop self references
4. break cycles among subtasks by removing the back-edges a DFS finds
5. make sure every parent keeps at least one subtask with no dependencies

Cycles that run through top-level tasks are reported in
``FixResult.unresolved_cycles`` and left as they are.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from .addressing import Reference, serialize_reference
from .graph import describe, top_level_cycles
from .model import Item, Node, Snapshot, Subitem

logger = logging.getLogger(__name__)


@dataclass
class FixStats:
    duplicates_removed: int = 0
    missing_removed: int = 0
    self_removed: int = 0
    circular_removed: int = 0
    independent_subtasks_restored: int = 0
    tasks_fixed: int = 0
    subtasks_fixed: int = 0

    @property
    def total(self) -> int:
        return (
            self.duplicates_removed
            + self.missing_removed
            + self.self_removed
            + self.circular_removed
            + self.independent_subtasks_restored
        )

    def to_dict(self) -> dict[str, int]:
        return {
            "duplicates_removed": self.duplicates_removed,
            "missing_removed": self.missing_removed,
            "self_removed": self.self_removed,
            "circular_removed": self.circular_removed,
            "independent_subtasks_restored": self.independent_subtasks_restored,
            "tasks_fixed": self.tasks_fixed,
            "subtasks_fixed": self.subtasks_fixed,
        }


@dataclass
class FixResult:
    snapshot: Snapshot
    stats: FixStats
    # Owners whose dependency list changed, keyed by canonical id.
    changes: dict[str, list[Reference]] = field(default_factory=dict)
    unresolved_cycles: list[Reference] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.changes)

    def change_refs(self) -> list[Reference]:
        return [
            node.ref
            for node in self.snapshot.nodes()
            if node.ref.canonical in self.changes
        ]

    def to_dict(self) -> dict[str, Any]:
        return {
            "changed": self.changed,
            "stats": self.stats.to_dict(),
            "changes": {
                owner: [serialize_reference(ref) for ref in refs]
                for owner, refs in self.changes.items()
            },
            "unresolved_cycles": [ref.canonical for ref in self.unresolved_cycles],
        }


def _dedupe(node: Node, stats: FixStats) -> None:
    seen: set[str] = set()
    kept: list[Reference] = []
    for ref in node.dependencies:
        if ref.canonical in seen:
            logger.info(
                "removing duplicate dependency %s from %s",
                ref.canonical,
                describe(node.ref),
            )
            stats.duplicates_removed += 1
            continue
        seen.add(ref.canonical)
        kept.append(ref)
    node.dependencies = kept


def _prune_missing(snapshot: Snapshot, node: Node, stats: FixStats) -> None:
    kept: list[Reference] = []
    for ref in node.dependencies:
        if ref not in snapshot:
            logger.info(
                "removing invalid dependency %s from %s (%s does not exist)",
                ref.canonical,
                describe(node.ref),
                describe(ref),
            )
            stats.missing_removed += 1
            continue
        kept.append(ref)
    node.dependencies = kept


def _prune_self(node: Node, stats: FixStats) -> None:
    owner = node.ref.canonical
    kept: list[Reference] = []
    for ref in node.dependencies:
        if ref.canonical == owner:
            logger.info("removing self-dependency from %s", describe(node.ref))
            stats.self_removed += 1
            continue
        kept.append(ref)
    node.dependencies = kept


def _break_subtask_cycles(snapshot: Snapshot, stats: FixStats) -> None:
    subitems: dict[str, Subitem] = {
        sub.ref.canonical: sub for sub in snapshot.subitems()
    }

    for start_id in subitems:
        on_stack: set[str] = {start_id}
        visited: set[str] = {start_id}
        # Frames hold a snapshot of the edge list so removals do not shift iteration.
        stack = [(start_id, iter(list(subitems[start_id].dependencies)))]
        while stack:
            node_id, deps = stack[-1]
            descended = False
            for dep in deps:
                dep_id = dep.canonical
                if dep_id not in subitems:
                    continue
                if dep_id in on_stack:
                    owner = subitems[node_id]
                    owner.dependencies = [
                        ref for ref in owner.dependencies if ref.canonical != dep_id
                    ]
                    logger.info(
                        "breaking circular dependency: removing %s from subtask %s",
                        dep_id,
                        node_id,
                    )
                    stats.circular_removed += 1
                    continue
                if dep_id in visited:
                    continue
                visited.add(dep_id)
                on_stack.add(dep_id)
                stack.append((dep_id, iter(list(subitems[dep_id].dependencies))))
                descended = True
                break
            if not descended:
                stack.pop()
                on_stack.discard(node_id)


def _restore_independent_subtask(item: Item) -> bool:
    if not item.subtasks:
        return False
    if any(not sub.dependencies for sub in item.subtasks):
        return False
    first = item.subtasks[0]
    logger.info(
        "clearing dependencies of subtask %s so task %s keeps an independent subtask",
        first.ref.canonical,
        item.id,
    )
    first.dependencies = []
    return True


def ensure_independent_subtasks(snapshot: Snapshot) -> int:
    """Clear the first subtask's dependencies wherever every subtask has some.

    Mutates ``snapshot`` in place and returns the number of parents touched.
    """
    restored = 0
    for item in snapshot.items:
        if _restore_independent_subtask(item):
            restored += 1
    return restored


def diff_dependencies(before: Snapshot, after: Snapshot) -> dict[str, list[Reference]]:
    """Owners whose canonical dependency list differs, with the new list."""
    changes: dict[str, list[Reference]] = {}
    for node in after.nodes():
        original = before.get(node.ref)
        old = [ref.canonical for ref in original.dependencies] if original else []
        new = [ref.canonical for ref in node.dependencies]
        if old != new:
            changes[node.ref.canonical] = list(node.dependencies)
    return changes


def fix_dependencies(snapshot: Snapshot) -> FixResult:
    """Repair ``snapshot`` on a copy; the input is never modified."""
    working = snapshot.copy()
    stats = FixStats()

    for node in working.nodes():
        _dedupe(node, stats)
    for node in working.nodes():
        _prune_missing(working, node, stats)
    for node in working.nodes():
        _prune_self(node, stats)
    _break_subtask_cycles(working, stats)
    stats.independent_subtasks_restored = ensure_independent_subtasks(working)

    changes = diff_dependencies(snapshot, working)
    for owner_id in changes:
        if "." in owner_id:
            stats.subtasks_fixed += 1
        else:
            stats.tasks_fixed += 1

    unresolved = top_level_cycles(working)
    for ref in unresolved:
        logger.warning(
            "%s is part of a circular dependency chain through top-level tasks; "
            "not fixed automatically",
            describe(ref),
        )

    return FixResult(
        snapshot=working,
        stats=stats,
        changes=changes,
        unresolved_cycles=list(unresolved),
    )
