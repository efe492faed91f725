"""Single add/remove of a dependency edge, computed against a snapshot."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from .addressing import (
    Reference,
    parse_id,
    serialize_reference,
    sort_references,
)
from .errors import CircularDependencyError, NotFoundError, SelfDependencyError
from .graph import describe, detect_cycle, exists, is_self_dependency
from .model import Node, Snapshot

NOTE_ALREADY_EXISTS = "already_exists"
NOTE_NOT_PRESENT = "not_present"
NOTE_NO_DEPENDENCIES = "no_dependencies"


@dataclass(frozen=True)
class MutationResult:
    owner: Reference
    target: Reference
    dependencies: list[Reference] = field(default_factory=list)
    changed: bool = False
    note: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "task_id": self.owner.canonical,
            "dependency_id": self.target.canonical,
            "changed": self.changed,
            "note": self.note,
            "dependencies": [serialize_reference(ref) for ref in self.dependencies],
        }


def _resolve_owner(snapshot: Snapshot, owner: Reference) -> Node:
    node = snapshot.get(owner)
    if node is None:
        raise NotFoundError(f"{describe(owner).capitalize()} not found")
    return node


def add_dependency(
    snapshot: Snapshot,
    owner: Reference | str | int,
    target: Reference | str | int,
) -> MutationResult:
    """Compute ``owner``'s dependency list with ``target`` added.

    Raises NotFoundError, SelfDependencyError or CircularDependencyError.
    An already-present target is a no-op result, not an error.
    """
    owner = parse_id(owner)
    target = parse_id(target)
    node = _resolve_owner(snapshot, owner)

    if not exists(snapshot, target):
        raise NotFoundError(f"Dependency target {target.canonical} does not exist")

    current = list(node.dependencies)
    if any(ref.canonical == target.canonical for ref in current):
        return MutationResult(
            owner=owner,
            target=target,
            dependencies=current,
            note=NOTE_ALREADY_EXISTS,
        )

    if is_self_dependency(owner, target):
        raise SelfDependencyError(
            f"{describe(owner).capitalize()} cannot depend on itself"
        )

    if detect_cycle(snapshot, target, extra_chain=(owner,)):
        raise CircularDependencyError(
            f"Cannot add dependency {target.canonical} to {describe(owner)} "
            "as it would create a circular dependency"
        )

    return MutationResult(
        owner=owner,
        target=target,
        dependencies=sort_references(current + [target]),
        changed=True,
    )


def remove_dependency(
    snapshot: Snapshot,
    owner: Reference | str | int,
    target: Reference | str | int,
) -> MutationResult:
    owner = parse_id(owner)
    target = parse_id(target)
    node = _resolve_owner(snapshot, owner)

    current = list(node.dependencies)
    if not current:
        return MutationResult(owner=owner, target=target, note=NOTE_NO_DEPENDENCIES)

    for index, ref in enumerate(current):
        if ref.canonical == target.canonical:
            del current[index]
            return MutationResult(
                owner=owner,
                target=target,
                dependencies=current,
                changed=True,
            )

    return MutationResult(
        owner=owner,
        target=target,
        dependencies=current,
        note=NOTE_NOT_PRESENT,
    )
