from __future__ import annotations

from .model import (
    ACTIVE_STATUSES,
    COMPLETE_STATUSES,
    DEFAULT_PRIORITY,
    PRIORITY_RANK,
    Item,
    Snapshot,
)


def completed_ids(snapshot: Snapshot) -> set[str]:
    return {
        node.ref.canonical
        for node in snapshot.nodes()
        if node.status in COMPLETE_STATUSES
    }


def priority_rank(priority: str | None) -> int:
    return PRIORITY_RANK.get(
        priority or DEFAULT_PRIORITY, PRIORITY_RANK[DEFAULT_PRIORITY]
    )


def eligible_items(snapshot: Snapshot) -> list[Item]:
    """Pending or in-progress items whose dependencies are all complete."""
    done = completed_ids(snapshot)
    return [
        item
        for item in snapshot.items
        if item.status in ACTIVE_STATUSES
        and all(ref.canonical in done for ref in item.dependencies)
    ]


def find_next(snapshot: Snapshot) -> Item | None:
    """Highest priority eligible item; fewer dependencies, then lower id, win ties."""
    candidates = eligible_items(snapshot)
    if not candidates:
        return None
    candidates.sort(
        key=lambda item: (
            -priority_rank(item.priority),
            len(item.dependencies),
            item.id,
        )
    )
    return candidates[0]
