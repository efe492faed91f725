from __future__ import annotations

from typing import TYPE_CHECKING

__all__ = [
    "__version__",
    "DependencyService",
    "JsonTaskStore",
    "MemoryTaskStore",
    "Snapshot",
    "TaskStore",
]

__version__ = "0.1.0"

if TYPE_CHECKING:
    from .model import Snapshot
    from .service import DependencyService
    from .store import JsonTaskStore, MemoryTaskStore, TaskStore


def __getattr__(name: str):
    if name == "Snapshot":
        from .model import Snapshot

        return Snapshot
    if name == "DependencyService":
        from .service import DependencyService

        return DependencyService
    if name in {"JsonTaskStore", "MemoryTaskStore", "TaskStore"}:
        from .store import JsonTaskStore, MemoryTaskStore, TaskStore

        return {
            "JsonTaskStore": JsonTaskStore,
            "MemoryTaskStore": MemoryTaskStore,
            "TaskStore": TaskStore,
        }[name]
    raise AttributeError(f"module 'taskgraph' has no attribute {name!r}")
