"""Range specs ("7-10", "1,3-5", "2.1-2.4") and batched add/remove."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable

from .addressing import Reference, SubtaskRef, TaskRef, parse_id
from .errors import DependencyError, MalformedRangeError, MalformedReferenceError
from .model import Snapshot
from .mutations import MutationResult, add_dependency, remove_dependency

OUTCOME_APPLIED = "applied"
OUTCOME_SKIPPED = "skipped_noop"
OUTCOME_ERROR = "error"


def _parse_endpoint(text: str, *, spec: str) -> Reference:
    try:
        return parse_id(text)
    except MalformedReferenceError as exc:
        raise MalformedRangeError(f"invalid range {spec!r}: {exc}") from exc


def _expand_term(term: str, *, spec: str) -> list[Reference]:
    if "-" not in term:
        return [_parse_endpoint(term, spec=spec)]

    parts = term.split("-")
    if len(parts) != 2 or not parts[0].strip() or not parts[1].strip():
        raise MalformedRangeError(f"invalid range term {term!r} in {spec!r}")
    start = _parse_endpoint(parts[0], spec=spec)
    end_text = parts[1].strip()

    if isinstance(start, SubtaskRef) and "." not in end_text:
        # "2.1-4" is shorthand for "2.1-2.4"
        end: Reference = SubtaskRef(
            start.parent_id, _parse_endpoint(end_text, spec=spec).task_id
        )
    else:
        end = _parse_endpoint(end_text, spec=spec)

    if isinstance(start, TaskRef) and isinstance(end, TaskRef):
        if end.task_id < start.task_id:
            raise MalformedRangeError(f"descending range {term!r} in {spec!r}")
        return [TaskRef(n) for n in range(start.task_id, end.task_id + 1)]

    if isinstance(start, SubtaskRef) and isinstance(end, SubtaskRef):
        if start.parent_id != end.parent_id:
            raise MalformedRangeError(
                f"subtask range {term!r} must stay within one parent"
            )
        if end.subtask_id < start.subtask_id:
            raise MalformedRangeError(f"descending range {term!r} in {spec!r}")
        return [
            SubtaskRef(start.parent_id, n)
            for n in range(start.subtask_id, end.subtask_id + 1)
        ]

    raise MalformedRangeError(
        f"range {term!r} mixes task and subtask ids in {spec!r}"
    )


def parse_range(spec: str) -> list[Reference]:
    """Expand ``term (',' term)*`` into an ordered, de-duplicated id list."""
    if not isinstance(spec, str) or not spec.strip():
        raise MalformedRangeError("range spec cannot be empty")

    out: list[Reference] = []
    seen: set[str] = set()
    for raw_term in spec.split(","):
        term = raw_term.strip()
        if not term:
            raise MalformedRangeError(f"empty term in range {spec!r}")
        for ref in _expand_term(term, spec=spec):
            if ref.canonical in seen:
                continue
            seen.add(ref.canonical)
            out.append(ref)
    return out


@dataclass(frozen=True)
class BulkOperation:
    task: Reference
    dependency: Reference
    outcome: str
    message: str = ""
    error_code: str | None = None
    persisted: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "task": self.task.canonical,
            "dependency": self.dependency.canonical,
            "outcome": self.outcome,
            "message": self.message,
            "error_code": self.error_code,
            "persisted": self.persisted,
        }


@dataclass(frozen=True)
class BulkReport:
    action: str
    dry_run: bool
    operations: list[BulkOperation] = field(default_factory=list)
    # Final dependency list per changed owner, keyed by canonical id.
    updates: dict[str, list[Reference]] = field(default_factory=dict)

    @property
    def summary(self) -> dict[str, int]:
        return {
            "valid_operations": sum(
                1 for op in self.operations if op.outcome == OUTCOME_APPLIED
            ),
            "operations_performed": sum(1 for op in self.operations if op.persisted),
            "errors": sum(1 for op in self.operations if op.outcome == OUTCOME_ERROR),
            "skipped": sum(
                1 for op in self.operations if op.outcome == OUTCOME_SKIPPED
            ),
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "action": self.action,
            "dry_run": self.dry_run,
            "summary": self.summary,
            "operations": [op.to_dict() for op in self.operations],
        }


_Mutation = Callable[[Snapshot, Reference, Reference], MutationResult]


def _bulk(
    snapshot: Snapshot,
    task_spec: str,
    dependency_spec: str,
    *,
    action: str,
    mutate: _Mutation,
    dry_run: bool,
) -> BulkReport:
    task_ids = parse_range(task_spec)
    dependency_ids = parse_range(dependency_spec)

    # Later pairs must see edges accepted by earlier ones.
    working = snapshot.copy()
    operations: list[BulkOperation] = []
    updates: dict[str, list[Reference]] = {}

    for task in task_ids:
        for dependency in dependency_ids:
            try:
                result = mutate(working, task, dependency)
            except DependencyError as exc:
                operations.append(
                    BulkOperation(
                        task=task,
                        dependency=dependency,
                        outcome=OUTCOME_ERROR,
                        message=exc.message,
                        error_code=exc.code,
                    )
                )
                continue

            if not result.changed:
                operations.append(
                    BulkOperation(
                        task=task,
                        dependency=dependency,
                        outcome=OUTCOME_SKIPPED,
                        message=result.note or "",
                    )
                )
                continue

            working.set_dependencies(task, result.dependencies)
            updates[task.canonical] = list(result.dependencies)
            operations.append(
                BulkOperation(task=task, dependency=dependency, outcome=OUTCOME_APPLIED)
            )

    return BulkReport(
        action=action,
        dry_run=dry_run,
        operations=operations,
        updates={} if dry_run else updates,
    )


def bulk_add(
    snapshot: Snapshot,
    task_spec: str,
    dependency_spec: str,
    *,
    dry_run: bool = False,
) -> BulkReport:
    """Add every id in ``dependency_spec`` to every task in ``task_spec``.

    Raises MalformedRangeError only for unparseable specs; per-pair failures
    are recorded on the report.
    """
    return _bulk(
        snapshot,
        task_spec,
        dependency_spec,
        action="add",
        mutate=add_dependency,
        dry_run=dry_run,
    )


def bulk_remove(
    snapshot: Snapshot,
    task_spec: str,
    dependency_spec: str,
    *,
    dry_run: bool = False,
) -> BulkReport:
    return _bulk(
        snapshot,
        task_spec,
        dependency_spec,
        action="remove",
        mutate=remove_dependency,
        dry_run=dry_run,
    )
