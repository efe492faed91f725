"""Fetch → compute → persist, on top of a task store."""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Any

from .addressing import Reference, SubtaskRef, parse_id
from .errors import UnsupportedError
from .fixer import FixResult, fix_dependencies
from .graph import ValidationReport, describe, validate_dependencies
from .model import Item
from .mutations import MutationResult, add_dependency, remove_dependency
from .ranges import OUTCOME_APPLIED, BulkReport, bulk_add, bulk_remove
from .scheduler import find_next
from .store import TaskStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PersistOutcome:
    persisted: bool
    warning: str | None = None


@dataclass(frozen=True)
class FixOutcome:
    result: FixResult
    persisted: bool
    warning: str | None = None

    def to_dict(self) -> dict[str, Any]:
        payload = self.result.to_dict()
        payload["persisted"] = self.persisted
        payload["warning"] = self.warning
        return payload


@dataclass(frozen=True)
class MutationOutcome:
    result: MutationResult
    persisted: bool
    warning: str | None = None

    def to_dict(self) -> dict[str, Any]:
        payload = self.result.to_dict()
        payload["persisted"] = self.persisted
        payload["warning"] = self.warning
        return payload


@dataclass
class DependencyService:
    store: TaskStore

    def _regenerate(self) -> None:
        try:
            self.store.regenerate_derived_artifacts()
        except Exception as exc:
            logger.warning("failed to regenerate task files: %s", exc)

    def _persist_one(
        self, ref: Reference, dependencies: list[Reference]
    ) -> PersistOutcome:
        store_name = type(self.store).__name__
        if isinstance(ref, SubtaskRef) and not self.store.supports_subtask_updates:
            warning = f"{store_name} cannot update subtasks; {ref.canonical} not saved"
            logger.warning(warning)
            return PersistOutcome(False, warning)
        try:
            self.store.apply_partial_update(ref, {"dependencies": dependencies})
        except UnsupportedError as exc:
            logger.warning("skipping save of %s: %s", ref.canonical, exc)
            return PersistOutcome(False, str(exc))
        return PersistOutcome(True)

    def validate(self) -> ValidationReport:
        snapshot = self.store.fetch_all()
        logger.info(
            "analyzing dependencies for %d tasks and %d subtasks",
            snapshot.task_count(),
            snapshot.subtask_count(),
        )
        report = validate_dependencies(snapshot)
        if report.valid:
            logger.info("no invalid dependencies found")
        else:
            logger.warning("found %d dependency issues", len(report.issues))
        return report

    def _mutate(self, result: MutationResult) -> MutationOutcome:
        if not result.changed:
            logger.info(
                "%s: no change (%s)", describe(result.owner), result.note or "no-op"
            )
            return MutationOutcome(result, persisted=False)
        outcome = self._persist_one(result.owner, result.dependencies)
        if outcome.persisted:
            self._regenerate()
        return MutationOutcome(result, outcome.persisted, outcome.warning)

    def add(
        self, task: Reference | str | int, dependency: Reference | str | int
    ) -> MutationOutcome:
        snapshot = self.store.fetch_all()
        result = add_dependency(snapshot, task, dependency)
        if result.changed:
            logger.info(
                "adding dependency %s to %s",
                result.target.canonical,
                describe(result.owner),
            )
        return self._mutate(result)

    def remove(
        self, task: Reference | str | int, dependency: Reference | str | int
    ) -> MutationOutcome:
        snapshot = self.store.fetch_all()
        result = remove_dependency(snapshot, task, dependency)
        if result.changed:
            logger.info(
                "removing dependency %s from %s",
                result.target.canonical,
                describe(result.owner),
            )
        return self._mutate(result)

    def _persist_bulk(self, report: BulkReport) -> BulkReport:
        if report.dry_run or not report.updates:
            return report
        saved: set[str] = set()
        for owner_id, dependencies in report.updates.items():
            if self._persist_one(parse_id(owner_id), dependencies).persisted:
                saved.add(owner_id)
        if saved:
            self._regenerate()
        return replace(
            report,
            operations=[
                replace(op, persisted=True)
                if op.outcome == OUTCOME_APPLIED and op.task.canonical in saved
                else op
                for op in report.operations
            ],
        )

    def add_range(
        self, task_spec: str, dependency_spec: str, *, dry_run: bool = False
    ) -> BulkReport:
        snapshot = self.store.fetch_all()
        report = bulk_add(snapshot, task_spec, dependency_spec, dry_run=dry_run)
        return self._persist_bulk(report)

    def remove_range(
        self, task_spec: str, dependency_spec: str, *, dry_run: bool = False
    ) -> BulkReport:
        snapshot = self.store.fetch_all()
        report = bulk_remove(snapshot, task_spec, dependency_spec, dry_run=dry_run)
        return self._persist_bulk(report)

    def fix(self) -> FixOutcome:
        snapshot = self.store.fetch_all()
        result = fix_dependencies(snapshot)
        if not result.changed:
            logger.info("no changes needed to fix dependencies")
            return FixOutcome(result, persisted=False)

        store_name = type(self.store).__name__
        refs = result.change_refs()
        try:
            if len(refs) == 1:
                ref = refs[0]
                outcome = self._persist_one(ref, result.changes[ref.canonical])
                if not outcome.persisted:
                    return FixOutcome(result, False, outcome.warning)
            else:
                if not self.store.supports_bulk_rewrite:
                    warning = (
                        "dependency issues detected, but automatic saving of fixes "
                        f"is not supported by {store_name}"
                    )
                    logger.warning(warning)
                    return FixOutcome(result, False, warning)
                self.store.bulk_rewrite(result.snapshot)
        except UnsupportedError as exc:
            logger.warning("fixes not saved: %s", exc)
            return FixOutcome(result, False, str(exc))

        logger.info("fixed %d dependency issues", result.stats.total)
        self._regenerate()
        return FixOutcome(result, persisted=True)

    def next(self) -> Item | None:
        return find_next(self.store.fetch_all())
