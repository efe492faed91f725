from __future__ import annotations

import logging
from typing import Any

import pytest

from taskgraph.errors import CircularDependencyError, MalformedRangeError
from taskgraph.service import DependencyService
from taskgraph.store import MemoryTaskStore


def _service(tasks: list[dict[str, Any]], **flags: bool) -> DependencyService:
    return DependencyService(MemoryTaskStore({"tasks": tasks}, **flags))


def _deps(service: DependencyService, index: int, sub: int | None = None) -> list[Any]:
    store = service.store
    assert isinstance(store, MemoryTaskStore)
    task = store.data["tasks"][index]
    if sub is None:
        return task.get("dependencies", [])
    return task["subtasks"][sub].get("dependencies", [])


class _BrokenExportsStore(MemoryTaskStore):
    def regenerate_derived_artifacts(self) -> None:
        raise OSError("disk full")


class TestSingleEdits:
    def test_validate(self, sample_tasks: dict[str, Any]) -> None:
        report = DependencyService(MemoryTaskStore(sample_tasks)).validate()
        assert report.valid is True

    def test_add_persists_and_regenerates(self) -> None:
        service = _service([{"id": 1}, {"id": 2, "dependencies": []}])
        outcome = service.add(2, 1)

        assert outcome.persisted is True
        assert _deps(service, 1) == [1]
        assert service.store.regenerations == 1

    def test_noop_add_does_not_touch_the_store(self) -> None:
        service = _service([{"id": 1}, {"id": 2, "dependencies": [1]}])
        outcome = service.add("2", "1")

        assert outcome.persisted is False
        assert outcome.result.note == "already_exists"
        assert service.store.regenerations == 0

    def test_rejected_add_raises(self) -> None:
        service = _service([{"id": 1, "dependencies": [2]}, {"id": 2}])
        with pytest.raises(CircularDependencyError):
            service.add(2, 1)
        assert _deps(service, 1) == []

    def test_remove(self) -> None:
        service = _service([{"id": 1}, {"id": 2, "dependencies": [1]}])
        outcome = service.remove(2, 1)
        assert outcome.persisted is True
        assert _deps(service, 1) == []

    def test_subtask_edit_is_skipped_when_unsupported(self) -> None:
        service = _service(
            [{"id": 1, "subtasks": [{"id": 1}, {"id": 2}]}],
            supports_subtask_updates=False,
        )
        outcome = service.add("1.2", "1.1")

        assert outcome.result.changed is True
        assert outcome.persisted is False
        assert outcome.warning is not None
        assert _deps(service, 0, 1) == []
        assert service.store.regenerations == 0

    def test_regeneration_failures_are_logged(
        self, caplog: pytest.LogCaptureFixture
    ) -> None:
        service = DependencyService(_BrokenExportsStore([{"id": 1}, {"id": 2}]))
        with caplog.at_level(logging.WARNING, logger="taskgraph"):
            outcome = service.add(2, 1)

        assert outcome.persisted is True
        assert "disk full" in caplog.text


class TestRanges:
    def test_missing_target_performs_nothing(self) -> None:
        service = _service([{"id": 1}, {"id": 2}])
        report = service.add_range("1,2", "9")

        assert report.summary["errors"] == 2
        assert report.summary["operations_performed"] == 0
        assert service.store.regenerations == 0

    def test_applied_pairs_are_persisted_once_per_owner(self) -> None:
        service = _service([{"id": 1}, {"id": 2}, {"id": 3}, {"id": 4}])
        report = service.add_range("3-4", "1-2")

        assert report.summary["valid_operations"] == 4
        assert report.summary["operations_performed"] == 4
        assert _deps(service, 2) == [1, 2]
        assert _deps(service, 3) == [1, 2]
        assert service.store.regenerations == 1

    def test_dry_run_saves_nothing(self) -> None:
        service = _service([{"id": 1}, {"id": 2}])
        report = service.add_range("2", "1", dry_run=True)

        assert report.summary["valid_operations"] == 1
        assert report.summary["operations_performed"] == 0
        assert _deps(service, 1) == []

    def test_remove_range(self) -> None:
        service = _service([{"id": 1}, {"id": 2}, {"id": 3, "dependencies": [1, 2]}])
        report = service.remove_range("3", "1-2")
        assert report.summary["operations_performed"] == 2
        assert _deps(service, 2) == []

    def test_unsaved_subtask_pairs_are_not_counted(self) -> None:
        service = _service(
            [{"id": 1}, {"id": 2, "subtasks": [{"id": 1}]}, {"id": 3}],
            supports_subtask_updates=False,
        )
        report = service.add_range("2.1,3", "1")

        assert report.summary["valid_operations"] == 2
        assert report.summary["operations_performed"] == 1
        assert _deps(service, 2) == [1]

    def test_malformed_range(self) -> None:
        with pytest.raises(MalformedRangeError):
            _service([{"id": 1}]).add_range("1", "")


class TestFix:
    def test_nothing_to_fix(self, sample_tasks: dict[str, Any]) -> None:
        store = MemoryTaskStore(sample_tasks)
        outcome = DependencyService(store).fix()
        assert outcome.persisted is False
        assert store.regenerations == 0

    def test_single_change_uses_a_partial_update(self) -> None:
        service = _service(
            [{"id": 1}, {"id": 2, "dependencies": [1, 2]}],
            supports_bulk_rewrite=False,
        )
        outcome = service.fix()

        assert outcome.persisted is True
        assert _deps(service, 1) == [1]

    def test_many_changes_use_a_bulk_rewrite(self) -> None:
        service = _service(
            [{"id": 1, "dependencies": [9]}, {"id": 2, "dependencies": [2]}]
        )
        outcome = service.fix()

        assert outcome.persisted is True
        assert _deps(service, 0) == []
        assert _deps(service, 1) == []
        assert service.store.regenerations == 1

    def test_many_changes_without_bulk_rewrite_are_not_saved(self) -> None:
        service = _service(
            [{"id": 1, "dependencies": [9]}, {"id": 2, "dependencies": [2]}],
            supports_bulk_rewrite=False,
        )
        outcome = service.fix()

        assert outcome.result.changed is True
        assert outcome.persisted is False
        assert "not supported" in (outcome.warning or "")
        assert _deps(service, 0) == [9]

    def test_payload(self) -> None:
        outcome = _service([{"id": 5, "dependencies": [5]}]).fix()
        payload = outcome.to_dict()
        assert payload["persisted"] is True
        assert payload["changes"] == {"5": []}
        assert payload["stats"]["self_removed"] == 1


def test_next(sample_tasks: dict[str, Any]) -> None:
    item = DependencyService(MemoryTaskStore(sample_tasks)).next()
    assert item is not None
    assert item.id == 2
