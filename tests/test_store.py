from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pytest

from taskgraph.addressing import SubtaskRef, TaskRef
from taskgraph.errors import NotFoundError, SnapshotError, UnsupportedError
from taskgraph.fixer import fix_dependencies
from taskgraph.store import JsonTaskStore, MemoryTaskStore, render_task_file


def _read(path: Path) -> dict[str, Any]:
    return json.loads(path.read_text(encoding="utf-8"))


class TestJsonTaskStore:
    def test_from_workdir_defaults_to_tasks_json(self, tmp_path: Path) -> None:
        store = JsonTaskStore.from_workdir(tmp_path)
        assert store.path == tmp_path / "tasks" / "tasks.json"
        assert store.exports_dir is None

    def test_from_workdir_resolves_relative_paths(self, tmp_path: Path) -> None:
        store = JsonTaskStore.from_workdir(
            tmp_path, path=Path("data/t.json"), exports_dir=Path("out")
        )
        assert store.path == tmp_path / "data" / "t.json"
        assert store.exports_dir == tmp_path / "out"

    def test_missing_file_is_empty(self, tmp_path: Path) -> None:
        snapshot = JsonTaskStore.from_workdir(tmp_path).fetch_all()
        assert snapshot.task_count() == 0

    def test_invalid_json(self, tmp_path: Path) -> None:
        path = tmp_path / "tasks.json"
        path.write_text("{not json", encoding="utf-8")
        with pytest.raises(SnapshotError, match="invalid JSON"):
            JsonTaskStore(path).fetch_all()

    def test_partial_update_keeps_everything_else(self, tasks_file: Path) -> None:
        store = JsonTaskStore(tasks_file)
        store.apply_partial_update(TaskRef(3), {"dependencies": [TaskRef(1), TaskRef(2)]})

        data = _read(tasks_file)
        assert data["meta"] == {"projectName": "demo"}
        assert data["tasks"][2]["dependencies"] == [1, 2]
        assert data["tasks"][2]["title"] == "Build API"
        assert not tasks_file.with_suffix(".tmp").exists()

    def test_failed_write_leaves_file_and_no_temp(
        self, tasks_file: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        before = tasks_file.read_text(encoding="utf-8")

        def broken_dump(obj: Any, fp: Any, **kwargs: Any) -> None:
            fp.write("{")
            raise TypeError("not serializable")

        monkeypatch.setattr("taskgraph.store.json.dump", broken_dump)
        with pytest.raises(TypeError):
            JsonTaskStore(tasks_file).apply_partial_update(
                TaskRef(3), {"dependencies": []}
            )

        assert tasks_file.read_text(encoding="utf-8") == before
        assert not tasks_file.with_suffix(".tmp").exists()

    def test_subtask_update_round_trips_task_references(self, tasks_file: Path) -> None:
        store = JsonTaskStore(tasks_file)
        store.apply_partial_update(
            SubtaskRef(3, 2), {"dependencies": [TaskRef(1), SubtaskRef(3, 1)]}
        )

        data = _read(tasks_file)
        assert data["tasks"][2]["subtasks"][1]["dependencies"] == ["1", "3.1"]
        snapshot = store.fetch_all()
        assert snapshot.dependencies_of(SubtaskRef(3, 2)) == [
            TaskRef(1),
            SubtaskRef(3, 1),
        ]

    def test_partial_update_rejects_other_fields(self, tasks_file: Path) -> None:
        with pytest.raises(ValueError, match="status"):
            JsonTaskStore(tasks_file).apply_partial_update(
                TaskRef(1), {"status": "done"}
            )

    def test_partial_update_of_unknown_owner(self, tasks_file: Path) -> None:
        with pytest.raises(NotFoundError):
            JsonTaskStore(tasks_file).apply_partial_update(
                SubtaskRef(3, 9), {"dependencies": []}
            )

    def test_bulk_rewrite(self, tmp_path: Path) -> None:
        path = tmp_path / "tasks.json"
        path.write_text(
            json.dumps(
                {
                    "tasks": [
                        {"id": 1, "dependencies": [1, 9]},
                        {"id": 2, "subtasks": [{"id": 1, "dependencies": [1]}]},
                    ]
                }
            ),
            encoding="utf-8",
        )
        store = JsonTaskStore(path)
        result = fix_dependencies(store.fetch_all())
        store.bulk_rewrite(result.snapshot)

        data = _read(path)
        assert data["tasks"][0]["dependencies"] == []
        assert data["tasks"][1]["subtasks"][0]["dependencies"] == []

    def test_regenerate_writes_one_file_per_task(
        self, tasks_file: Path, tmp_path: Path
    ) -> None:
        exports = tmp_path / "exports"
        JsonTaskStore(tasks_file, exports_dir=exports).regenerate_derived_artifacts()

        assert sorted(p.name for p in exports.iterdir()) == [
            "task_001.txt",
            "task_002.txt",
            "task_003.txt",
        ]
        text = (exports / "task_003.txt").read_text(encoding="utf-8")
        assert "# Task ID: 3" in text
        assert "# Dependencies: 2" in text
        assert "## 2. Handlers [pending]" in text
        assert "### Dependencies: 3.1" in text

    def test_regenerate_without_exports_dir_is_a_noop(self, tasks_file: Path) -> None:
        JsonTaskStore(tasks_file).regenerate_derived_artifacts()
        assert sorted(p.name for p in tasks_file.parent.iterdir()) == ["tasks.json"]


def test_render_task_file_without_subtasks(sample_tasks: dict[str, Any]) -> None:
    snapshot = MemoryTaskStore(sample_tasks).fetch_all()
    item = snapshot.item(1)
    assert item is not None

    text = render_task_file(item)
    assert text.startswith("# Task ID: 1\n# Title: Set up repository\n")
    assert "# Dependencies: None" in text
    assert "# Priority: high" in text
    assert "# Subtasks:" not in text


class TestMemoryTaskStore:
    def test_fetch_returns_independent_snapshots(
        self, sample_tasks: dict[str, Any]
    ) -> None:
        store = MemoryTaskStore(sample_tasks)
        first = store.fetch_all()
        first.set_dependencies(TaskRef(2), [])
        assert store.fetch_all().dependencies_of(TaskRef(2)) == [TaskRef(1)]

    def test_subtask_updates_can_be_unsupported(
        self, sample_tasks: dict[str, Any]
    ) -> None:
        store = MemoryTaskStore(sample_tasks, supports_subtask_updates=False)
        with pytest.raises(UnsupportedError):
            store.apply_partial_update(SubtaskRef(3, 2), {"dependencies": []})
        store.apply_partial_update(TaskRef(3), {"dependencies": []})
        assert store.data["tasks"][2]["dependencies"] == []

    def test_bulk_rewrite_can_be_unsupported(
        self, sample_tasks: dict[str, Any]
    ) -> None:
        store = MemoryTaskStore(sample_tasks, supports_bulk_rewrite=False)
        with pytest.raises(UnsupportedError):
            store.bulk_rewrite(store.fetch_all())
