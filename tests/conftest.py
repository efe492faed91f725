from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Iterator

import pytest


@pytest.fixture(autouse=True)
def _reset_package_logger() -> Iterator[None]:
    yield
    logger = logging.getLogger("taskgraph")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    logger.setLevel(logging.NOTSET)
    logger.propagate = True


@pytest.fixture
def sample_tasks() -> dict[str, Any]:
    return {
        "meta": {"projectName": "demo"},
        "tasks": [
            {
                "id": 1,
                "title": "Set up repository",
                "status": "done",
                "priority": "high",
                "dependencies": [],
            },
            {
                "id": 2,
                "title": "Design schema",
                "status": "pending",
                "priority": "high",
                "dependencies": [1],
            },
            {
                "id": 3,
                "title": "Build API",
                "status": "pending",
                "dependencies": [2],
                "subtasks": [
                    {
                        "id": 1,
                        "title": "Routes",
                        "status": "pending",
                        "dependencies": [],
                    },
                    {
                        "id": 2,
                        "title": "Handlers",
                        "status": "pending",
                        "dependencies": [1],
                    },
                ],
            },
        ],
    }


@pytest.fixture
def tasks_file(tmp_path: Path, sample_tasks: dict[str, Any]) -> Path:
    path = tmp_path / "tasks" / "tasks.json"
    path.parent.mkdir(parents=True)
    path.write_text(json.dumps(sample_tasks, indent=2), encoding="utf-8")
    return path
