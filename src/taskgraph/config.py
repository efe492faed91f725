from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import tomllib

from .ui import OUTPUT_CHOICES

CONFIG_RELATIVE_PATH = Path(".taskgraph") / "taskgraph.toml"
LOG_LEVELS = ("debug", "info", "warning", "error")


@dataclass(frozen=True)
class StoreFileConfig:
    path: Path | None = None
    exports_dir: Path | None = None


@dataclass(frozen=True)
class TaskgraphFileConfig:
    repo_root: Path
    path: Path
    store: StoreFileConfig = field(default_factory=StoreFileConfig)
    output: str | None = None
    log_level: str | None = None
    error: str | None = None


class ConfigValidationError(ValueError):
    pass


def _as_str(value: object) -> str | None:
    if not isinstance(value, str):
        return None
    stripped = value.strip()
    if not stripped:
        return None
    return stripped


def _table(raw: dict[str, Any], name: str) -> dict[str, Any]:
    value = raw.get(name)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigValidationError(f"[{name}] must be a table")
    return value


def _optional_path(table: dict[str, Any], key: str, *, section: str) -> Path | None:
    value = table.get(key)
    if value is None:
        return None
    text = _as_str(value)
    if text is None:
        raise ConfigValidationError(f"[{section}].{key} must be a non-empty string")
    return Path(text)


def _optional_choice(
    table: dict[str, Any],
    key: str,
    *,
    section: str,
    choices: tuple[str, ...],
) -> str | None:
    value = table.get(key)
    if value is None:
        return None
    text = _as_str(value)
    lowered = text.lower() if text else None
    if lowered not in choices:
        expected = ", ".join(choices)
        raise ConfigValidationError(
            f"invalid [{section}].{key}: {value!r}; expected one of: {expected}"
        )
    return lowered


def _format_path(path: Path, repo_root: Path) -> str:
    try:
        return str(path.resolve().relative_to(repo_root.resolve()))
    except Exception:
        return str(path)


def load_config(repo_root: Path) -> TaskgraphFileConfig:
    """Read ``.taskgraph/taskgraph.toml`` under ``repo_root``.

    The file is optional; a missing file yields defaults. Problems are
    returned in ``error`` rather than raised.
    """
    path = repo_root / CONFIG_RELATIVE_PATH
    if not path.exists():
        return TaskgraphFileConfig(repo_root=repo_root, path=path)

    try:
        raw = tomllib.loads(path.read_text(encoding="utf-8"))
    except Exception as exc:
        return TaskgraphFileConfig(
            repo_root=repo_root,
            path=path,
            error=f"invalid TOML in {_format_path(path, repo_root)}: {exc}",
        )

    try:
        store = _table(raw, "store")
        output = _table(raw, "output")
        logging_table = _table(raw, "logging")
        return TaskgraphFileConfig(
            repo_root=repo_root,
            path=path,
            store=StoreFileConfig(
                path=_optional_path(store, "path", section="store"),
                exports_dir=_optional_path(store, "exports_dir", section="store"),
            ),
            output=_optional_choice(
                output, "mode", section="output", choices=OUTPUT_CHOICES
            ),
            log_level=_optional_choice(
                logging_table, "level", section="logging", choices=LOG_LEVELS
            ),
        )
    except ConfigValidationError as exc:
        return TaskgraphFileConfig(
            repo_root=repo_root,
            path=path,
            error=f"{_format_path(path, repo_root)}: {exc}",
        )
