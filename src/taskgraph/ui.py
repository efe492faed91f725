from __future__ import annotations

import argparse
import logging
import os
import sys
from collections.abc import Mapping, Sequence
from typing import Literal

from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

OUTPUT_CHOICES = ("auto", "plain", "rich")
OUTPUT_ENV_VAR = "TASKGRAPH_OUTPUT"
OutputMode = Literal["plain", "rich"]


def add_output_mode_argument(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--output",
        choices=OUTPUT_CHOICES,
        help=(
            "Output mode: auto (default), plain, or rich. "
            f"Falls back to ${OUTPUT_ENV_VAR}."
        ),
    )


def _output_choice(raw: str | None, *, source: str) -> str | None:
    value = (raw or "").strip().lower()
    if not value:
        return None
    if value not in OUTPUT_CHOICES:
        expected = ", ".join(OUTPUT_CHOICES)
        raise ValueError(f"invalid {source} value {raw!r}; expected one of: {expected}")
    return value


def resolve_output_mode(
    requested: str | None = None,
    *,
    env: Mapping[str, str] | None = None,
    configured: str | None = None,
    is_tty: bool | None = None,
) -> OutputMode:
    """Pick plain or rich output: flag, then env var, then config, then tty."""
    environ = os.environ if env is None else env
    selected = (
        _output_choice(requested, source="--output")
        or _output_choice(environ.get(OUTPUT_ENV_VAR), source=OUTPUT_ENV_VAR)
        or _output_choice(configured, source="[output].mode")
        or "auto"
    )
    if selected != "auto":
        return "rich" if selected == "rich" else "plain"
    if is_tty is None:
        isatty = getattr(sys.stdout, "isatty", None)
        is_tty = bool(isatty()) if callable(isatty) else False
    return "rich" if is_tty else "plain"


def _rich_console(*, stderr: bool = False) -> Console:
    return Console(
        file=sys.stderr if stderr else sys.stdout,
        force_terminal=True,
        highlight=False,
    )


def configure_logging(level: str | None, mode: OutputMode) -> None:
    """Route the package loggers to stderr.

    Rich mode goes through RichHandler; plain mode keeps one line per record.
    """
    handler: logging.Handler
    if mode == "rich":
        handler = RichHandler(
            console=_rich_console(stderr=True),
            show_time=False,
            show_path=False,
        )
        handler.setFormatter(logging.Formatter("%(message)s"))
    else:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))

    logger = logging.getLogger("taskgraph")
    for existing in list(logger.handlers):
        logger.removeHandler(existing)
    logger.addHandler(handler)
    logger.setLevel((level or "warning").upper())
    logger.propagate = False


def _cells(row: Sequence[object]) -> list[str]:
    return ["" if value is None else str(value) for value in row]


def print_message(mode: OutputMode, body: str, *, title: str) -> None:
    if mode == "rich":
        _rich_console().print(Panel(body, title=title))
    else:
        print(body)


def print_rows(
    mode: OutputMode,
    *,
    headers: Sequence[str],
    rows: Sequence[Sequence[object]],
    title: str,
    empty: str,
) -> None:
    """Print a titled table; ``empty`` stands in when there are no rows.

    The first two columns (ids and references) never wrap in rich mode.
    """
    if not rows:
        print_message(mode, empty, title=title)
        return
    if mode == "plain":
        print_plain_table(headers, rows)
        return
    table = Table(title=title)
    for idx, header in enumerate(headers):
        table.add_column(header, no_wrap=idx < 2)
    for row in rows:
        table.add_row(*_cells(row))
    _rich_console().print(table)


def print_plain_table(
    headers: Sequence[str],
    rows: Sequence[Sequence[object]],
) -> None:
    values = [_cells(row) for row in rows]
    widths = [len(header) for header in headers]
    for row in values:
        for idx, col in enumerate(row):
            widths[idx] = max(widths[idx], len(col))

    header_line = "  ".join(
        header.ljust(widths[idx]) for idx, header in enumerate(headers)
    )
    print(header_line.rstrip())
    print("  ".join("-" * width for width in widths))
    for row in values:
        print("  ".join(col.ljust(widths[idx]) for idx, col in enumerate(row)).rstrip())
