from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any

from . import __version__
from .config import LOG_LEVELS, TaskgraphFileConfig, load_config
from .errors import DependencyError
from .graph import ValidationReport, describe
from .model import DEFAULT_PRIORITY, Item
from .mutations import NOTE_ALREADY_EXISTS, NOTE_NO_DEPENDENCIES, NOTE_NOT_PRESENT
from .ranges import BulkReport
from .service import DependencyService, FixOutcome, MutationOutcome
from .store import JsonTaskStore
from .ui import (
    OutputMode,
    add_output_mode_argument,
    configure_logging,
    print_message,
    print_rows,
    resolve_output_mode,
)

_ISSUE_HEADERS = ("TYPE", "OWNER", "DEPENDENCY", "MESSAGE")
_BULK_HEADERS = ("TASK", "DEPENDENCY", "OUTCOME", "SAVED", "MESSAGE")
_NEXT_HEADERS = ("ID", "STATUS", "PRIORITY", "DEPENDENCIES", "TITLE")
_FIX_LABELS = (
    ("duplicates_removed", "Duplicate dependencies removed"),
    ("missing_removed", "Missing dependencies removed"),
    ("self_removed", "Self dependencies removed"),
    ("circular_removed", "Circular dependencies broken"),
    ("independent_subtasks_restored", "Independent subtasks restored"),
    ("tasks_fixed", "Tasks fixed"),
    ("subtasks_fixed", "Subtasks fixed"),
)


def _emit_json(payload: Any) -> None:
    print(json.dumps(payload, ensure_ascii=False, indent=2))


def _print_warning(warning: str | None) -> None:
    if warning:
        print(f"warning: {warning}", file=sys.stderr)


def _print_validation(report: ValidationReport, output_mode: OutputMode) -> None:
    summary = (
        f"tasks: {report.task_count}  subtasks: {report.subtask_count}  "
        f"dependencies: {report.dependency_count}"
    )
    print_message(output_mode, summary, title="Dependency Validation")
    print_rows(
        output_mode,
        headers=_ISSUE_HEADERS,
        rows=[
            (
                issue.type,
                issue.owner.canonical,
                issue.dependency.canonical if issue.dependency else "",
                issue.message,
            )
            for issue in report.issues
        ],
        title="Dependency Issues",
        empty="All dependencies are valid",
    )


def _mutation_message(outcome: MutationOutcome, *, action: str) -> str:
    result = outcome.result
    owner = describe(result.owner)
    target = result.target.canonical
    if result.note == NOTE_ALREADY_EXISTS:
        return f"{owner.capitalize()} already depends on {target}"
    if result.note == NOTE_NO_DEPENDENCIES:
        return f"{owner.capitalize()} has no dependencies"
    if result.note == NOTE_NOT_PRESENT:
        return f"{owner.capitalize()} does not depend on {target}"
    deps = ", ".join(ref.canonical for ref in result.dependencies) or "none"
    verb = "Added" if action == "add" else "Removed"
    preposition = "to" if action == "add" else "from"
    suffix = "" if outcome.persisted else " (not saved)"
    return (
        f"{verb} dependency {target} {preposition} {owner}{suffix}\n"
        f"dependencies: {deps}"
    )


def _print_bulk(report: BulkReport, output_mode: OutputMode) -> None:
    title = f"Bulk {report.action}" + (" (dry run)" if report.dry_run else "")
    print_rows(
        output_mode,
        headers=_BULK_HEADERS,
        rows=[
            (
                op.task.canonical,
                op.dependency.canonical,
                op.outcome,
                "yes" if op.persisted else "no",
                op.message,
            )
            for op in report.operations
        ],
        title=title,
        empty="(no operations)",
    )
    summary = report.summary
    print_message(
        output_mode,
        (
            f"valid: {summary['valid_operations']}  "
            f"performed: {summary['operations_performed']}  "
            f"errors: {summary['errors']}  "
            f"skipped: {summary['skipped']}"
        ),
        title="Summary",
    )


def _print_fix(outcome: FixOutcome, output_mode: OutputMode) -> None:
    result = outcome.result
    if not result.changed:
        print_message(
            output_mode,
            "No dependency issues found; nothing to fix",
            title="Fix Dependencies",
        )
    else:
        stats = result.stats.to_dict()
        print_rows(
            output_mode,
            headers=("FIX", "COUNT"),
            rows=[(label, stats[key]) for key, label in _FIX_LABELS],
            title="Fix Dependencies",
            empty="",
        )
        print_rows(
            output_mode,
            headers=("OWNER", "DEPENDENCIES"),
            rows=[
                (owner, ", ".join(ref.canonical for ref in refs) or "none")
                for owner, refs in result.changes.items()
            ],
            title="Updated Dependencies",
            empty="",
        )
        if not outcome.persisted:
            print_message(output_mode, "Fixes were not saved", title="Not Saved")
    for ref in result.unresolved_cycles:
        print(
            f"warning: {describe(ref)} is part of a circular dependency chain "
            "and was left unchanged",
            file=sys.stderr,
        )


def _next_row(item: Item) -> tuple[object, ...]:
    return (
        item.id,
        item.status,
        item.priority or DEFAULT_PRIORITY,
        ", ".join(ref.canonical for ref in item.dependencies) or "none",
        item.extra.get("title", ""),
    )


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="taskgraph",
        description="Validate, repair and query task dependencies.",
    )
    p.add_argument("--version", action="version", version=f"taskgraph {__version__}")
    p.add_argument(
        "-f",
        "--file",
        help="Path to tasks.json (default: tasks/tasks.json or [store].path)",
    )
    p.add_argument(
        "--log-level",
        choices=LOG_LEVELS,
        help="Log level for progress messages on stderr (default: warning)",
    )
    add_output_mode_argument(p)
    sub = p.add_subparsers(dest="command", required=True, metavar="command")

    validate = sub.add_parser("validate", help="Report invalid dependencies")
    validate.add_argument("--json", action="store_true", help="Output JSON")

    for name, help_text in (
        ("add", "Add a dependency to a task or subtask"),
        ("remove", "Remove a dependency from a task or subtask"),
    ):
        cmd = sub.add_parser(name, help=help_text)
        cmd.add_argument("id", help="Task id (e.g. 3 or 3.2)")
        cmd.add_argument("depends_on", help="Dependency id (e.g. 2 or 2.1)")
        cmd.add_argument("--json", action="store_true", help="Output JSON")

    for name, help_text in (
        ("add-range", "Add every dependency in a range to every task in a range"),
        ("remove-range", "Remove every dependency in a range from a range of tasks"),
    ):
        cmd = sub.add_parser(name, help=help_text)
        cmd.add_argument("tasks", help="Task range (e.g. 7-10 or 1,3-5 or 2.1-2.4)")
        cmd.add_argument("depends_on", help="Dependency range")
        cmd.add_argument(
            "--dry-run",
            action="store_true",
            help="Report what would change without saving",
        )
        cmd.add_argument("--json", action="store_true", help="Output JSON")

    fix = sub.add_parser("fix", help="Repair invalid dependencies and save them")
    fix.add_argument("--json", action="store_true", help="Output JSON")

    nxt = sub.add_parser("next", help="Show the next task to work on")
    nxt.add_argument("--json", action="store_true", help="Output JSON")

    return p


def _build_service(
    args: argparse.Namespace, config: TaskgraphFileConfig
) -> DependencyService:
    path = Path(args.file) if args.file else config.store.path
    store = JsonTaskStore.from_workdir(
        config.repo_root,
        path=path,
        exports_dir=config.store.exports_dir,
    )
    return DependencyService(store)


def main(argv: list[str] | None = None) -> None:
    raw_argv = list(argv) if argv is not None else sys.argv[1:]
    args = _build_parser().parse_args(raw_argv)

    config = load_config(Path.cwd())
    if config.error:
        print(f"error: {config.error}", file=sys.stderr)
        raise SystemExit(2)

    try:
        output_mode = resolve_output_mode(args.output, configured=config.output)
    except ValueError as exc:
        print(f"error: {exc}", file=sys.stderr)
        raise SystemExit(2) from exc

    configure_logging(args.log_level or config.log_level, output_mode)
    service = _build_service(args, config)

    try:
        if args.command == "validate":
            report = service.validate()
            if args.json:
                _emit_json(report.to_dict())
            else:
                _print_validation(report, output_mode)
            if not report.valid:
                raise SystemExit(1)
            return

        if args.command in {"add", "remove"}:
            if args.command == "add":
                outcome = service.add(args.id, args.depends_on)
            else:
                outcome = service.remove(args.id, args.depends_on)
            if args.json:
                _emit_json(outcome.to_dict())
            else:
                print_message(
                    output_mode,
                    _mutation_message(outcome, action=args.command),
                    title="Dependency",
                )
                _print_warning(outcome.warning)
            return

        if args.command in {"add-range", "remove-range"}:
            if args.command == "add-range":
                report = service.add_range(
                    args.tasks, args.depends_on, dry_run=args.dry_run
                )
            else:
                report = service.remove_range(
                    args.tasks, args.depends_on, dry_run=args.dry_run
                )
            if args.json:
                _emit_json(report.to_dict())
            else:
                _print_bulk(report, output_mode)
            return

        if args.command == "fix":
            outcome = service.fix()
            if args.json:
                _emit_json(outcome.to_dict())
            else:
                _print_fix(outcome, output_mode)
                _print_warning(outcome.warning)
            return

        if args.command == "next":
            item = service.next()
            if args.json:
                _emit_json(item.to_dict() if item else None)
            else:
                print_rows(
                    output_mode,
                    headers=_NEXT_HEADERS,
                    rows=[_next_row(item)] if item else [],
                    title="Next Task",
                    empty="(no eligible tasks)",
                )
            return
    except DependencyError as exc:
        print(f"error: {exc}", file=sys.stderr)
        raise SystemExit(1) from exc


if __name__ == "__main__":
    main()
