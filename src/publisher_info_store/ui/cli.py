"""Command-line interface router for the publisher info store."""

from __future__ import annotations

import argparse
import json
import os
import sys
import time
from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

from publisher_info_store.config import ConfigLoadError, StoreConfig, load_config
from publisher_info_store.domain.models import ActivityFilter, ExcludeFilter, PublisherMonth
from publisher_info_store.observability.logging import (
    correlation_scope,
    setup_logging,
    shutdown_logging,
)
from publisher_info_store.persistence import (
    ActivityRepo,
    OpenStatus,
    PublisherInfoDB,
    StoreError,
)
from publisher_info_store.persistence.query_builder import ORDER_BY_COLUMNS
from publisher_info_store.ui.render import create_renderer

EXIT_SUCCESS = 0
EXIT_CHECK_FAILED = 1
EXIT_CONFIG_ERROR = 2
EXIT_STORE_ERROR = 3


@dataclass(slots=True, eq=False)
class CLIError(RuntimeError):
    """Typed CLI failure with an explicit process exit code.

    Not frozen: ``contextlib`` rebinds ``__traceback__`` as the error unwinds.
    """

    message: str
    exit_code: int = EXIT_CHECK_FAILED

    def __str__(self) -> str:
        return self.message


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse command router for all supported CLI workflows."""

    parser = argparse.ArgumentParser(
        prog="publisher-store",
        description=(
            "Inspect and maintain a publisher info store.\n\n"
            "Common workflows:\n"
            "  publisher-store status            Show schema version and table counts\n"
            "  publisher-store migrate           Upgrade the store to the current schema\n"
            "  publisher-store activity --json   List activity joined with publishers\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--config",
        dest="config_path",
        default=None,
        help="Path to TOML config (default: ./publisher_store.toml if present).",
    )
    common.add_argument(
        "--db",
        dest="db_path",
        default=None,
        help="Store file path; overrides store.path from config.",
    )
    common.add_argument(
        "--log-dir",
        dest="log_dir",
        default=None,
        help="Directory for JSON-lines logs; overrides logging.log_dir.",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    status_parser = subparsers.add_parser(
        "status", parents=[common], help="Show schema version and diagnostic info"
    )
    _add_json_flag(status_parser)
    status_parser.set_defaults(handler=_cmd_status)

    migrate_parser = subparsers.add_parser(
        "migrate", parents=[common], help="Open the store and run pending migrations"
    )
    _add_json_flag(migrate_parser)
    migrate_parser.set_defaults(handler=_cmd_migrate)

    activity_parser = subparsers.add_parser(
        "activity",
        parents=[common],
        help="List activity rows joined with publisher metadata",
        description=(
            "Examples:\n"
            "  publisher-store activity --month 1 --year 2019\n"
            "  publisher-store activity --min-duration 30 --order-by=-percent --limit 10\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    activity_parser.add_argument("--publisher", default=None, help="Exact publisher id")
    activity_parser.add_argument("--month", type=int, default=int(PublisherMonth.ANY))
    activity_parser.add_argument("--year", type=int, default=0)
    activity_parser.add_argument("--reconcile-stamp", type=int, default=0)
    activity_parser.add_argument("--min-duration", type=int, default=0)
    activity_parser.add_argument(
        "--excluded",
        choices=[item.name.lower() for item in ExcludeFilter],
        default=ExcludeFilter.ALL.name.lower(),
    )
    activity_parser.add_argument(
        "--order-by",
        action="append",
        default=[],
        metavar="COLUMN",
        help=(
            "Sort column, repeatable; prefix with '-' for descending. "
            f"One of: {', '.join(sorted(ORDER_BY_COLUMNS))}"
        ),
    )
    activity_parser.add_argument("--limit", type=int, default=0)
    activity_parser.add_argument("--offset", type=int, default=0)
    _add_json_flag(activity_parser)
    activity_parser.set_defaults(handler=_cmd_activity)

    vacuum_parser = subparsers.add_parser("vacuum", parents=[common], help="Rebuild the store file")
    vacuum_parser.set_defaults(handler=_cmd_vacuum)

    integrity_parser = subparsers.add_parser(
        "integrity", parents=[common], help="Run SQLite integrity_check"
    )
    _add_json_flag(integrity_parser)
    integrity_parser.set_defaults(handler=_cmd_integrity)

    backup_parser = subparsers.add_parser(
        "backup", parents=[common], help="Write a consistent snapshot of the store"
    )
    backup_parser.add_argument("destination", help="Destination file path")
    backup_parser.set_defaults(handler=_cmd_backup)

    return parser


def _add_json_flag(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--json", action="store_true", help="Emit deterministic JSON output")


def run_cli(argv: Sequence[str] | None = None) -> int:
    """Parse argv, route to a command handler, and return process exit code."""

    parser = build_parser()
    namespace = parser.parse_args(list(argv) if argv is not None else None)
    handler = getattr(namespace, "handler", None)
    if not callable(handler):
        parser.print_help(sys.stderr)
        return EXIT_CONFIG_ERROR

    try:
        config = _load_effective_config(namespace)
        with _session_logging(config, command=str(namespace.command)):
            result = handler(namespace, config)
    except CLIError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return exc.exit_code
    return int(result)


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


def _cmd_status(args: argparse.Namespace, config: StoreConfig) -> int:
    with _open_store(config) as db:
        info = db.diagnostic_info()
        report = db.last_migration_report

    payload: dict[str, object] = {
        "command": "status",
        "store": info,
        "migration": None if report is None else report.to_dict(),
    }
    if _flag(args, "json"):
        _emit_json(payload)
        return EXIT_SUCCESS

    renderer = create_renderer()
    renderer.kv("Store", info["path"])
    renderer.kv("Schema version", info.get("schema_version"))
    renderer.kv("Compatible from", info.get("compatible_version"))
    renderer.kv("Journal mode", info.get("journal_mode"))
    tables = info.get("tables")
    if isinstance(tables, Mapping):
        renderer.table(
            ("table", "rows"),
            [(str(name), str(count)) for name, count in sorted(tables.items())],
            title="Tables",
        )
    return EXIT_SUCCESS


def _cmd_migrate(args: argparse.Namespace, config: StoreConfig) -> int:
    with _open_store(config) as db:
        report = db.last_migration_report

    if report is None:
        raise CLIError("store opened without a migration report", exit_code=EXIT_STORE_ERROR)

    if _flag(args, "json"):
        _emit_json({"command": "migrate", "migration": report.to_dict()})
    else:
        renderer = create_renderer()
        renderer.kv("State", report.state.value)
        renderer.kv("From version", report.from_version)
        renderer.kv("Final version", report.final_version)
        for step in report.steps:
            label = f"v{step.from_version} -> v{step.to_version} {step.name}"
            if step.succeeded:
                renderer.ok(label)
            else:
                renderer.fail(f"{label}: {step.error}")
    return EXIT_SUCCESS if report.succeeded else EXIT_CHECK_FAILED


def _cmd_activity(args: argparse.Namespace, config: StoreConfig) -> int:
    activity_filter = _activity_filter_from_args(args)
    with _open_store(config) as db:
        rows = ActivityRepo(db).list(activity_filter)

    if _flag(args, "json"):
        _emit_json({"command": "activity", "rows": [row.to_dict() for row in rows]})
        return EXIT_SUCCESS

    renderer = create_renderer()
    if not rows:
        renderer.text("No activity matched the filter.")
        return EXIT_SUCCESS
    renderer.table(
        ("publisher", "month", "year", "duration", "visits", "percent", "excluded"),
        [
            (
                row.activity.publisher_id,
                str(row.activity.month),
                str(row.activity.year),
                str(row.activity.duration),
                str(row.activity.visits),
                str(row.activity.percent),
                row.publisher.excluded.name.lower(),
            )
            for row in rows
        ],
    )
    return EXIT_SUCCESS


def _cmd_vacuum(args: argparse.Namespace, config: StoreConfig) -> int:
    with _open_store(config) as db:
        db.vacuum()
    create_renderer().ok(f"vacuumed {config.path.as_posix()}")
    return EXIT_SUCCESS


def _cmd_integrity(args: argparse.Namespace, config: StoreConfig) -> int:
    with _open_store(config) as db:
        problems = db.integrity_check()

    if _flag(args, "json"):
        _emit_json({"command": "integrity", "ok": not problems, "errors": list(problems)})
    else:
        renderer = create_renderer()
        if not problems:
            renderer.ok("integrity_check")
        for problem in problems:
            renderer.fail(problem)
    return EXIT_CHECK_FAILED if problems else EXIT_SUCCESS


def _cmd_backup(args: argparse.Namespace, config: StoreConfig) -> int:
    destination = Path(str(args.destination)).expanduser()
    if destination.resolve() == config.path.resolve():
        raise CLIError("backup destination must differ from the store path", EXIT_CONFIG_ERROR)
    with _open_store(config) as db:
        written = db.backup(destination)
    create_renderer().ok(f"backup written to {written.as_posix()}")
    return EXIT_SUCCESS


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _load_effective_config(args: argparse.Namespace) -> StoreConfig:
    overrides: dict[str, object] = {}
    if args.db_path is not None:
        overrides["store.path"] = str(Path(args.db_path).expanduser().resolve())
    if args.log_dir is not None:
        overrides["logging.log_dir"] = str(Path(args.log_dir).expanduser().resolve())
    try:
        return load_config(args.config_path, cli_overrides=overrides)
    except ConfigLoadError as exc:
        raise CLIError(str(exc), exit_code=EXIT_CONFIG_ERROR) from exc


@contextmanager
def _session_logging(config: StoreConfig, *, command: str) -> Iterator[None]:
    session_id = f"{time.strftime('%Y%m%dT%H%M%S', time.gmtime())}-{os.getpid()}"
    handle = setup_logging(config, session_id=session_id)
    try:
        with correlation_scope(command=command):
            yield
    finally:
        shutdown_logging(handle)


@contextmanager
def _open_store(config: StoreConfig) -> Iterator[PublisherInfoDB]:
    db = PublisherInfoDB.from_config(config)
    result = db.open()
    if result.status is OpenStatus.INCOMPATIBLE_TOO_NEW:
        raise CLIError(result.error or "store is too new", exit_code=EXIT_STORE_ERROR)
    if result.status is OpenStatus.FAILED:
        raise CLIError(result.error or "store failed to open", exit_code=EXIT_STORE_ERROR)
    try:
        yield db
    except StoreError as exc:
        raise CLIError(str(exc), exit_code=EXIT_STORE_ERROR) from exc
    finally:
        db.close()


def _activity_filter_from_args(args: argparse.Namespace) -> ActivityFilter:
    order_by: list[tuple[str, bool]] = []
    for raw in args.order_by:
        column = str(raw).strip()
        ascending = not column.startswith("-")
        column = column.lstrip("-+")
        if column not in ORDER_BY_COLUMNS:
            allowed = ", ".join(sorted(ORDER_BY_COLUMNS))
            raise CLIError(
                f"unsupported --order-by column {column!r}; expected one of: {allowed}",
                exit_code=EXIT_CONFIG_ERROR,
            )
        order_by.append((column, ascending))

    try:
        return ActivityFilter(
            publisher_id=args.publisher,
            month=args.month,
            year=args.year,
            reconcile_stamp=args.reconcile_stamp,
            min_duration=args.min_duration,
            excluded=ExcludeFilter[str(args.excluded).upper()],
            order_by=tuple(order_by),
            limit=args.limit,
            offset=args.offset,
        )
    except ValueError as exc:
        raise CLIError(str(exc), exit_code=EXIT_CONFIG_ERROR) from exc


def _flag(args: argparse.Namespace, name: str) -> bool:
    return bool(getattr(args, name, False))


def _emit_json(payload: Mapping[str, object]) -> None:
    """Emit deterministic machine-readable JSON output."""

    print(json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False))


__all__ = ["CLIError", "build_parser", "run_cli"]
