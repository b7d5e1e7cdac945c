"""
publisher-info-store — store lifecycle, transactions, and diagnostics

Purpose
- Open/close the backing SQLite file and run schema setup plus migrations on open.
- Provide transaction, statement, and busy-retry helpers to the repositories.
- Memory-pressure response, vacuuming, integrity checks, and backups.

Functional requirements
- ``open()`` runs schema creation, the version check, and migrations in one transaction.
- A store whose compatibility floor exceeds this build's version is never mutated.
- Operations fail fast when the store is not open; nothing initializes lazily.

Non-functional requirements
- Single-writer, sequence-confined use; no internal locking.
"""

from __future__ import annotations

import sqlite3
import time
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path
from typing import TYPE_CHECKING, Any, Final, Literal

import structlog

from publisher_info_store.persistence import schema
from publisher_info_store.persistence.migrations import (
    MigrationEngine,
    MigrationReport,
    MigrationState,
    classify,
)

if TYPE_CHECKING:
    from publisher_info_store.config.schema import StoreConfig

SQLValue = str | int | float | bytes | None
SQLParams = Sequence[SQLValue]
RowValue = str | int | float | bytes | None
JournalMode = Literal["wal", "delete"]

DEFAULT_BUSY_TIMEOUT_MS: Final[int] = 5_000
DEFAULT_BUSY_RETRY_LIMIT: Final[int] = 4
DEFAULT_BUSY_RETRY_BACKOFF_MS: Final[int] = 25
DEFAULT_JOURNAL_MODE: Final[JournalMode] = "wal"
JOURNAL_MODES: Final[tuple[JournalMode, ...]] = ("wal", "delete")

_SQLITE_BUSY_CODES: Final[frozenset[int]] = frozenset(
    code
    for code in (
        getattr(sqlite3, "SQLITE_BUSY", None),
        getattr(sqlite3, "SQLITE_BUSY_RECOVERY", None),
        getattr(sqlite3, "SQLITE_BUSY_SNAPSHOT", None),
        getattr(sqlite3, "SQLITE_LOCKED", None),
        getattr(sqlite3, "SQLITE_LOCKED_SHAREDCACHE", None),
    )
    if isinstance(code, int)
)

_SQLITE_CORRUPTION_CODES: Final[frozenset[int]] = frozenset(
    code
    for code in (
        getattr(sqlite3, "SQLITE_CORRUPT", None),
        getattr(sqlite3, "SQLITE_NOTADB", None),
    )
    if isinstance(code, int)
)

_BUSY_SUBSTRINGS: Final[tuple[str, ...]] = (
    "database is locked",
    "database table is locked",
    "database schema is locked",
)

_CORRUPTION_SUBSTRINGS: Final[tuple[str, ...]] = (
    "database disk image is malformed",
    "malformed database",
    "file is not a database",
)


class StoreError(RuntimeError):
    """Base class for publisher store errors."""


class StoreNotInitializedError(StoreError):
    """Raised when an operation is attempted before a successful ``open()``."""


class SchemaTooNewError(StoreError):
    """Raised when the stored compatibility floor exceeds this build's schema version."""


class StoreOpenError(StoreError):
    """Raised when the backing file cannot be opened or initialized."""


class StoreBusyError(StoreError):
    """Raised when bounded busy retries are exhausted."""


class StoreCorruptionError(StoreError):
    """Raised when SQLite reports possible corruption."""


class OpenStatus(StrEnum):
    READY = "ready"
    INCOMPATIBLE_TOO_NEW = "incompatible_too_new"
    FAILED = "failed"


class MemoryPressureLevel(StrEnum):
    MODERATE = "moderate"
    CRITICAL = "critical"


class _TooNewAbort(Exception):
    def __init__(self, stored_version: int | None, compatible_version: int | None) -> None:
        super().__init__("stored schema is newer than this build")
        self.stored_version = stored_version
        self.compatible_version = compatible_version


@dataclass(frozen=True, slots=True)
class OpenResult:
    status: OpenStatus
    migration_report: MigrationReport | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status is OpenStatus.READY

    def raise_for_status(self) -> OpenResult:
        if self.status is OpenStatus.INCOMPATIBLE_TOO_NEW:
            raise SchemaTooNewError(self.error or "publisher info store is too new")
        if self.status is OpenStatus.FAILED:
            raise StoreOpenError(self.error or "publisher info store failed to open")
        return self


class PublisherInfoDB:
    """Handle for one publisher info store file.

    The handle owns a single SQLite connection between ``open()`` and ``close()``.
    Callers must serialize access when sharing a handle across threads.
    """

    def __init__(
        self,
        path: str | Path,
        *,
        busy_timeout_ms: int = DEFAULT_BUSY_TIMEOUT_MS,
        busy_retry_limit: int = DEFAULT_BUSY_RETRY_LIMIT,
        busy_retry_backoff_ms: int = DEFAULT_BUSY_RETRY_BACKOFF_MS,
        journal_mode: JournalMode = DEFAULT_JOURNAL_MODE,
        migration_engine: MigrationEngine | None = None,
        logger: Any | None = None,
    ) -> None:
        if busy_timeout_ms < 0:
            raise ValueError("busy_timeout_ms must be >= 0")
        if busy_retry_limit < 0:
            raise ValueError("busy_retry_limit must be >= 0")
        if busy_retry_backoff_ms < 0:
            raise ValueError("busy_retry_backoff_ms must be >= 0")
        if journal_mode not in JOURNAL_MODES:
            allowed = ", ".join(JOURNAL_MODES)
            raise ValueError(f"journal_mode must be one of: {allowed}; got {journal_mode!r}")

        self._path = Path(path).expanduser()
        self._busy_timeout_ms = busy_timeout_ms
        self._busy_retry_limit = busy_retry_limit
        self._busy_retry_backoff_ms = busy_retry_backoff_ms
        self._journal_mode = journal_mode
        self._logger = logger if logger is not None else structlog.get_logger(__name__)
        self._migration_engine = (
            migration_engine
            if migration_engine is not None
            else MigrationEngine(logger=self._logger)
        )
        self._conn: sqlite3.Connection | None = None
        self._last_report: MigrationReport | None = None
        self._transaction_depth = 0
        self._savepoint_counter = 0

    @classmethod
    def from_config(cls, config: StoreConfig, *, logger: Any | None = None) -> PublisherInfoDB:
        return cls(
            config.path,
            busy_timeout_ms=config.busy_timeout_ms,
            busy_retry_limit=config.busy_retry_limit,
            busy_retry_backoff_ms=config.busy_retry_backoff_ms,
            journal_mode=config.journal_mode,
            logger=logger,
        )

    @property
    def path(self) -> Path:
        return self._path

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    @property
    def transaction_depth(self) -> int:
        return self._transaction_depth

    @property
    def last_migration_report(self) -> MigrationReport | None:
        return self._last_report

    @property
    def target_version(self) -> int:
        return self._migration_engine.target_version

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def open(self) -> OpenResult:
        """Open the backing file, ensure the schema, and migrate to the target version."""

        if self._conn is not None:
            return OpenResult(status=OpenStatus.READY, migration_report=self._last_report)

        target = self._migration_engine.target_version
        try:
            conn = self._connect()
        except (sqlite3.Error, OSError) as exc:
            return self._open_failed(f"cannot open {self._path}: {exc}")

        try:
            floor = schema.stored_compatible_version(conn)
            if floor is not None and floor > target:
                raise _TooNewAbort(schema.stored_version(conn), floor)

            self._configure_journal_mode(conn)
            with self.transaction(conn=conn):
                created = schema.init_meta(conn)
                stored = schema.stored_version(conn)
                floor = schema.stored_compatible_version(conn)
                if classify(stored, floor, target) is MigrationState.TOO_NEW:
                    raise _TooNewAbort(stored, floor)
                schema.create_schema(conn)
                if created:
                    report = MigrationReport(
                        from_version=None,
                        target_version=target,
                        final_version=target,
                        state=MigrationState.UNINITIALIZED,
                    )
                else:
                    report = self._migration_engine.run(conn, stored if stored is not None else 0)
        except _TooNewAbort as exc:
            conn.close()
            self._logger.warning(
                "publisher_store_too_new",
                path=str(self._path),
                stored_version=exc.stored_version,
                compatible_version=exc.compatible_version,
                target_version=target,
            )
            return OpenResult(
                status=OpenStatus.INCOMPATIBLE_TOO_NEW,
                migration_report=MigrationReport(
                    from_version=exc.stored_version,
                    target_version=target,
                    final_version=exc.stored_version,
                    state=MigrationState.TOO_NEW,
                ),
                error=(
                    f"publisher info store {self._path} requires schema version "
                    f">= {exc.compatible_version}; this build supports {target}"
                ),
            )
        except (sqlite3.Error, StoreError, ValueError) as exc:
            conn.close()
            return self._open_failed(f"initialization failed for {self._path}: {exc}")

        self._conn = conn
        self._last_report = report
        self._logger.info(
            "publisher_store_opened",
            path=str(self._path),
            schema_version=report.final_version,
            migration_state=report.state.value,
            migration_succeeded=report.succeeded,
        )
        return OpenResult(status=OpenStatus.READY, migration_report=report)

    def close(self) -> None:
        """Close the backing connection; safe to call repeatedly."""

        conn = self._conn
        if conn is None:
            return
        self._conn = None
        self._transaction_depth = 0
        conn.close()
        self._logger.info("publisher_store_closed", path=str(self._path))

    def __enter__(self) -> PublisherInfoDB:
        self.open().raise_for_status()
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        del exc_type, exc, tb
        self.close()

    def require_open(self) -> sqlite3.Connection:
        if self._conn is None:
            raise StoreNotInitializedError(
                f"publisher info store {self._path} is not open; call open() first"
            )
        return self._conn

    # ------------------------------------------------------------------
    # Statements and transactions
    # ------------------------------------------------------------------

    @contextmanager
    def transaction(
        self,
        *,
        conn: sqlite3.Connection | None = None,
        immediate: bool = True,
    ) -> Iterator[sqlite3.Connection]:
        """Run statements inside an atomic transaction with savepoint support."""

        active = conn if conn is not None else self.require_open()
        self._transaction_depth += 1
        try:
            if active.in_transaction:
                savepoint = self._next_savepoint_name()
                self._execute_with_retry(
                    active, f"SAVEPOINT {savepoint}", (), operation="savepoint"
                )
                try:
                    yield active
                except BaseException:
                    self._execute_with_retry(
                        active,
                        f"ROLLBACK TO SAVEPOINT {savepoint}",
                        (),
                        operation="rollback to savepoint",
                    )
                    self._execute_with_retry(
                        active,
                        f"RELEASE SAVEPOINT {savepoint}",
                        (),
                        operation="release savepoint",
                    )
                    raise
                else:
                    self._execute_with_retry(
                        active,
                        f"RELEASE SAVEPOINT {savepoint}",
                        (),
                        operation="release savepoint",
                    )
                return

            begin_sql = "BEGIN IMMEDIATE" if immediate else "BEGIN"
            self._execute_with_retry(active, begin_sql, (), operation="begin transaction")
            try:
                yield active
            except BaseException:
                self._execute_with_retry(active, "ROLLBACK", (), operation="rollback transaction")
                raise
            else:
                self._execute_with_retry(active, "COMMIT", (), operation="commit transaction")
        finally:
            self._transaction_depth -= 1

    def execute(
        self,
        sql: str,
        params: SQLParams = (),
        *,
        conn: sqlite3.Connection | None = None,
    ) -> int:
        """Execute a parameterized statement and return the affected row count."""

        if conn is not None:
            cursor = self._execute_with_retry(conn, sql, params, operation="execute statement")
            return cursor.rowcount

        with self.transaction() as tx:
            cursor = self._execute_with_retry(tx, sql, params, operation="execute statement")
            return cursor.rowcount

    def query_all(self, sql: str, params: SQLParams = ()) -> list[dict[str, RowValue]]:
        """Run a query and return rows as dictionaries."""

        conn = self.require_open()
        cursor = self._execute_with_retry(conn, sql, params, operation="query all")
        return [_row_to_dict(row) for row in cursor.fetchall()]

    def query_one(self, sql: str, params: SQLParams = ()) -> dict[str, RowValue] | None:
        """Run a query and return the first row as a dictionary."""

        conn = self.require_open()
        cursor = self._execute_with_retry(conn, sql, params, operation="query one")
        row = cursor.fetchone()
        return None if row is None else _row_to_dict(row)

    def schema_version(self) -> int | None:
        return schema.stored_version(self.require_open())

    def compatible_version(self) -> int | None:
        return schema.stored_compatible_version(self.require_open())

    # ------------------------------------------------------------------
    # Maintenance and diagnostics
    # ------------------------------------------------------------------

    def vacuum(self) -> None:
        """Rebuild the database file; refuses to run while a transaction is open."""

        conn = self._conn
        if conn is None:
            return
        if self._transaction_depth or conn.in_transaction:
            raise StoreError("cannot vacuum while a transaction is open")
        self._execute_with_retry(conn, "VACUUM", (), operation="vacuum")
        self._logger.info("publisher_store_vacuumed", path=str(self._path))

    def on_memory_pressure(self, level: MemoryPressureLevel | str) -> None:
        """Trim SQLite caches. Advisory: never raises and never blocks on locks."""

        conn = self._conn
        if conn is None:
            return
        try:
            aggressive = MemoryPressureLevel(level) is MemoryPressureLevel.CRITICAL
        except ValueError as exc:
            self._logger.warning(
                "publisher_store_trim_memory_failed", path=str(self._path), error=str(exc)
            )
            return
        try:
            row = conn.execute("PRAGMA cache_size").fetchone()
            previous = int(row[0]) if row is not None else 0
            shrink = 1 if aggressive else previous // 2
            conn.execute(f"PRAGMA cache_size={int(shrink)}")
            conn.execute(f"PRAGMA cache_size={previous}")
            conn.execute("PRAGMA shrink_memory")
        except sqlite3.Error as exc:
            self._logger.warning(
                "publisher_store_trim_memory_failed",
                path=str(self._path),
                aggressive=aggressive,
                error=str(exc),
            )
            return
        self._logger.debug(
            "publisher_store_memory_trimmed", path=str(self._path), aggressive=aggressive
        )

    def diagnostic_info(self, error: sqlite3.Error | None = None) -> dict[str, object]:
        """Snapshot of store state for bug reports; optionally annotated with an error."""

        info: dict[str, object] = {
            "path": str(self._path),
            "is_open": self.is_open,
            "target_version": self.target_version,
            "sqlite_version": sqlite3.sqlite_version,
        }
        if error is not None:
            info["error"] = str(error)
            info["error_code"] = getattr(error, "sqlite_errorcode", None)
            info["error_name"] = getattr(error, "sqlite_errorname", None)
        conn = self._conn
        if conn is None:
            return info

        info["schema_version"] = schema.stored_version(conn)
        info["compatible_version"] = schema.stored_compatible_version(conn)
        info["transaction_depth"] = self._transaction_depth
        for pragma in ("page_size", "page_count", "freelist_count", "journal_mode"):
            row = conn.execute(f"PRAGMA {pragma}").fetchone()
            info[pragma] = None if row is None else row[0]
        info["tables"] = {
            table.name: int(conn.execute(f"SELECT COUNT(*) FROM {table.name}").fetchone()[0])
            for table in schema.TABLES
            if schema.table_exists(conn, table.name)
        }
        return info

    def integrity_check(self, *, max_errors: int = 100) -> tuple[str, ...]:
        """Return integrity-check errors; empty tuple means OK."""

        if max_errors <= 0:
            raise ValueError("max_errors must be > 0")
        rows = self.query_all(f"PRAGMA integrity_check({int(max_errors)})")
        messages = tuple(str(row.get("integrity_check", "")) for row in rows)
        if messages == ("ok",):
            return ()
        return messages

    def backup(self, destination: str | Path) -> Path:
        """Create a consistent snapshot using the SQLite backup API."""

        source = self.require_open()
        destination_path = Path(destination).expanduser()
        destination_path.parent.mkdir(parents=True, exist_ok=True)
        target = sqlite3.connect(
            destination_path,
            timeout=self._busy_timeout_ms / 1000.0,
            isolation_level=None,
        )
        try:
            source.backup(target)
        finally:
            target.close()
        return destination_path

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _connect(self) -> sqlite3.Connection:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(
            self._path,
            timeout=self._busy_timeout_ms / 1000.0,
            isolation_level=None,
            check_same_thread=False,
        )
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys=ON")
        conn.execute(f"PRAGMA busy_timeout={self._busy_timeout_ms}")
        return conn

    def _configure_journal_mode(self, conn: sqlite3.Connection) -> None:
        row = conn.execute(f"PRAGMA journal_mode={self._journal_mode.upper()}").fetchone()
        if row is None:
            raise StoreError("failed to configure journal_mode")
        journal_mode = str(row[0]).lower()
        if journal_mode != self._journal_mode:
            raise StoreError(f"journal_mode must be {self._journal_mode}, got {journal_mode!r}")

    def _open_failed(self, message: str) -> OpenResult:
        self._logger.error("publisher_store_open_failed", path=str(self._path), error=message)
        return OpenResult(status=OpenStatus.FAILED, error=message)

    def _next_savepoint_name(self) -> str:
        self._savepoint_counter += 1
        return f"sp_{self._savepoint_counter}"

    def _execute_with_retry(
        self,
        conn: sqlite3.Connection,
        sql: str,
        params: SQLParams,
        *,
        operation: str,
    ) -> sqlite3.Cursor:
        for attempt in range(self._busy_retry_limit + 1):
            try:
                return conn.execute(sql, tuple(params))
            except sqlite3.IntegrityError:
                raise
            except sqlite3.Error as exc:
                if self._is_busy_error(exc) and attempt < self._busy_retry_limit:
                    time.sleep((self._busy_retry_backoff_ms / 1000.0) * float(2**attempt))
                    continue
                self._raise_actionable_error(exc, operation=operation)
        raise StoreBusyError(f"{operation} exhausted retries unexpectedly")

    def _is_busy_error(self, exc: sqlite3.Error) -> bool:
        code = getattr(exc, "sqlite_errorcode", None)
        if isinstance(code, int) and code in _SQLITE_BUSY_CODES:
            return True
        message = str(exc).lower()
        return any(fragment in message for fragment in _BUSY_SUBSTRINGS)

    def _is_corruption_error(self, exc: sqlite3.Error) -> bool:
        code = getattr(exc, "sqlite_errorcode", None)
        if isinstance(code, int) and code in _SQLITE_CORRUPTION_CODES:
            return True
        message = str(exc).lower()
        return any(fragment in message for fragment in _CORRUPTION_SUBSTRINGS)

    def _raise_actionable_error(self, exc: sqlite3.Error, *, operation: str) -> None:
        if self._is_corruption_error(exc):
            raise StoreCorruptionError(
                f"{operation} failed for {self._path}: {exc}. "
                "Run `PublisherInfoDB.integrity_check()` and restore from "
                "`PublisherInfoDB.backup(...)` if needed."
            ) from exc
        if self._is_busy_error(exc):
            raise StoreBusyError(
                f"{operation} hit SQLITE_BUSY for {self._path} after "
                f"{self._busy_retry_limit + 1} attempt(s): {exc}"
            ) from exc
        raise StoreError(f"{operation} failed for {self._path}: {exc}") from exc


def _row_to_dict(row: sqlite3.Row) -> dict[str, RowValue]:
    raw = dict(row)
    return {str(key): raw[key] for key in raw}


__all__ = [
    "DEFAULT_BUSY_RETRY_BACKOFF_MS",
    "DEFAULT_BUSY_RETRY_LIMIT",
    "DEFAULT_BUSY_TIMEOUT_MS",
    "DEFAULT_JOURNAL_MODE",
    "JOURNAL_MODES",
    "JournalMode",
    "MemoryPressureLevel",
    "OpenResult",
    "OpenStatus",
    "PublisherInfoDB",
    "RowValue",
    "SQLParams",
    "SQLValue",
    "SchemaTooNewError",
    "StoreBusyError",
    "StoreCorruptionError",
    "StoreError",
    "StoreNotInitializedError",
    "StoreOpenError",
]
