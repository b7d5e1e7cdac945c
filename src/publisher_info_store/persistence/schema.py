"""
publisher-info-store — schema manager

Purpose
- Own table/index definitions for the publisher info store.
- Track stored schema version against the compiled-in target version.

Functional requirements
- ``ensure_table``/``ensure_index`` are idempotent: create only when absent.
- The compatibility floor is written once at creation and never advanced.
"""

from __future__ import annotations

import re
import sqlite3
from dataclasses import dataclass
from typing import Final

from publisher_info_store.constants import (
    COMPATIBLE_SCHEMA_VERSION,
    CURRENT_SCHEMA_VERSION,
    META_COMPATIBLE_VERSION_KEY,
    META_VERSION_KEY,
)

_IDENTIFIER_RE: Final[re.Pattern[str]] = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

META_TABLE: Final[str] = "meta"
PUBLISHER_INFO_TABLE: Final[str] = "publisher_info"
ACTIVITY_INFO_TABLE: Final[str] = "activity_info"
CONTRIBUTION_INFO_TABLE: Final[str] = "contribution_info"
MEDIA_PUBLISHER_INFO_TABLE: Final[str] = "media_publisher_info"
RECURRING_DONATION_TABLE: Final[str] = "recurring_donation"


@dataclass(frozen=True, slots=True)
class TableSpec:
    name: str
    definition: str

    def create_sql(self) -> str:
        return f"CREATE TABLE {validate_identifier(self.name)} ({self.definition.strip()})"


@dataclass(frozen=True, slots=True)
class IndexSpec:
    name: str
    definition: str

    def create_sql(self) -> str:
        return f"CREATE INDEX IF NOT EXISTS {validate_identifier(self.name)} ON {self.definition}"


META_TABLE_SPEC: Final[TableSpec] = TableSpec(
    META_TABLE,
    """
    key LONGVARCHAR NOT NULL UNIQUE PRIMARY KEY,
    value LONGVARCHAR
    """,
)

PUBLISHER_INFO_SPEC: Final[TableSpec] = TableSpec(
    PUBLISHER_INFO_TABLE,
    """
    publisher_id LONGVARCHAR PRIMARY KEY NOT NULL UNIQUE,
    verified BOOLEAN DEFAULT 0 NOT NULL,
    excluded INTEGER DEFAULT 0 NOT NULL,
    name TEXT NOT NULL,
    favicon TEXT NOT NULL,
    url TEXT NOT NULL,
    provider TEXT NOT NULL
    """,
)

ACTIVITY_INFO_SPEC: Final[TableSpec] = TableSpec(
    ACTIVITY_INFO_TABLE,
    """
    publisher_id LONGVARCHAR NOT NULL,
    duration INTEGER DEFAULT 0 NOT NULL,
    visits INTEGER DEFAULT 0 NOT NULL,
    score DOUBLE DEFAULT 0 NOT NULL,
    percent INTEGER DEFAULT 0 NOT NULL,
    weight DOUBLE DEFAULT 0 NOT NULL,
    month INTEGER NOT NULL,
    year INTEGER NOT NULL,
    reconcile_stamp INTEGER DEFAULT 0 NOT NULL,
    CONSTRAINT activity_unique
        UNIQUE (publisher_id, month, year, reconcile_stamp)
    CONSTRAINT fk_activity_info_publisher_id
        FOREIGN KEY (publisher_id)
        REFERENCES publisher_info (publisher_id)
        ON DELETE CASCADE
    """,
)

CONTRIBUTION_INFO_SPEC: Final[TableSpec] = TableSpec(
    CONTRIBUTION_INFO_TABLE,
    """
    publisher_id LONGVARCHAR,
    probi TEXT DEFAULT '0' NOT NULL,
    date INTEGER NOT NULL,
    category INTEGER NOT NULL,
    month INTEGER NOT NULL,
    year INTEGER NOT NULL,
    CONSTRAINT fk_contribution_info_publisher_id
        FOREIGN KEY (publisher_id)
        REFERENCES publisher_info (publisher_id)
        ON DELETE CASCADE
    """,
)

MEDIA_PUBLISHER_INFO_SPEC: Final[TableSpec] = TableSpec(
    MEDIA_PUBLISHER_INFO_TABLE,
    """
    media_key TEXT NOT NULL PRIMARY KEY UNIQUE,
    publisher_id LONGVARCHAR NOT NULL,
    CONSTRAINT fk_media_publisher_info_publisher_id
        FOREIGN KEY (publisher_id)
        REFERENCES publisher_info (publisher_id)
        ON DELETE CASCADE
    """,
)

RECURRING_DONATION_SPEC: Final[TableSpec] = TableSpec(
    RECURRING_DONATION_TABLE,
    """
    publisher_id LONGVARCHAR NOT NULL PRIMARY KEY UNIQUE,
    amount DOUBLE DEFAULT 0 NOT NULL,
    added_date INTEGER DEFAULT 0 NOT NULL,
    CONSTRAINT fk_recurring_donation_publisher_id
        FOREIGN KEY (publisher_id)
        REFERENCES publisher_info (publisher_id)
        ON DELETE CASCADE
    """,
)

CONTRIBUTION_INFO_INDEX: Final[IndexSpec] = IndexSpec(
    "contribution_info_publisher_id_index", "contribution_info (publisher_id)"
)
ACTIVITY_INFO_INDEX: Final[IndexSpec] = IndexSpec(
    "activity_info_publisher_id_index", "activity_info (publisher_id)"
)
RECURRING_DONATION_INDEX: Final[IndexSpec] = IndexSpec(
    "recurring_donation_publisher_id_index", "recurring_donation (publisher_id)"
)

# Parent table first so dependent foreign keys always resolve.
TABLES: Final[tuple[TableSpec, ...]] = (
    PUBLISHER_INFO_SPEC,
    CONTRIBUTION_INFO_SPEC,
    ACTIVITY_INFO_SPEC,
    MEDIA_PUBLISHER_INFO_SPEC,
    RECURRING_DONATION_SPEC,
)
INDEXES: Final[tuple[IndexSpec, ...]] = (
    CONTRIBUTION_INFO_INDEX,
    ACTIVITY_INFO_INDEX,
    RECURRING_DONATION_INDEX,
)


def validate_identifier(name: str) -> str:
    """Return ``name`` unchanged if it is a safe SQL identifier; raise ``ValueError`` otherwise."""

    if not isinstance(name, str) or not _IDENTIFIER_RE.match(name):
        raise ValueError(f"invalid SQL identifier: {name!r}")
    return name


def current_version() -> int:
    """Schema version this build creates and migrates to."""

    return CURRENT_SCHEMA_VERSION


def compatible_version() -> int:
    return COMPATIBLE_SCHEMA_VERSION


def table_exists(conn: sqlite3.Connection, name: str) -> bool:
    row = conn.execute(
        "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = ?",
        (name,),
    ).fetchone()
    return row is not None


def index_exists(conn: sqlite3.Connection, name: str) -> bool:
    row = conn.execute(
        "SELECT 1 FROM sqlite_master WHERE type = 'index' AND name = ?",
        (name,),
    ).fetchone()
    return row is not None


def column_exists(conn: sqlite3.Connection, table: str, column: str) -> bool:
    rows = conn.execute(f"PRAGMA table_info({validate_identifier(table)})").fetchall()
    return any(str(row[1]) == column for row in rows)


def table_columns(conn: sqlite3.Connection, table: str) -> tuple[str, ...]:
    rows = conn.execute(f"PRAGMA table_info({validate_identifier(table)})").fetchall()
    return tuple(str(row[1]) for row in rows)


def ensure_table(conn: sqlite3.Connection, spec: TableSpec) -> bool:
    """Create ``spec`` when absent. Returns ``True`` if the table was created."""

    if table_exists(conn, spec.name):
        return False
    conn.execute(spec.create_sql())
    return True


def ensure_index(conn: sqlite3.Connection, spec: IndexSpec) -> bool:
    """Create ``spec`` when absent. Returns ``True`` if the index was created."""

    if index_exists(conn, spec.name):
        return False
    conn.execute(spec.create_sql())
    return True


def create_schema(conn: sqlite3.Connection) -> tuple[str, ...]:
    """Ensure every table and index exists; return the names that were created."""

    created: list[str] = []
    for table in TABLES:
        if ensure_table(conn, table):
            created.append(table.name)
    for index in INDEXES:
        if ensure_index(conn, index):
            created.append(index.name)
    return tuple(created)


def meta_table_exists(conn: sqlite3.Connection) -> bool:
    return table_exists(conn, META_TABLE)


def read_meta_int(conn: sqlite3.Connection, key: str) -> int | None:
    if not meta_table_exists(conn):
        return None
    row = conn.execute(f"SELECT value FROM {META_TABLE} WHERE key = ?", (key,)).fetchone()
    if row is None or row[0] is None:
        return None
    try:
        return int(row[0])
    except (TypeError, ValueError) as exc:
        raise ValueError(f"meta.{key} must be an integer, got {row[0]!r}") from exc


def write_meta_int(conn: sqlite3.Connection, key: str, value: int) -> None:
    conn.execute(
        f"""
        INSERT INTO {META_TABLE} (key, value) VALUES (?, ?)
        ON CONFLICT(key) DO UPDATE SET value = excluded.value
        """,
        (key, str(int(value))),
    )


def stored_version(conn: sqlite3.Connection) -> int | None:
    return read_meta_int(conn, META_VERSION_KEY)


def stored_compatible_version(conn: sqlite3.Connection) -> int | None:
    return read_meta_int(conn, META_COMPATIBLE_VERSION_KEY)


def init_meta(conn: sqlite3.Connection) -> bool:
    """Create the meta table and seed versions for a new store.

    Existing values are left untouched. Returns ``True`` when the store is new.
    """

    ensure_table(conn, META_TABLE_SPEC)
    if stored_version(conn) is not None:
        return False
    write_meta_int(conn, META_VERSION_KEY, current_version())
    if stored_compatible_version(conn) is None:
        write_meta_int(conn, META_COMPATIBLE_VERSION_KEY, compatible_version())
    return True


def set_stored_version(conn: sqlite3.Connection, version: int) -> None:
    write_meta_int(conn, META_VERSION_KEY, version)


__all__ = [
    "ACTIVITY_INFO_INDEX",
    "ACTIVITY_INFO_SPEC",
    "ACTIVITY_INFO_TABLE",
    "CONTRIBUTION_INFO_INDEX",
    "CONTRIBUTION_INFO_SPEC",
    "CONTRIBUTION_INFO_TABLE",
    "INDEXES",
    "IndexSpec",
    "MEDIA_PUBLISHER_INFO_SPEC",
    "MEDIA_PUBLISHER_INFO_TABLE",
    "META_TABLE",
    "META_TABLE_SPEC",
    "PUBLISHER_INFO_SPEC",
    "PUBLISHER_INFO_TABLE",
    "RECURRING_DONATION_INDEX",
    "RECURRING_DONATION_SPEC",
    "RECURRING_DONATION_TABLE",
    "TABLES",
    "TableSpec",
    "column_exists",
    "compatible_version",
    "create_schema",
    "current_version",
    "ensure_index",
    "ensure_table",
    "index_exists",
    "init_meta",
    "meta_table_exists",
    "read_meta_int",
    "set_stored_version",
    "stored_compatible_version",
    "stored_version",
    "table_columns",
    "table_exists",
    "validate_identifier",
]
