"""Shared deterministic fixtures and builders for persistence tests."""

from __future__ import annotations

import sqlite3
from typing import TYPE_CHECKING, Final

from publisher_info_store.domain.models import (
    ActivityInfo,
    ContributionCategory,
    ContributionInfo,
    ExcludeState,
    MediaPublisherInfo,
    PublisherInfo,
    RecurringDonation,
)
from publisher_info_store.persistence.store_db import PublisherInfoDB

if TYPE_CHECKING:
    from pathlib import Path

_BASE_EPOCH: Final[int] = 1_577_836_800  # 2020-01-01T00:00:00Z

_V1_PUBLISHER_INFO_DDL: Final[str] = """
CREATE TABLE publisher_info (
    publisher_id LONGVARCHAR PRIMARY KEY NOT NULL UNIQUE,
    verified BOOLEAN DEFAULT 0 NOT NULL,
    excluded INTEGER DEFAULT 0 NOT NULL,
    name TEXT NOT NULL,
    favicon TEXT NOT NULL,
    url TEXT NOT NULL,
    provider TEXT NOT NULL
)
"""

_V1_ACTIVITY_INFO_DDL: Final[str] = """
CREATE TABLE activity_info (
    publisher_id LONGVARCHAR NOT NULL,
    duration INTEGER DEFAULT 0 NOT NULL,
    score DOUBLE DEFAULT 0 NOT NULL,
    percent INTEGER DEFAULT 0 NOT NULL,
    weight DOUBLE DEFAULT 0 NOT NULL,
    month INTEGER NOT NULL,
    year INTEGER NOT NULL,
    CONSTRAINT activity_unique UNIQUE (publisher_id, month, year)
    CONSTRAINT fk_activity_info_publisher_id
        FOREIGN KEY (publisher_id)
        REFERENCES publisher_info (publisher_id)
        ON DELETE CASCADE
)
"""

_V2_ACTIVITY_INFO_DDL: Final[str] = """
CREATE TABLE activity_info (
    publisher_id LONGVARCHAR NOT NULL,
    duration INTEGER DEFAULT 0 NOT NULL,
    score DOUBLE DEFAULT 0 NOT NULL,
    percent INTEGER DEFAULT 0 NOT NULL,
    weight DOUBLE DEFAULT 0 NOT NULL,
    month INTEGER NOT NULL,
    year INTEGER NOT NULL,
    reconcile_stamp INTEGER DEFAULT 0 NOT NULL,
    CONSTRAINT activity_unique UNIQUE (publisher_id, month, year)
    CONSTRAINT fk_activity_info_publisher_id
        FOREIGN KEY (publisher_id)
        REFERENCES publisher_info (publisher_id)
        ON DELETE CASCADE
)
"""

_V1_CONTRIBUTION_INFO_DDL: Final[str] = """
CREATE TABLE contribution_info (
    publisher_id LONGVARCHAR,
    value DOUBLE DEFAULT 0 NOT NULL,
    date INTEGER NOT NULL,
    month INTEGER NOT NULL,
    year INTEGER NOT NULL
)
"""

_V2_CONTRIBUTION_INFO_DDL: Final[str] = """
CREATE TABLE contribution_info (
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
)
"""

_MEDIA_PUBLISHER_INFO_DDL: Final[str] = """
CREATE TABLE media_publisher_info (
    media_key TEXT NOT NULL PRIMARY KEY UNIQUE,
    publisher_id LONGVARCHAR NOT NULL,
    CONSTRAINT fk_media_publisher_info_publisher_id
        FOREIGN KEY (publisher_id)
        REFERENCES publisher_info (publisher_id)
        ON DELETE CASCADE
)
"""

_RECURRING_DONATION_DDL: Final[str] = """
CREATE TABLE recurring_donation (
    publisher_id LONGVARCHAR NOT NULL PRIMARY KEY UNIQUE,
    amount DOUBLE DEFAULT 0 NOT NULL,
    added_date INTEGER DEFAULT 0 NOT NULL,
    CONSTRAINT fk_recurring_donation_publisher_id
        FOREIGN KEY (publisher_id)
        REFERENCES publisher_info (publisher_id)
        ON DELETE CASCADE
)
"""

LEGACY_PUBLISHERS: Final[tuple[str, ...]] = ("a.com", "b.com", "c.com")

# (publisher_id, duration, score, percent, weight, month, year)
LEGACY_ACTIVITY_ROWS: Final[tuple[tuple[str, int, float, int, float, int, int], ...]] = (
    ("a.com", 120, 1.5, 40, 40.0, 3, 2020),
    ("b.com", 300, 3.25, 60, 60.0, 3, 2020),
    ("c.com", 45, 0.5, 0, 0.0, 4, 2020),
)


def open_store(path: Path, **kwargs: object) -> PublisherInfoDB:
    db = PublisherInfoDB(path, **kwargs)  # type: ignore[arg-type]
    db.open().raise_for_status()
    return db


def make_publisher(
    publisher_id: str = "a.com",
    *,
    verified: bool = False,
    excluded: ExcludeState = ExcludeState.DEFAULT,
) -> PublisherInfo:
    return PublisherInfo(
        publisher_id=publisher_id,
        verified=verified,
        excluded=excluded,
        name=f"{publisher_id} name",
        favicon=f"https://{publisher_id}/favicon.ico",
        url=f"https://{publisher_id}/",
        provider="",
    )


def make_activity(
    publisher_id: str = "a.com",
    *,
    duration: int = 120,
    month: int = 3,
    year: int = 2020,
    reconcile_stamp: int = 1000,
    visits: int = 1,
    percent: int = 0,
    score: float = 1.0,
    weight: float = 0.0,
) -> ActivityInfo:
    return ActivityInfo(
        publisher_id=publisher_id,
        month=month,
        year=year,
        reconcile_stamp=reconcile_stamp,
        duration=duration,
        visits=visits,
        score=score,
        percent=percent,
        weight=weight,
    )


def make_contribution(
    publisher_id: str = "a.com",
    *,
    seed: int = 0,
    category: ContributionCategory = ContributionCategory.TIPPING,
    month: int = 3,
    year: int = 2020,
) -> ContributionInfo:
    return ContributionInfo(
        publisher_id=publisher_id,
        probi=f"{(seed + 1) * 1_000_000_000_000_000_000}",
        date=_BASE_EPOCH + seed,
        category=category,
        month=month,
        year=year,
    )


def make_media(
    media_key: str = "youtube_channel_1", publisher_id: str = "a.com"
) -> MediaPublisherInfo:
    return MediaPublisherInfo(media_key=media_key, publisher_id=publisher_id)


def make_donation(
    publisher_id: str = "b.com", *, amount: float = 10.0, seed: int = 0
) -> RecurringDonation:
    return RecurringDonation(
        publisher_id=publisher_id, amount=amount, added_date=_BASE_EPOCH + seed
    )


def raw_connect(path: Path) -> sqlite3.Connection:
    conn = sqlite3.connect(path, isolation_level=None)
    conn.execute("PRAGMA foreign_keys=ON")
    return conn


def _write_meta(conn: sqlite3.Connection, *, version: int, compatible: int) -> None:
    conn.execute(
        "CREATE TABLE meta (key LONGVARCHAR NOT NULL UNIQUE PRIMARY KEY, value LONGVARCHAR)"
    )
    conn.execute("INSERT INTO meta (key, value) VALUES ('version', ?)", (str(version),))
    conn.execute(
        "INSERT INTO meta (key, value) VALUES ('last_compatible_version', ?)", (str(compatible),)
    )


def _seed_legacy_rows(conn: sqlite3.Connection, *, with_stamp: bool) -> None:
    for publisher_id in LEGACY_PUBLISHERS:
        conn.execute(
            """
            INSERT INTO publisher_info
                (publisher_id, verified, excluded, name, favicon, url, provider)
            VALUES (?, 0, 0, ?, '', ?, '')
            """,
            (publisher_id, f"{publisher_id} name", f"https://{publisher_id}/"),
        )
    for publisher_id, duration, score, percent, weight, month, year in LEGACY_ACTIVITY_ROWS:
        if with_stamp:
            conn.execute(
                """
                INSERT INTO activity_info
                    (publisher_id, duration, score, percent, weight, month, year, reconcile_stamp)
                VALUES (?, ?, ?, ?, ?, ?, ?, 0)
                """,
                (publisher_id, duration, score, percent, weight, month, year),
            )
        else:
            conn.execute(
                """
                INSERT INTO activity_info
                    (publisher_id, duration, score, percent, weight, month, year)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (publisher_id, duration, score, percent, weight, month, year),
            )


def create_v1_store(path: Path) -> None:
    """Write a store as the first schema version left it, with a legacy contribution layout."""

    conn = raw_connect(path)
    try:
        _write_meta(conn, version=1, compatible=1)
        conn.execute(_V1_PUBLISHER_INFO_DDL)
        conn.execute(_V1_ACTIVITY_INFO_DDL)
        conn.execute(_V1_CONTRIBUTION_INFO_DDL)
        conn.execute(_MEDIA_PUBLISHER_INFO_DDL)
        _seed_legacy_rows(conn, with_stamp=False)
        conn.execute(
            "INSERT INTO contribution_info (publisher_id, value, date, month, year) "
            "VALUES ('a.com', 1.0, 1, 3, 2020)"
        )
    finally:
        conn.close()


def create_v2_store(path: Path) -> None:
    """Write a store at schema version 2: stamped activity without a visits column."""

    conn = raw_connect(path)
    try:
        _write_meta(conn, version=2, compatible=1)
        conn.execute(_V1_PUBLISHER_INFO_DDL)
        conn.execute(_V2_ACTIVITY_INFO_DDL)
        conn.execute(_V2_CONTRIBUTION_INFO_DDL)
        conn.execute(_MEDIA_PUBLISHER_INFO_DDL)
        conn.execute(_RECURRING_DONATION_DDL)
        _seed_legacy_rows(conn, with_stamp=True)
    finally:
        conn.close()


def table_names(conn: sqlite3.Connection) -> set[str]:
    rows = conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'").fetchall()
    return {str(row[0]) for row in rows}


def index_names(conn: sqlite3.Connection) -> set[str]:
    rows = conn.execute(
        "SELECT name FROM sqlite_master WHERE type = 'index' AND name NOT LIKE 'sqlite_autoindex%'"
    ).fetchall()
    return {str(row[0]) for row in rows}


def table_shape(conn: sqlite3.Connection, table: str) -> list[tuple[object, ...]]:
    return [tuple(row) for row in conn.execute(f"PRAGMA table_info({table})").fetchall()]


def meta_values(conn: sqlite3.Connection) -> dict[str, str]:
    return {str(row[0]): str(row[1]) for row in conn.execute("SELECT key, value FROM meta")}


class RecordingLogger:
    """structlog-compatible logger that records ``(level, event, fields)`` tuples."""

    def __init__(self) -> None:
        self.events: list[tuple[str, str, dict[str, object]]] = []

    def _record(self, level: str, event: str, **kwargs: object) -> None:
        self.events.append((level, event, dict(kwargs)))

    def debug(self, event: str, **kwargs: object) -> None:
        self._record("debug", event, **kwargs)

    def info(self, event: str, **kwargs: object) -> None:
        self._record("info", event, **kwargs)

    def warning(self, event: str, **kwargs: object) -> None:
        self._record("warning", event, **kwargs)

    def error(self, event: str, **kwargs: object) -> None:
        self._record("error", event, **kwargs)

    def named(self, event: str) -> list[dict[str, object]]:
        return [fields for _, name, fields in self.events if name == event]
