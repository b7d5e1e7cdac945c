"""Migration engine tests against stores written in earlier schema layouts."""

from __future__ import annotations

import sqlite3
from typing import TYPE_CHECKING

import pytest

from publisher_info_store.constants import CURRENT_SCHEMA_VERSION, LEGACY_ACTIVITY_VISITS
from publisher_info_store.domain.models import ActivityFilter
from publisher_info_store.persistence import schema
from publisher_info_store.persistence.migrations import (
    MIGRATION_STEPS,
    MigrationEngine,
    MigrationState,
    MigrationStep,
    MigrationStepError,
    classify,
)
from publisher_info_store.persistence.repositories import (
    ActivityRepo,
    ContributionRepo,
    RecurringDonationRepo,
)
from publisher_info_store.persistence.store_db import OpenStatus, PublisherInfoDB

from . import (
    LEGACY_ACTIVITY_ROWS,
    RecordingLogger,
    create_v1_store,
    create_v2_store,
    index_names,
    make_activity,
    make_contribution,
    make_donation,
    open_store,
    raw_connect,
    table_shape,
)

if TYPE_CHECKING:
    from pathlib import Path

_BY_PUBLISHER = ActivityFilter(order_by=(("publisher_id", True),))


def _shapes(path: Path) -> tuple[dict[str, list[tuple[object, ...]]], set[str]]:
    conn = raw_connect(path)
    try:
        shapes = {table.name: table_shape(conn, table.name) for table in schema.TABLES}
        return shapes, index_names(conn)
    finally:
        conn.close()


def _assert_legacy_activity_preserved(db: PublisherInfoDB) -> None:
    rows = ActivityRepo(db).list(_BY_PUBLISHER)
    assert len(rows) == len(LEGACY_ACTIVITY_ROWS)
    for item, legacy in zip(rows, LEGACY_ACTIVITY_ROWS, strict=True):
        publisher_id, duration, score, percent, weight, month, year = legacy
        activity = item.activity
        assert activity.publisher_id == publisher_id
        assert activity.duration == duration
        assert activity.score == pytest.approx(score)
        assert activity.percent == percent
        assert activity.weight == pytest.approx(weight)
        assert (activity.month, activity.year) == (month, year)
        assert activity.reconcile_stamp == 0
        assert activity.visits == LEGACY_ACTIVITY_VISITS
        assert item.publisher.name == f"{publisher_id} name"


def test_v1_store_migrates_to_current_layout(tmp_path: Path) -> None:
    legacy_path = tmp_path / "legacy_db"
    create_v1_store(legacy_path)
    fresh_path = tmp_path / "fresh_db"
    open_store(fresh_path).close()

    db = PublisherInfoDB(legacy_path)
    result = db.open()

    assert result.status is OpenStatus.READY
    report = result.migration_report
    assert report is not None
    assert report.state is MigrationState.MIGRATING
    assert report.from_version == 1
    assert report.final_version == CURRENT_SCHEMA_VERSION
    assert report.succeeded
    assert [(step.from_version, step.to_version) for step in report.steps] == [(1, 2), (2, 3)]
    assert db.schema_version() == CURRENT_SCHEMA_VERSION

    _assert_legacy_activity_preserved(db)
    # The legacy contribution layout is replaced, not converted.
    assert ContributionRepo(db).list("a.com") == []
    db.close()

    assert _shapes(legacy_path) == _shapes(fresh_path)


def test_v2_store_migrates_and_keeps_dependent_tables(tmp_path: Path) -> None:
    legacy_path = tmp_path / "legacy_db"
    create_v2_store(legacy_path)
    conn = raw_connect(legacy_path)
    try:
        conn.execute(
            "INSERT INTO recurring_donation (publisher_id, amount, added_date) "
            "VALUES ('b.com', 5.0, 10)"
        )
    finally:
        conn.close()
    fresh_path = tmp_path / "fresh_db"
    open_store(fresh_path).close()

    db = open_store(legacy_path)

    report = db.last_migration_report
    assert report is not None
    assert [step.name for step in report.steps] == [MIGRATION_STEPS[2].name]
    assert report.final_version == CURRENT_SCHEMA_VERSION
    _assert_legacy_activity_preserved(db)
    donation = RecurringDonationRepo(db).get("b.com")
    assert donation is not None
    assert donation.amount == pytest.approx(5.0)
    db.close()

    assert _shapes(legacy_path) == _shapes(fresh_path)


def test_v2_rebuild_leaves_rows_without_publisher_behind(tmp_path: Path) -> None:
    path = tmp_path / "legacy_db"
    create_v2_store(path)
    conn = raw_connect(path)
    try:
        conn.execute("PRAGMA foreign_keys=OFF")
        conn.execute(
            "INSERT INTO activity_info "
            "(publisher_id, duration, score, percent, weight, month, year, reconcile_stamp) "
            "VALUES ('ghost.com', 10, 0.1, 1, 1.0, 3, 2020, 0)"
        )
    finally:
        conn.close()

    db = open_store(path)

    report = db.last_migration_report
    assert report is not None
    assert report.succeeded
    assert report.final_version == CURRENT_SCHEMA_VERSION
    _assert_legacy_activity_preserved(db)
    assert ActivityRepo(db).list(ActivityFilter(publisher_id="ghost.com")) == []
    assert ActivityRepo(db).put(make_activity("z.com"))
    assert db.query_all("PRAGMA foreign_key_check") == []
    db.close()


def test_failed_step_keeps_stored_version_and_attempts_later_steps(tmp_path: Path) -> None:
    path = tmp_path / "legacy_db"
    create_v2_store(path)
    calls: list[int] = []

    def broken(conn: sqlite3.Connection) -> None:
        calls.append(2)
        conn.execute("ALTER TABLE activity_info ADD visits INTEGER DEFAULT 0 NOT NULL")
        raise MigrationStepError("activity rebuild interrupted")

    def later(conn: sqlite3.Connection) -> None:
        del conn
        calls.append(3)

    logger = RecordingLogger()
    engine = MigrationEngine(
        {
            2: MigrationStep(from_version=2, name="broken", apply=broken),
            3: MigrationStep(from_version=3, name="later", apply=later),
        },
        target_version=4,
        logger=logger,
    )
    db = PublisherInfoDB(path, migration_engine=engine, logger=logger)

    result = db.open()

    assert result.status is OpenStatus.READY
    report = result.migration_report
    assert report is not None
    assert not report.succeeded
    assert [step.name for step in report.failed_steps] == ["broken"]
    assert report.final_version == 2
    assert calls == [2, 3]
    assert db.schema_version() == 2
    # The failed step's savepoint was rolled back.
    assert not schema.column_exists(db.require_open(), "activity_info", "visits")

    failures = logger.named("publisher_store_migration_step_failed")
    assert [event["step"] for event in failures] == ["broken"]
    assert "interrupted" in str(failures[0]["error"])
    db.close()


def test_missing_step_halts_chain(tmp_path: Path) -> None:
    path = tmp_path / "legacy_db"
    create_v1_store(path)
    logger = RecordingLogger()
    engine = MigrationEngine({1: MIGRATION_STEPS[1]}, logger=logger)

    db = PublisherInfoDB(path, migration_engine=engine)
    report = db.open().migration_report

    assert report is not None
    assert [(step.name, step.succeeded) for step in report.steps] == [
        (MIGRATION_STEPS[1].name, True),
        ("missing", False),
    ]
    assert report.final_version == 1
    assert db.schema_version() == 1
    # Step one's work survives even though the chain stopped.
    assert schema.column_exists(db.require_open(), "activity_info", "reconcile_stamp")
    db.close()


def test_rerun_after_partial_failure_preserves_rebuilt_contributions(tmp_path: Path) -> None:
    path = tmp_path / "legacy_db"
    create_v1_store(path)

    partial = PublisherInfoDB(path, migration_engine=MigrationEngine({1: MIGRATION_STEPS[1]}))
    partial.open().raise_for_status()
    assert ContributionRepo(partial).put(make_contribution("a.com", seed=7))
    partial.close()

    db = open_store(path)
    report = db.last_migration_report
    assert report is not None
    assert report.from_version == 1
    assert report.succeeded
    assert db.schema_version() == CURRENT_SCHEMA_VERSION

    contributions = ContributionRepo(db).list("a.com")
    assert [item.probi for item in contributions] == [make_contribution("a.com", seed=7).probi]
    _assert_legacy_activity_preserved(db)
    db.close()


def test_migrated_store_accepts_new_writes(tmp_path: Path) -> None:
    path = tmp_path / "legacy_db"
    create_v1_store(path)
    db = open_store(path)

    assert RecurringDonationRepo(db).put(make_donation("d.com"))
    assert [item.publisher.publisher_id for item in RecurringDonationRepo(db).list()] == ["d.com"]
    db.close()


@pytest.mark.parametrize(
    ("stored", "floor", "expected"),
    [
        (None, None, MigrationState.UNINITIALIZED),
        (1, 1, MigrationState.MIGRATING),
        (2, None, MigrationState.MIGRATING),
        (3, 1, MigrationState.UP_TO_DATE),
        (5, 3, MigrationState.UP_TO_DATE),
        (5, 4, MigrationState.TOO_NEW),
    ],
)
def test_classify(stored: int | None, floor: int | None, expected: MigrationState) -> None:
    assert classify(stored, floor, CURRENT_SCHEMA_VERSION) is expected
