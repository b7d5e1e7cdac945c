"""
publisher-info-store — forward-only migration engine

Purpose
- Upgrade an on-disk store from its stored schema version to the build's target version.

Functional requirements
- Apply registered ``version -> version + 1`` steps in order; never skip a step.
- A failed step is recorded and logged, and the remaining steps are still attempted.
- The stored version is written once, to the target, only when every step succeeded.

Non-functional requirements
- Steps are re-runnable: each checks the current shape before changing it.
"""

from __future__ import annotations

import sqlite3
from collections.abc import Callable, Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass
from enum import StrEnum
from typing import Any, Final

import structlog

from publisher_info_store.constants import LEGACY_ACTIVITY_VISITS
from publisher_info_store.persistence import schema

StepFunction = Callable[[sqlite3.Connection], None]

# Explicit copy list for the activity rebuild; never SELECT * so stale columns are dropped.
_ACTIVITY_COPY_COLUMNS: Final[tuple[str, ...]] = (
    "publisher_id",
    "duration",
    "score",
    "percent",
    "weight",
    "month",
    "year",
    "reconcile_stamp",
)
_ACTIVITY_OLD_TABLE: Final[str] = "activity_info_old"
_CONTRIBUTION_COLUMNS: Final[tuple[str, ...]] = (
    "publisher_id",
    "probi",
    "date",
    "category",
    "month",
    "year",
)


class MigrationState(StrEnum):
    UNINITIALIZED = "uninitialized"
    TOO_NEW = "too_new"
    UP_TO_DATE = "up_to_date"
    MIGRATING = "migrating"


class MigrationStepError(RuntimeError):
    """Raised by a step when the stored shape cannot be transformed."""


@dataclass(frozen=True, slots=True)
class MigrationStep:
    from_version: int
    name: str
    apply: StepFunction

    @property
    def to_version(self) -> int:
        return self.from_version + 1


@dataclass(frozen=True, slots=True)
class MigrationStepResult:
    from_version: int
    to_version: int
    name: str
    succeeded: bool
    error: str | None = None

    def to_dict(self) -> dict[str, object]:
        return {
            "from_version": self.from_version,
            "to_version": self.to_version,
            "name": self.name,
            "succeeded": self.succeeded,
            "error": self.error,
        }


@dataclass(frozen=True, slots=True)
class MigrationReport:
    """Outcome of one migration pass, returned to callers of ``open()``."""

    from_version: int | None
    target_version: int
    final_version: int | None
    state: MigrationState
    steps: tuple[MigrationStepResult, ...] = ()

    @property
    def succeeded(self) -> bool:
        return all(step.succeeded for step in self.steps)

    @property
    def failed_steps(self) -> tuple[MigrationStepResult, ...]:
        return tuple(step for step in self.steps if not step.succeeded)

    def to_dict(self) -> dict[str, object]:
        return {
            "from_version": self.from_version,
            "target_version": self.target_version,
            "final_version": self.final_version,
            "state": self.state.value,
            "succeeded": self.succeeded,
            "steps": [step.to_dict() for step in self.steps],
        }


def _migrate_v1_to_v2(conn: sqlite3.Connection) -> None:
    activity = schema.ACTIVITY_INFO_TABLE
    if schema.table_exists(conn, activity) and not schema.column_exists(
        conn, activity, "reconcile_stamp"
    ):
        conn.execute(f"ALTER TABLE {activity} ADD reconcile_stamp INTEGER DEFAULT 0 NOT NULL")

    # The legacy contribution table has an incompatible layout and is replaced wholesale.
    contribution = schema.CONTRIBUTION_INFO_SPEC
    if schema.table_exists(conn, contribution.name):
        if schema.table_columns(conn, contribution.name) != _CONTRIBUTION_COLUMNS:
            conn.execute(f"DROP TABLE {contribution.name}")
    schema.ensure_table(conn, contribution)
    schema.ensure_index(conn, schema.CONTRIBUTION_INFO_INDEX)

    schema.ensure_table(conn, schema.RECURRING_DONATION_SPEC)
    schema.ensure_index(conn, schema.RECURRING_DONATION_INDEX)


def _migrate_v2_to_v3(conn: sqlite3.Connection) -> None:
    activity = schema.ACTIVITY_INFO_TABLE
    if not schema.table_exists(conn, activity):
        raise MigrationStepError(f"{activity} table is missing")
    if schema.column_exists(conn, activity, "visits"):
        schema.ensure_index(conn, schema.ACTIVITY_INFO_INDEX)
        return
    if schema.table_exists(conn, _ACTIVITY_OLD_TABLE):
        raise MigrationStepError(f"{_ACTIVITY_OLD_TABLE} already exists")

    columns = ", ".join(_ACTIVITY_COPY_COLUMNS)
    conn.execute(f"ALTER TABLE {activity} RENAME TO {_ACTIVITY_OLD_TABLE}")
    schema.ensure_table(conn, schema.ACTIVITY_INFO_SPEC)
    # Rows without a publisher violate the foreign key and are left behind with the old table.
    conn.execute(
        f"INSERT INTO {activity} ({columns}) SELECT {columns} FROM {_ACTIVITY_OLD_TABLE} "
        f"WHERE publisher_id IN (SELECT publisher_id FROM {schema.PUBLISHER_INFO_TABLE}) "
        "ORDER BY rowid"
    )
    conn.execute(f"UPDATE {activity} SET visits = ?", (LEGACY_ACTIVITY_VISITS,))
    # Dropping the old table also drops the index that followed it through the rename.
    conn.execute(f"DROP TABLE {_ACTIVITY_OLD_TABLE}")
    schema.ensure_index(conn, schema.ACTIVITY_INFO_INDEX)


MIGRATION_STEPS: Final[Mapping[int, MigrationStep]] = {
    1: MigrationStep(
        from_version=1,
        name="activity_reconcile_stamp_and_contribution_rebuild",
        apply=_migrate_v1_to_v2,
    ),
    2: MigrationStep(
        from_version=2,
        name="activity_visits_rebuild",
        apply=_migrate_v2_to_v3,
    ),
}


def classify(
    stored_version: int | None,
    compatible_version: int | None,
    target_version: int,
) -> MigrationState:
    """Map the stored ``(version, compatibility floor)`` pair onto a migration state."""

    if stored_version is None:
        return MigrationState.UNINITIALIZED
    if compatible_version is not None and compatible_version > target_version:
        return MigrationState.TOO_NEW
    if stored_version >= target_version:
        return MigrationState.UP_TO_DATE
    return MigrationState.MIGRATING


class MigrationEngine:
    """Run registered migration steps against an open initialization transaction."""

    def __init__(
        self,
        steps: Mapping[int, MigrationStep] | None = None,
        *,
        target_version: int | None = None,
        logger: Any | None = None,
    ) -> None:
        self._steps = dict(MIGRATION_STEPS if steps is None else steps)
        self._target_version = (
            schema.current_version() if target_version is None else target_version
        )
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    @property
    def target_version(self) -> int:
        return self._target_version

    def run(self, conn: sqlite3.Connection, stored_version: int) -> MigrationReport:
        """Apply every step between ``stored_version`` and the target version.

        ``conn`` must already be inside a transaction; each step gets its own savepoint
        so a failure leaves earlier steps in place.
        """

        if stored_version >= self._target_version:
            return MigrationReport(
                from_version=stored_version,
                target_version=self._target_version,
                final_version=stored_version,
                state=MigrationState.UP_TO_DATE,
            )

        results: list[MigrationStepResult] = []
        for version in range(stored_version, self._target_version):
            step = self._steps.get(version)
            if step is None:
                result = MigrationStepResult(
                    from_version=version,
                    to_version=version + 1,
                    name="missing",
                    succeeded=False,
                    error=f"no upgrade path from schema version {version}",
                )
                results.append(result)
                self._log_failure(result)
                break
            results.append(self._apply_step(conn, step))

        succeeded = all(result.succeeded for result in results)
        if succeeded:
            schema.set_stored_version(conn, self._target_version)
        final_version = self._target_version if succeeded else stored_version

        self._logger.info(
            "publisher_store_migration_finished",
            from_version=stored_version,
            target_version=self._target_version,
            final_version=final_version,
            failed_steps=[result.name for result in results if not result.succeeded],
        )
        return MigrationReport(
            from_version=stored_version,
            target_version=self._target_version,
            final_version=final_version,
            state=MigrationState.MIGRATING,
            steps=tuple(results),
        )

    def _apply_step(self, conn: sqlite3.Connection, step: MigrationStep) -> MigrationStepResult:
        try:
            with _savepoint(conn, f"migrate_v{step.from_version}_to_v{step.to_version}"):
                step.apply(conn)
        except (sqlite3.Error, MigrationStepError, ValueError) as exc:
            result = MigrationStepResult(
                from_version=step.from_version,
                to_version=step.to_version,
                name=step.name,
                succeeded=False,
                error=str(exc),
            )
            self._log_failure(result)
            return result

        self._logger.info(
            "publisher_store_migration_step_applied",
            from_version=step.from_version,
            to_version=step.to_version,
            step=step.name,
        )
        return MigrationStepResult(
            from_version=step.from_version,
            to_version=step.to_version,
            name=step.name,
            succeeded=True,
        )

    def _log_failure(self, result: MigrationStepResult) -> None:
        self._logger.error(
            "publisher_store_migration_step_failed",
            from_version=result.from_version,
            to_version=result.to_version,
            step=result.name,
            error=result.error,
        )


@contextmanager
def _savepoint(conn: sqlite3.Connection, name: str) -> Iterator[None]:
    savepoint = schema.validate_identifier(name)
    conn.execute(f"SAVEPOINT {savepoint}")
    try:
        yield
    except BaseException:
        conn.execute(f"ROLLBACK TO SAVEPOINT {savepoint}")
        conn.execute(f"RELEASE SAVEPOINT {savepoint}")
        raise
    else:
        conn.execute(f"RELEASE SAVEPOINT {savepoint}")


__all__ = [
    "MIGRATION_STEPS",
    "MigrationEngine",
    "MigrationReport",
    "MigrationState",
    "MigrationStep",
    "MigrationStepError",
    "MigrationStepResult",
    "classify",
]
