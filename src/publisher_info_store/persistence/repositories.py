"""
publisher-info-store — record repositories

Purpose
- Typed read/write access for publishers, activity, contributions, media mappings,
  and recurring donations.

Functional requirements
- Every dependent write inserts a publisher shell (insert-or-ignore) in the same
  transaction so the foreign key always resolves.
- Writes return ``False`` and log on storage errors; use before ``open()`` raises.
- Only ``PublisherRepo.put`` refreshes publisher metadata, in place; a publisher row is
  never replaced, so the delete cascade only fires on an explicit delete.
"""

from __future__ import annotations

import sqlite3
from typing import TYPE_CHECKING, Any, Final

import structlog

from publisher_info_store.domain.models import (
    ActivityFilter,
    ActivityInfo,
    ContributionCategory,
    ContributionInfo,
    MediaPublisherInfo,
    PublisherActivity,
    PublisherContribution,
    PublisherInfo,
    PublisherRecurringDonation,
    RecurringDonation,
)
from publisher_info_store.persistence.query_builder import build_activity_query
from publisher_info_store.persistence.store_db import (
    PublisherInfoDB,
    RowValue,
    StoreError,
)

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping

_PUBLISHER_COLUMNS: Final[str] = "publisher_id, verified, excluded, name, favicon, url, provider"

_INSERT_PUBLISHER_SHELL: Final[str] = """
INSERT INTO publisher_info (publisher_id, verified, excluded, name, favicon, url, provider)
VALUES (?, 0, 0, '', '', '', '')
ON CONFLICT(publisher_id) DO NOTHING
"""

_INSERT_PUBLISHER_IF_ABSENT: Final[str] = f"""
INSERT INTO publisher_info ({_PUBLISHER_COLUMNS})
VALUES (?, ?, ?, ?, ?, ?, ?)
ON CONFLICT(publisher_id) DO NOTHING
"""

_UPSERT_PUBLISHER: Final[str] = f"""
INSERT INTO publisher_info ({_PUBLISHER_COLUMNS})
VALUES (?, ?, ?, ?, ?, ?, ?)
ON CONFLICT(publisher_id) DO UPDATE SET
    verified=excluded.verified,
    excluded=excluded.excluded,
    name=excluded.name,
    favicon=excluded.favicon,
    url=excluded.url,
    provider=excluded.provider
"""

# Rows coming back from SQLite carry 0/1 for booleans and plain ints for enums;
# the record constructors coerce and validate them.


def _publisher_params(publisher: PublisherInfo) -> tuple[RowValue, ...]:
    return (
        publisher.publisher_id,
        int(publisher.verified),
        int(publisher.excluded),
        publisher.name,
        publisher.favicon,
        publisher.url,
        publisher.provider,
    )


def _publisher_from_row(row: Mapping[str, RowValue]) -> PublisherInfo:
    return PublisherInfo(
        publisher_id=row["publisher_id"],  # type: ignore[arg-type]
        verified=row["verified"],  # type: ignore[arg-type]
        excluded=row["excluded"],  # type: ignore[arg-type]
        name=row["name"],  # type: ignore[arg-type]
        favicon=row["favicon"],  # type: ignore[arg-type]
        url=row["url"],  # type: ignore[arg-type]
        provider=row["provider"],  # type: ignore[arg-type]
    )


def _activity_from_row(row: Mapping[str, RowValue]) -> ActivityInfo:
    return ActivityInfo(
        publisher_id=row["publisher_id"],  # type: ignore[arg-type]
        month=row["month"],  # type: ignore[arg-type]
        year=row["year"],  # type: ignore[arg-type]
        reconcile_stamp=row["reconcile_stamp"],  # type: ignore[arg-type]
        duration=row["duration"],  # type: ignore[arg-type]
        visits=row["visits"],  # type: ignore[arg-type]
        score=row["score"],  # type: ignore[arg-type]
        percent=row["percent"],  # type: ignore[arg-type]
        weight=row["weight"],  # type: ignore[arg-type]
    )


def _contribution_from_row(row: Mapping[str, RowValue]) -> ContributionInfo:
    return ContributionInfo(
        publisher_id=row["publisher_id"],  # type: ignore[arg-type]
        probi=row["probi"],  # type: ignore[arg-type]
        date=row["date"],  # type: ignore[arg-type]
        category=row["category"],  # type: ignore[arg-type]
        month=row["month"],  # type: ignore[arg-type]
        year=row["year"],  # type: ignore[arg-type]
    )


def _donation_from_row(row: Mapping[str, RowValue]) -> RecurringDonation:
    return RecurringDonation(
        publisher_id=row["publisher_id"],  # type: ignore[arg-type]
        amount=row["amount"],  # type: ignore[arg-type]
        added_date=row["added_date"],  # type: ignore[arg-type]
    )


class _BaseRepo:
    def __init__(self, db: PublisherInfoDB, *, logger: Any | None = None) -> None:
        self._db = db
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    def _write(
        self,
        operation: str,
        publisher_id: str,
        work: Callable[[sqlite3.Connection], object],
    ) -> bool:
        """Run ``work`` in one transaction; storage failures become ``False`` plus a log event."""

        self._db.require_open()
        try:
            with self._db.transaction() as conn:
                work(conn)
        except (sqlite3.Error, StoreError) as exc:
            self._logger.warning(
                "publisher_store_write_failed",
                operation=operation,
                publisher_id=publisher_id,
                error=str(exc),
            )
            return False
        return True

    def _ensure_publisher(self, conn: sqlite3.Connection, publisher_id: str) -> None:
        self._db.execute(_INSERT_PUBLISHER_SHELL, (publisher_id,), conn=conn)


class PublisherRepo(_BaseRepo):
    """Repository for publisher metadata rows."""

    def put(self, publisher: PublisherInfo) -> bool:
        return self._write(
            "publisher.put",
            publisher.publisher_id,
            lambda conn: self._db.execute(
                _UPSERT_PUBLISHER, _publisher_params(publisher), conn=conn
            ),
        )

    def put_if_absent(self, publisher: PublisherInfo) -> bool:
        return self._write(
            "publisher.put_if_absent",
            publisher.publisher_id,
            lambda conn: self._db.execute(
                _INSERT_PUBLISHER_IF_ABSENT, _publisher_params(publisher), conn=conn
            ),
        )

    def get(self, publisher_id: str) -> PublisherInfo | None:
        row = self._db.query_one(
            f"SELECT {_PUBLISHER_COLUMNS} FROM publisher_info WHERE publisher_id = ?",
            (publisher_id,),
        )
        return None if row is None else _publisher_from_row(row)


class ActivityRepo(_BaseRepo):
    """Repository for monthly publisher activity, keyed by publisher/month/year/stamp."""

    def put(self, activity: ActivityInfo, publisher: PublisherInfo | None = None) -> bool:
        """Upsert ``activity`` after inserting ``publisher`` (or a bare shell) if it is absent.

        An existing publisher row is left untouched. A ``publisher`` whose id differs from
        the activity's is rejected with ``False``.
        """

        if publisher is not None and publisher.publisher_id != activity.publisher_id:
            self._logger.warning(
                "publisher_store_write_failed",
                operation="activity.put",
                publisher_id=activity.publisher_id,
                error=f"publisher id mismatch: {publisher.publisher_id!r}",
            )
            return False

        def work(conn: sqlite3.Connection) -> None:
            if publisher is None:
                self._ensure_publisher(conn, activity.publisher_id)
            else:
                self._db.execute(
                    _INSERT_PUBLISHER_IF_ABSENT, _publisher_params(publisher), conn=conn
                )
            self._db.execute(
                """
                INSERT INTO activity_info (
                    publisher_id,
                    duration,
                    visits,
                    score,
                    percent,
                    weight,
                    month,
                    year,
                    reconcile_stamp
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(publisher_id, month, year, reconcile_stamp) DO UPDATE SET
                    duration=excluded.duration,
                    visits=excluded.visits,
                    score=excluded.score,
                    percent=excluded.percent,
                    weight=excluded.weight
                """,
                (
                    activity.publisher_id,
                    activity.duration,
                    activity.visits,
                    activity.score,
                    activity.percent,
                    activity.weight,
                    activity.month,
                    activity.year,
                    activity.reconcile_stamp,
                ),
                conn=conn,
            )

        return self._write("activity.put", activity.publisher_id, work)

    def get(self, key: tuple[str, int, int, int]) -> ActivityInfo | None:
        publisher_id, month, year, reconcile_stamp = key
        row = self._db.query_one(
            """
            SELECT publisher_id, duration, visits, score, percent, weight,
                   month, year, reconcile_stamp
            FROM activity_info
            WHERE publisher_id = ? AND month = ? AND year = ? AND reconcile_stamp = ?
            """,
            (publisher_id, int(month), int(year), int(reconcile_stamp)),
        )
        return None if row is None else _activity_from_row(row)

    def list(self, activity_filter: ActivityFilter | None = None) -> list[PublisherActivity]:
        """Activity rows joined with their publisher, filtered and paged by ``activity_filter``."""

        query = build_activity_query(activity_filter or ActivityFilter())
        rows = self._db.query_all(query.sql, query.params)
        return [
            PublisherActivity(activity=_activity_from_row(row), publisher=_publisher_from_row(row))
            for row in rows
        ]


class ContributionRepo(_BaseRepo):
    """Append-only repository for one-time contributions."""

    def put(self, contribution: ContributionInfo) -> bool:
        def work(conn: sqlite3.Connection) -> None:
            self._ensure_publisher(conn, contribution.publisher_id)
            self._db.execute(
                """
                INSERT INTO contribution_info (publisher_id, probi, date, category, month, year)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    contribution.publisher_id,
                    contribution.probi,
                    contribution.date,
                    int(contribution.category),
                    contribution.month,
                    contribution.year,
                ),
                conn=conn,
            )

        return self._write("contribution.put", contribution.publisher_id, work)

    def list(self, publisher_id: str) -> list[ContributionInfo]:
        rows = self._db.query_all(
            """
            SELECT publisher_id, probi, date, category, month, year
            FROM contribution_info
            WHERE publisher_id = ?
            ORDER BY date ASC, rowid ASC
            """,
            (publisher_id,),
        )
        return [_contribution_from_row(row) for row in rows]

    def list_tips(self, month: int, year: int) -> list[PublisherContribution]:
        """Tips and direct donations made in ``month``/``year``, joined with publisher metadata."""

        rows = self._db.query_all(
            """
            SELECT ci.publisher_id, ci.probi, ci.date, ci.category, ci.month, ci.year,
                   pi.verified, pi.excluded, pi.name, pi.favicon, pi.url, pi.provider
            FROM contribution_info AS ci
            INNER JOIN publisher_info AS pi ON ci.publisher_id = pi.publisher_id
            WHERE ci.month = ? AND ci.year = ? AND ci.category IN (?, ?)
            ORDER BY ci.date ASC, ci.rowid ASC
            """,
            (
                int(month),
                int(year),
                int(ContributionCategory.TIPPING),
                int(ContributionCategory.DIRECT_DONATION),
            ),
        )
        return [
            PublisherContribution(
                contribution=_contribution_from_row(row),
                publisher=_publisher_from_row(row),
            )
            for row in rows
        ]


class MediaPublisherRepo(_BaseRepo):
    """Repository mapping media keys (e.g. a channel or account id) to publishers."""

    def put(self, mapping: MediaPublisherInfo) -> bool:
        def work(conn: sqlite3.Connection) -> None:
            self._ensure_publisher(conn, mapping.publisher_id)
            self._db.execute(
                """
                INSERT INTO media_publisher_info (media_key, publisher_id)
                VALUES (?, ?)
                ON CONFLICT(media_key) DO UPDATE SET publisher_id=excluded.publisher_id
                """,
                (mapping.media_key, mapping.publisher_id),
                conn=conn,
            )

        return self._write("media_publisher.put", mapping.publisher_id, work)

    def get(self, media_key: str) -> MediaPublisherInfo | None:
        row = self._db.query_one(
            "SELECT media_key, publisher_id FROM media_publisher_info WHERE media_key = ?",
            (media_key,),
        )
        if row is None:
            return None
        return MediaPublisherInfo(
            media_key=row["media_key"],  # type: ignore[arg-type]
            publisher_id=row["publisher_id"],  # type: ignore[arg-type]
        )

    def get_publisher(self, media_key: str) -> PublisherInfo | None:
        row = self._db.query_one(
            """
            SELECT pi.publisher_id, pi.verified, pi.excluded, pi.name, pi.favicon,
                   pi.url, pi.provider
            FROM media_publisher_info AS mpi
            INNER JOIN publisher_info AS pi ON mpi.publisher_id = pi.publisher_id
            WHERE mpi.media_key = ?
            """,
            (media_key,),
        )
        return None if row is None else _publisher_from_row(row)


class RecurringDonationRepo(_BaseRepo):
    """Repository for monthly recurring donations, one per publisher."""

    def put(self, donation: RecurringDonation) -> bool:
        def work(conn: sqlite3.Connection) -> None:
            self._ensure_publisher(conn, donation.publisher_id)
            self._db.execute(
                """
                INSERT INTO recurring_donation (publisher_id, amount, added_date)
                VALUES (?, ?, ?)
                ON CONFLICT(publisher_id) DO UPDATE SET
                    amount=excluded.amount,
                    added_date=excluded.added_date
                """,
                (donation.publisher_id, donation.amount, donation.added_date),
                conn=conn,
            )

        return self._write("recurring_donation.put", donation.publisher_id, work)

    def get(self, publisher_id: str) -> RecurringDonation | None:
        row = self._db.query_one(
            """
            SELECT publisher_id, amount, added_date
            FROM recurring_donation
            WHERE publisher_id = ?
            """,
            (publisher_id,),
        )
        return None if row is None else _donation_from_row(row)

    def list(self) -> list[PublisherRecurringDonation]:
        rows = self._db.query_all(
            """
            SELECT rd.publisher_id, rd.amount, rd.added_date,
                   pi.verified, pi.excluded, pi.name, pi.favicon, pi.url, pi.provider
            FROM recurring_donation AS rd
            INNER JOIN publisher_info AS pi ON rd.publisher_id = pi.publisher_id
            ORDER BY rd.added_date ASC, rd.publisher_id ASC
            """
        )
        return [
            PublisherRecurringDonation(
                donation=_donation_from_row(row),
                publisher=_publisher_from_row(row),
            )
            for row in rows
        ]

    def remove(self, publisher_id: str) -> bool:
        """Delete the donation for ``publisher_id``; a missing row is a successful no-op."""

        return self._write(
            "recurring_donation.remove",
            publisher_id,
            lambda conn: self._db.execute(
                "DELETE FROM recurring_donation WHERE publisher_id = ?",
                (publisher_id,),
                conn=conn,
            ),
        )


__all__ = [
    "ActivityRepo",
    "ContributionRepo",
    "MediaPublisherRepo",
    "PublisherRepo",
    "RecurringDonationRepo",
]
