"""Parameterized query assembly for filtered activity listings."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Final

from publisher_info_store.domain.models import (
    ActivityFilter,
    ExcludeFilter,
    ExcludeState,
    PublisherMonth,
)

SQLValue = str | int | float | bytes | None

ACTIVITY_SELECT: Final[str] = """
SELECT ai.publisher_id, ai.duration, ai.visits, ai.score, ai.percent, ai.weight,
       ai.month, ai.year, ai.reconcile_stamp,
       pi.verified, pi.excluded, pi.name, pi.favicon, pi.url, pi.provider
FROM activity_info AS ai
INNER JOIN publisher_info AS pi ON ai.publisher_id = pi.publisher_id
""".strip()

# Public sort key -> qualified column. Anything else is rejected before reaching SQLite.
ORDER_BY_COLUMNS: Final[dict[str, str]] = {
    "publisher_id": "ai.publisher_id",
    "duration": "ai.duration",
    "visits": "ai.visits",
    "score": "ai.score",
    "percent": "ai.percent",
    "weight": "ai.weight",
    "month": "ai.month",
    "year": "ai.year",
    "reconcile_stamp": "ai.reconcile_stamp",
    "verified": "pi.verified",
    "excluded": "pi.excluded",
    "name": "pi.name",
    "url": "pi.url",
    "provider": "pi.provider",
}


@dataclass(frozen=True, slots=True)
class BuiltQuery:
    sql: str
    params: tuple[SQLValue, ...]


@dataclass(slots=True)
class QueryBuilder:
    """Accumulate ``(fragment, value)`` pairs so SQL text and bind order cannot drift apart.

    Every placeholder is appended together with its value; ``build`` renders the text
    and the parameter tuple from the same ordered sequence.
    """

    base: str
    default_order: str | None = None
    _predicates: list[tuple[str, SQLValue]] = field(default_factory=list)
    _order_by: list[str] = field(default_factory=list)
    _limit: int | None = None
    _offset: int | None = None

    def where(self, fragment: str, value: SQLValue) -> QueryBuilder:
        if fragment.count("?") != 1:
            raise ValueError(f"predicate must bind exactly one parameter: {fragment!r}")
        self._predicates.append((fragment, value))
        return self

    def order_by(self, key: str, *, ascending: bool = True) -> QueryBuilder:
        column = ORDER_BY_COLUMNS.get(key)
        if column is None:
            allowed = ", ".join(sorted(ORDER_BY_COLUMNS))
            raise ValueError(f"unsupported order_by column {key!r}; expected one of: {allowed}")
        self._order_by.append(f"{column} {'ASC' if ascending else 'DESC'}")
        return self

    def paginate(self, limit: int, offset: int) -> QueryBuilder:
        if limit > 0:
            self._limit = limit
            # Offsets of 0 and 1 both mean "from the start" for paging callers.
            self._offset = offset if offset > 1 else None
        return self

    def build(self) -> BuiltQuery:
        parts = [self.base, "WHERE 1 = 1"]
        params: list[SQLValue] = []
        for fragment, value in self._predicates:
            parts.append(f"AND {fragment}")
            params.append(value)
        order = self._order_by or ([self.default_order] if self.default_order else [])
        if order:
            parts.append("ORDER BY " + ", ".join(order))
        if self._limit is not None:
            parts.append("LIMIT ?")
            params.append(self._limit)
            if self._offset is not None:
                parts.append("OFFSET ?")
                params.append(self._offset)
        return BuiltQuery(sql="\n".join(parts), params=tuple(params))


def build_activity_query(activity_filter: ActivityFilter) -> BuiltQuery:
    """Translate an ``ActivityFilter`` into SQL plus positional parameters.

    Predicates are appended in a fixed field order: publisher id, month, year,
    reconcile stamp, minimum duration, exclusion mode.
    """

    # Without explicit keys rows come back in activity storage (rowid) order.
    builder = QueryBuilder(ACTIVITY_SELECT, default_order="ai.rowid ASC")

    if activity_filter.publisher_id:
        builder.where("ai.publisher_id = ?", activity_filter.publisher_id)
    if activity_filter.month != PublisherMonth.ANY:
        builder.where("ai.month = ?", int(activity_filter.month))
    if activity_filter.year > 0:
        builder.where("ai.year = ?", activity_filter.year)
    if activity_filter.reconcile_stamp > 0:
        builder.where("ai.reconcile_stamp = ?", activity_filter.reconcile_stamp)
    if activity_filter.min_duration > 0:
        builder.where("ai.duration >= ?", activity_filter.min_duration)

    excluded = activity_filter.excluded
    if excluded == ExcludeFilter.ALL_EXCEPT_EXCLUDED:
        builder.where("pi.excluded != ?", int(ExcludeState.EXCLUDED))
    elif excluded != ExcludeFilter.ALL:
        builder.where("pi.excluded = ?", int(excluded))

    for key, ascending in activity_filter.order_by:
        builder.order_by(key, ascending=ascending)

    builder.paginate(activity_filter.limit, activity_filter.offset)
    return builder.build()


__all__ = [
    "ACTIVITY_SELECT",
    "ORDER_BY_COLUMNS",
    "BuiltQuery",
    "QueryBuilder",
    "SQLValue",
    "build_activity_query",
]
