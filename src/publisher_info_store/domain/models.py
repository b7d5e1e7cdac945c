"""Dataclass domain records for the publisher info store with strict validation."""

from __future__ import annotations

import json
import math
import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field, fields
from enum import IntEnum
from typing import NoReturn, TypeVar

JSONScalar = str | int | float | bool | None
JSONValue = JSONScalar | list["JSONValue"] | dict[str, "JSONValue"]

TRecord = TypeVar("TRecord", bound="CanonicalRecord")
TEnum = TypeVar("TEnum", bound=IntEnum)

_MAX_TEXT = 8192
_MAX_KEY = 2048
_PROBI_RE = re.compile(r"^-?[0-9]+(\.[0-9]+)?$")


class ExcludeState(IntEnum):
    """Per-publisher exclusion choice; DEFAULT means the user has not decided."""

    DEFAULT = 0
    EXCLUDED = 1
    INCLUDED = 2


class ExcludeFilter(IntEnum):
    DEFAULT = 0
    EXCLUDED = 1
    INCLUDED = 2
    ALL = 3
    ALL_EXCEPT_EXCLUDED = 4


class ContributionCategory(IntEnum):
    AUTO_CONTRIBUTE = 2
    TIPPING = 8
    DIRECT_DONATION = 16
    RECURRING_DONATION = 32


class PublisherMonth(IntEnum):
    ANY = -1
    JANUARY = 1
    FEBRUARY = 2
    MARCH = 3
    APRIL = 4
    MAY = 5
    JUNE = 6
    JULY = 7
    AUGUST = 8
    SEPTEMBER = 9
    OCTOBER = 10
    NOVEMBER = 11
    DECEMBER = 12


class CanonicalRecord:
    """Mixin for canonical dict/json serialization of flat records."""

    def to_dict(self) -> dict[str, JSONValue]:
        payload: dict[str, JSONValue] = {}
        for item in fields(self):  # type: ignore[arg-type]
            value = getattr(self, item.name)
            if isinstance(value, IntEnum):
                payload[item.name] = int(value)
            elif isinstance(value, CanonicalRecord):
                payload[item.name] = value.to_dict()
            else:
                payload[item.name] = value
        return payload

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":"), ensure_ascii=False)

    @classmethod
    def from_dict(cls: type[TRecord], data: Mapping[str, object]) -> TRecord:
        names = {item.name for item in fields(cls)}  # type: ignore[arg-type]
        if not isinstance(data, Mapping):
            _fail(cls.__name__, f"expected object, got {type(data).__name__}")
        unknown = sorted(str(key) for key in data if key not in names)
        if unknown:
            _fail(cls.__name__, f"unexpected fields: {unknown}")
        return cls(**{str(key): value for key, value in data.items()})


def _fail(path: str, message: str) -> NoReturn:
    raise ValueError(f"{path}: {message}")


def _as_str(
    value: object,
    path: str,
    *,
    min_len: int = 0,
    max_len: int = _MAX_TEXT,
) -> str:
    if not isinstance(value, str):
        _fail(path, f"expected string, got {type(value).__name__}")
    if len(value) < min_len:
        _fail(path, f"must be at least {min_len} character(s)")
    if len(value) > max_len:
        _fail(path, f"must be <= {max_len} characters")
    return value


def _as_key(value: object, path: str) -> str:
    key = _as_str(value, path, min_len=1, max_len=_MAX_KEY)
    if not key.strip():
        _fail(path, "must not be blank")
    return key


def _as_bool(value: object, path: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    _fail(path, f"expected boolean, got {type(value).__name__}")


def _as_int(
    value: object,
    path: str,
    *,
    minimum: int | None = None,
    maximum: int | None = None,
) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        _fail(path, f"expected integer, got {type(value).__name__}")
    if minimum is not None and value < minimum:
        _fail(path, f"must be >= {minimum}")
    if maximum is not None and value > maximum:
        _fail(path, f"must be <= {maximum}")
    return int(value)


def _as_float(value: object, path: str, *, minimum: float | None = None) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        _fail(path, f"expected number, got {type(value).__name__}")
    parsed = float(value)
    if not math.isfinite(parsed):
        _fail(path, "must be finite")
    if minimum is not None and parsed < minimum:
        _fail(path, f"must be >= {minimum}")
    return parsed


def _as_enum(enum_type: type[TEnum], value: object, path: str) -> TEnum:
    if isinstance(value, enum_type):
        return value
    if isinstance(value, str):
        try:
            return enum_type[value.strip().upper().replace("-", "_")]
        except KeyError:
            pass
    elif isinstance(value, int) and not isinstance(value, bool):
        try:
            return enum_type(value)
        except ValueError:
            pass
    allowed = ", ".join(f"{item.name.lower()}={item.value}" for item in enum_type)
    _fail(path, f"invalid value {value!r}; expected one of: {allowed}")


def _as_month(value: object, path: str) -> int:
    return _as_int(value, path, minimum=1, maximum=12)


def _as_probi(value: object, path: str) -> str:
    text = _as_str(value, path, min_len=1, max_len=128)
    if not _PROBI_RE.match(text):
        _fail(path, f"must be a decimal string, got {text!r}")
    return text


@dataclass(slots=True)
class PublisherInfo(CanonicalRecord):
    publisher_id: str
    verified: bool = False
    excluded: ExcludeState = ExcludeState.DEFAULT
    name: str = ""
    favicon: str = ""
    url: str = ""
    provider: str = ""

    def __post_init__(self) -> None:
        self.publisher_id = _as_key(self.publisher_id, "PublisherInfo.publisher_id")
        self.verified = _as_bool(self.verified, "PublisherInfo.verified")
        self.excluded = _as_enum(ExcludeState, self.excluded, "PublisherInfo.excluded")
        self.name = _as_str(self.name, "PublisherInfo.name")
        self.favicon = _as_str(self.favicon, "PublisherInfo.favicon")
        self.url = _as_str(self.url, "PublisherInfo.url")
        self.provider = _as_str(self.provider, "PublisherInfo.provider")

    @classmethod
    def shell(cls, publisher_id: str) -> PublisherInfo:
        """Bare publisher row used to satisfy the foreign key of a dependent record."""

        return cls(publisher_id=publisher_id)


@dataclass(slots=True)
class ActivityInfo(CanonicalRecord):
    publisher_id: str
    month: int
    year: int
    reconcile_stamp: int = 0
    duration: int = 0
    visits: int = 0
    score: float = 0.0
    percent: int = 0
    weight: float = 0.0

    def __post_init__(self) -> None:
        self.publisher_id = _as_key(self.publisher_id, "ActivityInfo.publisher_id")
        self.month = _as_month(self.month, "ActivityInfo.month")
        self.year = _as_int(self.year, "ActivityInfo.year", minimum=0)
        self.reconcile_stamp = _as_int(
            self.reconcile_stamp, "ActivityInfo.reconcile_stamp", minimum=0
        )
        self.duration = _as_int(self.duration, "ActivityInfo.duration", minimum=0)
        self.visits = _as_int(self.visits, "ActivityInfo.visits", minimum=0)
        self.score = _as_float(self.score, "ActivityInfo.score")
        self.percent = _as_int(self.percent, "ActivityInfo.percent", minimum=0)
        self.weight = _as_float(self.weight, "ActivityInfo.weight")

    @property
    def key(self) -> tuple[str, int, int, int]:
        return (self.publisher_id, self.month, self.year, self.reconcile_stamp)


@dataclass(slots=True)
class ContributionInfo(CanonicalRecord):
    publisher_id: str
    probi: str
    date: int
    category: ContributionCategory
    month: int
    year: int

    def __post_init__(self) -> None:
        self.publisher_id = _as_key(self.publisher_id, "ContributionInfo.publisher_id")
        self.probi = _as_probi(self.probi, "ContributionInfo.probi")
        self.date = _as_int(self.date, "ContributionInfo.date", minimum=0)
        self.category = _as_enum(ContributionCategory, self.category, "ContributionInfo.category")
        self.month = _as_month(self.month, "ContributionInfo.month")
        self.year = _as_int(self.year, "ContributionInfo.year", minimum=0)


@dataclass(slots=True)
class MediaPublisherInfo(CanonicalRecord):
    media_key: str
    publisher_id: str

    def __post_init__(self) -> None:
        self.media_key = _as_key(self.media_key, "MediaPublisherInfo.media_key")
        self.publisher_id = _as_key(self.publisher_id, "MediaPublisherInfo.publisher_id")


@dataclass(slots=True)
class RecurringDonation(CanonicalRecord):
    publisher_id: str
    amount: float
    added_date: int = 0

    def __post_init__(self) -> None:
        self.publisher_id = _as_key(self.publisher_id, "RecurringDonation.publisher_id")
        self.amount = _as_float(self.amount, "RecurringDonation.amount", minimum=0.0)
        self.added_date = _as_int(self.added_date, "RecurringDonation.added_date", minimum=0)


@dataclass(slots=True)
class PublisherActivity(CanonicalRecord):
    """Activity row joined with the publisher it belongs to."""

    activity: ActivityInfo
    publisher: PublisherInfo


@dataclass(slots=True)
class PublisherContribution(CanonicalRecord):
    """One-time contribution joined with publisher metadata."""

    contribution: ContributionInfo
    publisher: PublisherInfo


@dataclass(slots=True)
class PublisherRecurringDonation(CanonicalRecord):
    donation: RecurringDonation
    publisher: PublisherInfo


@dataclass(frozen=True, slots=True)
class ActivityFilter:
    """Optional-field filter for activity listing.

    ``None``/``""`` for ``publisher_id``, ``PublisherMonth.ANY`` for ``month`` and
    non-positive values for ``year``, ``reconcile_stamp`` and ``min_duration``
    leave the corresponding predicate out. ``limit <= 0`` disables pagination.
    """

    publisher_id: str | None = None
    month: PublisherMonth | int = PublisherMonth.ANY
    year: int = 0
    reconcile_stamp: int = 0
    min_duration: int = 0
    excluded: ExcludeFilter = ExcludeFilter.ALL
    order_by: Sequence[tuple[str, bool]] = field(default_factory=tuple)
    limit: int = 0
    offset: int = 0

    def __post_init__(self) -> None:
        if self.publisher_id is not None:
            _as_str(self.publisher_id, "ActivityFilter.publisher_id", max_len=_MAX_KEY)
        month = _as_int(self.month, "ActivityFilter.month", minimum=-1, maximum=12)
        if month == 0:
            _fail("ActivityFilter.month", "must be ANY (-1) or 1..12")
        object.__setattr__(self, "month", PublisherMonth(month))
        _as_int(self.year, "ActivityFilter.year")
        _as_int(self.reconcile_stamp, "ActivityFilter.reconcile_stamp")
        _as_int(self.min_duration, "ActivityFilter.min_duration")
        object.__setattr__(
            self, "excluded", _as_enum(ExcludeFilter, self.excluded, "ActivityFilter.excluded")
        )
        normalized: list[tuple[str, bool]] = []
        for index, entry in enumerate(self.order_by):
            if not isinstance(entry, (tuple, list)) or len(entry) != 2:
                _fail(f"ActivityFilter.order_by[{index}]", "expected (column, ascending) pair")
            column, ascending = entry
            normalized.append(
                (
                    _as_str(column, f"ActivityFilter.order_by[{index}]", min_len=1),
                    _as_bool(ascending, f"ActivityFilter.order_by[{index}]"),
                )
            )
        object.__setattr__(self, "order_by", tuple(normalized))
        _as_int(self.limit, "ActivityFilter.limit")
        _as_int(self.offset, "ActivityFilter.offset", minimum=0)


__all__ = [
    "ActivityFilter",
    "ActivityInfo",
    "CanonicalRecord",
    "ContributionCategory",
    "ContributionInfo",
    "ExcludeFilter",
    "ExcludeState",
    "JSONScalar",
    "JSONValue",
    "MediaPublisherInfo",
    "PublisherActivity",
    "PublisherContribution",
    "PublisherInfo",
    "PublisherMonth",
    "PublisherRecurringDonation",
    "RecurringDonation",
]
