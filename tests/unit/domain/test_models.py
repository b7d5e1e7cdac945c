from __future__ import annotations

import json

import pytest

from publisher_info_store.domain.models import (
    ActivityFilter,
    ActivityInfo,
    ContributionCategory,
    ContributionInfo,
    ExcludeFilter,
    ExcludeState,
    MediaPublisherInfo,
    PublisherActivity,
    PublisherInfo,
    PublisherMonth,
    RecurringDonation,
)


def test_publisher_accepts_storage_encodings() -> None:
    publisher = PublisherInfo(
        publisher_id="a.com", verified=1, excluded=2  # type: ignore[arg-type]
    )

    assert publisher.verified is True
    assert publisher.excluded is ExcludeState.INCLUDED
    by_name = PublisherInfo(publisher_id="a.com", excluded="excluded")  # type: ignore[arg-type]
    assert by_name.excluded is ExcludeState.EXCLUDED


@pytest.mark.parametrize(
    "kwargs",
    [
        {"publisher_id": ""},
        {"publisher_id": "   "},
        {"publisher_id": "a.com", "verified": 2},
        {"publisher_id": "a.com", "excluded": 7},
        {"publisher_id": "a.com", "name": None},
    ],
)
def test_publisher_rejects_invalid_values(kwargs: dict[str, object]) -> None:
    with pytest.raises(ValueError, match="PublisherInfo"):
        PublisherInfo(**kwargs)  # type: ignore[arg-type]


def test_activity_validation_and_key() -> None:
    activity = ActivityInfo(publisher_id="a.com", month=3, year=2020, reconcile_stamp=7)

    assert activity.key == ("a.com", 3, 2020, 7)
    with pytest.raises(ValueError, match="ActivityInfo.month"):
        ActivityInfo(publisher_id="a.com", month=13, year=2020)
    with pytest.raises(ValueError, match="ActivityInfo.duration"):
        ActivityInfo(publisher_id="a.com", month=1, year=2020, duration=-1)
    with pytest.raises(ValueError, match="ActivityInfo.score"):
        ActivityInfo(publisher_id="a.com", month=1, year=2020, score=float("nan"))


def test_contribution_probi_must_be_decimal_text() -> None:
    contribution = ContributionInfo(
        publisher_id="a.com",
        probi="1000000000000000000",
        date=1,
        category=8,  # type: ignore[arg-type]
        month=3,
        year=2020,
    )

    assert contribution.category is ContributionCategory.TIPPING
    with pytest.raises(ValueError, match="probi"):
        ContributionInfo(
            publisher_id="a.com",
            probi="1e18",
            date=1,
            category=ContributionCategory.TIPPING,
            month=3,
            year=2020,
        )


def test_donation_amount_must_be_non_negative() -> None:
    with pytest.raises(ValueError, match="amount"):
        RecurringDonation(publisher_id="a.com", amount=-1.0)


def test_joined_records_serialize_canonically() -> None:
    joined = PublisherActivity(
        activity=ActivityInfo(publisher_id="a.com", month=3, year=2020, duration=120),
        publisher=PublisherInfo(publisher_id="a.com", excluded=ExcludeState.EXCLUDED),
    )

    payload = json.loads(joined.to_json())

    assert payload["activity"]["duration"] == 120
    assert payload["publisher"]["excluded"] == 1
    assert list(payload) == ["activity", "publisher"]


def test_from_dict_rejects_unknown_fields() -> None:
    mapping = MediaPublisherInfo.from_dict({"media_key": "k", "publisher_id": "a.com"})

    assert mapping == MediaPublisherInfo(media_key="k", publisher_id="a.com")
    with pytest.raises(ValueError, match="unexpected fields"):
        MediaPublisherInfo.from_dict({"media_key": "k", "publisher_id": "a.com", "extra": 1})


def test_activity_filter_normalizes_inputs() -> None:
    activity_filter = ActivityFilter(
        month=4,
        excluded="all_except_excluded",  # type: ignore[arg-type]
        order_by=[["percent", False]],  # type: ignore[list-item]
    )

    assert activity_filter.month is PublisherMonth.APRIL
    assert activity_filter.excluded is ExcludeFilter.ALL_EXCEPT_EXCLUDED
    assert activity_filter.order_by == (("percent", False),)
    assert ActivityFilter().month is PublisherMonth.ANY


@pytest.mark.parametrize(
    "kwargs",
    [
        {"month": 0},
        {"month": 13},
        {"offset": -1},
        {"order_by": (("percent",),)},
        {"excluded": 9},
    ],
)
def test_activity_filter_rejects_invalid_values(kwargs: dict[str, object]) -> None:
    with pytest.raises(ValueError, match="ActivityFilter"):
        ActivityFilter(**kwargs)  # type: ignore[arg-type]
