"""Domain records and enums for publisher reputation, activity and contributions."""

from publisher_info_store.domain.models import (
    ActivityFilter,
    ActivityInfo,
    ContributionCategory,
    ContributionInfo,
    ExcludeFilter,
    ExcludeState,
    MediaPublisherInfo,
    PublisherActivity,
    PublisherContribution,
    PublisherInfo,
    PublisherMonth,
    PublisherRecurringDonation,
    RecurringDonation,
)

__all__ = [
    "ActivityFilter",
    "ActivityInfo",
    "ContributionCategory",
    "ContributionInfo",
    "ExcludeFilter",
    "ExcludeState",
    "MediaPublisherInfo",
    "PublisherActivity",
    "PublisherContribution",
    "PublisherInfo",
    "PublisherMonth",
    "PublisherRecurringDonation",
    "RecurringDonation",
]
