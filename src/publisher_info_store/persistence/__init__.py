"""Persistence layer: schema, migrations, repositories, and the store handle."""

from publisher_info_store.persistence.migrations import (
    MigrationEngine,
    MigrationReport,
    MigrationState,
    MigrationStep,
    MigrationStepError,
    MigrationStepResult,
)
from publisher_info_store.persistence.query_builder import (
    BuiltQuery,
    QueryBuilder,
    build_activity_query,
)
from publisher_info_store.persistence.repositories import (
    ActivityRepo,
    ContributionRepo,
    MediaPublisherRepo,
    PublisherRepo,
    RecurringDonationRepo,
)
from publisher_info_store.persistence.store_db import (
    MemoryPressureLevel,
    OpenResult,
    OpenStatus,
    PublisherInfoDB,
    SchemaTooNewError,
    StoreBusyError,
    StoreCorruptionError,
    StoreError,
    StoreNotInitializedError,
    StoreOpenError,
)

__all__ = [
    "ActivityRepo",
    "BuiltQuery",
    "ContributionRepo",
    "MediaPublisherRepo",
    "MemoryPressureLevel",
    "MigrationEngine",
    "MigrationReport",
    "MigrationState",
    "MigrationStep",
    "MigrationStepError",
    "MigrationStepResult",
    "OpenResult",
    "OpenStatus",
    "PublisherInfoDB",
    "PublisherRepo",
    "QueryBuilder",
    "RecurringDonationRepo",
    "SchemaTooNewError",
    "StoreBusyError",
    "StoreCorruptionError",
    "StoreError",
    "StoreNotInitializedError",
    "StoreOpenError",
    "build_activity_query",
]
