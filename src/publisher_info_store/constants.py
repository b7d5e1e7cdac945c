"""Stable constants shared across the publisher info store."""

from __future__ import annotations

from pathlib import PurePosixPath
from typing import Final

# Schema versions for the persisted store.
CURRENT_SCHEMA_VERSION: Final[int] = 3
COMPATIBLE_SCHEMA_VERSION: Final[int] = 1

# Meta table keys.
META_VERSION_KEY: Final[str] = "version"
META_COMPATIBLE_VERSION_KEY: Final[str] = "last_compatible_version"

# Default runtime paths (relative to the working directory unless overridden by config).
DEFAULT_DB_PATH: Final[PurePosixPath] = PurePosixPath("publisher_info_db")
DEFAULT_LOG_DIR: Final[PurePosixPath] = PurePosixPath("logs")

# Visit count assigned to activity rows carried over from schema version 2.
LEGACY_ACTIVITY_VISITS: Final[int] = 5

__all__ = [
    "COMPATIBLE_SCHEMA_VERSION",
    "CURRENT_SCHEMA_VERSION",
    "DEFAULT_DB_PATH",
    "DEFAULT_LOG_DIR",
    "LEGACY_ACTIVITY_VISITS",
    "META_COMPATIBLE_VERSION_KEY",
    "META_VERSION_KEY",
]
