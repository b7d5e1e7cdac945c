"""
publisher-info-store config package public API.

Supports loading from ``publisher_store.toml`` + ``PUBLISHER_STORE_`` env overrides and
fails fast with structured validation/load errors.
"""

from publisher_info_store.config.loader import (
    DEFAULT_CONFIG_FILE,
    ENV_PREFIX,
    ConfigLoadError,
    dump_effective_config,
    load_config,
    normalize_paths,
)
from publisher_info_store.config.schema import (
    DEFAULT_CONFIG,
    JOURNAL_MODES,
    PATH_FIELDS,
    ConfigValidationError,
    ConfigValidationIssue,
    StoreConfig,
    default_config,
    merge_config,
    validate_config,
)

__all__ = [
    "ConfigLoadError",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "DEFAULT_CONFIG",
    "DEFAULT_CONFIG_FILE",
    "ENV_PREFIX",
    "JOURNAL_MODES",
    "PATH_FIELDS",
    "StoreConfig",
    "default_config",
    "dump_effective_config",
    "load_config",
    "merge_config",
    "normalize_paths",
    "validate_config",
]
