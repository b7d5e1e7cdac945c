"""
publisher-info-store — config schema, defaults, and strict validation.

Purpose
- Define the typed runtime configuration for a store handle and its logging sinks.

Functional requirements
- Unknown sections/keys are rejected with structured issues.
- Validation is deterministic and reports every issue at once.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Final, Literal, TypedDict

from publisher_info_store.constants import DEFAULT_DB_PATH, DEFAULT_LOG_DIR

JournalMode = Literal["wal", "delete"]

JOURNAL_MODES: Final[tuple[str, ...]] = ("wal", "delete")
LOG_LEVELS: Final[tuple[str, ...]] = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

PATH_FIELDS: Final[tuple[tuple[str, ...], ...]] = (
    ("store", "path"),
    ("logging", "log_dir"),
)


class StoreSection(TypedDict):
    path: str
    busy_timeout_ms: int
    busy_retry_limit: int
    busy_retry_backoff_ms: int
    journal_mode: str


class LoggingSection(TypedDict):
    level: str
    log_dir: str
    log_to_stdout: bool


class ConfigPayload(TypedDict):
    store: StoreSection
    logging: LoggingSection


DEFAULT_CONFIG: Final[ConfigPayload] = {
    "store": {
        "path": DEFAULT_DB_PATH.as_posix(),
        "busy_timeout_ms": 5_000,
        "busy_retry_limit": 4,
        "busy_retry_backoff_ms": 25,
        "journal_mode": "wal",
    },
    "logging": {
        "level": "INFO",
        "log_dir": DEFAULT_LOG_DIR.as_posix(),
        "log_to_stdout": False,
    },
}


@dataclass(frozen=True, slots=True)
class ConfigValidationIssue:
    path: str
    message: str


class ConfigValidationError(ValueError):
    """Raised when strict config validation fails."""

    def __init__(self, issues: Sequence[ConfigValidationIssue]) -> None:
        self.issues = tuple(issues)
        if not self.issues:
            rendered = "unknown validation failure"
        else:
            rendered = "\n".join(f"- {item.path}: {item.message}" for item in self.issues)
        super().__init__(f"invalid config:\n{rendered}")


@dataclass(frozen=True, slots=True)
class StoreConfig:
    """Effective, validated configuration for one store handle."""

    path: Path
    busy_timeout_ms: int
    busy_retry_limit: int
    busy_retry_backoff_ms: int
    journal_mode: JournalMode
    log_level: str
    log_dir: Path
    log_to_stdout: bool

    @classmethod
    def from_mapping(cls, payload: Mapping[str, object]) -> StoreConfig:
        validated = validate_config(payload)
        store = validated["store"]
        logging_section = validated["logging"]
        return cls(
            path=Path(store["path"]),
            busy_timeout_ms=store["busy_timeout_ms"],
            busy_retry_limit=store["busy_retry_limit"],
            busy_retry_backoff_ms=store["busy_retry_backoff_ms"],
            journal_mode=store["journal_mode"],
            log_level=logging_section["level"],
            log_dir=Path(logging_section["log_dir"]),
            log_to_stdout=logging_section["log_to_stdout"],
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "store": {
                "path": self.path.as_posix(),
                "busy_timeout_ms": self.busy_timeout_ms,
                "busy_retry_limit": self.busy_retry_limit,
                "busy_retry_backoff_ms": self.busy_retry_backoff_ms,
                "journal_mode": self.journal_mode,
            },
            "logging": {
                "level": self.log_level,
                "log_dir": self.log_dir.as_posix(),
                "log_to_stdout": self.log_to_stdout,
            },
        }


class _IssueCollector:
    __slots__ = ("_items",)

    def __init__(self) -> None:
        self._items: list[ConfigValidationIssue] = []

    def add(self, path: str, message: str) -> None:
        self._items.append(ConfigValidationIssue(path=path, message=message))

    def items(self) -> tuple[ConfigValidationIssue, ...]:
        return tuple(self._items)


def default_config() -> dict[str, Any]:
    return merge_config({}, DEFAULT_CONFIG)


def merge_config(base: Mapping[str, object], overlay: Mapping[str, object]) -> dict[str, Any]:
    """Deterministically deep-merge ``overlay`` onto ``base``."""

    merged = _deep_copy_mapping(base)
    _merge_into(merged, overlay)
    return merged


def validate_config(payload: Mapping[str, object]) -> dict[str, Any]:
    """Return a normalized copy of ``payload``; raise ``ConfigValidationError`` on any issue."""

    issues = _IssueCollector()
    _reject_unknown_keys(payload, set(DEFAULT_CONFIG), "", issues)

    store = _section(payload, "store", issues)
    logging_section = _section(payload, "logging", issues)
    normalized: dict[str, Any] = {"store": {}, "logging": {}}

    if store is not None:
        _reject_unknown_keys(store, set(DEFAULT_CONFIG["store"]), "store", issues)
        normalized["store"] = {
            "path": _as_path_text(store.get("path"), "store.path", issues),
            "busy_timeout_ms": _as_int(
                store.get("busy_timeout_ms"), "store.busy_timeout_ms", issues, minimum=0
            ),
            "busy_retry_limit": _as_int(
                store.get("busy_retry_limit"), "store.busy_retry_limit", issues, minimum=0
            ),
            "busy_retry_backoff_ms": _as_int(
                store.get("busy_retry_backoff_ms"),
                "store.busy_retry_backoff_ms",
                issues,
                minimum=0,
            ),
            "journal_mode": _as_choice(
                store.get("journal_mode"),
                "store.journal_mode",
                issues,
                allowed=JOURNAL_MODES,
                normalize=str.lower,
            ),
        }

    if logging_section is not None:
        _reject_unknown_keys(logging_section, set(DEFAULT_CONFIG["logging"]), "logging", issues)
        normalized["logging"] = {
            "level": _as_choice(
                logging_section.get("level"),
                "logging.level",
                issues,
                allowed=LOG_LEVELS,
                normalize=str.upper,
            ),
            "log_dir": _as_path_text(logging_section.get("log_dir"), "logging.log_dir", issues),
            "log_to_stdout": _as_bool(
                logging_section.get("log_to_stdout"), "logging.log_to_stdout", issues
            ),
        }

    found = issues.items()
    if found:
        raise ConfigValidationError(found)
    return normalized


def _section(
    payload: Mapping[str, object], name: str, issues: _IssueCollector
) -> Mapping[str, object] | None:
    value = payload.get(name)
    if not isinstance(value, Mapping):
        issues.add(name, f"expected object, got {type(value).__name__}")
        return None
    return value


def _as_str(value: object, path: str, issues: _IssueCollector) -> str | None:
    if not isinstance(value, str):
        issues.add(path, f"expected string, got {type(value).__name__}")
        return None
    parsed = value.strip()
    if not parsed:
        issues.add(path, "must not be empty")
        return None
    return parsed


def _as_path_text(value: object, path: str, issues: _IssueCollector) -> str | None:
    parsed = _as_str(value, path, issues)
    if parsed is None:
        return None
    if "\x00" in parsed:
        issues.add(path, "must not contain NUL bytes")
        return None
    return parsed


def _as_bool(value: object, path: str, issues: _IssueCollector) -> bool | None:
    if isinstance(value, bool):
        return value
    issues.add(path, f"expected boolean, got {type(value).__name__}")
    return None


def _as_int(
    value: object,
    path: str,
    issues: _IssueCollector,
    *,
    minimum: int | None = None,
) -> int | None:
    if isinstance(value, bool) or not isinstance(value, int):
        issues.add(path, f"expected integer, got {type(value).__name__}")
        return None
    if minimum is not None and value < minimum:
        issues.add(path, f"must be >= {minimum}")
        return None
    return value


def _as_choice(
    value: object,
    path: str,
    issues: _IssueCollector,
    *,
    allowed: tuple[str, ...],
    normalize: Any,
) -> str | None:
    parsed = _as_str(value, path, issues)
    if parsed is None:
        return None
    parsed = normalize(parsed)
    if parsed not in allowed:
        expected = ", ".join(allowed)
        issues.add(path, f"invalid value {parsed!r}; expected one of: {expected}")
        return None
    return parsed


def _reject_unknown_keys(
    payload: Mapping[str, object],
    allowed: set[str],
    path: str,
    issues: _IssueCollector,
) -> None:
    for key in sorted(payload):
        if key in allowed:
            continue
        issues.add(f"{path}.{key}" if path else key, "unknown field")


def _merge_into(target: dict[str, Any], overlay: Mapping[str, object]) -> None:
    for key in sorted(overlay):
        value = overlay[key]
        if isinstance(value, Mapping):
            existing = target.get(key)
            if not isinstance(existing, dict):
                existing = {}
                target[key] = existing
            _merge_into(existing, value)
        else:
            target[key] = value


def _deep_copy_mapping(value: Mapping[str, object]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for key in sorted(value):
        item = value[key]
        out[key] = _deep_copy_mapping(item) if isinstance(item, Mapping) else item
    return out


__all__ = [
    "DEFAULT_CONFIG",
    "JOURNAL_MODES",
    "LOG_LEVELS",
    "PATH_FIELDS",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "JournalMode",
    "StoreConfig",
    "default_config",
    "merge_config",
    "validate_config",
]
