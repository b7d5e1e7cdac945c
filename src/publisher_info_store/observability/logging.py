"""Structured logging for store events: structlog front end, JSON-lines file sink.

Store components log through ``structlog.get_logger``. ``setup_structured_logging``
points structlog at a stdlib logger whose records travel through a queue to a file
(and optionally stderr). Each line is one JSON object::

    {"event": "publisher_store_opened", "fields": {...}, "level": "INFO",
     "logger": "publisher_info_store.persistence.store_db", "session_id": "...",
     "command": "status", "timestamp": "2024-01-01T00:00:00.000Z"}

Event keyword arguments land under ``fields``; correlation keys bound with
``correlation_scope`` sit at the top level. Secret-looking keys and inline
credentials are redacted before anything reaches disk.
"""

from __future__ import annotations

import atexit
import contextvars
import json
import logging
import logging.handlers
import math
import queue
import re
import threading
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any, Final

import structlog

if TYPE_CHECKING:
    from publisher_info_store.config.schema import StoreConfig

JSONScalar = str | int | float | bool | None
JSONValue = JSONScalar | list["JSONValue"] | dict[str, "JSONValue"]

STORE_LOGGER_NAME: Final[str] = "publisher_info_store"
DEFAULT_LOG_FILENAME: Final[str] = "publisher_store.jsonl"

_REDACTED: Final[str] = "***REDACTED***"
_FIELDS_ATTR: Final[str] = "store_fields"
_CORRELATION_ATTR: Final[str] = "store_correlation"

# Substrings of field names whose values never reach the log.
_SECRET_KEY_PARTS: Final[tuple[str, ...]] = (
    "secret",
    "token",
    "password",
    "passphrase",
    "authorization",
    "credential",
    "cookie",
    "private_key",
    "wallet_seed",
    "recovery_key",
)
_INLINE_SECRET: Final[re.Pattern[str]] = re.compile(
    r"(?i)\b(token|password|secret|authorization)\b\s*([:=])\s*([^\s,;]+)"
)
_BEARER: Final[re.Pattern[str]] = re.compile(r"(?i)\bbearer\s+[A-Za-z0-9._~+/-]+=*")

_correlation: contextvars.ContextVar[Mapping[str, str]] = contextvars.ContextVar(
    "publisher_store_correlation", default={}
)

_active_lock = threading.Lock()
_active: StructuredLoggingHandle | None = None
_atexit_registered = False


@dataclass(frozen=True, slots=True)
class LoggingConfig:
    """Where and how much one logging session writes."""

    session_id: str
    base_log_dir: Path | str = Path("logs")
    level: int | str = "INFO"
    log_filename: str = DEFAULT_LOG_FILENAME
    log_to_stdout: bool = False


def setup_logging(config: StoreConfig, *, session_id: str) -> StructuredLoggingHandle:
    """Configure structured logging from the ``[logging]`` section of a store config."""

    return setup_structured_logging(
        LoggingConfig(
            session_id=session_id,
            base_log_dir=config.log_dir,
            level=config.log_level,
            log_to_stdout=config.log_to_stdout,
        )
    )


class _CorrelatingQueueHandler(logging.handlers.QueueHandler):
    """Snapshots the caller's correlation keys; the listener thread cannot see them."""

    def prepare(self, record: logging.LogRecord) -> logging.LogRecord:
        setattr(record, _CORRELATION_ATTR, dict(_correlation.get()))
        return super().prepare(record)  # type: ignore[no-any-return]


class _JsonLineFormatter(logging.Formatter):
    def __init__(self, session_id: str) -> None:
        super().__init__()
        self._session_id = session_id

    def format(self, record: logging.LogRecord) -> str:
        line: dict[str, JSONValue] = {
            "timestamp": _utc_timestamp(record.created),
            "level": record.levelname,
            "logger": record.name,
            "event": str(default_log_redactor(record.getMessage())),
            "session_id": self._session_id,
        }
        line.update(getattr(record, _CORRELATION_ATTR, {}))
        fields = dict(getattr(record, _FIELDS_ATTR, {}))
        exception = fields.pop("exception", None)
        if fields:
            line["fields"] = default_log_redactor(_jsonable(fields))
        if exception is not None:
            line["exception"] = default_log_redactor(str(exception))
        return json.dumps(line, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


class StructuredLoggingHandle:
    """An active logging session; ``shutdown`` drains the queue and closes the sinks."""

    def __init__(
        self,
        *,
        logger: logging.Logger,
        session_log_dir: Path,
        log_path: Path,
        queue_handler: logging.Handler,
        sinks: tuple[logging.Handler, ...],
        listener: logging.handlers.QueueListener,
    ) -> None:
        self.session_log_dir = session_log_dir
        self.log_path = log_path
        self._logger = logger
        self._queue_handler = queue_handler
        self._sinks = sinks
        self._listener = listener
        self._lock = threading.Lock()
        self._closed = False

    @property
    def is_shutdown(self) -> bool:
        return self._closed

    def shutdown(self) -> None:
        with self._lock:
            if self._closed:
                return
            # stop() enqueues a sentinel and joins, so every record queued so far is written.
            self._listener.stop()
            self._logger.removeHandler(self._queue_handler)
            self._queue_handler.close()
            for sink in self._sinks:
                sink.flush()
                sink.close()
            self._closed = True


def _render_to_store_record(
    _logger: Any, _method_name: str, event_dict: structlog.typing.EventDict
) -> dict[str, Any]:
    event = event_dict.pop("event", "")
    return {"msg": str(event), "extra": {_FIELDS_ATTR: event_dict}}


def configure_structlog() -> None:
    """Send ``structlog`` events to the stdlib store logger."""

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.processors.format_exc_info,
            _render_to_store_record,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )


def setup_structured_logging(config: LoggingConfig) -> StructuredLoggingHandle:
    """Start a logging session, replacing any session that is still active."""

    global _active
    shutdown_logging()

    session_id = _non_empty(config.session_id, "session_id")
    log_filename = _non_empty(config.log_filename, "log_filename")
    if Path(log_filename).name != log_filename:
        raise ValueError("log_filename must be a bare file name")
    level = _parse_level(config.level)

    session_log_dir = Path(config.base_log_dir) / session_id
    session_log_dir.mkdir(parents=True, exist_ok=True)
    log_path = session_log_dir / log_filename

    formatter = _JsonLineFormatter(session_id)
    sinks: list[logging.Handler] = [logging.FileHandler(log_path, encoding="utf-8")]
    if config.log_to_stdout:
        sinks.append(logging.StreamHandler())
    for sink in sinks:
        sink.setFormatter(formatter)

    logger = logging.getLogger(STORE_LOGGER_NAME)
    logger.setLevel(level)
    logger.propagate = False
    for stale in list(logger.handlers):
        logger.removeHandler(stale)
        stale.close()

    records: queue.Queue[logging.LogRecord] = queue.Queue()
    queue_handler = _CorrelatingQueueHandler(records)
    listener = logging.handlers.QueueListener(records, *sinks)
    listener.start()
    logger.addHandler(queue_handler)
    configure_structlog()

    handle = StructuredLoggingHandle(
        logger=logger,
        session_log_dir=session_log_dir,
        log_path=log_path,
        queue_handler=queue_handler,
        sinks=tuple(sinks),
        listener=listener,
    )
    with _active_lock:
        _active = handle
    _register_atexit()
    return handle


def shutdown_logging(handle: StructuredLoggingHandle | None = None) -> None:
    """Shut down ``handle``, or the active session when none is given."""

    global _active
    with _active_lock:
        target = handle if handle is not None else _active
        if target is _active:
            _active = None
    if target is not None:
        target.shutdown()


@contextmanager
def correlation_scope(**fields: str | None) -> Iterator[None]:
    """Bind correlation keys for events logged in this scope; ``None`` unbinds a key."""

    bound = dict(_correlation.get())
    for key, value in fields.items():
        if value is None:
            bound.pop(key, None)
        else:
            bound[_non_empty(key, "correlation key")] = _non_empty(value, key)
    token = _correlation.set(bound)
    try:
        yield
    finally:
        _correlation.reset(token)


def default_log_redactor(value: JSONValue) -> JSONValue:
    """Mask values under secret-looking keys and credentials embedded in strings."""

    return _redact(value, key=None)


def _redact(value: JSONValue, *, key: str | None) -> JSONValue:
    if key is not None and any(part in key.lower() for part in _SECRET_KEY_PARTS):
        return _REDACTED
    if isinstance(value, str):
        masked = _INLINE_SECRET.sub(lambda m: f"{m.group(1)}{m.group(2)}{_REDACTED}", value)
        return _BEARER.sub(f"Bearer {_REDACTED}", masked)
    if isinstance(value, list):
        return [_redact(item, key=None) for item in value]
    if isinstance(value, dict):
        return {name: _redact(item, key=name) for name, item in value.items()}
    return value


def _jsonable(value: object) -> JSONValue:
    if isinstance(value, Enum):
        value = value.value
    if value is None or isinstance(value, (bool, int, str)):
        return value
    if isinstance(value, float):
        return value if math.isfinite(value) else str(value)
    if isinstance(value, Mapping):
        return {str(key): _jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_jsonable(item) for item in value]
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value)


def _utc_timestamp(epoch_seconds: float) -> str:
    moment = datetime.fromtimestamp(epoch_seconds, tz=UTC)
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _non_empty(value: str, name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"{name} must be a non-empty string")
    return value.strip()


def _parse_level(value: int | str) -> int:
    if isinstance(value, int):
        return value
    level = logging.getLevelNamesMapping().get(str(value).strip().upper())
    if level is None:
        raise ValueError(f"unsupported logging level {value!r}")
    return level


def _register_atexit() -> None:
    global _atexit_registered
    if not _atexit_registered:
        atexit.register(shutdown_logging)
        _atexit_registered = True


__all__ = [
    "DEFAULT_LOG_FILENAME",
    "JSONScalar",
    "JSONValue",
    "LoggingConfig",
    "STORE_LOGGER_NAME",
    "StructuredLoggingHandle",
    "configure_structlog",
    "correlation_scope",
    "default_log_redactor",
    "setup_logging",
    "setup_structured_logging",
    "shutdown_logging",
]
