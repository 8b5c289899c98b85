"""
canvas-orchestrator — process logging

File: src/canvas_orchestrator/observability/logging.py
Last updated: 2026-10-19

Purpose
- Write one JSON object per log record to ``<log_dir>/<session_id>/canvas.jsonl``.
- Route structlog decision logs into the same sink.

Functional requirements
- Callers never block on disk IO: records go through a bounded queue drained by
  a listener thread; a full queue drops the record and counts it.
- Secret-looking keys and token-shaped values are redacted before serialization.
- ``correlation_scope`` binds ids (session, run, action, job) onto every record
  emitted inside the scope, including from structlog loggers.
"""

from __future__ import annotations

import atexit
import contextvars
import json
import logging
import logging.handlers
import queue
import re
import threading
import time
from collections.abc import Callable, Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Final

import structlog

from canvas_orchestrator.domain.events import REDACTED, is_sensitive_key

LogRedactor = Callable[[object], object]

_LOGGER_NAME: Final[str] = "canvas_orchestrator"
_TOKEN_PATTERNS: Final[tuple[re.Pattern[str], ...]] = (
    re.compile(r"\bsk-or-v1-[A-Za-z0-9]{16,}\b"),
    re.compile(r"\bsk-[A-Za-z0-9]{12,}\b"),
    re.compile(r"\br8_[A-Za-z0-9]{20,}\b"),
    re.compile(r"\bAIza[0-9A-Za-z_-]{30,}\b"),
    re.compile(r"(?i)\bbearer\s+[A-Za-z0-9._~+/-]+=*"),
)
_ASSIGNMENT_PATTERN: Final[re.Pattern[str]] = re.compile(
    r"(?i)\b(api[_-]?key|token|password|secret)(\s*[:=]\s*)[^\s,;]+"
)
_RECORD_ATTRIBUTES: Final[frozenset[str]] = frozenset(
    vars(logging.makeLogRecord({}))
) | {"message", "asctime", "taskName", "correlation"}

_CORRELATION: contextvars.ContextVar[tuple[tuple[str, str], ...]] = contextvars.ContextVar(
    "canvas_correlation", default=()
)

_active_lock = threading.Lock()
_active: StructuredLoggingHandle | None = None
_atexit_registered = False


@dataclass(frozen=True, slots=True)
class LoggingConfig:
    session_id: str
    base_log_dir: Path | str = Path("logs")
    logger_name: str = _LOGGER_NAME
    level: int | str = "INFO"
    queue_size: int = 4096
    log_filename: str = "canvas.jsonl"
    log_to_stdout: bool = False
    redactor: LogRedactor | None = None

    def __post_init__(self) -> None:
        for name in ("session_id", "logger_name", "log_filename"):
            value = getattr(self, name)
            if not isinstance(value, str) or not value.strip():
                raise ValueError(f"LoggingConfig.{name} must be a non-empty string")
        if Path(self.log_filename).name != self.log_filename:
            raise ValueError("LoggingConfig.log_filename must not contain a directory")
        if self.queue_size <= 0:
            raise ValueError("LoggingConfig.queue_size must be > 0")
        object.__setattr__(self, "level", _parse_level(self.level))


# ---------------------------------------------------------------------------
# Correlation
# ---------------------------------------------------------------------------


def get_correlation_context() -> dict[str, str]:
    return dict(_CORRELATION.get())


def set_correlation_fields(**fields: str | None) -> contextvars.Token[tuple[tuple[str, str], ...]]:
    """Bind (or with ``None``, unbind) correlation fields; returns a reset token."""

    state = get_correlation_context()
    for key, value in fields.items():
        if value is None:
            state.pop(key, None)
        else:
            state[key] = value
    return _CORRELATION.set(tuple(state.items()))


def reset_correlation_fields(token: contextvars.Token[tuple[tuple[str, str], ...]]) -> None:
    _CORRELATION.reset(token)


@contextmanager
def correlation_scope(**fields: str | None) -> Iterator[None]:
    token = set_correlation_fields(**fields)
    try:
        yield
    finally:
        reset_correlation_fields(token)


# ---------------------------------------------------------------------------
# Redaction
# ---------------------------------------------------------------------------


def default_log_redactor(value: object) -> object:
    if isinstance(value, Mapping):
        return {
            str(key): REDACTED if is_sensitive_key(str(key)) else default_log_redactor(item)
            for key, item in value.items()
        }
    if isinstance(value, (list, tuple)):
        return [default_log_redactor(item) for item in value]
    if isinstance(value, str):
        return _redact_text(value)
    return value


def _redact_text(text: str) -> str:
    for pattern in _TOKEN_PATTERNS:
        text = pattern.sub(REDACTED, text)
    return _ASSIGNMENT_PATTERN.sub(lambda match: f"{match[1]}{match[2]}{REDACTED}", text)


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------


class _DroppingQueueHandler(logging.handlers.QueueHandler):
    """Queue handler that snapshots correlation ids and never blocks the caller."""

    def __init__(self, log_queue: queue.Queue[Any]) -> None:
        super().__init__(log_queue)
        self.dropped = 0
        self._drop_lock = threading.Lock()

    def prepare(self, record: logging.LogRecord) -> logging.LogRecord:
        # Correlation is read here, in the emitting thread, not in the listener.
        record.correlation = get_correlation_context()
        record.message = record.getMessage()
        record.msg, record.args = record.message, None
        if record.exc_info:
            record.exc_text = logging.Formatter().formatException(record.exc_info)
            record.exc_info = None
        return record

    def enqueue(self, record: logging.LogRecord) -> None:
        try:
            self.queue.put_nowait(record)
        except queue.Full:
            with self._drop_lock:
                self.dropped += 1


class _JsonLineFormatter(logging.Formatter):
    def __init__(self, *, session_id: str, redactor: LogRedactor) -> None:
        super().__init__()
        self._session_id = session_id
        self._redactor = redactor

    def format(self, record: logging.LogRecord) -> str:
        line: dict[str, object] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc)
            .isoformat(timespec="milliseconds")
            .replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "session_id": self._session_id,
        }
        line.update(getattr(record, "correlation", {}))
        fields = {
            key: value for key, value in vars(record).items() if key not in _RECORD_ATTRIBUTES
        }
        if fields:
            line["fields"] = fields
        if record.exc_text:
            line["exception"] = record.exc_text
        return json.dumps(
            self._redactor(line), sort_keys=True, separators=(",", ":"), default=str
        )


class StructuredLoggingHandle:
    """Owns the queue listener and sinks of one ``setup_structured_logging`` call."""

    def __init__(
        self,
        *,
        logger: logging.Logger,
        log_path: Path,
        queue_handler: _DroppingQueueHandler,
        listener: logging.handlers.QueueListener,
        sinks: tuple[logging.Handler, ...],
    ) -> None:
        self.logger = logger
        self.log_path = log_path
        self._queue_handler = queue_handler
        self._listener = listener
        self._sinks = sinks
        self._lock = threading.Lock()
        self.is_shutdown = False

    @property
    def dropped_records(self) -> int:
        return self._queue_handler.dropped

    def flush(self, *, timeout_seconds: float = 2.0) -> None:
        log_queue = self._listener.queue
        deadline = time.monotonic() + max(timeout_seconds, 0.0)
        while getattr(log_queue, "unfinished_tasks", 0) > 0 and time.monotonic() < deadline:
            time.sleep(0.01)
        for sink in self._sinks:
            sink.flush()

    def shutdown(self, *, timeout_seconds: float = 2.0) -> None:
        global _active
        with self._lock:
            if self.is_shutdown:
                return
            self.flush(timeout_seconds=timeout_seconds)
            self._listener.stop()
            self.logger.removeHandler(self._queue_handler)
            for sink in self._sinks:
                sink.close()
            self.is_shutdown = True
        with _active_lock:
            if _active is self:
                _active = None


def setup_structured_logging(config: LoggingConfig) -> StructuredLoggingHandle:
    """Install the JSON-lines sink on ``config.logger_name``, replacing any earlier setup."""

    global _active, _atexit_registered
    shutdown_logging()

    session_dir = Path(config.base_log_dir) / config.session_id
    session_dir.mkdir(parents=True, exist_ok=True)
    log_path = session_dir / config.log_filename
    redactor = default_log_redactor if config.redactor is None else _chained(config.redactor)

    formatter = _JsonLineFormatter(session_id=config.session_id, redactor=redactor)
    sinks: list[logging.Handler] = [logging.FileHandler(log_path, encoding="utf-8")]
    if config.log_to_stdout:
        sinks.append(logging.StreamHandler())
    for sink in sinks:
        sink.setFormatter(formatter)

    log_queue: queue.Queue[Any] = queue.Queue(maxsize=config.queue_size)
    queue_handler = _DroppingQueueHandler(log_queue)
    listener = logging.handlers.QueueListener(log_queue, *sinks)

    logger = logging.getLogger(config.logger_name)
    for existing in list(logger.handlers):
        logger.removeHandler(existing)
        existing.close()
    logger.setLevel(config.level)
    logger.propagate = False
    logger.addHandler(queue_handler)
    listener.start()

    handle = StructuredLoggingHandle(
        logger=logger,
        log_path=log_path,
        queue_handler=queue_handler,
        listener=listener,
        sinks=tuple(sinks),
    )
    with _active_lock:
        _active = handle
        if not _atexit_registered:
            atexit.register(shutdown_logging)
            _atexit_registered = True
    return handle


def setup_logging(
    observability_config: Mapping[str, object] | None = None,
    *,
    session_id: str,
    log_dir: Path | str | None = None,
) -> StructuredLoggingHandle:
    """Configure process logging from the ``[observability]`` config section."""

    section = dict(observability_config or {})
    base_dir = log_dir if log_dir is not None else section.get("log_dir", "logs")
    handle = setup_structured_logging(
        LoggingConfig(
            session_id=session_id,
            base_log_dir=base_dir if isinstance(base_dir, (str, Path)) else "logs",
            level=str(section.get("log_level", "INFO")),
            log_to_stdout=bool(section.get("log_to_stdout", False)),
        )
    )
    configure_decision_logging()
    return handle


def configure_decision_logging() -> None:
    """Send ``structlog.get_logger(__name__)`` output through stdlib logging.

    Module loggers under ``canvas_orchestrator`` then reach the JSON-lines sink,
    with their key/value pairs under ``fields`` and bound correlation ids on top.
    """

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.render_to_log_kwargs,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )


def get_active_logging_handle() -> StructuredLoggingHandle | None:
    with _active_lock:
        return _active


def shutdown_logging(*, timeout_seconds: float = 2.0) -> None:
    handle = get_active_logging_handle()
    if handle is not None:
        handle.shutdown(timeout_seconds=timeout_seconds)


def _chained(custom: LogRedactor) -> LogRedactor:
    def redact(value: object) -> object:
        return custom(default_log_redactor(value))

    return redact


def _parse_level(value: int | str) -> int:
    if isinstance(value, bool):
        raise ValueError(f"invalid log level {value!r}")
    if isinstance(value, int):
        return value
    levels = logging.getLevelNamesMapping()
    name = str(value).strip().upper()
    if name not in levels:
        raise ValueError(f"invalid log level {value!r}")
    return levels[name]


__all__ = [
    "LogRedactor",
    "LoggingConfig",
    "StructuredLoggingHandle",
    "configure_decision_logging",
    "correlation_scope",
    "default_log_redactor",
    "get_active_logging_handle",
    "get_correlation_context",
    "reset_correlation_fields",
    "set_correlation_fields",
    "setup_logging",
    "setup_structured_logging",
    "shutdown_logging",
]
