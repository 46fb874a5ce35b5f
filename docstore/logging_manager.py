"""Centralized logging configuration for docstore."""

from __future__ import annotations

import contextlib
import contextvars
import json
import logging
import os
import sys
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Dict, Iterator, Optional

LOG_DIR_ENV = "DOCSTORE_LOG_DIR"
LOG_LEVEL_ENV = "DOCSTORE_LOG_LEVEL"
LOG_FILE_NAME = "docstore.log"
DEFAULT_LOG_LEVEL = logging.INFO
ROOT_LOGGER_NAME = "docstore"

_logger: Optional[logging.Logger] = None
_log_context: contextvars.ContextVar[Dict[str, object]] = contextvars.ContextVar(
    "docstore_log_context", default={}
)


class JSONLogFormatter(logging.Formatter):
    """Render log records as structured JSON strings."""

    DEFAULT_FIELDS: tuple[str, ...] = (
        "event",
        "book_id",
        "owner_id",
        "phase",
        "key",
        "namespace",
    )

    def format(self, record: logging.LogRecord) -> str:  # noqa: D401
        payload: Dict[str, object] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "pid": record.process,
            "thread": record.threadName,
        }

        for attr in self.DEFAULT_FIELDS:
            value = getattr(record, attr, None)
            if value is not None:
                payload[attr] = value

        extra_attributes = _extract_extra_attributes(record)
        if extra_attributes:
            payload["extra"] = extra_attributes

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        return json.dumps(payload, ensure_ascii=False, default=str)


_RESERVED_ATTRIBUTES: frozenset[str] = frozenset(
    {
        "name",
        "msg",
        "args",
        "levelname",
        "levelno",
        "pathname",
        "filename",
        "module",
        "exc_info",
        "exc_text",
        "stack_info",
        "lineno",
        "funcName",
        "created",
        "msecs",
        "relativeCreated",
        "thread",
        "threadName",
        "processName",
        "process",
        "message",
        "taskName",
    }
)


def _extract_extra_attributes(record: logging.LogRecord) -> Dict[str, object]:
    extra: Dict[str, object] = {}
    for key, value in record.__dict__.items():
        if key in _RESERVED_ATTRIBUTES or key in JSONLogFormatter.DEFAULT_FIELDS:
            continue
        extra[key] = value
    return extra


class LogContextFilter(logging.Filter):
    """Inject values from context variables into log records."""

    def filter(self, record: logging.LogRecord) -> bool:  # noqa: D401
        for key, value in _log_context.get().items():
            if not hasattr(record, key):
                setattr(record, key, value)
        return True


def resolve_log_dir() -> Path:
    """Return the directory receiving the rotating log file."""

    override = os.environ.get(LOG_DIR_ENV)
    if override:
        return Path(override).expanduser()
    return Path.cwd() / "log"


def _resolve_level(log_level: Optional[int]) -> int:
    if log_level is not None:
        return log_level
    raw = os.environ.get(LOG_LEVEL_ENV, "").strip().upper()
    if raw:
        resolved = logging.getLevelName(raw)
        if isinstance(resolved, int):
            return resolved
    return DEFAULT_LOG_LEVEL


def _configure_handlers(logger: logging.Logger) -> None:
    formatter = JSONLogFormatter()

    log_dir = resolve_log_dir()
    log_dir.mkdir(parents=True, exist_ok=True)
    file_handler = RotatingFileHandler(
        log_dir / LOG_FILE_NAME, maxBytes=5 * 1024 * 1024, backupCount=5, encoding="utf-8"
    )
    file_handler.setFormatter(formatter)

    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(formatter)

    for handler in (file_handler, stream_handler):
        handler.addFilter(LogContextFilter())

    logger.addHandler(file_handler)
    logger.addHandler(stream_handler)


def setup_logging(log_level: Optional[int] = None) -> logging.Logger:
    """Configure the ``docstore`` logger with file and stream handlers."""
    global _logger

    level = _resolve_level(log_level)
    if _logger is not None:
        configure_logging_level(log_level=level)
        return _logger

    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(level)
    logger.propagate = False
    logger.addFilter(LogContextFilter())
    _configure_handlers(logger)

    _logger = logger
    configure_logging_level(log_level=level)
    return logger


def get_logger() -> logging.Logger:
    """Return the configured logger instance, initializing if necessary."""
    global _logger
    if _logger is None:
        _logger = setup_logging()
    return _logger


def configure_logging_level(debug_enabled: bool = False, log_level: Optional[int] = None) -> int:
    """Adjust the logger level based on debug preference or explicit level."""
    logger = get_logger()
    if log_level is not None:
        level = log_level
    else:
        level = logging.DEBUG if debug_enabled else DEFAULT_LOG_LEVEL
    logger.setLevel(level)
    for handler in logger.handlers:
        handler.setLevel(level)
    return level


def get_log_context() -> Dict[str, object]:
    """Return the active structured logging context."""

    return dict(_log_context.get())


def push_log_context(**values: object) -> contextvars.Token[Dict[str, object]]:
    """Merge ``values`` into the structured logging context and return a token."""

    current = dict(_log_context.get())
    current.update({key: value for key, value in values.items() if value is not None})
    return _log_context.set(current)


def pop_log_context(token: contextvars.Token[Dict[str, object]]) -> None:
    """Restore the logging context from ``token``."""

    _log_context.reset(token)


@contextlib.contextmanager
def log_context(**values: object) -> Iterator[None]:
    """Context manager that temporarily enriches log context with ``values``."""

    token = push_log_context(**values)
    try:
        yield
    finally:
        pop_log_context(token)


def clear_log_context() -> None:
    """Clear all structured logging context values."""

    _log_context.set({})


def console_info(message: str, *args: object, logger_obj: Optional[logging.Logger] = None) -> None:
    """Print ``message`` for an operator and record it at INFO level."""

    text = message % args if args else message
    print(text)
    (logger_obj or get_logger()).info(text, extra={"event": "console.info"})


def console_error(message: str, *args: object, logger_obj: Optional[logging.Logger] = None) -> None:
    """Print ``message`` to stderr and record it at ERROR level."""

    text = message % args if args else message
    print(text, file=sys.stderr)
    (logger_obj or get_logger()).error(text, extra={"event": "console.error"})


logger = get_logger()
