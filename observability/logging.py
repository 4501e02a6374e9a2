"""Logging setup for pipeline processes.

Records carry per-document context as ``ctx_`` prefixed extras (see
``StructuredLogger``); both formatters render that context, so a batch
run can be followed per URL across worker threads.
"""
from __future__ import annotations

import functools
import json
import logging
import sys
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

SERVICE_NAME = "medfoundry"
CONTEXT_PREFIX = "ctx_"

# Attributes every LogRecord carries; anything else came in through ``extra``
_RECORD_ATTRS = frozenset(
    logging.LogRecord("", logging.INFO, "", 0, "", (), None).__dict__
) | {"message", "asctime", "taskName"}

_NOISY_LOGGERS = ("sqlalchemy.engine", "urllib3")


def _split_extras(record: logging.LogRecord):
    """(context, other extras) of a record."""
    context: Dict[str, Any] = {}
    extras: Dict[str, Any] = {}
    for key, value in record.__dict__.items():
        if key in _RECORD_ATTRS:
            continue
        if key.startswith(CONTEXT_PREFIX):
            context[key[len(CONTEXT_PREFIX):]] = value
        else:
            extras[key] = value
    return context, extras


class JSONFormatter(logging.Formatter):
    """One JSON object per record.

    Context extras are nested under ``context``; other extras are merged
    into the top level.
    """

    def __init__(self, service_name: str = SERVICE_NAME):
        super().__init__()
        self.service_name = service_name

    def format(self, record: logging.LogRecord) -> str:
        context, extras = _split_extras(record)
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "service": self.service_name,
            "level": record.levelname,
            "logger": record.name,
            "thread": record.threadName,
            "message": record.getMessage(),
            "source": f"{record.module}:{record.funcName}:{record.lineno}",
        }
        entry.update(extras)
        if context:
            entry["context"] = context
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class ColoredFormatter(logging.Formatter):
    """Single line console output with the record context appended."""

    LEVEL_COLORS = {
        logging.DEBUG: '\033[36m',
        logging.INFO: '\033[32m',
        logging.WARNING: '\033[33m',
        logging.ERROR: '\033[31m',
        logging.CRITICAL: '\033[35m',
    }
    RESET = '\033[0m'

    def __init__(self, use_colors: bool = True):
        super().__init__()
        self.use_colors = use_colors

    def format(self, record: logging.LogRecord) -> str:
        context, _ = _split_extras(record)
        when = datetime.fromtimestamp(record.created).strftime('%H:%M:%S.%f')[:-3]
        line = f"{when} {record.levelname:<8} [{record.threadName}] {record.name}: {record.getMessage()}"
        if context:
            line += "  " + " ".join(f"{key}={value}" for key, value in context.items())

        color = self.LEVEL_COLORS.get(record.levelno) if self.use_colors else None
        if color:
            line = f"{color}{line}{self.RESET}"
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


def _make_handler(handler: logging.Handler, level: int, formatter: logging.Formatter) -> logging.Handler:
    handler.setLevel(level)
    handler.setFormatter(formatter)
    return handler


def setup_logging(
    level: str = "INFO",
    service_name: str = SERVICE_NAME,
    log_file: Optional[str] = None,
    use_json: bool = False,
    use_colors: bool = True
) -> None:
    """Configure the root logger for a pipeline process.

    Args:
        level: Level name; unknown names fall back to INFO.
        service_name: Written into every JSON record.
        log_file: Optional JSON lines file, written in addition to the console.
        use_json: JSON console output instead of the colored line format.
        use_colors: ANSI colors in the line format.
    """
    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO

    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
    root.setLevel(numeric_level)

    console_formatter = JSONFormatter(service_name) if use_json else ColoredFormatter(use_colors)
    root.addHandler(_make_handler(logging.StreamHandler(sys.stdout), numeric_level, console_formatter))

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        root.addHandler(_make_handler(file_handler, numeric_level, JSONFormatter(service_name)))

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


class StructuredLogger:
    """Logger wrapper that attaches bound context to every record."""

    def __init__(self, name: str, **default_context):
        self.logger = logging.getLogger(name)
        self.default_context = default_context

    def bind(self, **context) -> "StructuredLogger":
        """New logger with additional default context."""
        return StructuredLogger(self.logger.name, **{**self.default_context, **context})

    def _log(self, level: int, message: str, context: Dict[str, Any], exc_info: bool = False) -> None:
        merged = {**self.default_context, **context}
        extra = {f"{CONTEXT_PREFIX}{key}": value for key, value in merged.items()}
        self.logger.log(level, message, extra=extra, exc_info=exc_info, stacklevel=3)

    def debug(self, message: str, **context) -> None:
        self._log(logging.DEBUG, message, context)

    def info(self, message: str, **context) -> None:
        self._log(logging.INFO, message, context)

    def warning(self, message: str, **context) -> None:
        self._log(logging.WARNING, message, context)

    def error(self, message: str, **context) -> None:
        self._log(logging.ERROR, message, context)

    def exception(self, message: str, **context) -> None:
        """ERROR with the active exception attached."""
        self._log(logging.ERROR, message, context, exc_info=True)


def get_structured_logger(name: str, **default_context) -> StructuredLogger:
    return StructuredLogger(name, **default_context)


def log_performance(logger_name: Optional[str] = None, threshold_ms: float = 1000.0):
    """Decorator that warns when a call takes longer than ``threshold_ms``.

    Exceptions are logged with timing and re-raised unchanged.
    """
    def decorator(func):
        log = get_structured_logger(logger_name or func.__module__, function=func.__qualname__)

        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            started = time.perf_counter()
            try:
                result = func(*args, **kwargs)
            except Exception as e:
                elapsed_ms = round((time.perf_counter() - started) * 1000, 2)
                log.exception(f"{func.__qualname__} failed after {elapsed_ms:.0f}ms",
                              duration_ms=elapsed_ms, error_type=type(e).__name__)
                raise

            elapsed_ms = round((time.perf_counter() - started) * 1000, 2)
            if elapsed_ms > threshold_ms:
                log.warning(f"Slow function execution: {func.__qualname__} took {elapsed_ms:.0f}ms",
                            duration_ms=elapsed_ms, threshold_ms=threshold_ms)
            return result

        return wrapper
    return decorator
