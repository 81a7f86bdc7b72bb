"""
Structured Logging

JSON-structured logging with context propagation, layered on the
standard logging module so every `logging.getLogger(__name__)` in the
runtime is enriched automatically.

Design decisions:
- Structured JSON output
- Context enrichment via contextvars (run_id, agent, trace/span ids)
- Handlers are plain logging.Handler subclasses
"""

import contextvars
import json
import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, TextIO

from conductor.config.settings import RuntimeSettings, get_settings

ROOT_LOGGER = "conductor"

# Fields promoted from the log context onto every record
CONTEXT_FIELDS = ("run_id", "agent", "trace_id", "span_id")

_log_context: contextvars.ContextVar[dict[str, Any]] = contextvars.ContextVar(
    "conductor_log_context", default={}
)


@contextmanager
def log_context(**fields: Any) -> Iterator[None]:
    """
    Context manager for adding context to logs.

    Usage:
        with log_context(run_id="run_1", agent="triage"):
            logger.info("Processing")
    """
    current = _log_context.get()
    token = _log_context.set({**current, **fields})
    try:
        yield
    finally:
        _log_context.reset(token)


def get_log_context() -> dict[str, Any]:
    """Current log context values."""
    return dict(_log_context.get())


class ContextFilter(logging.Filter):
    """Copies the current log context onto each record."""

    def filter(self, record: logging.LogRecord) -> bool:
        context = _log_context.get()
        for key in CONTEXT_FIELDS:
            if not hasattr(record, key):
                setattr(record, key, context.get(key))
        return True


class JsonFormatter(logging.Formatter):
    """Formats records as one JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        result: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        data = getattr(record, "data", None)
        if data:
            result["data"] = data

        for key in CONTEXT_FIELDS:
            value = getattr(record, key, None)
            if value:
                result[key] = value

        if record.exc_info:
            exc_type, exc, _ = record.exc_info
            result["error"] = {
                "message": str(exc),
                "type": exc_type.__name__ if exc_type else None,
                "stack_trace": self.formatException(record.exc_info),
            }

        return json.dumps(result, default=str)


class TextFormatter(logging.Formatter):
    """Human-readable format with the structured data appended."""

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.fromtimestamp(record.created).strftime("%Y-%m-%d %H:%M:%S")
        output = f"[{timestamp}] {record.levelname:8s} {record.getMessage()}"
        run_id = getattr(record, "run_id", None)
        if run_id:
            output += f" | run={run_id}"
        data = getattr(record, "data", None)
        if data:
            output += f" | {data}"
        if record.exc_info:
            output += f"\n{self.formatException(record.exc_info)}"
        return output


class BufferHandler(logging.Handler):
    """Buffers records in memory for testing."""

    def __init__(self, level: int = logging.DEBUG, max_records: int = 1000):
        super().__init__(level)
        self.records: list[logging.LogRecord] = []
        self._max_records = max_records
        self.addFilter(ContextFilter())

    def emit(self, record: logging.LogRecord) -> None:
        self.records.append(record)
        if len(self.records) > self._max_records:
            self.records = self.records[-self._max_records :]

    def clear(self) -> None:
        self.records.clear()


def configure_logging(
    level: str | int = "INFO",
    json_output: bool = True,
    stream: TextIO | None = None,
) -> logging.Logger:
    """Configure and return the runtime's root logger."""
    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(level)

    for handler in list(logger.handlers):
        if getattr(handler, "_conductor_handler", False):
            logger.removeHandler(handler)

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(JsonFormatter() if json_output else TextFormatter())
    handler.addFilter(ContextFilter())
    handler._conductor_handler = True  # type: ignore[attr-defined]
    logger.addHandler(handler)

    return logger


def configure_logging_from_settings(
    settings: RuntimeSettings | None = None,
    stream: TextIO | None = None,
) -> logging.Logger:
    """Configure logging from `log_level` and `log_format` in the settings."""
    settings = settings or get_settings()
    return configure_logging(
        level=settings.log_level,
        json_output=settings.log_format == "json",
        stream=stream,
    )
