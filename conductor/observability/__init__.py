"""
Observability Module

Tracing and structured logging.
"""

from conductor.observability.logging import (
    BufferHandler,
    JsonFormatter,
    configure_logging,
    configure_logging_from_settings,
    log_context,
)
from conductor.observability.tracing import (
    InMemorySpanProcessor,
    LoggingSpanProcessor,
    Span,
    SpanKind,
    SpanStatus,
    Tracer,
    get_tracer,
    set_tracer,
)

__all__ = [
    # Logging
    "BufferHandler",
    "JsonFormatter",
    "configure_logging",
    "configure_logging_from_settings",
    "log_context",
    # Tracing
    "InMemorySpanProcessor",
    "LoggingSpanProcessor",
    "Span",
    "SpanKind",
    "SpanStatus",
    "Tracer",
    "get_tracer",
    "set_tracer",
]
