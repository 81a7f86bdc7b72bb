"""
Tracing

Span-based tracing for runs, generations, capability invocations,
delegations and validation gates.

Design decisions:
- Spans form a tree through parent_id; the current span lives in a
  contextvar so concurrent tasks and nested runs parent correctly
- Processors receive ordered start/end notifications
- Payloads can be redacted globally
- Tracing is a side channel: processor failures never reach the run
"""

import asyncio
import contextvars
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import uuid4

from conductor.core.interfaces import SpanProcessorProtocol

logger = logging.getLogger(__name__)

REDACTED = "[REDACTED]"


class SpanKind(str, Enum):
    """What a span measures."""

    RUN = "run"
    GENERATION = "generation"
    CAPABILITY = "capability_invocation"
    DELEGATION = "delegation"
    VALIDATION_GATE = "validation_gate"


class SpanStatus(str, Enum):
    """Status of a span."""

    UNSET = "unset"
    OK = "ok"
    ERROR = "error"
    CANCELLED = "cancelled"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Span:
    """
    A unit of work in a trace.

    Spans form a tree structure representing the call hierarchy.
    """

    kind: SpanKind
    name: str
    trace_id: str = field(default_factory=lambda: uuid4().hex)
    span_id: str = field(default_factory=lambda: uuid4().hex[:16])
    parent_id: str | None = None

    # Timing
    started_at: datetime = field(default_factory=_utcnow)
    ended_at: datetime | None = None

    # Status
    status: SpanStatus = SpanStatus.UNSET
    status_message: str | None = None

    payload: dict[str, Any] = field(default_factory=dict)
    redact: bool = False

    @property
    def duration_ms(self) -> float:
        """Duration in milliseconds."""
        if self.ended_at is None:
            return 0.0
        return (self.ended_at - self.started_at).total_seconds() * 1000

    def set_payload(self, key: str, value: Any) -> None:
        """Attach payload data, honouring redaction."""
        self.payload[key] = REDACTED if self.redact else value

    def set_status(self, status: SpanStatus, message: str | None = None) -> None:
        self.status = status
        self.status_message = message

    def end(self) -> None:
        self.ended_at = _utcnow()
        if self.status == SpanStatus.UNSET:
            self.status = SpanStatus.OK

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for export."""
        return {
            "kind": self.kind.value,
            "name": self.name,
            "trace_id": self.trace_id,
            "span_id": self.span_id,
            "parent_id": self.parent_id,
            "started_at": self.started_at.isoformat(),
            "ended_at": self.ended_at.isoformat() if self.ended_at else None,
            "duration_ms": self.duration_ms,
            "status": self.status.value,
            "status_message": self.status_message,
            "payload": self.payload,
        }


class InMemorySpanProcessor:
    """Stores span start/end events in memory for testing."""

    def __init__(self, max_events: int = 10000):
        self.events: list[tuple[str, Span]] = []
        self._max_events = max_events

    def on_span_start(self, span: Span) -> None:
        self._append(("start", span))

    def on_span_end(self, span: Span) -> None:
        self._append(("end", span))

    def _append(self, event: tuple[str, Span]) -> None:
        self.events.append(event)
        if len(self.events) > self._max_events:
            self.events = self.events[-self._max_events :]

    @property
    def finished_spans(self) -> list[Span]:
        return [span for phase, span in self.events if phase == "end"]

    def spans_of(self, kind: SpanKind) -> list[Span]:
        return [span for span in self.finished_spans if span.kind == kind]

    def clear(self) -> None:
        self.events.clear()


class LoggingSpanProcessor:
    """Writes finished spans to the log."""

    def __init__(self, level: int = logging.DEBUG):
        self._level = level

    def on_span_start(self, span: Span) -> None:
        pass

    def on_span_end(self, span: Span) -> None:
        logger.log(self._level, "span finished: %s", span.name, extra={"data": span.to_dict()})


class Tracer:
    """
    Main tracing interface.

    Creates and manages spans, handles parent propagation.
    """

    def __init__(
        self,
        processors: list[SpanProcessorProtocol] | None = None,
        enabled: bool = True,
        redact_payloads: bool = False,
    ):
        self._processors = list(processors or [])
        self.enabled = enabled
        self.redact_payloads = redact_payloads

        self._current_span: contextvars.ContextVar[Span | None] = contextvars.ContextVar(
            "conductor_current_span", default=None
        )

    def add_processor(self, processor: SpanProcessorProtocol) -> None:
        self._processors.append(processor)

    def start_span(
        self,
        kind: SpanKind,
        name: str,
        payload: dict[str, Any] | None = None,
    ) -> Span:
        """
        Start a new span.

        Uses the current span, if any, as the parent.
        """
        parent = self._current_span.get()
        span = Span(kind=kind, name=name, redact=self.redact_payloads)
        if parent is not None:
            span.trace_id = parent.trace_id
            span.parent_id = parent.span_id
        for key, value in (payload or {}).items():
            span.set_payload(key, value)

        self._notify("on_span_start", span)
        return span

    def end_span(self, span: Span) -> None:
        span.end()
        self._notify("on_span_end", span)

    @asynccontextmanager
    async def trace(
        self,
        kind: SpanKind,
        name: str,
        payload: dict[str, Any] | None = None,
    ) -> AsyncIterator[Span]:
        """
        Context manager for tracing a block.

        Usage:
            async with tracer.trace(SpanKind.GENERATION, "triage") as span:
                span.set_payload("turn", 1)
                ...
        """
        span = self.start_span(kind, name, payload)
        token = self._current_span.set(span)

        try:
            yield span
        except asyncio.CancelledError:
            span.set_status(SpanStatus.CANCELLED)
            raise
        except Exception as e:
            span.set_status(SpanStatus.ERROR, f"{type(e).__name__}: {e}")
            raise
        finally:
            self._current_span.reset(token)
            self.end_span(span)

    def get_current_span(self) -> Span | None:
        return self._current_span.get()

    def _notify(self, method: str, span: Span) -> None:
        if not self.enabled:
            return
        for processor in self._processors:
            try:
                getattr(processor, method)(span)
            except Exception:
                logger.warning("span processor %r failed", processor, exc_info=True)


# Global tracer instance
_tracer: Tracer | None = None


def get_tracer() -> Tracer:
    """Get or create the global tracer."""
    global _tracer
    if _tracer is None:
        _tracer = Tracer()
    return _tracer


def set_tracer(tracer: Tracer) -> None:
    """Set the global tracer."""
    global _tracer
    _tracer = tracer
