"""
Run Events

The semantic event stream of a run, for observability subscribers and
streamed runs.

Design decisions:
- One event dataclass tagged by type, correlated by run id
- Raw generation events are re-emitted unchanged inside RAW_GENERATION
- Subscribers are synchronous callbacks; a failing subscriber is logged
  and never affects the run
"""

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from conductor.core.types import ConversationItem, GenerationEvent

logger = logging.getLogger(__name__)


class RunEventType(str, Enum):
    """Types of events emitted during a run."""

    AGENT_CHANGED = "agent_changed"
    CAPABILITY_INVOKED = "capability_invoked"
    CAPABILITY_COMPLETED = "capability_completed"
    MESSAGE_PRODUCED = "message_produced"
    DELEGATION_OCCURRED = "delegation_occurred"
    RAW_GENERATION = "raw_generation"


@dataclass(frozen=True)
class RunEvent:
    """Event emitted during a run."""

    type: RunEventType
    run_id: str
    agent: str
    item: ConversationItem | None = None
    raw: GenerationEvent | None = None
    data: dict[str, Any] = field(default_factory=dict)


Subscriber = Callable[[RunEvent], Any]


class EventBus:
    """Fans run events out to subscribers, in emission order."""

    def __init__(self, subscribers: Iterable[Subscriber] = ()):
        self._subscribers: list[Subscriber] = list(subscribers)

    def subscribe(self, subscriber: Subscriber) -> None:
        self._subscribers.append(subscriber)

    def emit(self, event: RunEvent) -> None:
        for subscriber in self._subscribers:
            try:
                subscriber(event)
            except Exception:
                logger.warning(
                    "run event subscriber %r failed on %s",
                    subscriber,
                    event.type.value,
                    exc_info=True,
                )
