"""
History Filters

Functions mapping the prior conversation items to the items a delegation
target is allowed to see. Filters never touch the run's full item log.
"""

from collections.abc import Callable, Sequence

from conductor.core.types import (
    CapabilityInvocation,
    CapabilityResult,
    ConversationItem,
    ReasoningTrace,
    SystemMessage,
)

HistoryFilter = Callable[[list[ConversationItem]], list[ConversationItem]]


def remove_capability_items(items: list[ConversationItem]) -> list[ConversationItem]:
    """Drop every capability invocation and result."""
    return [
        item for item in items if not isinstance(item, (CapabilityInvocation, CapabilityResult))
    ]


def remove_system_items(items: list[ConversationItem]) -> list[ConversationItem]:
    """Drop system-level instructions."""
    return [item for item in items if not isinstance(item, SystemMessage)]


def remove_reasoning_items(items: list[ConversationItem]) -> list[ConversationItem]:
    return [item for item in items if not isinstance(item, ReasoningTrace)]


def keep_last(n: int) -> HistoryFilter:
    """Keep only the last `n` items."""
    if n < 0:
        raise ValueError("keep_last requires n >= 0")

    def _filter(items: list[ConversationItem]) -> list[ConversationItem]:
        return list(items[-n:]) if n else []

    _filter.__name__ = f"keep_last_{n}"
    return _filter


def compose_filters(*filters: HistoryFilter | Sequence[HistoryFilter]) -> HistoryFilter:
    """
    Chain filters left to right.

    Usage:
        compose_filters(remove_capability_items, keep_last(5))
    """
    chain: list[HistoryFilter] = []
    for f in filters:
        if callable(f):
            chain.append(f)
        else:
            chain.extend(f)

    def _filter(items: list[ConversationItem]) -> list[ConversationItem]:
        for f in chain:
            items = f(list(items))
        return items

    return _filter
