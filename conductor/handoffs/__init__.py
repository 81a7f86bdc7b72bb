"""
Handoffs Module

Delegation descriptors, the delegation resolver and history filters.
"""

from conductor.handoffs.delegation import (
    DelegationDescriptor,
    DelegationResolution,
    DelegationResolver,
    default_tool_name,
    handoff,
)
from conductor.handoffs.filters import (
    HistoryFilter,
    compose_filters,
    keep_last,
    remove_capability_items,
    remove_reasoning_items,
    remove_system_items,
)

__all__ = [
    "DelegationDescriptor",
    "DelegationResolution",
    "DelegationResolver",
    "HistoryFilter",
    "compose_filters",
    "default_tool_name",
    "handoff",
    "keep_last",
    "remove_capability_items",
    "remove_reasoning_items",
    "remove_system_items",
]
