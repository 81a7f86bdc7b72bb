"""
Runtime Module

The orchestrator: runs agents through generation, capability invocation,
delegation and validation until a terminal result.
"""

from conductor.runtime.config import DEFAULT_MAX_TURNS, RunConfig
from conductor.runtime.events import EventBus, RunEvent, RunEventType
from conductor.runtime.result import RunResult, RunResultStreaming
from conductor.runtime.runner import Runner, RunState

__all__ = [
    "DEFAULT_MAX_TURNS",
    "EventBus",
    "RunConfig",
    "RunEvent",
    "RunEventType",
    "RunResult",
    "RunResultStreaming",
    "RunState",
    "Runner",
]
