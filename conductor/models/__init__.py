"""
Models Module

Model backend base class, stream reconstruction and the scripted backend.
"""

from conductor.models.backend import ModelBackend, StreamAccumulator, collect_stream, output_events
from conductor.models.scripted import (
    GenerationRequest,
    ScriptedModelBackend,
    capability_call,
    capability_calls,
    message,
    structured,
)

__all__ = [
    "GenerationRequest",
    "ModelBackend",
    "ScriptedModelBackend",
    "StreamAccumulator",
    "capability_call",
    "capability_calls",
    "collect_stream",
    "message",
    "output_events",
    "structured",
]
