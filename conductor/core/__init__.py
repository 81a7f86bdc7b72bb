"""
Core Module

Contains fundamental types, exceptions and interfaces used across
all other modules in the Conductor runtime.

The interfaces module defines protocols for the external collaborators,
preventing circular dependencies.
"""

from conductor.core.exceptions import (
    CapabilityError,
    CapabilityExecutionError,
    ConductorError,
    ConfigurationError,
    GateExecutionError,
    HandoffResolutionError,
    InputGuardrailTripwire,
    InstructionsError,
    MaxTurnsExceeded,
    ModelBackendError,
    OutputGuardrailTripwire,
    OutputShapeValidationError,
    RunCancelled,
    RunError,
    RunErrorDetails,
    ToolArgumentValidationError,
)
from conductor.core.interfaces import (
    ModelBackendProtocol,
    RemoteCapabilityClientProtocol,
    RemoteCapabilityRequest,
    RemoteCapabilityResponse,
    SpanProcessorProtocol,
)
from conductor.core.types import (
    AssistantMessage,
    CapabilityCall,
    CapabilityCallsOutput,
    CapabilityInvocation,
    CapabilityResult,
    ConversationItem,
    DelegationEvent,
    GenerationEvent,
    GenerationOutput,
    MessageOutput,
    ModelSettings,
    ReasoningTrace,
    StructuredOutput,
    SystemMessage,
    Usage,
    UserMessage,
    dump_items,
    parse_items,
)

__all__ = [
    # Types
    "AssistantMessage",
    "CapabilityCall",
    "CapabilityCallsOutput",
    "CapabilityInvocation",
    "CapabilityResult",
    "ConversationItem",
    "DelegationEvent",
    "GenerationEvent",
    "GenerationOutput",
    "MessageOutput",
    "ModelSettings",
    "ReasoningTrace",
    "StructuredOutput",
    "SystemMessage",
    "Usage",
    "UserMessage",
    "dump_items",
    "parse_items",
    # Exceptions
    "CapabilityError",
    "CapabilityExecutionError",
    "ConductorError",
    "ConfigurationError",
    "GateExecutionError",
    "HandoffResolutionError",
    "InputGuardrailTripwire",
    "InstructionsError",
    "MaxTurnsExceeded",
    "ModelBackendError",
    "OutputGuardrailTripwire",
    "OutputShapeValidationError",
    "RunCancelled",
    "RunError",
    "RunErrorDetails",
    "ToolArgumentValidationError",
    # Interfaces/Protocols
    "ModelBackendProtocol",
    "RemoteCapabilityClientProtocol",
    "RemoteCapabilityRequest",
    "RemoteCapabilityResponse",
    "SpanProcessorProtocol",
]
