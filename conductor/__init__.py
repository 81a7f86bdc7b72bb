"""
Conductor

Agent orchestration runtime: drives one or more LLM-backed agents through
generation, capability invocation, delegation and validation.

Usage:
    from conductor import AgentDescriptor, Runner, capability
    from conductor.models import ScriptedModelBackend, message

    agent = AgentDescriptor(name="assistant", instructions="Be brief.")
    result = await Runner(ScriptedModelBackend([message("hi")])).run(agent, "hello")
"""

from conductor.agents import (
    RUN_LLM_AGAIN,
    STOP_ON_FIRST_TOOL,
    AgentDescriptor,
    AgentRegistry,
    StopAtCapabilities,
)
from conductor.capabilities import (
    CapabilityDescriptor,
    CapabilityRegistry,
    FailurePolicy,
    RemoteCapability,
    capability,
    function_capability,
)
from conductor.core import (
    CapabilityExecutionError,
    ConductorError,
    ConfigurationError,
    GateExecutionError,
    HandoffResolutionError,
    InputGuardrailTripwire,
    InstructionsError,
    MaxTurnsExceeded,
    ModelBackendError,
    ModelSettings,
    OutputGuardrailTripwire,
    OutputShapeValidationError,
    RunCancelled,
    RunError,
    ToolArgumentValidationError,
    Usage,
)
from conductor.core.context import InvocationContext, RunContext
from conductor.guardrails import GateResult, input_gate, output_gate
from conductor.handoffs import handoff
from conductor.runtime import (
    RunConfig,
    RunEvent,
    RunEventType,
    RunResult,
    RunResultStreaming,
    Runner,
)

__version__ = "0.1.0"

__all__ = [
    # Agents
    "RUN_LLM_AGAIN",
    "STOP_ON_FIRST_TOOL",
    "AgentDescriptor",
    "AgentRegistry",
    "StopAtCapabilities",
    # Capabilities
    "CapabilityDescriptor",
    "CapabilityRegistry",
    "FailurePolicy",
    "RemoteCapability",
    "capability",
    "function_capability",
    # Context
    "InvocationContext",
    "RunContext",
    # Gates and delegation
    "GateResult",
    "handoff",
    "input_gate",
    "output_gate",
    # Runtime
    "RunConfig",
    "RunEvent",
    "RunEventType",
    "RunResult",
    "RunResultStreaming",
    "Runner",
    # Types
    "ModelSettings",
    "Usage",
    # Errors
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
    "ToolArgumentValidationError",
]
