"""
Exception Hierarchy

Defines all exceptions raised by the Conductor runtime.
Exceptions are organized by domain and include context for debugging.

Design decisions:
- All exceptions inherit from ConductorError for easy catching
- Exceptions carry structured context, not just messages
- Error codes enable programmatic handling
- Run-fatal errors carry the partial run state (item log, last agent, turns)
"""

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from conductor.agents.agent import AgentDescriptor
    from conductor.core.types import ConversationItem, Usage
    from conductor.guardrails.gates import GateOutcome


class ConductorError(Exception):
    """
    Base exception for all Conductor errors.

    Provides structured error information including:
    - Human-readable message
    - Machine-readable error code
    - Additional context for debugging
    """

    error_code: str = "CONDUCTOR_ERROR"

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        context: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or self.error_code
        self.context = context or {}
        self.__cause__ = cause

    def to_dict(self) -> dict[str, Any]:
        """Serialize exception for logs and callers."""
        return {
            "error": self.code,
            "message": self.message,
            "context": self.context,
        }


# ============================================================
# Configuration Errors
# ============================================================


class ConfigurationError(ConductorError):
    """Invalid agent, capability or runtime configuration."""

    error_code = "CONFIGURATION_ERROR"


# ============================================================
# Capability Errors
# ============================================================


class CapabilityError(ConductorError):
    """
    Raised by a capability implementation to report a failure.

    The invoker converts it into a CapabilityResult error item or,
    when the capability's failure policy says so, into a run failure.
    """

    error_code = "CAPABILITY_ERROR"


# ============================================================
# Run Errors
# ============================================================


@dataclass
class RunErrorDetails:
    """Partial state of a run at the moment it failed."""

    item_log: list["ConversationItem"] = field(default_factory=list)
    last_agent: "AgentDescriptor | None" = None
    turns_used: int = 0
    gate_outcomes: list["GateOutcome"] = field(default_factory=list)
    usage: "Usage | None" = None


class RunError(ConductorError):
    """
    Base for all run-fatal errors.

    The runtime attaches `details` before the error leaves the run.
    """

    error_code = "RUN_ERROR"

    def __init__(self, message: str, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.details: RunErrorDetails | None = None

    def __str__(self) -> str:
        if self.details is None or self.details.last_agent is None:
            return self.message
        return (
            f"{self.message} (agent={self.details.last_agent.name}, "
            f"turns={self.details.turns_used})"
        )


class ModelBackendError(RunError):
    """Transport or backend failure while generating."""

    error_code = "MODEL_BACKEND_ERROR"


class ToolArgumentValidationError(RunError):
    """Capability arguments failed validation against the argument shape."""

    error_code = "TOOL_ARGUMENT_VALIDATION_ERROR"

    def __init__(self, message: str, *, capability_name: str, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.capability_name = capability_name


class CapabilityExecutionError(RunError):
    """A capability failed and its policy propagates the failure."""

    error_code = "CAPABILITY_EXECUTION_ERROR"

    def __init__(self, message: str, *, capability_name: str, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.capability_name = capability_name


class HandoffResolutionError(RunError):
    """A delegation could not be resolved (unknown target, bad arguments)."""

    error_code = "HANDOFF_RESOLUTION_ERROR"


class InputGuardrailTripwire(RunError):
    """An input gate tripped."""

    error_code = "INPUT_GUARDRAIL_TRIPWIRE"

    def __init__(self, message: str, *, gate_outcome: "GateOutcome", **kwargs: Any):
        super().__init__(message, **kwargs)
        self.gate_outcome = gate_outcome

    @property
    def annotation(self) -> Any:
        return self.gate_outcome.result.annotation


class OutputGuardrailTripwire(RunError):
    """An output gate tripped."""

    error_code = "OUTPUT_GUARDRAIL_TRIPWIRE"

    def __init__(self, message: str, *, gate_outcome: "GateOutcome", **kwargs: Any):
        super().__init__(message, **kwargs)
        self.gate_outcome = gate_outcome

    @property
    def annotation(self) -> Any:
        return self.gate_outcome.result.annotation


class MaxTurnsExceeded(RunError):
    """The run needed more turns than allowed."""

    error_code = "MAX_TURNS_EXCEEDED"

    def __init__(self, message: str, *, max_turns: int, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.max_turns = max_turns


class OutputShapeValidationError(RunError):
    """The backend returned a final output that does not match the expected shape."""

    error_code = "OUTPUT_SHAPE_VALIDATION_ERROR"


class InstructionsError(RunError):
    """The active agent's instructions could not be resolved."""

    error_code = "INSTRUCTIONS_ERROR"


class GateExecutionError(RunError):
    """A validation gate raised instead of returning a result."""

    error_code = "GATE_EXECUTION_ERROR"

    def __init__(self, message: str, *, gate_name: str, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.gate_name = gate_name


class RunCancelled(RunError):
    """The run was cancelled through its cancellation signal."""

    error_code = "RUN_CANCELLED"
