"""
Run Configuration

Per-run overrides of the process-wide RuntimeSettings.
"""

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from conductor.config.settings import RuntimeSettings, get_settings
from conductor.core.interfaces import ModelBackendProtocol
from conductor.core.types import ModelSettings
from conductor.handoffs.filters import HistoryFilter

if TYPE_CHECKING:
    from conductor.observability.tracing import Tracer
    from conductor.runtime.events import RunEvent

DEFAULT_MAX_TURNS = 10


@dataclass
class RunConfig:
    """
    Configuration for one run.

    Defines budgets, timeouts and behaviour switches. Nested runs started
    by delegated-agent capabilities inherit the config of their parent.
    """

    # Budgets
    max_turns: int = DEFAULT_MAX_TURNS
    max_parallel_capabilities: int = 8

    # Timeouts (None disables the layer)
    generation_timeout_seconds: float | None = None
    capability_timeout_seconds: float | None = 30.0

    # Behaviour
    reset_tool_choice: bool = True
    gate_short_circuit_output: bool = True
    history_filter: HistoryFilter | None = None  # Default for delegations without one

    # Model overrides applied to every agent of the run
    model: str | ModelBackendProtocol | None = None
    model_settings: ModelSettings | None = None

    # Observability
    tracer: "Tracer | None" = None
    subscribers: list[Callable[["RunEvent"], Any]] = field(default_factory=list)

    def __post_init__(self) -> None:
        if self.max_turns < 1:
            raise ValueError("max_turns must be at least 1")
        if self.max_parallel_capabilities < 1:
            raise ValueError("max_parallel_capabilities must be at least 1")

    @classmethod
    def from_settings(cls, settings: RuntimeSettings | None = None, **overrides: Any) -> "RunConfig":
        """Build a RunConfig from RuntimeSettings, then apply `overrides`."""
        settings = settings or get_settings()
        values: dict[str, Any] = {
            "max_turns": settings.max_turns,
            "max_parallel_capabilities": settings.max_parallel_capabilities,
            "generation_timeout_seconds": settings.generation_timeout_seconds,
            "capability_timeout_seconds": settings.capability_timeout_seconds,
            "reset_tool_choice": settings.reset_tool_choice,
            "gate_short_circuit_output": settings.gate_short_circuit_output,
        }
        values.update(overrides)
        return cls(**values)
