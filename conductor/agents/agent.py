"""
Agent Descriptor

Immutable configuration bundle for one participant in a run.

Design decisions:
- Frozen dataclass; `clone` produces a new descriptor with overrides
- Instructions are static text or a function of (run context, agent)
- Agents reference each other through delegations, by descriptor or by
  name, so delegation graphs can contain cycles
- Agents compare by identity
- Capability and delegation tool names must be unique within an agent
"""

import inspect
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any, Literal, Union

from pydantic import BaseModel

from conductor.capabilities.agent_tool import DelegatedAgentCapability, OutputExtractor
from conductor.capabilities.base import CapabilityDescriptor, FailurePolicy
from conductor.core.exceptions import ConfigurationError
from conductor.core.interfaces import ModelBackendProtocol
from conductor.core.types import ModelSettings
from conductor.guardrails.gates import GateKind, ValidationGate
from conductor.handoffs.delegation import DelegationDescriptor, handoff

if TYPE_CHECKING:
    from conductor.core.context import RunContext


@dataclass(frozen=True)
class StopAtCapabilities:
    """Finish the run as soon as one of the named capabilities has run."""

    names: Sequence[str]

    def __post_init__(self) -> None:
        object.__setattr__(self, "names", tuple(self.names))


RUN_LLM_AGAIN = "run_llm_again"
STOP_ON_FIRST_TOOL = "stop_on_first_tool"

ToolUseBehavior = Union[Literal["run_llm_again", "stop_on_first_tool"], StopAtCapabilities]

InstructionsFunction = Callable[
    ["RunContext[Any]", "AgentDescriptor"], Union[str, Awaitable[str]]
]


@dataclass(frozen=True, kw_only=True, eq=False)
class AgentDescriptor:
    """
    An agent: instructions, capabilities, delegations and gates.

    Usage:
        agent = AgentDescriptor(
            name="converter",
            instructions="Convert currencies.",
            capabilities=[convert],
        )
    """

    name: str
    instructions: str | InstructionsFunction | None = None

    # A backend instance, the name of a backend registered with the
    # Runner, or None for the Runner's default backend
    model: str | ModelBackendProtocol | None = None
    model_settings: ModelSettings = field(default_factory=ModelSettings)

    capabilities: Sequence[CapabilityDescriptor] = ()
    delegations: Sequence[Union[DelegationDescriptor, "AgentDescriptor"]] = ()
    input_gates: Sequence[ValidationGate] = ()
    output_gates: Sequence[ValidationGate] = ()

    # Pydantic model the final output must match; None means plain text
    output_shape: type[BaseModel] | None = None

    tool_use_behavior: ToolUseBehavior = RUN_LLM_AGAIN
    reset_tool_choice: bool | None = None  # None defers to the run config
    handoff_description: str | None = None

    def __post_init__(self) -> None:
        if not self.name or not self.name.strip():
            raise ConfigurationError("Agent name must not be empty")

        delegations = tuple(
            d if isinstance(d, DelegationDescriptor) else handoff(d) for d in self.delegations
        )
        object.__setattr__(self, "capabilities", tuple(self.capabilities))
        object.__setattr__(self, "delegations", delegations)
        object.__setattr__(self, "input_gates", tuple(self.input_gates))
        object.__setattr__(self, "output_gates", tuple(self.output_gates))
        self._validate()

    def _validate(self) -> None:
        seen: set[str] = set()
        names = [c.name for c in self.capabilities] + [d.tool_name for d in self.delegations]
        for name in names:
            if name in seen:
                raise ConfigurationError(
                    f"Agent '{self.name}' has more than one capability named '{name}'",
                    context={"agent": self.name, "capability": name},
                )
            seen.add(name)

        for gate in self.input_gates:
            if gate.kind != GateKind.INPUT:
                raise ConfigurationError(f"Gate '{gate.name}' is not an input gate")
        for gate in self.output_gates:
            if gate.kind != GateKind.OUTPUT:
                raise ConfigurationError(f"Gate '{gate.name}' is not an output gate")

        if self.output_shape is not None and not (
            isinstance(self.output_shape, type) and issubclass(self.output_shape, BaseModel)
        ):
            raise ConfigurationError(
                f"output_shape of agent '{self.name}' must be a pydantic model class"
            )

        behavior = self.tool_use_behavior
        if not isinstance(behavior, StopAtCapabilities) and behavior not in (
            RUN_LLM_AGAIN,
            STOP_ON_FIRST_TOOL,
        ):
            raise ConfigurationError(f"Unknown tool_use_behavior: {behavior!r}")

    def clone(self, **changes: Any) -> "AgentDescriptor":
        """Copy with some fields overridden."""
        return replace(self, **changes)

    async def get_instructions(self, run_context: "RunContext[Any]") -> str | None:
        """Resolve static or context-derived instructions."""
        if self.instructions is None or isinstance(self.instructions, str):
            return self.instructions
        result = self.instructions(run_context, self)
        if inspect.isawaitable(result):
            result = await result
        return result

    def find_capability(self, name: str) -> CapabilityDescriptor | None:
        for descriptor in self.capabilities:
            if descriptor.name == name:
                return descriptor
        return None

    def find_delegation(self, tool_name: str) -> DelegationDescriptor | None:
        for delegation in self.delegations:
            if delegation.tool_name == tool_name:
                return delegation
        return None

    def capability_schemas(self) -> list[dict[str, Any]]:
        """Model-facing schemas of every capability and delegation, in order."""
        return [c.to_schema() for c in self.capabilities] + [
            d.to_schema() for d in self.delegations
        ]

    def output_schema(self) -> dict[str, Any] | None:
        if self.output_shape is None:
            return None
        return self.output_shape.model_json_schema()

    def as_capability(
        self,
        name: str | None = None,
        description: str | None = None,
        *,
        output_extractor: OutputExtractor | None = None,
        max_turns: int | None = None,
        on_failure: FailurePolicy = FailurePolicy.SURFACE,
    ) -> DelegatedAgentCapability:
        """
        Expose this agent as a capability of another agent.

        The caller stays in control: the nested run's final output becomes
        the capability result.
        """
        return DelegatedAgentCapability(
            name=name or self.name.replace(" ", "_"),
            description=description or self.handoff_description or f"Ask the {self.name} agent",
            agent=self,
            output_extractor=output_extractor,
            max_turns=max_turns,
            on_failure=on_failure,
        )

    def __repr__(self) -> str:
        return f"AgentDescriptor(name={self.name!r})"
