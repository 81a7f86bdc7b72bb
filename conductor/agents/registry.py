"""
Agent Registry

The arena of agents keyed by name. Delegations between registered agents
are lookups in this arena rather than live references.

Design decisions:
- Agents can be registered programmatically or loaded from YAML files
- YAML is validated with pydantic at load time
- Capabilities, gates and output shapes are referenced by name and
  looked up in registries supplied by the application
- Instructions in YAML are Jinja2 templates rendered against the run
  context on every turn
- Thread-safe registry access
"""

import inspect
import logging
from collections.abc import Callable, Iterator
from pathlib import Path
from threading import RLock
from typing import Any, Literal, Union

import yaml
from jinja2 import BaseLoader, Environment, StrictUndefined, TemplateSyntaxError, UndefinedError
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from conductor.agents.agent import AgentDescriptor, StopAtCapabilities
from conductor.capabilities.registry import CapabilityRegistry
from conductor.core.exceptions import ConfigurationError
from conductor.core.types import ModelSettings
from conductor.guardrails.gates import STOCK_GATES, GateKind, ValidationGate
from conductor.handoffs.delegation import DelegationDescriptor, handoff
from conductor.handoffs.filters import (
    HistoryFilter,
    compose_filters,
    keep_last,
    remove_capability_items,
    remove_reasoning_items,
    remove_system_items,
)

logger = logging.getLogger(__name__)

_jinja = Environment(loader=BaseLoader(), undefined=StrictUndefined, autoescape=False)

NAMED_FILTERS: dict[str, HistoryFilter] = {
    "remove_capability_items": remove_capability_items,
    "remove_system_items": remove_system_items,
    "remove_reasoning_items": remove_reasoning_items,
}


# =============================================================================
# YAML SCHEMA
# =============================================================================


class DelegationSpec(BaseModel):
    """A delegation entry in YAML; a bare string is shorthand for `agent`."""

    model_config = ConfigDict(extra="forbid")

    agent: str
    tool_name: str | None = None
    description: str | None = None
    history_filter: Any = None


class StopAtSpec(BaseModel):
    model_config = ConfigDict(extra="forbid")

    stop_at: list[str]


class AgentSpec(BaseModel):
    """Declarative agent definition."""

    model_config = ConfigDict(extra="forbid")

    name: str = Field(min_length=1)
    instructions: str | None = None
    handoff_description: str | None = None
    model: str | None = None
    model_settings: ModelSettings = Field(default_factory=ModelSettings)
    capabilities: list[str] = Field(default_factory=list)
    delegations: list[Union[str, DelegationSpec]] = Field(default_factory=list)
    input_gates: list[Union[str, dict[str, Any]]] = Field(default_factory=list)
    output_gates: list[Union[str, dict[str, Any]]] = Field(default_factory=list)
    output_shape: str | None = None
    tool_use_behavior: Union[Literal["run_llm_again", "stop_on_first_tool"], StopAtSpec] = (
        "run_llm_again"
    )
    reset_tool_choice: bool | None = None


def template_instructions(source: str, agent_name: str = "") -> Callable[..., str]:
    """
    Compile a Jinja2 instructions template.

    The template sees `context` (the caller's context object) and `agent`.
    """
    try:
        template = _jinja.from_string(source)
    except TemplateSyntaxError as e:
        raise ConfigurationError(
            f"Invalid instructions template for agent '{agent_name}': {e}",
            context={"agent": agent_name},
            cause=e,
        )

    def render(run_context: Any, agent: AgentDescriptor) -> str:
        try:
            return template.render(context=run_context.context, agent=agent)
        except UndefinedError as e:
            raise ConfigurationError(
                f"Undefined variable in instructions of agent '{agent.name}': {e}",
                context={"agent": agent.name},
                cause=e,
            )

    return render


def parse_history_filter(value: Any) -> HistoryFilter | None:
    """
    Build a history filter from YAML.

    Accepts a filter name, `{keep_last: N}`, or a list of either
    (composed left to right).
    """
    if value is None:
        return None
    if isinstance(value, list):
        return compose_filters(*[parse_history_filter(v) for v in value])
    if isinstance(value, str):
        if value not in NAMED_FILTERS:
            raise ConfigurationError(f"Unknown history filter: {value}")
        return NAMED_FILTERS[value]
    if isinstance(value, dict) and set(value) == {"keep_last"}:
        return keep_last(int(value["keep_last"]))
    raise ConfigurationError(f"Invalid history filter: {value!r}")


class AgentRegistry:
    """
    Registry for agent descriptors.

    Usage:
        registry = AgentRegistry.from_directory(
            "config/agents", capabilities=capability_registry
        )
        triage = registry.get("triage")
    """

    def __init__(
        self,
        capabilities: CapabilityRegistry | None = None,
        gates: dict[str, ValidationGate] | None = None,
        output_shapes: dict[str, type[BaseModel]] | None = None,
    ):
        self._agents: dict[str, AgentDescriptor] = {}
        self._lock = RLock()
        self._capabilities = capabilities or CapabilityRegistry()
        self._gates = dict(gates or {})
        self._output_shapes = dict(output_shapes or {})

    # -------------------------------------------------------------------------
    # Loading
    # -------------------------------------------------------------------------

    @classmethod
    def from_directory(
        cls,
        directory: str | Path,
        recursive: bool = True,
        **kwargs: Any,
    ) -> "AgentRegistry":
        """
        Create a registry by scanning a directory for YAML agent files.

        Raises:
            ConfigurationError: Missing directory or invalid agent file
        """
        path = Path(directory)
        if not path.is_dir():
            raise ConfigurationError(f"Not a directory: {directory}")

        registry = cls(**kwargs)
        pattern = "**/*.y*ml" if recursive else "*.y*ml"
        for yaml_file in sorted(path.glob(pattern)):
            if yaml_file.is_file():
                registry.load_file(yaml_file)
        return registry

    @classmethod
    def from_yaml(cls, text: str, **kwargs: Any) -> "AgentRegistry":
        """Create a registry from a YAML string."""
        registry = cls(**kwargs)
        registry.load_yaml(text)
        return registry

    def load_file(self, filepath: str | Path) -> list[AgentDescriptor]:
        path = Path(filepath)
        if not path.exists():
            raise ConfigurationError(f"File not found: {filepath}")
        with open(path, "r", encoding="utf-8") as f:
            return self.load_yaml(f.read(), source=str(path))

    def load_yaml(self, text: str, source: str = "<string>") -> list[AgentDescriptor]:
        """
        Load agents from YAML.

        A document is either one agent mapping or `{agents: [...]}`.
        """
        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in {source}: {e}", cause=e)

        if data is None:
            raise ConfigurationError(f"Empty agent file: {source}")
        entries = data["agents"] if isinstance(data, dict) and "agents" in data else [data]

        loaded = [self.register_from_dict(entry, source=source) for entry in entries]
        logger.info("loaded %d agent(s) from %s", len(loaded), source)
        return loaded

    def register_from_dict(self, data: Any, source: str | None = None) -> AgentDescriptor:
        """Validate one agent mapping and register the resulting descriptor."""
        try:
            spec = AgentSpec.model_validate(data)
        except ValidationError as e:
            errors = [f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()]
            raise ConfigurationError(
                f"Invalid agent definition in {source or '<dict>'}: {errors}",
                context={"source": source, "errors": errors},
                cause=e,
            )

        agent = self._build(spec)
        self.register(agent)
        return agent

    def _build(self, spec: AgentSpec) -> AgentDescriptor:
        instructions: Any = spec.instructions
        if instructions and ("{{" in instructions or "{%" in instructions):
            instructions = template_instructions(instructions, spec.name)

        tool_use_behavior: Any = spec.tool_use_behavior
        if isinstance(tool_use_behavior, StopAtSpec):
            tool_use_behavior = StopAtCapabilities(tool_use_behavior.stop_at)

        output_shape = None
        if spec.output_shape is not None:
            if spec.output_shape not in self._output_shapes:
                raise ConfigurationError(
                    f"Unknown output shape '{spec.output_shape}' for agent '{spec.name}'"
                )
            output_shape = self._output_shapes[spec.output_shape]

        return AgentDescriptor(
            name=spec.name,
            instructions=instructions,
            handoff_description=spec.handoff_description,
            model=spec.model,
            model_settings=spec.model_settings,
            capabilities=[self._capabilities.require(name) for name in spec.capabilities],
            delegations=[self._delegation(d) for d in spec.delegations],
            input_gates=[self._gate(g, GateKind.INPUT) for g in spec.input_gates],
            output_gates=[self._gate(g, GateKind.OUTPUT) for g in spec.output_gates],
            output_shape=output_shape,
            tool_use_behavior=tool_use_behavior,
            reset_tool_choice=spec.reset_tool_choice,
        )

    def _delegation(self, entry: Union[str, DelegationSpec]) -> DelegationDescriptor:
        # Targets stay names; they are resolved against this registry when used
        if isinstance(entry, str):
            return handoff(entry)
        return handoff(
            entry.agent,
            tool_name=entry.tool_name,
            description=entry.description,
            history_filter=parse_history_filter(entry.history_filter),
        )

    def _gate(self, entry: Union[str, dict[str, Any]], kind: GateKind) -> ValidationGate:
        if isinstance(entry, str):
            name, options = entry, {}
        elif len(entry) == 1:
            name, options = next(iter(entry.items()))
            options = dict(options or {})
        else:
            raise ConfigurationError(f"Invalid gate entry: {entry!r}")

        if name in self._gates and not options:
            gate = self._gates[name]
        elif name in STOCK_GATES:
            factory = STOCK_GATES[name]
            if "kind" in inspect.signature(factory).parameters:
                options.setdefault("kind", kind)
            try:
                gate = factory(**options)
            except TypeError as e:
                raise ConfigurationError(f"Invalid options for gate '{name}': {e}", cause=e)
        else:
            raise ConfigurationError(f"Unknown gate: {name}")

        if gate.kind != kind:
            raise ConfigurationError(f"Gate '{name}' cannot be used as an {kind.value} gate")
        return gate

    # -------------------------------------------------------------------------
    # Access
    # -------------------------------------------------------------------------

    def register(self, agent: AgentDescriptor, *, replace: bool = False) -> None:
        with self._lock:
            if agent.name in self._agents and not replace:
                raise ConfigurationError(
                    f"Agent already registered: {agent.name}", context={"agent": agent.name}
                )
            self._agents[agent.name] = agent

    def get(self, name: str) -> AgentDescriptor | None:
        with self._lock:
            return self._agents.get(name)

    def require(self, name: str) -> AgentDescriptor:
        agent = self.get(name)
        if agent is None:
            raise ConfigurationError(f"Unknown agent: {name}", context={"agent": name})
        return agent

    def validate_references(self) -> list[str]:
        """Names of delegation targets that no registered agent answers to."""
        with self._lock:
            missing = set()
            for agent in self._agents.values():
                for delegation in agent.delegations:
                    if isinstance(delegation.target, str) and delegation.target not in self._agents:
                        missing.add(delegation.target)
            return sorted(missing)

    def list_agents(self) -> list[AgentDescriptor]:
        with self._lock:
            return list(self._agents.values())

    def __contains__(self, name: str) -> bool:
        return name in self._agents

    def __iter__(self) -> Iterator[AgentDescriptor]:
        return iter(self.list_agents())

    def __len__(self) -> int:
        return len(self._agents)
