"""
Unit Tests - Agents

Tests for agent descriptors and the agent registry.
"""

import pytest
from pydantic import BaseModel

from conductor.agents import (
    STOP_ON_FIRST_TOOL,
    AgentDescriptor,
    AgentRegistry,
    StopAtCapabilities,
    template_instructions,
)
from conductor.capabilities import CapabilityRegistry, DelegatedAgentCapability
from conductor.core.context import RunContext
from conductor.core.exceptions import ConfigurationError
from conductor.guardrails import GateKind, GateResult, input_gate, output_gate


class Conversion(BaseModel):
    amount: float
    currency: str


@input_gate
def no_secrets(ctx, agent, payload) -> GateResult:
    return GateResult.passed()


@output_gate
def polite(ctx, agent, payload) -> GateResult:
    return GateResult.passed()


class TestAgentDescriptor:
    """Tests for AgentDescriptor."""

    def test_sequences_frozen_to_tuples(self, convert_capability):
        """Test list fields are stored as tuples."""
        agent = AgentDescriptor(name="a", capabilities=[convert_capability])

        assert agent.capabilities == (convert_capability,)

    def test_agent_delegations_wrapped(self):
        """Test agents listed as delegations become handoffs."""
        billing = AgentDescriptor(name="billing")
        triage = AgentDescriptor(name="triage", delegations=[billing])

        delegation = triage.find_delegation("transfer_to_billing")
        assert delegation is not None
        assert delegation.target is billing

    def test_schemas_include_delegations(self, convert_capability):
        """Test capability schemas come first, then delegations."""
        agent = AgentDescriptor(
            name="triage",
            capabilities=[convert_capability],
            delegations=[AgentDescriptor(name="tech")],
        )

        assert [s["name"] for s in agent.capability_schemas()] == ["convert", "transfer_to_tech"]

    def test_empty_name_rejected(self):
        """Test names must not be blank."""
        with pytest.raises(ConfigurationError):
            AgentDescriptor(name="  ")

    def test_duplicate_capability_names(self, convert_capability):
        """Test tool names must be unique."""
        with pytest.raises(ConfigurationError):
            AgentDescriptor(name="a", capabilities=[convert_capability, convert_capability])

    def test_wrong_gate_kind(self):
        """Test an output gate cannot be used as an input gate."""
        with pytest.raises(ConfigurationError):
            AgentDescriptor(name="a", input_gates=[polite])

    def test_output_shape_must_be_model(self):
        """Test the output shape must be a pydantic model class."""
        with pytest.raises(ConfigurationError):
            AgentDescriptor(name="a", output_shape=dict)

    def test_unknown_behavior(self):
        """Test tool use behaviour values are checked."""
        with pytest.raises(ConfigurationError):
            AgentDescriptor(name="a", tool_use_behavior="run_forever")

    def test_clone(self, converter_agent):
        """Test clone overrides fields and keeps the rest."""
        clone = converter_agent.clone(name="converter_v2", tool_use_behavior=STOP_ON_FIRST_TOOL)

        assert clone.name == "converter_v2"
        assert clone.capabilities == converter_agent.capabilities
        assert converter_agent.tool_use_behavior == "run_llm_again"

    def test_identity_equality(self):
        """Test agents compare by identity."""
        assert AgentDescriptor(name="a") != AgentDescriptor(name="a")

    def test_output_schema(self):
        """Test the output schema comes from the output shape."""
        agent = AgentDescriptor(name="a", output_shape=Conversion)

        assert agent.output_schema()["properties"]["currency"]["type"] == "string"
        assert AgentDescriptor(name="b").output_schema() is None

    def test_stop_at_names(self):
        """Test stop-at names are frozen."""
        assert StopAtCapabilities(["convert"]).names == ("convert",)

    @pytest.mark.asyncio
    async def test_dynamic_instructions(self):
        """Test instructions can be computed from the run context."""

        async def instructions(run_context, agent) -> str:
            return f"Help {run_context.context['user']} as {agent.name}."

        agent = AgentDescriptor(name="helper", instructions=instructions)

        text = await agent.get_instructions(RunContext(context={"user": "ada"}))

        assert text == "Help ada as helper."

    def test_as_capability(self, converter_agent):
        """Test an agent can be exposed as a capability."""
        tool = converter_agent.as_capability(description="Convert money", max_turns=3)

        assert isinstance(tool, DelegatedAgentCapability)
        assert tool.name == "converter"
        assert tool.max_turns == 3
        assert tool.to_schema()["parameters"]["required"] == ["input"]


AGENTS_YAML = """
agents:
  - name: triage
    instructions: "Route {{ context.user }} to the right desk."
    capabilities: [convert]
    delegations:
      - billing
      - agent: tech
        tool_name: escalate
        history_filter:
          - remove_capability_items
          - keep_last: 3
    input_gates:
      - no_secrets
      - max_length:
          max_length: 500
  - name: billing
    instructions: Handle payments.
    output_gates:
      - required_text:
          phrase: "not financial advice"
    output_shape: conversion
    tool_use_behavior:
      stop_at: [convert]
  - name: tech
    model: fast
    model_settings:
      temperature: 0.1
"""


@pytest.fixture
def agent_registry(convert_capability):
    return AgentRegistry.from_yaml(
        AGENTS_YAML,
        capabilities=CapabilityRegistry([convert_capability]),
        gates={"no_secrets": no_secrets},
        output_shapes={"conversion": Conversion},
    )


class TestAgentRegistry:
    """Tests for AgentRegistry."""

    def test_loads_all_agents(self, agent_registry):
        """Test every agent of the document is registered."""
        assert [a.name for a in agent_registry] == ["triage", "billing", "tech"]
        assert agent_registry.validate_references() == []

    def test_capabilities_and_delegations(self, agent_registry, convert_capability):
        """Test references are resolved."""
        triage = agent_registry.require("triage")

        assert triage.capabilities == (convert_capability,)
        assert [d.tool_name for d in triage.delegations] == ["transfer_to_billing", "escalate"]
        assert triage.delegations[0].target == "billing"

    def test_history_filter_from_yaml(self, agent_registry):
        """Test composed filters are built from YAML."""
        from conductor.core import CapabilityResult, UserMessage

        escalate = agent_registry.require("triage").find_delegation("escalate")
        items = [UserMessage(content=str(i)) for i in range(5)] + [
            CapabilityResult(invocation_id="x", capability_name="convert", output=1)
        ]

        assert [i.content for i in escalate.history_filter(items)] == ["2", "3", "4"]

    def test_gates(self, agent_registry):
        """Test registered and stock gates are attached."""
        triage = agent_registry.require("triage")
        billing = agent_registry.require("billing")

        assert [g.name for g in triage.input_gates] == ["no_secrets", "max_length"]
        assert triage.input_gates[1].kind == GateKind.INPUT
        assert [g.name for g in billing.output_gates] == ["required_text"]

    def test_output_shape_and_behavior(self, agent_registry):
        """Test output shapes and stop-at behaviour."""
        billing = agent_registry.require("billing")

        assert billing.output_shape is Conversion
        assert billing.tool_use_behavior == StopAtCapabilities(["convert"])

    def test_model_settings(self, agent_registry):
        """Test model name and settings."""
        tech = agent_registry.require("tech")

        assert tech.model == "fast"
        assert tech.model_settings.temperature == 0.1

    @pytest.mark.asyncio
    async def test_templated_instructions(self, agent_registry):
        """Test Jinja2 instructions render against the context."""
        triage = agent_registry.require("triage")

        text = await triage.get_instructions(RunContext(context={"user": "ada"}))

        assert text == "Route ada to the right desk."

    @pytest.mark.asyncio
    async def test_missing_template_variable(self, agent_registry):
        """Test an undefined template variable is a configuration error."""
        triage = agent_registry.require("triage")

        with pytest.raises(ConfigurationError):
            await triage.get_instructions(RunContext(context={}))

    def test_unknown_capability(self):
        """Test unknown capability names are rejected."""
        with pytest.raises(ConfigurationError):
            AgentRegistry.from_yaml("name: a\ncapabilities: [teleport]\n")

    def test_unknown_field(self):
        """Test unknown keys are rejected."""
        with pytest.raises(ConfigurationError):
            AgentRegistry.from_yaml("name: a\ncolour: blue\n")

    def test_unknown_gate(self):
        """Test unknown gate names are rejected."""
        with pytest.raises(ConfigurationError):
            AgentRegistry.from_yaml("name: a\ninput_gates: [mystery]\n")

    def test_invalid_template(self):
        """Test template syntax errors surface at load time."""
        with pytest.raises(ConfigurationError):
            AgentRegistry.from_yaml("name: a\ninstructions: 'Hi {{ context.user '\n")

    def test_dangling_reference(self):
        """Test unknown delegation targets are reported."""
        registry = AgentRegistry.from_yaml("name: a\ndelegations: [ghost]\n")

        assert registry.validate_references() == ["ghost"]

    def test_duplicate_agent(self):
        """Test registering the same name twice fails."""
        registry = AgentRegistry()
        registry.register(AgentDescriptor(name="a"))

        with pytest.raises(ConfigurationError):
            registry.register(AgentDescriptor(name="a"))

    def test_from_directory(self, tmp_path, convert_capability):
        """Test agent files are loaded from a directory."""
        (tmp_path / "converter.yaml").write_text("name: converter\ncapabilities: [convert]\n")
        nested = tmp_path / "nested"
        nested.mkdir()
        (nested / "helper.yml").write_text("name: helper\n")

        registry = AgentRegistry.from_directory(
            tmp_path, capabilities=CapabilityRegistry([convert_capability])
        )

        assert sorted(a.name for a in registry) == ["converter", "helper"]

    def test_template_instructions_function(self):
        """Test the template helper directly."""
        render = template_instructions("You are {{ agent.name }}.")

        assert render(RunContext(context=None), AgentDescriptor(name="x")) == "You are x."
