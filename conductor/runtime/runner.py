"""
Runner

The SINGLE orchestration point for agent runs.

Drives the active agent through rounds of generation, capability
invocation, delegation and validation until a terminal result.

Design decisions:
- One coordinating task per run; it suspends at generations, capability
  invocations and nested runs
- Explicit state machine; every transition is logged at DEBUG
- The item log is append-only and owned by the run. After a delegation
  the active agent sees a filtered view; the log itself is never filtered
- max_turns bounds every run; generation and capability timeouts are
  optional extra layers
- Run-fatal errors carry the partial run state
- Cancellation by the caller's own task propagates untouched; the
  cooperative cancel signal ends the run with RunCancelled

Debugging:
- Every turn logs the run id and active agent
- Spans for the run, each generation, capability, delegation and gate
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Union
from uuid import uuid4

from pydantic import TypeAdapter, ValidationError

from conductor.agents.agent import RUN_LLM_AGAIN, STOP_ON_FIRST_TOOL, AgentDescriptor
from conductor.agents.registry import AgentRegistry
from conductor.capabilities.base import format_validation_error
from conductor.capabilities.invoker import CapabilityInvoker, InvocationOutcome
from conductor.config.settings import RuntimeSettings, get_settings
from conductor.core.context import InvocationContext, RunContext
from conductor.core.exceptions import (
    ConfigurationError,
    InputGuardrailTripwire,
    InstructionsError,
    MaxTurnsExceeded,
    ModelBackendError,
    OutputGuardrailTripwire,
    OutputShapeValidationError,
    RunCancelled,
    RunError,
    RunErrorDetails,
)
from conductor.core.interfaces import ModelBackendProtocol
from conductor.core.types import (
    AssistantMessage,
    CapabilityCall,
    CapabilityCallsOutput,
    CapabilityInvocation,
    CapabilityResult,
    ConversationItem,
    GenerationOutput,
    MessageOutput,
    ModelSettings,
    ReasoningTrace,
    StructuredOutput,
    UserMessage,
    parse_items,
)
from conductor.guardrails.executor import GateExecutor
from conductor.guardrails.gates import GateOutcome
from conductor.handoffs.delegation import DelegationDescriptor, DelegationResolver
from conductor.models.backend import StreamAccumulator
from conductor.observability.logging import log_context
from conductor.observability.tracing import SpanKind, Tracer
from conductor.runtime.config import RunConfig
from conductor.runtime.events import EventBus, RunEvent, RunEventType
from conductor.runtime.result import RunResult, RunResultStreaming

logger = logging.getLogger(__name__)

RunInput = Union[str, list[ConversationItem], list[dict[str, Any]]]

generation_output_adapter: TypeAdapter[GenerationOutput] = TypeAdapter(GenerationOutput)

NON_FORCING_TOOL_CHOICES = (None, "auto", "none")


class RunState(str, Enum):
    """
    Orchestrator state machine.

    Valid transitions:
    AWAITING_GENERATION → CLASSIFYING_OUTPUT → INVOKING_CAPABILITIES → AWAITING_GENERATION
                                             → RESOLVING_DELEGATION  → AWAITING_GENERATION
                                             → EVALUATING_OUTPUT_GATES → COMPLETED
    Any state → FAILED
    Any state → CANCELLED
    """

    AWAITING_GENERATION = "awaiting_generation"
    CLASSIFYING_OUTPUT = "classifying_output"
    INVOKING_CAPABILITIES = "invoking_capabilities"
    RESOLVING_DELEGATION = "resolving_delegation"
    EVALUATING_OUTPUT_GATES = "evaluating_output_gates"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class _ShortCircuit:
    value: Any


@dataclass
class _RunSession:
    """Mutable state of one run, owned by its coordinating task."""

    run_id: str
    agent: AgentDescriptor
    input: Any
    config: RunConfig
    tracer: Tracer
    bus: EventBus
    run_context: RunContext[Any]
    item_log: list[ConversationItem]
    visible_items: list[ConversationItem]
    streaming: bool = False
    turns: int = 0
    gate_outcomes: list[GateOutcome] = field(default_factory=list)
    state: RunState = RunState.AWAITING_GENERATION
    tool_choice_reset: bool = False
    held_events: list[RunEvent] | None = None

    def append(self, *items: ConversationItem) -> None:
        self.item_log.extend(items)
        self.visible_items.extend(items)

    def transition(self, new_state: RunState) -> None:
        logger.debug("run %s: %s -> %s", self.run_id, self.state.value, new_state.value)
        self.state = new_state

    def emit(
        self,
        event_type: RunEventType,
        *,
        item: ConversationItem | None = None,
        raw: Any = None,
        data: dict[str, Any] | None = None,
    ) -> None:
        event = RunEvent(
            type=event_type,
            run_id=self.run_id,
            agent=self.agent.name,
            item=item,
            raw=raw,
            data=data or {},
        )
        if self.held_events is not None:
            self.held_events.append(event)
        else:
            self.bus.emit(event)

    def release_held(self, publish: bool) -> None:
        """Stop holding events; publish the held ones or drop them."""
        held, self.held_events = self.held_events or [], None
        if publish:
            for event in held:
                self.bus.emit(event)

    def details(self) -> RunErrorDetails:
        return RunErrorDetails(
            item_log=list(self.item_log),
            last_agent=self.agent,
            turns_used=min(self.turns, self.config.max_turns),
            gate_outcomes=list(self.gate_outcomes),
            usage=self.run_context.usage,
        )


class Runner:
    """
    Runs agents.

    Holds the model backends and the agent arena; every run gets its own
    state, so one Runner can serve any number of concurrent runs.

    Usage:
        runner = Runner(ScriptedModelBackend([...]))
        result = await runner.run(agent, "convert 100 USD to EUR")
    """

    def __init__(
        self,
        backend: ModelBackendProtocol | None = None,
        *,
        backends: dict[str, ModelBackendProtocol] | None = None,
        agents: AgentRegistry | None = None,
        tracer: Tracer | None = None,
        settings: RuntimeSettings | None = None,
    ):
        """
        Args:
            backend: Backend for agents that do not name one
            backends: Named backends, selected by an agent's `model` string
            agents: Agent arena; resolves delegation targets given by name
            tracer: Tracer for every run (built from settings if omitted)
            settings: Process-wide defaults
        """
        self._settings = settings or get_settings()
        self._default_backend = backend
        self._backends: dict[str, ModelBackendProtocol] = dict(backends or {})
        self._agents = agents
        self._tracer = tracer or Tracer(
            enabled=self._settings.tracing_enabled,
            redact_payloads=self._settings.trace_redact_payloads,
        )

    @property
    def tracer(self) -> Tracer:
        return self._tracer

    def register_backend(self, name: str, backend: ModelBackendProtocol) -> None:
        self._backends[name] = backend

    # =========================================================================
    # Entry points
    # =========================================================================

    async def run(
        self,
        starting_agent: AgentDescriptor | str,
        input: RunInput,
        *,
        context: Any = None,
        max_turns: int | None = None,
        run_config: RunConfig | None = None,
        cancel_signal: asyncio.Event | None = None,
    ) -> RunResult:
        """
        Run `starting_agent` on `input` until a terminal result.

        Args:
            starting_agent: Agent descriptor or name of a registered agent
            input: User text, or items (e.g. a previous result's to_input_list())
            context: Caller-owned object handed to capabilities, never to the model
            max_turns: Overrides the run config's turn budget
            run_config: Per-run configuration
            cancel_signal: Setting this event ends the run with RunCancelled

        Returns:
            RunResult with the final output and the full item log

        Raises:
            RunError: Any run-fatal error, with `details` attached
        """
        session = self._start(starting_agent, input, context, max_turns, run_config)
        return await self._run_session(session, cancel_signal)

    def run_streamed(
        self,
        starting_agent: AgentDescriptor | str,
        input: RunInput,
        *,
        context: Any = None,
        max_turns: int | None = None,
        run_config: RunConfig | None = None,
        cancel_signal: asyncio.Event | None = None,
    ) -> RunResultStreaming:
        """
        Start a run in the background and return its event stream.

        Must be called from a running event loop.
        """
        cancel_signal = cancel_signal or asyncio.Event()
        session = self._start(
            starting_agent, input, context, max_turns, run_config, streaming=True
        )
        streaming = RunResultStreaming(session.run_id, cancel_signal)
        session.bus.subscribe(streaming._publish)
        task = asyncio.get_running_loop().create_task(self._run_session(session, cancel_signal))
        streaming._attach(task)
        return streaming

    def run_sync(
        self,
        starting_agent: AgentDescriptor | str,
        input: RunInput,
        **kwargs: Any,
    ) -> RunResult:
        """Blocking wrapper around `run` for code without an event loop."""
        return asyncio.run(self.run(starting_agent, input, **kwargs))

    # =========================================================================
    # Run setup and lifecycle
    # =========================================================================

    def _start(
        self,
        starting_agent: AgentDescriptor | str,
        input: RunInput,
        context: Any,
        max_turns: int | None,
        run_config: RunConfig | None,
        streaming: bool = False,
    ) -> _RunSession:
        agent = self._agent(starting_agent)
        config = run_config or RunConfig.from_settings(self._settings)
        if max_turns is not None:
            config = replace(config, max_turns=max_turns)

        items = self._input_items(input)
        run_context = context if isinstance(context, RunContext) else RunContext(context=context)
        return _RunSession(
            run_id=f"run_{uuid4().hex[:12]}",
            agent=agent,
            input=input if isinstance(input, str) else list(items),
            config=config,
            tracer=config.tracer or self._tracer,
            bus=EventBus(config.subscribers),
            run_context=run_context,
            item_log=list(items),
            visible_items=list(items),
            streaming=streaming,
        )

    def _agent(self, agent: AgentDescriptor | str) -> AgentDescriptor:
        if isinstance(agent, AgentDescriptor):
            return agent
        if self._agents is None:
            raise ConfigurationError(f"Agent '{agent}' given by name but the runner has no agents")
        return self._agents.require(agent)

    @staticmethod
    def _input_items(input: RunInput) -> list[ConversationItem]:
        if isinstance(input, str):
            return [UserMessage(content=input)]
        items = parse_items(list(input))
        if not items:
            raise ConfigurationError("Run input must contain at least one item")
        return items

    async def _run_session(
        self,
        session: _RunSession,
        cancel_signal: asyncio.Event | None,
    ) -> RunResult:
        if cancel_signal is None:
            return await self._execute(session)

        loop_task = asyncio.create_task(self._execute(session))
        cancel_task = asyncio.create_task(cancel_signal.wait())
        try:
            await asyncio.wait({loop_task, cancel_task}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            await _cancel_all(loop_task, cancel_task)
            raise

        if loop_task.done():
            await _cancel_all(cancel_task)
            return loop_task.result()

        await _cancel_all(loop_task)
        session.transition(RunState.CANCELLED)
        logger.info("run %s cancelled after %d turn(s)", session.run_id, session.turns)
        error = RunCancelled("Run cancelled", context={"run_id": session.run_id})
        error.details = session.details()
        raise error

    async def _execute(self, session: _RunSession) -> RunResult:
        async with session.tracer.trace(
            SpanKind.RUN,
            session.agent.name,
            payload={"run_id": session.run_id, "max_turns": session.config.max_turns},
        ) as span:
            with log_context(run_id=session.run_id, trace_id=span.trace_id):
                try:
                    result = await self._loop(session)
                except RunError as e:
                    session.transition(RunState.FAILED)
                    if e.details is None:
                        e.details = session.details()
                    logger.error(
                        "run %s failed: %s",
                        session.run_id,
                        e.message,
                        extra={"data": e.to_dict()},
                    )
                    raise
                except asyncio.CancelledError:
                    session.transition(RunState.CANCELLED)
                    raise

                span.set_payload("turns_used", result.turns_used)
                span.set_payload("last_agent", result.last_agent.name)
                logger.info(
                    "run %s completed in %d turn(s), last agent %s",
                    session.run_id,
                    result.turns_used,
                    result.last_agent.name,
                )
                return result

    # =========================================================================
    # The loop
    # =========================================================================

    async def _loop(self, session: _RunSession) -> RunResult:
        config = session.config
        invoker = CapabilityInvoker(
            session.tracer,
            default_timeout=config.capability_timeout_seconds,
            max_parallel=config.max_parallel_capabilities,
            on_completed=lambda outcome: session.emit(
                RunEventType.CAPABILITY_COMPLETED,
                item=outcome.result,
                data={"duration_ms": outcome.duration_ms},
            ),
        )
        gates = GateExecutor(session.tracer)
        resolver = DelegationResolver(
            session.tracer, lookup=self._agents.get if self._agents is not None else None
        )

        session.emit(RunEventType.AGENT_CHANGED)

        while True:
            session.turns += 1
            if session.turns > config.max_turns:
                raise MaxTurnsExceeded(
                    f"Max turns ({config.max_turns}) exceeded",
                    max_turns=config.max_turns,
                )

            agent = session.agent
            with log_context(agent=agent.name):
                logger.info("turn %d of run %s, agent %s", session.turns, session.run_id, agent.name)
                session.transition(RunState.AWAITING_GENERATION)
                output = await self._generate_turn(session, gates)
                session.run_context.add_usage(output.usage)

                session.transition(RunState.CLASSIFYING_OUTPUT)
                if output.reasoning is not None:
                    session.append(ReasoningTrace(content=output.reasoning, agent=agent.name))

                if isinstance(output, CapabilityCallsOutput) and output.calls:
                    self._check_invocation_ids(session, output.calls)
                    if output.text:
                        self._produce_message(
                            session, AssistantMessage(content=output.text, agent=agent.name)
                        )
                    short_circuit = await self._dispatch(session, output.calls, invoker, resolver)
                    if short_circuit is not None:
                        return await self._finalize(
                            session, short_circuit.value, gates, short_circuit=True
                        )
                    continue

                self._produce_message(session, self._final_message(agent, output))
                final_output = self._parse_final_output(agent, output)
                return await self._finalize(session, final_output, gates, short_circuit=False)

    async def _generate_turn(self, session: _RunSession, gates: GateExecutor) -> GenerationOutput:
        """Generate, racing the input gates on the first turn."""
        agent = session.agent
        if session.turns != 1 or not agent.input_gates:
            return await self._generate(session)

        # Stream events of the raced generation stay hidden until the gates pass
        session.held_events = []
        try:
            evaluation, output = await gates.race(
                agent.input_gates,
                session.run_context,
                agent,
                session.input,
                self._generate(session),
                on_passed=lambda: session.release_held(publish=True),
            )
        except BaseException:
            session.release_held(publish=False)
            raise
        session.release_held(publish=evaluation.tripped is None)
        session.gate_outcomes.extend(evaluation.outcomes)
        if evaluation.tripped is not None:
            raise InputGuardrailTripwire(
                f"Input gate '{evaluation.tripped.gate_name}' tripped",
                gate_outcome=evaluation.tripped,
            )
        return output

    async def _generate(self, session: _RunSession) -> GenerationOutput:
        agent = session.agent
        backend = self._backend_for(agent, session.config)
        try:
            instructions = await agent.get_instructions(session.run_context)
        except Exception as e:
            raise InstructionsError(
                f"Instructions of agent '{agent.name}' failed: {e}",
                context={"agent": agent.name, "turn": session.turns},
                cause=e,
            )
        request = {
            "instructions": instructions,
            "capabilities": agent.capability_schemas(),
            "items": list(session.visible_items),
            "output_schema": agent.output_schema(),
            "settings": self._model_settings(session),
        }
        timeout = session.config.generation_timeout_seconds

        async with session.tracer.trace(
            SpanKind.GENERATION,
            agent.name,
            payload={
                "turn": session.turns,
                "backend": getattr(backend, "name", type(backend).__name__),
                "items": len(request["items"]),
            },
        ) as span:
            if session.streaming:
                pending = self._consume_stream(session, backend, request)
            else:
                pending = backend.generate(**request)
            try:
                if timeout is None:
                    output = await pending
                else:
                    output = await asyncio.wait_for(pending, timeout=timeout)
            except asyncio.TimeoutError as e:
                raise ModelBackendError(
                    f"Generation timed out after {timeout}s",
                    context={"agent": agent.name, "turn": session.turns},
                    cause=e,
                )
            except RunError:
                raise
            except Exception as e:
                raise ModelBackendError(
                    f"Model backend failed: {e}",
                    context={"agent": agent.name, "turn": session.turns},
                    cause=e,
                )

            output = self._coerce_output(output)
            span.set_payload("output_type", output.type)
            span.set_payload("usage", output.usage.model_dump())
            return output

    async def _consume_stream(
        self,
        session: _RunSession,
        backend: ModelBackendProtocol,
        request: dict[str, Any],
    ) -> GenerationOutput:
        """Re-emit raw events unchanged while rebuilding the output."""
        accumulator = StreamAccumulator()
        events = backend.stream(**request)
        try:
            async for event in events:
                session.emit(RunEventType.RAW_GENERATION, raw=event)
                accumulator.add(event)
                if accumulator.finished:
                    break
        finally:
            aclose = getattr(events, "aclose", None)
            if aclose is not None:
                await aclose()
        return accumulator.build()

    @staticmethod
    def _coerce_output(output: Any) -> GenerationOutput:
        if isinstance(output, (MessageOutput, CapabilityCallsOutput, StructuredOutput)):
            return output
        try:
            return generation_output_adapter.validate_python(output)
        except ValidationError as e:
            raise ModelBackendError(
                f"Model backend returned an invalid output: {format_validation_error(e)}",
                cause=e,
            )

    def _backend_for(self, agent: AgentDescriptor, config: RunConfig) -> ModelBackendProtocol:
        model = config.model if config.model is not None else agent.model
        if model is None:
            if self._default_backend is None:
                raise ConfigurationError(f"No model backend configured for agent '{agent.name}'")
            return self._default_backend
        if isinstance(model, str):
            backend = self._backends.get(model)
            if backend is None:
                raise ConfigurationError(
                    f"Unknown model backend '{model}' for agent '{agent.name}'",
                    context={"agent": agent.name, "model": model},
                )
            return backend
        return model

    @staticmethod
    def _model_settings(session: _RunSession) -> ModelSettings:
        settings = session.agent.model_settings.resolve(session.config.model_settings)
        if session.tool_choice_reset and settings.tool_choice not in NON_FORCING_TOOL_CHOICES:
            settings = settings.model_copy(update={"tool_choice": "auto"})
        return settings

    # =========================================================================
    # Capability calls and delegation
    # =========================================================================

    @staticmethod
    def _check_invocation_ids(session: _RunSession, calls: list[CapabilityCall]) -> None:
        """Every result must pair with exactly one open invocation."""
        open_ids = {item.id for item in session.item_log if isinstance(item, CapabilityInvocation)}
        open_ids -= {
            item.invocation_id for item in session.item_log if isinstance(item, CapabilityResult)
        }
        seen: set[str] = set()
        for call in calls:
            if call.id in seen or call.id in open_ids:
                raise ModelBackendError(
                    f"Model backend reused invocation id '{call.id}'",
                    context={"agent": session.agent.name, "turn": session.turns},
                )
            seen.add(call.id)

    async def _dispatch(
        self,
        session: _RunSession,
        calls: list[CapabilityCall],
        invoker: CapabilityInvoker,
        resolver: DelegationResolver,
    ) -> _ShortCircuit | None:
        """
        Run the ordinary calls of a turn concurrently, then the delegation.

        Returns a _ShortCircuit when the agent's tool-use behaviour ends
        the run with a capability's output.
        """
        agent = session.agent
        session.transition(RunState.INVOKING_CAPABILITIES)

        ordinary: list[tuple[int, CapabilityCall]] = []
        delegations: list[tuple[int, CapabilityCall, DelegationDescriptor]] = []
        for index, call in enumerate(calls):
            delegation = agent.find_delegation(call.name)
            if delegation is None:
                ordinary.append((index, call))
            else:
                delegations.append((index, call, delegation))

        for call in calls:
            invocation = CapabilityInvocation(
                id=call.id,
                capability_name=call.name,
                arguments=call.arguments,
                agent=agent.name,
            )
            session.append(invocation)
            session.emit(RunEventType.CAPABILITY_INVOKED, item=invocation)

        def make_context(call: CapabilityCall) -> InvocationContext:
            return InvocationContext(
                run_context=session.run_context,
                agent=agent,
                runner=self,
                run_config=session.config,
                invocation_id=call.id,
                capability_name=call.name,
            )

        outcomes: list[InvocationOutcome] = await invoker.invoke_all(
            [(call, agent.find_capability(call.name)) for _, call in ordinary],
            make_context,
        )

        results: list[CapabilityResult | None] = [None] * len(calls)
        for (index, _), outcome in zip(ordinary, outcomes):
            results[index] = outcome.result

        chosen: tuple[CapabilityCall, DelegationDescriptor] | None = None
        for index, call, delegation in delegations:
            if chosen is None:
                chosen = (call, delegation)
                results[index] = CapabilityResult(
                    invocation_id=call.id,
                    capability_name=call.name,
                    output=f"Transferred to {delegation.target_name}",
                )
            else:
                logger.warning("ignoring extra delegation %s in one turn", call.name)
                results[index] = CapabilityResult(
                    invocation_id=call.id,
                    capability_name=call.name,
                    error="Multiple delegations requested; ignored",
                )
                session.emit(RunEventType.CAPABILITY_COMPLETED, item=results[index])

        session.append(*results)

        if self._reset_tool_choice(session):
            session.tool_choice_reset = True

        if chosen is not None:
            await self._delegate(session, chosen[0], chosen[1], resolver)
            return None

        return self._short_circuit(agent, outcomes)

    async def _delegate(
        self,
        session: _RunSession,
        call: CapabilityCall,
        delegation: DelegationDescriptor,
        resolver: DelegationResolver,
    ) -> None:
        session.transition(RunState.RESOLVING_DELEGATION)
        previous = session.agent
        resolution = await resolver.resolve(
            delegation,
            call.arguments,
            list(session.visible_items),
            session.run_context,
            previous,
            default_filter=session.config.history_filter,
        )

        session.item_log.append(resolution.event)
        session.visible_items = list(resolution.visible_items)
        session.agent = resolution.new_agent
        session.tool_choice_reset = False

        session.emit(RunEventType.DELEGATION_OCCURRED, item=resolution.event)
        session.emit(RunEventType.AGENT_CHANGED, data={"from_agent": previous.name})

    @staticmethod
    def _reset_tool_choice(session: _RunSession) -> bool:
        agent_setting = session.agent.reset_tool_choice
        if agent_setting is not None:
            return agent_setting
        return session.config.reset_tool_choice

    @staticmethod
    def _short_circuit(
        agent: AgentDescriptor,
        outcomes: list[InvocationOutcome],
    ) -> _ShortCircuit | None:
        behavior = agent.tool_use_behavior
        if behavior == RUN_LLM_AGAIN:
            return None
        for outcome in outcomes:
            if not outcome.succeeded:
                continue
            if behavior == STOP_ON_FIRST_TOOL or outcome.call.name in behavior.names:
                logger.debug("capability %s finalizes the run", outcome.call.name)
                return _ShortCircuit(outcome.raw_output)
        return None

    # =========================================================================
    # Final output
    # =========================================================================

    @staticmethod
    def _final_message(agent: AgentDescriptor, output: GenerationOutput) -> AssistantMessage:
        if isinstance(output, StructuredOutput):
            value = output.value
            content = value if isinstance(value, str) else json.dumps(value, default=str)
            return AssistantMessage(content=content, agent=agent.name)
        if isinstance(output, MessageOutput):
            return AssistantMessage(
                content=output.text, annotations=list(output.annotations), agent=agent.name
            )
        return AssistantMessage(content=output.text or "", agent=agent.name)

    @staticmethod
    def _parse_final_output(agent: AgentDescriptor, output: GenerationOutput) -> Any:
        """
        The final output, typed by the agent's output shape.

        Raises:
            OutputShapeValidationError: The output does not match the shape
        """
        shape = agent.output_shape
        if isinstance(output, StructuredOutput):
            value = output.value
            if shape is None:
                return value if isinstance(value, str) else json.dumps(value, default=str)
        else:
            value = output.text or ""
            if shape is None:
                return value

        try:
            if isinstance(value, str):
                return shape.model_validate_json(value)
            return shape.model_validate(value)
        except ValidationError as e:
            raise OutputShapeValidationError(
                f"Final output of agent '{agent.name}' does not match "
                f"{shape.__name__}: {format_validation_error(e)}",
                context={"agent": agent.name, "shape": shape.__name__},
                cause=e,
            )

    def _produce_message(self, session: _RunSession, message: AssistantMessage) -> None:
        session.append(message)
        session.emit(RunEventType.MESSAGE_PRODUCED, item=message)

    async def _finalize(
        self,
        session: _RunSession,
        final_output: Any,
        gates: GateExecutor,
        short_circuit: bool,
    ) -> RunResult:
        agent = session.agent
        output_gates = agent.output_gates
        if output_gates and (not short_circuit or session.config.gate_short_circuit_output):
            session.transition(RunState.EVALUATING_OUTPUT_GATES)
            evaluation = await gates.evaluate(output_gates, session.run_context, agent, final_output)
            session.gate_outcomes.extend(evaluation.outcomes)
            if evaluation.tripped is not None:
                raise OutputGuardrailTripwire(
                    f"Output gate '{evaluation.tripped.gate_name}' tripped",
                    gate_outcome=evaluation.tripped,
                )
        elif output_gates:
            logger.debug("output gates skipped for short-circuited output")

        session.transition(RunState.COMPLETED)
        return RunResult(
            final_output=final_output,
            item_log=tuple(session.item_log),
            last_agent=agent,
            turns_used=session.turns,
            gate_outcomes=tuple(session.gate_outcomes),
            usage=session.run_context.usage,
            run_id=session.run_id,
        )


async def _cancel_all(*tasks: asyncio.Task) -> None:
    for task in tasks:
        task.cancel()
    await asyncio.gather(*tasks, return_exceptions=True)

