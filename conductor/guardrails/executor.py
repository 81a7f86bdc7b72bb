"""
Gate Executor

Concurrent evaluation of validation gates.

Design decisions:
- All gates of a set run as concurrent tasks; the first tripwire wins
  and cancels the siblings still in flight
- Input gates race the first generation: a trip cancels the generation,
  and a generation that finishes first is held back until every gate
  has passed
- Each gate runs in its own validation_gate span
"""

import asyncio
import logging
from collections.abc import Callable, Coroutine, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, TypeVar

from conductor.core.exceptions import GateExecutionError
from conductor.guardrails.gates import GateOutcome, ValidationGate
from conductor.observability.tracing import SpanKind, Tracer

if TYPE_CHECKING:
    from conductor.agents.agent import AgentDescriptor
    from conductor.core.context import RunContext

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class GateEvaluation:
    """Outcomes of one gate set, in gate order, plus the winning trip (if any)."""

    outcomes: list[GateOutcome] = field(default_factory=list)
    tripped: GateOutcome | None = None

    @property
    def tripwire_triggered(self) -> bool:
        return self.tripped is not None

    @property
    def annotations(self) -> list[Any]:
        return [outcome.result.annotation for outcome in self.outcomes]


class GateExecutor:
    """
    Runs gate sets for the orchestrator.

    A gate that raises fails the run with GateExecutionError; the
    original exception is its __cause__.
    """

    def __init__(self, tracer: Tracer):
        self._tracer = tracer

    async def evaluate(
        self,
        gates: Sequence[ValidationGate],
        ctx: "RunContext[Any]",
        agent: "AgentDescriptor",
        payload: Any,
    ) -> GateEvaluation:
        """Evaluate `gates` concurrently against `payload`."""
        if not gates:
            return GateEvaluation()

        tasks = [asyncio.create_task(self._run_gate(gate, ctx, agent, payload)) for gate in gates]
        finished: dict[asyncio.Task, GateOutcome] = {}
        tripped: GateOutcome | None = None
        pending = set(tasks)

        try:
            while pending and tripped is None:
                done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
                # Deterministic winner when several finish together
                for task in tasks:
                    if task not in done:
                        continue
                    outcome = task.result()
                    finished[task] = outcome
                    if outcome.tripped and tripped is None:
                        tripped = outcome
        finally:
            await _cancel_all(pending)

        if tripped is not None:
            logger.info(
                "%s gate %s tripped for agent %s",
                tripped.kind.value,
                tripped.gate_name,
                agent.name,
                extra={"data": {"annotation": tripped.result.annotation}},
            )
        return GateEvaluation(
            outcomes=[finished[task] for task in tasks if task in finished],
            tripped=tripped,
        )

    async def race(
        self,
        gates: Sequence[ValidationGate],
        ctx: "RunContext[Any]",
        agent: "AgentDescriptor",
        payload: Any,
        operation: Coroutine[Any, Any, T],
        on_passed: Callable[[], None] | None = None,
    ) -> tuple[GateEvaluation, T | None]:
        """
        Evaluate `gates` while `operation` runs.

        Returns (evaluation, operation result). When a gate trips the
        operation is cancelled (or its finished result discarded) and the
        result is None.

        `on_passed` is called once every gate has passed, possibly before
        the operation finishes.
        """
        if not gates:
            return GateEvaluation(), await operation

        op_task = asyncio.create_task(operation)
        gate_task = asyncio.create_task(self.evaluate(gates, ctx, agent, payload))

        try:
            done, _ = await asyncio.wait({op_task, gate_task}, return_when=asyncio.FIRST_COMPLETED)
            if gate_task in done:
                evaluation = gate_task.result()
                if evaluation.tripwire_triggered:
                    await _cancel_all([op_task])
                    return evaluation, None
                if on_passed is not None:
                    on_passed()
                return evaluation, await op_task

            logger.debug("generation finished before input gates, holding result")
            evaluation = await gate_task
            if evaluation.tripwire_triggered:
                # Retrieve and drop whatever the operation produced
                if not op_task.cancelled():
                    op_task.exception()
                return evaluation, None
            if on_passed is not None:
                on_passed()
            return evaluation, op_task.result()
        finally:
            await _cancel_all([t for t in (op_task, gate_task) if not t.done()])

    async def _run_gate(
        self,
        gate: ValidationGate,
        ctx: "RunContext[Any]",
        agent: "AgentDescriptor",
        payload: Any,
    ) -> GateOutcome:
        async with self._tracer.trace(
            SpanKind.VALIDATION_GATE,
            gate.name,
            payload={"kind": gate.kind.value, "agent": agent.name},
        ) as span:
            try:
                outcome = await gate.check(ctx, agent, payload)
            except Exception as e:
                raise GateExecutionError(
                    f"Gate '{gate.name}' failed: {e}",
                    gate_name=gate.name,
                    context={"agent": agent.name, "kind": gate.kind.value},
                    cause=e,
                )
            span.set_payload("tripwire_triggered", outcome.tripped)
            span.set_payload("annotation", outcome.result.annotation)
            return outcome


async def _cancel_all(tasks: Sequence[asyncio.Task] | set[asyncio.Task]) -> None:
    tasks = list(tasks)
    for task in tasks:
        task.cancel()
    if tasks:
        await asyncio.gather(*tasks, return_exceptions=True)
