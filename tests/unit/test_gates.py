"""
Unit Tests - Validation Gates

Tests for gates, stock gates and the gate executor.
"""

import asyncio

import pytest

from conductor.core import UserMessage
from conductor.core.exceptions import ConfigurationError, GateExecutionError
from conductor.guardrails import (
    GateExecutor,
    GateKind,
    GateResult,
    InputGate,
    OutputGate,
    blocked_topics_gate,
    input_gate,
    max_length_gate,
    output_gate,
    pii_gate,
    required_text_gate,
)
from conductor.observability import SpanKind


@input_gate
def always_pass(ctx, agent, payload) -> GateResult:
    return GateResult.passed({"checked": True})


@input_gate
async def always_trip(ctx, agent, payload) -> GateResult:
    return GateResult.tripped({"reason": "nope"})


class TestGates:
    """Tests for gate wrappers."""

    def test_decorators_set_kind_and_name(self):
        """Test decorators build gates of the right kind."""

        @output_gate(name="custom")
        def check(ctx, agent, payload) -> GateResult:
            return GateResult.passed()

        assert isinstance(always_pass, InputGate)
        assert always_pass.kind == GateKind.INPUT
        assert always_pass.name == "always_pass"
        assert isinstance(check, OutputGate)
        assert check.name == "custom"

    @pytest.mark.asyncio
    async def test_check_tags_outcome(self, run_context, converter_agent):
        """Test outcomes carry the gate and agent names."""
        outcome = await always_trip.check(run_context, converter_agent, "hello")

        assert outcome.tripped
        assert outcome.gate_name == "always_trip"
        assert outcome.agent == "converter"
        assert outcome.to_dict()["annotation"] == {"reason": "nope"}

    @pytest.mark.asyncio
    async def test_non_result_rejected(self, run_context, converter_agent):
        """Test a gate returning something else is a configuration error."""
        gate = InputGate(function=lambda ctx, agent, payload: True, name="sloppy")

        with pytest.raises(ConfigurationError):
            await gate.check(run_context, converter_agent, "hello")


class TestStockGates:
    """Tests for the stock gates."""

    @pytest.mark.asyncio
    async def test_max_length(self, run_context, converter_agent):
        """Test the length limit."""
        gate = max_length_gate(10)

        assert not (await gate.check(run_context, converter_agent, "short")).tripped
        outcome = await gate.check(run_context, converter_agent, "far too long for this")
        assert outcome.tripped
        assert outcome.result.annotation["length"] == 21

    @pytest.mark.asyncio
    async def test_blocked_topics_on_items(self, run_context, converter_agent):
        """Test topics are found in item payloads."""
        gate = blocked_topics_gate(["homework"])
        payload = [UserMessage(content="Can you do my Homework?")]

        outcome = await gate.check(run_context, converter_agent, payload)

        assert outcome.tripped
        assert outcome.result.annotation["topics"] == ["homework"]

    @pytest.mark.asyncio
    async def test_pii(self, run_context, converter_agent):
        """Test e-mail addresses are detected."""
        outcome = await pii_gate().check(run_context, converter_agent, "mail me at a@b.io")

        assert outcome.tripped
        assert outcome.result.annotation["pii_types"] == ["email"]
        assert outcome.kind == GateKind.OUTPUT

    @pytest.mark.asyncio
    async def test_required_text(self, run_context, converter_agent):
        """Test the required phrase check is case-insensitive by default."""
        gate = required_text_gate("not financial advice")

        passed = await gate.check(run_context, converter_agent, "Buy. NOT FINANCIAL ADVICE.")
        tripped = await gate.check(run_context, converter_agent, "Buy now!")

        assert not passed.tripped
        assert tripped.tripped


class TestGateExecutor:
    """Tests for GateExecutor."""

    @pytest.mark.asyncio
    async def test_all_pass(self, tracer, span_processor, run_context, converter_agent):
        """Test outcomes are returned in gate order."""
        executor = GateExecutor(tracer)
        second = InputGate(function=always_pass.function, name="second")

        evaluation = await executor.evaluate(
            [always_pass, second], run_context, converter_agent, "hi"
        )

        assert not evaluation.tripwire_triggered
        assert [o.gate_name for o in evaluation.outcomes] == ["always_pass", "second"]
        assert evaluation.annotations == [{"checked": True}, {"checked": True}]
        assert len(span_processor.spans_of(SpanKind.VALIDATION_GATE)) == 2

    @pytest.mark.asyncio
    async def test_first_trip_cancels_slow_gates(self, tracer, run_context, converter_agent):
        """Test a trip wins and cancels gates still running."""
        cancelled = asyncio.Event()

        @input_gate
        async def slow(ctx, agent, payload) -> GateResult:
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                cancelled.set()
                raise
            return GateResult.passed()

        evaluation = await GateExecutor(tracer).evaluate(
            [slow, always_trip], run_context, converter_agent, "hi"
        )

        assert evaluation.tripped.gate_name == "always_trip"
        assert [o.gate_name for o in evaluation.outcomes] == ["always_trip"]
        assert cancelled.is_set()

    @pytest.mark.asyncio
    async def test_gate_exception_fails_evaluation(self, tracer, run_context, converter_agent):
        """Test a failing gate fails the evaluation with GateExecutionError."""

        @input_gate
        def broken(ctx, agent, payload) -> GateResult:
            raise ValueError("gate bug")

        with pytest.raises(GateExecutionError, match="gate bug") as exc_info:
            await GateExecutor(tracer).evaluate([broken], run_context, converter_agent, "hi")

        assert exc_info.value.gate_name == "broken"
        assert isinstance(exc_info.value.__cause__, ValueError)

    @pytest.mark.asyncio
    async def test_race_trip_cancels_operation(self, tracer, run_context, converter_agent):
        """Test a tripped gate cancels the raced operation."""
        cancelled = asyncio.Event()

        async def operation() -> str:
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                cancelled.set()
                raise
            return "generated"

        evaluation, result = await GateExecutor(tracer).race(
            [always_trip], run_context, converter_agent, "hi", operation()
        )

        assert evaluation.tripwire_triggered
        assert result is None
        assert cancelled.is_set()

    @pytest.mark.asyncio
    async def test_race_holds_early_result(self, tracer, run_context, converter_agent):
        """Test a result that finishes first is returned once the gates pass."""

        @input_gate
        async def slow_pass(ctx, agent, payload) -> GateResult:
            await asyncio.sleep(0.05)
            return GateResult.passed()

        passed = []

        async def operation() -> str:
            return "generated"

        evaluation, result = await GateExecutor(tracer).race(
            [slow_pass],
            run_context,
            converter_agent,
            "hi",
            operation(),
            on_passed=lambda: passed.append(True),
        )

        assert not evaluation.tripwire_triggered
        assert result == "generated"
        assert passed == [True]

    @pytest.mark.asyncio
    async def test_race_discards_early_result_on_trip(self, tracer, run_context, converter_agent):
        """Test a finished result is dropped when a slower gate trips."""

        @input_gate
        async def slow_trip(ctx, agent, payload) -> GateResult:
            await asyncio.sleep(0.05)
            return GateResult.tripped("late")

        passed = []

        async def operation() -> str:
            return "generated"

        evaluation, result = await GateExecutor(tracer).race(
            [slow_trip],
            run_context,
            converter_agent,
            "hi",
            operation(),
            on_passed=lambda: passed.append(True),
        )

        assert evaluation.tripped.result.annotation == "late"
        assert result is None
        assert passed == []
