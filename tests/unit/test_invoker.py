"""
Unit Tests - Capability Invoker

Tests for validation, failure policies, timeouts and concurrent execution.
"""

import asyncio

import pytest

from conductor.capabilities import CapabilityInvoker, FailurePolicy, capability
from conductor.core import CapabilityCall
from conductor.core.context import InvocationContext, RunContext
from conductor.core.exceptions import CapabilityExecutionError, ToolArgumentValidationError
from conductor.observability import SpanKind, SpanStatus


@pytest.fixture
def make_context(converter_agent):
    run_context = RunContext(context=None)

    def _make(call: CapabilityCall) -> InvocationContext:
        return InvocationContext(
            run_context=run_context,
            agent=converter_agent,
            runner=None,
            run_config=None,
            invocation_id=call.id,
            capability_name=call.name,
        )

    return _make


@capability
def explode() -> str:
    """Always fails."""
    raise RuntimeError("kaboom")


@capability(on_failure=FailurePolicy.PROPAGATE)
def explode_loudly() -> str:
    """Always fails and fails the run."""
    raise RuntimeError("kaboom")


class TestCapabilityInvoker:
    """Tests for CapabilityInvoker."""

    @pytest.mark.asyncio
    async def test_successful_invocation(self, tracer, span_processor, convert_capability, make_context):
        """Test a valid call produces a result and a span."""
        invoker = CapabilityInvoker(tracer)
        call = CapabilityCall(
            id="call_1",
            name="convert",
            arguments={"amount": 100, "from_currency": "USD", "to_currency": "EUR"},
        )

        outcome = await invoker.invoke(convert_capability, call, make_context(call))

        assert outcome.succeeded
        assert outcome.result.invocation_id == "call_1"
        assert outcome.result.output == "92.00 EUR"
        assert outcome.raw_output == "92.00 EUR"
        spans = span_processor.spans_of(SpanKind.CAPABILITY)
        assert [s.name for s in spans] == ["convert"]
        assert spans[0].status == SpanStatus.OK

    @pytest.mark.asyncio
    async def test_unknown_capability(self, tracer, make_context):
        """Test an unknown name becomes an error result."""
        invoker = CapabilityInvoker(tracer)
        call = CapabilityCall(id="call_x", name="teleport")

        outcome = await invoker.invoke(None, call, make_context(call))

        assert not outcome.succeeded
        assert outcome.result.error == "Capability not found: teleport"

    @pytest.mark.asyncio
    async def test_invalid_arguments_surfaced(self, tracer, convert_capability, make_context):
        """Test invalid arguments become an error result under the surface policy."""
        invoker = CapabilityInvoker(tracer)
        call = CapabilityCall(name="convert", arguments={"amount": "lots"})

        outcome = await invoker.invoke(convert_capability, call, make_context(call))

        assert outcome.result.is_error
        assert "Invalid arguments for 'convert'" in outcome.result.error

    @pytest.mark.asyncio
    async def test_invalid_arguments_propagated(self, tracer, make_context):
        """Test invalid arguments raise under the propagate policy."""

        @capability(on_failure=FailurePolicy.PROPAGATE)
        def strict(count: int) -> int:
            return count

        invoker = CapabilityInvoker(tracer)
        call = CapabilityCall(name="strict", arguments={"count": "many"})

        with pytest.raises(ToolArgumentValidationError):
            await invoker.invoke(strict, call, make_context(call))

    @pytest.mark.asyncio
    async def test_failure_surfaced(self, tracer, span_processor, make_context):
        """Test an exception becomes an error result."""
        invoker = CapabilityInvoker(tracer)
        call = CapabilityCall(name="explode")

        outcome = await invoker.invoke(explode, call, make_context(call))

        assert outcome.result.error == "An error occurred while running 'explode': kaboom"
        assert span_processor.spans_of(SpanKind.CAPABILITY)[0].status == SpanStatus.ERROR

    @pytest.mark.asyncio
    async def test_failure_propagated(self, tracer, make_context):
        """Test an exception fails the run under the propagate policy."""
        invoker = CapabilityInvoker(tracer)
        call = CapabilityCall(name="explode_loudly")

        with pytest.raises(CapabilityExecutionError) as exc_info:
            await invoker.invoke(explode_loudly, call, make_context(call))

        assert exc_info.value.capability_name == "explode_loudly"
        assert isinstance(exc_info.value.__cause__, RuntimeError)

    @pytest.mark.asyncio
    async def test_timeout(self, tracer, make_context):
        """Test a slow capability times out."""

        @capability
        async def slow() -> str:
            await asyncio.sleep(10)
            return "done"

        invoker = CapabilityInvoker(tracer, default_timeout=0.05)
        call = CapabilityCall(name="slow")

        outcome = await invoker.invoke(slow, call, make_context(call))

        assert outcome.result.is_error
        assert "timed out" in outcome.result.error

    @pytest.mark.asyncio
    async def test_invoke_all_keeps_request_order(self, tracer, make_context):
        """Test outcomes follow request order, not completion order."""

        @capability
        async def wait(seconds: float, label: str) -> str:
            await asyncio.sleep(seconds)
            return label

        completed: list[str] = []
        invoker = CapabilityInvoker(
            tracer, on_completed=lambda outcome: completed.append(outcome.result.output)
        )
        calls = [
            CapabilityCall(id="a", name="wait", arguments={"seconds": 0.05, "label": "slow"}),
            CapabilityCall(id="b", name="wait", arguments={"seconds": 0.0, "label": "fast"}),
        ]

        outcomes = await invoker.invoke_all([(call, wait) for call in calls], make_context)

        assert [o.result.invocation_id for o in outcomes] == ["a", "b"]
        assert [o.result.output for o in outcomes] == ["slow", "fast"]
        assert completed == ["fast", "slow"]

    @pytest.mark.asyncio
    async def test_invoke_all_respects_parallel_cap(self, tracer, make_context):
        """Test no more than max_parallel invocations run at once."""
        active = 0
        peak = 0

        @capability
        async def track() -> None:
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.01)
            active -= 1

        invoker = CapabilityInvoker(tracer, max_parallel=2)
        calls = [CapabilityCall(name="track") for _ in range(5)]

        outcomes = await invoker.invoke_all([(call, track) for call in calls], make_context)

        assert len(outcomes) == 5
        assert peak == 2

    @pytest.mark.asyncio
    async def test_invoke_all_propagates_and_cancels(self, tracer, make_context):
        """Test a propagated failure cancels sibling invocations."""
        cancelled = asyncio.Event()

        @capability
        async def linger() -> str:
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                cancelled.set()
                raise
            return "done"

        invoker = CapabilityInvoker(tracer)
        calls = [CapabilityCall(name="linger"), CapabilityCall(name="explode_loudly")]
        requests = [(calls[0], linger), (calls[1], explode_loudly)]

        with pytest.raises(CapabilityExecutionError):
            await invoker.invoke_all(requests, make_context)

        assert cancelled.is_set()
