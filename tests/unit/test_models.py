"""
Unit Tests - Model Backends

Tests for stream reconstruction and the scripted backend.
"""

import pytest

from conductor.core import (
    CapabilityCall,
    CapabilityCallsOutput,
    MessageOutput,
    ModelSettings,
    StructuredOutput,
    Usage,
)
from conductor.core.exceptions import ModelBackendError
from conductor.core.types import (
    CapabilityCallDone,
    ResponseCompleted,
    ResponseFailed,
    ResponseStarted,
    TextDelta,
)
from conductor.models import (
    ScriptedModelBackend,
    StreamAccumulator,
    capability_call,
    collect_stream,
    message,
    output_events,
    structured,
)


def request_kwargs(**overrides):
    kwargs = {"instructions": "Be brief.", "capabilities": [], "items": []}
    kwargs.update(overrides)
    return kwargs


class TestStreamAccumulator:
    """Tests for StreamAccumulator."""

    def test_rebuilds_text_by_part(self):
        """Test deltas are joined per item and content part."""
        acc = StreamAccumulator()
        for event in [
            ResponseStarted(),
            TextDelta(item_index=0, content_index=1, delta="world"),
            TextDelta(item_index=0, content_index=0, delta="Hello "),
            ResponseCompleted(usage=Usage(requests=1)),
        ]:
            acc.add(event)

        output = acc.build()

        assert isinstance(output, MessageOutput)
        assert output.text == "Hello world"
        assert output.usage.requests == 1

    def test_rebuilds_calls_in_item_order(self):
        """Test calls are ordered by item index with preamble text kept."""
        acc = StreamAccumulator()
        acc.add(TextDelta(item_index=0, delta="Checking."))
        acc.add(CapabilityCallDone(item_index=2, call=CapabilityCall(id="b", name="second")))
        acc.add(CapabilityCallDone(item_index=1, call=CapabilityCall(id="a", name="first")))
        acc.add(ResponseCompleted())

        output = acc.build()

        assert isinstance(output, CapabilityCallsOutput)
        assert [c.id for c in output.calls] == ["a", "b"]
        assert output.text == "Checking."

    def test_completion_output_wins(self):
        """Test a completion event carrying the output is used as is."""
        acc = StreamAccumulator()
        acc.add(TextDelta(delta="partial"))
        acc.add(ResponseCompleted(output=MessageOutput(text="full")))

        assert acc.build().text == "full"

    def test_failed_stream(self):
        """Test a failure event raises ModelBackendError."""
        acc = StreamAccumulator()
        acc.add(ResponseFailed(message="overloaded"))

        with pytest.raises(ModelBackendError, match="overloaded"):
            acc.build()

    def test_incomplete_stream(self):
        """Test a stream without a terminal event raises."""
        acc = StreamAccumulator()
        acc.add(TextDelta(delta="hi"))

        with pytest.raises(ModelBackendError):
            acc.build()

    def test_event_after_completion(self):
        """Test events after the terminal event are rejected."""
        acc = StreamAccumulator()
        acc.add(ResponseCompleted())

        with pytest.raises(ModelBackendError):
            acc.add(TextDelta(delta="late"))

    def test_output_events_word_chunks(self):
        """Test word chunking reassembles to the same text."""
        events = output_events(MessageOutput(text="one two three"), chunk_words=True)

        assert [e.delta for e in events] == ["one ", "two ", "three"]


class TestScriptedModelBackend:
    """Tests for ScriptedModelBackend."""

    @pytest.mark.asyncio
    async def test_returns_steps_in_order(self):
        """Test scripted outputs come back in order and requests are recorded."""
        backend = ScriptedModelBackend([capability_call("convert", call_id="c1"), message("done")])

        first = await backend.generate(**request_kwargs(settings=ModelSettings(temperature=0)))
        second = await backend.generate(**request_kwargs())

        assert first.calls[0].id == "c1"
        assert second.text == "done"
        assert backend.call_count == 2
        assert backend.requests[0].settings.temperature == 0

    @pytest.mark.asyncio
    async def test_exhausted(self):
        """Test an exhausted script fails."""
        backend = ScriptedModelBackend([message("only")])
        await backend.generate(**request_kwargs())

        with pytest.raises(ModelBackendError):
            await backend.generate(**request_kwargs())

    @pytest.mark.asyncio
    async def test_repeat_last_and_default(self):
        """Test repeat_last and default fallbacks."""
        repeating = ScriptedModelBackend([message("again")], repeat_last=True)
        fallback = ScriptedModelBackend(default=message("fallback"))

        for _ in range(3):
            assert (await repeating.generate(**request_kwargs())).text == "again"
        assert (await fallback.generate(**request_kwargs())).text == "fallback"

    @pytest.mark.asyncio
    async def test_callable_and_exception_steps(self):
        """Test steps can compute outputs or raise."""

        def echo(request):
            return message(f"{len(request.items)} item(s)")

        backend = ScriptedModelBackend([echo, RuntimeError("backend down")])

        assert (await backend.generate(**request_kwargs())).text == "0 item(s)"
        with pytest.raises(RuntimeError):
            await backend.generate(**request_kwargs())

    @pytest.mark.asyncio
    async def test_stream_rebuilds_output(self):
        """Test the simulated stream reconstructs to the scripted output."""
        backend = ScriptedModelBackend([message("streamed word by word")])

        output = await collect_stream(backend.stream(**request_kwargs()))

        assert output.text == "streamed word by word"

    @pytest.mark.asyncio
    async def test_stream_structured(self):
        """Test structured values survive streaming."""
        backend = ScriptedModelBackend([structured({"amount": 92.0})])

        output = await collect_stream(backend.stream(**request_kwargs()))

        assert isinstance(output, StructuredOutput)
        assert output.value == {"amount": 92.0}

    def test_message_usage(self):
        """Test the message helper counts output words."""
        assert message("a b c").usage.output_tokens == 3
