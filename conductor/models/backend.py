"""
Model Backend Base

Abstract base for language-model backends and the stream consumer that
rebuilds a complete GenerationOutput from incremental events.

Design decisions:
- Async-first: generation is a suspend point of the run
- Streaming as first-class: backends that only implement `generate`
  still stream, as a single-shot event sequence
- Deltas are buffered per (item, content part) so the orchestrator can
  reconstruct full items while re-emitting the deltas unchanged
- No retries here; retry policy belongs to the backend implementation
"""

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from typing import Any

from conductor.core.exceptions import ModelBackendError
from conductor.core.types import (
    CapabilityCall,
    CapabilityCallDone,
    CapabilityCallsOutput,
    ConversationItem,
    GenerationEvent,
    GenerationOutput,
    MessageOutput,
    ModelSettings,
    ResponseCompleted,
    ResponseFailed,
    ResponseStarted,
    StructuredOutput,
    StructuredOutputDone,
    TextDelta,
)


class ModelBackend(ABC):
    """
    Abstract base class for model backends.

    Subclasses implement `generate`; `stream` defaults to replaying the
    complete output as events.
    """

    @property
    def name(self) -> str:
        return type(self).__name__

    @abstractmethod
    async def generate(
        self,
        *,
        instructions: str | None,
        capabilities: list[dict[str, Any]],
        items: list[ConversationItem],
        output_schema: dict[str, Any] | None = None,
        settings: ModelSettings | None = None,
    ) -> GenerationOutput:
        """Produce one complete generation."""
        pass

    async def stream(
        self,
        *,
        instructions: str | None,
        capabilities: list[dict[str, Any]],
        items: list[ConversationItem],
        output_schema: dict[str, Any] | None = None,
        settings: ModelSettings | None = None,
    ) -> AsyncIterator[GenerationEvent]:
        """Produce one generation as an event stream."""
        output = await self.generate(
            instructions=instructions,
            capabilities=capabilities,
            items=items,
            output_schema=output_schema,
            settings=settings,
        )
        yield ResponseStarted()
        for event in output_events(output):
            yield event
        yield ResponseCompleted(output=output, usage=output.usage)


def output_events(output: GenerationOutput, chunk_words: bool = False) -> list[GenerationEvent]:
    """
    Incremental events describing `output` (without start/completion events).

    With `chunk_words` text is split into one delta per word.
    """
    events: list[GenerationEvent] = []

    def text_events(text: str, item_index: int) -> None:
        if not text:
            return
        if not chunk_words:
            events.append(TextDelta(item_index=item_index, delta=text))
            return
        words = text.split(" ")
        for i, word in enumerate(words):
            delta = word if i == len(words) - 1 else word + " "
            if delta:
                events.append(TextDelta(item_index=item_index, delta=delta))

    if isinstance(output, MessageOutput):
        text_events(output.text, 0)
    elif isinstance(output, CapabilityCallsOutput):
        offset = 0
        if output.text:
            text_events(output.text, 0)
            offset = 1
        for i, call in enumerate(output.calls):
            events.append(CapabilityCallDone(item_index=i + offset, call=call))
    elif isinstance(output, StructuredOutput):
        events.append(StructuredOutputDone(value=output.value))
    return events


class StreamAccumulator:
    """
    Buffers stream events and rebuilds the GenerationOutput.

    Usage:
        acc = StreamAccumulator()
        async for event in backend.stream(...):
            acc.add(event)
        output = acc.build()
    """

    def __init__(self) -> None:
        self._text: dict[tuple[int, int], list[str]] = {}
        self._calls: list[tuple[int, CapabilityCall]] = []
        self._structured: list[Any] = []
        self._completed: ResponseCompleted | None = None
        self._failed: ResponseFailed | None = None

    @property
    def finished(self) -> bool:
        return self._completed is not None or self._failed is not None

    def add(self, event: GenerationEvent) -> None:
        if self.finished:
            raise ModelBackendError(f"Stream event after terminal event: {event.type}")
        if isinstance(event, TextDelta):
            self._text.setdefault((event.item_index, event.content_index), []).append(event.delta)
        elif isinstance(event, CapabilityCallDone):
            self._calls.append((event.item_index, event.call))
        elif isinstance(event, StructuredOutputDone):
            self._structured.append(event.value)
        elif isinstance(event, ResponseCompleted):
            self._completed = event
        elif isinstance(event, ResponseFailed):
            self._failed = event

    def text(self) -> str:
        return "".join("".join(self._text[key]) for key in sorted(self._text))

    def build(self) -> GenerationOutput:
        """
        The complete output.

        Raises:
            ModelBackendError: The stream failed or ended without completing
        """
        if self._failed is not None:
            raise ModelBackendError(f"Model backend stream failed: {self._failed.message}")
        if self._completed is None:
            raise ModelBackendError("Model backend stream ended without a completion event")

        if self._completed.output is not None:
            return self._completed.output

        usage = self._completed.usage
        text = self.text()
        if self._calls:
            calls = [call for _, call in sorted(self._calls, key=lambda pair: pair[0])]
            return CapabilityCallsOutput(calls=calls, text=text or None, usage=usage)
        if self._structured:
            return StructuredOutput(value=self._structured[-1], usage=usage)
        return MessageOutput(text=text, usage=usage)


async def collect_stream(events: AsyncIterator[GenerationEvent]) -> GenerationOutput:
    """Consume a whole event stream and return the rebuilt output."""
    accumulator = StreamAccumulator()
    async for event in events:
        accumulator.add(event)
        if accumulator.finished:
            break
    return accumulator.build()