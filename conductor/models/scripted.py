"""
Scripted Model Backend

A deterministic, offline model backend for tests, demos and CI.

Design decisions:
- Returns scripted outputs in order; each step may be an output, an
  exception to raise, or a function of the request
- Records every request so tests can assert what the model saw
- Supports streaming, word by word, optionally without a final output on
  the completion event so consumers must rebuild it from deltas
- NEVER makes external network calls

Usage:
    backend = ScriptedModelBackend([
        capability_call("convert", {"amount": 100, "from_currency": "USD", "to_currency": "EUR"}),
        message("100 USD is 92 EUR"),
    ])
"""

import asyncio
import inspect
from collections.abc import AsyncIterator, Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import Any, Union

from conductor.core.exceptions import ModelBackendError
from conductor.core.types import (
    CapabilityCall,
    CapabilityCallsOutput,
    ConversationItem,
    GenerationEvent,
    GenerationOutput,
    MessageOutput,
    ModelSettings,
    ResponseCompleted,
    ResponseStarted,
    StructuredOutput,
    Usage,
)
from conductor.models.backend import ModelBackend, output_events


@dataclass
class GenerationRequest:
    """Everything one generation call received."""

    instructions: str | None
    capabilities: list[dict[str, Any]]
    items: list[ConversationItem]
    output_schema: dict[str, Any] | None = None
    settings: ModelSettings | None = None

    @property
    def capability_names(self) -> list[str]:
        return [schema["name"] for schema in self.capabilities]


ScriptStep = Union[
    GenerationOutput,
    Exception,
    Callable[[GenerationRequest], Union[GenerationOutput, Awaitable[GenerationOutput]]],
]


# =============================================================================
# Output helpers
# =============================================================================


def message(text: str, *, input_tokens: int = 10, output_tokens: int | None = None) -> MessageOutput:
    """A final text message."""
    return MessageOutput(
        text=text,
        usage=Usage(
            requests=1,
            input_tokens=input_tokens,
            output_tokens=output_tokens if output_tokens is not None else len(text.split()),
        ),
    )


def capability_call(
    name: str,
    arguments: dict[str, Any] | str | None = None,
    *,
    call_id: str | None = None,
    text: str | None = None,
) -> CapabilityCallsOutput:
    """A turn requesting a single capability invocation."""
    call = CapabilityCall(name=name, arguments=arguments if arguments is not None else {})
    if call_id is not None:
        call = call.model_copy(update={"id": call_id})
    return capability_calls([call], text=text)


def capability_calls(calls: Sequence[CapabilityCall], *, text: str | None = None) -> CapabilityCallsOutput:
    """A turn requesting several capability invocations."""
    return CapabilityCallsOutput(
        calls=list(calls),
        text=text,
        usage=Usage(requests=1, input_tokens=10, output_tokens=5 * len(calls)),
    )


def structured(value: Any) -> StructuredOutput:
    """A structured final output."""
    return StructuredOutput(value=value, usage=Usage(requests=1, input_tokens=10, output_tokens=10))


# =============================================================================
# Backend
# =============================================================================


@dataclass
class _Script:
    steps: list[ScriptStep] = field(default_factory=list)
    index: int = 0


class ScriptedModelBackend(ModelBackend):
    """
    A model backend that follows a script.

    When the script is exhausted the backend repeats its last step if
    `repeat_last` is set, returns `default` if given, and otherwise fails
    with ModelBackendError.
    """

    def __init__(
        self,
        script: Sequence[ScriptStep] = (),
        *,
        default: ScriptStep | None = None,
        repeat_last: bool = False,
        delay: float = 0.0,
        stream_by_word: bool = True,
        stream_final_output: bool = False,
        name: str = "scripted",
    ):
        """
        Args:
            script: Steps returned in order, one per generation call
            default: Step used once the script is exhausted
            repeat_last: Keep returning the last step once exhausted
            delay: Seconds to sleep before each generation (cancellable)
            stream_by_word: Emit one text delta per word when streaming
            stream_final_output: Attach the output to the completion event
            name: Backend identifier
        """
        self._script = _Script(steps=list(script))
        self._default = default
        self._repeat_last = repeat_last
        self._delay = delay
        self._stream_by_word = stream_by_word
        self._stream_final_output = stream_final_output
        self._name = name
        self.requests: list[GenerationRequest] = []

    @property
    def name(self) -> str:
        return self._name

    @property
    def call_count(self) -> int:
        """Number of generation calls made to this backend."""
        return len(self.requests)

    def add(self, *steps: ScriptStep) -> "ScriptedModelBackend":
        """Append steps to the script."""
        self._script.steps.extend(steps)
        return self

    def reset(self) -> None:
        """Rewind the script and forget recorded requests."""
        self._script.index = 0
        self.requests.clear()

    def _next_step(self) -> ScriptStep:
        steps = self._script.steps
        if self._script.index < len(steps):
            step = steps[self._script.index]
            self._script.index += 1
            return step
        if self._repeat_last and steps:
            return steps[-1]
        if self._default is not None:
            return self._default
        raise ModelBackendError(
            f"Scripted backend '{self._name}' exhausted after {len(steps)} step(s)"
        )

    async def generate(
        self,
        *,
        instructions: str | None,
        capabilities: list[dict[str, Any]],
        items: list[ConversationItem],
        output_schema: dict[str, Any] | None = None,
        settings: ModelSettings | None = None,
    ) -> GenerationOutput:
        request = GenerationRequest(
            instructions=instructions,
            capabilities=list(capabilities),
            items=list(items),
            output_schema=output_schema,
            settings=settings,
        )
        self.requests.append(request)

        if self._delay:
            await asyncio.sleep(self._delay)

        step = self._next_step()
        if isinstance(step, Exception):
            raise step
        if callable(step):
            result = step(request)
            if inspect.isawaitable(result):
                result = await result
            return result
        return step

    async def stream(
        self,
        *,
        instructions: str | None,
        capabilities: list[dict[str, Any]],
        items: list[ConversationItem],
        output_schema: dict[str, Any] | None = None,
        settings: ModelSettings | None = None,
    ) -> AsyncIterator[GenerationEvent]:
        """Simulated streaming of the next scripted output."""
        output = await self.generate(
            instructions=instructions,
            capabilities=capabilities,
            items=items,
            output_schema=output_schema,
            settings=settings,
        )
        yield ResponseStarted()
        for event in output_events(output, chunk_words=self._stream_by_word):
            yield event
            await asyncio.sleep(0)
        yield ResponseCompleted(
            output=output if self._stream_final_output else None,
            usage=output.usage,
        )

    def __repr__(self) -> str:
        return f"ScriptedModelBackend(name={self._name!r}, calls={self.call_count})"
