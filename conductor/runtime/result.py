"""
Run Results

The frozen outcome of a completed run, and the handle of a streamed run.
"""

import asyncio
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, TypeVar

from pydantic import BaseModel

from conductor.core.types import AssistantMessage, ConversationItem, Usage, dump_items
from conductor.guardrails.gates import GateOutcome
from conductor.runtime.events import RunEvent

if TYPE_CHECKING:
    from conductor.agents.agent import AgentDescriptor

T = TypeVar("T", bound=BaseModel)


@dataclass(frozen=True)
class RunResult:
    """
    Final result of a run.

    `item_log` is the full, unfiltered conversation of the run, starting
    with the run's input items.
    """

    final_output: Any
    item_log: tuple[ConversationItem, ...]
    last_agent: "AgentDescriptor"
    turns_used: int
    gate_outcomes: tuple[GateOutcome, ...] = ()
    usage: Usage = field(default_factory=Usage)
    run_id: str = ""

    @property
    def gate_annotations(self) -> list[Any]:
        return [outcome.result.annotation for outcome in self.gate_outcomes]

    @property
    def last_agent_name(self) -> str:
        return self.last_agent.name

    def final_output_as(self, cls: type[T]) -> T:
        """The final output validated as `cls`."""
        if isinstance(self.final_output, cls):
            return self.final_output
        return cls.model_validate(self.final_output)

    def messages(self) -> list[AssistantMessage]:
        return [item for item in self.item_log if isinstance(item, AssistantMessage)]

    def to_input_list(self) -> list[ConversationItem]:
        """The item log as input for a follow-up run, continuing the conversation."""
        return list(self.item_log)

    def to_dict(self) -> dict[str, Any]:
        final_output = self.final_output
        if isinstance(final_output, BaseModel):
            final_output = final_output.model_dump(mode="json")
        return {
            "run_id": self.run_id,
            "final_output": final_output,
            "last_agent": self.last_agent.name,
            "turns_used": self.turns_used,
            "usage": self.usage.model_dump(),
            "item_log": dump_items(list(self.item_log)),
            "gate_outcomes": [outcome.to_dict() for outcome in self.gate_outcomes],
        }


_DONE = object()


class RunResultStreaming:
    """
    Handle of a streamed run.

    Usage:
        streaming = runner.run_streamed(agent, "hello")
        async for event in streaming.stream_events():
            ...
        result = await streaming.wait()
    """

    def __init__(self, run_id: str, cancel_signal: asyncio.Event):
        self.run_id = run_id
        self._cancel_signal = cancel_signal
        self._queue: asyncio.Queue[Any] = asyncio.Queue()
        self._task: asyncio.Task | None = None
        self._result: RunResult | None = None
        self._error: BaseException | None = None
        self._consumed = False

    def _attach(self, task: asyncio.Task) -> None:
        self._task = task
        task.add_done_callback(self._on_done)

    def _publish(self, event: RunEvent) -> None:
        self._queue.put_nowait(event)

    def _on_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            self._error = asyncio.CancelledError()
        elif task.exception() is not None:
            self._error = task.exception()
        else:
            self._result = task.result()
        self._queue.put_nowait(_DONE)

    @property
    def is_complete(self) -> bool:
        return self._task is not None and self._task.done()

    @property
    def result(self) -> RunResult | None:
        """The finished result, or None while running or after a failure."""
        return self._result

    @property
    def error(self) -> BaseException | None:
        return self._error

    def cancel(self) -> None:
        """Ask the run to stop; it ends with RunCancelled."""
        self._cancel_signal.set()

    async def stream_events(self) -> AsyncIterator[RunEvent]:
        """
        Yield run events as they happen.

        Single pass. When the run failed, the error is raised after the
        last event.
        """
        if self._consumed:
            raise RuntimeError("stream_events() can only be consumed once")
        self._consumed = True

        while True:
            event = await self._queue.get()
            if event is _DONE:
                break
            yield event

        if self._error is not None:
            raise self._error

    async def wait(self) -> RunResult:
        """Wait for the run to finish and return its result."""
        if self._task is None:
            raise RuntimeError("streamed run was never started")
        await asyncio.wait({self._task})
        if self._task.cancelled():
            raise asyncio.CancelledError()
        error = self._task.exception()
        if error is not None:
            raise error
        return self._task.result()

    def __repr__(self) -> str:
        state = "complete" if self.is_complete else "running"
        return f"RunResultStreaming(run_id={self.run_id!r}, {state})"
