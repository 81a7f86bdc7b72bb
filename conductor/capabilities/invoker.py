"""
Capability Invoker

Validation, execution and serialization of capability invocations.

Design decisions:
- Validation before execution
- Timeout enforcement per invocation
- Error isolation: failures become CapabilityResult errors unless the
  capability's policy propagates them
- Independent invocations of one turn run concurrently under a
  parallelism cap; results come back in request order
"""

import asyncio
import json
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel

from conductor.capabilities.base import CapabilityDescriptor, FailurePolicy
from conductor.core.context import InvocationContext
from conductor.core.exceptions import (
    CapabilityExecutionError,
    ToolArgumentValidationError,
)
from conductor.core.types import CapabilityCall, CapabilityResult
from conductor.observability.tracing import SpanKind, SpanStatus, Tracer

logger = logging.getLogger(__name__)


@dataclass
class InvocationOutcome:
    """Everything known about one finished invocation."""

    call: CapabilityCall
    descriptor: CapabilityDescriptor | None
    result: CapabilityResult
    raw_output: Any = None
    duration_ms: float = 0.0

    @property
    def succeeded(self) -> bool:
        return not self.result.is_error


def serialize_output(value: Any) -> Any:
    """Convert a capability's return value into JSON-compatible data."""
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    try:
        json.dumps(value)
    except (TypeError, ValueError):
        return str(value)
    return value


CompletedCallback = Callable[[InvocationOutcome], None]


class CapabilityInvoker:
    """
    Executes capability invocations for the orchestrator.

    Provides:
    - Argument validation
    - Timeout enforcement
    - Failure-policy handling
    - Bounded concurrent execution
    """

    def __init__(
        self,
        tracer: Tracer,
        default_timeout: float | None = 30.0,
        max_parallel: int = 8,
        on_completed: CompletedCallback | None = None,
    ):
        self._tracer = tracer
        self._default_timeout = default_timeout
        self._max_parallel = max(1, max_parallel)
        self._on_completed = on_completed

    async def invoke(
        self,
        descriptor: CapabilityDescriptor | None,
        call: CapabilityCall,
        ctx: InvocationContext,
    ) -> InvocationOutcome:
        """
        Execute a single invocation.

        Raises:
            ToolArgumentValidationError: Invalid arguments, propagate policy
            CapabilityExecutionError: Failure, propagate policy
        """
        if descriptor is None:
            outcome = InvocationOutcome(
                call=call,
                descriptor=None,
                result=CapabilityResult(
                    invocation_id=call.id,
                    capability_name=call.name,
                    error=f"Capability not found: {call.name}",
                ),
            )
            logger.warning("model requested unknown capability %s", call.name)
            self._completed(outcome)
            return outcome

        start_time = time.perf_counter()
        async with self._tracer.trace(
            SpanKind.CAPABILITY,
            descriptor.name,
            payload={"invocation_id": call.id, "arguments": call.arguments},
        ) as span:
            try:
                arguments = descriptor.validate_arguments(call.arguments)
            except ToolArgumentValidationError as e:
                span.set_status(SpanStatus.ERROR, e.message)
                outcome = self._failure(
                    descriptor, call, e, start_time, e.message, invalid_arguments=True
                )
                self._completed(outcome)
                return outcome

            try:
                raw_output = await self._execute(descriptor, arguments, ctx)
            except asyncio.TimeoutError as e:
                timeout = descriptor.timeout_seconds or self._default_timeout
                message = f"Capability '{descriptor.name}' timed out after {timeout}s"
                span.set_status(SpanStatus.ERROR, message)
                outcome = self._failure(descriptor, call, e, start_time, message)
            except Exception as e:
                span.set_status(SpanStatus.ERROR, str(e))
                outcome = self._failure(
                    descriptor, call, e, start_time, descriptor.failure_message(e)
                )
            else:
                output = serialize_output(raw_output)
                span.set_payload("output", output)
                outcome = InvocationOutcome(
                    call=call,
                    descriptor=descriptor,
                    result=CapabilityResult(
                        invocation_id=call.id,
                        capability_name=descriptor.name,
                        output=output,
                    ),
                    raw_output=raw_output,
                    duration_ms=(time.perf_counter() - start_time) * 1000,
                )

        self._completed(outcome)
        return outcome

    async def invoke_all(
        self,
        requests: list[tuple[CapabilityCall, CapabilityDescriptor | None]],
        make_context: Callable[[CapabilityCall], InvocationContext],
    ) -> list[InvocationOutcome]:
        """
        Execute independent invocations concurrently.

        Outcomes are returned in request order regardless of completion
        order. A propagated failure cancels the remaining invocations.
        """
        if not requests:
            return []
        if len(requests) == 1:
            call, descriptor = requests[0]
            return [await self.invoke(descriptor, call, make_context(call))]

        semaphore = asyncio.Semaphore(self._max_parallel)

        async def bounded(call: CapabilityCall, descriptor: CapabilityDescriptor | None):
            async with semaphore:
                return await self.invoke(descriptor, call, make_context(call))

        tasks = [asyncio.create_task(bounded(call, descriptor)) for call, descriptor in requests]
        try:
            done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
        except asyncio.CancelledError:
            await _cancel_all(tasks)
            raise

        if pending:
            await _cancel_all(list(pending))

        for task in tasks:
            if task in done and not task.cancelled() and task.exception() is not None:
                raise task.exception()

        return [task.result() for task in tasks]

    async def _execute(
        self,
        descriptor: CapabilityDescriptor,
        arguments: dict[str, Any],
        ctx: InvocationContext,
    ) -> Any:
        timeout = descriptor.timeout_seconds or self._default_timeout
        if timeout is None:
            return await descriptor.invoke(ctx, arguments)
        return await asyncio.wait_for(descriptor.invoke(ctx, arguments), timeout=timeout)

    def _failure(
        self,
        descriptor: CapabilityDescriptor,
        call: CapabilityCall,
        error: Exception,
        start_time: float,
        message: str,
        invalid_arguments: bool = False,
    ) -> InvocationOutcome:
        if descriptor.on_failure == FailurePolicy.PROPAGATE:
            if invalid_arguments:
                raise error
            # A failed nested run stays reachable through __cause__
            raise CapabilityExecutionError(
                message,
                capability_name=descriptor.name,
                context={"invocation_id": call.id},
                cause=error,
            )

        logger.warning(
            "capability %s failed, surfacing to model: %s",
            descriptor.name,
            message,
            extra={"data": {"invocation_id": call.id}},
        )
        return InvocationOutcome(
            call=call,
            descriptor=descriptor,
            result=CapabilityResult(
                invocation_id=call.id,
                capability_name=descriptor.name,
                error=message,
            ),
            duration_ms=(time.perf_counter() - start_time) * 1000,
        )

    def _completed(self, outcome: InvocationOutcome) -> None:
        if self._on_completed:
            self._on_completed(outcome)


async def _cancel_all(tasks: list[asyncio.Task]) -> None:
    for task in tasks:
        task.cancel()
    await asyncio.gather(*tasks, return_exceptions=True)
