"""
Validation Gates

Input and output checks that can abort a run through a tripwire.

Design decisions:
- A gate returns a GateResult: an annotation for the caller plus a
  tripwire flag; it never appends conversation items
- Input gates see the run's initial input, output gates see the
  candidate final output
- Gate functions may be sync or async
- Stock gates cover the common checks (length, topics, PII, required text)
"""

import inspect
import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Union

from conductor.core.exceptions import ConfigurationError

if TYPE_CHECKING:
    from conductor.agents.agent import AgentDescriptor
    from conductor.core.context import RunContext


class GateKind(str, Enum):
    """Which side of the run a gate guards."""

    INPUT = "input"
    OUTPUT = "output"


@dataclass(frozen=True)
class GateResult:
    """What a gate reports back."""

    annotation: Any = None
    tripwire_triggered: bool = False

    @classmethod
    def passed(cls, annotation: Any = None) -> "GateResult":
        return cls(annotation=annotation, tripwire_triggered=False)

    @classmethod
    def tripped(cls, annotation: Any = None) -> "GateResult":
        return cls(annotation=annotation, tripwire_triggered=True)


@dataclass(frozen=True)
class GateOutcome:
    """A gate's result, tagged with the gate and agent that produced it."""

    gate_name: str
    kind: GateKind
    result: GateResult
    agent: str | None = None

    @property
    def tripped(self) -> bool:
        return self.result.tripwire_triggered

    def to_dict(self) -> dict[str, Any]:
        return {
            "gate": self.gate_name,
            "kind": self.kind.value,
            "agent": self.agent,
            "annotation": self.result.annotation,
            "tripwire_triggered": self.result.tripwire_triggered,
        }


GateFunction = Callable[
    ["RunContext[Any]", "AgentDescriptor", Any],
    Union[GateResult, Awaitable[GateResult]],
]


@dataclass(frozen=True)
class ValidationGate:
    """Base gate: wraps a check function."""

    function: GateFunction
    name: str = ""
    kind: GateKind = GateKind.INPUT

    def __post_init__(self) -> None:
        if not self.name:
            object.__setattr__(self, "name", getattr(self.function, "__name__", "gate"))

    async def check(
        self,
        ctx: "RunContext[Any]",
        agent: "AgentDescriptor",
        payload: Any,
    ) -> GateOutcome:
        """Run the check function and tag its result."""
        result = self.function(ctx, agent, payload)
        if inspect.isawaitable(result):
            result = await result
        if not isinstance(result, GateResult):
            raise ConfigurationError(
                f"Gate '{self.name}' returned {type(result).__name__}, expected GateResult",
                context={"gate": self.name},
            )
        return GateOutcome(gate_name=self.name, kind=self.kind, result=result, agent=agent.name)


@dataclass(frozen=True)
class InputGate(ValidationGate):
    """Checks the run's initial input (a string or an item list)."""

    kind: GateKind = GateKind.INPUT


@dataclass(frozen=True)
class OutputGate(ValidationGate):
    """Checks the candidate final output."""

    kind: GateKind = GateKind.OUTPUT


def input_gate(func: GateFunction | None = None, *, name: str | None = None) -> Any:
    """
    Decorator turning a check function into an InputGate.

    Usage:
        @input_gate
        def no_homework(ctx, agent, payload) -> GateResult:
            ...
    """

    def decorator(f: GateFunction) -> InputGate:
        return InputGate(function=f, name=name or f.__name__)

    if func is not None:
        return decorator(func)
    return decorator


def output_gate(func: GateFunction | None = None, *, name: str | None = None) -> Any:
    """Decorator turning a check function into an OutputGate."""

    def decorator(f: GateFunction) -> OutputGate:
        return OutputGate(function=f, name=name or f.__name__)

    if func is not None:
        return decorator(func)
    return decorator


def payload_text(payload: Any) -> str:
    """Flatten a gate payload into text for pattern checks."""
    if payload is None:
        return ""
    if isinstance(payload, str):
        return payload
    if isinstance(payload, list):
        parts = []
        for item in payload:
            content = getattr(item, "content", None)
            if isinstance(content, str):
                parts.append(content)
            elif isinstance(item, str):
                parts.append(item)
        return "\n".join(parts)
    if hasattr(payload, "model_dump_json"):
        return payload.model_dump_json()
    return str(payload)


# =============================================================================
# STOCK GATES
# =============================================================================


def max_length_gate(max_length: int = 50000, kind: GateKind = GateKind.INPUT) -> ValidationGate:
    """Trips when the payload text is longer than `max_length` characters."""

    def check(ctx, agent, payload) -> GateResult:
        length = len(payload_text(payload))
        if length <= max_length:
            return GateResult.passed()
        return GateResult.tripped(
            {"reason": f"Content exceeded maximum length of {max_length}", "length": length}
        )

    gate_cls = InputGate if kind == GateKind.INPUT else OutputGate
    return gate_cls(function=check, name="max_length")


def blocked_topics_gate(
    topics: list[str],
    kind: GateKind = GateKind.INPUT,
) -> ValidationGate:
    """Trips when the payload mentions any of `topics`."""
    patterns = [(topic, re.compile(rf"\b{re.escape(topic)}\b", re.IGNORECASE)) for topic in topics]

    def check(ctx, agent, payload) -> GateResult:
        text = payload_text(payload)
        matched = [topic for topic, pattern in patterns if pattern.search(text)]
        if not matched:
            return GateResult.passed()
        return GateResult.tripped(
            {"reason": f"Content about restricted topics: {', '.join(matched)}", "topics": matched}
        )

    gate_cls = InputGate if kind == GateKind.INPUT else OutputGate
    return gate_cls(function=check, name="blocked_topics")


PII_PATTERNS: list[tuple[str, re.Pattern[str]]] = [
    ("email", re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b")),
    ("phone", re.compile(r"\b\d{3}[-.]?\d{3}[-.]?\d{4}\b")),
    ("ssn", re.compile(r"\b\d{3}-\d{2}-\d{4}\b")),
    ("credit_card", re.compile(r"\b\d{4}[-\s]?\d{4}[-\s]?\d{4}[-\s]?\d{4}\b")),
]


def pii_gate() -> OutputGate:
    """Trips when the output contains e-mail addresses, phone, SSN or card numbers."""

    def check(ctx, agent, payload) -> GateResult:
        text = payload_text(payload)
        found = sorted({pii_type for pii_type, pattern in PII_PATTERNS if pattern.search(text)})
        if not found:
            return GateResult.passed()
        return GateResult.tripped({"reason": "Output contains PII", "pii_types": found})

    return OutputGate(function=check, name="pii")


def required_text_gate(phrase: str, *, case_sensitive: bool = False) -> OutputGate:
    """Trips when the output does not contain `phrase` (e.g. a disclaimer)."""

    def check(ctx, agent, payload) -> GateResult:
        text = payload_text(payload)
        present = phrase in text if case_sensitive else phrase.lower() in text.lower()
        if present:
            return GateResult.passed()
        return GateResult.tripped({"reason": f"Output is missing required text: {phrase!r}"})

    return OutputGate(function=check, name="required_text")


STOCK_GATES: dict[str, Callable[..., ValidationGate]] = {
    "max_length": max_length_gate,
    "blocked_topics": blocked_topics_gate,
    "pii": pii_gate,
    "required_text": required_text_gate,
}

