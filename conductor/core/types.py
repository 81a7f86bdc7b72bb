"""
Core Types and Data Structures

Defines the fundamental types used throughout the Conductor runtime.
These are intentionally simple, immutable, and serializable.

Conversation items carry no timestamps or random identifiers of their own,
so two runs driven by the same deterministic backend produce equal logs.
"""

from typing import Annotated, Any, Literal, Union
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


class Usage(BaseModel):
    """Token and request accounting for one or more generation calls."""

    requests: int = 0
    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    def __add__(self, other: "Usage") -> "Usage":
        return Usage(
            requests=self.requests + other.requests,
            input_tokens=self.input_tokens + other.input_tokens,
            output_tokens=self.output_tokens + other.output_tokens,
        )


class ModelSettings(BaseModel):
    """
    Generation parameters passed to the model backend.

    `tool_choice` is "auto", "required", "none" or a capability name.
    """

    model_config = ConfigDict(frozen=True)

    temperature: float | None = None
    max_tokens: int | None = None
    tool_choice: str | None = None
    parallel_tool_calls: bool | None = None

    def resolve(self, override: "ModelSettings | None") -> "ModelSettings":
        """Overlay the non-None fields of `override` on these settings."""
        if override is None:
            return self
        changes = {k: v for k, v in override.model_dump().items() if v is not None}
        return self.model_copy(update=changes)


# =============================================================================
# CONVERSATION ITEMS
# =============================================================================


class _Item(BaseModel):
    model_config = ConfigDict(frozen=True)


class UserMessage(_Item):
    """Input from the end user."""

    type: Literal["user_message"] = "user_message"
    content: str


class SystemMessage(_Item):
    """System-level instruction injected into the conversation."""

    type: Literal["system_message"] = "system_message"
    content: str


class AssistantMessage(_Item):
    """Free-form content produced by an agent."""

    type: Literal["assistant_message"] = "assistant_message"
    content: str
    annotations: list[Any] = Field(default_factory=list)
    agent: str | None = None


class CapabilityInvocation(_Item):
    """A capability invocation requested by the model."""

    type: Literal["capability_invocation"] = "capability_invocation"
    id: str
    capability_name: str
    arguments: Any = None
    agent: str | None = None


class CapabilityResult(_Item):
    """Outcome of a capability invocation, matched to it by `invocation_id`."""

    type: Literal["capability_result"] = "capability_result"
    invocation_id: str
    capability_name: str
    output: Any = None
    error: str | None = None

    @property
    def is_error(self) -> bool:
        return self.error is not None


class DelegationEvent(_Item):
    """Control moved from one agent to another."""

    type: Literal["delegation_event"] = "delegation_event"
    from_agent: str
    to_agent: str


class ReasoningTrace(_Item):
    """Opaque reasoning content returned by the backend."""

    type: Literal["reasoning_trace"] = "reasoning_trace"
    content: Any = None
    agent: str | None = None


ConversationItem = Annotated[
    Union[
        UserMessage,
        SystemMessage,
        AssistantMessage,
        CapabilityInvocation,
        CapabilityResult,
        DelegationEvent,
        ReasoningTrace,
    ],
    Field(discriminator="type"),
]

conversation_items_adapter: TypeAdapter[list[ConversationItem]] = TypeAdapter(
    list[ConversationItem]
)


def parse_items(raw: list[Any]) -> list[ConversationItem]:
    """Parse plain dicts (or items) into conversation items."""
    return conversation_items_adapter.validate_python(raw)


def dump_items(items: list[ConversationItem]) -> list[dict[str, Any]]:
    """Serialize items into JSON-compatible dicts."""
    return conversation_items_adapter.dump_python(items, mode="json")


# =============================================================================
# GENERATION OUTPUT
# =============================================================================


class CapabilityCall(BaseModel):
    """A single capability invocation request from the model."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: f"call_{uuid4().hex[:8]}")
    name: str
    arguments: dict[str, Any] | str = Field(default_factory=dict)


class _GenerationOutputBase(BaseModel):
    model_config = ConfigDict(frozen=True)

    usage: Usage = Field(default_factory=Usage)
    reasoning: Any = None


class MessageOutput(_GenerationOutputBase):
    """Free-form text."""

    type: Literal["message"] = "message"
    text: str
    annotations: list[Any] = Field(default_factory=list)


class CapabilityCallsOutput(_GenerationOutputBase):
    """One or more capability invocation requests, with optional preamble text."""

    type: Literal["capability_calls"] = "capability_calls"
    calls: list[CapabilityCall]
    text: str | None = None


class StructuredOutput(_GenerationOutputBase):
    """A value produced for a requested output shape."""

    type: Literal["structured"] = "structured"
    value: Any


GenerationOutput = Annotated[
    Union[MessageOutput, CapabilityCallsOutput, StructuredOutput],
    Field(discriminator="type"),
]


# =============================================================================
# STREAMING GENERATION EVENTS
# =============================================================================


class ResponseStarted(BaseModel):
    """The backend accepted the request and began producing output."""

    type: Literal["response_started"] = "response_started"


class TextDelta(BaseModel):
    """Incremental text for one content part of one output item."""

    type: Literal["text_delta"] = "text_delta"
    item_index: int = 0
    content_index: int = 0
    delta: str


class CapabilityCallDone(BaseModel):
    """A fully assembled capability invocation request."""

    type: Literal["capability_call_done"] = "capability_call_done"
    item_index: int = 0
    call: CapabilityCall


class StructuredOutputDone(BaseModel):
    """A fully assembled structured value."""

    type: Literal["structured_output_done"] = "structured_output_done"
    item_index: int = 0
    value: Any


class ResponseCompleted(BaseModel):
    """
    Terminal success event.

    `output` may be omitted, in which case the consumer reconstructs the
    output from the deltas it has seen.
    """

    type: Literal["response_completed"] = "response_completed"
    output: GenerationOutput | None = None
    usage: Usage = Field(default_factory=Usage)


class ResponseFailed(BaseModel):
    """Terminal failure event."""

    type: Literal["response_failed"] = "response_failed"
    message: str


GenerationEvent = Annotated[
    Union[
        ResponseStarted,
        TextDelta,
        CapabilityCallDone,
        StructuredOutputDone,
        ResponseCompleted,
        ResponseFailed,
    ],
    Field(discriminator="type"),
]
