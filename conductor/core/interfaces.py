"""
Core Interfaces and Protocols

Defines the contracts between the runtime and its external collaborators.
All cross-module interactions with the outside world use these interfaces.

Design decisions:
- Protocol-based for structural subtyping
- Minimal interface surface
- No implementation details leak through
"""

from collections.abc import AsyncIterator
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from pydantic import BaseModel, Field

from conductor.core.types import (
    ConversationItem,
    GenerationEvent,
    GenerationOutput,
    ModelSettings,
)

if TYPE_CHECKING:
    from conductor.observability.tracing import Span


# =============================================================================
# MODEL BACKEND PROTOCOL
# =============================================================================


@runtime_checkable
class ModelBackendProtocol(Protocol):
    """
    Interface for language-model backends.

    Implemented by: ScriptedModelBackend, provider adapters
    Used by: Runner
    """

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
        ...

    def stream(
        self,
        *,
        instructions: str | None,
        capabilities: list[dict[str, Any]],
        items: list[ConversationItem],
        output_schema: dict[str, Any] | None = None,
        settings: ModelSettings | None = None,
    ) -> AsyncIterator[GenerationEvent]:
        """Produce one generation as a single-pass event stream."""
        ...


# =============================================================================
# REMOTE CAPABILITY PROTOCOL
# =============================================================================


class RemoteCapabilityRequest(BaseModel):
    """Request sent to a remote capability provider."""

    capability_type: str
    parameters: dict[str, Any] = Field(default_factory=dict)


class RemoteCapabilityResponse(BaseModel):
    """Response from a remote capability provider: exactly one of result or error."""

    result: Any = None
    error: str | None = None


@runtime_checkable
class RemoteCapabilityClientProtocol(Protocol):
    """
    Interface for remote capability providers (search, retrieval, UI actions).

    Implemented by: HttpRemoteCapabilityClient
    Used by: RemoteCapability
    """

    async def call(self, request: RemoteCapabilityRequest) -> RemoteCapabilityResponse:
        """Execute a remote capability."""
        ...


# =============================================================================
# SPAN PROCESSOR PROTOCOL
# =============================================================================


@runtime_checkable
class SpanProcessorProtocol(Protocol):
    """
    Observability sink for trace spans.

    Implemented by: InMemorySpanProcessor, LoggingSpanProcessor
    Used by: Tracer
    """

    def on_span_start(self, span: "Span") -> None:
        """Called when a span starts."""
        ...

    def on_span_end(self, span: "Span") -> None:
        """Called when a span ends."""
        ...
