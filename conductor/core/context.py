"""
Run Context

The caller's context object travels through a run by reference inside a
RunContext wrapper. The runtime never inspects or mutates the wrapped
object; only capability implementations written by the application do.
The wrapper is never sent to the model backend.
"""

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from conductor.core.types import Usage

if TYPE_CHECKING:
    from conductor.agents.agent import AgentDescriptor
    from conductor.runtime.config import RunConfig
    from conductor.runtime.runner import Runner

TContext = TypeVar("TContext")


@dataclass
class RunContext(Generic[TContext]):
    """Wrapper around the caller-supplied context, shared by every step of a run."""

    context: TContext
    usage: Usage = field(default_factory=Usage)

    def add_usage(self, usage: Usage) -> None:
        self.usage = self.usage + usage


@dataclass
class InvocationContext:
    """What a capability sees when it is invoked."""

    run_context: RunContext[Any]
    agent: "AgentDescriptor"
    runner: "Runner"
    run_config: "RunConfig"
    invocation_id: str = ""
    capability_name: str = ""

    @property
    def context(self) -> Any:
        """The caller's own context object."""
        return self.run_context.context
