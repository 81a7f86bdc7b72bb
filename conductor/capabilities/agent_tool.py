"""
Delegated-Agent Capabilities

Exposes an agent to the model as an ordinary capability. Invoking it runs
a nested, independent run with a fresh item log and its own turn budget;
only the nested run's final output comes back to the caller.
"""

import inspect
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field

from conductor.capabilities.base import CapabilityDescriptor
from conductor.core.context import InvocationContext

if TYPE_CHECKING:
    from conductor.agents.agent import AgentDescriptor
    from conductor.runtime.result import RunResult

OutputExtractor = Callable[["RunResult"], Any]


class AgentCapabilityInput(BaseModel):
    """Arguments the model supplies to a delegated agent."""

    input: str = Field(description="The request for the agent")


@dataclass(kw_only=True)
class DelegatedAgentCapability(CapabilityDescriptor):
    """Runs `agent` as a nested run and returns its final output."""

    agent: "AgentDescriptor"
    output_extractor: OutputExtractor | None = None
    max_turns: int | None = None

    def __post_init__(self) -> None:
        if self.args_model is None:
            self.args_model = AgentCapabilityInput

    @property
    def kind(self) -> str:
        return "delegated_agent"

    async def invoke(self, ctx: InvocationContext, arguments: dict[str, Any]) -> Any:
        result = await ctx.runner.run(
            self.agent,
            arguments["input"],
            context=ctx.context,
            max_turns=self.max_turns or ctx.run_config.max_turns,
            run_config=ctx.run_config,
        )
        ctx.run_context.add_usage(result.usage)

        if self.output_extractor is None:
            return result.final_output

        extracted = self.output_extractor(result)
        if inspect.isawaitable(extracted):
            extracted = await extracted
        return extracted
