"""
Delegation

Transfer of control from the active agent to another agent.

Design decisions:
- A delegation is shown to the model as an ordinary capability
  (default name `transfer_to_<agent>`)
- Targets are agent descriptors or agent names; names are looked up in
  the agent arena at resolution time, so delegation graphs may be cyclic
- The history filter shapes what the target sees; the run's full item
  log is never filtered
- The DelegationEvent is appended after filtering and is always visible
"""

import inspect
import logging
import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Union

from pydantic import BaseModel, ValidationError

from conductor.capabilities.base import format_validation_error, parse_raw_arguments
from conductor.core.exceptions import HandoffResolutionError, ToolArgumentValidationError
from conductor.core.types import ConversationItem, DelegationEvent
from conductor.handoffs.filters import HistoryFilter
from conductor.observability.tracing import SpanKind, Tracer

if TYPE_CHECKING:
    from conductor.agents.agent import AgentDescriptor
    from conductor.core.context import RunContext

logger = logging.getLogger(__name__)

OnInitiate = Callable[..., Union[Any, Awaitable[Any]]]
AgentLookup = Callable[[str], "AgentDescriptor | None"]


def default_tool_name(agent_name: str) -> str:
    """transfer_to_<agent name>, restricted to identifier characters."""
    return "transfer_to_" + re.sub(r"\W+", "_", agent_name.strip()).lower()


@dataclass(frozen=True, kw_only=True)
class DelegationDescriptor:
    """
    How an agent may hand control to another agent.

    `on_initiate` is called with the run context, plus the validated
    input when `input_model` is set.
    """

    target: Union["AgentDescriptor", str]
    tool_name: str = ""
    description: str = ""
    input_model: type[BaseModel] | None = None
    on_initiate: OnInitiate | None = None
    history_filter: HistoryFilter | None = None

    def __post_init__(self) -> None:
        if not self.tool_name:
            object.__setattr__(self, "tool_name", default_tool_name(self.target_name))
        if not self.description:
            text = f"Handoff to the {self.target_name} agent to handle the request."
            extra = getattr(self.target, "handoff_description", None)
            if extra:
                text = f"{text} {extra}"
            object.__setattr__(self, "description", text)

    @property
    def target_name(self) -> str:
        return self.target if isinstance(self.target, str) else self.target.name

    def to_schema(self) -> dict[str, Any]:
        """Model-facing schema, identical in shape to a capability schema."""
        if self.input_model is not None:
            parameters = self.input_model.model_json_schema()
        else:
            parameters = {"type": "object", "properties": {}}
        return {
            "type": "function",
            "name": self.tool_name,
            "description": self.description,
            "parameters": parameters,
            "strict": False,
        }


def handoff(
    agent: Union["AgentDescriptor", str],
    *,
    tool_name: str | None = None,
    description: str | None = None,
    input_model: type[BaseModel] | None = None,
    on_initiate: OnInitiate | None = None,
    history_filter: HistoryFilter | None = None,
) -> DelegationDescriptor:
    """
    Build a DelegationDescriptor.

    Usage:
        triage = AgentDescriptor(
            name="triage",
            delegations=[billing, handoff(tech, history_filter=remove_capability_items)],
        )
    """
    return DelegationDescriptor(
        target=agent,
        tool_name=tool_name or "",
        description=description or "",
        input_model=input_model,
        on_initiate=on_initiate,
        history_filter=history_filter,
    )


@dataclass
class DelegationResolution:
    """Result of resolving one delegation."""

    new_agent: "AgentDescriptor"
    visible_items: list[ConversationItem]
    event: DelegationEvent
    input_value: BaseModel | None = None


class DelegationResolver:
    """Interprets delegation requests and switches the active agent."""

    def __init__(self, tracer: Tracer, lookup: AgentLookup | None = None):
        self._tracer = tracer
        self._lookup = lookup

    async def resolve(
        self,
        descriptor: DelegationDescriptor,
        raw_arguments: Any,
        prior_items: list[ConversationItem],
        ctx: "RunContext[Any]",
        from_agent: "AgentDescriptor",
        default_filter: HistoryFilter | None = None,
    ) -> DelegationResolution:
        """
        Resolve a delegation request.

        Raises:
            HandoffResolutionError: Unknown target, bad arguments or a
                failing on_initiate callback
        """
        async with self._tracer.trace(
            SpanKind.DELEGATION,
            descriptor.tool_name,
            payload={"from_agent": from_agent.name, "to_agent": descriptor.target_name},
        ):
            target = self._resolve_target(descriptor)
            input_value = self._parse_input(descriptor, raw_arguments)

            if descriptor.on_initiate is not None:
                await self._initiate(descriptor, ctx, input_value)

            history_filter = descriptor.history_filter or default_filter
            visible = list(prior_items)
            if history_filter is not None:
                visible = list(history_filter(visible))

            event = DelegationEvent(from_agent=from_agent.name, to_agent=target.name)
            logger.info(
                "delegating from %s to %s",
                from_agent.name,
                target.name,
                extra={"data": {"visible_items": len(visible), "prior_items": len(prior_items)}},
            )
            return DelegationResolution(
                new_agent=target,
                visible_items=[*visible, event],
                event=event,
                input_value=input_value,
            )

    def _resolve_target(self, descriptor: DelegationDescriptor) -> "AgentDescriptor":
        if not isinstance(descriptor.target, str):
            return descriptor.target

        target = self._lookup(descriptor.target) if self._lookup else None
        if target is None:
            raise HandoffResolutionError(
                f"Delegation target '{descriptor.target}' is not a known agent",
                context={"tool_name": descriptor.tool_name, "target": descriptor.target},
            )
        return target

    def _parse_input(self, descriptor: DelegationDescriptor, raw_arguments: Any) -> BaseModel | None:
        if descriptor.input_model is None:
            return None
        try:
            data = parse_raw_arguments(descriptor.tool_name, raw_arguments)
            return descriptor.input_model.model_validate(data)
        except ToolArgumentValidationError as e:
            raise HandoffResolutionError(e.message, context=e.context, cause=e)
        except ValidationError as e:
            raise HandoffResolutionError(
                f"Invalid arguments for '{descriptor.tool_name}': {format_validation_error(e)}",
                context={"tool_name": descriptor.tool_name},
                cause=e,
            )

    async def _initiate(
        self,
        descriptor: DelegationDescriptor,
        ctx: "RunContext[Any]",
        input_value: BaseModel | None,
    ) -> None:
        args: list[Any] = [ctx]
        if descriptor.input_model is not None:
            args.append(input_value)
        try:
            result = descriptor.on_initiate(*args)
            if inspect.isawaitable(result):
                await result
        except HandoffResolutionError:
            raise
        except Exception as e:
            raise HandoffResolutionError(
                f"on_initiate for '{descriptor.tool_name}' failed: {e}",
                context={"tool_name": descriptor.tool_name},
                cause=e,
            )
