"""
Function Capabilities

Local Python callables exposed to the model.

Design decisions:
- Decorator-based registration for convenience
- The argument model is built from the function signature, so the
  schema shown to the model and the validator can never drift apart
- A first parameter typed as RunContext (or InvocationContext, or simply
  named `context`) receives the run context and is hidden from the model
- Sync handlers run in a worker thread so they never block the loop
"""

import asyncio
import inspect
import typing
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, get_type_hints

from pydantic import BaseModel, create_model

from conductor.capabilities.base import CapabilityDescriptor, FailurePolicy
from conductor.core.context import InvocationContext, RunContext

CONTEXT_PARAM_NAMES = ("context", "ctx")


class ContextMode:
    NONE = "none"
    RUN = "run"
    INVOCATION = "invocation"


def _context_mode(param: inspect.Parameter, annotation: Any) -> str:
    origin = typing.get_origin(annotation) or annotation
    if origin is InvocationContext:
        return ContextMode.INVOCATION
    if origin is RunContext:
        return ContextMode.RUN
    if annotation is inspect.Parameter.empty and param.name in CONTEXT_PARAM_NAMES:
        return ContextMode.RUN
    return ContextMode.NONE


def _resolve_hints(func: Callable[..., Any]) -> dict[str, Any]:
    try:
        return get_type_hints(func)
    except (NameError, TypeError):
        return dict(getattr(func, "__annotations__", {}))


def build_args_model(func: Callable[..., Any], name: str) -> tuple[type[BaseModel], str]:
    """
    Build a pydantic model from the function signature.

    Returns (args model, context mode).
    """
    sig = inspect.signature(func)
    hints = _resolve_hints(func)
    params = [p for p in sig.parameters.values() if p.name not in ("self", "cls")]

    mode = ContextMode.NONE
    if params:
        first = params[0]
        mode = _context_mode(first, hints.get(first.name, first.annotation))
        if mode != ContextMode.NONE:
            params = params[1:]

    fields: dict[str, Any] = {}
    for param in params:
        if param.kind in (inspect.Parameter.VAR_POSITIONAL, inspect.Parameter.VAR_KEYWORD):
            continue
        annotation = hints.get(param.name, Any)
        default = ... if param.default is inspect.Parameter.empty else param.default
        fields[param.name] = (annotation, default)

    model = create_model(f"{name}_arguments", **fields)
    return model, mode


def _description_from(func: Callable[..., Any]) -> str:
    doc = inspect.getdoc(func)
    if not doc:
        return ""
    return doc.split("\n\n", 1)[0].strip()


@dataclass(kw_only=True)
class FunctionCapability(CapabilityDescriptor):
    """A capability backed by a local sync or async function."""

    function: Callable[..., Any]
    context_mode: str = ContextMode.NONE

    @property
    def kind(self) -> str:
        return "function"

    @property
    def is_async(self) -> bool:
        return inspect.iscoroutinefunction(self.function)

    async def invoke(self, ctx: InvocationContext, arguments: dict[str, Any]) -> Any:
        args: list[Any] = []
        if self.context_mode == ContextMode.RUN:
            args.append(ctx.run_context)
        elif self.context_mode == ContextMode.INVOCATION:
            args.append(ctx)

        if self.is_async:
            return await self.function(*args, **arguments)

        result = await asyncio.to_thread(self.function, *args, **arguments)
        if inspect.isawaitable(result):
            result = await result
        return result


def function_capability(
    func: Callable[..., Any],
    *,
    name: str | None = None,
    description: str | None = None,
    on_failure: FailurePolicy = FailurePolicy.SURFACE,
    timeout: float | None = None,
    strict: bool = False,
) -> FunctionCapability:
    """Wrap a function as a FunctionCapability without decorating it."""
    capability_name = name or func.__name__
    args_model, mode = build_args_model(func, capability_name)
    return FunctionCapability(
        name=capability_name,
        description=description or _description_from(func) or f"Execute {capability_name}",
        function=func,
        args_model=args_model,
        context_mode=mode,
        on_failure=on_failure,
        timeout_seconds=timeout,
        strict_schema=strict,
    )


def capability(
    func: Callable[..., Any] | None = None,
    *,
    name: str | None = None,
    description: str | None = None,
    on_failure: FailurePolicy = FailurePolicy.SURFACE,
    timeout: float | None = None,
    strict: bool = False,
) -> Any:
    """
    Decorator turning a function into a FunctionCapability.

    Usage:
        @capability
        def convert(amount: float, from_currency: str, to_currency: str) -> str:
            ...

        @capability(name="lookup", on_failure=FailurePolicy.PROPAGATE)
        async def lookup(context: RunContext[MyCtx], key: str) -> str:
            ...
    """

    def decorator(f: Callable[..., Any]) -> FunctionCapability:
        return function_capability(
            f,
            name=name,
            description=description,
            on_failure=on_failure,
            timeout=timeout,
            strict=strict,
        )

    if func is not None:
        return decorator(func)
    return decorator
