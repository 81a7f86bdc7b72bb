"""
Capability Descriptors

Typed description of everything a model can invoke: local functions,
nested agents and remote services. Delegations are presented to the model
the same way but are described separately (see conductor.handoffs).

Design decisions:
- One abstract base; variants dispatch through `invoke`
- Argument shapes are pydantic models, used both for the model-facing
  JSON schema and for validation
- Failure policy decides whether a failure is shown to the model or
  fails the run
"""

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ValidationError

from conductor.core.exceptions import ToolArgumentValidationError

if TYPE_CHECKING:
    from conductor.core.context import InvocationContext


class FailurePolicy(str, Enum):
    """What happens when a capability fails."""

    SURFACE = "surface"  # Error text becomes a CapabilityResult the model can see
    PROPAGATE = "propagate"  # The run fails


EMPTY_OBJECT_SCHEMA: dict[str, Any] = {"type": "object", "properties": {}}


def parse_raw_arguments(capability_name: str, raw: Any) -> dict[str, Any]:
    """Turn the model's raw arguments (dict or JSON text) into a dict."""
    if raw is None:
        return {}
    if isinstance(raw, str):
        if not raw.strip():
            return {}
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ToolArgumentValidationError(
                f"Arguments for '{capability_name}' are not valid JSON: {e.msg}",
                capability_name=capability_name,
                cause=e,
            )
    if not isinstance(raw, dict):
        raise ToolArgumentValidationError(
            f"Arguments for '{capability_name}' must be an object, "
            f"got {type(raw).__name__}",
            capability_name=capability_name,
        )
    return raw


def format_validation_error(error: ValidationError) -> str:
    parts = []
    for issue in error.errors():
        location = ".".join(str(p) for p in issue["loc"]) or "arguments"
        parts.append(f"{location}: {issue['msg']}")
    return "; ".join(parts)


@dataclass(kw_only=True)
class CapabilityDescriptor(ABC):
    """
    Complete definition of an invocable capability.

    Contains all metadata needed for:
    - The model to understand and request it
    - The invoker to validate and run it
    """

    name: str
    description: str = ""

    # Argument shape; None accepts any JSON object
    args_model: type[BaseModel] | None = None

    on_failure: FailurePolicy = FailurePolicy.SURFACE
    timeout_seconds: float | None = None

    # Extra model-facing metadata
    strict_schema: bool = False
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def kind(self) -> str:
        return "capability"

    def parameters_schema(self) -> dict[str, Any]:
        """JSON Schema of the arguments."""
        if self.args_model is None:
            return dict(EMPTY_OBJECT_SCHEMA)
        return self.args_model.model_json_schema()

    def to_schema(self) -> dict[str, Any]:
        """Model-facing schema in function-calling format."""
        return {
            "type": "function",
            "name": self.name,
            "description": self.description,
            "parameters": self.parameters_schema(),
            "strict": self.strict_schema,
        }

    def validate_arguments(self, raw: Any) -> dict[str, Any]:
        """
        Validate raw model arguments against the argument shape.

        Returns the arguments with validated, coerced values.

        Raises:
            ToolArgumentValidationError: Malformed or mismatched arguments
        """
        data = parse_raw_arguments(self.name, raw)
        if self.args_model is None:
            return data

        try:
            validated = self.args_model.model_validate(data)
        except ValidationError as e:
            raise ToolArgumentValidationError(
                f"Invalid arguments for '{self.name}': {format_validation_error(e)}",
                capability_name=self.name,
                cause=e,
            )
        return {key: getattr(validated, key) for key in type(validated).model_fields}

    def failure_message(self, error: Exception) -> str:
        """Text shown to the model when this capability fails."""
        return f"An error occurred while running '{self.name}': {error}"

    @abstractmethod
    async def invoke(self, ctx: "InvocationContext", arguments: dict[str, Any]) -> Any:
        """Execute the capability with already validated arguments."""
        pass
