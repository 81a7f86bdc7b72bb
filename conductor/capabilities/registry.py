"""
Capability Registry

Name-keyed registration and discovery of capabilities, used when agents
are assembled from declarative configuration.
"""

from collections.abc import Callable
from typing import Any

from conductor.capabilities.base import CapabilityDescriptor
from conductor.capabilities.function import function_capability
from conductor.core.exceptions import ConfigurationError


class CapabilityRegistry:
    """
    Central registry of capabilities.

    Provides:
    - Registration of descriptors or plain functions
    - Lookup by name
    - Schema retrieval for the model
    """

    def __init__(self, capabilities: list[CapabilityDescriptor] | None = None):
        self._capabilities: dict[str, CapabilityDescriptor] = {}
        for descriptor in capabilities or []:
            self.register(descriptor)

    def register(self, descriptor: CapabilityDescriptor, *, replace: bool = False) -> None:
        """Register a capability descriptor."""
        if descriptor.name in self._capabilities and not replace:
            raise ConfigurationError(
                f"Capability already registered: {descriptor.name}",
                context={"capability": descriptor.name},
            )
        self._capabilities[descriptor.name] = descriptor

    def register_function(
        self,
        func: Callable[..., Any],
        name: str | None = None,
        **kwargs: Any,
    ) -> CapabilityDescriptor:
        """
        Register a function as a capability.

        Alternative to using the @capability decorator.
        """
        descriptor = function_capability(func, name=name, **kwargs)
        self.register(descriptor)
        return descriptor

    def get(self, name: str) -> CapabilityDescriptor | None:
        return self._capabilities.get(name)

    def require(self, name: str) -> CapabilityDescriptor:
        descriptor = self.get(name)
        if descriptor is None:
            raise ConfigurationError(f"Unknown capability: {name}", context={"capability": name})
        return descriptor

    def list_capabilities(self) -> list[CapabilityDescriptor]:
        return list(self._capabilities.values())

    def get_schemas(self, names: list[str] | None = None) -> list[dict[str, Any]]:
        """Model-facing schemas, optionally restricted to `names`."""
        descriptors = self._capabilities.values()
        if names is not None:
            descriptors = [d for d in descriptors if d.name in names]
        return [d.to_schema() for d in descriptors]

    def unregister(self, name: str) -> bool:
        return self._capabilities.pop(name, None) is not None

    def __contains__(self, name: str) -> bool:
        return name in self._capabilities

    def __len__(self) -> int:
        return len(self._capabilities)
