"""
Capabilities Module

Descriptors for everything a model may invoke, plus the invoker that
validates and executes invocations.
"""

from conductor.capabilities.agent_tool import AgentCapabilityInput, DelegatedAgentCapability
from conductor.capabilities.base import CapabilityDescriptor, FailurePolicy
from conductor.capabilities.function import FunctionCapability, capability, function_capability
from conductor.capabilities.invoker import CapabilityInvoker, InvocationOutcome
from conductor.capabilities.registry import CapabilityRegistry
from conductor.capabilities.remote import HttpRemoteCapabilityClient, RemoteCapability

__all__ = [
    "AgentCapabilityInput",
    "CapabilityDescriptor",
    "CapabilityInvoker",
    "CapabilityRegistry",
    "DelegatedAgentCapability",
    "FailurePolicy",
    "FunctionCapability",
    "HttpRemoteCapabilityClient",
    "InvocationOutcome",
    "RemoteCapability",
    "capability",
    "function_capability",
]
