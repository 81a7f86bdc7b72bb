"""
Agents Module

Agent descriptors and the agent arena.
"""

from conductor.agents.agent import (
    RUN_LLM_AGAIN,
    STOP_ON_FIRST_TOOL,
    AgentDescriptor,
    StopAtCapabilities,
)
from conductor.agents.registry import AgentRegistry, AgentSpec, template_instructions

__all__ = [
    "RUN_LLM_AGAIN",
    "STOP_ON_FIRST_TOOL",
    "AgentDescriptor",
    "AgentRegistry",
    "AgentSpec",
    "StopAtCapabilities",
    "template_instructions",
]
