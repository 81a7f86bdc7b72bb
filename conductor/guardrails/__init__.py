"""
Guardrails Module

Validation gates and their concurrent executor.
"""

from conductor.guardrails.executor import GateEvaluation, GateExecutor
from conductor.guardrails.gates import (
    STOCK_GATES,
    GateKind,
    GateOutcome,
    GateResult,
    InputGate,
    OutputGate,
    ValidationGate,
    blocked_topics_gate,
    input_gate,
    max_length_gate,
    output_gate,
    pii_gate,
    required_text_gate,
)

__all__ = [
    "STOCK_GATES",
    "GateEvaluation",
    "GateExecutor",
    "GateKind",
    "GateOutcome",
    "GateResult",
    "InputGate",
    "OutputGate",
    "ValidationGate",
    "blocked_topics_gate",
    "input_gate",
    "max_length_gate",
    "output_gate",
    "pii_gate",
    "required_text_gate",
]
