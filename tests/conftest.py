"""
Test Configuration

Shared fixtures for the Conductor test suite.
"""

import pytest

from conductor.agents import AgentDescriptor
from conductor.capabilities import capability
from conductor.config import RuntimeSettings
from conductor.core.context import RunContext
from conductor.models import ScriptedModelBackend
from conductor.observability import InMemorySpanProcessor, Tracer
from conductor.runtime import RunConfig, Runner

RATES = {("USD", "EUR"): 0.92, ("EUR", "USD"): 1.09, ("USD", "GBP"): 0.79}


@capability
def convert(amount: float, from_currency: str, to_currency: str) -> str:
    """Convert an amount between two currencies."""
    rate = RATES[(from_currency, to_currency)]
    return f"{amount * rate:.2f} {to_currency}"


@pytest.fixture
def settings():
    """Settings isolated from the environment."""
    return RuntimeSettings(_env_file=None)


@pytest.fixture
def span_processor():
    """In-memory span processor."""
    return InMemorySpanProcessor()


@pytest.fixture
def tracer(span_processor):
    """Tracer recording into the in-memory processor."""
    return Tracer(processors=[span_processor])


@pytest.fixture
def run_context():
    """An empty run context."""
    return RunContext(context=None)


@pytest.fixture
def convert_capability():
    """The currency conversion capability."""
    return convert


@pytest.fixture
def converter_agent():
    """Agent with the convert capability."""
    return AgentDescriptor(
        name="converter",
        instructions="Convert currencies using the convert capability.",
        capabilities=[convert],
    )


@pytest.fixture
def make_runner(tracer, settings):
    """Factory for a Runner over a scripted backend."""

    def _make(*steps, **kwargs):
        backend = kwargs.pop("backend", None) or ScriptedModelBackend(list(steps))
        runner = Runner(backend, tracer=tracer, settings=settings, **kwargs)
        return runner, backend

    return _make


@pytest.fixture
def run_config(tracer):
    """Default run configuration."""
    return RunConfig(tracer=tracer)
