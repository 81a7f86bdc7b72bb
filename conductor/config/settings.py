"""
Settings Management

Provides centralized, type-safe configuration using Pydantic.
Supports environment variables and .env files.

Design decisions:
- Using pydantic-settings for validation and type coercion
- Immutable settings after initialization (frozen model)
- Runtime budgets, observability and remote-capability settings in one place;
  per-run overrides live in RunConfig
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class RuntimeSettings(BaseSettings):
    """
    Process-wide defaults for the orchestration runtime.

    Every field can be overridden with a CONDUCTOR_-prefixed
    environment variable, e.g. CONDUCTOR_MAX_TURNS=20.
    """

    model_config = SettingsConfigDict(
        env_prefix="CONDUCTOR_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
    )

    # Budgets
    max_turns: int = Field(default=10, ge=1)
    max_parallel_capabilities: int = Field(default=8, ge=1)

    # Timeouts (None disables the layer)
    generation_timeout_seconds: float | None = Field(default=None, gt=0)
    capability_timeout_seconds: float | None = Field(default=30.0, gt=0)

    # Behaviour
    reset_tool_choice: bool = Field(
        default=True,
        description="Revert a forced tool_choice to 'auto' after a capability runs",
    )
    gate_short_circuit_output: bool = Field(
        default=True,
        description="Run output gates on output finalized by a capability short-circuit",
    )

    # Observability
    tracing_enabled: bool = Field(default=True)
    trace_redact_payloads: bool = Field(default=False)
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_format: Literal["json", "text"] = "json"

    # Remote capabilities
    remote_base_url: str = Field(default="http://localhost:8080")
    remote_timeout_seconds: float = Field(default=30.0, gt=0)


@lru_cache(maxsize=1)
def get_settings() -> RuntimeSettings:
    """
    Get cached settings instance.

    Safe to cache because settings are frozen.
    """
    return RuntimeSettings()
