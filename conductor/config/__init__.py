"""
Configuration Module

Centralized configuration management for the Conductor runtime.
"""

from conductor.config.settings import RuntimeSettings, get_settings

__all__ = [
    "RuntimeSettings",
    "get_settings",
]
