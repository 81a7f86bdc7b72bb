"""Conductor test suite."""
