"""Aegis MCP: governance engine for AI coding-agent sessions."""

__version__ = "0.3.0"

__all__ = ["__version__"]
