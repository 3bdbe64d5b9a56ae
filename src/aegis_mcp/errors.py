"""Exception types raised by Aegis MCP."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:  # pragma: no cover
    from .schemas.permission import PermissionDecision


class AegisError(RuntimeError):
    """Base class for governance engine errors."""


class StorageError(AegisError):
    """Raised when a governance document cannot be written."""


class ToolGateError(AegisError):
    """Raised by the before-hook when a tool call is denied.

    This is the only error the engine lets propagate to the host.
    """

    def __init__(self, role: str, tool: str, decision: "PermissionDecision", message: str) -> None:
        super().__init__(message)
        self.role = role
        self.tool = tool
        self.decision = decision


__all__ = ["AegisError", "StorageError", "ToolGateError"]
