"""Tool gate and session role tracking."""

from .sessions import SessionRegistry, SessionRoleTracker
from .tool_gate import GateResult, ToolGate, session_id_from

__all__ = ["GateResult", "SessionRegistry", "SessionRoleTracker", "ToolGate", "session_id_from"]
