"""Storage abstractions for Aegis MCP."""

from .audit import AuditEvent, AuditTrail, AuditUnavailableError
from .json_store import GovernanceStore

__all__ = [
    "AuditEvent",
    "AuditTrail",
    "AuditUnavailableError",
    "GovernanceStore",
]
