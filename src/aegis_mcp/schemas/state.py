"""Project governance state and persisted session records."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

from .timestamp import Timestamp, create_timestamp, utcnow

GovernancePhase = Literal["init", "research", "planning", "execution", "validation", "completed"]
HistoryResult = Literal["pass", "fail", "partial", "blocked", "skipped"]
SessionStatus = Literal["active", "closed"]

STATE_VERSION = "1.0.0"
MAX_HISTORY = 100


class HistoryEntry(BaseModel):
    timestamp: datetime = Field(default_factory=utcnow)
    action: str
    agent: str | None = None
    tool: str | None = None
    result: HistoryResult
    details: dict[str, Any] | None = None


class GovernanceState(BaseModel):
    version: str = STATE_VERSION
    initialized: bool = False
    phase: GovernancePhase = "init"
    history: list[HistoryEntry] = Field(default_factory=list)
    timestamp: Timestamp = Field(default_factory=create_timestamp)


def append_history(state: GovernanceState, entry: HistoryEntry) -> GovernanceState:
    """Return a copy of ``state`` with ``entry`` appended, keeping the newest entries."""

    history = [*state.history, entry][-MAX_HISTORY:]
    timestamp = state.timestamp.model_copy(update={"modified_at": entry.timestamp})
    return state.model_copy(update={"history": history, "timestamp": timestamp})


class SessionRecord(BaseModel):
    """Persisted view of a host session.

    ``active_task_id`` is the pointer the tool gate consults before letting
    write tools through.
    """

    session_id: str
    agent_name: str | None = None
    active_task_id: str | None = None
    status: SessionStatus = "active"
    created_at: datetime = Field(default_factory=utcnow)
    last_activity: datetime = Field(default_factory=utcnow)


__all__ = [
    "GovernancePhase",
    "GovernanceState",
    "HistoryEntry",
    "HistoryResult",
    "MAX_HISTORY",
    "STATE_VERSION",
    "SessionRecord",
    "SessionStatus",
    "append_history",
]
