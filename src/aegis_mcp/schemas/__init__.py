"""Governance data models and pure helpers."""

from .anchor import Anchor, create_anchor, score_anchor, select_anchors
from .delegation import Delegation, DelegationRejection, DelegationStore
from .permission import PermissionCheck, PermissionDecision, decide, detect_agent_role
from .state import GovernanceState, HistoryEntry, SessionRecord
from .task import Epic, Subtask, Task, TaskStore
from .timestamp import Timestamp, create_timestamp, enforce_timestamp
from .tool_state import ToolPart, ToolState, parse_tool_part

__all__ = [
    "Anchor",
    "Delegation",
    "DelegationRejection",
    "DelegationStore",
    "Epic",
    "GovernanceState",
    "HistoryEntry",
    "PermissionCheck",
    "PermissionDecision",
    "SessionRecord",
    "Subtask",
    "Task",
    "TaskStore",
    "Timestamp",
    "ToolPart",
    "ToolState",
    "create_anchor",
    "create_timestamp",
    "decide",
    "detect_agent_role",
    "enforce_timestamp",
    "parse_tool_part",
    "score_anchor",
    "select_anchors",
]
