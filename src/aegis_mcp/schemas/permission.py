"""Role/tool permission matrix.

Maps an agent role and a tool name to an allow/deny decision with a reason and,
when denied, a suggested pivot. Tools whose category cannot be resolved are
allowed so that the host's built-in tools keep working.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Iterable, Literal, Protocol

from pydantic import BaseModel, ConfigDict, Field

from .timestamp import utcnow

logger = logging.getLogger(__name__)

AgentRole = Literal[
    "coordinator",
    "high-governance",
    "mid-coordinator",
    "validator",
    "builder",
    "researcher",
    "meta",
]
ToolCategory = Literal["read", "write", "execute", "delegate", "validate"]

AGENT_ROLES: tuple[str, ...] = (
    "coordinator",
    "high-governance",
    "mid-coordinator",
    "validator",
    "builder",
    "researcher",
    "meta",
)
DEFAULT_ROLE: AgentRole = "meta"
RESTRICTED_ROLE: AgentRole = "researcher"

TOOL_CATEGORIES: dict[str, ToolCategory] = {
    "read": "read",
    "read_file": "read",
    "list_dir": "read",
    "search": "read",
    "search_codebase": "read",
    "grep": "read",
    "glob": "read",
    "write": "write",
    "edit": "write",
    "create": "write",
    "delete": "write",
    "search_replace": "write",
    "bash": "execute",
    "run": "execute",
    "terminal": "execute",
    "task": "delegate",
    "spawn": "delegate",
    "delegate": "delegate",
    "test": "validate",
    "verify": "validate",
    "check": "validate",
}

ROLE_PERMISSIONS: dict[str, frozenset[str]] = {
    "coordinator": frozenset({"read", "delegate"}),
    "high-governance": frozenset({"read", "delegate"}),
    "mid-coordinator": frozenset({"read", "delegate"}),
    "validator": frozenset({"read", "validate"}),
    "builder": frozenset({"read", "write", "execute"}),
    "researcher": frozenset({"read"}),
    "meta": frozenset({"read", "write", "execute", "delegate", "validate"}),
}

PIVOTS: dict[str, str] = {
    "write": "Delegate to builder agent using task tool",
    "execute": "Delegate to builder agent using task tool",
    "delegate": "Request escalation to coordinator",
    "validate": "Delegate validation to a validator agent",
}

# Host built-in agent names, matched exactly.
BUILTIN_AGENTS: dict[str, AgentRole] = {
    "build": "builder",
    "plan": "researcher",
    "general": "builder",
    "explore": "researcher",
}

# Ordered: first keyword hit wins.
ROLE_KEYWORDS: tuple[tuple[tuple[str, ...], AgentRole], ...] = (
    (("meta",), "meta"),
    (("coordinator", "supreme"), "coordinator"),
    (("governance", "high"), "high-governance"),
    (("mid", "executor"), "mid-coordinator"),
    (("validator", "checker"), "validator"),
    (("builder", "worker"), "builder"),
    (("research", "explorer"), "researcher"),
)


class RolePattern(Protocol):
    role: str

    def matches(self, agent_name: str) -> bool:
        ...


class PermissionDecision(BaseModel):
    model_config = ConfigDict(frozen=True)

    allowed: bool
    reason: str
    pivot: str | None = None
    category: ToolCategory | None = None


class PermissionCheck(BaseModel):
    """One entry of a session's append-only permission history."""

    model_config = ConfigDict(frozen=True)

    session_id: str
    tool: str
    role: AgentRole
    decision: PermissionDecision
    agent_name: str | None = None
    timestamp: datetime = Field(default_factory=utcnow)


def detect_agent_role(agent_name: str, profiles: Iterable[RolePattern] | None = None) -> AgentRole:
    """Resolve a role from an agent name.

    Custom profiles are consulted first, then host built-in names, then the
    keyword table. Unmatched names fall back to ``meta`` and are logged so the
    permissive default stays visible in the audit log.
    """

    name = agent_name.strip().lower()

    for profile in profiles or ():
        if profile.matches(name) and profile.role in ROLE_PERMISSIONS:
            return profile.role  # type: ignore[return-value]

    if name in BUILTIN_AGENTS:
        return BUILTIN_AGENTS[name]

    for keywords, role in ROLE_KEYWORDS:
        if any(keyword in name for keyword in keywords):
            return role

    logger.warning(
        "Agent role defaulted to meta",
        extra={"agent_name": agent_name, "default_role": DEFAULT_ROLE, "audit": "role_default"},
    )
    return DEFAULT_ROLE


def get_tool_category(tool_name: str) -> ToolCategory | None:
    if tool_name in TOOL_CATEGORIES:
        return TOOL_CATEGORIES[tool_name]

    normalized = tool_name.lower().replace("_", "").replace("-", "")
    if not normalized:
        return None
    if normalized in TOOL_CATEGORIES:
        return TOOL_CATEGORIES[normalized]
    for key, category in TOOL_CATEGORIES.items():
        if key in normalized or normalized in key:
            return category
    return None


def decide(role: str, tool_name: str) -> PermissionDecision:
    """Return the permission decision for ``role`` invoking ``tool_name``."""

    category = get_tool_category(tool_name)
    if category is None:
        return PermissionDecision(
            allowed=True,
            reason=f'Tool "{tool_name}" has unknown category, allowing by default',
        )

    allowed_categories = ROLE_PERMISSIONS.get(role, frozenset())
    if category in allowed_categories:
        return PermissionDecision(
            allowed=True,
            reason=f'Role "{role}" is permitted to use {category} tools',
            category=category,
        )

    return PermissionDecision(
        allowed=False,
        reason=(
            f'Role "{role}" is not permitted to use {category} tools. '
            f'Tool "{tool_name}" requires {category} permission.'
        ),
        pivot=PIVOTS.get(category),
        category=category,
    )


def build_denial_message(role: str, tool_name: str, decision: PermissionDecision) -> str:
    lines = [
        "GOVERNANCE: Permission denied",
        f"Tool: {tool_name}",
        f"Role: {role}",
        f"Reason: {decision.reason}",
    ]
    if decision.pivot:
        lines.append(f"Suggestion: {decision.pivot}")
    return "\n".join(lines)


__all__ = [
    "AGENT_ROLES",
    "AgentRole",
    "BUILTIN_AGENTS",
    "DEFAULT_ROLE",
    "PIVOTS",
    "PermissionCheck",
    "PermissionDecision",
    "RESTRICTED_ROLE",
    "ROLE_PERMISSIONS",
    "RolePattern",
    "TOOL_CATEGORIES",
    "ToolCategory",
    "build_denial_message",
    "decide",
    "detect_agent_role",
    "get_tool_category",
]
