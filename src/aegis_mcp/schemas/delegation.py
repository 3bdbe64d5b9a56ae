"""Delegation records, routing rules and handoff rendering."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Literal

from pydantic import BaseModel, Field

from .permission import ROLE_PERMISSIONS
from .task import new_id
from .timestamp import utcnow

DelegationStatus = Literal["pending", "accepted", "completed", "rejected", "expired"]

DELEGATION_STORE_VERSION = "1.0.0"
MAX_DELEGATION_DEPTH = 3
DELEGATION_EXPIRY = timedelta(minutes=30)

OPEN_STATUSES = frozenset({"pending", "accepted"})
# Statuses that count towards lineage depth.
DEPTH_STATUSES = frozenset({"pending", "accepted", "completed"})

DEFAULT_ALLOWED_TOOLS = ("aegis_task", "aegis_anchor")
DEFAULT_ALLOWED_ACTIONS = ("status", "add_subtask", "update", "complete")

DELEGATION_ROUTES: dict[str, frozenset[str]] = {
    "coordinator": frozenset({"builder", "researcher"}),
    "high-governance": frozenset({"builder", "researcher"}),
    "mid-coordinator": frozenset({"builder", "researcher"}),
    "builder": frozenset({"validator"}),
    "researcher": frozenset({"validator"}),
    "validator": frozenset(),
    "meta": frozenset(role for role in ROLE_PERMISSIONS if role != "meta"),
}

# ``ad-hoc`` is deliberately absent: it routes anywhere the role table allows.
CATEGORY_ROUTES: dict[str, frozenset[str]] = {
    "development": frozenset({"builder"}),
    "research": frozenset({"researcher"}),
    "governance": frozenset({"builder", "validator"}),
    "maintenance": frozenset({"builder", "researcher", "validator"}),
    "spec-kit": frozenset({"researcher"}),
}


class Delegation(BaseModel):
    id: str = Field(default_factory=lambda: new_id("deleg"))
    from_agent: str
    to_agent: str
    from_role: str
    to_role: str
    task_id: str
    context: str
    expected_output: str
    depth: int = Field(default=1, ge=1)
    # Set when the holder of an accepted delegation hands the task on.
    parent_id: str | None = None
    allowed_tools: list[str] = Field(default_factory=lambda: list(DEFAULT_ALLOWED_TOOLS))
    allowed_actions: list[str] = Field(default_factory=lambda: list(DEFAULT_ALLOWED_ACTIONS))
    status: DelegationStatus = "pending"
    created_at: datetime = Field(default_factory=utcnow)
    expires_at: datetime
    completed_at: datetime | None = None

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_STATUSES

    @property
    def remaining_depth(self) -> int:
        return MAX_DELEGATION_DEPTH - self.depth


class DelegationStore(BaseModel):
    version: str = DELEGATION_STORE_VERSION
    delegations: list[Delegation] = Field(default_factory=list)


@dataclass(slots=True)
class DelegationRejection:
    """Structured refusal returned instead of raising."""

    rule: str
    reason: str
    from_agent: str
    to_agent: str
    depth: int
    example: str | None = None

    def render(self) -> str:
        lines = [
            "GOVERNANCE BLOCK: Delegation denied.",
            "",
            f"RULE: {self.rule}",
            f"WHAT: {self.reason}",
            f'EVIDENCE: from="{self.from_agent}", to="{self.to_agent}", depth={self.depth}',
        ]
        if self.example:
            lines.append(f"EXAMPLE: {self.example}")
        return "\n".join(lines)


def delegate_example(to_agent: str, task_id: str = "<task-id>") -> str:
    return (
        f"aegis_task action=delegate task_id={task_id} to_agent={to_agent} "
        'context="..." expected_output="..."'
    )


def complete_example(task_id: str = "<task-id>") -> str:
    return f'aegis_task action=complete target_id={task_id} evidence="..."'


def new_delegation(
    *,
    from_agent: str,
    to_agent: str,
    from_role: str,
    to_role: str,
    task_id: str,
    context: str,
    expected_output: str,
    current_depth: int,
    parent_id: str | None = None,
    now: datetime | None = None,
) -> Delegation:
    created = now or utcnow()
    return Delegation(
        from_agent=from_agent,
        to_agent=to_agent,
        from_role=from_role,
        to_role=to_role,
        task_id=task_id,
        context=context,
        expected_output=expected_output,
        depth=current_depth + 1,
        parent_id=parent_id,
        created_at=created,
        expires_at=created + DELEGATION_EXPIRY,
    )


def find_delegation(store: DelegationStore, delegation_id: str) -> Delegation | None:
    return next((d for d in store.delegations if d.id == delegation_id), None)


def delegations_for_task(store: DelegationStore, task_id: str) -> list[Delegation]:
    return [d for d in store.delegations if d.task_id == task_id]


def open_delegations_for_task(store: DelegationStore, task_id: str) -> list[Delegation]:
    return [d for d in delegations_for_task(store, task_id) if d.is_open]


def open_delegation_for_task(store: DelegationStore, task_id: str) -> Delegation | None:
    """The newest open delegation on the task, i.e. the agent currently holding it."""

    chain = open_delegations_for_task(store, task_id)
    return chain[-1] if chain else None


def delegation_depth(store: DelegationStore, task_id: str) -> int:
    """Deepest hop already taken on this task's delegation lineage."""

    depths = [d.depth for d in delegations_for_task(store, task_id) if d.status in DEPTH_STATUSES]
    return max(depths, default=0)


def expire_stale_delegations(store: DelegationStore, now: datetime | None = None) -> int:
    current = now or utcnow()
    expired = 0
    for delegation in store.delegations:
        if delegation.is_open and current > delegation.expires_at:
            delegation.status = "expired"
            delegation.completed_at = current
            expired += 1
    return expired


def validate_delegation(
    *,
    from_agent: str,
    to_agent: str,
    from_role: str,
    to_role: str,
    current_depth: int,
    epic_category: str | None = None,
) -> DelegationRejection | None:
    """Return a rejection for the first failed rule, or ``None`` when allowed."""

    reachable = DELEGATION_ROUTES.get(from_role, frozenset())

    def reject(rule: str, reason: str, target_roles: frozenset[str] = reachable) -> DelegationRejection:
        suggestion = min(target_roles, default=None)
        return DelegationRejection(
            rule=rule,
            reason=reason,
            from_agent=from_agent,
            to_agent=to_agent,
            depth=current_depth,
            example=delegate_example(f"<{suggestion}-agent>") if suggestion else complete_example(),
        )

    if from_agent.strip().lower() == to_agent.strip().lower():
        return reject("no-self-delegation", f"Cannot delegate to self ({from_agent}).")

    if current_depth + 1 > MAX_DELEGATION_DEPTH:
        return reject(
            "max-depth",
            f"Max delegation depth ({MAX_DELEGATION_DEPTH}) reached. Current depth: "
            f"{current_depth}. Cannot delegate further.",
            frozenset(),
        )

    if to_role not in reachable:
        allowed = ", ".join(sorted(reachable)) or "none"
        return reject(
            "role-routing",
            f'Role "{from_role}" ({from_agent}) cannot delegate to role "{to_role}" '
            f"({to_agent}). Reachable roles: {allowed}.",
        )

    if epic_category is not None and epic_category in CATEGORY_ROUTES:
        allowed_roles = CATEGORY_ROUTES[epic_category]
        if to_role not in allowed_roles:
            return reject(
                "category-routing",
                f'Role "{to_role}" is not in the routing matrix for category '
                f'"{epic_category}". Allowed roles: {", ".join(sorted(allowed_roles))}.',
                allowed_roles & reachable,
            )

    return None


def build_delegation_instruction(delegation: Delegation) -> str:
    """Render the handoff message the caller passes to the delegate."""

    categories = ", ".join(sorted(ROLE_PERMISSIONS.get(delegation.to_role, frozenset()))) or "none"
    minutes = int(DELEGATION_EXPIRY.total_seconds() // 60)
    return "\n".join(
        [
            f"## DELEGATION {delegation.id}",
            "",
            f"From: {delegation.from_agent} ({delegation.from_role})",
            f"To: {delegation.to_agent} ({delegation.to_role})",
            f"Task: {delegation.task_id}",
            *([f"Handed on from: {delegation.parent_id}"] if delegation.parent_id else []),
            f"Created: {delegation.created_at.isoformat()}",
            f"Expires: {delegation.expires_at.isoformat()}",
            "",
            "### Context",
            delegation.context,
            "",
            "### Expected Output",
            delegation.expected_output,
            "",
            "### Permission Boundaries",
            f"- Tool categories: {categories}",
            f"- Allowed tools: {', '.join(delegation.allowed_tools)}",
            f"- Allowed actions: {', '.join(delegation.allowed_actions)}",
            f"- Delegation depth remaining: {delegation.remaining_depth}",
            "",
            "### Rules",
            "- Report back with: evidence, files modified, tests run",
            f'- When done: aegis_task action=complete target_id={delegation.task_id} evidence="..."',
            f"- This delegation expires in {minutes} minutes",
        ]
    )


def format_delegation(delegation: Delegation, now: datetime | None = None) -> str:
    current = now or utcnow()
    elapsed = round((current - delegation.created_at).total_seconds() / 60)
    context = delegation.context[:80] + ("..." if len(delegation.context) > 80 else "")
    return "\n".join(
        [
            f"  {delegation.id}: {delegation.from_agent} -> {delegation.to_agent} "
            f"[{delegation.status}] depth {delegation.depth} ({elapsed}m ago)",
            f"    Task: {delegation.task_id}",
            f"    Context: {context}",
        ]
    )


def format_delegation_store(store: DelegationStore, now: datetime | None = None) -> str:
    if not store.delegations:
        return "No delegations recorded."

    groups = (
        ("Active", [d for d in store.delegations if d.is_open]),
        ("Completed", [d for d in store.delegations if d.status == "completed"]),
        ("Rejected", [d for d in store.delegations if d.status == "rejected"]),
        ("Expired", [d for d in store.delegations if d.status == "expired"]),
    )
    lines = ["=== Delegation Status ==="]
    for title, records in groups:
        if not records:
            continue
        lines.append("")
        lines.append(f"{title} ({len(records)}):")
        lines.extend(format_delegation(record, now) for record in records)
    return "\n".join(lines)


__all__ = [
    "CATEGORY_ROUTES",
    "DELEGATION_EXPIRY",
    "DELEGATION_ROUTES",
    "Delegation",
    "DelegationRejection",
    "DelegationStatus",
    "DelegationStore",
    "MAX_DELEGATION_DEPTH",
    "build_delegation_instruction",
    "complete_example",
    "delegate_example",
    "delegation_depth",
    "delegations_for_task",
    "expire_stale_delegations",
    "find_delegation",
    "format_delegation",
    "format_delegation_store",
    "new_delegation",
    "open_delegation_for_task",
    "open_delegations_for_task",
    "validate_delegation",
]
