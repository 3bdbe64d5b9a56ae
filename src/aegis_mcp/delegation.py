"""Delegation ledger: records handoffs between agents and enforces routing."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Iterable

from .schemas.delegation import (
    Delegation,
    DelegationRejection,
    DelegationStore,
    build_delegation_instruction,
    complete_example,
    delegate_example,
    delegation_depth,
    expire_stale_delegations,
    format_delegation_store,
    new_delegation,
    open_delegation_for_task,
    open_delegations_for_task,
    validate_delegation,
)
from .schemas.permission import RolePattern, detect_agent_role
from .schemas.task import find_parent_epic, find_task
from .schemas.timestamp import utcnow
from .storage.audit import AuditTrail
from .storage.json_store import GovernanceStore

logger = logging.getLogger(__name__)

DELEGATABLE_TASK_STATUSES = frozenset({"planned", "active", "review"})


@dataclass(slots=True)
class DelegationOutcome:
    delegation: Delegation | None = None
    rejection: DelegationRejection | None = None
    instruction: str = ""

    @property
    def ok(self) -> bool:
        return self.delegation is not None

    def render(self) -> str:
        if self.rejection is not None:
            return self.rejection.render()
        return self.instruction


class DelegationLedger:
    """Project-scoped delegation records with lazy expiry.

    A task has at most one delegation chain in flight. Only the agent holding
    the newest accepted delegation may hand the task on; each hop sits one
    level deeper than its parent.
    """

    def __init__(
        self,
        store: GovernanceStore,
        *,
        profiles: Iterable[RolePattern] = (),
        audit: AuditTrail | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._profiles = list(profiles)
        self._audit = audit
        self._clock = clock or utcnow

    def snapshot(self) -> DelegationStore:
        """Read the ledger, expiring overdue delegations first."""

        with self._store.lock:
            ledger = self._store.read_delegations()
            expired = expire_stale_delegations(ledger, self._clock())
            if expired:
                self._store.write_delegations(ledger)
                logger.info("Expired delegations", extra={"count": expired})
            return ledger

    def format_ledger(self) -> str:
        return format_delegation_store(self.snapshot(), self._clock())

    def delegate(
        self,
        *,
        from_agent: str,
        to_agent: str,
        task_id: str,
        context: str,
        expected_output: str,
    ) -> DelegationOutcome:
        def reject(rule: str, reason: str, example: str, depth: int = 0) -> DelegationOutcome:
            rejection = DelegationRejection(
                rule=rule,
                reason=reason,
                from_agent=from_agent,
                to_agent=to_agent,
                depth=depth,
                example=example,
            )
            logger.warning(
                "Delegation rejected",
                extra={"rule": rule, "task_id": task_id, "from_agent": from_agent, "to_agent": to_agent},
            )
            return DelegationOutcome(rejection=rejection)

        if not to_agent or not to_agent.strip():
            return reject(
                "invalid-request", "'delegate' requires to_agent.", delegate_example("builder-1", task_id)
            )
        if not context or not context.strip() or not expected_output or not expected_output.strip():
            return reject(
                "invalid-request",
                "'delegate' requires context and expected_output.",
                delegate_example(to_agent, task_id),
            )

        with self._store.lock:
            ledger = self.snapshot()
            tasks = self._store.read_tasks()
            task = find_task(tasks, task_id)
            if task is None:
                return reject("unknown-task", f'Task "{task_id}" not found.', "aegis_task action=list")
            if task.status not in DELEGATABLE_TASK_STATUSES:
                return reject(
                    "task-closed",
                    f'Task "{task.name}" is {task.status} and cannot be delegated.',
                    f"aegis_task action=branch task_id={task.id}",
                )

            parent = open_delegation_for_task(ledger, task.id)
            if parent is not None and not (
                parent.status == "accepted" and _same_agent(parent.to_agent, from_agent)
            ):
                return reject(
                    "single-open-delegation",
                    f'Task "{task.name}" already has an open delegation {parent.id} '
                    f"to {parent.to_agent} [{parent.status}]. Only {parent.to_agent} can hand it on, "
                    "after accepting it.",
                    "aegis_task action=status",
                    depth=parent.depth,
                )

            depth = parent.depth if parent is not None else delegation_depth(ledger, task.id)
            from_role = detect_agent_role(from_agent, self._profiles)
            to_role = detect_agent_role(to_agent, self._profiles)
            epic = find_parent_epic(tasks, task.id)
            rejection = validate_delegation(
                from_agent=from_agent,
                to_agent=to_agent,
                from_role=from_role,
                to_role=to_role,
                current_depth=depth,
                epic_category=epic.category if epic else None,
            )
            if rejection is not None:
                logger.warning(
                    "Delegation rejected",
                    extra={"rule": rejection.rule, "task_id": task.id, "from_agent": from_agent, "to_agent": to_agent},
                )
                return DelegationOutcome(rejection=rejection)

            now = self._clock()
            record = new_delegation(
                from_agent=from_agent,
                to_agent=to_agent,
                from_role=from_role,
                to_role=to_role,
                task_id=task.id,
                context=context.strip(),
                expected_output=expected_output.strip(),
                current_depth=depth,
                parent_id=parent.id if parent is not None else None,
                now=now,
            )
            ledger.delegations.append(record)
            self._store.write_delegations(ledger)

            task.delegated_to = to_agent
            task.delegation_id = record.id
            task.modified_at = now
            self._store.write_tasks(tasks)

        logger.info(
            "Delegation recorded",
            extra={
                "delegation_id": record.id,
                "task_id": record.task_id,
                "depth": record.depth,
                "parent_id": record.parent_id,
            },
        )
        self._audit_delegation(record)
        return DelegationOutcome(delegation=record, instruction=build_delegation_instruction(record))

    # ─── lifecycle hooks driven by the task hierarchy ────────────────

    def accept_for_task(self, task_id: str) -> Delegation | None:
        return self._transition(task_id, "accepted", only_from="pending")

    def complete_for_task(self, task_id: str) -> Delegation | None:
        return self._transition(task_id, "completed")

    def reject_for_task(self, task_id: str, reason: str | None = None) -> Delegation | None:
        record = self._transition(task_id, "rejected")
        if record is not None and reason:
            logger.info("Delegation rejected by task closure", extra={"delegation_id": record.id, "reason": reason})
        return record

    def _transition(self, task_id: str, status: str, only_from: str | None = None) -> Delegation | None:
        """Move the task's open chain to ``status``; ``only_from`` restricts it to the newest hop."""

        with self._store.lock:
            ledger = self.snapshot()
            if only_from is None:
                records = open_delegations_for_task(ledger, task_id)
            else:
                newest = open_delegation_for_task(ledger, task_id)
                records = [newest] if newest is not None and newest.status == only_from else []
            if not records:
                return None
            now = self._clock()
            for record in records:
                record.status = status  # type: ignore[assignment]
                if status in ("completed", "rejected"):
                    record.completed_at = now
            self._store.write_delegations(ledger)
        for record in records:
            self._audit_delegation(record)
        return records[-1]

    def _audit_delegation(self, record: Delegation) -> None:
        if self._audit is None:
            return
        try:
            self._audit.record_delegation(record)
        except Exception:
            logger.exception("Failed to audit delegation", extra={"delegation_id": record.id})


def _same_agent(left: str, right: str) -> bool:
    return left.strip().lower() == right.strip().lower()


__all__ = ["DelegationLedger", "DelegationOutcome"]
