"""The ``aegis_task`` action set: flat key/value arguments in, text report out."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Callable

from ..hierarchy import HierarchyResult
from ..schemas.state import HistoryEntry
from ..schemas.task import get_active_chain
from .reports import run_with_footer, with_governance_footer

if TYPE_CHECKING:  # pragma: no cover
    from ..engine import GovernanceEngine

logger = logging.getLogger(__name__)

TASK_ACTIONS: tuple[str, ...] = (
    "create_epic",
    "create_task",
    "add_subtask",
    "assign",
    "start",
    "complete",
    "defer",
    "abandon",
    "delegate",
    "status",
    "list",
    "update",
    "branch",
)


class TaskActionSet:
    """Dispatches ``aegis_task`` actions to the hierarchy and delegation ledger.

    Every report ends with the governance reminder footer followed by any
    staleness and chain-break warnings. Every rejection names a command to
    run instead.
    """

    def __init__(self, engine: "GovernanceEngine") -> None:
        self._engine = engine
        self._handlers: dict[str, Callable[..., str]] = {
            action: getattr(self, f"_do_{action}") for action in TASK_ACTIONS
        }

    def run(self, action: str, *, session_id: str | None = None, **args: Any) -> str:
        normalized = (action or "").strip().lower()
        handler = self._handlers.get(normalized)
        if handler is None:
            return with_governance_footer(
                self._engine,
                f"ERROR: Unknown action '{action}'. Valid actions: {', '.join(TASK_ACTIONS)}.\n"
                "Example: aegis_task action=list",
            )

        # Drop empty values so handlers only see what the caller supplied.
        supplied = {key: value for key, value in args.items() if value not in (None, "")}
        return run_with_footer(self._engine, "aegis_task", normalized, lambda: handler(session_id, **supplied))

    # ─── helpers ─────────────────────────────────────────────────────

    @staticmethod
    def _missing(message: str, example: str) -> str:
        return f"ERROR: {message}\nExample: {example}"

    def _record(self, action: str, result: HierarchyResult | bool, session_id: str | None, **details: Any) -> None:
        ok = result.ok if isinstance(result, HierarchyResult) else result
        self._engine.record_history(
            HistoryEntry(
                action=f"aegis_task.{action}",
                agent=self._engine.agent_for_session(session_id) if session_id else None,
                tool="aegis_task",
                result="pass" if ok else "blocked",
                details={key: value for key, value in details.items() if value is not None} or None,
            )
        )

    def _resolve_task_id(self, session_id: str | None, *candidates: str | None) -> str | None:
        for candidate in candidates:
            if candidate:
                return candidate
        if session_id:
            return self._engine.hierarchy.active_task_for_session(session_id)
        return None

    def _finish(self, action: str, result: HierarchyResult, session_id: str | None, **details: Any) -> str:
        self._record(action, result, session_id, **details)
        return result.render()

    # ─── actions ─────────────────────────────────────────────────────

    def _do_create_epic(
        self,
        session_id: str | None,
        name: str = "",
        category: str = "development",
        governance_level: str | None = None,
        **_: Any,
    ) -> str:
        result = self._engine.hierarchy.create_epic(name, category, governance_level)
        return self._finish("create_epic", result, session_id, name=name, category=category)

    def _do_create_task(
        self,
        session_id: str | None,
        name: str = "",
        epic_id: str | None = None,
        assignee: str | None = None,
        **_: Any,
    ) -> str:
        result = self._engine.hierarchy.create_task(name, epic_id=epic_id, assignee=assignee)
        return self._finish("create_task", result, session_id, name=name)

    def _do_add_subtask(
        self,
        session_id: str | None,
        name: str = "",
        task_id: str | None = None,
        target_id: str | None = None,
        tool_used: str | None = None,
        **_: Any,
    ) -> str:
        resolved = self._resolve_task_id(session_id, task_id, target_id)
        if resolved is None:
            return self._missing(
                "'add_subtask' requires task_id (or an active task).",
                'aegis_task action=add_subtask task_id=<task-id> name="..."',
            )
        result = self._engine.hierarchy.add_subtask(resolved, name, tool_used=tool_used)
        return self._finish("add_subtask", result, session_id, task_id=resolved)

    def _do_assign(
        self,
        session_id: str | None,
        assignee: str = "",
        task_id: str | None = None,
        target_id: str | None = None,
        **_: Any,
    ) -> str:
        resolved = self._resolve_task_id(session_id, task_id, target_id)
        if resolved is None:
            return self._missing(
                "'assign' requires task_id (or an active task).",
                "aegis_task action=assign task_id=<task-id> assignee=builder-1",
            )
        result = self._engine.hierarchy.assign(resolved, assignee)
        return self._finish("assign", result, session_id, task_id=resolved, assignee=assignee)

    def _do_start(
        self,
        session_id: str | None,
        task_id: str | None = None,
        target_id: str | None = None,
        **_: Any,
    ) -> str:
        resolved = task_id or target_id
        if not resolved:
            return self._missing(
                "'start' requires task_id. Use aegis_task action=list to see available tasks.",
                "aegis_task action=start task_id=<task-id>",
            )
        result = self._engine.hierarchy.start(resolved, session_id=session_id)
        return self._finish("start", result, session_id, task_id=resolved)

    def _do_complete(
        self,
        session_id: str | None,
        target_id: str | None = None,
        task_id: str | None = None,
        evidence: str | None = None,
        **_: Any,
    ) -> str:
        resolved = self._resolve_task_id(session_id, target_id, task_id)
        if resolved is None:
            return self._missing(
                "'complete' requires target_id (or an active task).",
                'aegis_task action=complete target_id=<task-id> evidence="..."',
            )
        result = self._engine.hierarchy.complete(resolved, evidence)
        return self._finish("complete", result, session_id, target_id=resolved)

    def _do_defer(
        self,
        session_id: str | None,
        target_id: str | None = None,
        task_id: str | None = None,
        reason: str | None = None,
        **_: Any,
    ) -> str:
        resolved = self._resolve_task_id(session_id, target_id, task_id)
        if resolved is None:
            return self._missing(
                "'defer' requires target_id (or an active task).",
                'aegis_task action=defer target_id=<task-id> reason="..."',
            )
        result = self._engine.hierarchy.defer(resolved, reason)
        return self._finish("defer", result, session_id, target_id=resolved, reason=reason)

    def _do_abandon(
        self,
        session_id: str | None,
        target_id: str | None = None,
        epic_id: str | None = None,
        reason: str | None = None,
        **_: Any,
    ) -> str:
        resolved = target_id or epic_id
        if not resolved:
            return self._missing(
                "'abandon' requires target_id of an epic.",
                'aegis_task action=abandon target_id=<epic-id> reason="..."',
            )
        result = self._engine.hierarchy.abandon(resolved, reason)
        return self._finish("abandon", result, session_id, target_id=resolved, reason=reason)

    def _do_delegate(
        self,
        session_id: str | None,
        to_agent: str = "",
        task_id: str | None = None,
        target_id: str | None = None,
        context: str = "",
        expected_output: str = "",
        **_: Any,
    ) -> str:
        resolved = self._resolve_task_id(session_id, task_id, target_id)
        if resolved is None:
            return self._missing(
                "'delegate' requires task_id (or an active task).",
                'aegis_task action=delegate task_id=<task-id> to_agent=builder-1 '
                'context="..." expected_output="..."',
            )
        outcome = self._engine.ledger.delegate(
            from_agent=self._engine.agent_for_session(session_id),
            to_agent=to_agent,
            task_id=resolved,
            context=context,
            expected_output=expected_output,
        )
        self._record("delegate", outcome.ok, session_id, task_id=resolved, to_agent=to_agent)
        return outcome.render()

    def _do_status(self, session_id: str | None, **_: Any) -> str:
        engine = self._engine
        tasks = engine.hierarchy.snapshot()
        chain = get_active_chain(tasks)
        state = engine.store.read_state()
        lines = ["=== Governance Status ===", f"Phase: {state.phase}"]
        if session_id:
            tracker = engine.sessions.get(session_id)
            role = tracker.agent_role if tracker and tracker.agent_role else "unknown"
            lines.append(f"Session: {session_id} (agent: {engine.agent_for_session(session_id)}, role: {role})")
            active_id = engine.hierarchy.active_task_for_session(session_id)
            lines.append(f"Session active task: {active_id or 'none'}")
            history = engine.gate.permission_history(session_id)
            denied = sum(1 for check in history if not check.decision.allowed)
            lines.append(f"Permission checks: {len(history)} ({denied} denied)")
        if chain.epic is not None:
            lines.append(f'Active epic: "{chain.epic.name}" [{chain.epic.category}/{chain.epic.governance_level}]')
        if chain.task is not None:
            lines.append(f'Active task: "{chain.task.name}" ({chain.task.id})')
            lines.extend(f"  ( ) {sub.name} ({sub.id})" for sub in chain.pending_subtasks)
        anchors = engine.anchors.all()
        stale = sum(1 for anchor in anchors if anchor.timestamp.is_stale)
        lines.append(f"Anchors: {len(anchors)} total ({len(anchors) - stale} fresh, {stale} stale)")
        lines.append(f"History entries: {len(state.history)}")
        lines.append("")
        lines.append(engine.ledger.format_ledger())
        return "\n".join(lines)

    def _do_list(self, session_id: str | None, **_: Any) -> str:
        return self._engine.hierarchy.render_tree()

    def _do_update(
        self,
        session_id: str | None,
        target_id: str | None = None,
        task_id: str | None = None,
        name: str | None = None,
        assignee: str | None = None,
        evidence: str | None = None,
        category: str | None = None,
        status: str | None = None,
        **_: Any,
    ) -> str:
        resolved = self._resolve_task_id(session_id, target_id, task_id)
        if resolved is None:
            return self._missing(
                "'update' requires target_id (or an active task).",
                'aegis_task action=update target_id=<task-id> name="..."',
            )
        result = self._engine.hierarchy.update(
            resolved,
            name=name,
            assignee=assignee,
            evidence=evidence,
            category=category,
            status=status,
        )
        return self._finish("update", result, session_id, target_id=resolved, status=status)

    def _do_branch(
        self,
        session_id: str | None,
        task_id: str | None = None,
        target_id: str | None = None,
        name: str | None = None,
        **_: Any,
    ) -> str:
        resolved = self._resolve_task_id(session_id, task_id, target_id)
        if resolved is None:
            return self._missing(
                "'branch' requires task_id (or an active task).",
                "aegis_task action=branch task_id=<task-id>",
            )
        result = self._engine.hierarchy.branch(resolved, name)
        return self._finish("branch", result, session_id, task_id=resolved)


__all__ = ["TASK_ACTIONS", "TaskActionSet"]
