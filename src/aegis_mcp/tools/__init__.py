"""Tool registration for Aegis MCP."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from fastmcp import Context, FastMCP

from ..actions import ANCHOR_ACTIONS, TASK_ACTIONS
from ..engine import GovernanceEngine

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ToolHandles:
    aegis_task: Any
    aegis_anchor: Any


def register_tools(server: FastMCP, *, engine: GovernanceEngine) -> ToolHandles:
    """Register the governance action tools on the server."""

    def _aegis_task(
        action: str,
        session_id: str | None = None,
        name: str | None = None,
        category: str | None = None,
        governance_level: str | None = None,
        epic_id: str | None = None,
        task_id: str | None = None,
        target_id: str | None = None,
        assignee: str | None = None,
        evidence: str | None = None,
        reason: str | None = None,
        status: str | None = None,
        tool_used: str | None = None,
        to_agent: str | None = None,
        context: str | None = None,
        expected_output: str | None = None,
        ctx: Context | None = None,
    ) -> str:
        """Manage the epic/task/subtask hierarchy and delegations."""

        report = engine.task_actions.run(
            action,
            session_id=session_id,
            name=name,
            category=category,
            governance_level=governance_level,
            epic_id=epic_id,
            task_id=task_id,
            target_id=target_id,
            assignee=assignee,
            evidence=evidence,
            reason=reason,
            status=status,
            tool_used=tool_used,
            to_agent=to_agent,
            context=context,
            expected_output=expected_output,
        )
        _emit_log(
            ctx,
            "warning" if report.startswith(("ERROR", "BLOCKED", "GOVERNANCE BLOCK")) else "info",
            "aegis_task action",
            extra={"action": action, "session_id": session_id},
        )
        return report

    def _aegis_anchor(
        action: str,
        session_id: str | None = None,
        type: str | None = None,
        content: str | None = None,
        priority: str | None = None,
        entity_type: str | None = None,
        focus_target: str | None = None,
        focus_reason: str | None = None,
        ctx: Context | None = None,
    ) -> str:
        """Record or list anchors that must survive context compaction."""

        report = engine.anchor_actions.run(
            action,
            session_id=session_id,
            type=type,
            content=content,
            priority=priority,
            entity_type=entity_type,
            focus_target=focus_target,
            focus_reason=focus_reason,
        )
        _emit_log(
            ctx,
            "warning" if report.startswith("ERROR") else "info",
            "aegis_anchor action",
            extra={"action": action, "session_id": session_id},
        )
        return report

    tool_task = server.tool(
        name="aegis_task",
        description=(
            "Governed task hierarchy. Actions: " + ", ".join(TASK_ACTIONS) + ". "
            "Write tools stay locked until a task is started."
        ),
    )(_aegis_task)

    tool_anchor = server.tool(
        name="aegis_anchor",
        description="Context anchors kept across compaction. Actions: " + ", ".join(ANCHOR_ACTIONS) + ".",
    )(_aegis_anchor)

    return ToolHandles(aegis_task=tool_task, aegis_anchor=tool_anchor)


def _emit_log(
    context: Context | None,
    level: str,
    message: str,
    *,
    extra: dict[str, Any] | None = None,
) -> None:
    """Best-effort logging that prefers the MCP context logger when available."""

    payload = extra or {}

    if context is not None:
        ctx_logger = getattr(context, "logger", None)
        if ctx_logger is not None:
            log_method = getattr(ctx_logger, level, None)
            if callable(log_method):
                log_method(message, extra=payload)
                return

    fallback = getattr(logger, level, logger.info)
    fallback(message, extra=payload)


__all__ = ["ToolHandles", "register_tools"]
