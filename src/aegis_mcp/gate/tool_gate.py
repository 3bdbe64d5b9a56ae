"""Tool gate: the before/after hooks wrapped around every host tool call."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Iterable

from ..config import GateConfig
from ..errors import ToolGateError
from ..schemas.permission import (
    RESTRICTED_ROLE,
    PermissionCheck,
    PermissionDecision,
    RolePattern,
    build_denial_message,
    decide,
    detect_agent_role,
)
from ..storage.audit import AuditTrail
from .sessions import SessionRegistry, SessionRoleTracker

logger = logging.getLogger(__name__)

NO_ACTIVE_TASK_PIVOT = (
    "Start a task first: aegis_task action=start task_id=<id> "
    '(or create one with aegis_task action=create_task name="...")'
)


@dataclass(slots=True)
class GateResult:
    session_id: str
    tool: str
    role: str
    decision: PermissionDecision
    exempt: bool = False

    @property
    def allowed(self) -> bool:
        return self.decision.allowed


def session_id_from(payload: dict[str, Any]) -> str:
    return str(payload.get("sessionID") or payload.get("session_id") or "unknown")


class ToolGate:
    """Decide, record and enforce tool permissions per session."""

    def __init__(
        self,
        *,
        registry: SessionRegistry | None = None,
        config: GateConfig | None = None,
        active_task_lookup: Callable[[str], str | None] | None = None,
        profiles: Iterable[RolePattern] = (),
        audit: AuditTrail | None = None,
        default_role: str = RESTRICTED_ROLE,
    ) -> None:
        self.registry = registry or SessionRegistry()
        self._config = config or GateConfig()
        self._active_task_lookup = active_task_lookup or (lambda _session_id: None)
        self._profiles = list(profiles)
        self._audit = audit
        self._default_role = default_role

    def set_agent(self, session_id: str, agent_name: str) -> str:
        """Bind ``agent_name`` to the session and return its detected role."""

        tracker = self.registry.get_or_create(session_id)
        role = detect_agent_role(agent_name, self._profiles)
        if tracker.agent_name != agent_name or tracker.agent_role != role:
            logger.info(
                "Agent role detected",
                extra={"session_id": session_id, "agent_name": agent_name, "role": role},
            )
        tracker.agent_name = agent_name
        tracker.agent_role = role
        return role

    def permission_history(self, session_id: str) -> list[PermissionCheck]:
        tracker = self.registry.get(session_id)
        return list(tracker.permission_checks) if tracker else []

    def _resolve_role(self, tracker: SessionRoleTracker) -> str:
        return tracker.agent_role or self._default_role

    def check(self, session_id: str, tool: str) -> GateResult:
        tracker = self.registry.get_or_create(session_id)
        if tracker.first_tool is None:
            tracker.first_tool = tool
        role = self._resolve_role(tracker)

        exempt = tool in self._config.exempt_tools
        if exempt:
            decision = PermissionDecision(
                allowed=True,
                reason=f'Tool "{tool}" is a governance tool and always allowed',
            )
        else:
            decision = decide(role, tool)
            if (
                decision.allowed
                and decision.category == "write"
                and self._config.enforce_active_task
                and self._active_task_lookup(session_id) is None
            ):
                decision = PermissionDecision(
                    allowed=False,
                    reason=f'No active task. Tool "{tool}" modifies files and requires an active task.',
                    pivot=NO_ACTIVE_TASK_PIVOT,
                    category="write",
                )

        check = PermissionCheck(
            session_id=session_id,
            tool=tool,
            role=role,
            decision=decision,
            agent_name=tracker.agent_name,
        )
        tracker.record(check)
        self._audit_check(check)

        if not decision.allowed:
            logger.warning(
                "Tool denied",
                extra={"session_id": session_id, "tool": tool, "role": role, "reason": decision.reason},
            )
        return GateResult(session_id=session_id, tool=tool, role=role, decision=decision, exempt=exempt)

    def before(self, input: dict[str, Any], output: dict[str, Any]) -> GateResult:
        """``tool.execute.before`` hook; raises :class:`ToolGateError` on denial."""

        tool = str(input.get("tool", ""))
        session_id = session_id_from(input)
        result = self.check(session_id, tool)

        if not result.allowed:
            message = build_denial_message(result.role, tool, result.decision)
            if self._audit is not None:
                try:
                    self._audit.record_violation(
                        session_id=session_id, tool=tool, role=result.role, reason=result.decision.reason
                    )
                except Exception:
                    logger.exception("Failed to record violation", extra={"session_id": session_id})
            raise ToolGateError(result.role, tool, result.decision, message)

        args = output.get("args")
        if isinstance(args, dict):
            args["__aegis_checked"] = True
            args["__aegis_role"] = result.role
            args["__aegis_session"] = session_id
        return result

    def after(self, input: dict[str, Any], output: dict[str, Any]) -> bool:
        """``tool.execute.after`` hook.

        Annotates the output of a tool that ran despite a denial. Returns
        whether the output was replaced. Never raises.
        """

        try:
            tool = str(input.get("tool", ""))
            tracker = self.registry.get(session_id_from(input))
            last = tracker.last_check() if tracker else None
            if last is None or last.decision.allowed or last.tool != tool:
                return False
            if output.get("output") is None:
                return False

            logger.warning(
                "Tool executed despite denial",
                extra={"session_id": last.session_id, "tool": tool, "role": last.role},
            )
            denial = build_denial_message(last.role, tool, last.decision)
            output["title"] = f"GOVERNANCE VIOLATION: {tool}"
            output["output"] = "\n".join(
                [
                    denial,
                    "",
                    "---",
                    "ORIGINAL OUTPUT (executed despite governance):",
                    str(output["output"]),
                    "---",
                    "",
                    "This action was not permitted for the current agent role.",
                ]
            )
            metadata = output.get("metadata") if isinstance(output.get("metadata"), dict) else {}
            output["metadata"] = {
                **metadata,
                "__aegis_violation": True,
                "__aegis_role": last.role,
                "__aegis_pivot": "output_replacement",
            }
            return True
        except Exception:
            logger.exception("Tool gate after-hook failed", extra={"input": repr(input)})
            return False

    def _audit_check(self, check: PermissionCheck) -> None:
        if self._audit is None:
            return
        try:
            self._audit.record_permission_check(check)
        except Exception:
            logger.exception("Failed to record permission check", extra={"session_id": check.session_id})


__all__ = ["GateResult", "NO_ACTIVE_TASK_PIVOT", "ToolGate", "session_id_from"]
