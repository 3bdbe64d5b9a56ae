"""The ``aegis_anchor`` action set."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from ..schemas.anchor import ANCHOR_PRIORITIES, ANCHOR_TYPES
from ..schemas.state import HistoryEntry
from .reports import run_with_footer, with_governance_footer

if TYPE_CHECKING:  # pragma: no cover
    from ..engine import GovernanceEngine

ANCHOR_ACTIONS: tuple[str, ...] = ("add", "list")

ADD_EXAMPLE = 'aegis_anchor action=add type=decision content="Sessions live in Redis" priority=high'


class AnchorActionSet:
    def __init__(self, engine: "GovernanceEngine") -> None:
        self._engine = engine

    def run(self, action: str, *, session_id: str | None = None, **args: Any) -> str:
        normalized = (action or "").strip().lower()
        if normalized == "list":
            return run_with_footer(self._engine, "aegis_anchor", normalized, self._engine.anchors.format_list)
        if normalized == "add":
            supplied = {k: v for k, v in args.items() if v not in (None, "")}
            return run_with_footer(
                self._engine, "aegis_anchor", normalized, lambda: self._add(session_id, **supplied)
            )
        return with_governance_footer(
            self._engine,
            f"ERROR: Unknown action '{action}'. Valid actions: {', '.join(ANCHOR_ACTIONS)}.\n"
            "Example: aegis_anchor action=list",
        )

    def _add(
        self,
        session_id: str | None,
        type: str | None = None,
        content: str | None = None,
        priority: str = "medium",
        entity_type: str | None = None,
        focus_target: str | None = None,
        focus_reason: str | None = None,
        **_: Any,
    ) -> str:
        if type not in ANCHOR_TYPES:
            return f"ERROR: 'add' requires type, one of: {', '.join(ANCHOR_TYPES)}.\nExample: {ADD_EXAMPLE}"
        if priority not in ANCHOR_PRIORITIES:
            return f"ERROR: priority must be one of: {', '.join(ANCHOR_PRIORITIES)}.\nExample: {ADD_EXAMPLE}"
        if not content or not content.strip():
            return f"ERROR: 'add' requires content.\nExample: {ADD_EXAMPLE}"

        try:
            anchor = self._engine.anchors.add(
                type,  # type: ignore[arg-type]
                content,
                priority,  # type: ignore[arg-type]
                session_id=session_id,
                entity_type=entity_type,
                focus_target=focus_target,
                focus_reason=focus_reason,
            )
        except ValidationError as exc:
            return f"ERROR: Invalid anchor: {exc.errors()[0].get('msg', exc)}\nExample: {ADD_EXAMPLE}"

        self._engine.record_history(
            HistoryEntry(
                action="aegis_anchor.add",
                agent=self._engine.agent_for_session(session_id) if session_id else None,
                tool="aegis_anchor",
                result="pass",
                details={"anchor_id": anchor.id, "priority": anchor.priority},
            )
        )
        return f"Anchor added: [{anchor.priority.upper()}/{anchor.type}] {anchor.id}"


__all__ = ["ANCHOR_ACTIONS", "AnchorActionSet"]
