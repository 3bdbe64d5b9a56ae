"""Context injected into the host's compaction prompt."""

from __future__ import annotations

import logging
from typing import Any

from .anchors import AnchorStore
from .hierarchy import TaskHierarchy
from .schemas.anchor import format_anchor_line
from .schemas.task import build_governance_reminder, find_task
from .storage.json_store import GovernanceStore

logger = logging.getLogger(__name__)

TRUNCATION_MARKER = "...[TRUNCATED]"

GOVERNANCE_DIRECTIVE = "\n".join(
    [
        "## GOVERNANCE DIRECTIVE",
        "This session was compacted. Before acting on any new request:",
        "1. Check the anchors below for decisions that are still in effect.",
        "2. If a request conflicts with an active CRITICAL anchor, state the conflict and ask for confirmation.",
        "3. If the work has drifted from the current task, stop and report what you found.",
        "4. When unsure of the current state, run: aegis_task action=status",
        "5. To see every anchor, run: aegis_anchor action=list",
    ]
)


def truncate_context(text: str, limit: int) -> str:
    """Cut ``text`` to ``limit`` characters, marker included; never shorter than the marker."""

    if len(text) <= limit:
        return text
    return text[: max(0, limit - len(TRUNCATION_MARKER))] + TRUNCATION_MARKER


class CompactionContextBuilder:
    """Renders the anchors and active work that must survive compaction."""

    def __init__(self, store: GovernanceStore, anchors: AnchorStore, hierarchy: TaskHierarchy) -> None:
        self._store = store
        self._anchors = anchors
        self._hierarchy = hierarchy

    def build(self, session_id: str) -> str:
        config = self._store.read_config()
        state = self._store.read_state()
        tasks = self._hierarchy.snapshot()
        all_anchors = self._anchors.all()
        selected = self._anchors.select(config.compaction.anchor_budget)

        lines = ["=== Aegis Governance Context (post-compaction) ===", "", GOVERNANCE_DIRECTIVE, ""]
        lines.append(build_governance_reminder(tasks))
        lines.append("")
        lines.append(f"Phase: {state.phase}")
        lines.append(f"Session: {session_id}")

        active_id = self._hierarchy.active_task_for_session(session_id)
        task = find_task(tasks, active_id) if active_id else None
        if task is not None:
            lines.append(f"## CURRENT TASK: {task.name}")
            lines.append(f"Task ID: {task.id}")
        else:
            lines.append("## NO ACTIVE TASK: start one with aegis_task before writing files")
        lines.append("")

        if selected:
            lines.append(f"## ACTIVE ANCHORS ({len(selected)}):")
            lines.extend(f"- {format_anchor_line(anchor)}" for anchor in selected)
        else:
            lines.append("## No active anchors.")
        lines.append("")
        lines.append("=== End Aegis Context ===")

        context = "\n".join(lines)
        limit = config.compaction.context_limit
        if len(context) > limit:
            logger.warning(
                "Compaction context truncated",
                extra={"session_id": session_id, "length": len(context), "limit": limit},
            )
            context = truncate_context(context, limit)

        logger.info(
            "Compaction context built",
            extra={
                "session_id": session_id,
                "total_anchors": len(all_anchors),
                "selected_anchors": len(selected),
                "context_length": len(context),
                "has_active_task": task is not None,
            },
        )
        return context

    def hook(self, input: dict[str, Any], output: dict[str, Any]) -> str | None:
        """``experimental.session.compacting`` hook. Never raises."""

        try:
            session_id = str(input.get("sessionID") or input.get("session_id") or "unknown")
            context = self.build(session_id)
            target = output.setdefault("context", [])
            target.append(context)
            return context
        except Exception:
            logger.exception("Compaction hook failed; continuing without injected context")
            return None


__all__ = ["CompactionContextBuilder", "GOVERNANCE_DIRECTIVE", "TRUNCATION_MARKER", "truncate_context"]
