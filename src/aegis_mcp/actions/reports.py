"""Report plumbing shared by the action sets."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Callable

from ..errors import AegisError
from ..schemas.task import build_governance_reminder, format_stale_warning

if TYPE_CHECKING:  # pragma: no cover
    from ..engine import GovernanceEngine

logger = logging.getLogger(__name__)

STATUS_EXAMPLE = "aegis_task action=status"


def with_governance_footer(engine: "GovernanceEngine", report: str) -> str:
    """Append the governance reminder, then any staleness and chain-break warnings."""

    sections = [report, "", build_governance_reminder(engine.hierarchy.snapshot())]
    now = engine.clock()
    warnings = [format_stale_warning(task, now) for task in engine.hierarchy.stale_tasks()]
    warnings.extend(f"CHAIN WARNING: {warning.message}" for warning in engine.hierarchy.chain_breaks())
    if warnings:
        sections.append("")
        sections.extend(warnings)
    return "\n".join(sections)


def run_with_footer(engine: "GovernanceEngine", tool: str, action: str, produce: Callable[[], str]) -> str:
    """Run ``produce`` and footer its report; engine errors come back as text."""

    try:
        report = produce()
    except AegisError as exc:
        logger.exception("Governance action failed", extra={"tool": tool, "action": action})
        report = f"ERROR: {tool} action={action} failed: {exc}\nExample: {STATUS_EXAMPLE}"
    return with_governance_footer(engine, report)


__all__ = ["STATUS_EXAMPLE", "run_with_footer", "with_governance_footer"]
