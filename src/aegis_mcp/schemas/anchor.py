"""Anchor models and the budgeted selection used at compaction time."""

from __future__ import annotations

from datetime import datetime
from typing import Iterable, Literal
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .timestamp import STALENESS_THRESHOLD_HOURS, Timestamp, create_timestamp, enforce_timestamp

AnchorType = Literal["decision", "context", "checkpoint", "error", "attention"]
AnchorPriority = Literal["critical", "high", "medium", "low"]
EntityType = Literal["task", "decision", "file", "agent", "phase"]

ANCHOR_TYPES: tuple[str, ...] = ("decision", "context", "checkpoint", "error", "attention")
ANCHOR_PRIORITIES: tuple[str, ...] = ("critical", "high", "medium", "low")
MAX_ANCHOR_CONTENT = 2000

PRIORITY_WEIGHTS: dict[str, int] = {
    "critical": 100,
    "high": 75,
    "medium": 50,
    "low": 25,
}


class Anchor(BaseModel):
    """A prioritized fact that should survive a compaction event."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid4()))
    type: AnchorType
    content: str = Field(..., max_length=MAX_ANCHOR_CONTENT)
    priority: AnchorPriority
    timestamp: Timestamp
    traversal_depth: int = Field(default=0, ge=0)
    entity_type: EntityType | None = None
    focus_target: str | None = None
    focus_reason: str | None = None
    session_id: str | None = None

    @field_validator("content")
    @classmethod
    def _require_content(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Anchor content must not be empty")
        return value


def create_anchor(
    type: AnchorType,
    content: str,
    priority: AnchorPriority,
    *,
    now: datetime | None = None,
    **options,
) -> Anchor:
    return Anchor(
        type=type,
        content=content,
        priority=priority,
        timestamp=create_timestamp(now),
        **options,
    )


def refresh_anchor(anchor: Anchor, now: datetime | None = None) -> Anchor:
    """Return a copy of ``anchor`` with staleness re-derived."""

    return anchor.model_copy(update={"timestamp": enforce_timestamp(anchor.timestamp, now)})


def score_anchor(anchor: Anchor) -> float:
    freshness_bonus = max(0.0, STALENESS_THRESHOLD_HOURS - anchor.timestamp.staleness_hours)
    depth_penalty = anchor.traversal_depth * 10
    return PRIORITY_WEIGHTS[anchor.priority] + freshness_bonus - depth_penalty


def select_anchors(anchors: Iterable[Anchor], budget: int) -> list[Anchor]:
    """Pick at most ``budget`` anchors by descending score.

    Stale anchors are dropped unless critical. Equal scores keep their input
    order (``sorted`` is stable).
    """

    if budget <= 0:
        return []
    candidates = [
        anchor
        for anchor in anchors
        if not anchor.timestamp.is_stale or anchor.priority == "critical"
    ]
    ranked = sorted(candidates, key=score_anchor, reverse=True)
    return ranked[:budget]


def format_anchor_line(anchor: Anchor) -> str:
    return f"[{anchor.priority.upper()}/{anchor.type}] {anchor.content}"


__all__ = [
    "ANCHOR_PRIORITIES",
    "ANCHOR_TYPES",
    "Anchor",
    "AnchorPriority",
    "AnchorType",
    "EntityType",
    "MAX_ANCHOR_CONTENT",
    "PRIORITY_WEIGHTS",
    "create_anchor",
    "format_anchor_line",
    "refresh_anchor",
    "score_anchor",
    "select_anchors",
]
