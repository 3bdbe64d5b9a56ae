"""Project-scoped anchor store."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable

from .schemas.anchor import (
    Anchor,
    AnchorPriority,
    AnchorType,
    create_anchor,
    format_anchor_line,
    refresh_anchor,
    score_anchor,
    select_anchors,
)
from .schemas.timestamp import utcnow
from .storage.json_store import GovernanceStore

logger = logging.getLogger(__name__)


class AnchorStore:
    """Anchors are append-only; staleness is re-derived on every read."""

    def __init__(self, store: GovernanceStore, *, clock: Callable[[], datetime] | None = None) -> None:
        self._store = store
        self._clock = clock or utcnow

    def add(
        self,
        type: AnchorType,
        content: str,
        priority: AnchorPriority = "medium",
        *,
        session_id: str | None = None,
        **options,
    ) -> Anchor:
        anchor = create_anchor(type, content, priority, now=self._clock(), session_id=session_id, **options)
        self._store.save_anchor(anchor)
        logger.info(
            "Anchor added",
            extra={"anchor_id": anchor.id, "priority": anchor.priority, "anchor_type": anchor.type},
        )
        return anchor

    def all(self) -> list[Anchor]:
        now = self._clock()
        return [refresh_anchor(anchor, now) for anchor in self._store.load_all_anchors()]

    def select(self, budget: int) -> list[Anchor]:
        return select_anchors(self.all(), budget)

    def format_list(self) -> str:
        anchors = sorted(self.all(), key=score_anchor, reverse=True)
        if not anchors:
            return 'No anchors recorded. Add one with: aegis_anchor action=add type=decision content="..."'
        lines = [f"=== Anchors ({len(anchors)}) ==="]
        for anchor in anchors:
            stale = " (stale)" if anchor.timestamp.is_stale else ""
            lines.append(
                f"- {format_anchor_line(anchor)}{stale} "
                f"score={score_anchor(anchor):.1f} {anchor.id}"
            )
        return "\n".join(lines)


__all__ = ["AnchorStore"]
