from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from aegis_mcp.anchors import AnchorStore
from aegis_mcp.schemas.anchor import (
    Anchor,
    create_anchor,
    format_anchor_line,
    refresh_anchor,
    score_anchor,
    select_anchors,
)
from aegis_mcp.schemas.timestamp import (
    calculate_staleness,
    create_timestamp,
    enforce_timestamp,
    validate_timestamp,
)
from aegis_mcp.storage import GovernanceStore

NOW = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


def make_anchor(priority: str, age_hours: float, *, depth: int = 0, content: str | None = None) -> Anchor:
    anchor = create_anchor(
        "decision",
        content or f"{priority} fact",
        priority,  # type: ignore[arg-type]
        now=NOW - timedelta(hours=age_hours),
        traversal_depth=depth,
    )
    return refresh_anchor(anchor, NOW)


def test_timestamp_goes_stale_after_48_hours() -> None:
    stamp = create_timestamp(NOW - timedelta(hours=49))

    enforced = enforce_timestamp(stamp, NOW)

    assert enforced.is_stale is True
    assert enforced.staleness_hours == pytest.approx(49.0)
    assert enforced.created_at == stamp.created_at


def test_validation_resets_staleness() -> None:
    stamp = create_timestamp(NOW - timedelta(hours=100))
    validated = validate_timestamp(stamp, NOW - timedelta(hours=2))

    assert calculate_staleness(validated, NOW) == pytest.approx(2.0)
    assert enforce_timestamp(validated, NOW).is_stale is False


def test_timestamp_survives_json_round_trip() -> None:
    stamp = enforce_timestamp(create_timestamp(NOW - timedelta(hours=49)), NOW)

    restored = type(stamp).model_validate_json(stamp.model_dump_json())

    assert restored == stamp
    assert enforce_timestamp(restored, NOW).is_stale


def test_score_formula() -> None:
    anchor = make_anchor("high", 8, depth=2)

    assert score_anchor(anchor) == pytest.approx(75 + 40 - 20)


def test_critical_stale_anchor_beats_fresh_low() -> None:
    critical = make_anchor("critical", 100)
    low = make_anchor("low", 1)

    assert critical.timestamp.is_stale
    assert select_anchors([low, critical], 1) == [critical]


def test_selection_drops_stale_non_critical() -> None:
    stale_high = make_anchor("high", 60)
    fresh_low = make_anchor("low", 1)

    assert select_anchors([stale_high, fresh_low], 5) == [fresh_low]


def test_selection_respects_budget_and_order() -> None:
    anchors = [make_anchor(priority, 1) for priority in ("low", "critical", "medium", "high")]

    selected = select_anchors(anchors, 3)

    assert [a.priority for a in selected] == ["critical", "high", "medium"]
    assert select_anchors(anchors, 0) == []
    assert select_anchors(anchors, -1) == []


def test_selection_is_stable_for_equal_scores() -> None:
    first = make_anchor("medium", 1, content="first")
    second = make_anchor("medium", 1, content="second")

    assert select_anchors([first, second], 2) == [first, second]
    assert select_anchors([second, first], 1) == [second]


def test_anchor_content_is_validated() -> None:
    with pytest.raises(ValidationError):
        create_anchor("context", "   ", "low", now=NOW)
    with pytest.raises(ValidationError):
        create_anchor("context", "x" * 2001, "low", now=NOW)


def test_anchor_is_frozen() -> None:
    anchor = make_anchor("low", 1)
    with pytest.raises(ValidationError):
        anchor.content = "changed"  # type: ignore[misc]


def test_format_anchor_line() -> None:
    assert format_anchor_line(make_anchor("critical", 1, content="Use Postgres")) == (
        "[CRITICAL/decision] Use Postgres"
    )


def test_anchor_store_recomputes_staleness(tmp_path) -> None:
    moments = iter([NOW, NOW + timedelta(hours=50)])
    anchors = AnchorStore(GovernanceStore(tmp_path), clock=lambda: next(moments))

    added = anchors.add("decision", "Ship on Friday", "medium", session_id="s-1")
    [loaded] = anchors.all()

    assert added.timestamp.is_stale is False
    assert loaded.id == added.id
    assert loaded.session_id == "s-1"
    assert loaded.timestamp.is_stale is True
