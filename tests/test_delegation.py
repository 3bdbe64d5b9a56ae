from __future__ import annotations

from datetime import datetime, timezone

import pytest

from aegis_mcp.engine import GovernanceEngine
from aegis_mcp.schemas.delegation import (
    MAX_DELEGATION_DEPTH,
    build_delegation_instruction,
    delegation_depth,
    new_delegation,
    validate_delegation,
)
from aegis_mcp.schemas.task import find_task


def make_task(engine: GovernanceEngine, category: str = "development") -> str:
    engine.hierarchy.create_epic("Auth", category)
    return engine.hierarchy.create_task("Login form").task.id


def delegate(engine: GovernanceEngine, task_id: str, to_agent: str = "builder-1", from_agent: str = "coordinator"):
    return engine.ledger.delegate(
        from_agent=from_agent,
        to_agent=to_agent,
        task_id=task_id,
        context="Implement the login form",
        expected_output="Form renders and submits",
    )


def rule_check(current_depth: int, **overrides):
    params = dict(
        from_agent="coordinator",
        to_agent="builder",
        from_role="coordinator",
        to_role="builder",
        current_depth=current_depth,
    )
    params.update(overrides)
    return validate_delegation(**params)


def test_depth_limit() -> None:
    assert MAX_DELEGATION_DEPTH == 3
    assert rule_check(2) is None
    rejection = rule_check(3)
    assert rejection is not None
    assert rejection.rule == "max-depth"


def test_self_delegation_rejected() -> None:
    rejection = rule_check(0, to_agent="Coordinator", to_role="coordinator")

    assert rejection.rule == "no-self-delegation"


@pytest.mark.parametrize(
    ("from_role", "to_role", "allowed"),
    [
        ("coordinator", "builder", True),
        ("mid-coordinator", "researcher", True),
        ("coordinator", "validator", False),
        ("builder", "validator", True),
        ("researcher", "builder", False),
        ("validator", "builder", False),
        ("meta", "validator", True),
        ("meta", "meta", False),
    ],
)
def test_role_routing(from_role: str, to_role: str, allowed: bool) -> None:
    rejection = rule_check(0, from_agent="a", to_agent="b", from_role=from_role, to_role=to_role)

    assert (rejection is None) is allowed


def test_category_routing() -> None:
    assert rule_check(0, epic_category="research").rule == "category-routing"
    assert rule_check(0, epic_category="ad-hoc") is None
    assert rule_check(0, epic_category="maintenance") is None


def test_delegate_links_task_and_renders_handoff(engine: GovernanceEngine) -> None:
    task_id = make_task(engine)

    outcome = delegate(engine, task_id)

    assert outcome.ok
    record = outcome.delegation
    assert (record.status, record.depth, record.to_role) == ("pending", 1, "builder")
    task = find_task(engine.hierarchy.snapshot(), task_id)
    assert (task.delegated_to, task.delegation_id) == ("builder-1", record.id)
    assert "### Expected Output" in outcome.render()
    assert "Delegation depth remaining: 2" in outcome.render()
    assert "Tool categories: execute, read, write" in outcome.render()


def test_only_one_open_delegation_per_task(engine: GovernanceEngine) -> None:
    task_id = make_task(engine)
    delegate(engine, task_id)

    second = delegate(engine, task_id, to_agent="builder-2")

    assert not second.ok
    assert second.rejection.rule == "single-open-delegation"


def test_lineage_depth_caps_delegations(engine: GovernanceEngine) -> None:
    task_id = make_task(engine)
    for index in range(2):
        assert delegate(engine, task_id, to_agent=f"builder-{index}").ok
        engine.ledger.complete_for_task(task_id)

    third = delegate(engine, task_id, to_agent="builder-2")
    assert third.ok
    assert third.delegation.depth == 3
    engine.ledger.complete_for_task(task_id)

    fourth = delegate(engine, task_id, to_agent="builder-3")
    assert not fourth.ok
    assert fourth.rejection.rule == "max-depth"
    assert "GOVERNANCE BLOCK" in fourth.render()


def test_rejected_delegations_do_not_count_towards_depth(engine: GovernanceEngine) -> None:
    task_id = make_task(engine)
    delegate(engine, task_id)
    engine.ledger.reject_for_task(task_id, "wrong agent")

    assert delegation_depth(engine.ledger.snapshot(), task_id) == 0


def test_delegation_expires_lazily(engine: GovernanceEngine, clock) -> None:
    task_id = make_task(engine)
    delegate(engine, task_id)

    clock.advance(minutes=31)

    ledger = engine.ledger.snapshot()
    assert ledger.delegations[0].status == "expired"
    assert delegate(engine, task_id, to_agent="builder-2").ok


def test_task_lifecycle_settles_delegation(engine: GovernanceEngine) -> None:
    task_id = make_task(engine)
    delegate(engine, task_id)

    engine.hierarchy.start(task_id, session_id="s-builder")
    assert engine.ledger.snapshot().delegations[0].status == "accepted"

    engine.hierarchy.complete(task_id, "form merged")
    record = engine.ledger.snapshot().delegations[0]
    assert record.status == "completed"
    assert record.completed_at is not None


def test_deferring_task_rejects_delegation(engine: GovernanceEngine) -> None:
    task_id = make_task(engine)
    delegate(engine, task_id)

    engine.hierarchy.defer(task_id, "blocked upstream")

    assert engine.ledger.snapshot().delegations[0].status == "rejected"


def test_category_routing_through_ledger(engine: GovernanceEngine) -> None:
    task_id = make_task(engine, category="research")

    outcome = delegate(engine, task_id, to_agent="builder-1")

    assert outcome.rejection.rule == "category-routing"
    assert engine.ledger.snapshot().delegations == []


def test_unknown_task_is_rejected(engine: GovernanceEngine) -> None:
    outcome = delegate(engine, "task-missing")

    assert outcome.rejection.rule == "unknown-task"


def test_format_ledger_groups_by_status(engine: GovernanceEngine) -> None:
    assert engine.ledger.format_ledger() == "No delegations recorded."
    task_id = make_task(engine)
    delegate(engine, task_id)

    assert "Active (1):" in engine.ledger.format_ledger()


def test_instruction_mentions_completion_command() -> None:
    record = new_delegation(
        from_agent="coordinator",
        to_agent="builder",
        from_role="coordinator",
        to_role="builder",
        task_id="task-1",
        context="ctx",
        expected_output="out",
        current_depth=0,
        now=datetime(2025, 1, 1, tzinfo=timezone.utc),
    )

    instruction = build_delegation_instruction(record)
    assert instruction.startswith(f"## DELEGATION {record.id}")
    assert "aegis_task action=complete target_id=task-1" in instruction
    assert record.expires_at == datetime(2025, 1, 1, 0, 30, tzinfo=timezone.utc)


def test_accepted_holder_hands_task_on(engine: GovernanceEngine) -> None:
    task_id = make_task(engine, category="governance")
    first = delegate(engine, task_id).delegation

    early = delegate(engine, task_id, to_agent="validator-1", from_agent="builder-1")
    assert early.rejection.rule == "single-open-delegation"

    engine.hierarchy.start(task_id, session_id="s-builder")
    handed = delegate(engine, task_id, to_agent="validator-1", from_agent="builder-1")

    assert handed.ok
    assert (handed.delegation.depth, handed.delegation.parent_id) == (2, first.id)
    assert f"Handed on from: {first.id}" in handed.render()
    task = find_task(engine.hierarchy.snapshot(), task_id)
    assert (task.delegated_to, task.delegation_id) == ("validator-1", handed.delegation.id)

    engine.hierarchy.complete(task_id, "checks pass")
    assert [d.status for d in engine.ledger.snapshot().delegations] == ["completed", "completed"]


def test_rejections_carry_example_commands(engine: GovernanceEngine) -> None:
    assert "EXAMPLE: aegis_task action=list" in delegate(engine, "task-missing").render()
    assert "EXAMPLE: aegis_task action=delegate" in rule_check(0, to_role="validator").render()
    assert "EXAMPLE: aegis_task action=complete" in rule_check(3).render()
