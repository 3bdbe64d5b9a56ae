from __future__ import annotations

from aegis_mcp.engine import GovernanceEngine
from aegis_mcp.schemas.task import Task, TaskStore, find_task, validate_completion


def setup_task(engine: GovernanceEngine, category: str = "development"):
    epic = engine.hierarchy.create_epic("X", category).epic
    task = engine.hierarchy.create_task("Y").task
    return epic, task


def test_epic_task_evidence_scenario(engine: GovernanceEngine) -> None:
    hierarchy = engine.hierarchy
    epic, task = setup_task(engine)
    assert epic.status == "active"
    assert epic.governance_level == "strict"

    started = hierarchy.start(task.id, session_id="s-1")
    assert started.ok
    assert hierarchy.active_task_for_session("s-1") == task.id

    rejected = hierarchy.complete(task.id)
    assert not rejected.ok
    assert "evidence" in rejected.message
    assert find_task(hierarchy.snapshot(), task.id).status == "active"

    done = hierarchy.complete(task.id, "pytest: 12 passed")
    assert done.ok
    assert find_task(hierarchy.snapshot(), task.id).evidence == "pytest: 12 passed"
    assert hierarchy.active_task_for_session("s-1") is None
    assert engine.store.load_session("s-1").active_task_id is None


def test_pending_subtask_blocks_completion_without_writing(engine: GovernanceEngine) -> None:
    hierarchy = engine.hierarchy
    _, task = setup_task(engine)
    hierarchy.start(task.id)
    subtask = hierarchy.add_subtask(task.id, "write tests").subtask
    before = (engine.store.directory / "tasks.json").read_text(encoding="utf-8")

    result = hierarchy.complete(task.id, "done")

    assert not result.ok
    assert subtask.id in result.message
    assert (engine.store.directory / "tasks.json").read_text(encoding="utf-8") == before


def test_completion_validation_checks_subtasks_before_evidence() -> None:
    task = Task(epic_id="e", name="t")
    assert validate_completion(task, None).missing == "evidence"
    assert validate_completion(task, "  ").missing == "evidence"
    assert validate_completion(task, "ok").valid


def test_previously_attached_evidence_counts(engine: GovernanceEngine) -> None:
    _, task = setup_task(engine)
    engine.hierarchy.start(task.id)
    engine.hierarchy.update(task.id, evidence="screenshots attached")

    assert engine.hierarchy.complete(task.id).ok


def test_starting_b_reverts_a(engine: GovernanceEngine) -> None:
    hierarchy = engine.hierarchy
    _, first = setup_task(engine)
    second = hierarchy.create_task("Z").task
    hierarchy.start(first.id, session_id="s-1")

    result = hierarchy.start(second.id, session_id="s-2")

    tasks = hierarchy.snapshot()
    assert find_task(tasks, first.id).status == "planned"
    assert find_task(tasks, second.id).status == "active"
    assert any("reverted to planned" in note for note in result.notes)
    assert hierarchy.active_task_for_session("s-1") is None
    assert hierarchy.active_task_for_session("s-2") == second.id


def test_create_epic_demotes_previous_active_epic(engine: GovernanceEngine) -> None:
    first = engine.hierarchy.create_epic("first").epic

    result = engine.hierarchy.create_epic("second", "ad-hoc")

    tasks = engine.hierarchy.snapshot()
    assert tasks.active_epic_id == result.epic.id
    assert result.epic.governance_level == "minimal"
    assert next(e for e in tasks.epics if e.id == first.id).status == "draft"
    assert "returned to draft" in result.render()


def test_create_epic_rejects_unknown_category(engine: GovernanceEngine) -> None:
    result = engine.hierarchy.create_epic("x", "marketing")

    assert not result.ok
    assert engine.hierarchy.snapshot().epics == []


def test_epic_completion_names_blockers(engine: GovernanceEngine) -> None:
    hierarchy = engine.hierarchy
    epic, task = setup_task(engine)

    blocked = hierarchy.complete(epic.id)
    assert not blocked.ok
    assert task.id in blocked.message

    hierarchy.defer(task.id, "out of scope")
    done = hierarchy.complete(epic.id)
    assert done.ok
    assert hierarchy.snapshot().active_epic_id is None


def test_defer_epic_cascades_to_active_tasks(engine: GovernanceEngine) -> None:
    hierarchy = engine.hierarchy
    epic, task = setup_task(engine)
    hierarchy.start(task.id, session_id="s-1")

    result = hierarchy.defer(epic.id, "priorities changed")

    tasks = hierarchy.snapshot()
    stored = find_task(tasks, task.id)
    assert result.ok
    assert tasks.epics[0].status == "archived"
    assert tasks.active_epic_id is None
    assert stored.status == "deferred"
    assert stored.reason == "Epic deferred: priorities changed"
    assert hierarchy.active_task_for_session("s-1") is None


def test_defer_requires_reason(engine: GovernanceEngine) -> None:
    _, task = setup_task(engine)
    assert not engine.hierarchy.defer(task.id, "").ok


def test_defer_subtask_skips_it(engine: GovernanceEngine) -> None:
    _, task = setup_task(engine)
    engine.hierarchy.start(task.id)
    subtask = engine.hierarchy.add_subtask(task.id, "optional polish").subtask

    engine.hierarchy.defer(subtask.id, "not needed")

    assert engine.hierarchy.complete(task.id, "shipped").ok


def test_abandon_only_applies_to_epics(engine: GovernanceEngine) -> None:
    epic, task = setup_task(engine)
    engine.hierarchy.start(task.id)

    assert not engine.hierarchy.abandon(task.id, "nope").ok
    result = engine.hierarchy.abandon(epic.id, "superseded")

    tasks = engine.hierarchy.snapshot()
    assert result.ok
    assert tasks.epics[0].status == "abandoned"
    assert tasks.active_epic_id is None
    assert find_task(tasks, task.id).status == "deferred"


def test_update_status_review_and_failed(engine: GovernanceEngine) -> None:
    _, task = setup_task(engine)
    engine.hierarchy.start(task.id, session_id="s-1")

    assert engine.hierarchy.update(task.id, status="review").ok
    assert find_task(engine.hierarchy.snapshot(), task.id).status == "review"
    assert not engine.hierarchy.update(task.id, status="completed").ok

    assert engine.hierarchy.update(task.id, status="failed").ok
    assert engine.store.load_session("s-1").active_task_id is None


def test_update_epic_category_resets_governance_level(engine: GovernanceEngine) -> None:
    epic, _ = setup_task(engine)

    engine.hierarchy.update(epic.id, category="research", name="Spike")

    stored = engine.hierarchy.snapshot().epics[0]
    assert (stored.name, stored.category, stored.governance_level) == ("Spike", "research", "balanced")


def test_branch_copies_pending_subtasks(engine: GovernanceEngine) -> None:
    hierarchy = engine.hierarchy
    _, task = setup_task(engine)
    hierarchy.start(task.id)
    done = hierarchy.add_subtask(task.id, "done already").subtask
    hierarchy.add_subtask(task.id, "still open")
    hierarchy.complete(done.id)

    result = hierarchy.branch(task.id)

    fork = result.task
    assert fork.status == "planned"
    assert fork.branched_from == task.id
    assert [sub.name for sub in fork.subtasks] == ["still open"]
    assert all(sub.task_id == fork.id for sub in fork.subtasks)


def test_stale_active_task_is_reported(engine: GovernanceEngine, clock) -> None:
    _, task = setup_task(engine)
    engine.hierarchy.start(task.id)

    clock.advance(hours=5)

    assert [t.id for t in engine.hierarchy.stale_tasks()] == [task.id]
    report = engine.task_actions.run("list")
    assert "STALE WARNING" in report
    assert f"action=defer target_id={task.id}" in report


def test_chain_breaks_are_detected(engine: GovernanceEngine) -> None:
    engine.hierarchy.create_epic("empty")
    assert [w.type for w in engine.hierarchy.chain_breaks()] == ["empty_active_epic"]

    broken = TaskStore(active_epic_id="epic-missing")
    engine.store.write_tasks(broken)
    assert [w.type for w in engine.hierarchy.chain_breaks()] == ["missing_active_epic"]


def test_dangling_delegation_is_detected(engine: GovernanceEngine) -> None:
    _, task = setup_task(engine)
    engine.hierarchy.start(task.id)
    tasks = engine.hierarchy.snapshot()
    find_task(tasks, task.id).delegation_id = "deleg-gone"
    engine.store.write_tasks(tasks)

    assert "dangling_delegation" in [w.type for w in engine.hierarchy.chain_breaks()]
