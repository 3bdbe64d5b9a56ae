from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path

import pytest

from aegis_mcp.errors import StorageError
from aegis_mcp.schemas.anchor import create_anchor
from aegis_mcp.schemas.state import HistoryEntry, MAX_HISTORY, SessionRecord, append_history
from aegis_mcp.schemas.task import TASK_STORE_VERSION, Epic, TaskStore
from aegis_mcp.storage import GovernanceStore

NOW = datetime(2025, 1, 1, tzinfo=timezone.utc)


def test_missing_documents_yield_defaults(tmp_path: Path) -> None:
    store = GovernanceStore(tmp_path / ".aegis")

    assert store.read_state().initialized is False
    assert store.read_tasks() == TaskStore()
    assert store.read_delegations().delegations == []
    assert store.load_all_anchors() == []
    assert store.list_sessions() == []
    assert store.read_config().compaction.anchor_budget == 5


def test_corrupt_document_falls_back_with_warning(tmp_path: Path, caplog) -> None:
    caplog.set_level(logging.WARNING, logger="aegis_mcp.storage.json_store")
    (tmp_path / "tasks.json").write_text("{not json", encoding="utf-8")
    (tmp_path / "state.json").write_text('["a list"]', encoding="utf-8")
    (tmp_path / "delegations.json").write_text('{"delegations": "nope"}', encoding="utf-8")
    store = GovernanceStore(tmp_path)

    assert store.read_tasks() == TaskStore()
    assert store.read_state().phase == "init"
    assert store.read_delegations().delegations == []
    assert len(caplog.records) == 3


def test_write_replaces_document_without_temp_files(tmp_path: Path) -> None:
    store = GovernanceStore(tmp_path)
    tasks = TaskStore(epics=[Epic(name="Auth")])

    store.write_tasks(tasks)
    store.write_tasks(tasks)

    assert sorted(p.name for p in tmp_path.iterdir()) == ["tasks.json"]
    assert store.read_tasks().epics[0].name == "Auth"


def test_write_failure_raises_storage_error(tmp_path: Path) -> None:
    blocker = tmp_path / "blocker"
    blocker.write_text("", encoding="utf-8")
    store = GovernanceStore(blocker / "nested")

    with pytest.raises(StorageError):
        store.write_tasks(TaskStore())


def test_backups_keep_previous_version(tmp_path: Path) -> None:
    store = GovernanceStore(tmp_path, backup=True, clock=lambda: NOW)
    store.write_tasks(TaskStore(epics=[Epic(name="first")]))

    store.write_tasks(TaskStore(epics=[Epic(name="second")]))

    [backup] = list((tmp_path / "backups").iterdir())
    assert backup.name == "tasks-20250101T000000000000.json"
    assert json.loads(backup.read_text(encoding="utf-8"))["epics"][0]["name"] == "first"


def test_v1_task_document_is_migrated(tmp_path: Path) -> None:
    legacy = {
        "version": "1.0.0",
        "active_epic_id": None,
        "epics": [{"id": "epic-old", "name": "Legacy", "status": "draft", "tasks": []}],
    }
    (tmp_path / "tasks.json").write_text(json.dumps(legacy), encoding="utf-8")

    migrated = GovernanceStore(tmp_path).read_tasks()

    assert migrated.version == TASK_STORE_VERSION
    assert (migrated.epics[0].category, migrated.epics[0].governance_level) == ("development", "strict")


def test_sessions_are_keyed_by_id(tmp_path: Path) -> None:
    store = GovernanceStore(tmp_path)
    store.save_session(SessionRecord(session_id="s-1", agent_name="build"))
    store.save_session(SessionRecord(session_id="s-2"))
    store.save_session(SessionRecord(session_id="s-1", agent_name="build", active_task_id="task-1"))

    assert {record.session_id for record in store.list_sessions()} == {"s-1", "s-2"}
    assert store.load_session("s-1").active_task_id == "task-1"
    assert store.load_session("missing") is None


def test_save_anchor_replaces_by_id(tmp_path: Path) -> None:
    store = GovernanceStore(tmp_path)
    anchor = create_anchor("decision", "Use Postgres", "high", now=NOW)
    store.save_anchor(anchor)
    store.save_anchor(anchor.model_copy(update={"priority": "critical"}))

    [stored] = store.load_all_anchors()
    assert stored.id == anchor.id
    assert stored.priority == "critical"


def test_history_keeps_newest_entries(tmp_path: Path) -> None:
    store = GovernanceStore(tmp_path)
    state = store.read_state()
    for index in range(MAX_HISTORY + 5):
        state = append_history(state, HistoryEntry(action=f"step-{index}", result="pass"))
    store.write_state(state)

    history = store.read_state().history
    assert len(history) == MAX_HISTORY
    assert history[0].action == "step-5"


@pytest.mark.parametrize(
    "document",
    [
        {"epics": 5},
        {"epics": ["oops"]},
        {"epics": [{"name": "Legacy", "category": ["not", "a", "string"]}]},
    ],
)
def test_malformed_task_shapes_fall_back_to_defaults(tmp_path: Path, caplog, document: dict) -> None:
    caplog.set_level(logging.WARNING, logger="aegis_mcp.storage.json_store")
    (tmp_path / "tasks.json").write_text(json.dumps(document), encoding="utf-8")

    assert GovernanceStore(tmp_path).read_tasks() == TaskStore()
    assert len(caplog.records) == 1
