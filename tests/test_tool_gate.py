from __future__ import annotations

import pytest

from aegis_mcp.config import GateConfig
from aegis_mcp.engine import GovernanceEngine
from aegis_mcp.errors import ToolGateError
from aegis_mcp.gate import SessionRegistry, ToolGate, session_id_from


class RecordingAudit:
    def __init__(self, *, fail: bool = False) -> None:
        self.checks: list = []
        self.violations: list[dict] = []
        self.fail = fail

    def record_permission_check(self, check) -> None:
        if self.fail:
            raise RuntimeError("chroma offline")
        self.checks.append(check)

    def record_violation(self, **kwargs) -> None:
        self.violations.append(kwargs)


def make_gate(active_task: str | None = "task-1", **kwargs) -> ToolGate:
    return ToolGate(active_task_lookup=lambda _session_id: active_task, **kwargs)


def test_before_raises_for_denied_tool() -> None:
    audit = RecordingAudit()
    gate = make_gate(audit=audit)
    gate.set_agent("s-1", "research-helper")

    with pytest.raises(ToolGateError) as excinfo:
        gate.before({"tool": "write", "sessionID": "s-1"}, {"args": {}})

    error = excinfo.value
    assert (error.role, error.tool) == ("researcher", "write")
    assert "Delegate to builder agent using task tool" in str(error)
    assert audit.violations == [
        {"session_id": "s-1", "tool": "write", "role": "researcher", "reason": error.decision.reason}
    ]


def test_before_stamps_allowed_args() -> None:
    gate = make_gate()
    gate.set_agent("s-1", "build")
    output = {"args": {"path": "src/app.py"}}

    result = gate.before({"tool": "edit", "sessionID": "s-1"}, output)

    assert result.allowed
    assert output["args"] == {
        "path": "src/app.py",
        "__aegis_checked": True,
        "__aegis_role": "builder",
        "__aegis_session": "s-1",
    }


def test_unbound_session_uses_restricted_role() -> None:
    gate = make_gate()

    assert gate.check("fresh", "read").role == "researcher"
    assert not gate.check("fresh", "bash").allowed


def test_governance_tools_are_exempt_but_recorded() -> None:
    gate = make_gate(active_task=None)
    gate.set_agent("s-1", "research-helper")

    result = gate.check("s-1", "aegis_task")

    assert result.allowed and result.exempt
    assert [c.tool for c in gate.permission_history("s-1")] == ["aegis_task"]


def test_write_requires_active_task() -> None:
    gate = make_gate(active_task=None)
    gate.set_agent("s-1", "build")

    denied = gate.check("s-1", "edit")
    assert not denied.allowed
    assert "No active task" in denied.decision.reason
    assert "action=start" in denied.decision.pivot

    assert gate.check("s-1", "bash").allowed


def test_active_task_enforcement_can_be_disabled() -> None:
    gate = make_gate(active_task=None, config=GateConfig(enforce_active_task=False))
    gate.set_agent("s-1", "build")

    assert gate.check("s-1", "edit").allowed


def test_history_is_append_only_and_tracks_first_tool() -> None:
    registry = SessionRegistry()
    gate = make_gate(registry=registry)
    for tool in ("read", "grep", "write"):
        gate.check("s-1", tool)

    assert [c.tool for c in gate.permission_history("s-1")] == ["read", "grep", "write"]
    assert registry.get("s-1").first_tool == "read"
    assert gate.permission_history("missing") == []


def test_after_replaces_output_of_denied_call() -> None:
    gate = make_gate()
    with pytest.raises(ToolGateError):
        gate.before({"tool": "write", "sessionID": "s-1"}, {})
    output = {"title": "write", "output": "wrote 3 lines", "metadata": {"bytes": 12}}

    replaced = gate.after({"tool": "write", "sessionID": "s-1"}, output)

    assert replaced is True
    assert output["title"] == "GOVERNANCE VIOLATION: write"
    assert "ORIGINAL OUTPUT (executed despite governance):\nwrote 3 lines\n---" in output["output"]
    assert output["output"].endswith("This action was not permitted for the current agent role.")
    assert output["metadata"] == {
        "bytes": 12,
        "__aegis_violation": True,
        "__aegis_role": "researcher",
        "__aegis_pivot": "output_replacement",
    }


def test_after_leaves_allowed_output_alone() -> None:
    gate = make_gate()
    gate.check("s-1", "read")
    output = {"title": "read", "output": "contents"}

    assert gate.after({"tool": "read", "sessionID": "s-1"}, output) is False
    assert output == {"title": "read", "output": "contents"}


def test_after_never_raises() -> None:
    gate = make_gate()
    gate.check("s-1", "write")

    assert gate.after({"tool": "write", "sessionID": "s-1"}, None) is False  # type: ignore[arg-type]


def test_audit_failures_do_not_block_checks() -> None:
    gate = make_gate(audit=RecordingAudit(fail=True))

    assert gate.check("s-1", "read").allowed


def test_session_id_from_payload() -> None:
    assert session_id_from({"sessionID": "a"}) == "a"
    assert session_id_from({"session_id": "b"}) == "b"
    assert session_id_from({}) == "unknown"


def test_engine_gate_follows_session_task(engine: GovernanceEngine) -> None:
    engine.gate.set_agent("s-1", "build")
    assert not engine.gate.check("s-1", "edit").allowed

    engine.hierarchy.create_epic("Auth")
    task = engine.hierarchy.create_task("Login").task
    engine.hierarchy.start(task.id, session_id="s-1")

    assert engine.gate.check("s-1", "edit").allowed
