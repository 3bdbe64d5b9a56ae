"""Aegis MCP diagnostics CLI."""

from __future__ import annotations

import argparse
import json

from aegis_mcp.config import AegisSettings
from aegis_mcp.engine import GovernanceEngine
from aegis_mcp.schemas.anchor import format_anchor_line, score_anchor
from aegis_mcp.schemas.permission import AGENT_ROLES, decide, detect_agent_role
from aegis_mcp.storage import AuditTrail, AuditUnavailableError


def load_engine(settings: AegisSettings) -> GovernanceEngine:
    return GovernanceEngine(settings.governance_dir, default_agent=settings.default_agent)


def load_audit(settings: AegisSettings) -> AuditTrail:
    if settings.audit_path is None:
        print("Audit trail not configured; set AEGIS_AUDIT_PATH")
        raise SystemExit(1)
    return AuditTrail(settings.audit_path)


def cmd_tasks(args: argparse.Namespace) -> None:
    engine = load_engine(AegisSettings())
    if args.json:
        print(engine.hierarchy.snapshot().model_dump_json(indent=2))
    else:
        print(engine.hierarchy.render_tree())


def cmd_delegations(args: argparse.Namespace) -> None:
    engine = load_engine(AegisSettings())
    ledger = engine.ledger.snapshot()
    if args.json:
        print(ledger.model_dump_json(indent=2))
    else:
        print(engine.ledger.format_ledger())


def cmd_anchors(args: argparse.Namespace) -> None:
    engine = load_engine(AegisSettings())
    anchors = engine.anchors.select(args.budget) if args.budget else engine.anchors.all()
    payload = [
        {
            "id": anchor.id,
            "line": format_anchor_line(anchor),
            "score": round(score_anchor(anchor), 2),
            "stale": anchor.timestamp.is_stale,
        }
        for anchor in anchors
    ]
    print(json.dumps(payload, indent=2))


def cmd_metrics(args: argparse.Namespace) -> None:
    engine = load_engine(AegisSettings())
    tasks = engine.hierarchy.snapshot()
    ledger = engine.ledger.snapshot()
    anchors = engine.anchors.all()
    state = engine.store.read_state()

    task_counts: dict[str, int] = {}
    for epic in tasks.epics:
        for task in epic.tasks:
            task_counts[task.status] = task_counts.get(task.status, 0) + 1

    delegation_counts: dict[str, int] = {}
    for delegation in ledger.delegations:
        delegation_counts[delegation.status] = delegation_counts.get(delegation.status, 0) + 1

    blocked = sum(1 for entry in state.history if entry.result == "blocked")
    metrics = {
        "phase": state.phase,
        "epics_total": len(tasks.epics),
        "task_status_counts": task_counts,
        "delegations_total": len(ledger.delegations),
        "delegation_status_counts": delegation_counts,
        "anchors_total": len(anchors),
        "anchors_stale": sum(1 for anchor in anchors if anchor.timestamp.is_stale),
        "history_entries": len(state.history),
        "history_blocked": blocked,
        "stale_tasks": [task.id for task in engine.hierarchy.stale_tasks()],
        "chain_warnings": [warning.message for warning in engine.hierarchy.chain_breaks()],
    }
    print(json.dumps(metrics, indent=2))


def cmd_check(args: argparse.Namespace) -> None:
    role = args.role or detect_agent_role(args.agent or "")
    if role not in AGENT_ROLES:
        print(f"Unknown role '{role}'")
        raise SystemExit(2)
    decision = decide(role, args.tool)
    print(json.dumps({"role": role, "tool": args.tool, **decision.model_dump()}, indent=2))


def cmd_audit(args: argparse.Namespace) -> None:
    settings = AegisSettings()
    trail = load_audit(settings)
    try:
        if args.session_id:
            events = trail.fetch_session_events(args.session_id)
        else:
            filters = {"event_type": args.event_type} if args.event_type else None
            events = trail.search_events(args.query, filters=filters)
    except AuditUnavailableError as exc:
        print(f"Audit trail unavailable: {exc}")
        raise SystemExit(1)

    if args.limit is not None and args.limit > 0:
        events = events[-args.limit :]

    payload = [
        {
            "event_id": event.id,
            "session_id": event.session_id,
            "event_type": event.event_type,
            "timestamp": event.timestamp.isoformat(),
            "metadata": event.metadata,
        }
        for event in events
    ]
    print(json.dumps(payload, indent=2))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Aegis MCP diagnostics")
    sub = parser.add_subparsers(dest="cmd")

    p_tasks = sub.add_parser("tasks", help="Show the task hierarchy")
    p_tasks.add_argument("--json", action="store_true", help="Output JSON")
    p_tasks.set_defaults(func=cmd_tasks)

    p_delegations = sub.add_parser("delegations", help="Show the delegation ledger")
    p_delegations.add_argument("--json", action="store_true", help="Output JSON")
    p_delegations.set_defaults(func=cmd_delegations)

    p_anchors = sub.add_parser("anchors", help="List anchors with their scores")
    p_anchors.add_argument("--budget", type=int, default=None, help="Apply compaction selection")
    p_anchors.set_defaults(func=cmd_anchors)

    p_metrics = sub.add_parser("metrics", help="Show governance counts")
    p_metrics.set_defaults(func=cmd_metrics)

    p_check = sub.add_parser("check", help="Evaluate the permission matrix for a tool")
    p_check.add_argument("tool")
    group = p_check.add_mutually_exclusive_group(required=True)
    group.add_argument("--role")
    group.add_argument("--agent", help="Agent name; role is detected from it")
    p_check.set_defaults(func=cmd_check)

    p_audit = sub.add_parser("audit", help="Query the audit trail")
    p_audit.add_argument("--session-id")
    p_audit.add_argument("--event-type")
    p_audit.add_argument("--query")
    p_audit.add_argument(
        "--limit",
        type=int,
        default=None,
        help="If provided, show only the latest N events",
    )
    p_audit.set_defaults(func=cmd_audit)

    return parser


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not hasattr(args, "func"):
        parser.print_help()
        return
    args.func(args)


if __name__ == "__main__":
    main()
