"""FastMCP server bootstrap for Aegis."""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from fastmcp import Context, FastMCP

from . import __version__
from .config import AegisSettings, get_settings
from .engine import GovernanceEngine
from .schemas.task import get_active_chain
from .tools import register_tools

LOG_FORMAT = "[%(asctime)s] [%(levelname)s] %(name)s: %(message)s"


def configure_logging(level: str, log_file: Optional[Path] = None) -> None:
    """Configure root logging; with ``log_file`` records go there instead of the console."""

    handlers: list[logging.Handler] | None = None
    if log_file is not None:
        log_file = Path(log_file)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers = [logging.FileHandler(log_file, encoding="utf-8")]

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        handlers=handlers,
        force=log_file is not None,
    )


def create_server(
    settings: Optional[AegisSettings] = None,
    engine: GovernanceEngine | None = None,
) -> FastMCP:
    """Instantiate the FastMCP server with the governance tools and status resource."""

    settings = settings or get_settings()
    engine = engine or GovernanceEngine.from_settings(settings)
    engine.initialize()

    audit_metadata = {
        "available": engine.audit is not None,
        "path": str(settings.audit_path) if settings.audit_path else None,
    }

    server = FastMCP(
        name="Aegis MCP",
        version=__version__,
        instructions=(
            "Aegis governs agent sessions: start a task with aegis_task before "
            "writing files, record decisions with aegis_anchor, and delegate "
            "through aegis_task action=delegate."
        ),
    )

    handles = register_tools(server, engine=engine)

    @server.resource(
        "resource://aegis/status",
        name="aegis_status",
        title="Aegis MCP Status",
        description="Current governance state: active work, anchors and delegations.",
        mime_type="application/json",
        tags={"status", "governance"},
    )
    def status_resource(context: Context) -> str:
        """Return a JSON string summarizing governance state."""

        tasks = engine.hierarchy.snapshot()
        chain = get_active_chain(tasks)
        state = engine.store.read_state()
        anchors = engine.anchors.all()
        ledger = engine.ledger.snapshot()

        task_counts: dict[str, int] = {}
        for epic in tasks.epics:
            for task in epic.tasks:
                task_counts[task.status] = task_counts.get(task.status, 0) + 1

        delegation_counts: dict[str, int] = {}
        for delegation in ledger.delegations:
            delegation_counts[delegation.status] = delegation_counts.get(delegation.status, 0) + 1

        payload = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "server_version": __version__,
            "log_level": settings.log_level,
            "directory": str(engine.store.directory),
            "phase": state.phase,
            "profiles": {
                "count": len(engine.profiles),
                "ids": sorted(profile.id for profile in engine.profiles),
            },
            "audit": audit_metadata,
            "tasks": {
                "active_epic": chain.epic.name if chain.epic else None,
                "active_task": chain.task.name if chain.task else None,
                "epic_count": len(tasks.epics),
                "status_counts": task_counts,
                "stale": [task.id for task in engine.hierarchy.stale_tasks()],
                "chain_warnings": [warning.type for warning in engine.hierarchy.chain_breaks()],
            },
            "anchors": {
                "count": len(anchors),
                "stale": sum(1 for anchor in anchors if anchor.timestamp.is_stale),
            },
            "delegations": {
                "count": len(ledger.delegations),
                "status_counts": delegation_counts,
            },
            "sessions": {
                "tracked": len(engine.sessions),
                "persisted": len(engine.store.list_sessions()),
            },
            "request_id": getattr(context, "request_id", None),
        }
        return json.dumps(payload)

    setattr(server, "engine", engine)
    setattr(server, "audit_metadata", audit_metadata)
    setattr(server, "tool_handles", handles)
    return server


def main() -> None:
    """Entry point for running the Aegis MCP server via CLI."""

    settings = get_settings()
    configure_logging(settings.log_level)

    server = create_server(settings)
    logging.getLogger(__name__).info(
        "Launching Aegis MCP server",
        extra={
            "version": __version__,
            "log_level": settings.log_level,
            "directory": str(settings.governance_dir),
            "audit_available": getattr(server, "audit_metadata", {}).get("available"),
        },
    )
    server.run()


if __name__ == "__main__":
    main()
