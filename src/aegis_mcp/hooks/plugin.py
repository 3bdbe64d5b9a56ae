"""Host hook surface.

The host calls each hook with ``(input, output)`` dictionaries and reads back
whatever the hook wrote into ``output``. Only the tool gate's before-hook may
raise; every other hook logs its failures and returns.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Callable

from ..config import AegisSettings, get_settings
from ..engine import GovernanceEngine
from ..schemas.state import HistoryEntry, SessionRecord
from ..schemas.tool_state import ToolStateCompleted, ToolStateError, parse_tool_part
from ..server import configure_logging

logger = logging.getLogger(__name__)

Hook = Callable[[dict[str, Any], dict[str, Any]], Any]

LOG_FILE_NAME = "aegis.log"


def _agent_name(raw: Any) -> str | None:
    # Some hosts pass the agent as an object rather than its name.
    if isinstance(raw, dict):
        raw = raw.get("name")
    if raw is None:
        return None
    name = str(raw).strip()
    return name or None


class GovernancePlugin:
    """Adapts a :class:`GovernanceEngine` to the host's hook names."""

    def __init__(self, engine: GovernanceEngine) -> None:
        self.engine = engine

    def hooks(self) -> dict[str, Hook]:
        return {
            "tool.execute.before": self.tool_before,
            "tool.execute.after": self.tool_after,
            "chat.message": self.chat_message,
            "experimental.session.compacting": self.engine.compaction.hook,
            "event": self.event,
        }

    def tool_before(self, input: dict[str, Any], output: dict[str, Any]) -> None:
        self.engine.gate.before(input, output)

    def tool_after(self, input: dict[str, Any], output: dict[str, Any]) -> None:
        self.engine.gate.after(input, output)

    def chat_message(self, input: dict[str, Any], output: dict[str, Any]) -> None:
        try:
            session_id = input.get("sessionID") or input.get("session_id")
            agent = _agent_name(input.get("agent"))
            if not session_id or agent is None:
                return
            self.engine.gate.set_agent(session_id, agent)
            store = self.engine.store
            with store.lock:
                record = store.load_session(session_id) or SessionRecord(session_id=session_id)
                if record.agent_name != agent:
                    store.save_session(
                        record.model_copy(update={"agent_name": agent, "last_activity": self.engine.clock()})
                    )
        except Exception:
            logger.exception("chat.message hook failed")

    def event(self, input: dict[str, Any], output: dict[str, Any] | None = None) -> None:
        try:
            event = input.get("event", input)
            event_type = event.get("type", "")
            props = event.get("properties") or {}
            info = props.get("info") if isinstance(props.get("info"), dict) else {}
            session_id = info.get("id") or props.get("sessionID")
            logger.debug("Event received", extra={"event_type": event_type, "session_id": session_id})

            if event_type == "session.created" and session_id:
                self._session_created(session_id)
            elif event_type in ("session.deleted", "session.ended") and session_id:
                self._session_closed(session_id)
            elif event_type in ("session.idle", "session.compacted"):
                logger.info("Session %s", event_type.split(".", 1)[1], extra={"session_id": session_id})
            elif event_type == "message.part.updated":
                self._tool_part_updated(props.get("part") or {})
        except Exception:
            logger.exception("event hook failed")

    def _session_created(self, session_id: str) -> None:
        engine = self.engine
        now = engine.clock()
        with engine.store.lock:
            if engine.store.load_session(session_id) is None:
                engine.store.save_session(SessionRecord(session_id=session_id, created_at=now, last_activity=now))
        engine.record_history(
            HistoryEntry(
                timestamp=now,
                action="session.created",
                result="pass",
                details={"session_id": session_id},
            )
        )
        logger.info("Session created", extra={"session_id": session_id})

    def _session_closed(self, session_id: str) -> None:
        engine = self.engine
        engine.sessions.teardown(session_id)
        with engine.store.lock:
            record = engine.store.load_session(session_id)
            if record is not None:
                engine.store.save_session(
                    record.model_copy(
                        update={"status": "closed", "active_task_id": None, "last_activity": engine.clock()}
                    )
                )
        logger.info("Session closed", extra={"session_id": session_id})

    def _tool_part_updated(self, part: dict[str, Any]) -> None:
        tool_part = parse_tool_part(part)
        if tool_part is None:
            return
        state = tool_part.state
        if isinstance(state, (ToolStateCompleted, ToolStateError)):
            logger.info(
                "Tool run finished",
                extra={
                    "tool": tool_part.tool,
                    "status": state.status,
                    "session_id": tool_part.session_id,
                    "duration_ms": state.duration_ms,
                },
            )


def create_plugin(
    project_dir: Path | None = None,
    *,
    settings: AegisSettings | None = None,
) -> GovernancePlugin:
    """Initialise the engine for ``project_dir`` and route logs to its log file."""

    settings = settings or get_settings()
    if project_dir is not None:
        settings = settings.model_copy(update={"project_dir": Path(project_dir)})
    engine = GovernanceEngine.from_settings(settings)
    engine.initialize()
    configure_logging(settings.log_level, log_file=engine.store.log_dir / LOG_FILE_NAME)
    logger.info("Governance plugin ready", extra={"directory": str(engine.store.directory)})
    return GovernancePlugin(engine)


__all__ = ["GovernancePlugin", "Hook", "create_plugin"]
