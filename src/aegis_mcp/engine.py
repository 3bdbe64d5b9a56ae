"""Wires one instance of every governance component for a project."""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import Callable, Iterable

from .actions import AnchorActionSet, TaskActionSet
from .anchors import AnchorStore
from .compaction import CompactionContextBuilder
from .config import AegisSettings, GovernanceConfig
from .delegation import DelegationLedger
from .gate import SessionRegistry, ToolGate
from .hierarchy import TaskHierarchy
from .profiles import AgentProfile, ProfileLoadError, ProfileLoader
from .schemas.state import GovernanceState, HistoryEntry, append_history
from .schemas.timestamp import utcnow
from .storage import AuditTrail, AuditUnavailableError, GovernanceStore

logger = logging.getLogger(__name__)


class GovernanceEngine:
    """All governance state for one project directory."""

    def __init__(
        self,
        directory: Path,
        *,
        default_agent: str = "coordinator",
        profiles: Iterable[AgentProfile] = (),
        audit: AuditTrail | None = None,
        config: GovernanceConfig | None = None,
        clock: Callable[[], datetime] | None = None,
        backup: bool = False,
    ) -> None:
        self.clock = clock or utcnow
        self.store = GovernanceStore(Path(directory), backup=backup, clock=self.clock)
        self.config = config or self.store.read_config()
        self.default_agent = default_agent
        self.profiles = list(profiles)
        self.audit = audit

        self.ledger = DelegationLedger(self.store, profiles=self.profiles, audit=audit, clock=self.clock)
        self.hierarchy = TaskHierarchy(
            self.store,
            ledger=self.ledger,
            stale_hours=self.config.tasks.session_stale_hours,
            clock=self.clock,
        )
        self.anchors = AnchorStore(self.store, clock=self.clock)
        self.sessions = SessionRegistry()
        self.gate = ToolGate(
            registry=self.sessions,
            config=self.config.gate,
            active_task_lookup=self.hierarchy.active_task_for_session,
            profiles=self.profiles,
            audit=audit,
        )
        self.compaction = CompactionContextBuilder(self.store, self.anchors, self.hierarchy)
        self.task_actions = TaskActionSet(self)
        self.anchor_actions = AnchorActionSet(self)

    @classmethod
    def from_settings(cls, settings: AegisSettings, **overrides) -> "GovernanceEngine":
        """Build an engine from runtime settings, loading profiles and the audit trail."""

        try:
            profiles = list(ProfileLoader(settings.profile_paths).load_all().values())
        except ProfileLoadError as exc:
            logger.error("Agent profiles could not be loaded", extra={"error": str(exc)})
            profiles = []

        audit: AuditTrail | None = None
        if settings.audit_path is not None:
            try:
                audit = AuditTrail(settings.audit_path)
                audit.ping()
            except AuditUnavailableError as exc:
                logger.warning("Audit trail disabled", extra={"error": str(exc)})
                audit = None

        overrides.setdefault("profiles", profiles)
        overrides.setdefault("audit", audit)
        overrides.setdefault("default_agent", settings.default_agent)
        return cls(settings.governance_dir, **overrides)

    def initialize(self) -> GovernanceState:
        """Create the directory layout and default documents when missing."""

        with self.store.lock:
            self.store.ensure_layout()
            state = self.store.read_state()
            if not state.initialized:
                state = state.model_copy(update={"initialized": True})
                self.store.write_state(state)
            if not (self.store.directory / "config.json").exists():
                self.store.write_config(self.config)
            return state

    def agent_for_session(self, session_id: str | None) -> str:
        if session_id:
            tracker = self.sessions.get(session_id)
            if tracker is not None and tracker.agent_name:
                return tracker.agent_name
            record = self.store.load_session(session_id)
            if record is not None and record.agent_name:
                return record.agent_name
        return self.default_agent

    def record_history(self, entry: HistoryEntry) -> None:
        with self.store.lock:
            self.store.write_state(append_history(self.store.read_state(), entry))


__all__ = ["GovernanceEngine"]
