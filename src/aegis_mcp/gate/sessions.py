"""Per-session role trackers held in memory by the tool gate."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field

from ..schemas.permission import PermissionCheck


@dataclass(slots=True)
class SessionRoleTracker:
    session_id: str
    agent_role: str | None = None
    agent_name: str | None = None
    depth: int = 0
    first_tool: str | None = None
    delegation_chain: list[str] = field(default_factory=list)
    permission_checks: list[PermissionCheck] = field(default_factory=list)

    def record(self, check: PermissionCheck) -> None:
        self.permission_checks.append(check)

    def last_check(self) -> PermissionCheck | None:
        return self.permission_checks[-1] if self.permission_checks else None


class SessionRegistry:
    """Owns the trackers for every live session.

    Trackers are never persisted; a torn-down session starts from scratch if
    the host reuses its id.
    """

    def __init__(self) -> None:
        self._trackers: dict[str, SessionRoleTracker] = {}
        self._lock = threading.RLock()

    def get_or_create(self, session_id: str) -> SessionRoleTracker:
        with self._lock:
            tracker = self._trackers.get(session_id)
            if tracker is None:
                tracker = SessionRoleTracker(session_id=session_id)
                self._trackers[session_id] = tracker
            return tracker

    def get(self, session_id: str) -> SessionRoleTracker | None:
        with self._lock:
            return self._trackers.get(session_id)

    def teardown(self, session_id: str) -> SessionRoleTracker | None:
        with self._lock:
            return self._trackers.pop(session_id, None)

    def clear(self) -> None:
        with self._lock:
            self._trackers.clear()

    def session_ids(self) -> list[str]:
        with self._lock:
            return list(self._trackers)

    def __len__(self) -> int:
        return len(self._trackers)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._trackers


__all__ = ["SessionRegistry", "SessionRoleTracker"]
