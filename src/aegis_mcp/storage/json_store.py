"""JSON document persistence under ``<project>/.aegis/``."""

from __future__ import annotations

import json
import logging
import os
import shutil
import tempfile
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, TypeVar

from pydantic import BaseModel, Field, ValidationError

from ..config import GovernanceConfig
from ..errors import StorageError
from ..schemas.anchor import Anchor
from ..schemas.delegation import DelegationStore
from ..schemas.state import GovernanceState, SessionRecord
from ..schemas.task import TaskStore, migrate_task_store

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

STATE_FILE = "state.json"
CONFIG_FILE = "config.json"
ANCHORS_FILE = "anchors.json"
SESSIONS_FILE = "sessions.json"
TASKS_FILE = "tasks.json"
DELEGATIONS_FILE = "delegations.json"
BACKUP_DIR = "backups"
LOG_DIR = "logs"


class AnchorDocument(BaseModel):
    anchors: list[Anchor] = Field(default_factory=list)


class SessionDocument(BaseModel):
    sessions: dict[str, SessionRecord] = Field(default_factory=dict)


class GovernanceStore:
    """Read and write the governance documents of one project.

    Reads never raise: a missing file yields the model default and a corrupt
    one is logged at warning level before falling back to the default. Writes
    go to a temporary file that is then moved over the target.
    """

    def __init__(
        self,
        directory: Path,
        *,
        backup: bool = False,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._directory = Path(directory)
        self._backup = backup
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        # Held by services across read-compute-write cycles.
        self.lock = threading.RLock()

    @property
    def directory(self) -> Path:
        return self._directory

    @property
    def log_dir(self) -> Path:
        return self._directory / LOG_DIR

    @property
    def backup_dir(self) -> Path:
        return self._directory / BACKUP_DIR

    def ensure_layout(self) -> None:
        for path in (self._directory, self.log_dir, self.backup_dir):
            path.mkdir(parents=True, exist_ok=True)

    # ─── low level ───────────────────────────────────────────────────

    def _read_raw(self, name: str) -> dict | None:
        path = self._directory / name
        if not path.exists():
            return None
        try:
            document = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning(
                "Unreadable governance document, using defaults",
                extra={"path": str(path), "error": str(exc)},
            )
            return None
        if not isinstance(document, dict):
            logger.warning(
                "Governance document is not an object, using defaults",
                extra={"path": str(path)},
            )
            return None
        return document

    def _read_model(self, name: str, model: type[ModelT], raw: dict | None = None) -> ModelT:
        document = raw if raw is not None else self._read_raw(name)
        if document is None:
            return model()
        try:
            return model.model_validate(document)
        except ValidationError as exc:
            logger.warning(
                "Governance document failed validation, using defaults",
                extra={"path": str(self._directory / name), "error": str(exc)},
            )
            return model()

    def _write_model(self, name: str, value: BaseModel, *, backup: bool = False) -> Path:
        path = self._directory / name
        payload = value.model_dump_json(indent=2)
        try:
            self._directory.mkdir(parents=True, exist_ok=True)
            if backup and path.exists():
                self._copy_backup(path)
            fd, temp_name = tempfile.mkstemp(dir=self._directory, prefix=f".{name}.", suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as handle:
                    handle.write(payload)
                os.replace(temp_name, path)
            except BaseException:
                Path(temp_name).unlink(missing_ok=True)
                raise
        except OSError as exc:
            raise StorageError(f"Failed to write {path}: {exc}") from exc
        return path

    def _copy_backup(self, path: Path) -> Path:
        self.backup_dir.mkdir(parents=True, exist_ok=True)
        stamp = self._clock().strftime("%Y%m%dT%H%M%S%f")
        target = self.backup_dir / f"{path.stem}-{stamp}{path.suffix}"
        shutil.copy2(path, target)
        return target

    # ─── state / config ──────────────────────────────────────────────

    def read_state(self) -> GovernanceState:
        return self._read_model(STATE_FILE, GovernanceState)

    def write_state(self, state: GovernanceState) -> None:
        self._write_model(STATE_FILE, state)

    def read_config(self) -> GovernanceConfig:
        return self._read_model(CONFIG_FILE, GovernanceConfig)

    def write_config(self, config: GovernanceConfig) -> None:
        self._write_model(CONFIG_FILE, config)

    # ─── anchors ─────────────────────────────────────────────────────

    def load_all_anchors(self) -> list[Anchor]:
        return list(self._read_model(ANCHORS_FILE, AnchorDocument).anchors)

    def save_anchor(self, anchor: Anchor) -> None:
        with self.lock:
            anchors = [item for item in self.load_all_anchors() if item.id != anchor.id]
            anchors.append(anchor)
            self._write_model(ANCHORS_FILE, AnchorDocument(anchors=anchors))

    # ─── sessions ────────────────────────────────────────────────────

    def list_sessions(self) -> list[SessionRecord]:
        return list(self._read_model(SESSIONS_FILE, SessionDocument).sessions.values())

    def load_session(self, session_id: str) -> SessionRecord | None:
        return self._read_model(SESSIONS_FILE, SessionDocument).sessions.get(session_id)

    def save_session(self, record: SessionRecord) -> None:
        with self.lock:
            document = self._read_model(SESSIONS_FILE, SessionDocument)
            sessions = {**document.sessions, record.session_id: record}
            self._write_model(SESSIONS_FILE, SessionDocument(sessions=sessions))

    # ─── tasks / delegations ─────────────────────────────────────────

    def read_tasks(self) -> TaskStore:
        raw = self._read_raw(TASKS_FILE)
        if raw is None:
            return TaskStore()
        return self._read_model(TASKS_FILE, TaskStore, raw=migrate_task_store(raw))

    def write_tasks(self, store: TaskStore) -> None:
        self._write_model(TASKS_FILE, store, backup=self._backup)

    def read_delegations(self) -> DelegationStore:
        return self._read_model(DELEGATIONS_FILE, DelegationStore)

    def write_delegations(self, store: DelegationStore) -> None:
        self._write_model(DELEGATIONS_FILE, store, backup=self._backup)


__all__ = [
    "AnchorDocument",
    "GovernanceStore",
    "SessionDocument",
]
