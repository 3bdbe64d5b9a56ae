"""Chroma-backed audit trail of governance events."""

from __future__ import annotations

import json
import uuid
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Iterable, Protocol

from ..errors import AegisError
from ..schemas.delegation import Delegation
from ..schemas.permission import PermissionCheck


class AuditUnavailableError(AegisError):
    """Raised when the Chroma client cannot be constructed."""


class CollectionProtocol(Protocol):
    """Protocol for the minimal Chroma collection API used by the audit trail."""

    def add(
        self,
        *,
        documents: Iterable[str],
        metadatas: Iterable[dict[str, Any]],
        ids: Iterable[str],
    ) -> None:
        ...

    def get(
        self,
        *,
        ids: Iterable[str] | None = None,
        where: dict[str, Any] | None = None,
        limit: int | None = None,
    ) -> dict[str, list[Any]]:
        ...


class ClientProtocol(Protocol):
    def get_or_create_collection(self, name: str) -> CollectionProtocol:
        ...


@dataclass(slots=True)
class AuditEvent:
    """A stored governance event."""

    id: str
    session_id: str
    event_type: str
    document: str
    metadata: dict[str, Any]
    timestamp: datetime


class AuditTrail:
    """Append-only log of permission checks, violations and delegations."""

    def __init__(
        self,
        path: Path,
        *,
        collection_name: str = "aegis_audit",
        client_factory: Callable[[], ClientProtocol] | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._path = Path(path)
        self._collection_name = collection_name
        self._client_factory = client_factory or self._default_client_factory
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._client: ClientProtocol | None = None
        self._collection: CollectionProtocol | None = None
        self._counters: dict[str, int] = defaultdict(int)

    def _default_client_factory(self) -> ClientProtocol:
        import chromadb

        try:
            return chromadb.PersistentClient(path=str(self._path))
        except Exception as exc:  # chromadb raises a variety of backend errors
            raise AuditUnavailableError(f"Cannot open audit store at {self._path}: {exc}") from exc

    def _ensure_collection(self) -> CollectionProtocol:
        if self._collection is None:
            client = self._client or self._client_factory()
            self._client = client
            self._collection = client.get_or_create_collection(self._collection_name)
        return self._collection

    def _convert_result(self, result: dict[str, list[Any]]) -> list[AuditEvent]:
        events: list[AuditEvent] = []
        ids = result.get("ids", [])
        documents = result.get("documents", [])
        metadatas = result.get("metadatas", [])
        for event_id, document, metadata in zip(ids, documents, metadatas):
            timestamp_raw = metadata.get("timestamp")
            timestamp = (
                datetime.fromisoformat(timestamp_raw)
                if isinstance(timestamp_raw, str)
                else self._clock()
            )
            events.append(
                AuditEvent(
                    id=event_id,
                    session_id=metadata.get("session_id", ""),
                    event_type=metadata.get("event_type", ""),
                    document=document,
                    metadata=metadata,
                    timestamp=timestamp,
                )
            )
        events.sort(key=lambda event: (event.timestamp, event.metadata.get("sequence", 0)))
        return events

    def ping(self) -> bool:
        """Verify that the underlying collection can be obtained."""

        self._ensure_collection()
        return True

    def record_event(
        self,
        *,
        session_id: str,
        event_type: str,
        body: Any,
        metadata: dict[str, Any] | None = None,
    ) -> AuditEvent:
        collection = self._ensure_collection()
        counter = self._counters[session_id] = self._counters[session_id] + 1
        event_id = f"{session_id}:{uuid.uuid4().hex}"
        timestamp = self._clock()

        document = body if isinstance(body, str) else json.dumps(body, default=str)
        record_metadata: dict[str, Any] = {
            "session_id": session_id,
            "event_type": event_type,
            "timestamp": timestamp.isoformat(),
            "sequence": counter,
        }
        if metadata:
            # Chroma metadata values must be scalars and not None.
            record_metadata.update({k: v for k, v in metadata.items() if v is not None})

        collection.add(documents=[document], metadatas=[record_metadata], ids=[event_id])

        return AuditEvent(
            id=event_id,
            session_id=session_id,
            event_type=event_type,
            document=document,
            metadata=record_metadata,
            timestamp=timestamp,
        )

    def record_permission_check(self, check: PermissionCheck) -> AuditEvent:
        return self.record_event(
            session_id=check.session_id,
            event_type="permission_check",
            body=check.model_dump(mode="json"),
            metadata={
                "tool": check.tool,
                "role": check.role,
                "allowed": check.decision.allowed,
                "category": check.decision.category,
            },
        )

    def record_violation(self, *, session_id: str, tool: str, role: str, reason: str) -> AuditEvent:
        return self.record_event(
            session_id=session_id,
            event_type="violation",
            body={"tool": tool, "role": role, "reason": reason},
            metadata={"tool": tool, "role": role},
        )

    def record_delegation(self, delegation: Delegation, *, session_id: str = "ledger") -> AuditEvent:
        return self.record_event(
            session_id=session_id,
            event_type="delegation",
            body=delegation.model_dump(mode="json"),
            metadata={
                "delegation_id": delegation.id,
                "task_id": delegation.task_id,
                "status": delegation.status,
                "to_agent": delegation.to_agent,
            },
        )

    def fetch_session_events(self, session_id: str, *, limit: int | None = None) -> list[AuditEvent]:
        collection = self._ensure_collection()
        result = collection.get(where={"session_id": session_id}, limit=limit)
        return self._convert_result(result)

    def search_events(
        self,
        query: str | None = None,
        *,
        filters: dict[str, Any] | None = None,
        limit: int | None = None,
    ) -> list[AuditEvent]:
        collection = self._ensure_collection()
        result = collection.get(where=filters, limit=None)
        events = self._convert_result(result)
        if query:
            needle = query.lower()
            events = [
                event
                for event in events
                if needle in event.document.lower()
                or any(needle in str(value).lower() for value in event.metadata.values())
            ]
        return events[:limit] if limit else events


__all__ = ["AuditEvent", "AuditTrail", "AuditUnavailableError"]
