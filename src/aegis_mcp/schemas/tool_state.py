"""Host tool-run states, parsed from ``message.part.updated`` events.

Only terminal states carry an end time, so a running tool can never be
reported with a duration.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter, ValidationError, field_validator


class _ToolStateBase(BaseModel):
    input: dict[str, Any] = Field(default_factory=dict)

    @field_validator("started_at", "ended_at", mode="before", check_fields=False)
    @classmethod
    def _coerce_epoch_millis(cls, value: Any) -> Any:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
        return value


class ToolStatePending(_ToolStateBase):
    status: Literal["pending"] = "pending"


class ToolStateRunning(_ToolStateBase):
    status: Literal["running"] = "running"
    title: str | None = None
    started_at: datetime


class ToolStateCompleted(_ToolStateBase):
    status: Literal["completed"] = "completed"
    output: str = ""
    title: str | None = None
    started_at: datetime
    ended_at: datetime

    @property
    def duration_ms(self) -> int:
        return int((self.ended_at - self.started_at).total_seconds() * 1000)


class ToolStateError(_ToolStateBase):
    status: Literal["error"] = "error"
    error: str = ""
    started_at: datetime
    ended_at: datetime

    @property
    def duration_ms(self) -> int:
        return int((self.ended_at - self.started_at).total_seconds() * 1000)


ToolState = Annotated[
    Union[ToolStatePending, ToolStateRunning, ToolStateCompleted, ToolStateError],
    Field(discriminator="status"),
]

_ADAPTER: TypeAdapter[Any] = TypeAdapter(ToolState)


class ToolPart(BaseModel):
    """A tool invocation part of an assistant message."""

    tool: str
    call_id: str | None = None
    session_id: str | None = None
    state: ToolState


def _flatten_state(raw: dict[str, Any]) -> dict[str, Any]:
    # Host shape: {"status": ..., "time": {"start": ms, "end": ms}}
    state = dict(raw)
    time = state.pop("time", None)
    if isinstance(time, dict):
        if "start" in time:
            state.setdefault("started_at", time["start"])
        if "end" in time:
            state.setdefault("ended_at", time["end"])
    return state


def parse_tool_state(raw: dict[str, Any]) -> ToolState:
    """Validate a raw state payload; raises ``ValidationError`` when malformed."""

    return _ADAPTER.validate_python(_flatten_state(raw))


def parse_tool_part(part: dict[str, Any]) -> ToolPart | None:
    """Return the tool part described by ``part`` or ``None`` when it is not a valid tool part."""

    if part.get("type") != "tool" or not isinstance(part.get("state"), dict):
        return None
    try:
        return ToolPart(
            tool=str(part.get("tool", "")),
            call_id=part.get("callID") or part.get("call_id"),
            session_id=part.get("sessionID") or part.get("session_id"),
            state=parse_tool_state(part["state"]),
        )
    except ValidationError:
        return None


__all__ = [
    "ToolPart",
    "ToolState",
    "ToolStateCompleted",
    "ToolStateError",
    "ToolStatePending",
    "ToolStateRunning",
    "parse_tool_part",
    "parse_tool_state",
]
