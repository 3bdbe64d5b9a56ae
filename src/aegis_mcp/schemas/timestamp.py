"""Timestamp and staleness tracking shared by anchors, tasks and state."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable

from pydantic import BaseModel, ConfigDict

STALENESS_THRESHOLD_HOURS = 48.0

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Timestamp(BaseModel):
    """Creation/modification times plus derived staleness.

    ``staleness_hours`` and ``is_stale`` are only meaningful after
    :func:`enforce_timestamp`; values loaded from storage are recomputed.
    """

    model_config = ConfigDict(frozen=True)

    created_at: datetime
    modified_at: datetime
    validated_at: datetime | None = None
    staleness_hours: float = 0.0
    is_stale: bool = False


def create_timestamp(now: datetime | None = None) -> Timestamp:
    moment = now or utcnow()
    return Timestamp(created_at=moment, modified_at=moment)


def hours_since(moment: datetime, now: datetime | None = None) -> float:
    current = now or utcnow()
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return (current - moment).total_seconds() / 3600.0


def calculate_staleness(timestamp: Timestamp, now: datetime | None = None) -> float:
    """Hours elapsed since the last validation, or the last modification."""

    last_valid = timestamp.validated_at or timestamp.modified_at
    return hours_since(last_valid, now)


def enforce_timestamp(timestamp: Timestamp, now: datetime | None = None) -> Timestamp:
    staleness = calculate_staleness(timestamp, now)
    return timestamp.model_copy(
        update={
            "staleness_hours": staleness,
            "is_stale": staleness > STALENESS_THRESHOLD_HOURS,
        }
    )


def touch_timestamp(timestamp: Timestamp, now: datetime | None = None) -> Timestamp:
    return timestamp.model_copy(update={"modified_at": now or utcnow()})


def validate_timestamp(timestamp: Timestamp, now: datetime | None = None) -> Timestamp:
    return timestamp.model_copy(update={"validated_at": now or utcnow()})


__all__ = [
    "Clock",
    "STALENESS_THRESHOLD_HOURS",
    "Timestamp",
    "calculate_staleness",
    "create_timestamp",
    "enforce_timestamp",
    "hours_since",
    "touch_timestamp",
    "utcnow",
    "validate_timestamp",
]
