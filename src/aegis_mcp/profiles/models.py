"""Profile models for custom agent role declarations."""

from __future__ import annotations

from fnmatch import fnmatchcase
from typing import Any

from pydantic import BaseModel, Field, field_validator

from ..schemas.permission import AGENT_ROLES

_WILDCARDS = frozenset("*?[")


class AgentProfile(BaseModel):
    """Maps agent names to a governance role.

    A pattern containing glob wildcards is matched against the whole agent
    name; a plain pattern matches when it occurs anywhere in the name.
    """

    id: str = Field(..., description="Unique identifier for the profile.")
    role: str = Field(..., description="Governance role granted to matching agents.")
    patterns: list[str] = Field(
        default_factory=list,
        description="Agent name patterns, matched case-insensitively.",
    )
    description: str = Field(default="", description="Free-form note shown in diagnostics.")
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("id")
    @classmethod
    def _normalize_id(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("Agent profile id must not be empty")
        return normalized

    @field_validator("role")
    @classmethod
    def _validate_role(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in AGENT_ROLES:
            raise ValueError(f"Unknown role '{value}'; expected one of {', '.join(AGENT_ROLES)}")
        return normalized

    @field_validator("patterns", mode="before")
    @classmethod
    def _ensure_list(cls, value: Any):
        if value is None:
            return []
        if isinstance(value, str):
            value = [value]
        if isinstance(value, (list, tuple)):
            return [str(item).strip().lower() for item in value if str(item).strip()]
        raise ValueError("Patterns must be a string or a sequence of strings")

    def matches(self, agent_name: str) -> bool:
        name = agent_name.strip().lower()
        for pattern in self.patterns:
            pattern = pattern.lower()
            if _WILDCARDS.intersection(pattern):
                if fnmatchcase(name, pattern):
                    return True
            elif pattern in name:
                return True
        return False


__all__ = ["AgentProfile"]
