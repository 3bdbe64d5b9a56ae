"""Configuration management for Aegis MCP."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal
import os

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class AegisSettings(BaseSettings):
    """Runtime configuration sourced from environment variables and optional .env file."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    project_dir: Path = Field(default=Path("."), validation_alias="AEGIS_PROJECT_DIR")
    state_dir: str = Field(default=".aegis", validation_alias="AEGIS_STATE_DIR")
    log_level: str = Field(default="INFO", validation_alias="AEGIS_LOG_LEVEL")
    profile_paths: tuple[Path, ...] = Field(
        default=(Path("agents"),), validation_alias="AEGIS_PROFILE_PATHS"
    )
    audit_path: Path | None = Field(default=None, validation_alias="AEGIS_AUDIT_PATH")
    default_agent: str = Field(default="coordinator", validation_alias="AEGIS_DEFAULT_AGENT")

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        normalized = value.strip().upper()
        if normalized not in {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}:
            raise ValueError(
                "AEGIS_LOG_LEVEL must be one of CRITICAL, ERROR, WARNING, INFO, DEBUG"
            )
        return normalized

    @field_validator("profile_paths", mode="before")
    @classmethod
    def _parse_profile_paths(cls, value):
        if value is None or value == "":
            return (Path("agents"),)
        if isinstance(value, (list, tuple)):
            return tuple(Path(str(item)) for item in value)
        if isinstance(value, str):
            parts = [part.strip() for part in value.split(os.pathsep) if part.strip()]
            return tuple(Path(part) for part in parts) or (Path("agents"),)
        raise TypeError("AEGIS_PROFILE_PATHS must be a list of paths or a path-separated string")

    @field_validator("state_dir")
    @classmethod
    def _validate_state_dir(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("AEGIS_STATE_DIR must not be empty")
        return normalized

    @property
    def governance_dir(self) -> Path:
        return self.project_dir / self.state_dir


class CompactionConfig(BaseModel):
    """Budget applied when injecting context at compaction time."""

    anchor_budget: int = Field(default=5, ge=1, le=100)
    context_limit: int = Field(default=2000, ge=500, le=5000)


class GateConfig(BaseModel):
    """Tool gate switches."""

    enforce_active_task: bool = True
    exempt_tools: list[str] = Field(default_factory=lambda: ["aegis_task", "aegis_anchor"])


class TaskConfig(BaseModel):
    session_stale_hours: float = Field(default=4.0, gt=0)


class LoggingConfig(BaseModel):
    level: Literal["debug", "info", "warn", "error"] = "info"


class GovernanceConfig(BaseModel):
    """Project-level governance configuration persisted as ``config.json``."""

    enabled: bool = True
    compaction: CompactionConfig = Field(default_factory=CompactionConfig)
    gate: GateConfig = Field(default_factory=GateConfig)
    tasks: TaskConfig = Field(default_factory=TaskConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


@lru_cache(maxsize=1)
def get_settings() -> AegisSettings:
    """Return cached settings instance."""

    settings = AegisSettings()
    settings.project_dir = settings.project_dir.expanduser().resolve()
    settings.profile_paths = tuple(
        (path if path.is_absolute() else settings.project_dir / path).expanduser().resolve()
        for path in settings.profile_paths
    )
    if settings.audit_path is not None:
        settings.audit_path = settings.audit_path.expanduser().resolve()
    return settings


__all__ = [
    "AegisSettings",
    "CompactionConfig",
    "GateConfig",
    "GovernanceConfig",
    "LoggingConfig",
    "TaskConfig",
    "get_settings",
]
