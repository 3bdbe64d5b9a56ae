"""Role profile discovery.

Role profiles come from two kinds of file in each search path:

* ``*.yml`` / ``*.yaml`` holding one profile, or several under ``profiles:``.
* ``*.md`` host agent definitions whose YAML front matter declares a
  ``role``. The file stem becomes the profile id and, unless the front matter
  lists ``patterns``, the agent name to match.

Markdown agents without a ``role`` are not governed by a custom profile and
are skipped.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Iterable, Iterator

import yaml
from pydantic import ValidationError

from ..errors import AegisError
from .models import AgentProfile

FRONT_MATTER_FENCE = "---"


class ProfileLoadError(AegisError):
    """Raised when one or more role profile files are unusable."""


def _front_matter(text: str) -> str | None:
    lines = text.splitlines()
    if not lines or lines[0].strip() != FRONT_MATTER_FENCE:
        return None
    for index, line in enumerate(lines[1:], start=1):
        if line.strip() == FRONT_MATTER_FENCE:
            return "\n".join(lines[1:index])
    return None


class ProfileLoader:
    """Loads role profiles from YAML and agent markdown files on disk."""

    def __init__(self, search_paths: Iterable[Path] | None = None) -> None:
        paths = [Path(path) for path in (search_paths or [])]
        self._search_paths: list[Path] = [path for path in paths if path.is_dir()]

    @property
    def search_paths(self) -> list[Path]:
        return list(self._search_paths)

    def load_all(self) -> dict[str, AgentProfile]:
        """Load profiles from every search path.

        Later search paths override earlier ones when profile ids collide;
        within one path YAML files are read before agent markdown.
        """

        profiles: dict[str, AgentProfile] = {}
        errors: list[str] = []

        for base in self._search_paths:
            for path in sorted(base.glob("*.yml")) + sorted(base.glob("*.yaml")) + sorted(base.glob("*.md")):
                try:
                    documents = list(self._documents(path))
                except yaml.YAMLError as exc:
                    errors.append(f"{path}: unreadable YAML ({exc})")
                    continue

                for document in documents:
                    try:
                        profile = AgentProfile.model_validate(document)
                    except ValidationError as exc:
                        errors.append(f"{path}: invalid role profile ({exc.error_count()} error(s)): {exc}")
                        continue
                    profiles[profile.id] = profile

        if errors:
            raise ProfileLoadError("Role profiles failed to load: " + "; ".join(errors))

        return profiles

    def get(self, profile_id: str) -> AgentProfile:
        profiles = self.load_all()
        try:
            return profiles[profile_id]
        except KeyError as exc:
            searched = ", ".join(str(path) for path in self._search_paths) or "no existing paths"
            raise ProfileLoadError(f"No role profile '{profile_id}' (searched: {searched})") from exc

    def _documents(self, path: Path) -> Iterator[dict[str, Any]]:
        text = path.read_text(encoding="utf-8")
        if path.suffix == ".md":
            header = _front_matter(text)
            meta = yaml.safe_load(header) if header else None
            if not isinstance(meta, dict) or "role" not in meta:
                return
            yield {
                "id": meta.get("id") or path.stem,
                "role": meta["role"],
                "patterns": meta.get("patterns") or [path.stem],
                "description": meta.get("description") or "",
                "metadata": {"source": "agent-markdown", "mode": meta.get("mode")},
            }
            return

        document = yaml.safe_load(text)
        if document is None:
            return
        if isinstance(document, dict) and "profiles" in document:
            entries = document["profiles"]
            # Anything but a list is handed to validation as-is so it is reported.
            yield from entries if isinstance(entries, list) else [entries]
            return
        yield document


def load_profiles(search_paths: Iterable[Path] | None = None) -> dict[str, AgentProfile]:
    return ProfileLoader(search_paths).load_all()


__all__ = ["AgentProfile", "ProfileLoadError", "ProfileLoader", "load_profiles"]
