from pathlib import Path
import textwrap

import pytest

from aegis_mcp.profiles import AgentProfile, ProfileLoadError, ProfileLoader


def write_profile(path: Path, *, role: str) -> None:
    path.write_text(
        textwrap.dedent(
            """
            id: docs
            role: {role}
            patterns:
              - "*-writer"
              - scribe
            description: Documentation agents
            """
        ).strip().format(role=role),
        encoding="utf-8",
    )


def test_loader_merges_paths(tmp_path: Path) -> None:
    base = tmp_path / "base"
    base.mkdir()
    override = tmp_path / "override"
    override.mkdir()

    write_profile(base / "docs.yaml", role="researcher")
    write_profile(override / "docs.yml", role="builder")

    loader = ProfileLoader([base, override])
    profiles = loader.load_all()

    assert profiles["docs"].role == "builder"
    assert loader.get("docs").patterns == ["*-writer", "scribe"]


def test_loader_handles_missing_profiles(tmp_path: Path) -> None:
    loader = ProfileLoader([tmp_path, tmp_path / "absent"])
    assert loader.load_all() == {}
    assert loader.search_paths == [tmp_path]


def test_loader_reports_validation_error(tmp_path: Path) -> None:
    invalid = tmp_path / "invalid"
    invalid.mkdir()
    (invalid / "broken.yaml").write_text("id: \nrole: builder", encoding="utf-8")
    (invalid / "unknown.yaml").write_text("id: x\nrole: overlord", encoding="utf-8")

    loader = ProfileLoader([invalid])

    with pytest.raises(ProfileLoadError) as excinfo:
        loader.load_all()
    assert "broken.yaml" in str(excinfo.value)
    assert "unknown.yaml" in str(excinfo.value)


def test_missing_profile_id_raises(tmp_path: Path) -> None:
    with pytest.raises(ProfileLoadError):
        ProfileLoader([tmp_path]).get("nope")


def test_pattern_matching() -> None:
    profile = AgentProfile(id="docs", role="Researcher", patterns="Scribe")

    assert profile.role == "researcher"
    assert profile.matches("chief-scribe-2")
    assert not profile.matches("builder")

    globbed = AgentProfile(id="docs", role="researcher", patterns=["api-*"])
    assert globbed.matches("API-writer")
    assert not globbed.matches("my-api-writer")


def test_loader_reads_profile_lists(tmp_path: Path) -> None:
    (tmp_path / "team.yaml").write_text(
        textwrap.dedent(
            """
            profiles:
              - id: reviewers
                role: validator
                patterns: ["*-reviewer"]
              - id: scouts
                role: researcher
                patterns: scout
            """
        ),
        encoding="utf-8",
    )

    profiles = ProfileLoader([tmp_path]).load_all()

    assert {key: profile.role for key, profile in profiles.items()} == {
        "reviewers": "validator",
        "scouts": "researcher",
    }


def test_loader_reads_agent_markdown_front_matter(tmp_path: Path) -> None:
    (tmp_path / "release-captain.md").write_text(
        "---\ndescription: Ships releases\nrole: coordinator\nmode: primary\n---\n\nYou ship releases.\n",
        encoding="utf-8",
    )
    (tmp_path / "notes.md").write_text("---\ndescription: No role here\n---\nbody\n", encoding="utf-8")
    (tmp_path / "README.md").write_text("# Agents\n", encoding="utf-8")

    profiles = ProfileLoader([tmp_path]).load_all()

    assert list(profiles) == ["release-captain"]
    captain = profiles["release-captain"]
    assert captain.role == "coordinator"
    assert captain.matches("release-captain")
    assert captain.metadata == {"source": "agent-markdown", "mode": "primary"}


def test_missing_profile_names_search_paths(tmp_path: Path) -> None:
    with pytest.raises(ProfileLoadError) as excinfo:
        ProfileLoader([tmp_path]).get("nope")

    assert str(tmp_path) in str(excinfo.value)
