"""
Integration tests for the packsmith CLI.

Tests cover:
- pack validate / add / list / info / remove
- sync into a project, with prompt presets and exclusions
- JSON output and JSON error rendering
"""

import json
from pathlib import Path

import pytest
import yaml
from typer.testing import CliRunner

from packsmith import __version__
from packsmith.cli import app
from packsmith.config import USER_HOME_ENV_VAR


runner = CliRunner()

DOC_COMPONENTS = [
    {"id": "ship", "command": {"source": "commands/ship.md", "destination": "ship.md"}},
    {"id": "review", "command": {"source": "commands/review.md", "destination": "review.md"}},
]

DOC_FILES = {
    "commands/ship.md": "Ship to __BRANCH__\n",
    "commands/review.md": "Review\n",
}


@pytest.fixture
def home(temp_dir: Path) -> Path:
    path = temp_dir / "cli-home"
    path.mkdir()
    (path / "config.yaml").write_text(yaml.safe_dump({
        "gitignore_path": str(temp_dir / "user" / "gitignore"),
        "git_timeout_seconds": 30,
    }))
    return path


@pytest.fixture
def env(temp_dir: Path) -> dict[str, str]:
    user_home = temp_dir / "user"
    user_home.mkdir(exist_ok=True)
    return {USER_HOME_ENV_VAR: str(user_home)}


@pytest.fixture
def doc_pack(make_pack) -> Path:
    return make_pack(
        "docs",
        DOC_COMPONENTS,
        DOC_FILES,
        prompts=[{"key": "BRANCH", "type": "input", "default": "main"}],
    )


def invoke(home: Path, env: dict[str, str], *args: str):
    return runner.invoke(app, ["--home", str(home), *args], env=env)


class TestVersion:
    def test_version(self) -> None:
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.stdout


class TestPackValidate:
    """Tests for `packsmith pack validate`."""

    def test_valid_pack_json(self, make_pack) -> None:
        root = make_pack("hooky", [
            {"id": "start", "hookEvent": "Stop", "hook": {"source": "hooks/stop.sh", "destination": "stop.sh"}},
        ], {"hooks/stop.sh": "#!/bin/sh\n"})

        result = runner.invoke(app, ["pack", "validate", str(root), "--json"])

        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["valid"] is True
        assert data["manifest"] == {"identifier": "hooky", "version": "1.0.0"}
        assert data["trust_items"][0]["type"] == "hookFile"
        assert data["trust_items"][0]["key"] == "hooks/stop.sh"

    def test_missing_file_reported(self, make_pack) -> None:
        root = make_pack("broken", [
            {"id": "ship", "command": {"source": "commands/missing.md", "destination": "ship.md"}},
        ])

        result = runner.invoke(app, ["pack", "validate", str(root), "--json"])

        assert result.exit_code == 1
        data = json.loads(result.stdout)
        assert data["valid"] is False
        assert "commands/missing.md" in data["errors"][0]

    def test_valid_pack_text(self, doc_pack: Path) -> None:
        result = runner.invoke(app, ["pack", "validate", str(doc_pack)])
        assert result.exit_code == 0
        assert "is valid" in result.stdout


class TestPackCommands:
    def test_add_json(self, home: Path, env: dict[str, str], doc_pack: Path) -> None:
        result = invoke(home, env, "pack", "add", str(doc_pack), "--json")

        assert result.exit_code == 0, result.stdout
        data = json.loads(result.stdout)
        assert data["identifier"] == "docs"
        assert data["isLocal"] is True
        assert data["localPath"] == str(doc_pack)
        assert (home / "registry.yaml").exists()

    def test_add_with_yes_trusts(self, home: Path, env: dict[str, str], make_pack) -> None:
        root = make_pack("srv", [{"id": "search", "mcp": {"command": "npx", "args": ["search"]}}])

        result = invoke(home, env, "pack", "add", str(root), "--yes")

        assert result.exit_code == 0
        assert "Added" in result.stdout

    def test_list_and_info(self, home: Path, env: dict[str, str], doc_pack: Path) -> None:
        invoke(home, env, "pack", "add", str(doc_pack), "--json")

        listed = json.loads(invoke(home, env, "pack", "list", "--json").stdout)
        assert listed["count"] == 1
        assert listed["packs"][0]["identifier"] == "docs"

        info = invoke(home, env, "pack", "info", "docs", "--json")
        assert info.exit_code == 0
        data = json.loads(info.stdout)
        assert [c["id"] for c in data["manifest"]["components"]] == ["docs.ship", "docs.review"]

    def test_list_empty(self, home: Path, env: dict[str, str]) -> None:
        result = invoke(home, env, "pack", "list")
        assert result.exit_code == 0
        assert "No packs registered" in result.stdout

    def test_remove_unknown_json_error(self, home: Path, env: dict[str, str]) -> None:
        result = invoke(home, env, "pack", "remove", "ghost", "--json")

        assert result.exit_code == 1
        data = json.loads(result.stdout)
        assert data["error"] is True
        assert data["error_type"] == "PackNotRegisteredError"
        assert data["code"] > 0

    def test_remove(self, home: Path, env: dict[str, str], doc_pack: Path) -> None:
        invoke(home, env, "pack", "add", str(doc_pack), "--json")
        result = invoke(home, env, "pack", "remove", "docs", "--json")
        assert json.loads(result.stdout) == {"removed": "docs"}
        assert json.loads(invoke(home, env, "pack", "list", "--json").stdout)["count"] == 0


class TestSyncCommand:
    def test_sync_project_json(self, home: Path, env: dict[str, str], doc_pack: Path, project_dir: Path) -> None:
        invoke(home, env, "pack", "add", str(doc_pack), "--json")

        result = invoke(home, env, "sync", str(project_dir), "--pack", "docs", "--set", "BRANCH=release", "--json")

        assert result.exit_code == 0, result.stdout
        data = json.loads(result.stdout)
        assert data["configured"] == ["docs"]
        assert data["failures"] == []
        assert data["lockfile"] == str(project_dir / "packsmith.lock.yaml")
        assert (project_dir / ".claude" / "commands" / "ship.md").read_text() == "Ship to release\n"

    def test_sync_uses_prompt_default_with_yes(
        self, home: Path, env: dict[str, str], doc_pack: Path, project_dir: Path,
    ) -> None:
        invoke(home, env, "pack", "add", str(doc_pack), "--json")

        result = invoke(home, env, "sync", str(project_dir), "--pack", "docs", "--yes")

        assert result.exit_code == 0
        assert "docs" in result.stdout
        assert (project_dir / ".claude" / "commands" / "ship.md").read_text() == "Ship to main\n"

    def test_sync_exclude(self, home: Path, env: dict[str, str], doc_pack: Path, project_dir: Path) -> None:
        invoke(home, env, "pack", "add", str(doc_pack), "--json")

        result = invoke(
            home, env, "sync", str(project_dir), "--pack", "docs", "--exclude", "docs.review", "--json",
        )

        assert result.exit_code == 0
        assert (project_dir / ".claude" / "commands" / "ship.md").exists()
        assert not (project_dir / ".claude" / "commands" / "review.md").exists()

    def test_sync_none_removes(self, home: Path, env: dict[str, str], doc_pack: Path, project_dir: Path) -> None:
        invoke(home, env, "pack", "add", str(doc_pack), "--json")
        invoke(home, env, "sync", str(project_dir), "--pack", "docs", "--json")

        result = invoke(home, env, "sync", str(project_dir), "--none", "--json")

        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["removed"] == ["docs"]
        assert data["configured"] == []
        assert not (project_dir / ".claude" / "commands").exists()
        assert not (project_dir / "packsmith.lock.yaml").exists()

    def test_sync_unknown_pack(self, home: Path, env: dict[str, str], project_dir: Path) -> None:
        result = invoke(home, env, "sync", str(project_dir), "--pack", "ghost", "--json")
        assert result.exit_code == 1
        assert json.loads(result.stdout)["error_type"] == "PackNotRegisteredError"

    def test_bad_preset_is_usage_error(self, home: Path, env: dict[str, str], project_dir: Path) -> None:
        result = invoke(home, env, "sync", str(project_dir), "--set", "NOVALUE")
        assert result.exit_code == 2

    def test_bad_exclusion_is_usage_error(self, home: Path, env: dict[str, str], project_dir: Path) -> None:
        result = invoke(home, env, "sync", str(project_dir), "--exclude", "review")
        assert result.exit_code == 2
