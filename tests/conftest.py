"""
Pytest configuration and fixtures for packsmith tests.

This module provides shared fixtures used across unit, integration,
and security tests: an isolated EngineSettings rooted in a temp dir,
a factory that writes pack directories, and a local git helper.
"""

import shutil
import subprocess
import tempfile
from collections.abc import Callable
from pathlib import Path
from typing import Any, Generator

import pytest
import yaml

from packsmith.config import EngineSettings


requires_git = pytest.mark.skipif(shutil.which("git") is None, reason="git is not installed")


def manifest_data(identifier: str, components: list[dict] | None = None, **extra: Any) -> dict[str, Any]:
    """Minimal valid techpack.yaml mapping."""
    data: dict[str, Any] = {
        "schemaVersion": 1,
        "identifier": identifier,
        "displayName": identifier.replace("-", " ").title(),
        "description": f"Test pack {identifier}",
        "version": "1.0.0",
        "components": components or [],
    }
    data.update(extra)
    return data


def write_pack(root: Path, data: dict[str, Any], files: dict[str, str] | None = None) -> Path:
    """Write techpack.yaml plus pack files under `root`."""
    root.mkdir(parents=True, exist_ok=True)
    (root / "techpack.yaml").write_text(yaml.safe_dump(data, sort_keys=False))
    for relative, content in (files or {}).items():
        path = root / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)
    return root


def git(cwd: Path, *args: str) -> str:
    """Run git with a fixed identity; returns stdout."""
    result = subprocess.run(
        [
            "git",
            "-c", "user.name=packsmith-tests",
            "-c", "user.email=tests@example.invalid",
            "-c", "commit.gpgsign=false",
            "-c", "init.defaultBranch=main",
            *args,
        ],
        cwd=cwd,
        capture_output=True,
        text=True,
        check=True,
    )
    return result.stdout.strip()


def commit_all(repo: Path, message: str = "update") -> str:
    git(repo, "add", "-A")
    git(repo, "commit", "-q", "-m", message)
    return git(repo, "rev-parse", "HEAD")


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir).resolve()


@pytest.fixture
def settings(temp_dir: Path) -> EngineSettings:
    """Engine settings isolated inside temp_dir."""
    user_home = temp_dir / "user"
    user_home.mkdir()
    return EngineSettings(
        home=temp_dir / "packsmith-home",
        user_home=user_home,
        gitignore_path=user_home / ".config" / "git" / "ignore",
        git_timeout_seconds=30,
    )


@pytest.fixture
def project_dir(temp_dir: Path) -> Path:
    """An empty project directory."""
    path = temp_dir / "project"
    path.mkdir()
    return path


@pytest.fixture
def make_pack(temp_dir: Path) -> Callable[..., Path]:
    """Factory writing a pack directory under temp_dir/packs-src/<identifier>."""

    def factory(
        identifier: str,
        components: list[dict] | None = None,
        files: dict[str, str] | None = None,
        **extra: Any,
    ) -> Path:
        root = temp_dir / "packs-src" / identifier
        return write_pack(root, manifest_data(identifier, components, **extra), files)

    return factory


@pytest.fixture
def git_pack(temp_dir: Path) -> Callable[..., Path]:
    """Factory creating a committed git repository holding a pack."""

    def factory(
        identifier: str,
        components: list[dict] | None = None,
        files: dict[str, str] | None = None,
        **extra: Any,
    ) -> Path:
        repo = write_pack(temp_dir / "remotes" / identifier, manifest_data(identifier, components, **extra), files)
        git(repo, "init", "-q")
        commit_all(repo, "initial")
        return repo

    return factory
