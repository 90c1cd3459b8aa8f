"""Unit tests for the project index and shared-resource reference counting."""

from pathlib import Path

import pytest
import yaml

from packsmith.errors import ProjectIndexCorruptError
from packsmith.store.index import GLOBAL_SCOPE_KEY, ProjectIndex, ResourceRefCounter
from packsmith.store.registry import RegistryEntry, RegistryFile


@pytest.fixture
def index_path(temp_dir: Path) -> Path:
    return temp_dir / "projects.yaml"


class TestProjectIndex:
    def test_missing_file_is_empty(self, index_path: Path) -> None:
        assert ProjectIndex.load(index_path).projects == []

    def test_save_and_load(self, index_path: Path, temp_dir: Path) -> None:
        index = ProjectIndex()
        index.upsert(str(temp_dir), ["lint", "docs", "docs"])
        index.upsert(GLOBAL_SCOPE_KEY, ["docs"])
        index.save(index_path)

        data = yaml.safe_load(index_path.read_text())
        assert data["indexVersion"] == 1
        assert data["projects"][0]["path"] == str(temp_dir)
        assert data["projects"][0]["packs"] == ["docs", "lint"]
        assert "lastSynced" in data["projects"][0]

        loaded = ProjectIndex.load(index_path)
        assert [s.path for s in loaded.scopes_with_pack("docs")] == [str(temp_dir), GLOBAL_SCOPE_KEY]

    def test_upsert_replaces_entry(self, temp_dir: Path) -> None:
        index = ProjectIndex()
        index.upsert(str(temp_dir), ["docs"])
        index.upsert(str(temp_dir), ["lint"])
        assert len(index.projects) == 1
        assert index.get(str(temp_dir)).packs == ["lint"]

    def test_upsert_without_packs_drops_scope(self, temp_dir: Path) -> None:
        index = ProjectIndex()
        index.upsert(str(temp_dir), ["docs"])
        index.upsert(str(temp_dir), [])
        assert index.projects == []

    def test_remove_pack_prunes_empty_scopes(self, temp_dir: Path) -> None:
        index = ProjectIndex()
        index.upsert(str(temp_dir), ["docs"])
        index.upsert(GLOBAL_SCOPE_KEY, ["docs", "lint"])
        index.remove_pack("docs")
        assert [(s.path, s.packs) for s in index.projects] == [(GLOBAL_SCOPE_KEY, ["lint"])]

    def test_prune_stale_keeps_global(self, temp_dir: Path) -> None:
        index = ProjectIndex()
        index.upsert(str(temp_dir / "gone"), ["docs"])
        index.upsert(str(temp_dir), ["docs"])
        index.upsert(GLOBAL_SCOPE_KEY, ["docs"])

        assert index.prune_stale() == [str(temp_dir / "gone")]
        assert [s.path for s in index.projects] == [str(temp_dir), GLOBAL_SCOPE_KEY]

    @pytest.mark.parametrize("content", ["projects: [1, 2", "- just\n- a list\n", "projects: 3\n"])
    def test_corrupt_file(self, index_path: Path, content: str) -> None:
        index_path.write_text(content)
        with pytest.raises(ProjectIndexCorruptError) as exc_info:
            ProjectIndex.load(index_path)
        assert exc_info.value.code == 6009


class TestResourceRefCounter:
    @pytest.fixture
    def registry(self, temp_dir: Path, make_pack) -> RegistryFile:
        shared = make_pack("shared", [
            {"id": "cache", "gitignore": [".cache/"]},
            {"id": "search", "mcp": {"command": "npx", "scope": "user"}},
            {"id": "local-srv", "mcp": {"command": "uvx"}},
        ])
        registry = RegistryFile(temp_dir / "registry.yaml")
        registry.register(RegistryEntry(
            identifier="shared",
            source_url=str(shared),
            local_path=str(shared),
            is_local=True,
        ))
        registry.register(RegistryEntry(
            identifier="broken",
            source_url=str(temp_dir / "does-not-exist"),
            local_path=str(temp_dir / "does-not-exist"),
            is_local=True,
        ))
        return registry

    @pytest.fixture
    def projects(self, temp_dir: Path) -> tuple[str, str]:
        first, second = temp_dir / "first", temp_dir / "second"
        first.mkdir()
        second.mkdir()
        return str(first), str(second)

    def test_entry_declared_by_other_project(self, registry: RegistryFile, projects: tuple[str, str]) -> None:
        first, second = projects
        index = ProjectIndex()
        index.upsert(first, ["shared"])
        index.upsert(second, ["shared"])
        refs = ResourceRefCounter(index, registry)

        assert refs.gitignore_entry_in_use(".cache/", excluding_scope=first)
        assert not refs.gitignore_entry_in_use(".other/", excluding_scope=first)

    def test_own_scope_ignored(self, registry: RegistryFile, projects: tuple[str, str]) -> None:
        first, _ = projects
        index = ProjectIndex()
        index.upsert(first, ["shared"])
        assert not ResourceRefCounter(index, registry).gitignore_entry_in_use(".cache/", excluding_scope=first)

    def test_missing_project_skipped(self, registry: RegistryFile, projects: tuple[str, str], temp_dir: Path) -> None:
        first, _ = projects
        index = ProjectIndex()
        index.upsert(first, ["shared"])
        index.upsert(str(temp_dir / "deleted"), ["shared"])
        assert not ResourceRefCounter(index, registry).gitignore_entry_in_use(".cache/", excluding_scope=first)

    @pytest.mark.parametrize("identifier", ["broken", "unregistered"])
    def test_unloadable_pack_counts_as_user(
        self,
        registry: RegistryFile,
        projects: tuple[str, str],
        identifier: str,
    ) -> None:
        first, second = projects
        index = ProjectIndex()
        index.upsert(second, [identifier])
        assert ResourceRefCounter(index, registry).gitignore_entry_in_use(".anything/", excluding_scope=first)

    def test_user_servers(self, registry: RegistryFile, projects: tuple[str, str]) -> None:
        first, second = projects
        index = ProjectIndex()
        index.upsert(second, ["shared"])
        refs = ResourceRefCounter(index, registry)

        assert refs.user_server_in_use("search", excluding_scope=first)
        # Project scopes register non-user servers per project
        assert not refs.user_server_in_use("local-srv", excluding_scope=first)

    def test_global_scope_registers_every_server_for_user(
        self,
        registry: RegistryFile,
        projects: tuple[str, str],
    ) -> None:
        first, _ = projects
        index = ProjectIndex()
        index.upsert(GLOBAL_SCOPE_KEY, ["shared"])
        assert ResourceRefCounter(index, registry).user_server_in_use("local-srv", excluding_scope=first)
