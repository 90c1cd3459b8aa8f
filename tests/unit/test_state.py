"""Unit tests for the per-scope state ledger."""

import json
from pathlib import Path

import pytest

from packsmith import __version__
from packsmith.errors import StateCorruptError
from packsmith.store.state import ArtifactRecord, McpServerRef, ProjectState


@pytest.fixture
def state_path(temp_dir: Path) -> Path:
    return temp_dir / "project" / ".claude" / ".mcs-project"


class TestArtifactRecord:
    def test_empty(self) -> None:
        assert ArtifactRecord().is_empty
        assert not ArtifactRecord(files=["commands/x.md"]).is_empty


class TestProjectState:
    def test_missing_file(self, state_path: Path) -> None:
        state = ProjectState.load(state_path)
        assert state.configured_packs == []
        assert state.pack_artifacts == {}

    def test_round_trip(self, state_path: Path) -> None:
        state = ProjectState()
        state.record("beta", ArtifactRecord(
            mcp_servers=[McpServerRef(name="search", scope="local")],
            files=["hooks/start.sh"],
            hook_commands=["bash .claude/hooks/start.sh"],
            settings_keys=["env.FOO"],
        ))
        state.record("alpha", ArtifactRecord(template_sections=["alpha.rules"]))
        state.set_exclusions("beta", ["beta.b", "beta.a"])
        state.save(state_path)

        loaded = ProjectState.load(state_path)
        assert loaded.configured_packs == ["alpha", "beta"]
        assert loaded.artifacts("beta").mcp_servers == [McpServerRef(name="search", scope="local")]
        assert loaded.artifacts("beta").hook_commands == ["bash .claude/hooks/start.sh"]
        assert loaded.exclusions("beta") == ["beta.a", "beta.b"]
        assert loaded.mcs_version == __version__
        assert loaded.configured_at is not None

    def test_json_keys(self, state_path: Path) -> None:
        state = ProjectState()
        state.record("alpha", ArtifactRecord(gitignore_entries=[".env"]))
        state.save(state_path)
        document = json.loads(state_path.read_text())
        assert document["mcsVersion"] == __version__
        assert document["configuredPacks"] == ["alpha"]
        assert document["packArtifacts"]["alpha"]["gitignoreEntries"] == [".env"]

    def test_drop(self) -> None:
        state = ProjectState()
        state.record("alpha", ArtifactRecord(files=["x"]))
        state.set_exclusions("alpha", ["alpha.a"])
        state.drop("alpha")
        assert state.configured_packs == []
        assert state.artifacts("alpha").is_empty
        assert state.exclusions("alpha") == []

    def test_record_is_not_duplicated(self) -> None:
        state = ProjectState()
        state.record("alpha", ArtifactRecord())
        state.record("alpha", ArtifactRecord(files=["x"]))
        assert state.configured_packs == ["alpha"]
        assert state.artifacts("alpha").files == ["x"]

    def test_clearing_exclusions(self) -> None:
        state = ProjectState()
        state.set_exclusions("alpha", ["alpha.a"])
        state.set_exclusions("alpha", [])
        assert "alpha" not in state.excluded_components

    def test_corrupt(self, state_path: Path) -> None:
        state_path.parent.mkdir(parents=True)
        state_path.write_text("{not json")
        with pytest.raises(StateCorruptError):
            ProjectState.load(state_path)

    def test_unknown_keys_ignored(self, state_path: Path) -> None:
        state_path.parent.mkdir(parents=True)
        state_path.write_text(json.dumps({"configuredPacks": ["alpha"], "futureField": 1}))
        assert ProjectState.load(state_path).configured_packs == ["alpha"]
