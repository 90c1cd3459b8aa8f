"""Unit tests for MCP server registration."""

import json
from pathlib import Path

import pytest

from packsmith.converge.servers import McpRegistrar, server_entry
from packsmith.pack.manifest import McpServerAction


@pytest.fixture
def registrar(temp_dir: Path) -> McpRegistrar:
    project = temp_dir / "project"
    project.mkdir()
    return McpRegistrar(temp_dir / "user", project)


def _stdio(name: str = "search") -> McpServerAction:
    return McpServerAction(name=name, command="npx", args=["-y", "search", "__ROOT__"], env={"TOKEN": "__TOKEN__"})


class TestServerEntry:
    def test_stdio_substitutes_placeholders(self) -> None:
        entry = server_entry(_stdio(), {"ROOT": "/src", "TOKEN": "abc"})
        assert entry == {
            "type": "stdio",
            "command": "npx",
            "args": ["-y", "search", "/src"],
            "env": {"TOKEN": "abc"},
        }

    def test_http(self) -> None:
        action = McpServerAction(name="docs", transport="http", url="https://example.com/mcp")
        assert server_entry(action) == {"type": "http", "url": "https://example.com/mcp"}


class TestRegistrar:
    def test_user_scope(self, registrar: McpRegistrar) -> None:
        ref = registrar.register(_stdio(), "user")
        assert (ref.name, ref.scope) == ("search", "user")
        data = json.loads((registrar.user_home / ".claude.json").read_text())
        assert data["mcpServers"]["search"]["command"] == "npx"

    def test_local_scope_nests_under_project(self, registrar: McpRegistrar) -> None:
        registrar.register(_stdio(), "local")
        data = json.loads((registrar.user_home / ".claude.json").read_text())
        assert "search" in data["projects"][str(registrar.project_path)]["mcpServers"]
        assert registrar.registered("search", "local") is not None
        assert registrar.registered("search", "user") is None

    def test_project_scope_file(self, registrar: McpRegistrar) -> None:
        registrar.register(_stdio(), "project")
        assert (registrar.project_path / ".mcp.json").exists()

    def test_register_is_idempotent(self, registrar: McpRegistrar) -> None:
        registrar.register(_stdio(), "user")
        path = registrar.user_home / ".claude.json"
        first = path.read_text()
        registrar.register(_stdio(), "user")
        assert path.read_text() == first

    def test_deregister_prunes_and_deletes(self, registrar: McpRegistrar) -> None:
        registrar.register(_stdio(), "local")
        assert registrar.deregister("search", "local") is True
        assert not (registrar.user_home / ".claude.json").exists()

    def test_deregister_keeps_other_content(self, registrar: McpRegistrar) -> None:
        path = registrar.user_home / ".claude.json"
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps({"theme": "dark", "mcpServers": {"mine": {"type": "stdio", "command": "x"}}}))
        registrar.register(_stdio(), "user")
        registrar.deregister("search", "user")
        assert json.loads(path.read_text()) == {"theme": "dark", "mcpServers": {"mine": {"type": "stdio", "command": "x"}}}

    def test_deregister_missing(self, registrar: McpRegistrar) -> None:
        assert registrar.deregister("nope", "user") is False

    def test_local_scope_requires_project(self, temp_dir: Path) -> None:
        with pytest.raises(ValueError):
            McpRegistrar(temp_dir).register(_stdio(), "local")
