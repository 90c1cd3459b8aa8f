"""
MCP server registrar.

Servers are registered by editing JSON config files directly:

    user     <user_home>/.claude.json    mcpServers.<name>
    local    <user_home>/.claude.json    projects.<abs project>.mcpServers.<name>
    project  <project>/.mcp.json         mcpServers.<name>

Entries are `{type: stdio, command, args, env}` or `{type: http, url}`.
Registration is idempotent; deregistration prunes the containers it
empties and deletes a file once nothing is left in it.
"""

import json
import logging
from pathlib import Path
from typing import Any

from packsmith.converge.templates import substitute
from packsmith.errors import StateCorruptError
from packsmith.pack.manifest import McpServerAction
from packsmith.store.files import write_json
from packsmith.store.state import McpServerRef

logger = logging.getLogger(__name__)

SERVERS_KEY = "mcpServers"
PROJECTS_KEY = "projects"


def server_entry(action: McpServerAction, values: dict[str, str] | None = None) -> dict[str, Any]:
    """Config entry for a server, with `__KEY__` placeholders in args and env substituted."""
    values = values or {}
    if action.transport == "http":
        return {"type": "http", "url": action.url}
    return {
        "type": "stdio",
        "command": action.command,
        "args": [substitute(arg, values) for arg in action.args],
        "env": {key: substitute(value, values) for key, value in action.env.items()},
    }


class McpRegistrar:
    """
    Register and deregister servers for one user home and (optionally) one project.

    Example:
        registrar = McpRegistrar(user_home, project_path)
        ref = registrar.register(action, "local")
        registrar.deregister(ref.name, ref.scope)
    """

    def __init__(self, user_home: Path, project_path: Path | None = None) -> None:
        self.user_home = user_home
        self.project_path = project_path

    def config_path(self, scope: str) -> Path:
        if scope == "project":
            if self.project_path is None:
                raise ValueError("project-scoped MCP servers require a project")
            return self.project_path / ".mcp.json"
        return self.user_home / ".claude.json"

    def _load(self, path: Path) -> dict[str, Any]:
        if not path.exists():
            return {}
        try:
            data = json.loads(path.read_text(encoding="utf-8") or "{}")
        except (OSError, json.JSONDecodeError) as e:
            raise StateCorruptError(path=str(path), underlying_error=str(e)) from e
        if not isinstance(data, dict):
            raise StateCorruptError(path=str(path), underlying_error="expected a JSON object")
        return data

    def _servers(self, data: dict[str, Any], scope: str, create: bool) -> dict[str, Any] | None:
        node = data
        if scope == "local":
            if self.project_path is None:
                raise ValueError("local-scoped MCP servers require a project")
            projects = node.get(PROJECTS_KEY)
            if projects is None:
                if not create:
                    return None
                projects = node[PROJECTS_KEY] = {}
            node = projects.get(str(self.project_path))
            if node is None:
                if not create:
                    return None
                node = projects[str(self.project_path)] = {}
        servers = node.get(SERVERS_KEY)
        if servers is None and create:
            servers = node[SERVERS_KEY] = {}
        return servers

    def registered(self, name: str, scope: str) -> dict[str, Any] | None:
        servers = self._servers(self._load(self.config_path(scope)), scope, create=False)
        return (servers or {}).get(name)

    def register(self, action: McpServerAction, scope: str, values: dict[str, str] | None = None) -> McpServerRef:
        """Write the server entry (no-op if an identical entry exists)."""
        path = self.config_path(scope)
        data = self._load(path)
        servers = self._servers(data, scope, create=True)
        entry = server_entry(action, values)
        if servers.get(action.name) != entry:
            servers[action.name] = entry
            write_json(path, data)
            logger.debug("Registered MCP server %s (%s) in %s", action.name, scope, path)
        return McpServerRef(name=action.name, scope=scope)

    def deregister(self, name: str, scope: str) -> bool:
        """Remove a server entry; returns False if it wasn't registered."""
        path = self.config_path(scope)
        data = self._load(path)
        servers = self._servers(data, scope, create=False)
        if not servers or name not in servers:
            return False

        del servers[name]
        if not servers:
            if scope == "local":
                projects = data[PROJECTS_KEY]
                project = projects[str(self.project_path)]
                del project[SERVERS_KEY]
                if not project:
                    del projects[str(self.project_path)]
                if not projects:
                    del data[PROJECTS_KEY]
            else:
                del data[SERVERS_KEY]

        if data:
            write_json(path, data)
        else:
            path.unlink()
        logger.debug("Deregistered MCP server %s (%s) from %s", name, scope, path)
        return True
