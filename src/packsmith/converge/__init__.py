"""
Convergence for packsmith.

Makes a scope (one project, or the user's global configuration) match a
desired set of packs, and records every artifact it creates so a later run
can reverse it.

Key Components:
    - ConvergenceEngine: Remove, install and recompose in one idempotent run
    - SyncScope: Paths and policies of a project or the global scope
    - SettingsDocument: Ownership-tracked edits to the settings JSON
    - compose_document: Section-delimited template composition
    - McpRegistrar: MCP server registration in .claude.json / .mcp.json
    - GitignoreManager: Line-level edits to the global gitignore
"""

from packsmith.converge.scope import ScopeKind, SyncScope
from packsmith.converge.templates import SectionContribution, compose_document, remove_section
from packsmith.converge.settings import SettingsDocument
from packsmith.converge.servers import McpRegistrar
from packsmith.converge.gitignore import GitignoreManager, resolve_gitignore_path
from packsmith.converge.engine import ConvergenceEngine, ConvergenceResult, PackFailure

__all__ = [
    "ConvergenceEngine",
    "ConvergenceResult",
    "GitignoreManager",
    "McpRegistrar",
    "PackFailure",
    "ScopeKind",
    "SectionContribution",
    "SettingsDocument",
    "SyncScope",
    "compose_document",
    "remove_section",
    "resolve_gitignore_path",
]
