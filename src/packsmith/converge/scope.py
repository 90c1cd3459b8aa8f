"""
Sync scopes: where convergence writes.

Two scopes share one engine and differ only in paths:

    | scope   | root                 | settings            | template doc         |
    |---------|----------------------|---------------------|----------------------|
    | project | <project>/.claude/   | settings.local.json | <project>/CLAUDE.local.md |
    | global  | <user_home>/.claude/ | settings.json       | <user_home>/.claude/CLAUDE.md |

The global scope also forces every MCP server into the "user" registration
scope, since there is no project to attach it to.
"""

from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from packsmith.config import EngineSettings
from packsmith.pack.manifest import CopyFileType, CopyPackFileAction, McpServerAction
from packsmith.paths import resolve_within
from packsmith.store.index import GLOBAL_SCOPE_KEY

CLAUDE_DIR = ".claude"
PROJECT_STATE_FILE = ".mcs-project"

COPY_SUBDIRS = {
    CopyFileType.SKILL: "skills",
    CopyFileType.HOOK: "hooks",
    CopyFileType.COMMAND: "commands",
    CopyFileType.GENERIC: "",
}


class ScopeKind(str, Enum):
    PROJECT = "project"
    GLOBAL = "global"


@dataclass(frozen=True)
class SyncScope:
    """
    Paths and policies for one convergence target.

    Attributes:
        kind: project or global
        root: The .claude directory files are copied into
        settings_path: Settings JSON document
        template_path: Section-delimited template document
        state_path: ArtifactRecord ledger
        hook_prefix: Prefix turning a hook destination into a hook command
        user_home: Home directory holding .claude.json
        project_path: Project directory (None for global scope)
        mcp_scope_override: Registration scope forced on every MCP server
    """

    kind: ScopeKind
    root: Path
    settings_path: Path
    template_path: Path
    state_path: Path
    hook_prefix: str
    user_home: Path
    project_path: Path | None = None
    mcp_scope_override: str | None = None

    @classmethod
    def project(cls, project_path: Path, settings: EngineSettings) -> "SyncScope":
        project = project_path.resolve()
        root = project / CLAUDE_DIR
        return cls(
            kind=ScopeKind.PROJECT,
            root=root,
            settings_path=root / "settings.local.json",
            template_path=project / "CLAUDE.local.md",
            state_path=root / PROJECT_STATE_FILE,
            hook_prefix=f"bash {CLAUDE_DIR}/hooks/",
            user_home=settings.user_home,
            project_path=project,
        )

    @classmethod
    def from_index_key(cls, key: str, settings: EngineSettings) -> "SyncScope":
        if key == GLOBAL_SCOPE_KEY:
            return cls.global_scope(settings)
        return cls.project(Path(key), settings)

    @classmethod
    def global_scope(cls, settings: EngineSettings) -> "SyncScope":
        root = settings.user_home / CLAUDE_DIR
        return cls(
            kind=ScopeKind.GLOBAL,
            root=root,
            settings_path=root / "settings.json",
            template_path=root / "CLAUDE.md",
            state_path=settings.global_state_path,
            hook_prefix=f"bash ~/{CLAUDE_DIR}/hooks/",
            user_home=settings.user_home,
            mcp_scope_override="user",
        )

    @property
    def is_global(self) -> bool:
        return self.kind == ScopeKind.GLOBAL

    @property
    def index_key(self) -> str:
        """Key identifying this scope in the project index."""
        return GLOBAL_SCOPE_KEY if self.is_global else str(self.project_path)

    @property
    def working_dir(self) -> Path:
        """Directory scripts and commands run in."""
        return self.project_path or self.user_home

    def copy_destination(self, action: CopyPackFileAction) -> str:
        """Scope-relative destination of a copied file."""
        subdir = COPY_SUBDIRS[action.file_type]
        return f"{subdir}/{action.destination}" if subdir else action.destination

    def resolve(self, relative: str) -> Path:
        """
        Absolute path of a scope-relative path.

        Raises:
            PathEscapeError: If the path leaves the scope root
        """
        return resolve_within(self.root, relative)

    def hook_command(self, destination: str) -> str:
        return f"{self.hook_prefix}{destination}"

    def mcp_scope(self, action: McpServerAction) -> str:
        return self.mcp_scope_override or action.scope
