"""
Engine configuration for packsmith.

EngineSettings holds every path and timeout the engine needs. Settings are
read from an optional YAML file at `<home>/config.yaml` and then overridden
by environment variables:

    PACKSMITH_HOME       Registry root (default: ~/.packsmith)
    PACKSMITH_USER_HOME  Home directory holding .claude/ and .claude.json

Design Decisions:
    - Settings are frozen; tests build their own with explicit paths
    - Every derived path (registry, packs, staging, lock) is a property
    - No ambient singleton: the settings object is passed to each component
"""

import os
from pathlib import Path

import yaml
from pydantic import BaseModel, ConfigDict, Field


HOME_ENV_VAR = "PACKSMITH_HOME"
USER_HOME_ENV_VAR = "PACKSMITH_USER_HOME"
CONFIG_FILE_NAME = "config.yaml"


def _default_home() -> Path:
    return Path.home() / ".packsmith"


class EngineSettings(BaseModel):
    """
    Paths and limits used by the engine.

    Attributes:
        home: Registry root holding registry.yaml, pack checkouts and the lock file
        user_home: Directory treated as the user's home (.claude/, .claude.json)
        git_timeout_seconds: Timeout for each git invocation
        script_timeout_seconds: Timeout for configure and fix scripts
        command_timeout_seconds: Timeout for short commands (brew list, prompt scripts)
        install_timeout_seconds: Timeout for brew installs and shell-command actions
        gitignore_path: Explicit global gitignore file (resolved from git config if unset)
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    home: Path = Field(
        default_factory=_default_home,
        description="Registry root directory",
    )
    user_home: Path = Field(
        default_factory=Path.home,
        description="Home directory for .claude/ and .claude.json",
    )
    git_timeout_seconds: float = Field(
        default=120,
        description="Timeout for git operations",
        gt=0,
    )
    script_timeout_seconds: float = Field(
        default=30,
        description="Timeout for configure and fix scripts",
        gt=0,
    )
    command_timeout_seconds: float = Field(
        default=10,
        description="Timeout for short helper commands",
        gt=0,
    )
    install_timeout_seconds: float = Field(
        default=600,
        description="Timeout for package installs and install-time shell commands",
        gt=0,
    )
    gitignore_path: Path | None = Field(
        default=None,
        description="Global gitignore file (defaults to git's core.excludesFile)",
    )

    @property
    def registry_path(self) -> Path:
        return self.home / "registry.yaml"

    @property
    def packs_dir(self) -> Path:
        return self.home / "packs"

    @property
    def staging_dir(self) -> Path:
        return self.packs_dir / ".staging"

    @property
    def lock_path(self) -> Path:
        return self.home / ".lock"

    @property
    def global_state_path(self) -> Path:
        return self.home / "global-state.json"

    @property
    def projects_index_path(self) -> Path:
        return self.home / "projects.yaml"

    @property
    def backups_dir(self) -> Path:
        return self.home / "backups"

    @classmethod
    def load(cls, home: Path | str | None = None) -> "EngineSettings":
        """
        Build settings from the config file and environment.

        Args:
            home: Explicit registry root (takes precedence over $PACKSMITH_HOME)

        Returns:
            EngineSettings instance

        Raises:
            ValidationError: If config.yaml contains unknown or invalid keys
        """
        if home is None and os.environ.get(HOME_ENV_VAR):
            home = os.environ[HOME_ENV_VAR]
        resolved_home = Path(home).expanduser() if home is not None else _default_home()

        data: dict = {}
        config_path = resolved_home / CONFIG_FILE_NAME
        if config_path.exists():
            with config_path.open() as f:
                data = yaml.safe_load(f) or {}

        data["home"] = resolved_home
        if os.environ.get(USER_HOME_ENV_VAR):
            data["user_home"] = Path(os.environ[USER_HOME_ENV_VAR]).expanduser()

        return cls.model_validate(data)
