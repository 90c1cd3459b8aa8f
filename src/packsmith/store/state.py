"""
Per-scope convergence ledger.

ProjectState records which packs are configured in a scope and exactly what
each one installed (ArtifactRecord). Unconfiguring a pack reverses only
what its record lists, so the record must never claim an artifact the
engine didn't create.

Stored as JSON at `<project>/.claude/.mcs-project` (project scope) or
`<home>/global-state.json` (global scope).
"""

import json
import logging
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from packsmith import __version__
from packsmith.errors import StateCorruptError, StateIOError
from packsmith.store.files import now_iso, write_json

logger = logging.getLogger(__name__)


class StateModel(BaseModel):
    model_config = ConfigDict(extra="ignore", alias_generator=to_camel, populate_by_name=True)


class McpServerRef(StateModel):
    model_config = ConfigDict(frozen=True)

    name: str
    scope: str


class ArtifactRecord(StateModel):
    """
    Everything one pack installed into a scope.

    Attributes:
        mcp_servers: Registered servers (name + registration scope)
        files: Copied paths, relative to the scope root
        template_sections: Section ids written into the template document
        hook_commands: Hook commands added to the settings document
        settings_keys: Leaf dot-paths this pack inserted into settings
        gitignore_entries: Gitignore lines this pack actually added
    """

    mcp_servers: list[McpServerRef] = Field(default_factory=list)
    files: list[str] = Field(default_factory=list)
    template_sections: list[str] = Field(default_factory=list)
    hook_commands: list[str] = Field(default_factory=list)
    settings_keys: list[str] = Field(default_factory=list)
    gitignore_entries: list[str] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not any((
            self.mcp_servers,
            self.files,
            self.template_sections,
            self.hook_commands,
            self.settings_keys,
            self.gitignore_entries,
        ))


class ProjectState(StateModel):
    """
    Ledger for one scope.

    Attributes:
        mcs_version: Engine version that last wrote the file
        configured_at: ISO-8601 UTC time of the last write
        configured_packs: Sorted identifiers of configured packs
        pack_artifacts: Identifier -> ArtifactRecord
        excluded_components: Identifier -> sorted excluded component ids
    """

    mcs_version: str = Field(default=__version__, alias="mcsVersion")
    configured_at: str | None = None
    configured_packs: list[str] = Field(default_factory=list)
    pack_artifacts: dict[str, ArtifactRecord] = Field(default_factory=dict)
    excluded_components: dict[str, list[str]] = Field(default_factory=dict)

    # -------------------------------------------------------------------------
    # Persistence
    # -------------------------------------------------------------------------

    @classmethod
    def load(cls, path: Path) -> "ProjectState":
        """
        Read the ledger (missing file means nothing is configured).

        Raises:
            StateIOError: If the file can't be read
            StateCorruptError: If the JSON or schema is invalid
        """
        if not path.exists():
            return cls()
        try:
            text = path.read_text(encoding="utf-8")
        except OSError as e:
            raise StateIOError(path=str(path), underlying_error=str(e)) from e
        try:
            return cls.model_validate(json.loads(text))
        except (json.JSONDecodeError, ValidationError) as e:
            raise StateCorruptError(path=str(path), underlying_error=str(e)) from e

    def save(self, path: Path) -> None:
        """
        Write the ledger atomically, stamping version and time.

        Raises:
            StateIOError: If the file can't be written
        """
        self.mcs_version = __version__
        self.configured_at = now_iso()
        self.configured_packs = sorted(set(self.configured_packs))
        try:
            write_json(path, self.model_dump(mode="json", by_alias=True, exclude_none=True))
        except OSError as e:
            raise StateIOError(path=str(path), underlying_error=str(e)) from e
        logger.debug("Saved state for %d pack(s) to %s", len(self.configured_packs), path)

    # -------------------------------------------------------------------------
    # Mutation
    # -------------------------------------------------------------------------

    def artifacts(self, identifier: str) -> ArtifactRecord:
        return self.pack_artifacts.get(identifier) or ArtifactRecord()

    def record(self, identifier: str, record: ArtifactRecord) -> None:
        """Mark a pack configured with its current artifact record."""
        self.pack_artifacts[identifier] = record
        if identifier not in self.configured_packs:
            self.configured_packs.append(identifier)
            self.configured_packs.sort()

    def drop(self, identifier: str) -> None:
        """Forget a pack entirely."""
        self.pack_artifacts.pop(identifier, None)
        self.excluded_components.pop(identifier, None)
        self.configured_packs = [p for p in self.configured_packs if p != identifier]

    def set_exclusions(self, identifier: str, excluded: list[str]) -> None:
        if excluded:
            self.excluded_components[identifier] = sorted(set(excluded))
        else:
            self.excluded_components.pop(identifier, None)

    def exclusions(self, identifier: str) -> list[str]:
        return list(self.excluded_components.get(identifier, []))
