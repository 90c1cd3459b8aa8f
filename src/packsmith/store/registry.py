"""
Pack registry: the list of packs known to this machine.

The registry is a single YAML document at `<home>/registry.yaml`:

    packs:
      - identifier: my-pack
        displayName: My Pack
        version: 1.0.0
        sourceURL: https://github.com/user/my-pack.git
        ref: v1.0.0
        commitSHA: 3f2a...
        localPath: /home/me/.packsmith/packs/my-pack
        isLocal: false
        addedAt: "2026-01-01T00:00:00+00:00"
        trustedScriptHashes:
          hooks/session.sh: 9b1c...
          inline:4e07...: 51d2...

Design Decisions:
    - Load, mutate, save: the file is always read and written whole
    - Writes go through a temp file and os.replace
    - A missing file is an empty registry; an unparsable one is an error
      (RegistryCorruptError), never silently reset
"""

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from packsmith.errors import RegistryCorruptError, RegistryIOError
from packsmith.pack.manifest import CopyPackFileAction, Manifest, McpServerAction
from packsmith.store.files import atomic_write_text, now_iso

logger = logging.getLogger(__name__)


class RegistryEntry(BaseModel):
    """
    One registered pack.

    Attributes:
        identifier: Pack identifier (unique within the registry)
        display_name: Human-readable name
        version: Pack version at registration/update time
        source_url: Git URL, or the directory for local packs
        ref: Requested tag/branch/commit, if any
        commit_sha: Checked-out commit (None for local packs)
        local_path: Directory holding the pack on disk
        is_local: Whether the pack is used in place
        added_at: ISO-8601 UTC registration time
        trusted_script_hashes: Trust hash map approved by the user
    """

    model_config = ConfigDict(extra="ignore", alias_generator=to_camel, populate_by_name=True)

    identifier: str
    display_name: str = ""
    version: str = ""
    source_url: str = Field(..., alias="sourceURL")
    ref: str | None = None
    commit_sha: str | None = Field(default=None, alias="commitSHA")
    local_path: str
    is_local: bool = False
    added_at: str = Field(default_factory=now_iso)
    trusted_script_hashes: dict[str, str] = Field(default_factory=dict)

    @property
    def path(self) -> Path:
        return Path(self.local_path)

    @property
    def short_sha(self) -> str:
        if self.is_local:
            return "local"
        return (self.commit_sha or "")[:7]


class RegistryFile:
    """
    Registry document with an explicit load/mutate/save cycle.

    Example:
        registry = RegistryFile(settings.registry_path).load()
        registry.register(entry)
        registry.save()
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        self._entries: list[RegistryEntry] = []

    def load(self) -> "RegistryFile":
        """
        Read the registry from disk (missing file means empty).

        Raises:
            RegistryIOError: If the file can't be read
            RegistryCorruptError: If the YAML or schema is invalid
        """
        self._entries = []
        if not self.path.exists():
            return self

        try:
            text = self.path.read_text(encoding="utf-8")
        except OSError as e:
            raise RegistryIOError(path=str(self.path), underlying_error=str(e)) from e

        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as e:
            raise RegistryCorruptError(path=str(self.path), underlying_error=str(e)) from e

        if data is None:
            return self
        if not isinstance(data, dict) or not isinstance(data.get("packs", []), list):
            raise RegistryCorruptError(
                path=str(self.path),
                underlying_error="expected a mapping with a 'packs' list",
            )

        try:
            self._entries = [RegistryEntry.model_validate(item) for item in data.get("packs") or []]
        except ValidationError as e:
            raise RegistryCorruptError(path=str(self.path), underlying_error=str(e)) from e
        return self

    def save(self) -> None:
        """
        Write the registry atomically.

        Raises:
            RegistryIOError: If the file can't be written
        """
        document = {
            "packs": [
                entry.model_dump(mode="json", by_alias=True, exclude_none=True)
                for entry in self._entries
            ]
        }
        try:
            atomic_write_text(self.path, yaml.safe_dump(document, sort_keys=False, allow_unicode=True))
        except OSError as e:
            raise RegistryIOError(path=str(self.path), underlying_error=str(e)) from e
        logger.debug("Saved registry with %d pack(s) to %s", len(self._entries), self.path)

    def entries(self) -> list[RegistryEntry]:
        return list(self._entries)

    def get(self, identifier: str) -> RegistryEntry | None:
        for entry in self._entries:
            if entry.identifier == identifier:
                return entry
        return None

    def register(self, entry: RegistryEntry) -> None:
        """Add an entry, replacing any existing one with the same identifier in place."""
        for index, existing in enumerate(self._entries):
            if existing.identifier == entry.identifier:
                self._entries[index] = entry
                return
        self._entries.append(entry)

    def remove(self, identifier: str) -> bool:
        """Remove an entry; returns False if it wasn't registered."""
        before = len(self._entries)
        self._entries = [e for e in self._entries if e.identifier != identifier]
        return len(self._entries) != before

    def __contains__(self, identifier: object) -> bool:
        return any(e.identifier == identifier for e in self._entries)

    def __len__(self) -> int:
        return len(self._entries)


# =============================================================================
# Collisions
# =============================================================================


@dataclass(frozen=True)
class Collision:
    """
    Two packs declaring the same artifact.

    Attributes:
        kind: mcpServer, file, templateSection or component
        name: The conflicting artifact name
        pack: The candidate pack
        other_pack: The already registered pack
    """

    kind: str
    name: str
    pack: str
    other_pack: str

    def describe(self) -> str:
        return f"{self.kind} '{self.name}' is declared by both '{self.pack}' and '{self.other_pack}'"


def _artifacts(manifest: Manifest) -> dict[str, set[str]]:
    servers: set[str] = set()
    files: set[str] = set()
    for component in manifest.components:
        action = component.install_action
        if isinstance(action, McpServerAction):
            servers.add(action.name)
        elif isinstance(action, CopyPackFileAction):
            files.add(f"{action.file_type.value}:{action.destination}")
    return {
        "mcpServer": servers,
        "file": files,
        "templateSection": {t.section_identifier for t in manifest.templates},
        "component": {c.id for c in manifest.components},
    }


def detect_collisions(candidate: Manifest, others: Iterable[Manifest]) -> list[Collision]:
    """
    Report artifacts the candidate shares with any other pack.

    Packs with the candidate's own identifier are ignored, so re-checking an
    updated version of a registered pack doesn't collide with itself.
    """
    mine = _artifacts(candidate)
    collisions: list[Collision] = []
    for other in others:
        if other.identifier == candidate.identifier:
            continue
        theirs = _artifacts(other)
        for kind, names in mine.items():
            for name in sorted(names & theirs[kind]):
                collisions.append(Collision(kind=kind, name=name, pack=candidate.identifier, other_pack=other.identifier))
    return collisions
