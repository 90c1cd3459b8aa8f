"""
Cross-scope project index and shared-resource reference counting.

`<home>/projects.yaml` records which packs each scope had configured at its
last sync:

    indexVersion: 1
    projects:
      - path: /home/me/work/app
        packs: [docs, linting]
        lastSynced: "2026-01-01T00:00:00+00:00"
      - path: __global__
        packs: [docs]
        lastSynced: "2026-01-01T00:00:00+00:00"

Some artifacts are shared by every scope: entries in the global gitignore
and MCP servers registered at user scope. Before one scope removes such an
artifact, ResourceRefCounter asks the index whether a pack configured in any
other scope still declares it.

Design Decisions:
    - The global scope is stored under the `__global__` sentinel and is never pruned
    - A project whose directory is gone is skipped and pruned on the next sync
    - A pack that can't be loaded counts as still using everything
"""

import logging
from dataclasses import dataclass
from pathlib import Path

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from packsmith.errors import PacksmithError, ProjectIndexCorruptError, StorageError
from packsmith.pack.loader import ManifestLoader
from packsmith.pack.manifest import GitignoreEntriesAction, McpServerAction
from packsmith.store.files import atomic_write_text, now_iso
from packsmith.store.registry import RegistryFile

logger = logging.getLogger(__name__)

INDEX_VERSION = 1
GLOBAL_SCOPE_KEY = "__global__"


class IndexedScope(BaseModel):
    model_config = ConfigDict(extra="ignore", alias_generator=to_camel, populate_by_name=True)

    path: str
    packs: list[str] = Field(default_factory=list)
    last_synced: str = Field(default_factory=now_iso)

    @property
    def is_global(self) -> bool:
        return self.path == GLOBAL_SCOPE_KEY


class ProjectIndex(BaseModel):
    """
    Index document.

    Example:
        index = ProjectIndex.load(settings.projects_index_path)
        index.upsert(scope.index_key, state.configured_packs)
        index.save(settings.projects_index_path)
    """

    model_config = ConfigDict(extra="ignore", alias_generator=to_camel, populate_by_name=True)

    index_version: int = INDEX_VERSION
    projects: list[IndexedScope] = Field(default_factory=list)

    @classmethod
    def load(cls, path: Path) -> "ProjectIndex":
        """
        Read the index; a missing file is an empty index.

        Raises:
            ProjectIndexCorruptError: If the file can't be read or parsed
        """
        if not path.exists():
            return cls()
        try:
            data = yaml.safe_load(path.read_text(encoding="utf-8"))
            if data is None:
                return cls()
            if not isinstance(data, dict):
                raise ProjectIndexCorruptError(path=str(path), underlying_error="expected a mapping")
            return cls.model_validate(data)
        except (OSError, yaml.YAMLError, ValidationError) as e:
            raise ProjectIndexCorruptError(path=str(path), underlying_error=str(e)) from e

    def save(self, path: Path) -> None:
        document = self.model_dump(mode="json", by_alias=True)
        try:
            atomic_write_text(path, yaml.safe_dump(document, sort_keys=False))
        except OSError as e:
            raise StorageError(path=str(path), message=f"Could not write project index {path}: {e}") from e

    def get(self, key: str) -> IndexedScope | None:
        for scope in self.projects:
            if scope.path == key:
                return scope
        return None

    def upsert(self, key: str, pack_ids: list[str]) -> None:
        """Record a scope's configured packs; a scope with none is dropped."""
        if not pack_ids:
            self.remove(key)
            return
        entry = IndexedScope(path=key, packs=sorted(set(pack_ids)))
        existing = self.get(key)
        if existing is None:
            self.projects.append(entry)
        else:
            self.projects[self.projects.index(existing)] = entry

    def remove(self, key: str) -> bool:
        before = len(self.projects)
        self.projects = [scope for scope in self.projects if scope.path != key]
        return len(self.projects) != before

    def remove_pack(self, identifier: str) -> None:
        """Forget a pack everywhere, dropping scopes left with no packs."""
        kept = []
        for scope in self.projects:
            packs = [pack for pack in scope.packs if pack != identifier]
            if packs:
                kept.append(scope.model_copy(update={"packs": packs}))
        self.projects = kept

    def scopes_with_pack(self, identifier: str) -> list[IndexedScope]:
        return [scope for scope in self.projects if identifier in scope.packs]

    def prune_stale(self) -> list[str]:
        """Drop projects whose directory no longer exists; returns their paths."""
        stale = [
            scope.path for scope in self.projects
            if not scope.is_global and not Path(scope.path).is_dir()
        ]
        if stale:
            self.projects = [scope for scope in self.projects if scope.path not in stale]
            logger.info("Pruned %d missing project(s) from the index", len(stale))
        return stale


@dataclass(frozen=True)
class _Declared:
    gitignore: frozenset[str]
    user_servers: frozenset[str]
    all_servers: frozenset[str]


class ResourceRefCounter:
    """
    Answers whether a shared artifact is still declared by another scope.

    Attributes:
        index: Project index to consult
        registry: Registry used to load the indexed packs
    """

    def __init__(self, index: ProjectIndex, registry: RegistryFile) -> None:
        self.index = index
        self.registry = registry
        self._declared: dict[str, _Declared | None] = {}

    def gitignore_entry_in_use(self, entry: str, excluding_scope: str) -> bool:
        return self._in_use(lambda declared, scope: entry in declared.gitignore, excluding_scope)

    def user_server_in_use(self, name: str, excluding_scope: str) -> bool:
        """Whether a user-scope MCP server is still declared elsewhere."""
        return self._in_use(
            lambda declared, scope: name in (declared.all_servers if scope.is_global else declared.user_servers),
            excluding_scope,
        )

    def _in_use(self, declares, excluding_scope: str) -> bool:
        for scope in self.index.projects:
            if scope.path == excluding_scope:
                continue
            if not scope.is_global and not Path(scope.path).is_dir():
                continue
            for identifier in scope.packs:
                declared = self._load(identifier)
                if declared is None or declares(declared, scope):
                    return True
        return False

    def _load(self, identifier: str) -> _Declared | None:
        if identifier in self._declared:
            return self._declared[identifier]
        declared = None
        entry = self.registry.get(identifier)
        if entry is None:
            logger.debug("Treating %s as in use: not registered", identifier)
        else:
            try:
                manifest = ManifestLoader(entry.path).load()
            except PacksmithError as e:
                logger.debug("Treating %s as in use: %s", identifier, e.message)
            else:
                actions = [c.install_action for c in manifest.components]
                servers = [a for a in actions if isinstance(a, McpServerAction)]
                declared = _Declared(
                    gitignore=frozenset(
                        e.strip() for a in actions if isinstance(a, GitignoreEntriesAction) for e in a.entries
                    ),
                    user_servers=frozenset(s.name for s in servers if s.scope == "user"),
                    all_servers=frozenset(s.name for s in servers),
                )
        self._declared[identifier] = declared
        return declared
