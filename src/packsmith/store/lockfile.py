"""
Project lockfile: exact pack commits for reproducible syncs.

`<project>/packsmith.lock.yaml` pins every configured pack to the commit its
checkout was at when the project was last synced:

    lockfileVersion: 1
    generatedAt: "2026-01-01T00:00:00+00:00"
    packs:
      - identifier: my-pack
        commitSHA: 3f2a9c1...
        source: https://github.com/user/my-pack.git
        ref: v1.0.0

Local packs have no commit identity; they are pinned as `commitSHA: local`
with `source` set to their directory and are never checked out.
"""

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from packsmith.errors import FetchError, LockfileCorruptError, StorageError
from packsmith.pack.fetcher import PackFetcher
from packsmith.store.files import atomic_write_text, now_iso
from packsmith.store.registry import RegistryFile

logger = logging.getLogger(__name__)

LOCKFILE_NAME = "packsmith.lock.yaml"
LOCKFILE_VERSION = 1
LOCAL_PIN = "local"


class LockedPack(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore", alias_generator=to_camel, populate_by_name=True)

    identifier: str
    commit_sha: str = Field(..., alias="commitSHA")
    source: str
    ref: str | None = None

    @property
    def is_local(self) -> bool:
        return self.commit_sha == LOCAL_PIN


@dataclass(frozen=True)
class LockMismatch:
    """A locked pack whose registry commit differs from its pin (current is None if unregistered)."""

    identifier: str
    locked: str
    current: str | None


@dataclass(frozen=True)
class LockCheckoutResult:
    identifier: str
    sha: str
    ok: bool
    skipped: bool = False
    message: str = ""


class Lockfile(BaseModel):
    """
    Lockfile document.

    Example:
        lock = Lockfile.from_state(state.configured_packs, registry)
        lock.save(project_path)
        ...
        lock = Lockfile.load(project_path)
        for mismatch in lock.mismatches(registry): ...
    """

    model_config = ConfigDict(extra="ignore", alias_generator=to_camel, populate_by_name=True)

    lockfile_version: int = LOCKFILE_VERSION
    generated_at: str = Field(default_factory=now_iso)
    packs: list[LockedPack] = Field(default_factory=list)

    @staticmethod
    def path_for(project_path: Path) -> Path:
        return project_path / LOCKFILE_NAME

    @classmethod
    def from_state(cls, pack_ids: Iterable[str], registry: RegistryFile) -> "Lockfile":
        """Pin every configured pack that is still registered, sorted by identifier."""
        packs = []
        for identifier in sorted(set(pack_ids)):
            entry = registry.get(identifier)
            if entry is None:
                logger.debug("Not locking %s: no longer registered", identifier)
                continue
            if entry.is_local:
                packs.append(LockedPack(identifier=identifier, commit_sha=LOCAL_PIN, source=entry.local_path))
            else:
                packs.append(LockedPack(
                    identifier=identifier,
                    commit_sha=entry.commit_sha or "",
                    source=entry.source_url,
                    ref=entry.ref,
                ))
        return cls(packs=packs)

    @classmethod
    def load(cls, project_path: Path) -> "Lockfile | None":
        """
        Read the project's lockfile, or None if there isn't one.

        Raises:
            LockfileCorruptError: If the file can't be read or parsed
        """
        path = cls.path_for(project_path)
        if not path.exists():
            return None
        try:
            data = yaml.safe_load(path.read_text(encoding="utf-8"))
            if not isinstance(data, dict):
                raise LockfileCorruptError(path=str(path), underlying_error="expected a mapping")
            return cls.model_validate(data)
        except (OSError, yaml.YAMLError, ValidationError) as e:
            raise LockfileCorruptError(path=str(path), underlying_error=str(e)) from e

    def save(self, project_path: Path) -> Path:
        """Write the lockfile atomically and return its path."""
        path = self.path_for(project_path)
        document = self.model_dump(mode="json", by_alias=True, exclude_none=True)
        try:
            atomic_write_text(path, yaml.safe_dump(document, sort_keys=False))
        except OSError as e:
            raise StorageError(path=str(path), message=f"Could not write lockfile {path}: {e}") from e
        return path

    def get(self, identifier: str) -> LockedPack | None:
        for pack in self.packs:
            if pack.identifier == identifier:
                return pack
        return None

    def mismatches(self, registry: RegistryFile) -> list[LockMismatch]:
        """Locked packs whose registered commit differs from the pin."""
        results = []
        for pack in self.packs:
            entry = registry.get(pack.identifier)
            if entry is None:
                results.append(LockMismatch(pack.identifier, pack.commit_sha, None))
                continue
            current = LOCAL_PIN if entry.is_local else entry.commit_sha
            if current != pack.commit_sha:
                results.append(LockMismatch(pack.identifier, pack.commit_sha, current))
        return results

    def checkout_locked(self, fetcher: PackFetcher, registry: RegistryFile) -> list[LockCheckoutResult]:
        """
        Check out every pinned commit in its registered checkout.

        Local pins are skipped. Failures are reported per pack; the registry
        itself is not modified.
        """
        results = []
        for pack in self.packs:
            if pack.is_local:
                results.append(LockCheckoutResult(pack.identifier, pack.commit_sha, ok=True, skipped=True))
                continue
            entry = registry.get(pack.identifier)
            if entry is None:
                results.append(LockCheckoutResult(
                    pack.identifier, pack.commit_sha, ok=False, message="pack is not registered",
                ))
                continue
            try:
                fetcher.checkout(entry.path, pack.commit_sha)
            except FetchError as e:
                results.append(LockCheckoutResult(pack.identifier, pack.commit_sha, ok=False, message=e.message))
                continue
            results.append(LockCheckoutResult(pack.identifier, pack.commit_sha, ok=True))
        return results
