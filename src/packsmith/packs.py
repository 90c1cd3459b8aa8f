"""
Pack manager: the registry-mutating operations.

PackManager ties fetching, validation, trust and the registry together:

    add:    fetch -> validate -> collisions -> trust -> commit -> register
    update: stage copy -> git update -> validate -> re-trust changes -> commit
    remove: unconfigure in every indexed scope -> deregister -> delete checkout
    sync:   (lockfile pins | updates) -> verify trust -> converge -> index -> lockfile

Every operation holds the registry lock for its whole duration, so two
packsmith processes never interleave registry writes. Staged checkouts are
discarded on any failure; the registered checkout is only replaced once the
new revision validated and was trusted.

Design Decisions:
    - Trust is re-asked on update only for items that are new or changed
    - The trusted hash map is recomputed from the approved revision, so
      files a pack stopped shipping are no longer expected on disk
    - A tampered checkout is repaired by `update`, which re-trusts even
      when the upstream commit did not move
"""

import logging
import shutil
from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from packsmith.config import EngineSettings
from packsmith.converge.engine import ConfirmCollisions, ConvergenceEngine, ConvergenceResult
from packsmith.converge.scope import SyncScope
from packsmith.errors import (
    CollisionError,
    LockfileCorruptError,
    ManifestValidationError,
    PackAlreadyRegisteredError,
    PackNotRegisteredError,
    PacksmithError,
)
from packsmith.pack.fetcher import FetchResult, PackFetcher, PackSource, SourceKind
from packsmith.pack.loader import LoadedPack, ManifestLoader
from packsmith.pack.manifest import Manifest
from packsmith.pack.prompts import PromptAnswerer, StaticAnswerer
from packsmith.pack.trust import ConfirmTrust, TrustManager
from packsmith.runner import CommandRunner
from packsmith.store.index import ProjectIndex
from packsmith.store.lock import registry_lock
from packsmith.store.lockfile import LockCheckoutResult, Lockfile, LockMismatch
from packsmith.store.registry import RegistryEntry, RegistryFile, detect_collisions
from packsmith.store.state import ProjectState

logger = logging.getLogger(__name__)


def decline_all(_grouped: object) -> bool:
    """Trust callback for non-interactive runs: approve nothing."""
    return False


class UpdateStatus(str, Enum):
    UPDATED = "updated"
    UNCHANGED = "unchanged"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(frozen=True)
class UpdateOutcome:
    """
    Result of updating one pack.

    Attributes:
        identifier: Pack identifier
        status: updated, unchanged, skipped (local) or failed
        old_sha: Commit before the update
        new_sha: Commit after the update
        message: Failure or skip reason
    """

    identifier: str
    status: UpdateStatus
    old_sha: str | None = None
    new_sha: str | None = None
    message: str = ""

    def to_dict(self) -> dict:
        return {
            "identifier": self.identifier,
            "status": self.status.value,
            "old_sha": self.old_sha,
            "new_sha": self.new_sha,
            "message": self.message,
        }


@dataclass
class SyncReport:
    """
    Everything a sync did.

    Attributes:
        result: The convergence result
        lock_results: Per-pack outcome of checking out lockfile pins
        updates: Per-pack outcome of --update
        lockfile_path: Lockfile written for the project, if any
        lock_drift: Pins in the previous lockfile that this sync moved or failed to restore
    """

    result: ConvergenceResult
    lock_results: list[LockCheckoutResult] = field(default_factory=list)
    updates: list[UpdateOutcome] = field(default_factory=list)
    lockfile_path: Path | None = None
    lock_drift: list[LockMismatch] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return (
            self.result.ok
            and all(r.ok for r in self.lock_results)
            and all(u.status != UpdateStatus.FAILED for u in self.updates)
        )

    def to_dict(self) -> dict:
        data = self.result.to_dict()
        data["lock"] = [
            {"identifier": r.identifier, "sha": r.sha, "ok": r.ok, "skipped": r.skipped, "message": r.message}
            for r in self.lock_results
        ]
        data["updates"] = [u.to_dict() for u in self.updates]
        data["lockfile"] = str(self.lockfile_path) if self.lockfile_path else None
        data["drift"] = [
            {"identifier": m.identifier, "locked": m.locked, "current": m.current} for m in self.lock_drift
        ]
        return data


class PackManager:
    """
    Add, update, remove and sync registered packs.

    Example:
        manager = PackManager(EngineSettings.load())
        entry = manager.add("user/my-pack", confirm_trust=lambda grouped: True)
        report = manager.sync(SyncScope.project(Path("."), manager.settings),
                              StaticAnswerer(), pack_ids=[entry.identifier])
    """

    def __init__(
        self,
        settings: EngineSettings,
        runner: CommandRunner | None = None,
        trust: TrustManager | None = None,
    ) -> None:
        self.settings = settings
        self.runner = runner or CommandRunner()
        self.fetcher = PackFetcher(settings, self.runner)
        self.trust = trust or TrustManager()

    def registry(self) -> RegistryFile:
        """Freshly loaded registry."""
        return RegistryFile(self.settings.registry_path).load()

    def _registered_manifests(self, registry: RegistryFile) -> list[Manifest]:
        manifests = []
        for entry in registry.entries():
            try:
                manifests.append(ManifestLoader(entry.path).load())
            except PacksmithError as e:
                logger.warning("Registered pack %s could not be loaded: %s", entry.identifier, e.message)
        return manifests

    def _retrust(
        self,
        previous: dict[str, str],
        manifest: Manifest,
        pack_root: Path,
        confirm_trust: ConfirmTrust,
    ) -> dict[str, str]:
        """Ask about new or changed items only; return the full hash map of the approved revision."""
        changes = self.trust.detect_changes(previous, manifest, pack_root)
        if changes:
            self.trust.decide(changes, pack_root, confirm_trust, manifest.identifier)
        return self.trust.compute_hashes(self.trust.analyze(manifest, pack_root), pack_root)

    def _intact(self, entry: RegistryEntry, staged_root: Path, manifest: Manifest) -> bool:
        """Whether both the staged copy and the registered checkout still match the trusted hashes."""
        if not self.trust.verify(entry.trusted_script_hashes, staged_root, manifest).ok:
            return False
        try:
            current = ManifestLoader(entry.path).load()
        except PacksmithError:
            return False
        return self.trust.verify(entry.trusted_script_hashes, entry.path, current).ok

    # -------------------------------------------------------------------------
    # add
    # -------------------------------------------------------------------------

    def add(
        self,
        source_text: str,
        ref: str | None = None,
        confirm_trust: ConfirmTrust = decline_all,
        confirm_collisions: ConfirmCollisions | None = None,
        cwd: Path | None = None,
    ) -> RegistryEntry:
        """
        Fetch, validate, trust and register a pack.

        Args:
            source_text: Git URL, user/repo shorthand or local directory
            ref: Tag, branch or commit to check out
            confirm_trust: Shown the grouped executable items; True approves
            confirm_collisions: Shown detected collisions; True proceeds
            cwd: Base directory for relative local sources

        Returns:
            The new RegistryEntry

        Raises:
            InvalidSourceError, FetchError: If the source can't be fetched
            ManifestError: If the pack is invalid
            PackAlreadyRegisteredError: If the identifier is taken
            CollisionError: If collisions exist and weren't confirmed
            TrustDeclinedError: If the user declined
            LockHeldError: If another process holds the registry lock
        """
        source = PackSource.resolve(source_text, cwd)
        with registry_lock(self.settings.home):
            registry = self.registry()
            fetched = self.fetcher.fetch(source, ref)
            try:
                manifest = ManifestLoader(fetched.local_path).load()
                if manifest.identifier in registry:
                    raise PackAlreadyRegisteredError(
                        path=str(self.settings.registry_path),
                        identifier=manifest.identifier,
                    )

                collisions = detect_collisions(manifest, self._registered_manifests(registry))
                if collisions and not (confirm_collisions and confirm_collisions(collisions)):
                    raise CollisionError(collisions=[c.describe() for c in collisions])

                items = self.trust.analyze(manifest, fetched.local_path)
                decision = self.trust.decide(items, fetched.local_path, confirm_trust, manifest.identifier)
            except BaseException:
                self.fetcher.discard(fetched)
                raise

            path = self.fetcher.commit(fetched, manifest.identifier)
            entry = RegistryEntry(
                identifier=manifest.identifier,
                display_name=manifest.display_name,
                version=manifest.version,
                source_url=source.location,
                ref=ref,
                commit_sha=fetched.commit_sha,
                local_path=str(path),
                is_local=source.is_local,
                trusted_script_hashes=decision.trusted_hashes,
            )
            registry.register(entry)
            registry.save()

        logger.info("Added %s v%s (%s)", entry.identifier, entry.version, entry.short_sha)
        return entry

    # -------------------------------------------------------------------------
    # update
    # -------------------------------------------------------------------------

    def update(self, identifier: str, confirm_trust: ConfirmTrust = decline_all) -> UpdateOutcome:
        """
        Move one pack to the newest revision of its ref.

        Raises:
            PackNotRegisteredError: If the pack isn't registered
            FetchError, ManifestError, TrustDeclinedError: If the update fails
                (the registered checkout is left untouched)
        """
        with registry_lock(self.settings.home):
            registry = self.registry()
            outcome = self._update(registry, identifier, confirm_trust)
            if outcome.status == UpdateStatus.UPDATED:
                registry.save()
        return outcome

    def update_all(self, confirm_trust: ConfirmTrust = decline_all) -> list[UpdateOutcome]:
        """Update every registered pack; one pack failing doesn't stop the others."""
        with registry_lock(self.settings.home):
            registry = self.registry()
            outcomes = [
                self._update_isolated(registry, entry.identifier, confirm_trust)
                for entry in registry.entries()
            ]
            if any(o.status == UpdateStatus.UPDATED for o in outcomes):
                registry.save()
        return outcomes

    def _update_isolated(self, registry: RegistryFile, identifier: str, confirm_trust: ConfirmTrust) -> UpdateOutcome:
        try:
            return self._update(registry, identifier, confirm_trust)
        except (PacksmithError, OSError) as e:
            message = e.message if isinstance(e, PacksmithError) else str(e)
            logger.warning("Update of %s failed: %s", identifier, message)
            entry = registry.get(identifier)
            return UpdateOutcome(
                identifier,
                UpdateStatus.FAILED,
                old_sha=entry.commit_sha if entry else None,
                message=message,
            )

    def _update(self, registry: RegistryFile, identifier: str, confirm_trust: ConfirmTrust) -> UpdateOutcome:
        entry = registry.get(identifier)
        if entry is None:
            raise PackNotRegisteredError(path=str(registry.path), identifier=identifier)
        if entry.is_local:
            return UpdateOutcome(identifier, UpdateStatus.SKIPPED, message="local packs are used in place")

        source = PackSource(kind=SourceKind.GIT, location=entry.source_url)
        staged = self.fetcher.stage_copy(entry.path, source, entry.ref)
        try:
            new_sha = self.fetcher.update(staged.local_path, entry.ref)
            manifest = ManifestLoader(staged.local_path).load()
            if manifest.identifier != identifier:
                raise ManifestValidationError(
                    pack_path=str(staged.local_path),
                    identifier=manifest.identifier,
                    field_name="identifier",
                    reason=f"changed from '{identifier}'",
                )
            if new_sha is None and self._intact(entry, staged.local_path, manifest):
                self.fetcher.discard(staged)
                return UpdateOutcome(identifier, UpdateStatus.UNCHANGED, entry.commit_sha, entry.commit_sha)

            hashes = self._retrust(entry.trusted_script_hashes, manifest, staged.local_path, confirm_trust)
        except BaseException:
            self.fetcher.discard(staged)
            raise

        new_sha = new_sha or staged.commit_sha
        path = self.fetcher.commit(FetchResult(source, staged.local_path, new_sha, entry.ref), identifier)
        registry.register(entry.model_copy(update={
            "version": manifest.version,
            "display_name": manifest.display_name,
            "commit_sha": new_sha,
            "local_path": str(path),
            "trusted_script_hashes": hashes,
        }))
        logger.info("Updated %s to %s", identifier, (new_sha or "")[:7])
        return UpdateOutcome(identifier, UpdateStatus.UPDATED, entry.commit_sha, new_sha)

    # -------------------------------------------------------------------------
    # remove / load
    # -------------------------------------------------------------------------

    def remove(self, identifier: str) -> RegistryEntry:
        """
        Uninstall a pack everywhere, deregister it and delete its checkout.

        Every scope the project index lists with the pack is unconfigured
        first, while the pack is still registered. A scope that can't be
        unconfigured is logged and skipped; its next sync reverses the pack
        from the recorded artifacts. Local packs are left on disk.

        Raises:
            PackNotRegisteredError: If the pack isn't registered
        """
        with registry_lock(self.settings.home):
            registry = self.registry()
            entry = registry.get(identifier)
            if entry is None:
                raise PackNotRegisteredError(path=str(registry.path), identifier=identifier)

            index = ProjectIndex.load(self.settings.projects_index_path)
            self._uninstall_everywhere(identifier, registry, index)
            index.remove_pack(identifier)
            index.save(self.settings.projects_index_path)

            registry.remove(identifier)
            registry.save()

        managed = entry.path.resolve().is_relative_to(self.settings.packs_dir.resolve())
        if not entry.is_local and managed and entry.path.exists():
            shutil.rmtree(entry.path)
        logger.info("Removed %s", identifier)
        return entry

    def _uninstall_everywhere(self, identifier: str, registry: RegistryFile, index: ProjectIndex) -> None:
        for indexed in index.scopes_with_pack(identifier):
            if not indexed.is_global and not Path(indexed.path).is_dir():
                continue
            scope = SyncScope.from_index_key(indexed.path, self.settings)
            engine = ConvergenceEngine(scope, registry, self.runner, StaticAnswerer(), self.settings, index)
            try:
                state = ProjectState.load(scope.state_path)
                result = engine.remove_packs([identifier], state)
                if scope.project_path is not None and not scope.is_global:
                    self._write_lockfile(scope.project_path, state, registry)
            except (PacksmithError, OSError) as e:
                message = e.message if isinstance(e, PacksmithError) else str(e)
                logger.warning("Could not remove %s from %s: %s", identifier, indexed.path, message)
                continue
            index.upsert(scope.index_key, state.configured_packs)
            if result.removed:
                logger.info("Unconfigured %s in %s", identifier, indexed.path)

    def load_registered(self, identifier: str, registry: RegistryFile | None = None) -> LoadedPack:
        """
        Load a registered pack after verifying its trusted content.

        Raises:
            PackNotRegisteredError: If the pack isn't registered
            TamperedPackError: If trusted content changed on disk
            TrustIOError: If trusted files couldn't be read
            ReferencedFilesMissingError: If an untrusted referenced file is missing
        """
        registry = registry if registry is not None else self.registry()
        entry = registry.get(identifier)
        if entry is None:
            raise PackNotRegisteredError(path=str(registry.path), identifier=identifier)
        loader = ManifestLoader(entry.path)
        manifest = loader.load(check_files=False)
        self.trust.verify_or_raise(entry.trusted_script_hashes, entry.path, manifest)
        loader.require_files(manifest)
        return LoadedPack(manifest=manifest, path=entry.path)

    # -------------------------------------------------------------------------
    # sync
    # -------------------------------------------------------------------------

    def apply_lockfile(
        self,
        lockfile: Lockfile,
        registry: RegistryFile,
        confirm_trust: ConfirmTrust = decline_all,
    ) -> list[LockCheckoutResult]:
        """
        Check out every pin and re-trust what changed.

        Registry entries are updated to the pinned commits; the caller saves.
        """
        results = lockfile.checkout_locked(self.fetcher, registry)
        for result in results:
            if not result.ok:
                logger.warning("Could not check out %s@%s: %s", result.identifier, result.sha[:7], result.message)
                continue
            if result.skipped:
                continue
            entry = registry.get(result.identifier)
            manifest = ManifestLoader(entry.path).load()
            hashes = self._retrust(entry.trusted_script_hashes, manifest, entry.path, confirm_trust)
            registry.register(entry.model_copy(update={
                "commit_sha": result.sha,
                "version": manifest.version,
                "trusted_script_hashes": hashes,
            }))
        return results

    def sync(
        self,
        scope: SyncScope,
        answerer: PromptAnswerer,
        pack_ids: Sequence[str] | None = None,
        use_lock: bool = False,
        update: bool = False,
        confirm_trust: ConfirmTrust = decline_all,
        confirm_collisions: ConfirmCollisions | None = None,
        exclusions: dict[str, list[str]] | None = None,
    ) -> SyncReport:
        """
        Converge a scope with the given packs (default: the packs already configured).

        Args:
            scope: Project or global scope
            answerer: Answers prompts
            pack_ids: Desired packs, in processing order
            use_lock: Check out the project's lockfile pins first
            update: Update the desired packs first (ignored with use_lock)
            confirm_trust: Asked about content changed by pins or updates
            confirm_collisions: Asked about artifact collisions
            exclusions: Pack -> excluded component ids

        Raises:
            LockHeldError, PackNotRegisteredError, TamperedPackError,
            PeerDependencyError, CollisionError, DependencyCycleError
        """
        report_updates: list[UpdateOutcome] = []
        lock_results: list[LockCheckoutResult] = []
        lock_drift: list[LockMismatch] = []
        lockfile_path = None
        is_project = scope.project_path is not None and not scope.is_global

        with registry_lock(self.settings.home):
            registry = self.registry()
            state = ProjectState.load(scope.state_path)
            index = ProjectIndex.load(self.settings.projects_index_path)

            lockfile = None
            if use_lock and is_project:
                lockfile = Lockfile.load(scope.project_path)
                if lockfile is None:
                    logger.warning("No lockfile in %s; syncing current checkouts", scope.project_path)
            previous_lock = lockfile if use_lock or not is_project else self._existing_lockfile(scope.project_path)

            if pack_ids is not None:
                ids = list(dict.fromkeys(pack_ids))
            elif lockfile is not None and not state.configured_packs:
                ids = [p.identifier for p in lockfile.packs]
            else:
                ids = self._still_registered(state.configured_packs, registry)

            if lockfile is not None:
                lock_results = self.apply_lockfile(lockfile, registry, confirm_trust)
                registry.save()
            elif update:
                report_updates = [self._update_isolated(registry, i, confirm_trust) for i in ids]
                if any(u.status == UpdateStatus.UPDATED for u in report_updates):
                    registry.save()

            desired = [self.load_registered(identifier, registry) for identifier in ids]
            engine = ConvergenceEngine(scope, registry, self.runner, answerer, self.settings, index)
            result = engine.converge(
                None,
                desired,
                state,
                exclusions=exclusions,
                confirm_collisions=confirm_collisions,
            )

            index.upsert(scope.index_key, state.configured_packs)
            index.prune_stale()
            index.save(self.settings.projects_index_path)

            if is_project:
                if previous_lock is not None:
                    lock_drift = [
                        m for m in previous_lock.mismatches(registry)
                        if m.current is None or m.identifier in state.configured_packs
                    ]
                    for mismatch in lock_drift:
                        logger.info(
                            "%s: lockfile pin moves from %s to %s",
                            mismatch.identifier, mismatch.locked[:7], (mismatch.current or "")[:7],
                        )
                lockfile_path = self._write_lockfile(scope.project_path, state, registry)

        return SyncReport(result, lock_results, report_updates, lockfile_path, lock_drift)

    @staticmethod
    def _still_registered(identifiers: Sequence[str], registry: RegistryFile) -> list[str]:
        """Drop configured packs that were deregistered; converge() reverses them from their records."""
        gone = [i for i in identifiers if i not in registry]
        if gone:
            logger.warning("No longer registered, removing from scope: %s", ", ".join(gone))
        return [i for i in identifiers if i in registry]

    @staticmethod
    def _existing_lockfile(project_path: Path) -> Lockfile | None:
        try:
            return Lockfile.load(project_path)
        except LockfileCorruptError as e:
            logger.warning("Ignoring unreadable lockfile: %s", e.message)
            return None

    @staticmethod
    def _write_lockfile(project_path: Path, state: ProjectState, registry: RegistryFile) -> Path | None:
        path = Lockfile.path_for(project_path)
        if not state.configured_packs:
            if path.exists():
                path.unlink()
            return None
        return Lockfile.from_state(state.configured_packs, registry).save(project_path)