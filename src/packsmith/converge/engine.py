"""
Convergence engine: make a scope match the desired set of packs.

Given the packs previously configured in a scope and the packs now desired,
converge() removes what is no longer wanted, (re)installs everything that
is, and rewrites the per-scope ledger (ProjectState).

Convergence Protocol:
    1. Validate peer dependencies               (raises, nothing touched)
    2. Detect artifact collisions               (raises unless confirmed)
    3. Resolve each pack's component plan       (raises on cycles)
    4. Unconfigure removed packs from their ArtifactRecord
    5. Resolve prompt values (shared keys asked once)
    6. Install each pack's actions, recording what was created
    7. Compose the settings document
    8. Compose the template document
    9. Run configure scripts
    10. Add gitignore entries
    11. Persist the ledger

Failure model:
    Steps 1-3 are all-or-nothing. From step 4 on, a failing action is
    attributed to its pack as a PackFailure and the run continues. The
    ledger is saved after every step that changes disk, so an interrupted
    run is repaired by running again.

Idempotence:
    Settings keys and hook commands recorded in the ledger are stripped
    before recomposition, and every write is "set to desired" rather than
    "append", so converging twice yields identical files and records.
"""

import json
import logging
import shutil
import stat
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from pathlib import Path

from packsmith.config import EngineSettings
from packsmith.converge.gitignore import GitignoreManager, resolve_gitignore_path
from packsmith.converge.scope import SyncScope
from packsmith.converge.servers import McpRegistrar
from packsmith.converge.settings import SettingsDocument
from packsmith.converge.templates import (
    SectionContribution,
    compose_document,
    find_placeholders,
    remove_section,
    strip_edit_markers,
    substitute,
)
from packsmith.errors import (
    ActionFailedError,
    CollisionError,
    ConfigureScriptError,
    PacksmithError,
    PeerDependencyError,
)
from packsmith.pack.loader import LoadedPack, ManifestLoader, PeerStatus, validate_peer_dependencies
from packsmith.pack.manifest import (
    BrewInstallAction,
    Component,
    CopyFileType,
    CopyPackFileAction,
    GitignoreEntriesAction,
    Manifest,
    McpServerAction,
    PluginAction,
    SettingsFileAction,
    SettingsMergeAction,
    ShellCommandAction,
)
from packsmith.pack.prompts import CrossPackPromptResolver, PromptAnswerer, PromptExecutor, built_in_values
from packsmith.pack.resolver import DependencyResolver, select_components
from packsmith.paths import resolve_within
from packsmith.runner import CommandRunner
from packsmith.store.backup import BackupStore
from packsmith.store.files import atomic_write_text, read_text
from packsmith.store.index import ProjectIndex, ResourceRefCounter
from packsmith.store.registry import Collision, RegistryFile, detect_collisions
from packsmith.store.state import ArtifactRecord, McpServerRef, ProjectState

logger = logging.getLogger(__name__)

ConfirmCollisions = Callable[[list[Collision]], bool]


@dataclass(frozen=True)
class PackFailure:
    """
    A recoverable failure attributed to one pack.

    Attributes:
        identifier: Pack the failure belongs to
        step: Convergence step (install, settings, templates, configure, ...)
        message: Human-readable description
        code: Error code of the underlying PacksmithError (0 for OS errors)
    """

    identifier: str
    step: str
    message: str
    code: int = 0


@dataclass
class ConvergenceResult:
    """
    Outcome of a converge() run.

    Attributes:
        configured: Packs configured in the scope after the run
        removed: Packs unconfigured during the run
        failures: Per-pack recoverable failures
        records: Final ArtifactRecord per configured pack
        unresolved_placeholders: Pack -> placeholder keys left unsubstituted
        backups: Copies taken of files this run overwrote
    """

    configured: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
    failures: list[PackFailure] = field(default_factory=list)
    records: dict[str, ArtifactRecord] = field(default_factory=dict)
    unresolved_placeholders: dict[str, list[str]] = field(default_factory=dict)
    backups: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures

    def failures_for(self, identifier: str) -> list[PackFailure]:
        return [f for f in self.failures if f.identifier == identifier]

    def to_dict(self) -> dict:
        return {
            "configured": list(self.configured),
            "removed": list(self.removed),
            "failures": [
                {"pack": f.identifier, "step": f.step, "message": f.message, "code": f.code}
                for f in self.failures
            ],
            "unresolved_placeholders": dict(self.unresolved_placeholders),
            "backups": list(self.backups),
        }


@dataclass
class _PackWork:
    """Per-pack scratch data carried between steps."""

    pack: LoadedPack
    components: list[Component]
    previous: ArtifactRecord
    record: ArtifactRecord = field(default_factory=ArtifactRecord)
    values: dict[str, str] = field(default_factory=dict)
    hooks: list[tuple[str, str]] = field(default_factory=list)

    @property
    def identifier(self) -> str:
        return self.pack.identifier


class ConvergenceEngine:
    """
    Reconcile one scope with a desired pack list.

    Example:
        engine = ConvergenceEngine(SyncScope.project(path, settings), registry,
                                   CommandRunner(), StaticAnswerer(), settings)
        state = ProjectState.load(engine.scope.state_path)
        result = engine.converge(None, [LoadedPack(manifest, pack_path)], state)

    Given the project index, gitignore entries and user-scope MCP servers that
    a pack in another scope still declares are left in place on removal.
    """

    def __init__(
        self,
        scope: SyncScope,
        registry: RegistryFile,
        runner: CommandRunner,
        answerer: PromptAnswerer,
        settings: EngineSettings,
        index: ProjectIndex | None = None,
    ) -> None:
        self.scope = scope
        self.registry = registry
        self.runner = runner
        self.answerer = answerer
        self.settings = settings
        self.registrar = McpRegistrar(scope.user_home, scope.project_path)
        self.resolver = DependencyResolver()
        self.refs = ResourceRefCounter(index, registry) if index is not None else None
        self.backups = BackupStore(settings.backups_dir)
        self._other_states: list[ProjectState] | None = None
        self._gitignore: GitignoreManager | None = None

    @property
    def gitignore(self) -> GitignoreManager:
        if self._gitignore is None:
            self._gitignore = GitignoreManager(resolve_gitignore_path(self.settings, self.runner))
        return self._gitignore

    # -------------------------------------------------------------------------
    # Entry point
    # -------------------------------------------------------------------------

    def converge(
        self,
        previous_ids: Sequence[str] | None,
        desired_packs: Sequence[LoadedPack],
        state: ProjectState,
        exclusions: dict[str, list[str]] | None = None,
        allow_collisions: bool = False,
        confirm_collisions: ConfirmCollisions | None = None,
    ) -> ConvergenceResult:
        """
        Converge the scope.

        Args:
            previous_ids: Packs configured before this run (defaults to the ledger)
            desired_packs: Packs to configure, in processing order
            state: The scope's ledger (updated in place and saved)
            exclusions: Pack -> excluded component ids (replaces stored exclusions)
            allow_collisions: Skip the collision confirmation
            confirm_collisions: Called with detected collisions; True proceeds

        Raises:
            PeerDependencyError: If peer dependencies are unmet
            CollisionError: If collisions exist and weren't confirmed
            DependencyCycleError, UnknownComponentError: If a plan can't be resolved
        """
        previous = set(state.configured_packs if previous_ids is None else previous_ids)
        desired_ids = [p.identifier for p in desired_packs]
        result = ConvergenceResult()

        self._check_peers(desired_packs)
        self._check_collisions(desired_packs, allow_collisions, confirm_collisions)

        if exclusions is not None:
            for identifier in desired_ids:
                state.set_exclusions(identifier, exclusions.get(identifier, []))
        work = [
            _PackWork(
                pack=pack,
                components=self._plan(pack, desired_packs, state.exclusions(pack.identifier)),
                previous=state.artifacts(pack.identifier).model_copy(deep=True),
            )
            for pack in desired_packs
        ]

        keep = self._declared_gitignore(desired_packs)
        for identifier in sorted(previous - set(desired_ids)):
            if self._unconfigure(identifier, state, keep, result):
                state.drop(identifier)
                result.removed.append(identifier)
            state.save(self.scope.state_path)

        self._resolve_values(work, result)

        for item in work:
            self._install(item, result)
            self._remove_stale(item, result)
            item.record.settings_keys = list(item.previous.settings_keys)
            item.record.hook_commands = list(item.previous.hook_commands)
            item.record.template_sections = list(item.previous.template_sections)
            item.record.gitignore_entries = list(item.previous.gitignore_entries)
            state.record(item.identifier, item.record)
            state.save(self.scope.state_path)

        self._compose_settings(work, state, result)
        state.save(self.scope.state_path)

        self._compose_templates(work, result)
        state.save(self.scope.state_path)

        self._run_configure_scripts(work, result)

        self._apply_gitignore(work, result)
        state.save(self.scope.state_path)

        result.configured = list(state.configured_packs)
        result.records = {item.identifier: item.record for item in work}
        result.backups = [str(path) for path in self.backups.created]
        for failure in result.failures:
            logger.warning("%s: %s failed: %s", failure.identifier, failure.step, failure.message)
        return result

    def unconfigure_all(self, state: ProjectState) -> ConvergenceResult:
        """Remove every configured pack from the scope."""
        return self.converge(None, [], state)

    def remove_packs(self, identifiers: Sequence[str], state: ProjectState) -> ConvergenceResult:
        """
        Unconfigure some packs and leave the rest of the scope as it is.

        Unlike converge(), nothing is reinstalled, so no pack needs to load.
        Gitignore entries still declared by a remaining pack are kept.
        """
        result = ConvergenceResult()
        wanted = set(identifiers)
        targets = [i for i in state.configured_packs if i in wanted]
        keep = self._declared_gitignore(self._loadable([i for i in state.configured_packs if i not in targets]))
        for identifier in targets:
            if self._unconfigure(identifier, state, keep, result):
                state.drop(identifier)
                result.removed.append(identifier)
            state.save(self.scope.state_path)
        result.configured = list(state.configured_packs)
        result.backups = [str(path) for path in self.backups.created]
        for failure in result.failures:
            logger.warning("%s: %s failed: %s", failure.identifier, failure.step, failure.message)
        return result

    def _loadable(self, identifiers: Sequence[str]) -> list[LoadedPack]:
        packs = []
        for identifier in identifiers:
            entry = self.registry.get(identifier)
            if entry is None:
                continue
            try:
                packs.append(LoadedPack(manifest=ManifestLoader(entry.path).load(), path=entry.path))
            except PacksmithError as e:
                logger.debug("Could not load %s: %s", identifier, e.message)
        return packs

    # -------------------------------------------------------------------------
    # Pre-flight
    # -------------------------------------------------------------------------

    @staticmethod
    def _check_peers(desired_packs: Sequence[LoadedPack]) -> None:
        issues = [
            r.describe()
            for r in validate_peer_dependencies([p.manifest for p in desired_packs])
            if r.status != PeerStatus.SATISFIED
        ]
        if issues:
            raise PeerDependencyError(issues=issues)

    def _registered_manifests(self, exclude: set[str]) -> list[Manifest]:
        manifests = []
        for entry in self.registry.entries():
            if entry.identifier in exclude:
                continue
            try:
                manifests.append(ManifestLoader(entry.path).load())
            except PacksmithError as e:
                logger.debug("Skipping collision check against %s: %s", entry.identifier, e.message)
        return manifests

    def find_collisions(self, desired_packs: Sequence[LoadedPack]) -> list[Collision]:
        """Collisions between each desired pack and every other desired or registered pack."""
        desired = [p.manifest for p in desired_packs]
        registered = self._registered_manifests({m.identifier for m in desired})
        collisions: list[Collision] = []
        for index, manifest in enumerate(desired):
            collisions.extend(detect_collisions(manifest, desired[index + 1:] + registered))
        return collisions

    def _check_collisions(
        self,
        desired_packs: Sequence[LoadedPack],
        allow_collisions: bool,
        confirm_collisions: ConfirmCollisions | None,
    ) -> None:
        collisions = self.find_collisions(desired_packs)
        if not collisions or allow_collisions:
            return
        if confirm_collisions is not None and confirm_collisions(collisions):
            return
        raise CollisionError(collisions=[c.describe() for c in collisions])

    def _plan(
        self,
        pack: LoadedPack,
        desired_packs: Sequence[LoadedPack],
        excluded: list[str],
    ) -> list[Component]:
        universe = [c for p in desired_packs for c in p.manifest.components]
        plan = self.resolver.resolve(select_components(pack.manifest, excluded), universe)
        own = [r.component for r in plan if r.id.startswith(pack.manifest.namespace)]
        foreign = [r.id for r in plan if not r.id.startswith(pack.manifest.namespace)]
        if foreign:
            logger.debug("%s depends on components of other packs: %s", pack.identifier, foreign)
        return own

    # -------------------------------------------------------------------------
    # Removal
    # -------------------------------------------------------------------------

    def _fail(self, result: ConvergenceResult, identifier: str, step: str, error: Exception) -> None:
        if isinstance(error, PacksmithError):
            result.failures.append(PackFailure(identifier, step, error.message, error.code))
        else:
            result.failures.append(PackFailure(identifier, step, str(error)))

    def _delete_file(self, relative: str) -> None:
        path = self.scope.resolve(relative)
        if path.is_file() or path.is_symlink():
            path.unlink()
        root = self.scope.root.resolve()
        parent = path.parent
        while parent != root and root in parent.parents:
            try:
                parent.rmdir()
            except OSError:
                break
            parent = parent.parent

    def _write_template(self, text: str) -> None:
        path = self.scope.template_path
        if not text:
            if path.exists():
                self.backups.backup(path)
                path.unlink()
            return
        if not path.exists() or read_text(path) != text:
            self.backups.backup(path)
            atomic_write_text(path, text)

    def _declared_gitignore(self, packs: Sequence[LoadedPack]) -> set[str]:
        declared: set[str] = set()
        for pack in packs:
            for component in pack.manifest.components:
                if isinstance(component.install_action, GitignoreEntriesAction):
                    declared.update(e.strip() for e in component.install_action.entries)
        return declared

    def _releasable_entries(self, entries: Sequence[str]) -> list[str]:
        """Gitignore entries no pack in another scope still declares."""
        if self.refs is None:
            return list(entries)
        released = []
        for entry in entries:
            if self.refs.gitignore_entry_in_use(entry, self.scope.index_key):
                logger.info("Keeping gitignore entry %s: still used by another scope", entry)
            else:
                released.append(entry)
        return released

    def _recorded_elsewhere(self, entry: str) -> bool:
        """Whether another indexed scope recorded `entry` as added by one of its packs."""
        if self.refs is None:
            return False
        if self._other_states is None:
            self._other_states = []
            for indexed in self.refs.index.projects:
                if indexed.path == self.scope.index_key:
                    continue
                if not indexed.is_global and not Path(indexed.path).is_dir():
                    continue
                try:
                    path = SyncScope.from_index_key(indexed.path, self.settings).state_path
                    self._other_states.append(ProjectState.load(path))
                except PacksmithError as e:
                    logger.debug("Skipping state of %s: %s", indexed.path, e.message)
        return any(
            entry in record.gitignore_entries
            for state in self._other_states
            for record in state.pack_artifacts.values()
        )

    def _release_server(self, server: McpServerRef) -> None:
        if (
            server.scope == "user"
            and self.refs is not None
            and self.refs.user_server_in_use(server.name, self.scope.index_key)
        ):
            logger.info("Keeping MCP server %s: still used by another scope", server.name)
            return
        self.registrar.deregister(server.name, server.scope)

    def _unconfigure(
        self,
        identifier: str,
        state: ProjectState,
        keep_gitignore: set[str],
        result: ConvergenceResult,
    ) -> bool:
        """Reverse everything a pack's record lists. Returns False if anything failed."""
        record = state.artifacts(identifier)
        logger.info("Removing %s", identifier)
        try:
            for server in record.mcp_servers:
                self._release_server(server)
            for relative in record.files:
                self._delete_file(relative)

            if record.settings_keys or record.hook_commands:
                document = SettingsDocument.load(self.scope.settings_path)
                document.remove_hook_commands(record.hook_commands)
                document.remove_keys(record.settings_keys)
                document.save(self.backups)

            if record.template_sections and self.scope.template_path.exists():
                path = self.scope.template_path
                text = read_text(path)
                for section_id in record.template_sections:
                    text = remove_section(text, section_id, str(path))
                self._write_template(text)

            if record.gitignore_entries:
                unused = [e for e in record.gitignore_entries if e not in keep_gitignore]
                self.gitignore.remove(self._releasable_entries(unused))
        except (PacksmithError, OSError, ValueError) as e:
            self._fail(result, identifier, "unconfigure", e)
            return False
        return True

    def _remove_stale(self, item: _PackWork, result: ConvergenceResult) -> None:
        """Remove files and servers a retained pack no longer produces."""
        current_files = set(item.record.files)
        current_servers = {(s.name, s.scope) for s in item.record.mcp_servers}
        try:
            for server in item.previous.mcp_servers:
                if (server.name, server.scope) not in current_servers:
                    self._release_server(server)
            for relative in item.previous.files:
                if relative not in current_files:
                    self._delete_file(relative)
        except (PacksmithError, OSError, ValueError) as e:
            self._fail(result, item.identifier, "cleanup", e)

    # -------------------------------------------------------------------------
    # Prompts
    # -------------------------------------------------------------------------

    def _resolve_values(self, work: list[_PackWork], result: ConvergenceResult) -> None:
        base = built_in_values(self.scope.project_path, self.runner)
        resolver = CrossPackPromptResolver(self.answerer)
        shared = resolver.resolve(resolver.shared_prompts([item.pack.manifest for item in work]))
        executor = PromptExecutor(self.answerer, self.runner, self.settings.command_timeout_seconds)

        for item in work:
            item.values = {**base, **shared}
            try:
                item.values.update(executor.execute_all(
                    item.pack.manifest.prompts,
                    item.pack.path,
                    self.scope.working_dir,
                    skip_keys=list(shared),
                ))
            except PacksmithError as e:
                self._fail(result, item.identifier, "prompts", e)

    # -------------------------------------------------------------------------
    # Install
    # -------------------------------------------------------------------------

    def _install(self, item: _PackWork, result: ConvergenceResult) -> None:
        logger.info("Configuring %s (%d component(s))", item.identifier, len(item.components))
        for component in item.components:
            try:
                self._install_component(item, component)
            except (PacksmithError, OSError, ValueError) as e:
                self._fail(result, item.identifier, f"install {component.id}", e)

    def _install_component(self, item: _PackWork, component: Component) -> None:
        action = component.install_action
        if isinstance(action, McpServerAction):
            ref = self.registrar.register(action, self.scope.mcp_scope(action), item.values)
            item.record.mcp_servers.append(ref)
        elif isinstance(action, CopyPackFileAction):
            item.record.files.extend(self._copy(item, action))
            target = component.hook_command_target
            if target is not None and component.hook_event:
                item.hooks.append((component.hook_event, self.scope.hook_command(target)))
        elif isinstance(action, ShellCommandAction):
            outcome = self.runner.run_shell(
                action.command,
                cwd=self.scope.working_dir,
                timeout=self.settings.install_timeout_seconds,
            )
            if not outcome.succeeded:
                raise ActionFailedError(
                    component_id=component.id,
                    message=f"Shell command for '{component.id}' exited {outcome.returncode}: {outcome.stderr.strip()}",
                )
        elif isinstance(action, BrewInstallAction):
            self._brew_install(component, action)
        elif isinstance(action, (PluginAction, SettingsMergeAction, SettingsFileAction)):
            pass  # settings composition
        elif isinstance(action, GitignoreEntriesAction):
            pass  # gitignore step

    def _brew_install(self, component: Component, action: BrewInstallAction) -> None:
        if self.runner.which("brew") is None:
            raise ActionFailedError(
                component_id=component.id,
                message=f"Cannot install '{action.package}': brew is not installed",
            )
        listed = self.runner.run(["brew", "list", action.package], timeout=self.settings.command_timeout_seconds)
        if listed.succeeded:
            logger.debug("brew package %s already installed", action.package)
            return
        installed = self.runner.run(
            ["brew", "install", action.package],
            timeout=self.settings.install_timeout_seconds,
        )
        if not installed.succeeded:
            raise ActionFailedError(
                component_id=component.id,
                message=f"brew install {action.package} failed: {installed.stderr.strip()}",
            )

    def _copy(self, item: _PackWork, action: CopyPackFileAction) -> list[str]:
        """Copy a pack file or directory into the scope; returns scope-relative paths written."""
        pack_root = item.pack.path.resolve()
        source = resolve_within(pack_root, action.source)
        destination = self.scope.copy_destination(action)

        if source.is_dir():
            # Symlinks inside a copied directory must not reach outside the pack
            pairs = [
                (
                    resolve_within(pack_root, path.relative_to(pack_root)),
                    f"{destination}/{path.relative_to(source).as_posix()}",
                )
                for path in sorted(source.rglob("*"))
                if path.is_file()
            ]
        else:
            pairs = [(source, destination)]

        written = []
        for src, relative in pairs:
            target = self.scope.resolve(relative)
            self._copy_file(src, target, item.values, owned=relative in item.previous.files)
            if action.file_type == CopyFileType.HOOK:
                target.chmod(target.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
            written.append(relative)
        return written

    def _copy_file(self, source: Path, target: Path, values: dict[str, str], owned: bool) -> None:
        """Write `target` if its bytes differ; a file the pack didn't write before is backed up first."""
        target.parent.mkdir(parents=True, exist_ok=True)
        data = source.read_bytes()
        try:
            text = substitute(data.decode("utf-8"), values)
        except UnicodeDecodeError:
            text = None
        content = data if text is None else text.encode("utf-8")
        if target.exists() and target.read_bytes() == content:
            return
        if not owned:
            self.backups.backup(target)
        if text is None:
            shutil.copyfile(source, target)
        else:
            atomic_write_text(target, text)

    # -------------------------------------------------------------------------
    # Settings
    # -------------------------------------------------------------------------

    def _compose_settings(self, work: list[_PackWork], state: ProjectState, result: ConvergenceResult) -> None:
        try:
            document = SettingsDocument.load(self.scope.settings_path)
        except PacksmithError as e:
            for item in work:
                self._fail(result, item.identifier, "settings", e)
            return

        owned_keys = [k for record in state.pack_artifacts.values() for k in record.settings_keys]
        owned_hooks = [h for record in state.pack_artifacts.values() for h in record.hook_commands]
        document.remove_hook_commands(owned_hooks)
        document.remove_keys(owned_keys)

        for item in work:
            keys: list[str] = []
            hooks: list[str] = []
            for component in item.components:
                action = component.install_action
                try:
                    if isinstance(action, PluginAction):
                        inserted = document.enable_plugin(action.bare_name)
                        if inserted:
                            keys.append(inserted)
                    elif isinstance(action, (SettingsFileAction, SettingsMergeAction)) and action.source:
                        keys.extend(document.merge(self._settings_fragment(item, action.source)))
                except (PacksmithError, OSError, ValueError) as e:
                    self._fail(result, item.identifier, f"settings {component.id}", e)
            for event, command in item.hooks:
                if document.add_hook(event, command):
                    hooks.append(command)
            item.record.settings_keys = keys
            item.record.hook_commands = hooks

        try:
            document.save(self.backups)
        except OSError as e:
            for item in work:
                self._fail(result, item.identifier, "settings", e)

    @staticmethod
    def _settings_fragment(item: _PackWork, source: str) -> dict:
        text = resolve_within(item.pack.path, source).read_text(encoding="utf-8")
        fragment = json.loads(substitute(text, item.values))
        if not isinstance(fragment, dict):
            raise ValueError(f"Settings file {source} must contain a JSON object")
        return fragment

    # -------------------------------------------------------------------------
    # Templates
    # -------------------------------------------------------------------------

    def _compose_templates(self, work: list[_PackWork], result: ConvergenceResult) -> None:
        path = self.scope.template_path
        try:
            text = read_text(path) if path.exists() else ""
        except OSError as e:
            for item in work:
                self._fail(result, item.identifier, "templates", e)
            return

        for item in work:
            manifest = item.pack.manifest
            contributions = []
            try:
                for template in manifest.templates:
                    raw = resolve_within(item.pack.path, template.content_file).read_text(encoding="utf-8")
                    content = substitute(strip_edit_markers(raw), item.values)
                    unresolved = find_placeholders(content)
                    if unresolved:
                        result.unresolved_placeholders.setdefault(item.identifier, []).extend(unresolved)
                        logger.warning(
                            "%s: unresolved placeholders in %s: %s",
                            item.identifier, template.content_file, ", ".join(unresolved),
                        )
                    contributions.append(SectionContribution(template.section_identifier, manifest.version, content))

                current = {c.identifier for c in contributions}
                for stale in item.previous.template_sections:
                    if stale not in current:
                        text = remove_section(text, stale, str(path))
                text = compose_document(text, contributions, str(path))
                item.record.template_sections = [c.identifier for c in contributions]
            except (PacksmithError, OSError) as e:
                self._fail(result, item.identifier, "templates", e)

        try:
            self._write_template(text)
        except OSError as e:
            for item in work:
                self._fail(result, item.identifier, "templates", e)

    # -------------------------------------------------------------------------
    # Configure scripts
    # -------------------------------------------------------------------------

    def _run_configure_scripts(self, work: list[_PackWork], result: ConvergenceResult) -> None:
        for item in work:
            configure = item.pack.manifest.configure_project
            if configure is None:
                continue
            env = {"PROJECT_PATH": str(self.scope.working_dir)}
            env.update({f"RESOLVED_{key.upper()}": value for key, value in item.values.items()})
            try:
                outcome = self.runner.run_script(
                    configure.script,
                    item.pack.path,
                    cwd=self.scope.working_dir,
                    env=env,
                    timeout=self.settings.script_timeout_seconds,
                )
                if not outcome.succeeded:
                    raise ConfigureScriptError(
                        identifier=item.identifier,
                        returncode=outcome.returncode,
                        stderr=outcome.stderr.strip(),
                    )
            except (PacksmithError, OSError) as e:
                self._fail(result, item.identifier, "configure", e)

    # -------------------------------------------------------------------------
    # Gitignore
    # -------------------------------------------------------------------------

    def _apply_gitignore(self, work: list[_PackWork], result: ConvergenceResult) -> None:
        declared_by_all = self._declared_gitignore([item.pack for item in work])
        for item in work:
            entries = [
                entry.strip()
                for component in item.components
                if isinstance(component.install_action, GitignoreEntriesAction)
                for entry in component.install_action.entries
            ]
            previous = set(item.previous.gitignore_entries)
            if not entries and not previous:
                continue
            try:
                stale = self._releasable_entries(
                    [e for e in previous if e not in entries and e not in declared_by_all]
                )
                if stale:
                    self.gitignore.remove(stale)
                added = set(self.gitignore.add(entries)) if entries else set()
                # An entry another scope added is shared, so this scope owns it too
                item.record.gitignore_entries = [
                    e for e in dict.fromkeys(entries)
                    if e in added or e in previous or self._recorded_elsewhere(e)
                ]
            except (PacksmithError, OSError) as e:
                self._fail(result, item.identifier, "gitignore", e)
