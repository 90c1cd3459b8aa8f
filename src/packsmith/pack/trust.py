"""
Trust manager for pack content.

Packs can run code with the user's privileges: install-time shell commands,
configure scripts, hook files, doctor commands and fix scripts, prompt
scripts, and MCP servers that start on every session. The trust manager
finds all of it, asks for one consent decision per pack, and fingerprints
what was approved so later changes are detected.

Protocol:
    1. analyze()   - collect every TrustableItem from a validated manifest
    2. decide()    - one yes/no for the whole pack, producing trusted hashes
    3. verify()    - on every load, recompute hashes; any drift is tampering
    4. detect_changes() - after an update, only re-ask for items that changed

Hash keys:
    - File-backed items are keyed by their pack-relative path and hash the
      file's bytes.
    - Inline items are keyed by "inline:" + sha256(description) and hash the
      content text. The description is deterministic, so the key survives
      process restarts.

Security Note:
    Trust is consent, not isolation. Nothing here sandboxes execution.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from packsmith.errors import PathEscapeError, TamperedPackError, TrustDeclinedError, TrustIOError
from packsmith.pack.manifest import (
    Component,
    CopyFileType,
    CopyPackFileAction,
    DoctorCheckDefinition,
    DoctorCheckType,
    Manifest,
    McpServerAction,
    ShellCommandAction,
)
from packsmith.paths import resolve_within
from packsmith.store.files import compute_hash, hash_file

logger = logging.getLogger(__name__)

INLINE_KEY_PREFIX = "inline:"


class TrustItemType(str, Enum):
    """Classification of executable content."""

    SHELL_COMMAND = "shellCommand"
    CONFIGURE_SCRIPT = "configureScript"
    DOCTOR_COMMAND = "doctorCommand"
    DOCTOR_SCRIPT = "doctorScript"
    FIX_SCRIPT = "fixScript"
    MCP_SERVER_COMMAND = "mcpServerCommand"
    HOOK_FILE = "hookFile"
    PROMPT_SCRIPT = "promptScript"


@dataclass(frozen=True)
class TrustableItem:
    """
    One piece of content that will execute with user privilege.

    Attributes:
        type: Classification of the content
        content: Literal content (command text or file text)
        description: Why the user should care ("runs on every session", ...)
        relative_path: Pack-relative file path, None for inline content
    """

    type: TrustItemType
    content: str
    description: str
    relative_path: str | None = None

    @property
    def is_inline(self) -> bool:
        return self.relative_path is None

    @property
    def hash_key(self) -> str:
        if self.relative_path is not None:
            return self.relative_path
        return INLINE_KEY_PREFIX + compute_hash(self.description)


@dataclass(frozen=True)
class TrustDecision:
    """
    Result of a consent prompt.

    Attributes:
        approved: Whether the pack is trusted
        trusted_hashes: Hash map to persist in the registry entry
    """

    approved: bool
    trusted_hashes: dict[str, str] = field(default_factory=dict)


@dataclass
class VerificationResult:
    """
    Outcome of re-verifying trusted hashes.

    Attributes:
        tampered: Keys whose content changed or whose file disappeared
        unreadable: Keys whose file exists but couldn't be read
    """

    tampered: list[str] = field(default_factory=list)
    unreadable: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.tampered and not self.unreadable


# Callback that shows grouped items and returns the user's single decision
ConfirmTrust = Callable[[dict[TrustItemType, list[TrustableItem]]], bool]


class TrustManager:
    """
    Approve-once, verify-forever consent for pack content.

    Example:
        manager = TrustManager()
        items = manager.analyze(manifest, pack_root)
        decision = manager.decide(items, pack_root, confirm=ask_user)
        entry.trusted_script_hashes = decision.trusted_hashes
    """

    # -------------------------------------------------------------------------
    # Analysis
    # -------------------------------------------------------------------------

    def analyze(self, manifest: Manifest, pack_root: Path) -> list[TrustableItem]:
        """
        Collect every executable item declared by a validated manifest.

        Raises:
            TrustIOError: If a backing file can't be read
            PathEscapeError: If a backing file escapes the pack root
        """
        return self._collect(manifest, pack_root, read_files=True)

    def _collect(self, manifest: Manifest, pack_root: Path, read_files: bool) -> list[TrustableItem]:
        items: list[TrustableItem] = []

        for component in manifest.components:
            items.extend(self._component_items(component, pack_root, read_files))

        if manifest.configure_project is not None:
            items.append(self._file_item(
                TrustItemType.CONFIGURE_SCRIPT,
                manifest.configure_project.script,
                "Runs during project configuration",
                pack_root,
                manifest.identifier,
                read_files,
            ))

        for component in manifest.components:
            for check in component.doctor_checks:
                items.extend(self._check_items(check, component.id, pack_root, manifest.identifier, read_files))
        for index, check in enumerate(manifest.supplementary_doctor_checks):
            owner = f"{manifest.identifier} supplementary #{index}"
            items.extend(self._check_items(check, owner, pack_root, manifest.identifier, read_files))

        for prompt in manifest.prompts:
            if prompt.script_command:
                items.append(TrustableItem(
                    type=TrustItemType.PROMPT_SCRIPT,
                    content=prompt.script_command,
                    description=f"Prompt '{prompt.key}' runs a script during configuration",
                ))

        return items

    def _component_items(
        self,
        component: Component,
        pack_root: Path,
        read_files: bool = True,
    ) -> list[TrustableItem]:
        action = component.install_action
        if isinstance(action, ShellCommandAction):
            return [TrustableItem(
                type=TrustItemType.SHELL_COMMAND,
                content=action.command,
                description=f"{component.display_name} ({component.id}) runs during install",
            )]
        if isinstance(action, McpServerAction):
            return [TrustableItem(
                type=TrustItemType.MCP_SERVER_COMMAND,
                content=action.describe(),
                description=f"MCP server '{action.name}' ({component.id}) runs on every session",
            )]
        if isinstance(action, CopyPackFileAction) and action.file_type == CopyFileType.HOOK:
            source = resolve_within(pack_root, action.source)
            relatives = (
                [p.relative_to(pack_root.resolve()).as_posix() for p in sorted(source.rglob("*")) if p.is_file()]
                if source.is_dir()
                else [action.source]
            )
            return [
                self._file_item(
                    TrustItemType.HOOK_FILE,
                    relative,
                    f"Hook script from {component.id} runs on every session",
                    pack_root,
                    component.id,
                    read_files,
                )
                for relative in relatives
            ]
        return []

    def _check_items(
        self,
        check: DoctorCheckDefinition,
        owner: str,
        pack_root: Path,
        identifier: str,
        read_files: bool = True,
    ) -> list[TrustableItem]:
        items: list[TrustableItem] = []
        label = check.label

        if check.type == DoctorCheckType.COMMAND_EXISTS and check.command:
            items.append(TrustableItem(
                type=TrustItemType.DOCTOR_COMMAND,
                content=" ".join([check.command, *check.args]),
                description=f"Doctor check '{label}' ({owner}) runs a command",
            ))
        elif check.type == DoctorCheckType.SHELL_SCRIPT and check.command:
            script_path = self._existing_file(pack_root, check.command)
            if script_path is not None:
                items.append(self._file_item(
                    TrustItemType.DOCTOR_SCRIPT,
                    check.command,
                    f"Doctor script '{label}' ({owner})",
                    pack_root,
                    identifier,
                    read_files,
                ))
            else:
                items.append(TrustableItem(
                    type=TrustItemType.DOCTOR_SCRIPT,
                    content=check.command,
                    description=f"Doctor check '{label}' ({owner}) runs a shell script",
                ))

        if check.fix_command:
            items.append(TrustableItem(
                type=TrustItemType.DOCTOR_COMMAND,
                content=check.fix_command,
                description=f"Fix command for '{label}' ({owner}) runs when fixing",
            ))
        if check.fix_script:
            items.append(self._file_item(
                TrustItemType.FIX_SCRIPT,
                check.fix_script,
                f"Fix script for '{label}' ({owner}) runs when fixing",
                pack_root,
                identifier,
                read_files,
            ))
        return items

    @staticmethod
    def _existing_file(pack_root: Path, relative: str) -> Path | None:
        try:
            path = resolve_within(pack_root, relative)
        except PathEscapeError:
            return None
        return path if path.is_file() else None

    @staticmethod
    def _file_item(
        item_type: TrustItemType,
        relative: str,
        description: str,
        pack_root: Path,
        identifier: str,
        read_files: bool = True,
    ) -> TrustableItem:
        path = resolve_within(pack_root, relative)
        if not read_files:
            return TrustableItem(type=item_type, content="", description=description, relative_path=relative)
        try:
            content = path.read_bytes().decode("utf-8", errors="replace")
        except OSError as e:
            raise TrustIOError(identifier=identifier, paths=[relative]) from e
        return TrustableItem(
            type=item_type,
            content=content,
            description=description,
            relative_path=relative,
        )

    # -------------------------------------------------------------------------
    # Hashing & Decisions
    # -------------------------------------------------------------------------

    def compute_hashes(self, items: list[TrustableItem], pack_root: Path) -> dict[str, str]:
        """
        Fingerprint items: file bytes for file-backed items, content text for inline ones.

        Raises:
            TrustIOError: If a file can't be read
        """
        hashes: dict[str, str] = {}
        unreadable: list[str] = []
        for item in items:
            if item.relative_path is not None:
                try:
                    hashes[item.hash_key] = hash_file(resolve_within(pack_root, item.relative_path))
                except OSError:
                    unreadable.append(item.relative_path)
            else:
                hashes[item.hash_key] = compute_hash(item.content)
        if unreadable:
            raise TrustIOError(paths=sorted(unreadable))
        return hashes

    @staticmethod
    def group(items: list[TrustableItem]) -> dict[TrustItemType, list[TrustableItem]]:
        grouped: dict[TrustItemType, list[TrustableItem]] = {}
        for item in items:
            grouped.setdefault(item.type, []).append(item)
        return grouped

    def decide(
        self,
        items: list[TrustableItem],
        pack_root: Path,
        confirm: ConfirmTrust,
        identifier: str = "",
    ) -> TrustDecision:
        """
        Ask for a single decision covering every item.

        A pack with no executable content is trusted implicitly without asking.

        Raises:
            TrustDeclinedError: If the user declines
        """
        if not items:
            return TrustDecision(approved=True, trusted_hashes={})

        if not confirm(self.group(items)):
            raise TrustDeclinedError(identifier=identifier)

        hashes = self.compute_hashes(items, pack_root)
        logger.debug("Trusted %d item(s) for %s", len(hashes), identifier or pack_root)
        return TrustDecision(approved=True, trusted_hashes=hashes)

    # -------------------------------------------------------------------------
    # Verification
    # -------------------------------------------------------------------------

    def verify(
        self,
        trusted_hashes: dict[str, str],
        pack_root: Path,
        manifest: Manifest,
    ) -> VerificationResult:
        """
        Recompute every trusted hash and compare.

        File keys are re-hashed from disk; a missing file is tampering, an
        unreadable one is reported separately. Inline keys are recomputed
        from the current manifest; an inline key that no longer appears is
        tampering too, and so is executable content that was never approved.
        """
        result = VerificationResult()
        current_items = self._collect(manifest, pack_root, read_files=False)
        inline_current = {
            item.hash_key: compute_hash(item.content) for item in current_items if item.is_inline
        }

        for key, expected in trusted_hashes.items():
            if key.startswith(INLINE_KEY_PREFIX):
                if inline_current.get(key) != expected:
                    result.tampered.append(key)
                continue

            try:
                path = resolve_within(pack_root, key)
            except PathEscapeError:
                result.tampered.append(key)
                continue
            if not path.exists():
                result.tampered.append(key)
                continue
            try:
                actual = hash_file(path)
            except OSError:
                result.unreadable.append(key)
                continue
            if actual != expected:
                result.tampered.append(key)

        # Content declared now but never approved
        for item in current_items:
            if item.hash_key not in trusted_hashes:
                result.tampered.append(item.hash_key)

        result.tampered = sorted(set(result.tampered))
        result.unreadable.sort()
        return result

    def verify_or_raise(
        self,
        trusted_hashes: dict[str, str],
        pack_root: Path,
        manifest: Manifest,
    ) -> None:
        """
        Raises:
            TamperedPackError: If any trusted content changed
            TrustIOError: If trusted files couldn't be read
        """
        result = self.verify(trusted_hashes, pack_root, manifest)
        if result.tampered:
            raise TamperedPackError(identifier=manifest.identifier, paths=result.tampered)
        if result.unreadable:
            raise TrustIOError(identifier=manifest.identifier, paths=result.unreadable)

    def detect_changes(
        self,
        trusted_hashes: dict[str, str],
        manifest: Manifest,
        pack_root: Path,
    ) -> list[TrustableItem]:
        """
        Return only the items that are new or whose hash changed.

        Unchanged items keep their existing approval.
        """
        items = self.analyze(manifest, pack_root)
        current = self.compute_hashes(items, pack_root)
        return [item for item in items if trusted_hashes.get(item.hash_key) != current[item.hash_key]]
