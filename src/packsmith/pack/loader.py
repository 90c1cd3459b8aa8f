"""
Manifest loader for loading and validating packs.

This module provides the ManifestLoader class and helpers for:
- Parsing techpack.yaml into the Manifest model
- Normalizing short component/section ids into the pack namespace
- Enforcing structural invariants the schema alone can't express
- Checking engine version compatibility
- Verifying every referenced file exists (reported all at once)
- Validating peer dependencies across a selection of packs

Design Decisions:
    - Validation is strict and fails fast; there is no partial manifest
    - Every failure names the offending field and the reason
    - Normalization is idempotent, so a rendered manifest re-parses unchanged
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Sequence

import yaml
from pydantic import ValidationError

from packsmith import __version__
from packsmith.errors import (
    IncompatibleVersionError,
    ManifestNotFoundError,
    ManifestValidationError,
    PathEscapeError,
    ReferencedFilesMissingError,
)
from packsmith.pack.manifest import (
    REQUIRED_CHECK_FIELDS,
    SUPPORTED_SCHEMA_VERSION,
    CopyPackFileAction,
    DoctorCheckDefinition,
    DoctorCheckType,
    Manifest,
    SettingsFileAction,
    SettingsMergeAction,
)
from packsmith.paths import resolve_within
from packsmith.semver import is_compatible

logger = logging.getLogger(__name__)

MANIFEST_FILE_NAME = "techpack.yaml"


# =============================================================================
# Parsing
# =============================================================================


def _first_error(e: ValidationError) -> tuple[str, str]:
    error = e.errors()[0]
    location = ".".join(str(part) for part in error.get("loc", ()))
    return location, error.get("msg", str(e))


def parse_manifest(text: str, pack_path: str = "") -> Manifest:
    """
    Parse manifest YAML into a (not yet normalized) Manifest.

    Raises:
        ManifestValidationError: If the YAML is invalid, the schema version is
            unsupported, or the document doesn't match the schema
    """
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ManifestValidationError(
            pack_path=pack_path,
            reason=f"Invalid YAML: {e}",
        ) from e

    if not isinstance(data, dict):
        raise ManifestValidationError(
            pack_path=pack_path,
            reason="Manifest must be a YAML mapping",
        )

    identifier = str(data.get("identifier", ""))
    schema_version = data.get("schemaVersion")
    if schema_version != SUPPORTED_SCHEMA_VERSION:
        raise ManifestValidationError(
            pack_path=pack_path,
            identifier=identifier,
            field_name="schemaVersion",
            reason=f"Unsupported schema version {schema_version!r} (expected {SUPPORTED_SCHEMA_VERSION})",
        )

    try:
        return Manifest.model_validate(data)
    except ValidationError as e:
        location, message = _first_error(e)
        raise ManifestValidationError(
            pack_path=pack_path,
            identifier=identifier,
            field_name=location,
            reason=message,
        ) from e
    except ValueError as e:
        raise ManifestValidationError(
            pack_path=pack_path,
            identifier=identifier,
            reason=str(e),
        ) from e


def render_manifest(manifest: Manifest) -> str:
    """Render a manifest back to techpack.yaml text."""
    return yaml.safe_dump(manifest.to_yaml_dict(), sort_keys=False, allow_unicode=True)


# =============================================================================
# Normalization & Validation
# =============================================================================


def _qualify(value: str, namespace: str) -> str:
    return value if "." in value else f"{namespace}{value}"


def normalize(manifest: Manifest) -> Manifest:
    """
    Prefix short component ids, dependencies and section ids with the pack namespace.

    Ids that already contain a "." are treated as fully qualified (this is
    how cross-pack dependencies are written) and left untouched.
    """
    namespace = manifest.namespace
    components = [
        c.model_copy(update={
            "id": _qualify(c.id, namespace),
            "dependencies": [_qualify(d, namespace) for d in c.dependencies],
        })
        for c in manifest.components
    ]
    templates = [
        t if t.section_identifier == manifest.identifier
        else t.model_copy(update={"section_identifier": _qualify(t.section_identifier, namespace)})
        for t in manifest.templates
    ]
    return manifest.model_copy(update={"components": components, "templates": templates})


def _missing_check_fields(check: DoctorCheckDefinition) -> list[str]:
    missing = []
    for attr in REQUIRED_CHECK_FIELDS[check.type]:
        value = getattr(check, attr)
        if value is None or value == "":
            missing.append(attr)
    return missing


def validate(manifest: Manifest, pack_path: str = "") -> None:
    """
    Enforce cross-field invariants on a normalized manifest.

    Raises:
        ManifestValidationError: On the first violated invariant
    """
    identifier = manifest.identifier
    namespace = manifest.namespace

    def fail(field_name: str, reason: str) -> None:
        raise ManifestValidationError(
            pack_path=pack_path,
            identifier=identifier,
            field_name=field_name,
            reason=reason,
        )

    seen_ids: set[str] = set()
    for index, component in enumerate(manifest.components):
        if not component.id.startswith(namespace) or component.id == namespace:
            fail(f"components.{index}.id", f"Component id '{component.id}' must start with '{namespace}'")
        if component.id in seen_ids:
            fail(f"components.{index}.id", f"Duplicate component id '{component.id}'")
        seen_ids.add(component.id)

        for check_index, check in enumerate(component.doctor_checks):
            missing = _missing_check_fields(check)
            if missing:
                fail(
                    f"components.{index}.doctorChecks.{check_index}",
                    f"{check.type.value} check requires: {', '.join(missing)}",
                )

    for index, template in enumerate(manifest.templates):
        section = template.section_identifier
        if section != identifier and not section.startswith(namespace):
            fail(
                f"templates.{index}.sectionIdentifier",
                f"Section '{section}' must be '{identifier}' or start with '{namespace}'",
            )

    seen_keys: set[str] = set()
    for index, prompt in enumerate(manifest.prompts):
        if prompt.key in seen_keys:
            fail(f"prompts.{index}.key", f"Duplicate prompt key '{prompt.key}'")
        seen_keys.add(prompt.key)

    for index, check in enumerate(manifest.supplementary_doctor_checks):
        missing = _missing_check_fields(check)
        if missing:
            fail(
                f"supplementaryDoctorChecks.{index}",
                f"{check.type.value} check requires: {', '.join(missing)}",
            )


def check_version(manifest: Manifest, engine_version: str = __version__, pack_path: str = "") -> None:
    """
    Reject packs that require a newer engine.

    Raises:
        IncompatibleVersionError: If min_required_version is unmet or unparsable
    """
    required = manifest.min_required_version
    if required is None:
        return
    if not is_compatible(engine_version, required):
        raise IncompatibleVersionError(
            pack_path=pack_path,
            identifier=manifest.identifier,
            required=required,
            current=engine_version,
        )


def referenced_files(manifest: Manifest) -> list[str]:
    """Every pack-relative file path the manifest refers to, in declaration order."""
    files: list[str] = []
    for template in manifest.templates:
        files.append(template.content_file)
    if manifest.configure_project is not None:
        files.append(manifest.configure_project.script)
    for component in manifest.components:
        action = component.install_action
        if isinstance(action, CopyPackFileAction):
            files.append(action.source)
        elif isinstance(action, SettingsFileAction):
            files.append(action.source)
        elif isinstance(action, SettingsMergeAction) and action.source:
            files.append(action.source)
    for check in manifest.all_doctor_checks():
        if check.type == DoctorCheckType.SHELL_SCRIPT and _is_pack_script(check.command):
            files.append(check.command)
        if check.fix_script:
            files.append(check.fix_script)
    return files


def _is_pack_script(command: str | None) -> bool:
    """Whether a shellScript command names a script shipped in the pack (`scripts/check.sh`)."""
    if not command or any(c.isspace() for c in command) or command.startswith(("/", "~", "$")):
        return False
    return "/" in command or command.endswith(".sh")


def find_missing_files(manifest: Manifest, pack_root: Path) -> list[str]:
    """
    Return every referenced file that doesn't exist under pack_root.

    Raises:
        PathEscapeError: If a referenced path resolves outside the pack root
    """
    missing = []
    for relative in referenced_files(manifest):
        if not resolve_within(pack_root, relative).exists():
            missing.append(relative)
    return missing


# =============================================================================
# Peer Dependencies
# =============================================================================


class PeerStatus(str, Enum):
    SATISFIED = "satisfied"
    MISSING = "missing"
    VERSION_TOO_LOW = "version_too_low"


@dataclass(frozen=True)
class PeerDependencyResult:
    """
    Outcome of checking one peer dependency.

    Attributes:
        pack_identifier: Pack declaring the dependency
        peer_pack: Required peer pack
        min_version: Minimum peer version
        status: Whether the peer is satisfied, missing or too old
        actual_version: Version of the selected peer, when present
    """

    pack_identifier: str
    peer_pack: str
    min_version: str
    status: PeerStatus
    actual_version: str | None = None

    def describe(self) -> str:
        if self.status == PeerStatus.MISSING:
            return (
                f"Pack '{self.pack_identifier}' requires peer pack '{self.peer_pack}' "
                f"(>= {self.min_version}) which is not selected"
            )
        if self.status == PeerStatus.VERSION_TOO_LOW:
            return (
                f"Pack '{self.pack_identifier}' requires peer pack '{self.peer_pack}' "
                f">= {self.min_version}, but v{self.actual_version} is registered"
            )
        return f"Pack '{self.pack_identifier}' peer '{self.peer_pack}' satisfied"


def validate_peer_dependencies(packs: Sequence[Manifest]) -> list[PeerDependencyResult]:
    """Check every pack's peer dependencies against the other selected packs."""
    versions = {m.identifier: m.version for m in packs}
    results = []
    for manifest in packs:
        for peer in manifest.peer_dependencies:
            actual = versions.get(peer.pack)
            if actual is None:
                status = PeerStatus.MISSING
            elif is_compatible(actual, peer.min_version):
                status = PeerStatus.SATISFIED
            else:
                status = PeerStatus.VERSION_TOO_LOW
            results.append(PeerDependencyResult(
                pack_identifier=manifest.identifier,
                peer_pack=peer.pack,
                min_version=peer.min_version,
                status=status,
                actual_version=actual,
            ))
    return results


# =============================================================================
# Loader
# =============================================================================


@dataclass(frozen=True)
class LoadedPack:
    """A validated manifest together with the directory it was loaded from."""

    manifest: Manifest
    path: Path

    @property
    def identifier(self) -> str:
        return self.manifest.identifier



class ManifestLoader:
    """
    Loads and validates a pack directory.

    Attributes:
        pack_path: Absolute path to the pack directory

    Example:
        >>> manifest = ManifestLoader("/path/to/pack").load()
        >>> manifest.identifier
        'my-pack'
    """

    def __init__(self, pack_path: Path | str) -> None:
        self.pack_path = Path(pack_path).resolve()

    @property
    def manifest_path(self) -> Path:
        return self.pack_path / MANIFEST_FILE_NAME

    def load(self, engine_version: str = __version__, check_files: bool = True) -> Manifest:
        """
        Load, normalize and fully validate the pack manifest.

        Args:
            engine_version: Version checked against minRequiredVersion
            check_files: Also require every referenced file to exist (see require_files)

        Returns:
            Normalized Manifest

        Raises:
            ManifestNotFoundError: If techpack.yaml doesn't exist
            ManifestValidationError: If the manifest is invalid
            IncompatibleVersionError: If the engine is too old
            ReferencedFilesMissingError: If referenced files are missing
            PathEscapeError: If a referenced file escapes the pack root
        """
        pack_path = str(self.pack_path)
        if not self.manifest_path.is_file():
            raise ManifestNotFoundError(pack_path=pack_path)

        try:
            text = self.manifest_path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise ManifestValidationError(
                pack_path=pack_path,
                reason=f"Could not read {MANIFEST_FILE_NAME}: {e}",
            ) from e

        manifest = normalize(parse_manifest(text, pack_path))
        validate(manifest, pack_path)
        check_version(manifest, engine_version, pack_path)
        if check_files:
            self.require_files(manifest)

        logger.debug("Loaded pack %s v%s from %s", manifest.identifier, manifest.version, pack_path)
        return manifest

    def require_files(self, manifest: Manifest) -> None:
        """
        Raises:
            ReferencedFilesMissingError: If referenced files are missing
            PathEscapeError: If a referenced file escapes the pack root
        """
        missing = find_missing_files(manifest, self.pack_path)
        if missing:
            raise ReferencedFilesMissingError(
                pack_path=str(self.pack_path),
                identifier=manifest.identifier,
                files=missing,
            )

    def validate_structure(self, engine_version: str = __version__) -> list[str]:
        """
        Validate the pack, returning error messages instead of raising.

        Returns:
            List of error messages (empty if valid)
        """
        try:
            self.load(engine_version)
        except (
            ManifestNotFoundError,
            ManifestValidationError,
            IncompatibleVersionError,
            ReferencedFilesMissingError,
            PathEscapeError,
        ) as e:
            return [e.message]
        return []
