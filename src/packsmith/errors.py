"""
Exception hierarchy for packsmith.

All packsmith exceptions inherit from PacksmithError, allowing callers to catch
all packsmith-specific exceptions with a single except clause.

Exception Categories:
    - Validation errors: malformed or non-conforming manifests
    - Trust errors: tampering detected or consent declined
    - Resolution errors: dependency cycles and unknown components
    - Fetch errors: git failures, missing refs, invalid sources
    - Convergence errors: collisions, template structure, configure scripts
    - Storage errors: registry/state/lockfile I/O and corruption
    - Process errors: timeouts and missing executables

Design Principles:
    - All errors have error codes for programmatic handling
    - All errors include context (pack, field, path where applicable)
    - All errors provide actionable suggestions where possible
    - Absence, corruption and tampering are always distinct error types
"""

from dataclasses import dataclass, field
from typing import Any


# =============================================================================
# Error Codes
# =============================================================================

# Validation errors: 1xxx
ERROR_MANIFEST_NOT_FOUND = 1001
ERROR_MANIFEST_INVALID = 1002
ERROR_INCOMPATIBLE_VERSION = 1003
ERROR_REFERENCED_FILES_MISSING = 1004
ERROR_PATH_ESCAPE = 1005
ERROR_PEER_DEPENDENCY = 1006

# Trust errors: 2xxx
ERROR_TRUST_TAMPERED = 2001
ERROR_TRUST_DECLINED = 2002
ERROR_TRUST_IO = 2003

# Resolution errors: 3xxx
ERROR_DEPENDENCY_CYCLE = 3001
ERROR_UNKNOWN_COMPONENT = 3002

# Fetch errors: 4xxx
ERROR_GIT_NOT_INSTALLED = 4001
ERROR_CLONE_FAILED = 4002
ERROR_FETCH_FAILED = 4003
ERROR_REF_NOT_FOUND = 4004
ERROR_UPDATE_FAILED = 4005
ERROR_COMMIT_RESOLUTION = 4006
ERROR_INVALID_SOURCE = 4007
ERROR_FETCH_TIMEOUT = 4008
ERROR_INVALID_COMMIT_SHA = 4009

# Convergence errors: 5xxx
ERROR_COLLISION = 5001
ERROR_TEMPLATE_STRUCTURE = 5002
ERROR_CONFIGURE_SCRIPT = 5003
ERROR_PROMPT = 5004
ERROR_ACTION_FAILED = 5005

# Storage errors: 6xxx
ERROR_REGISTRY_CORRUPT = 6001
ERROR_REGISTRY_IO = 6002
ERROR_STATE_CORRUPT = 6003
ERROR_STATE_IO = 6004
ERROR_LOCKFILE_CORRUPT = 6005
ERROR_PACK_NOT_REGISTERED = 6006
ERROR_PACK_ALREADY_REGISTERED = 6007
ERROR_LOCK_HELD = 6008
ERROR_PROJECT_INDEX_CORRUPT = 6009

# Process errors: 7xxx
ERROR_COMMAND_TIMEOUT = 7001
ERROR_COMMAND_NOT_FOUND = 7002
ERROR_SCRIPT_FAILED = 7003


# =============================================================================
# Base Exception
# =============================================================================


@dataclass
class PacksmithError(Exception):
    """
    Base exception for all packsmith errors.

    All packsmith exceptions inherit from this class, providing:
    - Consistent error code for programmatic handling
    - Human-readable message
    - Optional suggestion for resolution
    - Optional context dict for debugging

    Attributes:
        message: Human-readable error description
        code: Numeric error code for programmatic handling
        suggestion: Optional hint for how to resolve the error
        context: Optional dict with additional debugging info
    """

    message: str = ""
    code: int = 0
    suggestion: str | None = None
    context: dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        """Format error for display."""
        parts = [f"[E{self.code}] {self.message}"]
        if self.suggestion:
            parts.append(f"\nSuggestion: {self.suggestion}")
        return "".join(parts)

    def __repr__(self) -> str:
        """Format error for debugging."""
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"code={self.code}, "
            f"context={self.context!r})"
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "code": self.code,
            "suggestion": self.suggestion,
            "context": self.context,
        }


# =============================================================================
# Validation Errors
# =============================================================================


@dataclass
class ManifestError(PacksmithError):
    """
    Base class for manifest validation errors.

    Attributes:
        pack_path: Path to the pack directory
    """

    pack_path: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        self.context["pack_path"] = self.pack_path


@dataclass
class ManifestNotFoundError(ManifestError):
    """Raised when techpack.yaml is absent from the pack root."""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"No techpack.yaml found in {self.pack_path}"
        if self.code == 0:
            self.code = ERROR_MANIFEST_NOT_FOUND
        if not self.suggestion:
            self.suggestion = "Check that the source points at the pack root directory"
        super().__post_init__()


@dataclass
class ManifestValidationError(ManifestError):
    """
    Raised when a manifest does not conform to the schema or its invariants.

    Attributes:
        identifier: Pack identifier, when it could be read
        field_name: The offending field (dotted path)
        reason: Why the field was rejected
    """

    identifier: str = ""
    field_name: str = ""
    reason: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            label = self.identifier or self.pack_path or "manifest"
            location = f" ({self.field_name})" if self.field_name else ""
            self.message = f"Invalid manifest for {label}{location}: {self.reason}"
        if self.code == 0:
            self.code = ERROR_MANIFEST_INVALID
        super().__post_init__()
        self.context.update({
            "identifier": self.identifier,
            "field": self.field_name,
            "reason": self.reason,
        })


@dataclass
class IncompatibleVersionError(ManifestError):
    """Raised when a pack requires a newer engine version."""

    identifier: str = ""
    required: str = ""
    current: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = (
                f"Pack '{self.identifier}' requires packsmith >= {self.required} "
                f"(current: {self.current})"
            )
        if self.code == 0:
            self.code = ERROR_INCOMPATIBLE_VERSION
        if not self.suggestion:
            self.suggestion = "Upgrade packsmith or pin an older pack ref"
        super().__post_init__()
        self.context.update({
            "identifier": self.identifier,
            "required": self.required,
            "current": self.current,
        })


@dataclass
class ReferencedFilesMissingError(ManifestError):
    """Raised when files referenced by a manifest are missing (all listed at once)."""

    identifier: str = ""
    files: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = (
                f"Pack '{self.identifier}' references missing files: {', '.join(self.files)}"
            )
        if self.code == 0:
            self.code = ERROR_REFERENCED_FILES_MISSING
        super().__post_init__()
        self.context.update({"identifier": self.identifier, "files": list(self.files)})


@dataclass
class PathEscapeError(ManifestError):
    """Raised when a referenced path resolves outside its allowed root."""

    path: str = ""
    root: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Path '{self.path}' escapes {self.root}"
        if self.code == 0:
            self.code = ERROR_PATH_ESCAPE
        super().__post_init__()
        self.context.update({"path": self.path, "root": self.root})


@dataclass
class PeerDependencyError(PacksmithError):
    """Raised when selected packs have unresolved peer dependencies."""

    issues: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = "Unresolved peer dependencies: " + "; ".join(self.issues)
        if self.code == 0:
            self.code = ERROR_PEER_DEPENDENCY
        if not self.suggestion:
            self.suggestion = "Select the missing peer packs or update them, then re-run sync"
        self.context["issues"] = list(self.issues)


# =============================================================================
# Trust Errors
# =============================================================================


@dataclass
class TrustError(PacksmithError):
    """
    Base class for trust errors.

    Attributes:
        identifier: Pack whose trust state is in question
    """

    identifier: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        self.context["identifier"] = self.identifier


@dataclass
class TamperedPackError(TrustError):
    """Raised when trusted content changed on disk since it was approved."""

    paths: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = (
                f"Pack '{self.identifier}' was modified after it was trusted: "
                f"{', '.join(self.paths)}"
            )
        if self.code == 0:
            self.code = ERROR_TRUST_TAMPERED
        if not self.suggestion:
            self.suggestion = f"Review the changes, then run `packsmith pack update {self.identifier}` to re-trust"
        super().__post_init__()
        self.context["paths"] = list(self.paths)


@dataclass
class TrustDeclinedError(TrustError):
    """Raised when the user declines to trust a pack's executable content."""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Trust declined for pack '{self.identifier}'"
        if self.code == 0:
            self.code = ERROR_TRUST_DECLINED
        super().__post_init__()


@dataclass
class TrustIOError(TrustError):
    """Raised when trusted files cannot be read for verification."""

    paths: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Could not read trusted files of '{self.identifier}': {', '.join(self.paths)}"
        if self.code == 0:
            self.code = ERROR_TRUST_IO
        if not self.suggestion:
            self.suggestion = "Check file permissions in the pack checkout"
        super().__post_init__()
        self.context["paths"] = list(self.paths)


# =============================================================================
# Resolution Errors
# =============================================================================


@dataclass
class DependencyCycleError(PacksmithError):
    """Raised when the selected components form a dependency cycle."""

    members: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Dependency cycle detected: {' -> '.join(self.members)}"
        if self.code == 0:
            self.code = ERROR_DEPENDENCY_CYCLE
        self.context["members"] = list(self.members)


@dataclass
class UnknownComponentError(PacksmithError):
    """Raised when a selection or dependency names a component that doesn't exist."""

    component_id: str = ""
    required_by: str | None = None

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            if self.required_by:
                self.message = f"Unknown component '{self.component_id}' (required by {self.required_by})"
            else:
                self.message = f"Unknown component '{self.component_id}'"
        if self.code == 0:
            self.code = ERROR_UNKNOWN_COMPONENT
        self.context.update({
            "component_id": self.component_id,
            "required_by": self.required_by,
        })


# =============================================================================
# Fetch Errors
# =============================================================================


@dataclass
class FetchError(PacksmithError):
    """
    Base class for fetch errors.

    These errors leave the existing pack checkout untouched.

    Attributes:
        source: Source URL or path being fetched
        output: stderr of the failing git command, if any
    """

    source: str = ""
    output: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        self.context.update({"source": self.source, "output": self.output})


@dataclass
class GitNotInstalledError(FetchError):
    """Raised when the git executable is not available."""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = "git is not installed or not on PATH"
        if self.code == 0:
            self.code = ERROR_GIT_NOT_INSTALLED
        if not self.suggestion:
            self.suggestion = "Install git and retry"
        super().__post_init__()


@dataclass
class CloneFailedError(FetchError):
    """Raised when `git clone` fails."""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Failed to clone {self.source}: {self.output}".rstrip(": ")
        if self.code == 0:
            self.code = ERROR_CLONE_FAILED
        if not self.suggestion:
            self.suggestion = "Check the URL and your network access"
        super().__post_init__()


@dataclass
class FetchFailedError(FetchError):
    """Raised when `git fetch` fails."""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Failed to fetch updates for {self.source}: {self.output}".rstrip(": ")
        if self.code == 0:
            self.code = ERROR_FETCH_FAILED
        super().__post_init__()


@dataclass
class RefNotFoundError(FetchError):
    """Raised when a requested tag, branch or commit does not exist."""

    ref: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Ref '{self.ref}' not found in {self.source}"
        if self.code == 0:
            self.code = ERROR_REF_NOT_FOUND
        super().__post_init__()
        self.context["ref"] = self.ref


@dataclass
class UpdateFailedError(FetchError):
    """Raised when checking out or resetting to the new revision fails."""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Failed to update {self.source}: {self.output}".rstrip(": ")
        if self.code == 0:
            self.code = ERROR_UPDATE_FAILED
        super().__post_init__()


@dataclass
class CommitResolutionFailedError(FetchError):
    """Raised when HEAD cannot be resolved to a commit SHA."""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Could not resolve commit SHA in {self.source}"
        if self.code == 0:
            self.code = ERROR_COMMIT_RESOLUTION
        super().__post_init__()


@dataclass
class InvalidSourceError(FetchError):
    """Raised when a pack source string can't be interpreted."""

    reason: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Invalid pack source '{self.source}': {self.reason}"
        if self.code == 0:
            self.code = ERROR_INVALID_SOURCE
        if not self.suggestion:
            self.suggestion = "Use a git URL, a user/repo shorthand, or a path to a local pack"
        super().__post_init__()


@dataclass
class FetchTimeoutError(FetchError):
    """Raised when a git operation exceeds its timeout."""

    timeout_seconds: float = 0

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"git timed out after {self.timeout_seconds}s for {self.source}"
        if self.code == 0:
            self.code = ERROR_FETCH_TIMEOUT
        super().__post_init__()
        self.context["timeout_seconds"] = self.timeout_seconds


@dataclass
class InvalidCommitSHAError(FetchError):
    """Raised when a pinned commit SHA is malformed."""

    sha: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Invalid commit SHA: {self.sha!r}"
        if self.code == 0:
            self.code = ERROR_INVALID_COMMIT_SHA
        super().__post_init__()
        self.context["sha"] = self.sha


# =============================================================================
# Convergence Errors
# =============================================================================


@dataclass
class CollisionError(PacksmithError):
    """Raised when packs declare conflicting artifacts and the user didn't confirm."""

    collisions: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = "Artifact collisions detected: " + "; ".join(self.collisions)
        if self.code == 0:
            self.code = ERROR_COLLISION
        if not self.suggestion:
            self.suggestion = "Deselect one of the conflicting packs or confirm the override"
        self.context["collisions"] = list(self.collisions)


@dataclass
class TemplateStructureError(PacksmithError):
    """Raised when a template document has unpaired section markers."""

    section_id: str = ""
    path: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Section '{self.section_id}' has unpaired markers in {self.path or 'document'}"
        if self.code == 0:
            self.code = ERROR_TEMPLATE_STRUCTURE
        if not self.suggestion:
            self.suggestion = "Restore or delete the broken begin/end markers by hand"
        self.context.update({"section_id": self.section_id, "path": self.path})


@dataclass
class ConfigureScriptError(PacksmithError):
    """Raised when a pack's configure script exits non-zero."""

    identifier: str = ""
    returncode: int = 0
    stderr: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Configure script for '{self.identifier}' failed (exit {self.returncode})"
            if self.stderr:
                self.message += f": {self.stderr}"
        if self.code == 0:
            self.code = ERROR_CONFIGURE_SCRIPT
        self.context.update({
            "identifier": self.identifier,
            "returncode": self.returncode,
            "stderr": self.stderr,
        })


@dataclass
class PromptError(PacksmithError):
    """Raised when a prompt can't produce a value."""

    key: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Prompt '{self.key}' could not be resolved"
        if self.code == 0:
            self.code = ERROR_PROMPT
        self.context["key"] = self.key


@dataclass
class ActionFailedError(PacksmithError):
    """Raised when a single install action fails."""

    component_id: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Install action for '{self.component_id}' failed"
        if self.code == 0:
            self.code = ERROR_ACTION_FAILED
        self.context["component_id"] = self.component_id


# =============================================================================
# Storage Errors
# =============================================================================


@dataclass
class StorageError(PacksmithError):
    """
    Base class for storage errors.

    Attributes:
        path: File being read or written
    """

    path: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        self.context["path"] = self.path


@dataclass
class RegistryCorruptError(StorageError):
    """Raised when the registry file exists but can't be parsed."""

    underlying_error: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Registry file is invalid: {self.path}: {self.underlying_error}"
        if self.code == 0:
            self.code = ERROR_REGISTRY_CORRUPT
        if not self.suggestion:
            self.suggestion = "Fix or remove the registry file, then re-add your packs"
        super().__post_init__()
        self.context["underlying_error"] = self.underlying_error


@dataclass
class RegistryIOError(StorageError):
    """Raised when the registry file can't be read or written."""

    underlying_error: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Registry I/O failed for {self.path}: {self.underlying_error}"
        if self.code == 0:
            self.code = ERROR_REGISTRY_IO
        super().__post_init__()
        self.context["underlying_error"] = self.underlying_error


@dataclass
class StateCorruptError(StorageError):
    """Raised when a project state file exists but can't be parsed."""

    underlying_error: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"State file is invalid: {self.path}: {self.underlying_error}"
        if self.code == 0:
            self.code = ERROR_STATE_CORRUPT
        if not self.suggestion:
            self.suggestion = "Delete the state file and re-run sync to rebuild it"
        super().__post_init__()
        self.context["underlying_error"] = self.underlying_error


@dataclass
class StateIOError(StorageError):
    """Raised when a project state file can't be read or written."""

    underlying_error: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"State I/O failed for {self.path}: {self.underlying_error}"
        if self.code == 0:
            self.code = ERROR_STATE_IO
        super().__post_init__()
        self.context["underlying_error"] = self.underlying_error


@dataclass
class LockfileCorruptError(StorageError):
    """Raised when a lockfile exists but can't be parsed."""

    underlying_error: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Lockfile is invalid: {self.path}: {self.underlying_error}"
        if self.code == 0:
            self.code = ERROR_LOCKFILE_CORRUPT
        super().__post_init__()
        self.context["underlying_error"] = self.underlying_error


@dataclass
class ProjectIndexCorruptError(StorageError):
    """Raised when the cross-scope project index can't be parsed."""

    underlying_error: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Project index is invalid: {self.path}: {self.underlying_error}"
        if self.code == 0:
            self.code = ERROR_PROJECT_INDEX_CORRUPT
        if not self.suggestion:
            self.suggestion = "Delete the index file; each project is re-indexed on its next sync"
        super().__post_init__()
        self.context["underlying_error"] = self.underlying_error


@dataclass
class PackNotRegisteredError(StorageError):
    """Raised when an operation names a pack missing from the registry."""

    identifier: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Pack '{self.identifier}' is not registered"
        if self.code == 0:
            self.code = ERROR_PACK_NOT_REGISTERED
        if not self.suggestion:
            self.suggestion = "Use `packsmith pack list` to see registered packs"
        super().__post_init__()
        self.context["identifier"] = self.identifier


@dataclass
class PackAlreadyRegisteredError(StorageError):
    """Raised when adding a pack whose identifier is already registered."""

    identifier: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Pack '{self.identifier}' is already registered"
        if self.code == 0:
            self.code = ERROR_PACK_ALREADY_REGISTERED
        if not self.suggestion:
            self.suggestion = f"Use `packsmith pack update {self.identifier}` instead"
        super().__post_init__()
        self.context["identifier"] = self.identifier


@dataclass
class LockHeldError(StorageError):
    """Raised when another process holds the registry lock."""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = "Another packsmith process is running"
        if self.code == 0:
            self.code = ERROR_LOCK_HELD
        if not self.suggestion:
            self.suggestion = f"Wait for it to finish, or remove {self.path} if it is stale"
        super().__post_init__()


# =============================================================================
# Process Errors
# =============================================================================


@dataclass
class ProcessError(PacksmithError):
    """
    Base class for child-process errors.

    Attributes:
        command: The command line that was run
    """

    command: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        self.context["command"] = list(self.command)


@dataclass
class CommandTimeoutError(ProcessError):
    """Raised when a child process exceeds its timeout and is killed."""

    timeout_seconds: float = 0

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Command timed out after {self.timeout_seconds}s: {' '.join(self.command)}"
        if self.code == 0:
            self.code = ERROR_COMMAND_TIMEOUT
        super().__post_init__()
        self.context["timeout_seconds"] = self.timeout_seconds


@dataclass
class CommandNotFoundError(ProcessError):
    """Raised when the executable can't be found."""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            executable = self.command[0] if self.command else ""
            self.message = f"Command not found: {executable}"
        if self.code == 0:
            self.code = ERROR_COMMAND_NOT_FOUND
        super().__post_init__()


@dataclass
class ScriptFailedError(ProcessError):
    """Raised when a pack script exits non-zero."""

    returncode: int = 0
    stderr: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Script exited with code {self.returncode}: {' '.join(self.command)}"
        if self.code == 0:
            self.code = ERROR_SCRIPT_FAILED
        super().__post_init__()
        self.context.update({"returncode": self.returncode, "stderr": self.stderr})
