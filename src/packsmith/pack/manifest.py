"""
Pack manifest schema definitions.

This module defines the Pydantic models for techpack.yaml:
- Manifest: Complete pack manifest
- Component: One installable unit with exactly one install action
- InstallAction: Closed tagged union of artifact kinds
- TemplateDefinition, PromptDefinition, DoctorCheckDefinition

Design Decisions:
    - All models use strict validation (extra="forbid")
    - All models are frozen (immutable after creation)
    - YAML keys are camelCase; Python attributes are snake_case (alias generator)
    - Install actions are a discriminated union on `type`, so every consumer
      can dispatch exhaustively over a fixed set of variants
    - Shorthand component keys (brew:, mcp:, hook:, ...) are expanded to the
      verbose form before validation, so both forms produce the same model
"""

import re
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

SUPPORTED_SCHEMA_VERSION = 1
IDENTIFIER_PATTERN = r"^[a-z0-9][a-z0-9-]*$"


class ManifestModel(BaseModel):
    """Base for all manifest models: frozen, strict, camelCase aliases."""

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        alias_generator=to_camel,
        populate_by_name=True,
    )


# =============================================================================
# Enums
# =============================================================================


class ComponentType(str, Enum):
    """Declared kind of a component (used for display and derived behavior)."""

    MCP_SERVER = "mcpServer"
    PLUGIN = "plugin"
    SKILL = "skill"
    HOOK_FILE = "hookFile"
    COMMAND = "command"
    BREW_PACKAGE = "brewPackage"
    CONFIGURATION = "configuration"


class CopyFileType(str, Enum):
    """Destination kind for copyPackFile actions."""

    SKILL = "skill"
    HOOK = "hook"
    COMMAND = "command"
    GENERIC = "generic"


class PromptType(str, Enum):
    """How a prompt value is obtained."""

    FILE_DETECT = "fileDetect"
    INPUT = "input"
    SELECT = "select"
    SCRIPT = "script"


class DoctorCheckType(str, Enum):
    """Declarative diagnostic check kinds."""

    COMMAND_EXISTS = "commandExists"
    FILE_EXISTS = "fileExists"
    DIRECTORY_EXISTS = "directoryExists"
    FILE_CONTAINS = "fileContains"
    FILE_NOT_CONTAINS = "fileNotContains"
    SHELL_SCRIPT = "shellScript"
    HOOK_EVENT_EXISTS = "hookEventExists"
    SETTINGS_KEY_EQUALS = "settingsKeyEquals"


# Fields each check type must declare
REQUIRED_CHECK_FIELDS: dict[DoctorCheckType, tuple[str, ...]] = {
    DoctorCheckType.COMMAND_EXISTS: ("command",),
    DoctorCheckType.FILE_EXISTS: ("path",),
    DoctorCheckType.DIRECTORY_EXISTS: ("path",),
    DoctorCheckType.FILE_CONTAINS: ("path", "pattern"),
    DoctorCheckType.FILE_NOT_CONTAINS: ("path", "pattern"),
    DoctorCheckType.SHELL_SCRIPT: ("command",),
    DoctorCheckType.HOOK_EVENT_EXISTS: ("event",),
    DoctorCheckType.SETTINGS_KEY_EQUALS: ("key_path", "expected_value"),
}


# =============================================================================
# Install Actions
# =============================================================================


class McpServerAction(ManifestModel):
    """Register an MCP server (stdio command or HTTP URL)."""

    type: Literal["mcpServer"] = "mcpServer"
    name: str = Field(..., min_length=1, description="Server name")
    command: str | None = Field(default=None, description="Executable for stdio servers")
    args: list[str] = Field(default_factory=list)
    env: dict[str, str] = Field(default_factory=dict)
    transport: Literal["stdio", "http"] = "stdio"
    url: str | None = Field(default=None, description="Endpoint for HTTP servers")
    scope: Literal["local", "user", "project"] = "local"

    @model_validator(mode="after")
    def check_transport(self) -> "McpServerAction":
        if self.transport == "http" and not self.url:
            raise ValueError(f"MCP server '{self.name}': http transport requires 'url'")
        if self.transport == "stdio" and not self.command:
            raise ValueError(f"MCP server '{self.name}': stdio transport requires 'command'")
        return self

    def describe(self) -> str:
        """One-line description used for trust prompts."""
        if self.transport == "http":
            return f"{self.name}: {self.url} (HTTP)"
        return f"{self.name}: {' '.join([self.command or '', *self.args]).strip()}"


class PluginAction(ManifestModel):
    """Enable a plugin (name may carry an @marketplace suffix)."""

    type: Literal["plugin"] = "plugin"
    name: str = Field(..., min_length=1)

    @property
    def bare_name(self) -> str:
        return self.name.split("@", 1)[0]


class BrewInstallAction(ManifestModel):
    """Install a package with the system package manager."""

    type: Literal["brewInstall"] = "brewInstall"
    package: str = Field(..., min_length=1)


class ShellCommandAction(ManifestModel):
    """Run an arbitrary shell command at install time."""

    type: Literal["shellCommand"] = "shellCommand"
    command: str = Field(..., min_length=1)


class SettingsMergeAction(ManifestModel):
    """Merge a settings fragment (optional source file) into the settings document."""

    type: Literal["settingsMerge"] = "settingsMerge"
    source: str | None = None


class SettingsFileAction(ManifestModel):
    """Merge a settings JSON file shipped in the pack."""

    type: Literal["settingsFile"] = "settingsFile"
    source: str = Field(..., min_length=1)


class GitignoreEntriesAction(ManifestModel):
    """Append lines to the global gitignore."""

    type: Literal["gitignoreEntries"] = "gitignoreEntries"
    entries: list[str] = Field(..., min_length=1)


class CopyPackFileAction(ManifestModel):
    """Copy a file or directory from the pack into the scope root."""

    type: Literal["copyPackFile"] = "copyPackFile"
    source: str = Field(..., min_length=1)
    destination: str = Field(..., min_length=1)
    file_type: CopyFileType = CopyFileType.GENERIC


InstallAction = Annotated[
    Union[
        McpServerAction,
        PluginAction,
        BrewInstallAction,
        ShellCommandAction,
        SettingsMergeAction,
        SettingsFileAction,
        GitignoreEntriesAction,
        CopyPackFileAction,
    ],
    Field(discriminator="type"),
]


# =============================================================================
# Checks, Templates, Prompts
# =============================================================================


class DoctorCheckDefinition(ManifestModel):
    """
    Declarative diagnostic check.

    Which fields are required depends on `type`; see REQUIRED_CHECK_FIELDS.
    """

    type: DoctorCheckType
    name: str = ""
    section: str | None = None
    command: str | None = None
    args: list[str] = Field(default_factory=list)
    path: str | None = None
    pattern: str | None = None
    scope: Literal["global", "project"] | None = None
    fix_command: str | None = None
    fix_script: str | None = None
    event: str | None = None
    key_path: str | None = None
    expected_value: str | int | float | bool | None = None
    is_optional: bool = False

    @property
    def label(self) -> str:
        return self.name or self.command or self.path or self.event or self.key_path or self.type.value


class TemplateDefinition(ManifestModel):
    """A section contributed to the shared template document."""

    section_identifier: str = Field(..., min_length=1)
    placeholders: list[str] = Field(default_factory=list)
    content_file: str = Field(..., min_length=1)


class PromptOption(ManifestModel):
    value: str
    label: str | None = None


class PromptDefinition(ManifestModel):
    """A value gathered from the user (or the project) at configure time."""

    key: str = Field(..., min_length=1)
    type: PromptType
    label: str | None = None
    default: str | None = None
    options: list[PromptOption] | None = None
    detect_pattern: str | list[str] | None = None
    script_command: str | None = None

    @property
    def detect_patterns(self) -> list[str]:
        if self.detect_pattern is None:
            return ["*"]
        if isinstance(self.detect_pattern, str):
            return [self.detect_pattern]
        return list(self.detect_pattern)

    @model_validator(mode="after")
    def check_script(self) -> "PromptDefinition":
        if self.type == PromptType.SCRIPT and not self.script_command:
            raise ValueError(f"Prompt '{self.key}': script prompts require 'scriptCommand'")
        return self


class PeerDependency(ManifestModel):
    pack: str = Field(..., min_length=1)
    min_version: str = Field(..., min_length=1)


class ConfigureProject(ManifestModel):
    script: str = Field(..., min_length=1)


# =============================================================================
# Component
# =============================================================================

# Shorthand key -> (inferred component type, builder)
SHORTHAND_KEYS = ("brew", "mcp", "plugin", "shell", "hook", "command", "skill", "settingsFile", "gitignore")


def _copy_shorthand(key: str, value: Any, file_type: CopyFileType) -> dict[str, Any]:
    if not isinstance(value, dict) or "source" not in value or "destination" not in value:
        raise ValueError(f"'{key}' shorthand requires a mapping with 'source' and 'destination'")
    return {
        "type": "copyPackFile",
        "source": value["source"],
        "destination": value["destination"],
        "fileType": file_type.value,
    }


def expand_component_shorthand(data: dict[str, Any], identifier: str) -> dict[str, Any]:
    """
    Rewrite a shorthand component mapping into the verbose form.

    Args:
        data: Raw component mapping from YAML
        identifier: Owning pack identifier (used to derive MCP server names)

    Returns:
        A new mapping with `type` and `installAction` set

    Raises:
        ValueError: If shorthand keys conflict or are malformed
    """
    present = [k for k in SHORTHAND_KEYS if k in data]
    if not present:
        return data
    if len(present) > 1:
        raise ValueError(f"Component '{data.get('id')}' uses multiple shorthand keys: {', '.join(present)}")
    if "installAction" in data:
        raise ValueError(f"Component '{data.get('id')}' mixes shorthand '{present[0]}' with installAction")

    key = present[0]
    value = data[key]
    expanded = {k: v for k, v in data.items() if k != key}
    component_id = str(data.get("id", ""))
    inferred: ComponentType

    if key == "brew":
        inferred = ComponentType.BREW_PACKAGE
        action: dict[str, Any] = {"type": "brewInstall", "package": value}
    elif key == "mcp":
        if not isinstance(value, dict):
            raise ValueError(f"Component '{component_id}': 'mcp' shorthand requires a mapping")
        inferred = ComponentType.MCP_SERVER
        prefix = f"{identifier}."
        derived = component_id[len(prefix):] if component_id.startswith(prefix) else component_id
        action = {"type": "mcpServer", "name": value.get("name", derived)}
        if "url" in value:
            action.update({"transport": "http", "url": value["url"]})
        else:
            action.update({
                "command": value.get("command"),
                "args": value.get("args", []),
                "env": value.get("env", {}),
            })
        if "scope" in value:
            action["scope"] = value["scope"]
    elif key == "plugin":
        inferred = ComponentType.PLUGIN
        action = {"type": "plugin", "name": value}
    elif key == "shell":
        if "type" not in data:
            raise ValueError(f"Component '{component_id}': 'shell' shorthand requires an explicit 'type'")
        inferred = ComponentType(data["type"])
        action = {"type": "shellCommand", "command": value}
    elif key == "hook":
        inferred = ComponentType.HOOK_FILE
        action = _copy_shorthand(key, value, CopyFileType.HOOK)
    elif key == "command":
        inferred = ComponentType.COMMAND
        action = _copy_shorthand(key, value, CopyFileType.COMMAND)
    elif key == "skill":
        inferred = ComponentType.SKILL
        action = _copy_shorthand(key, value, CopyFileType.SKILL)
    elif key == "settingsFile":
        inferred = ComponentType.CONFIGURATION
        action = {"type": "settingsFile", "source": value}
    else:  # gitignore
        if not isinstance(value, list):
            raise ValueError(f"Component '{component_id}': 'gitignore' shorthand requires a list")
        inferred = ComponentType.CONFIGURATION
        action = {"type": "gitignoreEntries", "entries": value}

    expanded.setdefault("type", inferred.value)
    expanded["installAction"] = action
    return expanded


class Component(ManifestModel):
    """
    One installable unit within a pack.

    Attributes:
        id: Component id (normalized to `<pack>.<short-id>`)
        display_name: Human-readable name (defaults to id)
        description: What the component does
        type: Declared component kind
        dependencies: Component ids this one requires
        is_required: Whether selection may exclude it
        hook_event: Event to register a hook file under
        install_action: Exactly one install action
        doctor_checks: Diagnostic checks for this component
    """

    id: str = Field(..., min_length=1)
    display_name: str = ""
    description: str = ""
    type: ComponentType
    dependencies: list[str] = Field(default_factory=list)
    is_required: bool = False
    hook_event: str | None = None
    install_action: InstallAction
    doctor_checks: list[DoctorCheckDefinition] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def default_display_name(cls, data: Any) -> Any:
        if isinstance(data, dict) and not data.get("displayName") and not data.get("display_name"):
            data = {**data, "displayName": data.get("id", "")}
        return data

    @property
    def hook_command_target(self) -> str | None:
        """Destination of the hook file this component registers, if any."""
        action = self.install_action
        if (
            self.type == ComponentType.HOOK_FILE
            and self.hook_event
            and isinstance(action, CopyPackFileAction)
            and action.file_type == CopyFileType.HOOK
        ):
            return action.destination
        return None


# =============================================================================
# Manifest
# =============================================================================


class Manifest(ManifestModel):
    """
    Complete manifest for a pack, loaded from techpack.yaml.

    Attributes:
        schema_version: Manifest schema version (must be 1)
        identifier: Unique pack identifier (lowercase alphanumeric with hyphens)
        display_name: Human-readable pack name
        description: What the pack provides
        version: Pack version string
        min_required_version: Minimum packsmith version
        peer_dependencies: Other packs that must be selected alongside
        components: Installable units
        templates: Sections contributed to the template document
        prompts: Values gathered at configure time
        configure_project: Script run after artifacts are installed
        supplementary_doctor_checks: Checks not tied to a component
    """

    schema_version: int
    identifier: str
    display_name: str
    description: str
    version: str
    min_required_version: str | None = None
    peer_dependencies: list[PeerDependency] = Field(default_factory=list)
    components: list[Component] = Field(default_factory=list)
    templates: list[TemplateDefinition] = Field(default_factory=list)
    prompts: list[PromptDefinition] = Field(default_factory=list)
    configure_project: ConfigureProject | None = None
    supplementary_doctor_checks: list[DoctorCheckDefinition] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def expand_shorthand(cls, data: Any) -> Any:
        """Accept legacy key names and expand shorthand components."""
        if not isinstance(data, dict):
            return data
        data = dict(data)
        if "minMCSVersion" in data and "minRequiredVersion" not in data:
            data["minRequiredVersion"] = data.pop("minMCSVersion")
        identifier = str(data.get("identifier", ""))
        components = data.get("components")
        if isinstance(components, list):
            data["components"] = [
                expand_component_shorthand(c, identifier) if isinstance(c, dict) else c
                for c in components
            ]
        return data

    @field_validator("identifier")
    @classmethod
    def validate_identifier(cls, v: str) -> str:
        """Validate identifier format (lowercase alphanumeric with hyphens)."""
        if not re.match(IDENTIFIER_PATTERN, v):
            msg = (
                f"Invalid pack identifier: {v}. "
                "Must start with a lowercase letter or digit and contain only "
                "lowercase letters, digits, and hyphens."
            )
            raise ValueError(msg)
        return v

    @property
    def namespace(self) -> str:
        return f"{self.identifier}."

    def component(self, component_id: str) -> Component | None:
        for c in self.components:
            if c.id == component_id:
                return c
        return None

    def all_doctor_checks(self) -> list[DoctorCheckDefinition]:
        """Component checks followed by supplementary checks."""
        checks = [check for c in self.components for check in c.doctor_checks]
        return checks + list(self.supplementary_doctor_checks)

    def to_yaml_dict(self) -> dict[str, Any]:
        """Dump using manifest (camelCase) keys, omitting unset optionals."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)
