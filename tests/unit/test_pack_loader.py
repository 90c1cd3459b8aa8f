"""
Unit tests for manifest loading.

Tests cover:
- Parsing and schema version checks
- Namespace normalization
- Structural validation (ids, sections, prompts, doctor checks)
- Engine version compatibility
- Referenced file checks
- Peer dependency validation
"""

from pathlib import Path

import pytest
import yaml

from conftest import manifest_data, write_pack
from packsmith.errors import (
    IncompatibleVersionError,
    ManifestNotFoundError,
    ManifestValidationError,
    PathEscapeError,
    ReferencedFilesMissingError,
)
from packsmith.pack.loader import (
    ManifestLoader,
    PeerStatus,
    check_version,
    normalize,
    parse_manifest,
    render_manifest,
    validate_peer_dependencies,
)
from packsmith.pack.manifest import Manifest


def render_data(data: dict) -> str:
    return yaml.safe_dump(data, sort_keys=False)


def _load(root: Path, data: dict, files: dict[str, str] | None = None) -> Manifest:
    write_pack(root, data, files)
    return ManifestLoader(root).load()


class TestParsing:
    def test_invalid_yaml(self) -> None:
        with pytest.raises(ManifestValidationError) as exc_info:
            parse_manifest("identifier: [unclosed")
        assert "Invalid YAML" in exc_info.value.message

    def test_non_mapping(self) -> None:
        with pytest.raises(ManifestValidationError):
            parse_manifest("- just\n- a list\n")

    def test_unsupported_schema_version(self) -> None:
        data = manifest_data("my-pack", schemaVersion=2)
        with pytest.raises(ManifestValidationError) as exc_info:
            parse_manifest(render_data(data))
        assert exc_info.value.field_name == "schemaVersion"

    def test_schema_error_names_field(self) -> None:
        data = manifest_data("my-pack")
        del data["displayName"]
        with pytest.raises(ManifestValidationError) as exc_info:
            parse_manifest(render_data(data))
        assert exc_info.value.field_name == "displayName"
        assert exc_info.value.identifier == "my-pack"


class TestNormalization:
    def test_short_ids_are_prefixed(self) -> None:
        manifest = parse_manifest(render_data(manifest_data(
            "my-pack",
            [
                {"id": "base", "brew": "jq"},
                {"id": "tool", "brew": "yq", "dependencies": ["base", "other-pack.shared"]},
            ],
            templates=[
                {"sectionIdentifier": "my-pack", "contentFile": "a.md"},
                {"sectionIdentifier": "rules", "contentFile": "b.md"},
            ],
        )))
        normalized = normalize(manifest)
        assert [c.id for c in normalized.components] == ["my-pack.base", "my-pack.tool"]
        assert normalized.components[1].dependencies == ["my-pack.base", "other-pack.shared"]
        assert [t.section_identifier for t in normalized.templates] == ["my-pack", "my-pack.rules"]

    def test_normalize_is_idempotent(self) -> None:
        manifest = parse_manifest(render_data(manifest_data("my-pack", [{"id": "base", "brew": "jq"}])))
        once = normalize(manifest)
        assert normalize(once) == once

    def test_render_round_trip(self, temp_dir: Path) -> None:
        manifest = _load(
            temp_dir / "pack",
            manifest_data(
                "my-pack",
                [
                    {"id": "search", "mcp": {"command": "npx", "args": ["-y", "search"]}},
                    {"id": "start", "hookEvent": "SessionStart", "hook": {"source": "hooks/start.sh", "destination": "start.sh"}},
                ],
                prompts=[{"key": "NAME", "type": "input", "label": "Name"}],
            ),
            {"hooks/start.sh": "#!/bin/sh\n"},
        )
        assert normalize(parse_manifest(render_manifest(manifest))) == manifest


class TestValidation:
    def test_foreign_component_id_rejected(self, temp_dir: Path) -> None:
        with pytest.raises(ManifestValidationError) as exc_info:
            _load(temp_dir / "pack", manifest_data("my-pack", [{"id": "other.tool", "brew": "jq"}]))
        assert exc_info.value.field_name == "components.0.id"

    def test_duplicate_component_id(self, temp_dir: Path) -> None:
        with pytest.raises(ManifestValidationError) as exc_info:
            _load(temp_dir / "pack", manifest_data("my-pack", [
                {"id": "tool", "brew": "jq"},
                {"id": "my-pack.tool", "brew": "yq"},
            ]))
        assert "Duplicate" in exc_info.value.reason

    def test_duplicate_prompt_key(self, temp_dir: Path) -> None:
        with pytest.raises(ManifestValidationError) as exc_info:
            _load(temp_dir / "pack", manifest_data("my-pack", prompts=[
                {"key": "NAME", "type": "input"},
                {"key": "NAME", "type": "input"},
            ]))
        assert exc_info.value.field_name == "prompts.1.key"

    def test_foreign_section_rejected(self, temp_dir: Path) -> None:
        with pytest.raises(ManifestValidationError):
            _load(
                temp_dir / "pack",
                manifest_data("my-pack", templates=[{"sectionIdentifier": "other.rules", "contentFile": "a.md"}]),
                {"a.md": "x"},
            )

    def test_doctor_check_missing_fields(self, temp_dir: Path) -> None:
        with pytest.raises(ManifestValidationError) as exc_info:
            _load(temp_dir / "pack", manifest_data(
                "my-pack",
                supplementaryDoctorChecks=[{"type": "fileContains", "path": "README.md"}],
            ))
        assert "pattern" in exc_info.value.reason


class TestVersionCheck:
    def test_newer_engine_required(self) -> None:
        manifest = Manifest.model_validate(manifest_data("my-pack", minRequiredVersion="9.0.0"))
        with pytest.raises(IncompatibleVersionError) as exc_info:
            check_version(manifest, engine_version="1.0.0")
        assert exc_info.value.required == "9.0.0"

    def test_satisfied(self) -> None:
        manifest = Manifest.model_validate(manifest_data("my-pack", minRequiredVersion="0.1.0"))
        check_version(manifest, engine_version="0.4.0")

    def test_unparsable_requirement_rejected(self) -> None:
        manifest = Manifest.model_validate(manifest_data("my-pack", minRequiredVersion="soon"))
        with pytest.raises(IncompatibleVersionError):
            check_version(manifest, engine_version="0.4.0")


class TestLoader:
    def test_missing_manifest(self, temp_dir: Path) -> None:
        with pytest.raises(ManifestNotFoundError):
            ManifestLoader(temp_dir).load()

    def test_missing_files_reported_together(self, temp_dir: Path) -> None:
        data = manifest_data(
            "my-pack",
            [
                {"id": "a", "skill": {"source": "skills/a", "destination": "a"}},
                {"id": "b", "settingsFile": "config/settings.json"},
            ],
            configureProject={"script": "scripts/configure.sh"},
        )
        with pytest.raises(ReferencedFilesMissingError) as exc_info:
            _load(temp_dir / "pack", data)
        assert exc_info.value.files == ["scripts/configure.sh", "skills/a", "config/settings.json"]

    def test_shell_script_check_requires_pack_script(self, temp_dir: Path) -> None:
        data = manifest_data(
            "my-pack",
            supplementaryDoctorChecks=[{"type": "shellScript", "name": "check", "command": "scripts/check.sh"}],
        )
        with pytest.raises(ReferencedFilesMissingError) as exc_info:
            _load(temp_dir / "pack", data)
        assert exc_info.value.files == ["scripts/check.sh"]

    @pytest.mark.parametrize("command", ["echo hi", "/usr/local/bin/check.sh", "true"])
    def test_shell_command_is_not_a_pack_file(self, temp_dir: Path, command: str) -> None:
        data = manifest_data(
            "my-pack",
            supplementaryDoctorChecks=[{"type": "shellScript", "name": "check", "command": command}],
        )
        assert _load(temp_dir / "pack", data).identifier == "my-pack"

    def test_source_escaping_pack_root(self, temp_dir: Path) -> None:
        data = manifest_data("my-pack", [{"id": "a", "settingsFile": "../outside.json"}])
        (temp_dir / "outside.json").write_text("{}")
        with pytest.raises(PathEscapeError):
            _load(temp_dir / "pack", data)

    def test_validate_structure_collects_message(self, temp_dir: Path) -> None:
        write_pack(temp_dir / "pack", manifest_data("my-pack", [{"id": "a", "settingsFile": "missing.json"}]))
        errors = ManifestLoader(temp_dir / "pack").validate_structure()
        assert len(errors) == 1
        assert "missing.json" in errors[0]

    def test_valid_pack(self, temp_dir: Path) -> None:
        write_pack(temp_dir / "pack", manifest_data("my-pack", [{"id": "jq", "brew": "jq"}]))
        assert ManifestLoader(temp_dir / "pack").validate_structure() == []


class TestPeerDependencies:
    def _pack(self, identifier: str, version: str = "1.0.0", peers: list[dict] | None = None) -> Manifest:
        return Manifest.model_validate(
            manifest_data(identifier, version=version, peerDependencies=peers or [])
        )

    def test_statuses(self) -> None:
        packs = [
            self._pack("app", peers=[
                {"pack": "base", "minVersion": "1.0.0"},
                {"pack": "tools", "minVersion": "2.0.0"},
                {"pack": "absent", "minVersion": "1.0.0"},
            ]),
            self._pack("base", version="1.2.0"),
            self._pack("tools", version="1.9.0"),
        ]
        results = validate_peer_dependencies(packs)
        assert [r.status for r in results] == [
            PeerStatus.SATISFIED,
            PeerStatus.VERSION_TOO_LOW,
            PeerStatus.MISSING,
        ]
        assert "v1.9.0" in results[1].describe()
        assert "not selected" in results[2].describe()

    def test_no_peers(self) -> None:
        assert validate_peer_dependencies([self._pack("solo")]) == []
