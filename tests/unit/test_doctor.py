"""Unit tests for the diagnostic check contract."""

from pathlib import Path

import pytest

from conftest import manifest_data
from packsmith.pack.doctor import (
    CheckContext,
    CheckRegistry,
    CheckStatus,
    CheckVerdict,
    run_checks,
    verdict_from_exit_code,
)
from packsmith.pack.manifest import DoctorCheckType, Manifest


@pytest.mark.parametrize(
    "code, status",
    [
        (0, CheckStatus.PASS),
        (1, CheckStatus.FAIL),
        (2, CheckStatus.WARN),
        (3, CheckStatus.SKIP),
        (4, CheckStatus.FAIL),
        (-9, CheckStatus.FAIL),
    ],
)
def test_verdict_from_exit_code(code: int, status: CheckStatus) -> None:
    assert verdict_from_exit_code(code).status == status


def _manifest() -> Manifest:
    return Manifest.model_validate(manifest_data(
        "diag",
        [
            {
                "id": "diag.jq",
                "brew": "jq",
                "doctorChecks": [{"type": "commandExists", "command": "jq"}],
            },
        ],
        supplementaryDoctorChecks=[
            {"type": "fileExists", "path": "README.md"},
            {"type": "hookEventExists", "event": "SessionStart"},
        ],
    ))


class TestRunChecks:
    def test_declaration_order_and_unregistered_skip(self, temp_dir: Path) -> None:
        registry = CheckRegistry()
        registry.register(DoctorCheckType.COMMAND_EXISTS, lambda check, ctx: CheckVerdict(CheckStatus.PASS))
        registry.register(
            DoctorCheckType.FILE_EXISTS,
            lambda check, ctx: CheckVerdict(
                CheckStatus.PASS if (ctx.pack_path / check.path).exists() else CheckStatus.FAIL,
            ),
        )

        reports = run_checks(_manifest(), registry, CheckContext(pack_path=temp_dir))
        assert [r.label for r in reports] == ["jq", "README.md", "SessionStart"]
        assert [r.verdict.status for r in reports] == [CheckStatus.PASS, CheckStatus.FAIL, CheckStatus.SKIP]

    def test_exception_fails_only_that_check(self, temp_dir: Path) -> None:
        def broken(check, ctx):
            raise RuntimeError("boom")

        registry = CheckRegistry()
        registry.register(DoctorCheckType.COMMAND_EXISTS, broken)
        registry.register(DoctorCheckType.FILE_EXISTS, lambda check, ctx: CheckVerdict(CheckStatus.PASS))

        reports = run_checks(_manifest(), registry, CheckContext(pack_path=temp_dir))
        assert reports[0].verdict.status == CheckStatus.FAIL
        assert "boom" in reports[0].verdict.message
        assert reports[1].verdict.status == CheckStatus.PASS

    def test_registry_membership(self) -> None:
        registry = CheckRegistry()
        registry.register(DoctorCheckType.SHELL_SCRIPT, lambda check, ctx: verdict_from_exit_code(0))
        assert DoctorCheckType.SHELL_SCRIPT in registry
        assert DoctorCheckType.FILE_CONTAINS not in registry
