"""
Diagnostic check contract.

Packs declare doctor checks in their manifest; this module provides the
seam that runs them. Concrete check implementations are registered by the
embedding application per check type:

    registry = CheckRegistry()
    registry.register(DoctorCheckType.COMMAND_EXISTS, my_command_check)
    reports = run_checks(manifest, registry, CheckContext(project_path=...))

A check function receives the check definition and a context and returns a
CheckVerdict. Script-based checks map their exit code through
`verdict_from_exit_code`.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from packsmith.pack.manifest import DoctorCheckDefinition, DoctorCheckType, Manifest

logger = logging.getLogger(__name__)


class CheckStatus(str, Enum):
    PASS = "pass"
    FAIL = "fail"
    WARN = "warn"
    SKIP = "skip"


EXIT_CODE_STATUS = {
    0: CheckStatus.PASS,
    1: CheckStatus.FAIL,
    2: CheckStatus.WARN,
    3: CheckStatus.SKIP,
}


@dataclass(frozen=True)
class CheckVerdict:
    status: CheckStatus
    message: str = ""


@dataclass(frozen=True)
class CheckContext:
    """
    Environment a check runs against.

    Attributes:
        pack_path: Root of the pack declaring the check
        project_path: Project being diagnosed (None for global checks)
        user_home: Directory holding the user's .claude/
    """

    pack_path: Path
    project_path: Path | None = None
    user_home: Path = field(default_factory=Path.home)


@dataclass(frozen=True)
class CheckReport:
    """A check together with its verdict."""

    check: DoctorCheckDefinition
    verdict: CheckVerdict

    @property
    def label(self) -> str:
        return self.check.label


CheckFunction = Callable[[DoctorCheckDefinition, CheckContext], CheckVerdict]


def verdict_from_exit_code(code: int, message: str = "") -> CheckVerdict:
    """Map a script exit code to a verdict: 0 pass, 1 fail, 2 warn, 3 skip, anything else fail."""
    return CheckVerdict(status=EXIT_CODE_STATUS.get(code, CheckStatus.FAIL), message=message)


class CheckRegistry:
    """Per-type check implementations."""

    def __init__(self) -> None:
        self._checks: dict[DoctorCheckType, CheckFunction] = {}

    def register(self, check_type: DoctorCheckType, fn: CheckFunction) -> None:
        self._checks[check_type] = fn

    def get(self, check_type: DoctorCheckType) -> CheckFunction | None:
        return self._checks.get(check_type)

    def __contains__(self, check_type: object) -> bool:
        return check_type in self._checks


def run_check(check: DoctorCheckDefinition, registry: CheckRegistry, context: CheckContext) -> CheckReport:
    """
    Run a single check.

    Unregistered types are skipped. An exception raised by the check
    becomes a failing verdict for that check only.
    """
    fn = registry.get(check.type)
    if fn is None:
        return CheckReport(check, CheckVerdict(CheckStatus.SKIP, f"No handler for {check.type.value} checks"))
    try:
        verdict = fn(check, context)
    except Exception as e:
        logger.debug("Check %s raised %s", check.label, e, exc_info=True)
        verdict = CheckVerdict(CheckStatus.FAIL, f"Check raised {type(e).__name__}: {e}")
    return CheckReport(check, verdict)


def run_checks(manifest: Manifest, registry: CheckRegistry, context: CheckContext) -> list[CheckReport]:
    """Run every component and supplementary check of a pack, in declaration order."""
    return [run_check(check, registry, context) for check in manifest.all_doctor_checks()]
