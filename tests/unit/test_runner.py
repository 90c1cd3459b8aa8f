"""
Unit tests for the child-process runner.

Tests cover:
- Exit status vs timeout distinction
- Missing executables
- Pack script containment and execution
- Output truncation
- Detached work bounded by a watchdog
"""

import os
import sys
from pathlib import Path

import pytest

from packsmith.errors import CommandNotFoundError, CommandTimeoutError, PathEscapeError
from packsmith.runner import CommandRunner

pytestmark = pytest.mark.skipif(sys.platform == "win32", reason="POSIX shell required")


@pytest.fixture
def runner() -> CommandRunner:
    return CommandRunner(default_timeout=10)


class TestRun:
    def test_success(self, runner: CommandRunner) -> None:
        result = runner.run(["echo", "hello"])
        assert result.succeeded
        assert result.stdout == "hello\n"

    def test_nonzero_exit_is_a_result(self, runner: CommandRunner) -> None:
        result = runner.run_shell("echo oops >&2; exit 3")
        assert not result.succeeded
        assert result.returncode == 3
        assert result.stderr == "oops\n"

    def test_timeout_raises(self, runner: CommandRunner) -> None:
        with pytest.raises(CommandTimeoutError) as exc_info:
            runner.run(["sleep", "5"], timeout=0.2)
        assert exc_info.value.timeout_seconds == 0.2

    def test_missing_executable(self, runner: CommandRunner) -> None:
        with pytest.raises(CommandNotFoundError):
            runner.run(["definitely-not-a-real-command-xyz"])

    def test_env_and_cwd(self, runner: CommandRunner, temp_dir: Path) -> None:
        result = runner.run_shell('echo "$GREETING"; pwd -P', cwd=temp_dir, env={"GREETING": "hi"})
        assert result.stdout.splitlines() == ["hi", str(temp_dir)]

    def test_output_truncated(self, temp_dir: Path) -> None:
        runner = CommandRunner(max_output_bytes=100)
        result = runner.run_shell("head -c 1000 /dev/zero | tr '\\0' 'x'")
        assert len(result.stdout) <= 100
        assert "truncated" in result.stdout


class TestRunScript:
    def test_runs_and_sets_executable_bit(self, runner: CommandRunner, temp_dir: Path) -> None:
        script = temp_dir / "scripts" / "hello.sh"
        script.parent.mkdir()
        script.write_text("#!/bin/sh\necho \"from $(pwd -P)\"\n")
        os.chmod(script, 0o644)

        result = runner.run_script("scripts/hello.sh", temp_dir)
        assert result.succeeded
        assert result.stdout.strip() == f"from {temp_dir}"
        assert os.access(script, os.X_OK)

    def test_escape_rejected(self, runner: CommandRunner, temp_dir: Path) -> None:
        pack = temp_dir / "pack"
        pack.mkdir()
        (temp_dir / "evil.sh").write_text("#!/bin/sh\n")
        with pytest.raises(PathEscapeError):
            runner.run_script("../evil.sh", pack)

    def test_missing_script(self, runner: CommandRunner, temp_dir: Path) -> None:
        with pytest.raises(CommandNotFoundError):
            runner.run_script("nope.sh", temp_dir)


class TestSpawnDetached:
    def test_watchdog_kills_long_task(self, runner: CommandRunner) -> None:
        task = runner.spawn_detached(["sleep", "30"], ceiling_seconds=0.2)
        code = task.wait(timeout=10)
        assert code is not None and code < 0
        assert not task.running

    def test_quick_task_finishes(self, runner: CommandRunner) -> None:
        task = runner.spawn_detached(["true"], ceiling_seconds=10)
        assert task.wait(timeout=10) == 0
        assert not task.killed

    def test_start_failure_is_not_raised(self, runner: CommandRunner) -> None:
        task = runner.spawn_detached(["definitely-not-a-real-command-xyz"], ceiling_seconds=1)
        assert task.process is None
        assert not task.running
        assert task.wait() is None
