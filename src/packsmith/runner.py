"""
Child-process runner for packsmith.

Every external program the engine starts (git, brew, pack scripts, prompt
scripts, shell-command install actions) goes through CommandRunner.

Security Note:
    Commands are passed as argument lists with shell=False. Only
    `run_shell()` goes through bash, and it is used exclusively for content
    the user has explicitly trusted (shell-command install actions and
    prompt scripts).

Timeouts:
    Every call carries a timeout. On expiry subprocess.run() kills the child
    and the runner raises CommandTimeoutError, which is distinct from a
    non-zero exit (returned as a CommandResult with succeeded=False).

Detached work:
    `spawn_detached()` starts fire-and-forget auxiliary work in its own
    session with output discarded. A watchdog timer kills it after a fixed
    ceiling. Its failure never propagates to the caller.
"""

import logging
import os
import shutil
import stat
import subprocess
import threading
from dataclasses import dataclass, field
from pathlib import Path

from packsmith.errors import CommandNotFoundError, CommandTimeoutError
from packsmith.paths import resolve_within

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 60.0
DEFAULT_MAX_OUTPUT_BYTES = 1024 * 1024
SHELL = "/bin/bash"


@dataclass(frozen=True)
class CommandResult:
    """
    Outcome of a finished child process.

    Attributes:
        returncode: Process exit status
        stdout: Decoded standard output (possibly truncated)
        stderr: Decoded standard error (possibly truncated)
    """

    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def succeeded(self) -> bool:
        return self.returncode == 0


def _decode(data: bytes, limit: int) -> str:
    if len(data) > limit:
        marker = f"\n... [truncated, exceeded {limit} bytes]".encode()
        data = data[: max(limit - len(marker), 0)] + marker
    return data.decode("utf-8", errors="replace")


class CommandRunner:
    """
    Run external commands with timeouts.

    Example:
        runner = CommandRunner()
        result = runner.run(["git", "--version"], timeout=5)
        if result.succeeded:
            print(result.stdout)
    """

    def __init__(
        self,
        default_timeout: float = DEFAULT_TIMEOUT_SECONDS,
        max_output_bytes: int = DEFAULT_MAX_OUTPUT_BYTES,
    ) -> None:
        self.default_timeout = default_timeout
        self.max_output_bytes = max_output_bytes

    def which(self, executable: str) -> str | None:
        """Look up an executable on PATH."""
        return shutil.which(executable)

    def run(
        self,
        cmd: list[str],
        cwd: Path | str | None = None,
        env: dict[str, str] | None = None,
        timeout: float | None = None,
    ) -> CommandResult:
        """
        Run a command to completion.

        Args:
            cmd: Executable and arguments
            cwd: Working directory
            env: Extra environment variables (merged over os.environ)
            timeout: Seconds before the process is killed

        Returns:
            CommandResult (check `succeeded` for the exit status)

        Raises:
            CommandTimeoutError: If the timeout expired
            CommandNotFoundError: If the executable doesn't exist
        """
        timeout_seconds = timeout if timeout is not None else self.default_timeout
        full_env = os.environ.copy()
        if env:
            full_env.update(env)

        logger.debug("Running %s (cwd=%s, timeout=%ss)", cmd, cwd, timeout_seconds)
        try:
            completed = subprocess.run(
                cmd,
                cwd=str(cwd) if cwd is not None else None,
                env=full_env,
                capture_output=True,
                timeout=timeout_seconds,
                shell=False,
            )
        except subprocess.TimeoutExpired:
            raise CommandTimeoutError(command=list(cmd), timeout_seconds=timeout_seconds) from None
        except FileNotFoundError:
            raise CommandNotFoundError(command=list(cmd)) from None
        except PermissionError as e:
            raise CommandNotFoundError(
                command=list(cmd),
                message=f"Permission denied executing: {cmd[0]}",
            ) from e

        return CommandResult(
            returncode=completed.returncode,
            stdout=_decode(completed.stdout, self.max_output_bytes),
            stderr=_decode(completed.stderr, self.max_output_bytes),
        )

    def run_shell(
        self,
        command: str,
        cwd: Path | str | None = None,
        env: dict[str, str] | None = None,
        timeout: float | None = None,
    ) -> CommandResult:
        """Run a trusted command string through bash."""
        return self.run([SHELL, "-c", command], cwd=cwd, env=env, timeout=timeout)

    def run_script(
        self,
        script: str,
        pack_root: Path,
        cwd: Path | str | None = None,
        env: dict[str, str] | None = None,
        timeout: float = 30,
    ) -> CommandResult:
        """
        Run a script shipped inside a pack.

        The script path must resolve inside `pack_root`. It is made executable
        before running.

        Raises:
            PathEscapeError: If the script escapes the pack root
            CommandTimeoutError: If the timeout expired
            CommandNotFoundError: If the script doesn't exist
        """
        script_path = resolve_within(pack_root, script)
        if not script_path.is_file():
            raise CommandNotFoundError(command=[str(script_path)])

        mode = script_path.stat().st_mode
        script_path.chmod(mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)

        return self.run([str(script_path)], cwd=cwd or pack_root, env=env, timeout=timeout)

    def spawn_detached(
        self,
        cmd: list[str],
        ceiling_seconds: float,
        cwd: Path | str | None = None,
    ) -> "DetachedTask":
        """
        Start fire-and-forget work bounded by a watchdog.

        Output is discarded. Any failure to start is logged and returned as
        a task that has already finished.
        """
        try:
            process = subprocess.Popen(
                cmd,
                cwd=str(cwd) if cwd is not None else None,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                start_new_session=True,
            )
        except OSError as e:
            logger.debug("Detached task %s failed to start: %s", cmd, e)
            return DetachedTask(cmd=list(cmd), process=None)

        task = DetachedTask(cmd=list(cmd), process=process)
        task.start_watchdog(ceiling_seconds)
        return task


@dataclass
class DetachedTask:
    """
    Handle to a detached background process.

    Attributes:
        cmd: The command that was started
        process: The Popen handle, or None if it never started
        killed: Whether the watchdog had to terminate the process
    """

    cmd: list[str]
    process: subprocess.Popen | None
    killed: bool = False
    _timer: threading.Timer | None = field(default=None, repr=False)

    def start_watchdog(self, ceiling_seconds: float) -> None:
        self._timer = threading.Timer(ceiling_seconds, self._kill)
        self._timer.daemon = True
        self._timer.start()

    def _kill(self) -> None:
        if self.process is not None and self.process.poll() is None:
            logger.debug("Watchdog terminating detached task %s", self.cmd)
            try:
                self.process.kill()
                self.killed = True
            except OSError as e:
                logger.debug("Could not kill detached task %s: %s", self.cmd, e)

    @property
    def running(self) -> bool:
        return self.process is not None and self.process.poll() is None

    def wait(self, timeout: float | None = None) -> int | None:
        """Wait for the process to exit; returns its exit code or None if still running."""
        if self.process is None:
            return None
        try:
            code = self.process.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            return None
        if self._timer is not None:
            self._timer.cancel()
        return code
