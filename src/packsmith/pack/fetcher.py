"""
Pack fetcher: get pack content onto local disk.

Two source kinds are supported and kept distinct throughout:
- git: cloned shallowly into a temporary staging directory, validated by the
  caller, then committed into `<home>/packs/<identifier>`
- local: an existing directory registered in place; never cloned, never
  updated, and it carries no commit identity

Fetch Protocol (git):
    1. fetch()   - clone into <home>/packs/.staging/<tmp>/checkout
    2. caller validates the manifest at the staging path
    3. commit()  - move staging into the permanent slot (or discard())

Because step 3 only runs after validation, the permanent slot never holds a
partially cloned or manifest-invalid pack.
"""

import logging
import re
import shutil
import tempfile
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from urllib.parse import unquote, urlparse

from packsmith.config import EngineSettings
from packsmith.errors import (
    CloneFailedError,
    CommandNotFoundError,
    CommandTimeoutError,
    CommitResolutionFailedError,
    FetchFailedError,
    FetchTimeoutError,
    GitNotInstalledError,
    InvalidCommitSHAError,
    InvalidSourceError,
    RefNotFoundError,
    UpdateFailedError,
)
from packsmith.runner import CommandResult, CommandRunner

logger = logging.getLogger(__name__)

GIT_URL_PREFIXES = ("https://", "http://", "ssh://", "git://", "git@")
GITHUB_SHORTHAND = re.compile(r"^[a-zA-Z0-9][a-zA-Z0-9_.-]*/[a-zA-Z0-9][a-zA-Z0-9_.-]*$")
COMMIT_SHA = re.compile(r"^[0-9a-f]{7,64}$")

# Never block on credential prompts
GIT_ENV = {"GIT_TERMINAL_PROMPT": "0"}


# =============================================================================
# Sources
# =============================================================================


class SourceKind(str, Enum):
    GIT = "git"
    LOCAL = "local"


@dataclass(frozen=True)
class PackSource:
    """
    Where a pack comes from.

    Attributes:
        kind: git or local
        location: Clone URL for git sources, absolute directory for local ones
    """

    kind: SourceKind
    location: str

    @property
    def is_local(self) -> bool:
        return self.kind == SourceKind.LOCAL

    @classmethod
    def resolve(cls, text: str, cwd: Path | None = None) -> "PackSource":
        """
        Interpret user input as a pack source.

        Accepts git URLs (https, http, ssh, git, git@), `file://` URLs,
        existing directories, and `user/repo` GitHub shorthand.

        Raises:
            InvalidSourceError: If the input matches none of these
        """
        value = text.strip()
        if not value:
            raise InvalidSourceError(source=text, reason="empty source")
        if value.startswith("-"):
            raise InvalidSourceError(source=text, reason="sources may not start with '-'")

        if value.startswith("file://"):
            parsed = urlparse(value)
            if parsed.netloc not in ("", "localhost"):
                raise InvalidSourceError(source=text, reason=f"file URL host must be empty or localhost: {parsed.netloc}")
            return cls._local(Path(unquote(parsed.path)), text)

        if value.startswith(GIT_URL_PREFIXES):
            return cls(kind=SourceKind.GIT, location=value)

        path = Path(value).expanduser()
        if not path.is_absolute() and cwd is not None:
            path = cwd / path
        if path.exists() or value.startswith(("/", "./", "../", "~")):
            return cls._local(path, text)

        if GITHUB_SHORTHAND.match(value):
            return cls(kind=SourceKind.GIT, location=f"https://github.com/{value}.git")

        raise InvalidSourceError(
            source=text,
            reason="not a git URL, an existing directory, or a user/repo shorthand",
        )

    @classmethod
    def _local(cls, path: Path, original: str) -> "PackSource":
        if not path.is_dir():
            raise InvalidSourceError(source=original, reason=f"directory does not exist: {path}")
        return cls(kind=SourceKind.LOCAL, location=str(path.resolve()))


@dataclass(frozen=True)
class FetchResult:
    """
    Outcome of fetch().

    Attributes:
        source: The fetched source
        local_path: Staging checkout (git) or the pack directory itself (local)
        commit_sha: Resolved HEAD for git sources, None for local ones
        ref: Requested tag/branch/commit, if any
    """

    source: PackSource
    local_path: Path
    commit_sha: str | None = None
    ref: str | None = None

    @property
    def is_local(self) -> bool:
        return self.source.is_local


# =============================================================================
# Fetcher
# =============================================================================


class PackFetcher:
    """
    Clone, update and pin pack checkouts.

    Example:
        fetcher = PackFetcher(settings, CommandRunner())
        result = fetcher.fetch(PackSource.resolve("user/repo"), ref="v1.0.0")
        ManifestLoader(result.local_path).load()
        final_path = fetcher.commit(result, "my-pack")
    """

    def __init__(self, settings: EngineSettings, runner: CommandRunner | None = None) -> None:
        self.settings = settings
        self.runner = runner or CommandRunner()

    # -------------------------------------------------------------------------
    # git plumbing
    # -------------------------------------------------------------------------

    def _git(self, args: list[str], cwd: Path | None, source: str) -> CommandResult:
        if self.runner.which("git") is None:
            raise GitNotInstalledError(source=source)
        try:
            return self.runner.run(
                ["git", *args],
                cwd=cwd,
                env=GIT_ENV,
                timeout=self.settings.git_timeout_seconds,
            )
        except CommandTimeoutError as e:
            raise FetchTimeoutError(source=source, timeout_seconds=e.timeout_seconds) from e
        except CommandNotFoundError as e:
            raise GitNotInstalledError(source=source) from e

    def head(self, path: Path, source: str = "") -> str:
        """
        Resolve HEAD to a commit SHA.

        Raises:
            CommitResolutionFailedError: If rev-parse fails
        """
        result = self._git(["rev-parse", "HEAD"], cwd=path, source=source or str(path))
        sha = result.stdout.strip()
        if not result.succeeded or not sha:
            raise CommitResolutionFailedError(source=source or str(path), output=result.stderr.strip())
        return sha

    # -------------------------------------------------------------------------
    # Fetch / commit / discard
    # -------------------------------------------------------------------------

    def fetch(self, source: PackSource, ref: str | None = None) -> FetchResult:
        """
        Fetch a pack into staging (git) or return it in place (local).

        Raises:
            GitNotInstalledError, CloneFailedError, RefNotFoundError,
            CommitResolutionFailedError, FetchTimeoutError
        """
        if source.is_local:
            return FetchResult(source=source, local_path=Path(source.location), ref=ref)

        self.settings.staging_dir.mkdir(parents=True, exist_ok=True)
        staging_root = Path(tempfile.mkdtemp(dir=self.settings.staging_dir, prefix="clone-"))
        checkout = staging_root / "checkout"

        args = ["clone", "--depth", "1"]
        if ref:
            args += ["--branch", ref]
        args += ["--", source.location, str(checkout)]

        try:
            result = self._git(args, cwd=staging_root, source=source.location)
            if not result.succeeded:
                stderr = result.stderr.strip()
                if ref and "not found" in stderr.lower():
                    raise RefNotFoundError(source=source.location, ref=ref, output=stderr)
                raise CloneFailedError(source=source.location, output=stderr)
            sha = self.head(checkout, source.location)
        except BaseException:
            shutil.rmtree(staging_root, ignore_errors=True)
            raise

        logger.debug("Cloned %s@%s into %s", source.location, sha, checkout)
        return FetchResult(source=source, local_path=checkout, commit_sha=sha, ref=ref)

    def stage_copy(self, checkout: Path, source: PackSource, ref: str | None = None) -> FetchResult:
        """Copy an existing checkout into staging so it can be updated without touching the original."""
        self.settings.staging_dir.mkdir(parents=True, exist_ok=True)
        staging_root = Path(tempfile.mkdtemp(dir=self.settings.staging_dir, prefix="update-"))
        staged = staging_root / "checkout"
        shutil.copytree(checkout, staged, symlinks=True)
        return FetchResult(source=source, local_path=staged, commit_sha=self.head(staged), ref=ref)

    def commit(self, result: FetchResult, identifier: str) -> Path:
        """
        Move a staged checkout into its permanent slot.

        Local sources are returned unchanged.
        """
        if result.is_local:
            return result.local_path

        self.settings.packs_dir.mkdir(parents=True, exist_ok=True)
        destination = self.settings.packs_dir / identifier
        if destination.exists():
            shutil.rmtree(destination)
        shutil.move(str(result.local_path), str(destination))
        shutil.rmtree(result.local_path.parent, ignore_errors=True)
        logger.debug("Committed %s into %s", identifier, destination)
        return destination

    def discard(self, result: FetchResult) -> None:
        """Delete a staged checkout (no-op for local sources)."""
        if not result.is_local:
            shutil.rmtree(result.local_path.parent, ignore_errors=True)

    # -------------------------------------------------------------------------
    # Update / checkout
    # -------------------------------------------------------------------------

    def update(self, local_path: Path, ref: str | None = None) -> str | None:
        """
        Fetch and move a git checkout to the latest revision (or `ref`).

        Returns:
            The new commit SHA, or None if HEAD did not change

        Raises:
            FetchFailedError, RefNotFoundError, UpdateFailedError,
            CommitResolutionFailedError, FetchTimeoutError
        """
        source = str(local_path)
        before = self.head(local_path, source)

        fetched = self._git(["fetch", "--depth", "1", "origin"], cwd=local_path, source=source)
        if not fetched.succeeded:
            raise FetchFailedError(source=source, output=fetched.stderr.strip())

        if ref:
            checkout = self._git(["checkout", "--quiet", ref], cwd=local_path, source=source)
            if not checkout.succeeded:
                tag = self._git(["fetch", "--depth", "1", "origin", "tag", ref], cwd=local_path, source=source)
                if not tag.succeeded:
                    raise RefNotFoundError(source=source, ref=ref, output=tag.stderr.strip())
                checkout = self._git(["checkout", "--quiet", ref], cwd=local_path, source=source)
                if not checkout.succeeded:
                    raise UpdateFailedError(source=source, output=checkout.stderr.strip())
        else:
            reset = self._git(["reset", "--hard", "origin/HEAD"], cwd=local_path, source=source)
            if not reset.succeeded:
                raise UpdateFailedError(source=source, output=reset.stderr.strip())

        after = self.head(local_path, source)
        if after == before:
            return None
        logger.debug("Updated %s: %s -> %s", local_path, before, after)
        return after

    def checkout(self, local_path: Path, sha: str) -> None:
        """
        Check out a pinned commit, fetching it first if it isn't present.

        Raises:
            InvalidCommitSHAError: If `sha` isn't a hex commit id
            RefNotFoundError: If the commit can't be fetched
            UpdateFailedError: If checkout fails after fetching
        """
        if not COMMIT_SHA.match(sha):
            raise InvalidCommitSHAError(source=str(local_path), sha=sha)

        source = str(local_path)
        result = self._git(["checkout", "--quiet", sha], cwd=local_path, source=source)
        if result.succeeded:
            return

        fetched = self._git(["fetch", "--depth", "1", "origin", sha], cwd=local_path, source=source)
        if not fetched.succeeded:
            raise RefNotFoundError(source=source, ref=sha, output=fetched.stderr.strip())
        result = self._git(["checkout", "--quiet", sha], cwd=local_path, source=source)
        if not result.succeeded:
            raise UpdateFailedError(source=source, output=result.stderr.strip())
