"""
Global gitignore management.

Packs can declare lines for the user's global gitignore. Lines are matched
after stripping whitespace; `add` reports only the lines that were really
appended, so removal never deletes a line the user had before.
"""

import logging
from pathlib import Path

from packsmith.config import EngineSettings
from packsmith.errors import PacksmithError
from packsmith.runner import CommandRunner
from packsmith.store.files import atomic_write_text

logger = logging.getLogger(__name__)


def resolve_gitignore_path(settings: EngineSettings, runner: CommandRunner | None = None) -> Path:
    """
    Locate the global gitignore.

    Order: settings.gitignore_path, `git config --global core.excludesFile`,
    then `<user_home>/.config/git/ignore`.
    """
    if settings.gitignore_path is not None:
        return settings.gitignore_path.expanduser()

    runner = runner or CommandRunner()
    try:
        result = runner.run(
            ["git", "config", "--global", "core.excludesFile"],
            timeout=settings.command_timeout_seconds,
        )
        configured = result.stdout.strip()
        if result.succeeded and configured:
            return Path(configured).expanduser()
    except PacksmithError as e:
        logger.debug("Could not read core.excludesFile: %s", e.message)
    return settings.user_home / ".config" / "git" / "ignore"


class GitignoreManager:
    """
    Idempotent line edits on one gitignore file.

    Example:
        manager = GitignoreManager(resolve_gitignore_path(settings))
        added = manager.add([".claude/", "*.local.md"])
        manager.remove(added)
    """

    def __init__(self, path: Path) -> None:
        self.path = path

    def _lines(self) -> list[str]:
        if not self.path.exists():
            return []
        return self.path.read_text(encoding="utf-8").splitlines()

    def entries(self) -> set[str]:
        return {line.strip() for line in self._lines() if line.strip()}

    def add(self, entries: list[str]) -> list[str]:
        """Append missing entries; returns the ones actually added, in order."""
        present = self.entries()
        added: list[str] = []
        for entry in entries:
            value = entry.strip()
            if value and value not in present and value not in added:
                added.append(value)
        if not added:
            return []

        text = self.path.read_text(encoding="utf-8") if self.path.exists() else ""
        if text and not text.endswith("\n"):
            text += "\n"
        atomic_write_text(self.path, text + "\n".join(added) + "\n")
        logger.debug("Added %d gitignore entr(ies) to %s", len(added), self.path)
        return added

    def remove(self, entries: list[str]) -> list[str]:
        """Delete matching lines; returns the ones removed. An emptied file is deleted."""
        targets = {e.strip() for e in entries if e.strip()}
        lines = self._lines()
        kept = [line for line in lines if line.strip() not in targets]
        removed = sorted({line.strip() for line in lines if line.strip() in targets})
        if not removed:
            return []

        if any(line.strip() for line in kept):
            atomic_write_text(self.path, "\n".join(kept) + "\n")
        else:
            self.path.unlink()
        return removed
