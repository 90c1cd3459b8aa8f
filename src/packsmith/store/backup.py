"""
Backups of user files taken before a run overwrites them.

One BackupStore covers one run. The first time a run is about to change an
existing file, the file's current bytes are copied to

    <home>/backups/<YYYYmmdd_HHMMSS_ffffff>/<absolute path of the file>

Later writes to the same file during the same run keep that first copy, so
a run's backup directory always holds the state from before the run.

Design Decisions:
    - Backups live under the packsmith home, not beside the original file
    - A file that doesn't exist yet has nothing to back up
"""

import logging
import shutil
from datetime import UTC, datetime
from pathlib import Path

logger = logging.getLogger(__name__)


class BackupStore:
    """
    Timestamped copies of files about to be overwritten.

    Attributes:
        root: Directory holding one subdirectory per run
        stamp: This run's subdirectory name
        created: Backup files written so far, in order

    Example:
        backups = BackupStore(settings.backups_dir)
        backups.backup(project / "CLAUDE.local.md")
        atomic_write_text(project / "CLAUDE.local.md", new_text)
    """

    def __init__(self, root: Path, stamp: str | None = None) -> None:
        self.root = root
        self.stamp = stamp or datetime.now(UTC).strftime("%Y%m%d_%H%M%S_%f")
        self.created: list[Path] = []

    @property
    def run_dir(self) -> Path:
        return self.root / self.stamp

    def backup_path(self, path: Path) -> Path:
        """Where `path` is (or would be) backed up during this run."""
        resolved = path.resolve()
        return self.run_dir / resolved.relative_to(resolved.anchor)

    def backup(self, path: Path) -> Path | None:
        """
        Copy `path` into this run's backup directory.

        Returns:
            The backup file, or None if `path` isn't an existing file

        Raises:
            OSError: If the copy fails
        """
        if not path.is_file():
            return None
        target = self.backup_path(path)
        if target.exists():
            return target
        target.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(path, target)
        self.created.append(target)
        logger.debug("Backed up %s to %s", path, target)
        return target
