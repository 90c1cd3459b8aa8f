"""Unit tests for run backups."""

from pathlib import Path

from packsmith.store.backup import BackupStore


class TestBackupStore:
    def test_copy_keeps_absolute_layout(self, temp_dir: Path) -> None:
        original = temp_dir / "project" / "CLAUDE.local.md"
        original.parent.mkdir()
        original.write_text("# Notes\n")
        backups = BackupStore(temp_dir / "backups", stamp="20260101_000000_000000")

        copy = backups.backup(original)

        assert copy == temp_dir / "backups" / "20260101_000000_000000" / original.relative_to(original.anchor)
        assert copy.read_text() == "# Notes\n"
        assert backups.created == [copy]

    def test_missing_file_not_backed_up(self, temp_dir: Path) -> None:
        backups = BackupStore(temp_dir / "backups")
        assert backups.backup(temp_dir / "absent.json") is None
        assert backups.created == []
        assert not (temp_dir / "backups").exists()

    def test_first_copy_wins_within_a_run(self, temp_dir: Path) -> None:
        original = temp_dir / "settings.json"
        original.write_text("{}")
        backups = BackupStore(temp_dir / "backups")
        first = backups.backup(original)
        original.write_text('{"changed": true}')

        assert backups.backup(original) == first
        assert first.read_text() == "{}"
        assert len(backups.created) == 1

    def test_runs_use_separate_directories(self, temp_dir: Path) -> None:
        original = temp_dir / "settings.json"
        original.write_text("{}")
        first = BackupStore(temp_dir / "backups", stamp="one").backup(original)
        second = BackupStore(temp_dir / "backups", stamp="two").backup(original)
        assert first != second
        assert first.exists() and second.exists()
