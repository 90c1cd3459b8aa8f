"""Unit tests for pack source resolution and fetcher validation paths."""

from pathlib import Path

import pytest

from packsmith.config import EngineSettings
from packsmith.errors import GitNotInstalledError, InvalidCommitSHAError, InvalidSourceError
from packsmith.pack.fetcher import PackFetcher, PackSource, SourceKind


class TestPackSourceResolve:
    @pytest.mark.parametrize(
        "text",
        [
            "https://github.com/user/repo.git",
            "http://example.com/repo.git",
            "ssh://git@example.com/repo.git",
            "git://example.com/repo.git",
            "git@github.com:user/repo.git",
        ],
    )
    def test_git_urls(self, text: str) -> None:
        source = PackSource.resolve(text)
        assert source.kind == SourceKind.GIT
        assert source.location == text
        assert not source.is_local

    def test_github_shorthand(self, temp_dir: Path) -> None:
        source = PackSource.resolve("user/my-pack", cwd=temp_dir)
        assert source == PackSource(SourceKind.GIT, "https://github.com/user/my-pack.git")

    def test_existing_directory(self, temp_dir: Path) -> None:
        source = PackSource.resolve(str(temp_dir))
        assert source.is_local
        assert source.location == str(temp_dir)

    def test_relative_directory(self, temp_dir: Path) -> None:
        (temp_dir / "user" / "pack").mkdir(parents=True)
        source = PackSource.resolve("user/pack", cwd=temp_dir)
        assert source.is_local
        assert source.location == str(temp_dir / "user" / "pack")

    def test_file_url(self, temp_dir: Path) -> None:
        assert PackSource.resolve(f"file://{temp_dir}").location == str(temp_dir)
        assert PackSource.resolve(f"file://localhost{temp_dir}").location == str(temp_dir)

    def test_file_url_with_remote_host(self, temp_dir: Path) -> None:
        with pytest.raises(InvalidSourceError):
            PackSource.resolve(f"file://server{temp_dir}")

    def test_missing_absolute_directory(self, temp_dir: Path) -> None:
        with pytest.raises(InvalidSourceError) as exc_info:
            PackSource.resolve(str(temp_dir / "missing"))
        assert "does not exist" in exc_info.value.reason

    @pytest.mark.parametrize("text", ["", "   ", "--upload-pack=evil", "not a source at all"])
    def test_rejected(self, text: str, temp_dir: Path) -> None:
        with pytest.raises(InvalidSourceError):
            PackSource.resolve(text, cwd=temp_dir)


class NoGitRunner:
    def which(self, executable: str) -> str | None:
        return None


class TestPackFetcher:
    def test_local_fetch_is_in_place(self, temp_dir: Path, settings: EngineSettings) -> None:
        fetcher = PackFetcher(settings)
        result = fetcher.fetch(PackSource(SourceKind.LOCAL, str(temp_dir)))
        assert result.local_path == temp_dir
        assert result.commit_sha is None
        assert fetcher.commit(result, "anything") == temp_dir
        assert not settings.packs_dir.exists()

    def test_git_missing(self, settings: EngineSettings) -> None:
        fetcher = PackFetcher(settings, NoGitRunner())
        with pytest.raises(GitNotInstalledError):
            fetcher.fetch(PackSource(SourceKind.GIT, "https://example.com/repo.git"))

    @pytest.mark.parametrize("sha", ["main", "HEAD~1", "abc", "--force", "g" * 40])
    def test_checkout_rejects_non_sha(self, sha: str, temp_dir: Path, settings: EngineSettings) -> None:
        with pytest.raises(InvalidCommitSHAError):
            PackFetcher(settings, NoGitRunner()).checkout(temp_dir, sha)
