"""Unit tests for the project lockfile."""

from pathlib import Path

import pytest
import yaml

from packsmith.errors import FetchFailedError, LockfileCorruptError
from packsmith.store.lockfile import LOCAL_PIN, Lockfile, LockedPack
from packsmith.store.registry import RegistryEntry, RegistryFile

SHA_A = "a" * 40
SHA_B = "b" * 40


class FakeFetcher:
    """Records checkouts; fails for paths listed in `failing`."""

    def __init__(self, failing: set[str] | None = None) -> None:
        self.failing = failing or set()
        self.checkouts: list[tuple[Path, str]] = []

    def checkout(self, repo_path: Path, sha: str) -> None:
        if repo_path.name in self.failing:
            raise FetchFailedError(source=str(repo_path), message="no such commit")
        self.checkouts.append((repo_path, sha))


@pytest.fixture
def registry(temp_dir: Path) -> RegistryFile:
    registry = RegistryFile(temp_dir / "registry.yaml")
    registry.register(RegistryEntry(
        identifier="remote",
        source_url="https://example.com/remote.git",
        ref="v1",
        commit_sha=SHA_A,
        local_path=str(temp_dir / "packs" / "remote"),
    ))
    registry.register(RegistryEntry(
        identifier="mine",
        source_url=str(temp_dir / "src" / "mine"),
        local_path=str(temp_dir / "src" / "mine"),
        is_local=True,
    ))
    return registry


class TestFromState:
    def test_pins_registered_packs_sorted(self, registry: RegistryFile, temp_dir: Path) -> None:
        lock = Lockfile.from_state(["remote", "mine", "gone"], registry)
        assert [p.identifier for p in lock.packs] == ["mine", "remote"]
        assert lock.get("mine").commit_sha == LOCAL_PIN
        assert lock.get("mine").is_local
        assert lock.get("mine").source == str(temp_dir / "src" / "mine")
        assert lock.get("remote") == LockedPack(
            identifier="remote", commit_sha=SHA_A, source="https://example.com/remote.git", ref="v1",
        )


class TestPersistence:
    def test_missing(self, temp_dir: Path) -> None:
        assert Lockfile.load(temp_dir) is None

    def test_round_trip(self, registry: RegistryFile, temp_dir: Path) -> None:
        path = Lockfile.from_state(["remote", "mine"], registry).save(temp_dir)
        assert path == temp_dir / "packsmith.lock.yaml"

        document = yaml.safe_load(path.read_text())
        assert document["lockfileVersion"] == 1
        assert document["packs"][1]["commitSHA"] == SHA_A
        assert "ref" not in document["packs"][0]

        loaded = Lockfile.load(temp_dir)
        assert [p.identifier for p in loaded.packs] == ["mine", "remote"]

    def test_corrupt(self, temp_dir: Path) -> None:
        (temp_dir / "packsmith.lock.yaml").write_text("- not\n- a mapping\n")
        with pytest.raises(LockfileCorruptError):
            Lockfile.load(temp_dir)

    def test_invalid_entry(self, temp_dir: Path) -> None:
        (temp_dir / "packsmith.lock.yaml").write_text("packs:\n  - identifier: x\n")
        with pytest.raises(LockfileCorruptError):
            Lockfile.load(temp_dir)


class TestMismatches:
    def test_matching_registry(self, registry: RegistryFile) -> None:
        lock = Lockfile.from_state(["remote", "mine"], registry)
        assert lock.mismatches(registry) == []

    def test_moved_and_missing(self, registry: RegistryFile) -> None:
        lock = Lockfile(packs=[
            LockedPack(identifier="remote", commit_sha=SHA_B, source="https://example.com/remote.git"),
            LockedPack(identifier="absent", commit_sha=SHA_A, source="https://example.com/absent.git"),
        ])
        mismatches = lock.mismatches(registry)
        assert [(m.identifier, m.locked, m.current) for m in mismatches] == [
            ("remote", SHA_B, SHA_A),
            ("absent", SHA_A, None),
        ]


class TestCheckoutLocked:
    def test_checks_out_remote_and_skips_local(self, registry: RegistryFile) -> None:
        lock = Lockfile(packs=[
            LockedPack(identifier="mine", commit_sha=LOCAL_PIN, source="/src/mine"),
            LockedPack(identifier="remote", commit_sha=SHA_B, source="https://example.com/remote.git"),
        ])
        fetcher = FakeFetcher()
        results = lock.checkout_locked(fetcher, registry)

        assert [(r.identifier, r.ok, r.skipped) for r in results] == [("mine", True, True), ("remote", True, False)]
        assert fetcher.checkouts == [(registry.get("remote").path, SHA_B)]

    def test_failures_reported_per_pack(self, registry: RegistryFile) -> None:
        lock = Lockfile(packs=[
            LockedPack(identifier="remote", commit_sha=SHA_B, source="https://example.com/remote.git"),
            LockedPack(identifier="absent", commit_sha=SHA_A, source="https://example.com/absent.git"),
        ])
        results = lock.checkout_locked(FakeFetcher(failing={"remote"}), registry)
        assert [r.ok for r in results] == [False, False]
        assert results[0].message == "no such commit"
        assert results[1].message == "pack is not registered"
