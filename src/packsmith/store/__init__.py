"""
Persistent state for packsmith.

Three documents are the only mutable state the engine keeps:
    - registry.yaml: packs known to this machine (RegistryFile)
    - packsmith.lock.yaml: per-project commit pins (Lockfile)
    - .mcs-project / global-state.json: per-scope artifact ledger (ProjectState)

Design principles:
    - Whole-file read/modify/write, never partial updates
    - Atomic writes (temp file + os.replace)
    - Corruption is reported, never silently reset
"""

from packsmith.store.files import atomic_write_text, compute_hash, hash_file
from packsmith.store.lock import registry_lock
from packsmith.store.lockfile import LockedPack, Lockfile
from packsmith.store.registry import Collision, RegistryEntry, RegistryFile, detect_collisions
from packsmith.store.state import ArtifactRecord, McpServerRef, ProjectState

__all__ = [
    "ArtifactRecord",
    "Collision",
    "LockedPack",
    "Lockfile",
    "McpServerRef",
    "ProjectState",
    "RegistryEntry",
    "RegistryFile",
    "atomic_write_text",
    "compute_hash",
    "detect_collisions",
    "hash_file",
    "registry_lock",
]
