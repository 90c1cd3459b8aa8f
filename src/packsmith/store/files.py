"""
Small file helpers shared by the stores.

All persisted files (registry, lockfile, project state, settings, template
documents) are written whole through `atomic_write_text`, so a crash never
leaves a half-written file behind. Text is read and written without newline
translation so user-owned bytes survive a rewrite unchanged.
"""

import hashlib
import json
import os
import tempfile
from datetime import UTC, datetime
from pathlib import Path
from typing import Any


def compute_hash(data: Any) -> str:
    """Compute SHA256 hash of data."""
    if data is None:
        return ""
    if isinstance(data, str):
        content = data.encode("utf-8")
    elif isinstance(data, bytes):
        content = data
    else:
        content = json.dumps(data, sort_keys=True, default=str).encode("utf-8")
    return hashlib.sha256(content).hexdigest()


def hash_file(path: Path) -> str:
    """SHA256 of a file's bytes (raises OSError if unreadable)."""
    digest = hashlib.sha256()
    with path.open("rb") as f:
        for chunk in iter(lambda: f.read(65536), b""):
            digest.update(chunk)
    return digest.hexdigest()


def now_iso() -> str:
    """Get current UTC time in ISO format."""
    return datetime.now(UTC).isoformat()


def atomic_write_text(path: Path, content: str) -> None:
    """Write `content` to `path` via a temp file and rename."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="") as f:
            f.write(content)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def read_text(path: Path) -> str:
    """Read a UTF-8 file exactly as stored (no newline translation)."""
    with path.open(encoding="utf-8", newline="") as f:
        return f.read()


def write_json(path: Path, data: Any) -> None:
    atomic_write_text(path, json.dumps(data, indent=2, sort_keys=False) + "\n")
