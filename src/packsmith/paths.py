"""
Path containment helpers.

Every path taken from a manifest (script files, copy sources, copy
destinations) is joined onto a trusted root and must stay under that root
after symlinks are resolved.
"""

from pathlib import Path

from packsmith.errors import PathEscapeError


def resolve_within(root: Path, relative: str | Path) -> Path:
    """
    Join `relative` onto `root` and verify the result stays inside `root`.

    Args:
        root: Trusted base directory
        relative: Path from a manifest (must be relative)

    Returns:
        The resolved absolute path

    Raises:
        PathEscapeError: If the path is absolute or resolves outside root
    """
    candidate = Path(relative)
    if candidate.is_absolute():
        raise PathEscapeError(path=str(relative), root=str(root))

    resolved_root = root.resolve()
    resolved = (resolved_root / candidate).resolve()
    try:
        resolved.relative_to(resolved_root)
    except ValueError:
        raise PathEscapeError(path=str(relative), root=str(root)) from None
    return resolved
