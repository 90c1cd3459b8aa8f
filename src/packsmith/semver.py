"""
Minimal semantic-version handling.

Only what pack compatibility checks need: parse a version into a
(major, minor, patch) triple and compare with `>=`. Pre-release and build
suffixes are stripped before comparison, and anything unparsable is treated
as incompatible rather than compatible.
"""

import re

_SUFFIX = re.compile(r"[-+].*$")


def parse_version(version: str) -> tuple[int, int, int] | None:
    """
    Parse a version string into a (major, minor, patch) triple.

    Extra components beyond patch are ignored ("1.2.3.4" -> (1, 2, 3)).

    Returns:
        The triple, or None if the string has fewer than three numeric parts
    """
    core = _SUFFIX.sub("", version.strip().lstrip("v"))
    parts = core.split(".")
    if len(parts) < 3:
        return None
    try:
        major, minor, patch = (int(p) for p in parts[:3])
    except ValueError:
        return None
    if major < 0 or minor < 0 or patch < 0:
        return None
    return major, minor, patch


def is_compatible(current: str, minimum: str) -> bool:
    """Return True if `current >= minimum`; False if either side is unparsable."""
    current_parts = parse_version(current)
    minimum_parts = parse_version(minimum)
    if current_parts is None or minimum_parts is None:
        return False
    return current_parts >= minimum_parts
