"""
Section-delimited template documents.

Each pack owns named sections of a shared markdown document:

    <!-- mcs:begin my-pack.rules v1.2.0 -->
    ...pack content...
    <!-- mcs:end my-pack.rules -->

Everything outside the markers belongs to the user and is kept verbatim.
An appended section is separated from the text before it by one inserted
newline (a blank line when that text already ends in a newline), and
removing the section takes exactly that separator back out.
A section whose markers don't pair up is never rewritten; the user has to
repair it by hand (TemplateStructureError).
"""

import re
from dataclasses import dataclass

from packsmith.errors import TemplateStructureError

BEGIN_MARKER = re.compile(r"^<!-- mcs:begin (\S+) v(\S+) -->\s*$")
END_MARKER = re.compile(r"^<!-- mcs:end (\S+) -->\s*$")
PLACEHOLDER = re.compile(r"__([A-Z][A-Z0-9_]+)__")
EDIT_MARKER = re.compile(r"^\s*<!-- EDIT:.*-->\s*$")


@dataclass(frozen=True)
class Section:
    """
    A paired section within a document.

    Attributes:
        identifier: Section id
        version: Pack version the section was written at
        content: Text between the markers
        start: Line index of the begin marker
        end: Line index of the end marker
    """

    identifier: str
    version: str
    content: str
    start: int
    end: int


@dataclass(frozen=True)
class SectionContribution:
    identifier: str
    version: str
    content: str


# =============================================================================
# Parsing
# =============================================================================


def parse_sections(text: str) -> list[Section]:
    """Return every properly paired section, in document order."""
    lines = text.splitlines()
    sections: list[Section] = []
    index = 0
    while index < len(lines):
        begin = BEGIN_MARKER.match(lines[index])
        if begin is None:
            index += 1
            continue
        identifier, version = begin.group(1), begin.group(2)
        end_index = None
        for candidate in range(index + 1, len(lines)):
            if BEGIN_MARKER.match(lines[candidate]):
                break
            end = END_MARKER.match(lines[candidate])
            if end is not None and end.group(1) == identifier:
                end_index = candidate
                break
        if end_index is None:
            index += 1
            continue
        sections.append(Section(
            identifier=identifier,
            version=version,
            content="\n".join(lines[index + 1:end_index]),
            start=index,
            end=end_index,
        ))
        index = end_index + 1
    return sections


def unpaired_sections(text: str) -> list[str]:
    """Ids of sections with a begin marker but no end marker, or the reverse."""
    paired_lines: set[int] = set()
    for section in parse_sections(text):
        paired_lines.update((section.start, section.end))

    unpaired: list[str] = []
    for number, line in enumerate(text.splitlines()):
        if number in paired_lines:
            continue
        match = BEGIN_MARKER.match(line) or END_MARKER.match(line)
        if match is not None and match.group(1) not in unpaired:
            unpaired.append(match.group(1))
    return unpaired


# =============================================================================
# Editing
# =============================================================================


def render_section(identifier: str, version: str, content: str) -> str:
    body = content.strip("\n")
    return f"<!-- mcs:begin {identifier} v{version} -->\n{body}\n<!-- mcs:end {identifier} -->"


def _check_paired(text: str, section_id: str, path: str) -> None:
    if section_id in unpaired_sections(text):
        raise TemplateStructureError(section_id=section_id, path=path)


def _find(text: str, section_id: str) -> Section | None:
    for section in parse_sections(text):
        if section.identifier == section_id:
            return section
    return None


def replace_section(text: str, section_id: str, version: str, content: str, path: str = "") -> str:
    """
    Write a section, replacing it in place or appending it at the end.

    Only the section's own lines change; the text around it is untouched.

    Raises:
        TemplateStructureError: If the section's markers are unpaired
    """
    _check_paired(text, section_id, path)
    block = render_section(section_id, version, content)
    section = _find(text, section_id)
    if section is None:
        separator = "\n" if text else ""
        return f"{text}{separator}{block}\n"

    lines = text.splitlines(keepends=True)
    tail = "\n" if lines[section.end].endswith(("\n", "\r")) else ""
    return "".join(lines[:section.start]) + block + tail + "".join(lines[section.end + 1:])


def remove_section(text: str, section_id: str, path: str = "") -> str:
    """
    Delete a section, its markers and the separator inserted with it (no-op if absent).

    Raises:
        TemplateStructureError: If the section's markers are unpaired
    """
    _check_paired(text, section_id, path)
    section = _find(text, section_id)
    if section is None:
        return text

    lines = text.splitlines(keepends=True)
    start, end = section.start, section.end + 1
    if start > 0 and lines[start - 1] == "\n":
        start -= 1
    elif end < len(lines) and lines[end] == "\n":
        end += 1
    elif end >= len(lines) and start > 0:
        # Appended directly after text that had no trailing newline
        before = "".join(lines[:start])
        return before[:-1] if before.endswith("\n") else before
    return "".join(lines[:start] + lines[end:])


def compose_document(existing: str, contributions: list[SectionContribution], path: str = "") -> str:
    """
    Apply contributions in order.

    Existing sections are updated in place; new ones are appended in
    contribution order. Content outside sections is untouched.
    """
    text = existing
    for contribution in contributions:
        text = replace_section(text, contribution.identifier, contribution.version, contribution.content, path)
    return text


# =============================================================================
# Placeholders
# =============================================================================


def substitute(text: str, values: dict[str, str]) -> str:
    """Replace `__KEY__` placeholders whose KEY has a value; leave the rest."""
    return PLACEHOLDER.sub(lambda m: values.get(m.group(1), m.group(0)), text)


def find_placeholders(text: str) -> list[str]:
    """Sorted unique placeholder keys remaining in `text`."""
    return sorted(set(PLACEHOLDER.findall(text)))


def strip_edit_markers(text: str) -> str:
    """Drop `<!-- EDIT: ... -->` guidance lines left for pack authors."""
    kept = [line for line in text.splitlines() if not EDIT_MARKER.match(line)]
    trailing = "\n" if text.endswith("\n") else ""
    return "\n".join(kept) + trailing
