"""Unified diff → inline-comment coordinates.

GitHub's review API places inline comments by ``position``: a 1-based
running count of the lines shown for a file in the diff, not the source line
number. This module builds that coordinate map for a whole PR diff and
resolves agent-reported source lines onto it.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

_FILE_HEADER_RE = re.compile(r"^\+\+\+ b/(.+)")
_HUNK_HEADER_RE = re.compile(r"^@@ -\d+(?:,\d+)? \+(\d+)(?:,\d+)? @@")
_METADATA_PREFIXES = ("--- ", "diff ", "index ", "Binary ", "\\")


@dataclass
class FilePositions:
    """Coordinate map for a single file in a diff."""

    line_to_position: dict[int, int] = field(default_factory=dict)
    valid_positions: set[int] = field(default_factory=set)


def parse_diff_positions(diff_text: str) -> dict[str, FilePositions]:
    """Map every file in a unified diff to its diff positions.

    Positions are cumulative across all hunks of a file and reset at each
    ``+++ b/<path>`` header. The ``@@`` header itself is not counted, so
    position 1 is the first content line below a file's first hunk header.
    Removed lines take a position but have no new-file line number. An empty
    line inside a hunk is a context line whose leading space was stripped.

    Lines are split on ``\\n`` only; form feeds and other characters that
    ``str.splitlines`` treats as breaks are part of the source line.
    """
    files: dict[str, FilePositions] = {}
    current: FilePositions | None = None
    in_hunk = False
    position = 0
    new_line = 0

    lines = diff_text.split("\n")
    if lines and lines[-1] == "":
        lines.pop()  # from the final newline

    for raw in lines:
        if raw.endswith("\r"):
            raw = raw[:-1]

        if raw.startswith("diff "):
            # Next file section; its extended headers are not hunk content.
            current = None
            in_hunk = False
            continue

        file_match = _FILE_HEADER_RE.match(raw)
        if file_match:
            current = files.setdefault(file_match.group(1), FilePositions())
            in_hunk = False
            position = 0
            continue

        if raw.startswith("+++ "):
            # "+++ /dev/null": the file was deleted, nothing to anchor to.
            current = None
            in_hunk = False
            continue

        hunk_match = _HUNK_HEADER_RE.match(raw)
        if hunk_match:
            new_line = int(hunk_match.group(1))
            in_hunk = True
            continue

        if current is None or not in_hunk or raw.startswith(_METADATA_PREFIXES):
            continue

        position += 1
        current.valid_positions.add(position)

        if raw.startswith("-"):
            continue  # removed line, no new-file line number
        current.line_to_position[new_line] = position
        new_line += 1

    return files


def nearest_line(line_to_position: dict[int, int], target_line: int) -> int | None:
    """Return the mapped line closest to ``target_line``; lower line wins ties."""
    closest = None
    min_dist = None
    for line in sorted(line_to_position):
        dist = abs(target_line - line)
        if min_dist is None or dist < min_dist:
            closest, min_dist = line, dist
    return closest


def resolve_position(file_path: str, line: int, diff_map: dict[str, FilePositions]) -> int | None:
    """Resolve a finding's ``(file, line)`` to a diff position, or None.

    - ``line == 0`` marks a file-level finding; it pins to the file's first
      valid position.
    - An exact match in the diff wins.
    - Otherwise the nearest mapped line is used, so a finding reported just
      outside a hunk still lands next to the code it talks about.
    """
    positions = diff_map.get(file_path)
    if positions is None:
        return None

    if line == 0:
        return min(positions.valid_positions) if positions.valid_positions else None

    if line in positions.line_to_position:
        return positions.line_to_position[line]

    closest = nearest_line(positions.line_to_position, line)
    return positions.line_to_position[closest] if closest is not None else None

