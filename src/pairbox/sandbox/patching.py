"""Unified diff parsing and in-memory application for ``patch_file``.

Only single-file diffs are accepted. Hunks are applied in order with a
running line offset; every context and removal line must match the current
text exactly, otherwise the patch is refused and nothing is written.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

from pairbox.core.result import WorkspaceIOError

_HUNK_HEADER = re.compile(r"^@@ -(\d+)(?:,(\d+))? \+(\d+)(?:,(\d+))? @@")


@dataclass(slots=True)
class Hunk:
    old_start: int
    old_count: int
    new_start: int
    new_count: int
    lines: list[tuple[str, str]] = field(default_factory=list)

    @property
    def old_lines(self) -> list[str]:
        return [text for tag, text in self.lines if tag in (" ", "-")]

    @property
    def new_lines(self) -> list[str]:
        return [text for tag, text in self.lines if tag in (" ", "+")]


def parse_unified_diff(diff: str) -> list[Hunk]:
    """Parse the hunks of a single-file unified diff.

    ``---``/``+++`` headers are optional; a second file header is rejected.
    """
    hunks: list[Hunk] = []
    current: Hunk | None = None
    seen_headers = 0

    for raw_line in diff.splitlines():
        if raw_line.startswith("--- ") and (current is None or _hunk_complete(current)):
            seen_headers += 1
            if seen_headers > 1:
                raise WorkspaceIOError("patch_file accepts a diff for a single file")
            continue
        if raw_line.startswith("+++ ") and (current is None or _hunk_complete(current)):
            continue
        match = _HUNK_HEADER.match(raw_line)
        if match:
            old_start, old_count, new_start, new_count = match.groups()
            current = Hunk(
                old_start=int(old_start),
                old_count=int(old_count) if old_count is not None else 1,
                new_start=int(new_start),
                new_count=int(new_count) if new_count is not None else 1,
            )
            hunks.append(current)
            continue
        if current is None:
            if raw_line.startswith(("diff ", "index ")) or not raw_line.strip():
                continue
            raise WorkspaceIOError(f"Invalid diff: unexpected line before first hunk: {raw_line!r}")
        if raw_line.startswith("\\"):
            # "\ No newline at end of file"
            continue
        tag, text = (raw_line[:1] or " "), raw_line[1:]
        if tag not in (" ", "-", "+"):
            raise WorkspaceIOError(f"Invalid diff line: {raw_line!r}")
        current.lines.append((tag, text))

    if not hunks:
        raise WorkspaceIOError("Invalid diff: no hunks found")
    for hunk in hunks:
        if len(hunk.old_lines) != hunk.old_count or len(hunk.new_lines) != hunk.new_count:
            raise WorkspaceIOError(
                f"Invalid diff: hunk at line {hunk.old_start} does not match its header counts"
            )
    return hunks


def _hunk_complete(hunk: Hunk) -> bool:
    return len(hunk.old_lines) >= hunk.old_count and len(hunk.new_lines) >= hunk.new_count


def apply_hunks(original: str, hunks: list[Hunk]) -> str:
    """Apply parsed hunks to ``original`` and return the new text."""
    lines = original.splitlines()
    offset = 0

    for hunk in hunks:
        # A zero-length old range means "insert after line old_start".
        start = hunk.old_start - 1 + offset if hunk.old_count else hunk.old_start + offset
        if start < 0:
            raise WorkspaceIOError("invalid line number in patch")
        end = start + hunk.old_count
        if end > len(lines):
            raise WorkspaceIOError(f"patch application out of bounds (line {start + 1})")
        if lines[start:end] != hunk.old_lines:
            raise WorkspaceIOError(f"patch context does not match at line {start + 1}")
        replacement = hunk.new_lines
        lines[start:end] = replacement
        offset += len(replacement) - hunk.old_count

    patched = "\n".join(lines)
    if original.endswith("\n") or (not original and patched):
        patched += "\n"
    return patched


__all__ = ["Hunk", "apply_hunks", "parse_unified_diff"]
