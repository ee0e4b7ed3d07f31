"""
Content diff utilities

Unified diffs and diff statistics between two text blobs. Pure functions:
identical inputs always produce byte-identical output.
"""

import difflib
import re
from typing import Dict, List

NO_NEWLINE_MARKER = "\\ No newline at end of file\n"
HUNK_HEADER_PATTERN = re.compile(r"^@@ -(\d+)(?:,\d+)? \+(\d+)(?:,\d+)? @@")


def split_lines(text: str) -> List[str]:
    """Split on newline characters only, keeping line ends (unlike str.splitlines)."""
    lines = [line + "\n" for line in text.split("\n")]
    lines[-1] = lines[-1][:-1]
    return lines if lines[-1] else lines[:-1]


def generate_diff(path: str, before: str, after: str) -> str:
    """
    Generate a unified diff between two versions of a file.

    The two header lines are always present; identical inputs yield only the
    headers (an empty diff body).

    Args:
        path: File path used in both header lines
        before: Original content ("" for a created file)
        after: Modified content ("" for a deleted file)

    Returns:
        Unified diff text
    """
    header = f"--- a/{path}\n+++ b/{path}\n"
    if before == after:
        return header

    body = difflib.unified_diff(
        split_lines(before),
        split_lines(after),
        n=3,
    )

    lines: List[str] = []
    for index, line in enumerate(body):
        # difflib emits its own ---/+++ headers first
        if index < 2:
            continue
        if line.endswith("\n"):
            lines.append(line)
        else:
            lines.append(line + "\n")
            lines.append(NO_NEWLINE_MARKER)

    return header + "".join(lines)


def get_diff_stats(diff: str) -> Dict[str, int]:
    """
    Count added and removed lines, ignoring the two header lines.

    Returns:
        {"additions": int, "deletions": int, "changes": int}
    """
    additions = 0
    deletions = 0

    for line in diff.split("\n")[2:]:
        if line.startswith("+"):
            additions += 1
        elif line.startswith("-"):
            deletions += 1

    return {
        "additions": additions,
        "deletions": deletions,
        "changes": additions + deletions,
    }


def format_diff_for_display(diff: str) -> Dict[str, List[Dict]]:
    """
    Split a unified diff into numbered old/new line lists for side-by-side views.

    Returns:
        {"old_lines": [{line_num, content, type}], "new_lines": [...]}
        where type is "normal", "deleted" (old side) or "added" (new side)
    """
    old_lines: List[Dict] = []
    new_lines: List[Dict] = []
    old_num = 0
    new_num = 0
    in_hunk = False

    for line in diff.split("\n")[2:]:
        match = HUNK_HEADER_PATTERN.match(line)
        if match:
            old_num = int(match.group(1)) - 1
            new_num = int(match.group(2)) - 1
            in_hunk = True
            continue

        if not in_hunk or not line or line.startswith("\\"):
            continue

        if line.startswith("-"):
            old_num += 1
            old_lines.append({"line_num": old_num, "content": line[1:], "type": "deleted"})
        elif line.startswith("+"):
            new_num += 1
            new_lines.append({"line_num": new_num, "content": line[1:], "type": "added"})
        else:
            old_num += 1
            new_num += 1
            old_lines.append({"line_num": old_num, "content": line[1:], "type": "normal"})
            new_lines.append({"line_num": new_num, "content": line[1:], "type": "normal"})

    return {"old_lines": old_lines, "new_lines": new_lines}
