"""Text helpers applied to synced bodies and diff hunks."""

from __future__ import annotations

import re
from enum import Enum

_BLANK_RUN = re.compile(r"\n{3,}")


class DiffLineType(str, Enum):
    """Kind of the line a review comment is anchored to."""

    ADD = "add"
    REMOVE = "remove"
    CONTEXT = "context"


def normalize_body(body: str | None) -> str | None:
    """Normalize line endings and collapse runs of blank lines.

    CRLF becomes LF, and three or more consecutive newlines become exactly
    one blank line. Fenced code blocks get the same treatment.
    """
    if body is None:
        return None
    return _BLANK_RUN.sub("\n\n", body.replace("\r\n", "\n"))


def diff_hunk_line_type(diff_hunk: str | None) -> DiffLineType | None:
    """Classify the last line of a diff hunk.

    Review comments point at the final line of their hunk. Trailing empty
    lines and ``@@`` headers are skipped.

    Returns:
        The line type, or None when no classifiable line exists.
    """
    if not diff_hunk:
        return None

    for line in reversed(diff_hunk.split("\n")):
        if not line or line.startswith("@@"):
            continue
        if line.startswith("-"):
            return DiffLineType.REMOVE
        if line.startswith("+"):
            return DiffLineType.ADD
        if line.startswith(" "):
            return DiffLineType.CONTEXT
        return None

    return None


def comment_line_numbers(
    diff_hunk: str | None,
    line: int | None,
    original_line: int | None,
) -> tuple[int | None, int | None]:
    """Pick (line, original_line) for a review comment from its hunk.

    A removed line only exists in the original file, an added line only in
    the new one, and a context line in both. An unclassifiable hunk keeps
    whatever GitHub sent.
    """
    line_type = diff_hunk_line_type(diff_hunk)
    if line_type is DiffLineType.REMOVE:
        return None, original_line
    if line_type is DiffLineType.ADD:
        return line, None
    return line, original_line
