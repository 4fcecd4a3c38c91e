"""Tests for body normalization and diff hunk classification."""

from __future__ import annotations

import pytest

from pullmirror.sync.text import (
    DiffLineType,
    comment_line_numbers,
    diff_hunk_line_type,
    normalize_body,
)


class TestNormalizeBody:
    def test_none_passes_through(self) -> None:
        assert normalize_body(None) is None

    def test_crlf_becomes_lf(self) -> None:
        assert normalize_body("first\r\nsecond") == "first\nsecond"

    def test_blank_line_runs_collapse(self) -> None:
        assert normalize_body("first\n\n\n\nsecond") == "first\n\nsecond"

    def test_crlf_blank_runs_collapse(self) -> None:
        assert normalize_body("first\r\n\r\n\r\nsecond") == "first\n\nsecond"

    def test_single_blank_line_is_kept(self) -> None:
        assert normalize_body("first\n\nsecond") == "first\n\nsecond"

    def test_code_fences_are_normalized_too(self) -> None:
        body = "```\r\ncode\r\n\r\n\r\n\r\nmore\r\n```"
        assert normalize_body(body) == "```\ncode\n\nmore\n```"


class TestDiffHunkLineType:
    @pytest.mark.parametrize(
        ("hunk", "expected"),
        [
            ("@@ -1,3 +1,4 @@\n context\n+added", DiffLineType.ADD),
            ("@@ -1,3 +1,2 @@\n context\n-removed\n", DiffLineType.REMOVE),
            ("@@ -1,3 +1,3 @@\n+added\n unchanged", DiffLineType.CONTEXT),
        ],
    )
    def test_classifies_last_line(self, hunk: str, expected: DiffLineType) -> None:
        assert diff_hunk_line_type(hunk) is expected

    @pytest.mark.parametrize(
        "hunk",
        [None, "", "@@ -1 +1 @@", "@@ -1 +1 @@\n\\ No newline at end of file"],
    )
    def test_unclassifiable_hunks(self, hunk: str | None) -> None:
        assert diff_hunk_line_type(hunk) is None


class TestCommentLineNumbers:
    def test_removed_line_keeps_only_original(self) -> None:
        assert comment_line_numbers("@@ -1 +0,0 @@\n-gone", 7, 9) == (None, 9)

    def test_added_line_keeps_only_new(self) -> None:
        assert comment_line_numbers("@@ -0,0 +1 @@\n+new", 7, 9) == (7, None)

    def test_context_line_keeps_both(self) -> None:
        assert comment_line_numbers("@@ -1 +1 @@\n same", 7, 9) == (7, 9)

    def test_missing_hunk_keeps_both(self) -> None:
        assert comment_line_numbers(None, 7, None) == (7, None)
