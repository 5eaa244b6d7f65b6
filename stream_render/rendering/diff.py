"""Line and word level diffing.

Everything here is pure computation over strings; ANSI rendering of the
results lives in :mod:`stream_render.rendering.diff_view`.
"""

from __future__ import annotations

import difflib
import re
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Literal

from stream_render._config import get_settings

__all__ = [
    "DiffHunk",
    "UnifiedLine",
    "WordSegment",
    "compute_hunks",
    "compute_lcs",
    "generate_unified_diff",
    "parse_unified_diff",
    "should_use_word_diff",
    "split_into_tokens",
    "word_diff",
]

_HUNK_HEADER_RE = re.compile(r"^@@ -(\d+)(?:,\d+)? \+(\d+)(?:,\d+)? @@")
_TOKEN_RE = re.compile(r"\s+|\S+")


@dataclass(frozen=True)
class DiffHunk:
    """A contiguous changed region; starts are zero-based line indices."""

    old_start: int
    old_count: int
    new_start: int
    new_count: int


@dataclass(frozen=True)
class WordSegment:
    """A token of a line and whether it differs from the other side."""

    text: str
    changed: bool


@dataclass(frozen=True)
class UnifiedLine:
    """One display line parsed from unified diff text.

    ``number`` is the new-file position; removed lines use the position they
    would have occupied. ``hunk_break`` entries carry no content.
    """

    kind: Literal["context", "add", "remove", "hunk_break"]
    number: int = 0
    content: str = ""


# =============================================================================
# Line Diff
# =============================================================================


def compute_lcs(old: Sequence[str], new: Sequence[str]) -> list[str]:
    """Longest common subsequence of two line (or token) sequences."""
    m, n = len(old), len(new)
    if m == 0 or n == 0:
        return []

    dp = [[0] * (n + 1) for _ in range(m + 1)]
    for i in range(1, m + 1):
        row, prev = dp[i], dp[i - 1]
        old_item = old[i - 1]
        for j in range(1, n + 1):
            if old_item == new[j - 1]:
                row[j] = prev[j - 1] + 1
            elif prev[j] >= row[j - 1]:
                row[j] = prev[j]
            else:
                row[j] = row[j - 1]

    lcs: list[str] = []
    i, j = m, n
    while i > 0 and j > 0:
        if old[i - 1] == new[j - 1]:
            lcs.append(old[i - 1])
            i -= 1
            j -= 1
        elif dp[i - 1][j] >= dp[i][j - 1]:
            i -= 1
        else:
            j -= 1
    lcs.reverse()
    return lcs


def compute_hunks(old: Sequence[str], new: Sequence[str]) -> list[DiffHunk]:
    """Find changed regions by walking both sides in lockstep with the LCS."""
    if not old and not new:
        return []

    lcs = compute_lcs(old, new)
    hunks: list[DiffHunk] = []
    old_idx = new_idx = lcs_idx = 0

    while old_idx < len(old) or new_idx < len(new):
        while (
            lcs_idx < len(lcs)
            and old_idx < len(old)
            and new_idx < len(new)
            and old[old_idx] == lcs[lcs_idx]
            and new[new_idx] == lcs[lcs_idx]
        ):
            old_idx += 1
            new_idx += 1
            lcs_idx += 1

        old_start, new_start = old_idx, new_idx
        while old_idx < len(old) and (lcs_idx >= len(lcs) or old[old_idx] != lcs[lcs_idx]):
            old_idx += 1
        while new_idx < len(new) and (lcs_idx >= len(lcs) or new[new_idx] != lcs[lcs_idx]):
            new_idx += 1

        old_count = old_idx - old_start
        new_count = new_idx - new_start
        if old_count or new_count:
            hunks.append(DiffHunk(old_start, old_count, new_start, new_count))

    return hunks


# =============================================================================
# Word Diff
# =============================================================================


def split_into_tokens(line: str) -> list[str]:
    """Split into alternating whitespace and non-whitespace runs.

    Punctuation stays attached to its word: ``"func(x int)"`` yields
    ``["func(x", " ", "int)"]``.
    """
    return _TOKEN_RE.findall(line)


def _mark_changed(tokens: list[str], lcs: list[str]) -> list[WordSegment]:
    segments = []
    k = 0
    for token in tokens:
        if k < len(lcs) and token == lcs[k]:
            segments.append(WordSegment(token, changed=False))
            k += 1
        else:
            segments.append(WordSegment(token, changed=True))
    return segments


def word_diff(old_line: str, new_line: str) -> tuple[list[WordSegment], list[WordSegment]]:
    """Mark each token of both lines as changed or shared via the token LCS."""
    old_tokens = split_into_tokens(old_line)
    new_tokens = split_into_tokens(new_line)
    lcs = compute_lcs(old_tokens, new_tokens)
    return _mark_changed(old_tokens, lcs), _mark_changed(new_tokens, lcs)


def should_use_word_diff(old_line: str, new_line: str, threshold: float | None = None) -> bool:
    """Whether two lines are similar enough for word-level highlighting.

    True when the shared non-whitespace tokens exceed ``threshold`` times the
    smaller side's non-whitespace token count.
    """
    if threshold is None:
        threshold = get_settings().word_diff_similarity

    old_tokens = split_into_tokens(old_line)
    new_tokens = split_into_tokens(new_line)
    old_words = sum(1 for t in old_tokens if not t.isspace())
    new_words = sum(1 for t in new_tokens if not t.isspace())
    if old_words == 0 or new_words == 0:
        return False

    common = sum(1 for t in compute_lcs(old_tokens, new_tokens) if not t.isspace())
    return common > threshold * min(old_words, new_words)


# =============================================================================
# Unified Diff
# =============================================================================


def generate_unified_diff(path: str, old: str, new: str, context: int = 3) -> str:
    """Unified diff text between two file contents."""
    return "\n".join(
        difflib.unified_diff(
            old.splitlines(),
            new.splitlines(),
            fromfile=path,
            tofile=path,
            n=context,
            lineterm="",
        )
    )


def parse_unified_diff(text: str) -> list[UnifiedLine]:
    """Parse unified diff text into numbered display lines.

    File headers, empty lines and ``\\`` metadata lines are skipped. A run
    of removals is numbered from the current new-file position so they line
    up with the additions that replace them.
    """
    result: list[UnifiedLine] = []
    new_num = 0
    deletion_offset = 0
    hunks = 0

    for line in text.split("\n"):
        if line.startswith(("diff ", "--- ", "+++ ")):
            continue
        if not line or line[0] == "\\":
            continue

        marker, content = line[0], line[1:]
        if marker == "@":
            match = _HUNK_HEADER_RE.match(line)
            if match:
                new_num = int(match.group(2))
            deletion_offset = 0
            if hunks:
                result.append(UnifiedLine("hunk_break"))
            hunks += 1
        elif marker == "-":
            result.append(UnifiedLine("remove", new_num + deletion_offset, content))
            deletion_offset += 1
        elif marker == "+":
            deletion_offset = 0
            result.append(UnifiedLine("add", new_num, content))
            new_num += 1
        elif marker == " ":
            deletion_offset = 0
            result.append(UnifiedLine("context", new_num, content))
            new_num += 1

    return result
