"""Safe split points for streaming markdown.

A safe boundary is the end of a paragraph break (``"\\n\\n"``) where no code
fence is open and no inline marker (code span, bold, italic, strikethrough)
is left dangling. Text before the boundary can be rendered and frozen without
the rest of the stream changing how it looks.

The detector is deliberately conservative: it may call a safe point unsafe,
but never the reverse.
"""

from __future__ import annotations

from stream_render._config import get_settings

__all__ = [
    "count_code_fences",
    "find_safe_boundary",
    "find_safe_boundary_incremental",
    "inline_markers_balanced",
    "is_in_code_block",
]


def find_safe_boundary(text: str, min_length: int | None = None) -> int:
    """Return the latest safe split index in ``text``, or -1 if there is none.

    Args:
        text: Markdown accumulated so far.
        min_length: Texts shorter than this report -1. Defaults to the
            ``safe_boundary_min_length`` setting.
    """
    if min_length is None:
        min_length = get_settings().safe_boundary_min_length
    if len(text) < min_length:
        return -1

    pos = len(text)
    while True:
        para_end = text.rfind("\n\n", 0, pos)
        if para_end == -1:
            return -1

        safe_pos = para_end + 2
        if not is_in_code_block(text, safe_pos) and inline_markers_balanced(text[:safe_pos]):
            return safe_pos

        pos = para_end


def find_safe_boundary_incremental(text: str, from_pos: int, min_length: int | None = None) -> int:
    """Return a safe boundary strictly after ``from_pos``, or -1."""
    boundary = find_safe_boundary(text, min_length)
    if boundary <= from_pos:
        return -1
    return boundary


def is_in_code_block(text: str, pos: int) -> bool:
    """Return True if ``pos`` sits inside an unclosed fenced code block."""
    return count_code_fences(text[: min(pos, len(text))]) % 2 == 1


def count_code_fences(text: str) -> int:
    """Count lines that open or close a ``` fence (leading whitespace ignored)."""
    return sum(1 for line in text.split("\n") if line.lstrip(" \t").startswith("```"))


def inline_markers_balanced(text: str) -> bool:
    """Check that code spans, ``**``, ``*``, ``_`` and ``~~`` are all closed."""
    in_bold = False
    in_italic_star = False
    in_italic_underscore = False
    in_strike = False

    i = 0
    n = len(text)
    while i < n:
        ch = text[i]

        # Code spans escape every other marker.
        if ch == "`":
            start = i
            while i < n and text[i] == "`":
                i += 1
            run = text[start:i]
            close = text.find(run, i)
            if close == -1:
                return False
            i = close + len(run)
            continue

        if ch == "*":
            if i + 1 < n and text[i + 1] == "*":
                in_bold = not in_bold
                i += 2
                continue
            in_italic_star = not in_italic_star
            i += 1
            continue

        if ch == "_":
            in_italic_underscore = not in_italic_underscore
            i += 1
            continue

        if ch == "~" and i + 1 < n and text[i + 1] == "~":
            in_strike = not in_strike
            i += 2
            continue

        i += 1

    return not (in_bold or in_italic_star or in_italic_underscore or in_strike)
