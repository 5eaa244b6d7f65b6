"""ANSI-aware text utilities.

Every operation that cuts or measures already-styled output goes through this
module so that escape sequences are never split and never counted as visible
columns.

Positions are string indices. A CSI sequence is ``ESC [`` followed by
parameter/intermediate characters and a single terminator in ``0x40-0x7E``.
Only CSI sequences are parsed by :func:`safe_slice`; OSC and two-character
escapes are left as-is.
"""

from __future__ import annotations

import re

import wcwidth

__all__ = [
    "TAB_WIDTH",
    "advance_column",
    "ansi_len",
    "csi_end",
    "display_width",
    "safe_slice",
    "strip_all_ansi",
]

TAB_WIDTH = 8

ESC = "\x1b"

_ANY_ESCAPE_RE = re.compile(r"\x1b\[[0-?]*[ -/]*[@-~]|\x1b\][^\x07\x1b]*(?:\x07|\x1b\\)")


def csi_end(s: str, start: int) -> int:
    """Return the index just past the CSI sequence beginning at ``start``.

    ``s[start]`` must be ESC and ``s[start + 1]`` must be ``[``. An
    unterminated sequence runs to the end of the string.
    """
    j = start + 2
    n = len(s)
    while j < n:
        if 0x40 <= ord(s[j]) <= 0x7E:
            return j + 1
        j += 1
    return n


def safe_slice(s: str, pos: int) -> str:
    """Return ``s[pos:]``, moving ``pos`` past any CSI sequence it would split.

    Args:
        s: Styled text.
        pos: Cut position. Values <= 0 return ``s`` unchanged; values at or
            beyond the end return an empty string.

    Returns:
        The suffix of ``s`` starting at ``pos`` or, when ``pos`` is strictly
        inside a CSI sequence, just after that sequence's terminator.
    """
    if pos <= 0:
        return s
    n = len(s)
    if pos >= n:
        return ""

    i = 0
    while i < pos:
        if s[i] == ESC and i + 1 < n and s[i + 1] == "[":
            end = csi_end(s, i)
            if pos < end:
                return s[end:]
            i = end
            continue
        i += 1
    return s[pos:]


def advance_column(col: int, ch: str) -> int:
    """Advance a cursor column by one character.

    Tabs jump to the next multiple of :data:`TAB_WIDTH`, a newline resets to
    column 0, and everything else advances by its terminal cell width.
    """
    if ch == "\t":
        return col + (TAB_WIDTH - (col % TAB_WIDTH))
    if ch == "\n":
        return 0
    width = wcwidth.wcwidth(ch)
    if width < 0:
        width = 0
    return col + width


def display_width(s: str, start_col: int = 0) -> int:
    """Return the number of columns ``s`` occupies when printed at ``start_col``.

    Escape sequences (ESC through the next ASCII letter) are skipped. Tabs
    are expanded relative to ``start_col``.
    """
    col = start_col
    in_escape = False
    for ch in s:
        if ch == ESC:
            in_escape = True
            continue
        if in_escape:
            if ("a" <= ch <= "z") or ("A" <= ch <= "Z"):
                in_escape = False
            continue
        col = advance_column(col, ch)

    if col < start_col:
        return 0
    return col - start_col


def ansi_len(s: str) -> int:
    """Display width of ``s`` starting at column 0."""
    return display_width(s, 0)


def strip_all_ansi(s: str) -> str:
    """Remove every CSI and OSC sequence, not just SGR codes."""
    return _ANY_ESCAPE_RE.sub("", s)
