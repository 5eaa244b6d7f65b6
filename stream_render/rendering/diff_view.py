"""ANSI rendering of file diffs.

Two layouts are provided:

- :func:`render_diff_segment`: compact inline diff with two lines of context,
  tinted backgrounds and word-level emphasis for similar line pairs. This is
  what edit tools show in the transcript.
- :func:`render_unified_diff`: unified-diff layout numbered by new-file
  position with ``...`` between hunks.

Content is styled first and then wrapped with :func:`wrap_line`, which never
splits an escape sequence; :func:`carry_ansi_state` re-applies the active
colors at the start of each continuation line.
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache

from pygments.lexer import Lexer
from pygments.lexers import get_lexer_for_filename
from pygments.style import Style
from pygments.styles import get_style_by_name
from pygments.util import ClassNotFound

from stream_render._config import get_settings
from stream_render._logger import get_logger
from stream_render.ansi import ESC, advance_column, ansi_len, display_width
from stream_render.rendering.diff import (
    WordSegment,
    compute_hunks,
    generate_unified_diff,
    parse_unified_diff,
    should_use_word_diff,
    word_diff,
)

logger = get_logger(__name__)

__all__ = [
    "DIFF_ADD_BG",
    "DIFF_ADD_BG_STRONG",
    "DIFF_REMOVE_BG",
    "DIFF_REMOVE_BG_STRONG",
    "AnsiState",
    "Highlighter",
    "carry_ansi_state",
    "render_diff_segment",
    "render_unified_diff",
    "split_at_display_width_prefer_break",
    "wrap_line",
]

RGB = tuple[int, int, int]

DIFF_ADD_BG: RGB = (30, 60, 30)
DIFF_REMOVE_BG: RGB = (60, 30, 30)
DIFF_ADD_BG_STRONG: RGB = (40, 90, 40)
DIFF_REMOVE_BG_STRONG: RGB = (90, 40, 40)

RESET = "\x1b[0m"
_MUTED = "\x1b[38;5;245m"
_MARKER_COLORS = {
    "+": "\x1b[38;2;80;160;80m",
    "-": "\x1b[38;2;160;80;80m",
    " ": "\x1b[38;2;100;100;100m",
}

_BREAK_CHARS = frozenset(" ,;.)}")


def _bg_param(bg: RGB) -> str:
    return f"48;2;{bg[0]};{bg[1]};{bg[2]}"


def _bg_code(bg: RGB | None) -> str:
    if bg is None:
        return ""
    return f"\x1b[{_bg_param(bg)}m"


# =============================================================================
# Syntax Highlighting
# =============================================================================


@lru_cache(maxsize=8)
def _load_style(name: str) -> type[Style]:
    try:
        return get_style_by_name(name)
    except ClassNotFound:
        logger.debug("Unknown pygments style %r, using default", name)
        return get_style_by_name("default")


class Highlighter:
    """Single-line syntax highlighter emitting 24-bit SGR codes."""

    def __init__(self, lexer: Lexer, style: type[Style]) -> None:
        self._lexer = lexer
        self._style = style
        self._codes: dict[object, list[str]] = {}

    @classmethod
    def for_path(cls, path: str, theme: str | None = None) -> Highlighter | None:
        """Build a highlighter for ``path``, or None when no lexer matches."""
        try:
            lexer = get_lexer_for_filename(path, stripnl=False, ensurenl=False)
        except ClassNotFound:
            return None
        return cls(lexer, _load_style(theme or get_settings().code_theme))

    def _token_codes(self, ttype) -> list[str]:
        codes = self._codes.get(ttype)
        if codes is not None:
            return codes

        entry = self._style.style_for_token(ttype)
        codes = []
        color = entry.get("color")
        if color:
            codes.append(f"38;2;{int(color[0:2], 16)};{int(color[2:4], 16)};{int(color[4:6], 16)}")
        if entry.get("bold"):
            codes.append("1")
        if entry.get("italic"):
            codes.append("3")
        if entry.get("underline"):
            codes.append("4")
        self._codes[ttype] = codes
        return codes

    def highlight(self, line: str, bg: RGB | None = None) -> str:
        """Highlight one line.

        With ``bg`` every token re-asserts the background and the result ends
        with a single reset; without it each styled token is reset on its own.
        """
        parts: list[str] = []
        for ttype, value in self._lexer.get_tokens(line):
            value = value.rstrip("\n")
            if not value:
                continue
            codes = self._token_codes(ttype)
            if bg is not None:
                parts.append(f"\x1b[{';'.join([_bg_param(bg), *codes])}m{value}")
            elif codes:
                parts.append(f"\x1b[{';'.join(codes)}m{value}{RESET}")
            else:
                parts.append(value)
        if bg is not None:
            parts.append(RESET)
        return "".join(parts)


def _style_text(highlighter: Highlighter | None, text: str, bg: RGB | None) -> str:
    if highlighter is not None:
        return highlighter.highlight(text, bg)
    if bg is not None:
        return f"{_bg_code(bg)}{text}{RESET}"
    return text


def _style_word_segments(
    highlighter: Highlighter | None,
    segments: list[WordSegment],
    bg: RGB,
    strong_bg: RGB,
) -> str:
    return "".join(_style_text(highlighter, seg.text, strong_bg if seg.changed else bg) for seg in segments)


# =============================================================================
# Wrapping
# =============================================================================


def split_at_display_width_prefer_break(s: str, width: int, start_col: int = 0) -> tuple[str, str]:
    """Split ``s`` near ``width`` columns without cutting escape sequences.

    The last break character (space , ; . ) }) wins when it lies past half
    the width; otherwise the split is hard at ``width``.
    """
    in_escape = False
    col = start_col
    last_break_display = -1
    last_break_idx = -1
    seen_visible = False

    for i, ch in enumerate(s):
        if ch == ESC:
            in_escape = True
            continue
        if in_escape:
            if ch.isascii() and ch.isalpha():
                in_escape = False
            continue

        next_col = advance_column(col, ch)
        display_pos = next_col - start_col
        if display_pos > width and seen_visible:
            # A wide character straddling the limit moves to the next line.
            if last_break_idx > 0 and last_break_display > width // 2:
                return s[:last_break_idx], s[last_break_idx:]
            return s[:i], s[i:]

        col = next_col
        seen_visible = True
        end = i + 1

        if ch in _BREAK_CHARS and display_pos <= width:
            last_break_display = display_pos
            last_break_idx = end

        if display_pos >= width:
            if last_break_idx > 0 and last_break_display > width // 2:
                return s[:last_break_idx], s[last_break_idx:]
            return s[:end], s[end:]

    return s, ""


def wrap_line(line: str, max_width: int, start_col: int = 0) -> list[str]:
    """Wrap a styled line to ``max_width`` columns.

    Continuation lines are indented two spaces and get two fewer columns.
    """
    if max_width <= 0 or ansi_len(line) <= max_width:
        return [line]

    result: list[str] = []
    remaining = line
    first = True

    while ansi_len(remaining) > 0:
        width = max_width if first else max_width - 2
        if width <= 0:
            width = 10

        indent = "" if first else "  "
        if display_width(remaining, start_col) <= width:
            result.append(indent + remaining)
            break

        segment, rest = split_at_display_width_prefer_break(remaining, width, start_col)
        result.append(indent + segment)
        remaining = rest
        first = False
        if not rest:
            break

    return result


@dataclass
class AnsiState:
    """Foreground and background SGR parameters currently in effect."""

    fg: str | None = None
    bg: str | None = None

    @property
    def active(self) -> bool:
        return self.fg is not None or self.bg is not None

    def prefix(self) -> str:
        params = [p for p in (self.bg, self.fg) if p is not None]
        if not params:
            return ""
        return f"\x1b[{';'.join(params)}m"

    def update(self, text: str) -> None:
        """Apply every SGR sequence found in ``text``."""
        i = 0
        n = len(text)
        while i < n:
            if text[i] == ESC and i + 1 < n and text[i + 1] == "[":
                j = i + 2
                while j < n and not (text[j].isascii() and text[j].isalpha()):
                    j += 1
                if j < n and text[j] == "m":
                    self._apply_params(text[i + 2 : j])
                i = j + 1
                continue
            i += 1

    def _apply_params(self, raw: str) -> None:
        params = raw.split(";") if raw else ["0"]
        k = 0
        while k < len(params):
            p = params[k]
            if p in ("", "0"):
                self.fg = None
                self.bg = None
            elif p in ("38", "48"):
                if k + 1 < len(params) and params[k + 1] == "2":
                    value = ";".join(params[k : k + 5])
                    k += 4
                elif k + 1 < len(params) and params[k + 1] == "5":
                    value = ";".join(params[k : k + 3])
                    k += 2
                else:
                    value = p
                if p == "38":
                    self.fg = value
                else:
                    self.bg = value
            elif p == "39":
                self.fg = None
            elif p == "49":
                self.bg = None
            elif p.isdigit():
                code = int(p)
                if 30 <= code <= 37 or 90 <= code <= 97:
                    self.fg = p
                elif 40 <= code <= 47 or 100 <= code <= 107:
                    self.bg = p
            k += 1


def carry_ansi_state(lines: list[str]) -> list[str]:
    """Re-open the colors active at the end of each line on the next one."""
    state = AnsiState()
    result = []
    for i, line in enumerate(lines):
        if i > 0 and state.active:
            line = state.prefix() + line
        state.update(line)
        result.append(line)
    return result


# =============================================================================
# Inline Diff Segment
# =============================================================================


def render_diff_segment(
    path: str,
    old: str,
    new: str,
    width: int,
    start_line: int = 0,
    max_lines: int | None = None,
    max_content_width: int | None = None,
    context_lines: int | None = None,
) -> str:
    """Render an edit as a compact inline diff.

    Args:
        path: File path, used to pick a syntax highlighter.
        old: Content before the edit.
        new: Content after the edit.
        width: Terminal width.
        start_line: 1-indexed line where ``old`` starts in the file, or 0.
        max_lines: Output line cap; the rest is summarized as a count.
        max_content_width: Upper bound for content columns.
        context_lines: Unchanged lines shown around each hunk.

    Returns:
        The rendered diff without a trailing newline, or ``""`` when the
        contents are identical.
    """
    settings = get_settings()
    if max_lines is None:
        max_lines = settings.max_diff_lines
    if max_content_width is None:
        max_content_width = settings.max_diff_content_width
    if context_lines is None:
        context_lines = settings.diff_context_lines

    old_lines = old.split("\n")
    new_lines = new.split("\n")
    hunks = compute_hunks(old_lines, new_lines)
    if not hunks:
        return ""

    offset = start_line - 1 if start_line > 0 else 0
    number_width = len(str(max(len(old_lines), len(new_lines), 1) + offset))
    prefix_width = number_width + 2
    content_width = max(min(max_content_width, width - prefix_width), 10)
    pad_width = prefix_width + content_width
    highlighter = Highlighter.for_path(path, settings.code_theme)

    out: list[str] = []

    def emit(number: int, marker: str, styled: str, bg: RGB | None) -> None:
        color = _MARKER_COLORS[marker]
        bg_code = _bg_code(bg)
        wrapped = carry_ansi_state(wrap_line(styled, content_width, prefix_width))
        for i, segment in enumerate(wrapped):
            gutter = f"{number:>{number_width}}" if i == 0 else " " * number_width
            line = f"{bg_code}{color}{gutter}{marker} {segment}"
            if bg is not None:
                shown = ansi_len(line)
                if shown < pad_width:
                    line += bg_code + " " * (pad_width - shown)
            out.append(line + RESET)

    last_printed = -1
    for idx, hunk in enumerate(hunks):
        ctx_start = max(hunk.old_start - context_lines, 0)
        ctx_end = min(hunk.old_start + hunk.old_count + context_lines, len(old_lines))
        if idx + 1 < len(hunks):
            ctx_end = min(ctx_end, hunks[idx + 1].old_start)

        if idx > 0 and ctx_start > last_printed + 1:
            out.append(f"{_MUTED}   ...{RESET}")

        for j in range(ctx_start, hunk.old_start):
            if j > last_printed:
                emit(j + 1 + offset, " ", _style_text(highlighter, old_lines[j], None), None)
                last_printed = j

        paired: dict[int, tuple[list[WordSegment], list[WordSegment]]] = {}
        for i in range(min(hunk.old_count, hunk.new_count)):
            old_line = old_lines[hunk.old_start + i]
            new_line = new_lines[hunk.new_start + i]
            if should_use_word_diff(old_line, new_line, settings.word_diff_similarity):
                paired[i] = word_diff(old_line, new_line)

        for i in range(hunk.old_count):
            j = hunk.old_start + i
            if i in paired:
                styled = _style_word_segments(highlighter, paired[i][0], DIFF_REMOVE_BG, DIFF_REMOVE_BG_STRONG)
            else:
                styled = _style_text(highlighter, old_lines[j], DIFF_REMOVE_BG)
            emit(j + 1 + offset, "-", styled, DIFF_REMOVE_BG)
            last_printed = j

        for i in range(hunk.new_count):
            j = hunk.new_start + i
            if i in paired:
                styled = _style_word_segments(highlighter, paired[i][1], DIFF_ADD_BG, DIFF_ADD_BG_STRONG)
            else:
                styled = _style_text(highlighter, new_lines[j], DIFF_ADD_BG)
            emit(j + 1 + offset, "+", styled, DIFF_ADD_BG)

        for j in range(hunk.old_start + hunk.old_count, ctx_end):
            if j > last_printed:
                emit(j + 1 + offset, " ", _style_text(highlighter, old_lines[j], None), None)
                last_printed = j

    if len(out) > max_lines:
        hidden = len(out) - max_lines
        out = out[:max_lines]
        out.append(f"{_MUTED}… {hidden} more lines{RESET}")

    return "\n".join(out)


# =============================================================================
# Unified Diff
# =============================================================================


def render_unified_diff(path: str, old: str, new: str, width: int = 0, context_lines: int = 3) -> str:
    """Render a unified diff numbered by new-file position.

    Returns ``""`` when the contents are identical.
    """
    if old == new:
        return ""

    parsed = parse_unified_diff(generate_unified_diff(path, old, new, context_lines))
    if not parsed:
        return ""

    max_line = max(old.count("\n") + 1, new.count("\n") + 1)
    number_width = max(len(str(max_line)), 3)
    prefix_width = number_width + 2
    content_width = max(width - prefix_width, 10) if width > 0 else 0
    highlighter = Highlighter.for_path(path)

    out: list[str] = []
    for entry in parsed:
        if entry.kind == "hunk_break":
            out.append(f"{_MARKER_COLORS[' ']}{' ' * number_width}  ...{RESET}")
            continue

        if entry.kind == "remove":
            marker, styled = "-", _style_text(highlighter, entry.content, DIFF_REMOVE_BG)
        elif entry.kind == "add":
            marker, styled = "+", _style_text(highlighter, entry.content, DIFF_ADD_BG)
        else:
            marker, styled = " ", _style_text(highlighter, entry.content, None)

        color = _MARKER_COLORS[marker]
        wrapped = [styled]
        if content_width:
            wrapped = carry_ansi_state(wrap_line(styled, content_width, prefix_width))
        for i, segment in enumerate(wrapped):
            if i == 0:
                prefix = f"{color}{entry.number:>{number_width}}{marker} {RESET}"
            else:
                prefix = f"{color}{' ' * number_width}  {RESET}"
            out.append(prefix + segment)

    return "\n".join(out)
