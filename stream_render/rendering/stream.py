"""Incremental markdown rendering for streamed text.

:class:`StreamingMarkdownRenderer` accepts raw markdown in arbitrary chunks,
splits it into lines and runs a small block state machine over them. As soon
as a block's end is unambiguous (blank line after a paragraph, closing fence,
first non-table line, ...) the block is committed and the whole committed
document is re-rendered with rich. Only trailing newlines of that render are
held back, since they change when the next block arrives, so the rendered
output grows append-only in the common case.

Consumers read:

- ``rendered_unflushed()``: rendered output not yet printed to scrollback
- ``pending_markdown()``: raw text of the block still being written
- ``pending_is_table()`` / ``pending_is_list()``: whether that block should
  be withheld from the live preview

Example:
    renderer = StreamingMarkdownRenderer(width=80)
    renderer.write("# Title\\n\\nSome ")
    renderer.write("text\\n\\n")
    live = renderer.rendered_unflushed()
    renderer.mark_flushed()
    renderer.flush()
    final = renderer.rendered_all()
"""

from __future__ import annotations

import enum
import re

from stream_render.ansi import safe_slice
from stream_render.rendering.markdown import MarkdownRendererCache, default_renderer_cache

__all__ = ["StreamingMarkdownRenderer"]

_MULTI_NEWLINE_RE = re.compile(r"\n{3,}")


class _State(enum.Enum):
    READY = "ready"
    PARAGRAPH = "paragraph"
    FENCED_CODE = "fenced_code"
    TABLE = "table"
    LIST = "list"
    BLOCKQUOTE = "blockquote"


class _Block(enum.Enum):
    UNKNOWN = "unknown"
    PARAGRAPH = "paragraph"
    FENCED_CODE = "fenced_code"
    TABLE = "table"
    LIST = "list"
    BLOCKQUOTE = "blockquote"
    HEADING = "heading"
    THEMATIC_BREAK = "thematic_break"


class StreamingMarkdownRenderer:
    """Render complete markdown blocks as soon as they arrive."""

    def __init__(self, width: int, cache: MarkdownRendererCache | None = None) -> None:
        if width <= 0:
            raise ValueError(f"width must be positive, got {width}")
        self._width = width
        self._cache = cache or default_renderer_cache()

        self._line_buf = ""
        self._markdown: list[str] = []
        self._markdown_len = 0
        self._pending: list[str] = []

        self._state = _State.READY
        self._resume_state = _State.READY

        self._fence_char = ""
        self._fence_len = 0
        self._fence_indent = 0

        self._list_indent = 0
        self._last_marker_indent = 0
        self._list_has_marker = False

        self._output = ""
        self._flushed_rendered_pos = 0

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    @property
    def width(self) -> int:
        return self._width

    @property
    def flushed_rendered_pos(self) -> int:
        """Length of rendered output already printed to scrollback."""
        return self._flushed_rendered_pos

    def write(self, text: str) -> None:
        """Feed a chunk of markdown; complete blocks are rendered immediately.

        Raises:
            MarkdownRenderError: If rendering a committed block fails.
        """
        self._line_buf += text
        while True:
            idx = self._line_buf.find("\n")
            if idx == -1:
                break
            line = self._line_buf[: idx + 1]
            self._line_buf = self._line_buf[idx + 1 :]
            self._process_line(line)

    def flush(self) -> None:
        """Commit every remaining line, treating open blocks as finished.

        The final render keeps its trailing newlines.
        """
        if self._line_buf:
            remaining = self._line_buf
            self._line_buf = ""
            if not remaining.endswith("\n"):
                remaining += "\n"
            self._pending.append(remaining)

        self._commit_pending()
        self._state = _State.READY
        self._resume_state = _State.READY
        self._reset_list_state()

        if not self._markdown_len:
            return
        self._apply_snapshot(self._render_document())

    def resize(self, width: int) -> None:
        """Re-render committed markdown at a new width.

        The rendered buffer and flushed position are reset; callers are
        expected to redraw whatever they showed from this renderer.
        """
        if width <= 0 or width == self._width:
            return
        self._width = width
        self._output = ""
        self._flushed_rendered_pos = 0
        if self._markdown_len:
            self._output = self._render_document().rstrip("\n")

    def committed_markdown_len(self) -> int:
        """Number of raw characters committed as complete blocks."""
        return self._markdown_len

    def committed_markdown(self) -> str:
        return "".join(self._markdown)

    def pending_markdown(self) -> str:
        """Raw text of the block still being written, including a partial line."""
        return "".join(self._pending) + self._line_buf

    def pending_is_table(self) -> bool:
        """Whether the pending block is a table (withheld from previews)."""
        if self._state is _State.TABLE:
            return True
        first = self._first_pending_line()
        return bool(first) and first.startswith("|")

    def pending_is_list(self) -> bool:
        """Whether the pending block is a list (withheld from previews)."""
        if self._state is _State.LIST:
            return True
        first = self._first_pending_line()
        if not first:
            return False
        if _is_list_marker(first):
            return True
        # Marker-only partials while tokens are still arriving. A lone "*"
        # stays visible since it may be the start of emphasis.
        return _is_ordered_marker_prefix(first) or first in ("-", "+")

    def rendered_all(self) -> str:
        """The full rendered output, including what was already flushed."""
        return self._output

    def rendered_unflushed(self) -> str:
        """Rendered output not yet printed to scrollback."""
        if self._flushed_rendered_pos >= len(self._output):
            return ""
        return safe_slice(self._output, self._flushed_rendered_pos)

    def mark_flushed(self) -> None:
        """Record that everything rendered so far has been printed."""
        self._flushed_rendered_pos = len(self._output)

    # -------------------------------------------------------------------------
    # Rendering
    # -------------------------------------------------------------------------

    def _render_document(self) -> str:
        markdown = "".join(self._markdown).replace("\t", "  ")
        rendered = self._cache.render(markdown, self._width)
        return _MULTI_NEWLINE_RE.sub("\n\n", rendered)

    def _emit_rendered(self) -> None:
        if not self._markdown_len:
            return
        self._apply_snapshot(self._render_document().rstrip("\n"))

    def _apply_snapshot(self, snapshot: str) -> None:
        if snapshot == self._output:
            return
        if not snapshot.startswith(self._output):
            # Earlier output changed; never claim more was flushed than still matches.
            common = _common_prefix_len(self._output, snapshot)
            self._flushed_rendered_pos = min(self._flushed_rendered_pos, common)
        self._output = snapshot
        self._flushed_rendered_pos = min(self._flushed_rendered_pos, len(snapshot))

    def _commit(self, line: str) -> None:
        self._markdown.append(line)
        self._markdown_len += len(line)

    def _commit_pending(self) -> None:
        for line in self._pending:
            self._commit(line)
        self._pending = []

    def _commit_pending_and_emit(self) -> None:
        if not self._pending:
            return
        self._commit_pending()
        self._emit_rendered()

    # -------------------------------------------------------------------------
    # Block state machine
    # -------------------------------------------------------------------------

    def _process_line(self, line: str) -> None:
        content = line.rstrip("\n").rstrip("\r")
        handler = {
            _State.READY: self._handle_ready,
            _State.PARAGRAPH: self._handle_paragraph,
            _State.FENCED_CODE: self._handle_fenced_code,
            _State.TABLE: self._handle_table,
            _State.LIST: self._handle_list,
            _State.BLOCKQUOTE: self._handle_blockquote,
        }[self._state]
        handler(content, line)

    def _handle_ready(self, content: str, raw: str) -> None:
        if _is_blank(content):
            self._commit(raw)
            return

        block = _detect_block(content)
        if block is _Block.FENCED_CODE:
            self._state = _State.FENCED_CODE
            self._fence_char, self._fence_len, self._fence_indent = _parse_fence(content)
            self._pending.append(raw)
        elif block in (_Block.HEADING, _Block.THEMATIC_BREAK):
            self._commit(raw)
            self._emit_rendered()
        elif block is _Block.TABLE:
            self._state = _State.TABLE
            self._pending.append(raw)
        elif block is _Block.LIST:
            self._begin_list(_count_leading_spaces(content))
            self._pending.append(raw)
        elif block is _Block.BLOCKQUOTE:
            self._state = _State.BLOCKQUOTE
            self._pending.append(raw)
        else:
            self._state = _State.PARAGRAPH
            self._pending.append(raw)

    def _handle_paragraph(self, content: str, raw: str) -> None:
        if _is_blank(content):
            self._commit_pending()
            self._commit(raw)
            self._state = _State.READY
            self._emit_rendered()
            return

        # Setext underline turns the paragraph into a heading; checked before
        # thematic breaks because "---" is ambiguous.
        if _is_setext_underline(content) and self._pending:
            self._commit_pending()
            self._commit(raw)
            self._state = _State.READY
            self._emit_rendered()
            return

        block = _detect_block(content)
        if block not in (_Block.PARAGRAPH, _Block.UNKNOWN):
            self._commit_pending()
            self._state = _State.READY
            self._emit_rendered()
            self._handle_ready(content, raw)
            return

        self._pending.append(raw)

    def _handle_fenced_code(self, content: str, raw: str) -> None:
        self._pending.append(raw)
        if not _is_closing_fence(content, self._fence_char, self._fence_len, self._fence_indent):
            return

        self._fence_char, self._fence_len, self._fence_indent = "", 0, 0
        if self._resume_state is _State.LIST:
            self._state = _State.LIST
            self._resume_state = _State.READY
            return

        self._commit_pending()
        self._state = _State.READY
        self._emit_rendered()

    def _handle_table(self, content: str, raw: str) -> None:
        if _is_table_line(content):
            self._pending.append(raw)
            return

        if self._resume_state is _State.LIST:
            self._state = _State.LIST
            self._resume_state = _State.READY
            self._handle_list(content, raw)
            return

        self._commit_pending()
        self._state = _State.READY
        self._emit_rendered()
        self._handle_ready(content, raw)

    def _handle_list(self, content: str, raw: str) -> None:
        if _is_blank(content):
            self._pending.append(raw)
            return

        indent = _count_leading_spaces(content)
        trimmed = content.lstrip(" \t")

        if _is_list_marker(trimmed):
            # Top-level siblings stream out as soon as the next marker arrives.
            # Nested siblings wait until the nested list closes so a loose
            # list is not re-laid-out after the fact.
            if self._list_has_marker and (indent <= self._list_indent or indent < self._last_marker_indent):
                self._commit_pending_and_emit()
            self._pending.append(raw)
            self._list_indent = min(self._list_indent, indent)
            self._last_marker_indent = indent
            self._list_has_marker = True
            return

        block = _detect_block(content)
        if indent > self._list_indent:
            if block is _Block.FENCED_CODE:
                self._state = _State.FENCED_CODE
                self._resume_state = _State.LIST
                self._fence_char, self._fence_len, self._fence_indent = _parse_fence(content)
                self._pending.append(raw)
                return
            if block is _Block.BLOCKQUOTE:
                self._state = _State.BLOCKQUOTE
                self._resume_state = _State.LIST
                self._pending.append(raw)
                return
            if block is _Block.TABLE:
                self._state = _State.TABLE
                self._resume_state = _State.LIST
                self._pending.append(raw)
                return
            if block in (_Block.HEADING, _Block.THEMATIC_BREAK):
                self._pending.append(raw)
                return

        if block not in (_Block.PARAGRAPH, _Block.UNKNOWN):
            self._state = _State.READY
            self._reset_list_state()
            self._commit_pending_and_emit()
            self._handle_ready(content, raw)
            return

        # Indented prose continues the current item.
        if indent > self._list_indent:
            self._pending.append(raw)
            return

        self._state = _State.READY
        self._reset_list_state()
        self._commit_pending_and_emit()
        self._handle_ready(content, raw)

    def _handle_blockquote(self, content: str, raw: str) -> None:
        if _is_blank(content) or content.lstrip(" \t").startswith(">"):
            self._pending.append(raw)
            return

        if self._resume_state is _State.LIST:
            self._state = _State.LIST
            self._resume_state = _State.READY
            self._handle_list(content, raw)
            return

        self._commit_pending()
        self._state = _State.READY
        self._emit_rendered()
        self._handle_ready(content, raw)

    def _begin_list(self, indent: int) -> None:
        self._state = _State.LIST
        self._list_indent = indent
        self._last_marker_indent = indent
        self._list_has_marker = True

    def _reset_list_state(self) -> None:
        self._list_indent = 0
        self._last_marker_indent = 0
        self._list_has_marker = False

    def _first_pending_line(self) -> str:
        content = self.pending_markdown()
        if not content:
            return ""
        first = content.split("\n", 1)[0]
        return first.rstrip("\r").lstrip(" \t")


# =============================================================================
# Line classification
# =============================================================================


def _is_blank(line: str) -> bool:
    return not line.strip()


def _detect_block(line: str) -> _Block:
    trimmed = line.lstrip(" \t")
    if not trimmed:
        return _Block.UNKNOWN

    if trimmed.startswith(("```", "~~~")):
        return _Block.FENCED_CODE

    if trimmed[0] == "#" and _is_atx_heading(trimmed):
        return _Block.HEADING

    if _is_thematic_break(trimmed):
        return _Block.THEMATIC_BREAK

    if trimmed[0] == ">":
        return _Block.BLOCKQUOTE

    if _is_list_marker(trimmed):
        return _Block.LIST

    if _is_table_line(line):
        return _Block.TABLE

    return _Block.PARAGRAPH


def _is_atx_heading(trimmed: str) -> bool:
    hashes = len(trimmed) - len(trimmed.lstrip("#"))
    if hashes > 6:
        return False
    if hashes == len(trimmed):
        return True
    return trimmed[hashes] in (" ", "\t")


def _is_list_marker(trimmed: str) -> bool:
    if not trimmed:
        return False
    if trimmed[0] in "-*+" and len(trimmed) > 1 and trimmed[1] in (" ", "\t"):
        return True

    digits = _leading_digits(trimmed)
    if 0 < digits < len(trimmed) and trimmed[digits] in ".)":
        return digits + 1 == len(trimmed) or trimmed[digits + 1] in (" ", "\t")
    return False


def _is_ordered_marker_prefix(trimmed: str) -> bool:
    """Whether ``trimmed`` is only an ordered marker like "1." or "2)"."""
    digits = _leading_digits(trimmed)
    return 0 < digits and digits + 1 == len(trimmed) and trimmed[digits] in ".)"


def _leading_digits(s: str) -> int:
    count = 0
    while count < len(s) and count < 9 and s[count].isdigit() and s[count].isascii():
        count += 1
    return count


def _is_thematic_break(trimmed: str) -> bool:
    if len(trimmed) < 3 or trimmed[0] not in "-*_":
        return False
    marker = trimmed[0]
    count = 0
    for ch in trimmed:
        if ch == marker:
            count += 1
        elif ch not in (" ", "\t"):
            return False
    return count >= 3


def _is_table_line(line: str) -> bool:
    trimmed = line.strip()
    return bool(trimmed) and "|" in trimmed


def _is_setext_underline(line: str) -> bool:
    trimmed = line.strip()
    if not trimmed or trimmed[0] not in "=-":
        return False
    return trimmed == trimmed[0] * len(trimmed)


def _parse_fence(line: str) -> tuple[str, int, int]:
    indent = _count_leading_spaces(line)
    trimmed = line.lstrip(" \t")
    if not trimmed:
        return "", 0, 0
    char = trimmed[0]
    length = len(trimmed) - len(trimmed.lstrip(char))
    return char, length, indent


def _is_closing_fence(line: str, open_char: str, open_len: int, open_indent: int) -> bool:
    indent = _count_leading_spaces(line)
    if indent > 3 and indent > open_indent + 3:
        return False

    trimmed = line.lstrip(" \t")
    if not trimmed or not open_char or trimmed[0] != open_char:
        return False

    fence_len = len(trimmed) - len(trimmed.lstrip(open_char))
    if trimmed[fence_len:].strip(" \t\r\n"):
        return False
    return fence_len >= open_len


def _count_leading_spaces(line: str) -> int:
    """Leading indentation, counting a tab as one column."""
    return len(line) - len(line.lstrip(" \t"))


def _common_prefix_len(a: str, b: str) -> int:
    limit = min(len(a), len(b))
    for i in range(limit):
        if a[i] != b[i]:
            return i
    return limit
