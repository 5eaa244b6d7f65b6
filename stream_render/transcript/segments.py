"""Transcript segments and their ANSI rendering.

A response is an ordered list of segments: streamed text, tool invocations,
plain result lines, inline images and file diffs. Segments are plain
dataclasses mutated only by :class:`~stream_render.transcript.tracker.SegmentTracker`;
the functions here read them and produce styled text.
"""

from __future__ import annotations

import enum
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Any, ClassVar, TypeAlias

from stream_render.ansi import safe_slice
from stream_render.rendering.diff_view import render_diff_segment
from stream_render.rendering.images import ImageCache, default_image_cache
from stream_render.rendering.stream import StreamingMarkdownRenderer

__all__ = [
    "ERROR_CIRCLE",
    "PENDING_CIRCLE",
    "SPAWN_AGENT_TOOL",
    "SUCCESS_CIRCLE",
    "WORKING_CIRCLE",
    "DiffSegment",
    "ImageSegment",
    "PlainResultSegment",
    "RenderFn",
    "Segment",
    "SegmentKind",
    "SubagentDiff",
    "TextSegment",
    "ToolSegment",
    "ToolStatus",
    "extract_agent_name",
    "format_elapsed",
    "format_provider_model",
    "format_spawn_agent_stats",
    "format_tokens_compact",
    "has_pending_tool",
    "pending_tool_text_len",
    "render_plain_result",
    "render_segments",
    "render_segments_with_kind",
    "render_spawn_agent_stats",
    "render_tool_segment",
    "render_wave_text",
    "segment_separator",
    "shorten_model_name",
    "tool_active_text",
    "truncate_tool_info",
    "update_tool_status",
]

RenderFn = Callable[[str, int], str]
"""Renders a complete markdown document at a width."""

SPAWN_AGENT_TOOL = "spawn_agent"

PENDING_CIRCLE = "\x1b[38;5;245m○\x1b[0m"
WORKING_CIRCLE = "\x1b[38;2;255;165;0m●\x1b[0m"
SUCCESS_CIRCLE = "\x1b[38;2;79;185;101m●\x1b[0m"
ERROR_CIRCLE = "\x1b[38;2;239;68;68m●\x1b[0m"

_RESET = "\x1b[0m"
_DIM = "\x1b[38;5;245m"
_BOLD = "\x1b[1m"
_PARAM = "\x1b[38;5;250m"


def _fg256(code: int, text: str, bold: bool = False) -> str:
    prefix = f"\x1b[1;38;5;{code}m" if bold else f"\x1b[38;5;{code}m"
    return f"{prefix}{text}{_RESET}"


# =============================================================================
# Segment Model
# =============================================================================


class SegmentKind(str, enum.Enum):
    TEXT = "text"
    TOOL = "tool"
    PLAIN_RESULT = "plain_result"
    IMAGE = "image"
    DIFF = "diff"


class ToolStatus(str, enum.Enum):
    PENDING = "pending"
    SUCCESS = "success"
    ERROR = "error"


@dataclass(eq=False)
class TextSegment:
    """Streamed model text.

    Attributes:
        complete: No more text will be appended.
        rendered: Cached final render; only meaningful once complete.
        flushed: Printed to scrollback in full.
        renderer: Live incremental renderer while streaming, or None.
        flushed_pos: Raw characters already covered by scrollback flushes.
        flushed_rendered_pos: Rendered characters already printed.
    """

    kind: ClassVar[SegmentKind] = SegmentKind.TEXT

    complete: bool = False
    rendered: str = ""
    flushed: bool = False
    renderer: StreamingMarkdownRenderer | None = None
    flushed_pos: int = 0
    flushed_rendered_pos: int = 0
    _chunks: list[str] = field(default_factory=list, repr=False)
    _snapshot: str = field(default="", repr=False)
    _dirty: bool = field(default=False, repr=False)

    @classmethod
    def from_text(cls, text: str, **kwargs: Any) -> TextSegment:
        seg = cls(**kwargs)
        seg.append(text)
        return seg

    @property
    def text(self) -> str:
        if self._dirty:
            self._snapshot = "".join(self._chunks)
            self._chunks = [self._snapshot]
            self._dirty = False
        return self._snapshot

    def append(self, delta: str) -> None:
        if not delta:
            return
        self._chunks.append(delta)
        self._dirty = True


@dataclass
class _DiffPayload:
    path: str
    old: str
    new: str
    line: int = 0
    rendered: str = field(default="", repr=False)
    rendered_width: int = field(default=0, repr=False)

    def same_edit(self, path: str, old: str, new: str, line: int) -> bool:
        return (self.path, self.old, self.new, self.line) == (path, old, new, line)

    def render(self, width: int) -> str:
        """Render the diff, reusing the cached output for the same width."""
        if self.rendered and self.rendered_width == width:
            return self.rendered
        rendered = render_diff_segment(self.path, self.old, self.new, width, self.line)
        if rendered:
            self.rendered = rendered
            self.rendered_width = width
        return rendered


@dataclass
class SubagentDiff(_DiffPayload):
    """A file edit made by a spawned sub-task, shown under its tool row."""


@dataclass(eq=False)
class DiffSegment(_DiffPayload):
    """A file edit shown inline."""

    kind: ClassVar[SegmentKind] = SegmentKind.DIFF

    flushed: bool = False


@dataclass(eq=False)
class ToolSegment:
    """One tool invocation.

    The ``subagent_*`` fields are only populated for ``spawn_agent`` calls
    that reported progress.
    """

    kind: ClassVar[SegmentKind] = SegmentKind.TOOL

    call_id: str
    name: str
    info: str = ""
    args: Any = None
    status: ToolStatus = ToolStatus.PENDING
    flushed: bool = False

    subagent_has_progress: bool = False
    subagent_tool_calls: int = 0
    subagent_total_tokens: int = 0
    subagent_provider: str = ""
    subagent_model: str = ""
    subagent_preview: list[str] = field(default_factory=list)
    subagent_start_time: float | None = None
    subagent_end_time: float | None = None
    subagent_diffs: list[SubagentDiff] = field(default_factory=list)

    @property
    def is_pending(self) -> bool:
        return self.status is ToolStatus.PENDING


@dataclass(eq=False)
class ImageSegment:
    """An image produced by a tool."""

    kind: ClassVar[SegmentKind] = SegmentKind.IMAGE

    path: str
    flushed: bool = False


@dataclass(eq=False)
class PlainResultSegment:
    """A short ``Header: Value`` summary line, styled at render time."""

    kind: ClassVar[SegmentKind] = SegmentKind.PLAIN_RESULT

    text: str
    flushed: bool = False


Segment: TypeAlias = TextSegment | ToolSegment | PlainResultSegment | ImageSegment | DiffSegment


# =============================================================================
# Tool Rows
# =============================================================================


def render_wave_text(text: str, wave_pos: int) -> str:
    """Dim text with a two-character bold highlight at ``wave_pos``.

    Out-of-range positions (the pause phase) render everything dim.
    """
    if wave_pos < 0 or wave_pos >= len(text):
        return f"{_DIM}{text}{_RESET}"

    parts = []
    if wave_pos > 0:
        parts.append(f"{_DIM}{text[:wave_pos]}{_RESET}")
    end = min(wave_pos + 2, len(text))
    parts.append(f"{_BOLD}{text[wave_pos:end]}{_RESET}")
    if end < len(text):
        parts.append(f"{_DIM}{text[end:]}{_RESET}")
    return "".join(parts)


def tool_active_text(name: str, info: str) -> str:
    """The label animated while a tool runs."""
    return f"{name} {info}" if info else name


def _truncate(text: str, max_len: int) -> str:
    if len(text) <= max_len:
        return text
    if max_len <= 3:
        return text[:max_len]
    return text[: max_len - 3] + "..."


def truncate_tool_info(name: str, info: str, width: int) -> str:
    """Shorten ``info`` so ``circle + name + info`` fits in ``width`` columns."""
    if width <= 0 or not info:
        return info
    # circle + space, then a space between name and info
    max_info = width - (2 + len(name) + 1)
    if max_info <= 0:
        return ""
    return _truncate(info, max_info)


def render_tool_segment(seg: ToolSegment, wave_pos: int, width: int) -> str:
    """Render a tool row with its status circle.

    Pending tools animate their label; spawn_agent calls with progress show
    sub-task stats instead. ``width`` of 0 disables truncation.
    """
    circle = {
        ToolStatus.PENDING: PENDING_CIRCLE,
        ToolStatus.SUCCESS: SUCCESS_CIRCLE,
        ToolStatus.ERROR: ERROR_CIRCLE,
    }[seg.status]

    if seg.name == SPAWN_AGENT_TOOL and seg.subagent_has_progress:
        return f"{circle} {render_spawn_agent_stats(seg)}"

    if seg.status is ToolStatus.PENDING:
        active = tool_active_text(seg.name, seg.info)
        if width > 0 and width - 2 > 0:
            active = _truncate(active, width - 2)
        return f"{circle} {render_wave_text(active, wave_pos)}"

    info = truncate_tool_info(seg.name, seg.info, width)
    if info:
        return f"{circle} {seg.name} {_PARAM}{info}{_RESET}"
    return f"{circle} {seg.name}"


# =============================================================================
# Sub-task Stats
# =============================================================================

_MODEL_SHORT_NAMES = {
    "claude-sonnet-4-20250514": "sonnet-4",
    "claude-opus-4-20250514": "opus-4",
    "claude-3-5-sonnet-20241022": "sonnet-3.5",
    "claude-3-opus-20240229": "opus-3",
    "gpt-4o": "4o",
    "gpt-4o-mini": "4o-mini",
    "gpt-4-turbo": "4-turbo",
    "gemini-2.0-flash": "flash-2",
    "gemini-1.5-pro": "pro-1.5",
}


def render_spawn_agent_stats(seg: ToolSegment, now: float | None = None) -> str:
    """``@name  N calls · X.Xk tokens · 12s  [provider:model]``"""
    name = extract_agent_name(seg.info) or "agent"
    stats = format_spawn_agent_stats(
        seg.subagent_tool_calls,
        seg.subagent_total_tokens,
        seg.subagent_start_time,
        seg.subagent_end_time,
        now=now,
    )
    result = f"@{name}  {_PARAM}{stats}{_RESET}"
    if seg.subagent_provider or seg.subagent_model:
        result += f"  {_PARAM}{format_provider_model(seg.subagent_provider, seg.subagent_model)}{_RESET}"
    return result


def extract_agent_name(info: str) -> str:
    """Pull the agent name out of ``"(@reviewer: prompt...)"`` style tool info."""
    if not info:
        return ""
    name = info.removeprefix("(").removeprefix("@")
    colon = name.find(":")
    space = name.find(" ")
    if colon > 0:
        name = name[:colon]
    elif space > 0:
        name = name[:space]
    return name.strip()


def format_provider_model(provider: str, model: str) -> str:
    if not provider and not model:
        return ""
    if not model:
        return f"[{provider}]"
    short = shorten_model_name(model)
    if not provider:
        return f"[{short}]"
    return f"[{provider}:{short}]"


def shorten_model_name(model: str) -> str:
    short = _MODEL_SHORT_NAMES.get(model)
    if short is not None:
        return short
    if len(model) > 20:
        return model[:17] + "..."
    return model


def format_spawn_agent_stats(
    tool_calls: int,
    total_tokens: int,
    start_time: float | None,
    end_time: float | None = None,
    now: float | None = None,
) -> str:
    """``N calls · X tokens · elapsed``; elapsed freezes once ``end_time`` is set.

    Times are :func:`time.monotonic` readings.
    """
    elapsed = None
    if start_time is not None:
        stop = end_time if end_time is not None else (now if now is not None else time.monotonic())
        elapsed = format_elapsed(stop - start_time)

    if tool_calls == 0 and total_tokens == 0:
        return f"starting… · {elapsed}" if elapsed is not None else "starting..."

    calls = "call" if tool_calls == 1 else "calls"
    result = f"{tool_calls} {calls} · {format_tokens_compact(total_tokens)} tokens"
    if elapsed is not None:
        result += f" · {elapsed}"
    return result


def format_elapsed(seconds: float) -> str:
    """Compact duration: ``0s``, ``5s``, ``1m30s``, ``5m``."""
    total = int(max(seconds, 0) + 0.5)
    if total < 60:
        return f"{total}s"
    minutes, secs = divmod(total, 60)
    if secs == 0:
        return f"{minutes}m"
    return f"{minutes}m{secs}s"


def format_tokens_compact(n: int) -> str:
    """``999``, ``1.2k``, ``12k``."""
    if n < 1000:
        return str(n)
    k = n / 1000
    if k < 10:
        return f"{k:.1f}".rstrip("0").rstrip(".") + "k"
    return f"{k:.0f}k"


# =============================================================================
# Plain Results and Separators
# =============================================================================


def render_plain_result(text: str) -> str:
    """Style ``"Header: Value | Header2: Value2"`` as a checked result line."""
    parts = []
    for part in text.split(" | "):
        idx = part.find(": ")
        if idx != -1:
            parts.append(_fg256(245, part[: idx + 2]) + _fg256(15, part[idx + 2 :], bold=True))
        else:
            parts.append(part)
    return f"{_fg256(10, '│')} {_fg256(10, '✓')} " + " ".join(parts) + "\n"


def segment_separator(prev: SegmentKind, curr: SegmentKind) -> str:
    """Vertical spacing between two adjacent segment kinds."""
    if prev is SegmentKind.TEXT and curr is SegmentKind.TEXT:
        return ""
    text_boundary = (prev is SegmentKind.TEXT) != (curr is SegmentKind.TEXT)
    result_kinds = (SegmentKind.TOOL, SegmentKind.PLAIN_RESULT)
    if text_boundary and (prev in result_kinds or curr in result_kinds):
        return "\n\n"
    return "\n"


# =============================================================================
# Rendering
# =============================================================================


def _render_text_segment(seg: TextSegment, width: int, render_fn: RenderFn | None) -> str:
    text = seg.text
    if not text:
        return ""

    if seg.complete and seg.rendered:
        rendered = seg.rendered
    elif seg.renderer is not None:
        rendered = seg.renderer.rendered_unflushed()
        # Raw preview of the open block; tables and lists are withheld
        # until they are stable.
        pending = seg.renderer.pending_markdown()
        if pending and not seg.renderer.pending_is_table() and not seg.renderer.pending_is_list():
            rendered += pending
    elif seg.complete and render_fn is not None:
        rendered = render_fn(text, width)
    else:
        rendered = text

    if seg.complete:
        if seg.flushed_rendered_pos >= len(rendered):
            return ""
        if seg.flushed_rendered_pos > 0:
            return safe_slice(rendered, seg.flushed_rendered_pos)
    return rendered


def _render_tool_block(seg: ToolSegment, width: int, wave_pos: int) -> str:
    rendered = render_tool_segment(seg, wave_pos, width)
    if seg.name != SPAWN_AGENT_TOOL:
        return rendered
    parts = [rendered]
    for line in seg.subagent_preview:
        parts.append(f"\n  │ {line}")
    for diff in seg.subagent_diffs:
        parts.append("\n")
        parts.append(diff.render(width))
    return "".join(parts)


def render_segments(
    segments: Sequence[Segment],
    width: int,
    wave_pos: int,
    render_fn: RenderFn | None,
    include_images: bool,
    leading: SegmentKind | None = None,
    image_cache: ImageCache | None = None,
) -> str:
    """Render segments in order with kind-dependent separators.

    Args:
        segments: Segments to render.
        width: Terminal width (0 disables truncation and wrapping).
        wave_pos: Wave animation position for pending tools.
        render_fn: Markdown renderer for complete text without a live renderer.
        include_images: Whether image segments produce output.
        leading: Kind of the segment printed just before ``segments``; when
            set, the first rendered segment is preceded by its separator.
        image_cache: Image cache; defaults to the shared one.
    """
    rendered, _ = render_segments_with_kind(
        segments, width, wave_pos, render_fn, include_images, leading, image_cache
    )
    return rendered


def render_segments_with_kind(
    segments: Sequence[Segment],
    width: int,
    wave_pos: int,
    render_fn: RenderFn | None,
    include_images: bool,
    leading: SegmentKind | None = None,
    image_cache: ImageCache | None = None,
) -> tuple[str, SegmentKind | None]:
    """Like :func:`render_segments`, also returning the kind of the last
    segment that produced output (``leading`` if none did)."""
    parts: list[str] = []
    last_kind = leading

    for seg in segments:
        rendered = ""
        match seg:
            case TextSegment():
                rendered = _render_text_segment(seg, width, render_fn)
            case ToolSegment():
                rendered = _render_tool_block(seg, width, wave_pos)
            case PlainResultSegment():
                rendered = render_plain_result(seg.text)
            case ImageSegment():
                if include_images:
                    image = (image_cache or default_image_cache()).render(seg.path)
                    if image:
                        rendered = image + "\r\n"
            case DiffSegment():
                rendered = seg.render(width)

        if not rendered:
            continue
        if last_kind is not None:
            parts.append(segment_separator(last_kind, seg.kind))
        parts.append(rendered)
        last_kind = seg.kind

    return "".join(parts), last_kind


def has_pending_tool(segments: Sequence[Segment]) -> bool:
    return any(isinstance(seg, ToolSegment) and seg.is_pending for seg in reversed(segments))


def pending_tool_text_len(segments: Sequence[Segment]) -> int:
    """Length of the animated label of the most recent pending tool."""
    for seg in reversed(segments):
        if isinstance(seg, ToolSegment) and seg.is_pending:
            return len(tool_active_text(seg.name, seg.info))
    return 0


def update_tool_status(segments: Sequence[Segment], call_id: str, success: bool) -> bool:
    """Resolve the latest pending tool with ``call_id``.

    Returns:
        True if a segment changed. Unknown or already resolved IDs are ignored.
    """
    for seg in reversed(segments):
        if isinstance(seg, ToolSegment) and seg.is_pending and seg.call_id == call_id:
            seg.status = ToolStatus.SUCCESS if success else ToolStatus.ERROR
            return True
    return False
