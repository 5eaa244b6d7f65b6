"""Segment tracker: the single owner of transcript state.

The tracker turns stream events into segments, animates pending tool rows
and decides what gets printed to terminal scrollback and when.

Scrollback printing appends one newline per printed chunk. Every flush
method returns a :class:`FlushResult` whose ``to_print`` accounts for that:
printing each emitted chunk followed by a newline reproduces exactly what a
single render of the whole transcript would show. A chunk that does not end
in a newline leaves the printer's newline "owed", and one leading newline is
dropped from the next chunk to settle it.

Flushes always cover a prefix of the unflushed segments, so scrollback
order matches transcript order.
"""

from __future__ import annotations

import time
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

from stream_render._config import RenderSettings, get_settings
from stream_render._logger import get_logger
from stream_render.ansi import safe_slice
from stream_render.events import (
    DiffEvent,
    DoneEvent,
    ErrorEvent,
    ImageEvent,
    PhaseEvent,
    RetryEvent,
    StreamEvent,
    TextEvent,
    ToolEndEvent,
    ToolStartEvent,
    UsageEvent,
)
from stream_render.rendering.boundary import find_safe_boundary_incremental
from stream_render.rendering.images import ImageCache
from stream_render.rendering.markdown import MarkdownRenderError, MarkdownRendererCache
from stream_render.rendering.stream import StreamingMarkdownRenderer
from stream_render.transcript.segments import (
    SPAWN_AGENT_TOOL,
    DiffSegment,
    ImageSegment,
    PlainResultSegment,
    RenderFn,
    Segment,
    SegmentKind,
    SubagentDiff,
    TextSegment,
    ToolSegment,
    ToolStatus,
    has_pending_tool,
    pending_tool_text_len,
    render_segments,
    render_segments_with_kind,
    segment_separator,
    update_tool_status,
)
from stream_render.transcript.subagents import SubagentProgress, build_subagent_preview

logger = get_logger(__name__)

__all__ = [
    "FlushResult",
    "SegmentTracker",
    "count_lines",
    "split_lines",
]


@dataclass(frozen=True)
class FlushResult:
    """Content to print to scrollback.

    Attributes:
        to_print: Chunk to print; the printer appends one newline.
        emitted: Whether anything should be printed at all. ``to_print`` may
            legitimately be empty while ``emitted`` is True (a bare newline).
    """

    to_print: str = ""
    emitted: bool = False


_NOTHING = FlushResult()


def _is_partially_flushed(seg: Segment) -> bool:
    return isinstance(seg, TextSegment) and (seg.flushed_pos > 0 or seg.flushed_rendered_pos > 0)


def _is_flushable(seg: Segment) -> bool:
    if seg.flushed:
        return False
    if isinstance(seg, ToolSegment) and seg.is_pending:
        return False
    if isinstance(seg, TextSegment) and not seg.complete:
        return False
    return True


class SegmentTracker:
    """Ordered transcript of one response with scrollback bookkeeping.

    Not thread-safe: a single consumer applies events and flushes.

    Attributes:
        segments: All segments in arrival order.
        wave_pos: Wave animation position, -1 while paused.
        wave_paused: Whether the wave is resting between sweeps.
        last_activity: ``time.monotonic()`` of the last content change.
        version: Bumped on every content change.
        last_flushed_kind: Kind of the last segment printed to scrollback.
        has_flushed: Whether anything was printed yet.
    """

    def __init__(
        self,
        settings: RenderSettings | None = None,
        renderer_cache: MarkdownRendererCache | None = None,
        image_cache: ImageCache | None = None,
        text_mode: bool = False,
    ) -> None:
        self._settings = settings or get_settings()
        self._renderer_cache = renderer_cache
        self._image_cache = image_cache
        self.text_mode = text_mode

        self.segments: list[Segment] = []
        self.wave_pos = 0
        self.wave_paused = False
        self.last_activity = time.monotonic()
        self.version = 0
        self.last_flushed_kind: SegmentKind = SegmentKind.TEXT
        self.has_flushed = False
        self._owes_newline = False

    # -------------------------------------------------------------------------
    # Activity
    # -------------------------------------------------------------------------

    def record_activity(self) -> None:
        self.last_activity = time.monotonic()

    def is_idle(self, seconds: float) -> bool:
        """No activity for ``seconds`` and no pending tool animating."""
        return time.monotonic() - self.last_activity > seconds and not self.has_pending()

    def has_pending(self) -> bool:
        return has_pending_tool(self.segments)

    def _touch(self) -> None:
        self.record_activity()
        self.version += 1

    # -------------------------------------------------------------------------
    # Text
    # -------------------------------------------------------------------------

    def add_text(self, delta: str, width: int) -> bool:
        """Append streamed text.

        Returns:
            True if a new text segment was created.
        """
        self.record_activity()
        if self.segments:
            last = self.segments[-1]
            if isinstance(last, TextSegment) and not last.complete:
                last.append(delta)
                self._write_renderer(last, delta)
                self.version += 1
                return False

        seg = TextSegment.from_text(delta)
        if width > 0 and not self.text_mode:
            seg.renderer = StreamingMarkdownRenderer(width, self._renderer_cache)
            self._write_renderer(seg, delta)
        self.segments.append(seg)
        self.version += 1
        return True

    @staticmethod
    def _write_renderer(seg: TextSegment, delta: str) -> None:
        if seg.renderer is None:
            return
        try:
            seg.renderer.write(delta)
        except MarkdownRenderError as e:
            logger.warning("Streaming markdown render failed, falling back to raw text: %s", e)
            seg.renderer = None

    def _complete(self, seg: TextSegment, render_fn: RenderFn | None, width: int) -> None:
        if seg.renderer is not None:
            renderer = seg.renderer
            seg.renderer = None
            try:
                renderer.flush()
            except MarkdownRenderError as e:
                logger.warning("Final markdown render failed: %s", e)
                if seg.text and render_fn is not None:
                    seg.rendered = render_fn(seg.text, renderer.width)
            else:
                seg.rendered = renderer.rendered_all().rstrip("\n")
                seg.flushed_rendered_pos = min(renderer.flushed_rendered_pos, len(seg.rendered))
        elif seg.text and render_fn is not None:
            seg.rendered = render_fn(seg.text, width)
        seg.complete = True

    def complete_text(self, render_fn: RenderFn | None = None, width: int = 0) -> None:
        """Complete every open text segment, caching its final render."""
        for seg in self.segments:
            if isinstance(seg, TextSegment) and not seg.complete:
                self._complete(seg, render_fn, width)
                self.version += 1

    def mark_current_text_complete(self, render_fn: RenderFn | None = None, width: int = 0) -> None:
        """Complete the tail text segment, e.g. before a tool row starts."""
        if self.segments:
            last = self.segments[-1]
            if isinstance(last, TextSegment) and not last.complete:
                self._complete(last, render_fn, width)
                self.version += 1

    # -------------------------------------------------------------------------
    # Tools
    # -------------------------------------------------------------------------

    def handle_tool_start(self, call_id: str, name: str, info: str = "", args: Any = None) -> bool:
        """Add a pending tool row.

        Returns:
            True if a row was added (the caller should start the wave). A call
            ID that is still pending is ignored.
        """
        self.record_activity()
        for seg in reversed(self.segments):
            if isinstance(seg, ToolSegment) and seg.is_pending and seg.call_id == call_id:
                return False
        self.segments.append(ToolSegment(call_id=call_id, name=name, info=info, args=args))
        self.version += 1
        return True

    def handle_tool_end(self, call_id: str, success: bool) -> None:
        self.record_activity()
        if update_tool_status(self.segments, call_id, success):
            for seg in reversed(self.segments):
                if isinstance(seg, ToolSegment) and seg.call_id == call_id:
                    if seg.name == SPAWN_AGENT_TOOL and seg.subagent_end_time is None:
                        seg.subagent_end_time = time.monotonic()
                    break
        self.version += 1

    def force_complete_pending_tools(self) -> None:
        """Resolve every pending tool as successful (end of stream)."""
        for seg in self.segments:
            if isinstance(seg, ToolSegment) and seg.is_pending:
                seg.status = ToolStatus.SUCCESS
                self.version += 1

    def update_from_subagent(self, call_id: str, progress: SubagentProgress) -> bool:
        """Refresh a spawn_agent row from its sub-task's progress.

        Returns:
            True if a matching row was found.
        """
        for seg in reversed(self.segments):
            if isinstance(seg, ToolSegment) and seg.call_id == call_id and seg.name == SPAWN_AGENT_TOOL:
                seg.subagent_has_progress = True
                seg.subagent_tool_calls = progress.tool_calls
                seg.subagent_total_tokens = progress.input_tokens + progress.output_tokens
                seg.subagent_provider = progress.provider
                seg.subagent_model = progress.model
                seg.subagent_preview = build_subagent_preview(progress, self._settings.subagent_preview_lines)
                seg.subagent_start_time = progress.start_time
                if progress.done:
                    seg.subagent_end_time = progress.end_time
                self._touch()
                return True
        return False

    def add_subagent_diff(self, call_id: str, path: str, old: str, new: str, line: int = 0) -> bool:
        """Attach a sub-task's file edit to its spawn_agent row (deduplicated)."""
        for seg in reversed(self.segments):
            if isinstance(seg, ToolSegment) and seg.call_id == call_id:
                if any(d.same_edit(path, old, new, line) for d in seg.subagent_diffs):
                    return False
                seg.subagent_diffs.append(SubagentDiff(path, old, new, line))
                self._touch()
                return True
        return False

    # -------------------------------------------------------------------------
    # Other Segments
    # -------------------------------------------------------------------------

    def add_plain_result(self, summary: str) -> None:
        """Add a ``Header: Value`` line, e.g. the answer from an external prompt."""
        if not summary:
            return
        self.segments.append(PlainResultSegment(summary))
        self._touch()

    def add_image(self, path: str) -> None:
        if not path:
            return
        self.segments.append(ImageSegment(path))
        self._touch()

    def add_diff(self, path: str, old: str, new: str, line: int = 0) -> None:
        """Add an inline diff; an identical edit already present is ignored."""
        if not path:
            return
        self.record_activity()
        for seg in reversed(self.segments):
            if isinstance(seg, DiffSegment) and seg.same_edit(path, old, new, line):
                return
        self.segments.append(DiffSegment(path, old, new, line))
        self.version += 1

    # -------------------------------------------------------------------------
    # Events
    # -------------------------------------------------------------------------

    def apply_event(self, event: StreamEvent, width: int, render_fn: RenderFn | None = None) -> bool:
        """Apply one stream event.

        Returns:
            True if the transcript changed.
        """
        before = self.version
        match event:
            case TextEvent(text=text):
                self.add_text(text, width)
            case ToolStartEvent(call_id=call_id, name=name, info=info, args=args):
                self.mark_current_text_complete(render_fn, width)
                self.handle_tool_start(call_id, name, info, args)
            case ToolEndEvent(call_id=call_id, success=success):
                self.handle_tool_end(call_id, success)
            case ImageEvent(path=path):
                self.mark_current_text_complete(render_fn, width)
                self.add_image(path)
            case DiffEvent(path=path, old=old, new=new, line=line):
                self.mark_current_text_complete(render_fn, width)
                self.add_diff(path, old, new, line)
            case ErrorEvent(error=error):
                self.complete_text(render_fn, width)
                self.add_plain_result(f"Error: {error}")
            case DoneEvent():
                self.complete_text(render_fn, width)
            case UsageEvent() | PhaseEvent() | RetryEvent():
                self.record_activity()
        return self.version != before

    # -------------------------------------------------------------------------
    # Wave Animation
    # -------------------------------------------------------------------------

    def start_wave(self) -> float:
        """Restart the wave; returns the delay before the first tick."""
        self.wave_pos = 0
        self.wave_paused = False
        return self._settings.wave_tick_interval

    def handle_wave_tick(self) -> float | None:
        """Advance the wave.

        Returns:
            Delay until the next tick, the pause duration when a sweep just
            finished, or None when nothing is pending.
        """
        if not self.has_pending() or self.wave_paused:
            return None

        self.wave_pos += 1
        if self.wave_pos >= pending_tool_text_len(self.segments):
            self.wave_paused = True
            self.wave_pos = -1
            return self._settings.wave_pause_duration
        return self._settings.wave_tick_interval

    def handle_wave_pause(self) -> float | None:
        """End a pause; returns the next tick delay or None when idle."""
        if not self.has_pending():
            return None
        self.wave_paused = False
        self.wave_pos = 0
        return self._settings.wave_tick_interval

    # -------------------------------------------------------------------------
    # Views
    # -------------------------------------------------------------------------

    def active_segments(self) -> list[ToolSegment]:
        """Pending tool rows."""
        return [seg for seg in self.segments if isinstance(seg, ToolSegment) and seg.is_pending]

    def completed_segments(self) -> list[Segment]:
        """Unflushed segments up to, not including, the first pending tool."""
        result: list[Segment] = []
        for seg in self.segments:
            if seg.flushed:
                continue
            if isinstance(seg, ToolSegment) and seg.is_pending:
                break
            result.append(seg)
        return result

    def all_completed_segments(self) -> list[Segment]:
        """Every non-pending segment, flushed or not."""
        return [seg for seg in self.segments if not (isinstance(seg, ToolSegment) and seg.is_pending)]

    def unflushed_segments(self) -> list[Segment]:
        """Unflushed, non-pending segments; partially flushed text is cut to its remainder."""
        result: list[Segment] = []
        for seg in self.segments:
            if seg.flushed or (isinstance(seg, ToolSegment) and seg.is_pending):
                continue
            if isinstance(seg, TextSegment) and seg.flushed_pos > 0:
                text = seg.text
                if seg.flushed_pos < len(text):
                    result.append(TextSegment.from_text(text[seg.flushed_pos :], complete=seg.complete))
                continue
            result.append(seg)
        return result

    def leading_separator(self, kind: SegmentKind) -> str:
        """Spacing needed before a segment of ``kind`` given what was printed last."""
        if not self.has_flushed:
            return ""
        return segment_separator(self.last_flushed_kind, kind)

    def _render_continuation(
        self,
        segments: Sequence[Segment],
        width: int,
        wave_pos: int,
        render_fn: RenderFn | None,
        include_images: bool,
    ) -> tuple[str, SegmentKind | None]:
        """Render segments that continue what scrollback already shows.

        A partially flushed text segment carries no separator of its own.
        """
        leading = self.last_flushed_kind if self.has_flushed else None
        head = ""
        rest = list(segments)
        if rest and _is_partially_flushed(rest[0]):
            first = rest.pop(0)
            head = render_segments([first], width, wave_pos, render_fn, include_images, image_cache=self._image_cache)
            leading = first.kind

        body, last_kind = render_segments_with_kind(
            rest, width, wave_pos, render_fn, include_images, leading, self._image_cache
        )
        return head + body, last_kind

    def render_unflushed(self, width: int, render_fn: RenderFn | None, include_images: bool = False) -> str:
        """Render the live (not yet flushed) part of the transcript."""
        rendered, _ = self._render_continuation(
            self.completed_segments(), width, self.wave_pos, render_fn, include_images
        )
        return rendered

    # -------------------------------------------------------------------------
    # Flushing
    # -------------------------------------------------------------------------

    def _emit(self, raw: str, last_kind: SegmentKind | None) -> FlushResult:
        if not raw:
            return _NOTHING

        self.has_flushed = True
        if last_kind is not None:
            self.last_flushed_kind = last_kind

        if self._owes_newline:
            self._owes_newline = False
            if raw.startswith("\n"):
                raw = raw[1:]
            else:
                logger.debug("Flush chunk after an unterminated chunk has no leading newline")
            if not raw:
                return _NOTHING

        if raw.endswith("\n"):
            return FlushResult(raw[:-1], emitted=True)
        self._owes_newline = True
        return FlushResult(raw, emitted=True)

    @staticmethod
    def _mark_flushed(seg: Segment) -> None:
        seg.flushed = True
        if isinstance(seg, TextSegment):
            if seg.renderer is not None:
                seg.renderer.mark_flushed()
                seg.flushed_rendered_pos = seg.renderer.flushed_rendered_pos
            elif seg.rendered:
                seg.flushed_rendered_pos = len(seg.rendered)

    def _streaming_text(self) -> tuple[int, TextSegment] | None:
        for i, seg in enumerate(self.segments):
            if isinstance(seg, TextSegment) and not seg.complete:
                return i, seg
        return None

    def _flush_segments(self, segments: list[Segment], width: int, render_fn: RenderFn | None) -> FlushResult:
        if not segments:
            return _NOTHING
        raw, last_kind = self._render_continuation(segments, width, -1, render_fn, True)
        for seg in segments:
            self._mark_flushed(seg)
        self.version += 1
        result = self._emit(raw, last_kind)
        logger.debug("Flushed %d segment(s), %d chars", len(segments), len(raw))
        return result

    def flush_streaming_text(self, threshold: int, width: int, render_fn: RenderFn | None) -> FlushResult:
        """Print the committed part of the streaming text segment.

        Only runs once at least ``threshold`` raw characters are unflushed.
        Complete segments before the streaming one are printed first so
        scrollback stays in order.
        """
        found = self._streaming_text()
        if found is None:
            return _NOTHING
        idx, seg = found

        text = seg.text
        if len(text) - seg.flushed_pos < threshold:
            return _NOTHING

        preceding = [s for s in self.segments[:idx] if not s.flushed]
        if any(not _is_flushable(s) for s in preceding):
            logger.debug("Streaming flush skipped: earlier segment still open")
            return _NOTHING

        if seg.renderer is not None:
            committed = seg.renderer.committed_markdown_len()
            if committed <= seg.flushed_pos:
                return _NOTHING
            chunk = seg.renderer.rendered_unflushed()
            if not chunk:
                return _NOTHING
            new_flushed_pos = committed
            new_rendered_pos = None
        else:
            safe = find_safe_boundary_incremental(text, seg.flushed_pos, self._settings.safe_boundary_min_length)
            if safe <= seg.flushed_pos or render_fn is None:
                return _NOTHING
            rendered_all = render_fn(text[:safe], width)
            if not rendered_all or seg.flushed_rendered_pos >= len(rendered_all):
                return _NOTHING
            chunk = safe_slice(rendered_all, seg.flushed_rendered_pos)
            new_flushed_pos = safe
            new_rendered_pos = len(rendered_all)

        raw, prev_kind = self._render_continuation(preceding, width, -1, render_fn, True)
        for s in preceding:
            self._mark_flushed(s)
        if seg.flushed_pos == 0 and prev_kind is not None:
            raw += segment_separator(prev_kind, SegmentKind.TEXT)
        raw += chunk

        seg.flushed_pos = new_flushed_pos
        if seg.renderer is not None:
            seg.renderer.mark_flushed()
            seg.flushed_rendered_pos = seg.renderer.flushed_rendered_pos
        else:
            seg.flushed_rendered_pos = new_rendered_pos or 0
        self.version += 1

        logger.debug(
            "Streaming flush: flushed_pos=%d flushed_rendered_pos=%d chunk=%d",
            seg.flushed_pos,
            seg.flushed_rendered_pos,
            len(chunk),
        )
        return self._emit(raw, SegmentKind.TEXT)

    def flush_to_scrollback(self, width: int, min_keep: int, render_fn: RenderFn | None) -> FlushResult:
        """Print completed segments, keeping the last ``min_keep`` on screen.

        Images and diffs are always printed, together with everything before
        them. Incomplete text and pending tools end the flushable run.
        """
        run: list[Segment] = []
        for seg in self.segments:
            if seg.flushed:
                continue
            if not _is_flushable(seg):
                break
            run.append(seg)

        count = len(run)
        last_special = max(
            (i for i, seg in enumerate(run) if isinstance(seg, ImageSegment | DiffSegment)),
            default=-1,
        )
        flush_count = max(count - min_keep, last_special + 1, 0)
        if flush_count == 0:
            return _NOTHING
        return self._flush_segments(run[:flush_count], width, render_fn)

    def flush_all_remaining(self, width: int, render_fn: RenderFn | None) -> FlushResult:
        """Complete open text and print everything except pending tools."""
        self.complete_text(render_fn, width)
        to_flush: list[Segment] = []
        for seg in self.segments:
            if seg.flushed:
                continue
            if isinstance(seg, ToolSegment) and seg.is_pending:
                break
            to_flush.append(seg)
        return self._flush_segments(to_flush, width, render_fn)

    def flush_before_external_ui(self, width: int, render_fn: RenderFn | None) -> FlushResult:
        """Print completed segments but keep the last one visible for context."""
        unflushed = [seg for seg in self.segments if not seg.flushed]
        run: list[Segment] = []
        for seg in unflushed[:-1]:
            if not _is_flushable(seg):
                break
            run.append(seg)
        return self._flush_segments(run, width, render_fn)

    # -------------------------------------------------------------------------
    # Resize
    # -------------------------------------------------------------------------

    def resize(self, width: int) -> None:
        """Re-render live markdown at a new width.

        Output already in scrollback cannot be re-laid-out, so a renderer
        that has flushed before treats its whole re-rendered output as
        flushed.
        """
        for seg in self.segments:
            if not isinstance(seg, TextSegment) or seg.renderer is None:
                continue
            try:
                seg.renderer.resize(width)
            except MarkdownRenderError as e:
                logger.warning("Markdown re-render on resize failed: %s", e)
                seg.renderer = None
                continue
            if seg.flushed_pos > 0:
                seg.renderer.mark_flushed()
                seg.flushed_pos = seg.renderer.committed_markdown_len()
            seg.flushed_rendered_pos = seg.renderer.flushed_rendered_pos
        self.version += 1


def count_lines(content: str) -> int:
    return content.count("\n")


def split_lines(content: str) -> list[str]:
    """Split on newlines without a trailing empty element."""
    if not content:
        return []
    lines = content.split("\n")
    if lines[-1] == "":
        lines.pop()
    return lines
