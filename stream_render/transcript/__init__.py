"""Transcript segments, flush bookkeeping and sub-task progress."""

from stream_render.transcript.segments import (
    DiffSegment,
    ImageSegment,
    PlainResultSegment,
    Segment,
    SegmentKind,
    TextSegment,
    ToolSegment,
    ToolStatus,
    render_segments,
)
from stream_render.transcript.subagents import (
    SubagentEvent,
    SubagentEventType,
    SubagentProgress,
    SubagentTracker,
    handle_subagent_progress,
)
from stream_render.transcript.tracker import FlushResult, SegmentTracker

__all__ = [
    "DiffSegment",
    "FlushResult",
    "ImageSegment",
    "PlainResultSegment",
    "Segment",
    "SegmentKind",
    "SegmentTracker",
    "SubagentEvent",
    "SubagentEventType",
    "SubagentProgress",
    "SubagentTracker",
    "TextSegment",
    "ToolSegment",
    "ToolStatus",
    "handle_subagent_progress",
]
