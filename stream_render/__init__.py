"""stream-render: terminal rendering core for streaming LLM transcripts."""

import importlib.metadata

from stream_render._config import RenderSettings, get_settings
from stream_render.events import (
    DiffEvent,
    DoneEvent,
    ErrorEvent,
    ImageEvent,
    PhaseEvent,
    ProviderEvent,
    ProviderEventType,
    RetryEvent,
    StreamEvent,
    TextEvent,
    ToolEndEvent,
    ToolStartEvent,
    UsageEvent,
)
from stream_render.rendering.markdown import render_markdown
from stream_render.rendering.stream import StreamingMarkdownRenderer
from stream_render.streaming.adapter import StreamAdapter, StreamClosedError
from stream_render.transcript.subagents import SubagentTracker, handle_subagent_progress
from stream_render.transcript.tracker import FlushResult, SegmentTracker

__all__ = [
    "DiffEvent",
    "DoneEvent",
    "ErrorEvent",
    "FlushResult",
    "ImageEvent",
    "PhaseEvent",
    "ProviderEvent",
    "ProviderEventType",
    "RenderSettings",
    "RetryEvent",
    "SegmentTracker",
    "StreamAdapter",
    "StreamClosedError",
    "StreamEvent",
    "StreamingMarkdownRenderer",
    "SubagentTracker",
    "TextEvent",
    "ToolEndEvent",
    "ToolStartEvent",
    "UsageEvent",
    "__version__",
    "get_settings",
    "handle_subagent_progress",
    "render_markdown",
]

try:
    __version__ = importlib.metadata.version("stream-render")
except importlib.metadata.PackageNotFoundError:
    __version__ = "0.0.0"  # Fallback for development mode
