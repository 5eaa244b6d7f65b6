"""Progress of spawned sub-tasks (``spawn_agent`` tool calls).

Sub-task workers report events from their own threads, so
:class:`SubagentTracker` guards all state with a lock. Removed sub-tasks are
tombstoned so late events cannot resurrect them.
"""

from __future__ import annotations

import enum
import threading
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from stream_render._config import RenderSettings, get_settings
from stream_render._logger import get_logger
from stream_render.streaming.adapter import SeenSet
from stream_render.transcript.segments import (
    ERROR_CIRCLE,
    SUCCESS_CIRCLE,
    WORKING_CIRCLE,
    ToolSegment,
    extract_agent_name,
)

if TYPE_CHECKING:
    from stream_render.transcript.tracker import SegmentTracker

logger = get_logger(__name__)

__all__ = [
    "SubagentEvent",
    "SubagentEventType",
    "SubagentProgress",
    "SubagentTool",
    "SubagentTracker",
    "build_subagent_preview",
    "format_tokens",
    "handle_subagent_progress",
]


class SubagentEventType(str, enum.Enum):
    INIT = "init"
    TEXT = "text"
    TOOL_START = "tool_start"
    TOOL_END = "tool_end"
    PHASE = "phase"
    USAGE = "usage"
    DONE = "done"


@dataclass(frozen=True)
class SubagentEvent:
    """One progress report from a sub-task."""

    type: SubagentEventType
    text: str = ""
    tool_name: str = ""
    tool_info: str = ""
    success: bool = False
    phase: str = ""
    input_tokens: int = 0
    output_tokens: int = 0
    provider: str = ""
    model: str = ""


@dataclass
class SubagentTool:
    name: str
    info: str = ""
    success: bool = False
    done: bool = False

    def label(self) -> str:
        return f"{self.name} {self.info}" if self.info else self.name


def format_tokens(n: int) -> str:
    """``999``, ``1.5k``, ``12k``."""
    if n < 1000:
        return str(n)
    k = n / 1000
    if k < 10:
        return f"{k:.1f}k"
    return f"{k:.0f}k"


@dataclass(eq=False)
class SubagentProgress:
    """Aggregated state of one sub-task.

    Attributes:
        call_id: ID of the parent's spawn_agent call.
        agent_name: Display name, e.g. ``reviewer``.
        text_cap: Characters of text kept before ``truncated`` is set.
        truncated: The text buffer hit its cap and stopped growing.
        preview_lines: Last few lines of text, updated even after truncation.
    """

    call_id: str
    agent_name: str = ""
    text_cap: int = 64 * 1024
    active_tools: list[SubagentTool] = field(default_factory=list)
    completed_tools: list[SubagentTool] = field(default_factory=list)
    phase: str = ""
    provider: str = ""
    model: str = ""
    tool_calls: int = 0
    input_tokens: int = 0
    output_tokens: int = 0
    start_time: float = field(default_factory=time.monotonic)
    end_time: float | None = None
    done: bool = False
    expanded: bool = False
    truncated: bool = False
    preview_lines: list[str] = field(default_factory=list)
    _text: list[str] = field(default_factory=list, repr=False)
    _text_len: int = field(default=0, repr=False)

    @property
    def text(self) -> str:
        return "".join(self._text)

    def add_text(self, delta: str, max_preview: int = 4) -> None:
        if not self.truncated:
            if self._text_len + len(delta) <= self.text_cap:
                self._text.append(delta)
                self._text_len += len(delta)
            else:
                room = self.text_cap - self._text_len
                if room > 0:
                    self._text.append(delta[:room])
                    self._text_len += room
                self.truncated = True
        self._update_preview(delta, max_preview)

    def _update_preview(self, delta: str, max_lines: int) -> None:
        # The last entry is the line still being written.
        parts = delta.split("\n")
        if self.preview_lines:
            self.preview_lines[-1] += parts[0]
        elif parts[0]:
            self.preview_lines.append(parts[0])
        self.preview_lines.extend(parts[1:])

        keep = max_lines + 1 if self.preview_lines and not self.preview_lines[-1] else max_lines
        if len(self.preview_lines) > keep:
            del self.preview_lines[: len(self.preview_lines) - keep]

    def tool_start(self, name: str, info: str = "") -> None:
        self.active_tools.append(SubagentTool(name, info))
        self.tool_calls += 1

    def tool_end(self, name: str, success: bool) -> None:
        """Move the first active tool called ``name`` to the completed list."""
        for i, tool in enumerate(self.active_tools):
            if tool.name == name:
                tool.success = success
                tool.done = True
                self.completed_tools.append(tool)
                del self.active_tools[i]
                return

    def set_phase(self, phase: str) -> None:
        self.phase = phase

    def add_usage(self, input_tokens: int, output_tokens: int) -> None:
        self.input_tokens += input_tokens
        self.output_tokens += output_tokens

    def init(self, provider: str, model: str) -> None:
        self.provider = provider
        self.model = model

    def mark_done(self) -> None:
        self.done = True
        if self.end_time is None:
            self.end_time = time.monotonic()

    def render_header(self) -> str:
        header = f"@{self.agent_name}  {self.tool_calls} calls · {format_tokens(self.input_tokens + self.output_tokens)} tokens"
        if self.expanded:
            header += "  [expanded]"
        return header

    def render(self, expanded: bool, max_preview: int = 4) -> str:
        """Active tools, then either everything (expanded) or the last text lines."""
        out = [f"  │ {WORKING_CIRCLE} {tool.label()}\n" for tool in self.active_tools]

        if expanded:
            for tool in self.completed_tools:
                circle = SUCCESS_CIRCLE if tool.success else ERROR_CIRCLE
                out.append(f"  │ {circle} {tool.label()}\n")
            if self._text_len:
                out.append("  │\n")
                out.extend(f"  │ {line}\n" for line in self.text.split("\n"))
                if self.truncated:
                    out.append("  │ ... (output truncated)\n")
        else:
            out.extend(f"  │ {line}\n" for line in self.preview_lines[-max_preview:] if line)

        return "".join(out)


def build_subagent_preview(progress: SubagentProgress, max_lines: int = 4) -> list[str]:
    """Lines shown under a running spawn_agent row.

    Active tools come first, then the most recent completed tools. Text lines
    are used only when there are no tools to show.
    """
    preview = [f"{WORKING_CIRCLE} {tool.label()}" for tool in progress.active_tools]

    remaining = max_lines - len(preview)
    if remaining > 0 and progress.completed_tools:
        for tool in progress.completed_tools[-remaining:]:
            circle = SUCCESS_CIRCLE if tool.success else ERROR_CIRCLE
            preview.append(f"{circle} {tool.label()}")

    remaining = max_lines - len(preview)
    if remaining > 0 and not preview:
        preview.extend(line for line in progress.preview_lines[-remaining:] if line)

    return preview[:max_lines]


class SubagentTracker:
    """Thread-safe registry of sub-task progress keyed by spawn_agent call ID."""

    def __init__(self, settings: RenderSettings | None = None) -> None:
        self._settings = settings or get_settings()
        self._lock = threading.RLock()
        self._agents: dict[str, SubagentProgress] = {}
        self._removed = SeenSet()
        self._expanded = False
        self._main_provider = ""
        self._main_model = ""

    @property
    def expanded(self) -> bool:
        with self._lock:
            return self._expanded

    def toggle_expanded(self) -> bool:
        with self._lock:
            self._expanded = not self._expanded
            return self._expanded

    def set_main_provider_model(self, provider: str, model: str) -> None:
        with self._lock:
            self._main_provider = provider
            self._main_model = model

    def get_or_create(self, call_id: str, agent_name: str = "") -> SubagentProgress | None:
        """Return the progress for ``call_id``, or None if it was removed."""
        with self._lock:
            if self._removed.was_seen(call_id):
                return None
            progress = self._agents.get(call_id)
            if progress is None:
                progress = SubagentProgress(
                    call_id=call_id,
                    agent_name=agent_name,
                    text_cap=self._settings.subagent_text_buffer_cap,
                )
                self._agents[call_id] = progress
            return progress

    def get(self, call_id: str) -> SubagentProgress | None:
        with self._lock:
            return self._agents.get(call_id)

    def remove(self, call_id: str) -> None:
        """Stop tracking ``call_id``; only tracked IDs are tombstoned."""
        with self._lock:
            if self._agents.pop(call_id, None) is not None:
                self._removed.mark_seen(call_id)

    def mark_done(self, call_id: str) -> None:
        with self._lock:
            progress = self._agents.get(call_id)
            if progress is not None:
                progress.mark_done()

    def active_agents(self) -> list[SubagentProgress]:
        """Running sub-tasks, oldest first."""
        with self._lock:
            active = [p for p in self._agents.values() if not p.done]
        return sorted(active, key=lambda p: p.start_time)

    def has_active(self) -> bool:
        with self._lock:
            return any(not p.done for p in self._agents.values())

    def handle_init(self, call_id: str, provider: str, model: str) -> None:
        """Record the sub-task's provider and model when they differ from the main one."""
        with self._lock:
            progress = self._agents.get(call_id)
            if progress is None:
                return
            if provider != self._main_provider or model != self._main_model:
                progress.init(provider, model)

    def handle_text_delta(self, call_id: str, text: str) -> None:
        with self._lock:
            progress = self._agents.get(call_id)
            if progress is not None:
                progress.add_text(text, self._settings.subagent_preview_lines)

    def handle_tool_start(self, call_id: str, name: str, info: str = "") -> None:
        with self._lock:
            progress = self._agents.get(call_id)
            if progress is not None:
                progress.tool_start(name, info)

    def handle_tool_end(self, call_id: str, name: str, success: bool) -> None:
        with self._lock:
            progress = self._agents.get(call_id)
            if progress is not None:
                progress.tool_end(name, success)

    def handle_phase(self, call_id: str, phase: str) -> None:
        with self._lock:
            progress = self._agents.get(call_id)
            if progress is not None:
                progress.set_phase(phase)

    def handle_usage(self, call_id: str, input_tokens: int, output_tokens: int) -> None:
        with self._lock:
            progress = self._agents.get(call_id)
            if progress is not None:
                progress.add_usage(input_tokens, output_tokens)

    def dispatch(self, call_id: str, event: SubagentEvent) -> None:
        """Apply ``event`` to the sub-task ``call_id``."""
        match event.type:
            case SubagentEventType.INIT:
                self.handle_init(call_id, event.provider, event.model)
            case SubagentEventType.TEXT:
                self.handle_text_delta(call_id, event.text)
            case SubagentEventType.TOOL_START:
                self.handle_tool_start(call_id, event.tool_name, event.tool_info)
            case SubagentEventType.TOOL_END:
                self.handle_tool_end(call_id, event.tool_name, event.success)
            case SubagentEventType.PHASE:
                self.handle_phase(call_id, event.phase)
            case SubagentEventType.USAGE:
                self.handle_usage(call_id, event.input_tokens, event.output_tokens)
            case SubagentEventType.DONE:
                self.mark_done(call_id)


def handle_subagent_progress(
    segments: SegmentTracker,
    subagents: SubagentTracker,
    call_id: str,
    event: SubagentEvent,
) -> bool:
    """Apply a sub-task event and refresh its spawn_agent row.

    Returns:
        False if the sub-task was already removed and the event was dropped.
    """
    agent_name = ""
    for seg in segments.segments:
        if isinstance(seg, ToolSegment) and seg.call_id == call_id:
            agent_name = extract_agent_name(seg.info)
            break

    progress = subagents.get_or_create(call_id, agent_name)
    if progress is None:
        logger.debug("Dropping event for removed sub-task %s", call_id)
        return False

    subagents.dispatch(call_id, event)
    segments.update_from_subagent(call_id, progress)
    return True
