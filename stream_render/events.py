"""Event types flowing into and out of the stream adapter.

Provider side: a pull-based stream yields :class:`ProviderEvent` records.
Consumer side: the adapter converts them into the :data:`StreamEvent` union,
which the segment tracker applies one at a time.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Protocol, TypeAlias

from pydantic import BaseModel, ConfigDict, Field

# =============================================================================
# Provider Event Model
# =============================================================================


class ProviderEventType(str, enum.Enum):
    """Type tag of a raw provider event."""

    TEXT_DELTA = "text_delta"
    TOOL_CALL = "tool_call"
    TOOL_EXEC_START = "tool_exec_start"
    TOOL_EXEC_END = "tool_exec_end"
    USAGE = "usage"
    PHASE = "phase"
    RETRY = "retry"
    ERROR = "error"


class ToolCall(BaseModel):
    """A model-requested tool invocation."""

    id: str = ""
    name: str = ""
    arguments: Any = None


class Usage(BaseModel):
    """Token counts reported by the provider."""

    input_tokens: int = 0
    output_tokens: int = 0
    cached_input_tokens: int = 0
    cache_write_tokens: int = 0


class DiffData(BaseModel):
    """File edit payload carried by tool results and ``__DIFF__`` markers.

    On the wire the fields use one-letter keys (``f``, ``o``, ``n``, ``l``);
    the long names are accepted as well.
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    file: str = Field(default="", alias="f")
    old: str = Field(default="", alias="o")
    new: str = Field(default="", alias="n")
    line: int = Field(default=0, alias="l")


@dataclass
class ProviderEvent:
    """One raw event read from a provider stream.

    Attributes:
        type: Which fields are meaningful.
        text: Text delta (TEXT_DELTA) or phase label (PHASE).
        tool_call_id: Call ID for tool events.
        tool: Tool call announced during streaming (TOOL_CALL).
        tool_name: Tool name for execution events.
        tool_info: Short human-readable summary of the tool arguments.
        tool_success: Outcome for TOOL_EXEC_END.
        tool_images: Image paths produced by the tool.
        tool_diffs: File diffs produced by the tool.
        tool_output: Tool result text; marker lines in it add images and diffs.
        usage: Token counts (USAGE).
        retry_attempt: Current attempt (RETRY).
        retry_max_attempts: Attempt limit (RETRY).
        retry_wait_secs: Delay before the next attempt (RETRY).
        error: Provider-reported error (ERROR).
    """

    type: ProviderEventType
    text: str = ""
    tool_call_id: str = ""
    tool: ToolCall | None = None
    tool_name: str = ""
    tool_info: str = ""
    tool_success: bool = False
    tool_images: list[str] = field(default_factory=list)
    tool_diffs: list[DiffData] = field(default_factory=list)
    tool_output: str = ""
    usage: Usage | None = None
    retry_attempt: int = 0
    retry_max_attempts: int = 0
    retry_wait_secs: float = 0.0
    error: BaseException | None = None


class ProviderStream(Protocol):
    """Pull-based provider stream.

    ``recv`` raises :class:`EOFError` or :class:`StopAsyncIteration` once the
    stream is exhausted; any other exception is a transport failure.
    """

    async def recv(self) -> ProviderEvent: ...


# =============================================================================
# Stream Events
# =============================================================================


@dataclass(frozen=True)
class TextEvent:
    """A non-empty chunk of model text."""

    text: str


@dataclass(frozen=True)
class ToolStartEvent:
    """A tool invocation started (deduplicated by call ID)."""

    call_id: str
    name: str
    info: str = ""
    args: Any = None


@dataclass(frozen=True)
class ToolEndEvent:
    """A tool invocation finished."""

    call_id: str
    name: str
    info: str = ""
    success: bool = True


@dataclass(frozen=True)
class UsageEvent:
    """Token usage update."""

    input_tokens: int = 0
    output_tokens: int = 0
    cached_tokens: int = 0
    cache_write_tokens: int = 0


@dataclass(frozen=True)
class PhaseEvent:
    """The model moved to a new phase (e.g. "Thinking")."""

    phase: str


@dataclass(frozen=True)
class RetryEvent:
    """The provider client is retrying; display only."""

    attempt: int
    max_attempts: int
    wait_secs: float


@dataclass(frozen=True)
class ImageEvent:
    """A tool produced an image to show inline."""

    path: str


@dataclass(frozen=True)
class DiffEvent:
    """A tool edited a file; ``line`` is the 1-indexed start line or 0."""

    path: str
    old: str
    new: str
    line: int = 0


@dataclass(frozen=True)
class DoneEvent:
    """The stream finished (or was cancelled)."""

    total_tokens: int = 0


@dataclass(frozen=True)
class ErrorEvent:
    """The stream failed; always the last event."""

    error: BaseException


StreamEvent: TypeAlias = (
    TextEvent
    | ToolStartEvent
    | ToolEndEvent
    | UsageEvent
    | PhaseEvent
    | RetryEvent
    | ImageEvent
    | DiffEvent
    | DoneEvent
    | ErrorEvent
)

__all__ = [
    "DiffData",
    "DiffEvent",
    "DoneEvent",
    "ErrorEvent",
    "ImageEvent",
    "PhaseEvent",
    "ProviderEvent",
    "ProviderEventType",
    "ProviderStream",
    "RetryEvent",
    "StreamEvent",
    "TextEvent",
    "ToolCall",
    "ToolEndEvent",
    "ToolStartEvent",
    "Usage",
    "UsageEvent",
]
