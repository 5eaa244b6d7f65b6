"""Stream adapter: provider events in, deduplicated :data:`StreamEvent` out.

The adapter owns a bounded anyio memory object stream. One worker runs
:meth:`StreamAdapter.process_stream` and the consumer iterates
:meth:`StreamAdapter.events`. Sends block while the buffer is full, so no
event is ever dropped.

Example::

    adapter = StreamAdapter()
    async with anyio.create_task_group() as tg:
        tg.start_soon(adapter.process_stream, provider_stream)
        async for event in adapter.events():
            tracker.apply_event(event, width)
"""

from __future__ import annotations

import base64
import binascii
import json
import time
from collections.abc import AsyncIterator, Hashable
from dataclasses import dataclass, field
from typing import Any

import anyio
from anyio.streams.memory import MemoryObjectReceiveStream, MemoryObjectSendStream
from pydantic import ValidationError

from stream_render._config import get_settings
from stream_render._logger import get_logger
from stream_render.ansi import strip_all_ansi
from stream_render.events import (
    DiffData,
    DiffEvent,
    DoneEvent,
    ErrorEvent,
    ImageEvent,
    PhaseEvent,
    ProviderEvent,
    ProviderEventType,
    ProviderStream,
    RetryEvent,
    StreamEvent,
    TextEvent,
    ToolCall,
    ToolEndEvent,
    ToolStartEvent,
    UsageEvent,
)

logger = get_logger(__name__)

__all__ = [
    "DIFF_MARKER",
    "IMAGE_MARKER",
    "SeenSet",
    "SessionStats",
    "StreamAdapter",
    "StreamClosedError",
    "extract_tool_info",
    "parse_diff_markers",
    "parse_image_markers",
]

DIFF_MARKER = "__DIFF__:"
IMAGE_MARKER = "__IMAGE__:"

# =============================================================================
# Exceptions
# =============================================================================


class StreamClosedError(Exception):
    """Raised when emitting on an adapter whose send side is closed."""


# =============================================================================
# Bookkeeping
# =============================================================================


class SeenSet:
    """Set of keys seen at least once."""

    def __init__(self) -> None:
        self._keys: set[Hashable] = set()

    def __len__(self) -> int:
        return len(self._keys)

    def __contains__(self, key: object) -> bool:
        return key in self._keys

    def mark_seen(self, key: Hashable) -> bool:
        """Record ``key``; returns True only the first time."""
        if key in self._keys:
            return False
        self._keys.add(key)
        return True

    def was_seen(self, key: Hashable) -> bool:
        return key in self._keys

    def discard(self, key: Hashable) -> None:
        self._keys.discard(key)


@dataclass
class SessionStats:
    """Token and timing totals for one session.

    Time is split between the model (``llm_time``) and tools (``tool_time``)
    by watching tool start/end transitions.
    """

    start_time: float = field(default_factory=time.monotonic)
    input_tokens: int = 0
    output_tokens: int = 0
    cached_input_tokens: int = 0
    cache_write_tokens: int = 0
    tool_call_count: int = 0
    llm_call_count: int = 0
    llm_time: float = 0.0
    tool_time: float = 0.0
    _last_event_time: float = field(default_factory=time.monotonic, repr=False)
    _in_tool: bool = field(default=False, repr=False)

    def add_usage(self, input_tokens: int, output_tokens: int, cached: int = 0, cache_write: int = 0) -> None:
        self.input_tokens += input_tokens
        self.output_tokens += output_tokens
        self.cached_input_tokens += cached
        self.cache_write_tokens += cache_write
        self.llm_call_count += 1

    def tool_start(self) -> None:
        now = time.monotonic()
        if not self._in_tool:
            self.llm_time += now - self._last_event_time
        self._last_event_time = now
        self._in_tool = True
        self.tool_call_count += 1

    def tool_end(self) -> None:
        now = time.monotonic()
        if self._in_tool:
            self.tool_time += now - self._last_event_time
        self._last_event_time = now
        self._in_tool = False

    def finalize(self) -> None:
        """Attribute the time since the last transition."""
        now = time.monotonic()
        if self._in_tool:
            self.tool_time += now - self._last_event_time
        else:
            self.llm_time += now - self._last_event_time
        self._last_event_time = now

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


# =============================================================================
# Tool Info
# =============================================================================


def _format_arg_value(value: Any) -> str | None:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        return str(int(value)) if value.is_integer() else f"{value:g}"
    if isinstance(value, str):
        # Model-written arguments may carry escape sequences.
        value = strip_all_ansi(value)
        if value:
            return value if len(value) <= 200 else value[:197] + "..."
    return None


def extract_tool_info(call: ToolCall, max_len: int = 500, max_params: int = 5) -> str:
    """Short argument preview for a tool row, e.g. ``(main.py)`` or ``(path:a, limit:5)``.

    Only scalar arguments are shown, sorted by name. A single argument is
    shown without its name.
    """
    args = call.arguments
    if isinstance(args, str | bytes):
        try:
            args = json.loads(args)
        except ValueError:
            return ""
    if not isinstance(args, dict) or not args:
        return ""

    pairs = [(k, v) for k, v in ((k, _format_arg_value(v)) for k, v in args.items()) if v is not None]
    if not pairs:
        return ""
    pairs.sort()

    if len(pairs) == 1:
        result = f"({pairs[0][1]})"
    else:
        parts = [f"{k}:{v}" for k, v in pairs[:max_params]]
        if len(pairs) > max_params:
            parts.append("...")
        result = "(" + ", ".join(parts) + ")"

    if len(result) > max_len:
        result = result[: max_len - 4] + "...)"
    return result


# =============================================================================
# Adapter
# =============================================================================


class StreamAdapter:
    """Bridge from a provider stream to a bounded channel of stream events."""

    def __init__(self, buffer_size: int | None = None) -> None:
        size = buffer_size if buffer_size and buffer_size > 0 else get_settings().stream_buffer_size
        self._send: MemoryObjectSendStream[StreamEvent]
        self._receive: MemoryObjectReceiveStream[StreamEvent]
        self._send, self._receive = anyio.create_memory_object_stream(size)
        self.stats = SessionStats()
        self._seen_starts = SeenSet()
        self._seen_ends = SeenSet()

    @property
    def receive_stream(self) -> MemoryObjectReceiveStream[StreamEvent]:
        return self._receive

    async def events(self) -> AsyncIterator[StreamEvent]:
        """Yield events until the send side closes."""
        async with self._receive:
            async for event in self._receive:
                yield event

    async def emit(self, event: StreamEvent) -> None:
        """Send one event, waiting while the buffer is full."""
        try:
            await self._send.send(event)
        except (anyio.ClosedResourceError, anyio.BrokenResourceError) as e:
            raise StreamClosedError(f"Cannot emit {type(event).__name__}: stream is closed") from e

    async def close(self) -> None:
        await self._send.aclose()

    async def emit_error_and_close(self, error: BaseException) -> None:
        """Report a failure that happened before streaming could start."""
        try:
            await self.emit(ErrorEvent(error))
        finally:
            await self.close()

    async def process_stream(
        self,
        stream: ProviderStream,
        cancel: anyio.CancelScope | anyio.Event | None = None,
    ) -> None:
        """Drain ``stream`` into the channel, then close it.

        Args:
            stream: Provider stream to read with ``recv()``.
            cancel: Scope or event that signals user cancellation. A transport
                error raised after cancellation was requested ends the stream
                with :class:`DoneEvent` instead of :class:`ErrorEvent`.
        """
        total_tokens = 0
        try:
            while True:
                try:
                    event = await stream.recv()
                except (EOFError, StopAsyncIteration):
                    await self.emit(DoneEvent(total_tokens))
                    return
                except Exception as e:
                    if _cancel_requested(cancel):
                        logger.debug("Stream ended by cancellation: %s", e)
                        await self.emit(DoneEvent(total_tokens))
                    else:
                        logger.warning("Provider stream failed: %s", e)
                        await self.emit(ErrorEvent(e))
                    return

                if event.type == ProviderEventType.ERROR and event.error is not None:
                    await self.emit(ErrorEvent(event.error))
                    return
                if event.type == ProviderEventType.USAGE and event.usage is not None:
                    total_tokens = event.usage.output_tokens
                await self._dispatch(event)
        except StreamClosedError:
            logger.debug("Consumer went away; stopping stream processing")
        finally:
            self.stats.finalize()
            await self.close()

    async def _dispatch(self, event: ProviderEvent) -> None:
        match event.type:
            case ProviderEventType.TEXT_DELTA:
                if event.text:
                    await self.emit(TextEvent(event.text))

            case ProviderEventType.TOOL_CALL:
                if event.tool is None:
                    return
                call_id = event.tool_call_id or event.tool.id
                if call_id and not self._seen_starts.mark_seen(call_id):
                    return
                info = event.tool_info or extract_tool_info(event.tool)
                self.stats.tool_start()
                await self.emit(ToolStartEvent(call_id, event.tool.name, info, event.tool.arguments))

            case ProviderEventType.TOOL_EXEC_START:
                call_id = event.tool_call_id
                if call_id and not self._seen_starts.mark_seen(call_id):
                    return
                self.stats.tool_start()
                await self.emit(ToolStartEvent(call_id, event.tool_name, event.tool_info))

            case ProviderEventType.TOOL_EXEC_END:
                call_id = event.tool_call_id
                if call_id and not self._seen_ends.mark_seen(call_id):
                    return
                self.stats.tool_end()
                await self.emit(ToolEndEvent(call_id, event.tool_name, event.tool_info, event.tool_success))
                images = list(event.tool_images)
                diffs = list(event.tool_diffs)
                if event.tool_output:
                    images.extend(parse_image_markers(event.tool_output))
                    diffs.extend(parse_diff_markers(event.tool_output))
                for path in images:
                    await self.emit(ImageEvent(path))
                for d in diffs:
                    await self.emit(DiffEvent(d.file, d.old, d.new, d.line))

            case ProviderEventType.RETRY:
                await self.emit(RetryEvent(event.retry_attempt, event.retry_max_attempts, event.retry_wait_secs))

            case ProviderEventType.USAGE:
                if event.usage is None:
                    return
                u = event.usage
                self.stats.add_usage(u.input_tokens, u.output_tokens, u.cached_input_tokens, u.cache_write_tokens)
                await self.emit(
                    UsageEvent(u.input_tokens, u.output_tokens, u.cached_input_tokens, u.cache_write_tokens)
                )

            case ProviderEventType.PHASE:
                if event.text:
                    await self.emit(PhaseEvent(event.text))


def _cancel_requested(cancel: anyio.CancelScope | anyio.Event | None) -> bool:
    if cancel is None:
        return False
    if isinstance(cancel, anyio.CancelScope):
        return cancel.cancel_called
    return cancel.is_set()


# =============================================================================
# Markers
# =============================================================================


def parse_diff_markers(output: str, max_size: int | None = None) -> list[DiffData]:
    """Extract ``__DIFF__:<base64 JSON>`` payloads from tool output.

    Lines that fail to decode, exceed ``max_size`` bytes or name no file
    are skipped.
    """
    limit = max_size or get_settings().max_diff_size
    diffs: list[DiffData] = []
    for line in output.split("\n"):
        if not line.startswith(DIFF_MARKER):
            continue
        encoded = line[len(DIFF_MARKER) :].strip()
        if not encoded:
            continue
        # Estimate before decoding so huge payloads are never allocated.
        if len(encoded) * 3 // 4 > limit:
            logger.debug("Dropping oversize diff marker (%d encoded bytes)", len(encoded))
            continue
        try:
            data = DiffData.model_validate_json(base64.b64decode(encoded, validate=True))
        except (binascii.Error, ValidationError) as e:
            logger.debug("Dropping malformed diff marker: %s", e)
            continue
        if data.file:
            diffs.append(data)
    return diffs


def parse_image_markers(output: str) -> list[str]:
    """Extract ``__IMAGE__:<path>`` paths from tool output."""
    paths: list[str] = []
    for line in output.split("\n"):
        if line.startswith(IMAGE_MARKER):
            path = line[len(IMAGE_MARKER) :].strip()
            if path:
                paths.append(path)
    return paths
