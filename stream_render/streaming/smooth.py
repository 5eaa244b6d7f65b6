"""Word-paced text release for smooth streaming display.

Incoming text is buffered and handed out a few words per frame. The pace
adapts to how full the buffer is: a nearly empty buffer releases one word per
frame, a nearly full one releases five.
"""

from __future__ import annotations

import threading

from stream_render._config import get_settings

__all__ = [
    "MAX_WORDS_PER_FRAME",
    "MAX_WORD_LENGTH",
    "MIN_WORDS_PER_FRAME",
    "SmoothBuffer",
    "extract_words",
]

MIN_WORDS_PER_FRAME = 1
MAX_WORDS_PER_FRAME = 5
MAX_WORD_LENGTH = 12


def extract_words(content: str, n: int) -> tuple[str, str]:
    """Split off up to ``n`` words, keeping their whitespace.

    A word longer than :data:`MAX_WORD_LENGTH` is cut and the rest of it
    stays in the remainder; the cut piece ends the extraction.

    Returns:
        ``(extracted, remaining)``.
    """
    if not content or n <= 0:
        return "", content

    pos = 0
    words = 0
    end = len(content)
    while pos < end and words < n:
        while pos < end and content[pos].isspace():
            pos += 1
        if pos >= end:
            break

        start = pos
        while pos < end and not content[pos].isspace():
            pos += 1
        if pos - start > MAX_WORD_LENGTH:
            cut = start + MAX_WORD_LENGTH
            return content[:cut], content[cut:]
        words += 1

    return content[:pos], content[pos:]


class SmoothBuffer:
    """Thread-safe buffer that releases text word by word."""

    def __init__(self, capacity: int | None = None) -> None:
        self._capacity = capacity or get_settings().smooth_buffer_capacity
        self._lock = threading.Lock()
        self._buffer = ""
        self._input_done = False

    def __len__(self) -> int:
        with self._lock:
            return len(self._buffer)

    @property
    def frame_interval(self) -> float:
        return get_settings().smooth_frame_interval

    def write(self, text: str) -> None:
        with self._lock:
            self._buffer += text

    def mark_done(self) -> None:
        """Signal that no more input will arrive."""
        with self._lock:
            self._input_done = True

    def is_drained(self) -> bool:
        with self._lock:
            return self._input_done and not self._buffer

    def is_empty(self) -> bool:
        return len(self) == 0

    def _words_per_frame(self) -> int:
        fill = len(self._buffer) / self._capacity
        if fill < 0.2:
            return MIN_WORDS_PER_FRAME
        if fill > 0.8:
            return MAX_WORDS_PER_FRAME
        return int(MIN_WORDS_PER_FRAME + (MAX_WORDS_PER_FRAME - MIN_WORDS_PER_FRAME) * fill)

    def next_words(self) -> str:
        """Release this frame's words; empty when the buffer is empty."""
        with self._lock:
            if not self._buffer:
                return ""
            out, self._buffer = extract_words(self._buffer, self._words_per_frame())
            return out

    def flush_all(self) -> str:
        """Release everything at once, e.g. before a tool row or on cancel."""
        with self._lock:
            out, self._buffer = self._buffer, ""
            return out

    def reset(self) -> None:
        with self._lock:
            self._buffer = ""
            self._input_done = False
