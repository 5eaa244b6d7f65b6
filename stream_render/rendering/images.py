"""Inline image rendering with a bounded cache.

Encoding an image means reading and base64-encoding the whole file, so the
escape sequence is produced once per path and cached. Failures are cached
too (as an empty string) to avoid retrying a broken path on every frame.
"""

from __future__ import annotations

import base64
import threading
from collections import OrderedDict
from collections.abc import Callable
from pathlib import Path

from stream_render._config import get_settings
from stream_render._logger import get_logger

logger = get_logger(__name__)

__all__ = [
    "ImageCache",
    "ImageEncoder",
    "default_image_cache",
    "encode_iterm2_inline",
]

ImageEncoder = Callable[[str], str]
"""Turns an image path into terminal escape sequences; raises on failure."""


def encode_iterm2_inline(path: str) -> str:
    """Encode an image file with the iTerm2 inline image protocol (OSC 1337)."""
    data = Path(path).read_bytes()
    if not data:
        return ""
    name = base64.b64encode(Path(path).name.encode()).decode("ascii")
    payload = base64.b64encode(data).decode("ascii")
    return f"\x1b]1337;File=name={name};size={len(data)};inline=1;preserveAspectRatio=1:{payload}\x07"


class ImageCache:
    """Lock-guarded cache of rendered images, evicting in insertion order."""

    def __init__(self, max_size: int | None = None, encoder: ImageEncoder | None = None) -> None:
        self._max_size = max_size or get_settings().image_cache_size
        self._encoder = encoder or encode_iterm2_inline
        self._entries: OrderedDict[str, str] = OrderedDict()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, path: object) -> bool:
        with self._lock:
            return path in self._entries

    def render(self, path: str) -> str:
        """Return the escape sequence for ``path``, or ``""`` if it cannot be shown."""
        if not path:
            return ""

        with self._lock:
            cached = self._entries.get(path)
        if cached is not None:
            return cached

        try:
            rendered = self._encoder(path)
        except Exception as e:
            logger.debug("Failed to render image %s: %s", path, e)
            rendered = ""

        with self._lock:
            self._store(path, rendered)
        return rendered

    def _store(self, path: str, value: str) -> None:
        # Updating an existing entry keeps its position.
        if path in self._entries:
            self._entries[path] = value
            return
        while self._entries and len(self._entries) >= self._max_size:
            self._entries.popitem(last=False)
        self._entries[path] = value

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()


_default_cache: ImageCache | None = None
_default_cache_lock = threading.Lock()


def default_image_cache() -> ImageCache:
    """Return the shared process-wide image cache."""
    global _default_cache
    with _default_cache_lock:
        if _default_cache is None:
            _default_cache = ImageCache()
        return _default_cache
