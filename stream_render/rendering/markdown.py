"""Markdown rendering through rich with a width-keyed console cache.

Creating a rich Console is comparatively expensive, so consoles are kept in a
small LRU keyed by width and shared by every segment rendering at that width.
The cache is an explicit object; :func:`default_renderer_cache` hands out a
process-wide instance for callers that do not inject their own.
"""

from __future__ import annotations

import threading
from collections import OrderedDict
from io import StringIO

from rich.console import Console
from rich.markdown import Markdown

from stream_render._config import get_settings
from stream_render._logger import get_logger

logger = get_logger(__name__)

__all__ = [
    "MarkdownRenderError",
    "MarkdownRendererCache",
    "default_renderer_cache",
    "render_markdown",
]


# =============================================================================
# Exceptions
# =============================================================================


class MarkdownRenderError(Exception):
    """Raised when rich fails to render a markdown document."""

    def __init__(self, message: str, cause: Exception | None = None):
        self.cause = cause
        super().__init__(message)


# =============================================================================
# Renderer Cache
# =============================================================================


class MarkdownRendererCache:
    """LRU of rich consoles keyed by render width.

    Rendering holds the cache lock, so a console is never captured by two
    threads at once.
    """

    def __init__(self, max_size: int | None = None, code_theme: str | None = None) -> None:
        settings = get_settings()
        self._max_size = max_size or settings.renderer_cache_size
        self._code_theme = code_theme or settings.code_theme
        self._consoles: OrderedDict[int, Console] = OrderedDict()
        self._lock = threading.RLock()

    @property
    def code_theme(self) -> str:
        return self._code_theme

    def __len__(self) -> int:
        with self._lock:
            return len(self._consoles)

    def get(self, width: int) -> Console:
        """Return the console for ``width``, creating it on first use."""
        with self._lock:
            console = self._consoles.get(width)
            if console is not None:
                self._consoles.move_to_end(width)
                return console

            console = Console(
                file=StringIO(),
                force_terminal=True,
                width=width,
                no_color=False,
            )
            self._consoles[width] = console
            while len(self._consoles) > self._max_size:
                evicted, _ = self._consoles.popitem(last=False)
                logger.debug("Evicted markdown console for width %d", evicted)
            return console

    def render(self, text: str, width: int) -> str:
        """Render markdown to an ANSI string.

        Raises:
            MarkdownRenderError: If rich fails on the document.
        """
        if width <= 0:
            raise MarkdownRenderError(f"Invalid render width: {width}")
        with self._lock:
            console = self.get(width)
            try:
                with console.capture() as capture:
                    console.print(Markdown(text, code_theme=self._code_theme))
            except Exception as e:
                raise MarkdownRenderError(f"Failed to render markdown: {e}", cause=e) from e
            return capture.get()

    def clear(self) -> None:
        with self._lock:
            self._consoles.clear()


_default_cache: MarkdownRendererCache | None = None
_default_cache_lock = threading.Lock()


def default_renderer_cache() -> MarkdownRendererCache:
    """Return the shared process-wide renderer cache."""
    global _default_cache
    with _default_cache_lock:
        if _default_cache is None:
            _default_cache = MarkdownRendererCache()
        return _default_cache


def render_markdown(text: str, width: int, cache: MarkdownRendererCache | None = None) -> str:
    """Render a complete markdown document for display.

    Leading and trailing newlines are trimmed. On any rendering failure the
    original text is returned unchanged so content is never lost.
    """
    if not text:
        return ""
    cache = cache or default_renderer_cache()
    try:
        rendered = cache.render(text, width)
    except MarkdownRenderError as e:
        logger.warning("Markdown render failed, showing raw text: %s", e)
        return text
    return rendered.strip("\n")
