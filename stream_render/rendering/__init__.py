"""Markdown, diff and image rendering to ANSI text."""

from stream_render.rendering.boundary import find_safe_boundary, find_safe_boundary_incremental
from stream_render.rendering.diff_view import render_diff_segment, render_unified_diff
from stream_render.rendering.images import ImageCache
from stream_render.rendering.markdown import MarkdownRenderError, MarkdownRendererCache, render_markdown
from stream_render.rendering.stream import StreamingMarkdownRenderer

__all__ = [
    "ImageCache",
    "MarkdownRenderError",
    "MarkdownRendererCache",
    "StreamingMarkdownRenderer",
    "find_safe_boundary",
    "find_safe_boundary_incremental",
    "render_diff_segment",
    "render_markdown",
    "render_unified_diff",
]
