"""Provider stream adaptation and paced text release."""

from stream_render.streaming.adapter import (
    SeenSet,
    SessionStats,
    StreamAdapter,
    StreamClosedError,
    parse_diff_markers,
    parse_image_markers,
)
from stream_render.streaming.smooth import SmoothBuffer

__all__ = [
    "SeenSet",
    "SessionStats",
    "SmoothBuffer",
    "StreamAdapter",
    "StreamClosedError",
    "parse_diff_markers",
    "parse_image_markers",
]
