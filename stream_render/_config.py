"""Configuration management using pydantic-settings."""

from __future__ import annotations

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class RenderSettings(BaseSettings):
    """Tunable knobs for the rendering core.

    All settings can be overridden via environment variables with the prefix STREAM_RENDER_.
    For example, to cap diffs at 30 lines, use STREAM_RENDER_MAX_DIFF_LINES=30.
    """

    model_config = SettingsConfigDict(
        env_prefix="STREAM_RENDER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    stream_buffer_size: int = Field(default=100, gt=0)
    """Capacity of the adapter's event channel. Sends block when full."""

    wave_tick_interval: float = Field(default=0.05, gt=0)
    """Seconds between wave animation steps."""

    wave_pause_duration: float = Field(default=2.0, ge=0)
    """Seconds the wave rests (all dim) before restarting."""

    max_diff_lines: int = Field(default=50, gt=0)
    """Maximum rendered lines per diff; the remainder is reported as a count."""

    max_diff_content_width: int = Field(default=90, gt=0)
    """Upper bound for diff content columns, narrowed further by terminal width."""

    diff_context_lines: int = Field(default=2, ge=0)
    """Unchanged lines shown around each hunk."""

    max_diff_size: int = Field(default=1024 * 1024, gt=0)
    """Largest decoded payload accepted from a __DIFF__ marker, in bytes."""

    subagent_text_buffer_cap: int = Field(default=64 * 1024, gt=0)
    """Characters of subagent text retained before the buffer is marked truncated."""

    subagent_preview_lines: int = Field(default=4, gt=0)
    """Lines shown beneath a running spawn_agent tool."""

    image_cache_size: int = Field(default=100, gt=0)
    """Rendered inline images kept in the LRU cache."""

    renderer_cache_size: int = Field(default=16, gt=0)
    """Width-keyed markdown consoles kept in the LRU cache."""

    code_theme: str = "monokai"
    """Pygments theme for fenced code blocks and diff highlighting."""

    word_diff_similarity: float = Field(default=0.5, ge=0, le=1)
    """Fraction of shared non-whitespace tokens above which a line pair gets word-level highlighting."""

    safe_boundary_min_length: int = Field(default=20, ge=0)
    """Texts shorter than this never report a safe markdown boundary."""

    smooth_frame_interval: float = Field(default=0.016, gt=0)
    """Seconds per frame for smooth text release."""

    smooth_buffer_capacity: int = Field(default=500, gt=0)
    """Buffer size (characters) at which smooth release runs at full speed."""

    log_level: str = "WARNING"
    """Level of the package logger. Per-module overrides use STREAM_RENDER_LOG_LEVEL_<MODULE>."""

    log_file: str | None = None
    """Append log records to this file instead of stderr, which the live view shares."""


@lru_cache(maxsize=1)
def get_settings() -> RenderSettings:
    """Return the process-wide settings, loaded once from the environment."""
    return RenderSettings()
