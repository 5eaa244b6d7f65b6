"""Tests for stream_render._config module."""

import pytest
from pydantic import ValidationError

from stream_render._config import RenderSettings, get_settings


def test_render_settings_defaults(settings: RenderSettings) -> None:
    """Should have correct default values."""
    assert settings.stream_buffer_size == 100
    assert settings.wave_tick_interval == 0.05
    assert settings.wave_pause_duration == 2.0
    assert settings.max_diff_lines == 50
    assert settings.max_diff_content_width == 90
    assert settings.diff_context_lines == 2
    assert settings.max_diff_size == 1024 * 1024
    assert settings.subagent_text_buffer_cap == 64 * 1024
    assert settings.subagent_preview_lines == 4
    assert settings.image_cache_size == 100
    assert settings.renderer_cache_size == 16
    assert settings.code_theme == "monokai"
    assert settings.word_diff_similarity == 0.5
    assert settings.safe_boundary_min_length == 20
    assert settings.smooth_frame_interval == 0.016
    assert settings.smooth_buffer_capacity == 500
    assert settings.log_level == "WARNING"
    assert settings.log_file is None


def test_render_settings_from_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Should load from environment variables."""
    monkeypatch.setenv("STREAM_RENDER_MAX_DIFF_LINES", "30")
    monkeypatch.setenv("STREAM_RENDER_CODE_THEME", "native")
    monkeypatch.setenv("STREAM_RENDER_WORD_DIFF_SIMILARITY", "0.75")

    settings = RenderSettings(_env_file=None)
    assert settings.max_diff_lines == 30
    assert settings.code_theme == "native"
    assert settings.word_diff_similarity == 0.75


def test_render_settings_rejects_invalid_values() -> None:
    """Out-of-range values should fail validation."""
    with pytest.raises(ValidationError):
        RenderSettings(_env_file=None, stream_buffer_size=0)
    with pytest.raises(ValidationError):
        RenderSettings(_env_file=None, word_diff_similarity=1.5)


def test_get_settings_is_cached(monkeypatch: pytest.MonkeyPatch) -> None:
    """get_settings should return one instance until the cache is cleared."""
    first = get_settings()
    assert get_settings() is first

    monkeypatch.setenv("STREAM_RENDER_IMAGE_CACHE_SIZE", "7")
    assert get_settings().image_cache_size == first.image_cache_size

    get_settings.cache_clear()
    assert get_settings().image_cache_size == 7
