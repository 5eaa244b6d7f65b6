"""Shared fixtures for stream-render tests."""

import os
from collections.abc import Iterator

import pytest

from stream_render._config import RenderSettings, get_settings
from stream_render.rendering.images import ImageCache
from stream_render.rendering.markdown import MarkdownRendererCache


@pytest.fixture(autouse=True)
def _clean_settings(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    """Drop STREAM_RENDER_* overrides and reset the cached settings around each test."""
    for key in list(os.environ):
        if key.startswith("STREAM_RENDER_"):
            monkeypatch.delenv(key)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def settings() -> RenderSettings:
    """Default settings, isolated from any .env file."""
    return RenderSettings(_env_file=None)


@pytest.fixture
def renderer_cache() -> MarkdownRendererCache:
    """A private markdown console cache."""
    return MarkdownRendererCache(max_size=4)


@pytest.fixture
def fake_image_cache() -> ImageCache:
    """Image cache whose encoder returns a readable placeholder."""
    return ImageCache(max_size=8, encoder=lambda path: f"<image {path}>")


def plain_render(text: str, width: int) -> str:
    """Deterministic stand-in for markdown rendering."""
    return text.rstrip("\n")


@pytest.fixture
def render_fn():
    """Render function that returns text without trailing newlines."""
    return plain_render
