"""Tests for stream_render.rendering.stream module."""

import pytest

from stream_render.ansi import strip_all_ansi
from stream_render.rendering.markdown import MarkdownRendererCache
from stream_render.rendering.stream import StreamingMarkdownRenderer

DOC = (
    "Alpha paragraph streams first.\n\n"
    "Bravo paragraph follows it.\n\n"
    "```python\nprint('charlie block')\n```\n\n"
    "- delta item\n- echo item\n\n"
    "Foxtrot closes the answer."
)

PHRASES = [
    "Alpha paragraph streams first.",
    "Bravo paragraph follows it.",
    "charlie block",
    "delta item",
    "echo item",
    "Foxtrot closes the answer.",
]


@pytest.fixture
def renderer(renderer_cache: MarkdownRendererCache) -> StreamingMarkdownRenderer:
    return StreamingMarkdownRenderer(80, renderer_cache)


# =============================================================================
# Block Commits
# =============================================================================


def test_rejects_non_positive_width() -> None:
    """A renderer needs a positive width."""
    with pytest.raises(ValueError):
        StreamingMarkdownRenderer(0)


def test_partial_line_stays_pending(renderer: StreamingMarkdownRenderer) -> None:
    """Text without a newline is pending and not rendered."""
    renderer.write("Partial")
    assert renderer.pending_markdown() == "Partial"
    assert renderer.committed_markdown_len() == 0
    assert renderer.rendered_all() == ""


def test_paragraph_commits_on_blank_line(renderer: StreamingMarkdownRenderer) -> None:
    """A paragraph is rendered once a blank line closes it."""
    renderer.write("Hello world\n")
    assert renderer.committed_markdown_len() == 0
    assert renderer.pending_markdown() == "Hello world\n"

    renderer.write("\n")
    assert renderer.committed_markdown_len() == len("Hello world\n\n")
    assert renderer.committed_markdown() == "Hello world\n\n"
    assert renderer.pending_markdown() == ""
    assert "Hello world" in strip_all_ansi(renderer.rendered_all())
    assert not renderer.rendered_all().endswith("\n")


def test_heading_commits_immediately(renderer: StreamingMarkdownRenderer) -> None:
    """An ATX heading is complete at the end of its line."""
    renderer.write("## Section\n")
    assert renderer.committed_markdown_len() == len("## Section\n")
    assert "Section" in strip_all_ansi(renderer.rendered_all())


def test_fence_waits_for_closing_fence(renderer: StreamingMarkdownRenderer) -> None:
    """Blank lines inside a fence do not commit the block."""
    renderer.write("```python\nx = 1\n\n")
    assert renderer.committed_markdown_len() == 0
    assert "x = 1" in renderer.pending_markdown()

    renderer.write("```\n")
    assert renderer.committed_markdown_len() == len("```python\nx = 1\n\n```\n")
    assert "x = 1" in strip_all_ansi(renderer.rendered_all())


def test_setext_heading_commits(renderer: StreamingMarkdownRenderer) -> None:
    """An underline turns the pending paragraph into a committed heading."""
    renderer.write("Title\n=====\n")
    assert renderer.committed_markdown_len() == len("Title\n=====\n")


def test_table_is_withheld_until_complete(renderer: StreamingMarkdownRenderer) -> None:
    """Tables stay pending (and flagged) until a non-table line arrives."""
    renderer.write("| a | b |\n|---|---|\n| 1 | 2 |\n")
    assert renderer.pending_is_table()
    assert renderer.committed_markdown_len() == 0

    renderer.write("\n")
    assert not renderer.pending_is_table()
    assert renderer.committed_markdown_len() > 0


def test_list_items_commit_as_siblings_arrive(renderer: StreamingMarkdownRenderer) -> None:
    """A top-level item is committed when the next sibling marker arrives."""
    renderer.write("- one\n")
    assert renderer.pending_is_list()
    assert renderer.committed_markdown_len() == 0

    renderer.write("- two\n")
    assert renderer.committed_markdown() == "- one\n"
    assert "one" in strip_all_ansi(renderer.rendered_all())
    assert "two" not in strip_all_ansi(renderer.rendered_all())


@pytest.mark.parametrize(
    ("partial", "is_list"),
    [("1.", True), ("2)", True), ("-", True), ("+", True), ("*", False), ("Some", False)],
)
def test_pending_list_marker_prefixes(renderer: StreamingMarkdownRenderer, partial: str, is_list: bool) -> None:
    """Bare markers are treated as lists; a lone ``*`` may be emphasis."""
    renderer.write(partial)
    assert renderer.pending_is_list() is is_list


def test_flush_commits_remaining_text(renderer: StreamingMarkdownRenderer) -> None:
    """flush renders whatever is left, including an unterminated line."""
    renderer.write("First.\n\ntail without newline")
    renderer.flush()
    assert renderer.pending_markdown() == ""
    rendered = strip_all_ansi(renderer.rendered_all())
    assert "First." in rendered
    assert "tail without newline" in rendered


# =============================================================================
# Flush Bookkeeping
# =============================================================================


def test_mark_flushed_tracks_rendered_position(renderer: StreamingMarkdownRenderer) -> None:
    """Only output rendered after mark_flushed is reported as unflushed."""
    renderer.write("One paragraph.\n\n")
    assert renderer.rendered_unflushed() == renderer.rendered_all()

    renderer.mark_flushed()
    assert renderer.rendered_unflushed() == ""
    assert renderer.flushed_rendered_pos == len(renderer.rendered_all())

    renderer.write("Two paragraph.\n\n")
    unflushed = strip_all_ansi(renderer.rendered_unflushed())
    assert "Two paragraph." in unflushed
    assert "One paragraph." not in unflushed


def test_resize_rerenders_and_resets(renderer: StreamingMarkdownRenderer) -> None:
    """Resizing re-renders committed blocks and resets the flushed position."""
    renderer.write("Some words that will be wrapped differently.\n\n")
    renderer.mark_flushed()

    renderer.resize(40)
    assert renderer.width == 40
    assert renderer.flushed_rendered_pos == 0
    assert "Some words" in strip_all_ansi(renderer.rendered_all())


def test_resize_same_width_is_noop(renderer: StreamingMarkdownRenderer) -> None:
    """Resizing to the current width keeps the flushed position."""
    renderer.write("Some words.\n\n")
    renderer.mark_flushed()
    pos = renderer.flushed_rendered_pos
    renderer.resize(80)
    assert renderer.flushed_rendered_pos == pos


@pytest.mark.parametrize("chunk_size", [1, 20, 24])
def test_chunked_streaming_has_no_duplication_or_loss(
    renderer_cache: MarkdownRendererCache, chunk_size: int
) -> None:
    """Every phrase should be printed exactly once whatever the chunk size."""
    renderer = StreamingMarkdownRenderer(80, renderer_cache)
    printed: list[str] = []
    for i in range(0, len(DOC), chunk_size):
        renderer.write(DOC[i : i + chunk_size])
        printed.append(renderer.rendered_unflushed())
        renderer.mark_flushed()
    renderer.flush()
    printed.append(renderer.rendered_unflushed())

    output = strip_all_ansi("".join(printed))
    for phrase in PHRASES:
        assert output.count(phrase) == 1, phrase
