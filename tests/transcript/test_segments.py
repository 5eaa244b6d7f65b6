"""Tests for stream_render.transcript.segments module."""

import pytest

from stream_render.ansi import strip_all_ansi
from stream_render.rendering.images import ImageCache
from stream_render.transcript.segments import (
    ERROR_CIRCLE,
    SUCCESS_CIRCLE,
    DiffSegment,
    ImageSegment,
    PlainResultSegment,
    SegmentKind,
    TextSegment,
    ToolSegment,
    ToolStatus,
    extract_agent_name,
    format_elapsed,
    format_provider_model,
    format_spawn_agent_stats,
    format_tokens_compact,
    has_pending_tool,
    pending_tool_text_len,
    render_plain_result,
    render_segments,
    render_segments_with_kind,
    render_tool_segment,
    render_wave_text,
    segment_separator,
    shorten_model_name,
    truncate_tool_info,
    update_tool_status,
)

DIM = "\x1b[38;5;245m"
BOLD = "\x1b[1m"
RESET = "\x1b[0m"
PARAM = "\x1b[38;5;250m"

# =============================================================================
# Segment Model
# =============================================================================


def test_text_segment_accumulates_chunks() -> None:
    """Appended deltas are joined lazily; empty deltas are ignored."""
    seg = TextSegment.from_text("Hello")
    seg.append(", ")
    seg.append("")
    seg.append("world")
    assert seg.text == "Hello, world"
    assert seg.kind is SegmentKind.TEXT
    assert not seg.complete


def test_diff_segment_caches_per_width() -> None:
    """A diff is rendered once per width and identical edits render nothing."""
    seg = DiffSegment(path="a.txt", old="one", new="two")
    first = seg.render(80)
    assert first
    assert seg.rendered_width == 80
    assert seg.render(80) is first
    assert seg.same_edit("a.txt", "one", "two", 0)
    assert not seg.same_edit("a.txt", "one", "two", 3)

    unchanged = DiffSegment(path="a.txt", old="same", new="same")
    assert unchanged.render(80) == ""
    assert unchanged.rendered_width == 0


# =============================================================================
# Tool Rows
# =============================================================================


def test_render_wave_text_positions() -> None:
    """Two characters at the wave position are bold, the rest dim."""
    assert render_wave_text("abcdef", 2) == f"{DIM}ab{RESET}{BOLD}cd{RESET}{DIM}ef{RESET}"
    assert render_wave_text("abcdef", 0) == f"{BOLD}ab{RESET}{DIM}cdef{RESET}"
    assert render_wave_text("abcdef", 5) == f"{DIM}abcde{RESET}{BOLD}f{RESET}"


@pytest.mark.parametrize("pos", [-1, 6, 100])
def test_render_wave_text_pause_is_all_dim(pos: int) -> None:
    assert render_wave_text("abcdef", pos) == f"{DIM}abcdef{RESET}"


def test_truncate_tool_info() -> None:
    """Info is cut to fit the row; zero width disables truncation."""
    info = "(a very long parameter value that does not fit)"
    short = truncate_tool_info("read", info, 20)
    assert len(short) == 13
    assert short.endswith("...")
    assert truncate_tool_info("read", info, 0) == info
    assert truncate_tool_info("a_really_long_tool_name", info, 10) == ""


def test_render_completed_tool_rows() -> None:
    """Finished tools show their circle, name and muted parameters."""
    ok = ToolSegment("c1", "read", info="(a.txt)", status=ToolStatus.SUCCESS)
    assert render_tool_segment(ok, 0, 80) == f"{SUCCESS_CIRCLE} read {PARAM}(a.txt){RESET}"

    failed = ToolSegment("c2", "read", status=ToolStatus.ERROR)
    assert render_tool_segment(failed, 0, 80) == f"{ERROR_CIRCLE} read"


def test_render_pending_tool_row() -> None:
    """Pending tools animate their label, truncated to the width."""
    pending = ToolSegment("c1", "read", info="(a.txt)")
    assert strip_all_ansi(render_tool_segment(pending, 0, 80)) == "○ read (a.txt)"
    assert strip_all_ansi(render_tool_segment(pending, 0, 10)) == "○ read ..."


def test_render_spawn_agent_with_progress() -> None:
    """spawn_agent rows with progress show sub-task stats."""
    seg = ToolSegment(
        "c1",
        "spawn_agent",
        info="(@reviewer: check the diff)",
        subagent_has_progress=True,
        subagent_tool_calls=2,
        subagent_total_tokens=1500,
        subagent_provider="openai",
        subagent_model="gpt-4o",
    )
    plain = strip_all_ansi(render_tool_segment(seg, 0, 80))
    assert plain == "○ @reviewer  2 calls · 1.5k tokens  [openai:4o]"


def test_spawn_agent_preview_lines_follow_row() -> None:
    """Preview lines are indented beneath the spawn_agent row."""
    seg = ToolSegment("c1", "spawn_agent", info="(@explorer: look)", subagent_preview=["first", "second"])
    rendered = strip_all_ansi(render_segments([seg], 80, -1, None, False))
    assert rendered.split("\n")[1:] == ["  │ first", "  │ second"]


# =============================================================================
# Sub-task Stats
# =============================================================================


@pytest.mark.parametrize(
    ("info", "expected"),
    [
        ("(@reviewer: check)", "reviewer"),
        ("(@explorer find files)", "explorer"),
        ("@plain", "plain"),
        ("", ""),
    ],
)
def test_extract_agent_name(info: str, expected: str) -> None:
    assert extract_agent_name(info) == expected


def test_shorten_model_name() -> None:
    assert shorten_model_name("gpt-4o") == "4o"
    assert shorten_model_name("claude-opus-4-20250514") == "opus-4"
    assert shorten_model_name("custom") == "custom"
    assert shorten_model_name("x" * 25) == "x" * 17 + "..."


@pytest.mark.parametrize(
    ("provider", "model", "expected"),
    [
        ("", "", ""),
        ("openai", "", "[openai]"),
        ("", "gpt-4o", "[4o]"),
        ("anthropic", "claude-opus-4-20250514", "[anthropic:opus-4]"),
    ],
)
def test_format_provider_model(provider: str, model: str, expected: str) -> None:
    assert format_provider_model(provider, model) == expected


def test_format_spawn_agent_stats() -> None:
    """Stats read ``starting`` until work is reported, then calls and tokens."""
    assert format_spawn_agent_stats(0, 0, None) == "starting..."
    assert format_spawn_agent_stats(0, 0, 10.0, now=15.0) == "starting… · 5s"
    assert format_spawn_agent_stats(1, 1200, 10.0, end_time=20.0, now=100.0) == "1 call · 1.2k tokens · 10s"
    assert format_spawn_agent_stats(3, 500, None) == "3 calls · 500 tokens"


@pytest.mark.parametrize(
    ("seconds", "expected"),
    [(0, "0s"), (5.4, "5s"), (-3, "0s"), (90, "1m30s"), (300, "5m")],
)
def test_format_elapsed(seconds: float, expected: str) -> None:
    assert format_elapsed(seconds) == expected


@pytest.mark.parametrize(
    ("n", "expected"),
    [(0, "0"), (999, "999"), (1000, "1k"), (1200, "1.2k"), (12000, "12k")],
)
def test_format_tokens_compact(n: int, expected: str) -> None:
    assert format_tokens_compact(n) == expected


# =============================================================================
# Plain Results and Separators
# =============================================================================


def test_render_plain_result() -> None:
    """Headers and values are styled; the line ends with a newline."""
    rendered = render_plain_result("Files: 3 | Lines: 10")
    assert strip_all_ansi(rendered) == "│ ✓ Files: 3 Lines: 10\n"
    assert "\x1b[1;38;5;15m3" in rendered


@pytest.mark.parametrize(
    ("prev", "curr", "expected"),
    [
        (SegmentKind.TEXT, SegmentKind.TEXT, ""),
        (SegmentKind.TEXT, SegmentKind.TOOL, "\n\n"),
        (SegmentKind.TOOL, SegmentKind.TEXT, "\n\n"),
        (SegmentKind.PLAIN_RESULT, SegmentKind.TEXT, "\n\n"),
        (SegmentKind.TEXT, SegmentKind.PLAIN_RESULT, "\n\n"),
        (SegmentKind.TOOL, SegmentKind.TOOL, "\n"),
        (SegmentKind.TOOL, SegmentKind.DIFF, "\n"),
        (SegmentKind.TEXT, SegmentKind.DIFF, "\n"),
        (SegmentKind.DIFF, SegmentKind.TEXT, "\n"),
        (SegmentKind.IMAGE, SegmentKind.TEXT, "\n"),
    ],
)
def test_segment_separator(prev: SegmentKind, curr: SegmentKind, expected: str) -> None:
    assert segment_separator(prev, curr) == expected


# =============================================================================
# Rendering
# =============================================================================


def test_render_segments_joins_with_separators(render_fn) -> None:
    """Text and tools are separated by a blank line."""
    segments = [
        TextSegment.from_text("Hello", complete=True),
        ToolSegment("c1", "read", info="(a)", status=ToolStatus.SUCCESS),
        TextSegment.from_text("Bye\n", complete=True),
    ]
    rendered = render_segments(segments, 80, -1, render_fn, False)
    assert strip_all_ansi(rendered) == "Hello\n\n● read (a)\n\nBye"


def test_render_segments_images(fake_image_cache: ImageCache) -> None:
    """Images render only when requested."""
    segments = [ImageSegment("shot.png")]
    assert render_segments(segments, 80, -1, None, False, image_cache=fake_image_cache) == ""
    assert render_segments(segments, 80, -1, None, True, image_cache=fake_image_cache) == "<image shot.png>\r\n"


def test_render_segments_leading_separator(render_fn) -> None:
    """A leading kind puts the separator before the first segment."""
    segments = [TextSegment.from_text("After", complete=True)]
    assert render_segments(segments, 80, -1, render_fn, False, leading=SegmentKind.TOOL) == "\n\nAfter"


def test_render_segments_with_kind_skips_empty(render_fn) -> None:
    """Segments producing no output neither add separators nor change the kind."""
    segments = [
        PlainResultSegment("Files: 1"),
        TextSegment(complete=True),
    ]
    rendered, kind = render_segments_with_kind(segments, 80, -1, render_fn, False)
    assert kind is SegmentKind.PLAIN_RESULT
    assert rendered.endswith("\n")

    _, kind = render_segments_with_kind([TextSegment()], 80, -1, render_fn, False, leading=SegmentKind.TOOL)
    assert kind is SegmentKind.TOOL


def test_render_partially_flushed_text() -> None:
    """Only the unprinted tail of a complete text is rendered."""
    seg = TextSegment.from_text("raw", complete=True, rendered="abcdef", flushed_rendered_pos=3)
    assert render_segments([seg], 80, -1, None, False) == "def"

    seg.flushed_rendered_pos = 6
    assert render_segments([seg], 80, -1, None, False) == ""


def test_incomplete_text_without_renderer_is_raw() -> None:
    """Text still streaming without a renderer is shown as is."""
    seg = TextSegment.from_text("**partial")
    assert render_segments([seg], 80, -1, lambda t, w: "rendered", False) == "**partial"


# =============================================================================
# Tool Status
# =============================================================================


def test_pending_tool_helpers() -> None:
    """The latest pending tool drives the wave length."""
    segments = [
        ToolSegment("c1", "read", info="(a)", status=ToolStatus.SUCCESS),
        ToolSegment("c2", "grep", info="(pattern)"),
    ]
    assert has_pending_tool(segments)
    assert pending_tool_text_len(segments) == len("grep (pattern)")

    assert update_tool_status(segments, "c2", success=True)
    assert not has_pending_tool(segments)
    assert pending_tool_text_len(segments) == 0


def test_update_tool_status_ignores_unknown_and_resolved() -> None:
    segments = [ToolSegment("c1", "read")]
    assert not update_tool_status(segments, "missing", success=True)
    assert update_tool_status(segments, "c1", success=False)
    assert segments[0].status is ToolStatus.ERROR
    assert not update_tool_status(segments, "c1", success=True)
    assert segments[0].status is ToolStatus.ERROR
