"""Tests for stream_render.transcript.subagents module."""

import pytest

from stream_render._config import RenderSettings
from stream_render.ansi import strip_all_ansi
from stream_render.transcript.segments import ToolSegment
from stream_render.transcript.subagents import (
    SubagentEvent,
    SubagentEventType,
    SubagentProgress,
    SubagentTracker,
    build_subagent_preview,
    format_tokens,
    handle_subagent_progress,
)
from stream_render.transcript.tracker import SegmentTracker


@pytest.fixture
def subagents(settings: RenderSettings) -> SubagentTracker:
    return SubagentTracker(settings)


# =============================================================================
# SubagentProgress
# =============================================================================


def test_text_cap_truncates() -> None:
    """Text past the cap is dropped and the progress is marked truncated."""
    progress = SubagentProgress("c1", text_cap=10)
    progress.add_text("12345")
    assert not progress.truncated

    progress.add_text("6789012")
    assert progress.text == "1234567890"
    assert progress.truncated

    progress.add_text("\nlater line")
    assert progress.text == "1234567890"
    assert progress.preview_lines[-1] == "later line"


def test_preview_keeps_last_lines() -> None:
    progress = SubagentProgress("c1")
    progress.add_text("one\ntwo\nthree\nfour\nfive", max_preview=4)
    assert progress.preview_lines == ["two", "three", "four", "five"]


def test_tool_lifecycle() -> None:
    """tool_end moves the first active tool with that name to completed."""
    progress = SubagentProgress("c1")
    progress.tool_start("read", "(a.txt)")
    progress.tool_start("read", "(b.txt)")
    progress.tool_end("read", success=False)

    assert progress.tool_calls == 2
    assert [t.info for t in progress.active_tools] == ["(b.txt)"]
    assert progress.completed_tools[0].info == "(a.txt)"
    assert progress.completed_tools[0].done
    assert not progress.completed_tools[0].success

    progress.tool_end("unknown", success=True)
    assert len(progress.active_tools) == 1


def test_mark_done_freezes_end_time() -> None:
    progress = SubagentProgress("c1")
    progress.mark_done()
    end = progress.end_time
    assert progress.done
    assert end is not None
    progress.mark_done()
    assert progress.end_time == end


def test_render_header() -> None:
    progress = SubagentProgress("c1", agent_name="reviewer")
    progress.tool_start("read")
    progress.add_usage(1000, 500)
    assert progress.render_header() == "@reviewer  1 calls · 1.5k tokens"
    progress.expanded = True
    assert progress.render_header().endswith("  [expanded]")


def test_render_collapsed_and_expanded() -> None:
    """Collapsed shows recent text; expanded shows finished tools and all text."""
    progress = SubagentProgress("c1", text_cap=5)
    progress.tool_start("grep", "(todo)")
    progress.tool_start("read")
    progress.tool_end("grep", True)
    progress.add_text("hello world")

    collapsed = strip_all_ansi(progress.render(expanded=False))
    assert collapsed == "  │ ● read\n  │ hello world\n"

    expanded = strip_all_ansi(progress.render(expanded=True))
    assert expanded.split("\n")[:5] == [
        "  │ ● read",
        "  │ ● grep (todo)",
        "  │",
        "  │ hello",
        "  │ ... (output truncated)",
    ]


@pytest.mark.parametrize(("n", "expected"), [(999, "999"), (1000, "1.0k"), (1500, "1.5k"), (25000, "25k")])
def test_format_tokens(n: int, expected: str) -> None:
    assert format_tokens(n) == expected


# =============================================================================
# Preview
# =============================================================================


def test_preview_lists_tools_before_text() -> None:
    """Active tools come first, then recent completed ones; text is hidden."""
    progress = SubagentProgress("c1")
    progress.add_text("some text")
    for name in ("a", "b", "c", "d"):
        progress.tool_start(name)
        progress.tool_end(name, True)
    progress.tool_start("running")

    preview = [strip_all_ansi(line) for line in build_subagent_preview(progress, max_lines=3)]
    assert preview == ["● running", "● c", "● d"]


def test_preview_falls_back_to_text() -> None:
    progress = SubagentProgress("c1")
    progress.add_text("first\nsecond\nthird")
    assert build_subagent_preview(progress, max_lines=2) == ["second", "third"]


# =============================================================================
# SubagentTracker
# =============================================================================


def test_removed_agents_are_tombstoned(subagents: SubagentTracker) -> None:
    """A removed sub-task cannot be recreated by late events."""
    progress = subagents.get_or_create("c1", "reviewer")
    assert progress is not None
    assert subagents.get_or_create("c1") is progress

    subagents.remove("c1")
    assert subagents.get("c1") is None
    assert subagents.get_or_create("c1") is None


def test_removing_unknown_id_does_not_tombstone(subagents: SubagentTracker) -> None:
    subagents.remove("never-seen")
    assert subagents.get_or_create("never-seen") is not None


def test_handle_init_skips_main_model(subagents: SubagentTracker) -> None:
    """Provider and model are shown only when they differ from the main agent."""
    subagents.set_main_provider_model("openai", "gpt-4o")
    subagents.get_or_create("c1")

    subagents.handle_init("c1", "openai", "gpt-4o")
    progress = subagents.get("c1")
    assert progress is not None
    assert (progress.provider, progress.model) == ("", "")

    subagents.handle_init("c1", "anthropic", "claude-opus-4-20250514")
    assert (progress.provider, progress.model) == ("anthropic", "claude-opus-4-20250514")


def test_handlers_ignore_unknown_ids(subagents: SubagentTracker) -> None:
    subagents.handle_init("ghost", "p", "m")
    subagents.handle_text_delta("ghost", "text")
    subagents.handle_tool_start("ghost", "read")
    assert subagents.get("ghost") is None


def test_dispatch_routes_events(subagents: SubagentTracker) -> None:
    progress = subagents.get_or_create("c1")
    assert progress is not None
    subagents.dispatch("c1", SubagentEvent(SubagentEventType.PHASE, phase="Thinking"))
    subagents.dispatch("c1", SubagentEvent(SubagentEventType.USAGE, input_tokens=10, output_tokens=5))
    subagents.dispatch("c1", SubagentEvent(SubagentEventType.TEXT, text="hi"))
    subagents.dispatch("c1", SubagentEvent(SubagentEventType.TOOL_START, tool_name="read"))
    subagents.dispatch("c1", SubagentEvent(SubagentEventType.TOOL_END, tool_name="read", success=True))
    assert progress.phase == "Thinking"
    assert (progress.input_tokens, progress.output_tokens) == (10, 5)
    assert progress.text == "hi"
    assert progress.completed_tools[0].success

    subagents.dispatch("c1", SubagentEvent(SubagentEventType.DONE))
    assert progress.done
    assert not subagents.has_active()


def test_active_agents_oldest_first(subagents: SubagentTracker) -> None:
    first = subagents.get_or_create("c1")
    second = subagents.get_or_create("c2")
    assert first is not None and second is not None
    second.start_time = first.start_time - 1

    assert subagents.active_agents() == [second, first]
    subagents.mark_done("c2")
    assert subagents.active_agents() == [first]
    assert subagents.has_active()


def test_toggle_expanded(subagents: SubagentTracker) -> None:
    assert not subagents.expanded
    assert subagents.toggle_expanded()
    assert subagents.expanded
    assert not subagents.toggle_expanded()


# =============================================================================
# handle_subagent_progress
# =============================================================================


def test_progress_updates_spawn_agent_row(settings: RenderSettings, subagents: SubagentTracker) -> None:
    """Sub-task events refresh the parent's spawn_agent row."""
    tracker = SegmentTracker(settings, text_mode=True)
    tracker.handle_tool_start("c1", "spawn_agent", "(@reviewer: check the diff)")

    assert handle_subagent_progress(
        tracker, subagents, "c1", SubagentEvent(SubagentEventType.TOOL_START, tool_name="read", tool_info="(a.go)")
    )
    assert handle_subagent_progress(
        tracker, subagents, "c1", SubagentEvent(SubagentEventType.USAGE, input_tokens=800, output_tokens=400)
    )

    progress = subagents.get("c1")
    assert progress is not None
    assert progress.agent_name == "reviewer"

    seg = tracker.segments[0]
    assert isinstance(seg, ToolSegment)
    assert seg.subagent_has_progress
    assert seg.subagent_tool_calls == 1
    assert seg.subagent_total_tokens == 1200
    assert [strip_all_ansi(line) for line in seg.subagent_preview] == ["● read (a.go)"]


def test_progress_after_remove_is_dropped(settings: RenderSettings, subagents: SubagentTracker) -> None:
    tracker = SegmentTracker(settings, text_mode=True)
    tracker.handle_tool_start("c1", "spawn_agent", "(@reviewer: go)")
    event = SubagentEvent(SubagentEventType.TEXT, text="hello")
    assert handle_subagent_progress(tracker, subagents, "c1", event)

    subagents.remove("c1")
    assert not handle_subagent_progress(tracker, subagents, "c1", event)
    assert subagents.get("c1") is None
