"""Tests for stream_render.streaming.smooth module."""

import pytest

from stream_render.streaming.smooth import MAX_WORD_LENGTH, SmoothBuffer, extract_words


@pytest.mark.parametrize(
    ("content", "n", "extracted", "remaining"),
    [
        ("hello world", 1, "hello", " world"),
        ("hello world", 2, "hello world", ""),
        ("hello world", 3, "hello world", ""),
        ("  hello world", 1, "  hello", " world"),
        ("", 1, "", ""),
        ("hello", 0, "", "hello"),
        ("hello\nworld\ttab", 2, "hello\nworld", "\ttab"),
        ("trailing   ", 1, "trailing", "   "),
    ],
)
def test_extract_words(content: str, n: int, extracted: str, remaining: str) -> None:
    assert extract_words(content, n) == (extracted, remaining)


def test_extract_words_cuts_long_words() -> None:
    """A long word is released in pieces of MAX_WORD_LENGTH characters."""
    word = "abcdefghijklmnopqrstuvwxyz"
    extracted, remaining = extract_words(word + " next", 3)
    assert extracted == word[:MAX_WORD_LENGTH]
    assert remaining == word[MAX_WORD_LENGTH:] + " next"


def test_extract_words_preserves_content() -> None:
    content = "The quick  brown\tfox jumps over supercalifragilistic dogs\n"
    out = []
    rest = content
    while rest:
        chunk, rest = extract_words(rest, 2)
        if not chunk:
            out.append(rest)
            break
        out.append(chunk)
    assert "".join(out) == content


# =============================================================================
# SmoothBuffer
# =============================================================================


def test_low_fill_releases_one_word() -> None:
    buf = SmoothBuffer(capacity=100)
    buf.write("one two three")
    assert buf.next_words() == "one"
    assert buf.next_words() == " two"
    assert len(buf) == len(" three")


def test_high_fill_releases_five_words() -> None:
    buf = SmoothBuffer(capacity=10)
    buf.write("a b c d e f g h i j")
    assert buf.next_words() == "a b c d e"


def test_mid_fill_scales_linearly() -> None:
    buf = SmoothBuffer(capacity=100)
    buf.write("w " * 25)
    assert buf.next_words() == "w w w"


def test_drain_and_flush() -> None:
    buf = SmoothBuffer(capacity=100)
    assert buf.next_words() == ""
    assert buf.is_empty()

    buf.write("left over text")
    buf.mark_done()
    assert not buf.is_drained()
    assert buf.flush_all() == "left over text"
    assert buf.is_drained()

    buf.reset()
    assert not buf.is_drained()


def test_frame_interval_from_settings(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("STREAM_RENDER_SMOOTH_FRAME_INTERVAL", "0.05")
    assert SmoothBuffer(capacity=10).frame_interval == 0.05
