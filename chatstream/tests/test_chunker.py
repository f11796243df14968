"""Tests for the chunker: lossless word/char fragmentation."""

import pytest

from chatstream.core.chunker import Granularity, chunk_text


@pytest.mark.parametrize(
    "payload",
    [
        "Hello, world",
        "  leading and trailing  ",
        "tabs\tand\nnewlines\n\n  mixed",
        "single",
        " ",
        "émoji 🎉 text",
    ],
)
@pytest.mark.parametrize("granularity", [Granularity.WORD, Granularity.CHAR])
def test_fragments_join_back_to_payload(payload, granularity):
    assert "".join(chunk_text(payload, granularity)) == payload


def test_word_keeps_whitespace_runs_as_fragments():
    assert chunk_text("a  b\tc", Granularity.WORD) == ["a", "  ", "b", "\t", "c"]


def test_word_leading_whitespace_has_no_empty_fragments():
    assert chunk_text("  hi", "word") == ["  ", "hi"]


def test_word_without_whitespace_is_one_fragment():
    assert chunk_text("ab", Granularity.WORD) == ["ab"]


def test_char_one_fragment_per_character():
    assert chunk_text("abc", Granularity.CHAR) == ["a", "b", "c"]


def test_empty_payload_yields_nothing():
    assert chunk_text("", Granularity.WORD) == []
    assert chunk_text("", Granularity.CHAR) == []


def test_default_granularity_is_word():
    assert chunk_text("x y") == ["x", " ", "y"]


def test_unknown_granularity_rejected():
    with pytest.raises(ValueError):
        chunk_text("abc", "sentence")
