"""
Tests for knowledge chunking: sentence-aware windows, fixed windows,
length-scaled configuration and token estimates.
"""

import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import pytest

from agentbuilder.text_chunking import (
    chunk_text,
    estimate_tokens,
    get_chunk_config,
    normalize_text,
    split_into_chunks,
)


def _sentences(n, words=12):
    return " ".join(
        f"Sentence number {i} talks about " + " ".join(["topic"] * words) + "."
        for i in range(n)
    )


class TestChunkText:

    def test_empty_text(self):
        assert chunk_text("") == []

    def test_short_text_single_chunk(self):
        chunks = chunk_text("Our office opens at 9am. We close at 5pm.", 1000, 200)
        assert len(chunks) == 1
        assert chunks[0]["chunk_id"] == "c0000"
        assert chunks[0]["text"] == "Our office opens at 9am. We close at 5pm."

    def test_chunks_end_on_sentence_boundary(self):
        text = _sentences(40)
        chunks = chunk_text(text, 500, 100)
        assert len(chunks) > 1
        for c in chunks[:-1]:
            assert c["text"].endswith(".")

    def test_chunks_overlap(self):
        text = _sentences(40)
        chunks = chunk_text(text, 500, 100)
        for prev, nxt in zip(chunks, chunks[1:]):
            assert nxt["start_char"] < prev["end_char"]

    def test_offsets_map_back_to_source(self):
        text = _sentences(30)
        for c in chunk_text(text, 400, 50):
            assert text[c["start_char"]:c["end_char"]] == c["text"]

    def test_falls_back_to_word_boundary(self):
        text = " ".join(["word"] * 500)  # no sentence punctuation
        chunks = chunk_text(text, 100, 20)
        for c in chunks:
            assert not c["text"].startswith("ord")
            assert c["text"].split() == ["word"] * len(c["text"].split())

    def test_always_terminates_on_unbroken_text(self):
        text = "x" * 5000
        chunks = chunk_text(text, 1000, 200)
        assert chunks
        assert chunks[-1]["end_char"] == 5000

    def test_covers_whole_text(self):
        text = _sentences(50)
        chunks = chunk_text(text, 600, 100)
        assert chunks[0]["start_char"] == 0
        assert chunks[-1]["end_char"] == len(text)

    def test_chunk_indexes_are_sequential(self):
        chunks = chunk_text(_sentences(30), 300, 50)
        assert [c["chunk_index"] for c in chunks] == list(range(len(chunks)))

    @pytest.mark.parametrize("size,overlap", [(0, 0), (100, 100), (100, -1)])
    def test_rejects_bad_window(self, size, overlap):
        with pytest.raises(ValueError):
            chunk_text("some text", size, overlap)


class TestSplitIntoChunks:

    def test_fixed_stride(self):
        text = "a" * 2500
        chunks = split_into_chunks(text, 1000, 200)
        assert [c["start_char"] for c in chunks] == [0, 800, 1600, 2400]

    def test_whitespace_only_windows_are_skipped(self):
        chunks = split_into_chunks("abc" + " " * 50, 10, 0)
        assert len(chunks) == 1


class TestChunkConfig:

    def test_small_document(self):
        assert get_chunk_config(1200) == (1000, 100)

    def test_medium_document(self):
        assert get_chunk_config(12000) == (1500, 200)

    def test_large_document(self):
        assert get_chunk_config(50000) == (2000, 300)


def test_estimate_tokens():
    assert estimate_tokens("") == 0
    assert estimate_tokens("abcd") == 1
    assert estimate_tokens("abcde") == 2


def test_normalize_text():
    assert normalize_text("a\r\nb\n\n\n\nc   d") == "a\nb\n\nc d"
