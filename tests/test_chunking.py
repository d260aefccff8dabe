from __future__ import annotations

import math

import pytest

from notesearch.index.chunking import WindowChunker


def test_short_text_is_single_chunk() -> None:
    chunker = WindowChunker(max_chars=50)
    assert chunker.chunks("Buy milk and eggs") == ["Buy milk and eggs"]


def test_empty_text_is_one_empty_chunk() -> None:
    assert WindowChunker(max_chars=10).chunks("") == [""]


def test_chunks_respect_bound_and_rebuild_text() -> None:
    chunker = WindowChunker(max_chars=20)
    text = "The quick brown fox jumps over the lazy dog while the cat watches closely."
    pieces = chunker.chunks(text)

    assert len(pieces) > 1
    assert all(0 < len(piece) <= 20 for piece in pieces)
    assert "".join(pieces) == text
    # Cuts land after whitespace, never inside a word.
    assert all(piece[-1].isspace() for piece in pieces[:-1])


def test_text_without_whitespace_is_hard_cut() -> None:
    chunker = WindowChunker(max_chars=7)
    text = "x" * 30
    pieces = chunker.chunks(text)

    assert len(pieces) == math.ceil(len(text) / 7)
    assert "".join(pieces) == text
    assert all(len(piece) <= 7 for piece in pieces)


def test_text_exactly_at_bound_is_not_split() -> None:
    chunker = WindowChunker(max_chars=5)
    assert chunker.chunks("abcde") == ["abcde"]


@pytest.mark.parametrize("max_chars", [0, -3])
def test_chunker_rejects_non_positive_bound(max_chars: int) -> None:
    with pytest.raises(ValueError):
        WindowChunker(max_chars=max_chars)


def test_chunk_note_assigns_ids_and_skips_blank_pieces() -> None:
    chunker = WindowChunker(max_chars=6)
    chunks = chunker.chunk_note("n1", "alpha       beta")

    assert [chunk.text.strip() for chunk in chunks] == ["alpha", "beta"]
    assert all(chunk.note_id == "n1" for chunk in chunks)
    assert chunks[0].chunk_id == "n1-0000"
    assert chunks[0].sequence_hint == 0


def test_chunk_note_on_empty_content_is_empty() -> None:
    assert WindowChunker().chunk_note("empty", "   ") == []
