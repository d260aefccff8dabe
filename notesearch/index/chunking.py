"""Utilities for turning note text into bounded, index-ready chunks."""

from __future__ import annotations

from .models import Chunk

DEFAULT_MAX_CHARS = 1000


class WindowChunker:
    """Splits text into windows of at most `max_chars` at whitespace boundaries.

    Text that already fits is returned as a single chunk. Longer text is cut at
    the last whitespace inside each window; the whitespace stays at the end of
    the preceding chunk so that joining the chunks gives back the input. A
    window without any whitespace is cut at its hard boundary.
    """

    def __init__(self, max_chars: int = DEFAULT_MAX_CHARS) -> None:
        if max_chars <= 0:
            raise ValueError("max_chars must be a positive integer.")
        self.max_chars = max_chars

    def chunks(self, text: str) -> list[str]:
        if len(text) <= self.max_chars:
            return [text]

        pieces: list[str] = []
        start = 0
        end_of_text = len(text)
        while start < end_of_text:
            hard_end = min(start + self.max_chars, end_of_text)
            cut = hard_end
            if hard_end < end_of_text:
                position = hard_end
                while position > start:
                    if text[position - 1].isspace():
                        cut = position
                        break
                    position -= 1
            pieces.append(text[start:cut])
            start = cut
        return pieces

    def chunk_note(self, note_id: str, text: str) -> list[Chunk]:
        """Chunk a note, dropping blank pieces so empty notes index to nothing."""

        chunks: list[Chunk] = []
        for index, piece in enumerate(self.chunks(text)):
            if not piece.strip():
                continue
            chunks.append(
                Chunk(
                    chunk_id=f"{note_id}-{index:04d}",
                    note_id=note_id,
                    text=piece,
                    sequence_hint=index,
                )
            )
        return chunks
