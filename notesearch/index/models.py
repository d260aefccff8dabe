"""Data structures shared by the chunking, indexing and search pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

import numpy as np

LEXICAL_BACKEND = "lexical"
VECTOR_BACKEND = "vector"


@dataclass(slots=True)
class NoteRecord:
    """A `(note_id, text)` pair handed over by the note store."""

    note_id: str
    text: str

    @property
    def is_valid(self) -> bool:
        return isinstance(self.note_id, str) and bool(self.note_id) and isinstance(self.text, str)

    @classmethod
    def coerce(cls, value: Any) -> NoteRecord | None:
        """Accept a record or a `(note_id, text)` pair; anything else gives None."""
        if isinstance(value, NoteRecord):
            record = value
        elif isinstance(value, (tuple, list)) and len(value) == 2:
            record = cls(value[0], value[1])
        else:
            return None
        return record if record.is_valid else None


@dataclass(slots=True)
class Chunk:
    """Bounded slice of a note's text, the unit of indexing."""

    chunk_id: str
    note_id: str
    text: str
    sequence_hint: int
    embedding: np.ndarray | None = field(default=None, repr=False)

    @property
    def has_embedding(self) -> bool:
        return self.embedding is not None

    def to_metadata(self) -> Mapping[str, Any]:
        return {
            "chunk_id": self.chunk_id,
            "note_id": self.note_id,
            "text": self.text,
            "sequence_hint": self.sequence_hint,
        }


@dataclass(slots=True)
class SearchHit:
    """A ranked match returned by one of the index backends.

    Scores are backend specific: BM25 relevance for the lexical index and
    cosine similarity for the vector index. Higher is better within a backend,
    but the two scales are not comparable.
    """

    id: int
    note_id: str
    chunk_text: str
    score: float
    backend: str = LEXICAL_BACKEND

    def as_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "noteId": self.note_id,
            "chunkText": self.chunk_text,
            "score": self.score,
            "backend": self.backend,
        }


@dataclass(slots=True)
class IndexPaths:
    """Helper for organizing on-disk artifacts produced by indexing."""

    root: Path

    @property
    def lexical_db(self) -> Path:
        return self.root / "search.sqlite"

    @property
    def vectors_dir(self) -> Path:
        return self.root / "vectors"

    @property
    def cache_dir(self) -> Path:
        return self.root / "cache"
