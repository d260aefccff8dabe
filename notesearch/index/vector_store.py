"""Exact cosine-similarity vector index over chunk embeddings."""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Sequence

import numpy as np

from .chunking import WindowChunker
from .embeddings import EmbeddingProvider
from .models import VECTOR_BACKEND, Chunk, NoteRecord, SearchHit

LOGGER = logging.getLogger("notesearch.vector")

VECTORS_FILENAME = "vectors.npy"
METADATA_FILENAME = "metadata.json"


@dataclass(slots=True)
class StoredChunk:
    row_id: int
    chunk: Chunk


class LocalVectorStore:
    """Keeps unit-length chunk embeddings in memory and scans them linearly.

    Chunks whose embedding could not be produced are left out; they remain
    searchable through the lexical index only. Embedding happens before the
    store lock is taken, and a note's old chunks are swapped for the new ones
    in a single step under the lock.
    """

    backend_name = "exact"

    def __init__(
        self,
        provider: EmbeddingProvider,
        *,
        chunker: WindowChunker | None = None,
        index_dir: Path | None = None,
    ) -> None:
        self.provider = provider
        self.chunker = chunker or WindowChunker()
        self.index_dir = index_dir
        self._lock = threading.RLock()
        self._persist_lock = threading.Lock()
        self._records: dict[str, list[StoredChunk]] = {}
        self._next_row_id = 1
        self._matrix: np.ndarray | None = None
        self._entries: list[StoredChunk] = []
        self._load_if_present()

    # ------------------------------------------------------------------ #
    # Indexing
    # ------------------------------------------------------------------ #

    def reindex(self, note_id: str, text: str) -> bool:
        """Index one note, replacing all of its chunks."""
        chunks = self._embedded_chunks(note_id, text)
        with self._lock:
            self._replace(note_id, chunks)
            self._invalidate()
        LOGGER.debug("Reindexed note %s with %d vector chunk(s)", note_id, len(chunks))
        self._persist_quietly()
        return True

    def reindex_bulk(self, notes: Sequence[NoteRecord]) -> bool:
        """Index many notes, replacing each supplied note's chunks."""
        prepared: list[tuple[str, list[Chunk]]] = []
        for note in notes:
            if not note.is_valid:
                LOGGER.warning("Skipping malformed note %r in bulk vector reindex", note.note_id)
                continue
            try:
                prepared.append((note.note_id, self._embedded_chunks(note.note_id, note.text)))
            except (TypeError, ValueError) as exc:
                LOGGER.warning("Skipping note %s in bulk vector reindex: %s", note.note_id, exc)
        with self._lock:
            for note_id, chunks in prepared:
                self._replace(note_id, chunks)
            self._invalidate()
        added = sum(len(chunks) for _, chunks in prepared)
        LOGGER.info(
            "Bulk vector reindex completed. Notes: %d, chunks added: %d, skipped: %d",
            len(prepared),
            added,
            len(notes) - len(prepared),
        )
        self._persist_quietly()
        return True

    def delete(self, note_id: str) -> bool:
        """Remove a single note's chunks."""
        with self._lock:
            removed = self._records.pop(note_id, [])
            if removed:
                self._invalidate()
        if removed:
            LOGGER.debug("Deleted %d vector chunk(s) for note %s", len(removed), note_id)
            self._persist_quietly()
        return True

    def drop_all(self) -> bool:
        """Destroy the entire index."""
        with self._lock:
            self._records.clear()
            self._next_row_id = 1
            self._invalidate()
        LOGGER.debug("Vector index cleared")
        self._persist_quietly()
        return True

    def _embedded_chunks(self, note_id: str, text: str) -> list[Chunk]:
        chunks = self.chunker.chunk_note(note_id, text)
        vectors = self.provider.embed_many([chunk.text for chunk in chunks])
        embedded: list[Chunk] = []
        for chunk, vector in zip(chunks, vectors):
            if vector is None:
                continue
            chunk.embedding = vector
            embedded.append(chunk)
        return embedded

    def _replace(self, note_id: str, chunks: Sequence[Chunk]) -> None:
        self._records.pop(note_id, None)
        if not chunks:
            return
        stored: list[StoredChunk] = []
        for chunk in chunks:
            stored.append(StoredChunk(row_id=self._next_row_id, chunk=chunk))
            self._next_row_id += 1
        self._records[note_id] = stored

    def _invalidate(self) -> None:
        self._matrix = None
        self._entries = []

    def _ensure_matrix(self) -> None:
        if self._matrix is not None:
            return
        entries = [entry for entries in self._records.values() for entry in entries]
        width = self.provider.dimension
        if width is None and entries:
            width = int(entries[0].chunk.embedding.shape[0])
        self._entries = [entry for entry in entries if entry.chunk.embedding.shape[0] == width]
        if len(self._entries) != len(entries):
            LOGGER.warning(
                "Ignoring %d vector chunk(s) whose dimension is not %s",
                len(entries) - len(self._entries),
                width,
            )
        if self._entries:
            self._matrix = np.vstack([entry.chunk.embedding for entry in self._entries])
        else:
            self._matrix = np.empty((0, 0), dtype=np.float32)

    # ------------------------------------------------------------------ #
    # Search
    # ------------------------------------------------------------------ #

    def search(self, query: str, limit: int = 5) -> list[SearchHit]:
        """Dense (cosine) search; an unembeddable query yields no hits."""
        if limit <= 0 or not query.strip():
            return []
        query_vector = self.provider.embed(query)
        if query_vector is None:
            LOGGER.debug("Query could not be embedded; vector search skipped")
            return []
        return self.search_vector(query_vector, limit=limit)

    def search_vector(self, query_vector: np.ndarray, *, limit: int = 5) -> list[SearchHit]:
        if query_vector.ndim != 1:
            raise ValueError("query must be a 1D embedding vector.")
        if limit <= 0:
            return []
        with self._lock:
            self._ensure_matrix()
            if not self._entries:
                return []
            if query_vector.shape[0] != self._matrix.shape[1]:
                LOGGER.warning(
                    "Query dimensionality %d does not match the index (%d).",
                    query_vector.shape[0],
                    self._matrix.shape[1],
                )
                return []
            ranked = self._nearest(query_vector.astype(np.float32), limit)
        return [
            SearchHit(
                id=entry.row_id,
                note_id=entry.chunk.note_id,
                chunk_text=entry.chunk.text,
                score=score,
                backend=VECTOR_BACKEND,
            )
            for entry, score in ranked
        ]

    def _nearest(self, query_vector: np.ndarray, limit: int) -> list[tuple[StoredChunk, float]]:
        scores = self._matrix @ query_vector
        k = min(limit, scores.shape[0])
        if k < scores.shape[0]:
            candidates = np.argpartition(-scores, k - 1)[:k]
        else:
            candidates = np.arange(scores.shape[0])
        ordered = candidates[np.argsort(-scores[candidates], kind="stable")]
        return [(self._entries[idx], float(scores[idx])) for idx in ordered]

    # ------------------------------------------------------------------ #
    # Persistence
    # ------------------------------------------------------------------ #

    def persist(self) -> None:
        if self.index_dir is None:
            return
        with self._persist_lock:
            with self._lock:
                self._ensure_matrix()
                matrix = self._matrix
                payload = [self._entry_to_dict(entry) for entry in self._entries]
            self.index_dir.mkdir(parents=True, exist_ok=True)
            np.save(self.index_dir / VECTORS_FILENAME, matrix)
            with (self.index_dir / METADATA_FILENAME).open("w", encoding="utf-8") as handle:
                json.dump(payload, handle, ensure_ascii=False, indent=2)

    def _persist_quietly(self) -> None:
        try:
            self.persist()
        except (OSError, ValueError) as exc:
            LOGGER.error("Could not persist vector index to %s: %s", self.index_dir, exc)

    def _load_if_present(self) -> None:
        if self.index_dir is None:
            return
        vectors_path = self.index_dir / VECTORS_FILENAME
        metadata_path = self.index_dir / METADATA_FILENAME
        if not vectors_path.exists() or not metadata_path.exists():
            return
        try:
            vectors = np.load(vectors_path)
            with metadata_path.open("r", encoding="utf-8") as handle:
                raw_entries = json.load(handle)
        except (OSError, ValueError) as exc:
            LOGGER.error("Vector index at %s is unreadable (%s). Starting empty.", self.index_dir, exc)
            return
        if not isinstance(raw_entries, list) or (raw_entries and vectors.ndim != 2):
            LOGGER.error("Vector index at %s has an unexpected layout. Starting empty.", self.index_dir)
            return
        if len(raw_entries) != vectors.shape[0]:
            LOGGER.error("Vector index at %s is inconsistent. Starting empty.", self.index_dir)
            return

        if not raw_entries:
            return

        expected = self._settle_dimension(raw_entries, int(vectors.shape[1]))
        loaded = mismatched = 0
        for raw, vector in zip(raw_entries, vectors):
            if vector.shape[0] != expected:
                mismatched += 1
                continue
            entry = self._entry_from_dict(raw, vector)
            if entry is None:
                LOGGER.warning("Skipping malformed vector record: %r", raw)
                continue
            self._records.setdefault(entry.chunk.note_id, []).append(entry)
            self._next_row_id = max(self._next_row_id, entry.row_id + 1)
            loaded += 1
        if mismatched:
            LOGGER.warning(
                "Dropped %d stored vector chunk(s) of dimension %d; the model now produces %d",
                mismatched,
                vectors.shape[1],
                expected,
            )
        LOGGER.info("Loaded %d vector chunk(s) from %s", loaded, self.index_dir)

    def _settle_dimension(self, raw_entries: list, stored_width: int) -> int:
        """Fix the provider's dimension before stored vectors are trusted.

        One stored chunk is re-embedded so that a model change is noticed. If
        the model cannot answer, the stored width is adopted.
        """

        if self.provider.dimension is not None:
            return self.provider.dimension
        for raw in raw_entries:
            text = raw.get("text") if isinstance(raw, dict) else None
            if isinstance(text, str) and text.strip():
                if self.provider.embed(text) is not None and self.provider.dimension is not None:
                    return self.provider.dimension
                break
        return self.provider.adopt_dimension(stored_width)

    @staticmethod
    def _entry_to_dict(entry: StoredChunk) -> dict[str, object]:
        return {"row_id": entry.row_id, **entry.chunk.to_metadata()}

    @staticmethod
    def _entry_from_dict(payload: object, vector: np.ndarray) -> StoredChunk | None:
        if not isinstance(payload, dict):
            return None
        note_id = payload.get("note_id")
        if not isinstance(note_id, str) or not note_id:
            return None
        try:
            row_id = int(payload["row_id"])
            chunk = Chunk(
                chunk_id=str(payload["chunk_id"]),
                note_id=note_id,
                text=str(payload["text"]),
                sequence_hint=int(payload.get("sequence_hint", 0)),
                embedding=vector.astype(np.float32),
            )
        except (KeyError, TypeError, ValueError):
            return None
        return StoredChunk(row_id=row_id, chunk=chunk)

    # ------------------------------------------------------------------ #
    # Diagnostics
    # ------------------------------------------------------------------ #

    def chunk_count(self, note_id: str) -> int:
        with self._lock:
            return len(self._records.get(note_id, []))

    def __len__(self) -> int:
        with self._lock:
            return sum(len(entries) for entries in self._records.values())
