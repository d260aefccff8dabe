"""Approximate nearest-neighbour index backed by a FAISS HNSW graph."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import numpy as np

from .chunking import WindowChunker
from .embeddings import EmbeddingProvider
from .vector_store import LocalVectorStore, StoredChunk

LOGGER = logging.getLogger("notesearch.hnsw")


def _import_faiss():
    try:
        import faiss  # type: ignore[import-not-found]
    except ImportError as exc:
        raise ImportError("faiss-cpu is required for the HNSW vector backend.") from exc
    return faiss


class HnswVectorStore(LocalVectorStore):
    """Same contract as `LocalVectorStore`, answered through an HNSW graph.

    FAISS HNSW indexes cannot remove vectors, so the graph is rebuilt from the
    stored chunks on the first query after any mutation. Scores are inner
    products of unit vectors, i.e. cosine similarities.
    """

    backend_name = "hnsw"

    def __init__(
        self,
        provider: EmbeddingProvider,
        *,
        chunker: WindowChunker | None = None,
        index_dir: Path | None = None,
        m: int = 32,
        ef_construction: int = 100,
        ef_search: int = 64,
    ) -> None:
        self._faiss = _import_faiss()
        self.m = m
        self.ef_construction = ef_construction
        self.ef_search = ef_search
        self._graph: Any = None
        self._by_row_id: dict[int, StoredChunk] = {}
        super().__init__(provider, chunker=chunker, index_dir=index_dir)

    def _invalidate(self) -> None:
        super()._invalidate()
        self._graph = None
        self._by_row_id = {}

    def _ensure_graph(self) -> None:
        if self._graph is not None:
            return
        self._ensure_matrix()
        dimension = int(self._matrix.shape[1])
        base = self._faiss.IndexHNSWFlat(dimension, self.m, self._faiss.METRIC_INNER_PRODUCT)
        base.hnsw.efConstruction = self.ef_construction
        base.hnsw.efSearch = self.ef_search
        graph = self._faiss.IndexIDMap2(base)
        ids = np.array([entry.row_id for entry in self._entries], dtype=np.int64)
        graph.add_with_ids(np.ascontiguousarray(self._matrix, dtype=np.float32), ids)
        self._graph = graph
        self._by_row_id = {entry.row_id: entry for entry in self._entries}
        LOGGER.debug("Rebuilt HNSW graph with %d vector(s)", len(ids))

    def _nearest(self, query_vector: np.ndarray, limit: int) -> list[tuple[StoredChunk, float]]:
        self._ensure_graph()
        k = min(limit, int(self._graph.ntotal))
        if k <= 0:
            return []
        scores, ids = self._graph.search(query_vector.reshape(1, -1), k)
        ranked: list[tuple[StoredChunk, float]] = []
        for score, row_id in zip(scores[0].tolist(), ids[0].tolist()):
            if row_id == -1:
                continue
            entry = self._by_row_id.get(int(row_id))
            if entry is None:
                continue
            ranked.append((entry, float(score)))
        ranked.sort(key=lambda item: item[1], reverse=True)
        return ranked
