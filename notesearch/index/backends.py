"""Search backend contract and the factories that pick an implementation."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Protocol, Sequence

from notesearch.config_loader import IndexConfig

from .chunking import WindowChunker
from .embeddings import EmbeddingProvider
from .lexical_store import IN_MEMORY, LexicalIndex
from .models import IndexPaths, NoteRecord, SearchHit
from .vector_store import LocalVectorStore

LOGGER = logging.getLogger("notesearch.backends")


class SearchBackend(Protocol):
    """Contract shared by the lexical and vector indices."""

    def reindex(self, note_id: str, text: str) -> bool: ...

    def reindex_bulk(self, notes: Sequence[NoteRecord]) -> bool: ...

    def delete(self, note_id: str) -> bool: ...

    def drop_all(self) -> bool: ...

    def search(self, query: str, limit: int = 5) -> list[SearchHit]: ...

    def chunk_count(self, note_id: str) -> int: ...


def create_lexical_index(
    config: IndexConfig,
    *,
    paths: IndexPaths | None = None,
    chunker: WindowChunker | None = None,
) -> LexicalIndex:
    db_path: Path | str = IN_MEMORY
    if not config.in_memory and paths is not None:
        db_path = paths.lexical_db
    return LexicalIndex(
        db_path,
        chunker=chunker or WindowChunker(config.max_chars),
        tokenizer=config.fts_tokenizer,
    )


def create_vector_index(
    config: IndexConfig,
    provider: EmbeddingProvider,
    *,
    paths: IndexPaths | None = None,
    chunker: WindowChunker | None = None,
) -> LocalVectorStore:
    """Instantiate the vector backend declared in app.config.yaml."""

    chunker = chunker or WindowChunker(config.max_chars)
    index_dir = None
    if config.persist_vectors and not config.in_memory and paths is not None:
        index_dir = paths.vectors_dir

    if config.vector_backend == "hnsw":
        from .hnsw_store import HnswVectorStore

        try:
            return HnswVectorStore(
                provider,
                chunker=chunker,
                index_dir=index_dir,
                m=config.hnsw_m,
                ef_construction=config.hnsw_ef_construction,
                ef_search=config.hnsw_ef_search,
            )
        except ImportError as exc:
            LOGGER.warning("HNSW backend unavailable (%s). Using exact vector search.", exc)

    return LocalVectorStore(provider, chunker=chunker, index_dir=index_dir)
