"""Chunking, embedding and index backends for note search."""

from __future__ import annotations

from .backends import SearchBackend, create_lexical_index, create_vector_index
from .chunking import WindowChunker
from .embedder_factory import create_embedding_backend, create_embedding_provider
from .embeddings import DummyEmbeddingBackend, EmbeddingProvider, normalize_embeddings
from .lexical_store import LexicalIndex
from .models import Chunk, IndexPaths, NoteRecord, SearchHit
from .vector_store import LocalVectorStore

__all__ = [
    "Chunk",
    "DummyEmbeddingBackend",
    "EmbeddingProvider",
    "IndexPaths",
    "LexicalIndex",
    "LocalVectorStore",
    "NoteRecord",
    "SearchBackend",
    "SearchHit",
    "WindowChunker",
    "create_embedding_backend",
    "create_embedding_provider",
    "create_lexical_index",
    "create_vector_index",
    "normalize_embeddings",
]
