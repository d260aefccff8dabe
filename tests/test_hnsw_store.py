from __future__ import annotations

import pytest

pytest.importorskip("faiss")

from notesearch.config_loader import IndexConfig
from notesearch.index.backends import create_vector_index
from notesearch.index.embeddings import DummyEmbeddingBackend, EmbeddingProvider
from notesearch.index.hnsw_store import HnswVectorStore


def _provider() -> EmbeddingProvider:
    return EmbeddingProvider(DummyEmbeddingBackend(dimension=256))


def test_factory_builds_hnsw_backend() -> None:
    config = IndexConfig.model_validate({"vector-backend": "hnsw", "in-memory": True})
    store = create_vector_index(config, _provider())
    assert isinstance(store, HnswVectorStore)
    assert store.backend_name == "hnsw"


def test_hnsw_search_matches_shared_words() -> None:
    store = HnswVectorStore(_provider(), m=8, ef_construction=40, ef_search=16)
    store.reindex("groceries", "buy milk and eggs")
    store.reindex("finance", "quarterly budget review")
    store.reindex("hiking", "weekend hiking trip")

    hits = store.search("milk eggs", limit=2)

    assert hits[0].note_id == "groceries"
    assert all(hit.backend == "vector" for hit in hits)
    assert [hit.score for hit in hits] == sorted((hit.score for hit in hits), reverse=True)


def test_hnsw_graph_follows_deletes() -> None:
    store = HnswVectorStore(_provider())
    store.reindex("a", "milk")
    store.reindex("b", "milk and honey")
    assert {hit.note_id for hit in store.search("milk", limit=5)} == {"a", "b"}

    store.delete("a")

    assert [hit.note_id for hit in store.search("milk", limit=5)] == ["b"]


def test_hnsw_on_empty_store_returns_nothing() -> None:
    store = HnswVectorStore(_provider())
    assert store.search("milk", limit=5) == []
