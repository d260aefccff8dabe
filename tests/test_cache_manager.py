from __future__ import annotations

import numpy as np

from notesearch.cache_manager import CacheManager


def test_embeddings_round_trip_through_disk(tmp_path) -> None:
    cache = CacheManager(directory=tmp_path / "cache", retention_days=1, enabled=True)
    try:
        assert cache.get_embedding("model", "buy milk") is None

        cache.set_embedding("model", "buy milk", np.array([0.6, 0.8], dtype=np.float32))

        assert np.allclose(cache.get_embedding("model", "buy milk"), [0.6, 0.8])
        assert cache.get_embedding("other-model", "buy milk") is None
    finally:
        cache.close()


def test_disabled_cache_never_creates_directory(tmp_path) -> None:
    cache = CacheManager(directory=tmp_path / "cache", enabled=False)

    cache.set_embedding("model", "text", np.ones(3, dtype=np.float32))

    assert cache.get_embedding("model", "text") is None
    assert not (tmp_path / "cache").exists()
