"""Disk cache for text embeddings, keyed by model and text."""

from __future__ import annotations

import hashlib
from pathlib import Path

import numpy as np
from diskcache import Cache

SECONDS_PER_DAY = 24 * 60 * 60


class CacheManager:
    """Stores float32 embeddings on disk for `retention_days`.

    A disabled cache never touches the filesystem: lookups miss and writes are
    dropped.
    """

    def __init__(self, directory: Path, retention_days: int = 14, enabled: bool = True) -> None:
        self.directory = directory
        self.retention_days = retention_days
        self.enabled = enabled
        self._cache: Cache | None = None

    @property
    def cache(self) -> Cache:
        if self._cache is None:
            self.directory.mkdir(parents=True, exist_ok=True)
            self._cache = Cache(str(self.directory))
        return self._cache

    @staticmethod
    def embedding_key(namespace: str, text: str) -> str:
        digest = hashlib.sha256(text.encode("utf-8")).hexdigest()
        return f"embedding:{namespace}:{digest}"

    def get_embedding(self, namespace: str, text: str) -> np.ndarray | None:
        if not self.enabled:
            return None
        raw = self.cache.get(self.embedding_key(namespace, text))
        if not isinstance(raw, bytes) or not raw:
            return None
        return np.frombuffer(raw, dtype=np.float32).copy()

    def set_embedding(self, namespace: str, text: str, vector: np.ndarray) -> None:
        if not self.enabled:
            return
        payload = np.asarray(vector, dtype=np.float32).reshape(-1).tobytes()
        self.cache.set(
            self.embedding_key(namespace, text),
            payload,
            expire=self.retention_days * SECONDS_PER_DAY,
        )

    def clear(self) -> None:
        if self.enabled:
            self.cache.clear()

    def close(self) -> None:
        if self._cache is not None:
            self._cache.close()
            self._cache = None
