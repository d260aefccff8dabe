"""Embedding backends and the provider that guards the indexing pipeline against them."""

from __future__ import annotations

import hashlib
import logging
import re
import threading
from dataclasses import dataclass, field
from typing import Any, Protocol, Sequence

import numpy as np

LOGGER = logging.getLogger("notesearch.embeddings")

NORM_EPSILON = 1e-12
_WORD_RE = re.compile(r"\w+", re.UNICODE)
GPU_FAILURE_MARKERS = ("no kernel image", "device-side assert", "not compatible with gpu", "sm_")


class EmbeddingBackend(Protocol):
    """Protocol for embedding providers."""

    def embed(self, texts: Sequence[str]) -> np.ndarray: ...

    def embed_one(self, text: str) -> np.ndarray: ...


def normalize_embeddings(embeddings: np.ndarray) -> np.ndarray:
    """Normalize embeddings to unit length for cosine similarity."""
    if embeddings.ndim != 2:
        raise ValueError("embeddings must be a 2D array")
    squared = np.sum(embeddings * embeddings, axis=1, keepdims=True)
    norms = np.sqrt(np.maximum(squared, NORM_EPSILON))
    return embeddings / norms


@dataclass(slots=True)
class SentenceTransformerBackend:
    """Encodes chunks with a `sentence-transformers` model.

    A GPU that loads the model but cannot run it is abandoned for the CPU on
    the first failing batch.
    """

    model_name: str
    batch_size: int = 32
    device: str | None = None
    _model_cls: Any = field(init=False, repr=False)
    _model: Any = field(init=False, repr=False)

    def __post_init__(self) -> None:
        try:
            from sentence_transformers import SentenceTransformer  # type: ignore[import-not-found]
        except ImportError as exc:
            raise ImportError(
                "sentence-transformers is required for SentenceTransformerBackend."
            ) from exc
        self._model_cls = SentenceTransformer
        self._model = SentenceTransformer(self.model_name, device=self.device)

    @property
    def dimension(self) -> int | None:
        return self._model.get_sentence_embedding_dimension()

    def embed(self, texts: Sequence[str]) -> np.ndarray:
        if not texts:
            return np.empty((0, self.dimension or 0), dtype=np.float32)
        try:
            vectors = self._encode(texts)
        except RuntimeError as exc:  # pragma: no cover - needs a broken GPU
            if not self._should_retry_on_cpu(exc):
                raise
            LOGGER.warning(
                "Encoding on %s failed (%s). Reloading %s on CPU.",
                self.device,
                exc,
                self.model_name,
            )
            self.device = "cpu"
            self._model = self._model_cls(self.model_name, device="cpu")
            vectors = self._encode(texts)
        return np.asarray(vectors, dtype=np.float32)

    def embed_one(self, text: str) -> np.ndarray:
        return self.embed([text])[0]

    def _should_retry_on_cpu(self, exc: RuntimeError) -> bool:
        if not self.device or self.device.lower() == "cpu":
            return False
        message = str(exc).lower()
        return any(marker in message for marker in GPU_FAILURE_MARKERS)

    def _encode(self, texts: Sequence[str]) -> np.ndarray:
        return self._model.encode(
            list(texts),
            batch_size=self.batch_size,
            convert_to_numpy=True,
            show_progress_bar=False,
        )


@dataclass(slots=True)
class DummyEmbeddingBackend:
    """Fallback embedder used when no real embedding model is available.

    Hashes lowercase words into a fixed number of buckets, so texts sharing
    words end up close in cosine space. Deterministic across processes.
    """

    dimension: int = 64

    def embed(self, texts: Sequence[str]) -> np.ndarray:
        if not texts:
            return np.empty((0, self.dimension), dtype=np.float32)
        return np.vstack([self._vectorize(text) for text in texts])

    def embed_one(self, text: str) -> np.ndarray:
        return self._vectorize(text)

    def _vectorize(self, text: str) -> np.ndarray:
        vector = np.zeros(self.dimension, dtype=np.float32)
        for word in _WORD_RE.findall(text.lower()):
            digest = hashlib.blake2b(word.encode("utf-8"), digest_size=4).digest()
            vector[int.from_bytes(digest, "little") % self.dimension] += 1.0
        return vector


class EmbeddingProvider:
    """Calls an embedding backend and never lets its failures reach the caller.

    `embed` returns a unit-length float32 vector, or `None` when the backend is
    missing, raises, returns nothing usable, or disagrees with the negotiated
    dimensionality. Once a dimension is known (configured, read from the
    backend, or taken from the first good vector) it never changes.
    """

    def __init__(
        self,
        backend: EmbeddingBackend | None,
        *,
        dimension: int | None = None,
    ) -> None:
        self.backend = backend
        self._dimension = dimension or self._declared_dimension(backend)
        self._lock = threading.Lock()

    @property
    def dimension(self) -> int | None:
        return self._dimension

    @property
    def available(self) -> bool:
        return self.backend is not None

    def embed(self, text: str) -> np.ndarray | None:
        if self.backend is None or not text or not text.strip():
            return None
        try:
            raw = self.backend.embed_one(text)
        except Exception as exc:  # noqa: BLE001 - backend is a black box
            LOGGER.warning("Embedding backend failed: %s", exc)
            return None
        return self._accept(raw)

    def adopt_dimension(self, dimension: int) -> int:
        """Fix the dimension if none is known yet; return the one in force."""

        with self._lock:
            if self._dimension is None:
                self._dimension = int(dimension)
                LOGGER.info("Adopted embedding dimension %d", self._dimension)
            return self._dimension

    def embed_many(self, texts: Sequence[str]) -> list[np.ndarray | None]:
        """Embed a batch, falling back to one call per text if the batch fails."""

        if self.backend is None:
            return [None] * len(texts)
        wanted = [index for index, text in enumerate(texts) if text and text.strip()]
        results: list[np.ndarray | None] = [None] * len(texts)
        if not wanted:
            return results
        try:
            matrix = np.asarray(self.backend.embed([texts[index] for index in wanted]))
        except Exception as exc:  # noqa: BLE001 - backend is a black box
            LOGGER.warning("Batch embedding failed (%s). Retrying one text at a time.", exc)
            return [self.embed(text) for text in texts]
        if matrix.ndim != 2 or matrix.shape[0] != len(wanted):
            LOGGER.warning(
                "Embedding backend returned %s for %d texts. Retrying one text at a time.",
                matrix.shape,
                len(wanted),
            )
            return [self.embed(text) for text in texts]
        for row, index in zip(matrix, wanted):
            results[index] = self._accept(row)
        return results

    def _accept(self, raw: Any) -> np.ndarray | None:
        if raw is None:
            return None
        vector = np.asarray(raw, dtype=np.float32).reshape(-1)
        if vector.size == 0 or not np.all(np.isfinite(vector)):
            return None
        with self._lock:
            if self._dimension is None:
                self._dimension = int(vector.shape[0])
                LOGGER.info("Negotiated embedding dimension %d", self._dimension)
            elif vector.shape[0] != self._dimension:
                LOGGER.debug(
                    "Dropping embedding with dimension %d (expected %d)",
                    vector.shape[0],
                    self._dimension,
                )
                return None
        return normalize_embeddings(vector.reshape(1, -1))[0]

    @staticmethod
    def _declared_dimension(backend: EmbeddingBackend | None) -> int | None:
        if backend is None:
            return None
        value = getattr(backend, "dimension", None)
        if isinstance(value, int) and value > 0:
            return value
        return None
