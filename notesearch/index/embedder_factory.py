"""Builds the embedding provider the indices share from models.yaml."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Sequence

import httpx
import numpy as np

from notesearch.cache_manager import CacheManager
from notesearch.config_loader import ModelsConfig

from .embeddings import (
    DummyEmbeddingBackend,
    EmbeddingBackend,
    EmbeddingProvider,
    SentenceTransformerBackend,
)

LOGGER = logging.getLogger("notesearch.embedder-factory")

SENTENCE_TRANSFORMER_NAMES = {"sentence-transformers", "sentence transformers", "st"}
DUMMY_NAMES = {"dummy", "hash"}


def _detect_torch_capabilities() -> tuple[bool, bool] | None:
    """Return (cuda_available, mps_available) if torch imports, else None."""

    try:  # pragma: no cover - depends on the installed torch
        import torch  # type: ignore[import-not-found]
    except Exception:  # noqa: BLE001 - torch may fail to import for many reasons
        return None

    cuda = bool(getattr(torch, "cuda", None) and torch.cuda.is_available())
    mps = getattr(torch.backends, "mps", None)
    return (cuda, bool(mps and mps.is_available()))


def _resolve_embedding_device(preferred: str | None) -> str:
    """Map the configured device onto one torch can actually use.

    `auto` (or nothing) picks CUDA, then MPS, then CPU. An explicit accelerator
    that is not present degrades to CPU. Unknown names are passed through.
    """

    requested = (preferred or "auto").strip()
    key = requested.lower()
    if key == "gpu":
        requested = key = "cuda"

    cuda, mps = _detect_torch_capabilities() or (False, False)
    if key in {"auto", ""}:
        if cuda:
            return "cuda"
        return "mps" if mps else "cpu"
    if key.startswith("cuda"):
        return requested if cuda else "cpu"
    if key == "mps":
        return "mps" if mps else "cpu"
    return requested


def create_embedding_backend(models_config: ModelsConfig) -> EmbeddingBackend:
    """Instantiate the embedding backend declared in models.yaml."""

    model = models_config.embedding_model
    kind = (model.backend or "").replace("_", "-").lower()
    fallback_dimension = model.dimension or 64

    if kind in SENTENCE_TRANSFORMER_NAMES:
        return _create_sentence_transformer_backend(
            model_name=model.name,
            batch_size=model.batch_size,
            device=_resolve_embedding_device(model.device),
            fallback_dimension=fallback_dimension,
        )
    if kind == "ollama":
        if model.endpoint:
            return OllamaEmbeddingBackend(
                model=model.name,
                endpoint=model.endpoint,
                fallback=DummyEmbeddingBackend(dimension=fallback_dimension),
            )
        LOGGER.warning("The ollama backend needs an endpoint in models.yaml. Using dummy embeddings.")
    elif kind not in DUMMY_NAMES:
        LOGGER.warning("Unknown embedding backend '%s'. Using dummy embeddings.", kind or "none")
    return DummyEmbeddingBackend(dimension=fallback_dimension)


def create_embedding_provider(
    models_config: ModelsConfig,
    *,
    cache_manager: CacheManager | None = None,
) -> EmbeddingProvider:
    """Build the provider the indices share, optionally behind a disk cache."""

    backend: EmbeddingBackend = create_embedding_backend(models_config)
    if cache_manager is not None and cache_manager.enabled:
        backend = CachedEmbeddingBackend(
            inner=backend,
            cache=cache_manager,
            namespace=models_config.embedding_model.name,
        )
    return EmbeddingProvider(backend, dimension=models_config.embedding_model.dimension)


@dataclass(slots=True)
class OllamaEmbeddingBackend:
    """Client for Ollama's batched `/api/embed` endpoint.

    When the server cannot be reached the optional fallback backend answers
    instead; a warning is logged once per outage. `answered_by_fallback`
    tells the calling thread whether its last answer came from the fallback.
    """

    model: str
    endpoint: str
    timeout: float = 60.0
    fallback: EmbeddingBackend | None = field(default=None, repr=False)
    _base_url: str = field(init=False, repr=False)
    _fallback_warned: bool = field(init=False, default=False, repr=False)
    _last_call: threading.local = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._base_url = self.endpoint.rstrip("/")
        self._last_call = threading.local()

    @property
    def answered_by_fallback(self) -> bool:
        return getattr(self._last_call, "fallback", False)

    def embed(self, texts: Sequence[str]) -> np.ndarray:
        if not texts:
            return np.empty((0, 0), dtype=np.float32)
        try:
            vectors = self._request(texts)
        except (httpx.HTTPError, OSError) as exc:
            backend = self._fallback_backend(exc)
            self._last_call.fallback = True
            return backend.embed(texts)
        self._last_call.fallback = False
        if self._fallback_warned:
            LOGGER.info("Ollama endpoint %s is reachable again.", self.endpoint)
            self._fallback_warned = False
        return vectors

    def embed_one(self, text: str) -> np.ndarray:
        return self.embed([text])[0]

    def _request(self, texts: Sequence[str]) -> np.ndarray:
        with httpx.Client(timeout=self.timeout) as client:
            response = client.post(
                f"{self._base_url}/api/embed",
                json={"model": self.model, "input": list(texts)},
            )
            response.raise_for_status()
        vectors = np.asarray(response.json().get("embeddings") or [], dtype=np.float32)
        if vectors.ndim != 2 or vectors.shape[0] != len(texts):
            raise ValueError("Ollama embed API returned an unexpected payload.")
        return vectors

    def _fallback_backend(self, exc: Exception) -> EmbeddingBackend:
        if self.fallback is None:
            raise exc
        if not self._fallback_warned:
            LOGGER.warning(
                "Ollama endpoint %s unavailable (%s). Falling back to %s.",
                self.endpoint,
                exc,
                self.fallback.__class__.__name__,
            )
            self._fallback_warned = True
        return self.fallback


@dataclass(slots=True)
class CachedEmbeddingBackend:
    """Memoizes single-text embeddings (mostly queries) in the disk cache.

    Answers produced by a fallback backend are returned but never stored, so a
    recovered model is not shadowed by stand-in vectors.
    """

    inner: EmbeddingBackend
    cache: CacheManager
    namespace: str = "default"

    @property
    def dimension(self) -> int | None:
        return getattr(self.inner, "dimension", None)

    def embed(self, texts: Sequence[str]) -> np.ndarray:
        return self.inner.embed(texts)

    def embed_one(self, text: str) -> np.ndarray:
        cached = self.cache.get_embedding(self.namespace, text)
        if cached is not None:
            return cached
        vector = self.inner.embed_one(text)
        if vector is None or getattr(self.inner, "answered_by_fallback", False):
            return vector
        self.cache.set_embedding(self.namespace, text, vector)
        return vector


def _create_sentence_transformer_backend(
    *,
    model_name: str,
    batch_size: int,
    device: str,
    fallback_dimension: int = 64,
) -> EmbeddingBackend:
    """Load the model on `device`, retrying on CPU and finally using dummy embeddings."""

    try:
        return SentenceTransformerBackend(model_name=model_name, batch_size=batch_size, device=device)
    except ImportError as exc:
        LOGGER.warning("sentence-transformers is not installed (%s). Using dummy embeddings.", exc)
    except RuntimeError as exc:  # pragma: no cover - CUDA/device errors
        if device.lower().startswith("cuda"):
            LOGGER.warning("Device '%s' unavailable (%s). Retrying on CPU.", device, exc)
            return _create_sentence_transformer_backend(
                model_name=model_name,
                batch_size=batch_size,
                device="cpu",
                fallback_dimension=fallback_dimension,
            )
        LOGGER.warning("sentence-transformers failed (%s). Using dummy embeddings.", exc)
    return DummyEmbeddingBackend(dimension=fallback_dimension)
