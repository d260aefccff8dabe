"""Keeps the lexical and vector indices in step with note content and answers queries."""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Iterable, Literal, Sequence

from notesearch.cache_manager import CacheManager
from notesearch.config_loader import AppConfig, ModelsConfig
from notesearch.index.backends import SearchBackend, create_lexical_index, create_vector_index
from notesearch.index.chunking import WindowChunker
from notesearch.index.embedder_factory import create_embedding_provider
from notesearch.index.models import IndexPaths, NoteRecord, SearchHit
from notesearch.index.query import natural_terms

LOGGER = logging.getLogger("notesearch.coordinator")

EPOCH = datetime.fromtimestamp(0, tz=timezone.utc)
MERGE_POLICIES = ("lexical", "vector", "union")

NoteInput = NoteRecord | tuple[str, str]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_record(note: object) -> NoteRecord | None:
    record = NoteRecord.coerce(note)
    if record is None:
        LOGGER.warning("Skipping malformed note in full reindex: %.80r", note)
    return record


@dataclass(slots=True)
class _NoteSlot:
    """Serializes the updates of one note and tracks the newest dispatch."""

    lock: threading.Lock = field(default_factory=threading.Lock, repr=False)
    generation: int = 0
    pending: int = 0


class IndexCoordinator:
    """The single entry point other subsystems use for indexing and search.

    Per-note updates and deletes run on a worker pool and are never rate
    limited. Updates for different notes run in parallel; updates for the same
    note run one at a time, and an update that has been overtaken by a newer
    dispatch for its note is skipped, so the last dispatched content wins.

    Whole-corpus work (`reindex_all`, `drop_all`) runs in order on its own
    single worker. `reindex_all` is a no-op while one is in flight or until
    `min_reindex_interval` has passed since the last one.

    Search policy is fixed at construction and reported by `merge_policy`:

    * ``lexical``: BM25 hits from the full-text index only.
    * ``vector``: cosine hits from the vector index only.
    * ``union``: lexical and vector hits interleaved (lexical first), capped at
      `limit`. With `dedupe_union` a chunk already returned by one backend is
      not repeated by the other.
    """

    def __init__(
        self,
        *,
        lexical: SearchBackend,
        vector: SearchBackend,
        merge_policy: Literal["lexical", "vector", "union"] = "lexical",
        dedupe_union: bool = True,
        min_reindex_interval: timedelta = timedelta(minutes=5),
        max_workers: int = 4,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        if merge_policy not in MERGE_POLICIES:
            raise ValueError(f"merge_policy must be one of {', '.join(MERGE_POLICIES)}.")
        if max_workers <= 0:
            raise ValueError("max_workers must be a positive integer.")
        self.lexical = lexical
        self.vector = vector
        self.merge_policy = merge_policy
        self.dedupe_union = dedupe_union
        self.min_reindex_interval = min_reindex_interval
        self._clock = clock

        self._state_lock = threading.Lock()
        self._is_indexing = False
        self._last_full_reindex_at = EPOCH

        self._notes_lock = threading.Lock()
        self._note_slots: dict[str, _NoteSlot] = {}
        self._pending_lock = threading.Lock()
        self._pending: set[Future] = set()

        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="notesearch-note"
        )
        self._corpus_executor = ThreadPoolExecutor(
            max_workers=1, thread_name_prefix="notesearch-corpus"
        )

    # ------------------------------------------------------------------ #
    # State
    # ------------------------------------------------------------------ #

    @property
    def is_indexing(self) -> bool:
        with self._state_lock:
            return self._is_indexing

    @property
    def last_full_reindex_at(self) -> datetime:
        with self._state_lock:
            return self._last_full_reindex_at

    @property
    def backends(self) -> tuple[SearchBackend, SearchBackend]:
        return (self.lexical, self.vector)

    # ------------------------------------------------------------------ #
    # Per-note updates
    # ------------------------------------------------------------------ #

    def reindex(self, note_id: str, text: str) -> Future:
        """Replace the indexed chunks of one note (fire-and-forget)."""
        note_id = str(note_id)
        return self._dispatch(note_id, "reindex", lambda backend: backend.reindex(note_id, text or ""))

    def delete(self, note_id: str) -> Future:
        """Remove a note from both indices (fire-and-forget)."""
        note_id = str(note_id)
        return self._dispatch(note_id, "delete", lambda backend: backend.delete(note_id))

    def _dispatch(
        self, note_id: str, label: str, action: Callable[[SearchBackend], bool]
    ) -> Future:
        with self._notes_lock:
            slot = self._note_slots.setdefault(note_id, _NoteSlot())
            slot.generation += 1
            slot.pending += 1
            generation = slot.generation
        try:
            future = self._executor.submit(
                self._apply_note_update, note_id, slot, generation, label, action
            )
        except RuntimeError:
            self._release_slot(note_id, slot)
            raise
        return self._track(future)

    def _apply_note_update(
        self,
        note_id: str,
        slot: _NoteSlot,
        generation: int,
        label: str,
        action: Callable[[SearchBackend], bool],
    ) -> bool:
        try:
            with slot.lock:
                with self._notes_lock:
                    latest = slot.generation
                if generation < latest:
                    LOGGER.debug("Skipping stale %s of note %s (superseded)", label, note_id)
                    return False
                return self._on_each_backend(label, action)
        finally:
            self._release_slot(note_id, slot)

    def _release_slot(self, note_id: str, slot: _NoteSlot) -> None:
        # Forget the slot once nothing is queued for its note.
        with self._notes_lock:
            slot.pending -= 1
            if slot.pending == 0 and self._note_slots.get(note_id) is slot:
                del self._note_slots[note_id]

    def _track(self, future: Future) -> Future:
        with self._pending_lock:
            self._pending.add(future)
        future.add_done_callback(self._forget)
        return future

    def _forget(self, future: Future) -> None:
        with self._pending_lock:
            self._pending.discard(future)

    def wait_idle(self, timeout: float | None = None) -> bool:
        """Block until every dispatched update, reindex and drop has finished.

        Work submitted while waiting is waited for too. Returns `False` if
        `timeout` seconds pass first.
        """

        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            with self._pending_lock:
                pending = [future for future in self._pending if not future.done()]
            if not pending:
                return True
            remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
            _, not_done = wait(pending, timeout=remaining)
            if not_done:
                return False

    def _on_each_backend(self, label: str, action: Callable[[SearchBackend], bool]) -> bool:
        succeeded = True
        for backend in self.backends:
            try:
                succeeded = bool(action(backend)) and succeeded
            except Exception:  # noqa: BLE001 - mutations are best effort
                LOGGER.exception("%s failed on %s", label, backend.__class__.__name__)
                succeeded = False
        return succeeded

    # ------------------------------------------------------------------ #
    # Whole-corpus operations
    # ------------------------------------------------------------------ #

    def reindex_all(self, notes: Iterable[NoteInput]) -> Future | None:
        """Rebuild every supplied note in both indices, subject to the cooldown.

        Returns `None` without touching any index when a full reindex is
        already running or the cooldown has not elapsed. Malformed entries
        (wrong arity, non-string id or text) are logged and skipped.
        """

        records = [record for record in map(_as_record, notes) if record is not None]
        with self._state_lock:
            if self._is_indexing:
                LOGGER.info("Full reindex already in progress; request ignored")
                return None
            now = self._clock()
            if now - self._last_full_reindex_at < self.min_reindex_interval:
                LOGGER.info(
                    "Full reindex requested %s after the last one; cooldown is %s",
                    now - self._last_full_reindex_at,
                    self.min_reindex_interval,
                )
                return None
            self._is_indexing = True
            self._last_full_reindex_at = now

        try:
            return self._track(self._corpus_executor.submit(self._run_full_reindex, records))
        except RuntimeError:
            with self._state_lock:
                self._is_indexing = False
            LOGGER.error("Full reindex could not be scheduled; coordinator is closed")
            return None

    def _run_full_reindex(self, records: Sequence[NoteRecord]) -> bool:
        LOGGER.info("Full reindex of %d note(s) started", len(records))
        try:
            return self._on_each_backend(
                "reindex_all", lambda backend: backend.reindex_bulk(records)
            )
        finally:
            with self._state_lock:
                self._is_indexing = False
            LOGGER.info("Full reindex finished")

    def drop_all(self) -> Future:
        """Clear both indices and forget when the last full reindex ran."""
        return self._track(self._corpus_executor.submit(self._run_drop_all))

    def _run_drop_all(self) -> bool:
        succeeded = self._on_each_backend("drop_all", lambda backend: backend.drop_all())
        with self._state_lock:
            self._last_full_reindex_at = EPOCH
        LOGGER.info("Search indices dropped")
        return succeeded

    # ------------------------------------------------------------------ #
    # Search
    # ------------------------------------------------------------------ #

    def search(self, query: str, limit: int = 5) -> list[SearchHit]:
        """Ranked hits under the active merge policy; never raises."""
        if limit <= 0 or not query or not query.strip():
            return []
        if self.merge_policy == "lexical":
            return self._search_backend(self.lexical, query, limit)
        if self.merge_policy == "vector":
            return self._search_backend(self.vector, query, limit)
        return self._merge(
            self._search_backend(self.lexical, query, limit),
            self._search_backend(self.vector, query, limit),
            limit,
        )

    def search_natural(self, text: str, limit: int = 5) -> list[SearchHit]:
        """Free-text search: drops stop words and punctuation before `search`."""
        terms = natural_terms(text or "")
        LOGGER.debug("Natural query terms: %s", terms)
        if not terms:
            return []
        return self.search(" ".join(terms), limit=limit)

    @staticmethod
    def _search_backend(backend: SearchBackend, query: str, limit: int) -> list[SearchHit]:
        try:
            return list(backend.search(query, limit=limit))[:limit]
        except Exception:  # noqa: BLE001 - search never fails the caller
            LOGGER.exception("Search failed on %s", backend.__class__.__name__)
            return []

    def _merge(
        self, lexical_hits: list[SearchHit], vector_hits: list[SearchHit], limit: int
    ) -> list[SearchHit]:
        merged: list[SearchHit] = []
        seen: set[tuple[str, str]] = set()
        for index in range(max(len(lexical_hits), len(vector_hits))):
            for hits in (lexical_hits, vector_hits):
                if index >= len(hits):
                    continue
                hit = hits[index]
                key = (hit.note_id, hit.chunk_text)
                if self.dedupe_union and key in seen:
                    continue
                seen.add(key)
                merged.append(hit)
                if len(merged) >= limit:
                    return merged
        return merged

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    def status(self) -> dict[str, object]:
        with self._state_lock:
            is_indexing = self._is_indexing
            last_full = self._last_full_reindex_at
        return {
            "isIndexing": is_indexing,
            "lastFullReindexAt": last_full.isoformat(),
            "mergePolicy": self.merge_policy,
            "lexicalRows": getattr(self.lexical, "row_count", None),
            "vectorChunks": len(self.vector) if hasattr(self.vector, "__len__") else None,
            "vectorBackend": getattr(self.vector, "backend_name", None),
        }

    def close(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
        self._corpus_executor.shutdown(wait=wait)
        for backend in self.backends:
            closer = getattr(backend, "close", None)
            if callable(closer):
                closer()

    def __enter__(self) -> "IndexCoordinator":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


def create_index_coordinator(
    app_config: AppConfig,
    models_config: ModelsConfig,
    *,
    project_root: Path,
    cache_manager: CacheManager | None = None,
) -> IndexCoordinator:
    """Wire chunker, embedding provider and both backends from configuration."""

    index_config = app_config.index
    paths = IndexPaths(root=(project_root / index_config.index_root).resolve())
    chunker = WindowChunker(index_config.max_chars)
    provider = create_embedding_provider(models_config, cache_manager=cache_manager)
    lexical = create_lexical_index(index_config, paths=paths, chunker=chunker)
    vector = create_vector_index(index_config, provider, paths=paths, chunker=chunker)
    return IndexCoordinator(
        lexical=lexical,
        vector=vector,
        merge_policy=app_config.search.merge_policy,
        dedupe_union=app_config.search.dedupe_union,
        min_reindex_interval=timedelta(
            seconds=app_config.coordinator.min_reindex_interval_seconds
        ),
        max_workers=app_config.coordinator.max_workers,
    )
