"""Full-text chunk index on top of SQLite FTS5 with BM25 ranking."""

from __future__ import annotations

import logging
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Sequence

from .chunking import WindowChunker
from .models import LEXICAL_BACKEND, NoteRecord, SearchHit
from .query import build_match_expression, tokenize_query

LOGGER = logging.getLogger("notesearch.lexical")

IN_MEMORY = ":memory:"
DEFAULT_TOKENIZER = "unicode61 remove_diacritics 2"


class LexicalIndex:
    """FTS5 table with two columns: `note_id` (unindexed) and `chunk` (searchable).

    A single connection is shared by every thread and guarded by a lock, and
    each per-note replacement runs in one transaction, so readers never see a
    note with its old rows deleted but the new ones only partly inserted.
    """

    def __init__(
        self,
        db_path: Path | str = IN_MEMORY,
        *,
        chunker: WindowChunker | None = None,
        tokenizer: str = DEFAULT_TOKENIZER,
    ) -> None:
        self.db_path = str(db_path)
        self.chunker = chunker or WindowChunker()
        self.tokenizer = tokenizer
        self._lock = threading.RLock()
        self._conn = self._open()

    # ------------------------------------------------------------------ #
    # Connection and schema
    # ------------------------------------------------------------------ #

    def _open(self) -> sqlite3.Connection:
        """Connect to the configured file, degrading to an in-memory index.

        A file that is not a usable database is deleted and recreated. A path
        that cannot be opened at all is left untouched, and the index lives in
        memory for this process.
        """

        if self.db_path == IN_MEMORY:
            return self._connect(IN_MEMORY)
        try:
            return self._connect(self.db_path)
        except (sqlite3.OperationalError, OSError) as exc:
            return self._fall_back_to_memory(exc)
        except sqlite3.DatabaseError as exc:
            LOGGER.error(
                "Search index at %s is unusable (%s). Recreating an empty index.",
                self.db_path,
                exc,
            )
        try:
            self._remove_database_files()
            return self._connect(self.db_path)
        except (sqlite3.DatabaseError, OSError) as exc:
            return self._fall_back_to_memory(exc)

    def _fall_back_to_memory(self, exc: Exception) -> sqlite3.Connection:
        LOGGER.error(
            "Could not open search index at %s (%s). Using an in-memory index.",
            self.db_path,
            exc,
        )
        self.db_path = IN_MEMORY
        return self._connect(IN_MEMORY)

    def _connect(self, target: str) -> sqlite3.Connection:
        if target != IN_MEMORY:
            Path(target).parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(target, check_same_thread=False, isolation_level=None)
        try:
            conn.execute("PRAGMA busy_timeout = 5000")
            if target != IN_MEMORY:
                conn.execute("PRAGMA journal_mode=WAL")
            self._create_schema(conn)
        except sqlite3.DatabaseError:
            conn.close()
            raise
        if target != IN_MEMORY:
            LOGGER.info("Search index database connected at %s", target)
        return conn

    def _create_schema(self, conn: sqlite3.Connection) -> None:
        tokenizer = self.tokenizer.replace("'", "''")
        conn.execute(
            "CREATE VIRTUAL TABLE IF NOT EXISTS fts USING fts5("
            f"note_id UNINDEXED, chunk, tokenize='{tokenizer}')"
        )

    def _remove_database_files(self) -> None:
        for suffix in ("", "-wal", "-shm"):
            Path(self.db_path + suffix).unlink(missing_ok=True)

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            self._conn.execute("BEGIN IMMEDIATE")
            try:
                yield self._conn
            except BaseException:
                if self._conn.in_transaction:
                    self._conn.execute("ROLLBACK")
                raise
            self._conn.execute("COMMIT")

    # ------------------------------------------------------------------ #
    # Indexing
    # ------------------------------------------------------------------ #

    def reindex(self, note_id: str, text: str) -> bool:
        """Replace this note's rows with fresh chunks."""
        try:
            with self._transaction() as conn:
                inserted = self._replace_note(conn, note_id, text)
        except (sqlite3.Error, TypeError, ValueError) as exc:
            LOGGER.error("Lexical reindex of note %s failed: %s", note_id, exc)
            return False
        LOGGER.debug("Indexed note %s with %d chunk(s)", note_id, inserted)
        return True

    def reindex_bulk(self, notes: Sequence[NoteRecord]) -> bool:
        """Replace the rows of every supplied note in one transaction.

        A note that cannot be indexed is rolled back to its savepoint and
        skipped; the rest of the batch is still committed.
        """
        inserted = skipped = 0
        try:
            with self._transaction() as conn:
                for note in notes:
                    if not note.is_valid:
                        LOGGER.warning("Skipping malformed note %r in bulk reindex", note.note_id)
                        skipped += 1
                        continue
                    conn.execute("SAVEPOINT note")
                    try:
                        inserted += self._replace_note(conn, note.note_id, note.text)
                    except (sqlite3.Error, TypeError, ValueError) as exc:
                        conn.execute("ROLLBACK TO note")
                        LOGGER.warning("Skipping note %s in bulk reindex: %s", note.note_id, exc)
                        skipped += 1
                    finally:
                        conn.execute("RELEASE note")
        except sqlite3.Error as exc:
            LOGGER.error("Lexical bulk reindex failed: %s", exc)
            return False
        LOGGER.info(
            "Bulk reindex completed. Notes: %d, chunks: %d, skipped: %d",
            len(notes) - skipped,
            inserted,
            skipped,
        )
        return True

    def _replace_note(self, conn: sqlite3.Connection, note_id: str, text: str) -> int:
        conn.execute("DELETE FROM fts WHERE note_id = ?", (note_id,))
        chunks = self.chunker.chunk_note(note_id, text)
        conn.executemany(
            "INSERT INTO fts (note_id, chunk) VALUES (?, ?)",
            [(chunk.note_id, chunk.text) for chunk in chunks],
        )
        return len(chunks)

    def delete(self, note_id: str) -> bool:
        """Remove a note from the index entirely."""
        try:
            with self._transaction() as conn:
                conn.execute("DELETE FROM fts WHERE note_id = ?", (note_id,))
        except sqlite3.Error as exc:
            LOGGER.error("Lexical delete of note %s failed: %s", note_id, exc)
            return False
        LOGGER.debug("Note %s deleted from search index", note_id)
        return True

    def drop_all(self) -> bool:
        """Remove every row, recreating the table if clearing it fails."""
        with self._lock:
            try:
                with self._transaction() as conn:
                    conn.execute("DELETE FROM fts")
                    conn.execute("INSERT INTO fts(fts) VALUES('optimize')")
                self._compact()
                return True
            except sqlite3.Error as exc:
                LOGGER.warning("Clearing the search index failed (%s). Recreating it.", exc)
            try:
                with self._transaction() as conn:
                    conn.execute("DROP TABLE IF EXISTS fts")
                    self._create_schema(conn)
                self._compact()
            except sqlite3.Error as exc:
                LOGGER.error("Search index drop_all failed: %s", exc)
                return False
            return True

    def _compact(self) -> None:
        # Must run outside a transaction.
        try:
            self._conn.execute("PRAGMA wal_checkpoint(TRUNCATE)")
            self._conn.execute("VACUUM")
        except sqlite3.Error as exc:
            LOGGER.warning("Search index compaction skipped: %s", exc)

    # ------------------------------------------------------------------ #
    # Search
    # ------------------------------------------------------------------ #

    def search(self, query: str, limit: int = 5) -> list[SearchHit]:
        """Forgiving ranked search over chunk text.

        Splits on non-alphanumerics (so punctuation cannot break MATCH), ORs
        the tokens and adds a prefix wildcard to tokens of three or more
        characters. FTS5's `bm25()` is smaller for better matches, so rows are
        ordered ascending and the score is reported negated.
        """

        if limit <= 0:
            return []
        expression = build_match_expression(tokenize_query(query))
        if not expression:
            return []
        LOGGER.debug("FTS query: %s", expression)
        try:
            with self._lock:
                rows = self._conn.execute(
                    "SELECT rowid, note_id, chunk, bm25(fts) FROM fts "
                    "WHERE fts MATCH ? ORDER BY bm25(fts) ASC LIMIT ?",
                    (expression, limit),
                ).fetchall()
        except sqlite3.Error as exc:
            LOGGER.error("Lexical search error: %s", exc)
            return []

        hits: list[SearchHit] = []
        for rowid, note_id, chunk, rank in rows:
            if not isinstance(note_id, str) or not note_id:
                LOGGER.warning("Skipping search row %s with malformed note id %r", rowid, note_id)
                continue
            hits.append(
                SearchHit(
                    id=int(rowid),
                    note_id=note_id,
                    chunk_text=chunk,
                    score=-float(rank),
                    backend=LEXICAL_BACKEND,
                )
            )
        return hits

    # ------------------------------------------------------------------ #
    # Diagnostics
    # ------------------------------------------------------------------ #

    @property
    def row_count(self) -> int:
        try:
            with self._lock:
                return int(self._conn.execute("SELECT count(*) FROM fts").fetchone()[0])
        except sqlite3.Error:
            return 0

    def chunk_count(self, note_id: str) -> int:
        try:
            with self._lock:
                row = self._conn.execute(
                    "SELECT count(*) FROM fts WHERE note_id = ?", (note_id,)
                ).fetchone()
        except sqlite3.Error:
            return 0
        return int(row[0])

    def close(self) -> None:
        with self._lock:
            self._conn.close()
