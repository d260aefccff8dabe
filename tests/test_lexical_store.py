from __future__ import annotations

import threading

import pytest

from notesearch.index.chunking import WindowChunker
from notesearch.index.lexical_store import LexicalIndex
from notesearch.index.models import NoteRecord


@pytest.fixture
def index():
    lexical = LexicalIndex()
    try:
        yield lexical
    finally:
        lexical.close()


def _seed(index: LexicalIndex) -> None:
    index.reindex("groceries", "Buy milk and eggs on the way home")
    index.reindex("finance", "Quarterly budget review with the finance team")
    index.reindex("mixed", "Budget for milk deliveries")
    index.reindex("plumbing", "Call the plumber about the leaking sink")
    index.reindex("hiking", "Plan a weekend hiking trip")


def test_search_finds_matching_notes(index) -> None:
    _seed(index)

    hits = index.search("milk", limit=5)

    assert {hit.note_id for hit in hits} == {"groceries", "mixed"}
    assert all(hit.backend == "lexical" for hit in hits)
    assert [hit.score for hit in hits] == sorted((hit.score for hit in hits), reverse=True)


def test_search_ranks_note_matching_more_terms_first(index) -> None:
    _seed(index)

    hits = index.search("milk budget", limit=5)

    assert hits[0].note_id == "mixed"
    assert {hit.note_id for hit in hits} == {"groceries", "finance", "mixed"}


def test_search_uses_prefix_matching(index) -> None:
    _seed(index)
    assert [hit.note_id for hit in index.search("deliv", limit=5)] == ["mixed"]


def test_search_tolerates_punctuation_and_operators(index) -> None:
    _seed(index)

    assert index.search('"milk" AND (NEAR', limit=5)
    assert index.search("?!*", limit=5) == []
    assert index.search("", limit=5) == []


def test_search_finds_notes_with_non_ascii_words(index) -> None:
    index.reindex("de", "Die Straße ist lang")
    index.reindex("fr", "Réunion au café")

    assert [hit.note_id for hit in index.search("Straße", limit=5)] == ["de"]
    assert [hit.note_id for hit in index.search("STRAẞE", limit=5)] == ["de"]
    assert [hit.note_id for hit in index.search("cafe", limit=5)] == ["fr"]


def test_search_honours_limit(index) -> None:
    for number in range(10):
        index.reindex(f"note-{number}", f"shared keyword number {number}")

    assert len(index.search("keyword", limit=3)) == 3
    assert index.search("keyword", limit=0) == []


def test_reindex_replaces_previous_chunks(index) -> None:
    index.reindex("n1", "old content about apples")
    index.reindex("n1", "new content about pears")

    assert index.chunk_count("n1") == 1
    assert index.search("apples", limit=5) == []
    assert [hit.note_id for hit in index.search("pears", limit=5)] == ["n1"]


def test_reindex_is_idempotent(index) -> None:
    index.reindex("n1", "repeat me")
    index.reindex("n1", "repeat me")

    assert index.row_count == 1


def test_long_note_is_indexed_as_several_chunks() -> None:
    index = LexicalIndex(chunker=WindowChunker(max_chars=20))
    try:
        index.reindex("long", "alpha beta gamma delta epsilon zeta eta theta iota kappa")
        assert index.chunk_count("long") > 1
        hit = index.search("kappa", limit=1)[0]
        assert "kappa" in hit.chunk_text
        assert len(hit.chunk_text) <= 20
    finally:
        index.close()


def test_empty_note_leaves_no_rows(index) -> None:
    index.reindex("blank", "   ")
    assert index.chunk_count("blank") == 0


def test_delete_removes_note(index) -> None:
    _seed(index)

    assert index.delete("groceries") is True

    assert index.chunk_count("groceries") == 0
    assert all(hit.note_id != "groceries" for hit in index.search("milk", limit=5))


def test_delete_unknown_note_is_harmless(index) -> None:
    assert index.delete("missing") is True


def test_reindex_bulk_leaves_other_notes_alone(index) -> None:
    index.reindex("kept", "untouched pancakes recipe")
    index.reindex("a", "stale text")

    assert index.reindex_bulk(
        [NoteRecord("a", "fresh waffles"), NoteRecord("b", "more waffles")]
    )

    assert index.chunk_count("kept") == 1
    assert index.search("stale", limit=5) == []
    assert {hit.note_id for hit in index.search("waffles", limit=5)} == {"a", "b"}


def test_drop_all_clears_and_stays_usable(index) -> None:
    _seed(index)

    assert index.drop_all() is True
    assert index.row_count == 0
    assert index.search("milk", limit=5) == []

    index.reindex("again", "milk again")
    assert [hit.note_id for hit in index.search("milk", limit=5)] == ["again"]


def test_on_disk_index_survives_reopen(tmp_path) -> None:
    db_path = tmp_path / "index" / "search.sqlite"
    first = LexicalIndex(db_path)
    first.reindex("n1", "persistent pancakes")
    first.close()

    reopened = LexicalIndex(db_path)
    try:
        assert [hit.note_id for hit in reopened.search("pancakes", limit=5)] == ["n1"]
    finally:
        reopened.close()


def test_corrupt_database_is_recreated(tmp_path) -> None:
    db_path = tmp_path / "search.sqlite"
    db_path.write_bytes(b"this is not a sqlite database" * 100)

    index = LexicalIndex(db_path)
    try:
        assert index.row_count == 0
        index.reindex("n1", "recovered note")
        assert [hit.note_id for hit in index.search("recovered", limit=5)] == ["n1"]
    finally:
        index.close()


def test_unopenable_path_falls_back_to_memory(tmp_path) -> None:
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory", encoding="utf-8")

    index = LexicalIndex(blocker / "index" / "search.sqlite")
    try:
        assert index.db_path == ":memory:"
        index.reindex("n1", "kept in memory")
        assert [hit.note_id for hit in index.search("memory", limit=5)] == ["n1"]
    finally:
        index.close()

    assert blocker.read_text(encoding="utf-8") == "not a directory"


def test_reindex_bulk_skips_malformed_notes(index) -> None:
    index.reindex("kept", "untouched pancakes recipe")

    assert index.reindex_bulk(
        [
            NoteRecord("good", "milk and eggs"),
            NoteRecord("bad", None),
            NoteRecord("", "orphan text"),
            NoteRecord("also-good", "budget review"),
        ]
    )

    assert index.chunk_count("good") == 1
    assert index.chunk_count("also-good") == 1
    assert index.chunk_count("kept") == 1
    assert index.chunk_count("bad") == 0
    assert index.search("orphan", limit=5) == []


def test_reindex_with_non_text_content_fails_without_raising(index) -> None:
    index.reindex("n1", "original text")

    assert index.reindex("n1", None) is False
    assert [hit.note_id for hit in index.search("original", limit=5)] == ["n1"]


def test_readers_never_see_a_half_replaced_note() -> None:
    chunker = WindowChunker(max_chars=12)
    index = LexicalIndex(chunker=chunker)
    short_text = "milk " * 6
    long_text = "budget " * 30
    short_count = len(chunker.chunk_note("n1", short_text))
    long_count = len(chunker.chunk_note("n1", long_text))
    assert short_count != long_count
    index.reindex("n1", short_text)

    observed: set[int] = set()
    stop = threading.Event()

    def read() -> None:
        while True:
            observed.add(index.chunk_count("n1"))
            index.search("milk budget", limit=3)
            if stop.is_set():
                break

    reader = threading.Thread(target=read)
    reader.start()
    try:
        for round_number in range(40):
            assert index.reindex("n1", long_text if round_number % 2 == 0 else short_text)
    finally:
        stop.set()
        reader.join(timeout=5)
        index.close()

    assert observed
    assert observed <= {short_count, long_count}
