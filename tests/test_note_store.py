from __future__ import annotations

from notesearch.note_store import load_notes


def test_load_notes_from_jsonl(tmp_path) -> None:
    path = tmp_path / "notes.jsonl"
    path.write_text(
        '{"id": "a", "content": "first"}\n'
        "\n"
        "not json\n"
        '{"note_id": 7, "text": "numeric id"}\n'
        '{"content": "no id"}\n'
        '{"id": "a", "content": "replaced"}\n',
        encoding="utf-8",
    )

    notes = load_notes(path)

    assert [(note.note_id, note.text) for note in notes] == [("a", "replaced"), ("7", "numeric id")]


def test_missing_content_becomes_empty_text(tmp_path) -> None:
    path = tmp_path / "notes.jsonl"
    path.write_text('{"id": "empty"}\n', encoding="utf-8")

    assert load_notes(path)[0].text == ""


def test_load_notes_from_directory(tmp_path) -> None:
    (tmp_path / "work").mkdir()
    (tmp_path / "work" / "budget.md").write_text("Quarterly budget", encoding="utf-8")
    (tmp_path / "groceries.txt").write_text("Buy milk", encoding="utf-8")
    (tmp_path / "image.png").write_bytes(b"\x89PNG")

    notes = load_notes(tmp_path)

    assert {note.note_id: note.text for note in notes} == {
        "groceries": "Buy milk",
        "work/budget": "Quarterly budget",
    }
