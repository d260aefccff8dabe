"""Helpers for reading `(note_id, text)` pairs exported by the note store."""

from __future__ import annotations

import logging
from pathlib import Path

import orjson

from .index.models import NoteRecord

LOGGER = logging.getLogger(__name__)
NOTE_SUFFIXES = (".md", ".markdown", ".txt")


def load_notes(source: Path) -> list[NoteRecord]:
    """Load notes from a JSONL export or from a directory of note files."""

    if source.is_dir():
        return load_notes_directory(source)
    return load_notes_jsonl(source)


def load_notes_jsonl(path: Path) -> list[NoteRecord]:
    """Read one JSON object per line with `id` (or `note_id`) and `content` (or `text`).

    Lines that fail to parse or lack an identifier are skipped.
    """

    records: list[NoteRecord] = []
    seen: dict[str, int] = {}
    with path.open("rb") as handle:
        for line_number, raw_line in enumerate(handle, start=1):
            if not raw_line.strip():
                continue
            try:
                payload = orjson.loads(raw_line)
            except orjson.JSONDecodeError as exc:
                LOGGER.warning("Skipping %s:%d: invalid JSON (%s)", path, line_number, exc)
                continue
            record = _record_from_payload(payload)
            if record is None:
                LOGGER.warning("Skipping %s:%d: missing note id", path, line_number)
                continue
            if record.note_id in seen:
                records[seen[record.note_id]] = record
                continue
            seen[record.note_id] = len(records)
            records.append(record)
    return records


def load_notes_directory(directory: Path) -> list[NoteRecord]:
    """Treat every note file under `directory` as a note keyed by its relative path."""

    records: list[NoteRecord] = []
    for path in sorted(directory.rglob("*")):
        if not path.is_file() or path.suffix.lower() not in NOTE_SUFFIXES:
            continue
        try:
            text = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            LOGGER.warning("Skipping unreadable note %s: %s", path, exc)
            continue
        note_id = path.relative_to(directory).with_suffix("").as_posix()
        records.append(NoteRecord(note_id=note_id, text=text))
    return records


def _record_from_payload(payload: object) -> NoteRecord | None:
    if not isinstance(payload, dict):
        return None
    raw_id = payload.get("id", payload.get("note_id"))
    if raw_id is None or isinstance(raw_id, (dict, list, bool)):
        return None
    note_id = str(raw_id).strip()
    if not note_id:
        return None
    text = payload.get("content", payload.get("text"))
    return NoteRecord(note_id=note_id, text=text if isinstance(text, str) else "")
