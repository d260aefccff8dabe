from __future__ import annotations

from notesearch.index import build


def test_build_cli_indexes_and_queries(tmp_path, monkeypatch, capsys) -> None:
    monkeypatch.chdir(tmp_path)
    app_config = tmp_path / "app.config.yaml"
    app_config.write_text(
        "index:\n  max-chars: 200\nsearch:\n  merge-policy: union\ncache:\n  enabled: false\n",
        encoding="utf-8",
    )
    models_config = tmp_path / "models.yaml"
    models_config.write_text(
        "embedding_model:\n  name: hash\n  backend: dummy\n  dimension: 32\n",
        encoding="utf-8",
    )
    notes = tmp_path / "notes.jsonl"
    notes.write_text(
        '{"id": "groceries", "content": "Buy milk and eggs"}\n'
        '{"id": "finance", "content": "Quarterly budget review"}\n',
        encoding="utf-8",
    )

    exit_code = build.main(
        [
            str(notes),
            "--app-config",
            str(app_config),
            "--models-config",
            str(models_config),
            "--index-root",
            str(tmp_path / "index"),
            "--drop",
            "--query",
            "where did I put the milk?",
        ]
    )

    assert exit_code == 0
    output = capsys.readouterr().out
    assert "groceries" in output
    assert (tmp_path / "index" / "search.sqlite").exists()
