"""CLI for rebuilding the note search indices from a notes export."""

from __future__ import annotations

import argparse
import logging
from pathlib import Path

from notesearch.cache_manager import CacheManager
from notesearch.config_loader import load_app_config, load_models_config
from notesearch.note_store import load_notes
from notesearch.rag.coordinator import create_index_coordinator


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Rebuild the lexical and vector note indices from a notes JSONL file or directory.",
    )
    parser.add_argument(
        "notes",
        type=Path,
        help="Path to a notes JSONL export or a directory of .md/.txt notes.",
    )
    parser.add_argument(
        "--app-config",
        type=Path,
        default=None,
        help="Path to app.config.yaml (default: data/app.config.yaml).",
    )
    parser.add_argument(
        "--models-config",
        type=Path,
        default=None,
        help="Path to models.yaml (default: data/models.yaml).",
    )
    parser.add_argument(
        "--index-root",
        type=Path,
        default=None,
        help="Override the target directory for the indices (default: index.index-root).",
    )
    parser.add_argument(
        "--drop",
        action="store_true",
        help="Drop both indices before rebuilding.",
    )
    parser.add_argument(
        "--query",
        default=None,
        help="Run a natural-language search after indexing and print the hits.",
    )
    parser.add_argument(
        "--limit",
        type=int,
        default=5,
        help="Maximum number of hits to print (default: 5).",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable debug logging.",
    )
    return parser


def configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(levelname)s %(name)s %(message)s",
    )


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    configure_logging(args.verbose)

    app_config = load_app_config(args.app_config)
    models_config = load_models_config(args.models_config)
    if args.index_root is not None:
        app_config.index = app_config.index.model_copy(update={"index_root": str(args.index_root)})

    notes = load_notes(args.notes)
    logging.info("Loaded %d note(s) from %s", len(notes), args.notes)

    project_root = Path.cwd()
    cache_manager = CacheManager(
        directory=(project_root / app_config.cache.directory).resolve(),
        retention_days=app_config.cache.retention_days,
        enabled=app_config.cache.enabled,
    )
    with create_index_coordinator(
        app_config,
        models_config,
        project_root=project_root,
        cache_manager=cache_manager,
    ) as coordinator:
        if args.drop:
            coordinator.drop_all()
        if coordinator.reindex_all(notes) is None:
            logging.warning("Full reindex was not started.")
        coordinator.wait_idle()
        logging.info("Index status: %s", coordinator.status())

        if args.query:
            hits = coordinator.search_natural(args.query, limit=max(1, args.limit))
            for rank, hit in enumerate(hits, start=1):
                preview = " ".join(hit.chunk_text.split())[:120]
                print(f"{rank}. [{hit.backend} {hit.score:.3f}] {hit.note_id}: {preview}")
            if not hits:
                print("No matches.")
    cache_manager.close()
    return 0


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    raise SystemExit(main())
