"""FastAPI entry point for the note search service."""

from __future__ import annotations

import logging
from pathlib import Path

from fastapi import FastAPI

from . import routes
from .cache_manager import CacheManager
from .config_loader import AppConfig, ModelsConfig, load_app_config, load_models_config
from .rag import create_index_coordinator

LOGGER = logging.getLogger(__name__)


APP_ROOT = Path(__file__).resolve().parent
PROJECT_ROOT = APP_ROOT.parent


def create_app(
    app_config: AppConfig | None = None,
    models_config: ModelsConfig | None = None,
    *,
    project_root: Path = PROJECT_ROOT,
) -> FastAPI:
    app = FastAPI(
        title="Note Search",
        description="Incremental full-text and semantic search over personal notes.",
        version="0.1.0",
    )

    app_config = app_config or load_app_config()
    models_config = models_config or load_models_config()

    cache_dir = (project_root / app_config.cache.directory).resolve()
    cache_manager = CacheManager(
        directory=cache_dir,
        retention_days=app_config.cache.retention_days,
        enabled=app_config.cache.enabled,
    )
    coordinator = create_index_coordinator(
        app_config,
        models_config,
        project_root=project_root,
        cache_manager=cache_manager,
    )

    app.state.app_config = app_config
    app.state.models_config = models_config
    app.state.cache_manager = cache_manager
    app.state.coordinator = coordinator

    app.include_router(routes.router)

    @app.on_event("shutdown")
    async def close_indices() -> None:  # pragma: no cover - shutdown hook
        try:
            coordinator.close(wait=True)
        finally:
            cache_manager.close()
        LOGGER.info("Search indices closed")

    return app
