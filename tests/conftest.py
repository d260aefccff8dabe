from __future__ import annotations

import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from notesearch.config_loader import AppConfig, ModelsConfig
from notesearch.main import create_app


def _test_configs() -> tuple[AppConfig, ModelsConfig]:
    app_config = AppConfig.model_validate(
        {
            "index": {"in-memory": True, "max-chars": 200},
            "search": {"merge-policy": "lexical"},
            "coordinator": {"min-reindex-interval-seconds": 0, "max-workers": 2},
            "cache": {"enabled": False},
        }
    )
    models_config = ModelsConfig.model_validate(
        {"embedding_model": {"name": "hash", "backend": "dummy", "dimension": 64}}
    )
    return app_config, models_config


async def _prepare_app(tmp_path) -> tuple[AsyncClient, FastAPI]:
    app_config, models_config = _test_configs()
    app = create_app(app_config, models_config, project_root=tmp_path)

    transport = ASGITransport(app=app)
    async_client = AsyncClient(transport=transport, base_url="http://testserver", timeout=10.0)
    async_client.app = app  # type: ignore[attr-defined]
    return async_client, app


@pytest_asyncio.fixture
async def client(tmp_path):
    async_client, app = await _prepare_app(tmp_path)
    try:
        yield async_client
    finally:
        await async_client.aclose()
        app.state.coordinator.close()
        app.state.cache_manager.close()
