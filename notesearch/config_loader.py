"""Utilities for loading project configuration files."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field, field_validator

DATA_DIR = Path(__file__).resolve().parent.parent / "data"

MergePolicy = Literal["lexical", "vector", "union"]


class IndexConfig(BaseModel):
    index_root: str = Field(alias="index-root", default="data/index")
    in_memory: bool = Field(alias="in-memory", default=False)
    max_chars: int = Field(alias="max-chars", default=1000)
    fts_tokenizer: str = Field(alias="fts-tokenizer", default="unicode61 remove_diacritics 2")
    vector_backend: Literal["exact", "hnsw"] = Field(alias="vector-backend", default="exact")
    persist_vectors: bool = Field(alias="persist-vectors", default=True)
    hnsw_m: int = Field(alias="hnsw-m", default=32)
    hnsw_ef_construction: int = Field(alias="hnsw-ef-construction", default=100)
    hnsw_ef_search: int = Field(alias="hnsw-ef-search", default=64)

    @field_validator("max_chars")
    @classmethod
    def _positive_max_chars(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("max-chars must be a positive integer")
        return value


class SearchConfig(BaseModel):
    merge_policy: MergePolicy = Field(alias="merge-policy", default="lexical")
    dedupe_union: bool = Field(alias="dedupe-union", default=True)
    default_limit: int = Field(alias="default-limit", default=5)


class CoordinatorConfig(BaseModel):
    min_reindex_interval_seconds: float = Field(
        alias="min-reindex-interval-seconds", default=300.0
    )
    max_workers: int = Field(alias="max-workers", default=4)


class CacheConfig(BaseModel):
    enabled: bool = False
    retention_days: int = Field(alias="retention-days", default=14)
    directory: str = "data/cache"


class AppConfig(BaseModel):
    index: IndexConfig = Field(default_factory=IndexConfig)
    search: SearchConfig = Field(default_factory=SearchConfig)
    coordinator: CoordinatorConfig = Field(default_factory=CoordinatorConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)


class ModelConfig(BaseModel):
    name: str
    backend: str
    endpoint: str | None = None
    device: str | None = None
    dimension: int | None = None
    batch_size: int = Field(alias="batch-size", default=32)


class ModelsConfig(BaseModel):
    embedding_model: ModelConfig = Field(alias="embedding_model")


def _load_yaml(path: Path) -> Any:
    with path.open("r", encoding="utf-8") as handle:
        return yaml.safe_load(handle) or {}


def load_app_config(path: Path | None = None) -> AppConfig:
    """Return application config from `app.config.yaml`."""
    target = path or DATA_DIR / "app.config.yaml"
    return AppConfig.model_validate(_load_yaml(target))


def load_models_config(path: Path | None = None) -> ModelsConfig:
    """Return model selection config from `models.yaml`."""
    target = path or DATA_DIR / "models.yaml"
    return ModelsConfig.model_validate(_load_yaml(target))
