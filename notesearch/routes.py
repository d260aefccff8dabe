"""API routers for note indexing and search."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from fastapi import APIRouter, HTTPException, Query, Request, status
from fastapi.responses import Response
from pydantic import BaseModel, Field

from .index.models import NoteRecord, SearchHit
from .rag import IndexCoordinator

router = APIRouter()
logger = logging.getLogger(__name__)
MAX_SEARCH_LIMIT = 50


# --------------------------------------------------------------------------- #
# Pydantic schemas
# --------------------------------------------------------------------------- #


class NotePayload(BaseModel):
    content: str = ""


class BulkNote(BaseModel):
    id: str
    content: str = ""


class ReindexAllRequest(BaseModel):
    notes: list[BulkNote]


class ReindexAllResponse(BaseModel):
    accepted: bool
    is_indexing: bool = Field(alias="isIndexing")


class SearchHitItem(BaseModel):
    id: int
    note_id: str = Field(alias="noteId")
    chunk_text: str = Field(alias="chunkText")
    score: float
    backend: str


class SearchResponse(BaseModel):
    query: str
    merge_policy: str = Field(alias="mergePolicy")
    results: list[SearchHitItem]
    total: int


# --------------------------------------------------------------------------- #
# Helpers
# --------------------------------------------------------------------------- #


def _coordinator(request: Request) -> IndexCoordinator:
    coordinator = getattr(request.app.state, "coordinator", None)
    if coordinator is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Search index is not initialised.",
        )
    return coordinator


def _validate_note_id(note_id: str) -> str:
    cleaned = note_id.strip()
    if not cleaned:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Note id must not be empty.",
        )
    return cleaned


def _search_response(query: str, coordinator: IndexCoordinator, hits: list[SearchHit]) -> SearchResponse:
    items = [SearchHitItem.model_validate(hit.as_dict()) for hit in hits]
    return SearchResponse.model_validate(
        {
            "query": query,
            "mergePolicy": coordinator.merge_policy,
            "results": items,
            "total": len(items),
        }
    )


# --------------------------------------------------------------------------- #
# Routes
# --------------------------------------------------------------------------- #


@router.put("/notes/{note_id}", status_code=status.HTTP_202_ACCEPTED)
async def reindex_note(note_id: str, payload: NotePayload, request: Request) -> Response:
    coordinator = _coordinator(request)
    coordinator.reindex(_validate_note_id(note_id), payload.content)
    return Response(status_code=status.HTTP_202_ACCEPTED)


@router.delete("/notes/{note_id}", status_code=status.HTTP_202_ACCEPTED)
async def delete_note(note_id: str, request: Request) -> Response:
    coordinator = _coordinator(request)
    coordinator.delete(_validate_note_id(note_id))
    return Response(status_code=status.HTTP_202_ACCEPTED)


@router.post("/reindex-all", response_model=ReindexAllResponse)
async def reindex_all(payload: ReindexAllRequest, request: Request) -> ReindexAllResponse:
    coordinator = _coordinator(request)
    notes = [NoteRecord(note_id=_validate_note_id(note.id), text=note.content) for note in payload.notes]
    pending = coordinator.reindex_all(notes)
    if pending is None:
        logger.info("Full reindex of %d note(s) ignored (in progress or cooling down)", len(notes))
    return ReindexAllResponse.model_validate(
        {"accepted": pending is not None, "isIndexing": coordinator.is_indexing}
    )


@router.delete("/index", status_code=status.HTTP_202_ACCEPTED)
async def drop_index(request: Request) -> Response:
    coordinator = _coordinator(request)
    coordinator.drop_all()
    return Response(status_code=status.HTTP_202_ACCEPTED)


@router.get("/search", response_model=SearchResponse)
async def search(
    request: Request,
    q: str = Query(..., description="Search text"),
    limit: int = Query(5, ge=1, le=MAX_SEARCH_LIMIT),
) -> SearchResponse:
    coordinator = _coordinator(request)
    hits = await asyncio.to_thread(coordinator.search, q, limit)
    return _search_response(q, coordinator, hits)


@router.get("/search/natural", response_model=SearchResponse)
async def search_natural(
    request: Request,
    q: str = Query(..., description="Free-text question or phrase"),
    limit: int = Query(5, ge=1, le=MAX_SEARCH_LIMIT),
) -> SearchResponse:
    coordinator = _coordinator(request)
    hits = await asyncio.to_thread(coordinator.search_natural, q, limit)
    return _search_response(q, coordinator, hits)


@router.get("/status")
async def index_status(request: Request) -> dict[str, Any]:
    return _coordinator(request).status()
