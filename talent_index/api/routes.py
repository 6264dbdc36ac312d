"""API routes for search and reindexing."""

import time
from dataclasses import asdict
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field
import structlog

from ..common.errors import (
    InvalidInputError,
    ProviderUnavailableError,
    RecordNotFoundError,
    StoreError,
    TalentIndexError,
)
from ..reindex.orchestrator import ReindexOrchestrator, ReindexTrigger
from ..search.engine import SearchEngine, SearchMode, SearchResult
from ..store.base import RecordStore, ReindexCriteria, SearchFilters

logger = structlog.get_logger("api.routes")

router = APIRouter()


class FiltersModel(BaseModel):
    """Search filters."""
    status: Optional[str] = Field(None, description="Exact status")
    archived: Optional[bool] = Field(None, description="Archived flag")
    location: Optional[str] = Field(None, description="Case-insensitive location substring")


class SearchRequest(BaseModel):
    """Request model for search endpoint."""
    query: str = Field(..., description="Search query")
    entity_type: str = Field("candidate", description="Entity type to search")
    limit: int = Field(10, le=100, description="Maximum number of results")
    mode: Optional[SearchMode] = Field(None, description="vector, lexical, or hybrid")
    vector_weight: Optional[float] = Field(None, description="Hybrid vector weight in [0, 1]")
    filters: Optional[FiltersModel] = Field(None, description="Search filters")


class SearchResultModel(BaseModel):
    """Search result model."""
    entity_type: str
    record_id: str
    score: Optional[float] = Field(None, description="Relevance; null for lexical matches")
    vector_score: Optional[float] = None
    lexical_score: Optional[float] = None
    method: SearchMode
    record: Dict[str, Any]


class SearchResponse(BaseModel):
    """Response model for search endpoint."""
    results: List[SearchResultModel]
    total: int
    query: str
    mode: SearchMode
    latency_ms: float


class ReindexRequest(BaseModel):
    trigger: ReindexTrigger = Field(ReindexTrigger.MANUAL, description="Reindex trigger")
    changed_fields: List[str] = Field(default_factory=list)


class BatchReindexRequest(BaseModel):
    """Criteria for batch catch-up."""
    entity_type: str = Field(..., description="Entity type to reindex")
    missing_embedding: bool = Field(False, description="Only records without an embedding")
    status: Optional[str] = Field(None, description="Only records with this status")
    updated_after: Optional[datetime] = Field(None, description="Only records updated after this time")
    limit: Optional[int] = Field(None, ge=1, description="Maximum number of records")


def get_search_engine(request: Request) -> SearchEngine:
    """Get search engine from application state."""
    return request.app.state.services.search_engine


def get_orchestrator(request: Request) -> ReindexOrchestrator:
    """Get reindex orchestrator from application state."""
    return request.app.state.services.orchestrator


def get_store(request: Request) -> RecordStore:
    return request.app.state.services.store


def _http_error(error: TalentIndexError) -> HTTPException:
    if isinstance(error, InvalidInputError):
        return HTTPException(status_code=400, detail=str(error))
    if isinstance(error, RecordNotFoundError):
        return HTTPException(status_code=404, detail=str(error))
    if isinstance(error, ProviderUnavailableError):
        return HTTPException(status_code=503, detail=f"Embedding provider unavailable: {error}")
    if isinstance(error, StoreError):
        return HTTPException(status_code=502, detail=f"Store error: {error}")
    return HTTPException(status_code=500, detail=str(error))


def _result_model(result: SearchResult) -> SearchResultModel:
    return SearchResultModel(
        entity_type=result.record.entity_type,
        record_id=result.record_id,
        score=result.score,
        vector_score=result.vector_score,
        lexical_score=result.lexical_score,
        method=result.method,
        record=asdict(result.record),
    )


@router.post("/search", response_model=SearchResponse)
async def search(
    request: SearchRequest,
    search_engine: SearchEngine = Depends(get_search_engine)
):
    """Search indexed records."""
    start_time = time.time()
    filters = SearchFilters(**request.filters.model_dump()) if request.filters else None

    try:
        results = await search_engine.search(
            query=request.query,
            entity_type=request.entity_type,
            limit=request.limit,
            filters=filters,
            mode=request.mode,
            vector_weight=request.vector_weight,
        )
    except TalentIndexError as e:
        logger.error("Search failed", query=request.query, error=str(e))
        raise _http_error(e)

    return SearchResponse(
        results=[_result_model(r) for r in results],
        total=len(results),
        query=request.query,
        mode=request.mode or search_engine.default_mode,
        latency_ms=(time.time() - start_time) * 1000,
    )


@router.post("/reindex/batch")
async def reindex_batch(
    request: BatchReindexRequest,
    orchestrator: ReindexOrchestrator = Depends(get_orchestrator)
):
    """Reindex every record matching the criteria."""
    criteria = ReindexCriteria(
        missing_embedding=request.missing_embedding,
        status=request.status,
        updated_after=request.updated_after,
        limit=request.limit,
    )
    try:
        report = await orchestrator.reindex_by_criteria(request.entity_type, criteria)
    except TalentIndexError as e:
        logger.error("Batch reindex failed", entity_type=request.entity_type, error=str(e))
        raise _http_error(e)
    return report.to_dict()


@router.post("/reindex/{entity_type}/{record_id}")
async def reindex_record(
    entity_type: str,
    record_id: str,
    request: Optional[ReindexRequest] = None,
    orchestrator: ReindexOrchestrator = Depends(get_orchestrator)
):
    """Reindex one record now."""
    request = request or ReindexRequest()
    try:
        await orchestrator.reindex_record(
            entity_type,
            record_id,
            request.trigger,
            request.changed_fields,
        )
    except TalentIndexError as e:
        raise _http_error(e)
    return {
        "status": "success",
        "entity_type": entity_type,
        "record_id": record_id,
        "trigger": request.trigger.value,
    }


@router.get("/index/stats/{entity_type}")
async def index_stats(
    entity_type: str,
    store: RecordStore = Depends(get_store)
):
    """Count indexed and unindexed records."""
    try:
        indexed = await store.count_embeddings(entity_type)
        missing = await store.count_missing(entity_type)
    except TalentIndexError as e:
        raise _http_error(e)
    return {"entity_type": entity_type, "indexed": indexed, "missing": missing}
