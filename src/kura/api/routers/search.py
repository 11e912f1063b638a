"""Search endpoints."""

import logging
from datetime import datetime, timezone
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel

from kura.api.deps import get_history, get_orchestrator, get_owner_id
from kura.constants.search import UNAVAILABLE_RETRY_AFTER_SECONDS
from kura.db.history import SearchHistoryStore
from kura.search.errors import AllSourcesUnavailable, ValidationError
from kura.search.orchestrator import QueryOrchestrator
from kura.search.schemas import SearchResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/search", tags=["search"])


class SearchEnvelope(SearchResponse):
    """Search response echoing the query."""

    query: str
    timestamp: datetime


class HistoryEntry(BaseModel):
    """One past search."""

    query: str
    results_count: int
    method: Optional[str] = None
    elapsed_ms: Optional[int] = None
    created_at: datetime


class HistoryResponse(BaseModel):
    """Recent searches for the requester."""

    entries: list[HistoryEntry]
    total: int


def _split(value: Optional[str]) -> list[str]:
    if not value:
        return []
    return [part.strip() for part in value.split(",") if part.strip()]


@router.get("", response_model=SearchEnvelope)
async def search(
    query: str = Query(..., description="Natural language or keyword query"),
    limit: Optional[str] = Query(None, description="Maximum number of results (1-50)"),
    content_types: Optional[str] = Query(None, description="Comma-separated content types"),
    tags: Optional[str] = Query(None, description="Comma-separated tags results must carry"),
    date_from: Optional[datetime] = Query(None, description="Earliest created_at (inclusive)"),
    date_to: Optional[datetime] = Query(None, description="Latest created_at (inclusive)"),
    owner_id: str = Depends(get_owner_id),
    orchestrator: QueryOrchestrator = Depends(get_orchestrator),
) -> SearchEnvelope:
    """Search the requester's captured content."""
    filters: dict[str, Any] = {
        "content_types": _split(content_types),
        "tags": _split(tags),
        "date_from": date_from,
        "date_to": date_to,
    }

    try:
        response = await orchestrator.search(query, filters=filters, limit=limit, owner_id=owner_id)
    except ValidationError as e:
        logger.info(f"Rejected search request (owner={owner_id}): {e.message}")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message) from e
    except AllSourcesUnavailable as e:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=e.message,
            headers={"Retry-After": str(UNAVAILABLE_RETRY_AFTER_SECONDS)},
        ) from e

    return SearchEnvelope(
        **response.model_dump(),
        query=query.strip(),
        timestamp=datetime.now(timezone.utc),
    )


@router.get("/history", response_model=HistoryResponse)
async def search_history(
    limit: int = Query(20, ge=1, le=100),
    owner_id: str = Depends(get_owner_id),
    history: SearchHistoryStore = Depends(get_history),
) -> HistoryResponse:
    """List the requester's recent searches, newest first."""
    entries = [HistoryEntry(**row) for row in history.recent(owner_id, limit)]
    return HistoryResponse(entries=entries, total=len(entries))
