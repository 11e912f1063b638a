"""Hybrid search orchestration over vector and lexical backends."""

from kura.search.errors import (
    AllSourcesUnavailable,
    BackendDegraded,
    SearchError,
    ValidationError,
)
from kura.search.filters import FilterEngine
from kura.search.fusion import ResultFuser
from kura.search.orchestrator import QueryOrchestrator
from kura.search.query_log import BackgroundQueryLog, JsonlQueryLogSink
from kura.search.schemas import (
    ContentType,
    Filters,
    SearchMethod,
    SearchResponse,
    SearchResult,
)

__all__ = [
    "AllSourcesUnavailable",
    "BackendDegraded",
    "BackgroundQueryLog",
    "ContentType",
    "FilterEngine",
    "Filters",
    "JsonlQueryLogSink",
    "QueryOrchestrator",
    "ResultFuser",
    "SearchError",
    "SearchMethod",
    "SearchResponse",
    "SearchResult",
    "ValidationError",
]
