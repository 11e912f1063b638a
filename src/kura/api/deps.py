"""FastAPI dependency injection functions."""

import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Header, HTTPException, Request, status

from kura.config import Config
from kura.db.connection import Database
from kura.db.content import SqliteContentStore
from kura.db.history import SearchHistoryStore
from kura.db.lexical import SqliteLexicalIndex
from kura.db.migrations import run_migrations
from kura.embeddings import LiteLLMEmbeddingProvider
from kura.search.fusion import ResultFuser
from kura.search.filters import FilterEngine
from kura.search.orchestrator import QueryOrchestrator
from kura.search.query_log import BackgroundQueryLog, JsonlQueryLogSink, QueryLogSink
from kura.vectorstore.store import ChromaVectorIndex

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """Long-lived collaborators shared by every request."""

    settings: Config
    db: Database
    vector_index: ChromaVectorIndex
    history: SearchHistoryStore
    query_log: BackgroundQueryLog
    orchestrator: QueryOrchestrator

    async def close(self) -> None:
        """Flush the query log and release storage handles."""
        await self.query_log.stop()
        self.vector_index.close()
        self.db.close()


def build_services(settings: Config) -> Services:
    """Wire the orchestrator and its collaborators from settings.

    Args:
        settings: Application configuration.

    Returns:
        Services with the query log not yet started.
    """
    settings.data_dir.mkdir(parents=True, exist_ok=True)

    db = Database(settings.db_path)
    run_migrations(db)

    vector_index = ChromaVectorIndex(settings.chroma_path)
    history = SearchHistoryStore(db)

    sinks: list[QueryLogSink] = []
    if settings.query_log.history_enabled:
        sinks.append(history)
    if settings.query_log.jsonl_enabled:
        sinks.append(JsonlQueryLogSink(settings.query_log_path))
    query_log = BackgroundQueryLog(sinks, max_pending=settings.query_log.queue_size)

    embedder = LiteLLMEmbeddingProvider(
        model=settings.embedding_model,
        api_key=settings.openai_api_key,
        api_base=settings.embedding_api_base,
        config=settings.embedding,
    )
    if not embedder.is_available:
        logger.warning("No embedding API key configured - searches will use full-text only")

    orchestrator = QueryOrchestrator(
        embedder=embedder,
        vector_index=vector_index,
        lexical_index=SqliteLexicalIndex(db),
        metadata_store=SqliteContentStore(db),
        query_log=query_log,
        search_config=settings.search,
        timeouts=settings.timeouts,
        fuser=ResultFuser(),
        filter_engine=FilterEngine(max_widening_rounds=settings.search.max_widening_rounds),
    )

    return Services(
        settings=settings,
        db=db,
        vector_index=vector_index,
        history=history,
        query_log=query_log,
        orchestrator=orchestrator,
    )


def get_services(request: Request) -> Services:
    """Get the services built at startup."""
    return request.app.state.services


def get_orchestrator(request: Request) -> QueryOrchestrator:
    """Get the shared query orchestrator."""
    return get_services(request).orchestrator


def get_history(request: Request) -> SearchHistoryStore:
    """Get the search history store."""
    return get_services(request).history


def get_owner_id(x_user_id: Optional[str] = Header(None)) -> str:
    """Get the authenticated owner from the X-User-Id header.

    Authentication happens upstream; this only requires that it did.

    Raises:
        HTTPException: 401 if the header is missing or blank.
    """
    if x_user_id is None or not x_user_id.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
        )
    return x_user_id.strip()
