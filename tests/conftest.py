"""Shared pytest fixtures for all tests.

These fixtures properly clean up resources to prevent file descriptor leaks,
and provide in-memory collaborators for orchestrator tests.
"""

import asyncio
import gc
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Optional, Sequence

import pytest

from kura.config import Config, SearchConfig, TimeoutsConfig
from kura.db.connection import Database
from kura.db.migrations import run_migrations
from kura.search.orchestrator import QueryOrchestrator
from kura.search.schemas import (
    ContentRecord,
    ContentType,
    DocumentAttributes,
    LexicalMatch,
    VectorMatch,
)
from kura.vectorstore.store import ChromaVectorIndex

BASE_TIME = datetime(2025, 1, 1, tzinfo=timezone.utc)


def make_record(
    doc_id: str,
    owner_id: str = "alice",
    content_type: ContentType = ContentType.TEXT,
    tags: Sequence[str] = (),
    created_at: Optional[datetime] = None,
    title: Optional[str] = None,
    text: str = "",
) -> ContentRecord:
    """Build a content record with sensible defaults."""
    return ContentRecord(
        id=doc_id,
        title=title if title is not None else f"Title {doc_id}",
        content_type=content_type,
        tags=tuple(tags),
        created_at=created_at or BASE_TIME,
        excerpt_source=text or f"Body of {doc_id}",
        owner_id=owner_id,
    )


def search_config(**overrides) -> SearchConfig:
    """Default search settings with overrides."""
    return replace(Config().search, **overrides)


def fast_timeouts(seconds: float = 0.2) -> TimeoutsConfig:
    """Short timeouts so timeout tests stay quick."""
    return TimeoutsConfig(
        embedding_seconds=seconds,
        vector_seconds=seconds,
        lexical_seconds=seconds,
    )


class FakeEmbedder:
    """Embedding provider returning a fixed vector."""

    def __init__(self, vector=None, error: Optional[Exception] = None, delay: float = 0.0):
        self.vector = vector or [0.1, 0.2, 0.3]
        self.error = error
        self.delay = delay
        self.calls: list[str] = []

    async def embed(self, text: str) -> list[float]:
        self.calls.append(text)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return list(self.vector)


class FakeVectorIndex:
    """Vector index answering from a per-owner list of matches, nearest first."""

    def __init__(
        self,
        matches: Optional[dict[str, list[VectorMatch]]] = None,
        error: Optional[Exception] = None,
        delay: float = 0.0,
    ):
        self.matches = matches or {}
        self.error = error
        self.delay = delay
        self.calls: list[tuple[int, str]] = []
        self.cancelled = False

    async def query(self, vector: list[float], k: int, owner_id: str) -> list[VectorMatch]:
        self.calls.append((k, owner_id))
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
        except asyncio.CancelledError:
            self.cancelled = True
            raise
        if self.error is not None:
            raise self.error
        return self.matches.get(owner_id, [])[:k]


class FakeLexicalIndex:
    """Lexical index answering from a per-owner list of matches, best first."""

    def __init__(
        self,
        matches: Optional[dict[str, list[LexicalMatch]]] = None,
        error: Optional[Exception] = None,
        delay: float = 0.0,
    ):
        self.matches = matches or {}
        self.error = error
        self.delay = delay
        self.calls: list[tuple[str, int, str]] = []
        self.cancelled = False

    async def query(self, text: str, k: int, owner_id: str) -> list[LexicalMatch]:
        self.calls.append((text, k, owner_id))
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
        except asyncio.CancelledError:
            self.cancelled = True
            raise
        if self.error is not None:
            raise self.error
        return self.matches.get(owner_id, [])[:k]


class FakeMetadataStore:
    """Metadata store over in-memory records."""

    def __init__(self, records: Sequence[ContentRecord] = (), error: Optional[Exception] = None):
        self.records = {record.id: record for record in records}
        self.error = error
        self.attribute_calls: list[list[str]] = []
        self.hydrate_calls: list[list[str]] = []

    async def get_attributes(self, ids: Sequence[str]) -> list[DocumentAttributes]:
        self.attribute_calls.append(list(ids))
        if self.error is not None:
            raise self.error
        found = [self.records[i] for i in ids if i in self.records]
        return [
            DocumentAttributes(
                id=r.id,
                content_type=r.content_type,
                tags=frozenset(r.tags),
                created_at=r.created_at,
                owner_id=r.owner_id,
            )
            for r in found
        ]

    async def get_by_ids(self, ids: Sequence[str]) -> list[ContentRecord]:
        self.hydrate_calls.append(list(ids))
        if self.error is not None:
            raise self.error
        return [self.records[i] for i in ids if i in self.records]


class FakeQueryLog:
    """Query log collecting entries in a list."""

    def __init__(self, error: Optional[Exception] = None):
        self.entries: list[dict] = []
        self.error = error

    def record(self, query, result_count, method, elapsed_ms, owner_id) -> None:
        if self.error is not None:
            raise self.error
        self.entries.append(
            {
                "query": query,
                "result_count": result_count,
                "method": method,
                "elapsed_ms": elapsed_ms,
                "owner_id": owner_id,
            }
        )


def make_orchestrator(
    embedder=None,
    vector_index=None,
    lexical_index=None,
    metadata_store=None,
    query_log=None,
    **config_overrides,
) -> QueryOrchestrator:
    """Build an orchestrator over fakes; keyword overrides go to SearchConfig."""
    timeouts = config_overrides.pop("timeouts", None)
    return QueryOrchestrator(
        embedder=embedder or FakeEmbedder(),
        vector_index=vector_index or FakeVectorIndex(),
        lexical_index=lexical_index or FakeLexicalIndex(),
        metadata_store=metadata_store or FakeMetadataStore(),
        query_log=query_log,
        search_config=search_config(**config_overrides),
        timeouts=timeouts,
    )


def days_ago(days: int) -> datetime:
    return BASE_TIME - timedelta(days=days)


@pytest.fixture(autouse=True)
def cleanup_after_test():
    """Clean up resources after each test to prevent file descriptor leaks.

    This runs automatically after every test to help garbage collect
    any lingering ChromaDB or SQLite connections.
    """
    yield
    # Force garbage collection to release file handles
    gc.collect()


@pytest.fixture
def temp_vector_index(tmp_path):
    """Create a temporary ChromaDB vector index that cleans up properly."""
    index_path = tmp_path / "chroma"
    index_path.mkdir()
    index = ChromaVectorIndex(index_path)
    yield index
    # Clean up to release file handles
    index.close()
    gc.collect()


@pytest.fixture
def temp_db(tmp_path):
    """Create a temporary migrated database that cleans up properly."""
    db = Database(tmp_path / "test.db")
    run_migrations(db)
    yield db
    # Clean up to release file handles
    db.close()
    gc.collect()
