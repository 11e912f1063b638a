"""Hybrid search orchestration over vector and lexical backends."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, replace
from typing import Any, Optional

import pydantic

from kura.config import Config, SearchConfig, TimeoutsConfig
from kura.constants.search import MIN_SEARCH_LIMIT
from kura.search.errors import AllSourcesUnavailable, BackendDegraded, ValidationError
from kura.search.filters import FilterEngine
from kura.search.fusion import ResultFuser
from kura.search.interfaces import (
    EmbeddingProvider,
    LexicalIndex,
    MetadataStore,
    QueryLog,
    VectorIndex,
)
from kura.search.schemas import (
    CandidatePool,
    DocumentAttributes,
    Filters,
    RawHit,
    ScoredResult,
    SearchMethod,
    SearchQuery,
    SearchResponse,
    SearchResult,
    SourceMethod,
)
from kura.search.snippets import generate_snippet

logger = logging.getLogger(__name__)


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)


@dataclass(frozen=True)
class _BackendOutcome:
    """What one backend path produced for one round."""

    backend: str
    hits: Optional[list[RawHit]] = None
    truncated: bool = False
    failure: Optional[BackendDegraded] = None
    embedding: Optional[list[float]] = None

    @property
    def ok(self) -> bool:
        return self.hits is not None

    @property
    def can_widen(self) -> bool:
        return self.ok and self.truncated


_SKIPPED_LEXICAL = _BackendOutcome("lexical")


class QueryOrchestrator:
    """Entry point for hybrid search.

    Validates the request, runs the vector path (embedding + vector index)
    and the lexical path according to the configured mode, fuses and filters
    the candidates, and hydrates display fields for the final results only.
    A failing backend degrades the search; only invalid input or the loss
    of every backend is reported to the caller.
    """

    def __init__(
        self,
        embedder: EmbeddingProvider,
        vector_index: VectorIndex,
        lexical_index: LexicalIndex,
        metadata_store: MetadataStore,
        query_log: QueryLog | None = None,
        search_config: SearchConfig | None = None,
        timeouts: TimeoutsConfig | None = None,
        fuser: ResultFuser | None = None,
        filter_engine: FilterEngine | None = None,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            embedder: Embedding provider for the query text.
            vector_index: Owner-scoped vector similarity index.
            lexical_index: Owner-scoped full-text index.
            metadata_store: Attribute and display metadata lookup.
            query_log: Optional fire-and-forget query log.
            search_config: Search settings (defaults from CONFIG_SCHEMA).
            timeouts: Per-call timeouts (defaults from CONFIG_SCHEMA).
            fuser: Result fuser (defaults to bm25-style lexical ranks).
            filter_engine: Filter engine (defaults to configured widening rounds).
        """
        defaults = Config()
        self._embedder = embedder
        self._vector_index = vector_index
        self._lexical_index = lexical_index
        self._metadata = metadata_store
        self._query_log = query_log
        self._search = search_config or defaults.search
        self._timeouts = timeouts or defaults.timeouts
        self._fuser = fuser or ResultFuser()
        self._filter_engine = filter_engine or FilterEngine(
            max_widening_rounds=self._search.max_widening_rounds
        )

    @property
    def mode(self) -> str:
        """Configured search mode: combined or fallback."""
        return self._search.mode

    async def search(
        self,
        query: str,
        filters: Filters | Mapping[str, Any] | None = None,
        limit: int | str | None = None,
        owner_id: str = "",
    ) -> SearchResponse:
        """Run a hybrid search for one owner.

        Args:
            query: Natural-language or keyword query.
            filters: Structural filters, or a mapping of raw filter values.
            limit: Maximum results (default from configuration). A numeric
                string from a query string is accepted.
            owner_id: Requester; every result belongs to this owner.

        Returns:
            Ranked, deduplicated, filtered and hydrated results.

        Raises:
            ValidationError: If the request is malformed. No backend is called.
            AllSourcesUnavailable: If no backend answered, or a backend failed
                and the ones that answered found nothing.
        """
        started = time.perf_counter()
        request = self._validate(query, filters, limit, owner_id)
        k = self._pool_size(request.limit, 0)
        logger.debug(f"Search validated: limit={request.limit} k={k} mode={self.mode}")

        vector, lexical = await self._run_backends(request, k)

        if _no_usable_source(vector, lexical):
            logger.error(
                f"No search backend produced results (owner={request.owner_id}, "
                f"elapsed_ms={_elapsed_ms(started)}): "
                + ", ".join(
                    f"{o.failure.backend}={o.failure.error_class}"
                    for o in (vector, lexical)
                    if o.failure is not None
                )
            )
            raise AllSourcesUnavailable()

        pool = await self._build_pool(vector, lexical, k)
        logger.debug(f"Fused {len(pool.results)} candidates (exhausted={pool.exhausted})")

        ranked = await self._filter_engine.filter(
            pool,
            request.filters,
            request.limit,
            request.owner_id,
            fetch_more=self._widener(request, k, vector, lexical),
        )

        results = await self._hydrate(ranked, request)
        final_ids = {r.id for r in results}
        method = self._method_used(
            [r for r in ranked if r.id in final_ids], vector.ok, lexical.ok
        )

        response = SearchResponse(
            results=results,
            total_results=len(results),
            search_method_used=method,
            applied_filters=request.filters,
        )

        elapsed_ms = _elapsed_ms(started)
        logger.info(
            f"Search completed: method={method.value} results={len(results)} "
            f"query_chars={len(request.query)} elapsed_ms={elapsed_ms} owner={request.owner_id}"
        )
        self._record(request, len(results), method, elapsed_ms)
        return response

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def _validate(
        self,
        query: str,
        filters: Filters | Mapping[str, Any] | None,
        limit: int | str | None,
        owner_id: str,
    ) -> SearchQuery:
        text = query.strip() if isinstance(query, str) else ""
        if not text:
            raise ValidationError("Search query cannot be empty", field="query")
        if len(text) > self._search.max_query_length:
            raise ValidationError(
                f"Search query must be at most {self._search.max_query_length} characters",
                field="query",
            )

        max_limit = self._search.max_limit
        limit_error = ValidationError(
            f"Limit must be a number between {MIN_SEARCH_LIMIT} and {max_limit}",
            field="limit",
        )
        if limit is None:
            limit = self._search.default_limit
        elif isinstance(limit, str):
            # Raw query-string values
            try:
                limit = int(limit.strip())
            except ValueError as e:
                raise limit_error from e
        if isinstance(limit, bool) or not isinstance(limit, int):
            raise limit_error
        if not MIN_SEARCH_LIMIT <= limit <= max_limit:
            if self._search.limit_policy != "clamp":
                raise limit_error
            limit = min(max(limit, MIN_SEARCH_LIMIT), max_limit)

        if filters is None:
            filters = Filters()
        elif not isinstance(filters, Filters):
            try:
                filters = Filters.model_validate(dict(filters))
            except (pydantic.ValidationError, TypeError, ValueError) as e:
                raise ValidationError(f"Invalid filters: {_describe(e)}", field="filters") from e

        if (
            filters.date_from is not None
            and filters.date_to is not None
            and filters.date_from > filters.date_to
        ):
            raise ValidationError("date_from must not be after date_to", field="date_from")

        if not isinstance(owner_id, str) or not owner_id.strip():
            raise ValidationError("owner_id is required", field="owner_id")

        return SearchQuery(query=text, limit=limit, filters=filters, owner_id=owner_id)

    def _pool_size(self, limit: int, round_number: int) -> int:
        """Candidate pool size for a widening round (round 0 is the first query)."""
        size = limit * self._search.candidate_multiplier
        size *= self._search.widening_factor**round_number
        return max(limit, min(size, self._search.max_candidate_pool))

    # ------------------------------------------------------------------
    # Backends
    # ------------------------------------------------------------------

    async def _run_backends(
        self, request: SearchQuery, k: int
    ) -> tuple[_BackendOutcome, _BackendOutcome]:
        if self.mode == "combined":
            vector, lexical = await asyncio.gather(
                self._vector_path(request.query, k, request.owner_id),
                self._lexical_path(request.query, k, request.owner_id),
            )
            return vector, lexical

        vector = await self._vector_path(request.query, k, request.owner_id)
        if vector.ok and len(vector.hits or []) >= request.limit:
            logger.debug("Lexical search skipped: vector search filled the limit")
            return vector, _SKIPPED_LEXICAL
        logger.debug("Falling back to lexical search")
        lexical = await self._lexical_path(request.query, k, request.owner_id)
        return vector, lexical

    async def _vector_path(
        self,
        text: str,
        k: int,
        owner_id: str,
        embedding: Optional[list[float]] = None,
    ) -> _BackendOutcome:
        started = time.perf_counter()
        if embedding is None:
            try:
                embedding = await asyncio.wait_for(
                    self._embedder.embed(text),
                    timeout=self._timeouts.embedding_seconds,
                )
            except Exception as e:
                return self._degraded("embedding", e, started, owner_id, outcome_backend="vector")
            logger.debug(f"Query embedded in {_elapsed_ms(started)}ms")

        try:
            matches = await asyncio.wait_for(
                self._vector_index.query(embedding, k, owner_id),
                timeout=self._timeouts.vector_seconds,
            )
        except Exception as e:
            return self._degraded("vector", e, started, owner_id)

        hits = [RawHit(m.id, m.distance, SourceMethod.VECTOR) for m in matches]
        logger.debug(f"Vector search returned {len(hits)} hits (k={k})")
        return _BackendOutcome("vector", hits=hits, truncated=len(hits) >= k, embedding=embedding)

    async def _lexical_path(self, text: str, k: int, owner_id: str) -> _BackendOutcome:
        started = time.perf_counter()
        try:
            matches = await asyncio.wait_for(
                self._lexical_index.query(text, k, owner_id),
                timeout=self._timeouts.lexical_seconds,
            )
        except Exception as e:
            return self._degraded("lexical", e, started, owner_id)

        hits = [RawHit(m.id, m.rank, SourceMethod.LEXICAL) for m in matches]
        logger.debug(f"Lexical search returned {len(hits)} hits (k={k})")
        return _BackendOutcome("lexical", hits=hits, truncated=len(hits) >= k)

    def _degraded(
        self,
        backend: str,
        error: Exception,
        started: float,
        owner_id: str,
        outcome_backend: Optional[str] = None,
    ) -> _BackendOutcome:
        failure = BackendDegraded.from_exception(backend, error, _elapsed_ms(started))
        logger.warning(
            f"{backend} backend degraded: {failure.error_class} after {failure.elapsed_ms}ms "
            f"(owner={owner_id}): {failure.message}"
        )
        return _BackendOutcome(outcome_backend or backend, failure=failure)

    # ------------------------------------------------------------------
    # Fusion and widening
    # ------------------------------------------------------------------

    async def _build_pool(
        self,
        vector: _BackendOutcome,
        lexical: _BackendOutcome,
        k: int,
    ) -> CandidatePool:
        candidate_ids: list[str] = []
        for hit in (vector.hits or []) + (lexical.hits or []):
            if hit.id not in candidate_ids:
                candidate_ids.append(hit.id)

        attributes = await self._fetch_attributes(candidate_ids)
        fused = self._fuser.fuse(
            vector.hits,
            lexical.hits,
            created_at={doc_id: attrs.created_at for doc_id, attrs in attributes.items()},
        )
        at_ceiling = k >= self._search.max_candidate_pool
        return CandidatePool(
            results=fused,
            attributes=attributes,
            exhausted=at_ceiling or not (vector.can_widen or lexical.can_widen),
        )

    def _widener(
        self,
        request: SearchQuery,
        k: int,
        vector: _BackendOutcome,
        lexical: _BackendOutcome,
    ):
        """Build the fetch_more callback for the filter engine.

        Each round re-queries only the backends that answered and were cut off
        at k, with a larger k and the query embedding computed once. The other
        backend keeps its previous hits, and the whole hit set is fused again
        so every candidate in the returned pool shares one score scale.
        """
        state = {"k": k, "vector": vector, "lexical": lexical}

        async def widen(previous: _BackendOutcome, next_k: int) -> _BackendOutcome:
            if not previous.can_widen:
                return previous
            if previous.backend == "vector":
                wider = await self._vector_path(
                    request.query, next_k, request.owner_id, embedding=previous.embedding
                )
            else:
                wider = await self._lexical_path(request.query, next_k, request.owner_id)
            if not wider.ok:
                return replace(previous, truncated=False)
            return wider

        async def fetch_more(round_number: int) -> CandidatePool:
            next_k = self._pool_size(request.limit, round_number)
            if next_k <= state["k"]:
                return CandidatePool(exhausted=True)
            state["k"] = next_k

            logger.debug(f"Widening to k={next_k} (round {round_number})")
            wider_vector, wider_lexical = await asyncio.gather(
                widen(state["vector"], next_k), widen(state["lexical"], next_k)
            )
            state["vector"] = wider_vector
            state["lexical"] = wider_lexical
            return await self._build_pool(wider_vector, wider_lexical, next_k)

        return fetch_more

    # ------------------------------------------------------------------
    # Metadata
    # ------------------------------------------------------------------

    async def _fetch_attributes(self, ids: Sequence[str]) -> dict[str, DocumentAttributes]:
        if not ids:
            return {}
        try:
            rows = await self._metadata.get_attributes(ids)
        except Exception as e:
            logger.error(f"Metadata lookup failed for {len(ids)} candidates: {e}")
            raise AllSourcesUnavailable("Search metadata is temporarily unavailable") from e
        return {row.id: row for row in rows}

    async def _hydrate(self, ranked: list[ScoredResult], request: SearchQuery) -> list[SearchResult]:
        if not ranked:
            return []
        try:
            records = await self._metadata.get_by_ids([r.id for r in ranked])
        except Exception as e:
            logger.error(f"Metadata hydration failed for {len(ranked)} results: {e}")
            raise AllSourcesUnavailable("Search metadata is temporarily unavailable") from e

        by_id = {record.id: record for record in records}
        results: list[SearchResult] = []
        for scored in ranked:
            record = by_id.get(scored.id)
            if record is None:
                logger.warning(f"Result {scored.id} disappeared before hydration, skipping")
                continue
            if record.owner_id != request.owner_id:
                logger.warning(
                    f"Result {scored.id} belongs to another owner, dropping (owner={request.owner_id})"
                )
                continue
            results.append(
                SearchResult(
                    id=record.id,
                    title=record.title,
                    excerpt=generate_snippet(
                        record.excerpt_source,
                        request.query,
                        record.content_type,
                        max_length=self._search.snippet_max_length,
                        from_start=record.excerpt_is_annotation,
                    ),
                    content_type=record.content_type,
                    relevance_score=scored.relevance_score,
                    tags=list(record.tags),
                    created_at=record.created_at,
                    owner_id=record.owner_id,
                )
            )
        return results

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    @staticmethod
    def _method_used(
        final: list[ScoredResult], vector_ok: bool, lexical_ok: bool
    ) -> SearchMethod:
        sources = {r.source_method for r in final}
        if sources:
            vector_used = bool(sources & {SourceMethod.VECTOR, SourceMethod.COMBINED})
            lexical_used = bool(sources & {SourceMethod.LEXICAL, SourceMethod.COMBINED})
        else:
            vector_used, lexical_used = vector_ok, lexical_ok

        if vector_used and lexical_used:
            return SearchMethod.COMBINED
        if vector_used:
            return SearchMethod.VECTOR
        return SearchMethod.FTS

    def _record(
        self, request: SearchQuery, result_count: int, method: SearchMethod, elapsed_ms: int
    ) -> None:
        if self._query_log is None:
            return
        try:
            self._query_log.record(
                request.query, result_count, method.value, elapsed_ms, request.owner_id
            )
        except Exception as e:
            logger.warning(f"Query log rejected entry (owner={request.owner_id}): {e}")


def _describe(error: Exception) -> str:
    if isinstance(error, pydantic.ValidationError):
        return "; ".join(
            f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}" for err in error.errors()
        )
    return str(error)


def _no_usable_source(vector: _BackendOutcome, lexical: _BackendOutcome) -> bool:
    """True when nothing answered, or something failed and the rest found nothing."""
    outcomes = (vector, lexical)
    if not any(o.ok for o in outcomes):
        return True
    failed = any(o.failure is not None for o in outcomes)
    return failed and not any(o.hits for o in outcomes)
