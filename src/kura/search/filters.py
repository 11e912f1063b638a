"""Structural filtering of ranked candidates with a widening window."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Optional

from kura.search.schemas import (
    CandidatePool,
    DocumentAttributes,
    Filters,
    ScoredResult,
)

logger = logging.getLogger(__name__)

# fetch_more(round_number) -> the whole widened pool, fused on one scale
FetchMore = Callable[[int], Awaitable[CandidatePool]]


def matches_filters(attributes: DocumentAttributes, filters: Filters, owner_id: str) -> bool:
    """Check one document against the filters and the requester's ownership."""
    if attributes.owner_id != owner_id:
        return False
    if filters.content_types and attributes.content_type not in filters.content_types:
        return False
    if filters.tags and not filters.tags.issubset(attributes.tags):
        return False
    if filters.date_from is not None and attributes.created_at < filters.date_from:
        return False
    if filters.date_to is not None and attributes.created_at > filters.date_to:
        return False
    return True


class FilterEngine:
    """Applies filters to ranked candidates without disturbing their order.

    Filtering a top-k pool can leave far fewer than limit results even when
    more matches exist further down the corpus. When that happens and the
    pool was truncated, the engine asks for a larger pool (fetch_more) for a
    bounded number of rounds and filters that pool in place of the old one.
    """

    def __init__(self, max_widening_rounds: int = 3) -> None:
        """Initialize the filter engine.

        Args:
            max_widening_rounds: Upper bound on fetch_more calls per search.
        """
        self._max_widening_rounds = max_widening_rounds

    async def filter(
        self,
        pool: CandidatePool,
        filters: Filters,
        limit: int,
        owner_id: str,
        fetch_more: Optional[FetchMore] = None,
    ) -> list[ScoredResult]:
        """Filter candidates, widening the pool if results fall short.

        Args:
            pool: Ranked candidates with their attributes.
            filters: Filters to apply.
            limit: Number of results wanted.
            owner_id: Requester; candidates owned by anyone else are dropped.
            fetch_more: Optional callback returning the complete candidate
                pool for a larger backend k, ranked on a single score scale.

        Returns:
            At most limit candidates, ranked.
        """
        seen: set[str] = {r.id for r in pool.results}
        accepted = self._apply(pool, filters, owner_id)
        exhausted = pool.exhausted
        rounds = 0

        while (
            len(accepted) < limit
            and not exhausted
            and fetch_more is not None
            and rounds < self._max_widening_rounds
        ):
            rounds += 1
            logger.debug(
                f"Widening round {rounds}: {len(accepted)}/{limit} results after filtering "
                f"{len(seen)} candidates"
            )
            more = await fetch_more(rounds)
            fresh = {r.id for r in more.results} - seen
            seen.update(fresh)
            if more.results:
                # The widened pool supersedes the previous one and its scores
                accepted = self._apply(more, filters, owner_id)
            exhausted = more.exhausted or not fresh

        if len(accepted) < limit and rounds:
            logger.debug(
                f"Filtering returned {len(accepted)}/{limit} results after {rounds} widening round(s)"
            )

        return accepted[:limit]

    def _apply(self, pool: CandidatePool, filters: Filters, owner_id: str) -> list[ScoredResult]:
        accepted: list[ScoredResult] = []
        for result in pool.results:
            attributes = pool.attributes.get(result.id)
            if attributes is None:
                logger.warning(f"Candidate {result.id} is indexed but has no metadata, skipping")
                continue
            if attributes.owner_id != owner_id:
                logger.warning(
                    f"Candidate {result.id} belongs to another owner, dropping (owner={owner_id})"
                )
                continue
            if matches_filters(attributes, filters, owner_id):
                accepted.append(result)
        return accepted
