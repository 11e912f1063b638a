"""Score normalization and fusion of vector and lexical hits."""

from collections.abc import Iterable, Mapping, Sequence
from datetime import datetime
from typing import Optional

from kura.search.schemas import RawHit, ScoredResult, SourceMethod


def normalize_vector_distance(distance: float) -> float:
    """Convert a cosine distance to a similarity in [0, 1].

    Embeddings are unit-normalized, so similarity = 1 - distance. Distances
    above 1 (opposing vectors) clip to 0.
    """
    return min(1.0, max(0.0, 1.0 - distance))


def normalize_lexical_ranks(
    ranks: Sequence[float],
    higher_is_better: bool = False,
) -> list[float]:
    """Min-max scale a batch of lexical ranks to [0, 1].

    The best rank in the batch maps to 1.0 and the worst to 0.0. A batch with
    a single distinct value maps every member to 1.0.

    Args:
        ranks: Raw ranks in batch order.
        higher_is_better: Whether larger ranks mean better matches. SQLite
            FTS5 bm25() is smaller-is-better.

    Returns:
        Normalized scores in the same order as ranks.
    """
    if not ranks:
        return []

    low = min(ranks)
    high = max(ranks)
    spread = high - low
    if spread == 0:
        return [1.0] * len(ranks)

    if higher_is_better:
        return [(rank - low) / spread for rank in ranks]
    return [(high - rank) / spread for rank in ranks]


def ranking_key(
    result: ScoredResult,
    created_at: Optional[Mapping[str, datetime]] = None,
) -> tuple[float, float, str]:
    """Sort key: score desc, then more recent first, then id for determinism."""
    timestamp = 0.0
    if created_at is not None and result.id in created_at:
        timestamp = created_at[result.id].timestamp()
    return (-result.relevance_score, -timestamp, result.id)


class ResultFuser:
    """Merges raw hits from the vector and lexical backends.

    Each source is normalized on its own scale, then documents are merged by
    id keeping the maximum normalized score (not the average). Documents
    found by both sources are marked COMBINED.
    """

    def __init__(self, lexical_higher_is_better: bool = False) -> None:
        """Initialize the fuser.

        Args:
            lexical_higher_is_better: Rank direction of the lexical engine.
        """
        self._lexical_higher_is_better = lexical_higher_is_better

    def fuse(
        self,
        vector_hits: Optional[Sequence[RawHit]],
        lexical_hits: Optional[Sequence[RawHit]],
        created_at: Optional[Mapping[str, datetime]] = None,
    ) -> list[ScoredResult]:
        """Normalize, merge, and rank hits from both sources.

        Args:
            vector_hits: Hits whose raw_score is a cosine distance, or None if
                the vector path did not run.
            lexical_hits: Hits whose raw_score is an engine rank, or None if
                the lexical path did not run.
            created_at: Optional id -> creation time lookup for tie-breaking.

        Returns:
            Deduplicated results ordered by score, unfiltered and unbounded.
        """
        vector_scores = self._best_by_id(
            (hit.id, normalize_vector_distance(hit.raw_score)) for hit in vector_hits or []
        )

        lexical_list = list(lexical_hits or [])
        lexical_normalized = normalize_lexical_ranks(
            [hit.raw_score for hit in lexical_list],
            higher_is_better=self._lexical_higher_is_better,
        )
        lexical_scores = self._best_by_id(
            (hit.id, score) for hit, score in zip(lexical_list, lexical_normalized)
        )

        merged: dict[str, ScoredResult] = {}
        for doc_id, score in vector_scores.items():
            merged[doc_id] = ScoredResult(doc_id, score, SourceMethod.VECTOR)

        for doc_id, score in lexical_scores.items():
            existing = merged.get(doc_id)
            if existing is None:
                merged[doc_id] = ScoredResult(doc_id, score, SourceMethod.LEXICAL)
            else:
                merged[doc_id] = ScoredResult(
                    doc_id,
                    max(existing.relevance_score, score),
                    SourceMethod.COMBINED,
                )

        return sorted(merged.values(), key=lambda r: ranking_key(r, created_at))

    @staticmethod
    def _best_by_id(scored: Iterable[tuple[str, float]]) -> dict[str, float]:
        best: dict[str, float] = {}
        for doc_id, score in scored:
            if not doc_id:
                continue
            if doc_id not in best or score > best[doc_id]:
                best[doc_id] = score
        return best
