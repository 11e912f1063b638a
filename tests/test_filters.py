"""Tests for structural filtering and pool widening."""

from datetime import timedelta

import pytest

from conftest import BASE_TIME
from kura.search.filters import FilterEngine, matches_filters
from kura.search.schemas import (
    CandidatePool,
    ContentType,
    DocumentAttributes,
    Filters,
    ScoredResult,
    SourceMethod,
)


def attrs(doc_id, owner="alice", content_type=ContentType.TEXT, tags=(), days_old=0):
    return DocumentAttributes(
        id=doc_id,
        content_type=content_type,
        tags=frozenset(tags),
        created_at=BASE_TIME - timedelta(days=days_old),
        owner_id=owner,
    )


def pool_of(*documents: DocumentAttributes, exhausted=True) -> CandidatePool:
    results = [
        ScoredResult(doc.id, 1.0 - i * 0.01, SourceMethod.VECTOR) for i, doc in enumerate(documents)
    ]
    return CandidatePool(results, {doc.id: doc for doc in documents}, exhausted)


class TestMatchesFilters:
    """Tests for the per-document filter predicate."""

    def test_empty_filters_match_own_documents(self):
        assert matches_filters(attrs("a"), Filters(), "alice")
        assert not matches_filters(attrs("a", owner="bob"), Filters(), "alice")

    def test_content_types(self):
        filters = Filters(content_types={ContentType.IMAGE, ContentType.PDF})

        assert matches_filters(attrs("a", content_type=ContentType.PDF), filters, "alice")
        assert not matches_filters(attrs("a", content_type=ContentType.TEXT), filters, "alice")

    def test_tags_require_superset(self):
        filters = Filters(tags={"work", "urgent"})

        assert matches_filters(attrs("a", tags=("work", "urgent", "q3")), filters, "alice")
        assert not matches_filters(attrs("a", tags=("work",)), filters, "alice")

    def test_date_range_is_inclusive(self):
        filters = Filters(date_from=BASE_TIME - timedelta(days=2), date_to=BASE_TIME)

        assert matches_filters(attrs("a", days_old=0), filters, "alice")
        assert matches_filters(attrs("a", days_old=2), filters, "alice")
        assert not matches_filters(attrs("a", days_old=3), filters, "alice")

    def test_naive_dates_are_utc(self):
        filters = Filters(date_from=BASE_TIME.replace(tzinfo=None))

        assert filters.date_from == BASE_TIME
        assert matches_filters(attrs("a"), filters, "alice")


class TestFilterEngine:
    """Tests for FilterEngine.filter."""

    @pytest.mark.asyncio
    async def test_preserves_relative_order(self):
        engine = FilterEngine()
        pool = pool_of(
            attrs("a", content_type=ContentType.IMAGE),
            attrs("b"),
            attrs("c", content_type=ContentType.IMAGE),
            attrs("d", content_type=ContentType.IMAGE),
        )

        results = await engine.filter(
            pool, Filters(content_types={ContentType.IMAGE}), 10, "alice"
        )

        assert [r.id for r in results] == ["a", "c", "d"]

    @pytest.mark.asyncio
    async def test_truncates_to_limit(self):
        engine = FilterEngine()
        pool = pool_of(*(attrs(f"d{i}") for i in range(5)))

        results = await engine.filter(pool, Filters(), 2, "alice")

        assert [r.id for r in results] == ["d0", "d1"]

    @pytest.mark.asyncio
    async def test_drops_candidates_without_metadata_or_foreign_owner(self, caplog):
        engine = FilterEngine()
        pool = CandidatePool(
            [
                ScoredResult("ghost", 0.9, SourceMethod.VECTOR),
                ScoredResult("theirs", 0.8, SourceMethod.VECTOR),
                ScoredResult("mine", 0.7, SourceMethod.VECTOR),
            ],
            {"theirs": attrs("theirs", owner="bob"), "mine": attrs("mine")},
        )

        results = await engine.filter(pool, Filters(), 10, "alice")

        assert [r.id for r in results] == ["mine"]
        assert "ghost" in caplog.text
        assert "another owner" in caplog.text

    @pytest.mark.asyncio
    async def test_widens_truncated_pool_until_filled(self):
        engine = FilterEngine(max_widening_rounds=3)
        image_filter = Filters(content_types={ContentType.IMAGE})
        first = pool_of(attrs("t1"), attrs("i1", content_type=ContentType.IMAGE), exhausted=False)
        calls = []

        async def fetch_more(round_number):
            calls.append(round_number)
            return CandidatePool(
                [
                    ScoredResult("t1", 1.0, SourceMethod.VECTOR),
                    ScoredResult("i1", 0.99, SourceMethod.VECTOR),
                    ScoredResult("i2", 0.5, SourceMethod.VECTOR),
                    ScoredResult("i3", 0.4, SourceMethod.VECTOR),
                ],
                {
                    "t1": attrs("t1"),
                    "i1": attrs("i1", content_type=ContentType.IMAGE),
                    "i2": attrs("i2", content_type=ContentType.IMAGE),
                    "i3": attrs("i3", content_type=ContentType.IMAGE),
                },
                exhausted=False,
            )

        results = await engine.filter(first, image_filter, 3, "alice", fetch_more=fetch_more)

        assert [r.id for r in results] == ["i1", "i2", "i3"]
        assert calls == [1]

    @pytest.mark.asyncio
    async def test_does_not_widen_exhausted_pool(self):
        engine = FilterEngine()
        calls = []

        async def fetch_more(round_number):
            calls.append(round_number)
            return CandidatePool()

        pool = pool_of(attrs("a"), exhausted=True)
        results = await engine.filter(
            pool, Filters(tags={"missing"}), 5, "alice", fetch_more=fetch_more
        )

        assert results == []
        assert calls == []

    @pytest.mark.asyncio
    async def test_stops_after_max_rounds(self):
        engine = FilterEngine(max_widening_rounds=2)
        rounds = []

        async def fetch_more(round_number):
            rounds.append(round_number)
            doc = attrs(f"extra{round_number}")
            return CandidatePool(
                [ScoredResult(doc.id, 0.1, SourceMethod.VECTOR)],
                {doc.id: doc},
                exhausted=False,
            )

        pool = pool_of(attrs("a"), exhausted=False)
        results = await engine.filter(
            pool, Filters(tags={"never"}), 5, "alice", fetch_more=fetch_more
        )

        assert results == []
        assert rounds == [1, 2]

    @pytest.mark.asyncio
    async def test_stops_when_round_brings_nothing_new(self):
        engine = FilterEngine(max_widening_rounds=5)
        rounds = []

        async def fetch_more(round_number):
            rounds.append(round_number)
            return CandidatePool(exhausted=False)

        pool = pool_of(attrs("a"), exhausted=False)
        await engine.filter(pool, Filters(tags={"never"}), 5, "alice", fetch_more=fetch_more)

        assert rounds == [1]

    @pytest.mark.asyncio
    async def test_widened_pool_replaces_earlier_scores(self):
        """Results accepted before widening take their score from the wider pool."""
        engine = FilterEngine()
        tagged = {"early": attrs("early", tags=("x",)), "late": attrs("late", tags=("x",))}

        async def fetch_more(round_number):
            return CandidatePool(
                [
                    ScoredResult("other", 1.0, SourceMethod.LEXICAL),
                    ScoredResult("early", 0.6, SourceMethod.LEXICAL),
                    ScoredResult("late", 0.3, SourceMethod.LEXICAL),
                ],
                {"other": attrs("other"), **tagged},
            )

        pool = CandidatePool(
            [
                ScoredResult("other", 1.0, SourceMethod.LEXICAL),
                ScoredResult("early", 0.0, SourceMethod.LEXICAL),
            ],
            {"other": attrs("other"), "early": tagged["early"]},
            exhausted=False,
        )
        results = await engine.filter(
            pool, Filters(tags={"x"}), 2, "alice", fetch_more=fetch_more
        )

        assert [(r.id, r.relevance_score) for r in results] == [("early", 0.6), ("late", 0.3)]

    @pytest.mark.asyncio
    async def test_empty_widened_pool_keeps_accepted_results(self):
        engine = FilterEngine()

        async def fetch_more(round_number):
            return CandidatePool(exhausted=True)

        pool = pool_of(attrs("a"), exhausted=False)
        results = await engine.filter(pool, Filters(), 2, "alice", fetch_more=fetch_more)

        assert [r.id for r in results] == ["a"]
