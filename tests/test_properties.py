"""Property-based tests for fusion and filtering."""

import asyncio
from datetime import timedelta

from hypothesis import given, settings
from hypothesis import strategies as st

from conftest import BASE_TIME
from kura.search.filters import FilterEngine, matches_filters
from kura.search.fusion import ResultFuser
from kura.search.schemas import (
    CandidatePool,
    ContentType,
    DocumentAttributes,
    Filters,
    RawHit,
    SourceMethod,
)

doc_ids = st.sampled_from([f"doc-{i}" for i in range(12)])

vector_hits = st.lists(
    st.builds(
        lambda doc_id, distance: RawHit(doc_id, distance, SourceMethod.VECTOR),
        doc_ids,
        st.floats(min_value=0.0, max_value=2.0, allow_nan=False),
    ),
    max_size=20,
)

lexical_hits = st.lists(
    st.builds(
        lambda doc_id, rank: RawHit(doc_id, rank, SourceMethod.LEXICAL),
        doc_ids,
        st.floats(min_value=-50.0, max_value=0.0, allow_nan=False),
    ),
    max_size=20,
)

attributes = st.builds(
    DocumentAttributes,
    id=st.just(""),
    content_type=st.sampled_from(list(ContentType)),
    tags=st.frozensets(st.sampled_from(["work", "home", "travel"]), max_size=3),
    created_at=st.integers(min_value=0, max_value=30).map(lambda d: BASE_TIME - timedelta(days=d)),
    owner_id=st.sampled_from(["alice", "bob"]),
)

filters = st.builds(
    Filters,
    content_types=st.frozensets(st.sampled_from(list(ContentType)), max_size=2),
    tags=st.frozensets(st.sampled_from(["work", "home", "travel"]), max_size=2),
)


@given(vector_hits, lexical_hits)
def test_fused_results_are_unique_bounded_and_sorted(vector, lexical):
    results = ResultFuser().fuse(vector, lexical)

    ids = [r.id for r in results]
    assert len(ids) == len(set(ids))
    assert set(ids) == {hit.id for hit in vector} | {hit.id for hit in lexical}
    assert all(0.0 <= r.relevance_score <= 1.0 for r in results)
    scores = [r.relevance_score for r in results]
    assert scores == sorted(scores, reverse=True)


@given(vector_hits, lexical_hits)
def test_source_marking_matches_membership(vector, lexical):
    vector_ids = {hit.id for hit in vector}
    lexical_ids = {hit.id for hit in lexical}

    for result in ResultFuser().fuse(vector, lexical):
        if result.id in vector_ids and result.id in lexical_ids:
            assert result.source_method == SourceMethod.COMBINED
        elif result.id in vector_ids:
            assert result.source_method == SourceMethod.VECTOR
        else:
            assert result.source_method == SourceMethod.LEXICAL


@settings(max_examples=50)
@given(
    vector_hits,
    lexical_hits,
    st.lists(attributes, min_size=12, max_size=12),
    filters,
    st.integers(min_value=1, max_value=12),
)
def test_filtered_results_satisfy_filters_and_keep_order(vector, lexical, attrs, flt, limit):
    attrs_by_id = {
        f"doc-{i}": DocumentAttributes(
            id=f"doc-{i}",
            content_type=a.content_type,
            tags=a.tags,
            created_at=a.created_at,
            owner_id=a.owner_id,
        )
        for i, a in enumerate(attrs)
    }
    fused = ResultFuser().fuse(vector, lexical)
    pool = CandidatePool(fused, attrs_by_id)

    results = asyncio.run(FilterEngine().filter(pool, flt, limit, "alice"))

    assert len(results) <= limit
    for result in results:
        assert matches_filters(attrs_by_id[result.id], flt, "alice")
    positions = [fused.index(r) for r in results]
    assert positions == sorted(positions)
