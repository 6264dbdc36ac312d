"""Tests for the search engine and score fusion."""

import pytest

from talent_index.common.errors import InvalidInputError, StoreError
from talent_index.search.engine import SearchEngine, SearchMode, search_mode
from talent_index.search.fusion import WeightedScoreFusion
from talent_index.store.base import SearchFilters, StoreHit
from talent_index.text.projector import project, project_sections

from .conftest import InMemoryRecordStore, make_candidate


async def index_all(store, writer):
    for (entity_type, record_id), record in list(store.records.items()):
        await writer.write(entity_type, record_id, project(record), project_sections(record))


@pytest.mark.asyncio
async def test_vector_search_ranks_matching_skills_first(store, writer, embedding_client):
    """Python candidate outranks the Java candidate."""
    python_dev = make_candidate("py", technical_skills=["Python", "Django"])
    java_dev = make_candidate("jv", technical_skills=["Java", "Spring"])
    store = InMemoryRecordStore([python_dev, java_dev])
    writer.store = store
    await index_all(store, writer)
    engine = SearchEngine(store, embedding_client)

    results = await engine.search("python developer", mode=SearchMode.VECTOR)

    assert [r.record_id for r in results] == ["py", "jv"]
    assert results[0].score > results[1].score
    assert all(r.method == SearchMode.VECTOR for r in results)


@pytest.mark.asyncio
async def test_provider_failure_falls_back_to_lexical(store, writer, embedding_client, provider, metrics):
    """A failing provider degrades search instead of failing it."""
    await index_all(store, writer)
    provider.fail = True
    engine = SearchEngine(store, embedding_client, metrics=metrics)

    results = await engine.search("python developer", mode=SearchMode.VECTOR)

    assert results
    assert {r.record_id for r in results} == {"c1", "c3"}
    assert all(r.method == SearchMode.LEXICAL and r.score is None for r in results)
    assert metrics.registry.get_sample_value(
        "talent_search_fallbacks_total",
        {"entity_type": "candidate", "reason": "provider_unavailable"},
    ) == 1.0


@pytest.mark.asyncio
async def test_no_embeddings_falls_back_to_lexical(store, embedding_client):
    engine = SearchEngine(store, embedding_client)

    results = await engine.search("java")

    assert [r.record_id for r in results] == ["c2"]
    assert results[0].method == SearchMode.LEXICAL


@pytest.mark.asyncio
async def test_lexical_results_are_newest_first(store, embedding_client):
    engine = SearchEngine(store, embedding_client, default_mode=SearchMode.LEXICAL)

    results = await engine.search("PYTHON")

    assert [r.record_id for r in results] == ["c3", "c1"]


@pytest.mark.asyncio
async def test_hybrid_scores_are_bounded_and_sorted(store, writer, embedding_client):
    """Combined scores lie in [0, 1] and never increase."""
    await index_all(store, writer)
    engine = SearchEngine(store, embedding_client)

    for query in ("python", "python postgresql", "java spring berlin", "paris"):
        results = await engine.search(query, mode=SearchMode.HYBRID, limit=5)
        scores = [r.score for r in results]
        assert results
        assert all(0.0 <= s <= 1.0 for s in scores)
        assert scores == sorted(scores, reverse=True)
        assert all(r.method == SearchMode.HYBRID for r in results)


@pytest.mark.asyncio
async def test_hybrid_weight_extremes(store, writer, embedding_client):
    await index_all(store, writer)
    engine = SearchEngine(store, embedding_client)

    vector_only = await engine.search("python", mode=SearchMode.HYBRID, vector_weight=1.0)
    assert all(r.score == pytest.approx(r.vector_score or 0.0) for r in vector_only)

    with pytest.raises(InvalidInputError):
        await engine.search("python", mode=SearchMode.HYBRID, vector_weight=1.5)


@pytest.mark.asyncio
@pytest.mark.parametrize("query", ["", "   "])
async def test_empty_query_rejected_before_io(store, embedding_client, provider, query):
    store.fail_queries = True
    engine = SearchEngine(store, embedding_client)

    with pytest.raises(InvalidInputError):
        await engine.search(query)
    assert provider.calls == []


@pytest.mark.asyncio
async def test_invalid_arguments_rejected(store, embedding_client):
    engine = SearchEngine(store, embedding_client)

    with pytest.raises(InvalidInputError):
        await engine.search("python", limit=0)
    with pytest.raises(InvalidInputError):
        await engine.search("python", entity_type="planet")
    with pytest.raises(InvalidInputError):
        await engine.search("python", entity_type="client", filters=SearchFilters(status="active"))


@pytest.mark.asyncio
async def test_limit_is_respected(store, writer, embedding_client):
    await index_all(store, writer)
    engine = SearchEngine(store, embedding_client)

    assert len(await engine.search("engineer python java", limit=2)) == 2


@pytest.mark.asyncio
@pytest.mark.parametrize("pushdown", [True, False])
async def test_filters_applied_with_and_without_pushdown(candidates, writer, embedding_client, pushdown):
    """Filters hold whether the store or the engine applies them."""
    store = InMemoryRecordStore(candidates, supports_filter_pushdown=pushdown)
    writer.store = store
    await index_all(store, writer)
    engine = SearchEngine(store, embedding_client)
    filters = SearchFilters(status="active", location="paris")

    for mode in SearchMode:
        results = await engine.search("python", mode=mode, filters=filters)
        assert [r.record_id for r in results] == ["c1"], mode


@pytest.mark.asyncio
async def test_store_errors_propagate(store, writer, embedding_client):
    await index_all(store, writer)
    store.fail_queries = True
    engine = SearchEngine(store, embedding_client)

    with pytest.raises(StoreError):
        await engine.search("python")


def test_fusion_normalizes_lexical_rank():
    a, b, c = (make_candidate(i, n) for n, i in enumerate(["a", "b", "c"]))
    fusion = WeightedScoreFusion(vector_weight=0.5)

    fused = fusion.fuse(
        [StoreHit(a, 0.9), StoreHit(b, 1.4), StoreHit(c, -0.2)],
        [StoreHit(a, 0.2), StoreHit(c, 0.1)],
    )

    by_id = {h.record.id: h for h in fused}
    assert by_id["a"].combined == pytest.approx(0.5 * 0.9 + 0.5 * 1.0)
    assert by_id["b"].vector_score == 1.0 and by_id["b"].lexical_score is None
    assert by_id["c"].combined == pytest.approx(0.5 * 0.0 + 0.5 * 0.5)
    assert [h.record.id for h in fused] == ["a", "b", "c"]


def test_fusion_breaks_ties_by_recency():
    older, newer = make_candidate("old", 1), make_candidate("new", 5)
    fused = WeightedScoreFusion(0.7).fuse([StoreHit(older, 0.5), StoreHit(newer, 0.5)], [])

    assert [h.record.id for h in fused] == ["new", "old"]


def test_fusion_keeps_one_hit_per_record():
    """Duplicate ids on either side collapse to the higher score."""
    a, b = make_candidate("a", 1), make_candidate("b", 2)
    fusion = WeightedScoreFusion(vector_weight=0.5)

    fused = fusion.fuse(
        [StoreHit(a, 0.4), StoreHit(a, 0.8)],
        [StoreHit(b, 0.5), StoreHit(b, 1.0), StoreHit(a, 0.25)],
    )

    assert [h.record.id for h in fused] == ["a", "b"]
    by_id = {h.record.id: h for h in fused}
    assert by_id["a"].vector_score == pytest.approx(0.8)
    assert by_id["a"].combined == pytest.approx(0.5 * 0.8 + 0.5 * 0.25)
    assert by_id["b"].lexical_score == pytest.approx(1.0)
    assert by_id["b"].combined == pytest.approx(0.5)


@pytest.mark.asyncio
async def test_unknown_mode_is_invalid_input(store, embedding_client):
    engine = SearchEngine(store, embedding_client)

    with pytest.raises(InvalidInputError):
        await engine.search("python", mode="semantic")
    with pytest.raises(InvalidInputError):
        search_mode("fuzzy")
    assert search_mode("hybrid") is SearchMode.HYBRID
