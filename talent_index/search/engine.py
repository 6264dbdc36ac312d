"""Search engine for vector, lexical, and hybrid queries.

Modes
- ``vector``: embed the query and rank by cosine similarity
  (``score = 1 - distance``), ties broken by most recent update.
- ``lexical``: substring match of any query term across the search text and
  the record's lexical columns, newest first, no score.
- ``hybrid``: blend vector similarity with normalized full-text rank
  (see ``fusion.WeightedScoreFusion``).

Vector and hybrid searches fall back to lexical matching when the embedding
provider is unavailable, and vector search also does so while no record of
the entity type has an embedding yet. Only invalid input raises before I/O;
store failures propagate.
"""

import time
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

import structlog

from ..common.errors import InvalidInputError, ProviderUnavailableError
from ..common.metrics import MetricsCollector
from ..embedding.client import EmbeddingClient, to_store_literal
from ..records import SearchableRecord, record_type_for
from ..store.base import RecordStore, SearchFilters, StoreHit
from .fusion import WeightedScoreFusion, recency_key

logger = structlog.get_logger("search.engine")


class SearchMode(str, Enum):
    VECTOR = "vector"
    LEXICAL = "lexical"
    HYBRID = "hybrid"


def search_mode(value) -> SearchMode:
    """Resolve a mode name; unknown names are invalid input."""
    try:
        return SearchMode(value)
    except ValueError:
        raise InvalidInputError(
            f"Unknown search mode {value!r}; expected one of {[m.value for m in SearchMode]}"
        ) from None


@dataclass(frozen=True)
class SearchResult:
    """One ranked record.

    ``score`` is ``None`` for lexical results, which carry no relevance.
    ``method`` names the path that produced the result, which differs from
    the requested mode after a fallback.
    """
    record: SearchableRecord
    score: Optional[float]
    method: SearchMode
    vector_score: Optional[float] = None
    lexical_score: Optional[float] = None

    @property
    def record_id(self) -> str:
        return self.record.id


class SearchEngine:
    """Answers search queries against the record store."""

    def __init__(
        self,
        store: RecordStore,
        embedding_client: EmbeddingClient,
        default_mode: SearchMode = SearchMode.VECTOR,
        vector_weight: float = 0.7,
        candidate_multiplier: int = 2,
        metrics: Optional[MetricsCollector] = None
    ):
        self.store = store
        self.embedding_client = embedding_client
        self.default_mode = search_mode(default_mode)
        self.vector_weight = vector_weight
        self.candidate_multiplier = candidate_multiplier
        self.metrics = metrics

    async def search(
        self,
        query: str,
        entity_type: str = "candidate",
        limit: int = 10,
        filters: Optional[SearchFilters] = None,
        mode: Optional[SearchMode] = None,
        vector_weight: Optional[float] = None
    ) -> List[SearchResult]:
        """Search ``entity_type`` records matching ``query``.

        Raises
        - ``InvalidInputError`` for a blank query, ``limit < 1``, an unknown
          entity type, unsupported filters, or a weight outside ``[0, 1]``
        - ``StoreError`` when the store query fails
        """
        if not query or not query.strip():
            raise InvalidInputError("Search query must not be empty")
        if limit < 1:
            raise InvalidInputError(f"limit must be >= 1, got {limit}")
        record_type = record_type_for(entity_type)
        if filters is not None:
            filters.validate_for(record_type)
        fusion = WeightedScoreFusion(self.vector_weight if vector_weight is None else vector_weight)
        mode = search_mode(mode) if mode is not None else self.default_mode

        start_time = time.time()
        query = query.strip()
        if mode == SearchMode.LEXICAL:
            results = await self._lexical_search(query, entity_type, limit, filters)
        elif mode == SearchMode.HYBRID:
            results = await self._hybrid_search(query, entity_type, limit, filters, fusion)
        else:
            results = await self._vector_search(query, entity_type, limit, filters)

        duration = time.time() - start_time
        if self.metrics:
            self.metrics.record_search(entity_type, mode.value, duration)
        logger.info(
            "Search completed",
            entity_type=entity_type,
            mode=mode.value,
            method=results[0].method.value if results else mode.value,
            results_count=len(results),
            latency_ms=round(duration * 1000, 2)
        )
        return results

    def _fetch_size(self, limit: int) -> int:
        if self.store.supports_filter_pushdown:
            return limit
        return limit * self.candidate_multiplier

    def _post_filter(self, hits: List[StoreHit], filters: Optional[SearchFilters]) -> List[StoreHit]:
        if filters is None or self.store.supports_filter_pushdown:
            return hits
        return [hit for hit in hits if filters.matches(hit.record)]

    async def _embed_query(self, query: str, entity_type: str) -> Optional[str]:
        """Store literal of the query embedding, or ``None`` when the provider is down."""
        try:
            embedding = await self.embedding_client.embed(query)
        except ProviderUnavailableError as e:
            logger.warning(
                "Embedding provider unavailable, falling back to lexical search",
                entity_type=entity_type,
                error=str(e)
            )
            if self.metrics:
                self.metrics.record_search_fallback(entity_type, "provider_unavailable")
            return None
        return to_store_literal(embedding)

    async def _vector_search(
        self,
        query: str,
        entity_type: str,
        limit: int,
        filters: Optional[SearchFilters]
    ) -> List[SearchResult]:
        literal = await self._embed_query(query, entity_type)
        if literal is None:
            return await self._lexical_search(query, entity_type, limit, filters)

        hits = await self.store.vector_search(entity_type, literal, self._fetch_size(limit), filters)
        if not hits and await self.store.count_embeddings(entity_type) == 0:
            logger.info("No embeddings indexed yet, falling back to lexical search", entity_type=entity_type)
            if self.metrics:
                self.metrics.record_search_fallback(entity_type, "no_embeddings")
            return await self._lexical_search(query, entity_type, limit, filters)

        hits = self._post_filter(hits, filters)
        hits.sort(key=lambda h: (h.score or 0.0, recency_key(h.record)), reverse=True)
        return [
            SearchResult(record=h.record, score=h.score, method=SearchMode.VECTOR, vector_score=h.score)
            for h in hits[:limit]
        ]

    async def _lexical_search(
        self,
        query: str,
        entity_type: str,
        limit: int,
        filters: Optional[SearchFilters]
    ) -> List[SearchResult]:
        terms = list(dict.fromkeys(term.lower() for term in query.split()))
        hits = await self.store.lexical_search(entity_type, terms, self._fetch_size(limit), filters)
        hits = self._post_filter(hits, filters)
        hits.sort(key=lambda h: recency_key(h.record), reverse=True)
        return [SearchResult(record=h.record, score=None, method=SearchMode.LEXICAL) for h in hits[:limit]]

    async def _hybrid_search(
        self,
        query: str,
        entity_type: str,
        limit: int,
        filters: Optional[SearchFilters],
        fusion: WeightedScoreFusion
    ) -> List[SearchResult]:
        literal = await self._embed_query(query, entity_type)
        if literal is None:
            return await self._lexical_search(query, entity_type, limit, filters)

        pool_size = limit * self.candidate_multiplier
        vector_hits = await self.store.vector_search(entity_type, literal, pool_size, filters)
        lexical_hits = await self.store.fulltext_search(entity_type, query, pool_size, filters)

        fused = fusion.fuse(
            self._post_filter(vector_hits, filters),
            self._post_filter(lexical_hits, filters),
        )
        return [
            SearchResult(
                record=h.record,
                score=h.combined,
                method=SearchMode.HYBRID,
                vector_score=h.vector_score,
                lexical_score=h.lexical_score,
            )
            for h in fused[:limit]
        ]
