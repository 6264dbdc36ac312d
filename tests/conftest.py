"""Shared fixtures: in-memory store, fake embedding provider, fake extractor."""

import re
from datetime import datetime, timedelta, timezone
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np
import pytest
from prometheus_client import CollectorRegistry

from talent_index.common.errors import (
    EnrichmentUnavailableError,
    ProviderUnavailableError,
    RecordNotFoundError,
    StoreQueryError,
)
from talent_index.common.metrics import MetricsCollector
from talent_index.embedding.client import EmbeddingClient, parse_literal
from talent_index.embedding.providers import EmbeddingProvider
from talent_index.records import Candidate, Document, SearchableRecord, record_type_for
from talent_index.reindex.extraction import DocumentExtractor
from talent_index.store.base import IndexEntry, RecordStore, ReindexCriteria, SearchFilters, StoreHit
from talent_index.store.writer import IndexWriter

DIMENSIONS = 256

_TOKEN = re.compile(r"[a-z0-9]+")


class FakeEmbeddingProvider(EmbeddingProvider):
    """Bag-of-words vectors over a vocabulary assigned in first-seen order."""

    def __init__(self, dimensions: int = DIMENSIONS):
        self.dimensions = dimensions
        self.vocabulary: Dict[str, int] = {}
        self.calls: List[str] = []
        self.fail = False
        self.closed = False

    async def create_embedding(self, model: str, input: str, dimensions: int) -> List[float]:
        self.calls.append(input)
        if self.fail:
            raise ProviderUnavailableError("provider is down")
        vector = np.zeros(dimensions)
        for token in _TOKEN.findall(input.lower()):
            index = self.vocabulary.setdefault(token, len(self.vocabulary)) % dimensions
            vector[index] += 1.0
        norm = np.linalg.norm(vector)
        if norm > 0:
            vector = vector / norm
        return vector.tolist()

    async def close(self) -> None:
        self.closed = True


class FakeExtractor(DocumentExtractor):
    def __init__(self, texts: Optional[Dict[str, str]] = None, fail: bool = False):
        self.texts = texts or {}
        self.fail = fail
        self.requested: List[str] = []

    async def extract(self, file_url: str) -> str:
        self.requested.append(file_url)
        if self.fail or file_url not in self.texts:
            raise EnrichmentUnavailableError(f"No text for {file_url}")
        return self.texts[file_url]


def _cosine(a: np.ndarray, b: np.ndarray) -> float:
    denominator = np.linalg.norm(a) * np.linalg.norm(b)
    if denominator == 0:
        return 0.0
    return float(np.dot(a, b) / denominator)


class InMemoryRecordStore(RecordStore):
    """Record store over dictionaries, ranking with numpy."""

    def __init__(self, records: Iterable[SearchableRecord] = (), supports_filter_pushdown: bool = True):
        self.supports_filter_pushdown = supports_filter_pushdown
        self.records: Dict[Tuple[str, str], SearchableRecord] = {}
        self.entries: Dict[Tuple[str, str], Tuple[str, Tuple[float, ...]]] = {}
        self.writes: List[Tuple[str, str]] = []
        self.fail_queries = False
        self.closed = False
        for record in records:
            self.add(record)

    def add(self, record: SearchableRecord) -> None:
        self.records[(record.entity_type, record.id)] = record

    def _check(self) -> None:
        if self.fail_queries:
            raise StoreQueryError("store is down")

    def _of_type(self, entity_type: str) -> List[SearchableRecord]:
        record_type_for(entity_type)
        return [r for (e, _), r in self.records.items() if e == entity_type]

    def _filtered(self, records: List[SearchableRecord], filters: Optional[SearchFilters]) -> List[SearchableRecord]:
        if filters is None or not self.supports_filter_pushdown:
            return records
        return [r for r in records if filters.matches(r)]

    async def fetch_record(self, entity_type: str, record_id: str) -> SearchableRecord:
        self._check()
        record_type_for(entity_type)
        try:
            return self.records[(entity_type, record_id)]
        except KeyError:
            raise RecordNotFoundError(entity_type, record_id) from None

    async def latest_competence_file_url(self, candidate_id: str) -> Optional[str]:
        files = [
            r for r in self._of_type("document")
            if isinstance(r, Document) and r.candidate_id == candidate_id and r.file_url
        ]
        if not files:
            return None
        files.sort(key=lambda r: r.updated_at or datetime.min.replace(tzinfo=timezone.utc))
        return files[-1].file_url

    async def select_ids(self, entity_type: str, criteria: ReindexCriteria) -> List[str]:
        self._check()
        selected = []
        for record in self._of_type(entity_type):
            if criteria.missing_embedding and (entity_type, record.id) in self.entries:
                continue
            if criteria.status is not None and getattr(record, "status", None) != criteria.status:
                continue
            if criteria.updated_after is not None and (
                record.updated_at is None or record.updated_at <= criteria.updated_after
            ):
                continue
            selected.append(record)
        selected.sort(key=lambda r: r.updated_at or datetime.min.replace(tzinfo=timezone.utc))
        ids = [r.id for r in selected]
        return ids[:criteria.limit] if criteria.limit is not None else ids

    async def write_index_entry(
        self,
        entity_type: str,
        record_id: str,
        search_text: str,
        embedding_literal: str
    ) -> None:
        self._check()
        if (entity_type, record_id) not in self.records:
            raise RecordNotFoundError(entity_type, record_id)
        self.entries[(entity_type, record_id)] = (search_text, parse_literal(embedding_literal))
        self.writes.append((entity_type, record_id))

    async def get_index_entry(self, entity_type: str, record_id: str) -> IndexEntry:
        record = await self.fetch_record(entity_type, record_id)
        search_text, vector = self.entries.get((entity_type, record_id), (None, None))
        return IndexEntry(record_id, search_text, vector, record.updated_at)

    async def vector_search(
        self,
        entity_type: str,
        embedding_literal: str,
        limit: int,
        filters: Optional[SearchFilters] = None
    ) -> List[StoreHit]:
        self._check()
        query = np.asarray(parse_literal(embedding_literal))
        hits = []
        for record in self._filtered(self._of_type(entity_type), filters):
            entry = self.entries.get((entity_type, record.id))
            if entry is None:
                continue
            hits.append(StoreHit(record, _cosine(query, np.asarray(entry[1]))))
        hits.sort(key=lambda h: h.score, reverse=True)
        return hits[:limit]

    async def fulltext_search(
        self,
        entity_type: str,
        query: str,
        limit: int,
        filters: Optional[SearchFilters] = None
    ) -> List[StoreHit]:
        self._check()
        terms = set(_TOKEN.findall(query.lower()))
        hits = []
        for record in self._filtered(self._of_type(entity_type), filters):
            entry = self.entries.get((entity_type, record.id))
            if entry is None or not terms:
                continue
            words = _TOKEN.findall(entry[0].lower())
            rank = sum(words.count(t) for t in terms) / (len(words) or 1)
            if rank > 0:
                hits.append(StoreHit(record, rank))
        hits.sort(key=lambda h: h.score, reverse=True)
        return hits[:limit]

    async def lexical_search(
        self,
        entity_type: str,
        terms: Sequence[str],
        limit: int,
        filters: Optional[SearchFilters] = None
    ) -> List[StoreHit]:
        self._check()
        hits = []
        for record in self._filtered(self._of_type(entity_type), filters):
            search_text = self.entries.get((entity_type, record.id), ("", None))[0]
            columns = [str(getattr(record, c)) for c in record.lexical_columns if getattr(record, c)]
            haystack = " ".join([search_text] + columns).lower()
            if any(t.lower() in haystack for t in terms):
                hits.append(StoreHit(record, None))
        return hits[:limit]

    async def count_embeddings(self, entity_type: str) -> int:
        self._check()
        return sum(1 for (e, _) in self.entries if e == entity_type)

    async def count_missing(self, entity_type: str) -> int:
        self._check()
        return len(self._of_type(entity_type)) - await self.count_embeddings(entity_type)

    async def health_check(self) -> bool:
        return not self.fail_queries

    async def close(self) -> None:
        self.closed = True


BASE_TIME = datetime(2024, 1, 1, tzinfo=timezone.utc)


def make_candidate(record_id: str, minutes: int = 0, **values) -> Candidate:
    return Candidate(id=record_id, updated_at=BASE_TIME + timedelta(minutes=minutes), **values)


@pytest.fixture
def metrics():
    return MetricsCollector("test-service", registry=CollectorRegistry())


@pytest.fixture
def provider():
    return FakeEmbeddingProvider()


@pytest.fixture
def embedding_client(provider, metrics):
    return EmbeddingClient(provider, model="test-model", dimensions=DIMENSIONS, metrics=metrics)


@pytest.fixture
def candidates():
    return [
        make_candidate("c1", 1, first_name="Alice", last_name="Johnson",
                       technical_skills=["Python", "Django"], status="active",
                       current_location="Paris"),
        make_candidate("c2", 2, first_name="Bob", last_name="Smith",
                       technical_skills=["Java", "Spring"], status="active",
                       current_location="Berlin"),
        make_candidate("c3", 3, first_name="Carla", last_name="Diaz",
                       technical_skills=["Python", "FastAPI", "PostgreSQL"], status="inactive",
                       current_location="Paris"),
    ]


@pytest.fixture
def store(candidates):
    return InMemoryRecordStore(candidates)


@pytest.fixture
def writer(store, embedding_client):
    return IndexWriter(store, embedding_client, max_input_chars=8000)
