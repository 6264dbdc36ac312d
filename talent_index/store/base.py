"""Backing store interface.

Defines the contract the search engine, index writer, and reindex
orchestrator depend on, independent of the backing implementation. Every
entity type lives in its own table carrying ``search_text``, ``embedding``,
and ``updated_at`` columns next to the record's own fields.

All methods are asynchronous; implementations wrap their driver errors in
``StoreError`` subclasses.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, fields
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple, Type

from ..common.errors import InvalidInputError
from ..records import SearchableRecord


@dataclass(frozen=True)
class SearchFilters:
    """Predicates applied to search candidates.

    ``location`` is a case-insensitive substring match; the others are exact.
    """
    status: Optional[str] = None
    archived: Optional[bool] = None
    location: Optional[str] = None

    def active(self) -> Dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self) if getattr(self, f.name) is not None}

    def validate_for(self, record_type: Type[SearchableRecord]) -> None:
        unsupported = sorted(set(self.active()) - set(record_type.filter_columns))
        if unsupported:
            raise InvalidInputError(
                f"Filters {unsupported} are not supported for {record_type.entity_type}"
            )

    def matches(self, record: SearchableRecord) -> bool:
        """Evaluate the filters in Python, for stores without pushdown."""
        for name, expected in self.active().items():
            actual = getattr(record, record.filter_columns[name], None)
            if name == "location":
                if not actual or expected.lower() not in str(actual).lower():
                    return False
            elif actual != expected:
                return False
        return True


@dataclass(frozen=True)
class ReindexCriteria:
    """Predicate selecting records for batch catch-up."""
    missing_embedding: bool = False
    status: Optional[str] = None
    updated_after: Optional[datetime] = None
    limit: Optional[int] = None


@dataclass(frozen=True)
class StoreHit:
    """A record returned by a store query with its raw score.

    ``score`` is the cosine similarity for vector queries, the full-text rank
    for full-text queries, and ``None`` for substring matches.
    """
    record: SearchableRecord
    score: Optional[float] = None


@dataclass(frozen=True)
class IndexEntry:
    """Persisted index state of one record."""
    record_id: str
    search_text: Optional[str]
    embedding: Optional[Tuple[float, ...]]
    updated_at: Optional[datetime]


class RecordStore(ABC):
    """Abstract backing store.

    ``supports_filter_pushdown`` tells the search engine whether filters
    passed to the search methods are applied by the store; when ``False``
    the engine filters the returned hits itself.
    """

    supports_filter_pushdown: bool = True

    @abstractmethod
    async def fetch_record(self, entity_type: str, record_id: str) -> SearchableRecord:
        """Load the current record; raises ``RecordNotFoundError``."""
        pass

    @abstractmethod
    async def latest_competence_file_url(self, candidate_id: str) -> Optional[str]:
        """URL of the candidate's most recently created competence file."""
        pass

    @abstractmethod
    async def select_ids(self, entity_type: str, criteria: ReindexCriteria) -> List[str]:
        """Ids of records matching ``criteria``, oldest update first."""
        pass

    @abstractmethod
    async def write_index_entry(
        self,
        entity_type: str,
        record_id: str,
        search_text: str,
        embedding_literal: str
    ) -> None:
        """Replace ``(search_text, embedding)`` of one record in one statement."""
        pass

    @abstractmethod
    async def get_index_entry(self, entity_type: str, record_id: str) -> IndexEntry:
        pass

    @abstractmethod
    async def vector_search(
        self,
        entity_type: str,
        embedding_literal: str,
        limit: int,
        filters: Optional[SearchFilters] = None
    ) -> List[StoreHit]:
        """Nearest neighbours by cosine distance; ``score = 1 - distance``."""
        pass

    @abstractmethod
    async def fulltext_search(
        self,
        entity_type: str,
        query: str,
        limit: int,
        filters: Optional[SearchFilters] = None
    ) -> List[StoreHit]:
        """Full-text matches over ``search_text`` scored by rank (``> 0``)."""
        pass

    @abstractmethod
    async def lexical_search(
        self,
        entity_type: str,
        terms: Sequence[str],
        limit: int,
        filters: Optional[SearchFilters] = None
    ) -> List[StoreHit]:
        """Case-insensitive substring matches of any term, newest first."""
        pass

    @abstractmethod
    async def count_embeddings(self, entity_type: str) -> int:
        pass

    @abstractmethod
    async def count_missing(self, entity_type: str) -> int:
        pass

    async def install_change_triggers(self, entity_types: Sequence[str]) -> None:
        """Install change notification triggers; no-op for stores without them."""
        return None

    async def health_check(self) -> bool:
        return True

    async def close(self) -> None:
        return None
