"""Score fusion for hybrid search.

Vector scores are cosine similarities clamped to ``[0, 1]``; full-text ranks
are divided by the best rank of the result set so the top lexical match
scores ``1``. The combined score is ``w * vector + (1 - w) * lexical`` and
therefore also lies in ``[0, 1]``. A record missing from one side scores
``0`` on that side.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional

import structlog

from ..common.errors import InvalidInputError
from ..records import SearchableRecord
from ..store.base import StoreHit

logger = structlog.get_logger("search.fusion")


@dataclass(frozen=True)
class FusedHit:
    record: SearchableRecord
    combined: float
    vector_score: Optional[float]
    lexical_score: Optional[float]


def _clamp(value: float) -> float:
    return min(1.0, max(0.0, value))


def recency_key(record: SearchableRecord) -> float:
    """Sort key placing recently updated records first on ties."""
    return record.updated_at.timestamp() if record.updated_at is not None else float("-inf")


class WeightedScoreFusion:
    """Linear blend of normalized vector and lexical scores."""

    def __init__(self, vector_weight: float = 0.7):
        if not 0.0 <= vector_weight <= 1.0:
            raise InvalidInputError(f"vector_weight must be within [0, 1], got {vector_weight}")
        self.vector_weight = vector_weight
        self.lexical_weight = 1.0 - vector_weight

    def fuse(self, vector_hits: List[StoreHit], lexical_hits: List[StoreHit]) -> List[FusedHit]:
        """Merge both hit lists into one list sorted by combined score."""
        vector_scores: Dict[str, float] = {}
        lexical_scores: Dict[str, float] = {}
        records: Dict[str, SearchableRecord] = {}

        for hit in vector_hits:
            score = _clamp(hit.score or 0.0)
            if hit.record.id not in vector_scores or score > vector_scores[hit.record.id]:
                vector_scores[hit.record.id] = score
            records.setdefault(hit.record.id, hit.record)

        max_rank = max((hit.score or 0.0 for hit in lexical_hits), default=0.0)
        for hit in lexical_hits:
            score = _clamp((hit.score or 0.0) / max_rank) if max_rank > 0 else 0.0
            if hit.record.id not in lexical_scores or score > lexical_scores[hit.record.id]:
                lexical_scores[hit.record.id] = score
            records.setdefault(hit.record.id, hit.record)

        fused = []
        for record_id, record in records.items():
            vector_score = vector_scores.get(record_id)
            lexical_score = lexical_scores.get(record_id)
            combined = (
                self.vector_weight * (vector_score or 0.0)
                + self.lexical_weight * (lexical_score or 0.0)
            )
            fused.append(FusedHit(record, _clamp(combined), vector_score, lexical_score))

        fused.sort(key=lambda h: (h.combined, recency_key(h.record)), reverse=True)

        logger.debug(
            "Weighted score fusion completed",
            vector_count=len(vector_hits),
            lexical_count=len(lexical_hits),
            fused_count=len(fused),
            vector_weight=self.vector_weight
        )
        return fused
