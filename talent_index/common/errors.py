"""Error taxonomy shared by every index component.

Callers branch on these types to pick a policy: search falls back to lexical
matching on ``ProviderUnavailableError``, reindexing surfaces it for the
record, and ``EnrichmentUnavailableError`` only ever degrades a projection.
"""


class TalentIndexError(Exception):
    """Base exception for index operations."""
    pass


class InvalidInputError(TalentIndexError):
    """Empty or degenerate input rejected before any I/O."""
    pass


class ProviderUnavailableError(TalentIndexError):
    """Embedding provider failed (auth, rate limit, network, bad response)."""
    pass


class StoreError(TalentIndexError):
    """Base exception for backing store operations."""
    pass


class StoreConnectionError(StoreError):
    """Connection error to the backing store."""
    pass


class StoreQueryError(StoreError):
    """Query error in the backing store."""
    pass


class RecordNotFoundError(StoreError):
    """Record does not exist in the backing store."""

    def __init__(self, entity_type: str, record_id: str):
        super().__init__(f"{entity_type} {record_id} not found")
        self.entity_type = entity_type
        self.record_id = record_id


class EnrichmentUnavailableError(TalentIndexError):
    """Document extraction failed or returned no text."""
    pass
