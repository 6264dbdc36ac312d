"""Index writer: embed, then persist ``(search_text, embedding)``."""

from typing import Optional

import structlog

from ..common.errors import InvalidInputError
from ..embedding.client import Embedding, EmbeddingClient, to_store_literal
from .base import RecordStore

logger = structlog.get_logger("store.writer")


class IndexWriter:
    """Persists index entries atomically per record.

    The embedding is computed before anything is written, and both columns
    are replaced by one statement. When embedding or writing fails the
    error propagates and the record keeps its previous entry.
    """

    def __init__(
        self,
        store: RecordStore,
        embedding_client: EmbeddingClient,
        max_input_chars: Optional[int] = None
    ):
        self.store = store
        self.embedding_client = embedding_client
        self.max_input_chars = max_input_chars

    async def write(
        self,
        entity_type: str,
        record_id: str,
        search_text: str,
        embedding_text: Optional[str] = None
    ) -> Embedding:
        """Embed ``embedding_text`` (default: ``search_text``) and store both.

        ``embedding_text`` is truncated to ``max_input_chars`` to stay within
        the provider's input limit.
        """
        if not search_text or not search_text.strip():
            raise InvalidInputError(f"{entity_type} {record_id} has no searchable content")

        text = embedding_text if embedding_text is not None else search_text
        if self.max_input_chars and len(text) > self.max_input_chars:
            text = text[:self.max_input_chars]

        embedding = await self.embedding_client.embed(text)
        await self.store.write_index_entry(
            entity_type,
            record_id,
            search_text,
            to_store_literal(embedding),
        )
        logger.debug(
            "Index entry written",
            entity_type=entity_type,
            record_id=record_id,
            search_text_length=len(search_text),
            dimensions=embedding.dimensions
        )
        return embedding
