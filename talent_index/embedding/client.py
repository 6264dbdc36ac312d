"""Cached embedding client.

``EmbeddingClient.embed`` turns text into an ``Embedding``:

1. Blank text is rejected with ``InvalidInputError``.
2. The process-wide cache is consulted by ``(model, dimensions, text)``.
3. On a miss the provider is called once, through the circuit breaker and
   the configured retry policy, and the result is cached.

Vectors are written to the store as bracketed literals with six decimals per
component (``to_store_literal``); ``parse_literal`` reads them back.
"""

import hashlib
import threading
import time
from abc import ABC, abstractmethod
from collections import OrderedDict
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple, Union

import numpy as np
import structlog

from ..common.errors import InvalidInputError, ProviderUnavailableError
from ..common.metrics import MetricsCollector
from .circuit_breaker import CircuitBreaker, CircuitBreakerError
from .providers import EmbeddingProvider, ProviderRejectedError
from .retry import RetryConfig, RetryHandler

logger = structlog.get_logger("embedding.client")

LITERAL_PRECISION = 6


@dataclass(frozen=True)
class Embedding:
    """Immutable embedding vector and the model that produced it."""
    vector: Tuple[float, ...]
    model: str

    @property
    def dimensions(self) -> int:
        return len(self.vector)


class EmbeddingCache(ABC):
    """Key/value store for computed embeddings."""

    @abstractmethod
    def get(self, key: str) -> Optional[Embedding]:
        pass

    @abstractmethod
    def put(self, key: str, value: Embedding) -> None:
        pass


class LRUEmbeddingCache(EmbeddingCache):
    """Bounded least-recently-used cache.

    Safe to share across tasks and threads. Entries are immutable and a key
    is written at most once while it stays resident.
    """

    def __init__(self, max_entries: int = 2048):
        if max_entries < 1:
            raise ValueError("max_entries must be >= 1")
        self.max_entries = max_entries
        self._entries: "OrderedDict[str, Embedding]" = OrderedDict()
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[Embedding]:
        with self._lock:
            value = self._entries.get(key)
            if value is not None:
                self._entries.move_to_end(key)
            return value

    def put(self, key: str, value: Embedding) -> None:
        with self._lock:
            if key in self._entries:
                self._entries.move_to_end(key)
                return
            self._entries[key] = value
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


def cache_key(model: str, dimensions: int, text: str) -> str:
    """Content-hash key; switching model or dimensions changes the namespace."""
    digest = hashlib.sha256(text.encode("utf-8")).hexdigest()
    return f"{model}:{dimensions}:{digest}"


class EmbeddingClient:
    """Embeds text with caching and provider failure handling."""

    def __init__(
        self,
        provider: EmbeddingProvider,
        model: str = "text-embedding-3-large",
        dimensions: int = 1536,
        cache: Optional[EmbeddingCache] = None,
        circuit_breaker: Optional[CircuitBreaker] = None,
        retry_config: Optional[RetryConfig] = None,
        metrics: Optional[MetricsCollector] = None
    ):
        self.provider = provider
        self.model = model
        self.dimensions = dimensions
        self.cache = cache if cache is not None else LRUEmbeddingCache()
        self.circuit_breaker = circuit_breaker or CircuitBreaker(
            expected_exception=ProviderUnavailableError,
            name=f"embedding:{model}",
        )
        self.retry_handler = RetryHandler(retry_config or RetryConfig(
            non_retryable_exceptions=(ProviderRejectedError, CircuitBreakerError),
        ))
        self.metrics = metrics

    async def embed(self, text: str) -> Embedding:
        """Return the embedding of ``text``.

        Raises
        - ``InvalidInputError`` for empty or whitespace-only text
        - ``ProviderUnavailableError`` when the provider call fails
        """
        if not text or not text.strip():
            raise InvalidInputError("Cannot generate embedding for empty text")

        key = cache_key(self.model, self.dimensions, text)
        cached = self.cache.get(key)
        if cached is not None:
            if self.metrics:
                self.metrics.record_cache_hit("embedding")
            return cached
        if self.metrics:
            self.metrics.record_cache_miss("embedding")

        start_time = time.time()
        try:
            vector = await self.retry_handler.execute_with_retry(
                self.circuit_breaker.call,
                self.provider.create_embedding,
                self.model,
                text,
                self.dimensions,
                operation_name="create_embedding",
            )
        except ProviderUnavailableError as e:
            if self.metrics:
                self.metrics.record_embedding(self.model, "error")
            logger.warning(
                "Embedding provider unavailable",
                model=self.model,
                text_length=len(text),
                error=str(e)
            )
            raise

        if len(vector) != self.dimensions:
            if self.metrics:
                self.metrics.record_embedding(self.model, "error")
            raise ProviderUnavailableError(
                f"Provider returned {len(vector)} dimensions, expected {self.dimensions}"
            )

        embedding = Embedding(vector=tuple(float(v) for v in vector), model=self.model)
        self.cache.put(key, embedding)
        if self.metrics:
            self.metrics.record_embedding(self.model, "success", time.time() - start_time)
        return embedding

    async def close(self) -> None:
        await self.provider.close()


def to_store_literal(embedding: Union[Embedding, Sequence[float]]) -> str:
    """Render a vector as ``[0.123456,...]``; non-finite components become zero."""
    values = embedding.vector if isinstance(embedding, Embedding) else embedding
    array = np.asarray(values, dtype=np.float64)
    array = np.where(np.isfinite(array), array, 0.0)
    return "[" + ",".join(f"{v:.{LITERAL_PRECISION}f}" for v in array.tolist()) + "]"


def parse_literal(literal: str) -> Tuple[float, ...]:
    """Parse a bracketed vector literal back into floats."""
    stripped = literal.strip()
    if not (stripped.startswith("[") and stripped.endswith("]")):
        raise InvalidInputError(f"Not a vector literal: {literal[:40]!r}")
    body = stripped[1:-1].strip()
    if not body:
        return ()
    try:
        array = np.asarray([part.strip() for part in body.split(",")], dtype=np.float64)
    except ValueError as exc:
        raise InvalidInputError(f"Malformed vector literal: {exc}") from exc
    return tuple(array.tolist())
