"""Wiring of index components from configuration.

Entry points (the HTTP service, the listener process, the batch driver)
build the same object graph; ``build_services`` keeps that in one place.
"""

from dataclasses import dataclass
from typing import Optional

import structlog

from .common.config import BaseConfig, ReindexConfig, SearchConfig
from .common.errors import ProviderUnavailableError
from .common.events import EventPublisher, create_event_publisher
from .common.metrics import MetricsCollector, get_metrics_collector
from .embedding.circuit_breaker import CircuitBreaker, CircuitBreakerError
from .embedding.client import EmbeddingClient, LRUEmbeddingCache
from .embedding.providers import OpenAIEmbeddingProvider, ProviderRejectedError
from .embedding.retry import RetryConfig
from .reindex.extraction import DocumentExtractor, HttpDocumentExtractor
from .reindex.orchestrator import ReindexOrchestrator
from .search.engine import SearchEngine, search_mode
from .store.base import RecordStore
from .store.postgres import PostgresRecordStore
from .store.writer import IndexWriter

logger = structlog.get_logger("bootstrap")


@dataclass
class IndexServices:
    """Object graph shared by the entry points."""
    store: RecordStore
    embedding_client: EmbeddingClient
    writer: IndexWriter
    search_engine: SearchEngine
    orchestrator: ReindexOrchestrator
    metrics: MetricsCollector
    extractor: Optional[DocumentExtractor] = None
    event_publisher: Optional[EventPublisher] = None

    async def close(self) -> None:
        await self.orchestrator.close()
        await self.embedding_client.close()
        if self.extractor is not None:
            await self.extractor.close()
        if self.event_publisher is not None:
            await self.event_publisher.close()
        await self.store.close()
        logger.info("Index services closed")


def build_embedding_client(config: BaseConfig, metrics: Optional[MetricsCollector] = None) -> EmbeddingClient:
    provider = OpenAIEmbeddingProvider(
        api_key=config.talent_embedding_api_key,
        base_url=config.talent_embedding_base_url,
        timeout=config.talent_embedding_timeout,
    )
    return EmbeddingClient(
        provider=provider,
        model=config.talent_embedding_model,
        dimensions=config.talent_embedding_dimensions,
        cache=LRUEmbeddingCache(config.talent_embedding_cache_size),
        circuit_breaker=CircuitBreaker(
            failure_threshold=config.talent_embedding_breaker_threshold,
            recovery_timeout=config.talent_embedding_breaker_recovery,
            expected_exception=ProviderUnavailableError,
            name=f"embedding:{config.talent_embedding_model}",
        ),
        retry_config=RetryConfig(
            max_attempts=config.talent_embedding_retry_attempts,
            base_delay=config.talent_embedding_retry_base_delay,
            non_retryable_exceptions=(ProviderRejectedError, CircuitBreakerError),
        ),
        metrics=metrics,
    )


def build_services(
    config: BaseConfig,
    service_name: str,
    store: Optional[RecordStore] = None,
    embedding_client: Optional[EmbeddingClient] = None,
    extractor: Optional[DocumentExtractor] = None
) -> IndexServices:
    """Build the component graph; collaborators can be injected for tests."""
    metrics = get_metrics_collector(service_name)
    store = store or PostgresRecordStore(
        dsn=config.talent_db_dsn,
        pool_size=config.talent_db_pool_size,
        command_timeout=config.talent_db_command_timeout,
    )
    embedding_client = embedding_client or build_embedding_client(config, metrics)
    writer = IndexWriter(store, embedding_client, config.talent_embedding_max_input_chars)
    event_publisher = create_event_publisher(config.talent_redis_url, config.talent_events_enabled)

    search_kwargs = {}
    if isinstance(config, SearchConfig):
        search_kwargs = {
            "default_mode": search_mode(config.talent_search_default_mode),
            "vector_weight": config.talent_search_vector_weight,
            "candidate_multiplier": config.talent_search_candidate_multiplier,
        }
    search_engine = SearchEngine(store, embedding_client, metrics=metrics, **search_kwargs)

    reindex_kwargs = {}
    if isinstance(config, ReindexConfig):
        reindex_kwargs = {
            "debounce_seconds": config.talent_reindex_debounce_seconds,
            "concurrency": config.talent_reindex_concurrency,
            "chunk_size": config.talent_chunk_size,
            "chunk_overlap": config.talent_chunk_overlap,
        }
        if extractor is None and config.talent_extraction_base_url:
            extractor = HttpDocumentExtractor(
                config.talent_extraction_base_url,
                timeout=config.talent_extraction_timeout,
            )
    orchestrator = ReindexOrchestrator(
        store,
        writer,
        extractor=extractor,
        event_publisher=event_publisher,
        metrics=metrics,
        **reindex_kwargs
    )

    return IndexServices(
        store=store,
        embedding_client=embedding_client,
        writer=writer,
        search_engine=search_engine,
        orchestrator=orchestrator,
        metrics=metrics,
        extractor=extractor,
        event_publisher=event_publisher,
    )
