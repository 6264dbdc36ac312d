"""Index update events over Redis pub/sub.

Downstream consumers (caches, dashboards, match precomputation) learn that a
record's search entry changed without polling the store. Producers publish
JSON payloads on channels derived from ``EventType``.

Key concepts
- ``EventType`` identifiers are versioned (``.v1`` suffix)
- ``EventPublisher`` composes channel names as ``{prefix}:{event_type}``
"""

import asyncio
import json
import time
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

import redis.asyncio as redis_async
import structlog

logger = structlog.get_logger("events")


class EventType(Enum):
    """Event types emitted by the index."""
    SEARCH_INDEX_UPDATED = "search.index.updated.v1"
    REINDEX_FAILED = "search.reindex.failed.v1"


@dataclass
class BaseEvent:
    """Base event class.

    Child events set their ``event_type`` in ``__post_init__`` and extend the
    payload with the fields relevant to them.
    """
    timestamp: int
    event_type: str

    def to_dict(self) -> Dict[str, Any]:
        """Convert event to dictionary."""
        return asdict(self)

    def to_json(self) -> str:
        """Convert event to JSON string."""
        return json.dumps(self.to_dict())


@dataclass
class SearchIndexUpdatedEvent(BaseEvent):
    """Emitted after index entries were rewritten."""
    entity_type: str
    count: int
    trigger: str = "manual"
    record_ids: List[str] = field(default_factory=list)

    def __post_init__(self):
        self.event_type = EventType.SEARCH_INDEX_UPDATED.value
        if not self.timestamp:
            self.timestamp = int(time.time() * 1000)


@dataclass
class ReindexFailedEvent(BaseEvent):
    """Emitted when a reindex pass for a record failed."""
    entity_type: str
    record_id: str
    trigger: str
    error: str

    def __post_init__(self):
        self.event_type = EventType.REINDEX_FAILED.value
        if not self.timestamp:
            self.timestamp = int(time.time() * 1000)


class EventPublisher:
    """Publishes events to Redis.

    Notes
    - Failures are retried with exponential backoff, then logged and
      re-raised; callers treat publishing as best effort.
    - Messages are serialized as JSON to keep consumers language-agnostic.
    """

    def __init__(
        self,
        redis_url: str,
        channel_prefix: str = "talent_events",
        max_retries: int = 3,
        base_delay: float = 0.5
    ):
        self.redis_client = redis_async.from_url(redis_url)
        self.channel_prefix = channel_prefix
        self.max_retries = max_retries
        self.base_delay = base_delay

    def channel_for(self, event_type: str) -> str:
        return f"{self.channel_prefix}:{event_type}"

    async def publish(self, event: BaseEvent) -> None:
        """Publish an event with retry logic.

        The channel is derived from the event's type so subscribers can filter
        without payload inspection.
        """
        channel = self.channel_for(event.event_type)
        message = event.to_json()

        for attempt in range(self.max_retries):
            try:
                await self.redis_client.publish(channel, message)
                logger.debug("Event published", event_type=event.event_type, channel=channel)
                return
            except Exception as e:
                if attempt == self.max_retries - 1:
                    logger.error(
                        "Failed to publish event after all retries",
                        event_type=event.event_type,
                        error=str(e)
                    )
                    raise

                delay = self.base_delay * (2 ** attempt)
                logger.warning(
                    "Event publish failed, retrying",
                    event_type=event.event_type,
                    attempt=attempt + 1,
                    max_retries=self.max_retries,
                    delay=delay,
                    error=str(e)
                )
                await asyncio.sleep(delay)

    async def publish_search_index_updated(
        self,
        entity_type: str,
        record_ids: List[str],
        trigger: str = "manual"
    ) -> None:
        """Publish search index updated event."""
        event = SearchIndexUpdatedEvent(
            timestamp=int(time.time() * 1000),
            event_type=EventType.SEARCH_INDEX_UPDATED.value,
            entity_type=entity_type,
            count=len(record_ids),
            trigger=trigger,
            record_ids=list(record_ids)
        )
        await self.publish(event)

    async def publish_reindex_failed(
        self,
        entity_type: str,
        record_id: str,
        trigger: str,
        error: str
    ) -> None:
        """Publish reindex failed event."""
        event = ReindexFailedEvent(
            timestamp=int(time.time() * 1000),
            event_type=EventType.REINDEX_FAILED.value,
            entity_type=entity_type,
            record_id=record_id,
            trigger=trigger,
            error=error
        )
        await self.publish(event)

    async def close(self) -> None:
        """Close the Redis client."""
        try:
            await self.redis_client.aclose()
        except Exception as e:
            logger.warning("Error closing redis client", error=str(e))


def create_event_publisher(redis_url: str, enabled: bool = True) -> Optional[EventPublisher]:
    """Create an event publisher, or ``None`` when events are disabled."""
    if not enabled:
        return None
    return EventPublisher(redis_url)
