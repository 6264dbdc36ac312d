"""Change notification listener.

Listens on ``<entity>_changed`` channels with a dedicated asyncpg
connection. Each notification is parsed into a ``ChangeNotification`` and
put on a bounded ``asyncio.Queue``; a worker loop drains the queue into the
orchestrator. When the queue is full, notifications are dropped and counted
rather than buffered without bound; batch catch-up over missing or stale
embeddings repairs what was dropped.
"""

import asyncio
import json
from dataclasses import dataclass
from typing import Any, FrozenSet, Optional, Sequence, Type

import asyncpg
import structlog

from ..common.errors import StoreError
from ..common.metrics import MetricsCollector
from ..records import SearchableRecord, record_type_for
from ..store.postgres import INDEX_COLUMNS, PostgresRecordStore, change_channel
from .orchestrator import ReindexEvent, ReindexOrchestrator, ReindexTrigger

logger = structlog.get_logger("reindex.listener")


@dataclass(frozen=True)
class ChangeNotification:
    """Parsed ``{id, operation, changed_fields}`` payload."""
    entity_type: str
    record_id: str
    operation: str
    changed_fields: FrozenSet[str]

    @classmethod
    def parse(cls, entity_type: str, payload: str) -> "ChangeNotification":
        """Parse a notification payload; raises ``ValueError`` when malformed."""
        data = json.loads(payload)
        if not isinstance(data, dict) or data.get("id") is None:
            raise ValueError("notification payload must be an object with an id")
        operation = str(data.get("operation") or "UPDATE").upper()
        changed = data.get("changed_fields") or []
        if not isinstance(changed, list):
            raise ValueError("changed_fields must be a list")
        return cls(
            entity_type=entity_type,
            record_id=str(data["id"]),
            operation=operation,
            changed_fields=frozenset(str(f) for f in changed),
        )

    @property
    def touches_only_index(self) -> bool:
        """True for updates written by the index itself."""
        return (
            self.operation == "UPDATE"
            and bool(self.changed_fields)
            and self.changed_fields <= set(INDEX_COLUMNS)
        )


def infer_trigger(
    record_type: Type[SearchableRecord],
    operation: str,
    changed_fields: FrozenSet[str]
) -> ReindexTrigger:
    """Map a row change to the reindex trigger it implies."""
    if operation == "INSERT":
        return ReindexTrigger.CREATE
    if changed_fields & set(record_type.cv_columns):
        return ReindexTrigger.CV_UPLOAD
    if changed_fields & set(record_type.skill_columns):
        return ReindexTrigger.SKILL_UPDATE
    if changed_fields & set(record_type.profile_columns):
        return ReindexTrigger.PROFILE_UPDATE
    return ReindexTrigger.UPDATE


def to_reindex_event(notification: ChangeNotification) -> ReindexEvent:
    record_type = record_type_for(notification.entity_type)
    return ReindexEvent(
        entity_type=notification.entity_type,
        record_id=notification.record_id,
        trigger=infer_trigger(record_type, notification.operation, notification.changed_fields),
        changed_fields=notification.changed_fields,
    )


class ChangeListener:
    """Feeds store change notifications into the orchestrator."""

    def __init__(
        self,
        store: PostgresRecordStore,
        orchestrator: ReindexOrchestrator,
        entity_types: Sequence[str],
        queue_size: int = 1000,
        metrics: Optional[MetricsCollector] = None,
        max_retries: int = 5,
        base_delay: float = 1.0
    ):
        for entity_type in entity_types:
            record_type_for(entity_type)
        self.store = store
        self.orchestrator = orchestrator
        self.entity_types = list(entity_types)
        self.queue: "asyncio.Queue[ChangeNotification]" = asyncio.Queue(maxsize=queue_size)
        self.metrics = metrics
        self.max_retries = max_retries
        self.base_delay = base_delay
        self._worker_task: Optional[asyncio.Task] = None
        self._connection: Any = None

    def _callback_for(self, entity_type: str):
        def _on_notification(connection: Any, pid: int, channel: str, payload: str) -> None:
            self.enqueue(entity_type, payload)
        return _on_notification

    def enqueue(self, entity_type: str, payload: str) -> bool:
        """Parse and queue one notification; returns whether it was queued."""
        try:
            notification = ChangeNotification.parse(entity_type, payload)
        except ValueError as e:
            logger.warning("Ignoring malformed change notification", entity_type=entity_type, error=str(e))
            self._dropped("malformed")
            return False

        if notification.touches_only_index:
            self._dropped("index_only")
            return False

        try:
            self.queue.put_nowait(notification)
        except asyncio.QueueFull:
            logger.warning(
                "Change queue full, dropping notification",
                entity_type=entity_type,
                record_id=notification.record_id
            )
            self._dropped("queue_full")
            return False
        return True

    def _dropped(self, reason: str) -> None:
        if self.metrics:
            self.metrics.record_dropped_notification(reason)

    async def process_queue(self) -> None:
        """Worker loop moving queued notifications into the orchestrator."""
        while True:
            notification = await self.queue.get()
            try:
                self.orchestrator.submit(to_reindex_event(notification))
            except Exception as e:
                logger.error(
                    "Failed to submit change notification",
                    entity_type=notification.entity_type,
                    record_id=notification.record_id,
                    error=str(e)
                )
            finally:
                self.queue.task_done()

    async def _listen(self) -> None:
        """Hold a LISTEN connection until it drops."""
        self._connection = await self.store.connect_listener()
        closed = asyncio.Event()
        self._connection.add_termination_listener(lambda connection: closed.set())
        try:
            for entity_type in self.entity_types:
                await self._connection.add_listener(change_channel(entity_type), self._callback_for(entity_type))
            logger.info(
                "Listening for change notifications",
                channels=[change_channel(e) for e in self.entity_types]
            )
            await closed.wait()
            logger.warning("Listener connection closed")
        finally:
            if not self._connection.is_closed():
                await self._connection.close()
            self._connection = None

    async def run(self) -> None:
        """Listen with reconnect and exponential backoff until cancelled."""
        self._worker_task = asyncio.create_task(self.process_queue())
        attempt = 0
        try:
            while True:
                try:
                    await self._listen()
                    attempt = 0
                    await asyncio.sleep(self.base_delay)
                except (StoreError, OSError, asyncpg.PostgresError, asyncpg.InterfaceError) as e:
                    attempt += 1
                    if attempt >= self.max_retries:
                        logger.error("Change listener failed after all retries", error=str(e))
                        raise
                    delay = self.base_delay * (2 ** (attempt - 1))
                    logger.warning(
                        "Change listener failed, retrying",
                        attempt=attempt,
                        max_retries=self.max_retries,
                        delay=delay,
                        error=str(e)
                    )
                    await asyncio.sleep(delay)
        except asyncio.CancelledError:
            logger.info("Change listener cancelled")
            raise
        finally:
            self._worker_task.cancel()
            try:
                await self._worker_task
            except asyncio.CancelledError:
                pass
