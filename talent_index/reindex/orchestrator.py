"""Reindex orchestrator.

Turns change events into reindex passes and drives batch catch-up.

Per record the orchestrator moves through ``idle -> pending -> running ->
idle``:

- The first event for an idle record arms a debounce timer.
- Further events while pending re-arm the same timer, union their changed
  fields, and keep the strongest trigger (``TRIGGER_PRECEDENCE``).
- Events while running are merged into one follow-up that is armed when the
  running pass ends, so a record never has two passes in flight.
- A failed pass is logged and counted; the record returns to idle and keeps
  its previous index entry. Nothing is retried automatically.

A pass fetches the record, optionally extracts document text (CV on
``cv-upload``/``create``, latest competence file on
``competence-file-upload``), projects and chunks it, embeds the joined
chunks, and writes ``(search_text, embedding)``.

Batch catch-up reindexes every matching record independently: each write
commits on its own and one record's failure never stops the others.
"""

import asyncio
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, AsyncIterator, Dict, FrozenSet, Iterable, List, Optional, Set, Tuple

import structlog
from redis.exceptions import RedisError

from ..common.errors import EnrichmentUnavailableError, TalentIndexError
from ..common.events import EventPublisher
from ..common.metrics import MetricsCollector
from ..records import Candidate, SearchableRecord, record_type_for
from ..store.base import RecordStore, ReindexCriteria
from ..store.writer import IndexWriter
from ..text.chunker import DEFAULT_CHUNK_OVERLAP, DEFAULT_CHUNK_SIZE
from ..text.projector import Enrichment, prepare_chunks, project
from .extraction import DocumentExtractor

logger = structlog.get_logger("reindex.orchestrator")

CHUNK_JOINER = " | "
# Batch catch-up schedules at most this many records per worker slot at once.
BATCH_SLICE_FACTOR = 8


class ReindexTrigger(str, Enum):
    """Why a record is being reindexed."""
    CREATE = "create"
    UPDATE = "update"
    CV_UPLOAD = "cv-upload"
    COMPETENCE_FILE_UPLOAD = "competence-file-upload"
    SKILL_UPDATE = "skill-update"
    PROFILE_UPDATE = "profile-update"
    MANUAL = "manual"

    @property
    def precedence(self) -> int:
        return TRIGGER_PRECEDENCE[self]


# Triggers implying extra extraction work rank highest.
TRIGGER_PRECEDENCE = {
    ReindexTrigger.CV_UPLOAD: 4,
    ReindexTrigger.COMPETENCE_FILE_UPLOAD: 4,
    ReindexTrigger.CREATE: 3,
    ReindexTrigger.SKILL_UPDATE: 2,
    ReindexTrigger.PROFILE_UPDATE: 2,
    ReindexTrigger.UPDATE: 1,
    ReindexTrigger.MANUAL: 0,
}


def stronger_trigger(current: ReindexTrigger, incoming: ReindexTrigger) -> ReindexTrigger:
    """Higher precedence wins; on a tie the earlier trigger is kept."""
    return incoming if incoming.precedence > current.precedence else current


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ReindexEvent:
    """Request to reindex one record."""
    entity_type: str
    record_id: str
    trigger: ReindexTrigger = ReindexTrigger.MANUAL
    changed_fields: FrozenSet[str] = frozenset()
    observed_at: datetime = field(default_factory=_utcnow)

    @property
    def key(self) -> Tuple[str, str]:
        return (self.entity_type, self.record_id)

    def merge(self, other: "ReindexEvent") -> "ReindexEvent":
        """Collapse ``other`` into this event."""
        return ReindexEvent(
            entity_type=self.entity_type,
            record_id=self.record_id,
            trigger=stronger_trigger(self.trigger, other.trigger),
            changed_fields=self.changed_fields | other.changed_fields,
            observed_at=max(self.observed_at, other.observed_at),
        )


class RecordState(str, Enum):
    IDLE = "idle"
    PENDING = "pending"
    RUNNING = "running"


@dataclass
class _Slot:
    event: ReindexEvent
    state: RecordState = RecordState.PENDING
    timer: Optional[asyncio.TimerHandle] = None
    follow_up: Optional[ReindexEvent] = None
    coalesced: int = 0


@dataclass(frozen=True)
class ReindexFailure:
    record_id: str
    error: str


@dataclass
class BatchReindexReport:
    """Aggregate outcome of a batch catch-up."""
    entity_type: str
    total: int = 0
    succeeded: List[str] = field(default_factory=list)
    failed: List[ReindexFailure] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entity_type": self.entity_type,
            "total": self.total,
            "succeeded": len(self.succeeded),
            "failed": [{"record_id": f.record_id, "error": f.error} for f in self.failed],
        }


class ReindexOrchestrator:
    """Debounces change events and runs reindex passes."""

    def __init__(
        self,
        store: RecordStore,
        writer: IndexWriter,
        extractor: Optional[DocumentExtractor] = None,
        event_publisher: Optional[EventPublisher] = None,
        metrics: Optional[MetricsCollector] = None,
        debounce_seconds: float = 1.0,
        concurrency: int = 4,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        chunk_overlap: int = DEFAULT_CHUNK_OVERLAP
    ):
        self.store = store
        self.writer = writer
        self.extractor = extractor
        self.event_publisher = event_publisher
        self.metrics = metrics
        self.debounce_seconds = debounce_seconds
        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap
        self.batch_slice_size = max(1, concurrency) * BATCH_SLICE_FACTOR

        self._semaphore = asyncio.Semaphore(concurrency)
        self._slots: Dict[Tuple[str, str], _Slot] = {}
        self._record_locks: Dict[Tuple[str, str], Tuple[asyncio.Lock, int]] = {}
        self._tasks: Set[asyncio.Task] = set()
        self._idle = asyncio.Event()
        self._idle.set()
        self._closed = False

    # Event-driven path

    def submit(self, event: ReindexEvent) -> None:
        """Feed a change event into the per-record state machine.

        Must be called from the event loop thread.
        """
        if self._closed:
            logger.warning("Orchestrator closed, dropping event", entity_type=event.entity_type, record_id=event.record_id)
            return
        record_type_for(event.entity_type)

        slot = self._slots.get(event.key)
        if slot is None:
            slot = _Slot(event=event)
            self._slots[event.key] = slot
            self._idle.clear()
            self._arm(slot)
        elif slot.state is RecordState.PENDING:
            slot.event = slot.event.merge(event)
            slot.coalesced += 1
            self._arm(slot)
            self._record_coalesced(event)
        else:
            slot.follow_up = event if slot.follow_up is None else slot.follow_up.merge(event)
            self._record_coalesced(event)
        self._update_pending_gauge()

    def state_of(self, entity_type: str, record_id: str) -> RecordState:
        slot = self._slots.get((entity_type, record_id))
        return slot.state if slot is not None else RecordState.IDLE

    @property
    def pending_count(self) -> int:
        return len(self._slots)

    def _arm(self, slot: _Slot) -> None:
        if slot.timer is not None:
            slot.timer.cancel()
        loop = asyncio.get_running_loop()
        slot.timer = loop.call_later(self.debounce_seconds, self._fire, slot.event.key)

    def _fire(self, key: Tuple[str, str]) -> None:
        slot = self._slots.get(key)
        if slot is None or slot.state is not RecordState.PENDING:
            return
        slot.state = RecordState.RUNNING
        slot.timer = None
        task = asyncio.get_running_loop().create_task(self._run(slot))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run(self, slot: _Slot) -> None:
        event = slot.event
        try:
            await self.reindex_record(
                event.entity_type,
                event.record_id,
                event.trigger,
                event.changed_fields,
            )
        except TalentIndexError as e:
            await self._publish_failure(event, e)
        except Exception as e:
            logger.exception(
                "Unexpected reindex failure",
                entity_type=event.entity_type,
                record_id=event.record_id
            )
            await self._publish_failure(event, e)
        finally:
            if slot.follow_up is not None and not self._closed:
                slot.event, slot.follow_up = slot.follow_up, None
                slot.state = RecordState.PENDING
                self._arm(slot)
            else:
                self._slots.pop(event.key, None)
                if not self._slots:
                    self._idle.set()
            self._update_pending_gauge()

    async def drain(self) -> None:
        """Wait until no record is pending or running."""
        while self._slots:
            await self._idle.wait()

    async def close(self) -> None:
        """Drop pending events and wait for running passes to finish."""
        self._closed = True
        for key, slot in list(self._slots.items()):
            if slot.state is RecordState.PENDING:
                if slot.timer is not None:
                    slot.timer.cancel()
                del self._slots[key]
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._slots.clear()
        self._idle.set()
        self._update_pending_gauge()

    # Direct path

    async def reindex_record(
        self,
        entity_type: str,
        record_id: str,
        trigger: ReindexTrigger = ReindexTrigger.MANUAL,
        changed_fields: Iterable[str] = ()
    ) -> None:
        """Run one reindex pass now; raises on failure."""
        async with self._record_lock((entity_type, record_id)):
            async with self._semaphore:
                await self._reindex(entity_type, record_id, ReindexTrigger(trigger), frozenset(changed_fields))

    async def reindex_by_criteria(
        self,
        entity_type: str,
        criteria: ReindexCriteria,
        trigger: ReindexTrigger = ReindexTrigger.MANUAL
    ) -> BatchReindexReport:
        """Reindex every record matching ``criteria``; failures are reported, not raised."""
        record_ids = await self.store.select_ids(entity_type, criteria)
        report = BatchReindexReport(entity_type=entity_type, total=len(record_ids))
        started = time.time()
        logger.info(
            "Starting batch reindex",
            entity_type=entity_type,
            total=len(record_ids),
            missing_embedding=criteria.missing_embedding,
            status=criteria.status,
            updated_after=criteria.updated_after.isoformat() if criteria.updated_after else None
        )

        async def _one(record_id: str) -> None:
            try:
                async with self._record_lock((entity_type, record_id)):
                    async with self._semaphore:
                        await self._reindex(entity_type, record_id, trigger, frozenset(), publish=False)
            except Exception as e:
                report.failed.append(ReindexFailure(record_id, str(e) or type(e).__name__))
            else:
                report.succeeded.append(record_id)
                done = len(report.succeeded) + len(report.failed)
                if done % 100 == 0:
                    logger.info("Batch reindex progress", entity_type=entity_type, processed=done, total=report.total)

        for start in range(0, len(record_ids), self.batch_slice_size):
            batch = record_ids[start:start + self.batch_slice_size]
            await asyncio.gather(*(_one(record_id) for record_id in batch))

        if report.succeeded:
            await self._publish_updated(entity_type, report.succeeded, trigger)

        logger.info(
            "Batch reindex completed",
            entity_type=entity_type,
            total=report.total,
            succeeded=len(report.succeeded),
            failed=len(report.failed),
            duration_seconds=round(time.time() - started, 2)
        )
        return report

    # Pass internals

    @asynccontextmanager
    async def _record_lock(self, key: Tuple[str, str]) -> AsyncIterator[None]:
        lock, users = self._record_locks.get(key, (None, 0))
        if lock is None:
            lock = asyncio.Lock()
        self._record_locks[key] = (lock, users + 1)
        try:
            async with lock:
                yield
        finally:
            lock, users = self._record_locks[key]
            if users <= 1:
                del self._record_locks[key]
            else:
                self._record_locks[key] = (lock, users - 1)

    async def _reindex(
        self,
        entity_type: str,
        record_id: str,
        trigger: ReindexTrigger,
        changed_fields: FrozenSet[str],
        publish: bool = True
    ) -> None:
        started = time.time()
        try:
            record = await self.store.fetch_record(entity_type, record_id)
            enrichment = await self._enrich(record, trigger)
            search_text = project(record, enrichment)
            chunks = prepare_chunks(record, enrichment, self.chunk_size, self.chunk_overlap)
            embedding_text = CHUNK_JOINER.join(c.text for c in chunks)
            await self.writer.write(entity_type, record_id, search_text, embedding_text)
        except Exception as e:
            if self.metrics:
                self.metrics.record_reindex(entity_type, trigger.value, "failure", time.time() - started)
            logger.error(
                "Reindex failed",
                entity_type=entity_type,
                record_id=record_id,
                trigger=trigger.value,
                error=str(e),
                error_type=type(e).__name__
            )
            raise

        duration = time.time() - started
        if self.metrics:
            self.metrics.record_reindex(entity_type, trigger.value, "success", duration)
        logger.info(
            "Reindexed record",
            entity_type=entity_type,
            record_id=record_id,
            trigger=trigger.value,
            changed_fields=sorted(changed_fields),
            chunks=len(chunks),
            enriched=enrichment is not None,
            duration_ms=round(duration * 1000, 2)
        )
        if publish:
            await self._publish_updated(entity_type, [record_id], trigger)

    async def _enrich(self, record: SearchableRecord, trigger: ReindexTrigger) -> Optional[Enrichment]:
        if self.extractor is None or not isinstance(record, Candidate):
            return None

        cv_text = None
        competence_text = None
        if trigger in (ReindexTrigger.CV_UPLOAD, ReindexTrigger.CREATE) and record.original_cv_url:
            cv_text = await self._extract(record.original_cv_url, record)
        elif trigger is ReindexTrigger.COMPETENCE_FILE_UPLOAD:
            file_url = await self.store.latest_competence_file_url(record.id)
            if file_url:
                competence_text = await self._extract(file_url, record)

        if cv_text is None and competence_text is None:
            return None
        return Enrichment(cv_text=cv_text, competence_text=competence_text)

    async def _extract(self, file_url: str, record: SearchableRecord) -> Optional[str]:
        try:
            return await self.extractor.extract(file_url)
        except EnrichmentUnavailableError as e:
            logger.warning(
                "Document extraction unavailable, indexing without it",
                entity_type=record.entity_type,
                record_id=record.id,
                error=str(e)
            )
            return None

    def _record_coalesced(self, event: ReindexEvent) -> None:
        if self.metrics:
            self.metrics.record_coalesced_event(event.entity_type)

    def _update_pending_gauge(self) -> None:
        if self.metrics:
            self.metrics.set_pending_reindexes(len(self._slots))

    async def _publish_updated(self, entity_type: str, record_ids: List[str], trigger: ReindexTrigger) -> None:
        if self.event_publisher is None:
            return
        try:
            await self.event_publisher.publish_search_index_updated(entity_type, record_ids, trigger.value)
        except (RedisError, OSError) as e:
            logger.warning("Index update event not published", entity_type=entity_type, error=str(e))

    async def _publish_failure(self, event: ReindexEvent, error: Exception) -> None:
        if self.event_publisher is None:
            return
        try:
            await self.event_publisher.publish_reindex_failed(
                event.entity_type, event.record_id, event.trigger.value, str(error)
            )
        except (RedisError, OSError) as e:
            logger.warning("Reindex failure event not published", entity_type=event.entity_type, error=str(e))
