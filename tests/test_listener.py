"""Tests for change notification handling."""

import asyncio
import json

import pytest

from talent_index.common.errors import InvalidInputError
from talent_index.records import Candidate, Client, Job
from talent_index.reindex.listener import ChangeListener, ChangeNotification, infer_trigger, to_reindex_event
from talent_index.reindex.orchestrator import RecordState, ReindexOrchestrator, ReindexTrigger


def _payload(record_id="c1", operation="UPDATE", changed_fields=None):
    return json.dumps({"id": record_id, "operation": operation, "changed_fields": changed_fields or []})


def test_parse_notification():
    notification = ChangeNotification.parse("candidate", _payload(42, "update", ["summary"]))

    assert notification.record_id == "42"
    assert notification.operation == "UPDATE"
    assert notification.changed_fields == frozenset({"summary"})


@pytest.mark.parametrize("payload", ["not json", "[]", json.dumps({"operation": "UPDATE"}),
                                     json.dumps({"id": 1, "changed_fields": "summary"})])
def test_parse_rejects_malformed_payloads(payload):
    with pytest.raises(ValueError):
        ChangeNotification.parse("candidate", payload)


def test_index_only_updates_are_recognized():
    """Writes of the index columns alone are not changes."""
    assert ChangeNotification.parse("candidate", _payload(changed_fields=["search_text", "embedding"])).touches_only_index
    assert not ChangeNotification.parse("candidate", _payload(changed_fields=["embedding", "summary"])).touches_only_index
    assert not ChangeNotification.parse("candidate", _payload(operation="INSERT")).touches_only_index


@pytest.mark.parametrize("record_type, operation, changed, expected", [
    (Candidate, "INSERT", set(), ReindexTrigger.CREATE),
    (Candidate, "UPDATE", {"original_cv_url", "summary"}, ReindexTrigger.CV_UPLOAD),
    (Candidate, "UPDATE", {"technical_skills"}, ReindexTrigger.SKILL_UPDATE),
    (Candidate, "UPDATE", {"summary"}, ReindexTrigger.PROFILE_UPDATE),
    (Candidate, "UPDATE", {"phone"}, ReindexTrigger.UPDATE),
    (Job, "UPDATE", {"required_skills"}, ReindexTrigger.SKILL_UPDATE),
    (Client, "UPDATE", {"name"}, ReindexTrigger.UPDATE),
])
def test_infer_trigger(record_type, operation, changed, expected):
    assert infer_trigger(record_type, operation, frozenset(changed)) is expected


def test_to_reindex_event():
    event = to_reindex_event(ChangeNotification.parse("job", _payload("j1", "INSERT")))

    assert event.key == ("job", "j1")
    assert event.trigger is ReindexTrigger.CREATE


@pytest.mark.asyncio
async def test_enqueue_drops_when_queue_full(store, writer, metrics):
    """A full queue drops and counts instead of blocking."""
    orchestrator = ReindexOrchestrator(store, writer)
    listener = ChangeListener(store, orchestrator, ["candidate"], queue_size=1, metrics=metrics)

    assert listener.enqueue("candidate", _payload("c1", changed_fields=["summary"]))
    assert not listener.enqueue("candidate", _payload("c2", changed_fields=["summary"]))
    assert not listener.enqueue("candidate", _payload("c3", changed_fields=["updated_at"]))
    assert not listener.enqueue("candidate", "{broken")

    assert listener.queue.qsize() == 1
    for reason in ("queue_full", "index_only", "malformed"):
        assert metrics.registry.get_sample_value(
            "talent_notifications_dropped_total", {"reason": reason}
        ) == 1.0


@pytest.mark.asyncio
async def test_process_queue_submits_to_orchestrator(store, writer):
    orchestrator = ReindexOrchestrator(store, writer, debounce_seconds=10)
    listener = ChangeListener(store, orchestrator, ["candidate"])
    worker = asyncio.create_task(listener.process_queue())

    listener.enqueue("candidate", _payload("c1", changed_fields=["technical_skills"]))
    await asyncio.wait_for(listener.queue.join(), timeout=1)

    assert orchestrator.state_of("candidate", "c1") is RecordState.PENDING
    worker.cancel()
    with pytest.raises(asyncio.CancelledError):
        await worker
    await orchestrator.close()


def test_listener_rejects_unknown_entity_types(store, writer):
    with pytest.raises(InvalidInputError):
        ChangeListener(store, None, ["planet"])
