"""Tests for the transactional outbox."""

from __future__ import annotations

import pytest

from quarry.db.connection import transaction
from quarry.db.errors import EventNotFoundError, LogicError, SerializationError
from quarry.db.models import BindingAdded, ContentCreated, ExtractionEvent
from quarry.db.outbox import OutboxLog


@pytest.fixture
def outbox(tmp_db):
    return OutboxLog(tmp_db)


def _append(conn, outbox, *events):
    with transaction(conn):
        for e in events:
            outbox.append(e)


def test_append_requires_transaction(outbox):
    with pytest.raises(LogicError):
        outbox.append(ExtractionEvent.new("docs", ContentCreated("c1")))


def test_poll_returns_events_in_insertion_order(tmp_db, outbox):
    events = [ExtractionEvent.new("docs", ContentCreated(f"c{i}")) for i in range(5)]
    _append(tmp_db, outbox, *events)
    polled = outbox.poll_unprocessed()
    assert [e.id for e in polled] == [e.id for e in events]
    assert polled[0].payload == ContentCreated("c0")
    assert all(e.processed_at is None for e in polled)


def test_poll_limit(tmp_db, outbox):
    events = [ExtractionEvent.new("docs", ContentCreated(f"c{i}")) for i in range(3)]
    _append(tmp_db, outbox, *events)
    assert [e.id for e in outbox.poll_unprocessed(limit=2)] == [events[0].id, events[1].id]


def test_rolled_back_append_is_invisible(tmp_db, outbox):
    with pytest.raises(RuntimeError):
        with transaction(tmp_db):
            outbox.append(ExtractionEvent.new("docs", ContentCreated("c1")))
            raise RuntimeError("mutation failed")
    assert outbox.poll_unprocessed() == []


def test_mark_processed_hides_event(tmp_db, outbox):
    first = ExtractionEvent.new("docs", BindingAdded("docs", "b1"))
    second = ExtractionEvent.new("docs", ContentCreated("c1"))
    _append(tmp_db, outbox, first, second)

    outbox.mark_processed(first.id)

    assert [e.id for e in outbox.poll_unprocessed()] == [second.id]
    assert outbox.get(first.id).processed_at is not None


def test_mark_processed_twice_is_noop(tmp_db, outbox):
    event = ExtractionEvent.new("docs", ContentCreated("c1"))
    _append(tmp_db, outbox, event)
    outbox.mark_processed(event.id)
    stamp = outbox.get(event.id).processed_at
    outbox.mark_processed(event.id)
    assert outbox.get(event.id).processed_at == stamp


def test_mark_processed_unknown_event(outbox):
    with pytest.raises(EventNotFoundError):
        outbox.mark_processed("missing")


def test_unacknowledged_event_is_redelivered(tmp_db, outbox):
    event = ExtractionEvent.new("docs", ContentCreated("c1"))
    _append(tmp_db, outbox, event)
    # consumer crashed before acknowledging
    assert [e.id for e in outbox.poll_unprocessed()] == [event.id]
    assert [e.id for e in outbox.poll_unprocessed()] == [event.id]


def test_list_events(tmp_db, outbox):
    a = ExtractionEvent.new("docs", ContentCreated("c1"))
    b = ExtractionEvent.new("docs", ContentCreated("c2"))
    _append(tmp_db, outbox, a, b)
    outbox.mark_processed(a.id)
    assert [e.id for e in outbox.list_events()] == [a.id, b.id]
    assert [e.id for e in outbox.list_events(include_processed=False)] == [b.id]


def test_corrupt_payload_raises_serialization_error(tmp_db, outbox):
    tmp_db.execute(
        "INSERT INTO extraction_events (id, corpus_id, payload) VALUES ('bad', 'docs', '{\"type\": \"nope\"}')"
    )
    tmp_db.commit()
    with pytest.raises(SerializationError):
        outbox.poll_unprocessed()
