"""
Unit tests for transaction-scoped event recording and the outbox.
"""

import uuid
from decimal import Decimal

import pytest

from tutorbook.events import bookingEvents
from tutorbook.events.bookingEvents import (
    BookingAccepted,
    BookingCancelled,
    PayoutCreated,
)

BOOKING_ID = uuid.UUID("11111111-1111-1111-1111-111111111111")
ACTOR_ID = uuid.UUID("22222222-2222-2222-2222-222222222222")


class _FakeSession:
    """Only the ``info`` dict of a session is used by the recorder."""

    def __init__(self):
        self.info = {}


def _cancelled(reason="changed plans"):
    return BookingCancelled(
        booking_id=BOOKING_ID, actor_id=ACTOR_ID, previous_status="pending", reason=reason
    )


class TestPayload:

    def test_payload_envelope(self):
        event = BookingAccepted(
            booking_id=BOOKING_ID,
            actor_id=ACTOR_ID,
            student_id=ACTOR_ID,
            collection_id=BOOKING_ID,
            amount=Decimal("600.00"),
        )
        payload = event.to_payload()

        assert payload["event_type"] == "booking.accepted"
        assert payload["booking_id"] == str(BOOKING_ID)
        assert payload["actor_id"] == str(ACTOR_ID)
        assert payload["data"] == {
            "student_id": str(ACTOR_ID),
            "collection_id": str(BOOKING_ID),
            "amount": "600.00",
        }
        assert "T" in payload["timestamp"]

    def test_system_event_has_no_actor(self):
        event = PayoutCreated(
            booking_id=BOOKING_ID,
            payment_id=BOOKING_ID,
            tutor_id=ACTOR_ID,
            amount=Decimal("522.00"),
        )
        assert event.to_payload()["actor_id"] is None

    def test_events_are_immutable(self):
        event = _cancelled()
        with pytest.raises(AttributeError):
            event.reason = "other"


class TestRecordAndPublish:

    def test_recorded_events_wait_for_publish(self):
        db = _FakeSession()
        bookingEvents.record(db, _cancelled())

        assert len(bookingEvents.pending(db)) == 1
        assert bookingEvents.get_outbox().empty()

        assert bookingEvents.publish_pending(db) == 1
        assert bookingEvents.pending(db) == []
        assert [e.event_type for e in bookingEvents.drain()] == ["booking.cancelled"]

    def test_discarded_events_never_reach_outbox(self):
        db = _FakeSession()
        bookingEvents.record(db, _cancelled())
        bookingEvents.record(db, _cancelled("second"))

        assert bookingEvents.discard_pending(db) == 2
        assert bookingEvents.publish_pending(db) == 0
        assert bookingEvents.drain() == []

    def test_publish_preserves_order(self):
        db = _FakeSession()
        for reason in ("a", "b", "c"):
            bookingEvents.record(db, _cancelled(reason))
        bookingEvents.publish_pending(db)

        assert [e.reason for e in bookingEvents.drain()] == ["a", "b", "c"]

    def test_full_outbox_drops_and_logs(self, caplog):
        bookingEvents.reset_outbox(maxsize=1)
        db = _FakeSession()
        bookingEvents.record(db, _cancelled("kept"))
        bookingEvents.record(db, _cancelled("dropped"))

        assert bookingEvents.publish_pending(db) == 1
        assert [e.reason for e in bookingEvents.drain()] == ["kept"]
        assert any(
            r.levelname == "ERROR" and "outbox full" in r.getMessage() for r in caplog.records
        )
