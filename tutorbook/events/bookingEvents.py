"""
Booking & Payment Domain Events
===============================

Lifecycle events for bookings, collections and payouts. Services call
``record`` while the transaction is open; the events ride on the session's
``info`` dict and are only handed to the outbox by ``publish_pending`` after
the commit succeeds. A rolled-back transaction therefore never emits.

The outbox is a bounded ``asyncio.Queue`` drained by the notifier
dispatcher. Publishing never blocks the request: when the outbox is full
the event is dropped and logged at ERROR.

Events emitted:
  - booking.requested
  - booking.accepted
  - booking.declined
  - booking.cancelled
  - session.completed
  - session.rated
  - payment.proof_submitted
  - payment.confirmed
  - payment.rejected
  - payment.refunded
  - payment.dispute_opened
  - payment.dispute_status_changed
  - payout.created
  - payout.paid
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, ClassVar, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from tutorbook.core.config import settings

logger = logging.getLogger(__name__)

_PENDING_KEY = "tutorbook.pending_events"


# ---------------------------------------------------------------------------
# Event variants
# ---------------------------------------------------------------------------

@dataclass(frozen=True, kw_only=True)
class DomainEvent:
    """Common envelope. Subclasses set ``event_type`` and add their data."""

    event_type: ClassVar[str] = "domain.event"

    booking_id: uuid.UUID
    actor_id: Optional[uuid.UUID] = None
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_payload(self) -> dict[str, Any]:
        """Serialise into the JSON body sent to the notifier."""
        data: dict[str, Any] = {}
        for f in dataclasses.fields(self):
            if f.name in ("booking_id", "actor_id", "occurred_at"):
                continue
            data[f.name] = _jsonable(getattr(self, f.name))
        return {
            "event_type": self.event_type,
            "booking_id": str(self.booking_id),
            "actor_id": str(self.actor_id) if self.actor_id else None,
            "timestamp": self.occurred_at.isoformat(),
            "data": data,
        }


@dataclass(frozen=True, kw_only=True)
class BookingRequested(DomainEvent):
    event_type: ClassVar[str] = "booking.requested"
    student_id: uuid.UUID
    tutor_id: uuid.UUID
    subject: str


@dataclass(frozen=True, kw_only=True)
class BookingAccepted(DomainEvent):
    event_type: ClassVar[str] = "booking.accepted"
    student_id: uuid.UUID
    collection_id: uuid.UUID
    amount: Decimal


@dataclass(frozen=True, kw_only=True)
class BookingDeclined(DomainEvent):
    event_type: ClassVar[str] = "booking.declined"
    student_id: uuid.UUID


@dataclass(frozen=True, kw_only=True)
class BookingCancelled(DomainEvent):
    event_type: ClassVar[str] = "booking.cancelled"
    previous_status: str
    reason: Optional[str] = None


@dataclass(frozen=True, kw_only=True)
class SessionCompleted(DomainEvent):
    event_type: ClassVar[str] = "session.completed"
    tutor_id: uuid.UUID
    student_id: uuid.UUID


@dataclass(frozen=True, kw_only=True)
class SessionRated(DomainEvent):
    event_type: ClassVar[str] = "session.rated"
    tutor_id: uuid.UUID
    rating: int


@dataclass(frozen=True, kw_only=True)
class PaymentProofSubmitted(DomainEvent):
    event_type: ClassVar[str] = "payment.proof_submitted"
    payment_id: uuid.UUID
    resubmission: bool = False


@dataclass(frozen=True, kw_only=True)
class PaymentConfirmed(DomainEvent):
    event_type: ClassVar[str] = "payment.confirmed"
    payment_id: uuid.UUID
    amount: Decimal


@dataclass(frozen=True, kw_only=True)
class PaymentRejected(DomainEvent):
    event_type: ClassVar[str] = "payment.rejected"
    payment_id: uuid.UUID
    reason: str


@dataclass(frozen=True, kw_only=True)
class CollectionRefunded(DomainEvent):
    event_type: ClassVar[str] = "payment.refunded"
    payment_id: uuid.UUID
    amount: Decimal


@dataclass(frozen=True, kw_only=True)
class DisputeOpened(DomainEvent):
    event_type: ClassVar[str] = "payment.dispute_opened"
    payment_id: uuid.UUID


@dataclass(frozen=True, kw_only=True)
class DisputeStatusChanged(DomainEvent):
    event_type: ClassVar[str] = "payment.dispute_status_changed"
    payment_id: uuid.UUID
    old_status: str
    new_status: str


@dataclass(frozen=True, kw_only=True)
class PayoutCreated(DomainEvent):
    event_type: ClassVar[str] = "payout.created"
    payment_id: uuid.UUID
    tutor_id: uuid.UUID
    amount: Decimal


@dataclass(frozen=True, kw_only=True)
class PayoutPaid(DomainEvent):
    event_type: ClassVar[str] = "payout.paid"
    payment_id: uuid.UUID
    tutor_id: uuid.UUID
    amount: Decimal


def _jsonable(value: Any) -> Any:
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    return value


# ---------------------------------------------------------------------------
# Outbox
# ---------------------------------------------------------------------------

_outbox: asyncio.Queue[DomainEvent] | None = None


def get_outbox() -> asyncio.Queue[DomainEvent]:
    global _outbox
    if _outbox is None:
        _outbox = asyncio.Queue(maxsize=settings.event_outbox_maxsize)
    return _outbox


def reset_outbox(maxsize: Optional[int] = None) -> asyncio.Queue[DomainEvent]:
    """Replace the outbox with a fresh queue. Used at startup and in tests."""
    global _outbox
    _outbox = asyncio.Queue(
        maxsize=settings.event_outbox_maxsize if maxsize is None else maxsize
    )
    return _outbox


def drain() -> list[DomainEvent]:
    """Remove and return everything currently in the outbox."""
    outbox = get_outbox()
    drained: list[DomainEvent] = []
    while True:
        try:
            drained.append(outbox.get_nowait())
        except asyncio.QueueEmpty:
            return drained


# ---------------------------------------------------------------------------
# Transaction-scoped recording
# ---------------------------------------------------------------------------

def record(db: AsyncSession, event: DomainEvent) -> None:
    """Attach ``event`` to the current transaction; emitted only after commit."""
    db.info.setdefault(_PENDING_KEY, []).append(event)
    logger.info("Event recorded: %s for booking %s", event.event_type, event.booking_id)


def pending(db: AsyncSession) -> list[DomainEvent]:
    return list(db.info.get(_PENDING_KEY, []))


def discard_pending(db: AsyncSession) -> int:
    """Forget recorded events after a rollback. Returns how many were dropped."""
    dropped = db.info.pop(_PENDING_KEY, [])
    if dropped:
        logger.info("Discarded %d event(s) from rolled-back transaction", len(dropped))
    return len(dropped)


def publish_pending(db: AsyncSession) -> int:
    """Move recorded events into the outbox without blocking.

    Returns the number of events published. Events that do not fit are
    dropped and logged; the committed state is authoritative either way.
    """
    events: list[DomainEvent] = db.info.pop(_PENDING_KEY, [])
    outbox = get_outbox()
    published = 0
    for event in events:
        try:
            outbox.put_nowait(event)
            published += 1
        except asyncio.QueueFull:
            logger.error(
                "Event outbox full (maxsize=%d); dropping %s for booking %s",
                outbox.maxsize,
                event.event_type,
                event.booking_id,
            )
    return published
