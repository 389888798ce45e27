"""
Booking Service
===============

Business logic for the booking request lifecycle. All operations use async
SQLAlchemy sessions, take the acting user explicitly, and enforce:

  - Catalog snapshot immutability (rate and names copied at creation)
  - State machine enforcement via bookingStateManager
  - Atomic accept: the status flip and the collection row share one flush
  - Optimistic concurrency through the ``version`` column
  - An audit row and a domain event for every state change

Key functions:
  - create_booking        -- validate, snapshot the catalog, persist
  - respond_to_booking    -- tutor accept / decline
  - submit_session_proof  -- complete a paid session
  - rate_session          -- student rating, once
  - cancel_booking        -- student / admin cancellation
  - get_booking / list_bookings / list_overdue_sessions / get_booking_history
"""

from __future__ import annotations

import enum
import logging
import uuid
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal, InvalidOperation
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from tutorbook.core.config import settings
from tutorbook.core.exceptions import (
    AlreadyRatedError,
    ForbiddenError,
    InvalidDurationError,
    InvalidRatingError,
    InvalidStateError,
    InvalidTransitionError,
    NotFoundError,
    NotOwnerError,
    PreconditionFailedError,
    SamePartyError,
)
from tutorbook.events.bookingEvents import (
    BookingAccepted,
    BookingCancelled,
    BookingDeclined,
    BookingRequested,
    SessionCompleted,
    SessionRated,
    record,
)
from tutorbook.integrations.catalog import catalogClient
from tutorbook.integrations.proofStore import proofStoreClient
from tutorbook.models.base import utcnow
from tutorbook.models.booking import BookingRequest, BookingStatus
from tutorbook.models.payment import PaymentStatus
from tutorbook.services import auditTrail, paymentLedger, settlementCalculator
from tutorbook.services.bookingStateManager import (
    TERMINAL_STATUSES,
    Actor,
    ActorRole,
    is_cancellable,
    raise_for_rejection,
    validate_transition,
)
from tutorbook.services.paymentLedger import PaginatedResult, clamp_page_size

logger = logging.getLogger(__name__)


class BookingDecision(str, enum.Enum):
    ACCEPT = "accept"
    DECLINE = "decline"


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

async def _load_booking(db: AsyncSession, booking_id: uuid.UUID) -> BookingRequest:
    booking = await db.get(BookingRequest, booking_id)
    if booking is None:
        raise NotFoundError("Booking", booking_id)
    return booking


def _require_role(actor: Actor, roles: set[ActorRole], action: str) -> None:
    if actor.role not in roles:
        allowed = ", ".join(sorted(r.value for r in roles))
        raise ForbiddenError(f"A {actor.role.value} cannot {action}. Allowed roles: {allowed}.")


def _require_tutor_owner(booking: BookingRequest, actor: Actor) -> None:
    if actor.role == ActorRole.TUTOR and actor.id != booking.tutor_id:
        raise NotOwnerError(f"Booking '{booking.id}' is assigned to another tutor.")


def _require_student_owner(booking: BookingRequest, actor: Actor) -> None:
    if actor.role == ActorRole.STUDENT and actor.id != booking.student_id:
        raise NotOwnerError(f"Booking '{booking.id}' belongs to another student.")


def _transition(
    db: AsyncSession,
    booking: BookingRequest,
    new_status: BookingStatus,
    actor: Actor,
    note: Optional[str] = None,
) -> BookingStatus:
    """Validate and apply a status change, staging its audit row.

    Returns the previous status.
    """
    raise_for_rejection(validate_transition(booking.status, new_status, actor.role))
    old_status = booking.status
    booking.status = new_status
    auditTrail.record_transition(
        db,
        entity_type=auditTrail.ENTITY_BOOKING,
        entity_id=booking.id,
        from_status=old_status,
        to_status=new_status,
        actor=actor,
        note=note,
    )
    logger.info(
        "Booking %s transitioned: %s -> %s (actor=%s, role=%s)",
        booking.id,
        old_status.value,
        new_status.value,
        actor.id,
        actor.role.value,
    )
    return old_status


def _validate_duration(duration_hours: Decimal | float | int | str) -> Decimal:
    try:
        duration = Decimal(str(duration_hours))
    except (InvalidOperation, ValueError) as exc:
        raise InvalidDurationError(f"Duration '{duration_hours}' is not a number.") from exc

    if not duration.is_finite() or duration <= 0:
        raise InvalidDurationError("Duration must be greater than zero hours.")
    if duration > settings.max_session_hours:
        raise InvalidDurationError(
            f"Duration must not exceed {settings.max_session_hours} hours."
        )
    if duration != duration.quantize(Decimal("0.1")):
        raise InvalidDurationError("Duration supports at most one decimal place.")
    return duration.quantize(Decimal("0.1"))


def session_end(booking: BookingRequest) -> datetime:
    """Scheduled end of the session; session dates and times are UTC."""
    start = datetime.combine(booking.session_date, booking.start_time, tzinfo=timezone.utc)
    return start + timedelta(hours=float(booking.duration_hours))


# ---------------------------------------------------------------------------
# Creation
# ---------------------------------------------------------------------------

async def create_booking(
    db: AsyncSession,
    actor: Actor,
    *,
    student_id: uuid.UUID,
    tutor_id: uuid.UUID,
    subject: str,
    session_date: date,
    start_time: time,
    duration_hours: Decimal | float | int | str,
    notes: Optional[str] = None,
) -> BookingRequest:
    """Create a ``pending`` booking request.

    Input validation runs before any catalog call. The tutor's hourly rate
    and both display names are copied from the catalog onto the row.

    Raises:
        InvalidDurationError: Non-positive, too long or too precise duration.
        SamePartyError: Student and tutor are the same user.
        NotFoundError: Tutor or student unknown to the catalog.
        CollaboratorUnavailableError: Catalog unreachable after retries.
    """
    _require_role(actor, {ActorRole.STUDENT, ActorRole.ADMIN}, "request a booking")
    if actor.role == ActorRole.STUDENT and actor.id != student_id:
        raise NotOwnerError("Students can only request bookings for themselves.")

    duration = _validate_duration(duration_hours)
    if student_id == tutor_id:
        raise SamePartyError("A student cannot book a session with themselves.")

    tutor = await catalogClient.get_tutor_snapshot(tutor_id)
    student = await catalogClient.get_student_snapshot(student_id)

    booking = BookingRequest(
        id=uuid.uuid4(),
        student_id=student_id,
        tutor_id=tutor_id,
        student_name=student.display_name,
        tutor_name=tutor.display_name,
        hourly_rate=tutor.session_rate_per_hour,
        subject=subject.strip(),
        session_date=session_date,
        start_time=start_time,
        duration_hours=duration,
        student_notes=notes,
        status=BookingStatus.PENDING,
    )
    db.add(booking)
    auditTrail.record_transition(
        db,
        entity_type=auditTrail.ENTITY_BOOKING,
        entity_id=booking.id,
        from_status=None,
        to_status=BookingStatus.PENDING,
        actor=actor,
    )
    await db.flush()

    record(
        db,
        BookingRequested(
            booking_id=booking.id,
            actor_id=actor.id,
            student_id=student_id,
            tutor_id=tutor_id,
            subject=booking.subject,
        ),
    )
    logger.info(
        "Booking %s created: student=%s tutor=%s rate=%s duration=%s",
        booking.id,
        student_id,
        tutor_id,
        booking.hourly_rate,
        duration,
    )
    return booking


# ---------------------------------------------------------------------------
# Tutor response
# ---------------------------------------------------------------------------

async def respond_to_booking(
    db: AsyncSession,
    booking_id: uuid.UUID,
    actor: Actor,
    decision: BookingDecision,
) -> BookingRequest:
    """Accept or decline a pending booking.

    Accepting moves the booking to ``awaiting_payment`` and opens its
    collection in the same flush; either both are written or neither is.
    """
    decision = BookingDecision(decision)
    _require_role(actor, {ActorRole.TUTOR}, f"{decision.value} a booking")
    booking = await _load_booking(db, booking_id)
    _require_tutor_owner(booking, actor)

    with auditTrail.concurrent_update_guard("Booking", booking.id):
        if decision == BookingDecision.DECLINE:
            _transition(db, booking, BookingStatus.DECLINED, actor)
            booking.responded_at = utcnow()
            await db.flush()
            record(
                db,
                BookingDeclined(
                    booking_id=booking.id,
                    actor_id=actor.id,
                    student_id=booking.student_id,
                ),
            )
            return booking

        raise_for_rejection(
            validate_transition(booking.status, BookingStatus.AWAITING_PAYMENT, actor.role)
        )
        amount = settlementCalculator.gross_amount(booking.hourly_rate, booking.duration_hours)
        collection = await paymentLedger.open_collection(db, booking, amount, actor)
        _transition(db, booking, BookingStatus.AWAITING_PAYMENT, actor)
        booking.responded_at = utcnow()
        await db.flush()

    record(
        db,
        BookingAccepted(
            booking_id=booking.id,
            actor_id=actor.id,
            student_id=booking.student_id,
            collection_id=collection.id,
            amount=collection.amount,
        ),
    )
    return booking


# ---------------------------------------------------------------------------
# Completion & rating
# ---------------------------------------------------------------------------

async def submit_session_proof(
    db: AsyncSession,
    booking_id: uuid.UUID,
    actor: Actor,
    proof_reference: Optional[str],
) -> BookingRequest:
    """Mark a paid session as completed.

    Raises:
        InvalidTransitionError: Booking already in a terminal state.
        PreconditionFailedError: Payment not yet confirmed or proof empty.
    """
    _require_role(actor, {ActorRole.TUTOR, ActorRole.ADMIN}, "complete a session")
    booking = await _load_booking(db, booking_id)
    _require_tutor_owner(booking, actor)

    if booking.status in TERMINAL_STATUSES:
        raise_for_rejection(
            validate_transition(booking.status, BookingStatus.COMPLETED, actor.role)
        )
    if booking.status != BookingStatus.PAYMENT_APPROVED:
        raise PreconditionFailedError(
            f"Booking '{booking_id}' is '{booking.status.value}'; the payment must be "
            f"confirmed before the session can be completed."
        )

    reference = (proof_reference or "").strip()
    if not reference:
        raise PreconditionFailedError("A non-empty session proof is required to complete a session.")

    collection = await paymentLedger.get_active_collection(db, booking.id)
    if collection is None or collection.status != PaymentStatus.CONFIRMED:
        raise PreconditionFailedError(
            f"Booking '{booking_id}' has no confirmed collection."
        )

    await proofStoreClient.ensure_exists(reference)

    with auditTrail.concurrent_update_guard("Booking", booking.id):
        _transition(db, booking, BookingStatus.COMPLETED, actor, note="session proof submitted")
        booking.session_proof = reference
        booking.completed_at = utcnow()
        await db.flush()

    record(
        db,
        SessionCompleted(
            booking_id=booking.id,
            actor_id=actor.id,
            tutor_id=booking.tutor_id,
            student_id=booking.student_id,
        ),
    )
    return booking


async def rate_session(
    db: AsyncSession,
    booking_id: uuid.UUID,
    actor: Actor,
    rating: int,
    comment: Optional[str] = None,
) -> BookingRequest:
    """Attach the student's rating to a completed booking, exactly once."""
    _require_role(actor, {ActorRole.STUDENT}, "rate a session")
    if isinstance(rating, bool) or not isinstance(rating, int) or not 1 <= rating <= 5:
        raise InvalidRatingError("Rating must be an integer between 1 and 5.")

    booking = await _load_booking(db, booking_id)
    _require_student_owner(booking, actor)

    if booking.status != BookingStatus.COMPLETED:
        raise InvalidStateError(
            f"Only completed sessions can be rated (current: '{booking.status.value}')."
        )
    if booking.tutee_rating is not None:
        raise AlreadyRatedError(f"Booking '{booking_id}' has already been rated.")

    with auditTrail.concurrent_update_guard("Booking", booking.id):
        booking.tutee_rating = rating
        booking.tutee_comment = comment
        booking.rated_at = utcnow()
        await db.flush()

    logger.info("Booking %s rated %d by student %s", booking.id, rating, actor.id)
    record(
        db,
        SessionRated(
            booking_id=booking.id,
            actor_id=actor.id,
            tutor_id=booking.tutor_id,
            rating=rating,
        ),
    )
    return booking


# ---------------------------------------------------------------------------
# Cancellation
# ---------------------------------------------------------------------------

async def cancel_booking(
    db: AsyncSession,
    booking_id: uuid.UUID,
    actor: Actor,
    reason: Optional[str] = None,
) -> BookingRequest:
    """Cancel a booking that is still pending or awaiting payment.

    A pending collection is voided in the same transaction.
    """
    _require_role(actor, {ActorRole.STUDENT, ActorRole.ADMIN}, "cancel a booking")
    booking = await _load_booking(db, booking_id)
    _require_student_owner(booking, actor)

    if not is_cancellable(booking.status):
        raise InvalidTransitionError(
            f"Booking '{booking.id}' is '{booking.status.value}' and can no longer be cancelled; "
            "paid sessions are cancelled by refunding the collection."
        )

    with auditTrail.concurrent_update_guard("Booking", booking.id):
        raise_for_rejection(
            validate_transition(booking.status, BookingStatus.CANCELLED, actor.role)
        )
        if booking.status == BookingStatus.AWAITING_PAYMENT:
            collection = await paymentLedger.get_active_collection(db, booking.id)
            if collection is not None:
                paymentLedger.void_collection(db, collection, actor)

        previous = _transition(db, booking, BookingStatus.CANCELLED, actor, note=reason)
        booking.cancellation_reason = reason
        booking.cancelled_at = utcnow()
        await db.flush()

    record(
        db,
        BookingCancelled(
            booking_id=booking.id,
            actor_id=actor.id,
            previous_status=previous.value,
            reason=reason,
        ),
    )
    return booking


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------

async def get_booking(
    db: AsyncSession,
    booking_id: uuid.UUID,
    actor: Actor,
) -> BookingRequest:
    booking = await _load_booking(db, booking_id)
    if not actor.is_admin and actor.id not in (booking.student_id, booking.tutor_id):
        raise NotOwnerError(f"Booking '{booking_id}' is not visible to this user.")
    return booking


async def list_bookings(
    db: AsyncSession,
    actor: Actor,
    *,
    student_id: Optional[uuid.UUID] = None,
    tutor_id: Optional[uuid.UUID] = None,
    status: Optional[BookingStatus] = None,
    page: int = 1,
    page_size: Optional[int] = None,
) -> PaginatedResult:
    """Paginated bookings filtered by party and status.

    Students and tutors only ever see their own bookings; asking for
    someone else's raises ``NotOwnerError``.
    """
    if actor.role == ActorRole.STUDENT:
        if student_id is not None and student_id != actor.id:
            raise NotOwnerError("Students can only list their own bookings.")
        student_id = actor.id
    elif actor.role == ActorRole.TUTOR:
        if tutor_id is not None and tutor_id != actor.id:
            raise NotOwnerError("Tutors can only list their own bookings.")
        tutor_id = actor.id

    page = max(page, 1)
    page_size = clamp_page_size(page_size)

    filters = []
    if student_id is not None:
        filters.append(BookingRequest.student_id == student_id)
    if tutor_id is not None:
        filters.append(BookingRequest.tutor_id == tutor_id)
    if status is not None:
        filters.append(BookingRequest.status == status)

    count_stmt = select(func.count()).select_from(BookingRequest).where(*filters)
    total = (await db.execute(count_stmt)).scalar_one()

    stmt = (
        select(BookingRequest)
        .where(*filters)
        .order_by(BookingRequest.created_at.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    result = await db.execute(stmt)
    return PaginatedResult(
        items=list(result.scalars().all()),
        total_items=total,
        page=page,
        page_size=page_size,
    )


async def list_overdue_sessions(
    db: AsyncSession,
    actor: Actor,
    *,
    tutor_id: Optional[uuid.UUID] = None,
    now: Optional[datetime] = None,
) -> list[BookingRequest]:
    """Paid sessions whose scheduled end has passed without completion."""
    if actor.role == ActorRole.STUDENT:
        raise ForbiddenError("Students cannot list overdue sessions.")
    if actor.role == ActorRole.TUTOR:
        if tutor_id is not None and tutor_id != actor.id:
            raise NotOwnerError("Tutors can only list their own overdue sessions.")
        tutor_id = actor.id

    now = now or utcnow()
    stmt = select(BookingRequest).where(
        BookingRequest.status == BookingStatus.PAYMENT_APPROVED,
        BookingRequest.session_date <= now.date(),
    )
    if tutor_id is not None:
        stmt = stmt.where(BookingRequest.tutor_id == tutor_id)
    stmt = stmt.order_by(BookingRequest.session_date.asc(), BookingRequest.start_time.asc())

    result = await db.execute(stmt)
    return [b for b in result.scalars().all() if session_end(b) < now]


async def get_booking_history(db: AsyncSession, booking_id: uuid.UUID, actor: Actor):
    """Status audit rows for a booking, oldest first."""
    await get_booking(db, booking_id, actor)
    return await auditTrail.get_history(db, (auditTrail.ENTITY_BOOKING,), booking_id)
