"""
Unit tests for the Booking Service.

Runs the booking lifecycle against an in-memory SQLite database with the
catalog replaced by fixed snapshots (see ``conftest.mock_catalog``).
"""

import uuid
from datetime import datetime, timezone
from decimal import Decimal

import pytest

from tests.conftest import (
    ADMIN,
    OTHER_STUDENT,
    OTHER_TUTOR,
    SESSION_DATE,
    SESSION_START,
    STUDENT,
    STUDENT_ID,
    TUTOR,
    TUTOR_ID,
    create_awaiting_payment_booking,
    create_completed_booking,
    create_payment_approved_booking,
    create_pending_booking,
    days_ago,
)
from tutorbook.core.exceptions import (
    AlreadyRatedError,
    CollaboratorUnavailableError,
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
from tutorbook.events import bookingEvents
from tutorbook.models.booking import BookingStatus
from tutorbook.models.payment import PaymentStatus
from tutorbook.services import bookingService, paymentLedger
from tutorbook.services.bookingService import BookingDecision


def _event_types(db):
    return [e.event_type for e in bookingEvents.pending(db)]


# ---------------------------------------------------------------------------
# create_booking
# ---------------------------------------------------------------------------


class TestCreateBooking:
    """Booking requests snapshot the tutor's rate and start out pending."""

    @pytest.mark.asyncio
    async def test_creates_pending_booking_with_snapshot(self, db_session):
        booking = await create_pending_booking(db_session)

        assert booking.status == BookingStatus.PENDING
        assert booking.hourly_rate == Decimal("300.00")
        assert booking.tutor_name == "Tutor T."
        assert booking.student_name == "Student S."
        assert booking.duration_hours == Decimal("2.0")
        assert booking.session_date == SESSION_DATE
        assert booking.start_time == SESSION_START
        assert _event_types(db_session) == ["booking.requested"]

    @pytest.mark.asyncio
    async def test_writes_initial_audit_entry(self, db_session):
        booking = await create_pending_booking(db_session)
        history = await bookingService.get_booking_history(db_session, booking.id, STUDENT)

        assert len(history) == 1
        assert history[0].from_status is None
        assert history[0].to_status == "pending"
        assert history[0].actor_role == "student"

    @pytest.mark.asyncio
    async def test_strips_subject(self, db_session):
        booking = await create_pending_booking(db_session, subject="  Physics  ")
        assert booking.subject == "Physics"

    @pytest.mark.parametrize("duration", ["0", "-1", "8.5", "1.25", "abc", "Infinity"])
    @pytest.mark.asyncio
    async def test_invalid_duration_rejected_before_catalog(
        self, db_session, mock_catalog, duration
    ):
        with pytest.raises(InvalidDurationError):
            await create_pending_booking(db_session, duration_hours=duration)
        mock_catalog["tutor"].assert_not_awaited()

    @pytest.mark.asyncio
    async def test_same_party_rejected(self, db_session):
        with pytest.raises(SamePartyError):
            await create_pending_booking(db_session, tutor_id=STUDENT_ID)

    @pytest.mark.asyncio
    async def test_tutor_cannot_request(self, db_session):
        with pytest.raises(ForbiddenError):
            await create_pending_booking(db_session, student=TUTOR)

    @pytest.mark.asyncio
    async def test_student_cannot_book_for_someone_else(self, db_session):
        with pytest.raises(NotOwnerError):
            await bookingService.create_booking(
                db_session,
                STUDENT,
                student_id=OTHER_STUDENT.id,
                tutor_id=TUTOR_ID,
                subject="Calculus",
                session_date=SESSION_DATE,
                start_time=SESSION_START,
                duration_hours="1",
            )

    @pytest.mark.asyncio
    async def test_admin_can_book_on_behalf_of_student(self, db_session):
        booking = await bookingService.create_booking(
            db_session,
            ADMIN,
            student_id=STUDENT_ID,
            tutor_id=TUTOR_ID,
            subject="Chemistry",
            session_date=SESSION_DATE,
            start_time=SESSION_START,
            duration_hours=1,
        )
        assert booking.student_id == STUDENT_ID

    @pytest.mark.asyncio
    async def test_unknown_tutor(self, db_session, mock_catalog):
        mock_catalog["tutor"].side_effect = NotFoundError("Tutor", TUTOR_ID)
        with pytest.raises(NotFoundError):
            await create_pending_booking(db_session)

    @pytest.mark.asyncio
    async def test_catalog_unavailable(self, db_session, mock_catalog):
        mock_catalog["tutor"].side_effect = CollaboratorUnavailableError(
            "catalog", "connection refused"
        )
        with pytest.raises(CollaboratorUnavailableError):
            await create_pending_booking(db_session)
        assert bookingEvents.pending(db_session) == []


# ---------------------------------------------------------------------------
# respond_to_booking
# ---------------------------------------------------------------------------


class TestRespondToBooking:
    """Tutor accepts (opening the collection) or declines."""

    @pytest.mark.asyncio
    async def test_accept_opens_collection(self, db_session):
        booking, collection = await create_awaiting_payment_booking(db_session)

        assert booking.status == BookingStatus.AWAITING_PAYMENT
        assert booking.responded_at is not None
        assert collection is not None
        assert collection.amount == Decimal("600.00")
        assert collection.status == PaymentStatus.PENDING
        assert collection.student_id == STUDENT_ID
        assert collection.tutor_id == TUTOR_ID
        assert _event_types(db_session) == ["booking.requested", "booking.accepted"]

    @pytest.mark.asyncio
    async def test_accept_fractional_duration(self, db_session):
        _, collection = await create_awaiting_payment_booking(db_session, duration_hours="1.5")
        assert collection.amount == Decimal("450.00")

    @pytest.mark.asyncio
    async def test_decline(self, db_session):
        booking = await create_pending_booking(db_session)
        result = await bookingService.respond_to_booking(
            db_session, booking.id, TUTOR, BookingDecision.DECLINE
        )

        assert result.status == BookingStatus.DECLINED
        assert await paymentLedger.get_active_collection(db_session, booking.id) is None
        assert _event_types(db_session)[-1] == "booking.declined"

    @pytest.mark.asyncio
    async def test_accept_twice_is_invalid_transition(self, db_session):
        booking, _ = await create_awaiting_payment_booking(db_session)
        with pytest.raises(InvalidTransitionError):
            await bookingService.respond_to_booking(
                db_session, booking.id, TUTOR, BookingDecision.ACCEPT
            )

    @pytest.mark.asyncio
    async def test_accept_after_decline_is_invalid_transition(self, db_session):
        booking = await create_pending_booking(db_session)
        await bookingService.respond_to_booking(
            db_session, booking.id, TUTOR, BookingDecision.DECLINE
        )
        with pytest.raises(InvalidTransitionError):
            await bookingService.respond_to_booking(
                db_session, booking.id, TUTOR, BookingDecision.ACCEPT
            )

    @pytest.mark.asyncio
    async def test_other_tutor_cannot_respond(self, db_session):
        booking = await create_pending_booking(db_session)
        with pytest.raises(NotOwnerError):
            await bookingService.respond_to_booking(
                db_session, booking.id, OTHER_TUTOR, BookingDecision.ACCEPT
            )

    @pytest.mark.asyncio
    async def test_student_cannot_respond(self, db_session):
        booking = await create_pending_booking(db_session)
        with pytest.raises(ForbiddenError):
            await bookingService.respond_to_booking(
                db_session, booking.id, STUDENT, BookingDecision.ACCEPT
            )

    @pytest.mark.asyncio
    async def test_unknown_booking(self, db_session):
        with pytest.raises(NotFoundError):
            await bookingService.respond_to_booking(
                db_session, uuid.uuid4(), TUTOR, BookingDecision.ACCEPT
            )

    @pytest.mark.asyncio
    async def test_accepts_plain_string_decision(self, db_session):
        booking = await create_pending_booking(db_session)
        result = await bookingService.respond_to_booking(db_session, booking.id, TUTOR, "decline")
        assert result.status == BookingStatus.DECLINED


# ---------------------------------------------------------------------------
# submit_session_proof
# ---------------------------------------------------------------------------


class TestSubmitSessionProof:

    @pytest.mark.asyncio
    async def test_completes_paid_session(self, db_session):
        booking, _ = await create_completed_booking(db_session)

        assert booking.status == BookingStatus.COMPLETED
        assert booking.session_proof == "proofs/session-1.png"
        assert booking.completed_at is not None
        assert _event_types(db_session)[-1] == "session.completed"

    @pytest.mark.parametrize("setup", ["pending", "awaiting_payment"])
    @pytest.mark.asyncio
    async def test_requires_confirmed_payment(self, db_session, setup):
        if setup == "pending":
            booking = await create_pending_booking(db_session)
        else:
            booking, _ = await create_awaiting_payment_booking(db_session)

        with pytest.raises(PreconditionFailedError):
            await bookingService.submit_session_proof(
                db_session, booking.id, TUTOR, "proofs/session-1.png"
            )
        assert booking.status != BookingStatus.COMPLETED

    @pytest.mark.parametrize("proof", ["", "   ", None])
    @pytest.mark.asyncio
    async def test_requires_non_empty_proof(self, db_session, proof):
        booking, _ = await create_payment_approved_booking(db_session)
        with pytest.raises(PreconditionFailedError):
            await bookingService.submit_session_proof(db_session, booking.id, TUTOR, proof)
        assert booking.status == BookingStatus.PAYMENT_APPROVED

    @pytest.mark.asyncio
    async def test_completed_booking_cannot_complete_again(self, db_session):
        booking, _ = await create_completed_booking(db_session)
        with pytest.raises(InvalidTransitionError):
            await bookingService.submit_session_proof(
                db_session, booking.id, TUTOR, "proofs/session-2.png"
            )

    @pytest.mark.asyncio
    async def test_other_tutor_cannot_complete(self, db_session):
        booking, _ = await create_payment_approved_booking(db_session)
        with pytest.raises(NotOwnerError):
            await bookingService.submit_session_proof(
                db_session, booking.id, OTHER_TUTOR, "proofs/session-1.png"
            )

    @pytest.mark.asyncio
    async def test_student_cannot_complete(self, db_session):
        booking, _ = await create_payment_approved_booking(db_session)
        with pytest.raises(ForbiddenError):
            await bookingService.submit_session_proof(
                db_session, booking.id, STUDENT, "proofs/session-1.png"
            )

    @pytest.mark.asyncio
    async def test_admin_can_complete(self, db_session):
        booking, _ = await create_payment_approved_booking(db_session)
        result = await bookingService.submit_session_proof(
            db_session, booking.id, ADMIN, "proofs/session-1.png"
        )
        assert result.status == BookingStatus.COMPLETED


# ---------------------------------------------------------------------------
# rate_session
# ---------------------------------------------------------------------------


class TestRateSession:

    @pytest.mark.asyncio
    async def test_rates_completed_session(self, db_session):
        booking, _ = await create_completed_booking(db_session)
        result = await bookingService.rate_session(
            db_session, booking.id, STUDENT, 5, "Very clear explanations"
        )

        assert result.tutee_rating == 5
        assert result.tutee_comment == "Very clear explanations"
        assert result.rated_at is not None
        assert _event_types(db_session)[-1] == "session.rated"

    @pytest.mark.asyncio
    async def test_rating_is_set_once(self, db_session):
        booking, _ = await create_completed_booking(db_session)
        await bookingService.rate_session(db_session, booking.id, STUDENT, 4)
        with pytest.raises(AlreadyRatedError):
            await bookingService.rate_session(db_session, booking.id, STUDENT, 1)
        assert booking.tutee_rating == 4

    @pytest.mark.parametrize("rating", [0, 6, -1, True, 4.5])
    @pytest.mark.asyncio
    async def test_out_of_range_rating(self, db_session, rating):
        booking, _ = await create_completed_booking(db_session)
        with pytest.raises(InvalidRatingError):
            await bookingService.rate_session(db_session, booking.id, STUDENT, rating)

    @pytest.mark.asyncio
    async def test_cannot_rate_before_completion(self, db_session):
        booking, _ = await create_payment_approved_booking(db_session)
        with pytest.raises(InvalidStateError):
            await bookingService.rate_session(db_session, booking.id, STUDENT, 5)

    @pytest.mark.asyncio
    async def test_other_student_cannot_rate(self, db_session):
        booking, _ = await create_completed_booking(db_session)
        with pytest.raises(NotOwnerError):
            await bookingService.rate_session(db_session, booking.id, OTHER_STUDENT, 5)

    @pytest.mark.asyncio
    async def test_tutor_cannot_rate(self, db_session):
        booking, _ = await create_completed_booking(db_session)
        with pytest.raises(ForbiddenError):
            await bookingService.rate_session(db_session, booking.id, TUTOR, 5)


# ---------------------------------------------------------------------------
# cancel_booking
# ---------------------------------------------------------------------------


class TestCancelBooking:

    @pytest.mark.asyncio
    async def test_cancel_pending(self, db_session):
        booking = await create_pending_booking(db_session)
        result = await bookingService.cancel_booking(
            db_session, booking.id, STUDENT, reason="Schedule conflict"
        )

        assert result.status == BookingStatus.CANCELLED
        assert result.cancellation_reason == "Schedule conflict"
        assert result.cancelled_at is not None
        cancelled = bookingEvents.pending(db_session)[-1]
        assert cancelled.event_type == "booking.cancelled"
        assert cancelled.previous_status == "pending"

    @pytest.mark.asyncio
    async def test_cancel_awaiting_payment_voids_collection(self, db_session):
        booking, collection = await create_awaiting_payment_booking(db_session)
        await bookingService.cancel_booking(db_session, booking.id, STUDENT)

        assert booking.status == BookingStatus.CANCELLED
        assert collection.status == PaymentStatus.REJECTED
        assert collection.rejection_reason == paymentLedger.VOID_ON_CANCEL_REASON
        assert await paymentLedger.get_active_collection(db_session, booking.id) is None
        assert "payment.rejected" in _event_types(db_session)

    @pytest.mark.asyncio
    async def test_cancel_after_payment_approved_is_invalid(self, db_session):
        booking, _ = await create_payment_approved_booking(db_session)
        with pytest.raises(InvalidTransitionError):
            await bookingService.cancel_booking(db_session, booking.id, STUDENT)
        assert booking.status == BookingStatus.PAYMENT_APPROVED

    @pytest.mark.asyncio
    async def test_admin_cannot_cancel_paid_booking_directly(self, db_session):
        booking, collection = await create_payment_approved_booking(db_session)
        with pytest.raises(InvalidTransitionError):
            await bookingService.cancel_booking(db_session, booking.id, ADMIN)
        assert booking.status == BookingStatus.PAYMENT_APPROVED
        assert collection.status == PaymentStatus.CONFIRMED

    @pytest.mark.asyncio
    async def test_cancel_completed_is_invalid(self, db_session):
        booking, _ = await create_completed_booking(db_session)
        with pytest.raises(InvalidTransitionError):
            await bookingService.cancel_booking(db_session, booking.id, STUDENT)

    @pytest.mark.asyncio
    async def test_tutor_cannot_cancel(self, db_session):
        booking = await create_pending_booking(db_session)
        with pytest.raises(ForbiddenError):
            await bookingService.cancel_booking(db_session, booking.id, TUTOR)

    @pytest.mark.asyncio
    async def test_other_student_cannot_cancel(self, db_session):
        booking = await create_pending_booking(db_session)
        with pytest.raises(NotOwnerError):
            await bookingService.cancel_booking(db_session, booking.id, OTHER_STUDENT)

    @pytest.mark.asyncio
    async def test_admin_can_cancel(self, db_session):
        booking = await create_pending_booking(db_session)
        result = await bookingService.cancel_booking(db_session, booking.id, ADMIN, "No-show")
        assert result.status == BookingStatus.CANCELLED


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


class TestReads:

    @pytest.mark.asyncio
    async def test_get_booking_visibility(self, db_session):
        booking = await create_pending_booking(db_session)

        assert (await bookingService.get_booking(db_session, booking.id, STUDENT)).id == booking.id
        assert (await bookingService.get_booking(db_session, booking.id, TUTOR)).id == booking.id
        assert (await bookingService.get_booking(db_session, booking.id, ADMIN)).id == booking.id
        with pytest.raises(NotOwnerError):
            await bookingService.get_booking(db_session, booking.id, OTHER_STUDENT)
        with pytest.raises(NotOwnerError):
            await bookingService.get_booking(db_session, booking.id, OTHER_TUTOR)

    @pytest.mark.asyncio
    async def test_list_scoped_to_actor(self, db_session):
        await create_pending_booking(db_session)
        await create_pending_booking(db_session, student=OTHER_STUDENT)

        mine = await bookingService.list_bookings(db_session, STUDENT)
        assert mine.total_items == 1
        assert all(b.student_id == STUDENT_ID for b in mine.items)

        tutor_view = await bookingService.list_bookings(db_session, TUTOR)
        assert tutor_view.total_items == 2

        admin_view = await bookingService.list_bookings(db_session, ADMIN)
        assert admin_view.total_items == 2

        other_tutor_view = await bookingService.list_bookings(db_session, OTHER_TUTOR)
        assert other_tutor_view.total_items == 0

    @pytest.mark.asyncio
    async def test_student_cannot_list_someone_else(self, db_session):
        with pytest.raises(NotOwnerError):
            await bookingService.list_bookings(
                db_session, STUDENT, student_id=OTHER_STUDENT.id
            )

    @pytest.mark.asyncio
    async def test_status_filter_and_pagination(self, db_session):
        await create_awaiting_payment_booking(db_session)
        await create_pending_booking(db_session, subject="Physics")
        await create_pending_booking(db_session, subject="Biology")

        pending = await bookingService.list_bookings(
            db_session, ADMIN, status=BookingStatus.PENDING, page_size=1
        )
        assert pending.total_items == 2
        assert pending.total_pages == 2
        assert len(pending.items) == 1
        assert pending.items[0].status == BookingStatus.PENDING

        second = await bookingService.list_bookings(
            db_session, ADMIN, status=BookingStatus.PENDING, page=2, page_size=1
        )
        assert len(second.items) == 1
        assert second.items[0].id != pending.items[0].id

    @pytest.mark.asyncio
    async def test_history_follows_lifecycle(self, db_session):
        booking, _ = await create_completed_booking(db_session)
        history = await bookingService.get_booking_history(db_session, booking.id, ADMIN)

        assert [h.to_status for h in history] == [
            "pending",
            "awaiting_payment",
            "payment_approved",
            "completed",
        ]


# ---------------------------------------------------------------------------
# list_overdue_sessions
# ---------------------------------------------------------------------------


class TestOverdueSessions:
    """Paid sessions whose scheduled end (14:00 UTC + 2h) has passed."""

    @pytest.mark.asyncio
    async def test_session_past_its_end_is_overdue(self, db_session):
        booking, _ = await create_payment_approved_booking(db_session)
        now = datetime(2026, 11, 2, 17, 0, tzinfo=timezone.utc)

        overdue = await bookingService.list_overdue_sessions(db_session, ADMIN, now=now)
        assert [b.id for b in overdue] == [booking.id]

    @pytest.mark.asyncio
    async def test_session_still_running_is_not_overdue(self, db_session):
        await create_payment_approved_booking(db_session)
        now = datetime(2026, 11, 2, 15, 30, tzinfo=timezone.utc)

        assert await bookingService.list_overdue_sessions(db_session, ADMIN, now=now) == []

    @pytest.mark.asyncio
    async def test_completed_sessions_are_excluded(self, db_session):
        await create_completed_booking(db_session, session_date=days_ago(3))
        now = datetime(2026, 11, 2, 12, 0, tzinfo=timezone.utc)

        assert await bookingService.list_overdue_sessions(db_session, ADMIN, now=now) == []

    @pytest.mark.asyncio
    async def test_tutor_scope(self, db_session):
        await create_payment_approved_booking(db_session)
        now = datetime(2026, 11, 3, tzinfo=timezone.utc)

        assert len(await bookingService.list_overdue_sessions(db_session, TUTOR, now=now)) == 1
        assert await bookingService.list_overdue_sessions(db_session, OTHER_TUTOR, now=now) == []
        with pytest.raises(NotOwnerError):
            await bookingService.list_overdue_sessions(
                db_session, OTHER_TUTOR, tutor_id=TUTOR_ID, now=now
            )

    @pytest.mark.asyncio
    async def test_student_forbidden(self, db_session):
        with pytest.raises(ForbiddenError):
            await bookingService.list_overdue_sessions(db_session, STUDENT)
