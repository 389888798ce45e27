"""
Booking API Routes
==================

REST endpoints for the booking request lifecycle.

  POST /api/v1/bookings                       -- Request a session
  GET  /api/v1/bookings                       -- List bookings (by party / status)
  GET  /api/v1/bookings/overdue               -- Paid sessions past their end time
  GET  /api/v1/bookings/{id}                  -- Get a booking
  GET  /api/v1/bookings/{id}/history          -- Status audit trail
  POST /api/v1/bookings/{id}/respond          -- Tutor accepts or declines
  POST /api/v1/bookings/{id}/session-proof    -- Tutor completes the session
  POST /api/v1/bookings/{id}/rating           -- Student rates the session
  POST /api/v1/bookings/{id}/cancel           -- Student or admin cancels
"""

from __future__ import annotations

import logging
import uuid
from typing import Optional

from fastapi import APIRouter, Query, status

from tutorbook.api.deps import CurrentActor, DBSession
from tutorbook.api.errors import to_http_exception
from tutorbook.api.schemas.booking import (
    BookingListResponse,
    BookingOut,
    CancelBookingRequest,
    CreateBookingRequest,
    RateSessionRequest,
    RespondToBookingRequest,
    SessionProofRequest,
)
from tutorbook.api.schemas.common import AuditEntryOut, PaginationMeta
from tutorbook.core.exceptions import BookingDomainError
from tutorbook.models.booking import BookingStatus
from tutorbook.services import bookingService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/bookings", tags=["Bookings"])


# ---------------------------------------------------------------------------
# POST /bookings
# ---------------------------------------------------------------------------

@router.post(
    "",
    response_model=BookingOut,
    status_code=status.HTTP_201_CREATED,
    summary="Request a tutoring session",
    description=(
        "Creates a booking in 'pending' status. The tutor's hourly rate and "
        "both display names are copied from the catalog at this moment."
    ),
)
async def create_booking(
    body: CreateBookingRequest,
    db: DBSession,
    actor: CurrentActor,
) -> BookingOut:
    try:
        booking = await bookingService.create_booking(
            db,
            actor,
            student_id=body.student_id or actor.id,
            tutor_id=body.tutor_id,
            subject=body.subject,
            session_date=body.session_date,
            start_time=body.start_time,
            duration_hours=body.duration_hours,
            notes=body.notes,
        )
    except BookingDomainError as exc:
        raise to_http_exception(exc)
    return BookingOut.model_validate(booking)


# ---------------------------------------------------------------------------
# GET /bookings
# ---------------------------------------------------------------------------

@router.get(
    "",
    response_model=BookingListResponse,
    summary="List bookings",
    description=(
        "Filter by student, tutor and status. Students and tutors only see "
        "their own bookings."
    ),
)
async def list_bookings(
    db: DBSession,
    actor: CurrentActor,
    student_id: Optional[uuid.UUID] = Query(default=None),
    tutor_id: Optional[uuid.UUID] = Query(default=None),
    booking_status: Optional[BookingStatus] = Query(default=None, alias="status"),
    page: int = Query(default=1, ge=1),
    page_size: Optional[int] = Query(default=None, ge=1),
) -> BookingListResponse:
    try:
        result = await bookingService.list_bookings(
            db,
            actor,
            student_id=student_id,
            tutor_id=tutor_id,
            status=booking_status,
            page=page,
            page_size=page_size,
        )
    except BookingDomainError as exc:
        raise to_http_exception(exc)
    return BookingListResponse(
        data=[BookingOut.model_validate(b) for b in result.items],
        meta=PaginationMeta(
            page=result.page,
            page_size=result.page_size,
            total_items=result.total_items,
            total_pages=result.total_pages,
        ),
    )


# ---------------------------------------------------------------------------
# GET /bookings/overdue
# ---------------------------------------------------------------------------

@router.get(
    "/overdue",
    response_model=list[BookingOut],
    summary="List overdue sessions",
    description=(
        "Bookings whose payment was approved and whose scheduled end time "
        "has passed, but which have not been completed yet."
    ),
)
async def list_overdue_sessions(
    db: DBSession,
    actor: CurrentActor,
    tutor_id: Optional[uuid.UUID] = Query(default=None),
) -> list[BookingOut]:
    try:
        bookings = await bookingService.list_overdue_sessions(db, actor, tutor_id=tutor_id)
    except BookingDomainError as exc:
        raise to_http_exception(exc)
    return [BookingOut.model_validate(b) for b in bookings]


# ---------------------------------------------------------------------------
# GET /bookings/{booking_id}
# ---------------------------------------------------------------------------

@router.get(
    "/{booking_id}",
    response_model=BookingOut,
    summary="Get a booking",
)
async def get_booking(
    booking_id: uuid.UUID,
    db: DBSession,
    actor: CurrentActor,
) -> BookingOut:
    try:
        booking = await bookingService.get_booking(db, booking_id, actor)
    except BookingDomainError as exc:
        raise to_http_exception(exc)
    return BookingOut.model_validate(booking)


@router.get(
    "/{booking_id}/history",
    response_model=list[AuditEntryOut],
    summary="Get a booking's status history",
)
async def get_booking_history(
    booking_id: uuid.UUID,
    db: DBSession,
    actor: CurrentActor,
) -> list[AuditEntryOut]:
    try:
        entries = await bookingService.get_booking_history(db, booking_id, actor)
    except BookingDomainError as exc:
        raise to_http_exception(exc)
    return [AuditEntryOut.model_validate(e) for e in entries]


# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------

@router.post(
    "/{booking_id}/respond",
    response_model=BookingOut,
    summary="Accept or decline a booking",
    description=(
        "Tutor-only. Accepting moves the booking to 'awaiting_payment' and "
        "opens the student's collection payment in the same transaction."
    ),
)
async def respond_to_booking(
    booking_id: uuid.UUID,
    body: RespondToBookingRequest,
    db: DBSession,
    actor: CurrentActor,
) -> BookingOut:
    try:
        booking = await bookingService.respond_to_booking(db, booking_id, actor, body.decision)
    except BookingDomainError as exc:
        raise to_http_exception(exc)
    return BookingOut.model_validate(booking)


@router.post(
    "/{booking_id}/session-proof",
    response_model=BookingOut,
    summary="Complete a session with proof",
    description=(
        "Tutor (or admin) attaches session evidence. Requires the booking to "
        "be 'payment_approved' with a confirmed collection."
    ),
)
async def submit_session_proof(
    booking_id: uuid.UUID,
    body: SessionProofRequest,
    db: DBSession,
    actor: CurrentActor,
) -> BookingOut:
    try:
        booking = await bookingService.submit_session_proof(
            db, booking_id, actor, body.proof_reference
        )
    except BookingDomainError as exc:
        raise to_http_exception(exc)
    return BookingOut.model_validate(booking)


@router.post(
    "/{booking_id}/rating",
    response_model=BookingOut,
    summary="Rate a completed session",
)
async def rate_session(
    booking_id: uuid.UUID,
    body: RateSessionRequest,
    db: DBSession,
    actor: CurrentActor,
) -> BookingOut:
    try:
        booking = await bookingService.rate_session(
            db, booking_id, actor, body.rating, body.comment
        )
    except BookingDomainError as exc:
        raise to_http_exception(exc)
    return BookingOut.model_validate(booking)


@router.post(
    "/{booking_id}/cancel",
    response_model=BookingOut,
    summary="Cancel a booking",
    description="Allowed while the booking is 'pending' or 'awaiting_payment'.",
)
async def cancel_booking(
    booking_id: uuid.UUID,
    db: DBSession,
    actor: CurrentActor,
    body: Optional[CancelBookingRequest] = None,
) -> BookingOut:
    try:
        booking = await bookingService.cancel_booking(
            db, booking_id, actor, body.reason if body else None
        )
    except BookingDomainError as exc:
        raise to_http_exception(exc)
    return BookingOut.model_validate(booking)
