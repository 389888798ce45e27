"""
Pydantic v2 schemas for the Booking API.

Duration, rating and proof fields are validated by the service layer,
which reports violations with its own error codes.
"""

from __future__ import annotations

import uuid
from datetime import date, datetime, time
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from tutorbook.api.schemas.common import PaginationMeta
from tutorbook.models.booking import BookingStatus
from tutorbook.services.bookingService import BookingDecision


# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------

class CreateBookingRequest(BaseModel):
    """Request body for a student asking a tutor for a session."""

    student_id: Optional[uuid.UUID] = Field(
        default=None,
        description="Student the booking is for. Defaults to the caller.",
    )
    tutor_id: uuid.UUID = Field(description="Tutor being booked")
    subject: str = Field(min_length=1, max_length=200)
    session_date: date
    start_time: time
    duration_hours: Decimal = Field(description="Session length in hours, one decimal place")
    notes: Optional[str] = Field(default=None, max_length=2000)


class RespondToBookingRequest(BaseModel):
    decision: BookingDecision


class SessionProofRequest(BaseModel):
    proof_reference: str = Field(
        default="",
        description="Proof store reference for the session evidence",
    )


class RateSessionRequest(BaseModel):
    rating: int = Field(description="Integer from 1 to 5")
    comment: Optional[str] = Field(default=None, max_length=2000)


class CancelBookingRequest(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=1000)


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------

class BookingOut(BaseModel):
    """Full booking representation."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    student_id: uuid.UUID
    tutor_id: uuid.UUID
    student_name: Optional[str] = None
    tutor_name: Optional[str] = None
    hourly_rate: Decimal
    subject: str
    session_date: date
    start_time: time
    duration_hours: Decimal
    student_notes: Optional[str] = None
    status: BookingStatus
    session_proof: Optional[str] = None
    tutee_rating: Optional[int] = None
    tutee_comment: Optional[str] = None
    cancellation_reason: Optional[str] = None
    responded_at: Optional[datetime] = None
    payment_approved_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    rated_at: Optional[datetime] = None
    version: int
    created_at: datetime
    updated_at: datetime


class BookingListResponse(BaseModel):
    """Paginated list of bookings."""

    data: list[BookingOut]
    meta: PaginationMeta
