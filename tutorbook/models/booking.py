"""
SQLAlchemy model for booking requests.
Corresponds to alembic revision 0001_create_booking_tables.
"""

import enum
import uuid
from datetime import date, datetime, time
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    Enum,
    Integer,
    Numeric,
    SmallInteger,
    String,
    Text,
    Time,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, TimestampMixin, UUIDPrimaryKeyMixin


class BookingStatus(str, enum.Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"                  # legacy, acceptance goes straight to awaiting_payment
    DECLINED = "declined"
    AWAITING_PAYMENT = "awaiting_payment"
    PAYMENT_APPROVED = "payment_approved"
    CONFIRMED = "confirmed"                # legacy
    COMPLETED = "completed"
    CANCELLED = "cancelled"


def _enum_values(enum_cls: type[enum.Enum]) -> list[str]:
    return [member.value for member in enum_cls]


class BookingRequest(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "booking_requests"
    __table_args__ = (
        CheckConstraint("student_id <> tutor_id", name="ck_booking_distinct_parties"),
        CheckConstraint("duration_hours > 0", name="ck_booking_positive_duration"),
        CheckConstraint(
            "tutee_rating IS NULL OR (tutee_rating BETWEEN 1 AND 5)",
            name="ck_booking_rating_range",
        ),
    )

    # Parties (references into the external identity service)
    student_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), nullable=False, index=True
    )
    tutor_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), nullable=False, index=True
    )

    # Catalog snapshot captured at creation time (immutable)
    student_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    tutor_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    hourly_rate: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)

    # Session descriptors
    subject: Mapped[str] = mapped_column(String(200), nullable=False)
    session_date: Mapped[date] = mapped_column(Date, nullable=False)
    start_time: Mapped[time] = mapped_column(Time, nullable=False)
    duration_hours: Mapped[Decimal] = mapped_column(Numeric(3, 1), nullable=False)
    student_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    status: Mapped[BookingStatus] = mapped_column(
        Enum(BookingStatus, name="booking_status", values_callable=_enum_values),
        nullable=False,
        default=BookingStatus.PENDING,
        index=True,
    )

    # Completion (set once)
    session_proof: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    tutee_rating: Mapped[Optional[int]] = mapped_column(SmallInteger, nullable=True)
    tutee_comment: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    cancellation_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Transition timestamps
    responded_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    payment_approved_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    rated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Optimistic concurrency
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return (
            f"<BookingRequest(id={self.id}, student={self.student_id}, "
            f"tutor={self.tutor_id}, status={self.status})>"
        )
