"""
SQLAlchemy models for payments and the status audit log.
Corresponds to alembic revision 0001_create_booking_tables.
"""

import enum
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import DateTime, Enum, ForeignKey, Index, Integer, Numeric, String, Text, text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, TimestampMixin, UUIDPrimaryKeyMixin, utcnow
from .booking import _enum_values


class PaymentKind(str, enum.Enum):
    COLLECTION = "collection"   # student -> platform
    PAYOUT = "payout"           # platform -> tutor


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    REJECTED = "rejected"
    REFUNDED = "refunded"
    ADMIN_PAID = "admin_paid"   # payout only


class DisputeStatus(str, enum.Enum):
    NONE = "none"
    OPEN = "open"
    UNDER_REVIEW = "under_review"
    RESOLVED = "resolved"
    REJECTED = "rejected"


_ACTIVE_COLLECTION_PREDICATE = "kind = 'collection' AND status IN ('pending', 'confirmed')"


class Payment(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """
    One row per money movement attached to a booking.

    ``amount`` and the fee breakdown are written once at creation; only the
    status, evidence references, dispute fields and notes change afterwards.
    """
    __tablename__ = "payments"
    __table_args__ = (
        Index("ix_payments_booking_kind", "booking_id", "kind"),
        # At most one payout per booking
        Index(
            "uq_payments_booking_payout",
            "booking_id",
            unique=True,
            postgresql_where=text("kind = 'payout'"),
            sqlite_where=text("kind = 'payout'"),
        ),
        # At most one active (pending or confirmed) collection per booking
        Index(
            "uq_payments_booking_active_collection",
            "booking_id",
            unique=True,
            postgresql_where=text(_ACTIVE_COLLECTION_PREDICATE),
            sqlite_where=text(_ACTIVE_COLLECTION_PREDICATE),
        ),
    )

    booking_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("booking_requests.id", ondelete="RESTRICT"),
        nullable=False,
    )
    kind: Mapped[PaymentKind] = mapped_column(
        Enum(PaymentKind, name="payment_kind", values_callable=_enum_values),
        nullable=False,
    )

    # Parties copied from the booking
    student_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    tutor_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), nullable=False, index=True
    )

    # Write-once financial figures
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    gross_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    platform_fee_rate: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(5, 4), nullable=True
    )
    platform_fee: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)

    status: Mapped[PaymentStatus] = mapped_column(
        Enum(PaymentStatus, name="payment_status", values_callable=_enum_values),
        nullable=False,
        default=PaymentStatus.PENDING,
        index=True,
    )

    # Evidence
    proof_reference: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    admin_proof_reference: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    rejection_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Dispute sub-state (collection only)
    dispute_status: Mapped[DisputeStatus] = mapped_column(
        Enum(DisputeStatus, name="dispute_status", values_callable=_enum_values),
        nullable=False,
        default=DisputeStatus.NONE,
    )
    dispute_proof_reference: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    dispute_note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    admin_note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Lifecycle timestamps
    proof_submitted_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    verified_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    verified_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), nullable=True
    )
    paid_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    refunded_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    dispute_opened_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    dispute_resolved_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Optimistic concurrency
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return (
            f"<Payment(id={self.id}, booking={self.booking_id}, kind={self.kind}, "
            f"amount={self.amount}, status={self.status})>"
        )


class StatusAuditEntry(UUIDPrimaryKeyMixin, Base):
    """
    Immutable audit record for a single booking, payment or dispute transition.
    No updated_at column -- rows are never modified.
    """
    __tablename__ = "status_audit_log"
    __table_args__ = (
        Index("ix_status_audit_entity", "entity_type", "entity_id"),
    )

    entity_type: Mapped[str] = mapped_column(String(20), nullable=False)
    entity_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    from_status: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    to_status: Mapped[str] = mapped_column(String(30), nullable=False)
    actor_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), nullable=True)
    actor_role: Mapped[str] = mapped_column(String(20), nullable=False)
    note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )

    def __repr__(self) -> str:
        return (
            f"<StatusAuditEntry({self.entity_type}={self.entity_id}, "
            f"{self.from_status} -> {self.to_status})>"
        )
