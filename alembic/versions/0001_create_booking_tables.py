"""create booking, payment and audit tables

Revision ID: 0001_create_booking_tables
Revises:
Create Date: 2026-10-19 00:00:00
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision: str = "0001_create_booking_tables"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

booking_status = postgresql.ENUM(
    "pending",
    "accepted",
    "declined",
    "awaiting_payment",
    "payment_approved",
    "confirmed",
    "completed",
    "cancelled",
    name="booking_status",
    create_type=False,
)
payment_kind = postgresql.ENUM("collection", "payout", name="payment_kind", create_type=False)
payment_status = postgresql.ENUM(
    "pending",
    "confirmed",
    "rejected",
    "refunded",
    "admin_paid",
    name="payment_status",
    create_type=False,
)
dispute_status = postgresql.ENUM(
    "none",
    "open",
    "under_review",
    "resolved",
    "rejected",
    name="dispute_status",
    create_type=False,
)

_ACTIVE_COLLECTION = "kind = 'collection' AND status IN ('pending', 'confirmed')"


def upgrade() -> None:
    bind = op.get_bind()
    for enum_type in (booking_status, payment_kind, payment_status, dispute_status):
        enum_type.create(bind, checkfirst=True)

    op.create_table(
        "booking_requests",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("student_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("tutor_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("student_name", sa.String(200), nullable=True),
        sa.Column("tutor_name", sa.String(200), nullable=True),
        sa.Column("hourly_rate", sa.Numeric(10, 2), nullable=False),
        sa.Column("subject", sa.String(200), nullable=False),
        sa.Column("session_date", sa.Date(), nullable=False),
        sa.Column("start_time", sa.Time(), nullable=False),
        sa.Column("duration_hours", sa.Numeric(3, 1), nullable=False),
        sa.Column("student_notes", sa.Text(), nullable=True),
        sa.Column("status", booking_status, nullable=False),
        sa.Column("session_proof", sa.Text(), nullable=True),
        sa.Column("tutee_rating", sa.SmallInteger(), nullable=True),
        sa.Column("tutee_comment", sa.Text(), nullable=True),
        sa.Column("cancellation_reason", sa.Text(), nullable=True),
        sa.Column("responded_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("payment_approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("student_id <> tutor_id", name="ck_booking_distinct_parties"),
        sa.CheckConstraint("duration_hours > 0", name="ck_booking_positive_duration"),
        sa.CheckConstraint(
            "tutee_rating IS NULL OR (tutee_rating BETWEEN 1 AND 5)",
            name="ck_booking_rating_range",
        ),
    )
    op.create_index("ix_booking_requests_student_id", "booking_requests", ["student_id"])
    op.create_index("ix_booking_requests_tutor_id", "booking_requests", ["tutor_id"])
    op.create_index("ix_booking_requests_status", "booking_requests", ["status"])

    op.create_table(
        "payments",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "booking_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("booking_requests.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("kind", payment_kind, nullable=False),
        sa.Column("student_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("tutor_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column("gross_amount", sa.Numeric(10, 2), nullable=True),
        sa.Column("platform_fee_rate", sa.Numeric(5, 4), nullable=True),
        sa.Column("platform_fee", sa.Numeric(10, 2), nullable=True),
        sa.Column("status", payment_status, nullable=False),
        sa.Column("proof_reference", sa.Text(), nullable=True),
        sa.Column("admin_proof_reference", sa.Text(), nullable=True),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("dispute_status", dispute_status, nullable=False),
        sa.Column("dispute_proof_reference", sa.Text(), nullable=True),
        sa.Column("dispute_note", sa.Text(), nullable=True),
        sa.Column("admin_note", sa.Text(), nullable=True),
        sa.Column("proof_submitted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("verified_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("verified_by", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("refunded_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("dispute_opened_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("dispute_resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_payments_tutor_id", "payments", ["tutor_id"])
    op.create_index("ix_payments_status", "payments", ["status"])
    op.create_index("ix_payments_booking_kind", "payments", ["booking_id", "kind"])
    op.create_index(
        "uq_payments_booking_payout",
        "payments",
        ["booking_id"],
        unique=True,
        postgresql_where=sa.text("kind = 'payout'"),
    )
    op.create_index(
        "uq_payments_booking_active_collection",
        "payments",
        ["booking_id"],
        unique=True,
        postgresql_where=sa.text(_ACTIVE_COLLECTION),
    )

    op.create_table(
        "status_audit_log",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("entity_type", sa.String(20), nullable=False),
        sa.Column("entity_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("from_status", sa.String(30), nullable=True),
        sa.Column("to_status", sa.String(30), nullable=False),
        sa.Column("actor_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("actor_role", sa.String(20), nullable=False),
        sa.Column("note", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index(
        "ix_status_audit_entity", "status_audit_log", ["entity_type", "entity_id"]
    )


def downgrade() -> None:
    op.drop_index("ix_status_audit_entity", table_name="status_audit_log")
    op.drop_table("status_audit_log")
    op.drop_index("uq_payments_booking_active_collection", table_name="payments")
    op.drop_index("uq_payments_booking_payout", table_name="payments")
    op.drop_index("ix_payments_booking_kind", table_name="payments")
    op.drop_index("ix_payments_status", table_name="payments")
    op.drop_index("ix_payments_tutor_id", table_name="payments")
    op.drop_table("payments")
    op.drop_index("ix_booking_requests_status", table_name="booking_requests")
    op.drop_index("ix_booking_requests_tutor_id", table_name="booking_requests")
    op.drop_index("ix_booking_requests_student_id", table_name="booking_requests")
    op.drop_table("booking_requests")

    bind = op.get_bind()
    for enum_type in (dispute_status, payment_status, payment_kind, booking_status):
        enum_type.drop(bind, checkfirst=True)
