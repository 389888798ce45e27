"""
Stats Service
=============

Read-only aggregates for the admin dashboard and the tutor earnings page.
Nothing here mutates state; every figure is recomputed per request.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from tutorbook.core.config import settings
from tutorbook.core.exceptions import ForbiddenError, NotOwnerError
from tutorbook.models.base import utcnow
from tutorbook.models.booking import BookingRequest, BookingStatus
from tutorbook.models.payment import DisputeStatus, Payment, PaymentKind, PaymentStatus
from tutorbook.services.bookingStateManager import Actor, ActorRole
from tutorbook.services.settlementCalculator import round_money

logger = logging.getLogger(__name__)

TOP_SUBJECTS_LIMIT = 5


@dataclass(frozen=True)
class SubjectDemand:
    subject: str
    completed_sessions: int


@dataclass(frozen=True)
class DashboardStats:
    total_bookings: int
    bookings_by_status: dict[str, int]
    payments_by_status: dict[str, dict[str, int]]
    total_revenue: Decimal
    recent_revenue: Decimal
    recent_window_days: int
    platform_fees: Decimal
    payouts_paid: Decimal
    payouts_pending: Decimal
    open_disputes: int
    top_subjects: list[SubjectDemand] = field(default_factory=list)


@dataclass(frozen=True)
class TutorEarnings:
    tutor_id: uuid.UUID
    total_earnings: Decimal
    pending_earnings: Decimal
    completed_sessions: int
    average_rating: Optional[float]
    total_hours: Decimal


def _money(value) -> Decimal:
    return round_money(Decimal(str(value or 0)))


async def _sum_amount(db: AsyncSession, column, *filters) -> Decimal:
    stmt = select(func.coalesce(func.sum(column), 0)).where(*filters)
    return _money((await db.execute(stmt)).scalar_one())


async def get_dashboard_stats(
    db: AsyncSession,
    actor: Actor,
    *,
    now: Optional[datetime] = None,
) -> DashboardStats:
    """Counts by status, revenue totals and in-demand subjects."""
    if not actor.is_admin:
        raise ForbiddenError("Only an admin can view dashboard statistics.")
    now = now or utcnow()

    booking_rows = await db.execute(
        select(BookingRequest.status, func.count()).group_by(BookingRequest.status)
    )
    bookings_by_status = {s.value: 0 for s in BookingStatus}
    for status, count in booking_rows.all():
        bookings_by_status[status.value] = count

    payment_rows = await db.execute(
        select(Payment.kind, Payment.status, func.count()).group_by(Payment.kind, Payment.status)
    )
    payments_by_status: dict[str, dict[str, int]] = {k.value: {} for k in PaymentKind}
    for kind, status, count in payment_rows.all():
        payments_by_status[kind.value][status.value] = count

    confirmed_collection = (
        Payment.kind == PaymentKind.COLLECTION,
        Payment.status == PaymentStatus.CONFIRMED,
    )
    window_start = now - timedelta(days=settings.recent_revenue_window_days)
    total_revenue = await _sum_amount(db, Payment.amount, *confirmed_collection)
    recent_revenue = await _sum_amount(
        db, Payment.amount, *confirmed_collection, Payment.verified_at >= window_start
    )
    platform_fees = await _sum_amount(
        db, Payment.platform_fee, Payment.kind == PaymentKind.PAYOUT
    )
    payouts_paid = await _sum_amount(
        db,
        Payment.amount,
        Payment.kind == PaymentKind.PAYOUT,
        Payment.status == PaymentStatus.ADMIN_PAID,
    )
    payouts_pending = await _sum_amount(
        db,
        Payment.amount,
        Payment.kind == PaymentKind.PAYOUT,
        Payment.status == PaymentStatus.PENDING,
    )

    open_disputes = (
        await db.execute(
            select(func.count())
            .select_from(Payment)
            .where(Payment.dispute_status.in_([DisputeStatus.OPEN, DisputeStatus.UNDER_REVIEW]))
        )
    ).scalar_one()

    # Demand is measured in delivered sessions
    subject_count = func.count().label("completed_sessions")
    subject_rows = await db.execute(
        select(BookingRequest.subject, subject_count)
        .where(BookingRequest.status == BookingStatus.COMPLETED)
        .group_by(BookingRequest.subject)
        .order_by(subject_count.desc(), BookingRequest.subject.asc())
        .limit(TOP_SUBJECTS_LIMIT)
    )
    top_subjects = [SubjectDemand(subject=s, completed_sessions=c) for s, c in subject_rows.all()]

    logger.debug("Dashboard stats computed: revenue=%s recent=%s", total_revenue, recent_revenue)
    return DashboardStats(
        total_bookings=sum(bookings_by_status.values()),
        bookings_by_status=bookings_by_status,
        payments_by_status=payments_by_status,
        total_revenue=total_revenue,
        recent_revenue=recent_revenue,
        recent_window_days=settings.recent_revenue_window_days,
        platform_fees=platform_fees,
        payouts_paid=payouts_paid,
        payouts_pending=payouts_pending,
        open_disputes=open_disputes,
        top_subjects=top_subjects,
    )


async def get_tutor_earnings(
    db: AsyncSession,
    tutor_id: uuid.UUID,
    actor: Actor,
) -> TutorEarnings:
    """Paid and pending payouts plus session totals for one tutor."""
    if actor.role == ActorRole.STUDENT:
        raise ForbiddenError("Students cannot view tutor earnings.")
    if actor.role == ActorRole.TUTOR and actor.id != tutor_id:
        raise NotOwnerError("Tutors can only view their own earnings.")

    tutor_payouts = (Payment.kind == PaymentKind.PAYOUT, Payment.tutor_id == tutor_id)
    total_earnings = await _sum_amount(
        db, Payment.amount, *tutor_payouts, Payment.status == PaymentStatus.ADMIN_PAID
    )
    pending_earnings = await _sum_amount(
        db, Payment.amount, *tutor_payouts, Payment.status == PaymentStatus.PENDING
    )

    completed = (
        BookingRequest.tutor_id == tutor_id,
        BookingRequest.status == BookingStatus.COMPLETED,
    )
    row = (
        await db.execute(
            select(
                func.count(),
                func.coalesce(func.sum(BookingRequest.duration_hours), 0),
                func.avg(BookingRequest.tutee_rating),
            ).where(*completed)
        )
    ).one()
    completed_sessions, total_hours, average_rating = row

    return TutorEarnings(
        tutor_id=tutor_id,
        total_earnings=total_earnings,
        pending_earnings=pending_earnings,
        completed_sessions=completed_sessions,
        average_rating=round(float(average_rating), 2) if average_rating is not None else None,
        total_hours=Decimal(str(total_hours or 0)).quantize(Decimal("0.1")),
    )
