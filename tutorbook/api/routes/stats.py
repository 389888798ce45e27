"""
Statistics API Routes
=====================

  GET /api/v1/stats/dashboard                   -- Admin dashboard aggregates
  GET /api/v1/stats/tutors/{tutor_id}/earnings  -- Tutor earnings summary
"""

from __future__ import annotations

import uuid

from fastapi import APIRouter

from tutorbook.api.deps import CurrentActor, DBSession
from tutorbook.api.errors import to_http_exception
from tutorbook.api.schemas.stats import DashboardStatsOut, TutorEarningsOut
from tutorbook.core.exceptions import BookingDomainError
from tutorbook.services import statsService

router = APIRouter(prefix="/stats", tags=["Statistics"])


@router.get(
    "/dashboard",
    response_model=DashboardStatsOut,
    summary="Dashboard statistics",
    description=(
        "Booking and payment counts by status, confirmed revenue (overall and "
        "for the recent window), platform fees, payout totals and the most "
        "requested subjects."
    ),
)
async def get_dashboard(db: DBSession, actor: CurrentActor) -> DashboardStatsOut:
    try:
        stats = await statsService.get_dashboard_stats(db, actor)
    except BookingDomainError as exc:
        raise to_http_exception(exc)
    return DashboardStatsOut.model_validate(stats)


@router.get(
    "/tutors/{tutor_id}/earnings",
    response_model=TutorEarningsOut,
    summary="Tutor earnings",
)
async def get_tutor_earnings(
    tutor_id: uuid.UUID,
    db: DBSession,
    actor: CurrentActor,
) -> TutorEarningsOut:
    try:
        earnings = await statsService.get_tutor_earnings(db, tutor_id, actor)
    except BookingDomainError as exc:
        raise to_http_exception(exc)
    return TutorEarningsOut.model_validate(earnings)
