"""Pydantic v2 schemas for dashboard and earnings statistics."""

from __future__ import annotations

import uuid
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict


class SubjectDemandOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    subject: str
    completed_sessions: int


class DashboardStatsOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

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
    top_subjects: list[SubjectDemandOut]


class TutorEarningsOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    tutor_id: uuid.UUID
    total_earnings: Decimal
    pending_earnings: Decimal
    completed_sessions: int
    average_rating: Optional[float] = None
    total_hours: Decimal
