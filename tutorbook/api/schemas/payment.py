"""
Pydantic v2 schemas for the Payment API.

Covers:
- Proof submission and admin verification
- Dispute opening and resolution
- Payout creation and disbursement
- Payment output and paginated listings
"""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from tutorbook.api.schemas.common import PaginationMeta
from tutorbook.models.payment import DisputeStatus, PaymentKind, PaymentStatus
from tutorbook.services.paymentLedger import VerificationOutcome


# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------

class OpenCollectionRequest(BaseModel):
    booking_id: uuid.UUID


class SubmitProofRequest(BaseModel):
    proof_reference: str = Field(default="", description="Proof store reference")


class VerifyPaymentRequest(BaseModel):
    """Admin decision on a pending collection."""

    outcome: VerificationOutcome
    admin_proof_reference: Optional[str] = Field(
        default=None,
        description="Evidence of receipt; required when confirming",
    )
    rejection_reason: Optional[str] = Field(
        default=None,
        description="Why the proof was rejected; required when rejecting",
    )


class OpenDisputeRequest(BaseModel):
    dispute_proof_reference: str = Field(default="")
    note: Optional[str] = Field(default=None, max_length=2000)


class ResolveDisputeRequest(BaseModel):
    dispute_status: DisputeStatus
    admin_note: Optional[str] = Field(default=None, max_length=2000)


class RefundRequest(BaseModel):
    admin_note: Optional[str] = Field(default=None, max_length=2000)


class CreatePayoutRequest(BaseModel):
    booking_id: uuid.UUID


class MarkPayoutPaidRequest(BaseModel):
    admin_proof_reference: Optional[str] = None


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------

class PaymentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    booking_id: uuid.UUID
    kind: PaymentKind
    student_id: uuid.UUID
    tutor_id: uuid.UUID
    amount: Decimal
    currency: str
    gross_amount: Optional[Decimal] = None
    platform_fee_rate: Optional[Decimal] = None
    platform_fee: Optional[Decimal] = None
    status: PaymentStatus
    proof_reference: Optional[str] = None
    admin_proof_reference: Optional[str] = None
    rejection_reason: Optional[str] = None
    dispute_status: DisputeStatus
    dispute_proof_reference: Optional[str] = None
    dispute_note: Optional[str] = None
    admin_note: Optional[str] = None
    proof_submitted_at: Optional[datetime] = None
    verified_at: Optional[datetime] = None
    verified_by: Optional[uuid.UUID] = None
    paid_at: Optional[datetime] = None
    refunded_at: Optional[datetime] = None
    dispute_opened_at: Optional[datetime] = None
    dispute_resolved_at: Optional[datetime] = None
    version: int
    created_at: datetime
    updated_at: datetime


class PaymentListResponse(BaseModel):
    """Paginated list of payments."""

    data: list[PaymentOut]
    meta: PaginationMeta
