"""
Payment API Routes
==================

REST endpoints for collections (student -> platform), their verification
and dispute workflow, and payouts (platform -> tutor). Money movement is
manual: every step is backed by a proof reference, not a gateway call.

  POST  /api/v1/payments/collections         -- Admin reissues a collection
  POST  /api/v1/payments/payouts             -- Admin creates a payout
  GET   /api/v1/payments                     -- Admin listing (kind / status / dispute)
  GET   /api/v1/payments/booking/{id}        -- Payments of one booking
  GET   /api/v1/payments/{id}                -- Get a payment
  GET   /api/v1/payments/{id}/history        -- Status and dispute audit trail
  POST  /api/v1/payments/{id}/proof          -- Payer submits proof
  POST  /api/v1/payments/{id}/verify         -- Admin confirms or rejects
  POST  /api/v1/payments/{id}/dispute        -- Open a dispute
  PATCH /api/v1/payments/{id}/dispute        -- Admin moves the dispute along
  POST  /api/v1/payments/{id}/refund         -- Admin refunds after a resolved dispute
  POST  /api/v1/payments/{id}/mark-paid      -- Admin records a payout disbursement
"""

from __future__ import annotations

import logging
import uuid
from typing import Optional

from fastapi import APIRouter, Query, status

from tutorbook.api.deps import CurrentActor, DBSession
from tutorbook.api.errors import to_http_exception
from tutorbook.api.schemas.common import AuditEntryOut, PaginationMeta
from tutorbook.api.schemas.payment import (
    CreatePayoutRequest,
    MarkPayoutPaidRequest,
    OpenCollectionRequest,
    OpenDisputeRequest,
    PaymentListResponse,
    PaymentOut,
    RefundRequest,
    ResolveDisputeRequest,
    SubmitProofRequest,
    VerifyPaymentRequest,
)
from tutorbook.core.exceptions import BookingDomainError
from tutorbook.models.payment import DisputeStatus, PaymentKind, PaymentStatus
from tutorbook.services import paymentLedger

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments", tags=["Payments"])


# ---------------------------------------------------------------------------
# Creation
# ---------------------------------------------------------------------------

@router.post(
    "/collections",
    response_model=PaymentOut,
    status_code=status.HTTP_201_CREATED,
    summary="Reissue a collection",
    description=(
        "Admin-only. Opens a new pending collection for a booking that is "
        "still awaiting payment and has no active collection."
    ),
)
async def open_collection(
    body: OpenCollectionRequest,
    db: DBSession,
    actor: CurrentActor,
) -> PaymentOut:
    try:
        payment = await paymentLedger.open_collection_for_booking(db, body.booking_id, actor)
    except BookingDomainError as exc:
        raise to_http_exception(exc)
    return PaymentOut.model_validate(payment)


@router.post(
    "/payouts",
    response_model=PaymentOut,
    status_code=status.HTTP_201_CREATED,
    summary="Create a tutor payout",
    description=(
        "Admin-only. Requires a completed booking with a confirmed collection. "
        "Refused while the collection has an open or under-review dispute. "
        "The amount is the collection minus the platform fee."
    ),
)
async def create_payout(
    body: CreatePayoutRequest,
    db: DBSession,
    actor: CurrentActor,
) -> PaymentOut:
    try:
        payout = await paymentLedger.create_payout(db, body.booking_id, actor)
    except BookingDomainError as exc:
        raise to_http_exception(exc)
    return PaymentOut.model_validate(payout)


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------

@router.get(
    "",
    response_model=PaymentListResponse,
    summary="List payments",
    description="Admin-only listing filtered by kind, status and dispute status.",
)
async def list_payments(
    db: DBSession,
    actor: CurrentActor,
    kind: Optional[PaymentKind] = Query(default=None),
    payment_status: Optional[PaymentStatus] = Query(default=None, alias="status"),
    dispute_status: Optional[DisputeStatus] = Query(default=None),
    page: int = Query(default=1, ge=1),
    page_size: Optional[int] = Query(default=None, ge=1),
) -> PaymentListResponse:
    try:
        result = await paymentLedger.list_payments(
            db,
            actor,
            kind=kind,
            status=payment_status,
            dispute_status=dispute_status,
            page=page,
            page_size=page_size,
        )
    except BookingDomainError as exc:
        raise to_http_exception(exc)
    return PaymentListResponse(
        data=[PaymentOut.model_validate(p) for p in result.items],
        meta=PaginationMeta(
            page=result.page,
            page_size=result.page_size,
            total_items=result.total_items,
            total_pages=result.total_pages,
        ),
    )


@router.get(
    "/booking/{booking_id}",
    response_model=list[PaymentOut],
    summary="Get the payments of a booking",
)
async def get_payments_for_booking(
    booking_id: uuid.UUID,
    db: DBSession,
    actor: CurrentActor,
) -> list[PaymentOut]:
    try:
        payments = await paymentLedger.get_payments_for_booking(db, booking_id, actor)
    except BookingDomainError as exc:
        raise to_http_exception(exc)
    return [PaymentOut.model_validate(p) for p in payments]


@router.get(
    "/{payment_id}",
    response_model=PaymentOut,
    summary="Get a payment",
)
async def get_payment(
    payment_id: uuid.UUID,
    db: DBSession,
    actor: CurrentActor,
) -> PaymentOut:
    try:
        payment = await paymentLedger.get_payment(db, payment_id, actor)
    except BookingDomainError as exc:
        raise to_http_exception(exc)
    return PaymentOut.model_validate(payment)


@router.get(
    "/{payment_id}/history",
    response_model=list[AuditEntryOut],
    summary="Get a payment's status and dispute history",
)
async def get_payment_history(
    payment_id: uuid.UUID,
    db: DBSession,
    actor: CurrentActor,
) -> list[AuditEntryOut]:
    try:
        entries = await paymentLedger.get_payment_history(db, payment_id, actor)
    except BookingDomainError as exc:
        raise to_http_exception(exc)
    return [AuditEntryOut.model_validate(e) for e in entries]


# ---------------------------------------------------------------------------
# Proof & verification
# ---------------------------------------------------------------------------

@router.post(
    "/{payment_id}/proof",
    response_model=PaymentOut,
    summary="Submit payment proof",
    description=(
        "The paying student attaches proof to a pending collection. A rejected "
        "collection whose booking still awaits payment is reopened."
    ),
)
async def submit_proof(
    payment_id: uuid.UUID,
    body: SubmitProofRequest,
    db: DBSession,
    actor: CurrentActor,
) -> PaymentOut:
    try:
        payment = await paymentLedger.submit_proof(db, payment_id, actor, body.proof_reference)
    except BookingDomainError as exc:
        raise to_http_exception(exc)
    return PaymentOut.model_validate(payment)


@router.post(
    "/{payment_id}/verify",
    response_model=PaymentOut,
    summary="Verify a collection",
    description=(
        "Admin-only. 'confirmed' requires admin_proof_reference and approves "
        "the booking's payment; 'rejected' requires rejection_reason."
    ),
)
async def verify_payment(
    payment_id: uuid.UUID,
    body: VerifyPaymentRequest,
    db: DBSession,
    actor: CurrentActor,
) -> PaymentOut:
    try:
        payment = await paymentLedger.verify(
            db,
            payment_id,
            actor,
            body.outcome,
            admin_proof_reference=body.admin_proof_reference,
            rejection_reason=body.rejection_reason,
        )
    except BookingDomainError as exc:
        raise to_http_exception(exc)
    return PaymentOut.model_validate(payment)


# ---------------------------------------------------------------------------
# Disputes & refunds
# ---------------------------------------------------------------------------

@router.post(
    "/{payment_id}/dispute",
    response_model=PaymentOut,
    summary="Open a dispute",
)
async def open_dispute(
    payment_id: uuid.UUID,
    body: OpenDisputeRequest,
    db: DBSession,
    actor: CurrentActor,
) -> PaymentOut:
    try:
        payment = await paymentLedger.open_dispute(
            db, payment_id, actor, body.dispute_proof_reference, body.note
        )
    except BookingDomainError as exc:
        raise to_http_exception(exc)
    return PaymentOut.model_validate(payment)


@router.patch(
    "/{payment_id}/dispute",
    response_model=PaymentOut,
    summary="Update a dispute",
    description="Admin-only: open -> under_review -> resolved | rejected.",
)
async def resolve_dispute(
    payment_id: uuid.UUID,
    body: ResolveDisputeRequest,
    db: DBSession,
    actor: CurrentActor,
) -> PaymentOut:
    try:
        payment = await paymentLedger.resolve_dispute(
            db, payment_id, actor, body.dispute_status, body.admin_note
        )
    except BookingDomainError as exc:
        raise to_http_exception(exc)
    return PaymentOut.model_validate(payment)


@router.post(
    "/{payment_id}/refund",
    response_model=PaymentOut,
    summary="Refund a collection",
    description=(
        "Admin-only. Requires a resolved dispute, no payout and a booking that "
        "is not completed. The booking is cancelled in the same transaction."
    ),
)
async def refund_collection(
    payment_id: uuid.UUID,
    db: DBSession,
    actor: CurrentActor,
    body: Optional[RefundRequest] = None,
) -> PaymentOut:
    try:
        payment = await paymentLedger.refund_collection(
            db, payment_id, actor, body.admin_note if body else None
        )
    except BookingDomainError as exc:
        raise to_http_exception(exc)
    return PaymentOut.model_validate(payment)


# ---------------------------------------------------------------------------
# Payout disbursement
# ---------------------------------------------------------------------------

@router.post(
    "/{payment_id}/mark-paid",
    response_model=PaymentOut,
    summary="Mark a payout as paid",
    description="Admin-only. A second call fails with 'already_paid'.",
)
async def mark_payout_paid(
    payment_id: uuid.UUID,
    db: DBSession,
    actor: CurrentActor,
    body: Optional[MarkPayoutPaidRequest] = None,
) -> PaymentOut:
    try:
        payment = await paymentLedger.mark_payout_paid(
            db, payment_id, actor, body.admin_proof_reference if body else None
        )
    except BookingDomainError as exc:
        raise to_http_exception(exc)
    return PaymentOut.model_validate(payment)
