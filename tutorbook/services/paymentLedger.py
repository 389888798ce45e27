"""
Payment Ledger
==============

Business logic for the money side of a booking: the student-to-platform
collection, its verification and dispute workflow, and the
platform-to-tutor payout.

Rules enforced here:

  - at most one active collection and at most one payout per booking
  - amounts (and the payout fee breakdown) are written once at creation
  - confirming a collection moves its booking to ``payment_approved`` in
    the same transaction
  - a payout exists only for a completed booking with a confirmed
    collection, and its amount always matches the fee formula
  - no payout while the collection's dispute is open or under review
  - refunding a collection cancels its booking; completed bookings are
    not refundable
  - rejection reasons survive later transitions

Key functions:
  - open_collection / open_collection_for_booking
  - submit_proof, verify
  - open_dispute, resolve_dispute, refund_collection
  - create_payout, mark_payout_paid
  - get_payment, get_payments_for_booking, list_payments, get_payment_history
"""

from __future__ import annotations

import enum
import logging
import math
import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Sequence

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from tutorbook.core.config import settings
from tutorbook.core.exceptions import (
    AlreadyPaidError,
    DuplicateCollectionError,
    DuplicatePayoutError,
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
    NotOwnerError,
    PreconditionFailedError,
    ReasonRequiredError,
    SettlementInvariantError,
)
from tutorbook.events.bookingEvents import (
    BookingCancelled,
    CollectionRefunded,
    DisputeOpened,
    DisputeStatusChanged,
    PaymentConfirmed,
    PaymentProofSubmitted,
    PaymentRejected,
    PayoutCreated,
    PayoutPaid,
    record,
)
from tutorbook.integrations.proofStore import proofStoreClient
from tutorbook.models.base import utcnow
from tutorbook.models.booking import BookingRequest, BookingStatus
from tutorbook.models.payment import DisputeStatus, Payment, PaymentKind, PaymentStatus
from tutorbook.services import auditTrail, settlementCalculator
from tutorbook.services.bookingStateManager import (
    Actor,
    ActorRole,
    raise_for_rejection,
    validate_transition,
)
from tutorbook.services.paymentStateManager import (
    ACTIVE_COLLECTION_STATUSES,
    DISPUTABLE_STATUSES,
    validate_dispute_transition,
    validate_payment_transition,
)

logger = logging.getLogger(__name__)

VOID_ON_CANCEL_REASON = "Booking cancelled before payment was verified"
REFUND_CANCELLATION_REASON = "Collection refunded after a resolved dispute"

# Disputes that still block a payout
UNSETTLED_DISPUTE_STATUSES = frozenset({DisputeStatus.OPEN, DisputeStatus.UNDER_REVIEW})


# ---------------------------------------------------------------------------
# Pagination helper (same pattern as the booking listings)
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class PaginatedResult:
    """Generic container for a page of results plus metadata."""

    items: Sequence
    total_items: int
    page: int
    page_size: int

    @property
    def total_pages(self) -> int:
        if self.total_items == 0:
            return 0
        return math.ceil(self.total_items / self.page_size)


def clamp_page_size(page_size: Optional[int]) -> int:
    if not page_size or page_size < 1:
        return settings.default_page_size
    return min(page_size, settings.max_page_size)


class VerificationOutcome(str, enum.Enum):
    CONFIRMED = "confirmed"
    REJECTED = "rejected"


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _require_admin(actor: Actor, action: str) -> None:
    if not actor.is_admin:
        raise ForbiddenError(f"Only an admin can {action}.")


async def _load_payment(db: AsyncSession, payment_id: uuid.UUID) -> Payment:
    payment = await db.get(Payment, payment_id)
    if payment is None:
        raise NotFoundError("Payment", payment_id)
    return payment


async def _load_owning_booking(db: AsyncSession, payment: Payment) -> BookingRequest:
    booking = await db.get(BookingRequest, payment.booking_id)
    if booking is None:
        logger.critical(
            "Payment %s references missing booking %s", payment.id, payment.booking_id
        )
        raise SettlementInvariantError(
            f"Payment '{payment.id}' is orphaned from booking '{payment.booking_id}'."
        )
    return booking


def _require_collection(payment: Payment) -> None:
    if payment.kind != PaymentKind.COLLECTION:
        raise InvalidStateError(
            f"Payment '{payment.id}' is a {payment.kind.value}; this action applies to collections."
        )


def _require_payer(payment: Payment, actor: Actor) -> None:
    """Collections are paid by the booking's student, payouts by an admin."""
    if payment.kind == PaymentKind.PAYOUT:
        _require_admin(actor, "submit payout evidence")
        return
    if actor.is_admin:
        return
    if actor.role != ActorRole.STUDENT:
        raise ForbiddenError("Only the paying student can submit collection proof.")
    if actor.id != payment.student_id:
        raise NotOwnerError(f"Payment '{payment.id}' belongs to another student.")


def _can_view(payment: Payment, actor: Actor) -> bool:
    if actor.is_admin:
        return True
    if actor.role == ActorRole.STUDENT:
        return payment.kind == PaymentKind.COLLECTION and actor.id == payment.student_id
    return actor.id == payment.tutor_id


def _apply_status(
    db: AsyncSession,
    payment: Payment,
    new_status: PaymentStatus,
    actor: Actor,
    note: Optional[str] = None,
    *,
    system: bool = False,
) -> None:
    # System-driven changes (voiding on cancel) skip the role guard
    result = validate_payment_transition(
        payment.kind, payment.status, new_status, None if system else actor.role
    )
    raise_for_rejection(result)
    old_status = payment.status
    payment.status = new_status
    auditTrail.record_transition(
        db,
        entity_type=auditTrail.ENTITY_PAYMENT,
        entity_id=payment.id,
        from_status=old_status,
        to_status=new_status,
        actor=actor,
        note=note,
    )
    logger.info(
        "Payment %s (%s) transitioned: %s -> %s (actor=%s)",
        payment.id,
        payment.kind.value,
        old_status.value,
        new_status.value,
        actor.id,
    )


async def get_active_collection(
    db: AsyncSession,
    booking_id: uuid.UUID,
) -> Optional[Payment]:
    """Return the booking's pending or confirmed collection, if any."""
    stmt = select(Payment).where(
        Payment.booking_id == booking_id,
        Payment.kind == PaymentKind.COLLECTION,
        Payment.status.in_(list(ACTIVE_COLLECTION_STATUSES)),
    )
    result = await db.execute(stmt)
    return result.scalars().first()


async def get_payout(db: AsyncSession, booking_id: uuid.UUID) -> Optional[Payment]:
    stmt = select(Payment).where(
        Payment.booking_id == booking_id,
        Payment.kind == PaymentKind.PAYOUT,
    )
    result = await db.execute(stmt)
    return result.scalars().first()


# ---------------------------------------------------------------------------
# Collections
# ---------------------------------------------------------------------------

async def open_collection(
    db: AsyncSession,
    booking: BookingRequest,
    amount: Decimal,
    actor: Optional[Actor] = None,
) -> Payment:
    """Stage a ``pending`` collection for ``booking``.

    The row is added to the session but not flushed, so the caller can
    write it in the same unit as the booking's own status change.

    Raises:
        DuplicateCollectionError: If the booking already has an active
            (pending or confirmed) collection.
    """
    existing = await get_active_collection(db, booking.id)
    if existing is not None:
        raise DuplicateCollectionError(
            f"Booking '{booking.id}' already has an active collection '{existing.id}' "
            f"({existing.status.value})."
        )

    settlementCalculator.verify_collection_amount(
        booking.hourly_rate, booking.duration_hours, amount
    )
    payment = Payment(
        id=uuid.uuid4(),
        booking_id=booking.id,
        kind=PaymentKind.COLLECTION,
        student_id=booking.student_id,
        tutor_id=booking.tutor_id,
        amount=amount,
        currency=settings.currency,
        status=PaymentStatus.PENDING,
        dispute_status=DisputeStatus.NONE,
    )
    db.add(payment)
    auditTrail.record_transition(
        db,
        entity_type=auditTrail.ENTITY_PAYMENT,
        entity_id=payment.id,
        from_status=None,
        to_status=PaymentStatus.PENDING,
        actor=actor,
        note=f"collection opened for {amount} {settings.currency}",
    )
    logger.info(
        "Collection %s opened for booking %s: %s %s",
        payment.id,
        booking.id,
        amount,
        settings.currency,
    )
    return payment


async def open_collection_for_booking(
    db: AsyncSession,
    booking_id: uuid.UUID,
    actor: Actor,
) -> Payment:
    """Admin reissue of a collection for a booking still awaiting payment."""
    _require_admin(actor, "open a collection")
    booking = await db.get(BookingRequest, booking_id)
    if booking is None:
        raise NotFoundError("Booking", booking_id)
    if booking.status != BookingStatus.AWAITING_PAYMENT:
        raise InvalidStateError(
            f"Booking '{booking_id}' is '{booking.status.value}'; collections are "
            f"only opened while awaiting payment."
        )

    amount = settlementCalculator.gross_amount(booking.hourly_rate, booking.duration_hours)
    with auditTrail.concurrent_update_guard("Booking", booking.id, DuplicateCollectionError):
        payment = await open_collection(db, booking, amount, actor)
        await db.flush()
    return payment


def void_collection(db: AsyncSession, payment: Payment, actor: Actor) -> None:
    """Reject a still-pending collection because its booking was cancelled."""
    payment.rejection_reason = VOID_ON_CANCEL_REASON
    _apply_status(
        db, payment, PaymentStatus.REJECTED, actor, note=VOID_ON_CANCEL_REASON, system=True
    )
    record(
        db,
        PaymentRejected(
            booking_id=payment.booking_id,
            actor_id=actor.id,
            payment_id=payment.id,
            reason=VOID_ON_CANCEL_REASON,
        ),
    )


async def submit_proof(
    db: AsyncSession,
    payment_id: uuid.UUID,
    actor: Actor,
    proof_reference: Optional[str],
) -> Payment:
    """Attach the payer's proof to a pending payment.

    A rejected collection whose booking is still awaiting payment is
    reopened to ``pending``; its earlier ``rejection_reason`` is kept.

    Raises:
        ProofRequiredError: Empty reference.
        InvalidStateError: Payment not pending (or not reopenable).
    """
    reference = proofStoreClient.normalize_reference(proof_reference, "payment proof")
    payment = await _load_payment(db, payment_id)
    _require_payer(payment, actor)

    reopen = False
    if payment.status == PaymentStatus.REJECTED and payment.kind == PaymentKind.COLLECTION:
        booking = await _load_owning_booking(db, payment)
        if booking.status != BookingStatus.AWAITING_PAYMENT:
            raise InvalidStateError(
                f"Payment '{payment_id}' was rejected and its booking is "
                f"'{booking.status.value}'; proof can no longer be submitted."
            )
        other = await get_active_collection(db, booking.id)
        if other is not None:
            raise InvalidStateError(
                f"Booking '{booking.id}' already has another active collection '{other.id}'."
            )
        if payment.dispute_status != DisputeStatus.NONE:
            raise InvalidStateError(
                f"Payment '{payment_id}' is under dispute ({payment.dispute_status.value})."
            )
        reopen = True
    elif payment.status != PaymentStatus.PENDING:
        raise InvalidStateError(
            f"Proof can only be submitted while the payment is pending "
            f"(current: '{payment.status.value}')."
        )

    await proofStoreClient.ensure_exists(reference)

    with auditTrail.concurrent_update_guard("Payment", payment.id):
        payment.proof_reference = reference
        payment.proof_submitted_at = utcnow()
        if reopen:
            _apply_status(db, payment, PaymentStatus.PENDING, actor, note="proof resubmitted")
        else:
            auditTrail.record_transition(
                db,
                entity_type=auditTrail.ENTITY_PAYMENT,
                entity_id=payment.id,
                from_status=payment.status,
                to_status=payment.status,
                actor=actor,
                note="proof submitted",
            )
        await db.flush()

    record(
        db,
        PaymentProofSubmitted(
            booking_id=payment.booking_id,
            actor_id=actor.id,
            payment_id=payment.id,
            resubmission=reopen,
        ),
    )
    return payment


async def verify(
    db: AsyncSession,
    payment_id: uuid.UUID,
    actor: Actor,
    outcome: VerificationOutcome,
    admin_proof_reference: Optional[str] = None,
    rejection_reason: Optional[str] = None,
) -> Payment:
    """Admin decision on a pending collection.

    ``confirmed`` requires ``admin_proof_reference`` and moves the owning
    booking to ``payment_approved``. ``rejected`` requires a reason and
    leaves the booking awaiting payment.
    """
    _require_admin(actor, "verify payments")
    outcome = VerificationOutcome(outcome)
    payment = await _load_payment(db, payment_id)
    _require_collection(payment)
    if payment.status != PaymentStatus.PENDING:
        raise InvalidStateError(
            f"Only pending payments can be verified (current: '{payment.status.value}')."
        )

    if outcome == VerificationOutcome.CONFIRMED:
        reference = proofStoreClient.normalize_reference(admin_proof_reference, "admin proof")
        booking = await _load_owning_booking(db, payment)
        raise_for_rejection(
            validate_transition(booking.status, BookingStatus.PAYMENT_APPROVED, actor.role)
        )
        await proofStoreClient.ensure_exists(reference)

        with auditTrail.concurrent_update_guard("Payment", payment.id):
            payment.admin_proof_reference = reference
            payment.verified_at = utcnow()
            payment.verified_by = actor.id
            _apply_status(db, payment, PaymentStatus.CONFIRMED, actor)

            old_booking_status = booking.status
            booking.status = BookingStatus.PAYMENT_APPROVED
            booking.payment_approved_at = payment.verified_at
            auditTrail.record_transition(
                db,
                entity_type=auditTrail.ENTITY_BOOKING,
                entity_id=booking.id,
                from_status=old_booking_status,
                to_status=BookingStatus.PAYMENT_APPROVED,
                actor=actor,
                note=f"collection {payment.id} confirmed",
            )
            await db.flush()

        record(
            db,
            PaymentConfirmed(
                booking_id=booking.id,
                actor_id=actor.id,
                payment_id=payment.id,
                amount=payment.amount,
            ),
        )
        return payment

    reason = (rejection_reason or "").strip()
    if not reason:
        raise ReasonRequiredError("A non-empty rejection reason is required.")

    with auditTrail.concurrent_update_guard("Payment", payment.id):
        payment.rejection_reason = reason
        payment.verified_at = utcnow()
        payment.verified_by = actor.id
        _apply_status(db, payment, PaymentStatus.REJECTED, actor, note=reason)
        await db.flush()

    record(
        db,
        PaymentRejected(
            booking_id=payment.booking_id,
            actor_id=actor.id,
            payment_id=payment.id,
            reason=reason,
        ),
    )
    return payment


# ---------------------------------------------------------------------------
# Disputes & refunds
# ---------------------------------------------------------------------------

async def open_dispute(
    db: AsyncSession,
    payment_id: uuid.UUID,
    actor: Actor,
    dispute_proof_reference: Optional[str],
    note: Optional[str] = None,
) -> Payment:
    """Raise a dispute on a confirmed or rejected collection."""
    reference = proofStoreClient.normalize_reference(dispute_proof_reference, "dispute proof")
    payment = await _load_payment(db, payment_id)
    _require_collection(payment)
    if not actor.is_admin:
        if actor.role != ActorRole.STUDENT:
            raise ForbiddenError("Only the paying student or an admin can open a dispute.")
        if actor.id != payment.student_id:
            raise NotOwnerError(f"Payment '{payment_id}' belongs to another student.")

    if payment.status not in DISPUTABLE_STATUSES:
        raise InvalidStateError(
            f"Disputes can only be opened on confirmed or rejected collections "
            f"(current: '{payment.status.value}')."
        )
    raise_for_rejection(
        validate_dispute_transition(payment.dispute_status, DisputeStatus.OPEN, actor.role)
    )
    await proofStoreClient.ensure_exists(reference)

    with auditTrail.concurrent_update_guard("Payment", payment.id):
        old = payment.dispute_status
        payment.dispute_status = DisputeStatus.OPEN
        payment.dispute_proof_reference = reference
        payment.dispute_note = note
        payment.dispute_opened_at = utcnow()
        auditTrail.record_transition(
            db,
            entity_type=auditTrail.ENTITY_DISPUTE,
            entity_id=payment.id,
            from_status=old,
            to_status=DisputeStatus.OPEN,
            actor=actor,
            note=note,
        )
        await db.flush()

    logger.info("Dispute opened on payment %s by %s", payment.id, actor.id)
    record(db, DisputeOpened(booking_id=payment.booking_id, actor_id=actor.id, payment_id=payment.id))
    return payment


async def resolve_dispute(
    db: AsyncSession,
    payment_id: uuid.UUID,
    actor: Actor,
    new_status: DisputeStatus,
    admin_note: Optional[str] = None,
) -> Payment:
    """Move a dispute along ``open -> under_review -> resolved | rejected``."""
    _require_admin(actor, "manage disputes")
    new_status = DisputeStatus(new_status)
    payment = await _load_payment(db, payment_id)
    _require_collection(payment)
    raise_for_rejection(
        validate_dispute_transition(payment.dispute_status, new_status, actor.role)
    )

    with auditTrail.concurrent_update_guard("Payment", payment.id):
        old = payment.dispute_status
        payment.dispute_status = new_status
        if admin_note is not None:
            payment.admin_note = admin_note
        if new_status in (DisputeStatus.RESOLVED, DisputeStatus.REJECTED):
            payment.dispute_resolved_at = utcnow()
        auditTrail.record_transition(
            db,
            entity_type=auditTrail.ENTITY_DISPUTE,
            entity_id=payment.id,
            from_status=old,
            to_status=new_status,
            actor=actor,
            note=admin_note,
        )
        await db.flush()

    logger.info(
        "Dispute on payment %s: %s -> %s", payment.id, old.value, new_status.value
    )
    record(
        db,
        DisputeStatusChanged(
            booking_id=payment.booking_id,
            actor_id=actor.id,
            payment_id=payment.id,
            old_status=old.value,
            new_status=new_status.value,
        ),
    )
    return payment


async def refund_collection(
    db: AsyncSession,
    payment_id: uuid.UUID,
    actor: Actor,
    admin_note: Optional[str] = None,
) -> Payment:
    """Refund a confirmed collection after its dispute was resolved in the payer's favour.

    The booking is cancelled in the same transaction. Completed sessions are
    not refundable: a completed booking always keeps its confirmed collection.
    """
    _require_admin(actor, "refund payments")
    payment = await _load_payment(db, payment_id)
    _require_collection(payment)
    if payment.dispute_status != DisputeStatus.RESOLVED:
        raise PreconditionFailedError(
            f"Payment '{payment_id}' can only be refunded once its dispute is resolved "
            f"(dispute: '{payment.dispute_status.value}')."
        )
    payout = await get_payout(db, payment.booking_id)
    if payout is not None:
        raise PreconditionFailedError(
            f"Booking '{payment.booking_id}' already has payout '{payout.id}'; refund refused."
        )
    booking = await _load_owning_booking(db, payment)
    if booking.status == BookingStatus.COMPLETED:
        raise PreconditionFailedError(
            f"Booking '{booking.id}' is completed; its collection cannot be refunded."
        )
    raise_for_rejection(
        validate_transition(booking.status, BookingStatus.CANCELLED, actor.role)
    )

    cancellation_reason = admin_note or REFUND_CANCELLATION_REASON
    with auditTrail.concurrent_update_guard("Payment", payment.id):
        _apply_status(db, payment, PaymentStatus.REFUNDED, actor, note=admin_note)
        if admin_note is not None:
            payment.admin_note = admin_note
        payment.refunded_at = utcnow()

        old_booking_status = booking.status
        booking.status = BookingStatus.CANCELLED
        booking.cancellation_reason = cancellation_reason
        booking.cancelled_at = payment.refunded_at
        auditTrail.record_transition(
            db,
            entity_type=auditTrail.ENTITY_BOOKING,
            entity_id=booking.id,
            from_status=old_booking_status,
            to_status=BookingStatus.CANCELLED,
            actor=actor,
            note=f"collection {payment.id} refunded",
        )
        await db.flush()

    logger.info(
        "Collection %s refunded; booking %s cancelled", payment.id, booking.id
    )

    record(
        db,
        CollectionRefunded(
            booking_id=payment.booking_id,
            actor_id=actor.id,
            payment_id=payment.id,
            amount=payment.amount,
        ),
    )
    record(
        db,
        BookingCancelled(
            booking_id=booking.id,
            actor_id=actor.id,
            previous_status=old_booking_status.value,
            reason=cancellation_reason,
        ),
    )
    return payment


# ---------------------------------------------------------------------------
# Payouts
# ---------------------------------------------------------------------------

async def create_payout(
    db: AsyncSession,
    booking_id: uuid.UUID,
    actor: Actor,
) -> Payment:
    """Create the tutor's payout for a completed, paid booking.

    Raises:
        PreconditionFailedError: Booking not completed or collection not confirmed,
            or the collection has an open dispute.
        DuplicatePayoutError: A payout already exists for the booking.
        SettlementInvariantError: Computed amount contradicts the fee formula.
    """
    _require_admin(actor, "create payouts")
    booking = await db.get(BookingRequest, booking_id)
    if booking is None:
        raise NotFoundError("Booking", booking_id)

    existing = await get_payout(db, booking_id)
    if existing is not None:
        raise DuplicatePayoutError(
            f"Booking '{booking_id}' already has payout '{existing.id}' ({existing.status.value})."
        )

    collection = await get_active_collection(db, booking_id)
    if collection is None or collection.status != PaymentStatus.CONFIRMED:
        raise PreconditionFailedError(
            f"Booking '{booking_id}' has no confirmed collection; payout refused."
        )
    if collection.dispute_status in UNSETTLED_DISPUTE_STATUSES:
        raise PreconditionFailedError(
            f"Collection '{collection.id}' has an unsettled dispute "
            f"('{collection.dispute_status.value}'); payout refused."
        )
    if booking.status != BookingStatus.COMPLETED:
        raise PreconditionFailedError(
            f"Booking '{booking_id}' is '{booking.status.value}'; payouts require a completed session."
        )

    breakdown = settlementCalculator.settle(collection.amount)
    settlementCalculator.verify_payout_amount(
        collection.amount, breakdown.payout_amount, breakdown.platform_fee_rate
    )

    payout = Payment(
        id=uuid.uuid4(),
        booking_id=booking.id,
        kind=PaymentKind.PAYOUT,
        student_id=booking.student_id,
        tutor_id=booking.tutor_id,
        amount=breakdown.payout_amount,
        currency=collection.currency,
        gross_amount=breakdown.gross_amount,
        platform_fee_rate=breakdown.platform_fee_rate,
        platform_fee=breakdown.platform_fee,
        status=PaymentStatus.PENDING,
        dispute_status=DisputeStatus.NONE,
    )
    with auditTrail.concurrent_update_guard("Payout", booking.id, DuplicatePayoutError):
        db.add(payout)
        auditTrail.record_transition(
            db,
            entity_type=auditTrail.ENTITY_PAYMENT,
            entity_id=payout.id,
            from_status=None,
            to_status=PaymentStatus.PENDING,
            actor=actor,
            note=(
                f"payout {breakdown.payout_amount} = {breakdown.gross_amount} - "
                f"fee {breakdown.platform_fee} ({breakdown.platform_fee_rate})"
            ),
        )
        await db.flush()

    logger.info(
        "Payout %s created for booking %s: gross=%s fee=%s payout=%s",
        payout.id,
        booking.id,
        breakdown.gross_amount,
        breakdown.platform_fee,
        breakdown.payout_amount,
    )
    record(
        db,
        PayoutCreated(
            booking_id=booking.id,
            actor_id=actor.id,
            payment_id=payout.id,
            tutor_id=booking.tutor_id,
            amount=payout.amount,
        ),
    )
    return payout


async def mark_payout_paid(
    db: AsyncSession,
    payment_id: uuid.UUID,
    actor: Actor,
    admin_proof_reference: Optional[str] = None,
) -> Payment:
    """Record that the platform disbursed a payout. Never changes ``amount``."""
    _require_admin(actor, "mark payouts as paid")
    payment = await _load_payment(db, payment_id)
    if payment.kind != PaymentKind.PAYOUT:
        raise InvalidStateError(f"Payment '{payment_id}' is not a payout.")
    if payment.status == PaymentStatus.ADMIN_PAID:
        raise AlreadyPaidError(f"Payout '{payment_id}' was already marked paid.")

    reference = None
    if admin_proof_reference is not None and admin_proof_reference.strip():
        reference = admin_proof_reference.strip()
        await proofStoreClient.ensure_exists(reference)

    with auditTrail.concurrent_update_guard("Payment", payment.id):
        _apply_status(db, payment, PaymentStatus.ADMIN_PAID, actor)
        if reference is not None:
            payment.admin_proof_reference = reference
        payment.paid_at = utcnow()
        await db.flush()

    record(
        db,
        PayoutPaid(
            booking_id=payment.booking_id,
            actor_id=actor.id,
            payment_id=payment.id,
            tutor_id=payment.tutor_id,
            amount=payment.amount,
        ),
    )
    return payment


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------

async def get_payment(db: AsyncSession, payment_id: uuid.UUID, actor: Actor) -> Payment:
    payment = await _load_payment(db, payment_id)
    if not _can_view(payment, actor):
        raise NotOwnerError(f"Payment '{payment_id}' is not visible to this user.")
    return payment


async def get_payments_for_booking(
    db: AsyncSession,
    booking_id: uuid.UUID,
    actor: Actor,
) -> list[Payment]:
    """All payments of a booking the actor may see, oldest first."""
    booking = await db.get(BookingRequest, booking_id)
    if booking is None:
        raise NotFoundError("Booking", booking_id)
    if not actor.is_admin and actor.id not in (booking.student_id, booking.tutor_id):
        raise NotOwnerError(f"Booking '{booking_id}' is not visible to this user.")

    stmt = (
        select(Payment)
        .where(Payment.booking_id == booking_id)
        .order_by(Payment.created_at.asc())
    )
    result = await db.execute(stmt)
    return [p for p in result.scalars().all() if _can_view(p, actor)]


async def list_payments(
    db: AsyncSession,
    actor: Actor,
    *,
    kind: Optional[PaymentKind] = None,
    status: Optional[PaymentStatus] = None,
    dispute_status: Optional[DisputeStatus] = None,
    page: int = 1,
    page_size: Optional[int] = None,
) -> PaginatedResult:
    """Admin listing of payments filtered by kind, status and dispute state."""
    _require_admin(actor, "list all payments")
    page = max(page, 1)
    page_size = clamp_page_size(page_size)

    filters = []
    if kind is not None:
        filters.append(Payment.kind == kind)
    if status is not None:
        filters.append(Payment.status == status)
    if dispute_status is not None:
        filters.append(Payment.dispute_status == dispute_status)

    count_stmt = select(func.count()).select_from(Payment).where(*filters)
    total = (await db.execute(count_stmt)).scalar_one()

    stmt = (
        select(Payment)
        .where(*filters)
        .order_by(Payment.created_at.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    result = await db.execute(stmt)
    return PaginatedResult(
        items=list(result.scalars().all()),
        total_items=total,
        page=page,
        page_size=page_size,
    )


async def get_payment_history(db: AsyncSession, payment_id: uuid.UUID, actor: Actor):
    """Status and dispute audit rows for a payment."""
    await get_payment(db, payment_id, actor)
    return await auditTrail.get_history(
        db, (auditTrail.ENTITY_PAYMENT, auditTrail.ENTITY_DISPUTE), payment_id
    )
