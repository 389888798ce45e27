"""
Payment State Manager
=====================

Transition tables for the two payment kinds and for the collection dispute
sub-state.

Collection (student -> platform)::

    pending --verify(confirmed, admin)--> confirmed
    pending --verify(rejected, admin)--> rejected
    rejected --resubmit proof(student/admin)--> pending
    confirmed --refund(admin, dispute resolved)--> refunded   [terminal]

Payout (platform -> tutor)::

    pending --mark paid(admin)--> admin_paid                  [terminal]

Dispute (collection only)::

    none --open(payer/admin)--> open --review(admin)--> under_review
    under_review --(admin)--> resolved | rejected             [terminal]

A ``role`` of ``None`` denotes a system-driven transition (e.g. voiding a
collection when its booking is cancelled) and skips the role guard.
"""

from __future__ import annotations

from tutorbook.models.payment import DisputeStatus, PaymentKind, PaymentStatus
from tutorbook.services.bookingStateManager import (
    ActorRole,
    RejectionKind,
    TransitionResult,
)


# ---------------------------------------------------------------------------
# Transition definitions
# ---------------------------------------------------------------------------

COLLECTION_TRANSITIONS: dict[PaymentStatus, set[PaymentStatus]] = {
    PaymentStatus.PENDING: {PaymentStatus.CONFIRMED, PaymentStatus.REJECTED},
    PaymentStatus.REJECTED: {PaymentStatus.PENDING},
    PaymentStatus.CONFIRMED: {PaymentStatus.REFUNDED},
    PaymentStatus.REFUNDED: set(),
}

PAYOUT_TRANSITIONS: dict[PaymentStatus, set[PaymentStatus]] = {
    PaymentStatus.PENDING: {PaymentStatus.ADMIN_PAID},
    PaymentStatus.ADMIN_PAID: set(),
}

DISPUTE_TRANSITIONS: dict[DisputeStatus, set[DisputeStatus]] = {
    DisputeStatus.NONE: {DisputeStatus.OPEN},
    DisputeStatus.OPEN: {DisputeStatus.UNDER_REVIEW},
    DisputeStatus.UNDER_REVIEW: {DisputeStatus.RESOLVED, DisputeStatus.REJECTED},
    DisputeStatus.RESOLVED: set(),
    DisputeStatus.REJECTED: set(),
}

# Collection statuses that still count as "the" collection of a booking
ACTIVE_COLLECTION_STATUSES: frozenset[PaymentStatus] = frozenset({
    PaymentStatus.PENDING,
    PaymentStatus.CONFIRMED,
})

# Statuses from which a dispute may be raised
DISPUTABLE_STATUSES: frozenset[PaymentStatus] = frozenset({
    PaymentStatus.CONFIRMED,
    PaymentStatus.REJECTED,
})

_PAYMENT_ROLES: dict[tuple[PaymentKind, PaymentStatus], frozenset[ActorRole]] = {
    (PaymentKind.COLLECTION, PaymentStatus.CONFIRMED): frozenset({ActorRole.ADMIN}),
    (PaymentKind.COLLECTION, PaymentStatus.REJECTED): frozenset({ActorRole.ADMIN}),
    (PaymentKind.COLLECTION, PaymentStatus.PENDING): frozenset({ActorRole.STUDENT, ActorRole.ADMIN}),
    (PaymentKind.COLLECTION, PaymentStatus.REFUNDED): frozenset({ActorRole.ADMIN}),
    (PaymentKind.PAYOUT, PaymentStatus.ADMIN_PAID): frozenset({ActorRole.ADMIN}),
}

_DISPUTE_ROLES: dict[DisputeStatus, frozenset[ActorRole]] = {
    DisputeStatus.OPEN: frozenset({ActorRole.STUDENT, ActorRole.ADMIN}),
    DisputeStatus.UNDER_REVIEW: frozenset({ActorRole.ADMIN}),
    DisputeStatus.RESOLVED: frozenset({ActorRole.ADMIN}),
    DisputeStatus.REJECTED: frozenset({ActorRole.ADMIN}),
}


def _transitions_for(kind: PaymentKind) -> dict[PaymentStatus, set[PaymentStatus]]:
    if kind == PaymentKind.COLLECTION:
        return COLLECTION_TRANSITIONS
    return PAYOUT_TRANSITIONS


def _format_targets(targets: set) -> str:
    return ", ".join(sorted(t.value for t in targets)) or "none"


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def validate_payment_transition(
    kind: PaymentKind,
    current_status: PaymentStatus,
    new_status: PaymentStatus,
    role: ActorRole | None,
) -> TransitionResult:
    """Validate a payment status change for the given payment kind."""
    allowed_targets = _transitions_for(kind).get(current_status, set())
    if new_status not in allowed_targets:
        return TransitionResult(
            allowed=False,
            reason=(
                f"Invalid {kind.value} transition: '{current_status.value}' -> "
                f"'{new_status.value}'. Allowed transitions from "
                f"'{current_status.value}': {_format_targets(allowed_targets)}."
            ),
            rejection=RejectionKind.INVALID_TRANSITION,
        )

    if role is None:
        return TransitionResult(allowed=True)

    allowed_roles = _PAYMENT_ROLES.get((kind, new_status), frozenset())
    if role not in allowed_roles:
        return TransitionResult(
            allowed=False,
            reason=(
                f"A {role.value} cannot move a {kind.value} payment to "
                f"'{new_status.value}'."
            ),
            rejection=RejectionKind.FORBIDDEN,
        )
    return TransitionResult(allowed=True)


def validate_dispute_transition(
    current_status: DisputeStatus,
    new_status: DisputeStatus,
    role: ActorRole,
) -> TransitionResult:
    """Validate a dispute sub-state change."""
    allowed_targets = DISPUTE_TRANSITIONS.get(current_status, set())
    if new_status not in allowed_targets:
        return TransitionResult(
            allowed=False,
            reason=(
                f"Invalid dispute transition: '{current_status.value}' -> "
                f"'{new_status.value}'. Allowed transitions from "
                f"'{current_status.value}': {_format_targets(allowed_targets)}."
            ),
            rejection=RejectionKind.INVALID_TRANSITION,
        )

    allowed_roles = _DISPUTE_ROLES.get(new_status, frozenset())
    if role not in allowed_roles:
        return TransitionResult(
            allowed=False,
            reason=f"A {role.value} cannot move a dispute to '{new_status.value}'.",
            rejection=RejectionKind.FORBIDDEN,
        )
    return TransitionResult(allowed=True)
