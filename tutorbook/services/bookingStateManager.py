"""
Booking State Manager
=====================

Finite state machine governing all valid booking request status
transitions. Every status change MUST go through ``validate_transition``
before being persisted.

State machine overview::

    pending --accept(tutor)--> awaiting_payment
    pending --decline(tutor)--> declined                          [terminal]
    awaiting_payment --payment confirmed(admin)--> payment_approved
    payment_approved --session proof(tutor/admin)--> completed    [terminal]
    pending | awaiting_payment --cancel(student/admin)--> cancelled [terminal]
    payment_approved --refund(admin)--> cancelled                 [terminal]

Rating a completed booking attaches data without changing status and is
therefore not part of the transition table.

Guards enforce that only the correct actor role can trigger a transition.
Ownership (is this *the* tutor of the booking?) is checked by the service
layer, which knows the booking's parties.
"""

from __future__ import annotations

import enum
import uuid
from dataclasses import dataclass

from tutorbook.core.exceptions import ForbiddenError, InvalidTransitionError
from tutorbook.models.booking import BookingStatus


# ---------------------------------------------------------------------------
# Actors
# ---------------------------------------------------------------------------

class ActorRole(str, enum.Enum):
    STUDENT = "student"
    TUTOR = "tutor"
    ADMIN = "admin"


@dataclass(frozen=True)
class Actor:
    """The authenticated caller of an operation, passed explicitly."""
    id: uuid.UUID
    role: ActorRole

    @property
    def is_admin(self) -> bool:
        return self.role == ActorRole.ADMIN


# ---------------------------------------------------------------------------
# Transition guard result
# ---------------------------------------------------------------------------

class RejectionKind(str, enum.Enum):
    INVALID_TRANSITION = "invalid_transition"
    FORBIDDEN = "forbidden"


@dataclass(frozen=True)
class TransitionResult:
    """Result of a transition validation attempt."""
    allowed: bool
    reason: str | None = None
    rejection: RejectionKind | None = None


# ---------------------------------------------------------------------------
# Transition definitions
# ---------------------------------------------------------------------------

VALID_TRANSITIONS: dict[BookingStatus, set[BookingStatus]] = {
    BookingStatus.PENDING: {
        BookingStatus.AWAITING_PAYMENT,
        BookingStatus.DECLINED,
        BookingStatus.CANCELLED,
    },
    BookingStatus.AWAITING_PAYMENT: {
        BookingStatus.PAYMENT_APPROVED,
        BookingStatus.CANCELLED,
    },
    BookingStatus.PAYMENT_APPROVED: {
        BookingStatus.COMPLETED,
        BookingStatus.CANCELLED,
    },
    # Terminal states
    BookingStatus.DECLINED: set(),
    BookingStatus.COMPLETED: set(),
    BookingStatus.CANCELLED: set(),
    # Legacy values, never entered
    BookingStatus.ACCEPTED: set(),
    BookingStatus.CONFIRMED: set(),
}

TERMINAL_STATUSES: frozenset[BookingStatus] = frozenset(
    status for status, targets in VALID_TRANSITIONS.items() if not targets
)

# Roles permitted to drive the booking into each target status
_ALLOWED_ROLES: dict[BookingStatus, frozenset[ActorRole]] = {
    BookingStatus.AWAITING_PAYMENT: frozenset({ActorRole.TUTOR}),
    BookingStatus.DECLINED: frozenset({ActorRole.TUTOR}),
    BookingStatus.PAYMENT_APPROVED: frozenset({ActorRole.ADMIN}),
    BookingStatus.COMPLETED: frozenset({ActorRole.TUTOR, ActorRole.ADMIN}),
    BookingStatus.CANCELLED: frozenset({ActorRole.STUDENT, ActorRole.ADMIN}),
}

# Edges whose roles differ from the defaults of their target status
_EDGE_ROLES: dict[tuple[BookingStatus, BookingStatus], frozenset[ActorRole]] = {
    (BookingStatus.PAYMENT_APPROVED, BookingStatus.CANCELLED): frozenset({ActorRole.ADMIN}),
}

# Statuses a student or admin may cancel directly; a paid booking is only
# cancelled by refunding its collection
USER_CANCELLABLE_STATUSES: frozenset[BookingStatus] = frozenset(
    {BookingStatus.PENDING, BookingStatus.AWAITING_PAYMENT}
)

_ACTION_NAMES: dict[BookingStatus, str] = {
    BookingStatus.AWAITING_PAYMENT: "accept a booking",
    BookingStatus.DECLINED: "decline a booking",
    BookingStatus.PAYMENT_APPROVED: "approve a booking payment",
    BookingStatus.COMPLETED: "complete a session",
    BookingStatus.CANCELLED: "cancel a booking",
}


# ---------------------------------------------------------------------------
# Guard functions
# ---------------------------------------------------------------------------

def _guard_role(
    current: BookingStatus, target: BookingStatus, role: ActorRole
) -> TransitionResult:
    allowed_roles = _EDGE_ROLES.get(
        (current, target), _ALLOWED_ROLES.get(target, frozenset())
    )
    if role in allowed_roles:
        return TransitionResult(allowed=True)
    return TransitionResult(
        allowed=False,
        reason=(
            f"A {role.value} cannot {_ACTION_NAMES.get(target, target.value)}. "
            f"Allowed roles: "
            f"{', '.join(sorted(r.value for r in allowed_roles)) or 'none'}."
        ),
        rejection=RejectionKind.FORBIDDEN,
    )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def validate_transition(
    current_status: BookingStatus,
    new_status: BookingStatus,
    role: ActorRole,
) -> TransitionResult:
    """Validate whether a booking status transition is allowed.

    Checks two layers:
    1. Is the transition structurally valid per the state machine?
    2. Does the actor's role permit this specific transition?

    Returns a ``TransitionResult`` with ``allowed=True`` if the transition
    is permitted, or ``allowed=False`` with a human-readable ``reason`` and
    the kind of rejection.
    """
    allowed_targets = VALID_TRANSITIONS.get(current_status, set())
    if new_status not in allowed_targets:
        return TransitionResult(
            allowed=False,
            reason=(
                f"Invalid transition: '{current_status.value}' -> '{new_status.value}'. "
                f"Allowed transitions from '{current_status.value}': "
                f"{', '.join(s.value for s in sorted(allowed_targets, key=lambda s: s.value)) or 'none'}."
            ),
            rejection=RejectionKind.INVALID_TRANSITION,
        )

    return _guard_role(current_status, new_status, role)


def is_cancellable(status: BookingStatus) -> bool:
    """Whether a student or admin may cancel a booking in this status directly."""
    return status in USER_CANCELLABLE_STATUSES


def raise_for_rejection(result: TransitionResult) -> None:
    """Turn a refused ``TransitionResult`` into the matching domain error."""
    if result.allowed:
        return
    if result.rejection == RejectionKind.FORBIDDEN:
        raise ForbiddenError(result.reason or "Action not permitted for this role.")
    raise InvalidTransitionError(result.reason or "Transition not allowed.")
