"""
Domain error taxonomy for the booking and payment core.

Every rejected operation raises a subclass of ``BookingDomainError`` carrying
a stable ``error_code`` that the presentation layer can switch on, and the
HTTP status the API layer should answer with.

Categories:
  - validation   -- bad input shape (422), never retried
  - state        -- illegal transition / wrong actor / duplicates (403, 404, 409)
  - collaborator -- proof store or catalog unreachable after retries (503)
  - invariant    -- a settlement figure does not match its formula (500)
"""

from __future__ import annotations

import uuid


class BookingDomainError(Exception):
    """Base class for every business-rule violation raised by the core."""

    error_code: str = "domain_error"
    http_status: int = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.error_code!r}, message={self.message!r})"


# ---------------------------------------------------------------------------
# Validation errors
# ---------------------------------------------------------------------------

class InvalidDurationError(BookingDomainError):
    error_code = "invalid_duration"
    http_status = 422


class SamePartyError(BookingDomainError):
    error_code = "same_party"
    http_status = 422


class InvalidRatingError(BookingDomainError):
    error_code = "invalid_rating"
    http_status = 422


class ProofRequiredError(BookingDomainError):
    error_code = "proof_required"
    http_status = 422


class ReasonRequiredError(BookingDomainError):
    error_code = "reason_required"
    http_status = 422


class ProofNotFoundError(BookingDomainError):
    """The proof store does not know the submitted reference."""

    error_code = "proof_not_found"
    http_status = 422


# ---------------------------------------------------------------------------
# State errors
# ---------------------------------------------------------------------------

class NotFoundError(BookingDomainError):
    error_code = "not_found"
    http_status = 404

    def __init__(self, entity: str, entity_id: uuid.UUID | str) -> None:
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} with id '{entity_id}' not found.")


class ForbiddenError(BookingDomainError):
    """The actor's role may not perform this action at all."""

    error_code = "forbidden"
    http_status = 403


class NotOwnerError(BookingDomainError):
    """The actor has the right role but is not a party to this record."""

    error_code = "not_owner"
    http_status = 403


class InvalidTransitionError(BookingDomainError):
    error_code = "invalid_transition"
    http_status = 409


class InvalidStateError(BookingDomainError):
    error_code = "invalid_state"
    http_status = 409


class PreconditionFailedError(BookingDomainError):
    error_code = "precondition_failed"
    http_status = 409


class AlreadyRatedError(BookingDomainError):
    error_code = "already_rated"
    http_status = 409


class DuplicateCollectionError(BookingDomainError):
    error_code = "duplicate_collection"
    http_status = 409


class DuplicatePayoutError(BookingDomainError):
    error_code = "duplicate_payout"
    http_status = 409


class AlreadyPaidError(BookingDomainError):
    error_code = "already_paid"
    http_status = 409


# ---------------------------------------------------------------------------
# Collaborator errors
# ---------------------------------------------------------------------------

class CollaboratorUnavailableError(BookingDomainError):
    """Raised when an external collaborator fails after all retries."""

    error_code = "collaborator_unavailable"
    http_status = 503

    def __init__(self, collaborator: str, message: str) -> None:
        self.collaborator = collaborator
        super().__init__(f"{collaborator} unavailable: {message}")


# ---------------------------------------------------------------------------
# Invariant violations
# ---------------------------------------------------------------------------

class SettlementInvariantError(BookingDomainError):
    """A stored or computed settlement figure contradicts its formula.

    Indicates a bug in the transition code, never a user mistake.
    """

    error_code = "settlement_invariant"
    http_status = 500
