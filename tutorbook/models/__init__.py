"""
Tutorbook SQLAlchemy Models
=============================

Central import point for all ORM models. Import ``Base`` from here for
Alembic auto-generation and for the ``create_all`` convenience in tests.

Usage::

    from tutorbook.models import Base, BookingRequest, Payment
"""

# -- Base & Mixins --
from .base import Base, TimestampMixin, UUIDPrimaryKeyMixin

# -- Bookings --
from .booking import BookingRequest, BookingStatus

# -- Payments & audit --
from .payment import (
    DisputeStatus,
    Payment,
    PaymentKind,
    PaymentStatus,
    StatusAuditEntry,
)

__all__ = [
    # Base
    "Base",
    "TimestampMixin",
    "UUIDPrimaryKeyMixin",
    # Bookings
    "BookingRequest",
    "BookingStatus",
    # Payments
    "Payment",
    "PaymentKind",
    "PaymentStatus",
    "DisputeStatus",
    "StatusAuditEntry",
]
