"""
Audit trail and write guards shared by the booking and payment services.

Every status change writes one immutable ``StatusAuditEntry`` in the same
transaction as the change itself. ``concurrent_update_guard`` wraps the
flush of a transition so that losing an optimistic-concurrency race
surfaces as ``InvalidTransitionError`` instead of a raw ORM error.
"""

from __future__ import annotations

import enum
import logging
import uuid
from contextlib import contextmanager
from typing import Iterator, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from tutorbook.core.exceptions import BookingDomainError, InvalidTransitionError
from tutorbook.models.payment import StatusAuditEntry
from tutorbook.services.bookingStateManager import Actor

logger = logging.getLogger(__name__)

ENTITY_BOOKING = "booking"
ENTITY_PAYMENT = "payment"
ENTITY_DISPUTE = "dispute"

SYSTEM_ROLE = "system"


def _status_value(status: enum.Enum | str | None) -> Optional[str]:
    if status is None:
        return None
    return status.value if isinstance(status, enum.Enum) else str(status)


def record_transition(
    db: AsyncSession,
    *,
    entity_type: str,
    entity_id: uuid.UUID,
    from_status: enum.Enum | str | None,
    to_status: enum.Enum | str,
    actor: Optional[Actor],
    note: Optional[str] = None,
) -> StatusAuditEntry:
    """Stage an audit row; it is flushed together with the transition."""
    entry = StatusAuditEntry(
        entity_type=entity_type,
        entity_id=entity_id,
        from_status=_status_value(from_status),
        to_status=_status_value(to_status),
        actor_id=actor.id if actor else None,
        actor_role=actor.role.value if actor else SYSTEM_ROLE,
        note=note,
    )
    db.add(entry)
    return entry


async def get_history(
    db: AsyncSession,
    entity_types: Sequence[str],
    entity_id: uuid.UUID,
) -> list[StatusAuditEntry]:
    """Return audit rows for an entity, oldest first."""
    stmt = (
        select(StatusAuditEntry)
        .where(
            StatusAuditEntry.entity_type.in_(list(entity_types)),
            StatusAuditEntry.entity_id == entity_id,
        )
        .order_by(StatusAuditEntry.created_at.asc())
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())


@contextmanager
def concurrent_update_guard(
    entity: str,
    entity_id: uuid.UUID,
    duplicate_error: Optional[type[BookingDomainError]] = None,
) -> Iterator[None]:
    """Translate lost races on ``entity`` into domain errors.

    ``StaleDataError`` (version mismatch) becomes ``InvalidTransitionError``.
    ``IntegrityError`` from a uniqueness index becomes ``duplicate_error``
    when one is given and propagates unchanged otherwise.
    """
    try:
        yield
    except StaleDataError as exc:
        logger.warning("Concurrent modification of %s %s rejected", entity, entity_id)
        raise InvalidTransitionError(
            f"{entity} '{entity_id}' was modified by another request; "
            f"refresh and try again."
        ) from exc
    except IntegrityError as exc:
        if duplicate_error is None:
            raise
        logger.warning("Uniqueness conflict on %s %s: %s", entity, entity_id, exc.orig)
        raise duplicate_error(
            f"A conflicting {entity.lower()} record was created concurrently for '{entity_id}'."
        ) from exc
