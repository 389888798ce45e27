"""
Shared pytest fixtures for the Tutorbook backend tests.

Provides:
- An in-memory async SQLite database built from ``Base.metadata``
- Fixed actor identities (students, tutors, an admin)
- Catalog snapshots patched in place of the catalog HTTP client
- Helpers that drive a booking into each lifecycle state through the
  real services
"""

from __future__ import annotations

import uuid
from datetime import date, time, timedelta
from decimal import Decimal
from typing import AsyncGenerator
from unittest.mock import AsyncMock, patch

import pytest
import pytest_asyncio
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from tutorbook.events import bookingEvents
from tutorbook.integrations.catalog.catalogClient import StudentSnapshot, TutorSnapshot
from tutorbook.models import Base
from tutorbook.services import bookingService, paymentLedger
from tutorbook.services.bookingStateManager import Actor, ActorRole

# ---------------------------------------------------------------------------
# Test IDs (stable across tests so cross-references work)
# ---------------------------------------------------------------------------

STUDENT_ID = uuid.UUID("aaaaaaaa-aaaa-aaaa-aaaa-aaaaaaaaaaaa")
TUTOR_ID = uuid.UUID("bbbbbbbb-bbbb-bbbb-bbbb-bbbbbbbbbbbb")
OTHER_STUDENT_ID = uuid.UUID("cccccccc-cccc-cccc-cccc-cccccccccccc")
ADMIN_ID = uuid.UUID("dddddddd-dddd-dddd-dddd-dddddddddddd")
OTHER_TUTOR_ID = uuid.UUID("eeeeeeee-eeee-eeee-eeee-eeeeeeeeeeee")

STUDENT = Actor(id=STUDENT_ID, role=ActorRole.STUDENT)
OTHER_STUDENT = Actor(id=OTHER_STUDENT_ID, role=ActorRole.STUDENT)
TUTOR = Actor(id=TUTOR_ID, role=ActorRole.TUTOR)
OTHER_TUTOR = Actor(id=OTHER_TUTOR_ID, role=ActorRole.TUTOR)
ADMIN = Actor(id=ADMIN_ID, role=ActorRole.ADMIN)

TUTOR_RATE = Decimal("300.00")
SESSION_DATE = date(2026, 11, 2)
SESSION_START = time(14, 0)

TEST_DB_URL = "sqlite+aiosqlite:///:memory:"


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------

def _enable_sqlite_fks(engine) -> None:
    # SQLite does not enforce foreign keys by default
    @event.listens_for(engine.sync_engine, "connect")
    def _enable_fk(dbapi_conn, _):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


@pytest_asyncio.fixture
async def engine():
    """Fresh in-memory database per test."""
    engine = create_async_engine(
        TEST_DB_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    _enable_sqlite_fks(engine)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture(autouse=True)
def fresh_outbox():
    """Each test starts with an empty event outbox."""
    return bookingEvents.reset_outbox()


# ---------------------------------------------------------------------------
# Catalog mock
# ---------------------------------------------------------------------------

def _tutor_snapshot(tutor_id: uuid.UUID) -> TutorSnapshot:
    return TutorSnapshot(id=tutor_id, display_name="Tutor T.", session_rate_per_hour=TUTOR_RATE)


def _student_snapshot(student_id: uuid.UUID) -> StudentSnapshot:
    return StudentSnapshot(id=student_id, display_name="Student S.")


@pytest.fixture(autouse=True)
def mock_catalog():
    """Replace the catalog HTTP calls with fixed snapshots."""
    with patch(
        "tutorbook.integrations.catalog.catalogClient.get_tutor_snapshot",
        new=AsyncMock(side_effect=_tutor_snapshot),
    ) as tutor_mock, patch(
        "tutorbook.integrations.catalog.catalogClient.get_student_snapshot",
        new=AsyncMock(side_effect=_student_snapshot),
    ) as student_mock:
        yield {"tutor": tutor_mock, "student": student_mock}


# ---------------------------------------------------------------------------
# Lifecycle helpers
# ---------------------------------------------------------------------------

async def create_pending_booking(
    db: AsyncSession,
    *,
    duration_hours: Decimal | str = "2",
    subject: str = "Calculus",
    session_date: date = SESSION_DATE,
    student: Actor = STUDENT,
    tutor_id: uuid.UUID = TUTOR_ID,
):
    return await bookingService.create_booking(
        db,
        student,
        student_id=student.id,
        tutor_id=tutor_id,
        subject=subject,
        session_date=session_date,
        start_time=SESSION_START,
        duration_hours=duration_hours,
    )


async def create_awaiting_payment_booking(db: AsyncSession, **kwargs):
    booking = await create_pending_booking(db, **kwargs)
    await bookingService.respond_to_booking(
        db, booking.id, TUTOR, bookingService.BookingDecision.ACCEPT
    )
    collection = await paymentLedger.get_active_collection(db, booking.id)
    return booking, collection


async def create_payment_approved_booking(db: AsyncSession, **kwargs):
    booking, collection = await create_awaiting_payment_booking(db, **kwargs)
    await paymentLedger.submit_proof(db, collection.id, STUDENT, "proofs/receipt-1.png")
    await paymentLedger.verify(
        db,
        collection.id,
        ADMIN,
        paymentLedger.VerificationOutcome.CONFIRMED,
        admin_proof_reference="proofs/bank-statement-1.png",
    )
    return booking, collection


async def create_completed_booking(db: AsyncSession, **kwargs):
    booking, collection = await create_payment_approved_booking(db, **kwargs)
    await bookingService.submit_session_proof(db, booking.id, TUTOR, "proofs/session-1.png")
    return booking, collection


def days_ago(days: int) -> date:
    return SESSION_DATE - timedelta(days=days)
