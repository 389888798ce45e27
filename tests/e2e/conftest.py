"""
E2E test fixtures for the Tutorbook booking API.

Provides:
- An in-process FastAPI test app with all routes registered
- httpx AsyncClient wired via ASGI transport (no network needed)
- The real ``get_db`` dependency pointed at the in-memory test database,
  so commits, rollbacks and event publishing behave as in production
- Bearer tokens for each test actor
- Helpers that drive a booking through its lifecycle over HTTP

The catalog is mocked by the shared ``mock_catalog`` fixture; the proof
store and notifier are unconfigured and therefore skipped.
"""

from __future__ import annotations

from typing import Any, AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from tests.conftest import (
    ADMIN,
    SESSION_DATE,
    SESSION_START,
    STUDENT,
    TUTOR,
    TUTOR_ID,
)
from tutorbook.services.auth_service import create_access_token
from tutorbook.services.bookingStateManager import Actor

API = "/api/v1"


def _create_test_app():
    """Build a FastAPI app with all routes registered."""
    from fastapi import FastAPI

    from tutorbook.api.routes.bookings import router as bookings_router
    from tutorbook.api.routes.payments import router as payments_router
    from tutorbook.api.routes.stats import router as stats_router

    app = FastAPI(title="Tutorbook Test")
    app.include_router(bookings_router, prefix=API)
    app.include_router(payments_router, prefix=API)
    app.include_router(stats_router, prefix=API)
    return app


@pytest_asyncio.fixture
async def client(session_factory, monkeypatch) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client whose requests each run in their own committed session."""
    from tutorbook.api import deps

    monkeypatch.setattr(deps, "async_session_factory", session_factory)
    transport = ASGITransport(app=_create_test_app())
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


def auth(actor: Actor) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(actor.id, actor.role)}"}


@pytest.fixture
def student_headers() -> dict[str, str]:
    return auth(STUDENT)


@pytest.fixture
def tutor_headers() -> dict[str, str]:
    return auth(TUTOR)


@pytest.fixture
def admin_headers() -> dict[str, str]:
    return auth(ADMIN)


# ---------------------------------------------------------------------------
# Lifecycle helpers
# ---------------------------------------------------------------------------

async def create_booking_via_api(
    client: AsyncClient,
    actor: Actor = STUDENT,
    **overrides: Any,
):
    body = {
        "tutor_id": str(TUTOR_ID),
        "subject": "Calculus",
        "session_date": SESSION_DATE.isoformat(),
        "start_time": SESSION_START.isoformat(),
        "duration_hours": "2",
    }
    body.update(overrides)
    return await client.post(f"{API}/bookings", json=body, headers=auth(actor))


async def accept_booking(client: AsyncClient, booking_id: str) -> str:
    """Accept as the tutor and return the collection id."""
    resp = await client.post(
        f"{API}/bookings/{booking_id}/respond",
        json={"decision": "accept"},
        headers=auth(TUTOR),
    )
    assert resp.status_code == 200, resp.text
    payments = await client.get(f"{API}/payments/booking/{booking_id}", headers=auth(ADMIN))
    return payments.json()[0]["id"]


async def pay_and_confirm(client: AsyncClient, collection_id: str) -> None:
    resp = await client.post(
        f"{API}/payments/{collection_id}/proof",
        json={"proof_reference": "proofs/receipt-1.png"},
        headers=auth(STUDENT),
    )
    assert resp.status_code == 200, resp.text
    resp = await client.post(
        f"{API}/payments/{collection_id}/verify",
        json={"outcome": "confirmed", "admin_proof_reference": "proofs/bank-1.png"},
        headers=auth(ADMIN),
    )
    assert resp.status_code == 200, resp.text


async def complete_session(client: AsyncClient, booking_id: str) -> None:
    resp = await client.post(
        f"{API}/bookings/{booking_id}/session-proof",
        json={"proof_reference": "proofs/session-1.png"},
        headers=auth(TUTOR),
    )
    assert resp.status_code == 200, resp.text


async def completed_booking_via_api(client: AsyncClient, **overrides: Any) -> tuple[str, str]:
    """Return ``(booking_id, collection_id)`` for a completed, paid session."""
    resp = await create_booking_via_api(client, **overrides)
    assert resp.status_code == 201, resp.text
    booking_id = resp.json()["id"]
    collection_id = await accept_booking(client, booking_id)
    await pay_and_confirm(client, collection_id)
    await complete_session(client, booking_id)
    return booking_id, collection_id
