"""
E2E: Payment flow over HTTP.

Collection proof and verification, rejection and resubmission, disputes
and refunds, payout creation and disbursement.
"""

from __future__ import annotations

import pytest
from httpx import AsyncClient

from tests.conftest import OTHER_STUDENT
from tests.e2e.conftest import (
    API,
    accept_booking,
    auth,
    completed_booking_via_api,
    create_booking_via_api,
    pay_and_confirm,
)
from tutorbook.events import bookingEvents


async def _awaiting_payment(client: AsyncClient) -> tuple[str, str]:
    booking_id = (await create_booking_via_api(client)).json()["id"]
    return booking_id, await accept_booking(client, booking_id)


class TestCollectionVerification:

    @pytest.mark.asyncio
    async def test_confirm_approves_booking(self, client: AsyncClient, student_headers):
        booking_id, collection_id = await _awaiting_payment(client)
        await pay_and_confirm(client, collection_id)

        booking = await client.get(f"{API}/bookings/{booking_id}", headers=student_headers)
        assert booking.json()["status"] == "payment_approved"

        payment = await client.get(f"{API}/payments/{collection_id}", headers=student_headers)
        assert payment.json()["status"] == "confirmed"
        assert payment.json()["admin_proof_reference"] == "proofs/bank-1.png"

    @pytest.mark.asyncio
    async def test_confirm_without_admin_proof_returns_422(
        self, client: AsyncClient, admin_headers, student_headers
    ):
        _, collection_id = await _awaiting_payment(client)
        resp = await client.post(
            f"{API}/payments/{collection_id}/verify",
            json={"outcome": "confirmed"},
            headers=admin_headers,
        )
        assert resp.status_code == 422
        assert resp.json()["detail"]["error"] == "proof_required"

        payment = await client.get(f"{API}/payments/{collection_id}", headers=student_headers)
        assert payment.json()["status"] == "pending"

    @pytest.mark.asyncio
    async def test_empty_student_proof_returns_422(self, client: AsyncClient, student_headers):
        _, collection_id = await _awaiting_payment(client)
        resp = await client.post(
            f"{API}/payments/{collection_id}/proof",
            json={"proof_reference": ""},
            headers=student_headers,
        )
        assert resp.status_code == 422
        assert resp.json()["detail"]["error"] == "proof_required"

    @pytest.mark.asyncio
    async def test_reject_then_resubmit(self, client: AsyncClient, admin_headers, student_headers):
        _, collection_id = await _awaiting_payment(client)

        no_reason = await client.post(
            f"{API}/payments/{collection_id}/verify",
            json={"outcome": "rejected"},
            headers=admin_headers,
        )
        assert no_reason.status_code == 422
        assert no_reason.json()["detail"]["error"] == "reason_required"

        rejected = await client.post(
            f"{API}/payments/{collection_id}/verify",
            json={"outcome": "rejected", "rejection_reason": "Blurry screenshot"},
            headers=admin_headers,
        )
        assert rejected.status_code == 200
        assert rejected.json()["status"] == "rejected"

        resubmitted = await client.post(
            f"{API}/payments/{collection_id}/proof",
            json={"proof_reference": "proofs/receipt-2.png"},
            headers=student_headers,
        )
        assert resubmitted.status_code == 200
        assert resubmitted.json()["status"] == "pending"
        assert resubmitted.json()["rejection_reason"] == "Blurry screenshot"

    @pytest.mark.asyncio
    async def test_other_student_cannot_submit_proof(self, client: AsyncClient):
        _, collection_id = await _awaiting_payment(client)
        resp = await client.post(
            f"{API}/payments/{collection_id}/proof",
            json={"proof_reference": "proofs/x.png"},
            headers=auth(OTHER_STUDENT),
        )
        assert resp.status_code == 403
        assert resp.json()["detail"]["error"] == "not_owner"

    @pytest.mark.asyncio
    async def test_duplicate_collection_returns_409(self, client: AsyncClient, admin_headers):
        booking_id, _ = await _awaiting_payment(client)
        resp = await client.post(
            f"{API}/payments/collections",
            json={"booking_id": booking_id},
            headers=admin_headers,
        )
        assert resp.status_code == 409
        assert resp.json()["detail"]["error"] == "duplicate_collection"


class TestPayouts:

    @pytest.mark.asyncio
    async def test_payout_round_trip(self, client: AsyncClient, admin_headers, tutor_headers):
        booking_id, _ = await completed_booking_via_api(client)

        created = await client.post(
            f"{API}/payments/payouts", json={"booking_id": booking_id}, headers=admin_headers
        )
        assert created.status_code == 201, created.text
        payout = created.json()
        assert payout["kind"] == "payout"
        assert payout["amount"] == "522.00"
        assert payout["gross_amount"] == "600.00"
        assert payout["platform_fee"] == "78.00"

        visible = await client.get(f"{API}/payments/{payout['id']}", headers=tutor_headers)
        assert visible.status_code == 200

        paid = await client.post(
            f"{API}/payments/{payout['id']}/mark-paid",
            json={"admin_proof_reference": "proofs/transfer-1.png"},
            headers=admin_headers,
        )
        assert paid.status_code == 200
        assert paid.json()["status"] == "admin_paid"
        assert paid.json()["amount"] == "522.00"

        again = await client.post(f"{API}/payments/{payout['id']}/mark-paid", headers=admin_headers)
        assert again.status_code == 409
        assert again.json()["detail"]["error"] == "already_paid"

        types = [e.event_type for e in bookingEvents.drain()]
        assert types[-2:] == ["payout.created", "payout.paid"]

    @pytest.mark.asyncio
    async def test_payout_before_confirmation_returns_409(
        self, client: AsyncClient, admin_headers
    ):
        booking_id, _ = await _awaiting_payment(client)
        resp = await client.post(
            f"{API}/payments/payouts", json={"booking_id": booking_id}, headers=admin_headers
        )
        assert resp.status_code == 409
        assert resp.json()["detail"]["error"] == "precondition_failed"

        payments = await client.get(f"{API}/payments/booking/{booking_id}", headers=admin_headers)
        assert [p["kind"] for p in payments.json()] == ["collection"]

    @pytest.mark.asyncio
    async def test_duplicate_payout_returns_409(self, client: AsyncClient, admin_headers):
        booking_id, _ = await completed_booking_via_api(client)
        await client.post(
            f"{API}/payments/payouts", json={"booking_id": booking_id}, headers=admin_headers
        )
        resp = await client.post(
            f"{API}/payments/payouts", json={"booking_id": booking_id}, headers=admin_headers
        )
        assert resp.status_code == 409
        assert resp.json()["detail"]["error"] == "duplicate_payout"

    @pytest.mark.asyncio
    async def test_tutor_cannot_create_payout(self, client: AsyncClient, tutor_headers):
        booking_id, _ = await completed_booking_via_api(client)
        resp = await client.post(
            f"{API}/payments/payouts", json={"booking_id": booking_id}, headers=tutor_headers
        )
        assert resp.status_code == 403


class TestDisputes:

    @pytest.mark.asyncio
    async def test_dispute_and_refund(self, client: AsyncClient, admin_headers, student_headers):
        booking_id, collection_id = await _awaiting_payment(client)
        await pay_and_confirm(client, collection_id)

        opened = await client.post(
            f"{API}/payments/{collection_id}/dispute",
            json={"dispute_proof_reference": "proofs/dispute-1.png", "note": "Charged twice"},
            headers=student_headers,
        )
        assert opened.status_code == 200
        assert opened.json()["dispute_status"] == "open"

        for step in ("under_review", "resolved"):
            resp = await client.patch(
                f"{API}/payments/{collection_id}/dispute",
                json={"dispute_status": step, "admin_note": f"moved to {step}"},
                headers=admin_headers,
            )
            assert resp.status_code == 200, resp.text
            assert resp.json()["dispute_status"] == step

        refunded = await client.post(f"{API}/payments/{collection_id}/refund", headers=admin_headers)
        assert refunded.status_code == 200
        assert refunded.json()["status"] == "refunded"
        assert refunded.json()["amount"] == "600.00"

        booking = await client.get(f"{API}/bookings/{booking_id}", headers=student_headers)
        assert booking.json()["status"] == "cancelled"

        history = await client.get(
            f"{API}/payments/{collection_id}/history", headers=admin_headers
        )
        entity_types = {h["entity_type"] for h in history.json()}
        assert entity_types == {"payment", "dispute"}

    @pytest.mark.asyncio
    async def test_skipping_review_returns_409(
        self, client: AsyncClient, admin_headers, student_headers
    ):
        _, collection_id = await _awaiting_payment(client)
        await pay_and_confirm(client, collection_id)
        await client.post(
            f"{API}/payments/{collection_id}/dispute",
            json={"dispute_proof_reference": "proofs/dispute-1.png"},
            headers=student_headers,
        )

        resp = await client.patch(
            f"{API}/payments/{collection_id}/dispute",
            json={"dispute_status": "resolved"},
            headers=admin_headers,
        )
        assert resp.status_code == 409
        assert resp.json()["detail"]["error"] == "invalid_transition"

    @pytest.mark.asyncio
    async def test_refund_without_dispute_returns_409(self, client: AsyncClient, admin_headers):
        _, collection_id = await _awaiting_payment(client)
        await pay_and_confirm(client, collection_id)

        resp = await client.post(f"{API}/payments/{collection_id}/refund", headers=admin_headers)
        assert resp.status_code == 409
        assert resp.json()["detail"]["error"] == "precondition_failed"


class TestPaymentListing:

    @pytest.mark.asyncio
    async def test_admin_list_with_filters(self, client: AsyncClient, admin_headers):
        booking_id, _ = await completed_booking_via_api(client)
        await client.post(
            f"{API}/payments/payouts", json={"booking_id": booking_id}, headers=admin_headers
        )
        await _awaiting_payment(client)

        everything = await client.get(f"{API}/payments", headers=admin_headers)
        assert everything.json()["meta"]["total_items"] == 3

        pending = await client.get(
            f"{API}/payments",
            params={"kind": "collection", "status": "pending"},
            headers=admin_headers,
        )
        assert pending.json()["meta"]["total_items"] == 1

    @pytest.mark.asyncio
    async def test_listing_is_admin_only(self, client: AsyncClient, student_headers):
        resp = await client.get(f"{API}/payments", headers=student_headers)
        assert resp.status_code == 403
