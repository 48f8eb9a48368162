"""
tests/test_payment_webhook.py
Deferred settlement: payments created in webhook mode and settled later by
gateway callbacks. Covers redelivery, invalid transitions and signatures.
"""

import json
import uuid

import pytest
from httpx import AsyncClient
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from shared.models.models import (
    Notification,
    NotificationType,
    Payment,
    PaymentStatus,
    Reservation,
    ReservationPaymentStatus,
    ReservationStatus,
    User,
)
from shared.utils.security import sign_webhook_payload
from tests.conftest import auth_headers


@pytest.fixture
async def pending_payment(client: AsyncClient, booker: User, reservation: Reservation, monkeypatch) -> dict:
    monkeypatch.setattr(settings, "PAYMENT_SETTLEMENT_MODE", "webhook")
    response = await client.post(
        "/payments",
        headers=auth_headers(booker),
        json={
            "reservation_id": str(reservation.id),
            "amount": "500",
            "service_fee": "25",
            "payment_method": "wave",
        },
    )
    assert response.status_code == 201
    return response.json()["data"]


async def _count(db: AsyncSession, notification_type: NotificationType) -> int:
    return await db.scalar(
        select(func.count(Notification.id)).where(Notification.type == notification_type)
    )


@pytest.mark.asyncio
async def test_webhook_mode_leaves_payment_pending(
    db: AsyncSession, pending_payment: dict, reservation: Reservation
):
    assert pending_payment["status"] == "pending"
    assert pending_payment["transaction_id"] is None

    await db.refresh(reservation)
    assert reservation.status == ReservationStatus.PENDING
    assert reservation.payment_status == ReservationPaymentStatus.PENDING

    total = await db.scalar(select(func.count(Notification.id)))
    assert total == 0


@pytest.mark.asyncio
async def test_webhook_completes_payment(
    client: AsyncClient, db: AsyncSession, pending_payment: dict, reservation: Reservation, booker: User
):
    response = await client.post(
        f"/payments/{pending_payment['id']}/webhook",
        json={"status": "completed", "transaction_id": "gw_001"},
    )
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["status"] == "completed"
    assert data["transaction_id"] == "gw_001"

    await db.refresh(reservation)
    assert reservation.payment_status == ReservationPaymentStatus.PAID
    assert reservation.status == ReservationStatus.CONFIRMED

    assert await _count(db, NotificationType.PAYMENT_CONFIRMED) == 2
    assert await _count(db, NotificationType.RESERVATION_CONFIRMED) == 1


@pytest.mark.asyncio
async def test_webhook_redelivery_is_idempotent(
    client: AsyncClient, db: AsyncSession, pending_payment: dict
):
    url = f"/payments/{pending_payment['id']}/webhook"
    body = {"status": "completed", "transaction_id": "gw_001"}

    first = await client.post(url, json=body)
    second = await client.post(url, json=body)
    assert first.status_code == 200
    assert second.status_code == 200
    assert second.json()["data"]["status"] == "completed"

    assert await _count(db, NotificationType.PAYMENT_CONFIRMED) == 2


@pytest.mark.asyncio
async def test_webhook_in_flight_claim_is_acknowledged(
    client: AsyncClient, db: AsyncSession, redis, pending_payment: dict
):
    """A delivery already being handled elsewhere is acknowledged without applying."""
    await redis.set(f"claim:payment_webhook:{pending_payment['id']}:completed:gw_001", "other-instance")

    response = await client.post(
        f"/payments/{pending_payment['id']}/webhook",
        json={"status": "completed", "transaction_id": "gw_001"},
    )
    assert response.status_code == 200
    assert response.json()["data"]["status"] == "pending"
    assert await _count(db, NotificationType.PAYMENT_CONFIRMED) == 0


@pytest.mark.asyncio
async def test_webhook_failure_marks_reservation(
    client: AsyncClient, db: AsyncSession, pending_payment: dict, reservation: Reservation
):
    response = await client.post(
        f"/payments/{pending_payment['id']}/webhook", json={"status": "failed"}
    )
    assert response.status_code == 200
    assert response.json()["data"]["status"] == "failed"

    await db.refresh(reservation)
    assert reservation.payment_status == ReservationPaymentStatus.FAILED
    assert reservation.status == ReservationStatus.PENDING
    assert await _count(db, NotificationType.PAYMENT_FAILED) == 2


@pytest.mark.asyncio
async def test_webhook_rejects_invalid_transition(
    client: AsyncClient, db: AsyncSession, pending_payment: dict
):
    url = f"/payments/{pending_payment['id']}/webhook"
    await client.post(url, json={"status": "failed"})

    response = await client.post(url, json={"status": "completed"})
    assert response.status_code == 400
    assert response.json()["code"] == "invalid_state"

    payment = await db.get(Payment, uuid.UUID(pending_payment["id"]))
    assert payment.status == PaymentStatus.FAILED


@pytest.mark.asyncio
async def test_webhook_refund(
    client: AsyncClient, db: AsyncSession, pending_payment: dict, reservation: Reservation
):
    url = f"/payments/{pending_payment['id']}/webhook"
    await client.post(url, json={"status": "completed", "transaction_id": "gw_001"})

    response = await client.post(url, json={"status": "refunded"})
    assert response.status_code == 200
    assert response.json()["data"]["status"] == "refunded"

    await db.refresh(reservation)
    assert reservation.payment_status == ReservationPaymentStatus.REFUNDED
    assert await _count(db, NotificationType.PAYMENT_REFUNDED) == 2


async def _pending_advance(client: AsyncClient, booker: User, reservation: Reservation) -> dict:
    response = await client.post(
        "/payments",
        headers=auth_headers(booker),
        json={
            "reservation_id": str(reservation.id),
            "amount": "200",
            "payment_method": "wave",
            "payment_type": "advance",
        },
    )
    assert response.status_code == 201
    return response.json()["data"]


@pytest.mark.asyncio
async def test_late_advance_does_not_downgrade_paid_reservation(
    client: AsyncClient, db: AsyncSession, booker: User, pending_payment: dict, reservation: Reservation
):
    advance = await _pending_advance(client, booker, reservation)

    await client.post(
        f"/payments/{pending_payment['id']}/webhook",
        json={"status": "completed", "transaction_id": "gw_full"},
    )
    response = await client.post(
        f"/payments/{advance['id']}/webhook",
        json={"status": "completed", "transaction_id": "gw_adv"},
    )
    assert response.status_code == 200
    assert response.json()["data"]["status"] == "completed"

    await db.refresh(reservation)
    assert reservation.payment_status == ReservationPaymentStatus.PAID
    assert reservation.status == ReservationStatus.CONFIRMED


@pytest.mark.asyncio
async def test_refund_keeps_status_while_other_payments_stand(
    client: AsyncClient, db: AsyncSession, booker: User, pending_payment: dict, reservation: Reservation
):
    advance = await _pending_advance(client, booker, reservation)
    advance_url = f"/payments/{advance['id']}/webhook"
    full_url = f"/payments/{pending_payment['id']}/webhook"

    await client.post(advance_url, json={"status": "completed", "transaction_id": "gw_adv"})
    await client.post(full_url, json={"status": "completed", "transaction_id": "gw_full"})

    response = await client.post(advance_url, json={"status": "refunded"})
    assert response.status_code == 200
    await db.refresh(reservation)
    assert reservation.payment_status == ReservationPaymentStatus.PAID

    response = await client.post(full_url, json={"status": "refunded"})
    assert response.status_code == 200
    await db.refresh(reservation)
    assert reservation.payment_status == ReservationPaymentStatus.REFUNDED


@pytest.mark.asyncio
async def test_refunding_the_balance_falls_back_to_partial(
    client: AsyncClient, db: AsyncSession, booker: User, pending_payment: dict, reservation: Reservation
):
    advance = await _pending_advance(client, booker, reservation)
    await client.post(
        f"/payments/{advance['id']}/webhook", json={"status": "completed", "transaction_id": "gw_adv"}
    )
    full_url = f"/payments/{pending_payment['id']}/webhook"
    await client.post(full_url, json={"status": "completed", "transaction_id": "gw_full"})

    await client.post(full_url, json={"status": "refunded"})
    await db.refresh(reservation)
    assert reservation.payment_status == ReservationPaymentStatus.PARTIAL


@pytest.mark.asyncio
async def test_webhook_unknown_payment(client: AsyncClient):
    response = await client.post(
        "/payments/00000000-0000-0000-0000-000000000000/webhook", json={"status": "completed"}
    )
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_webhook_unknown_status(client: AsyncClient, pending_payment: dict):
    response = await client.post(
        f"/payments/{pending_payment['id']}/webhook", json={"status": "lost"}
    )
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_webhook_signature_required_when_secret_set(
    client: AsyncClient, pending_payment: dict, monkeypatch
):
    monkeypatch.setattr(settings, "PAYMENT_WEBHOOK_SECRET", "whsec_test")
    url = f"/payments/{pending_payment['id']}/webhook"
    body = json.dumps({"status": "completed", "transaction_id": "gw_002"}).encode()
    headers = {"Content-Type": "application/json"}

    response = await client.post(url, content=body, headers=headers)
    assert response.status_code == 403

    response = await client.post(
        url, content=body, headers={**headers, "X-Webhook-Signature": "deadbeef"}
    )
    assert response.status_code == 403

    response = await client.post(
        url, content=body, headers={**headers, "X-Webhook-Signature": sign_webhook_payload(body)}
    )
    assert response.status_code == 200
    assert response.json()["data"]["status"] == "completed"
