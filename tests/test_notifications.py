"""
tests/test_notifications.py
Notification inbox, template rendering, and the fire-and-forget guarantee:
a failing dispatch never undoes the reservation or payment that caused it.
"""

import pytest
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

import services.notification.dispatcher as dispatcher
from services.notification.templates import (
    PAYMENT_EVENT,
    RESERVATION_STATUS_CHANGED,
    UnknownEvent,
    build_notifications,
)
from shared.models.models import (
    Notification,
    NotificationOutbox,
    NotificationType,
    OutboxState,
    OwnerType,
    Reservation,
    ReservationStatus,
    User,
)
from tests.conftest import auth_headers


def _note(recipient: User, recipient_type: OwnerType, title: str = "Hello", **extra) -> Notification:
    values = dict(
        recipient_id=recipient.id,
        recipient_type=recipient_type,
        type=NotificationType.NEW_RESERVATION,
        title=title,
        message=f"{title} message",
    )
    values.update(extra)
    return Notification(**values)


@pytest.fixture
async def inbox(db: AsyncSession, booker: User, artist: User):
    notes = [
        _note(booker, OwnerType.BOOKER, "First"),
        _note(booker, OwnerType.BOOKER, "Second"),
        _note(booker, OwnerType.BOOKER, "Old", is_read=True),
        _note(artist, OwnerType.ARTIST, "For the artist"),
    ]
    db.add_all(notes)
    await db.commit()
    return notes


# ── Inbox ──────────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_list_own_notifications(client: AsyncClient, booker: User, inbox):
    response = await client.get("/notifications", headers=auth_headers(booker))
    assert response.status_code == 200
    body = response.json()
    assert body["count"] == 3
    assert {n["title"] for n in body["data"]} == {"First", "Second", "Old"}

    response = await client.get("/notifications?unread_only=true", headers=auth_headers(booker))
    assert response.json()["count"] == 2


@pytest.mark.asyncio
async def test_unread_count(client: AsyncClient, booker: User, artist: User, inbox):
    response = await client.get("/notifications/unread-count", headers=auth_headers(booker))
    assert response.json()["data"]["unread_count"] == 2

    response = await client.get("/notifications/unread-count", headers=auth_headers(artist))
    assert response.json()["data"]["unread_count"] == 1


@pytest.mark.asyncio
async def test_mark_read(client: AsyncClient, booker: User, inbox):
    note = inbox[0]
    response = await client.patch(f"/notifications/{note.id}/read", headers=auth_headers(booker))
    assert response.status_code == 200
    assert response.json()["data"]["is_read"] is True
    assert response.json()["data"]["read_at"] is not None

    response = await client.get("/notifications/unread-count", headers=auth_headers(booker))
    assert response.json()["data"]["unread_count"] == 1


@pytest.mark.asyncio
async def test_mark_all_read(client: AsyncClient, booker: User, artist: User, inbox):
    response = await client.patch("/notifications/read-all", headers=auth_headers(booker))
    assert response.status_code == 200
    assert response.json()["data"]["updated"] == 2

    response = await client.get("/notifications/unread-count", headers=auth_headers(artist))
    assert response.json()["data"]["unread_count"] == 1


@pytest.mark.asyncio
async def test_delete_notification(client: AsyncClient, db: AsyncSession, booker: User, inbox):
    note_id = inbox[0].id
    response = await client.delete(f"/notifications/{note_id}", headers=auth_headers(booker))
    assert response.status_code == 200

    remaining = await db.scalar(select(Notification.id).where(Notification.id == note_id))
    assert remaining is None


@pytest.mark.asyncio
async def test_cannot_touch_someone_elses_notification(
    client: AsyncClient, booker: User, other_booker: User, artist: User, inbox
):
    note = inbox[0]
    for user in (other_booker, artist):
        response = await client.patch(f"/notifications/{note.id}/read", headers=auth_headers(user))
        assert response.status_code == 403
        response = await client.delete(f"/notifications/{note.id}", headers=auth_headers(user))
        assert response.status_code == 403


@pytest.mark.asyncio
async def test_unknown_notification(client: AsyncClient, booker: User):
    response = await client.patch(
        "/notifications/00000000-0000-0000-0000-000000000000/read", headers=auth_headers(booker)
    )
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_admin_has_no_inbox(client: AsyncClient, admin: User):
    response = await client.get("/notifications", headers=auth_headers(admin))
    assert response.status_code == 400
    assert response.json()["code"] == "identity_missing"


# ── Dispatch failures ──────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_dispatch_failure_does_not_roll_back_transition(
    client: AsyncClient, db: AsyncSession, booker: User, reservation: Reservation, monkeypatch
):
    def broken(event_type, payload):
        raise RuntimeError("template store unavailable")

    monkeypatch.setattr(dispatcher, "build_notifications", broken)

    response = await client.patch(
        f"/reservations/{reservation.id}/status",
        headers=auth_headers(booker),
        json={"status": "cancelled"},
    )
    assert response.status_code == 200

    await db.refresh(reservation)
    assert reservation.status == ReservationStatus.CANCELLED

    assert (await db.execute(select(Notification))).scalars().all() == []

    event = (await db.execute(select(NotificationOutbox))).scalar_one()
    assert event.state == OutboxState.PENDING
    assert event.attempts == 1
    assert "template store unavailable" in event.last_error


@pytest.mark.asyncio
async def test_dispatch_session_error_is_swallowed(
    client: AsyncClient, db: AsyncSession, booker: User, reservation: Reservation, monkeypatch
):
    def failing_context():
        raise RuntimeError("database went away")

    monkeypatch.setattr(dispatcher, "get_db_context", failing_context)

    response = await client.patch(
        f"/reservations/{reservation.id}/status",
        headers=auth_headers(booker),
        json={"status": "cancelled"},
    )
    assert response.status_code == 200

    event = (await db.execute(select(NotificationOutbox))).scalar_one()
    assert event.state == OutboxState.PENDING
    assert event.attempts == 0


# ── Templates ──────────────────────────────────────────────────────────────────

def _reservation_payload(status: str) -> dict:
    return {
        "id": "7f0e4c1a-0000-4000-8000-000000000001",
        "booker_id": "7f0e4c1a-0000-4000-8000-000000000002",
        "artist_id": "7f0e4c1a-0000-4000-8000-000000000003",
        "service_id": "7f0e4c1a-0000-4000-8000-000000000004",
        "status": status,
        "payment_status": "pending",
        "event_date": "2030-06-01",
        "start_time": "18:00",
        "end_time": "20:00",
        "location": "Abidjan",
    }


def test_booker_cancellation_goes_to_artist():
    reservation = _reservation_payload("cancelled")
    [note] = build_notifications(RESERVATION_STATUS_CHANGED, {
        "reservation": reservation, "previous_status": "pending", "actor": "booker",
    })
    assert note["recipient_id"] == reservation["artist_id"]
    assert note["recipient_type"] == OwnerType.ARTIST
    assert note["type"] == NotificationType.RESERVATION_CANCELLED


def test_system_confirmation_goes_to_booker():
    reservation = _reservation_payload("confirmed")
    [note] = build_notifications(RESERVATION_STATUS_CHANGED, {
        "reservation": reservation, "previous_status": "pending", "actor": "system",
    })
    assert note["recipient_id"] == reservation["booker_id"]
    assert "following your payment" in note["message"]


def test_payment_event_addresses_both_parties():
    reservation = _reservation_payload("confirmed")
    payment = {
        "id": "7f0e4c1a-0000-4000-8000-000000000005",
        "reference": "PAY-20300101-12345",
        "amount": "150000",
        "total_amount": "152500",
        "payment_type": "advance",
        "payment_method": "orange",
        "status": "completed",
        "currency": "FCFA",
    }
    notes = build_notifications(PAYMENT_EVENT, {
        "payment": payment, "reservation": reservation, "action": "created",
    })
    assert [n["recipient_type"] for n in notes] == [OwnerType.ARTIST, OwnerType.BOOKER]
    assert all(n["type"] == NotificationType.PAYMENT_RECEIVED for n in notes)
    assert notes[0]["message"].startswith("An advance of 150,000 FCFA")


def test_unknown_event_type_raises():
    with pytest.raises(UnknownEvent):
        build_notifications("reservation.archived", {})
