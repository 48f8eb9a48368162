"""
services/notification/templates.py
Turns outbox events into recipient-addressed notification rows.

Pure functions: the same payload always yields the same notifications, so the
inline dispatcher and the Celery drain produce identical output.
"""

from decimal import Decimal, InvalidOperation
from typing import List

from shared.models.models import NotificationType, OwnerType, RelatedModel

# ── Event types ───────────────────────────────────────────────
RESERVATION_CREATED = "reservation.created"
RESERVATION_STATUS_CHANGED = "reservation.status_changed"
PAYMENT_EVENT = "payment.event"

PAYMENT_ACTION_TYPES = {
    "created": NotificationType.PAYMENT_RECEIVED,
    "confirmed": NotificationType.PAYMENT_CONFIRMED,
    "refunded": NotificationType.PAYMENT_REFUNDED,
    "failed": NotificationType.PAYMENT_FAILED,
}

STATUS_TYPES = {
    "confirmed": NotificationType.RESERVATION_CONFIRMED,
    "completed": NotificationType.RESERVATION_COMPLETED,
    "cancelled": NotificationType.RESERVATION_CANCELLED,
}


class UnknownEvent(ValueError):
    pass


def _format_amount(value) -> str:
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, TypeError):
        return str(value)
    if amount == amount.to_integral_value():
        return f"{amount:,.0f}"
    return f"{amount:,.2f}"


def _reservation_link(reservation: dict) -> dict:
    return {
        "related_id": reservation["id"],
        "related_type": RelatedModel.RESERVATION,
    }


def _to_artist(reservation: dict) -> dict:
    return {
        "recipient_id": reservation["artist_id"],
        "recipient_type": OwnerType.ARTIST,
        "sender_id": reservation["booker_id"],
        "sender_type": OwnerType.BOOKER,
    }


def _to_booker(reservation: dict) -> dict:
    return {
        "recipient_id": reservation["booker_id"],
        "recipient_type": OwnerType.BOOKER,
        "sender_id": reservation["artist_id"],
        "sender_type": OwnerType.ARTIST,
    }


# ── Builders ──────────────────────────────────────────────────

def _new_reservation(payload: dict) -> List[dict]:
    r = payload["reservation"]
    return [{
        **_to_artist(r),
        **_reservation_link(r),
        "type": NotificationType.NEW_RESERVATION,
        "title": "New reservation",
        "message": f"You have a new reservation for {r['event_date']}",
        "data": {
            "reservation_id": r["id"],
            "service_id": r["service_id"],
            "date": r["event_date"],
            "start_time": r["start_time"],
            "end_time": r["end_time"],
            "location": r["location"],
        },
    }]


def _status_changed(payload: dict) -> List[dict]:
    r = payload["reservation"]
    new_status = r["status"]
    actor = payload["actor"]
    day = r["event_date"]

    if new_status not in STATUS_TYPES:
        return []

    if actor == "booker":
        # Only cancellation is open to bookers; tell the artist.
        addressing = _to_artist(r)
        title = "Reservation cancelled"
        message = f"The reservation for {day} has been cancelled by the organizer"
    else:
        addressing = _to_booker(r)
        if new_status == "confirmed":
            title = "Reservation confirmed"
            message = (
                f"Your reservation for {day} has been confirmed following your payment"
                if actor == "system"
                else f"Your reservation for {day} has been confirmed by the artist"
            )
        elif new_status == "completed":
            title = "Reservation completed"
            message = f"Your reservation for {day} is now completed"
        else:
            title = "Reservation cancelled"
            message = f"Your reservation for {day} has been cancelled"

    return [{
        **addressing,
        **_reservation_link(r),
        "type": STATUS_TYPES[new_status],
        "title": title,
        "message": message,
        "data": {
            "reservation_id": r["id"],
            "service_id": r["service_id"],
            "previous_status": payload.get("previous_status"),
            "new_status": new_status,
            "date": day,
            "start_time": r["start_time"],
            "end_time": r["end_time"],
        },
    }]


_PAYMENT_TEXT = {
    # action: (artist title, artist verb, booker title, booker verb)
    "created": ("Payment received", "received", "Payment made", "processed successfully"),
    "confirmed": ("Payment confirmed", "confirmed", "Payment confirmed", "confirmed"),
    "refunded": ("Payment refunded", "refunded", "Payment refunded", "refunded"),
    "failed": ("Payment failed", "declined", "Payment failed", "declined"),
}


def _payment_event(payload: dict) -> List[dict]:
    r = payload["reservation"]
    p = payload["payment"]
    action = payload["action"]
    if action not in PAYMENT_ACTION_TYPES:
        raise UnknownEvent(f"Unknown payment action '{action}'")

    artist_title, artist_verb, booker_title, booker_verb = _PAYMENT_TEXT[action]
    noun = "An advance" if p["payment_type"] == "advance" else "A payment"
    own_noun = "advance" if p["payment_type"] == "advance" else "payment"
    amount = f"{_format_amount(p['amount'])} {p.get('currency', '')}".strip()
    day = r["event_date"]

    data = {
        "payment_id": p["id"],
        "reservation_id": r["id"],
        "amount": p["amount"],
        "payment_type": p["payment_type"],
        "payment_method": p["payment_method"],
        "reference": p["reference"],
        "action": action,
        "date": payload.get("occurred_at"),
    }
    notification_type = PAYMENT_ACTION_TYPES[action]

    return [
        {
            **_to_artist(r),
            **_reservation_link(r),
            "type": notification_type,
            "title": artist_title,
            "message": f"{noun} of {amount} was {artist_verb} for the reservation on {day}",
            "data": data,
        },
        {
            **_to_booker(r),
            **_reservation_link(r),
            "type": notification_type,
            "title": booker_title,
            "message": f"Your {own_noun} of {amount} for the reservation on {day} was {booker_verb}",
            "data": data,
        },
    ]


_BUILDERS = {
    RESERVATION_CREATED: _new_reservation,
    RESERVATION_STATUS_CHANGED: _status_changed,
    PAYMENT_EVENT: _payment_event,
}


def build_notifications(event_type: str, payload: dict) -> List[dict]:
    """
    Return Notification column values for one outbox event.
    Raises UnknownEvent for event types nobody handles.
    """
    builder = _BUILDERS.get(event_type)
    if builder is None:
        raise UnknownEvent(f"Unknown notification event '{event_type}'")
    return builder(payload)
