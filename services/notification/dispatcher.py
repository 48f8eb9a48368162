"""
services/notification/dispatcher.py
Fire-and-forget notification delivery through a transactional outbox.

Engines call `enqueue_event()` inside their own transaction. Once the route has
committed, `dispatch_session_events()` turns those events into Notification
rows in a fresh session. Nothing here ever raises to the caller: a failed
dispatch is logged and left for the Celery drain (tasks/notification_tasks.py).
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db_context
from config.settings import settings
from services.notification.templates import build_notifications
from shared.models.models import (
    Notification,
    NotificationOutbox,
    OutboxState,
    Payment,
    Reservation,
)

logger = logging.getLogger(__name__)

_SESSION_KEY = "outbox_event_ids"
_ID_FIELDS = ("recipient_id", "sender_id", "related_id")


# ── Snapshots (plain JSON, no ORM objects in the payload) ─────

def _enum_value(value):
    return getattr(value, "value", value)


def reservation_snapshot(reservation: Reservation) -> dict:
    return {
        "id": str(reservation.id),
        "booker_id": str(reservation.booker_id),
        "artist_id": str(reservation.artist_id),
        "service_id": str(reservation.service_id),
        "status": _enum_value(reservation.status),
        "payment_status": _enum_value(reservation.payment_status),
        "event_date": reservation.event_date.isoformat(),
        "start_time": reservation.start_time,
        "end_time": reservation.end_time,
        "location": reservation.location,
    }


def payment_snapshot(payment: Payment) -> dict:
    return {
        "id": str(payment.id),
        "reference": payment.reference,
        "amount": str(payment.amount),
        "total_amount": str(payment.total_amount),
        "payment_type": _enum_value(payment.payment_type),
        "payment_method": _enum_value(payment.payment_method),
        "status": _enum_value(payment.status),
        "currency": settings.CURRENCY_LABEL,
    }


# ── Producer side ─────────────────────────────────────────────

def enqueue_event(db: AsyncSession, event_type: str, payload: dict) -> NotificationOutbox:
    """Stage an outbox event in the caller's transaction."""
    event = NotificationOutbox(
        id=uuid.uuid4(),
        event_type=event_type,
        payload=payload,
        state=OutboxState.PENDING,
        attempts=0,
    )
    db.add(event)
    db.info.setdefault(_SESSION_KEY, []).append(event.id)
    return event


def pop_session_events(db: AsyncSession) -> List[uuid.UUID]:
    return db.info.pop(_SESSION_KEY, [])


# ── Delivery ──────────────────────────────────────────────────

def _row(values: dict) -> Notification:
    values = dict(values)
    for key in _ID_FIELDS:
        if values.get(key) is not None:
            values[key] = uuid.UUID(str(values[key]))
    return Notification(**values)


def deliver_event(event: NotificationOutbox) -> Optional[List[Notification]]:
    """
    Build the notifications for one event and update its bookkeeping.
    Returns the rows to add, or None when the event could not be rendered.
    Shared by the async dispatcher and the sync Celery drain.
    """
    try:
        rows = [_row(values) for values in build_notifications(event.event_type, event.payload)]
    except Exception as exc:
        logger.exception(f"Could not render outbox event {event.id} ({event.event_type})")
        event.attempts = (event.attempts or 0) + 1
        event.last_error = str(exc)[:1000]
        if event.attempts >= settings.NOTIFICATION_OUTBOX_MAX_ATTEMPTS:
            event.state = OutboxState.FAILED
        return None

    event.attempts = (event.attempts or 0) + 1
    event.state = OutboxState.DISPATCHED
    event.dispatched_at = datetime.now(timezone.utc)
    event.last_error = None
    return rows


async def dispatch_events(event_ids: Sequence[uuid.UUID]) -> int:
    """Deliver the given committed outbox events. Returns the notification count."""
    if not event_ids:
        return 0

    created = 0
    try:
        async with get_db_context() as db:
            result = await db.execute(
                select(NotificationOutbox)
                .where(
                    NotificationOutbox.id.in_(list(event_ids)),
                    NotificationOutbox.state == OutboxState.PENDING,
                )
                .order_by(NotificationOutbox.created_at)
            )
            for event in result.scalars().all():
                rows = deliver_event(event)
                if rows:
                    db.add_all(rows)
                    created += len(rows)
    except Exception:
        logger.exception(f"Notification dispatch failed for {len(event_ids)} event(s)")
        return 0

    return created


async def dispatch_session_events(db: AsyncSession) -> int:
    """Call after `db.commit()`: deliver every event the session enqueued."""
    return await dispatch_events(pop_session_events(db))
