"""
services/reservation/lifecycle.py
Reservation state machine.

States: pending → confirmed → completed
        pending | confirmed → cancelled
Terminal: completed, cancelled

Who may move a reservation where:
  booker (owner)     → cancelled
  artist (assigned)  → confirmed | completed | cancelled
  system (payment)   → confirmed, only from pending
  admin              → delete only

`status` and `payment_status` are written exclusively by
apply_reservation_update(), which also appends the audit log row and stages
the counter-party notification in the outbox.
"""

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from services.catalog.directory import find_active_service
from services.notification.dispatcher import enqueue_event, reservation_snapshot
from services.notification.templates import RESERVATION_CREATED, RESERVATION_STATUS_CHANGED
from shared.models.models import (
    OwnerType,
    Payment,
    Reservation,
    ReservationAuditLog,
    ReservationPaymentStatus,
    ReservationStatus,
)
from shared.utils.errors import Forbidden, InvalidState, NotFound
from shared.utils.identity import resolve_acting_id, same_identity

logger = logging.getLogger(__name__)


class Actor(str, Enum):
    BOOKER = "booker"
    ARTIST = "artist"
    SYSTEM = "system"


TERMINAL_STATES = frozenset({ReservationStatus.COMPLETED, ReservationStatus.CANCELLED})

ALLOWED_TARGETS = {
    Actor.BOOKER: frozenset({ReservationStatus.CANCELLED}),
    Actor.ARTIST: frozenset({
        ReservationStatus.CONFIRMED,
        ReservationStatus.COMPLETED,
        ReservationStatus.CANCELLED,
    }),
    Actor.SYSTEM: frozenset({ReservationStatus.CONFIRMED}),
}


@dataclass
class TransitionRequest:
    reservation: Reservation
    actor: Actor
    status: Optional[ReservationStatus] = None
    payment_status: Optional[ReservationPaymentStatus] = None
    transaction_id: Optional[str] = None
    changed_by_id: Optional[UUID] = None


# ── Pure rules ────────────────────────────────────────────────

def parse_status(value) -> ReservationStatus:
    try:
        return ReservationStatus(value)
    except ValueError:
        raise InvalidState(f"Invalid reservation status '{value}'")


def check_transition(current: ReservationStatus, target: ReservationStatus, actor: Actor) -> None:
    """Raise Forbidden / InvalidState if `actor` may not move `current` to `target`."""
    if target not in ALLOWED_TARGETS[actor]:
        if actor == Actor.BOOKER:
            raise Forbidden("Organizers can only cancel a reservation")
        raise Forbidden(f"{actor.value.capitalize()} cannot set a reservation to '{target.value}'")
    if current in TERMINAL_STATES:
        raise InvalidState(f"Reservation is already {current.value}")
    if current == target:
        raise InvalidState(f"Reservation is already {current.value}")
    if actor == Actor.SYSTEM and current != ReservationStatus.PENDING:
        raise InvalidState("Payment can only confirm a pending reservation")


# ── The single writer ─────────────────────────────────────────

def apply_reservation_update(db: AsyncSession, request: TransitionRequest) -> Optional[ReservationStatus]:
    """
    Write status and/or payment_status together. Returns the previous status
    when the status changed, else None. The version column makes a concurrent
    write against the same row fail at flush with StaleDataError.
    """
    reservation = request.reservation
    previous_status = reservation.status
    previous_payment_status = reservation.payment_status

    status_changed = False
    if request.status is not None:
        check_transition(previous_status, request.status, request.actor)
        reservation.status = request.status
        status_changed = True

    if request.payment_status is not None:
        reservation.payment_status = request.payment_status
    if request.transaction_id:
        reservation.transaction_id = request.transaction_id

    if not status_changed and reservation.payment_status == previous_payment_status:
        return None

    db.add(ReservationAuditLog(
        reservation_id=reservation.id,
        actor=request.actor.value,
        from_status=previous_status.value,
        to_status=reservation.status.value,
        from_payment_status=previous_payment_status.value,
        to_payment_status=reservation.payment_status.value,
        changed_by_id=request.changed_by_id,
    ))

    if not status_changed:
        return None

    enqueue_event(db, RESERVATION_STATUS_CHANGED, {
        "reservation": reservation_snapshot(reservation),
        "previous_status": previous_status.value,
        "actor": request.actor.value,
    })
    logger.info(
        f"Reservation {reservation.id}: {previous_status.value} -> {reservation.status.value} "
        f"by {request.actor.value}"
    )
    return previous_status


# ── Lookups & ownership ───────────────────────────────────────

async def get_reservation_or_404(db: AsyncSession, reservation_id: UUID) -> Reservation:
    result = await db.execute(select(Reservation).where(Reservation.id == reservation_id))
    reservation = result.scalar_one_or_none()
    if not reservation:
        raise NotFound(f"Reservation not found with id {reservation_id}")
    return reservation


def party_actor(principal, reservation: Reservation) -> Actor:
    """Which side of the reservation the principal is on; Forbidden if neither."""
    if principal.role == OwnerType.BOOKER.value:
        booker_id = resolve_acting_id(principal, OwnerType.BOOKER)
        if same_identity(booker_id, reservation.booker_id):
            return Actor.BOOKER
    elif principal.role == OwnerType.ARTIST.value:
        artist_id = resolve_acting_id(principal, OwnerType.ARTIST)
        if same_identity(artist_id, reservation.artist_id):
            return Actor.ARTIST
    raise Forbidden("Not authorized to access this reservation")


async def get_reservation_for_party(db: AsyncSession, principal, reservation_id: UUID) -> Reservation:
    reservation = await get_reservation_or_404(db, reservation_id)
    party_actor(principal, reservation)
    return reservation


# ── Operations ────────────────────────────────────────────────

async def create_reservation(
    db: AsyncSession,
    booker_id: UUID,
    service_id: UUID,
    event_date: date,
    start_time: str,
    end_time: str,
    location: str,
    event_type: str,
    notes: Optional[str] = None,
    amount: Optional[Decimal] = None,
    service_fee: Decimal = Decimal("0"),
    payment_method=None,
) -> Reservation:
    service = await find_active_service(db, service_id)

    reservation = Reservation(
        booker_id=booker_id,
        artist_id=service.artist_id,
        service_id=service.id,
        service=service,
        status=ReservationStatus.PENDING,
        payment_status=ReservationPaymentStatus.PENDING,
        event_date=event_date,
        start_time=start_time,
        end_time=end_time,
        location=location,
        event_type=event_type,
        notes=notes,
        amount=amount if amount is not None else service.price,
        service_fee=service_fee,
        payment_method=payment_method,
    )
    db.add(reservation)
    await db.flush()

    enqueue_event(db, RESERVATION_CREATED, {"reservation": reservation_snapshot(reservation)})
    logger.info(f"Reservation {reservation.id} created by booker {booker_id}")
    return reservation


async def transition_status(db: AsyncSession, principal, reservation_id: UUID, raw_status) -> Reservation:
    """Status change requested by one of the parties."""
    target = parse_status(raw_status)
    reservation = await get_reservation_or_404(db, reservation_id)
    if principal.is_admin:
        raise Forbidden("Admins can only delete reservations")
    actor = party_actor(principal, reservation)

    apply_reservation_update(db, TransitionRequest(
        reservation=reservation,
        actor=actor,
        status=target,
        changed_by_id=principal.user_id,
    ))
    await db.flush()
    return reservation


async def update_payment_status(
    db: AsyncSession,
    principal,
    reservation_id: UUID,
    payment_status: str,
    transaction_id: Optional[str] = None,
) -> Reservation:
    """Direct payment_status update by the owning booker."""
    reservation = await get_reservation_or_404(db, reservation_id)
    booker_id = resolve_acting_id(principal, OwnerType.BOOKER)
    if not same_identity(booker_id, reservation.booker_id):
        raise Forbidden("Not authorized to update this reservation")

    apply_reservation_update(db, TransitionRequest(
        reservation=reservation,
        actor=Actor.BOOKER,
        payment_status=ReservationPaymentStatus(payment_status),
        transaction_id=transaction_id,
        changed_by_id=principal.user_id,
    ))
    await db.flush()
    return reservation


async def delete_reservation(db: AsyncSession, principal, reservation_id: UUID) -> None:
    """Hard delete by the owning booker or an admin. Payments keep their history."""
    reservation = await get_reservation_or_404(db, reservation_id)
    if not principal.is_admin:
        booker_id = resolve_acting_id(principal, OwnerType.BOOKER)
        if not same_identity(booker_id, reservation.booker_id):
            raise Forbidden("Not authorized to delete this reservation")

    await db.execute(
        update(Payment)
        .where(Payment.reservation_id == reservation.id)
        .values(reservation_id=None)
        .execution_options(synchronize_session=False)
    )
    await db.delete(reservation)
    await db.flush()
    logger.info(f"Reservation {reservation.id} deleted by user {principal.user_id}")
