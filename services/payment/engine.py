"""
services/payment/engine.py
Payment creation, payment status transitions, and their effect on the
reservation they settle.

Payment status machine:
  pending    → processing | completed | failed
  processing → completed | failed
  completed  → refunded
"""

import logging
import random
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from tenacity import retry, retry_if_exception_type, stop_after_attempt

from config.settings import settings
from services.notification.dispatcher import (
    enqueue_event,
    payment_snapshot,
    reservation_snapshot,
)
from services.notification.templates import PAYMENT_EVENT
from services.payment.gateway import SimulatedGateway, get_gateway
from services.reservation.lifecycle import (
    Actor,
    TransitionRequest,
    apply_reservation_update,
    get_reservation_or_404,
)
from shared.models.models import (
    OwnerType,
    Payment,
    PaymentMethod,
    PaymentMethodType,
    PaymentStatus,
    PaymentType,
    Reservation,
    ReservationPaymentStatus,
    ReservationStatus,
)
from shared.utils.errors import Conflict, Forbidden, InvalidState, NotFound, ValidationError
from shared.utils.identity import same_identity
from shared.utils.security import mask_card_details

logger = logging.getLogger(__name__)

PAYMENT_TRANSITIONS = {
    PaymentStatus.PENDING: frozenset({
        PaymentStatus.PROCESSING,
        PaymentStatus.COMPLETED,
        PaymentStatus.FAILED,
    }),
    PaymentStatus.PROCESSING: frozenset({PaymentStatus.COMPLETED, PaymentStatus.FAILED}),
    PaymentStatus.COMPLETED: frozenset({PaymentStatus.REFUNDED}),
    PaymentStatus.FAILED: frozenset(),
    PaymentStatus.REFUNDED: frozenset(),
}


class ReferenceCollision(Conflict):
    default_message = "Could not allocate a unique payment reference"


# ── References ────────────────────────────────────────────────

def generate_reference(now: Optional[datetime] = None) -> str:
    """Human-readable reference, e.g. PAY-20240315-48213."""
    now = now or datetime.now(timezone.utc)
    return f"PAY-{now:%Y%m%d}-{random.randint(10000, 99999)}"


@retry(
    stop=stop_after_attempt(settings.PAYMENT_REFERENCE_MAX_ATTEMPTS),
    retry=retry_if_exception_type(ReferenceCollision),
    reraise=True,
)
async def allocate_reference(db: AsyncSession) -> str:
    """Pick a reference nobody holds yet. The unique index is the final guard."""
    reference = generate_reference()
    taken = await db.scalar(select(Payment.id).where(Payment.reference == reference))
    if taken is not None:
        logger.warning(f"Payment reference collision on {reference}, retrying")
        raise ReferenceCollision()
    return reference


@retry(
    stop=stop_after_attempt(settings.PAYMENT_REFERENCE_MAX_ATTEMPTS),
    retry=retry_if_exception_type(ReferenceCollision),
    reraise=True,
)
async def insert_with_reference(db: AsyncSession, payment: Payment) -> Payment:
    """
    Insert the payment under a SAVEPOINT. A concurrent writer can take the
    same reference between the lookup and the insert; the unique index then
    rejects the row and a fresh reference is drawn.
    """
    payment.reference = await allocate_reference(db)
    try:
        async with db.begin_nested():
            db.add(payment)
    except IntegrityError as exc:
        if "reference" not in str(exc.orig):
            raise
        logger.warning(f"Payment reference {payment.reference} taken at insert, retrying")
        raise ReferenceCollision() from exc
    return payment


# ── Helpers ───────────────────────────────────────────────────

async def _settled_payment_status(
    db: AsyncSession, reservation_id: UUID, excluding: UUID
) -> ReservationPaymentStatus:
    """Payment status a reservation falls back to once one of its payments is refunded."""
    result = await db.execute(
        select(Payment.payment_type).where(
            Payment.reservation_id == reservation_id,
            Payment.id != excluding,
            Payment.status == PaymentStatus.COMPLETED,
        )
    )
    remaining = set(result.scalars().all())
    if not remaining:
        return ReservationPaymentStatus.REFUNDED
    if remaining == {PaymentType.ADVANCE}:
        return ReservationPaymentStatus.PARTIAL
    return ReservationPaymentStatus.PAID



def sanitize_details(method: PaymentMethodType, details: Optional[dict]) -> Optional[dict]:
    return mask_card_details(details, is_card=method == PaymentMethodType.CREDIT_CARD)


def check_payment_transition(current: PaymentStatus, target: PaymentStatus) -> None:
    if target not in PAYMENT_TRANSITIONS[current]:
        raise InvalidState(f"Cannot move payment from '{current.value}' to '{target.value}'")


def _stage_payment_event(db: AsyncSession, payment: Payment, reservation: Optional[Reservation], action: str) -> None:
    if reservation is None:
        # Reservation deleted since: nobody left to address.
        return
    enqueue_event(db, PAYMENT_EVENT, {
        "payment": payment_snapshot(payment),
        "reservation": reservation_snapshot(reservation),
        "action": action,
        "occurred_at": datetime.now(timezone.utc).isoformat(),
    })


def complete_payment(
    db: AsyncSession,
    payment: Payment,
    reservation: Optional[Reservation],
    action: str,
    transaction_id: Optional[str] = None,
) -> None:
    """
    Mark a payment completed and settle its reservation:
    advance → partial, anything else → paid; a pending reservation is confirmed.
    A paid reservation stays paid when a late advance completes.
    """
    payment.status = PaymentStatus.COMPLETED
    payment.completed_at = datetime.now(timezone.utc)
    if transaction_id:
        payment.transaction_id = transaction_id

    if reservation is not None:
        if reservation.payment_status == ReservationPaymentStatus.PAID:
            new_payment_status = ReservationPaymentStatus.PAID
        elif payment.payment_type == PaymentType.ADVANCE:
            new_payment_status = ReservationPaymentStatus.PARTIAL
        else:
            new_payment_status = ReservationPaymentStatus.PAID
        apply_reservation_update(db, TransitionRequest(
            reservation=reservation,
            actor=Actor.SYSTEM,
            status=ReservationStatus.CONFIRMED if reservation.status == ReservationStatus.PENDING else None,
            payment_status=new_payment_status,
            transaction_id=payment.transaction_id,
        ))

    _stage_payment_event(db, payment, reservation, action)


# ── Operations ────────────────────────────────────────────────

async def create_payment(
    db: AsyncSession,
    reservation_id: UUID,
    payer_id: UUID,
    amount: Decimal,
    service_fee: Decimal = Decimal("0"),
    payment_method: Optional[PaymentMethodType] = None,
    payment_type: PaymentType = PaymentType.FULL,
    payment_details: Optional[dict] = None,
    payment_method_id: Optional[UUID] = None,
    notes: Optional[str] = None,
    gateway: Optional[SimulatedGateway] = None,
) -> Payment:
    reservation = await get_reservation_or_404(db, reservation_id)

    if not same_identity(payer_id, reservation.booker_id):
        raise Forbidden("Not authorized to pay for this reservation")
    if reservation.status == ReservationStatus.CANCELLED:
        raise InvalidState("Cannot pay for a cancelled reservation")
    if reservation.payment_status == ReservationPaymentStatus.PAID:
        raise Conflict("This reservation is already fully paid")

    if payment_method_id is not None:
        saved = await db.get(PaymentMethod, payment_method_id)
        if saved is None:
            raise NotFound(f"Payment method not found with id {payment_method_id}")
        if saved.owner_type != OwnerType.BOOKER or not same_identity(saved.owner_id, payer_id):
            raise Forbidden("This payment method does not belong to you")
        payment_method = saved.type
        payment_details = saved.details

    if payment_method is None:
        raise ValidationError("A payment method is required")
    payment_method = PaymentMethodType(payment_method)
    payment_type = PaymentType(payment_type)

    payment = Payment(
        id=uuid.uuid4(),
        reservation_id=reservation.id,
        reservation=reservation,
        payer_id=reservation.booker_id,
        payee_id=reservation.artist_id,
        amount=amount,
        service_fee=service_fee,
        total_amount=amount + service_fee,
        payment_type=payment_type,
        payment_method=payment_method,
        status=PaymentStatus.PENDING,
        payment_details=sanitize_details(payment_method, payment_details),
        notes=notes,
    )
    await insert_with_reference(db, payment)

    settlement = (gateway or get_gateway()).charge(payment.reference, payment.total_amount)
    if settlement.settled:
        complete_payment(db, payment, reservation, action="created", transaction_id=settlement.transaction_id)

    await db.flush()
    logger.info(
        f"Payment {payment.reference} for reservation {reservation.id}: "
        f"{payment.status.value} ({payment.total_amount})"
    )
    return payment


async def get_payment_or_404(db: AsyncSession, payment_id: UUID) -> Payment:
    result = await db.execute(select(Payment).where(Payment.id == payment_id))
    payment = result.scalar_one_or_none()
    if not payment:
        raise NotFound(f"Payment not found with id {payment_id}")
    return payment


def check_payment_party(principal, payment: Payment, acting_id: UUID) -> None:
    """Only the payer (booker) or the payee (artist) may read a payment."""
    if principal.role == OwnerType.BOOKER.value and same_identity(acting_id, payment.payer_id):
        return
    if principal.role == OwnerType.ARTIST.value and same_identity(acting_id, payment.payee_id):
        return
    raise Forbidden("Not authorized to access this payment")


async def apply_gateway_status(
    db: AsyncSession,
    payment: Payment,
    target: PaymentStatus,
    transaction_id: Optional[str] = None,
) -> bool:
    """
    Apply a gateway-reported status. Returns False when the payment already
    has that status (redelivery: nothing is re-applied).
    """
    if payment.status == target:
        return False
    check_payment_transition(payment.status, target)

    reservation = payment.reservation

    if target == PaymentStatus.COMPLETED:
        complete_payment(db, payment, reservation, action="confirmed", transaction_id=transaction_id)

    elif target == PaymentStatus.FAILED:
        payment.status = PaymentStatus.FAILED
        if transaction_id:
            payment.transaction_id = transaction_id
        if reservation is not None and reservation.payment_status == ReservationPaymentStatus.PENDING:
            apply_reservation_update(db, TransitionRequest(
                reservation=reservation,
                actor=Actor.SYSTEM,
                payment_status=ReservationPaymentStatus.FAILED,
            ))
        _stage_payment_event(db, payment, reservation, "failed")

    elif target == PaymentStatus.REFUNDED:
        payment.status = PaymentStatus.REFUNDED
        if reservation is not None:
            apply_reservation_update(db, TransitionRequest(
                reservation=reservation,
                actor=Actor.SYSTEM,
                payment_status=await _settled_payment_status(db, reservation.id, excluding=payment.id),
            ))
        _stage_payment_event(db, payment, reservation, "refunded")

    else:
        payment.status = target
        if transaction_id:
            payment.transaction_id = transaction_id

    await db.flush()
    logger.info(f"Payment {payment.reference} moved to {target.value} by gateway")
    return True
