"""
services/payment/router.py
Payments: creation + settlement, payer/payee reads, booker statistics,
receipts, and the gateway webhook.
"""

import logging
from collections import OrderedDict
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Header, Query, Request, status
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from config.redis_client import RedisCache, get_redis
from config.settings import settings
from services.notification.dispatcher import dispatch_session_events
from services.payment import engine
from shared.middleware.auth import Principal, require_booker, require_party
from shared.models.models import (
    ArtistProfile,
    BookerProfile,
    OwnerType,
    Payment,
    PaymentStatus,
    User,
)
from shared.schemas.schemas import (
    ApiResponse,
    MonthlyPaymentBucket,
    Pagination,
    PaymentCreateRequest,
    PaymentResponse,
    PaymentStatsResponse,
    PaymentStatusBucket,
    PaymentWebhookRequest,
    ReceiptAmounts,
    ReceiptParty,
    ReceiptReservation,
    ReceiptResponse,
)
from shared.utils.errors import Forbidden, InvalidState
from shared.utils.identity import resolve_acting_id
from shared.utils.security import verify_webhook_signature

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments", tags=["Payments"])


def _acting_party(principal: Principal):
    """(column to filter on, acting id) for a booker or an artist principal."""
    if principal.role == OwnerType.BOOKER.value:
        return Payment.payer_id, resolve_acting_id(principal, OwnerType.BOOKER)
    return Payment.payee_id, resolve_acting_id(principal, OwnerType.ARTIST)


def _to_decimal(value) -> Decimal:
    return Decimal(str(value)) if value is not None else Decimal("0")


# ── Create + settle ───────────────────────────────────────────

@router.post("", response_model=ApiResponse[PaymentResponse], status_code=status.HTTP_201_CREATED)
async def create_payment(
    data: PaymentCreateRequest,
    principal: Principal = Depends(require_booker),
    db: AsyncSession = Depends(get_db),
):
    """
    Pay (part of) a reservation. total_amount is always amount + service_fee.
    In immediate settlement mode the payment completes right away and the
    reservation becomes paid/partial (and confirmed if it was pending).
    """
    payer_id = resolve_acting_id(principal, OwnerType.BOOKER)
    payment = await engine.create_payment(
        db,
        reservation_id=data.reservation_id,
        payer_id=payer_id,
        amount=data.amount,
        service_fee=data.service_fee,
        payment_method=data.payment_method,
        payment_type=data.payment_type,
        payment_details=data.payment_details,
        payment_method_id=data.payment_method_id,
        notes=data.notes,
    )
    await db.commit()
    await dispatch_session_events(db)
    return ApiResponse(data=PaymentResponse.model_validate(payment))


# ── Listing ───────────────────────────────────────────────────

@router.get("", response_model=ApiResponse[List[PaymentResponse]])
async def list_payments(
    status_filter: Optional[str] = Query(None, alias="status"),
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    principal: Principal = Depends(require_party),
    db: AsyncSession = Depends(get_db),
):
    """Bookers see the payments they made, artists the payments they received."""
    column, acting_id = _acting_party(principal)
    filters = [column == acting_id]

    if status_filter:
        try:
            filters.append(Payment.status == PaymentStatus(status_filter))
        except ValueError:
            raise InvalidState(f"Invalid payment status '{status_filter}'")
    if start_date:
        filters.append(Payment.created_at >= datetime.combine(start_date, time.min, tzinfo=timezone.utc))
    if end_date:
        filters.append(Payment.created_at <= datetime.combine(end_date, time.max, tzinfo=timezone.utc))

    total = await db.scalar(select(func.count(Payment.id)).where(*filters)) or 0
    result = await db.execute(
        select(Payment)
        .where(*filters)
        .order_by(Payment.created_at.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    payments = result.scalars().all()

    return ApiResponse(
        data=[PaymentResponse.model_validate(p) for p in payments],
        count=len(payments),
        pagination=Pagination(page=page, limit=limit, total=total, pages=-(-total // limit)),
    )


# ── Statistics ────────────────────────────────────────────────

@router.get("/stats", response_model=ApiResponse[PaymentStatsResponse])
async def payment_stats(
    principal: Principal = Depends(require_booker),
    db: AsyncSession = Depends(get_db),
):
    """Totals for the booker: overall, last 12 months, by method, last 30 days by status."""
    payer_id = resolve_acting_id(principal, OwnerType.BOOKER)
    now = datetime.now(timezone.utc)
    completed = [Payment.payer_id == payer_id, Payment.status == PaymentStatus.COMPLETED]

    total_paid = await db.scalar(select(func.sum(Payment.total_amount)).where(*completed))

    # Monthly buckets are grouped in Python to stay portable across databases
    last_year = datetime(now.year - 1, now.month, 1, tzinfo=timezone.utc)
    rows = await db.execute(
        select(Payment.created_at, Payment.total_amount)
        .where(*completed, Payment.created_at >= last_year)
        .order_by(Payment.created_at)
    )
    monthly = OrderedDict()
    for created_at, amount in rows.all():
        bucket = monthly.setdefault((created_at.year, created_at.month), [0, Decimal("0")])
        bucket[0] += 1
        bucket[1] += _to_decimal(amount)

    by_method = await db.execute(
        select(Payment.payment_method, func.count(Payment.id), func.sum(Payment.total_amount))
        .where(*completed)
        .group_by(Payment.payment_method)
    )
    recent = await db.execute(
        select(Payment.status, func.count(Payment.id), func.sum(Payment.total_amount))
        .where(Payment.payer_id == payer_id, Payment.created_at >= now - timedelta(days=30))
        .group_by(Payment.status)
    )

    return ApiResponse(data=PaymentStatsResponse(
        total_paid=_to_decimal(total_paid),
        monthly_payments=[
            MonthlyPaymentBucket(year=year, month=month, count=count, total=amount)
            for (year, month), (count, amount) in monthly.items()
        ],
        payments_by_method=[
            PaymentStatusBucket(key=getattr(key, "value", key), count=count, total=_to_decimal(amount))
            for key, count, amount in by_method.all()
        ],
        recent_stats=[
            PaymentStatusBucket(key=getattr(key, "value", key), count=count, total=_to_decimal(amount))
            for key, count, amount in recent.all()
        ],
    ))


# ── Single payment ────────────────────────────────────────────

@router.get("/{payment_id}", response_model=ApiResponse[PaymentResponse])
async def get_payment(
    payment_id: UUID,
    principal: Principal = Depends(require_party),
    db: AsyncSession = Depends(get_db),
):
    payment = await engine.get_payment_or_404(db, payment_id)
    _, acting_id = _acting_party(principal)
    engine.check_payment_party(principal, payment, acting_id)
    return ApiResponse(data=PaymentResponse.model_validate(payment))


@router.get("/{payment_id}/receipt", response_model=ApiResponse[ReceiptResponse])
async def get_receipt(
    payment_id: UUID,
    principal: Principal = Depends(require_party),
    db: AsyncSession = Depends(get_db),
):
    payment = await engine.get_payment_or_404(db, payment_id)
    _, acting_id = _acting_party(principal)
    engine.check_payment_party(principal, payment, acting_id)

    booker = await db.get(BookerProfile, payment.payer_id)
    booker_user = await db.get(User, payment.payer_id)
    artist = await db.get(ArtistProfile, payment.payee_id)

    client_name = (booker.company_name if booker else None) or (
        booker_user.full_name if booker_user else "Unknown"
    )
    artist_name = (artist.artist_name or artist.project_name) if artist else "Unknown"

    reservation = payment.reservation
    reservation_info = None
    if reservation is not None:
        reservation_info = ReceiptReservation(
            service=reservation.service.title if reservation.service else None,
            date=reservation.event_date,
            time=f"{reservation.start_time} - {reservation.end_time}",
            location=reservation.location,
            event_type=reservation.event_type,
        )

    return ApiResponse(data=ReceiptResponse(
        receipt_number=payment.reference,
        date=payment.created_at,
        status=payment.status.value,
        payment_method=payment.payment_method.value,
        client=ReceiptParty(
            name=client_name,
            email=booker_user.email if booker_user else None,
            phone=booker_user.phone if booker_user else None,
        ),
        artist=ReceiptParty(name=artist_name),
        reservation=reservation_info,
        payment=ReceiptAmounts(
            subtotal=payment.amount,
            service_fee=payment.service_fee,
            total=payment.total_amount,
            payment_type=payment.payment_type.value,
            currency=settings.CURRENCY_LABEL,
        ),
    ))


# ── Gateway Webhook ───────────────────────────────────────────

@router.post("/{payment_id}/webhook", response_model=ApiResponse[PaymentResponse])
async def payment_webhook(
    payment_id: UUID,
    data: PaymentWebhookRequest,
    request: Request,
    x_webhook_signature: Optional[str] = Header(None),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
):
    """
    Gateway callback. No user auth; HMAC-SHA256 of the raw body in
    X-Webhook-Signature when PAYMENT_WEBHOOK_SECRET is set.

    Idempotent: a status the payment already has is acknowledged without side
    effects, and concurrent deliveries of the same (payment, status,
    transaction) are serialized through a Redis claim.
    """
    if settings.PAYMENT_WEBHOOK_SECRET:
        body = await request.body()
        if not verify_webhook_signature(body, x_webhook_signature):
            logger.warning(f"Rejected webhook for payment {payment_id}: bad signature")
            raise Forbidden("Invalid webhook signature")

    payment = await engine.get_payment_or_404(db, payment_id)
    target = PaymentStatus(data.status)

    if payment.status == target:
        logger.info(f"Duplicate webhook for payment {payment.reference} ({target.value}) ignored")
        return ApiResponse(data=PaymentResponse.model_validate(payment))

    cache = RedisCache(redis)
    claim_key = f"payment_webhook:{payment.id}:{target.value}:{data.transaction_id or '-'}"
    owner = getattr(request.state, "request_id", None) or "webhook"
    if not await cache.claim(claim_key, owner, settings.WEBHOOK_IDEMPOTENCY_TTL_SECONDS):
        logger.info(f"Webhook for payment {payment.reference} ({target.value}) already being handled")
        return ApiResponse(data=PaymentResponse.model_validate(payment))

    try:
        await engine.apply_gateway_status(db, payment, target, data.transaction_id)
        await db.commit()
    except Exception:
        await cache.release_claim(claim_key)
        raise

    await dispatch_session_events(db)
    return ApiResponse(data=PaymentResponse.model_validate(payment))
