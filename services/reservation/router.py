"""
services/reservation/router.py
Reservation endpoints. State rules live in services/reservation/lifecycle.py;
routes resolve identities, commit, then hand staged events to the dispatcher.
"""

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from services.notification.dispatcher import dispatch_session_events
from services.reservation import lifecycle
from shared.middleware.auth import (
    Principal,
    require_artist,
    require_booker,
    require_booker_or_admin,
    require_party,
)
from shared.models.models import OwnerType, Reservation, ReservationStatus
from shared.schemas.schemas import (
    ApiResponse,
    MessageResponse,
    Pagination,
    ReservationCreateRequest,
    ReservationPaymentUpdateRequest,
    ReservationResponse,
    ReservationStatusUpdateRequest,
)
from shared.utils.errors import InvalidState
from shared.utils.identity import resolve_acting_id

router = APIRouter(prefix="/reservations", tags=["Reservations"])


def _to_response(reservation: Reservation) -> ReservationResponse:
    response = ReservationResponse.model_validate(reservation)
    if reservation.service is not None:
        response.service_title = reservation.service.title
    return response


async def _list_for(
    db: AsyncSession,
    column,
    owner_id: UUID,
    status_filter: Optional[str],
    page: int,
    limit: int,
) -> ApiResponse:
    query = select(Reservation).where(column == owner_id)
    count_query = select(func.count(Reservation.id)).where(column == owner_id)

    if status_filter:
        try:
            wanted = ReservationStatus(status_filter)
        except ValueError:
            raise InvalidState(f"Invalid reservation status '{status_filter}'")
        query = query.where(Reservation.status == wanted)
        count_query = count_query.where(Reservation.status == wanted)

    total = await db.scalar(count_query) or 0
    result = await db.execute(
        query.order_by(Reservation.event_date.desc(), Reservation.created_at.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    reservations = result.scalars().all()

    return ApiResponse(
        data=[_to_response(r) for r in reservations],
        count=len(reservations),
        pagination=Pagination(page=page, limit=limit, total=total, pages=-(-total // limit)),
    )


# ── Create ────────────────────────────────────────────────────

@router.post("", response_model=ApiResponse[ReservationResponse], status_code=status.HTTP_201_CREATED)
async def create_reservation(
    data: ReservationCreateRequest,
    principal: Principal = Depends(require_booker),
    db: AsyncSession = Depends(get_db),
):
    """Book an active service. The artist is taken from the service."""
    booker_id = resolve_acting_id(principal, OwnerType.BOOKER)
    reservation = await lifecycle.create_reservation(
        db,
        booker_id=booker_id,
        **data.model_dump(),
    )
    await db.commit()
    await dispatch_session_events(db)
    return ApiResponse(data=_to_response(reservation))


# ── Listing ───────────────────────────────────────────────────

@router.get("", response_model=ApiResponse[List[ReservationResponse]])
async def list_my_reservations(
    status_filter: Optional[str] = Query(None, alias="status"),
    booker_id: Optional[str] = Query(None, description="Admin only: list another organizer's reservations"),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    principal: Principal = Depends(require_booker_or_admin),
    db: AsyncSession = Depends(get_db),
):
    # The query-string fallback is only honoured for admins, who own no bookings.
    fallback = booker_id if principal.is_admin else None
    owner_id = resolve_acting_id(principal, OwnerType.BOOKER, fallback=fallback)
    return await _list_for(db, Reservation.booker_id, owner_id, status_filter, page, limit)


@router.get("/artist", response_model=ApiResponse[List[ReservationResponse]])
async def list_artist_reservations(
    status_filter: Optional[str] = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    principal: Principal = Depends(require_artist),
    db: AsyncSession = Depends(get_db),
):
    artist_id = resolve_acting_id(principal, OwnerType.ARTIST)
    return await _list_for(db, Reservation.artist_id, artist_id, status_filter, page, limit)


# ── Single reservation ────────────────────────────────────────

@router.get("/{reservation_id}", response_model=ApiResponse[ReservationResponse])
async def get_reservation(
    reservation_id: UUID,
    principal: Principal = Depends(require_party),
    db: AsyncSession = Depends(get_db),
):
    reservation = await lifecycle.get_reservation_for_party(db, principal, reservation_id)
    return ApiResponse(data=_to_response(reservation))


@router.patch("/{reservation_id}/status", response_model=ApiResponse[ReservationResponse])
async def update_reservation_status(
    reservation_id: UUID,
    data: ReservationStatusUpdateRequest,
    principal: Principal = Depends(require_party),
    db: AsyncSession = Depends(get_db),
):
    """
    Booker: cancel only. Artist: confirm, complete or cancel.
    The counter-party is notified after the change is committed.
    """
    reservation = await lifecycle.transition_status(db, principal, reservation_id, data.status)
    await db.commit()
    await dispatch_session_events(db)
    return ApiResponse(data=_to_response(reservation))


@router.patch("/{reservation_id}/payment", response_model=ApiResponse[ReservationResponse])
async def update_reservation_payment(
    reservation_id: UUID,
    data: ReservationPaymentUpdateRequest,
    principal: Principal = Depends(require_booker),
    db: AsyncSession = Depends(get_db),
):
    reservation = await lifecycle.update_payment_status(
        db, principal, reservation_id, data.payment_status, data.transaction_id
    )
    await db.commit()
    return ApiResponse(data=_to_response(reservation))


@router.delete("/{reservation_id}", response_model=ApiResponse[MessageResponse])
async def delete_reservation(
    reservation_id: UUID,
    principal: Principal = Depends(require_booker_or_admin),
    db: AsyncSession = Depends(get_db),
):
    await lifecycle.delete_reservation(db, principal, reservation_id)
    await db.commit()
    return ApiResponse(data=MessageResponse(message="Reservation deleted"))
