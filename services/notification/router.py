"""
services/notification/router.py
In-app notification inbox of the calling booker or artist.
"""

from datetime import datetime, timezone
from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from shared.middleware.auth import Principal, require_any
from shared.models.models import Notification, OwnerType
from shared.schemas.schemas import (
    ApiResponse,
    MarkAllReadResponse,
    MessageResponse,
    NotificationResponse,
    Pagination,
    UnreadCountResponse,
)
from shared.utils.errors import Forbidden, NotFound
from shared.utils.identity import acting_role, resolve_acting_id, same_identity

router = APIRouter(prefix="/notifications", tags=["Notifications"])


def _recipient(principal: Principal):
    recipient_type = acting_role(principal)
    return resolve_acting_id(principal, recipient_type), recipient_type


def _mine(recipient_id: UUID, recipient_type: OwnerType):
    return (
        Notification.recipient_id == recipient_id,
        Notification.recipient_type == recipient_type,
    )


async def _get_own_notification(db: AsyncSession, principal: Principal, notification_id: UUID) -> Notification:
    recipient_id, recipient_type = _recipient(principal)
    notification = await db.get(Notification, notification_id)
    if notification is None:
        raise NotFound(f"Notification not found with id {notification_id}")
    if notification.recipient_type != recipient_type or not same_identity(
        notification.recipient_id, recipient_id
    ):
        raise Forbidden("Not authorized to access this notification")
    return notification


async def _unread_count(db: AsyncSession, recipient_id: UUID, recipient_type: OwnerType) -> int:
    return await db.scalar(
        select(func.count(Notification.id)).where(
            *_mine(recipient_id, recipient_type), Notification.is_read == False  # noqa: E712
        )
    ) or 0


@router.get("", response_model=ApiResponse[List[NotificationResponse]])
async def list_notifications(
    unread_only: bool = Query(False),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    principal: Principal = Depends(require_any),
    db: AsyncSession = Depends(get_db),
):
    recipient_id, recipient_type = _recipient(principal)
    filters = list(_mine(recipient_id, recipient_type))
    if unread_only:
        filters.append(Notification.is_read == False)  # noqa: E712

    total = await db.scalar(select(func.count(Notification.id)).where(*filters)) or 0
    result = await db.execute(
        select(Notification)
        .where(*filters)
        .order_by(Notification.created_at.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    notifications = result.scalars().all()

    return ApiResponse(
        data=[NotificationResponse.model_validate(n) for n in notifications],
        count=len(notifications),
        pagination=Pagination(page=page, limit=limit, total=total, pages=-(-total // limit)),
    )


@router.get("/unread-count", response_model=ApiResponse[UnreadCountResponse])
async def unread_count(
    principal: Principal = Depends(require_any),
    db: AsyncSession = Depends(get_db),
):
    recipient_id, recipient_type = _recipient(principal)
    count = await _unread_count(db, recipient_id, recipient_type)
    return ApiResponse(data=UnreadCountResponse(unread_count=count))


@router.patch("/read-all", response_model=ApiResponse[MarkAllReadResponse])
async def mark_all_read(
    principal: Principal = Depends(require_any),
    db: AsyncSession = Depends(get_db),
):
    recipient_id, recipient_type = _recipient(principal)
    result = await db.execute(
        update(Notification)
        .where(*_mine(recipient_id, recipient_type), Notification.is_read == False)  # noqa: E712
        .values(is_read=True, read_at=datetime.now(timezone.utc))
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    return ApiResponse(data=MarkAllReadResponse(updated=result.rowcount or 0))


@router.patch("/{notification_id}/read", response_model=ApiResponse[NotificationResponse])
async def mark_read(
    notification_id: UUID,
    principal: Principal = Depends(require_any),
    db: AsyncSession = Depends(get_db),
):
    notification = await _get_own_notification(db, principal, notification_id)
    if not notification.is_read:
        notification.is_read = True
        notification.read_at = datetime.now(timezone.utc)
        await db.commit()
    return ApiResponse(data=NotificationResponse.model_validate(notification))


@router.delete("/{notification_id}", response_model=ApiResponse[MessageResponse])
async def delete_notification(
    notification_id: UUID,
    principal: Principal = Depends(require_any),
    db: AsyncSession = Depends(get_db),
):
    notification = await _get_own_notification(db, principal, notification_id)
    await db.delete(notification)
    await db.commit()
    return ApiResponse(data=MessageResponse(message="Notification deleted"))
