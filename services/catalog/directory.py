"""
services/catalog/directory.py
Service catalog lookups used by the reservation engine.
"""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from shared.models.models import Service
from shared.utils.errors import InvalidState, NotFound


async def get_service_or_404(db: AsyncSession, service_id: UUID) -> Service:
    result = await db.execute(select(Service).where(Service.id == service_id))
    service = result.scalar_one_or_none()
    if not service:
        raise NotFound(f"Service not found with id {service_id}")
    return service


async def find_active_service(db: AsyncSession, service_id: UUID) -> Service:
    """The service if it exists and is open for booking."""
    service = await get_service_or_404(db, service_id)
    if not service.active:
        raise InvalidState("This service is not available for booking")
    return service
