"""
services/catalog/router.py
Artist services: publish, read, update / (de)activate.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from services.catalog.directory import get_service_or_404
from shared.middleware.auth import Principal, require_any, require_artist
from shared.models.models import OwnerType, Service
from shared.schemas.schemas import (
    ApiResponse,
    ServiceCreateRequest,
    ServiceResponse,
    ServiceUpdateRequest,
)
from shared.utils.errors import Forbidden
from shared.utils.identity import resolve_acting_id, same_identity

router = APIRouter(prefix="/services", tags=["Services"])


@router.post("", response_model=ApiResponse[ServiceResponse], status_code=status.HTTP_201_CREATED)
async def create_service(
    data: ServiceCreateRequest,
    principal: Principal = Depends(require_artist),
    db: AsyncSession = Depends(get_db),
):
    artist_id = resolve_acting_id(principal, OwnerType.ARTIST)
    service = Service(artist_id=artist_id, **data.model_dump())
    db.add(service)
    await db.commit()
    return ApiResponse(data=ServiceResponse.model_validate(service))


@router.get("/{service_id}", response_model=ApiResponse[ServiceResponse])
async def get_service(
    service_id: UUID,
    principal: Principal = Depends(require_any),
    db: AsyncSession = Depends(get_db),
):
    service = await get_service_or_404(db, service_id)
    return ApiResponse(data=ServiceResponse.model_validate(service))


@router.patch("/{service_id}", response_model=ApiResponse[ServiceResponse])
async def update_service(
    service_id: UUID,
    data: ServiceUpdateRequest,
    principal: Principal = Depends(require_artist),
    db: AsyncSession = Depends(get_db),
):
    service = await get_service_or_404(db, service_id)
    artist_id = resolve_acting_id(principal, OwnerType.ARTIST)
    if not same_identity(artist_id, service.artist_id):
        raise Forbidden("Not authorized to update this service")

    for field, value in data.model_dump(exclude_unset=True).items():
        setattr(service, field, value)

    await db.commit()
    return ApiResponse(data=ServiceResponse.model_validate(service))
