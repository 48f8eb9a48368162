"""
services/payment_method/router.py
Saved payment methods of the calling booker or artist.
"""

from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from services.payment_method import selector
from shared.middleware.auth import Principal, require_any
from shared.schemas.schemas import (
    ApiResponse,
    MessageResponse,
    PaymentMethodCreateRequest,
    PaymentMethodResponse,
    PaymentMethodUpdateRequest,
)
from shared.utils.identity import acting_role, resolve_acting_id

router = APIRouter(prefix="/payment-methods", tags=["Payment Methods"])


def _owner(principal: Principal):
    """(owner_id, owner_type); admins get identity_missing."""
    owner_type = acting_role(principal)
    return resolve_acting_id(principal, owner_type), owner_type


@router.post("", response_model=ApiResponse[PaymentMethodResponse], status_code=status.HTTP_201_CREATED)
async def add_payment_method(
    data: PaymentMethodCreateRequest,
    principal: Principal = Depends(require_any),
    db: AsyncSession = Depends(get_db),
):
    """The first method added becomes the default automatically."""
    owner_id, owner_type = _owner(principal)
    method = await selector.add_method(db, owner_id, owner_type, **data.model_dump())
    await db.commit()
    return ApiResponse(data=PaymentMethodResponse.model_validate(method))


@router.get("", response_model=ApiResponse[List[PaymentMethodResponse]])
async def list_payment_methods(
    principal: Principal = Depends(require_any),
    db: AsyncSession = Depends(get_db),
):
    owner_id, owner_type = _owner(principal)
    methods = await selector.list_methods(db, owner_id, owner_type)
    return ApiResponse(
        data=[PaymentMethodResponse.model_validate(m) for m in methods],
        count=len(methods),
    )


@router.get("/{method_id}", response_model=ApiResponse[PaymentMethodResponse])
async def get_payment_method(
    method_id: UUID,
    principal: Principal = Depends(require_any),
    db: AsyncSession = Depends(get_db),
):
    owner_id, owner_type = _owner(principal)
    method = await selector.get_method(db, owner_id, owner_type, method_id)
    return ApiResponse(data=PaymentMethodResponse.model_validate(method))


@router.put("/{method_id}", response_model=ApiResponse[PaymentMethodResponse])
async def update_payment_method(
    method_id: UUID,
    data: PaymentMethodUpdateRequest,
    principal: Principal = Depends(require_any),
    db: AsyncSession = Depends(get_db),
):
    owner_id, owner_type = _owner(principal)
    method = await selector.update_method(
        db, owner_id, owner_type, method_id, **data.model_dump(exclude_unset=True)
    )
    await db.commit()
    return ApiResponse(data=PaymentMethodResponse.model_validate(method))


@router.put("/{method_id}/default", response_model=ApiResponse[PaymentMethodResponse])
async def set_default_payment_method(
    method_id: UUID,
    principal: Principal = Depends(require_any),
    db: AsyncSession = Depends(get_db),
):
    owner_id, owner_type = _owner(principal)
    method = await selector.set_default(db, owner_id, owner_type, method_id)
    await db.commit()
    return ApiResponse(data=PaymentMethodResponse.model_validate(method))


@router.delete("/{method_id}", response_model=ApiResponse[MessageResponse])
async def delete_payment_method(
    method_id: UUID,
    principal: Principal = Depends(require_any),
    db: AsyncSession = Depends(get_db),
):
    """Deleting the default promotes the oldest remaining method."""
    owner_id, owner_type = _owner(principal)
    await selector.delete_method(db, owner_id, owner_type, method_id)
    await db.commit()
    return ApiResponse(data=MessageResponse(message="Payment method deleted"))
