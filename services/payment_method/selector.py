"""
services/payment_method/selector.py
Saved payment methods with a single default per owner.

For every (owner_id, owner_type) with at least one method, exactly one is
default. Each operation locks the owner's rows (SELECT ... FOR UPDATE) so a
concurrent "set default" cannot leave two defaults behind.
"""

import logging
import uuid
from typing import List, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from shared.models.models import OwnerType, PaymentMethod, PaymentMethodType
from shared.utils.errors import Conflict, Forbidden, NotFound
from shared.utils.identity import same_identity
from shared.utils.security import mask_card_details

logger = logging.getLogger(__name__)


async def _lock_owner_methods(db: AsyncSession, owner_id: UUID, owner_type: OwnerType) -> List[PaymentMethod]:
    result = await db.execute(
        select(PaymentMethod)
        .where(PaymentMethod.owner_id == owner_id, PaymentMethod.owner_type == owner_type)
        .order_by(PaymentMethod.created_at, PaymentMethod.id)
        .with_for_update()
    )
    return list(result.scalars().all())


def _enforce_single_default(methods: List[PaymentMethod], chosen: Optional[PaymentMethod] = None) -> None:
    """`methods` must be ordered oldest first."""
    if chosen is not None and chosen.is_default:
        for method in methods:
            if method is not chosen and method.is_default:
                method.is_default = False
    if methods and not any(m.is_default for m in methods):
        methods[0].is_default = True


def _find_owned(methods: List[PaymentMethod], method_id: UUID) -> PaymentMethod:
    for method in methods:
        if same_identity(method.id, method_id):
            return method
    raise NotFound(f"Payment method not found with id {method_id}")


async def _check_ownership(db: AsyncSession, owner_id: UUID, owner_type: OwnerType, method_id: UUID) -> None:
    """NotFound for unknown ids, Forbidden for someone else's method."""
    method = await db.get(PaymentMethod, method_id)
    if method is None:
        raise NotFound(f"Payment method not found with id {method_id}")
    if method.owner_type != owner_type or not same_identity(method.owner_id, owner_id):
        raise Forbidden("This payment method does not belong to you")


# ── Reads ─────────────────────────────────────────────────────

async def list_methods(db: AsyncSession, owner_id: UUID, owner_type: OwnerType) -> List[PaymentMethod]:
    """Default first, then newest first."""
    result = await db.execute(
        select(PaymentMethod)
        .where(PaymentMethod.owner_id == owner_id, PaymentMethod.owner_type == owner_type)
        .order_by(PaymentMethod.is_default.desc(), PaymentMethod.created_at.desc())
    )
    return list(result.scalars().all())


async def get_method(db: AsyncSession, owner_id: UUID, owner_type: OwnerType, method_id: UUID) -> PaymentMethod:
    await _check_ownership(db, owner_id, owner_type, method_id)
    return await db.get(PaymentMethod, method_id)


# ── Writes ────────────────────────────────────────────────────

async def add_method(
    db: AsyncSession,
    owner_id: UUID,
    owner_type: OwnerType,
    type: PaymentMethodType,
    name: str,
    details: Optional[dict] = None,
    is_default: bool = False,
) -> PaymentMethod:
    methods = await _lock_owner_methods(db, owner_id, owner_type)
    method_type = PaymentMethodType(type)

    method = PaymentMethod(
        id=uuid.uuid4(),
        owner_id=owner_id,
        owner_type=owner_type,
        type=method_type,
        name=name,
        details=mask_card_details(details, is_card=method_type == PaymentMethodType.CREDIT_CARD),
        # The first method is always the default
        is_default=is_default or not methods,
    )
    db.add(method)
    methods.append(method)
    _enforce_single_default(methods, method)
    await db.flush()

    logger.info(f"Payment method {method.id} added for {owner_type.value} {owner_id}")
    return method


async def update_method(
    db: AsyncSession,
    owner_id: UUID,
    owner_type: OwnerType,
    method_id: UUID,
    name: Optional[str] = None,
    details: Optional[dict] = None,
    is_default: Optional[bool] = None,
) -> PaymentMethod:
    await _check_ownership(db, owner_id, owner_type, method_id)
    methods = await _lock_owner_methods(db, owner_id, owner_type)
    method = _find_owned(methods, method_id)

    if name is not None:
        method.name = name
    if details is not None:
        method.details = mask_card_details(details, is_card=method.type == PaymentMethodType.CREDIT_CARD)
    if is_default is not None:
        method.is_default = is_default

    _enforce_single_default(methods, method)
    await db.flush()
    return method


async def set_default(db: AsyncSession, owner_id: UUID, owner_type: OwnerType, method_id: UUID) -> PaymentMethod:
    return await update_method(db, owner_id, owner_type, method_id, is_default=True)


async def delete_method(db: AsyncSession, owner_id: UUID, owner_type: OwnerType, method_id: UUID) -> None:
    """Delete a method; the owner's last remaining method cannot be deleted."""
    await _check_ownership(db, owner_id, owner_type, method_id)
    methods = await _lock_owner_methods(db, owner_id, owner_type)
    method = _find_owned(methods, method_id)

    if len(methods) == 1:
        raise Conflict("You cannot delete your only payment method")

    remaining = [m for m in methods if m is not method]
    await db.delete(method)
    _enforce_single_default(remaining)
    await db.flush()
    logger.info(f"Payment method {method_id} deleted for {owner_type.value} {owner_id}")
