"""
shared/utils/identity.py
Resolves the role-scoped id (booker id / artist id) an authenticated
principal acts as.

Strategies are tried in order, first non-None wins:
  1. a role-scoped claim embedded in the token ("booker" / "artist")
  2. the principal's own user id, when its primary role is the requested one
  3. a caller-supplied id (query/body), only passed in on read paths
"""

from typing import Callable, Optional, Sequence
from uuid import UUID

from shared.models.models import OwnerType
from shared.utils.errors import IdentityMissing

Strategy = Callable[..., Optional[UUID]]


def _as_uuid(value) -> Optional[UUID]:
    if value is None or value == "":
        return None
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except ValueError:
        return None


def from_token_claim(principal, role: OwnerType, fallback: Optional[str] = None) -> Optional[UUID]:
    return _as_uuid(principal.claims.get(role.value))


def from_primary_role(principal, role: OwnerType, fallback: Optional[str] = None) -> Optional[UUID]:
    if principal.role == role.value:
        return _as_uuid(principal.user_id)
    return None


def from_request_fallback(principal, role: OwnerType, fallback: Optional[str] = None) -> Optional[UUID]:
    return _as_uuid(fallback)


DEFAULT_STRATEGIES: Sequence[Strategy] = (
    from_token_claim,
    from_primary_role,
    from_request_fallback,
)


def try_resolve_acting_id(
    principal,
    role: OwnerType,
    fallback: Optional[str] = None,
    strategies: Sequence[Strategy] = DEFAULT_STRATEGIES,
) -> Optional[UUID]:
    for strategy in strategies:
        resolved = strategy(principal, role, fallback)
        if resolved is not None:
            return resolved
    return None


def resolve_acting_id(
    principal,
    role: OwnerType,
    fallback: Optional[str] = None,
    strategies: Sequence[Strategy] = DEFAULT_STRATEGIES,
) -> UUID:
    """Like try_resolve_acting_id but raises IdentityMissing when nothing resolves."""
    resolved = try_resolve_acting_id(principal, role, fallback, strategies)
    if resolved is None:
        raise IdentityMissing(f"No {role.value} identity for the current user")
    return resolved


def acting_role(principal) -> OwnerType:
    """Role-scoped identity kind of a booker/artist principal (admins have none)."""
    try:
        return OwnerType(principal.role)
    except ValueError:
        raise IdentityMissing("Admins do not own bookings, payments or notifications")


def same_identity(a, b) -> bool:
    """Ownership comparison by stringified id."""
    if a is None or b is None:
        return False
    return str(a) == str(b)
