"""
shared/middleware/auth.py
FastAPI dependency functions for authentication and authorization.
JWT is validated here; routes receive a Principal (user + token claims).
"""

from dataclasses import dataclass, field
from typing import Optional
from uuid import UUID

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from config.redis_client import RedisCache, get_redis
from shared.models.models import User, UserRole
from shared.utils.errors import Forbidden
from shared.utils.security import verify_access_token

security = HTTPBearer(auto_error=False)


class TokenData:
    def __init__(self, payload: dict):
        self.user_id: str = payload["sub"]
        self.role: UserRole = UserRole(payload["role"])
        self.email: str = payload["email"]
        self.jti: str = payload["jti"]
        self.claims: dict = payload


@dataclass
class Principal:
    """The authenticated caller: the stored user plus the claims it presented."""
    user: User
    claims: dict = field(default_factory=dict)

    @property
    def user_id(self) -> UUID:
        return self.user.id

    @property
    def role(self) -> str:
        return self.user.role.value

    @property
    def is_admin(self) -> bool:
        return self.user.role == UserRole.ADMIN


async def get_token_data(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    redis=Depends(get_redis),
) -> TokenData:
    """
    Extract and validate JWT from Authorization header.
    Checks deny-list in Redis to handle revoked tokens (logout).
    """
    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        payload = verify_access_token(credentials.credentials)
        token_data = TokenData(payload)
    except (JWTError, KeyError, ValueError):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if await RedisCache(redis).is_token_revoked(token_data.jti):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has been revoked",
        )

    return token_data


async def get_current_user(
    token_data: TokenData = Depends(get_token_data),
    db: AsyncSession = Depends(get_db),
) -> User:
    """Load full User object from database using JWT sub claim."""
    try:
        user_id = UUID(token_data.user_id)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token subject")

    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()

    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
        )
    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User account is inactive",
        )
    return user


async def get_principal(
    token_data: TokenData = Depends(get_token_data),
    current_user: User = Depends(get_current_user),
) -> Principal:
    return Principal(user=current_user, claims=token_data.claims)


class RoleRequired:
    """Dependency factory for role-based access control."""

    def __init__(self, *roles: UserRole):
        self.roles = roles

    async def __call__(
        self,
        principal: Principal = Depends(get_principal),
    ) -> Principal:
        if principal.user.role not in self.roles:
            raise Forbidden(f"Required role: {[r.value for r in self.roles]}")
        return principal


# Convenience role dependencies
require_booker = RoleRequired(UserRole.BOOKER)
require_artist = RoleRequired(UserRole.ARTIST)
require_party = RoleRequired(UserRole.BOOKER, UserRole.ARTIST)
require_booker_or_admin = RoleRequired(UserRole.BOOKER, UserRole.ADMIN)
require_any = RoleRequired(UserRole.BOOKER, UserRole.ARTIST, UserRole.ADMIN)
