"""
services/auth/router.py
Current principal and token revocation.
Tokens are issued by the identity provider; this service only consumes them.
"""

from fastapi import APIRouter, Depends

from config.redis_client import RedisCache, get_redis
from shared.middleware.auth import Principal, TokenData, get_principal, get_token_data
from shared.models.models import OwnerType
from shared.schemas.schemas import ApiResponse, MeResponse, MessageResponse, UserResponse
from shared.utils.identity import try_resolve_acting_id
from shared.utils.security import get_token_remaining_ttl

router = APIRouter(prefix="/auth", tags=["Authentication"])


@router.get("/me", response_model=ApiResponse[MeResponse], summary="Get current user")
async def get_me(principal: Principal = Depends(get_principal)):
    """The authenticated user plus the role-scoped ids it resolves to."""
    return ApiResponse(data=MeResponse(
        user=UserResponse.model_validate(principal.user),
        booker_id=try_resolve_acting_id(principal, OwnerType.BOOKER),
        artist_id=try_resolve_acting_id(principal, OwnerType.ARTIST),
    ))


@router.post("/logout", response_model=ApiResponse[MessageResponse], summary="Revoke the current token")
async def logout(
    token_data: TokenData = Depends(get_token_data),
    redis=Depends(get_redis),
):
    """Add the access token's jti to the Redis deny-list until it expires."""
    ttl = get_token_remaining_ttl(token_data.claims)
    if ttl > 0:
        await RedisCache(redis).revoke_token(token_data.jti, ttl)
    return ApiResponse(data=MessageResponse(message="Logged out successfully"))
