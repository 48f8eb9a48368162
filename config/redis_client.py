"""
config/redis_client.py
Async Redis client for the JWT deny-list, rate limiting
and one-shot claims (payment webhook deduplication).
"""

from typing import Optional
import redis.asyncio as aioredis

from config.settings import settings


# ── Global client (initialized on startup) ───────────────────
redis_client: Optional[aioredis.Redis] = None


async def init_redis() -> None:
    """Initialize the Redis connection pool."""
    global redis_client
    redis_client = aioredis.from_url(
        settings.REDIS_URL,
        encoding="utf-8",
        decode_responses=True,
        max_connections=50,
    )
    # Test connection
    await redis_client.ping()


async def close_redis() -> None:
    """Close Redis connection pool."""
    global redis_client
    if redis_client:
        await redis_client.aclose()


def get_redis() -> aioredis.Redis:
    """FastAPI dependency to get Redis client."""
    if not redis_client:
        raise RuntimeError("Redis not initialized. Call init_redis() first.")
    return redis_client


# ── Cache Helpers ─────────────────────────────────────────────
class RedisCache:
    """Helper class for common Redis patterns."""

    def __init__(self, client: aioredis.Redis):
        self.client = client

    # ── One-shot Claims ──────────────────────────────────────
    async def claim(self, key: str, owner: str, ttl_seconds: int) -> bool:
        """
        Atomic claim using SET NX (set if not exists).
        Returns True if the claim was acquired, False if someone holds it already.
        """
        result = await self.client.set(
            f"claim:{key}",
            owner,
            ex=ttl_seconds,
            nx=True,  # Only set if key doesn't exist
        )
        return result is True

    async def release_claim(self, key: str) -> None:
        await self.client.delete(f"claim:{key}")

    # ── JWT Deny List ─────────────────────────────────────────
    async def revoke_token(self, jti: str, ttl_seconds: int) -> None:
        await self.client.setex(f"jwt_revoked:{jti}", ttl_seconds, "1")

    async def is_token_revoked(self, jti: str) -> bool:
        return await self.client.exists(f"jwt_revoked:{jti}") == 1

    # ── Rate Limiting ─────────────────────────────────────────
    async def check_rate_limit(self, key: str, limit: int, window_seconds: int = 60) -> bool:
        """
        Sliding window rate limiter.
        Returns True if request is allowed, False if rate limited.
        """
        pipe = self.client.pipeline()
        pipe.incr(key)
        pipe.expire(key, window_seconds)
        results = await pipe.execute()
        current_count = results[0]
        return current_count <= limit
