"""
config/settings.py
Application settings loaded from environment variables.
Uses Pydantic BaseSettings for validation and type safety.
"""

from functools import lru_cache
from typing import List
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── Application ──────────────────────────────────────────
    APP_NAME: str = "Bookmi Booking API"
    APP_ENV: str = "development"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    SECRET_KEY: str

    # ── Server ───────────────────────────────────────────────
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    WORKERS: int = 4

    # ── Database ─────────────────────────────────────────────
    DATABASE_URL: str
    DATABASE_POOL_SIZE: int = 20
    DATABASE_MAX_OVERFLOW: int = 40
    DATABASE_POOL_TIMEOUT: int = 30

    # ── Redis ────────────────────────────────────────────────
    REDIS_URL: str = "redis://localhost:6379/0"
    REDIS_CACHE_TTL: int = 300          # 5 minutes

    # ── JWT ──────────────────────────────────────────────────
    JWT_SECRET_KEY: str
    JWT_ALGORITHM: str = "HS256"
    JWT_ACCESS_TOKEN_EXPIRE_MINUTES: int = 60

    # ── Payments ─────────────────────────────────────────────
    # "immediate": the simulated gateway settles on creation.
    # "webhook": payments stay pending until the gateway callback arrives.
    PAYMENT_SETTLEMENT_MODE: str = "immediate"
    PAYMENT_WEBHOOK_SECRET: str = ""
    WEBHOOK_IDEMPOTENCY_TTL_SECONDS: int = 86400
    PAYMENT_REFERENCE_MAX_ATTEMPTS: int = 5
    CURRENCY_LABEL: str = "FCFA"

    # ── Notifications ────────────────────────────────────────
    NOTIFICATION_OUTBOX_BATCH_SIZE: int = 100
    NOTIFICATION_OUTBOX_MAX_ATTEMPTS: int = 5

    # ── Frontend ─────────────────────────────────────────────
    FRONTEND_URL: str = "http://localhost:3000"
    ALLOWED_ORIGINS: str = "http://localhost:3000,http://localhost:3001"

    # ── Celery ───────────────────────────────────────────────
    CELERY_BROKER_URL: str = "redis://localhost:6379/1"
    CELERY_RESULT_BACKEND: str = "redis://localhost:6379/2"

    # ── Rate Limiting ────────────────────────────────────────
    RATE_LIMIT_PER_MINUTE: int = 100
    RATE_LIMIT_UNAUTH_PER_MINUTE: int = 20

    @field_validator("PAYMENT_SETTLEMENT_MODE")
    @classmethod
    def validate_settlement_mode(cls, v: str) -> str:
        v = v.lower()
        if v not in ("immediate", "webhook"):
            raise ValueError("PAYMENT_SETTLEMENT_MODE must be 'immediate' or 'webhook'")
        return v

    @property
    def allowed_origins_list(self) -> List[str]:
        return [o.strip() for o in self.ALLOWED_ORIGINS.split(",")]

    @property
    def is_production(self) -> bool:
        return self.APP_ENV == "production"

    @property
    def is_sqlite(self) -> bool:
        return self.DATABASE_URL.startswith("sqlite")

    @property
    def sync_database_url(self) -> str:
        """Driver-swapped URL for synchronous consumers (Celery workers)."""
        return (
            self.DATABASE_URL.replace("+asyncpg", "+psycopg2").replace("+aiosqlite", "")
        )


@lru_cache()
def get_settings() -> Settings:
    """Cached settings instance, call this everywhere."""
    return Settings()


settings = get_settings()
