"""
main.py
FastAPI application entry point.
Registers all routers, middleware, exception handlers, startup/shutdown events.

Production-ready features:
- Multiple instances behind a load balancer
- Circuit breaker around the payment gateway
- Redis-backed rate limiting
- Request ids on every request and log line
- Prometheus metrics
"""

import logging
import time
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator
from pybreaker import CircuitBreakerError
from sqlalchemy.orm.exc import StaleDataError
from starlette.exceptions import HTTPException as StarletteHTTPException

from config.database import close_db, init_db
from config.logging_config import configure_logging
from config.redis_client import close_redis, init_redis
from config.settings import settings
from shared.utils.errors import AppError, Conflict

# Service routers
from services.auth.router import router as auth_router
from services.catalog.router import router as catalog_router
from services.notification.router import router as notification_router
from services.payment.router import router as payment_router
from services.payment_method.router import router as payment_method_router
from services.reservation.router import router as reservation_router

configure_logging()
logger = logging.getLogger(__name__)

_HTTP_CODES = {
    401: "unauthorized",
    403: "forbidden",
    404: "not_found",
    405: "method_not_allowed",
    429: "rate_limited",
}


def _error(request: Request, status_code: int, message: str, code: str, headers=None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "success": False,
            "error": message,
            "code": code,
            "request_id": getattr(request.state, "request_id", None),
        },
        headers=headers,
    )


# ── Lifespan (startup/shutdown) ───────────────────────────────

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle handler."""
    logger.info("Starting Bookmi Booking API...")

    await init_db()
    logger.info("Database connected")

    await init_redis()
    logger.info("Redis connected")

    logger.info(
        f"{settings.APP_NAME} v{settings.APP_VERSION} is ready "
        f"(payment settlement: {settings.PAYMENT_SETTLEMENT_MODE})"
    )
    yield

    await close_redis()
    await close_db()
    logger.info("Server shutdown complete")


# ── App Factory ───────────────────────────────────────────────

def create_app() -> FastAPI:
    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="""
## Bookmi Booking API

Marketplace backend connecting event organizers (bookers) with artists:
- **Services**: artists publish what they offer
- **Reservations**: pending → confirmed → completed, or cancelled
- **Payments**: full / advance / balance, simulated gateway + webhook
- **Payment methods**: saved methods with a single default
- **Notifications**: in-app inbox fed by a transactional outbox

### Authentication
All protected endpoints require `Authorization: Bearer <access_token>` header.

### Roles
- `booker`: create and pay reservations, cancel own reservations
- `artist`: publish services, confirm / complete / cancel assigned reservations
- `admin`: delete reservations
        """,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # ── Middleware (order matters: outermost first) ────────────────
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "X-Process-Time"],
    )

    app.add_middleware(GZipMiddleware, minimum_size=500)

    # ── Custom Middleware ──────────────────────────────────────────

    @app.middleware("http")
    async def rate_limit_middleware(request: Request, call_next):
        """
        Per-IP limit for unauthenticated callers.
        Skips health checks, docs, metrics and gateway webhooks.
        """
        path = request.url.path
        skip_paths = {"/health", "/docs", "/redoc", "/openapi.json", "/metrics"}
        if path in skip_paths or path.endswith("/webhook"):
            return await call_next(request)

        if not request.headers.get("Authorization", "").startswith("Bearer "):
            try:
                from config.redis_client import RedisCache, redis_client
                if redis_client:
                    client_ip = request.client.host if request.client else "unknown"
                    allowed = await RedisCache(redis_client).check_rate_limit(
                        f"rate:unauth:{client_ip}", settings.RATE_LIMIT_UNAUTH_PER_MINUTE
                    )
                    if not allowed:
                        logger.warning(f"Rate limit exceeded for IP {client_ip}")
                        return _error(
                            request, 429, "Rate limit exceeded. Please slow down.",
                            "rate_limited", headers={"Retry-After": "60"},
                        )
            except Exception as e:
                # Fail open if Redis is down
                logger.error(f"Rate limit check failed: {e}")

        return await call_next(request)

    @app.middleware("http")
    async def process_time_middleware(request: Request, call_next):
        """Track and expose request processing time."""
        start = time.perf_counter()
        response = await call_next(request)
        process_time = round((time.perf_counter() - start) * 1000, 2)
        response.headers["X-Process-Time"] = f"{process_time}ms"
        return response

    @app.middleware("http")
    async def request_id_middleware(request: Request, call_next):
        """Add unique X-Request-ID to every request for distributed tracing."""
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response

    # ── Exception Handlers ─────────────────────────────────────────

    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError):
        if exc.status_code >= 500:
            logger.error(f"[{getattr(request.state, 'request_id', None)}] {exc.message}")
        return _error(request, exc.status_code, exc.message, exc.code)

    @app.exception_handler(StaleDataError)
    async def stale_data_handler(request: Request, exc: StaleDataError):
        logger.warning(f"Concurrent update rejected: {exc}")
        return _error(request, Conflict.status_code, Conflict.default_message, Conflict.code)

    @app.exception_handler(CircuitBreakerError)
    async def circuit_open_handler(request: Request, exc: CircuitBreakerError):
        logger.error(f"Service degraded, circuit breaker open: {exc}")
        return _error(
            request, 503, "Service temporarily unavailable. Please try again later.", "unavailable"
        )

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        first = errors[0] if errors else {}
        location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = f"{location}: {first.get('msg')}" if location else str(first.get("msg", "Invalid request"))
        return _error(request, 422, message, "validation_error")

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        return _error(
            request, exc.status_code, str(exc.detail),
            _HTTP_CODES.get(exc.status_code, "http_error"), headers=exc.headers,
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Catch-all exception handler. Never expose stack traces in production."""
        request_id = getattr(request.state, "request_id", None)
        logger.error(f"[{request_id}] Exception: {exc}", exc_info=True)
        detail = str(exc) if settings.DEBUG else "An internal server error occurred"
        return _error(request, 500, detail, "internal")

    # ── Routes ────────────────────────────────────────────────────

    @app.get("/health", tags=["Health"], include_in_schema=False)
    async def health_check():
        from config.redis_client import redis_client
        from sqlalchemy import text
        from config.database import AsyncSessionLocal

        checks = {"status": "ok", "version": settings.APP_VERSION}

        try:
            async with AsyncSessionLocal() as session:
                await session.execute(text("SELECT 1"))
            checks["database"] = "ok"
        except Exception:
            checks["database"] = "error"
            checks["status"] = "degraded"

        try:
            if redis_client:
                await redis_client.ping()
            checks["redis"] = "ok"
        except Exception:
            checks["redis"] = "error"
            checks["status"] = "degraded"

        status_code = 200 if checks["status"] == "ok" else 503
        return JSONResponse(content=checks, status_code=status_code)

    @app.get("/", include_in_schema=False)
    async def root():
        return {
            "name": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "docs": "/docs",
            "health": "/health",
        }

    app.include_router(auth_router)
    app.include_router(catalog_router)
    app.include_router(reservation_router)
    app.include_router(payment_router)
    app.include_router(payment_method_router)
    app.include_router(notification_router)

    # ── Prometheus Metrics ─────────────────────────────────────────
    Instrumentator().instrument(app).expose(app, endpoint="/metrics", tags=["Monitoring"])

    return app


# ── Entry Point ───────────────────────────────────────────────

app = create_app()

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        workers=1 if settings.DEBUG else settings.WORKERS,
        log_level="debug" if settings.DEBUG else "info",
        access_log=True,
    )
