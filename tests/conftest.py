"""
tests/conftest.py
Shared fixtures: SQLite database (aiosqlite), fakeredis, users with their
booker/artist profiles, a published service, a pending reservation.
"""

import os

os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///./test_bookmi.db"
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("JWT_SECRET_KEY", "test-jwt-secret-key")
os.environ["APP_ENV"] = "test"
os.environ["PAYMENT_SETTLEMENT_MODE"] = "immediate"
os.environ["PAYMENT_WEBHOOK_SECRET"] = ""

import uuid
from datetime import date, timedelta
from decimal import Decimal

import fakeredis.aioredis
import pytest
from httpx import ASGITransport, AsyncClient

import config.redis_client as redis_module
from config.database import AsyncSessionLocal, Base, engine
from main import app
from shared.models.models import (
    ArtistProfile,
    BookerProfile,
    Reservation,
    ReservationPaymentStatus,
    ReservationStatus,
    Service,
    ServiceCategory,
    User,
    UserRole,
)
from shared.utils.security import create_access_token


def auth_headers(user: User, **claims) -> dict:
    """Bearer header for `user`; extra claims (e.g. booker=...) go into the token."""
    token, _ = create_access_token(
        user_id=str(user.id),
        role=user.role.value,
        email=user.email,
        extra={k: str(v) for k, v in claims.items()},
    )
    return {"Authorization": f"Bearer {token}"}


# ── Infrastructure ────────────────────────────────────────────

@pytest.fixture(autouse=True)
async def setup_database():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture(autouse=True)
async def redis():
    client = fakeredis.aioredis.FakeRedis(decode_responses=True)
    redis_module.redis_client = client
    yield client
    redis_module.redis_client = None
    await client.aclose()


@pytest.fixture
async def db():
    async with AsyncSessionLocal() as session:
        yield session


@pytest.fixture
async def client():
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


# ── Users ─────────────────────────────────────────────────────

async def _make_user(db, role: UserRole, email: str, first_name: str) -> User:
    user = User(
        id=uuid.uuid4(),
        email=email,
        first_name=first_name,
        last_name="Test",
        phone="+2250700000000",
        role=role,
        is_active=True,
        is_verified=True,
    )
    db.add(user)
    await db.flush()
    if role == UserRole.BOOKER:
        db.add(BookerProfile(id=user.id, company_name=f"{first_name} Events", city="Abidjan"))
    elif role == UserRole.ARTIST:
        db.add(ArtistProfile(id=user.id, artist_name=f"{first_name} Live", discipline="music"))
    await db.commit()
    return user


@pytest.fixture
async def booker(db) -> User:
    return await _make_user(db, UserRole.BOOKER, "booker@bookmi.ci", "Awa")


@pytest.fixture
async def other_booker(db) -> User:
    return await _make_user(db, UserRole.BOOKER, "other.booker@bookmi.ci", "Koffi")


@pytest.fixture
async def artist(db) -> User:
    return await _make_user(db, UserRole.ARTIST, "artist@bookmi.ci", "Serge")


@pytest.fixture
async def other_artist(db) -> User:
    return await _make_user(db, UserRole.ARTIST, "other.artist@bookmi.ci", "Mariam")


@pytest.fixture
async def admin(db) -> User:
    return await _make_user(db, UserRole.ADMIN, "admin@bookmi.ci", "Admin")


# ── Catalog & reservations ────────────────────────────────────

@pytest.fixture
async def service(db, artist: User) -> Service:
    svc = Service(
        id=uuid.uuid4(),
        artist_id=artist.id,
        title="Live acoustic set",
        description="Two hours of acoustic music for private events.",
        category=ServiceCategory.CONCERT,
        duration_hrs=Decimal("2.0"),
        price=Decimal("500"),
        active=True,
    )
    db.add(svc)
    await db.commit()
    return svc


@pytest.fixture
async def reservation(db, booker: User, artist: User, service: Service) -> Reservation:
    res = Reservation(
        id=uuid.uuid4(),
        booker_id=booker.id,
        artist_id=artist.id,
        service_id=service.id,
        status=ReservationStatus.PENDING,
        payment_status=ReservationPaymentStatus.PENDING,
        event_date=date.today() + timedelta(days=14),
        start_time="18:00",
        end_time="20:00",
        location="Cocody, Abidjan",
        event_type="Wedding",
        amount=Decimal("500"),
        service_fee=Decimal("25"),
    )
    db.add(res)
    await db.commit()
    return res


def reservation_payload(service: Service, **overrides) -> dict:
    payload = {
        "service_id": str(service.id),
        "event_date": (date.today() + timedelta(days=30)).isoformat(),
        "start_time": "19:00",
        "end_time": "22:00",
        "location": "Plateau, Abidjan",
        "event_type": "Corporate party",
    }
    payload.update(overrides)
    return payload
