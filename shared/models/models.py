"""
shared/models/models.py
All SQLAlchemy ORM models for the Bookmi booking marketplace.
Portable column types (Uuid, JSON) so the same models run on PostgreSQL and SQLite.
"""

import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum as PyEnum
from typing import List, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    Uuid,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from config.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _enum(enum_cls) -> Enum:
    """Store enum *values* ("pending"), not member names."""
    return Enum(
        enum_cls,
        values_callable=lambda members: [m.value for m in members],
        native_enum=False,
        validate_strings=True,
        length=32,
    )


# ── Enumerations ──────────────────────────────────────────────

class UserRole(str, PyEnum):
    BOOKER = "booker"
    ARTIST = "artist"
    ADMIN = "admin"


class OwnerType(str, PyEnum):
    """Role-scoped identity kinds that can own records or receive notifications."""
    BOOKER = "booker"
    ARTIST = "artist"


class ReservationStatus(str, PyEnum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class ReservationPaymentStatus(str, PyEnum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"
    PARTIAL = "partial"


class PaymentStatus(str, PyEnum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


class PaymentType(str, PyEnum):
    FULL = "full"
    ADVANCE = "advance"
    BALANCE = "balance"


class PaymentMethodType(str, PyEnum):
    CREDIT_CARD = "credit_card"
    MOBILE_MONEY = "mobile_money"
    ORANGE = "orange"
    MTN = "mtn"
    MOOV = "moov"
    WAVE = "wave"
    VISA = "visa"


class NotificationType(str, PyEnum):
    NEW_RESERVATION = "new_reservation"
    RESERVATION_CONFIRMED = "reservation_confirmed"
    RESERVATION_COMPLETED = "reservation_completed"
    RESERVATION_CANCELLED = "reservation_cancelled"
    PAYMENT_RECEIVED = "payment_received"
    PAYMENT_CONFIRMED = "payment_confirmed"
    PAYMENT_REFUNDED = "payment_refunded"
    PAYMENT_FAILED = "payment_failed"
    MESSAGE_RECEIVED = "message_received"
    REVIEW_RECEIVED = "review_received"
    SERVICE_BOOKED = "service_booked"


class RelatedModel(str, PyEnum):
    RESERVATION = "reservation"
    SERVICE = "service"


class OutboxState(str, PyEnum):
    PENDING = "pending"
    DISPATCHED = "dispatched"
    FAILED = "failed"


class ServiceCategory(str, PyEnum):
    CONCERT = "concert"
    ANIMATION = "animation"
    WORKSHOP = "workshop"
    LESSON = "lesson"
    FESTIVAL = "festival"
    OTHER = "other"


# ── Mixins ────────────────────────────────────────────────────

class TimestampMixin:
    """Adds created_at and updated_at to any model."""
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        server_default=func.now(),
        onupdate=_utcnow,
        nullable=False,
    )


# ── Identity ──────────────────────────────────────────────────

class User(TimestampMixin, Base):
    """
    Shared identity/auth record. The role-specific shape lives in exactly one
    of BookerProfile / ArtistProfile, which reuse the user's primary key.
    """
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    phone: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    role: Mapped[UserRole] = mapped_column(_enum(UserRole), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    is_verified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    booker_profile: Mapped[Optional["BookerProfile"]] = relationship(
        back_populates="user", uselist=False, lazy="selectin"
    )
    artist_profile: Mapped[Optional["ArtistProfile"]] = relationship(
        back_populates="user", uselist=False, lazy="selectin"
    )

    __table_args__ = (Index("ix_users_role", "role"),)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    def __repr__(self) -> str:
        return f"<User {self.email} ({self.role})>"


class BookerProfile(TimestampMixin, Base):
    """Event organizer shape of a user. `id` is the user's id."""
    __tablename__ = "booker_profiles"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    company_name: Mapped[str] = mapped_column(String(255), nullable=False)
    address: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    city: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    country: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    user: Mapped["User"] = relationship(back_populates="booker_profile")


class ArtistProfile(TimestampMixin, Base):
    """Performer shape of a user. `id` is the user's id."""
    __tablename__ = "artist_profiles"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    artist_name: Mapped[str] = mapped_column(String(255), nullable=False)
    project_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    discipline: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    user: Mapped["User"] = relationship(back_populates="artist_profile")
    services: Mapped[List["Service"]] = relationship(back_populates="artist")


# ── Catalog ───────────────────────────────────────────────────

class Service(TimestampMixin, Base):
    """An offering published by an artist."""
    __tablename__ = "services"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    artist_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("artist_profiles.id", ondelete="CASCADE"), nullable=False
    )
    title: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[ServiceCategory] = mapped_column(
        _enum(ServiceCategory), nullable=False, default=ServiceCategory.OTHER
    )
    duration_hrs: Mapped[Decimal] = mapped_column(Numeric(4, 1), nullable=False)
    price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    artist: Mapped["ArtistProfile"] = relationship(back_populates="services")

    __table_args__ = (Index("ix_services_artist_id", "artist_id"),)


# ── Reservations ──────────────────────────────────────────────

class Reservation(TimestampMixin, Base):
    """
    Booking of one artist's service by one booker.
    `status` and `payment_status` are only ever written together through
    services.reservation.lifecycle.apply_reservation_update.
    """
    __tablename__ = "reservations"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    booker_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("booker_profiles.id"), nullable=False
    )
    artist_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("artist_profiles.id"), nullable=False
    )
    service_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("services.id"), nullable=False
    )

    status: Mapped[ReservationStatus] = mapped_column(
        _enum(ReservationStatus), nullable=False, default=ReservationStatus.PENDING
    )
    payment_status: Mapped[ReservationPaymentStatus] = mapped_column(
        _enum(ReservationPaymentStatus),
        nullable=False,
        default=ReservationPaymentStatus.PENDING,
    )
    transaction_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    # Event
    event_date: Mapped[date] = mapped_column(Date, nullable=False)
    start_time: Mapped[str] = mapped_column(String(5), nullable=False)  # "HH:MM"
    end_time: Mapped[str] = mapped_column(String(5), nullable=False)
    location: Mapped[str] = mapped_column(String(255), nullable=False)
    event_type: Mapped[str] = mapped_column(String(100), nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Pricing
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    service_fee: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0)
    payment_method: Mapped[Optional[PaymentMethodType]] = mapped_column(
        _enum(PaymentMethodType), nullable=True
    )

    # Optimistic concurrency
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    service: Mapped["Service"] = relationship(lazy="selectin")
    audit_logs: Mapped[List["ReservationAuditLog"]] = relationship(
        back_populates="reservation", cascade="all, delete-orphan", passive_deletes=True
    )

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index("ix_reservations_booker_id", "booker_id"),
        Index("ix_reservations_artist_id", "artist_id"),
        Index("ix_reservations_status", "status"),
        Index("ix_reservations_event_date", "event_date"),
    )


class ReservationAuditLog(Base):
    """Immutable log of all reservation status / payment-status transitions."""
    __tablename__ = "reservation_audit_logs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    reservation_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("reservations.id", ondelete="CASCADE"), nullable=False
    )
    actor: Mapped[str] = mapped_column(String(10), nullable=False)  # booker | artist | system
    from_status: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    to_status: Mapped[str] = mapped_column(String(20), nullable=False)
    from_payment_status: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    to_payment_status: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    changed_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now()
    )

    reservation: Mapped["Reservation"] = relationship(back_populates="audit_logs")


# ── Payments ──────────────────────────────────────────────────

class Payment(TimestampMixin, Base):
    """Monetary transaction settling (part of) a reservation's cost."""
    __tablename__ = "payments"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    # Nulled (not cascaded) when the reservation is hard-deleted.
    reservation_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("reservations.id", ondelete="SET NULL"), nullable=True
    )
    payer_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("booker_profiles.id"), nullable=False
    )
    payee_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("artist_profiles.id"), nullable=False
    )

    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    service_fee: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    payment_type: Mapped[PaymentType] = mapped_column(
        _enum(PaymentType), nullable=False, default=PaymentType.FULL
    )
    payment_method: Mapped[PaymentMethodType] = mapped_column(
        _enum(PaymentMethodType), nullable=False
    )
    status: Mapped[PaymentStatus] = mapped_column(
        _enum(PaymentStatus), nullable=False, default=PaymentStatus.PENDING
    )
    transaction_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    reference: Mapped[str] = mapped_column(String(20), unique=True, nullable=False)
    payment_details: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    reservation: Mapped[Optional["Reservation"]] = relationship(lazy="selectin")

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index("ix_payments_reservation_id", "reservation_id"),
        Index("ix_payments_payer_id", "payer_id"),
        Index("ix_payments_payee_id", "payee_id"),
        Index("ix_payments_status", "status"),
    )


class PaymentMethod(TimestampMixin, Base):
    """
    Saved payment method of a booker or an artist.
    At most one default per (owner_id, owner_type); see services.payment_method.selector.
    """
    __tablename__ = "payment_methods"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    owner_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    owner_type: Mapped[OwnerType] = mapped_column(_enum(OwnerType), nullable=False)
    type: Mapped[PaymentMethodType] = mapped_column(_enum(PaymentMethodType), nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    details: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    is_default: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    __table_args__ = (
        Index("ix_payment_methods_owner", "owner_id", "owner_type", "is_default"),
    )


# ── Notifications ─────────────────────────────────────────────

class Notification(Base):
    """In-app notification addressed to a booker or an artist."""
    __tablename__ = "notifications"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    recipient_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    recipient_type: Mapped[OwnerType] = mapped_column(_enum(OwnerType), nullable=False)
    sender_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    sender_type: Mapped[Optional[OwnerType]] = mapped_column(_enum(OwnerType), nullable=True)
    related_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    related_type: Mapped[Optional[RelatedModel]] = mapped_column(
        _enum(RelatedModel), nullable=True
    )
    type: Mapped[NotificationType] = mapped_column(_enum(NotificationType), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    data: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    is_read: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    read_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now()
    )

    __table_args__ = (
        Index("ix_notifications_recipient", "recipient_id", "recipient_type", "is_read"),
        Index("ix_notifications_type", "type"),
    )


class NotificationOutbox(Base):
    """
    Domain events waiting to become notifications. Written in the same
    transaction as the reservation/payment mutation that produced them.
    """
    __tablename__ = "notification_outbox"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    event_type: Mapped[str] = mapped_column(String(50), nullable=False)
    payload: Mapped[dict] = mapped_column(JSON, nullable=False)
    state: Mapped[OutboxState] = mapped_column(
        _enum(OutboxState), nullable=False, default=OutboxState.PENDING
    )
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now()
    )
    dispatched_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    __table_args__ = (Index("ix_notification_outbox_state", "state", "created_at"),)
