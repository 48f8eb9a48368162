"""
shared/schemas/schemas.py
All Pydantic v2 request/response schemas for the platform.
"""

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, Generic, List, Literal, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from shared.models.models import (
    PaymentMethodType,
    PaymentStatus,
    PaymentType,
    ReservationPaymentStatus,
    ReservationStatus,
    ServiceCategory,
)

T = TypeVar("T")

_HHMM = r"^([01]\d|2[0-3]):[0-5]\d$"


# ── Base ──────────────────────────────────────────────────────

class BaseSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


class Pagination(BaseSchema):
    page: int
    limit: int
    total: int
    pages: int


class ApiResponse(BaseModel, Generic[T]):
    """Success envelope shared by every endpoint."""
    success: bool = True
    data: Optional[T] = None
    count: Optional[int] = None
    pagination: Optional[Pagination] = None


class ErrorResponse(BaseSchema):
    success: bool = False
    error: str
    code: str
    request_id: Optional[str] = None


class MessageResponse(BaseSchema):
    message: str


# ── Auth / User ───────────────────────────────────────────────

class UserResponse(BaseSchema):
    id: uuid.UUID
    email: EmailStr
    first_name: str
    last_name: str
    phone: Optional[str]
    role: str
    created_at: datetime


class MeResponse(BaseSchema):
    user: UserResponse
    booker_id: Optional[uuid.UUID] = None
    artist_id: Optional[uuid.UUID] = None


# ── Service ───────────────────────────────────────────────────

class ServiceCreateRequest(BaseSchema):
    title: str = Field(..., min_length=3, max_length=100)
    description: str = Field(..., min_length=10, max_length=2000)
    category: ServiceCategory = ServiceCategory.OTHER
    duration_hrs: Decimal = Field(..., gt=0, le=72)
    price: Decimal = Field(..., ge=0)
    active: bool = True


class ServiceUpdateRequest(BaseSchema):
    title: Optional[str] = Field(None, min_length=3, max_length=100)
    description: Optional[str] = Field(None, min_length=10, max_length=2000)
    category: Optional[ServiceCategory] = None
    duration_hrs: Optional[Decimal] = Field(None, gt=0, le=72)
    price: Optional[Decimal] = Field(None, ge=0)
    active: Optional[bool] = None


class ServiceResponse(BaseSchema):
    id: uuid.UUID
    artist_id: uuid.UUID
    title: str
    description: str
    category: str
    duration_hrs: Decimal
    price: Decimal
    active: bool
    created_at: datetime


# ── Reservation ───────────────────────────────────────────────

class ReservationCreateRequest(BaseSchema):
    service_id: uuid.UUID
    event_date: date
    start_time: str = Field(..., pattern=_HHMM)
    end_time: str = Field(..., pattern=_HHMM)
    location: str = Field(..., min_length=2, max_length=255)
    event_type: str = Field(..., min_length=2, max_length=100)
    notes: Optional[str] = Field(None, max_length=2000)
    # Defaults to the service price when omitted
    amount: Optional[Decimal] = Field(None, ge=0)
    service_fee: Decimal = Field(Decimal("0"), ge=0)
    payment_method: Optional[PaymentMethodType] = None


class ReservationStatusUpdateRequest(BaseSchema):
    # Plain string: unknown values are a domain error (invalid_state), not a 422
    status: str


class ReservationPaymentUpdateRequest(BaseSchema):
    payment_status: Literal["pending", "paid", "failed", "refunded"]
    transaction_id: Optional[str] = Field(None, max_length=100)


class ReservationResponse(BaseSchema):
    id: uuid.UUID
    booker_id: uuid.UUID
    artist_id: uuid.UUID
    service_id: uuid.UUID
    status: ReservationStatus
    payment_status: ReservationPaymentStatus
    transaction_id: Optional[str]
    event_date: date
    start_time: str
    end_time: str
    location: str
    event_type: str
    notes: Optional[str]
    amount: Decimal
    service_fee: Decimal
    payment_method: Optional[str]
    created_at: datetime
    updated_at: datetime
    service_title: Optional[str] = None


# ── Payment ───────────────────────────────────────────────────

class PaymentCreateRequest(BaseSchema):
    reservation_id: uuid.UUID
    amount: Decimal = Field(..., gt=0)
    service_fee: Decimal = Field(Decimal("0"), ge=0)
    payment_method: Optional[PaymentMethodType] = None
    payment_type: PaymentType = PaymentType.FULL
    payment_details: Optional[Dict[str, Any]] = None
    # Saved method; its type and details take precedence over the fields above
    payment_method_id: Optional[uuid.UUID] = None
    notes: Optional[str] = Field(None, max_length=1000)


class PaymentWebhookRequest(BaseSchema):
    status: PaymentStatus
    transaction_id: Optional[str] = Field(None, max_length=100)


class PaymentResponse(BaseSchema):
    id: uuid.UUID
    reservation_id: Optional[uuid.UUID]
    payer_id: uuid.UUID
    payee_id: uuid.UUID
    amount: Decimal
    service_fee: Decimal
    total_amount: Decimal
    payment_type: PaymentType
    payment_method: PaymentMethodType
    status: PaymentStatus
    transaction_id: Optional[str]
    reference: str
    payment_details: Optional[Dict[str, Any]]
    notes: Optional[str]
    completed_at: Optional[datetime]
    created_at: datetime


class PaymentStatusBucket(BaseSchema):
    key: str
    count: int
    total: Decimal


class MonthlyPaymentBucket(BaseSchema):
    year: int
    month: int
    count: int
    total: Decimal


class PaymentStatsResponse(BaseSchema):
    total_paid: Decimal
    monthly_payments: List[MonthlyPaymentBucket]
    payments_by_method: List[PaymentStatusBucket]
    recent_stats: List[PaymentStatusBucket]


class ReceiptParty(BaseSchema):
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None


class ReceiptReservation(BaseSchema):
    service: Optional[str]
    date: date
    time: str
    location: str
    event_type: str


class ReceiptAmounts(BaseSchema):
    subtotal: Decimal
    service_fee: Decimal
    total: Decimal
    payment_type: str
    currency: str


class ReceiptResponse(BaseSchema):
    receipt_number: str
    date: datetime
    status: str
    payment_method: str
    client: ReceiptParty
    artist: ReceiptParty
    reservation: Optional[ReceiptReservation]
    payment: ReceiptAmounts


# ── Payment Method ────────────────────────────────────────────

class PaymentMethodCreateRequest(BaseSchema):
    type: PaymentMethodType
    name: str = Field(..., min_length=1, max_length=100)
    details: Optional[Dict[str, Any]] = None
    is_default: bool = False


class PaymentMethodUpdateRequest(BaseSchema):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    details: Optional[Dict[str, Any]] = None
    is_default: Optional[bool] = None


class PaymentMethodResponse(BaseSchema):
    id: uuid.UUID
    owner_id: uuid.UUID
    owner_type: str
    type: PaymentMethodType
    name: str
    details: Optional[Dict[str, Any]]
    is_default: bool
    created_at: datetime


# ── Notification ──────────────────────────────────────────────

class NotificationResponse(BaseSchema):
    id: uuid.UUID
    recipient_id: uuid.UUID
    recipient_type: str
    sender_id: Optional[uuid.UUID]
    sender_type: Optional[str]
    related_id: Optional[uuid.UUID]
    related_type: Optional[str]
    type: str
    title: str
    message: str
    data: Optional[Dict[str, Any]]
    is_read: bool
    read_at: Optional[datetime]
    created_at: datetime


class UnreadCountResponse(BaseSchema):
    unread_count: int


class MarkAllReadResponse(BaseSchema):
    updated: int
