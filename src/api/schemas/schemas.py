from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, Field

from src.domain.state_machine import BookingStatus
from src.infrastructure.db.models import DisputeStatus, DisputeType, PaymentStatus


class BookingRequest(BaseModel):
    game_id: int
    start_date: date
    end_date: date
    notes: str | None = None


class BookingResponse(BaseModel):
    booking_id: int
    user_id: int
    game_id: int
    partner_id: int
    start_date: date
    end_date: date
    rental_days: int
    daily_price: Decimal
    total_rental_price: Decimal
    security_deposit: Decimal
    total_amount: Decimal
    status: BookingStatus
    notes: str | None = None
    handover_confirmed_at: datetime | None = None
    return_confirmed_at: datetime | None = None


class BookingStatusUpdateRequest(BaseModel):
    status: BookingStatus


class GameCreate(BaseModel):
    partner_id: int
    name: str = Field(min_length=1, max_length=200)
    platform: str | None = None
    stock: int = Field(ge=0)
    rental_price_per_day: Decimal = Field(ge=0)
    security_deposit: Decimal = Field(default=Decimal("0"), ge=0)
    is_active: bool = True


class RestockRequest(BaseModel):
    quantity: int = Field(default=1, gt=0)


class InventoryResponse(BaseModel):
    game_id: int
    stock: int
    available_stock: int
    reserved_stock: int
    is_active: bool


class AvailabilityResponse(InventoryResponse):
    start_date: date | None = None
    end_date: date | None = None
    has_date_conflict: bool | None = None


class PaymentResponse(BaseModel):
    payment_id: int
    booking_id: int
    provider: str
    provider_payment_id: str | None = None
    amount: Decimal
    currency: str
    status: PaymentStatus
    payment_method: str | None = None
    paid_at: datetime | None = None
    failed_at: datetime | None = None
    failure_reason: str | None = None
    key_id: str | None = None


class PaymentWebhookRequest(BaseModel):
    provider_payment_id: str = Field(min_length=1)
    status: str = Field(min_length=1)
    payment_method: str | None = None
    failure_reason: str | None = None


class DisputeCreate(BaseModel):
    type: DisputeType
    title: str = Field(min_length=5, max_length=200)
    description: str = Field(min_length=10)


class DisputeUpdate(BaseModel):
    status: DisputeStatus
    resolution: str | None = None


class DisputeResponse(BaseModel):
    dispute_id: int
    booking_id: int
    reporter_id: int
    type: DisputeType
    title: str
    description: str
    status: DisputeStatus
    resolution: str | None = None
    resolved_by: int | None = None
    resolved_at: datetime | None = None


class ReviewCreate(BaseModel):
    rating: int = Field(ge=1, le=5)
    comment: str | None = None


class ReviewResponse(BaseModel):
    review_id: int
    booking_id: int
    user_id: int
    game_id: int
    rating: int
    comment: str | None = None


class GameReviewsResponse(BaseModel):
    game_id: int
    average_rating: float
    review_count: int
    reviews: list[ReviewResponse]


class OutboxEventResponse(BaseModel):
    id: int
    aggregate_type: str
    aggregate_id: str
    event_type: str
    status: str
    attempts: int
    created_at: str
