from datetime import date, datetime

from pydantic import BaseModel, ConfigDict, Field

from src.domain.catalog import (
    CardType,
    EstimationStatus,
    PublicationStatus,
    ServiceBookingType,
    ServiceCategory,
)
from src.domain.state_machine import BookingStatus


class PackageCreate(BaseModel):
    name: str
    price: float = Field(ge=0)
    inclusions: str | None = None


class PackageResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    price: float
    inclusions: str | None = None


class ServiceCreate(BaseModel):
    name: str
    category: ServiceCategory
    city: str
    description: str | None = None
    booking_type: ServiceBookingType = ServiceBookingType.EVENT_BASED
    available_quantity: int | None = Field(default=None, ge=0)
    packages: list[PackageCreate] = Field(min_length=1)


class ServiceResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    vendor_id: str
    name: str
    category: ServiceCategory
    status: PublicationStatus
    city: str
    booking_type: ServiceBookingType
    available_quantity: int | None = None
    discount_percent: float
    discount_expiry: datetime | None = None
    avg_rating: float
    review_count: int
    packages: list[PackageResponse]


class SlotCreate(BaseModel):
    dates: list[date] = Field(min_length=1)


class SlotResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    slot_date: date
    is_booked: bool


class CardCreate(BaseModel):
    name: str | None = None
    card_type: CardType
    city: str
    price_per_card: float = Field(ge=0)
    available_quantity: int = Field(ge=0)


class CardResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    vendor_id: str
    name: str | None = None
    card_type: CardType
    status: PublicationStatus
    city: str
    price_per_card: float
    available_quantity: int
    discount_percent: float
    discount_expiry: datetime | None = None
    avg_rating: float
    review_count: int


class DiscountUpdate(BaseModel):
    discount_percent: float = Field(ge=0, le=100)
    discount_expiry: datetime | None = None


class AvailabilityResponse(BaseModel):
    available: bool


class BookingRequest(BaseModel):
    service_id: str | None = None
    package_id: str | None = None
    card_template_id: str | None = None
    scheduled_at: datetime
    end_date: datetime | None = None
    quantity: int = 1


class BookingResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    vendor_id: str
    service_id: str | None = None
    package_id: str | None = None
    card_template_id: str | None = None
    status: BookingStatus
    scheduled_at: datetime
    event_date: datetime | None = None
    completed_at: datetime | None = None
    price: float
    quantity: int
    review_allowed: bool


class BookingStatusUpdate(BaseModel):
    status: BookingStatus


class SweepResponse(BaseModel):
    completed: int


class ServiceSelectionRequest(BaseModel):
    service_id: str
    package_id: str
    quantity: int | None = None


class CardSelectionRequest(BaseModel):
    card_id: str
    quantity: int | None = None


class EstimationRequest(BaseModel):
    services: list[ServiceSelectionRequest] = Field(default_factory=list)
    cards: list[CardSelectionRequest] = Field(default_factory=list)


class EstimationServiceLineResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    service_id: str
    package_id: str
    quantity: int


class EstimationCardLineResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    card_template_id: str
    quantity: int


class EstimationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    status: EstimationStatus
    total_cost: float
    service_lines: list[EstimationServiceLineResponse]
    card_lines: list[EstimationCardLineResponse]


class EstimationRemovedResponse(BaseModel):
    deleted: bool


class ConversionRequest(BaseModel):
    scheduled_at: datetime | None = None


class ReviewRequest(BaseModel):
    booking_id: str
    stars: int
    comment: str = ""


class ReviewResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    booking_id: str
    service_id: str | None = None
    card_template_id: str | None = None
    stars: int
    comment: str
    is_active: bool


class OutboxEventResponse(BaseModel):
    id: str
    aggregate_type: str
    aggregate_id: str
    event_type: str
    status: str
    attempts: int
    last_error: str | None = None
    created_at: str


class DispatchResponse(BaseModel):
    delivered: int
