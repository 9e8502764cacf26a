# src/domain/catalog.py

from enum import Enum


class UserRole(str, Enum):
    USER = "user"
    VENDOR = "vendor"
    ADMIN = "admin"


class PublicationStatus(str, Enum):
    PENDING = "pending"
    PUBLISHED = "published"
    REJECTED = "rejected"


class ServiceCategory(str, Enum):
    WEDDING_VENUES = "Wedding Venues"
    PHOTOGRAPHERS = "Photographers"
    BRIDAL_MAKEUP = "Bridal Makeup"
    HENNA_ARTISTS = "Henna Artists"
    BRIDAL_WEAR = "Bridal Wear"
    CAR_RENTAL = "Car Rental"


class ServiceBookingType(str, Enum):
    # Per-date slots, e.g. a venue.
    EVENT_BASED = "event_based"
    # Counted stock, like cards.
    QUANTITY_BASED = "quantity_based"


class CardType(str, Enum):
    SIMPLE = "simple"
    EDITABLE = "editable"
    STATIC = "static"
    NON_EDITABLE = "non-editable"


class EstimationStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"


RENTAL_CATEGORIES = frozenset({ServiceCategory.BRIDAL_WEAR, ServiceCategory.CAR_RENTAL})

# Categories whose price scales with the booked quantity.
QUANTITY_PRICED_CATEGORIES = frozenset({ServiceCategory.WEDDING_VENUES})


def is_rental(category: ServiceCategory) -> bool:
    return ServiceCategory(category) in RENTAL_CATEGORIES
