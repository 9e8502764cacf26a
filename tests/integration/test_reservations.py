from datetime import timedelta

import pytest
from sqlalchemy import func, select

from src.application.booking_service import BookingService
from src.domain.catalog import PublicationStatus, ServiceBookingType, ServiceCategory
from src.domain.exceptions import (
    DuplicateBookingError,
    InsufficientInventoryError,
    InvalidRequestError,
    InvalidStateTransitionError,
    PermissionDeniedError,
    ResourceNotPublishedError,
    SelfBookingError,
    SlotTakenError,
)
from src.domain.state_machine import BookingStatus
from src.infrastructure.db.models import Booking, CardTemplate, Service, ServiceSlot


def _slot(db, service_id, day):
    db.expire_all()
    return db.execute(
        select(ServiceSlot)
        .where(ServiceSlot.service_id == service_id)
        .where(ServiceSlot.slot_date == day)
    ).scalar_one()


def _booking_count(db):
    return db.scalar(select(func.count()).select_from(Booking))


# ---------------------
# CARD STOCK
# ---------------------

def test_cancel_restores_card_stock(db, fetch, customer, vendor, make_card, event_time):
    card = make_card(vendor, available_quantity=5)
    service = BookingService(db)

    booking = service.create_booking(customer.id, event_time, card_template_id=card.id, quantity=2)
    assert fetch(CardTemplate, card.id).available_quantity == 3
    assert booking.holds_reservation is True

    service.cancel_by_user(booking.id, customer.id)
    assert fetch(CardTemplate, card.id).available_quantity == 5

    with pytest.raises(InvalidStateTransitionError):
        service.cancel_by_user(booking.id, customer.id)
    assert fetch(CardTemplate, card.id).available_quantity == 5


def test_card_oversell_is_rejected(db, fetch, customer, vendor, make_card, event_time):
    card = make_card(vendor, available_quantity=2)

    with pytest.raises(InsufficientInventoryError):
        BookingService(db).create_booking(customer.id, event_time, card_template_id=card.id, quantity=3)

    assert fetch(CardTemplate, card.id).available_quantity == 2
    assert _booking_count(db) == 0


def test_unpublished_card_cannot_be_booked(db, customer, vendor, make_card, event_time):
    card = make_card(vendor, status=PublicationStatus.PENDING)

    with pytest.raises(ResourceNotPublishedError):
        BookingService(db).create_booking(customer.id, event_time, card_template_id=card.id)


def test_vendor_cannot_book_own_card(db, fetch, vendor, make_card, event_time):
    card = make_card(vendor, available_quantity=5)

    with pytest.raises(SelfBookingError):
        BookingService(db).create_booking(vendor.id, event_time, card_template_id=card.id)

    assert fetch(CardTemplate, card.id).available_quantity == 5


# ---------------------
# DATE SLOTS
# ---------------------

def test_slot_cannot_be_booked_twice(db, make_user, vendor, make_service, event_day, event_time):
    service = make_service(vendor, slot_days=[event_day])
    package_id = service.packages[0].id
    first, second = make_user(full_name="First"), make_user(full_name="Second")
    bookings = BookingService(db)

    bookings.create_booking(first.id, event_time, service_id=service.id, package_id=package_id)

    with pytest.raises(SlotTakenError):
        bookings.create_booking(second.id, event_time, service_id=service.id, package_id=package_id)

    assert _booking_count(db) == 1


def test_day_without_slot_is_unavailable(db, customer, vendor, make_service, event_day, event_time):
    service = make_service(vendor, slot_days=[event_day])

    with pytest.raises(SlotTakenError):
        BookingService(db).create_booking(
            customer.id,
            event_time + timedelta(days=1),
            service_id=service.id,
            package_id=service.packages[0].id,
        )


def test_vendor_cancel_frees_slot(db, customer, vendor, make_user, make_service, event_day, event_time):
    service = make_service(vendor, slot_days=[event_day])
    package_id = service.packages[0].id
    bookings = BookingService(db)

    booking = bookings.create_booking(customer.id, event_time, service_id=service.id, package_id=package_id)
    assert _slot(db, service.id, event_day).reserved_by == booking.id

    bookings.update_status_by_vendor(booking.id, vendor.id, BookingStatus.CONFIRMED)
    bookings.update_status_by_vendor(booking.id, vendor.id, BookingStatus.CANCELED)

    slot = _slot(db, service.id, event_day)
    assert slot.is_booked is False
    assert slot.reserved_by is None

    other = make_user(full_name="Other")
    bookings.create_booking(other.id, event_time, service_id=service.id, package_id=package_id)


def test_duplicate_open_booking_is_rejected(db, customer, vendor, make_service, event_day, event_time):
    service = make_service(vendor, slot_days=[event_day])
    package_id = service.packages[0].id
    bookings = BookingService(db)

    bookings.create_booking(customer.id, event_time, service_id=service.id, package_id=package_id)

    with pytest.raises(DuplicateBookingError):
        bookings.create_booking(customer.id, event_time, service_id=service.id, package_id=package_id)


def test_user_cannot_cancel_confirmed_booking(db, customer, vendor, make_service, event_day, event_time):
    service = make_service(vendor, slot_days=[event_day])
    bookings = BookingService(db)
    booking = bookings.create_booking(
        customer.id, event_time, service_id=service.id, package_id=service.packages[0].id
    )
    bookings.update_status_by_vendor(booking.id, vendor.id, BookingStatus.CONFIRMED)

    with pytest.raises(PermissionDeniedError):
        bookings.cancel_by_user(booking.id, customer.id)

    assert _slot(db, service.id, event_day).is_booked is True


# ---------------------
# RENTALS AND QUANTITY SERVICES
# ---------------------

def test_rental_reserves_whole_range(db, customer, vendor, make_service, event_day, event_time):
    days = [event_day + timedelta(days=offset) for offset in range(4)]
    service = make_service(vendor, category=ServiceCategory.CAR_RENTAL, slot_days=days)
    bookings = BookingService(db)

    booking = bookings.create_booking(
        customer.id,
        event_time,
        service_id=service.id,
        package_id=service.packages[0].id,
        end_date=event_time + timedelta(days=2),
    )
    assert booking.event_date == event_time + timedelta(days=2)

    assert [_slot(db, service.id, day).is_booked for day in days] == [True, True, True, False]

    bookings.cancel_by_user(booking.id, customer.id)
    assert not any(_slot(db, service.id, day).is_booked for day in days)


def test_rental_requires_end_date(db, customer, vendor, make_service, event_day, event_time):
    service = make_service(vendor, category=ServiceCategory.BRIDAL_WEAR, slot_days=[event_day])

    with pytest.raises(InvalidRequestError):
        BookingService(db).create_booking(
            customer.id, event_time, service_id=service.id, package_id=service.packages[0].id
        )


def test_quantity_based_service_uses_stock(db, fetch, customer, make_user, vendor, make_service, event_time):
    service = make_service(
        vendor,
        category=ServiceCategory.HENNA_ARTISTS,
        booking_type=ServiceBookingType.QUANTITY_BASED,
        available_quantity=2,
    )
    package_id = service.packages[0].id
    bookings = BookingService(db)

    booking = bookings.create_booking(
        customer.id, event_time, service_id=service.id, package_id=package_id, quantity=2
    )
    assert fetch(Service, service.id).available_quantity == 0

    other = make_user(full_name="Other")
    with pytest.raises(InsufficientInventoryError):
        bookings.create_booking(other.id, event_time, service_id=service.id, package_id=package_id)

    bookings.cancel_by_user(booking.id, customer.id)
    assert fetch(Service, service.id).available_quantity == 2


def test_venue_price_scales_with_quantity(db, customer, vendor, make_service, event_day, event_time):
    service = make_service(vendor, category=ServiceCategory.WEDDING_VENUES, price=1000, slot_days=[event_day])

    booking = BookingService(db).create_booking(
        customer.id, event_time, service_id=service.id, package_id=service.packages[0].id, quantity=3
    )

    assert booking.price == 3000
    assert booking.quantity == 3


def test_photographer_price_ignores_quantity(db, customer, vendor, make_service, event_day, event_time):
    service = make_service(vendor, category=ServiceCategory.PHOTOGRAPHERS, price=1000, slot_days=[event_day])

    booking = BookingService(db).create_booking(
        customer.id, event_time, service_id=service.id, package_id=service.packages[0].id, quantity=3
    )

    assert booking.price == 1000
