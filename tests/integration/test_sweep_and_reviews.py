from datetime import timedelta

import pytest

from src.application.booking_service import BookingService
from src.application.review_service import ReviewService
from src.application.scheduler import DailySweepScheduler
from src.domain.exceptions import InvalidRequestError, ReviewNotAllowedError
from src.domain.state_machine import BookingStatus
from src.infrastructure.db.models import Booking, CardTemplate


def _confirmed_card_booking(db, user, vendor, card, event_time, quantity=1):
    bookings = BookingService(db)
    booking = bookings.create_booking(user.id, event_time, card_template_id=card.id, quantity=quantity)
    return bookings.update_status_by_vendor(booking.id, vendor.id, BookingStatus.CONFIRMED)


def _completed_card_booking(db, user, vendor, card, event_time):
    booking = _confirmed_card_booking(db, user, vendor, card, event_time)
    return BookingService(db).update_status_by_vendor(booking.id, vendor.id, BookingStatus.COMPLETED)


# ---------------------
# DAILY SWEEP
# ---------------------

def test_sweep_completes_past_confirmed_bookings(db, fetch, customer, vendor, make_card, event_time):
    card = make_card(vendor, available_quantity=5)
    confirmed = _confirmed_card_booking(db, customer, vendor, card, event_time, quantity=2)
    pending = BookingService(db).create_booking(customer.id, event_time, card_template_id=card.id)
    after_event = event_time + timedelta(days=1)

    completed = BookingService(db, clock=lambda: after_event).complete_past_events()

    assert completed == 1
    swept = fetch(Booking, confirmed.id)
    assert swept.status == BookingStatus.COMPLETED
    assert swept.completed_at is not None
    assert swept.review_allowed is True
    assert fetch(Booking, pending.id).status == BookingStatus.PENDING
    # The event consumed the stock; nothing is given back.
    assert fetch(CardTemplate, card.id).available_quantity == 2


def test_sweep_leaves_future_events_alone(db, customer, vendor, make_card, event_time):
    card = make_card(vendor)
    _confirmed_card_booking(db, customer, vendor, card, event_time)
    before_event = event_time - timedelta(days=1)

    assert BookingService(db, clock=lambda: before_event).complete_past_events() == 0


def test_scheduler_run_once_uses_its_own_session(session_factory, fetch, db, customer, vendor, make_card, event_time):
    card = make_card(vendor)
    booking = _confirmed_card_booking(db, customer, vendor, card, event_time)
    scheduler = DailySweepScheduler(
        session_factory=session_factory,
        hour_utc=0,
        clock=lambda: event_time + timedelta(days=2),
    )

    assert scheduler.run_once() == 1
    assert fetch(Booking, booking.id).status == BookingStatus.COMPLETED


def test_sweep_endpoint_requires_admin(client, headers, customer, admin):
    assert client.post("/admin/bookings/complete-past", headers=headers(customer)).status_code == 403

    response = client.post("/admin/bookings/complete-past", headers=headers(admin))
    assert response.status_code == 200
    assert response.json() == {"completed": 0}


# ---------------------
# REVIEWS
# ---------------------

def test_reviews_aggregate_mean_of_active_reviews(db, fetch, make_user, vendor, make_card, event_time):
    card = make_card(vendor, available_quantity=10)
    first, second = make_user(full_name="First"), make_user(full_name="Second")
    reviews = ReviewService(db)

    first_booking = _completed_card_booking(db, first, vendor, card, event_time)
    second_booking = _completed_card_booking(db, second, vendor, card, event_time)

    five_star = reviews.submit_review(first.id, first_booking.id, 5, "Beautiful print")
    reviews.submit_review(second.id, second_booking.id, 2)

    rated = fetch(CardTemplate, card.id)
    assert rated.review_count == 2
    assert rated.avg_rating == 3.5

    reviews.deactivate_review(five_star.id)

    rated = fetch(CardTemplate, card.id)
    assert rated.review_count == 1
    assert rated.avg_rating == 2


def test_review_requires_completed_booking(db, customer, vendor, make_card, event_time):
    card = make_card(vendor)
    booking = _confirmed_card_booking(db, customer, vendor, card, event_time)

    with pytest.raises(ReviewNotAllowedError):
        ReviewService(db).submit_review(customer.id, booking.id, 4)


def test_booking_can_be_reviewed_once(db, customer, vendor, make_card, event_time):
    card = make_card(vendor)
    booking = _completed_card_booking(db, customer, vendor, card, event_time)
    reviews = ReviewService(db)
    reviews.submit_review(customer.id, booking.id, 4)

    with pytest.raises(ReviewNotAllowedError):
        reviews.submit_review(customer.id, booking.id, 5)


def test_review_rejects_out_of_range_rating(db, customer, vendor, make_card, event_time):
    card = make_card(vendor)
    booking = _completed_card_booking(db, customer, vendor, card, event_time)

    with pytest.raises(InvalidRequestError):
        ReviewService(db).submit_review(customer.id, booking.id, 6)
