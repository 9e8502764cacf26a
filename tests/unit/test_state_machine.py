# tests/unit/test_state_machine.py

from datetime import datetime, timezone
from types import SimpleNamespace

import pytest

from src.domain.state_machine import BookingStateMachine, BookingStatus
from src.domain.exceptions import InvalidStateTransitionError


NOW = datetime(2026, 5, 1, 12, 0, tzinfo=timezone.utc)


def _booking(status: BookingStatus, **fields):
    defaults = {
        "status": status,
        "scheduled_at": datetime(2026, 4, 20, 18, 0, tzinfo=timezone.utc),
        "event_date": None,
        "completed_at": None,
        "review_allowed": False,
    }
    defaults.update(fields)
    return SimpleNamespace(**defaults)


# ---------------------
# VALID TRANSITIONS
# ---------------------

def test_valid_happy_path():
    assert BookingStateMachine.can_transition(
        BookingStatus.PENDING,
        BookingStatus.CONFIRMED,
    )

    assert BookingStateMachine.can_transition(
        BookingStatus.CONFIRMED,
        BookingStatus.COMPLETED,
    )


def test_open_bookings_can_be_canceled():
    assert BookingStateMachine.can_transition(BookingStatus.PENDING, BookingStatus.CANCELED)
    assert BookingStateMachine.can_transition(BookingStatus.CONFIRMED, BookingStatus.CANCELED)


def test_allowed_transitions_from_pending():
    assert BookingStateMachine.get_allowed_transitions(BookingStatus.PENDING) == {
        BookingStatus.CONFIRMED,
        BookingStatus.CANCELED,
    }


# ---------------------
# INVALID TRANSITIONS
# ---------------------

def test_cannot_complete_unconfirmed_booking():
    with pytest.raises(InvalidStateTransitionError):
        BookingStateMachine.validate_transition(
            BookingStatus.PENDING,
            BookingStatus.COMPLETED,
        )


def test_terminal_state_completed():
    assert BookingStateMachine.is_terminal(BookingStatus.COMPLETED)

    with pytest.raises(InvalidStateTransitionError):
        BookingStateMachine.validate_transition(
            BookingStatus.COMPLETED,
            BookingStatus.CANCELED,
        )


def test_terminal_state_canceled():
    assert BookingStateMachine.is_terminal(BookingStatus.CANCELED)

    with pytest.raises(InvalidStateTransitionError):
        BookingStateMachine.validate_transition(
            BookingStatus.CANCELED,
            BookingStatus.CONFIRMED,
        )


def test_same_state_is_not_a_transition():
    assert not BookingStateMachine.can_transition(
        BookingStatus.CONFIRMED,
        BookingStatus.CONFIRMED,
    )


def test_invalid_type_guard():
    with pytest.raises(TypeError):
        BookingStateMachine.validate_transition(
            "pending",  # invalid type
            BookingStatus.CONFIRMED,
        )


# ---------------------
# ENTRY EFFECTS
# ---------------------

def test_confirm_defaults_event_date_to_scheduled_time():
    booking = _booking(BookingStatus.PENDING)

    BookingStateMachine.apply(booking, BookingStatus.CONFIRMED, NOW)

    assert booking.status == BookingStatus.CONFIRMED
    assert booking.event_date == booking.scheduled_at


def test_confirm_keeps_rental_end_date():
    end = datetime(2026, 4, 22, 18, 0, tzinfo=timezone.utc)
    booking = _booking(BookingStatus.PENDING, event_date=end)

    BookingStateMachine.apply(booking, BookingStatus.CONFIRMED, NOW)

    assert booking.event_date == end


def test_complete_opens_review_window():
    booking = _booking(BookingStatus.CONFIRMED)

    BookingStateMachine.apply(booking, BookingStatus.COMPLETED, NOW)

    assert booking.completed_at == NOW
    assert booking.review_allowed is True


def test_illegal_apply_leaves_booking_untouched():
    booking = _booking(BookingStatus.CANCELED)

    with pytest.raises(InvalidStateTransitionError):
        BookingStateMachine.apply(booking, BookingStatus.COMPLETED, NOW)

    assert booking.status == BookingStatus.CANCELED
    assert booking.completed_at is None
    assert booking.review_allowed is False
