# src/domain/state_machine.py

from datetime import datetime
from enum import Enum
from typing import Dict, Set

from src.domain.exceptions import InvalidStateTransitionError


class BookingStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELED = "canceled"


class BookingStateMachine:
    """
    Central lifecycle controller for booking transitions.
    Defines the legal state transitions and the field updates
    that entering a state implies. Every entry point (user cancel,
    vendor update, admin cancel, scheduled sweep) goes through here.
    """

    _ALLOWED_TRANSITIONS: Dict[BookingStatus, Set[BookingStatus]] = {
        BookingStatus.PENDING: {
            BookingStatus.CONFIRMED,
            BookingStatus.CANCELED,
        },
        BookingStatus.CONFIRMED: {
            BookingStatus.COMPLETED,
            BookingStatus.CANCELED,
        },
        BookingStatus.COMPLETED: set(),
        BookingStatus.CANCELED: set(),
    }

    # Statuses that block a second booking of the same service and time.
    OPEN_STATUSES = frozenset({BookingStatus.PENDING, BookingStatus.CONFIRMED})

    @classmethod
    def can_transition(
        cls,
        from_status: BookingStatus,
        to_status: BookingStatus,
    ) -> bool:
        """
        Returns True if transition is allowed.
        """
        cls._ensure_valid_status(from_status)
        cls._ensure_valid_status(to_status)

        return to_status in cls._ALLOWED_TRANSITIONS.get(from_status, set())

    @classmethod
    def validate_transition(
        cls,
        from_status: BookingStatus,
        to_status: BookingStatus,
    ) -> None:
        """
        Raises InvalidStateTransitionError if transition is illegal.
        """
        if not cls.can_transition(from_status, to_status):
            raise InvalidStateTransitionError(
                from_state=from_status.value,
                to_state=to_status.value,
            )

    @classmethod
    def is_terminal(cls, status: BookingStatus) -> bool:
        """
        Returns True if the state is terminal (no further transitions allowed).
        """
        cls._ensure_valid_status(status)
        return len(cls._ALLOWED_TRANSITIONS.get(status, set())) == 0

    @classmethod
    def get_allowed_transitions(
        cls, status: BookingStatus
    ) -> Set[BookingStatus]:
        """
        Returns allowed next states from current state.
        """
        cls._ensure_valid_status(status)
        return cls._ALLOWED_TRANSITIONS.get(status, set())

    @classmethod
    def apply(cls, booking, to_status: BookingStatus, now: datetime) -> None:
        """
        Validates and performs the transition on ``booking``, applying
        the entry effects of the target state. Resource release on
        cancellation is the caller's job (it needs the ledger).
        """
        cls.validate_transition(booking.status, to_status)
        booking.status = to_status

        if to_status == BookingStatus.CONFIRMED and booking.event_date is None:
            booking.event_date = booking.scheduled_at

        if to_status == BookingStatus.COMPLETED and booking.completed_at is None:
            booking.completed_at = now
            booking.review_allowed = True

    @staticmethod
    def _ensure_valid_status(status: BookingStatus) -> None:
        if not isinstance(status, BookingStatus):
            raise TypeError(
                f"Expected BookingStatus, got {type(status)}"
            )
