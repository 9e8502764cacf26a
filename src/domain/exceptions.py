

class MarketplaceError(Exception):
    """
    Base exception for all domain-level errors
    inside the wedding marketplace booking engine.
    """


class InvalidRequestError(MarketplaceError):
    """Raised when input is missing or malformed. No state is changed."""


class NotFoundError(MarketplaceError):
    """Raised when an entity is absent or not owned by the caller."""


class PermissionDeniedError(MarketplaceError):
    """Raised when the caller's role may not perform the action."""


class ConflictError(MarketplaceError):
    """
    Raised when the request is well-formed but clashes with current state.
    The caller may retry with different parameters.
    """


class ResourceNotPublishedError(ConflictError):
    """Raised when booking a service or card that is not published."""


class SelfBookingError(ConflictError):
    """Raised when a vendor tries to book their own service or card."""


class DuplicateBookingError(ConflictError):
    """Raised when an open booking already exists for the same service and time."""


class InsufficientInventoryError(ConflictError):
    """Raised when not enough stock is available."""


class SlotTakenError(ConflictError):
    """Raised when a date slot is already reserved or not offered."""

    def __init__(self, service_id: str, slot_date):
        self.service_id = service_id
        self.slot_date = slot_date
        super().__init__(
            f"Service {service_id} is not available on {slot_date.isoformat()}"
        )


class InvalidStateTransitionError(ConflictError):
    """
    Raised when an illegal booking state transition is attempted.
    """

    def __init__(self, from_state: str, to_state: str):
        self.from_state = from_state
        self.to_state = to_state

        message = (
            f"Illegal state transition attempted: "
            f"{from_state} -> {to_state}"
        )
        super().__init__(message)


class ReviewNotAllowedError(ConflictError):
    """Raised when a booking cannot be reviewed (yet, or again)."""


class TransactionFailureError(MarketplaceError):
    """
    Raised when the atomic commit failed. Nothing was committed,
    so the whole operation is safe to retry.
    """


class NotificationDeliveryError(MarketplaceError):
    """Raised by SMS senders. Logged and recorded, never propagated to callers."""
