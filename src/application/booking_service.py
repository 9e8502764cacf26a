import logging
from datetime import datetime
from typing import Callable
from uuid import uuid4

from sqlalchemy.orm import Session

from src.application.notifications import LoggingSmsSender, NotificationDispatcher, SmsSender
from src.domain.catalog import PublicationStatus, UserRole, is_rental
from src.domain.exceptions import (
    InsufficientInventoryError,
    InvalidRequestError,
    NotFoundError,
    PermissionDeniedError,
    ResourceNotPublishedError,
    SelfBookingError,
)
from src.domain.pricing import PricingEngine, as_utc, utc_now
from src.domain.state_machine import BookingStateMachine, BookingStatus
from src.infrastructure.db.models import Booking, CardTemplate, Service
from src.infrastructure.db.unit_of_work import UnitOfWork
from src.infrastructure.repositories.booking_repository import BookingRepository
from src.infrastructure.repositories.catalog_repository import CatalogRepository
from src.infrastructure.repositories.outbox_repository import OutboxRepository
from src.infrastructure.repositories.resource_ledger import ResourceLedger

logger = logging.getLogger(__name__)


def ensure_bookable(resource: Service | CardTemplate, user_id: str, label: str) -> None:
    """Shared guard for direct booking and estimation conversion."""
    if resource.vendor_id == user_id:
        raise SelfBookingError(f"You cannot book your own {label} {resource.id}")
    if resource.status != PublicationStatus.PUBLISHED:
        raise ResourceNotPublishedError(f"{label.capitalize()} {resource.id} is not published")


class BookingService:
    """Application service coordinating booking workflow."""

    def __init__(
        self,
        db: Session,
        sender: SmsSender | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.db = db
        self.clock = clock
        self.booking_repository = BookingRepository(db)
        self.catalog = CatalogRepository(db)
        self.outbox = OutboxRepository(db)
        self.pricing = PricingEngine(clock)
        self.dispatcher = NotificationDispatcher(db, sender or LoggingSmsSender())

    # -----------------------------
    # Creation
    # -----------------------------
    def create_booking(
        self,
        user_id: str,
        scheduled_at: datetime,
        service_id: str | None = None,
        package_id: str | None = None,
        card_template_id: str | None = None,
        quantity: int = 1,
        end_date: datetime | None = None,
    ) -> Booking:
        if not service_id and not card_template_id:
            raise InvalidRequestError("Either service_id or card_template_id is required")
        if service_id and card_template_id:
            raise InvalidRequestError("Cannot book both a service and a card template")
        if quantity < 1:
            raise InvalidRequestError("Quantity must be at least 1")
        if service_id and not package_id:
            raise InvalidRequestError("Package ID is required for services")

        scheduled_at = as_utc(scheduled_at)
        end_date = as_utc(end_date)

        with UnitOfWork(self.db) as uow:
            customer = self.catalog.require_user(user_id)
            ledger = ResourceLedger(uow)
            if service_id:
                booking = self._book_service(
                    ledger, user_id, service_id, package_id, scheduled_at, quantity, end_date
                )
            else:
                booking = self._book_card(
                    ledger, user_id, card_template_id, scheduled_at, quantity
                )

            event_ids = self._notify(
                booking,
                recipient_id=booking.vendor_id,
                event_type="BOOKING_REQUESTED",
                message=f"A new booking has been requested by {customer.full_name}.",
            )

        logger.info(
            "Booking %s created for user %s (price=%s quantity=%s)",
            booking.id,
            user_id,
            booking.price,
            booking.quantity,
        )
        self.dispatcher.dispatch(event_ids)
        return booking

    def _book_service(
        self,
        ledger: ResourceLedger,
        user_id: str,
        service_id: str,
        package_id: str,
        scheduled_at: datetime,
        quantity: int,
        end_date: datetime | None,
    ) -> Booking:
        service = self.catalog.require_service(service_id)
        ensure_bookable(service, user_id, "service")

        package = service.find_package(package_id)
        if not package:
            raise InvalidRequestError("Invalid package ID")

        rental = is_rental(service.category)
        if rental:
            if end_date is None:
                raise InvalidRequestError("End date is required for rental services")
            if end_date < scheduled_at:
                raise InvalidRequestError("End date must not be before the start date")

        self.booking_repository.ensure_no_open_booking(user_id, service.id, scheduled_at)

        booking = Booking(
            id=str(uuid4()),
            user_id=user_id,
            vendor_id=service.vendor_id,
            service_id=service.id,
            package_id=package.id,
            status=BookingStatus.PENDING,
            scheduled_at=scheduled_at,
            event_date=end_date if rental else scheduled_at,
            price=self.pricing.price_service(service, package, quantity),
            quantity=quantity,
            review_allowed=False,
            holds_reservation=False,
        )
        ledger.reserve_for_booking(booking, service)
        return self.booking_repository.add(booking)

    def _book_card(
        self,
        ledger: ResourceLedger,
        user_id: str,
        card_id: str,
        scheduled_at: datetime,
        quantity: int,
    ) -> Booking:
        card = self.catalog.require_card(card_id)
        ensure_bookable(card, user_id, "card template")

        if card.available_quantity == 0:
            raise InsufficientInventoryError("No cards available for booking")
        if quantity > card.available_quantity:
            raise InsufficientInventoryError(
                f"Requested quantity {quantity} exceeds available {card.available_quantity}"
            )

        booking = Booking(
            id=str(uuid4()),
            user_id=user_id,
            vendor_id=card.vendor_id,
            card_template_id=card.id,
            status=BookingStatus.PENDING,
            scheduled_at=scheduled_at,
            price=self.pricing.price_card(card, quantity),
            quantity=quantity,
            review_allowed=False,
            holds_reservation=False,
        )
        # The check above is advisory; the ledger's compare-and-decrement decides.
        ledger.reserve_for_booking(booking, card)
        return self.booking_repository.add(booking)

    # -----------------------------
    # Transitions
    # -----------------------------
    def cancel_by_user(self, booking_id: str, user_id: str) -> Booking:
        with UnitOfWork(self.db) as uow:
            booking = self.booking_repository.lock_for_user(booking_id, user_id)

            # Users may only withdraw requests the vendor has not accepted yet.
            if booking.status == BookingStatus.CONFIRMED:
                raise PermissionDeniedError(
                    "Confirmed bookings can only be canceled by the vendor or an admin"
                )

            self._transition(ResourceLedger(uow), booking, BookingStatus.CANCELED)
            event_ids = self._notify(
                booking,
                recipient_id=booking.vendor_id,
                event_type="BOOKING_CANCELED_BY_USER",
                message="A booking has been canceled by the user.",
            )

        logger.info("Booking %s canceled by user %s", booking.id, user_id)
        self.dispatcher.dispatch(event_ids)
        return booking

    def update_status_by_vendor(
        self,
        booking_id: str,
        vendor_id: str,
        status: BookingStatus,
    ) -> Booking:
        with UnitOfWork(self.db) as uow:
            booking = self.booking_repository.lock_for_vendor(booking_id, vendor_id)
            self._transition(ResourceLedger(uow), booking, status)

            item_name = self._item_name(booking)
            event_ids = self._notify(
                booking,
                recipient_id=booking.user_id,
                event_type=f"BOOKING_{status.name}",
                message=f"Your booking for {item_name} has been updated to {status.value}.",
            )

        logger.info("Booking %s moved to %s by vendor %s", booking.id, status.value, vendor_id)
        self.dispatcher.dispatch(event_ids)
        return booking

    def cancel_by_admin(self, booking_id: str) -> Booking:
        with UnitOfWork(self.db) as uow:
            booking = self.booking_repository.lock_any(booking_id)
            self._transition(ResourceLedger(uow), booking, BookingStatus.CANCELED)

            event_ids = self._notify(
                booking,
                recipient_id=booking.user_id,
                event_type="BOOKING_CANCELED_BY_ADMIN",
                message="Your booking has been canceled by the admin.",
                audience="user",
            )
            event_ids += self._notify(
                booking,
                recipient_id=booking.vendor_id,
                event_type="BOOKING_CANCELED_BY_ADMIN",
                message="A booking has been canceled by the admin.",
                audience="vendor",
            )

        logger.info("Booking %s canceled by admin", booking.id)
        self.dispatcher.dispatch(event_ids)
        return booking

    def complete_past_events(self) -> int:
        """
        Daily sweep: confirmed bookings whose event date has passed become
        completed. The event consumed the resource, so nothing is released.
        """
        now = self.clock()
        with UnitOfWork(self.db):
            bookings = self.booking_repository.lock_past_confirmed(now)
            for booking in bookings:
                BookingStateMachine.apply(booking, BookingStatus.COMPLETED, now)

        logger.info("Auto-completed %s booking(s) whose event date has passed.", len(bookings))
        return len(bookings)

    def _transition(
        self,
        ledger: ResourceLedger,
        booking: Booking,
        to_status: BookingStatus,
    ) -> None:
        BookingStateMachine.apply(booking, to_status, self.clock())
        if to_status == BookingStatus.CANCELED:
            ledger.release_for_booking(booking)

    # -----------------------------
    # Queries
    # -----------------------------
    def get_for_actor(self, booking_id: str, actor_id: str, role: UserRole) -> Booking:
        booking = self.booking_repository.get_by_id(booking_id)
        if not booking:
            raise NotFoundError("Booking not found")
        if role != UserRole.ADMIN and actor_id not in (booking.user_id, booking.vendor_id):
            raise NotFoundError("Booking not found")
        return booking

    def list_for_user(self, user_id: str, limit: int = 20, offset: int = 0) -> list[Booking]:
        return self.booking_repository.list_for_user(user_id, limit, offset)

    def list_for_vendor(
        self,
        vendor_id: str,
        status: BookingStatus | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> list[Booking]:
        return self.booking_repository.list_for_vendor(vendor_id, status, limit, offset)

    # -----------------------------
    # Helpers
    # -----------------------------
    def _item_name(self, booking: Booking) -> str:
        if booking.service_id:
            service = self.catalog.get_service(booking.service_id)
            return service.name if service else "a service"
        card = self.catalog.get_card(booking.card_template_id)
        return card.display_name if card else "a card"

    def _notify(
        self,
        booking: Booking,
        recipient_id: str,
        event_type: str,
        message: str,
        audience: str = "",
    ) -> list[str]:
        dedupe_key = f"booking:{booking.id}:{event_type.lower()}"
        if audience:
            dedupe_key = f"{dedupe_key}:{audience}"

        event = self.outbox.add_notification(
            aggregate_type="booking",
            aggregate_id=booking.id,
            event_type=event_type,
            recipient_user_id=recipient_id,
            message=message,
            dedupe_key=dedupe_key,
        )
        return [event.id] if event else []
