# src/infrastructure/repositories/resource_ledger.py

import logging
from datetime import date, datetime, timedelta
from typing import Iterable

from sqlalchemy import update

from src.domain.catalog import PublicationStatus, ServiceBookingType, is_rental
from src.domain.exceptions import InsufficientInventoryError, SlotTakenError
from src.domain.pricing import as_utc
from src.infrastructure.db.models import Booking, CardTemplate, Service, ServiceSlot
from src.infrastructure.db.unit_of_work import UnitOfWork

logger = logging.getLogger(__name__)


def calendar_day(value: datetime) -> date:
    """Slots are matched by UTC calendar day; time-of-day is ignored."""
    return as_utc(value).date()


def booking_days(start: datetime, end: datetime | None) -> list[date]:
    first = calendar_day(start)
    last = calendar_day(end) if end is not None else first
    if last < first:
        last = first
    return [first + timedelta(days=offset) for offset in range((last - first).days + 1)]


class ResourceLedger:
    """
    The only writer of availability state: card stock, quantity-based
    service stock and per-date service slots.

    Every reservation is a single compare-and-set UPDATE, so the check and
    the write cannot be split by a concurrent request. The loser sees zero
    affected rows and fails fast instead of waiting.
    """

    def __init__(self, uow: UnitOfWork):
        self.uow = uow
        self.db = uow.session

    # -----------------------------
    # Quantity resources
    # -----------------------------
    def reserve_quantity(self, resource: CardTemplate | Service, quantity: int) -> None:
        model = type(resource)
        stmt = (
            update(model)
            .where(model.id == resource.id)
            .where(model.status == PublicationStatus.PUBLISHED)
            .where(model.available_quantity >= quantity)
            .values(available_quantity=model.available_quantity - quantity)
            .execution_options(synchronize_session=False)
        )
        result = self.db.execute(stmt)

        if result.rowcount != 1:
            raise InsufficientInventoryError(
                f"Requested quantity {quantity} is not available for {resource.id}"
            )

        self.db.expire(resource, ["available_quantity"])
        logger.debug("Reserved %s unit(s) of %s", quantity, resource.id)

    def release_quantity(self, resource: CardTemplate | Service, quantity: int) -> None:
        model = type(resource)
        stmt = (
            update(model)
            .where(model.id == resource.id)
            .values(available_quantity=model.available_quantity + quantity)
            .execution_options(synchronize_session=False)
        )
        self.db.execute(stmt)
        self.db.expire(resource, ["available_quantity"])
        logger.debug("Released %s unit(s) of %s", quantity, resource.id)

    # -----------------------------
    # Slot resources
    # -----------------------------
    def reserve_slots(
        self,
        service: Service,
        days: Iterable[date],
        booking_id: str,
    ) -> None:
        for day in days:
            stmt = (
                update(ServiceSlot)
                .where(ServiceSlot.service_id == service.id)
                .where(ServiceSlot.slot_date == day)
                .where(ServiceSlot.is_booked.is_(False))
                .values(
                    is_booked=True,
                    reserved_by=booking_id,
                    reservation_expiry=None,
                )
                .execution_options(synchronize_session=False)
            )
            result = self.db.execute(stmt)
            if result.rowcount != 1:
                raise SlotTakenError(service.id, day)

        logger.debug("Reserved slots of %s for booking %s", service.id, booking_id)

    def release_slots(
        self,
        service: Service,
        days: Iterable[date],
        booking_id: str,
    ) -> None:
        stmt = (
            update(ServiceSlot)
            .where(ServiceSlot.service_id == service.id)
            .where(ServiceSlot.slot_date.in_(list(days)))
            .where(ServiceSlot.reserved_by == booking_id)
            .values(
                is_booked=False,
                reserved_by=None,
                reservation_expiry=None,
            )
            .execution_options(synchronize_session=False)
        )
        self.db.execute(stmt)
        logger.debug("Released slots of %s held by booking %s", service.id, booking_id)

    # -----------------------------
    # Booking-level entry points
    # -----------------------------
    def reserve_for_booking(
        self,
        booking: Booking,
        resource: CardTemplate | Service,
    ) -> None:
        """
        Claims whatever ``booking`` needs from ``resource`` and marks the
        booking as holding it. Must run inside the booking's unit of work.
        """
        if isinstance(resource, CardTemplate):
            self.reserve_quantity(resource, booking.quantity)
        elif resource.booking_type == ServiceBookingType.QUANTITY_BASED:
            self.reserve_quantity(resource, booking.quantity)
        else:
            self.reserve_slots(resource, self._days_for(booking, resource), booking.id)

        booking.holds_reservation = True

    def release_for_booking(self, booking: Booking) -> None:
        """
        Gives back what ``booking`` holds. A booking that holds nothing
        (already released, or converted without reserving) is left alone.
        """
        if not booking.holds_reservation:
            return

        if booking.card_template_id:
            card = self.db.get(CardTemplate, booking.card_template_id)
            if card is not None:
                self.release_quantity(card, booking.quantity)
        else:
            service = self.db.get(Service, booking.service_id)
            if service is not None:
                if service.booking_type == ServiceBookingType.QUANTITY_BASED:
                    self.release_quantity(service, booking.quantity)
                else:
                    self.release_slots(
                        service,
                        self._days_for(booking, service),
                        booking.id,
                    )

        booking.holds_reservation = False

    @staticmethod
    def _days_for(booking: Booking, service: Service) -> list[date]:
        if is_rental(service.category):
            return booking_days(booking.scheduled_at, booking.event_date)
        return booking_days(booking.scheduled_at, None)
