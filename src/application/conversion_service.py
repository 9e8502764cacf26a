import logging
from datetime import datetime
from typing import Callable
from uuid import uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from src.application.booking_service import ensure_bookable
from src.application.notifications import LoggingSmsSender, NotificationDispatcher, SmsSender
from src.domain.catalog import EstimationStatus
from src.domain.exceptions import ConflictError, InvalidRequestError, NotFoundError
from src.domain.pricing import PricingEngine, as_utc, utc_now
from src.domain.state_machine import BookingStatus
from src.infrastructure.db.models import Booking, Estimation
from src.infrastructure.db.unit_of_work import UnitOfWork
from src.infrastructure.repositories.booking_repository import BookingRepository
from src.infrastructure.repositories.catalog_repository import CatalogRepository
from src.infrastructure.repositories.outbox_repository import OutboxRepository
from src.infrastructure.repositories.resource_ledger import ResourceLedger

logger = logging.getLogger(__name__)


class ConversionOrchestrator:
    """
    Turns an active estimation into pending bookings in one unit of work.

    Card lines reserve stock through the ledger. Service lines are
    validated (published, not self-owned, not already booked for the
    same time) but do not reserve a slot or stock here; only direct
    booking does that. If any line fails, the transaction is rolled back:
    no booking rows and no stock decrements survive.
    """

    def __init__(
        self,
        db: Session,
        sender: SmsSender | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.db = db
        self.booking_repository = BookingRepository(db)
        self.catalog = CatalogRepository(db)
        self.outbox = OutboxRepository(db)
        self.pricing = PricingEngine(clock)
        self.dispatcher = NotificationDispatcher(db, sender or LoggingSmsSender())

    def convert(
        self,
        estimation_id: str,
        user_id: str,
        scheduled_at: datetime | None,
    ) -> list[Booking]:
        if scheduled_at is None:
            raise InvalidRequestError("Date and time are required")
        scheduled_at = as_utc(scheduled_at)

        with UnitOfWork(self.db) as uow:
            ledger = ResourceLedger(uow)
            estimation = self._lock_estimation(estimation_id, user_id)
            if estimation.status != EstimationStatus.ACTIVE:
                raise ConflictError(f"Estimation {estimation.id} has already been converted")

            bookings = []
            for line in estimation.service_lines:
                created_ids = [booking.id for booking in bookings]
                bookings.append(self._book_service_line(user_id, line, scheduled_at, created_ids))
            for line in estimation.card_lines:
                bookings.append(self._book_card_line(ledger, user_id, line, scheduled_at))

            estimation.status = EstimationStatus.COMPLETED

            event_ids = []
            for vendor_id in sorted({booking.vendor_id for booking in bookings}):
                event = self.outbox.add_notification(
                    aggregate_type="estimation",
                    aggregate_id=estimation.id,
                    event_type="ESTIMATION_CONVERTED",
                    recipient_user_id=vendor_id,
                    message="New bookings have been requested from an estimation.",
                    dedupe_key=f"estimation:{estimation.id}:converted:{vendor_id}",
                )
                if event:
                    event_ids.append(event.id)

        logger.info(
            "Estimation %s converted into %s booking(s) for user %s",
            estimation_id,
            len(bookings),
            user_id,
        )
        self.dispatcher.dispatch(event_ids)
        return bookings

    def _lock_estimation(self, estimation_id: str, user_id: str) -> Estimation:
        stmt = (
            select(Estimation)
            .where(Estimation.id == estimation_id)
            .where(Estimation.user_id == user_id)
            .options(
                selectinload(Estimation.service_lines),
                selectinload(Estimation.card_lines),
            )
            .with_for_update()
        )
        estimation = self.db.execute(stmt).scalar_one_or_none()
        if not estimation:
            raise NotFoundError("Estimation not found or you are not authorized")
        return estimation

    def _book_service_line(
        self,
        user_id: str,
        line,
        scheduled_at: datetime,
        created_ids: list[str],
    ) -> Booking:
        service = self.catalog.require_service(line.service_id)
        ensure_bookable(service, user_id, "service")

        # Two packages of one service are separate lines; only bookings that
        # existed before this conversion count as duplicates.
        self.booking_repository.ensure_no_open_booking(
            user_id, service.id, scheduled_at, exclude_ids=created_ids
        )

        package = service.find_package(line.package_id)
        if package is None:
            raise NotFoundError(f"Package {line.package_id} not found for service {service.id}")

        booking = Booking(
            id=str(uuid4()),
            user_id=user_id,
            vendor_id=service.vendor_id,
            service_id=service.id,
            package_id=package.id,
            status=BookingStatus.PENDING,
            scheduled_at=scheduled_at,
            price=self.pricing.price_service(service, package, line.quantity),
            quantity=line.quantity,
            review_allowed=False,
            holds_reservation=False,
        )
        return self.booking_repository.add(booking)

    def _book_card_line(
        self,
        ledger: ResourceLedger,
        user_id: str,
        line,
        scheduled_at: datetime,
    ) -> Booking:
        card = self.catalog.require_card(line.card_template_id)
        ensure_bookable(card, user_id, "card template")

        booking = Booking(
            id=str(uuid4()),
            user_id=user_id,
            vendor_id=card.vendor_id,
            card_template_id=card.id,
            status=BookingStatus.PENDING,
            scheduled_at=scheduled_at,
            price=self.pricing.price_card(card, line.quantity),
            quantity=line.quantity,
            review_allowed=False,
            holds_reservation=False,
        )
        ledger.reserve_for_booking(booking, card)
        return self.booking_repository.add(booking)
