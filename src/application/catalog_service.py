import logging
from dataclasses import dataclass
from datetime import date, datetime

from sqlalchemy import select
from sqlalchemy.orm import Session

from src.domain.catalog import (
    CardType,
    PublicationStatus,
    ServiceBookingType,
    ServiceCategory,
)
from src.domain.exceptions import ConflictError, InvalidRequestError
from src.domain.pricing import as_utc
from src.infrastructure.db.models import CardTemplate, Service, ServicePackage, ServiceSlot
from src.infrastructure.db.unit_of_work import UnitOfWork
from src.infrastructure.repositories.catalog_repository import CatalogRepository

logger = logging.getLogger(__name__)


@dataclass
class PackageSpec:
    name: str
    price: float
    inclusions: str | None = None


class CatalogService:
    """
    Vendor-side listing management and admin moderation.

    Stock is set once when a listing is created; after that only the
    resource ledger changes it.
    """

    def __init__(self, db: Session):
        self.db = db
        self.catalog = CatalogRepository(db)

    def create_service(
        self,
        vendor_id: str,
        name: str,
        category: ServiceCategory,
        city: str,
        packages: list[PackageSpec],
        booking_type: ServiceBookingType = ServiceBookingType.EVENT_BASED,
        available_quantity: int | None = None,
        description: str | None = None,
    ) -> Service:
        if not packages:
            raise InvalidRequestError("At least one pricing package is required")
        if booking_type == ServiceBookingType.QUANTITY_BASED and available_quantity is None:
            raise InvalidRequestError("Quantity-based services need an available quantity")

        with UnitOfWork(self.db):
            service = Service(
                vendor_id=vendor_id,
                name=name,
                category=category,
                city=city,
                description=description,
                booking_type=booking_type,
                available_quantity=(
                    available_quantity
                    if booking_type == ServiceBookingType.QUANTITY_BASED
                    else None
                ),
                status=PublicationStatus.PENDING,
            )
            service.packages = [
                ServicePackage(name=item.name, price=item.price, inclusions=item.inclusions)
                for item in packages
            ]
            self.db.add(service)

        logger.info("Service %s created by vendor %s", service.id, vendor_id)
        return service

    def add_slots(self, service_id: str, vendor_id: str, days: list[date]) -> list[ServiceSlot]:
        with UnitOfWork(self.db):
            service = self.catalog.require_vendor_service(service_id, vendor_id)
            if service.booking_type != ServiceBookingType.EVENT_BASED:
                raise ConflictError("Only event-based services offer date slots")

            existing = set(
                self.db.execute(
                    select(ServiceSlot.slot_date).where(ServiceSlot.service_id == service.id)
                ).scalars()
            )
            created = []
            for day in sorted(set(days)):
                if day in existing:
                    continue
                slot = ServiceSlot(service_id=service.id, slot_date=day, is_booked=False)
                self.db.add(slot)
                created.append(slot)

        logger.info("Added %s slot(s) to service %s", len(created), service_id)
        return created

    def list_slots(self, service_id: str) -> list[ServiceSlot]:
        self.catalog.require_service(service_id)
        stmt = (
            select(ServiceSlot)
            .where(ServiceSlot.service_id == service_id)
            .order_by(ServiceSlot.slot_date)
        )
        return list(self.db.execute(stmt).scalars().all())

    def create_card(
        self,
        vendor_id: str,
        card_type: CardType,
        city: str,
        price_per_card: float,
        available_quantity: int,
        name: str | None = None,
    ) -> CardTemplate:
        with UnitOfWork(self.db):
            card = CardTemplate(
                vendor_id=vendor_id,
                name=name,
                card_type=card_type,
                city=city,
                price_per_card=price_per_card,
                available_quantity=available_quantity,
                status=PublicationStatus.PENDING,
            )
            self.db.add(card)

        logger.info("Card template %s created by vendor %s", card.id, vendor_id)
        return card

    def set_service_discount(
        self,
        service_id: str,
        vendor_id: str,
        discount_percent: float,
        discount_expiry: datetime | None,
    ) -> Service:
        with UnitOfWork(self.db):
            service = self.catalog.require_vendor_service(service_id, vendor_id)
            service.discount_percent = discount_percent
            service.discount_expiry = as_utc(discount_expiry)
        return service

    def set_card_discount(
        self,
        card_id: str,
        vendor_id: str,
        discount_percent: float,
        discount_expiry: datetime | None,
    ) -> CardTemplate:
        with UnitOfWork(self.db):
            card = self.catalog.require_vendor_card(card_id, vendor_id)
            card.discount_percent = discount_percent
            card.discount_expiry = as_utc(discount_expiry)
        return card

    def set_service_status(self, service_id: str, status: PublicationStatus) -> Service:
        with UnitOfWork(self.db):
            service = self.catalog.require_service(service_id)
            service.status = status
        logger.info("Service %s is now %s", service_id, status.value)
        return service

    def set_card_status(self, card_id: str, status: PublicationStatus) -> CardTemplate:
        with UnitOfWork(self.db):
            card = self.catalog.require_card(card_id)
            card.status = status
        logger.info("Card template %s is now %s", card_id, status.value)
        return card

    # -----------------------------
    # Availability (read-only)
    # -----------------------------
    def service_availability(self, service_id: str, day: date) -> bool:
        service = self.catalog.require_service(service_id)
        if service.status != PublicationStatus.PUBLISHED:
            return False
        if service.booking_type == ServiceBookingType.QUANTITY_BASED:
            return (service.available_quantity or 0) > 0

        slot = self.db.execute(
            select(ServiceSlot)
            .where(ServiceSlot.service_id == service_id)
            .where(ServiceSlot.slot_date == day)
        ).scalar_one_or_none()
        return slot is not None and not slot.is_booked

    def card_availability(self, card_id: str, quantity: int) -> bool:
        if quantity < 1:
            raise InvalidRequestError("Quantity must be at least 1")
        card = self.catalog.require_card(card_id)
        return card.status == PublicationStatus.PUBLISHED and card.available_quantity >= quantity
