import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from src.domain.catalog import EstimationStatus
from src.domain.exceptions import InvalidRequestError, NotFoundError
from src.domain.pricing import PricingEngine, utc_now
from src.infrastructure.db.models import Estimation, EstimationCardLine, EstimationServiceLine
from src.infrastructure.db.unit_of_work import UnitOfWork
from src.infrastructure.repositories.catalog_repository import CatalogRepository

logger = logging.getLogger(__name__)


@dataclass
class ServiceSelection:
    service_id: str
    package_id: str
    quantity: int | None = None


@dataclass
class CardSelection:
    card_id: str
    quantity: int | None = None


def _with_lines(stmt):
    return stmt.options(
        selectinload(Estimation.service_lines),
        selectinload(Estimation.card_lines),
    )


class EstimationAggregator:
    """
    Maintains a user's draft selection of services and cards.

    Lines are merged by (service, package) and by card, and the total is
    re-priced from live resource state after every change. Nothing here
    touches stock or slots; that only happens on conversion.
    """

    def __init__(self, db: Session, clock: Callable[[], datetime] = utc_now):
        self.db = db
        self.catalog = CatalogRepository(db)
        self.pricing = PricingEngine(clock)

    def add_or_update(
        self,
        user_id: str,
        services: list[ServiceSelection],
        cards: list[CardSelection],
    ) -> Estimation | None:
        """
        Returns the active estimation, or None if the merge emptied
        (and therefore deleted) it.
        """
        if not services and not cards:
            raise InvalidRequestError(
                "At least one service or card is required to create an estimation"
            )

        with UnitOfWork(self.db):
            self.catalog.require_user(user_id)
            self._validate_selections(services, cards)

            estimation = self._active_for(user_id, lock=True)
            if estimation is None:
                estimation = Estimation(
                    user_id=user_id,
                    status=EstimationStatus.ACTIVE,
                    total_cost=0,
                )
                self.db.add(estimation)

            self._merge_services(estimation, services)
            self._merge_cards(estimation, cards)

            if estimation.is_empty:
                self._discard(estimation)
                logger.info("Estimation of user %s emptied and removed", user_id)
                return None

            self._recompute_total(estimation)

        logger.info(
            "Estimation %s updated for user %s (total=%s)",
            estimation.id,
            user_id,
            estimation.total_cost,
        )
        return estimation

    def remove_item(
        self,
        estimation_id: str,
        user_id: str,
        service_id: str | None = None,
        card_id: str | None = None,
    ) -> Estimation | None:
        """
        Removes matching lines. With no identifiers, or when nothing is
        left, the whole estimation is deleted and None is returned.
        """
        with UnitOfWork(self.db):
            estimation = self.get(estimation_id, user_id)

            if not service_id and not card_id:
                self._discard(estimation)
                return None

            if service_id:
                for line in list(estimation.service_lines):
                    if line.service_id == service_id:
                        estimation.service_lines.remove(line)
            if card_id:
                for line in list(estimation.card_lines):
                    if line.card_template_id == card_id:
                        estimation.card_lines.remove(line)

            if estimation.is_empty:
                self._discard(estimation)
                return None

            self._recompute_total(estimation)

        return estimation

    # -----------------------------
    # Queries
    # -----------------------------
    def get_active(self, user_id: str) -> Estimation | None:
        return self._active_for(user_id, lock=False)

    def get(self, estimation_id: str, user_id: str) -> Estimation:
        stmt = _with_lines(
            select(Estimation)
            .where(Estimation.id == estimation_id)
            .where(Estimation.user_id == user_id)
        )
        estimation = self.db.execute(stmt).scalar_one_or_none()
        if not estimation:
            raise NotFoundError("Estimation not found or not authorized")
        return estimation

    def list_for_user(self, user_id: str, limit: int = 20, offset: int = 0) -> list[Estimation]:
        stmt = _with_lines(
            select(Estimation)
            .where(Estimation.user_id == user_id)
            .order_by(Estimation.created_at.desc())
            .offset(offset)
            .limit(limit)
        )
        return list(self.db.execute(stmt).scalars().all())

    # -----------------------------
    # Internals
    # -----------------------------
    def _active_for(self, user_id: str, lock: bool) -> Estimation | None:
        stmt = _with_lines(
            select(Estimation)
            .where(Estimation.user_id == user_id)
            .where(Estimation.status == EstimationStatus.ACTIVE)
        )
        if lock:
            stmt = stmt.with_for_update()
        return self.db.execute(stmt).scalar_one_or_none()

    def _validate_selections(
        self,
        services: list[ServiceSelection],
        cards: list[CardSelection],
    ) -> None:
        for selection in services:
            service = self.catalog.require_service(selection.service_id)
            if service.find_package(selection.package_id) is None:
                raise NotFoundError(
                    f"Package {selection.package_id} not found for service {service.id}"
                )
        for selection in cards:
            self.catalog.require_card(selection.card_id)

    @staticmethod
    def _merge_services(estimation: Estimation, services: list[ServiceSelection]) -> None:
        for selection in services:
            quantity = 1 if selection.quantity is None else selection.quantity
            existing = next(
                (
                    line
                    for line in estimation.service_lines
                    if line.service_id == selection.service_id
                    and line.package_id == selection.package_id
                ),
                None,
            )
            if existing is not None:
                existing.quantity = quantity
            elif quantity > 0:
                estimation.service_lines.append(
                    EstimationServiceLine(
                        service_id=selection.service_id,
                        package_id=selection.package_id,
                        quantity=quantity,
                    )
                )

        for line in list(estimation.service_lines):
            if line.quantity <= 0:
                estimation.service_lines.remove(line)

    @staticmethod
    def _merge_cards(estimation: Estimation, cards: list[CardSelection]) -> None:
        for selection in cards:
            quantity = 1 if selection.quantity is None else selection.quantity
            existing = next(
                (line for line in estimation.card_lines if line.card_template_id == selection.card_id),
                None,
            )
            if existing is not None:
                existing.quantity = quantity
            elif quantity > 0:
                estimation.card_lines.append(
                    EstimationCardLine(card_template_id=selection.card_id, quantity=quantity)
                )

        for line in list(estimation.card_lines):
            if line.quantity <= 0:
                estimation.card_lines.remove(line)

    def _recompute_total(self, estimation: Estimation) -> None:
        total = 0.0
        for line in estimation.service_lines:
            service = self.catalog.get_service(line.service_id)
            package = service.find_package(line.package_id) if service else None
            if package is None:
                logger.warning(
                    "Estimation %s references missing service %s / package %s",
                    estimation.id,
                    line.service_id,
                    line.package_id,
                )
                continue
            total += self.pricing.price_service(service, package, line.quantity)

        for line in estimation.card_lines:
            card = self.catalog.get_card(line.card_template_id)
            if card is None:
                logger.warning(
                    "Estimation %s references missing card %s",
                    estimation.id,
                    line.card_template_id,
                )
                continue
            total += self.pricing.price_card(card, line.quantity)

        estimation.total_cost = round(total, 2)

    def _discard(self, estimation: Estimation) -> None:
        if estimation in self.db.new:
            self.db.expunge(estimation)
        else:
            self.db.delete(estimation)
