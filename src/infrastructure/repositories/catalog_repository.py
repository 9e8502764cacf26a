# src/infrastructure/repositories/catalog_repository.py

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from src.domain.exceptions import NotFoundError
from src.infrastructure.db.models import CardTemplate, Service, User


class CatalogRepository:
    """Read access to services, card templates and users."""

    def __init__(self, db: Session):
        self.db = db

    def get_service(self, service_id: str) -> Service | None:
        stmt = (
            select(Service)
            .where(Service.id == service_id)
            .options(selectinload(Service.packages))
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def require_service(self, service_id: str) -> Service:
        service = self.get_service(service_id)
        if not service:
            raise NotFoundError(f"Service {service_id} not found")
        return service

    def get_card(self, card_id: str) -> CardTemplate | None:
        stmt = select(CardTemplate).where(CardTemplate.id == card_id)
        return self.db.execute(stmt).scalar_one_or_none()

    def require_card(self, card_id: str) -> CardTemplate:
        card = self.get_card(card_id)
        if not card:
            raise NotFoundError(f"Card template {card_id} not found")
        return card

    def require_vendor_service(self, service_id: str, vendor_id: str) -> Service:
        service = self.get_service(service_id)
        if not service or service.vendor_id != vendor_id:
            raise NotFoundError("Service not found or you are not authorized")
        return service

    def require_vendor_card(self, card_id: str, vendor_id: str) -> CardTemplate:
        card = self.get_card(card_id)
        if not card or card.vendor_id != vendor_id:
            raise NotFoundError("Card template not found or you are not authorized")
        return card

    def get_user(self, user_id: str) -> User | None:
        return self.db.get(User, user_id)

    def require_user(self, user_id: str) -> User:
        user = self.get_user(user_id)
        if not user:
            raise NotFoundError(f"User {user_id} not found")
        return user
