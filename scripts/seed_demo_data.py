from datetime import date, timedelta

from sqlalchemy import select

from src.domain.catalog import (
    CardType,
    PublicationStatus,
    ServiceBookingType,
    ServiceCategory,
    UserRole,
)
from src.infrastructure.db.models import (
    CardTemplate,
    Service,
    ServicePackage,
    ServiceSlot,
    User,
)
from src.infrastructure.db.session import SessionLocal


def _upcoming_days(count: int, start_in_days: int = 7) -> list[date]:
    first = date.today() + timedelta(days=start_in_days)
    return [first + timedelta(days=offset) for offset in range(count)]


def seed_users(db) -> dict[str, User]:
    user_defs = [
        {"full_name": "Aisha Khan", "phone": "+919800000001", "role": UserRole.USER},
        {"full_name": "Royal Palace Venues", "phone": "+919800000002", "role": UserRole.VENDOR},
        {"full_name": "Golden Invites", "phone": "+919800000003", "role": UserRole.VENDOR},
        {"full_name": "Marketplace Admin", "phone": "+919800000004", "role": UserRole.ADMIN},
    ]

    users = {}
    for item in user_defs:
        user = db.execute(
            select(User).where(User.phone == item["phone"])
        ).scalar_one_or_none()
        if user is None:
            user = User(**item)
            db.add(user)
            db.flush()
        users[item["full_name"]] = user
    return users


def seed_services(db, vendor: User) -> None:
    service_defs = [
        {
            "name": "Royal Palace Lawn",
            "category": ServiceCategory.WEDDING_VENUES,
            "city": "Jaipur",
            "booking_type": ServiceBookingType.EVENT_BASED,
            "packages": [("Day Event", 150000), ("Full Weekend", 400000)],
        },
        {
            "name": "Vintage Car Fleet",
            "category": ServiceCategory.CAR_RENTAL,
            "city": "Jaipur",
            "booking_type": ServiceBookingType.EVENT_BASED,
            "packages": [("Per Day", 12000)],
        },
        {
            "name": "Mehendi Evenings",
            "category": ServiceCategory.HENNA_ARTISTS,
            "city": "Jaipur",
            "booking_type": ServiceBookingType.QUANTITY_BASED,
            "available_quantity": 20,
            "packages": [("Bridal Hands", 8000), ("Guest Hands", 1500)],
        },
    ]

    for item in service_defs:
        existing = db.execute(
            select(Service)
            .where(Service.vendor_id == vendor.id)
            .where(Service.name == item["name"])
        ).scalar_one_or_none()
        if existing:
            existing.status = PublicationStatus.PUBLISHED
            continue

        service = Service(
            vendor_id=vendor.id,
            name=item["name"],
            category=item["category"],
            city=item["city"],
            booking_type=item["booking_type"],
            available_quantity=item.get("available_quantity"),
            status=PublicationStatus.PUBLISHED,
        )
        service.packages = [
            ServicePackage(name=name, price=price) for name, price in item["packages"]
        ]
        if item["booking_type"] == ServiceBookingType.EVENT_BASED:
            service.slots = [
                ServiceSlot(slot_date=day, is_booked=False) for day in _upcoming_days(30)
            ]
        db.add(service)


def seed_cards(db, vendor: User) -> None:
    card_defs = [
        {"name": "Gold Foil Classic", "card_type": CardType.STATIC, "price_per_card": 45, "stock": 1000},
        {"name": None, "card_type": CardType.EDITABLE, "price_per_card": 60, "stock": 500},
    ]

    for item in card_defs:
        existing = db.execute(
            select(CardTemplate)
            .where(CardTemplate.vendor_id == vendor.id)
            .where(CardTemplate.card_type == item["card_type"])
        ).scalar_one_or_none()
        if existing:
            continue

        db.add(
            CardTemplate(
                vendor_id=vendor.id,
                name=item["name"],
                card_type=item["card_type"],
                city="Jaipur",
                price_per_card=item["price_per_card"],
                available_quantity=item["stock"],
                status=PublicationStatus.PUBLISHED,
            )
        )


def main() -> None:
    db = SessionLocal()
    try:
        users = seed_users(db)
        seed_services(db, users["Royal Palace Venues"])
        seed_cards(db, users["Golden Invites"])
        db.commit()
        print("Seed complete: demo users, Jaipur venue/car/henna services and invitation cards added.")
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


if __name__ == "__main__":
    main()
