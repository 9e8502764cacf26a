import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("AUTO_COMPLETE_ENABLED", "false")

from datetime import date, datetime, timedelta, timezone
from itertools import count

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from src.api.dependencies import get_db, get_sms_sender
from src.domain.catalog import (
    CardType,
    PublicationStatus,
    ServiceBookingType,
    ServiceCategory,
    UserRole,
)
from src.domain.exceptions import NotificationDeliveryError
from src.infrastructure.db.models import (
    Base,
    CardTemplate,
    Service,
    ServicePackage,
    ServiceSlot,
    User,
)
from src.infrastructure.db.session import build_engine
from src.main import app


class RecordingSmsSender:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent: list[tuple[str, str]] = []

    def send(self, phone: str, message: str) -> None:
        if self.fail:
            raise NotificationDeliveryError("gateway down")
        self.sent.append((phone, message))


@pytest.fixture
def engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'marketplace.db'}")
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(
        bind=engine,
        autoflush=False,
        autocommit=False,
        expire_on_commit=False,
    )


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def fetch(session_factory, db):
    """Reads a fresh copy of a row in its own short transaction."""

    def _fetch(model, pk):
        # Release any read transaction the shared test session holds
        # (SQLite BEGIN IMMEDIATE locks) before opening a second session.
        db.rollback()
        with session_factory() as session:
            return session.get(model, pk)

    return _fetch


@pytest.fixture
def sms_sender():
    return RecordingSmsSender()


@pytest.fixture
def failing_sms_sender():
    return RecordingSmsSender(fail=True)


@pytest.fixture
def client(session_factory, sms_sender):
    def _get_db():
        session = session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_sms_sender] = lambda: sms_sender
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def headers():
    def _headers(user: User) -> dict:
        return {"X-User-Id": user.id, "X-User-Role": user.role.value}

    return _headers


_phone_numbers = count(1)


@pytest.fixture
def make_user(db):
    def _make_user(role: UserRole = UserRole.USER, full_name: str = "Test User") -> User:
        user = User(
            full_name=full_name,
            phone=f"+91900{next(_phone_numbers):07d}",
            role=role,
        )
        db.add(user)
        db.commit()
        return user

    return _make_user


@pytest.fixture
def customer(make_user):
    return make_user(UserRole.USER, "Aisha Khan")


@pytest.fixture
def vendor(make_user):
    return make_user(UserRole.VENDOR, "Royal Palace Venues")


@pytest.fixture
def admin(make_user):
    return make_user(UserRole.ADMIN, "Marketplace Admin")


@pytest.fixture
def make_service(db):
    def _make_service(
        vendor: User,
        category: ServiceCategory = ServiceCategory.PHOTOGRAPHERS,
        price: float = 1000,
        status: PublicationStatus = PublicationStatus.PUBLISHED,
        booking_type: ServiceBookingType = ServiceBookingType.EVENT_BASED,
        available_quantity: int | None = None,
        slot_days: list[date] | None = None,
        discount_percent: float = 0,
        discount_expiry: datetime | None = None,
    ) -> Service:
        service = Service(
            vendor_id=vendor.id,
            name=f"{category.value} by {vendor.full_name}",
            category=category,
            city="Jaipur",
            booking_type=booking_type,
            available_quantity=available_quantity,
            status=status,
            discount_percent=discount_percent,
            discount_expiry=discount_expiry,
        )
        service.packages = [ServicePackage(name="Standard", price=price)]
        service.slots = [
            ServiceSlot(slot_date=day, is_booked=False) for day in (slot_days or [])
        ]
        db.add(service)
        db.commit()
        return service

    return _make_service


@pytest.fixture
def make_card(db):
    def _make_card(
        vendor: User,
        price_per_card: float = 100,
        available_quantity: int = 5,
        status: PublicationStatus = PublicationStatus.PUBLISHED,
        discount_percent: float = 0,
        discount_expiry: datetime | None = None,
    ) -> CardTemplate:
        card = CardTemplate(
            vendor_id=vendor.id,
            name="Gold Foil Classic",
            card_type=CardType.STATIC,
            city="Jaipur",
            price_per_card=price_per_card,
            available_quantity=available_quantity,
            status=status,
            discount_percent=discount_percent,
            discount_expiry=discount_expiry,
        )
        db.add(card)
        db.commit()
        return card

    return _make_card


@pytest.fixture
def event_day():
    return date.today() + timedelta(days=30)


@pytest.fixture
def event_time(event_day):
    return datetime(event_day.year, event_day.month, event_day.day, 18, 0, tzinfo=timezone.utc)
