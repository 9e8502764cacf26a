# src/infrastructure/db/models.py

from sqlalchemy import (
    String,
    Integer,
    Float,
    Boolean,
    Date,
    DateTime,
    Enum,
    Text,
    UniqueConstraint,
    CheckConstraint,
    ForeignKey,
    Index,
    event,
    func,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from datetime import date, datetime
from uuid import uuid4

from src.infrastructure.db.session import Base
from src.domain.catalog import (
    CardType,
    EstimationStatus,
    PublicationStatus,
    ServiceBookingType,
    ServiceCategory,
    UserRole,
)
from src.domain.pricing import clear_expired_discount
from src.domain.state_machine import BookingStatus


def _enum(enum_cls, name: str) -> Enum:
    # Store the lowercase values ("published"), not the member names.
    return Enum(
        enum_cls,
        name=name,
        values_callable=lambda members: [member.value for member in members],
        validate_strings=True,
    )


def _uuid() -> str:
    return str(uuid4())


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )


class User(TimestampMixin, Base):
    """
    Account row shared with the auth subsystem. The booking engine only
    reads it, to find phone numbers for notifications.
    """

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    full_name: Mapped[str] = mapped_column(String(128), nullable=False)
    phone: Mapped[str] = mapped_column(String(20), nullable=False, unique=True)
    role: Mapped[UserRole] = mapped_column(
        _enum(UserRole, "user_role"),
        nullable=False,
        default=UserRole.USER,
    )


class Service(TimestampMixin, Base):
    __tablename__ = "services"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    vendor_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("users.id"),
        nullable=False,
    )
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    category: Mapped[ServiceCategory] = mapped_column(
        _enum(ServiceCategory, "service_category"),
        nullable=False,
    )
    status: Mapped[PublicationStatus] = mapped_column(
        _enum(PublicationStatus, "service_status"),
        nullable=False,
        default=PublicationStatus.PENDING,
    )
    city: Mapped[str] = mapped_column(String(64), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    booking_type: Mapped[ServiceBookingType] = mapped_column(
        _enum(ServiceBookingType, "service_booking_type"),
        nullable=False,
        default=ServiceBookingType.EVENT_BASED,
    )
    # Only meaningful for quantity-based services; written by the ledger alone.
    available_quantity: Mapped[int | None] = mapped_column(Integer, nullable=True)
    discount_percent: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    discount_expiry: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    avg_rating: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    review_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    packages: Mapped[list["ServicePackage"]] = relationship(
        back_populates="service",
        cascade="all, delete-orphan",
        order_by="ServicePackage.price",
    )
    slots: Mapped[list["ServiceSlot"]] = relationship(
        back_populates="service",
        cascade="all, delete-orphan",
        order_by="ServiceSlot.slot_date",
    )

    __table_args__ = (
        CheckConstraint(
            "available_quantity IS NULL OR available_quantity >= 0",
            name="ck_service_available_nonnegative",
        ),
        CheckConstraint(
            "discount_percent >= 0 AND discount_percent <= 100",
            name="ck_service_discount_range",
        ),
    )

    def find_package(self, package_id: str) -> "ServicePackage | None":
        for package in self.packages:
            if package.id == package_id:
                return package
        return None


class ServicePackage(Base):
    __tablename__ = "service_packages"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    service_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("services.id", ondelete="CASCADE"),
        nullable=False,
    )
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    price: Mapped[float] = mapped_column(Float, nullable=False)
    inclusions: Mapped[str | None] = mapped_column(Text, nullable=True)

    service: Mapped[Service] = relationship(back_populates="packages")

    __table_args__ = (
        CheckConstraint("price >= 0", name="ck_package_price_nonnegative"),
    )


class ServiceSlot(Base):
    """
    One bookable calendar day of an event-based service.
    Free, or held by exactly one booking (``reserved_by``).
    """

    __tablename__ = "service_slots"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    service_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("services.id", ondelete="CASCADE"),
        nullable=False,
    )
    slot_date: Mapped[date] = mapped_column(Date, nullable=False)
    is_booked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    reserved_by: Mapped[str | None] = mapped_column(String(36), nullable=True)
    # Carried for parity with the slot record; nothing expires holds.
    reservation_expiry: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    service: Mapped[Service] = relationship(back_populates="slots")

    __table_args__ = (
        UniqueConstraint("service_id", "slot_date", name="uq_service_slot_date"),
        CheckConstraint(
            "(is_booked AND reserved_by IS NOT NULL) OR (NOT is_booked AND reserved_by IS NULL)",
            name="ck_slot_reservation_consistent",
        ),
    )


class CardTemplate(TimestampMixin, Base):
    __tablename__ = "card_templates"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    vendor_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("users.id"),
        nullable=False,
    )
    name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    card_type: Mapped[CardType] = mapped_column(
        _enum(CardType, "card_type"),
        nullable=False,
    )
    status: Mapped[PublicationStatus] = mapped_column(
        _enum(PublicationStatus, "card_status"),
        nullable=False,
        default=PublicationStatus.PENDING,
    )
    city: Mapped[str] = mapped_column(String(64), nullable=False)
    price_per_card: Mapped[float] = mapped_column(Float, nullable=False)
    # Written by the ledger alone.
    available_quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    discount_percent: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    discount_expiry: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    avg_rating: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    review_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    __table_args__ = (
        CheckConstraint("available_quantity >= 0", name="ck_card_available_nonnegative"),
        CheckConstraint("price_per_card >= 0", name="ck_card_price_nonnegative"),
        CheckConstraint(
            "discount_percent >= 0 AND discount_percent <= 100",
            name="ck_card_discount_range",
        ),
    )

    @property
    def display_name(self) -> str:
        return self.name or f"{self.card_type.value} Card"


class Booking(TimestampMixin, Base):
    """
    Booking table reflecting domain state.
    Domain controls transitions.
    DB stores current state safely.
    """

    __tablename__ = "bookings"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("users.id"),
        nullable=False,
    )
    vendor_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("users.id"),
        nullable=False,
    )
    service_id: Mapped[str | None] = mapped_column(
        String(36),
        ForeignKey("services.id"),
        nullable=True,
    )
    package_id: Mapped[str | None] = mapped_column(
        String(36),
        ForeignKey("service_packages.id"),
        nullable=True,
    )
    card_template_id: Mapped[str | None] = mapped_column(
        String(36),
        ForeignKey("card_templates.id"),
        nullable=True,
    )
    status: Mapped[BookingStatus] = mapped_column(
        _enum(BookingStatus, "booking_status"),
        nullable=False,
        default=BookingStatus.PENDING,
    )
    scheduled_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    event_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    price: Mapped[float] = mapped_column(Float, nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    review_allowed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    # True while this booking owns decremented stock or booked slots.
    holds_reservation: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    __table_args__ = (
        CheckConstraint(
            "(service_id IS NULL) <> (card_template_id IS NULL)",
            name="ck_booking_single_resource",
        ),
        CheckConstraint(
            "service_id IS NULL OR package_id IS NOT NULL",
            name="ck_booking_service_package",
        ),
        CheckConstraint("user_id <> vendor_id", name="ck_booking_no_self_booking"),
        CheckConstraint("quantity >= 1", name="ck_booking_quantity_positive"),
        CheckConstraint("price >= 0", name="ck_booking_price_nonnegative"),
        Index("ix_booking_user_service_time", "user_id", "service_id", "scheduled_at"),
        Index("ix_booking_status_event_date", "status", "event_date"),
    )


class Estimation(TimestampMixin, Base):
    __tablename__ = "estimations"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("users.id"),
        nullable=False,
    )
    status: Mapped[EstimationStatus] = mapped_column(
        _enum(EstimationStatus, "estimation_status"),
        nullable=False,
        default=EstimationStatus.ACTIVE,
    )
    total_cost: Mapped[float] = mapped_column(Float, nullable=False, default=0)

    service_lines: Mapped[list["EstimationServiceLine"]] = relationship(
        back_populates="estimation",
        cascade="all, delete-orphan",
    )
    card_lines: Mapped[list["EstimationCardLine"]] = relationship(
        back_populates="estimation",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        Index(
            "uq_estimation_one_active_per_user",
            "user_id",
            unique=True,
            postgresql_where=text("status = 'active'"),
            sqlite_where=text("status = 'active'"),
        ),
    )

    @property
    def is_empty(self) -> bool:
        return not self.service_lines and not self.card_lines


class EstimationServiceLine(Base):
    __tablename__ = "estimation_service_lines"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    estimation_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("estimations.id", ondelete="CASCADE"),
        nullable=False,
    )
    service_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("services.id"),
        nullable=False,
    )
    package_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("service_packages.id"),
        nullable=False,
    )
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    estimation: Mapped[Estimation] = relationship(back_populates="service_lines")

    __table_args__ = (
        UniqueConstraint(
            "estimation_id",
            "service_id",
            "package_id",
            name="uq_estimation_service_package",
        ),
        CheckConstraint("quantity > 0", name="ck_estimation_service_quantity_positive"),
    )


class EstimationCardLine(Base):
    __tablename__ = "estimation_card_lines"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    estimation_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("estimations.id", ondelete="CASCADE"),
        nullable=False,
    )
    card_template_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("card_templates.id"),
        nullable=False,
    )
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    estimation: Mapped[Estimation] = relationship(back_populates="card_lines")

    __table_args__ = (
        UniqueConstraint(
            "estimation_id",
            "card_template_id",
            name="uq_estimation_card",
        ),
        CheckConstraint("quantity > 0", name="ck_estimation_card_quantity_positive"),
    )


class Review(TimestampMixin, Base):
    __tablename__ = "reviews"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("users.id"),
        nullable=False,
    )
    booking_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("bookings.id"),
        nullable=False,
    )
    service_id: Mapped[str | None] = mapped_column(
        String(36),
        ForeignKey("services.id"),
        nullable=True,
    )
    card_template_id: Mapped[str | None] = mapped_column(
        String(36),
        ForeignKey("card_templates.id"),
        nullable=True,
    )
    stars: Mapped[int] = mapped_column(Integer, nullable=False)
    comment: Mapped[str] = mapped_column(Text, nullable=False, default="")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    __table_args__ = (
        UniqueConstraint("booking_id", "user_id", name="uq_review_booking_user"),
        CheckConstraint("stars >= 1 AND stars <= 5", name="ck_review_stars_range"),
        CheckConstraint(
            "(service_id IS NULL) <> (card_template_id IS NULL)",
            name="ck_review_single_resource",
        ),
    )


class OutboxEvent(Base):
    __tablename__ = "outbox_events"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    aggregate_type: Mapped[str] = mapped_column(String(64), nullable=False)
    aggregate_id: Mapped[str] = mapped_column(String(36), nullable=False)
    event_type: Mapped[str] = mapped_column(String(64), nullable=False)
    payload: Mapped[str] = mapped_column(Text, nullable=False)
    dedupe_key: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="PENDING")
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    published_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("dedupe_key", name="uq_outbox_dedupe_key"),
    )


# Expired discounts are cleared lazily, whenever the resource is written.
@event.listens_for(Service, "before_insert")
@event.listens_for(Service, "before_update")
@event.listens_for(CardTemplate, "before_insert")
@event.listens_for(CardTemplate, "before_update")
def _clear_expired_discount(mapper, connection, target) -> None:
    clear_expired_discount(target)
