# src/infrastructure/repositories/booking_repository.py

from datetime import datetime

from sqlalchemy.orm import Session
from sqlalchemy import select

from src.infrastructure.db.models import Booking
from src.domain.exceptions import DuplicateBookingError, NotFoundError
from src.domain.state_machine import BookingStateMachine, BookingStatus


class BookingRepository:

    def __init__(self, db: Session):
        self.db = db

    def get_by_id(
        self,
        booking_id: str,
    ) -> Booking | None:

        stmt = select(Booking).where(Booking.id == booking_id)
        return self.db.execute(stmt).scalar_one_or_none()

    def lock_for_user(self, booking_id: str, user_id: str) -> Booking:
        return self._lock(
            select(Booking)
            .where(Booking.id == booking_id)
            .where(Booking.user_id == user_id)
        )

    def lock_for_vendor(self, booking_id: str, vendor_id: str) -> Booking:
        return self._lock(
            select(Booking)
            .where(Booking.id == booking_id)
            .where(Booking.vendor_id == vendor_id)
        )

    def lock_any(self, booking_id: str) -> Booking:
        return self._lock(select(Booking).where(Booking.id == booking_id))

    def _lock(self, stmt) -> Booking:
        """
        SELECT ... FOR UPDATE
        Two concurrent cancellations of one booking cannot both release.
        """
        booking = self.db.execute(stmt.with_for_update()).scalar_one_or_none()

        if not booking:
            raise NotFoundError("Booking not found or you are not authorized")

        return booking

    def ensure_no_open_booking(
        self,
        user_id: str,
        service_id: str,
        scheduled_at: datetime,
        exclude_ids: list[str] | None = None,
    ) -> None:
        stmt = (
            select(Booking.id)
            .where(Booking.user_id == user_id)
            .where(Booking.service_id == service_id)
            .where(Booking.scheduled_at == scheduled_at)
            .where(Booking.status.in_(list(BookingStateMachine.OPEN_STATUSES)))
        )
        if exclude_ids:
            stmt = stmt.where(Booking.id.not_in(exclude_ids))

        stmt = stmt.limit(1)

        if self.db.execute(stmt).first() is not None:
            raise DuplicateBookingError(
                f"You have already booked service {service_id} for the specified time"
            )

    def add(self, booking: Booking) -> Booking:
        self.db.add(booking)
        # Flush so later duplicate checks in the same transaction see it.
        self.db.flush()
        return booking

    def list_for_user(self, user_id: str, limit: int, offset: int) -> list[Booking]:
        stmt = (
            select(Booking)
            .where(Booking.user_id == user_id)
            .order_by(Booking.scheduled_at.desc())
            .offset(offset)
            .limit(limit)
        )
        return list(self.db.execute(stmt).scalars().all())

    def list_for_vendor(
        self,
        vendor_id: str,
        status: BookingStatus | None,
        limit: int,
        offset: int,
    ) -> list[Booking]:
        stmt = select(Booking).where(Booking.vendor_id == vendor_id)
        if status is not None:
            stmt = stmt.where(Booking.status == status)
        stmt = stmt.order_by(Booking.scheduled_at.desc()).offset(offset).limit(limit)
        return list(self.db.execute(stmt).scalars().all())

    def lock_past_confirmed(self, now: datetime) -> list[Booking]:
        stmt = (
            select(Booking)
            .where(Booking.status == BookingStatus.CONFIRMED)
            .where(Booking.event_date.is_not(None))
            .where(Booking.event_date < now)
            .with_for_update()
        )
        return list(self.db.execute(stmt).scalars().all())
