import logging

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from src.domain.exceptions import InvalidRequestError, NotFoundError, ReviewNotAllowedError
from src.domain.state_machine import BookingStatus
from src.infrastructure.db.models import Booking, CardTemplate, Review, Service
from src.infrastructure.db.unit_of_work import UnitOfWork

logger = logging.getLogger(__name__)


class ReviewService:
    """Review submission, gated on completed bookings, plus rating aggregates."""

    def __init__(self, db: Session):
        self.db = db

    def submit_review(
        self,
        user_id: str,
        booking_id: str,
        stars: int,
        comment: str = "",
    ) -> Review:
        if not 1 <= stars <= 5:
            raise InvalidRequestError("Rating must be between 1 and 5")

        with UnitOfWork(self.db):
            booking = self.db.execute(
                select(Booking)
                .where(Booking.id == booking_id)
                .where(Booking.user_id == user_id)
            ).scalar_one_or_none()
            if not booking:
                raise NotFoundError("Booking not found or not authorized")

            if booking.status != BookingStatus.COMPLETED or not booking.review_allowed:
                raise ReviewNotAllowedError(
                    "You can only review completed bookings with review allowed"
                )

            existing = self.db.execute(
                select(Review.id)
                .where(Review.booking_id == booking_id)
                .where(Review.user_id == user_id)
            ).first()
            if existing:
                raise ReviewNotAllowedError("You have already reviewed this booking")

            review = Review(
                user_id=user_id,
                booking_id=booking.id,
                service_id=booking.service_id,
                card_template_id=booking.card_template_id,
                stars=stars,
                comment=comment or "",
                is_active=True,
            )
            self.db.add(review)
            self.db.flush()
            self._refresh_rating(review)

        logger.info("Review %s submitted for booking %s", review.id, booking_id)
        return review

    def deactivate_review(self, review_id: str) -> Review:
        with UnitOfWork(self.db):
            review = self.db.get(Review, review_id)
            if not review:
                raise NotFoundError("Review not found")

            review.is_active = False
            self.db.flush()
            self._refresh_rating(review)

        logger.info("Review %s deactivated", review_id)
        return review

    def _refresh_rating(self, review: Review) -> None:
        if review.service_id:
            target = self.db.get(Service, review.service_id)
            column = Review.service_id
            target_id = review.service_id
        else:
            target = self.db.get(CardTemplate, review.card_template_id)
            column = Review.card_template_id
            target_id = review.card_template_id

        if target is None:
            return

        count, average = self.db.execute(
            select(func.count(Review.id), func.avg(Review.stars))
            .where(column == target_id)
            .where(Review.is_active.is_(True))
        ).one()

        target.review_count = count
        target.avg_rating = round(float(average), 2) if average is not None else 0
