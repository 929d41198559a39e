import logging

from sqlalchemy.orm import Session

from src.domain.exceptions import (
    AlreadyReviewedError,
    BookingNotCompletedError,
    BookingNotFoundError,
    BookingNotOwnedError,
    ValidationError,
)
from src.domain.state_machine import BookingStatus
from src.infrastructure.db.models import Review
from src.infrastructure.repositories.booking_repository import BookingRepository
from src.infrastructure.repositories.review_repository import ReviewRepository

logger = logging.getLogger(__name__)


class ReviewService:

    def __init__(self, db: Session):
        self.db = db
        self.booking_repository = BookingRepository(db)
        self.review_repository = ReviewRepository(db)

    def create_review(
        self,
        user_id: int,
        booking_id: int,
        rating: int,
        comment: str | None = None,
    ) -> Review:
        if not 1 <= rating <= 5:
            raise ValidationError(f"Rating must be between 1 and 5, got {rating}")

        booking = self.booking_repository.get_by_id(booking_id)
        if not booking:
            raise BookingNotFoundError(booking_id)

        if booking.user_id != user_id:
            raise BookingNotOwnedError(booking_id)

        if booking.status != BookingStatus.COMPLETED:
            raise BookingNotCompletedError(booking.status.value)

        # The unique constraint on reviews.booking_id backs this up.
        if self.review_repository.get_by_booking_id(booking_id):
            raise AlreadyReviewedError(booking_id)

        review = self.review_repository.create_review(
            booking_id=booking_id,
            user_id=user_id,
            game_id=booking.game_id,
            rating=rating,
            comment=comment,
        )
        logger.info("Review %s (rating %s) added for booking %s", review.id, rating, booking_id)
        return review

    def list_game_reviews(self, game_id: int, limit: int = 50, offset: int = 0) -> list[Review]:
        return self.review_repository.list_for_game(game_id, limit, offset)

    def game_rating(self, game_id: int) -> tuple[float, int]:
        return self.review_repository.game_rating(game_id)
