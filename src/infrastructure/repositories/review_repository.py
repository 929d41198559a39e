# src/infrastructure/repositories/review_repository.py

from sqlalchemy.orm import Session
from sqlalchemy import func, select

from src.infrastructure.db.models import Review


class ReviewRepository:

    def __init__(self, db: Session):
        self.db = db

    def get_by_booking_id(self, booking_id: int) -> Review | None:
        stmt = select(Review).where(Review.booking_id == booking_id)
        return self.db.execute(stmt).scalar_one_or_none()

    def create_review(
        self,
        booking_id: int,
        user_id: int,
        game_id: int,
        rating: int,
        comment: str | None,
    ) -> Review:
        review = Review(
            booking_id=booking_id,
            user_id=user_id,
            game_id=game_id,
            rating=rating,
            comment=comment,
        )
        self.db.add(review)
        self.db.flush()
        return review

    def list_for_game(self, game_id: int, limit: int = 50, offset: int = 0) -> list[Review]:
        stmt = (
            select(Review)
            .where(Review.game_id == game_id)
            .order_by(Review.created_at.desc(), Review.id.desc())
            .limit(limit)
            .offset(offset)
        )
        return list(self.db.execute(stmt).scalars().all())

    def game_rating(self, game_id: int) -> tuple[float, int]:
        stmt = select(func.avg(Review.rating), func.count(Review.id)).where(
            Review.game_id == game_id
        )
        average, count = self.db.execute(stmt).one()
        return float(average or 0), int(count)
