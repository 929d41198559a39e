# src/infrastructure/repositories/booking_repository.py

from datetime import date, datetime
from decimal import Decimal
from typing import Iterable

from sqlalchemy.orm import Session
from sqlalchemy import select, update

from src.infrastructure.db.models import Booking
from src.domain.state_machine import BookingStatus, CONFLICTING_STATUSES


class BookingRepository:

    def __init__(self, db: Session):
        self.db = db

    def get_by_id(
        self,
        booking_id: int,
    ) -> Booking | None:

        stmt = select(Booking).where(Booking.id == booking_id)
        return self.db.execute(stmt).scalar_one_or_none()

    def get_for_update(self, booking_id: int) -> Booking | None:
        """
        Row-locked read for status changes. Always re-reads the row so a
        copy cached earlier in the session cannot hide a concurrent commit.
        """
        stmt = (
            select(Booking)
            .where(Booking.id == booking_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def create_booking(
        self,
        user_id: int,
        game_id: int,
        partner_id: int,
        start_date: date,
        end_date: date,
        rental_days: int,
        daily_price: Decimal,
        total_rental_price: Decimal,
        security_deposit: Decimal,
        total_amount: Decimal,
        notes: str | None = None,
    ) -> Booking:

        booking = Booking(
            user_id=user_id,
            game_id=game_id,
            partner_id=partner_id,
            start_date=start_date,
            end_date=end_date,
            rental_days=rental_days,
            daily_price=daily_price,
            total_rental_price=total_rental_price,
            security_deposit=security_deposit,
            total_amount=total_amount,
            notes=notes,
            status=BookingStatus.PENDING,
        )

        self.db.add(booking)
        self.db.flush()
        return booking

    def update_status(
        self,
        booking: Booking,
        new_status: BookingStatus,
    ) -> None:

        booking.status = new_status

    def transition_status(
        self,
        booking: Booking,
        from_statuses: Iterable[BookingStatus],
        new_status: BookingStatus,
        **values,
    ) -> bool:
        """
        UPDATE bookings SET status = :new
        WHERE id = :id AND status IN (:from_statuses)

        Returns False when the stored status is no longer one of
        ``from_statuses``. The instance is expired either way, so the next
        attribute access reads the row as it is now.
        """
        stmt = (
            update(Booking)
            .where(Booking.id == booking.id)
            .where(Booking.status.in_(list(from_statuses)))
            .values(status=new_status, **values)
            .execution_options(synchronize_session=False)
        )
        result = self.db.execute(stmt)
        self.db.expire(booking)

        return result.rowcount == 1

    def has_date_conflict(
        self,
        game_id: int,
        start_date: date,
        end_date: date,
        exclude_booking_id: int | None = None,
    ) -> bool:
        # Two inclusive ranges overlap iff start1 <= end2 and start2 <= end1.
        stmt = (
            select(Booking.id)
            .where(Booking.game_id == game_id)
            .where(Booking.status.in_(CONFLICTING_STATUSES))
            .where(Booking.start_date <= end_date)
            .where(Booking.end_date >= start_date)
        )
        if exclude_booking_id is not None:
            stmt = stmt.where(Booking.id != exclude_booking_id)

        return self.db.execute(stmt.limit(1)).first() is not None

    def list_for_user(self, user_id: int, limit: int = 50, offset: int = 0) -> list[Booking]:
        stmt = (
            select(Booking)
            .where(Booking.user_id == user_id)
            .order_by(Booking.created_at.desc(), Booking.id.desc())
            .limit(limit)
            .offset(offset)
        )
        return list(self.db.execute(stmt).scalars().all())

    def list_for_partner(self, partner_id: int, limit: int = 50, offset: int = 0) -> list[Booking]:
        stmt = (
            select(Booking)
            .where(Booking.partner_id == partner_id)
            .order_by(Booking.created_at.desc(), Booking.id.desc())
            .limit(limit)
            .offset(offset)
        )
        return list(self.db.execute(stmt).scalars().all())

    def list_all(
        self,
        status: BookingStatus | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Booking]:
        stmt = select(Booking)
        if status is not None:
            stmt = stmt.where(Booking.status == status)
        stmt = stmt.order_by(Booking.created_at.desc(), Booking.id.desc()).limit(limit).offset(offset)
        return list(self.db.execute(stmt).scalars().all())

    def list_pending_created_before(self, cutoff: datetime) -> list[Booking]:
        stmt = (
            select(Booking)
            .where(Booking.status == BookingStatus.PENDING)
            .where(Booking.created_at < cutoff)
            .order_by(Booking.created_at)
        )
        return list(self.db.execute(stmt).scalars().all())
