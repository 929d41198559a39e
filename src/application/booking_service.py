import logging
from datetime import date, datetime, timezone

from sqlalchemy.orm import Session

from src.domain.exceptions import (
    BookingNotFoundError,
    BookingNotOwnedError,
    CannotCancelError,
    GameNotFoundError,
    GameUnavailableError,
    InsufficientPermissionError,
    InsufficientStockError,
    InvalidStateTransitionError,
)
from src.domain.pricing import quote_rental, validate_date_range
from src.domain.roles import UserRole, can_manage_bookings
from src.domain.state_machine import (
    BookingStateMachine,
    BookingStatus,
    CANCELLABLE_STATUSES,
)
from src.infrastructure.db.models import Booking
from src.infrastructure.repositories.booking_repository import BookingRepository
from src.infrastructure.repositories.game_repository import GameRepository
from src.infrastructure.repositories.outbox_repository import OutboxRepository

logger = logging.getLogger(__name__)

# A failed charge frees the unit from anywhere except cancelled.
_FAILABLE_STATUSES = frozenset(s for s in BookingStatus if s != BookingStatus.CANCELLED)


class BookingService:
    """
    Application service coordinating booking workflow.

    Status changes go through a locked read and a conditional UPDATE on
    the booking row; stock is released only by the request whose UPDATE
    matched.
    """

    def __init__(self, db: Session):
        self.db = db
        self.booking_repository = BookingRepository(db)
        self.game_repository = GameRepository(db)
        self.outbox_repository = OutboxRepository(db)

    # -----------------------------
    # Customer
    # -----------------------------
    def create_booking(
        self,
        user_id: int,
        game_id: int,
        start_date: date,
        end_date: date,
        notes: str | None = None,
        today: date | None = None,
    ) -> Booking:
        game = self.game_repository.get_by_id(game_id)
        if not game:
            raise GameNotFoundError(game_id)
        if not game.is_active:
            raise GameUnavailableError(game_id)

        validate_date_range(start_date, end_date, today or date.today())

        if not self.game_repository.check_availability(game_id):
            raise InsufficientStockError(game_id)

        quote = quote_rental(
            start_date,
            end_date,
            game.rental_price_per_day,
            game.security_deposit,
        )

        self.game_repository.reserve_stock(game_id)
        try:
            booking = self.booking_repository.create_booking(
                user_id=user_id,
                game_id=game_id,
                partner_id=game.partner_id,
                start_date=start_date,
                end_date=end_date,
                rental_days=quote.rental_days,
                daily_price=quote.daily_price,
                total_rental_price=quote.total_rental_price,
                security_deposit=quote.security_deposit,
                total_amount=quote.total_amount,
                notes=notes,
            )
        except Exception:
            logger.exception(
                "Booking insert failed after reserving game %s; compensating",
                game_id,
            )
            self._undo_reservation(game_id)
            raise

        self._record(booking, "BOOKING_CREATED")
        logger.info(
            "Booking %s created for game %s by user %s (%s days, total %s)",
            booking.id,
            game_id,
            user_id,
            quote.rental_days,
            quote.total_amount,
        )
        return booking

    def get_booking(self, user_id: int, booking_id: int, lock: bool = False) -> Booking:
        booking = self._get(booking_id, lock)
        if booking.user_id != user_id:
            raise BookingNotOwnedError(booking_id)
        return booking

    def list_user_bookings(self, user_id: int, limit: int = 50, offset: int = 0) -> list[Booking]:
        return self.booking_repository.list_for_user(user_id, limit, offset)

    def cancel_booking(self, user_id: int, booking_id: int) -> Booking:
        booking = self.get_booking(user_id, booking_id, lock=True)

        if booking.status not in CANCELLABLE_STATUSES:
            raise CannotCancelError(booking.status.value)

        try:
            self._transition(booking, BookingStatus.CANCELLED, CANCELLABLE_STATUSES)
        except InvalidStateTransitionError as exc:
            raise CannotCancelError(booking.status.value) from exc

        self.game_repository.release_stock(booking.game_id)
        self._record(booking, "BOOKING_CANCELLED")
        return booking

    # -----------------------------
    # Payment completion hook
    # -----------------------------
    def confirm_payment(self, booking_id: int) -> Booking:
        booking = self._get(booking_id, lock=True)

        if booking.status == BookingStatus.CONFIRMED:
            logger.info("Booking %s already confirmed; ignoring repeat confirmation", booking_id)
            return booking

        try:
            self._transition(booking, BookingStatus.CONFIRMED)
        except InvalidStateTransitionError:
            if booking.status == BookingStatus.CONFIRMED:
                logger.info("Booking %s confirmed by a concurrent request", booking_id)
                return booking
            raise

        self._record(booking, "BOOKING_PAYMENT_CONFIRMED")
        return booking

    def fail_payment(self, booking_id: int) -> Booking:
        """
        A failed charge always frees the reserved unit, whatever the
        booking status. A booking that is already cancelled has released
        its unit before, so it is left alone.
        """
        booking = self._get(booking_id, lock=True)

        if booking.status == BookingStatus.CANCELLED:
            logger.info("Booking %s already cancelled; ignoring payment failure", booking_id)
            return booking

        previous = booking.status
        if not self.booking_repository.transition_status(
            booking,
            _FAILABLE_STATUSES,
            BookingStatus.CANCELLED,
        ):
            logger.info("Booking %s cancelled concurrently; ignoring payment failure", booking_id)
            return booking

        self.game_repository.release_stock(booking.game_id)
        logger.info(
            "Booking %s cancelled after payment failure (was %s)",
            booking_id,
            previous.value,
        )
        self._record(booking, "BOOKING_PAYMENT_FAILED")
        return booking

    # -----------------------------
    # Partner
    # -----------------------------
    def list_partner_bookings(self, partner_id: int, limit: int = 50, offset: int = 0) -> list[Booking]:
        return self.booking_repository.list_for_partner(partner_id, limit, offset)

    def confirm_handover(self, partner_id: int, booking_id: int) -> Booking:
        booking = self._get_for_partner(partner_id, booking_id)

        self._transition(
            booking,
            BookingStatus.ACTIVE,
            handover_confirmed_at=datetime.now(timezone.utc),
        )
        logger.info("Booking %s handed over by partner %s", booking_id, partner_id)
        self._record(booking, "BOOKING_HANDOVER_CONFIRMED")
        return booking

    def confirm_return(self, partner_id: int, booking_id: int) -> Booking:
        # The unit is not released here; restocking is an explicit admin action.
        booking = self._get_for_partner(partner_id, booking_id)

        self._transition(
            booking,
            BookingStatus.COMPLETED,
            return_confirmed_at=datetime.now(timezone.utc),
        )
        logger.info("Booking %s returned to partner %s", booking_id, partner_id)
        self._record(booking, "BOOKING_RETURN_CONFIRMED")
        return booking

    # -----------------------------
    # Admin
    # -----------------------------
    def list_bookings(
        self,
        role: UserRole,
        status: BookingStatus | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Booking]:
        if not can_manage_bookings(role):
            raise InsufficientPermissionError(role.value)
        return self.booking_repository.list_all(status, limit, offset)

    def update_status(
        self,
        role: UserRole,
        booking_id: int,
        new_status: BookingStatus,
    ) -> Booking:
        """
        Privileged raw overwrite. Skips transition rules and does not move
        stock; last write wins against concurrent guarded transitions.
        """
        if not can_manage_bookings(role):
            raise InsufficientPermissionError(role.value)

        booking = self._get(booking_id, lock=True)
        previous = booking.status
        self.booking_repository.update_status(booking, new_status)
        logger.warning(
            "ADMIN OVERRIDE: booking %s status %s -> %s by role %s",
            booking_id,
            previous.value,
            new_status.value,
            role.value,
        )
        return booking

    def expire_stale_pending(self, cutoff: datetime) -> list[Booking]:
        """Cancel unpaid bookings created before ``cutoff`` and free their stock."""
        expired = []
        for booking in self.booking_repository.list_pending_created_before(cutoff):
            if not self.booking_repository.transition_status(
                booking,
                (BookingStatus.PENDING,),
                BookingStatus.CANCELLED,
            ):
                logger.info("Booking %s left pending before the sweep reached it", booking.id)
                continue

            self.game_repository.release_stock(booking.game_id)
            self._record(booking, "BOOKING_EXPIRED")
            expired.append(booking)

        if expired:
            logger.info("Expired %s stale pending bookings", len(expired))
        return expired

    # -----------------------------
    # Availability
    # -----------------------------
    def has_date_conflict(
        self,
        game_id: int,
        start_date: date,
        end_date: date,
        exclude_booking_id: int | None = None,
    ) -> bool:
        return self.booking_repository.has_date_conflict(
            game_id,
            start_date,
            end_date,
            exclude_booking_id,
        )

    # -----------------------------
    # Internals
    # -----------------------------
    def _get(self, booking_id: int, lock: bool = False) -> Booking:
        if lock:
            booking = self.booking_repository.get_for_update(booking_id)
        else:
            booking = self.booking_repository.get_by_id(booking_id)
        if not booking:
            raise BookingNotFoundError(booking_id)
        return booking

    def _get_for_partner(self, partner_id: int, booking_id: int) -> Booking:
        booking = self._get(booking_id, lock=True)
        if booking.partner_id != partner_id:
            raise BookingNotOwnedError(booking_id)
        return booking

    def _transition(
        self,
        booking: Booking,
        to_status: BookingStatus,
        from_statuses=None,
        **values,
    ) -> None:
        previous = booking.status
        BookingStateMachine.validate_transition(previous, to_status)

        if not self.booking_repository.transition_status(
            booking,
            from_statuses or (previous,),
            to_status,
            **values,
        ):
            # The row moved on after it was read.
            raise InvalidStateTransitionError(
                from_state=booking.status.value,
                to_state=to_status.value,
            )

        logger.info(
            "Booking %s transitioned %s -> %s",
            booking.id,
            previous.value,
            to_status.value,
        )

    def _undo_reservation(self, game_id: int) -> None:
        if self.db.is_active:
            self.game_repository.release_stock(game_id)
        else:
            # A failed flush already discarded the reservation with its transaction.
            self.db.rollback()

    def _record(self, booking: Booking, event_type: str) -> None:
        self.outbox_repository.add_event(
            aggregate_type="booking",
            aggregate_id=booking.id,
            event_type=event_type,
            payload={
                "booking_id": booking.id,
                "user_id": booking.user_id,
                "partner_id": booking.partner_id,
                "game_id": booking.game_id,
                "status": booking.status.value,
                "total_amount": str(booking.total_amount),
            },
            dedupe_key=f"booking:{booking.id}:{event_type.lower()}",
        )
