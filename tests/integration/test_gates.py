import pytest

from src.application.booking_service import BookingService
from src.application.dispute_service import DisputeService
from src.application.review_service import ReviewService
from src.domain.exceptions import (
    AlreadyReviewedError,
    BookingNotCompletedError,
    BookingNotOwnedError,
    DisputeNotFoundError,
    InsufficientPermissionError,
    InvalidBookingStateForDisputeError,
    ValidationError,
)
from src.domain.roles import UserRole
from src.domain.state_machine import BookingStatus
from src.infrastructure.db.models import DisputeStatus, DisputeType
from tests.helpers import available_stock, days_from_today

RENTER = 1
STRANGER = 2
PARTNER = 7
ADMIN = 99


def _booking_in(db, game, status):
    service = BookingService(db)
    booking = service.create_booking(RENTER, game.id, days_from_today(1), days_from_today(2))
    if status == BookingStatus.PENDING:
        return booking

    service.confirm_payment(booking.id)
    if status == BookingStatus.CONFIRMED:
        return booking

    service.confirm_handover(PARTNER, booking.id)
    if status == BookingStatus.ACTIVE:
        return booking

    service.confirm_return(PARTNER, booking.id)
    return booking


def _open_dispute(db, booking, reporter_id=RENTER):
    return DisputeService(db).create_dispute(
        reporter_id=reporter_id,
        booking_id=booking.id,
        dispute_type=DisputeType.ITEM_CONDITION,
        title="Scratched disc",
        description="Disc arrived with deep scratches on the data side.",
    )


# -----------------------------
# Reviews
# -----------------------------
@pytest.mark.parametrize(
    "status",
    [BookingStatus.PENDING, BookingStatus.CONFIRMED, BookingStatus.ACTIVE],
)
def test_review_requires_completed_booking(db, make_game, status):
    booking = _booking_in(db, make_game(), status)

    with pytest.raises(BookingNotCompletedError):
        ReviewService(db).create_review(RENTER, booking.id, 4)


def test_review_completed_booking(db, make_game):
    game = make_game()
    booking = _booking_in(db, game, BookingStatus.COMPLETED)
    service = ReviewService(db)

    review = service.create_review(RENTER, booking.id, 5, "Great condition")

    assert review.game_id == game.id
    assert service.game_rating(game.id) == (5.0, 1)
    assert [r.id for r in service.list_game_reviews(game.id)] == [review.id]


def test_one_review_per_booking(db, make_game):
    booking = _booking_in(db, make_game(), BookingStatus.COMPLETED)
    service = ReviewService(db)
    service.create_review(RENTER, booking.id, 5)

    with pytest.raises(AlreadyReviewedError):
        service.create_review(RENTER, booking.id, 1)


def test_only_renter_may_review(db, make_game):
    booking = _booking_in(db, make_game(), BookingStatus.COMPLETED)

    with pytest.raises(BookingNotOwnedError):
        ReviewService(db).create_review(STRANGER, booking.id, 3)


@pytest.mark.parametrize("rating", [0, 6])
def test_rating_out_of_range(db, make_game, rating):
    booking = _booking_in(db, make_game(), BookingStatus.COMPLETED)

    with pytest.raises(ValidationError):
        ReviewService(db).create_review(RENTER, booking.id, rating)


def test_rating_for_unreviewed_game(db, make_game):
    game = make_game()

    assert ReviewService(db).game_rating(game.id) == (0.0, 0)


# -----------------------------
# Disputes
# -----------------------------
@pytest.mark.parametrize("reporter_id", [RENTER, PARTNER])
def test_renter_or_partner_can_dispute(db, make_game, reporter_id):
    game = make_game()
    booking = _booking_in(db, game, BookingStatus.ACTIVE)
    stock_before = available_stock(db, game.id)

    dispute = _open_dispute(db, booking, reporter_id)

    assert dispute.status == DisputeStatus.OPEN
    assert booking.status == BookingStatus.DISPUTED
    assert available_stock(db, game.id) == stock_before


def test_stranger_cannot_dispute(db, make_game):
    booking = _booking_in(db, make_game(), BookingStatus.CONFIRMED)

    with pytest.raises(BookingNotOwnedError):
        _open_dispute(db, booking, STRANGER)
    assert booking.status == BookingStatus.CONFIRMED


def test_pending_booking_cannot_be_disputed(db, make_game):
    booking = _booking_in(db, make_game(), BookingStatus.PENDING)

    with pytest.raises(InvalidBookingStateForDisputeError):
        _open_dispute(db, booking)


def test_completed_booking_can_be_disputed(db, make_game):
    booking = _booking_in(db, make_game(), BookingStatus.COMPLETED)

    _open_dispute(db, booking)

    assert booking.status == BookingStatus.DISPUTED


def test_disputed_booking_cannot_be_disputed_again(db, make_game):
    booking = _booking_in(db, make_game(), BookingStatus.CONFIRMED)
    _open_dispute(db, booking)

    with pytest.raises(InvalidBookingStateForDisputeError):
        _open_dispute(db, booking, PARTNER)


def test_admin_resolves_dispute(db, make_game):
    booking = _booking_in(db, make_game(), BookingStatus.ACTIVE)
    dispute = _open_dispute(db, booking)
    service = DisputeService(db)

    service.update_dispute(UserRole.ADMIN, dispute.id, DisputeStatus.INVESTIGATING, ADMIN)
    assert dispute.resolved_at is None

    service.update_dispute(
        UserRole.ADMIN,
        dispute.id,
        DisputeStatus.RESOLVED,
        ADMIN,
        resolution="Deposit withheld",
    )
    assert dispute.status == DisputeStatus.RESOLVED
    assert dispute.resolved_by == ADMIN
    assert dispute.resolution == "Deposit withheld"
    assert dispute.resolved_at is not None


def test_dispute_management_is_admin_only(db, make_game):
    booking = _booking_in(db, make_game(), BookingStatus.ACTIVE)
    dispute = _open_dispute(db, booking)
    service = DisputeService(db)

    with pytest.raises(InsufficientPermissionError):
        service.update_dispute(UserRole.PARTNER, dispute.id, DisputeStatus.CLOSED, PARTNER)
    with pytest.raises(InsufficientPermissionError):
        service.list_disputes(UserRole.CUSTOMER)
    with pytest.raises(DisputeNotFoundError):
        service.update_dispute(UserRole.ADMIN, 404, DisputeStatus.CLOSED, ADMIN)
