class GameRentalError(Exception):
    """
    Base exception for all domain-level errors
    inside the rental booking engine.
    """


# -----------------------------
# Not found
# -----------------------------
class NotFoundError(GameRentalError):
    """Raised when a referenced record does not exist."""


class GameNotFoundError(NotFoundError):
    def __init__(self, game_id: int):
        self.game_id = game_id
        super().__init__(f"Game {game_id} not found")


class BookingNotFoundError(NotFoundError):
    def __init__(self, booking_id: int):
        self.booking_id = booking_id
        super().__init__(f"Booking {booking_id} not found")


class PaymentNotFoundError(NotFoundError):
    """Raised when no payment matches a booking or provider reference."""


class DisputeNotFoundError(NotFoundError):
    def __init__(self, dispute_id: int):
        self.dispute_id = dispute_id
        super().__init__(f"Dispute {dispute_id} not found")


# -----------------------------
# Authorization
# -----------------------------
class AuthorizationError(GameRentalError):
    """Raised when the caller may not act on a record."""


class BookingNotOwnedError(AuthorizationError):
    def __init__(self, booking_id: int):
        self.booking_id = booking_id
        super().__init__(f"You don't own booking {booking_id}")


class InsufficientPermissionError(AuthorizationError):
    def __init__(self, role: str):
        self.role = role
        super().__init__(f"Insufficient permission for role {role}")


# -----------------------------
# Validation
# -----------------------------
class ValidationError(GameRentalError):
    """Raised when a request violates a booking rule."""


class InvalidStateTransitionError(ValidationError):
    """
    Raised when an illegal booking state transition is attempted.
    """

    def __init__(self, from_state: str, to_state: str):
        self.from_state = from_state
        self.to_state = to_state

        message = (
            f"Illegal state transition attempted: "
            f"{from_state} -> {to_state}"
        )
        super().__init__(message)


class InvalidDateRangeError(ValidationError):
    """Raised when rental dates are reversed or in the past."""


class InsufficientStockError(ValidationError):
    def __init__(self, game_id: int, quantity: int = 1):
        self.game_id = game_id
        self.quantity = quantity
        super().__init__(
            f"Insufficient stock for game {game_id} (requested {quantity})"
        )


class GameUnavailableError(ValidationError):
    def __init__(self, game_id: int):
        self.game_id = game_id
        super().__init__(f"Game {game_id} is not available for booking")


class CannotCancelError(ValidationError):
    def __init__(self, status: str):
        self.status = status
        super().__init__(f"Cannot cancel booking in status {status}")


class AlreadyReviewedError(ValidationError):
    def __init__(self, booking_id: int):
        self.booking_id = booking_id
        super().__init__(f"Review already exists for booking {booking_id}")


class BookingNotCompletedError(ValidationError):
    def __init__(self, status: str):
        self.status = status
        super().__init__(
            f"Can only review completed bookings (booking is {status})"
        )


class InvalidBookingStateForDisputeError(ValidationError):
    def __init__(self, status: str):
        self.status = status
        super().__init__(
            f"Cannot create dispute for booking in status {status}"
        )


class PaymentAlreadyExistsError(ValidationError):
    def __init__(self, booking_id: int):
        self.booking_id = booking_id
        super().__init__(f"Payment already exists for booking {booking_id}")


class UnknownPaymentStatusError(ValidationError):
    def __init__(self, status: str):
        self.status = status
        super().__init__(f"Unknown payment status: {status}")
