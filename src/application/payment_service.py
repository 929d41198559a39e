import logging
import os

from sqlalchemy.orm import Session

from src.application.booking_service import BookingService
from src.domain.exceptions import (
    InsufficientPermissionError,
    InvalidStateTransitionError,
    PaymentAlreadyExistsError,
    PaymentNotFoundError,
    UnknownPaymentStatusError,
)
from src.domain.pricing import to_minor_units
from src.domain.roles import UserRole, can_manage_payments
from src.domain.state_machine import BookingStatus
from src.infrastructure.db.models import Payment, PaymentProvider, PaymentStatus
from src.infrastructure.payments.razorpay_gateway import RazorpayGateway
from src.infrastructure.repositories.outbox_repository import OutboxRepository
from src.infrastructure.repositories.payment_repository import PaymentRepository

logger = logging.getLogger(__name__)

# Provider status -> internal outcome. None means "still in flight".
_PROVIDER_STATUS_MAP: dict[str, PaymentStatus | None] = {
    "capture": PaymentStatus.PAID,
    "captured": PaymentStatus.PAID,
    "settlement": PaymentStatus.PAID,
    "paid": PaymentStatus.PAID,
    "deny": PaymentStatus.FAILED,
    "cancel": PaymentStatus.FAILED,
    "expire": PaymentStatus.FAILED,
    "failure": PaymentStatus.FAILED,
    "failed": PaymentStatus.FAILED,
    "pending": None,
    "authorized": None,
}


def map_provider_status(status: str) -> PaymentStatus | None:
    key = status.strip().lower()
    if key not in _PROVIDER_STATUS_MAP:
        raise UnknownPaymentStatusError(status)
    return _PROVIDER_STATUS_MAP[key]


class PaymentService:
    """
    Creates provider orders for pending bookings and turns settled
    webhooks into ConfirmPayment / FailPayment calls on the booking core.
    """

    def __init__(self, db: Session, gateway: RazorpayGateway | None = None):
        self.db = db
        self.gateway = gateway or RazorpayGateway()
        self.payment_repository = PaymentRepository(db)
        self.outbox_repository = OutboxRepository(db)
        self.booking_service = BookingService(db)
        self.currency = os.getenv("PAYMENT_CURRENCY", "INR")

    def create_payment(self, user_id: int, booking_id: int) -> Payment:
        booking = self.booking_service.get_booking(user_id, booking_id)

        if booking.status != BookingStatus.PENDING:
            raise InvalidStateTransitionError(
                from_state=booking.status.value,
                to_state=BookingStatus.CONFIRMED.value,
            )
        if self.payment_repository.get_by_booking_id(booking_id):
            raise PaymentAlreadyExistsError(booking_id)

        order_id = self.gateway.create_order(
            amount_minor=to_minor_units(booking.total_amount),
            currency=self.currency,
            receipt=f"booking-{booking.id}",
        )
        payment = self.payment_repository.create_payment(
            booking_id=booking.id,
            provider=PaymentProvider.RAZORPAY,
            provider_payment_id=order_id,
            amount=booking.total_amount,
            currency=self.currency,
        )
        logger.info("Payment %s created for booking %s", payment.id, booking_id)
        return payment

    def get_payment_for_booking(self, user_id: int, booking_id: int) -> Payment:
        self.booking_service.get_booking(user_id, booking_id)
        payment = self.payment_repository.get_by_booking_id(booking_id)
        if not payment:
            raise PaymentNotFoundError(f"No payment for booking {booking_id}")
        return payment

    def list_payments(
        self,
        role: UserRole,
        status: PaymentStatus | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Payment]:
        if not can_manage_payments(role):
            raise InsufficientPermissionError(role.value)
        return self.payment_repository.list_all(status, limit, offset)

    def process_webhook(
        self,
        provider_payment_id: str,
        status: str,
        payment_method: str | None = None,
        failure_reason: str | None = None,
    ) -> Payment:
        outcome = map_provider_status(status)

        payment = self.payment_repository.get_by_provider_payment_id(provider_payment_id)
        if not payment:
            raise PaymentNotFoundError(f"No payment for provider id {provider_payment_id}")

        if outcome is None:
            logger.info(
                "Payment %s still %s at provider; nothing to do",
                payment.id,
                status,
            )
            return payment

        if payment.status == outcome:
            logger.info(
                "Duplicate %s webhook for payment %s ignored",
                outcome.value,
                payment.id,
            )
            return payment

        if outcome == PaymentStatus.PAID:
            self.payment_repository.mark_paid(payment, payment_method)
            self._confirm_booking(payment)
        else:
            self.payment_repository.mark_failed(payment, failure_reason)
            self.booking_service.fail_payment(payment.booking_id)

        logger.info(
            "Payment %s for booking %s settled as %s",
            payment.id,
            payment.booking_id,
            outcome.value,
        )
        return payment

    def _confirm_booking(self, payment: Payment) -> None:
        try:
            self.booking_service.confirm_payment(payment.booking_id)
        except InvalidStateTransitionError as exc:
            # The payment stays paid; the refund is handed to the outbox relay.
            logger.warning(
                "Payment %s captured for booking %s which cannot be confirmed (%s); refund required",
                payment.id,
                payment.booking_id,
                exc,
            )
            self.outbox_repository.add_event(
                aggregate_type="payment",
                aggregate_id=payment.id,
                event_type="PAYMENT_REFUND_REQUIRED",
                payload={
                    "payment_id": payment.id,
                    "booking_id": payment.booking_id,
                    "provider_payment_id": payment.provider_payment_id,
                    "amount": str(payment.amount),
                    "currency": payment.currency,
                },
                dedupe_key=f"payment:{payment.id}:refund_required",
            )
