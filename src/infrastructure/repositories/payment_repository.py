# src/infrastructure/repositories/payment_repository.py

from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy.orm import Session
from sqlalchemy import select

from src.infrastructure.db.models import Payment, PaymentProvider, PaymentStatus


class PaymentRepository:

    def __init__(self, db: Session):
        self.db = db

    def get_by_booking_id(self, booking_id: int) -> Payment | None:
        stmt = select(Payment).where(Payment.booking_id == booking_id)
        return self.db.execute(stmt).scalar_one_or_none()

    def get_by_provider_payment_id(self, provider_payment_id: str) -> Payment | None:
        stmt = (
            select(Payment)
            .where(Payment.provider_payment_id == provider_payment_id)
            .with_for_update()
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def create_payment(
        self,
        booking_id: int,
        provider: PaymentProvider,
        provider_payment_id: str,
        amount: Decimal,
        currency: str,
    ) -> Payment:
        payment = Payment(
            booking_id=booking_id,
            provider=provider,
            provider_payment_id=provider_payment_id,
            amount=amount,
            currency=currency,
            status=PaymentStatus.PENDING,
        )
        self.db.add(payment)
        self.db.flush()
        return payment

    def mark_paid(self, payment: Payment, payment_method: str | None) -> None:
        payment.status = PaymentStatus.PAID
        payment.paid_at = datetime.now(timezone.utc)
        if payment_method:
            payment.payment_method = payment_method

    def mark_failed(self, payment: Payment, failure_reason: str | None) -> None:
        payment.status = PaymentStatus.FAILED
        payment.failed_at = datetime.now(timezone.utc)
        payment.failure_reason = failure_reason

    def list_all(
        self,
        status: PaymentStatus | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Payment]:
        stmt = select(Payment)
        if status is not None:
            stmt = stmt.where(Payment.status == status)
        stmt = stmt.order_by(Payment.created_at.desc(), Payment.id.desc()).limit(limit).offset(offset)
        return list(self.db.execute(stmt).scalars().all())
