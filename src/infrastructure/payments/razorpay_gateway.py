# src/infrastructure/payments/razorpay_gateway.py

import logging
import os

logger = logging.getLogger(__name__)


class PaymentGatewayError(Exception):
    """Raised when the payment provider is misconfigured or rejects a call."""


class RazorpayGateway:
    """
    Thin adapter over the Razorpay SDK.

    Order creation and webhook signature checks belong here; the booking
    core only ever sees the provider order id and the webhook outcome.
    """

    provider_name = "razorpay"

    def __init__(
        self,
        key_id: str | None = None,
        key_secret: str | None = None,
        webhook_secret: str | None = None,
    ):
        self.key_id = key_id or os.getenv("RAZORPAY_KEY_ID")
        self.key_secret = key_secret or os.getenv("RAZORPAY_KEY_SECRET")
        self.webhook_secret = webhook_secret or os.getenv("RAZORPAY_WEBHOOK_SECRET")

    def _client(self):
        import razorpay

        if not self.key_id or not self.key_secret:
            raise PaymentGatewayError(
                "Razorpay keys not configured. Set RAZORPAY_KEY_ID and RAZORPAY_KEY_SECRET."
            )
        return razorpay.Client(auth=(self.key_id, self.key_secret))

    def create_order(self, amount_minor: int, currency: str, receipt: str) -> str:
        order = self._client().order.create(
            {
                "amount": amount_minor,
                "currency": currency,
                "receipt": receipt,
            }
        )
        order_id = order.get("id")
        if not order_id:
            raise PaymentGatewayError("Razorpay did not return an order id")

        logger.info("Razorpay order %s created for receipt %s", order_id, receipt)
        return order_id

    def verify_webhook(self, body: str, signature: str | None) -> bool:
        if not self.webhook_secret:
            logger.error("RAZORPAY_WEBHOOK_SECRET not set; rejecting payment webhook")
            return False
        if not signature:
            logger.warning("Rejected payment webhook without a signature")
            return False

        import razorpay

        try:
            self._client().utility.verify_webhook_signature(
                body,
                signature,
                self.webhook_secret,
            )
        except razorpay.errors.SignatureVerificationError:
            logger.warning("Rejected payment webhook with invalid signature")
            return False
        return True
