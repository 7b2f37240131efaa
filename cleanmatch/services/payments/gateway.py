"""
Payment gateway refunds.

`PaymentGateway` is the contract the dispute lifecycle depends on;
`StripeRefundGateway` implements it with the Stripe SDK.
"""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Protocol

import stripe

from cleanmatch.config import settings
from cleanmatch.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class PaymentGatewayError(Exception):
    """Raised when the gateway rejects or cannot process a refund."""

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        status_code: int | None = None,
        response_data: dict | None = None,
    ):
        super().__init__(message)
        self.error_code = error_code
        self.status_code = status_code
        self.response_data = response_data or {}


@dataclass(slots=True)
class RefundResult:
    refund_id: str
    amount_minor: int
    status: str


class PaymentGateway(Protocol):
    async def create_refund(
        self,
        payment_intent_ref: str,
        amount_minor: int,
        reason: str,
        metadata: dict[str, str],
        idempotency_key: str,
    ) -> RefundResult: ...


def to_minor_units(amount: float) -> int:
    """Convert a currency amount to integer cents, rounding half up."""
    return int((Decimal(str(amount)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class StripeRefundGateway:
    """
    Creates refunds against a payment intent.

    Every call carries the caller's idempotency key, so a retried resolution
    gets the original refund back instead of a second one.
    """

    def __init__(self, secret_key: str | None = None):
        self.secret_key = secret_key if secret_key is not None else settings.STRIPE_SECRET_KEY

    async def create_refund(
        self,
        payment_intent_ref: str,
        amount_minor: int,
        reason: str,
        metadata: dict[str, str],
        idempotency_key: str,
    ) -> RefundResult:
        if not self.secret_key:
            raise PaymentGatewayError("Stripe secret key is not configured")
        if amount_minor <= 0:
            raise PaymentGatewayError("Refund amount must be positive")

        try:
            refund = await stripe.Refund.create_async(
                payment_intent=payment_intent_ref,
                amount=amount_minor,
                reason=reason,
                metadata=metadata,
                api_key=self.secret_key,
                idempotency_key=idempotency_key,
            )
        except stripe.StripeError as e:
            logger.error(
                "Stripe refund failed",
                status_code=e.http_status,
                error_code=e.code,
                error_message=e.user_message or str(e),
            )
            raise PaymentGatewayError(
                e.user_message or str(e) or "Stripe refund failed",
                error_code=e.code,
                status_code=e.http_status,
                response_data=e.json_body or {},
            ) from e

        logger.info(
            "Stripe refund created",
            refund_id=refund.id,
            payment_intent=payment_intent_ref,
            amount_minor=amount_minor,
        )
        return RefundResult(
            refund_id=refund.id,
            amount_minor=int(refund.amount or amount_minor),
            status=refund.status or "pending",
        )


stripe_refund_gateway = StripeRefundGateway()
