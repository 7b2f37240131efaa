from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest
import stripe

from cleanmatch.services.payments.gateway import (
    PaymentGatewayError,
    StripeRefundGateway,
    to_minor_units,
)


@pytest.fixture
def create_refund(monkeypatch):
    mock = AsyncMock(return_value=SimpleNamespace(id="re_123", amount=2550, status="succeeded"))
    monkeypatch.setattr(stripe.Refund, "create_async", mock)
    return mock


@pytest.mark.parametrize(
    ("amount", "expected"), [(80.0, 8000), (25.5, 2550), (19.99, 1999), (0.005, 1)]
)
def test_to_minor_units(amount, expected):
    assert to_minor_units(amount) == expected


@pytest.mark.asyncio
async def test_refund_sends_idempotency_key_and_metadata(create_refund):
    result = await StripeRefundGateway(secret_key="sk_test_123").create_refund(
        "pi_abc",
        2550,
        "requested_by_customer",
        {"dispute_id": "case-1", "payment_id": "payment-1"},
        "dispute-case-1-refund",
    )

    assert result.refund_id == "re_123"
    assert result.amount_minor == 2550
    assert result.status == "succeeded"
    create_refund.assert_awaited_once_with(
        payment_intent="pi_abc",
        amount=2550,
        reason="requested_by_customer",
        metadata={"dispute_id": "case-1", "payment_id": "payment-1"},
        api_key="sk_test_123",
        idempotency_key="dispute-case-1-refund",
    )


@pytest.mark.asyncio
async def test_stripe_error_is_mapped(create_refund):
    create_refund.side_effect = stripe.InvalidRequestError(
        "Already refunded", "payment_intent", code="charge_already_refunded", http_status=400
    )

    with pytest.raises(PaymentGatewayError) as exc_info:
        await StripeRefundGateway(secret_key="sk_test_123").create_refund(
            "pi_abc", 100, "requested_by_customer", {}, "key-1"
        )

    assert exc_info.value.error_code == "charge_already_refunded"
    assert exc_info.value.status_code == 400


@pytest.mark.asyncio
async def test_missing_secret_key_is_rejected_before_calling_stripe(create_refund):
    with pytest.raises(PaymentGatewayError):
        await StripeRefundGateway(secret_key="").create_refund(
            "pi_abc", 100, "requested_by_customer", {}, "k"
        )
    create_refund.assert_not_awaited()


@pytest.mark.asyncio
async def test_non_positive_amount_is_rejected(create_refund):
    with pytest.raises(PaymentGatewayError):
        await StripeRefundGateway(secret_key="sk_test_123").create_refund(
            "pi_abc", 0, "requested_by_customer", {}, "k"
        )
    create_refund.assert_not_awaited()
