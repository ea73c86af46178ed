"""Unit tests for the Stripe adapter's error mapping."""

import time

import pytest
import stripe

from conftest import WEBHOOK_SECRET
from reservation_service.core.exceptions import (
    IntentTooLarge,
    PaymentGatewayError,
    RefundGatewayError,
    RefundOutcomeUnknown,
)
from reservation_service.services.payment_gateway import StripePaymentGateway, refund_idempotency_key


def _gateway(timeout_seconds: float = 1.0) -> StripePaymentGateway:
    return StripePaymentGateway(
        api_key="sk_test_key",
        webhook_secret=WEBHOOK_SECRET,
        timeout_seconds=timeout_seconds,
    )


def _refund_call(monkeypatch, behaviour):
    calls = []

    def create(**kwargs):
        calls.append(kwargs)
        return behaviour()

    monkeypatch.setattr(stripe.Refund, "create", create)
    return calls


@pytest.mark.asyncio
async def test_refund_passes_attempt_scoped_idempotency_key(monkeypatch):
    calls = _refund_call(monkeypatch, lambda: {"id": "re_1", "amount": 1500, "status": "succeeded"})

    refund = await _gateway().create_refund("pi_1", 1500, "res-1", reason="weather", attempt=2)

    assert refund.id == "re_1"
    assert refund.payment_id == "pi_1"
    assert refund.status == "succeeded"
    assert calls[0]["idempotency_key"] == "refund-res-1-1500-2"
    assert calls[0]["api_key"] == "sk_test_key"
    assert calls[0]["metadata"] == {"reservation_id": "res-1", "note": "weather"}


def test_idempotency_key_changes_only_with_the_attempt():
    assert refund_idempotency_key("res-1", 1500) == refund_idempotency_key("res-1", 1500, 0)
    assert refund_idempotency_key("res-1", 1500, 1) != refund_idempotency_key("res-1", 1500, 0)


@pytest.mark.asyncio
async def test_refund_timeout_is_an_unknown_outcome(monkeypatch):
    def slow():
        time.sleep(0.3)
        return {"id": "re_late", "amount": 1500, "status": "succeeded"}

    _refund_call(monkeypatch, slow)

    with pytest.raises(RefundOutcomeUnknown) as exc_info:
        await _gateway(timeout_seconds=0.05).create_refund("pi_1", 1500, "res-1")

    assert exc_info.value.status_code == 504
    assert exc_info.value.code == "REFUND_OUTCOME_UNKNOWN"


@pytest.mark.asyncio
async def test_refund_connection_error_is_an_unknown_outcome(monkeypatch):
    def unreachable():
        raise stripe.APIConnectionError("Network error communicating with Stripe")

    _refund_call(monkeypatch, unreachable)

    with pytest.raises(RefundOutcomeUnknown):
        await _gateway().create_refund("pi_1", 1500, "res-1")


@pytest.mark.asyncio
async def test_refund_api_error_is_a_definite_failure(monkeypatch):
    def rejected():
        raise stripe.APIError("Stripe is having trouble")

    _refund_call(monkeypatch, rejected)

    with pytest.raises(RefundGatewayError) as exc_info:
        await _gateway().create_refund("pi_1", 1500, "res-1")

    assert not isinstance(exc_info.value, RefundOutcomeUnknown)
    assert exc_info.value.code == "REFUND_GATEWAY_ERROR"
    assert "Stripe is having trouble" in exc_info.value.message


@pytest.mark.asyncio
@pytest.mark.parametrize("status", ["failed", "canceled"])
async def test_refund_ending_unsuccessfully_is_a_failure(monkeypatch, status):
    _refund_call(monkeypatch, lambda: {"id": "re_1", "amount": 1500, "status": status})

    with pytest.raises(RefundGatewayError) as exc_info:
        await _gateway().create_refund("pi_1", 1500, "res-1")

    assert status in exc_info.value.message


@pytest.mark.asyncio
async def test_oversized_metadata_never_reaches_stripe(monkeypatch):
    def create(**kwargs):
        pytest.fail("Stripe must not be called with oversized metadata")

    monkeypatch.setattr(stripe.PaymentIntent, "create", create)

    with pytest.raises(IntentTooLarge):
        await _gateway().create_authorization(15000, "usd", {"intent": "x" * 501})


@pytest.mark.asyncio
async def test_authorization_maps_the_payment_intent(monkeypatch):
    calls = []

    def create(**kwargs):
        calls.append(kwargs)
        return {
            "id": "pi_new",
            "amount": 15000,
            "currency": "usd",
            "status": "requires_payment_method",
            "client_secret": "pi_new_secret",
            "metadata": {"intent": "{}"},
        }

    monkeypatch.setattr(stripe.PaymentIntent, "create", create)

    authorization = await _gateway().create_authorization(15000, "usd", {"intent": "{}"}, idempotency_key="k-1")

    assert authorization.id == "pi_new"
    assert authorization.client_secret == "pi_new_secret"
    assert authorization.metadata == {"intent": "{}"}
    assert calls[0]["idempotency_key"] == "k-1"


@pytest.mark.asyncio
async def test_authorization_errors_become_gateway_errors(monkeypatch):
    def create(**kwargs):
        raise stripe.APIError("Stripe is having trouble")

    monkeypatch.setattr(stripe.PaymentIntent, "create", create)

    with pytest.raises(PaymentGatewayError):
        await _gateway().create_authorization(15000, "usd", {"intent": "{}"})
