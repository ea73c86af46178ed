"""Unit tests for webhook signature verification."""

import json
import time

import pytest
from conftest import WEBHOOK_SECRET, payment_event_body, sign_payload

from reservation_service.core.exceptions import ValidationError, WebhookSignatureError
from reservation_service.services.payment_gateway import StripePaymentGateway
from reservation_service.services.webhook_verifier import WebhookVerifier


@pytest.fixture
def verifier():
    return WebhookVerifier(StripePaymentGateway(api_key=None, webhook_secret=WEBHOOK_SECRET))


def test_valid_signature_decodes_event(verifier):
    payload = payment_event_body("pi_123", 15000, {"intent": "{}"}, event_id="evt_42")

    event = verifier.verify(payload, sign_payload(payload))

    assert event.id == "evt_42"
    assert event.reference == "pi_123"
    assert event.amount == 15000
    assert event.currency == "usd"
    assert event.metadata == {"intent": "{}"}
    assert event.is_payment_success
    assert not event.is_cart_checkout


def test_cart_marker_is_detected(verifier):
    payload = payment_event_body("pi_123", 15000, {"cart_id": "c-1", "cart_items": "2"})

    event = verifier.verify(payload, sign_payload(payload))

    assert event.is_cart_checkout


def test_signature_from_another_secret(verifier):
    payload = payment_event_body("pi_123", 15000, {})

    with pytest.raises(WebhookSignatureError) as exc_info:
        verifier.verify(payload, sign_payload(payload, secret="whsec_attacker"))

    assert exc_info.value.status_code == 400


def test_tampered_payload(verifier):
    payload = payment_event_body("pi_123", 15000, {})
    signature = sign_payload(payload)
    tampered = payload.replace(b"15000", b"1")

    with pytest.raises(WebhookSignatureError):
        verifier.verify(tampered, signature)


@pytest.mark.parametrize("signature", [None, ""])
def test_missing_signature(verifier, signature):
    with pytest.raises(WebhookSignatureError):
        verifier.verify(payment_event_body("pi_123", 15000, {}), signature)


def test_stale_timestamp(verifier):
    payload = payment_event_body("pi_123", 15000, {})
    stale = int(time.time()) - 3600

    with pytest.raises(WebhookSignatureError):
        verifier.verify(payload, sign_payload(payload, timestamp=stale))


def test_unconfigured_secret_rejects_everything():
    verifier = WebhookVerifier(StripePaymentGateway(api_key=None, webhook_secret=None))
    payload = payment_event_body("pi_123", 15000, {})

    with pytest.raises(WebhookSignatureError):
        verifier.verify(payload, sign_payload(payload))


def test_verified_event_without_payment_object(verifier):
    payload = json.dumps({"id": "evt_1", "object": "event", "type": "customer.created", "data": {}}).encode()

    with pytest.raises(ValidationError):
        verifier.verify(payload, sign_payload(payload))
