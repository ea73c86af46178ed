"""Authentication and decoding of gateway webhook deliveries."""

import json
import logging
from dataclasses import dataclass, field
from typing import Any

from ..core.exceptions import ValidationError, WebhookSignatureError
from ..core.observability import metrics_collector
from .payment_gateway import PaymentGateway

logger = logging.getLogger(__name__)

PAYMENT_SUCCEEDED = "payment_intent.succeeded"
PAYMENT_FAILED = "payment_intent.payment_failed"
PAYMENT_CANCELED = "payment_intent.canceled"

# Metadata key marking an authorization that pays for a whole cart
CART_MARKER = "cart_id"


@dataclass(frozen=True)
class PaymentEvent:
    """A verified gateway notification about one payment."""

    id: str
    type: str
    reference: str
    amount: int
    currency: str
    status: str | None = None
    metadata: dict[str, str] = field(default_factory=dict)

    @property
    def is_payment_success(self) -> bool:
        return self.type == PAYMENT_SUCCEEDED

    @property
    def is_cart_checkout(self) -> bool:
        return CART_MARKER in self.metadata


class WebhookVerifier:
    """Verifies signatures before anything in the payload is trusted."""

    def __init__(self, gateway: PaymentGateway):
        self.gateway = gateway

    def verify(self, payload: bytes, signature: str | None) -> PaymentEvent:
        """
        Authenticate a raw delivery and decode it into a PaymentEvent.

        Args:
            payload: Raw request body exactly as received
            signature: Value of the gateway signature header

        Returns:
            The decoded event

        Raises:
            WebhookSignatureError: If the signature is missing or does not match
            ValidationError: If a verified payload is not a payment event
        """
        if not signature:
            metrics_collector.record_webhook_rejected()
            logger.warning("Webhook rejected: missing signature header")
            raise WebhookSignatureError("Missing webhook signature header")

        try:
            self.gateway.verify_webhook_signature(payload, signature)
        except WebhookSignatureError:
            metrics_collector.record_webhook_rejected()
            logger.warning("Webhook rejected: signature mismatch", extra={"payload_size": len(payload)})
            raise

        body = json.loads(payload)
        if not isinstance(body, dict):
            raise ValidationError(detail="Webhook payload is not an event object")
        return self._decode(body)

    @staticmethod
    def _decode(body: dict[str, Any]) -> PaymentEvent:
        event_id = body.get("id")
        event_type = body.get("type")
        data_object = (body.get("data") or {}).get("object") or {}
        reference = data_object.get("id")

        if not event_id or not event_type or not reference:
            raise ValidationError(detail="Webhook event is missing its id, type or payment object")

        metadata = data_object.get("metadata") or {}
        return PaymentEvent(
            id=event_id,
            type=event_type,
            reference=reference,
            amount=int(data_object.get("amount_received") or data_object.get("amount") or 0),
            currency=(data_object.get("currency") or "").lower(),
            status=data_object.get("status"),
            metadata={str(k): str(v) for k, v in metadata.items()},
        )
