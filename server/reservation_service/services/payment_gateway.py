"""Payment gateway port and its Stripe adapter."""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable

import stripe

from ..core.exceptions import (
    IntentTooLarge,
    PaymentGatewayError,
    RefundGatewayError,
    RefundOutcomeUnknown,
    WebhookSignatureError,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Authorization:
    """A payment authorization as the gateway reports it."""

    id: str
    amount: int
    currency: str
    status: str
    client_secret: str | None = None
    metadata: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class RefundResult:
    """Outcome of a refund the gateway accepted."""

    id: str
    payment_id: str
    amount: int
    status: str


class PaymentGateway(ABC):
    """Abstract contract every gateway adapter satisfies."""

    @abstractmethod
    async def create_authorization(
        self,
        amount: int,
        currency: str,
        metadata: dict[str, str],
        description: str | None = None,
        idempotency_key: str | None = None,
    ) -> Authorization:
        """Create a payment authorization carrying the given metadata."""

    @abstractmethod
    async def retrieve_authorization(self, authorization_id: str) -> Authorization:
        """Fetch the current state of an authorization."""

    @abstractmethod
    async def create_refund(
        self,
        payment_id: str,
        amount: int,
        reservation_id: str,
        reason: str | None = None,
        attempt: int = 0,
    ) -> RefundResult:
        """
        Refund part or all of a captured payment.

        ``attempt`` counts the gateway's earlier definite rejections of this
        refund; it stays unchanged after an unknown outcome so a manual
        re-attempt reuses the same idempotency key.
        """

    @abstractmethod
    def verify_webhook_signature(self, payload: bytes, signature: str) -> None:
        """Raise WebhookSignatureError unless the payload was signed with the shared secret."""


def refund_idempotency_key(reservation_id: str, amount: int, attempt: int = 0) -> str:
    """
    Gateway-side dedupe key; a manual re-attempt cannot refund twice.

    Stripe replays the stored response for a key, failures included, so a
    refund the gateway definitely rejected is retried under the next attempt.
    """
    return f"refund-{reservation_id}-{amount}-{attempt}"


class StripePaymentGateway(PaymentGateway):
    """
    Stripe adapter.

    The Stripe SDK is synchronous, so each call runs in a worker thread and
    is bounded by ``timeout_seconds``.
    """

    def __init__(
        self,
        api_key: str | None,
        webhook_secret: str | None,
        timeout_seconds: float = 10.0,
        tolerance_seconds: int = 300,
        field_limit: int = 500,
    ):
        self.api_key = api_key
        self.webhook_secret = webhook_secret
        self.timeout_seconds = timeout_seconds
        self.tolerance_seconds = tolerance_seconds
        self.field_limit = field_limit

    async def _call(self, func: Callable[..., Any], **kwargs: Any) -> Any:
        return await asyncio.wait_for(
            asyncio.to_thread(func, api_key=self.api_key, **kwargs),
            timeout=self.timeout_seconds,
        )

    @staticmethod
    def _to_authorization(intent: Any) -> Authorization:
        data = intent.to_dict() if hasattr(intent, "to_dict") else dict(intent)
        metadata = data.get("metadata") or {}
        return Authorization(
            id=data["id"],
            amount=data.get("amount_received") or data.get("amount") or 0,
            currency=data.get("currency", ""),
            status=data.get("status", "unknown"),
            client_secret=data.get("client_secret"),
            metadata={str(k): str(v) for k, v in dict(metadata).items()},
        )

    async def create_authorization(
        self,
        amount: int,
        currency: str,
        metadata: dict[str, str],
        description: str | None = None,
        idempotency_key: str | None = None,
    ) -> Authorization:
        for key, value in metadata.items():
            size = len(value.encode("utf-8"))
            if size > self.field_limit:
                raise IntentTooLarge(slot=key, size=size, limit=self.field_limit)

        try:
            intent = await self._call(
                stripe.PaymentIntent.create,
                amount=amount,
                currency=currency,
                metadata=metadata,
                description=description,
                automatic_payment_methods={"enabled": True},
                idempotency_key=idempotency_key,
            )
        except asyncio.TimeoutError as e:
            logger.error("Stripe authorization timed out", extra={"amount": amount, "currency": currency})
            raise PaymentGatewayError("Payment gateway timed out creating the authorization") from e
        except stripe.StripeError as e:
            logger.error(
                "Stripe authorization failed",
                extra={"amount": amount, "currency": currency, "error": str(e)}
            )
            raise PaymentGatewayError(e.user_message or "Payment gateway rejected the authorization") from e

        authorization = self._to_authorization(intent)
        logger.info(
            "Stripe authorization created",
            extra={"authorization_id": authorization.id, "amount": amount, "currency": currency}
        )
        return authorization

    async def retrieve_authorization(self, authorization_id: str) -> Authorization:
        try:
            intent = await self._call(stripe.PaymentIntent.retrieve, id=authorization_id)
        except asyncio.TimeoutError as e:
            raise PaymentGatewayError("Payment gateway timed out retrieving the authorization") from e
        except stripe.StripeError as e:
            raise PaymentGatewayError(e.user_message or f"Could not retrieve authorization {authorization_id}") from e
        return self._to_authorization(intent)

    async def create_refund(
        self,
        payment_id: str,
        amount: int,
        reservation_id: str,
        reason: str | None = None,
        attempt: int = 0,
    ) -> RefundResult:
        try:
            refund = await self._call(
                stripe.Refund.create,
                payment_intent=payment_id,
                amount=amount,
                reason="requested_by_customer",
                metadata={"reservation_id": reservation_id, "note": (reason or "")[:450]},
                idempotency_key=refund_idempotency_key(reservation_id, amount, attempt),
            )
        except (asyncio.TimeoutError, stripe.APIConnectionError) as e:
            # Do not retry: the refund may or may not have been issued
            logger.error(
                "Refund outcome unknown",
                extra={"reservation_id": reservation_id, "payment_id": payment_id, "amount": amount}
            )
            raise RefundOutcomeUnknown(
                reservation_id,
                f"Refund of {amount} on payment {payment_id} has an unknown outcome; reconcile manually",
            ) from e
        except stripe.StripeError as e:
            logger.warning(
                "Refund rejected by Stripe",
                extra={"reservation_id": reservation_id, "payment_id": payment_id, "error": str(e)}
            )
            raise RefundGatewayError(reservation_id, e.user_message or str(e)) from e

        if refund["status"] in ("failed", "canceled"):
            raise RefundGatewayError(reservation_id, f"Refund {refund['id']} ended in status {refund['status']}")

        return RefundResult(
            id=refund["id"],
            payment_id=payment_id,
            amount=refund["amount"],
            status=refund["status"],
        )

    def verify_webhook_signature(self, payload: bytes, signature: str) -> None:
        if not self.webhook_secret:
            raise WebhookSignatureError("Webhook secret is not configured")
        try:
            stripe.Webhook.construct_event(
                payload,
                signature,
                self.webhook_secret,
                tolerance=self.tolerance_seconds,
            )
        except stripe.SignatureVerificationError as e:
            raise WebhookSignatureError("Webhook signature verification failed") from e
        except ValueError as e:
            raise WebhookSignatureError("Webhook payload is not valid JSON") from e
