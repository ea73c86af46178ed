"""Webhook router for payment gateway notifications."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.database import get_db
from ..core.dependencies import NotificationsDependency, PaymentGatewayDependency
from ..core.exceptions import ReservationProblem
from ..core.observability import metrics_collector
from ..schemas.payment import WebhookAck
from ..services.cart_checkout import CartCheckoutOrchestrator
from ..services.materializer import ReservationMaterializer, support_message
from ..services.notifications import NotificationDispatcher
from ..services.payment_gateway import PaymentGateway
from ..services.webhook_verifier import PAYMENT_CANCELED, PAYMENT_FAILED, PaymentEvent, WebhookVerifier

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/webhook", tags=["webhook"])

DB_DEPENDENCY = Depends(get_db)
SIGNATURE_DEPENDENCY = Header(None, alias="Stripe-Signature")


def _ack(event: PaymentEvent, ack: WebhookAck) -> JSONResponse:
    metrics_collector.record_webhook(event.type, ack.status)
    return JSONResponse(status_code=200, content=ack.model_dump(mode="json"))


@router.post("/gateway", response_model=WebhookAck)
async def receive_gateway_event(
    request: Request,
    signature: Optional[str] = SIGNATURE_DEPENDENCY,
    db: AsyncSession = DB_DEPENDENCY,
    gateway: PaymentGateway = PaymentGatewayDependency,
    notifications: NotificationDispatcher = NotificationsDependency
) -> JSONResponse:
    """
    Receive a payment gateway event.

    The signature is verified against the raw body before anything in it is
    trusted. Every verified event is acknowledged with 200 so the gateway
    stops redelivering; a domain failure is acknowledged with a support
    message and left in the failure log for an operator.
    """
    payload = await request.body()
    event = WebhookVerifier(gateway).verify(payload, signature)

    if event.type in (PAYMENT_FAILED, PAYMENT_CANCELED):
        logger.info(
            "Payment did not complete",
            extra={"event_id": event.id, "event_type": event.type, "payment_reference": event.reference}
        )
        return _ack(event, WebhookAck(status="processed"))

    if not event.is_payment_success:
        logger.debug("Ignoring unhandled gateway event", extra={"event_id": event.id, "event_type": event.type})
        return _ack(event, WebhookAck(status="ignored"))

    try:
        if event.is_cart_checkout:
            orchestrator = CartCheckoutOrchestrator(db, gateway, notifications=notifications)
            reservations = await orchestrator.complete_checkout(event)
            ack = WebhookAck(status="processed", reservation_ids=[str(r.id) for r in reservations])
        else:
            materializer = ReservationMaterializer(db, notifications=notifications)
            reservation, created = await materializer.materialize(event)
            ack = WebhookAck(
                status="processed" if created else "duplicate",
                reservation_ids=[str(reservation.id)],
            )
    except ReservationProblem as exc:
        logger.warning(
            "Payment succeeded but no reservation was produced",
            extra={"event_id": event.id, "payment_reference": event.reference, "code": exc.code}
        )
        return _ack(event, WebhookAck(status="failed", message=support_message(event.reference)))

    logger.info(
        "Gateway event processed",
        extra={
            "event_id": event.id,
            "payment_reference": event.reference,
            "status": ack.status,
            "reservations": len(ack.reservation_ids),
        }
    )
    return _ack(event, ack)
