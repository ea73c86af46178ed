"""All-or-nothing conversion of a cart into reservations under one payment.

Each cart item travels as its own intent under an item prefix (``i0_``,
``i1_``, ...) next to batch marker slots. When the payment succeeds every
item is materialized independently, keyed ``<payment id>:<index>``. If any
item fails, the reservations this invocation created are canceled with
reason ``batch rollback`` and the cart is left intact for operator review.
"""

import logging
from uuid import UUID

from ..core.config import settings
from ..core.exceptions import (
    EmptyCartError,
    MalformedIntent,
    PaymentAmountMismatch,
    ReservationProblem,
    ValidationError,
)
from ..core.observability import get_logger, metrics_collector
from ..models.cart import Cart, CartItem
from ..models.reservation import RefundStatus, Reservation, ReservationStatus
from ..schemas.reservation import Holder, PendingIntent
from .cancellation_service import SYSTEM_ACTOR, mark_canceled
from .cart_service import CartService
from .intent_codec import IntentCodec
from .materializer import ReservationMaterializer
from .notifications import NotificationDispatcher
from .payment_gateway import Authorization, PaymentGateway
from .webhook_verifier import CART_MARKER, PaymentEvent

logger = logging.getLogger(__name__)
log = get_logger(__name__)

CART_ITEMS_SLOT = "cart_items"
CART_TOTAL_SLOT = "cart_total"
BATCH_ROLLBACK_REASON = "batch rollback"

# Stripe accepts at most 50 metadata keys per object
MAX_METADATA_KEYS = 50


def item_prefix(index: int) -> str:
    return f"i{index}_"


def item_reference(payment_reference: str, index: int) -> str:
    return f"{payment_reference}:{index}"


class CartCheckoutOrchestrator:
    """Prepares cart authorizations and completes them when the payment succeeds."""

    def __init__(
        self,
        db,
        gateway: PaymentGateway | None = None,
        codec: IntentCodec | None = None,
        notifications: NotificationDispatcher | None = None,
    ):
        self.db = db
        self.gateway = gateway
        self.codec = codec or IntentCodec(settings.intent_metadata_field_limit)
        self.materializer = ReservationMaterializer(db, self.codec, notifications)
        self.cart_service = CartService(db)
        self.failure_log = self.materializer.failure_log

    def intent_for_item(self, cart: Cart, item: CartItem, index: int, holder: Holder) -> PendingIntent:
        return PendingIntent.model_validate({
            "details": item.details,
            "service_id": item.service_id,
            "option_id": item.option_id,
            "party_size": item.party_size,
            "participants": item.participants or [],
            "holder": holder,
            "total_amount": item.line_price,
            "currency": item.currency,
            "cart_id": str(cart.id),
            "item_index": index,
            "cart_item_id": str(item.id),
        })

    def encode_cart(self, cart: Cart, holder: Holder) -> dict[str, str]:
        """Metadata for one authorization paying for every item in the cart."""
        metadata = {
            CART_MARKER: str(cart.id),
            CART_ITEMS_SLOT: str(len(cart.items)),
            CART_TOTAL_SLOT: str(cart.total_amount),
        }
        for index, item in enumerate(cart.items):
            intent = self.intent_for_item(cart, item, index, holder)
            metadata.update(self.codec.encode(intent, prefix=item_prefix(index)))

        if len(metadata) > MAX_METADATA_KEYS:
            raise ValidationError(
                detail=f"Cart has too many items for one payment ({len(cart.items)} items)"
            )
        return metadata

    async def prepare_checkout(self, account_id: str, holder: Holder) -> tuple[Authorization, dict[str, str]]:
        """
        Authorize one payment for the whole cart.

        Raises:
            EmptyCartError: If the cart has no items
            ValidationError: If the cart total is zero or does not fit the metadata limits
        """
        cart = await self.cart_service.get_cart(account_id)
        if cart is None or not cart.items:
            raise EmptyCartError(account_id)

        total = cart.total_amount
        if total <= 0:
            raise ValidationError(detail="Cart total must be positive to authorize a payment")

        metadata = self.encode_cart(cart, holder)
        authorization = await self.gateway.create_authorization(
            amount=total,
            currency=cart.items[0].currency,
            metadata=metadata,
            description=f"Cart checkout ({len(cart.items)} items)",
        )

        logger.info(
            "Cart checkout authorized",
            extra={
                "account_id": account_id,
                "cart_id": str(cart.id),
                "authorization_id": authorization.id,
                "items": len(cart.items),
                "amount": total,
            }
        )
        return authorization, metadata

    def _paid_item_ids(self, metadata, count: int) -> set[str]:
        """Cart item ids the payment covered; items staged later are not among them."""
        item_ids = set()
        for index in range(count):
            intent = self.codec.decode(metadata, prefix=item_prefix(index))
            if intent.cart_item_id:
                item_ids.add(intent.cart_item_id)
        return item_ids

    async def _roll_back(self, reservation_ids: list[UUID]) -> list[str]:
        """Cancel every reservation this invocation created; refunds await an operator."""
        reservations = await self.materializer.get_many(reservation_ids)
        for reservation in reservations:
            if reservation.status == ReservationStatus.CANCELED:
                continue
            mark_canceled(
                reservation,
                canceled_by=SYSTEM_ACTOR,
                reason=BATCH_ROLLBACK_REASON,
                refund_amount=reservation.amount_paid,
                refund_status=RefundStatus.PENDING,
            )
        await self.db.commit()
        return [str(reservation.id) for reservation in reservations]

    async def _fail(self, event: PaymentEvent, exc: ReservationProblem, rolled_back: list[str]) -> None:
        metrics_collector.record_cart_checkout("rolled_back" if rolled_back else "failed")
        log.error(
            "cart_checkout_failed",
            payment_reference=event.reference,
            cart_id=event.metadata.get(CART_MARKER),
            code=exc.code,
            rolled_back=rolled_back,
        )
        await self.failure_log.record(
            error_code=exc.code or "CART_CHECKOUT_FAILED",
            detail=f"Cart {event.metadata.get(CART_MARKER)} batch failed: {exc.message}",
            payment_reference=event.reference,
            event_id=event.id,
            payload={
                "cart_id": event.metadata.get(CART_MARKER),
                "amount": event.amount,
                "rolled_back_reservation_ids": rolled_back,
                "metadata": event.metadata,
            },
        )

    async def complete_checkout(self, event: PaymentEvent) -> list[Reservation]:
        """
        Materialize every item of a paid cart, or none of them.

        Returns:
            The batch's reservations in item order

        Raises:
            ReservationProblem: The first item failure, after rollback and logging
        """
        if not event.is_payment_success:
            logger.info("Ignoring non-success cart payment event", extra={"event_id": event.id})
            return []

        metadata = event.metadata
        try:
            count = int(metadata[CART_ITEMS_SLOT])
            expected_total = int(metadata[CART_TOTAL_SLOT])
        except (KeyError, ValueError) as e:
            exc = MalformedIntent("Cart checkout marker slots are missing or invalid")
            await self._fail(event, exc, [])
            raise exc from e

        if event.amount != expected_total:
            exc = PaymentAmountMismatch(event.reference, event.amount, expected_total)
            await self._fail(event, exc, [])
            raise exc

        created: list[UUID] = []
        batch: list[UUID] = []
        batch_total = 0
        try:
            for index in range(count):
                reservation, was_created = await self.materializer.materialize_item(
                    payment_reference=item_reference(event.reference, index),
                    gateway_payment_id=event.reference,
                    metadata=metadata,
                    prefix=item_prefix(index),
                )
                # Capture plain values; a later rollback expires loaded rows
                batch.append(reservation.id)
                batch_total += reservation.total_amount
                if was_created:
                    created.append(reservation.id)

            if batch_total != expected_total:
                raise PaymentAmountMismatch(event.reference, event.amount, batch_total)
        except ReservationProblem as exc:
            rolled_back = await self._roll_back(created)
            await self._fail(event, exc, rolled_back)
            raise

        cart_id = metadata.get(CART_MARKER)
        try:
            cart = await self.cart_service.get_cart_by_id(UUID(cart_id)) if cart_id else None
        except ValueError:
            cart = None
        if cart is not None:
            await self.cart_service.remove_paid_items(cart, self._paid_item_ids(metadata, count))
        else:
            logger.warning("Paid cart no longer exists", extra={"cart_id": cart_id})

        reservations = await self.materializer.get_many(batch)
        for reservation in reservations:
            if reservation.id in created:
                self.materializer.notify_confirmed(reservation)

        metrics_collector.record_cart_checkout("completed")
        logger.info(
            "Cart checkout completed",
            extra={
                "payment_reference": event.reference,
                "cart_id": cart_id,
                "reservations": len(reservations),
                "created": len(created),
            }
        )
        return reservations
