"""Turns verified payment-succeeded events into reservations, exactly once."""

import logging
from collections.abc import Mapping
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import settings
from ..core.database import utcnow
from ..core.exceptions import DuplicateMaterialization, PaymentAmountMismatch, ReservationProblem
from ..core.observability import get_logger, metrics_collector
from ..models.ledger import EntryKind, EntryStatus, PaymentLedgerEntry, PaymentMethod
from ..models.reservation import Reservation, ReservationStatus
from ..schemas.reservation import PendingIntent
from .failure_log import FailureLogService
from .intent_codec import IntentCodec
from .notifications import RESERVATION_CONFIRMED, Notification, NotificationDispatcher, notification_dispatcher
from .webhook_verifier import PaymentEvent

logger = logging.getLogger(__name__)
log = get_logger(__name__)


def support_message(reference: str) -> str:
    """Customer-facing text for a charged payment that produced no reservation."""
    return f"Payment succeeded but reservation failed, contact support with reference {reference}"


def build_reservation(
    intent: PendingIntent,
    status: ReservationStatus,
    payment_reference: str | None = None,
    gateway_payment_id: str | None = None,
    paid_by_card: bool = False,
) -> Reservation:
    """Construct (but do not persist) a reservation from an intent."""
    reservation = Reservation(
        payment_reference=payment_reference,
        gateway_payment_id=gateway_payment_id,
        account_id=intent.holder.account_id,
        guest_name=intent.holder.guest_name,
        guest_email=intent.holder.guest_email,
        category=intent.category.value,
        service_id=intent.service_id,
        option_id=intent.option_id,
        details=intent.details.model_dump(mode="json"),
        party_size=intent.party_size,
        multi_participant=len(intent.participants) > 0,
        participants=list(intent.participants),
        status=status.value,
        total_amount=intent.total_amount,
        amount_paid=0,
        remaining_balance=intent.total_amount,
        currency=intent.currency,
        ledger_entries=[],
        cancellation=None,
    )
    if paid_by_card and intent.total_amount > 0:
        reservation.ledger_entries.append(
            PaymentLedgerEntry(
                participant=reservation.holder_label,
                amount=intent.total_amount,
                status=EntryStatus.PAID.value,
                method=PaymentMethod.CARD.value,
                kind=EntryKind.PAYMENT.value,
                paid_at=utcnow(),
                gateway_reference=gateway_payment_id,
            )
        )
    reservation.recompute_payment_summary()
    return reservation


class ReservationMaterializer:
    """
    Idempotent payment-to-reservation conversion.

    The unique constraint on ``payment_reference`` is the only arbiter
    between concurrent deliveries of the same event; a violation on insert
    means another delivery won and its row is returned.
    """

    def __init__(
        self,
        db: AsyncSession,
        codec: IntentCodec | None = None,
        notifications: NotificationDispatcher | None = None,
    ):
        self.db = db
        self.codec = codec or IntentCodec(settings.intent_metadata_field_limit)
        self.notifications = notifications or notification_dispatcher
        self.failure_log = FailureLogService(db)

    async def get_by_reference(self, payment_reference: str) -> Reservation | None:
        stmt = (
            select(Reservation)
            .where(Reservation.payment_reference == payment_reference)
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_many(self, reservation_ids: list[UUID]) -> list[Reservation]:
        if not reservation_ids:
            return []
        stmt = (
            select(Reservation)
            .where(Reservation.id.in_(reservation_ids))
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        by_id = {reservation.id: reservation for reservation in result.scalars().all()}
        return [by_id[rid] for rid in reservation_ids if rid in by_id]

    async def materialize_item(
        self,
        payment_reference: str,
        gateway_payment_id: str,
        metadata: Mapping[str, str],
        prefix: str = "",
        charged_amount: int | None = None,
    ) -> tuple[Reservation, bool]:
        """
        Look up, decode, build and insert one reservation.

        Args:
            payment_reference: Unique idempotency key for this reservation
            gateway_payment_id: Gateway payment the reservation was paid by
            metadata: Authorization metadata holding the encoded intent
            prefix: Metadata key prefix of this item's intent slots
            charged_amount: Amount the gateway captured, checked against the
                intent total; None when the caller checks a batch total instead

        Returns:
            Tuple of (reservation, created) where created is False when an
            existing reservation was returned

        Raises:
            MalformedIntent: If the intent is absent or undecodable
            CategoryValidationError: If the intent violates its category rules
            PaymentAmountMismatch: If the charged amount differs from the total
        """
        existing = await self.get_by_reference(payment_reference)
        if existing is not None:
            metrics_collector.record_duplicate_delivery()
            logger.info(
                "Reservation already materialized for payment reference",
                extra={"payment_reference": payment_reference, "reservation_id": str(existing.id)}
            )
            return existing, False

        intent = self.codec.decode(metadata, prefix=prefix)

        if charged_amount is not None and charged_amount != intent.total_amount:
            raise PaymentAmountMismatch(payment_reference, charged_amount, intent.total_amount)

        reservation = build_reservation(
            intent,
            ReservationStatus.CONFIRMED,
            payment_reference=payment_reference,
            gateway_payment_id=gateway_payment_id,
            paid_by_card=True,
        )
        self.db.add(reservation)

        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            existing = await self.get_by_reference(payment_reference)
            if existing is None:
                raise
            duplicate = DuplicateMaterialization(payment_reference)
            metrics_collector.record_duplicate_delivery()
            logger.info(
                "Concurrent delivery materialized the reservation first",
                extra={
                    "payment_reference": payment_reference,
                    "reservation_id": str(existing.id),
                    "code": duplicate.code,
                }
            )
            return existing, False

        metrics_collector.record_materialized(reservation.category)
        logger.info(
            "Reservation materialized",
            extra={
                "reservation_id": str(reservation.id),
                "payment_reference": payment_reference,
                "category": reservation.category,
                "total_amount": reservation.total_amount,
            }
        )
        return reservation, True

    def notify_confirmed(self, reservation: Reservation) -> None:
        """Queue the confirmation; never raises into the caller."""
        self.notifications.enqueue(
            Notification(
                kind=RESERVATION_CONFIRMED,
                reservation_id=str(reservation.id),
                recipient=reservation.guest_email or reservation.account_id or "",
                payload={
                    "category": reservation.category,
                    "service_id": reservation.service_id,
                    "total_amount": reservation.total_amount,
                    "currency": reservation.currency,
                },
            )
        )

    async def materialize(self, event: PaymentEvent) -> tuple[Reservation, bool] | None:
        """
        Produce the one reservation a successful payment pays for.

        Returns (reservation, created), or None for a non-success event.

        Non-success events are ignored. Decode, amount and category failures
        leave no reservation behind, are written to the failure log, and are
        re-raised so the caller can acknowledge the event with a support message.
        """
        if not event.is_payment_success:
            logger.info(
                "Ignoring non-success payment event",
                extra={"event_id": event.id, "event_type": event.type, "payment_reference": event.reference}
            )
            return None

        try:
            reservation, created = await self.materialize_item(
                payment_reference=event.reference,
                gateway_payment_id=event.reference,
                metadata=event.metadata,
                charged_amount=event.amount,
            )
        except ReservationProblem as exc:
            log.error(
                "materialization_failed",
                payment_reference=event.reference,
                event_id=event.id,
                code=exc.code,
                detail=exc.message,
            )
            await self.failure_log.record(
                error_code=exc.code or "MATERIALIZATION_FAILED",
                detail=exc.message,
                payment_reference=event.reference,
                event_id=event.id,
                payload={"amount": event.amount, "currency": event.currency, "metadata": event.metadata},
            )
            raise

        if created:
            self.notify_confirmed(reservation)
        return reservation, created
