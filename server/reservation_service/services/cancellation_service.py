"""Cancellation with a compensating refund through the payment gateway."""

import logging
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import settings
from ..core.database import utcnow
from ..core.exceptions import (
    AlreadyCanceled,
    AuthorizationError,
    NotFoundError,
    RefundAmountExceedsPaid,
    RefundGatewayError,
    RefundOutcomeUnknown,
)
from ..core.observability import get_logger, metrics_collector
from ..core.security import Actor
from ..models.ledger import EntryKind, EntryStatus, PaymentLedgerEntry, PaymentMethod
from ..models.reservation import RefundStatus, Reservation, ReservationCancellation, ReservationStatus
from .failure_log import REFUND_REJECTED, FailureLogService
from .notifications import RESERVATION_CANCELED, Notification, NotificationDispatcher, notification_dispatcher
from .payment_gateway import PaymentGateway

logger = logging.getLogger(__name__)
log = get_logger(__name__)

SYSTEM_ACTOR = "system"


def default_refund_amount(reservation: Reservation, policy: str) -> int:
    """Refund used when the caller supplies none; never more than was paid."""
    if policy == "amount_paid":
        return reservation.amount_paid
    return min(reservation.remaining_balance, reservation.amount_paid)


def mark_canceled(
    reservation: Reservation,
    canceled_by: str,
    reason: str | None,
    refund_amount: int,
    refund_status: RefundStatus,
    refund_reference: str | None = None,
) -> None:
    """Write the cancellation record and flip status; refunds already settled hit the ledger."""
    reservation.cancellation = ReservationCancellation(
        canceled_by=canceled_by,
        canceled_at=utcnow(),
        refund_amount=refund_amount,
        refund_status=refund_status.value,
        refund_reference=refund_reference,
        reason=reason,
    )
    if refund_amount > 0 and refund_status == RefundStatus.PROCESSED:
        reservation.ledger_entries.append(
            PaymentLedgerEntry(
                participant=reservation.holder_label,
                amount=refund_amount,
                status=EntryStatus.PAID.value,
                method=PaymentMethod.CARD.value,
                kind=EntryKind.REFUND.value,
                paid_at=utcnow(),
                gateway_reference=refund_reference,
            )
        )
        reservation.recompute_payment_summary()
    reservation.transition_to(ReservationStatus.CANCELED)


class CancellationService:
    """
    Cancels reservations and refunds them.

    The refund is the one synchronous external call in the core: local
    state is written only after the gateway confirms the money movement,
    and a refund with an unknown outcome is never retried automatically.
    """

    def __init__(
        self,
        db: AsyncSession,
        gateway: PaymentGateway,
        refund_policy: str | None = None,
        notifications: NotificationDispatcher | None = None,
    ):
        self.db = db
        self.gateway = gateway
        self.refund_policy = refund_policy or settings.refund_policy
        self.notifications = notifications or notification_dispatcher
        self.failure_log = FailureLogService(db)

    async def _get_reservation(self, reservation_id: UUID) -> Reservation:
        stmt = (
            select(Reservation)
            .where(Reservation.id == reservation_id)
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        reservation = result.scalar_one_or_none()
        if reservation is None:
            raise NotFoundError(resource_type="reservation", resource_id=str(reservation_id))
        return reservation

    async def cancel(
        self,
        reservation_id: UUID,
        actor: Actor,
        reason: str | None = None,
        refund_amount: int | None = None,
    ) -> Reservation:
        """
        Cancel a reservation and refund the holder.

        Args:
            reservation_id: Reservation to cancel
            actor: Caller; must hold the reservation or be an administrator
            reason: Free-text reason stored on the cancellation record
            refund_amount: Explicit refund, administrators only; the configured
                policy decides when omitted

        Returns:
            The canceled reservation

        Raises:
            AlreadyCanceled: If the reservation is already canceled
            RefundAmountExceedsPaid: If the refund is larger than amount_paid
            RefundGatewayError: If the gateway rejected the refund
            RefundOutcomeUnknown: If the refund call timed out
        """
        reservation = await self._get_reservation(reservation_id)

        if not (actor.is_admin or actor.owns(reservation.account_id)):
            raise AuthorizationError("Only the reservation holder or an administrator may cancel it")
        if refund_amount is not None and not actor.is_admin:
            raise AuthorizationError("Only administrators may set an explicit refund amount")

        if reservation.status == ReservationStatus.CANCELED:
            raise AlreadyCanceled(str(reservation_id))

        amount = refund_amount if refund_amount is not None else default_refund_amount(reservation, self.refund_policy)
        if amount > reservation.amount_paid:
            raise RefundAmountExceedsPaid(str(reservation_id), amount, reservation.amount_paid)

        refund_status = RefundStatus.PROCESSED
        refund_reference = None

        if amount > 0 and reservation.gateway_payment_id:
            attempt = await self.failure_log.count_failures(
                reservation.gateway_payment_id, REFUND_REJECTED, str(reservation_id)
            )
            try:
                refund = await self.gateway.create_refund(
                    payment_id=reservation.gateway_payment_id,
                    amount=amount,
                    reservation_id=str(reservation_id),
                    reason=reason,
                    attempt=attempt,
                )
            except RefundOutcomeUnknown as exc:
                metrics_collector.record_refund("unknown")
                await self.failure_log.record(
                    error_code=exc.code or "REFUND_OUTCOME_UNKNOWN",
                    detail=exc.message,
                    payment_reference=reservation.gateway_payment_id,
                    payload={"reservation_id": str(reservation_id), "refund_amount": amount},
                )
                raise
            except RefundGatewayError as exc:
                metrics_collector.record_refund("failed")
                log.warning(
                    "refund_failed",
                    reservation_id=str(reservation_id),
                    refund_amount=amount,
                    code=exc.code,
                    attempt=attempt,
                )
                # The next attempt needs a fresh idempotency key
                await self.failure_log.record(
                    error_code=REFUND_REJECTED,
                    detail=exc.message,
                    payment_reference=reservation.gateway_payment_id,
                    payload={"reservation_id": str(reservation_id), "refund_amount": amount, "attempt": attempt},
                )
                raise
            refund_reference = refund.id
            metrics_collector.record_refund("processed")
        elif amount > 0:
            # Paid in cash or by transfer; settled out of band
            refund_status = RefundStatus.PENDING
            metrics_collector.record_refund("pending")

        mark_canceled(
            reservation,
            canceled_by=actor.account_id,
            reason=reason,
            refund_amount=amount,
            refund_status=refund_status,
            refund_reference=refund_reference,
        )
        await self.db.commit()

        logger.info(
            "Reservation canceled",
            extra={
                "reservation_id": str(reservation_id),
                "canceled_by": actor.account_id,
                "refund_amount": amount,
                "refund_status": refund_status.value,
                "refund_reference": refund_reference,
            }
        )

        self.notifications.enqueue(
            Notification(
                kind=RESERVATION_CANCELED,
                reservation_id=str(reservation_id),
                recipient=reservation.guest_email or reservation.account_id or "",
                payload={"refund_amount": amount, "refund_status": refund_status.value},
            )
        )
        return reservation
