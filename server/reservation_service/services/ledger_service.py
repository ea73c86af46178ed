"""Split-payment ledger: many participants paying toward one reservation."""

import logging
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.database import utcnow
from ..core.exceptions import AlreadyCanceled, ConflictError, NotFoundError, OverpaymentError
from ..core.observability import metrics_collector
from ..models.ledger import EntryKind, EntryStatus, PaymentLedgerEntry, PaymentMethod
from ..models.reservation import Reservation, ReservationStatus

logger = logging.getLogger(__name__)


def _pledged(reservation: Reservation) -> int:
    """Payments recorded so far, paid or still pending, net of refunds."""
    total = 0
    for entry in reservation.ledger_entries:
        if entry.kind == EntryKind.REFUND:
            if entry.status == EntryStatus.PAID:
                total -= entry.amount
        else:
            total += entry.amount
    return total


def _confirm_if_settled(reservation: Reservation) -> None:
    if reservation.status == ReservationStatus.PENDING and reservation.remaining_balance == 0:
        reservation.transition_to(ReservationStatus.CONFIRMED)


def apply_payment(
    reservation: Reservation,
    participant: str,
    amount: int,
    method: PaymentMethod,
    status: EntryStatus = EntryStatus.PAID,
) -> PaymentLedgerEntry:
    """
    Append a contribution to a reservation and re-derive its balance.

    Works on the in-memory reservation only; the caller persists it.

    Raises:
        AlreadyCanceled: If the reservation is canceled
        OverpaymentError: If the contribution would exceed the total
    """
    if reservation.status == ReservationStatus.CANCELED:
        raise AlreadyCanceled(str(reservation.id))

    status = EntryStatus(status)
    exceeds_paid = status == EntryStatus.PAID and reservation.amount_paid + amount > reservation.total_amount
    if exceeds_paid or _pledged(reservation) + amount > reservation.total_amount:
        raise OverpaymentError(str(reservation.id), amount, reservation.amount_paid, reservation.total_amount)

    entry = PaymentLedgerEntry(
        participant=participant,
        amount=amount,
        status=status.value,
        method=PaymentMethod(method).value,
        kind=EntryKind.PAYMENT.value,
        paid_at=utcnow() if status == EntryStatus.PAID else None,
    )
    reservation.ledger_entries.append(entry)
    reservation.recompute_payment_summary()
    _confirm_if_settled(reservation)
    return entry


def apply_entry_status(reservation: Reservation, entry: PaymentLedgerEntry, status: EntryStatus) -> None:
    """Flip an entry between pending and paid and re-derive the balance."""
    if reservation.status == ReservationStatus.CANCELED:
        raise AlreadyCanceled(str(reservation.id))
    if entry.kind == EntryKind.REFUND:
        raise ConflictError(detail=f"Refund entry {entry.id} cannot change status")

    status = EntryStatus(status)
    if entry.status == status:
        return
    if status == EntryStatus.PAID and reservation.amount_paid + entry.amount > reservation.total_amount:
        raise OverpaymentError(str(reservation.id), entry.amount, reservation.amount_paid, reservation.total_amount)

    entry.status = status.value
    entry.paid_at = utcnow() if status == EntryStatus.PAID else None
    reservation.recompute_payment_summary()
    _confirm_if_settled(reservation)


class LedgerService:
    """Service for split-payment ledger operations."""

    def __init__(self, db: AsyncSession):
        self.db = db

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

    async def record_payment(
        self,
        reservation_id: UUID,
        participant: str,
        amount: int,
        method: PaymentMethod,
        status: EntryStatus = EntryStatus.PAID,
    ) -> tuple[Reservation, PaymentLedgerEntry]:
        """
        Record one participant's contribution.

        The balance is re-derived from the full entry list, and a pending
        reservation is confirmed once its remaining balance reaches zero.

        Returns:
            Tuple of (updated reservation, new ledger entry)
        """
        reservation = await self._get_reservation(reservation_id)
        try:
            entry = apply_payment(reservation, participant, amount, method, status)
        except OverpaymentError:
            logger.warning(
                "Payment rejected - would overpay reservation",
                extra={
                    "reservation_id": str(reservation_id),
                    "amount": amount,
                    "amount_paid": reservation.amount_paid,
                    "total_amount": reservation.total_amount,
                }
            )
            raise

        await self.db.commit()

        metrics_collector.record_ledger_payment(entry.method, entry.status)
        logger.info(
            "Ledger payment recorded",
            extra={
                "reservation_id": str(reservation_id),
                "entry_id": str(entry.id),
                "participant": participant,
                "amount": amount,
                "status": entry.status,
                "amount_paid": reservation.amount_paid,
                "remaining_balance": reservation.remaining_balance,
                "reservation_status": reservation.status,
            }
        )
        return reservation, entry

    async def update_entry_status(
        self,
        reservation_id: UUID,
        entry_id: UUID,
        status: EntryStatus,
    ) -> tuple[Reservation, PaymentLedgerEntry]:
        """Mark a ledger entry paid (or back to pending) out of band."""
        reservation = await self._get_reservation(reservation_id)
        entry = next((e for e in reservation.ledger_entries if e.id == entry_id), None)
        if entry is None:
            raise NotFoundError(resource_type="ledger entry", resource_id=str(entry_id))

        apply_entry_status(reservation, entry, status)
        await self.db.commit()

        logger.info(
            "Ledger entry status updated",
            extra={
                "reservation_id": str(reservation_id),
                "entry_id": str(entry_id),
                "status": entry.status,
                "amount_paid": reservation.amount_paid,
                "reservation_status": reservation.status,
            }
        )
        return reservation, entry
