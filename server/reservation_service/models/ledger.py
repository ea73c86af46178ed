"""Split-payment ledger entry model."""

from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING
from uuid import UUID, uuid4

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Integer, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ..core.database import Base, utcnow

if TYPE_CHECKING:
    from .reservation import Reservation


class EntryStatus(str, Enum):
    """Ledger entry settlement status."""
    PENDING = "pending"
    PAID = "paid"


class PaymentMethod(str, Enum):
    """How a participant paid."""
    CARD = "card"
    CASH = "cash"
    TRANSFER = "transfer"


class EntryKind(str, Enum):
    """Money in (payment) or money out (refund)."""
    PAYMENT = "payment"
    REFUND = "refund"


class PaymentLedgerEntry(Base):
    """One participant's contribution toward a reservation total."""

    __tablename__ = "payment_ledger_entries"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    reservation_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("reservations.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    participant: Mapped[str] = mapped_column(String(255), nullable=False)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[EntryStatus] = mapped_column(String(20), nullable=False, default=EntryStatus.PENDING.value)
    method: Mapped[PaymentMethod] = mapped_column(String(20), nullable=False)
    kind: Mapped[EntryKind] = mapped_column(String(20), nullable=False, default=EntryKind.PAYMENT.value)
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    gateway_reference: Mapped[str | None] = mapped_column(String(255), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow
    )

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_ledger_amount_positive"),
        CheckConstraint("length(participant) > 0", name="ck_ledger_participant_not_empty"),
    )

    reservation: Mapped["Reservation"] = relationship("Reservation", back_populates="ledger_entries")

    def __repr__(self) -> str:
        return (
            f"<PaymentLedgerEntry(id={self.id}, reservation_id={self.reservation_id}, "
            f"participant='{self.participant}', amount={self.amount}, status={self.status}, kind={self.kind})>"
        )
