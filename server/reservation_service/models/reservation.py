"""Reservation and cancellation model definitions."""

from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any
from uuid import UUID, uuid4

from sqlalchemy import JSON, Boolean, CheckConstraint, DateTime, ForeignKey, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ..core.database import Base, utcnow

if TYPE_CHECKING:
    from .ledger import PaymentLedgerEntry


class ReservationStatus(str, Enum):
    """Reservation lifecycle status."""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELED = "canceled"


class ReservationCategory(str, Enum):
    """Service categories that can be reserved."""
    EXCURSION = "excursion"
    LODGING = "lodging"
    DINING = "dining"
    TRANSPORT = "transport"
    SPA = "spa"


class RefundStatus(str, Enum):
    """Refund settlement status on a cancellation."""
    PENDING = "pending"
    PROCESSED = "processed"


# Allowed status transitions; canceled is terminal
ALLOWED_TRANSITIONS = {
    ReservationStatus.PENDING: {ReservationStatus.CONFIRMED, ReservationStatus.CANCELED},
    ReservationStatus.CONFIRMED: {ReservationStatus.CANCELED},
    ReservationStatus.CANCELED: set(),
}


class Reservation(Base):
    """A booked service together with its payment and cancellation state."""

    __tablename__ = "reservations"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    # Unique when present; the database arbitrates concurrent materializations
    payment_reference: Mapped[str | None] = mapped_column(String(255), nullable=True, unique=True)
    gateway_payment_id: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)

    # Holder
    account_id: Mapped[str | None] = mapped_column(String(128), nullable=True, index=True)
    guest_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    guest_email: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # What was reserved
    category: Mapped[ReservationCategory] = mapped_column(String(20), nullable=False, index=True)
    service_id: Mapped[str] = mapped_column(String(128), nullable=False)
    option_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    details: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    party_size: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    multi_participant: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    participants: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)

    status: Mapped[ReservationStatus] = mapped_column(
        String(20),
        nullable=False,
        default=ReservationStatus.PENDING.value,
        index=True
    )

    # Payment summary in minor units; amount_paid and remaining_balance are derived
    total_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    amount_paid: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    remaining_balance: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)

    # Feedback
    feedback_rating: Mapped[int | None] = mapped_column(Integer, nullable=True)
    feedback_comment: Mapped[str | None] = mapped_column(Text, nullable=True)
    feedback_submitted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow
    )

    __table_args__ = (
        CheckConstraint("party_size > 0", name="ck_reservation_party_size_positive"),
        CheckConstraint("total_amount >= 0", name="ck_reservation_total_non_negative"),
        CheckConstraint("amount_paid >= 0", name="ck_reservation_paid_non_negative"),
        CheckConstraint("amount_paid <= total_amount", name="ck_reservation_paid_within_total"),
        CheckConstraint(
            "remaining_balance = total_amount - amount_paid",
            name="ck_reservation_remaining_balance"
        ),
        CheckConstraint(
            "account_id IS NOT NULL OR guest_email IS NOT NULL",
            name="ck_reservation_holder_present"
        ),
        CheckConstraint(
            "feedback_rating IS NULL OR (feedback_rating >= 1 AND feedback_rating <= 5)",
            name="ck_reservation_feedback_rating"
        ),
    )

    ledger_entries: Mapped[list["PaymentLedgerEntry"]] = relationship(
        "PaymentLedgerEntry",
        back_populates="reservation",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="PaymentLedgerEntry.created_at",
    )
    cancellation: Mapped["ReservationCancellation | None"] = relationship(
        "ReservationCancellation",
        back_populates="reservation",
        cascade="all, delete-orphan",
        uselist=False,
        lazy="selectin",
    )

    def recompute_payment_summary(self) -> None:
        """Re-derive amount_paid and remaining_balance from the full ledger."""
        from .ledger import EntryKind, EntryStatus

        paid = 0
        for entry in self.ledger_entries:
            if entry.status != EntryStatus.PAID:
                continue
            if entry.kind == EntryKind.REFUND:
                paid -= entry.amount
            else:
                paid += entry.amount
        self.amount_paid = paid
        self.remaining_balance = self.total_amount - paid

    def transition_to(self, new_status: ReservationStatus) -> None:
        """Move to a new status, refusing transitions out of canceled."""
        current = ReservationStatus(self.status)
        if new_status == current:
            return
        if new_status not in ALLOWED_TRANSITIONS[current]:
            raise ValueError(f"Illegal reservation transition {current.value} -> {new_status.value}")
        self.status = new_status.value

    @property
    def holder_label(self) -> str:
        return self.account_id or self.guest_email or "unknown"

    def __repr__(self) -> str:
        return (
            f"<Reservation(id={self.id}, category={self.category}, status={self.status}, "
            f"total={self.total_amount}, paid={self.amount_paid}, reference={self.payment_reference})>"
        )


class ReservationCancellation(Base):
    """Cancellation record; exists only for canceled reservations."""

    __tablename__ = "reservation_cancellations"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    reservation_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("reservations.id", ondelete="CASCADE"),
        nullable=False,
        unique=True
    )
    canceled_by: Mapped[str] = mapped_column(String(128), nullable=False)
    canceled_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    refund_amount: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    refund_status: Mapped[RefundStatus] = mapped_column(String(20), nullable=False, default=RefundStatus.PENDING.value)
    refund_reference: Mapped[str | None] = mapped_column(String(255), nullable=True)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        CheckConstraint("refund_amount >= 0", name="ck_cancellation_refund_non_negative"),
    )

    reservation: Mapped["Reservation"] = relationship("Reservation", back_populates="cancellation")

    def __repr__(self) -> str:
        return (
            f"<ReservationCancellation(reservation_id={self.reservation_id}, "
            f"refund={self.refund_amount}, refund_status={self.refund_status})>"
        )
