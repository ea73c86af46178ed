"""Reservation-related Pydantic schemas.

Category details form a discriminated union on ``category``: each variant
carries only the fields that are legal for that kind of service, so a lodging
reservation without a date range or an excursion without a time cannot be
constructed at all.
"""

import datetime as dt
from typing import Annotated, Literal, Optional, Union
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator

from ..models.ledger import EntryKind, EntryStatus, PaymentMethod
from ..models.reservation import RefundStatus, ReservationCategory, ReservationStatus
from .common import Currency

TIME_PATTERN = r"^([01]\d|2[0-3]):[0-5]\d$"


class _Details(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)


class ExcursionDetails(_Details):
    """Guided activity on one date at one time."""

    category: Literal["excursion"] = "excursion"
    date: dt.date
    time: str = Field(..., pattern=TIME_PATTERN)
    time_slot: Optional[str] = Field(None, max_length=64)

    @property
    def service_date(self) -> dt.date:
        return self.date


class LodgingDetails(_Details):
    """Stay covering a date range."""

    category: Literal["lodging"] = "lodging"
    start_date: dt.date
    end_date: dt.date
    room_id: Optional[str] = Field(None, max_length=128)

    @model_validator(mode="after")
    def check_range(self) -> "LodgingDetails":
        if self.end_date <= self.start_date:
            raise ValueError("end_date must be after start_date")
        return self

    @property
    def service_date(self) -> dt.date:
        return self.end_date


class DiningDetails(_Details):
    """Restaurant table on one date at one time."""

    category: Literal["dining"] = "dining"
    date: dt.date
    time: str = Field(..., pattern=TIME_PATTERN)
    time_slot: Optional[str] = Field(None, max_length=64)

    @property
    def service_date(self) -> dt.date:
        return self.date


class TransportDetails(_Details):
    """Transfer between two locations."""

    category: Literal["transport"] = "transport"
    date: dt.date
    time: str = Field(..., pattern=TIME_PATTERN)
    pickup_location: str = Field(..., min_length=1, max_length=255)
    dropoff_location: str = Field(..., min_length=1, max_length=255)

    @property
    def service_date(self) -> dt.date:
        return self.date


class SpaDetails(_Details):
    """Spa treatment on one date at one time."""

    category: Literal["spa"] = "spa"
    date: dt.date
    time: str = Field(..., pattern=TIME_PATTERN)
    treatment_name: str = Field(..., min_length=1, max_length=255)
    time_slot: Optional[str] = Field(None, max_length=64)

    @property
    def service_date(self) -> dt.date:
        return self.date


CategoryDetails = Annotated[
    Union[ExcursionDetails, LodgingDetails, DiningDetails, TransportDetails, SpaDetails],
    Field(discriminator="category"),
]


class Holder(BaseModel):
    """Registered account or guest; at least one identity is required."""

    model_config = ConfigDict(frozen=True)

    account_id: Optional[str] = Field(None, min_length=1, max_length=128)
    guest_name: Optional[str] = Field(None, max_length=255)
    guest_email: Optional[str] = Field(None, max_length=255, pattern=r"^[^@\s]+@[^@\s]+$")

    @model_validator(mode="after")
    def check_identity(self) -> "Holder":
        if not self.account_id and not self.guest_email:
            raise ValueError("either account_id or guest_email is required")
        return self


class PendingIntent(BaseModel):
    """A reservation-to-be that travels inside a payment authorization."""

    model_config = ConfigDict(frozen=True)

    details: CategoryDetails
    service_id: str = Field(..., min_length=1, max_length=128)
    option_id: Optional[str] = Field(None, max_length=128)
    party_size: int = Field(..., ge=1, le=100)
    participants: tuple[str, ...] = ()
    holder: Holder
    total_amount: int = Field(..., ge=0)
    currency: Currency
    cart_id: Optional[str] = None
    cart_item_id: Optional[str] = None
    item_index: Optional[int] = Field(None, ge=0)

    @property
    def category(self) -> ReservationCategory:
        return ReservationCategory(self.details.category)


class LedgerEntry(BaseModel):
    """Ledger entry response schema."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    participant: str
    amount: int
    status: EntryStatus
    method: PaymentMethod
    kind: EntryKind
    paid_at: Optional[dt.datetime] = None
    gateway_reference: Optional[str] = None
    created_at: dt.datetime


class PaymentSummary(BaseModel):
    """Derived payment state of a reservation."""

    total_amount: int
    amount_paid: int
    remaining_balance: int
    currency: str
    entries: list[LedgerEntry]


class Cancellation(BaseModel):
    """Cancellation record response schema."""

    model_config = ConfigDict(from_attributes=True)

    canceled_by: str
    canceled_at: dt.datetime
    refund_amount: int
    refund_status: RefundStatus
    refund_reference: Optional[str] = None
    reason: Optional[str] = None


class Feedback(BaseModel):
    rating: int
    comment: Optional[str] = None
    submitted_at: Optional[dt.datetime] = None


class Reservation(BaseModel):
    """Reservation response schema."""

    id: UUID
    payment_reference: Optional[str] = None
    category: ReservationCategory
    details: CategoryDetails
    service_id: str
    option_id: Optional[str] = None
    party_size: int
    multi_participant: bool
    participants: list[str]
    holder: Holder
    status: ReservationStatus
    payment: PaymentSummary
    cancellation: Optional[Cancellation] = None
    feedback: Optional[Feedback] = None
    created_at: dt.datetime

    @classmethod
    def from_model(cls, reservation) -> "Reservation":
        """Build the response schema from a Reservation row."""
        feedback = None
        if reservation.feedback_rating is not None:
            feedback = Feedback(
                rating=reservation.feedback_rating,
                comment=reservation.feedback_comment,
                submitted_at=reservation.feedback_submitted_at,
            )
        return cls(
            id=reservation.id,
            payment_reference=reservation.payment_reference,
            category=reservation.category,
            details=reservation.details,
            service_id=reservation.service_id,
            option_id=reservation.option_id,
            party_size=reservation.party_size,
            multi_participant=reservation.multi_participant,
            participants=list(reservation.participants or []),
            holder=Holder(
                account_id=reservation.account_id,
                guest_name=reservation.guest_name,
                guest_email=reservation.guest_email,
            ),
            status=reservation.status,
            payment=PaymentSummary(
                total_amount=reservation.total_amount,
                amount_paid=reservation.amount_paid,
                remaining_balance=reservation.remaining_balance,
                currency=reservation.currency,
                entries=[LedgerEntry.model_validate(e) for e in reservation.ledger_entries],
            ),
            cancellation=(
                Cancellation.model_validate(reservation.cancellation)
                if reservation.cancellation is not None else None
            ),
            feedback=feedback,
            created_at=reservation.created_at,
        )


class CreateReservationRequest(BaseModel):
    """Plain (not payment-gated) reservation, e.g. cash on arrival."""

    details: CategoryDetails
    service_id: str = Field(..., min_length=1, max_length=128)
    option_id: Optional[str] = Field(None, max_length=128)
    party_size: int = Field(1, ge=1, le=100)
    participants: list[str] = Field(default_factory=list, max_length=100)
    unit_amount: int = Field(..., ge=0, description="Price per person in minor units")
    currency: Optional[Currency] = None


class GetReservationRequest(BaseModel):
    reservation_id: UUID


class ListReservationsRequest(BaseModel):
    status: Optional[ReservationStatus] = None
    limit: int = Field(50, ge=1, le=100)


class ReservationList(BaseModel):
    reservations: list[Reservation]


class CancelReservationRequest(BaseModel):
    """Cancel request; an explicit refund amount is for administrative actors."""

    reservation_id: UUID
    reason: Optional[str] = Field(None, max_length=500)
    refund_amount: Optional[int] = Field(None, ge=0)


class RecordPaymentRequest(BaseModel):
    reservation_id: UUID
    participant: str = Field(..., min_length=1, max_length=255)
    amount: int = Field(..., gt=0)
    method: PaymentMethod
    status: EntryStatus = EntryStatus.PAID


class UpdatePaymentStatusRequest(BaseModel):
    reservation_id: UUID
    entry_id: UUID
    status: EntryStatus


class AddFeedbackRequest(BaseModel):
    reservation_id: UUID
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = Field(None, max_length=2000)
