"""Payment authorization and webhook schemas."""

from typing import Literal, Optional

from pydantic import BaseModel, Field

from .common import Currency
from .reservation import CategoryDetails


class AuthorizeReservationRequest(BaseModel):
    """Request schema for authorizing a card payment for one reservation."""

    details: CategoryDetails
    service_id: str = Field(..., min_length=1, max_length=128)
    option_id: Optional[str] = Field(None, max_length=128)
    party_size: int = Field(1, ge=1, le=100)
    participants: list[str] = Field(default_factory=list, max_length=100)
    unit_amount: int = Field(..., gt=0, description="Price per person in minor units")
    currency: Optional[Currency] = None
    guest_name: Optional[str] = Field(None, max_length=255, description="Required when not signed in")
    guest_email: Optional[str] = Field(None, max_length=255, description="Required when not signed in")


class AuthorizationResponse(BaseModel):
    """Client-usable handle for a created payment authorization."""

    authorization_id: str = Field(..., description="Gateway payment identifier")
    client_secret: Optional[str] = Field(None, description="Secret the client confirms the payment with")
    amount: int = Field(..., description="Authorized amount in minor units")
    currency: str
    metadata_slots: list[str] = Field(..., description="Metadata keys the intent was encoded into")


class PaymentStatusRequest(BaseModel):
    authorization_id: str = Field(..., min_length=1, max_length=255)


class PaymentStatusResponse(BaseModel):
    """Gateway status joined with what has been materialized locally."""

    authorization_id: str
    gateway_status: str
    amount: int
    currency: str
    reservation_ids: list[str] = Field(default_factory=list)
    message: Optional[str] = None


class WebhookAck(BaseModel):
    """Acknowledgement returned to the gateway for every verified event."""

    received: bool = True
    status: Literal["processed", "duplicate", "failed", "ignored"]
    reservation_ids: list[str] = Field(default_factory=list)
    message: Optional[str] = None
