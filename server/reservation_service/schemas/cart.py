"""Cart-related Pydantic schemas."""

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from .common import Currency
from .reservation import CategoryDetails


class AddCartItemRequest(BaseModel):
    """Request schema for staging an item in the caller's cart."""

    details: CategoryDetails
    service_id: str = Field(..., min_length=1, max_length=128)
    option_id: Optional[str] = Field(None, max_length=128)
    party_size: int = Field(1, ge=1, le=100)
    participants: list[str] = Field(default_factory=list, max_length=100)
    unit_price: int = Field(..., ge=0, description="Price per person in minor units")
    currency: Optional[Currency] = None
    notes: Optional[str] = Field(None, max_length=1000)


class RemoveCartItemRequest(BaseModel):
    item_id: UUID


class CheckoutRequest(BaseModel):
    """Checkout request; the receipt goes to the account unless an email is given."""

    receipt_email: Optional[str] = Field(None, max_length=255, pattern=r"^[^@\s]+@[^@\s]+$")


class CartItem(BaseModel):
    """Cart item response schema."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    position: int
    category: str
    service_id: str
    option_id: Optional[str] = None
    details: dict
    party_size: int
    participants: list[str]
    unit_price: int
    line_price: int
    currency: str
    notes: Optional[str] = None
    created_at: datetime


class Cart(BaseModel):
    """Cart response schema."""

    id: Optional[UUID] = None
    account_id: str
    items: list[CartItem] = Field(default_factory=list)
    total_amount: int = 0
