"""Models module exporting all database models."""

from .cart import Cart, CartItem
from .failure import MaterializationFailure
from .idempotency import IdempotencyRecord
from .ledger import EntryKind, EntryStatus, PaymentLedgerEntry, PaymentMethod
from .reservation import (
    RefundStatus,
    Reservation,
    ReservationCancellation,
    ReservationCategory,
    ReservationStatus,
)

__all__ = [
    # Reservation entities
    "Reservation",
    "ReservationStatus",
    "ReservationCategory",
    "ReservationCancellation",
    "RefundStatus",

    # Split-payment ledger
    "PaymentLedgerEntry",
    "EntryStatus",
    "EntryKind",
    "PaymentMethod",

    # Cart staging
    "Cart",
    "CartItem",

    # Operator failure log
    "MaterializationFailure",

    # Idempotency entity
    "IdempotencyRecord",
]
