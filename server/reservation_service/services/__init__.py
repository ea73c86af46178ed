"""Service layer package."""

from .authorization_service import AuthorizationService
from .cancellation_service import CancellationService
from .cart_checkout import CartCheckoutOrchestrator
from .cart_service import CartService
from .failure_log import FailureLogService
from .idempotency_service import IdempotencyService
from .intent_codec import IntentCodec
from .ledger_service import LedgerService
from .materializer import ReservationMaterializer
from .reservation_service import ReservationService
from .webhook_verifier import WebhookVerifier

__all__ = [
    "AuthorizationService",
    "CancellationService",
    "CartCheckoutOrchestrator",
    "CartService",
    "FailureLogService",
    "IdempotencyService",
    "IntentCodec",
    "LedgerService",
    "ReservationMaterializer",
    "ReservationService",
    "WebhookVerifier",
]
