"""FastAPI routers package."""

from .cart import router as cart_router
from .metrics import router as metrics_router
from .operations import router as operations_router
from .payments import router as payments_router
from .reservations import router as reservations_router
from .webhooks import router as webhooks_router

__all__ = [
    "cart_router",
    "metrics_router",
    "operations_router",
    "payments_router",
    "reservations_router",
    "webhooks_router",
]
