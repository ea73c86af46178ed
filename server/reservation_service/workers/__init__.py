"""Background workers for the reservation service."""

from .idempotency_cleanup_worker import IdempotencyCleanupWorker
from .notification_worker import NotificationWorker

__all__ = ["IdempotencyCleanupWorker", "NotificationWorker"]
