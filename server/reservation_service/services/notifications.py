"""Best-effort holder notifications.

Requests only enqueue; the notification worker drains the queue. A full
queue drops the message with a warning so a webhook acknowledgement never
waits on, or fails because of, email delivery.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from ..core.config import settings
from ..core.observability import get_logger, metrics_collector

logger = logging.getLogger(__name__)

RESERVATION_CONFIRMED = "reservation_confirmed"
RESERVATION_CANCELED = "reservation_canceled"


@dataclass(frozen=True)
class Notification:
    kind: str
    reservation_id: str
    recipient: str
    payload: dict[str, Any] = field(default_factory=dict)


class Notifier(ABC):
    """Delivery channel for holder notifications."""

    @abstractmethod
    async def send(self, notification: Notification) -> None:
        """Deliver one notification."""


class LoggingNotifier(Notifier):
    """Writes notifications to the structured log; email delivery lives elsewhere."""

    def __init__(self):
        self.log = get_logger("notifications")

    async def send(self, notification: Notification) -> None:
        self.log.info(
            "holder_notification",
            kind=notification.kind,
            reservation_id=notification.reservation_id,
            recipient=notification.recipient,
            **notification.payload,
        )


class NotificationDispatcher:
    """In-process queue between request handlers and the notification worker."""

    def __init__(self, maxsize: int = 1000):
        self.queue: asyncio.Queue[Notification] = asyncio.Queue(maxsize=maxsize)

    def enqueue(self, notification: Notification) -> bool:
        """Queue a notification without blocking; returns False when it was dropped."""
        try:
            self.queue.put_nowait(notification)
        except asyncio.QueueFull:
            logger.warning(
                "Notification queue full, dropping notification",
                extra={"kind": notification.kind, "reservation_id": notification.reservation_id}
            )
            return False
        metrics_collector.set_notification_queue_depth(self.queue.qsize())
        return True

    async def drain(self, notifier: Notifier, limit: int = 100) -> int:
        """Deliver up to ``limit`` queued notifications; delivery errors are logged."""
        delivered = 0
        while delivered < limit and not self.queue.empty():
            notification = self.queue.get_nowait()
            try:
                await notifier.send(notification)
                delivered += 1
            except Exception as e:
                logger.error(
                    "Notification delivery failed",
                    exc_info=True,
                    extra={
                        "kind": notification.kind,
                        "reservation_id": notification.reservation_id,
                        "error": str(e),
                    }
                )
            finally:
                self.queue.task_done()
        metrics_collector.set_notification_queue_depth(self.queue.qsize())
        return delivered


# Global dispatcher shared by request handlers and the worker
notification_dispatcher = NotificationDispatcher(maxsize=settings.notification_queue_size)
