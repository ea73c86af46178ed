"""Background worker for delivering reservation notifications."""

import logging
from typing import Optional

from ..services.notifications import (
    LoggingNotifier,
    NotificationDispatcher,
    Notifier,
    notification_dispatcher,
)
from .base import BaseWorker

logger = logging.getLogger(__name__)


class NotificationWorker(BaseWorker):
    """
    Background worker that drains the notification queue.

    Confirmation and cancellation notices are queued by request handlers and
    delivered here, so a slow or failing notifier never holds up a webhook.
    """

    def __init__(
        self,
        interval_seconds: float = 5,
        dispatcher: Optional[NotificationDispatcher] = None,
        notifier: Optional[Notifier] = None,
        batch_size: int = 100,
    ):
        super().__init__(name="Notification", interval_seconds=interval_seconds)
        self.dispatcher = dispatcher or notification_dispatcher
        self.notifier = notifier or LoggingNotifier()
        self.batch_size = batch_size

    async def process(self) -> None:
        delivered = await self.dispatcher.drain(self.notifier, limit=self.batch_size)
        if delivered > 0:
            logger.info(
                f"Delivered {delivered} notifications",
                extra={"delivered": delivered, "worker": self.name}
            )
