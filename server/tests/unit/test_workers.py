"""Unit tests for background workers and their services."""

from datetime import timedelta

import pytest

from reservation_service.core.database import utcnow
from reservation_service.models import IdempotencyRecord
from reservation_service.services.idempotency_service import IdempotencyService
from reservation_service.services.notifications import (
    RESERVATION_CONFIRMED,
    Notification,
    NotificationDispatcher,
    Notifier,
)
from reservation_service.workers.notification_worker import NotificationWorker


class RecordingNotifier(Notifier):
    def __init__(self, fail_for: str | None = None):
        self.sent: list[Notification] = []
        self.fail_for = fail_for

    async def send(self, notification: Notification) -> None:
        if notification.reservation_id == self.fail_for:
            raise RuntimeError("mail server unavailable")
        self.sent.append(notification)


def _notification(reservation_id: str) -> Notification:
    return Notification(kind=RESERVATION_CONFIRMED, reservation_id=reservation_id, recipient="acct-1")


@pytest.mark.asyncio
async def test_notification_worker_drains_queue(dispatcher):
    notifier = RecordingNotifier()
    worker = NotificationWorker(interval_seconds=1, dispatcher=dispatcher, notifier=notifier)
    for n in range(3):
        dispatcher.enqueue(_notification(f"r-{n}"))

    await worker.process()

    assert [n.reservation_id for n in notifier.sent] == ["r-0", "r-1", "r-2"]
    assert dispatcher.queue.empty()


@pytest.mark.asyncio
async def test_failed_delivery_does_not_block_the_rest(dispatcher):
    notifier = RecordingNotifier(fail_for="r-1")
    for n in range(3):
        dispatcher.enqueue(_notification(f"r-{n}"))

    delivered = await dispatcher.drain(notifier)

    assert delivered == 2
    assert [n.reservation_id for n in notifier.sent] == ["r-0", "r-2"]


def test_full_queue_drops_instead_of_blocking():
    dispatcher = NotificationDispatcher(maxsize=1)

    assert dispatcher.enqueue(_notification("r-0")) is True
    assert dispatcher.enqueue(_notification("r-1")) is False
    assert dispatcher.queue.qsize() == 1


@pytest.mark.asyncio
async def test_worker_lifecycle(dispatcher):
    worker = NotificationWorker(interval_seconds=0.01, dispatcher=dispatcher, notifier=RecordingNotifier())

    await worker.start()
    assert worker.running
    await worker.stop()
    assert not worker.running


@pytest.mark.asyncio
async def test_cleanup_removes_only_expired_records(test_session):
    service = IdempotencyService(test_session)
    await service.store_response("fresh", "reservation/record-payment", {"a": 1}, 200, {"ok": True})
    test_session.add(
        IdempotencyRecord(
            idempotency_key="stale",
            method="reservation/record-payment",
            request_body_hash="0" * 64,
            response_status_code=200,
            response_body="{}",
            expires_at=utcnow() - timedelta(hours=1),
        )
    )
    await test_session.commit()

    deleted = await service.cleanup_expired_records()

    assert deleted == 1
    assert await service.check_idempotency("fresh", "reservation/record-payment", {"a": 1}) == (200, {"ok": True})
    assert await service.check_idempotency("stale", "reservation/record-payment", {}) is None
