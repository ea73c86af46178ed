"""Concurrency tests for duplicate webhook deliveries."""

from datetime import date

import pytest
from sqlalchemy import func, select

from reservation_service.models import PaymentLedgerEntry, Reservation
from reservation_service.schemas.reservation import ExcursionDetails, Holder, PendingIntent
from reservation_service.services.intent_codec import IntentCodec
from reservation_service.services.materializer import ReservationMaterializer
from reservation_service.services.webhook_verifier import PAYMENT_SUCCEEDED, PaymentEvent


def _event(event_id: str) -> PaymentEvent:
    intent = PendingIntent(
        details=ExcursionDetails(date=date(2026, 12, 15), time="09:00"),
        service_id="glacier-hike",
        party_size=2,
        holder=Holder(account_id="acct-1"),
        total_amount=10000,
        currency="usd",
    )
    return PaymentEvent(
        id=event_id,
        type=PAYMENT_SUCCEEDED,
        reference="pi_race",
        amount=10000,
        currency="usd",
        metadata=IntentCodec().encode(intent),
    )


@pytest.mark.asyncio
async def test_losing_delivery_returns_the_winner(test_session, dispatcher, monkeypatch):
    """
    A delivery that passed the existence check but lost the insert race.

    The unique payment reference rejects the second insert; the loser must
    return the winner's reservation instead of failing or creating another.
    """
    winner = ReservationMaterializer(test_session, notifications=dispatcher)
    first, first_created = await winner.materialize(_event("evt_1"))

    loser = ReservationMaterializer(test_session, notifications=dispatcher)
    real_lookup = loser.get_by_reference
    lookups = []

    async def stale_lookup(payment_reference):
        lookups.append(payment_reference)
        # The first check runs before the winner's commit became visible
        if len(lookups) == 1:
            return None
        return await real_lookup(payment_reference)

    monkeypatch.setattr(loser, "get_by_reference", stale_lookup)

    second, second_created = await loser.materialize(_event("evt_2"))

    assert first_created is True
    assert second_created is False
    assert second.id == first.id
    assert lookups == ["pi_race", "pi_race"]

    reservations = await test_session.execute(select(func.count()).select_from(Reservation))
    assert reservations.scalar() == 1
    entries = await test_session.execute(select(func.count()).select_from(PaymentLedgerEntry))
    assert entries.scalar() == 1
    # Only the winner notifies the holder
    assert dispatcher.queue.qsize() == 1


@pytest.mark.asyncio
async def test_sequential_redeliveries_are_idempotent(test_session, dispatcher):
    materializer = ReservationMaterializer(test_session, notifications=dispatcher)

    results = [await materializer.materialize(_event(f"evt_{n}")) for n in range(5)]

    assert len({reservation.id for reservation, _ in results}) == 1
    assert [created for _, created in results] == [True, False, False, False, False]
