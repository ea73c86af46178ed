"""Unit tests for payment-to-reservation materialization."""

from datetime import date

import pytest
from sqlalchemy import func, select

from reservation_service.core.exceptions import MalformedIntent, PaymentAmountMismatch
from reservation_service.models import MaterializationFailure, Reservation, ReservationStatus
from reservation_service.schemas.reservation import ExcursionDetails, Holder, PendingIntent
from reservation_service.services.intent_codec import IntentCodec
from reservation_service.services.materializer import ReservationMaterializer, support_message
from reservation_service.services.notifications import RESERVATION_CONFIRMED
from reservation_service.services.webhook_verifier import PAYMENT_FAILED, PAYMENT_SUCCEEDED, PaymentEvent


def _intent() -> PendingIntent:
    return PendingIntent(
        details=ExcursionDetails(date=date(2026, 12, 15), time="09:00"),
        service_id="glacier-hike",
        party_size=3,
        participants=("alex", "sam", "kai"),
        holder=Holder(account_id="acct-1"),
        total_amount=15000,
        currency="usd",
    )


def _event(amount=15000, metadata=None, event_type=PAYMENT_SUCCEEDED, event_id="evt_1", reference="pi_150"):
    return PaymentEvent(
        id=event_id,
        type=event_type,
        reference=reference,
        amount=amount,
        currency="usd",
        status="succeeded",
        metadata=IntentCodec().encode(_intent()) if metadata is None else metadata,
    )


async def _count(session, model) -> int:
    result = await session.execute(select(func.count()).select_from(model))
    return result.scalar()


@pytest.mark.asyncio
async def test_successful_payment_creates_confirmed_reservation(test_session, dispatcher):
    """Three people at 50.00 each, paid by card in full."""
    materializer = ReservationMaterializer(test_session, notifications=dispatcher)

    reservation, created = await materializer.materialize(_event())

    assert created is True
    assert reservation.status == ReservationStatus.CONFIRMED
    assert reservation.payment_reference == "pi_150"
    assert reservation.gateway_payment_id == "pi_150"
    assert reservation.party_size == 3
    assert reservation.multi_participant is True
    assert reservation.total_amount == 15000
    assert reservation.amount_paid == 15000
    assert reservation.remaining_balance == 0
    assert len(reservation.ledger_entries) == 1
    assert reservation.ledger_entries[0].method == "card"

    notification = dispatcher.queue.get_nowait()
    assert notification.kind == RESERVATION_CONFIRMED
    assert notification.reservation_id == str(reservation.id)


@pytest.mark.asyncio
async def test_redelivery_returns_the_same_reservation(test_session, dispatcher):
    materializer = ReservationMaterializer(test_session, notifications=dispatcher)

    first, first_created = await materializer.materialize(_event(event_id="evt_1"))
    second, second_created = await materializer.materialize(_event(event_id="evt_2"))

    assert first_created is True
    assert second_created is False
    assert second.id == first.id
    assert await _count(test_session, Reservation) == 1
    # Only the first delivery notifies the holder
    assert dispatcher.queue.qsize() == 1


@pytest.mark.asyncio
async def test_non_success_event_is_ignored(test_session, dispatcher):
    materializer = ReservationMaterializer(test_session, notifications=dispatcher)

    assert await materializer.materialize(_event(event_type=PAYMENT_FAILED)) is None
    assert await _count(test_session, Reservation) == 0


@pytest.mark.asyncio
async def test_amount_mismatch_is_logged_and_nothing_is_created(test_session, dispatcher):
    materializer = ReservationMaterializer(test_session, notifications=dispatcher)

    with pytest.raises(PaymentAmountMismatch):
        await materializer.materialize(_event(amount=14000))

    assert await _count(test_session, Reservation) == 0
    failures = (await test_session.execute(select(MaterializationFailure))).scalars().all()
    assert len(failures) == 1
    assert failures[0].payment_reference == "pi_150"
    assert failures[0].error_code == "PAYMENT_AMOUNT_MISMATCH"
    assert failures[0].resolved is False
    assert dispatcher.queue.empty()


@pytest.mark.asyncio
async def test_malformed_metadata_is_logged(test_session, dispatcher):
    materializer = ReservationMaterializer(test_session, notifications=dispatcher)

    with pytest.raises(MalformedIntent):
        await materializer.materialize(_event(metadata={"intent": "{truncated"}))

    assert await _count(test_session, Reservation) == 0
    assert await materializer.failure_log.has_open_failure("pi_150")


@pytest.mark.asyncio
async def test_redelivered_malformed_event_is_logged_once(test_session, dispatcher):
    materializer = ReservationMaterializer(test_session, notifications=dispatcher)

    for _ in range(3):
        with pytest.raises(MalformedIntent):
            await materializer.materialize(_event(metadata={"intent": "{truncated"}, event_id="evt_broken"))

    failures = (await test_session.execute(select(MaterializationFailure))).scalars().all()
    assert len(failures) == 1
    assert failures[0].event_id == "evt_broken"
    assert failures[0].error_code == "MALFORMED_INTENT"


@pytest.mark.asyncio
async def test_repeat_failure_after_resolution_is_logged_again(test_session, dispatcher):
    materializer = ReservationMaterializer(test_session, notifications=dispatcher)
    event = _event(metadata={"intent": "{truncated"}, event_id="evt_broken")

    with pytest.raises(MalformedIntent):
        await materializer.materialize(event)
    first = (await test_session.execute(select(MaterializationFailure))).scalars().one()
    await materializer.failure_log.resolve(first.id, resolved_by="ops-1")

    with pytest.raises(MalformedIntent):
        await materializer.materialize(event)

    failures = (await test_session.execute(select(MaterializationFailure))).scalars().all()
    assert len(failures) == 2
    assert await materializer.failure_log.has_open_failure("pi_150")


def test_support_message_names_the_reference():
    assert support_message("pi_150") == (
        "Payment succeeded but reservation failed, contact support with reference pi_150"
    )
