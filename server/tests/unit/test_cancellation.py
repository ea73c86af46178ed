"""Unit tests for cancellation and refunds."""

from datetime import date

import pytest
import pytest_asyncio
from sqlalchemy import select

from reservation_service.core.exceptions import (
    AlreadyCanceled,
    AuthorizationError,
    RefundAmountExceedsPaid,
    RefundGatewayError,
    RefundOutcomeUnknown,
)
from reservation_service.core.security import Actor
from reservation_service.models import MaterializationFailure, PaymentMethod, ReservationStatus
from reservation_service.schemas.reservation import CreateReservationRequest, ExcursionDetails, Holder, PendingIntent
from reservation_service.services.cancellation_service import CancellationService
from reservation_service.services.intent_codec import IntentCodec
from reservation_service.services.ledger_service import LedgerService
from reservation_service.services.materializer import ReservationMaterializer
from reservation_service.services.notifications import RESERVATION_CANCELED
from reservation_service.services.reservation_service import ReservationService
from reservation_service.services.webhook_verifier import PAYMENT_SUCCEEDED, PaymentEvent

HOLDER = Actor(account_id="acct-1")
ADMIN = Actor(account_id="ops-1", roles=("admin",))


@pytest_asyncio.fixture
async def card_reservation(test_session, dispatcher):
    """Reservation paid 150.00 by card through the gateway."""
    intent = PendingIntent(
        details=ExcursionDetails(date=date(2026, 12, 15), time="09:00"),
        service_id="glacier-hike",
        party_size=3,
        holder=Holder(account_id="acct-1"),
        total_amount=15000,
        currency="usd",
    )
    event = PaymentEvent(
        id="evt_1",
        type=PAYMENT_SUCCEEDED,
        reference="pi_card",
        amount=15000,
        currency="usd",
        metadata=IntentCodec().encode(intent),
    )
    reservation, _ = await ReservationMaterializer(test_session, notifications=dispatcher).materialize(event)
    dispatcher.queue.get_nowait()
    return reservation


def _service(session, gateway, dispatcher, policy=None):
    return CancellationService(session, gateway, refund_policy=policy, notifications=dispatcher)


@pytest.mark.asyncio
async def test_failed_refund_leaves_reservation_untouched(test_session, fake_gateway, dispatcher, card_reservation):
    fake_gateway.refund_error = RefundGatewayError(str(card_reservation.id), "Your card was declined")
    service = _service(test_session, fake_gateway, dispatcher)

    with pytest.raises(RefundGatewayError):
        await service.cancel(card_reservation.id, ADMIN, reason="weather", refund_amount=15000)

    reservation = await ReservationService(test_session).get_reservation(card_reservation.id)
    assert reservation.status == ReservationStatus.CONFIRMED
    assert reservation.cancellation is None
    assert reservation.amount_paid == 15000
    assert len(reservation.ledger_entries) == 1
    assert dispatcher.queue.empty()


@pytest.mark.asyncio
async def test_retry_after_failed_refund_succeeds(test_session, fake_gateway, dispatcher, card_reservation):
    service = _service(test_session, fake_gateway, dispatcher)
    fake_gateway.refund_error = RefundGatewayError(str(card_reservation.id), "Gateway unavailable")
    with pytest.raises(RefundGatewayError):
        await service.cancel(card_reservation.id, ADMIN, refund_amount=15000)

    fake_gateway.refund_error = None
    reservation = await service.cancel(card_reservation.id, ADMIN, reason="weather", refund_amount=15000)

    assert reservation.status == ReservationStatus.CANCELED
    assert reservation.cancellation.refund_amount == 15000
    assert reservation.cancellation.refund_status == "processed"
    assert reservation.cancellation.refund_reference == "re_test_1"
    assert reservation.cancellation.canceled_by == "ops-1"
    assert reservation.amount_paid == 0
    assert [entry.kind for entry in reservation.ledger_entries] == ["payment", "refund"]
    assert len(fake_gateway.refunds) == 1
    assert fake_gateway.refunds[0].payment_id == "pi_card"

    notification = dispatcher.queue.get_nowait()
    assert notification.kind == RESERVATION_CANCELED


@pytest.mark.asyncio
async def test_rejected_refund_is_retried_under_a_new_attempt(
    test_session, fake_gateway, dispatcher, card_reservation
):
    service = _service(test_session, fake_gateway, dispatcher)
    fake_gateway.refund_error = RefundGatewayError(str(card_reservation.id), "Your card was declined")
    for _ in range(2):
        with pytest.raises(RefundGatewayError):
            await service.cancel(card_reservation.id, ADMIN, refund_amount=15000)

    fake_gateway.refund_error = None
    await service.cancel(card_reservation.id, ADMIN, refund_amount=15000)

    assert fake_gateway.refund_attempts == [0, 1, 2]
    failures = (await test_session.execute(select(MaterializationFailure))).scalars().all()
    assert [f.error_code for f in failures] == ["REFUND_GATEWAY_ERROR", "REFUND_GATEWAY_ERROR"]
    # A refund problem is not a missing reservation
    assert not await service.failure_log.has_open_failure("pi_card")


@pytest.mark.asyncio
async def test_unknown_refund_outcome_keeps_the_attempt(test_session, fake_gateway, dispatcher, card_reservation):
    service = _service(test_session, fake_gateway, dispatcher)
    fake_gateway.refund_error = RefundOutcomeUnknown(str(card_reservation.id), "Refund timed out")
    with pytest.raises(RefundOutcomeUnknown):
        await service.cancel(card_reservation.id, ADMIN, refund_amount=15000)

    fake_gateway.refund_error = None
    await service.cancel(card_reservation.id, ADMIN, refund_amount=15000)

    # Same idempotency key, so the gateway cannot refund twice
    assert fake_gateway.refund_attempts == [0, 0]


@pytest.mark.asyncio
async def test_second_cancellation_is_rejected(test_session, fake_gateway, dispatcher, card_reservation):
    service = _service(test_session, fake_gateway, dispatcher, policy="amount_paid")
    await service.cancel(card_reservation.id, HOLDER)

    with pytest.raises(AlreadyCanceled):
        await service.cancel(card_reservation.id, HOLDER)

    assert len(fake_gateway.refunds) == 1


@pytest.mark.asyncio
async def test_amount_paid_policy_refunds_everything(test_session, fake_gateway, dispatcher, card_reservation):
    reservation = await _service(test_session, fake_gateway, dispatcher, policy="amount_paid").cancel(
        card_reservation.id, HOLDER
    )

    assert reservation.cancellation.refund_amount == 15000
    assert fake_gateway.refunds[0].amount == 15000


@pytest.mark.asyncio
async def test_remaining_balance_policy_on_settled_reservation(
    test_session, fake_gateway, dispatcher, card_reservation
):
    reservation = await _service(test_session, fake_gateway, dispatcher, policy="remaining_balance").cancel(
        card_reservation.id, HOLDER
    )

    assert reservation.status == ReservationStatus.CANCELED
    assert reservation.cancellation.refund_amount == 0
    assert fake_gateway.refunds == []


@pytest.mark.asyncio
async def test_refund_cannot_exceed_amount_paid(test_session, fake_gateway, dispatcher, card_reservation):
    with pytest.raises(RefundAmountExceedsPaid):
        await _service(test_session, fake_gateway, dispatcher).cancel(card_reservation.id, ADMIN, refund_amount=20000)

    assert fake_gateway.refunds == []


@pytest.mark.asyncio
async def test_only_holder_or_admin_may_cancel(test_session, fake_gateway, dispatcher, card_reservation):
    service = _service(test_session, fake_gateway, dispatcher)

    with pytest.raises(AuthorizationError):
        await service.cancel(card_reservation.id, Actor(account_id="someone-else"))


@pytest.mark.asyncio
async def test_explicit_refund_amount_requires_admin(test_session, fake_gateway, dispatcher, card_reservation):
    with pytest.raises(AuthorizationError):
        await _service(test_session, fake_gateway, dispatcher).cancel(card_reservation.id, HOLDER, refund_amount=100)


@pytest.mark.asyncio
async def test_unknown_refund_outcome_is_logged_for_operators(
    test_session, fake_gateway, dispatcher, card_reservation
):
    fake_gateway.refund_error = RefundOutcomeUnknown(str(card_reservation.id), "Refund timed out")

    with pytest.raises(RefundOutcomeUnknown):
        await _service(test_session, fake_gateway, dispatcher).cancel(card_reservation.id, ADMIN, refund_amount=5000)

    failures = (await test_session.execute(select(MaterializationFailure))).scalars().all()
    assert [f.error_code for f in failures] == ["REFUND_OUTCOME_UNKNOWN"]
    reservation = await ReservationService(test_session).get_reservation(card_reservation.id)
    assert reservation.status == ReservationStatus.CONFIRMED


@pytest.mark.asyncio
async def test_cash_payment_refund_is_left_pending(test_session, fake_gateway, dispatcher, excursion_details):
    reservation = await ReservationService(test_session).create_reservation(
        CreateReservationRequest(details=excursion_details, service_id="glacier-hike", unit_amount=12000),
        Holder(account_id="acct-1"),
    )
    await LedgerService(test_session).record_payment(reservation.id, "acct-1", 4000, PaymentMethod.CASH)

    canceled = await _service(test_session, fake_gateway, dispatcher).cancel(
        reservation.id, ADMIN, refund_amount=4000
    )

    assert canceled.cancellation.refund_status == "pending"
    assert canceled.cancellation.refund_amount == 4000
    assert canceled.amount_paid == 4000
    assert fake_gateway.refunds == []
