"""Unit tests for the split-payment ledger."""

import pytest
import pytest_asyncio

from reservation_service.core.exceptions import AlreadyCanceled, NotFoundError, OverpaymentError
from reservation_service.core.security import Actor
from reservation_service.models import EntryStatus, PaymentMethod, ReservationStatus
from reservation_service.schemas.reservation import CreateReservationRequest, Holder
from reservation_service.services.cancellation_service import CancellationService
from reservation_service.services.ledger_service import LedgerService
from reservation_service.services.reservation_service import ReservationService


@pytest_asyncio.fixture
async def pending_reservation(test_session, excursion_details):
    """Three participants sharing a 300.00 excursion."""
    return await ReservationService(test_session).create_reservation(
        CreateReservationRequest(
            details=excursion_details,
            service_id="glacier-hike",
            party_size=3,
            participants=["ana", "ben", "cy"],
            unit_amount=10000,
        ),
        Holder(account_id="acct-1"),
    )


@pytest.mark.asyncio
async def test_new_reservation_owes_the_full_total(pending_reservation):
    assert pending_reservation.status == ReservationStatus.PENDING
    assert pending_reservation.total_amount == 30000
    assert pending_reservation.amount_paid == 0
    assert pending_reservation.remaining_balance == 30000


@pytest.mark.asyncio
async def test_split_payment_confirms_when_settled(test_session, pending_reservation):
    ledger = LedgerService(test_session)

    reservation, entry_a = await ledger.record_payment(
        pending_reservation.id, "ana", 10000, PaymentMethod.CASH, EntryStatus.PENDING
    )
    assert reservation.amount_paid == 0
    assert reservation.status == ReservationStatus.PENDING

    reservation, _ = await ledger.record_payment(pending_reservation.id, "ben", 20000, PaymentMethod.CARD)
    assert reservation.amount_paid == 20000
    assert reservation.remaining_balance == 10000
    assert reservation.status == ReservationStatus.PENDING

    reservation, entry_a = await ledger.update_entry_status(pending_reservation.id, entry_a.id, EntryStatus.PAID)
    assert entry_a.paid_at is not None
    assert reservation.amount_paid == 30000
    assert reservation.remaining_balance == 0
    assert reservation.status == ReservationStatus.CONFIRMED


@pytest.mark.asyncio
async def test_overpayment_is_rejected(test_session, pending_reservation):
    ledger = LedgerService(test_session)
    await ledger.record_payment(pending_reservation.id, "ana", 25000, PaymentMethod.TRANSFER)

    with pytest.raises(OverpaymentError) as exc_info:
        await ledger.record_payment(pending_reservation.id, "ben", 5001, PaymentMethod.CASH)

    assert exc_info.value.code == "OVERPAYMENT"
    reservation = await ReservationService(test_session).get_reservation(pending_reservation.id)
    assert reservation.amount_paid == 25000
    assert len(reservation.ledger_entries) == 1


@pytest.mark.asyncio
async def test_pending_pledges_count_toward_the_total(test_session, pending_reservation):
    ledger = LedgerService(test_session)
    await ledger.record_payment(pending_reservation.id, "ana", 20000, PaymentMethod.CASH, EntryStatus.PENDING)

    with pytest.raises(OverpaymentError):
        await ledger.record_payment(pending_reservation.id, "ben", 15000, PaymentMethod.CARD)


@pytest.mark.asyncio
async def test_unknown_entry(test_session, pending_reservation):
    from uuid import uuid4

    with pytest.raises(NotFoundError):
        await LedgerService(test_session).update_entry_status(pending_reservation.id, uuid4(), EntryStatus.PAID)


@pytest.mark.asyncio
async def test_canceled_reservation_accepts_no_payments(test_session, fake_gateway, dispatcher, pending_reservation):
    await CancellationService(test_session, fake_gateway, notifications=dispatcher).cancel(
        pending_reservation.id, Actor(account_id="acct-1")
    )

    with pytest.raises(AlreadyCanceled):
        await LedgerService(test_session).record_payment(pending_reservation.id, "ana", 100, PaymentMethod.CASH)

