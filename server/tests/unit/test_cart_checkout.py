"""Unit tests for cart staging and all-or-nothing checkout."""

import pytest
from sqlalchemy import select

from reservation_service.core.exceptions import ConflictError, EmptyCartError, MalformedIntent, PaymentAmountMismatch
from reservation_service.models import MaterializationFailure, Reservation, ReservationStatus
from reservation_service.schemas.cart import AddCartItemRequest
from reservation_service.schemas.reservation import Holder
from reservation_service.services.cart_checkout import BATCH_ROLLBACK_REASON, CartCheckoutOrchestrator
from reservation_service.services.cart_service import CartService
from reservation_service.services.webhook_verifier import PAYMENT_SUCCEEDED, PaymentEvent

ACCOUNT = "acct-cart"


def _items(excursion_details, lodging_details):
    return [
        AddCartItemRequest(
            details=excursion_details, service_id="glacier-hike", party_size=2, unit_price=5000,
        ),
        AddCartItemRequest(
            details=lodging_details, service_id="harbour-hotel", party_size=1, unit_price=45000,
        ),
        AddCartItemRequest(
            details={"category": "dining", "date": "2026-12-15", "time": "19:30"},
            service_id="fish-market", party_size=4, unit_price=3500,
        ),
    ]


async def _fill_cart(session, excursion_details, lodging_details):
    cart_service = CartService(session)
    cart = None
    for request in _items(excursion_details, lodging_details):
        cart = await cart_service.add_item(ACCOUNT, request)
    return cart


def _event(metadata, amount, reference="pi_cart"):
    return PaymentEvent(
        id="evt_cart",
        type=PAYMENT_SUCCEEDED,
        reference=reference,
        amount=amount,
        currency="usd",
        status="succeeded",
        metadata=metadata,
    )


async def _reservations(session) -> list[Reservation]:
    result = await session.execute(select(Reservation).execution_options(populate_existing=True))
    return list(result.scalars().all())


@pytest.mark.asyncio
async def test_cart_total_sums_line_prices(test_session, excursion_details, lodging_details):
    cart = await _fill_cart(test_session, excursion_details, lodging_details)

    assert [item.line_price for item in cart.items] == [10000, 45000, 14000]
    assert cart.total_amount == 69000


@pytest.mark.asyncio
async def test_cart_rejects_mixed_currencies(test_session, excursion_details):
    cart_service = CartService(test_session)
    await cart_service.add_item(
        ACCOUNT, AddCartItemRequest(details=excursion_details, service_id="a", unit_price=100, currency="usd")
    )

    with pytest.raises(ConflictError):
        await cart_service.add_item(
            ACCOUNT, AddCartItemRequest(details=excursion_details, service_id="b", unit_price=100, currency="eur")
        )


@pytest.mark.asyncio
async def test_checkout_of_empty_cart(test_session, fake_gateway):
    orchestrator = CartCheckoutOrchestrator(test_session, fake_gateway)

    with pytest.raises(EmptyCartError):
        await orchestrator.prepare_checkout(ACCOUNT, Holder(account_id=ACCOUNT))

    assert fake_gateway.authorizations == {}


@pytest.mark.asyncio
async def test_prepare_checkout_encodes_every_item(test_session, fake_gateway, excursion_details, lodging_details):
    await _fill_cart(test_session, excursion_details, lodging_details)
    orchestrator = CartCheckoutOrchestrator(test_session, fake_gateway)

    authorization, metadata = await orchestrator.prepare_checkout(ACCOUNT, Holder(account_id=ACCOUNT))

    assert authorization.amount == 69000
    assert metadata["cart_items"] == "3"
    assert metadata["cart_total"] == "69000"
    assert {"i0_intent", "i1_intent", "i2_intent"} <= set(metadata)
    assert fake_gateway.authorizations[authorization.id].metadata == metadata


@pytest.mark.asyncio
async def test_successful_checkout_materializes_every_item(
    test_session, fake_gateway, dispatcher, excursion_details, lodging_details
):
    await _fill_cart(test_session, excursion_details, lodging_details)
    orchestrator = CartCheckoutOrchestrator(test_session, fake_gateway, notifications=dispatcher)
    authorization, metadata = await orchestrator.prepare_checkout(ACCOUNT, Holder(account_id=ACCOUNT))

    reservations = await orchestrator.complete_checkout(_event(metadata, 69000, reference=authorization.id))

    assert [r.service_id for r in reservations] == ["glacier-hike", "harbour-hotel", "fish-market"]
    assert [r.payment_reference for r in reservations] == [f"{authorization.id}:{i}" for i in range(3)]
    assert all(r.status == ReservationStatus.CONFIRMED for r in reservations)
    assert all(r.remaining_balance == 0 for r in reservations)
    assert dispatcher.queue.qsize() == 3

    cart = await CartService(test_session).get_cart(ACCOUNT)
    assert cart.items == []


@pytest.mark.asyncio
async def test_items_staged_after_checkout_stay_in_cart(
    test_session, fake_gateway, dispatcher, excursion_details, lodging_details
):
    await _fill_cart(test_session, excursion_details, lodging_details)
    orchestrator = CartCheckoutOrchestrator(test_session, fake_gateway, notifications=dispatcher)
    authorization, metadata = await orchestrator.prepare_checkout(ACCOUNT, Holder(account_id=ACCOUNT))
    await CartService(test_session).add_item(
        ACCOUNT, AddCartItemRequest(details=excursion_details, service_id="late-item", unit_price=2500)
    )

    reservations = await orchestrator.complete_checkout(_event(metadata, 69000, reference=authorization.id))

    assert len(reservations) == 3
    cart = await CartService(test_session).get_cart(ACCOUNT)
    assert [item.service_id for item in cart.items] == ["late-item"]
    assert cart.total_amount == 2500


@pytest.mark.asyncio
async def test_redelivered_checkout_creates_nothing_new(
    test_session, fake_gateway, dispatcher, excursion_details, lodging_details
):
    await _fill_cart(test_session, excursion_details, lodging_details)
    orchestrator = CartCheckoutOrchestrator(test_session, fake_gateway, notifications=dispatcher)
    _, metadata = await orchestrator.prepare_checkout(ACCOUNT, Holder(account_id=ACCOUNT))

    first = await orchestrator.complete_checkout(_event(metadata, 69000))
    second = await orchestrator.complete_checkout(_event(metadata, 69000))

    assert [r.id for r in second] == [r.id for r in first]
    assert len(await _reservations(test_session)) == 3


@pytest.mark.asyncio
async def test_failed_item_rolls_back_the_whole_batch(
    test_session, fake_gateway, dispatcher, excursion_details, lodging_details
):
    await _fill_cart(test_session, excursion_details, lodging_details)
    orchestrator = CartCheckoutOrchestrator(test_session, fake_gateway, notifications=dispatcher)
    _, metadata = await orchestrator.prepare_checkout(ACCOUNT, Holder(account_id=ACCOUNT))
    metadata["i1_intent"] = "{corrupted"

    with pytest.raises(MalformedIntent):
        await orchestrator.complete_checkout(_event(metadata, 69000))

    reservations = await _reservations(test_session)
    assert not [r for r in reservations if r.status == ReservationStatus.CONFIRMED]
    # The item materialized before the failure is compensated, not left confirmed
    assert len(reservations) == 1
    assert reservations[0].status == ReservationStatus.CANCELED
    assert reservations[0].cancellation.reason == BATCH_ROLLBACK_REASON
    assert reservations[0].cancellation.refund_status == "pending"

    cart = await CartService(test_session).get_cart(ACCOUNT)
    assert len(cart.items) == 3

    failures = (await test_session.execute(select(MaterializationFailure))).scalars().all()
    assert len(failures) == 1
    assert failures[0].payment_reference == "pi_cart"
    assert failures[0].payload["rolled_back_reservation_ids"] == [str(reservations[0].id)]
    assert dispatcher.queue.empty()


@pytest.mark.asyncio
async def test_charged_amount_must_match_cart_total(test_session, fake_gateway, excursion_details, lodging_details):
    await _fill_cart(test_session, excursion_details, lodging_details)
    orchestrator = CartCheckoutOrchestrator(test_session, fake_gateway)
    _, metadata = await orchestrator.prepare_checkout(ACCOUNT, Holder(account_id=ACCOUNT))

    with pytest.raises(PaymentAmountMismatch):
        await orchestrator.complete_checkout(_event(metadata, 1000))

    assert await _reservations(test_session) == []
