"""Cart router for staging items and checking them out under one payment."""

import logging

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.database import get_db
from ..core.dependencies import CurrentActor, PaymentGatewayDependency
from ..core.exceptions import ProblemDetailsException
from ..core.security import Actor
from ..schemas.cart import AddCartItemRequest, Cart, CartItem, CheckoutRequest, RemoveCartItemRequest
from ..schemas.payment import AuthorizationResponse
from ..schemas.reservation import Holder
from ..services.cart_checkout import CartCheckoutOrchestrator
from ..services.cart_service import CartService
from ..services.payment_gateway import PaymentGateway

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/cart", tags=["cart"])

DB_DEPENDENCY = Depends(get_db)


def _convert_cart_to_schema(cart_model, account_id: str) -> Cart:
    """Convert cart model to schema; a missing cart is an empty one."""
    if cart_model is None:
        return Cart(account_id=account_id)
    return Cart(
        id=cart_model.id,
        account_id=cart_model.account_id,
        items=[CartItem.model_validate(item) for item in cart_model.items],
        total_amount=cart_model.total_amount,
    )


@router.post("/add-item", response_model=Cart)
async def add_item(
    request: AddCartItemRequest,
    actor: Actor = CurrentActor,
    db: AsyncSession = DB_DEPENDENCY
) -> JSONResponse:
    """Stage a reservation in the caller's cart."""
    cart = await CartService(db).add_item(actor.account_id, request)
    response_data = _convert_cart_to_schema(cart, actor.account_id)
    return JSONResponse(status_code=200, content=response_data.model_dump(mode="json"))


@router.post("/remove-item", response_model=Cart)
async def remove_item(
    request: RemoveCartItemRequest,
    actor: Actor = CurrentActor,
    db: AsyncSession = DB_DEPENDENCY
) -> JSONResponse:
    cart = await CartService(db).remove_item(actor.account_id, request.item_id)
    response_data = _convert_cart_to_schema(cart, actor.account_id)
    return JSONResponse(status_code=200, content=response_data.model_dump(mode="json"))


@router.post("/get", response_model=Cart)
async def get_cart(
    actor: Actor = CurrentActor,
    db: AsyncSession = DB_DEPENDENCY
) -> JSONResponse:
    cart = await CartService(db).get_cart(actor.account_id)
    response_data = _convert_cart_to_schema(cart, actor.account_id)
    return JSONResponse(status_code=200, content=response_data.model_dump(mode="json"))


@router.post("/checkout", response_model=AuthorizationResponse)
async def checkout(
    request: CheckoutRequest,
    actor: Actor = CurrentActor,
    db: AsyncSession = DB_DEPENDENCY,
    gateway: PaymentGateway = PaymentGatewayDependency
) -> JSONResponse:
    """
    Authorize one payment for every item in the cart.

    The cart is left intact; it is cleared only when the payment succeeds
    and every item has become a reservation.
    """
    orchestrator = CartCheckoutOrchestrator(db, gateway)
    holder = Holder(account_id=actor.account_id, guest_email=request.receipt_email)

    try:
        authorization, metadata = await orchestrator.prepare_checkout(actor.account_id, holder)
        response_data = AuthorizationResponse(
            authorization_id=authorization.id,
            client_secret=authorization.client_secret,
            amount=authorization.amount,
            currency=authorization.currency,
            metadata_slots=sorted(metadata),
        )
        return JSONResponse(status_code=201, content=response_data.model_dump(mode="json"))

    except ProblemDetailsException:
        raise

    except Exception as e:
        logger.error(
            "Unexpected error in cart checkout",
            extra={"account_id": actor.account_id, "error": str(e)},
            exc_info=True
        )
        raise HTTPException(status_code=500, detail="Internal server error") from e
