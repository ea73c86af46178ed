"""Cart staging operations."""

import logging
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import settings
from ..core.exceptions import ConflictError, NotFoundError
from ..models.cart import Cart, CartItem
from ..schemas.cart import AddCartItemRequest

logger = logging.getLogger(__name__)


class CartService:
    """Service for cart-related operations."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_cart(self, account_id: str) -> Cart | None:
        stmt = (
            select(Cart)
            .where(Cart.account_id == account_id)
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_cart_by_id(self, cart_id: UUID) -> Cart | None:
        stmt = select(Cart).where(Cart.id == cart_id).execution_options(populate_existing=True)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_or_create_cart(self, account_id: str) -> Cart:
        cart = await self.get_cart(account_id)
        if cart is not None:
            return cart

        cart = Cart(account_id=account_id, items=[])
        self.db.add(cart)
        try:
            await self.db.commit()
        except IntegrityError:
            # Another request created the cart first
            await self.db.rollback()
            cart = await self.get_cart(account_id)
            if cart is None:
                raise
        return cart

    async def add_item(self, account_id: str, request: AddCartItemRequest) -> Cart:
        """
        Stage an item; all items in a cart share one currency.

        Raises:
            ConflictError: If the item's currency differs from the cart's
        """
        cart = await self.get_or_create_cart(account_id)
        currency = request.currency or settings.default_currency

        if cart.items and cart.items[0].currency != currency:
            raise ConflictError(
                detail=f"Cart items are priced in {cart.items[0].currency}; cannot add an item in {currency}"
            )

        position = max((item.position for item in cart.items), default=-1) + 1
        item = CartItem(
            position=position,
            category=request.details.category,
            service_id=request.service_id,
            option_id=request.option_id,
            details=request.details.model_dump(mode="json"),
            party_size=request.party_size,
            participants=list(request.participants),
            unit_price=request.unit_price,
            line_price=request.unit_price * request.party_size,
            currency=currency,
            notes=request.notes,
        )
        cart.items.append(item)
        await self.db.commit()

        logger.info(
            "Cart item added",
            extra={
                "account_id": account_id,
                "cart_id": str(cart.id),
                "item_id": str(item.id),
                "category": item.category,
                "line_price": item.line_price,
            }
        )
        return cart

    async def remove_item(self, account_id: str, item_id: UUID) -> Cart:
        cart = await self.get_cart(account_id)
        item = next((i for i in cart.items if i.id == item_id), None) if cart else None
        if item is None:
            raise NotFoundError(resource_type="cart item", resource_id=str(item_id))

        cart.items.remove(item)
        await self.db.commit()
        logger.info("Cart item removed", extra={"account_id": account_id, "item_id": str(item_id)})
        return cart

    async def remove_paid_items(self, cart: Cart, item_ids: set[str]) -> None:
        """Drop the items a completed checkout turned into reservations."""
        paid = [item for item in cart.items if str(item.id) in item_ids]
        for item in paid:
            cart.items.remove(item)
        await self.db.commit()
        logger.info(
            "Paid items removed from cart",
            extra={"cart_id": str(cart.id), "removed_items": len(paid), "remaining_items": len(cart.items)}
        )
