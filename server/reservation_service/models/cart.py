"""Cart staging model definitions."""

from datetime import datetime
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import JSON, CheckConstraint, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ..core.database import Base, utcnow


class Cart(Base):
    """Per-account staging area for items awaiting one combined payment."""

    __tablename__ = "carts"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    account_id: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow
    )

    items: Mapped[list["CartItem"]] = relationship(
        "CartItem",
        back_populates="cart",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="CartItem.position",
    )

    @property
    def total_amount(self) -> int:
        return sum(item.line_price for item in self.items)

    def __repr__(self) -> str:
        return f"<Cart(id={self.id}, account_id='{self.account_id}', items={len(self.items)})>"


class CartItem(Base):
    """A staged reservation with its computed line price."""

    __tablename__ = "cart_items"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    cart_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("carts.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)

    category: Mapped[str] = mapped_column(String(20), nullable=False)
    service_id: Mapped[str] = mapped_column(String(128), nullable=False)
    option_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    details: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    party_size: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    participants: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    unit_price: Mapped[int] = mapped_column(Integer, nullable=False)
    line_price: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        CheckConstraint("party_size > 0", name="ck_cart_item_party_size_positive"),
        CheckConstraint("unit_price >= 0", name="ck_cart_item_unit_price_non_negative"),
        CheckConstraint("line_price = unit_price * party_size", name="ck_cart_item_line_price"),
        UniqueConstraint("cart_id", "position", name="uq_cart_item_position"),
    )

    cart: Mapped["Cart"] = relationship("Cart", back_populates="items")

    def __repr__(self) -> str:
        return (
            f"<CartItem(id={self.id}, category={self.category}, service_id='{self.service_id}', "
            f"party_size={self.party_size}, line_price={self.line_price})>"
        )
