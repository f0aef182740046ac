"""Combo (fixed-price bundle) models."""

from __future__ import annotations

from decimal import Decimal
from typing import Optional

from sqlalchemy import Boolean, CheckConstraint, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from restodesk.db.base import Base, TimestampMixin


class Combo(Base, TimestampMixin):
    """Bundle of products sold at one price.

    Has no stock counter of its own: selling a combo draws down the stock
    of each non-optional constituent product.
    """

    __tablename__ = "combos"

    id: Mapped[int] = mapped_column(primary_key=True)
    restaurant_id: Mapped[int] = mapped_column(
        ForeignKey("restaurants.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    image_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    is_featured: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    items: Mapped[list["ComboItem"]] = relationship(
        "ComboItem",
        back_populates="combo",
        cascade="all, delete-orphan",
        order_by="ComboItem.display_order",
    )

    @property
    def available_quantity(self) -> int:
        """How many combos the current stock of required products can fill."""
        counts = [
            item.product.stock // item.quantity
            for item in self.items
            if not item.is_optional and item.product is not None
        ]
        return min(counts) if counts else 0


class ComboItem(Base):
    """One product slot inside a combo."""

    __tablename__ = "combo_items"
    __table_args__ = (CheckConstraint("quantity > 0", name="ck_combo_items_quantity_positive"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    combo_id: Mapped[int] = mapped_column(
        ForeignKey("combos.id", ondelete="CASCADE"), nullable=False, index=True
    )
    product_id: Mapped[int] = mapped_column(
        ForeignKey("products.id", ondelete="CASCADE"), nullable=False, index=True
    )
    quantity: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    is_optional: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    display_order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    combo: Mapped["Combo"] = relationship("Combo", back_populates="items")
    product: Mapped["Product"] = relationship("Product")

    @property
    def product_name(self) -> Optional[str]:
        return self.product.name if self.product else None


# Forward references
from restodesk.models.product import Product
