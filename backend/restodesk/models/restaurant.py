"""Restaurant (tenant) model."""

from __future__ import annotations

from decimal import Decimal
from typing import Optional

from sqlalchemy import Boolean, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from restodesk.db.base import Base, TimestampMixin


class Restaurant(Base, TimestampMixin):
    """A restaurant; every catalogue row and order belongs to one."""

    __tablename__ = "restaurants"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    phone: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # Pickup address used for every delivery request
    street: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    number: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    neighborhood: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    city: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    state: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    zip_code: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)

    delivery_fee: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=0, nullable=False)
    minimum_order: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=0, nullable=False)
    delivery_radius_km: Mapped[Decimal] = mapped_column(Numeric(6, 2), default=10, nullable=False)
    delivery_enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    products: Mapped[list["Product"]] = relationship("Product", back_populates="restaurant")
    orders: Mapped[list["Order"]] = relationship("Order", back_populates="restaurant")

    @property
    def address_line(self) -> str:
        parts = [f"{self.street or ''}, {self.number or ''}".strip(", ")]
        if self.neighborhood:
            parts.append(self.neighborhood)
        if self.city:
            parts.append(f"{self.city} - {self.state}" if self.state else self.city)
        return ", ".join(p for p in parts if p)


# Forward references
from restodesk.models.product import Product
from restodesk.models.order import Order
