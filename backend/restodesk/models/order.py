"""Customer order models and the order status graph."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from sqlalchemy import (
    JSON,
    CheckConstraint,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    event,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from restodesk.db.base import Base, TimestampMixin, utcnow


class OrderStatus(str, Enum):
    """Every state an order can be in, including courier-driven sub-states."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    PREPARING = "preparing"
    READY = "ready"
    DRIVER_DISPATCHED = "driver_dispatched"
    DRIVER_DISPATCH_FAILED = "driver_dispatch_failed"
    DRIVER_ASSIGNED = "driver_assigned"
    OUT_FOR_DELIVERY = "out_for_delivery"
    DELIVERED = "delivered"
    DELIVERY_FAILED = "delivery_failed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"

    @classmethod
    def parse(cls, value: "str | OrderStatus") -> "OrderStatus":
        """Accept both legacy upper-case names and lower-case values."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            valid = ", ".join(s.value for s in cls)
            raise ValueError(f"Invalid status '{value}'. Valid statuses: {valid}") from None


# Directed graph of expected moves. Anything else is "off-graph": logged, or
# rejected when ENFORCE_STATUS_TRANSITIONS is on.
ALLOWED_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({
        OrderStatus.CONFIRMED,
        OrderStatus.PREPARING,
        OrderStatus.DRIVER_DISPATCHED,
        OrderStatus.DRIVER_DISPATCH_FAILED,
        OrderStatus.CANCELLED,
    }),
    OrderStatus.CONFIRMED: frozenset({
        OrderStatus.PREPARING,
        OrderStatus.READY,
        OrderStatus.DRIVER_DISPATCHED,
        OrderStatus.DRIVER_DISPATCH_FAILED,
        OrderStatus.CANCELLED,
    }),
    OrderStatus.PREPARING: frozenset({
        OrderStatus.READY,
        OrderStatus.DRIVER_DISPATCHED,
        OrderStatus.DRIVER_DISPATCH_FAILED,
        OrderStatus.CANCELLED,
    }),
    OrderStatus.READY: frozenset({
        OrderStatus.DRIVER_DISPATCHED,
        OrderStatus.DRIVER_DISPATCH_FAILED,
        OrderStatus.OUT_FOR_DELIVERY,
        OrderStatus.DELIVERED,
        OrderStatus.CANCELLED,
    }),
    OrderStatus.DRIVER_DISPATCHED: frozenset({
        OrderStatus.DRIVER_ASSIGNED,
        OrderStatus.OUT_FOR_DELIVERY,
        OrderStatus.DELIVERED,
        OrderStatus.DELIVERY_FAILED,
        OrderStatus.CANCELLED,
    }),
    OrderStatus.DRIVER_DISPATCH_FAILED: frozenset({
        OrderStatus.DRIVER_DISPATCHED,
        OrderStatus.READY,
        OrderStatus.OUT_FOR_DELIVERY,
        OrderStatus.CANCELLED,
    }),
    OrderStatus.DRIVER_ASSIGNED: frozenset({
        OrderStatus.DRIVER_DISPATCHED,
        OrderStatus.OUT_FOR_DELIVERY,
        OrderStatus.DELIVERED,
        OrderStatus.DELIVERY_FAILED,
        OrderStatus.CANCELLED,
    }),
    OrderStatus.OUT_FOR_DELIVERY: frozenset({
        OrderStatus.DELIVERED,
        OrderStatus.DELIVERY_FAILED,
    }),
    OrderStatus.DELIVERY_FAILED: frozenset({
        OrderStatus.DRIVER_DISPATCHED,
        OrderStatus.CANCELLED,
        OrderStatus.REFUNDED,
    }),
    OrderStatus.DELIVERED: frozenset({OrderStatus.REFUNDED}),
    OrderStatus.CANCELLED: frozenset({OrderStatus.REFUNDED}),
    OrderStatus.REFUNDED: frozenset(),
}


def is_allowed_transition(current: OrderStatus, target: OrderStatus) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


class OrderType(str, Enum):
    DELIVERY = "delivery"
    TAKEAWAY = "takeaway"
    DINE_IN = "dine_in"

    @classmethod
    def parse(cls, value: "str | OrderType") -> "OrderType":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            valid = ", ".join(t.value for t in cls)
            raise ValueError(f"Invalid order type '{value}'. Valid types: {valid}") from None


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


class Order(Base, TimestampMixin):
    """A customer order.

    Customer fields are a snapshot taken at checkout; the order never
    references a live customer record.
    """

    __tablename__ = "orders"

    id: Mapped[int] = mapped_column(primary_key=True)
    order_number: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, index=True)
    restaurant_id: Mapped[int] = mapped_column(
        ForeignKey("restaurants.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    status: Mapped[OrderStatus] = mapped_column(
        SQLEnum(OrderStatus), default=OrderStatus.PENDING, nullable=False, index=True
    )
    type: Mapped[OrderType] = mapped_column(
        SQLEnum(OrderType), default=OrderType.DELIVERY, nullable=False
    )

    customer_name: Mapped[str] = mapped_column(String(255), nullable=False)
    customer_phone: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    customer_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    delivery_address: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON, nullable=True)

    subtotal: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    delivery_fee: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=0, nullable=False)
    discount: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=0, nullable=False)
    tax: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=0, nullable=False)
    total: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)

    payment_method: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    payment_status: Mapped[PaymentStatus] = mapped_column(
        SQLEnum(PaymentStatus), default=PaymentStatus.PENDING, nullable=False
    )
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    source: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    estimated_time: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)  # minutes
    preparation_time: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    delivery_time: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    cancellation_reason: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    delivered_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Courier references, filled in by dispatch and webhooks
    delivery_provider: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    provider_order_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True, index=True)
    tracking_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    driver_info: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON, nullable=True)

    # Relationships
    restaurant: Mapped["Restaurant"] = relationship("Restaurant", back_populates="orders")
    items: Mapped[list["OrderItem"]] = relationship(
        "OrderItem", back_populates="order", cascade="all, delete-orphan"
    )
    status_history: Mapped[list["OrderStatusHistory"]] = relationship(
        "OrderStatusHistory",
        back_populates="order",
        order_by="OrderStatusHistory.created_at",
    )

    @property
    def is_delivery(self) -> bool:
        return self.type == OrderType.DELIVERY


class OrderItem(Base):
    """Line item; unit_price is copied from the catalogue when the order is placed."""

    __tablename__ = "order_items"
    __table_args__ = (
        CheckConstraint(
            "(product_id IS NULL) <> (combo_id IS NULL)", name="ck_order_items_one_target"
        ),
        CheckConstraint("quantity > 0", name="ck_order_items_quantity_positive"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    order_id: Mapped[int] = mapped_column(
        ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True
    )
    product_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("products.id", ondelete="RESTRICT"), nullable=True, index=True
    )
    combo_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("combos.id", ondelete="RESTRICT"), nullable=True, index=True
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    order: Mapped["Order"] = relationship("Order", back_populates="items")
    product: Mapped[Optional["Product"]] = relationship("Product")
    combo: Mapped[Optional["Combo"]] = relationship("Combo")

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity


class OrderStatusHistory(Base):
    """Append-only log of status changes.

    ``created_at`` is assigned by the workflow, strictly increasing per
    order. Updates and deletes are refused at the ORM level.
    """

    __tablename__ = "order_status_history"

    id: Mapped[int] = mapped_column(primary_key=True)
    order_id: Mapped[int] = mapped_column(
        ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True
    )
    status: Mapped[OrderStatus] = mapped_column(SQLEnum(OrderStatus), nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    changed_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )

    order: Mapped["Order"] = relationship("Order", back_populates="status_history")


class HistoryImmutableError(RuntimeError):
    pass


@event.listens_for(OrderStatusHistory, "before_update")
def _refuse_history_update(mapper, connection, target):
    raise HistoryImmutableError("Order status history rows cannot be modified")


@event.listens_for(OrderStatusHistory, "before_delete")
def _refuse_history_delete(mapper, connection, target):
    raise HistoryImmutableError("Order status history rows cannot be deleted")


# Forward references
from restodesk.models.restaurant import Restaurant
from restodesk.models.product import Product
from restodesk.models.combo import Combo
