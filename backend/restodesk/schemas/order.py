"""Customer order schemas.

Request bodies accept snake_case and the camelCase names storefront clients
send (``customerName``, ``zipCode``...). Responses are snake_case.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from restodesk.models.order import OrderStatus, OrderType, PaymentStatus
from restodesk.services.order_service import DraftItem, OrderDraft


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class OrderItemIn(CamelModel):
    """Order line: exactly one of ``product_id`` / ``combo_id``."""

    product_id: Optional[int] = None
    combo_id: Optional[int] = None
    quantity: int = Field(..., gt=0)
    price: Optional[Decimal] = Field(default=None, ge=0)
    notes: Optional[str] = Field(default=None, max_length=500)

    @model_validator(mode="after")
    def check_target(self):
        if (self.product_id is None) == (self.combo_id is None):
            raise ValueError("Each item must reference exactly one of product_id or combo_id")
        return self

    def to_draft(self, pin_price: bool = False) -> DraftItem:
        return DraftItem(
            quantity=self.quantity,
            product_id=self.product_id,
            combo_id=self.combo_id,
            price=self.price if pin_price else None,
            notes=self.notes,
        )


class CustomerIn(CamelModel):
    name: str = Field(..., min_length=1, max_length=255)
    phone: Optional[str] = Field(default=None, max_length=30)
    email: Optional[EmailStr] = None


class DeliveryAddressIn(CamelModel):
    address: str = Field(..., min_length=1)
    number: str = ""
    complement: Optional[str] = None
    neighborhood: str = ""
    city: str = ""
    state: str = ""
    zip_code: str = ""
    instructions: Optional[str] = None
    lat: Optional[float] = None
    lng: Optional[float] = None


class PaymentIn(CamelModel):
    method: str = Field(..., min_length=1, max_length=30)
    amount: Optional[Decimal] = None
    status: PaymentStatus = PaymentStatus.PENDING


class TotalsIn(CamelModel):
    subtotal: Decimal = Field(..., ge=0)
    delivery_fee: Decimal = Field(default=Decimal("0"), ge=0)
    discount: Decimal = Field(default=Decimal("0"), ge=0)
    tax: Decimal = Field(default=Decimal("0"), ge=0)
    total: Decimal = Field(..., ge=0)


def _parse_type(v):
    try:
        return OrderType.parse(v)
    except ValueError as e:
        raise ValueError(str(e))


class CheckoutOrderCreate(CamelModel):
    """Storefront checkout body."""

    customer: CustomerIn
    delivery: Optional[DeliveryAddressIn] = None
    type: OrderType = OrderType.DELIVERY
    items: List[OrderItemIn] = Field(..., min_length=1)
    payment: PaymentIn
    totals: Optional[TotalsIn] = None
    notes: Optional[str] = None
    source: str = "website"

    @field_validator("type", mode="before")
    @classmethod
    def parse_type(cls, v):
        return _parse_type(v)

    def to_draft(self) -> OrderDraft:
        totals = self.totals
        return OrderDraft(
            customer_name=self.customer.name,
            customer_phone=self.customer.phone,
            customer_email=self.customer.email,
            type=self.type,
            items=[item.to_draft() for item in self.items],
            delivery_address=self.delivery.model_dump(exclude_none=True) if self.delivery else None,
            payment_method=self.payment.method,
            payment_status=self.payment.status,
            subtotal=totals.subtotal if totals else None,
            delivery_fee=totals.delivery_fee if totals else None,
            discount=totals.discount if totals else None,
            tax=totals.tax if totals else None,
            total=totals.total if totals else None,
            notes=self.notes,
            source=self.source,
        )


class DirectOrderCreate(CamelModel):
    """Flat body used by POS terminals and integrations.

    Carries its own order number and initial status, and may pin item
    prices; totals must still reconcile with the items.
    """

    order_number: str = Field(..., min_length=1, max_length=64)
    status: OrderStatus = OrderStatus.PENDING
    type: OrderType = OrderType.DELIVERY
    customer_name: str = Field(..., min_length=1, max_length=255)
    customer_phone: Optional[str] = Field(default=None, max_length=30)
    customer_email: Optional[EmailStr] = None
    delivery_address: Optional[DeliveryAddressIn] = None
    subtotal: Optional[Decimal] = Field(default=None, ge=0)
    delivery_fee: Optional[Decimal] = Field(default=None, ge=0)
    discount: Optional[Decimal] = Field(default=None, ge=0)
    tax: Optional[Decimal] = Field(default=None, ge=0)
    total: Optional[Decimal] = Field(default=None, ge=0)
    payment_method: Optional[str] = Field(default=None, max_length=30)
    payment_status: PaymentStatus = PaymentStatus.PENDING
    notes: Optional[str] = None
    estimated_time: Optional[int] = Field(default=None, ge=0)
    preparation_time: Optional[int] = Field(default=None, ge=0)
    delivery_time: Optional[int] = Field(default=None, ge=0)
    source: str = "direct"
    items: List[OrderItemIn] = Field(..., min_length=1)

    @field_validator("status", mode="before")
    @classmethod
    def parse_status(cls, v):
        try:
            return OrderStatus.parse(v)
        except ValueError as e:
            raise ValueError(str(e))

    @field_validator("type", mode="before")
    @classmethod
    def parse_type(cls, v):
        return _parse_type(v)

    @field_validator("payment_status", mode="before")
    @classmethod
    def lower_payment_status(cls, v):
        return v.lower() if isinstance(v, str) else v

    def to_draft(self) -> OrderDraft:
        return OrderDraft(
            customer_name=self.customer_name,
            customer_phone=self.customer_phone,
            customer_email=self.customer_email,
            type=self.type,
            items=[item.to_draft(pin_price=True) for item in self.items],
            delivery_address=(
                self.delivery_address.model_dump(exclude_none=True) if self.delivery_address else None
            ),
            payment_method=self.payment_method,
            payment_status=self.payment_status,
            subtotal=self.subtotal,
            delivery_fee=self.delivery_fee,
            discount=self.discount,
            tax=self.tax,
            total=self.total,
            order_number=self.order_number,
            status=self.status,
            notes=self.notes,
            source=self.source,
            estimated_time=self.estimated_time,
            preparation_time=self.preparation_time,
            delivery_time=self.delivery_time,
        )


def is_direct_shape(body: Dict[str, Any]) -> bool:
    """Direct bodies carry their own order number and flat customer name."""
    return (
        bool(body.get("order_number") or body.get("orderNumber"))
        and bool(body.get("customer_name") or body.get("customerName"))
        and bool(body.get("items"))
    )


class OrderStatusUpdate(BaseModel):
    status: str = Field(..., min_length=1)
    notes: Optional[str] = Field(default=None, max_length=500)
    changed_by: Optional[str] = Field(default=None, max_length=100)


class DispatchDriverRequest(BaseModel):
    force_dispatch: bool = False
    provider: Optional[str] = None


class OrderItemResponse(BaseModel):
    id: int
    product_id: Optional[int] = None
    combo_id: Optional[int] = None
    name: str
    quantity: int
    unit_price: Decimal
    line_total: Decimal
    notes: Optional[str] = None

    model_config = {"from_attributes": True}


class StatusHistoryResponse(BaseModel):
    id: int
    status: OrderStatus
    notes: Optional[str] = None
    changed_by: Optional[str] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class OrderResponse(BaseModel):
    id: int
    order_number: str
    restaurant_id: int
    status: OrderStatus
    type: OrderType
    customer_name: str
    customer_phone: Optional[str] = None
    customer_email: Optional[str] = None
    delivery_address: Optional[Dict[str, Any]] = None
    subtotal: Decimal
    delivery_fee: Decimal
    discount: Decimal
    tax: Decimal
    total: Decimal
    payment_method: Optional[str] = None
    payment_status: PaymentStatus
    notes: Optional[str] = None
    source: Optional[str] = None
    estimated_time: Optional[int] = None
    preparation_time: Optional[int] = None
    delivery_time: Optional[int] = None
    cancellation_reason: Optional[str] = None
    delivered_at: Optional[datetime] = None
    delivery_provider: Optional[str] = None
    provider_order_id: Optional[str] = None
    tracking_url: Optional[str] = None
    driver_info: Optional[Dict[str, Any]] = None
    items: List[OrderItemResponse] = []
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class OrderDetailResponse(OrderResponse):
    status_history: List[StatusHistoryResponse] = []
