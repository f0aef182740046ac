"""Order workflow: checkout, status transitions, driver dispatch and side effects.

Order creation validates every line before touching the database, then
writes the order, its items, the stock decrements and the first history row
in one transaction. Notifications and driver dispatch run afterwards as
best-effort side effects; each one yields a ``SideEffectOutcome`` and none
can undo the order.
"""

from __future__ import annotations

import logging
import secrets
import time
from dataclasses import dataclass, field
from datetime import timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from restodesk.core.alerting import alert_manager
from restodesk.core.cache import menu_cache
from restodesk.core.config import settings
from restodesk.core.errors import (
    ConflictError,
    InsufficientStockError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from restodesk.db.base import as_utc, utcnow
from restodesk.models.combo import Combo
from restodesk.models.order import (
    Order,
    OrderItem,
    OrderStatus,
    OrderStatusHistory,
    OrderType,
    PaymentStatus,
    is_allowed_transition,
)
from restodesk.models.product import Product
from restodesk.models.restaurant import Restaurant
from restodesk.models.stock import MovementType
from restodesk.services.delivery import (
    Address,
    DeliveryItem,
    DeliveryRequest,
    DeliveryResponse,
    DeliveryService,
    get_delivery_service,
)
from restodesk.services.notification_service import (
    NotificationKind,
    NotificationService,
    get_notification_service,
)
from restodesk.services.stock_service import StockService

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")

# Statuses from which an order may still be handed to a driver at checkout
DISPATCHABLE_AT_CHECKOUT = frozenset({
    OrderStatus.PENDING,
    OrderStatus.CONFIRMED,
    OrderStatus.PREPARING,
})
# Statuses from which staff may request a driver without forcing
DISPATCHABLE_MANUALLY = frozenset({OrderStatus.CONFIRMED, OrderStatus.PREPARING})
# Statuses that end a delivery; the provider's driver is released on entry
DELIVERY_FINISHED = frozenset({
    OrderStatus.DELIVERED,
    OrderStatus.DELIVERY_FAILED,
    OrderStatus.CANCELLED,
    OrderStatus.REFUNDED,
})


def to_money(value: Any) -> Decimal:
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def pickup_address(restaurant: Restaurant) -> Address:
    return Address(
        street=restaurant.street or "",
        number=restaurant.number or "",
        neighborhood=restaurant.neighborhood or "",
        city=restaurant.city or "",
        state=restaurant.state or "",
        zip_code=restaurant.zip_code or "",
    )


def quote_request(restaurant: Restaurant, dropoff: Address, order_value: float) -> DeliveryRequest:
    """Delivery request for pricing an address before any order exists."""
    return DeliveryRequest(
        pickup_address=pickup_address(restaurant),
        delivery_address=dropoff,
        customer_name="",
        customer_phone="",
        order_value=float(order_value),
        restaurant_name=restaurant.name,
        restaurant_phone=restaurant.phone or settings.restaurant_phone,
    )


def generate_order_number() -> str:
    """Millisecond timestamp plus 32 random bits."""
    return f"ORD-{int(time.time() * 1000)}-{secrets.token_hex(4).upper()}"


# ===== INPUT NORMALIZATION =====

@dataclass
class DraftItem:
    quantity: int
    product_id: Optional[int] = None
    combo_id: Optional[int] = None
    price: Optional[Decimal] = None
    notes: Optional[str] = None


@dataclass
class OrderDraft:
    """Checkout data in one shape, whichever request body it came from."""

    customer_name: str
    items: List[DraftItem]
    type: OrderType = OrderType.DELIVERY
    customer_phone: Optional[str] = None
    customer_email: Optional[str] = None
    delivery_address: Optional[Dict[str, Any]] = None
    payment_method: Optional[str] = None
    payment_status: PaymentStatus = PaymentStatus.PENDING
    subtotal: Optional[Decimal] = None
    delivery_fee: Optional[Decimal] = None
    discount: Optional[Decimal] = None
    tax: Optional[Decimal] = None
    total: Optional[Decimal] = None
    order_number: Optional[str] = None
    status: OrderStatus = OrderStatus.PENDING
    notes: Optional[str] = None
    source: Optional[str] = None
    estimated_time: Optional[int] = None
    preparation_time: Optional[int] = None
    delivery_time: Optional[int] = None

    @property
    def has_totals(self) -> bool:
        return self.subtotal is not None and self.total is not None


@dataclass
class _Line:
    name: str
    quantity: int
    unit_price: Decimal
    product: Optional[Product] = None
    combo: Optional[Combo] = None
    notes: Optional[str] = None


# ===== SIDE EFFECT OUTCOMES =====

@dataclass
class SideEffectOutcome:
    name: str
    success: bool
    skipped: bool = False
    detail: Optional[str] = None


@dataclass
class SideEffectReport:
    order_id: int
    outcomes: List[SideEffectOutcome] = field(default_factory=list)

    def add(self, outcome: SideEffectOutcome) -> SideEffectOutcome:
        self.outcomes.append(outcome)
        return outcome

    def get(self, name: str) -> Optional[SideEffectOutcome]:
        return next((o for o in self.outcomes if o.name == name), None)

    @property
    def all_succeeded(self) -> bool:
        return all(o.success or o.skipped for o in self.outcomes)


class OrderWorkflow:
    """Service for the customer order lifecycle."""

    def __init__(
        self,
        db: Session,
        notifier: Optional[NotificationService] = None,
        delivery: Optional[DeliveryService] = None,
    ):
        self.db = db
        self.notifier = notifier or get_notification_service()
        self.delivery = delivery or get_delivery_service()
        self.stock = StockService(db)

    # ===== QUERIES =====

    def get_restaurant(self, restaurant_id: int) -> Restaurant:
        restaurant = self.db.query(Restaurant).filter(Restaurant.id == restaurant_id).first()
        if not restaurant:
            raise NotFoundError(f"Restaurant {restaurant_id} not found")
        return restaurant

    def get_order(self, restaurant_id: int, order_id: int) -> Order:
        order = self.db.query(Order).filter(
            Order.id == order_id,
            Order.restaurant_id == restaurant_id,
        ).first()
        if not order:
            raise NotFoundError(f"Order {order_id} not found")
        return order

    def list_orders(
        self,
        restaurant_id: int,
        status: Optional[OrderStatus] = None,
        skip: int = 0,
        limit: int = 50,
    ) -> Tuple[List[Order], int]:
        query = self.db.query(Order).filter(Order.restaurant_id == restaurant_id)
        if status is not None:
            query = query.filter(Order.status == status)
        total = query.count()
        orders = query.order_by(Order.id.desc()).offset(skip).limit(limit).all()
        return orders, total

    def get_history(self, order: Order) -> List[OrderStatusHistory]:
        return (
            self.db.query(OrderStatusHistory)
            .filter(OrderStatusHistory.order_id == order.id)
            .order_by(OrderStatusHistory.created_at, OrderStatusHistory.id)
            .all()
        )

    # ===== CREATE =====

    def _resolve_lines(self, restaurant_id: int, draft: OrderDraft) -> List[_Line]:
        lines: List[_Line] = []
        for item in draft.items:
            if item.quantity <= 0:
                raise ValidationError("Item quantity must be greater than zero")
            if (item.product_id is None) == (item.combo_id is None):
                raise ValidationError("Each item must reference exactly one of product_id or combo_id")

            if item.product_id is not None:
                product = self.db.query(Product).filter(
                    Product.id == item.product_id,
                    Product.restaurant_id == restaurant_id,
                ).first()
                if not product:
                    raise NotFoundError(f"Product {item.product_id} not found")
                if not (product.is_active and product.is_available):
                    raise ValidationError(f"Product '{product.name}' is not available")
                price = item.price if item.price is not None else product.price
                lines.append(_Line(product.name, item.quantity, to_money(price), product=product, notes=item.notes))
            else:
                combo = self.db.query(Combo).filter(
                    Combo.id == item.combo_id,
                    Combo.restaurant_id == restaurant_id,
                ).first()
                if not combo:
                    raise NotFoundError(f"Combo {item.combo_id} not found")
                if not combo.is_active:
                    raise ValidationError(f"Combo '{combo.name}' is not available")
                price = item.price if item.price is not None else combo.price
                lines.append(_Line(combo.name, item.quantity, to_money(price), combo=combo, notes=item.notes))
        return lines

    @staticmethod
    def _demand(lines: List[_Line]) -> Dict[int, Tuple[Product, int]]:
        """Units needed per product, combos expanded into their required products."""
        demand: Dict[int, Tuple[Product, int]] = {}

        def add(product: Product, qty: int):
            current = demand.get(product.id)
            demand[product.id] = (product, qty + (current[1] if current else 0))

        for line in lines:
            if line.product is not None:
                add(line.product, line.quantity)
            else:
                for combo_item in line.combo.items:
                    if not combo_item.is_optional:
                        add(combo_item.product, combo_item.quantity * line.quantity)
        return demand

    @staticmethod
    def _check_stock(demand: Dict[int, Tuple[Product, int]]) -> None:
        for product_id in sorted(demand):
            product, needed = demand[product_id]
            if needed > product.stock:
                raise InsufficientStockError(product.name, product.id, product.stock, needed)

    def _totals(self, draft: OrderDraft, lines: List[_Line], restaurant: Restaurant) -> Dict[str, Decimal]:
        items_subtotal = sum((line.unit_price * line.quantity for line in lines), Decimal("0"))
        tolerance = Decimal(str(settings.totals_tolerance))

        if not draft.has_totals:
            delivery_fee = draft.delivery_fee
            if delivery_fee is None:
                delivery_fee = restaurant.delivery_fee if draft.type == OrderType.DELIVERY else Decimal("0")
            discount = draft.discount or Decimal("0")
            tax = draft.tax or Decimal("0")
            subtotal = to_money(items_subtotal)
            return {
                "subtotal": subtotal,
                "delivery_fee": to_money(delivery_fee),
                "discount": to_money(discount),
                "tax": to_money(tax),
                "total": to_money(subtotal + delivery_fee - discount + tax),
            }

        totals = {
            "subtotal": to_money(draft.subtotal),
            "delivery_fee": to_money(draft.delivery_fee or 0),
            "discount": to_money(draft.discount or 0),
            "tax": to_money(draft.tax or 0),
            "total": to_money(draft.total),
        }
        if abs(totals["subtotal"] - items_subtotal) > tolerance:
            raise ValidationError(
                f"Subtotal {totals['subtotal']} does not match the items ({to_money(items_subtotal)})"
            )
        expected = totals["subtotal"] + totals["delivery_fee"] - totals["discount"] + totals["tax"]
        if abs(expected - totals["total"]) > tolerance:
            raise ValidationError(
                f"Totals do not reconcile: subtotal + delivery fee - discount + tax = {expected}, "
                f"total = {totals['total']}"
            )
        return totals

    def create_order(self, restaurant_id: int, draft: OrderDraft) -> Order:
        """Validate and persist an order, decrementing stock in the same transaction."""
        restaurant = self.get_restaurant(restaurant_id)

        if not draft.items:
            raise ValidationError("Order must contain at least one item")
        if draft.type == OrderType.DELIVERY and not draft.delivery_address:
            raise ValidationError("Delivery orders require a delivery address")

        lines = self._resolve_lines(restaurant_id, draft)
        demand = self._demand(lines)
        self._check_stock(demand)
        totals = self._totals(draft, lines, restaurant)

        if draft.order_number:
            order_number = draft.order_number
            exists = self.db.query(Order.id).filter(Order.order_number == order_number).first()
            if exists:
                raise ConflictError(f"Order number '{order_number}' already exists")
        else:
            order_number = generate_order_number()

        order = Order(
            order_number=order_number,
            restaurant_id=restaurant_id,
            status=draft.status,
            type=draft.type,
            customer_name=draft.customer_name,
            customer_phone=draft.customer_phone,
            customer_email=draft.customer_email,
            delivery_address=draft.delivery_address,
            payment_method=(draft.payment_method or "").lower() or None,
            payment_status=draft.payment_status,
            notes=draft.notes,
            source=draft.source,
            estimated_time=draft.estimated_time,
            preparation_time=draft.preparation_time,
            delivery_time=draft.delivery_time,
            **totals,
        )
        for line in lines:
            order.items.append(OrderItem(
                product_id=line.product.id if line.product else None,
                combo_id=line.combo.id if line.combo else None,
                name=line.name,
                quantity=line.quantity,
                unit_price=line.unit_price,
                notes=line.notes,
            ))

        try:
            self.db.add(order)
            self.db.flush()
            # Fixed product order keeps concurrent checkouts from deadlocking
            for product_id in sorted(demand):
                product, quantity = demand[product_id]
                self.stock.decrement(
                    product, quantity, MovementType.SALE,
                    reason=f"Order {order_number}", reference=order_number,
                )
            self._append_history(order, order.status, notes=f"Order created via {draft.source or 'api'}")
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            if "order_number" in str(e.orig):
                raise ConflictError(f"Order number '{order_number}' already exists")
            raise
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(order)
        menu_cache.invalidate(restaurant_id)
        logger.info(
            f"Order {order.order_number} (ID: {order.id}) created for restaurant {restaurant_id}: "
            f"{len(lines)} item(s), total {order.total}"
        )
        return order

    # ===== STATUS =====

    def _append_history(
        self,
        order: Order,
        status: OrderStatus,
        notes: Optional[str] = None,
        changed_by: Optional[str] = None,
    ) -> OrderStatusHistory:
        created_at = utcnow()
        if order.id is not None:
            last = (
                self.db.query(func.max(OrderStatusHistory.created_at))
                .filter(OrderStatusHistory.order_id == order.id)
                .scalar()
            )
            if last is not None and created_at <= as_utc(last):
                created_at = as_utc(last) + timedelta(microseconds=1)
        entry = OrderStatusHistory(
            order_id=order.id,
            status=status,
            notes=notes,
            changed_by=changed_by,
            created_at=created_at,
        )
        self.db.add(entry)
        return entry

    def apply_status(
        self,
        order: Order,
        target: OrderStatus,
        notes: Optional[str] = None,
        changed_by: Optional[str] = None,
        enforce: Optional[bool] = None,
    ) -> bool:
        """Change status inside the current transaction; False when already there.

        ``enforce`` overrides ENFORCE_STATUS_TRANSITIONS. Writes that record
        something a provider already did pass ``enforce=False``: the graph
        cannot undo a booked driver or a cancelled courier order.
        """
        if order.status == target:
            return False
        if enforce is None:
            enforce = settings.enforce_status_transitions
        if not is_allowed_transition(order.status, target):
            if enforce:
                raise InvalidTransitionError(order.status.value, target.value)
            logger.warning(
                f"Off-graph status change for order {order.order_number}: "
                f"{order.status.value} -> {target.value}"
            )

        order.status = target
        if target == OrderStatus.DELIVERED:
            order.delivered_at = utcnow()
        elif target == OrderStatus.CANCELLED:
            order.cancellation_reason = notes or settings.default_cancellation_reason
        self._append_history(order, target, notes=notes, changed_by=changed_by)
        if target in DELIVERY_FINISHED and order.provider_order_id:
            self.delivery.release_driver(order.provider_order_id, order.delivery_provider)
        return True

    def transition_status(
        self,
        order: Order,
        target: "OrderStatus | str",
        notes: Optional[str] = None,
        changed_by: Optional[str] = None,
        enforce: Optional[bool] = None,
    ) -> bool:
        """Move an order to ``target`` and commit.

        Returns False (and writes nothing) when the order already has that
        status. The matching notification is sent separately with
        ``notify_status``.
        """
        try:
            target = OrderStatus.parse(target)
        except ValueError as e:
            raise ValidationError(str(e))

        previous = order.status
        try:
            changed = self.apply_status(order, target, notes=notes, changed_by=changed_by, enforce=enforce)
            if changed:
                self.db.commit()
        except InvalidTransitionError:
            raise
        except Exception:
            self.db.rollback()
            raise

        if changed:
            self.db.refresh(order)
            logger.info(
                f"Order {order.order_number} status {previous.value} -> {target.value}"
                + (f" by {changed_by}" if changed_by else "")
            )
        return changed

    # ===== SIDE EFFECTS =====

    async def notify(self, order: Order, kind: NotificationKind, **extra: Any) -> SideEffectOutcome:
        name = f"notify:{NotificationKind(kind).value}"
        try:
            result = await self.notifier.send_order_notification(order, kind, **extra)
        except Exception as e:
            logger.error(f"Notification {name} for order {order.id} raised: {e}")
            return SideEffectOutcome(name, success=False, detail=str(e))
        return SideEffectOutcome(name, success=result.success, detail=result.error)

    async def notify_status(self, order: Order, status: OrderStatus) -> SideEffectOutcome:
        try:
            result = await self.notifier.send_status_notification(order, status)
        except Exception as e:
            logger.error(f"Status notification for order {order.id} raised: {e}")
            return SideEffectOutcome(f"notify:{status.value}", success=False, detail=str(e))
        if result is None:
            return SideEffectOutcome(f"notify:{status.value}", success=True, skipped=True)
        return SideEffectOutcome(f"notify:{result.kind}", success=result.success, detail=result.error)

    def build_delivery_request(self, order: Order) -> DeliveryRequest:
        restaurant = order.restaurant
        dropoff = Address.from_dict(order.delivery_address)
        return DeliveryRequest(
            pickup_address=pickup_address(restaurant),
            delivery_address=dropoff,
            customer_name=order.customer_name,
            customer_phone=order.customer_phone or "",
            order_value=float(order.total),
            items=[
                DeliveryItem(name=i.name, quantity=i.quantity, price=float(i.unit_price))
                for i in order.items
            ],
            order_id=order.id,
            order_number=order.order_number,
            restaurant_name=restaurant.name,
            restaurant_phone=restaurant.phone or settings.restaurant_phone,
            instructions=dropoff.instructions or None,
        )

    def ensure_dispatchable(self, order: Order, force: bool = False) -> None:
        if not order.is_delivery or not order.delivery_address:
            raise ValidationError("Order is not a delivery order with an address")
        if order.provider_order_id:
            raise ConflictError(
                f"Order already has a driver request ({order.delivery_provider}: {order.provider_order_id})"
            )
        if not force and order.status not in DISPATCHABLE_MANUALLY:
            raise ValidationError(
                f"Order must be confirmed or preparing to dispatch a driver (current: {order.status.value})"
            )

    async def dispatch_driver(
        self,
        order: Order,
        provider: Optional[str] = None,
        changed_by: Optional[str] = None,
    ) -> DeliveryResponse:
        """Ask a provider for a driver and record the outcome on the order.

        Provider failures are returned, never raised: the order moves to
        driver_dispatch_failed and the restaurant is alerted.
        """
        provider = provider or settings.dispatch_provider
        response = await self.delivery.request_driver(self.build_delivery_request(order), provider)

        if response.success:
            order.delivery_provider = response.provider
            order.provider_order_id = response.delivery_id
            order.tracking_url = response.tracking_url
            order.driver_info = response.driver.to_dict() if response.driver else None
            self.apply_status(
                order, OrderStatus.DRIVER_DISPATCHED,
                notes=f"Driver requested via {response.provider}", changed_by=changed_by,
                enforce=False,
            )
            self.db.commit()
            self.db.refresh(order)
            logger.info(
                f"Driver dispatched for order {order.order_number} via {response.provider} "
                f"({response.delivery_id})"
            )
            await self.notify(order, NotificationKind.DRIVER_DISPATCHED)
        else:
            order.delivery_provider = response.provider
            self.apply_status(
                order, OrderStatus.DRIVER_DISPATCH_FAILED,
                notes=f"Driver dispatch via {response.provider} failed: {response.error}",
                changed_by=changed_by,
                enforce=False,
            )
            self.db.commit()
            self.db.refresh(order)
            alert_manager.alert(
                "warning",
                "Driver dispatch failed",
                f"Order {order.order_number} via {response.provider}: {response.error}",
                source="dispatch",
                restaurant_id=order.restaurant_id,
                order_id=order.id,
            )
            await self.notify(order, NotificationKind.DRIVER_DISPATCH_FAILED, error=response.error)
        return response

    def should_dispatch_at_checkout(self, order: Order) -> bool:
        return (
            order.is_delivery
            and bool(order.delivery_address)
            and (order.payment_method or "").lower() in settings.instant_dispatch_payment_methods
            and order.status in DISPATCHABLE_AT_CHECKOUT
            and not order.provider_order_id
        )

    async def run_order_side_effects(self, order: Order) -> SideEffectReport:
        """New-order notification, then driver dispatch for instantly settled delivery orders."""
        report = SideEffectReport(order_id=order.id)
        report.add(await self.notify(order, NotificationKind.NEW_ORDER))

        if not self.should_dispatch_at_checkout(order):
            report.add(SideEffectOutcome("dispatch", success=True, skipped=True))
            return report

        try:
            response = await self.dispatch_driver(order, changed_by="system")
            report.add(SideEffectOutcome("dispatch", success=response.success, detail=response.error))
        except Exception as e:
            self.db.rollback()
            logger.error(f"Dispatch side effect for order {order.id} failed: {e}", exc_info=True)
            report.add(SideEffectOutcome("dispatch", success=False, detail=str(e)))
        return report


async def run_after_create(
    session_factory: sessionmaker,
    order_id: int,
    notifier: Optional[NotificationService] = None,
    delivery: Optional[DeliveryService] = None,
) -> Optional[SideEffectReport]:
    """Background task: side effects of a new order in a fresh session."""
    with session_factory() as db:
        order = db.get(Order, order_id)
        if order is None:
            logger.error(f"Side effects skipped: order {order_id} not found")
            return None
        report = await OrderWorkflow(db, notifier, delivery).run_order_side_effects(order)
    for outcome in report.outcomes:
        if not (outcome.success or outcome.skipped):
            logger.warning(f"Order {order_id} side effect {outcome.name} failed: {outcome.detail}")
    return report


async def run_after_transition(
    session_factory: sessionmaker,
    order_id: int,
    status: OrderStatus,
    notifier: Optional[NotificationService] = None,
) -> Optional[SideEffectOutcome]:
    """Background task: status notification in a fresh session."""
    with session_factory() as db:
        order = db.get(Order, order_id)
        if order is None:
            logger.error(f"Status notification skipped: order {order_id} not found")
            return None
        return await OrderWorkflow(db, notifier).notify_status(order, status)
