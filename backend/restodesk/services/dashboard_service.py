"""Daily sales dashboard for the back office.

Days are UTC calendar days. Cancelled and refunded orders are counted by
status but left out of revenue, the average ticket and product sales.
"""

from collections import defaultdict
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from sqlalchemy.orm import Session

from restodesk.core.errors import NotFoundError
from restodesk.db.base import as_utc, utcnow
from restodesk.models.order import Order, OrderItem, OrderStatus
from restodesk.models.restaurant import Restaurant

NOT_REVENUE = frozenset({OrderStatus.CANCELLED, OrderStatus.REFUNDED})
ACTIVE_CUSTOMER_DAYS = 30
RECENT_ORDERS = 10
POPULAR_PRODUCTS = 10


def day_bounds(day: date) -> Tuple[datetime, datetime]:
    start = datetime.combine(day, time.min, tzinfo=timezone.utc)
    return start, start + timedelta(days=1)


def customer_key(phone: Optional[str], email: Optional[str], name: Optional[str]) -> str:
    """Orders carry a customer snapshot; phone, then email, then name identify a customer."""
    if phone:
        return f"phone:{phone.strip()}"
    if email:
        return f"email:{email.strip().lower()}"
    return f"name:{(name or '').strip().lower()}"


def percent_change(current: Decimal, previous: Decimal) -> float:
    if not previous:
        return 0.0
    return round(float((current - previous) / previous * 100), 1)


class DashboardService:
    def __init__(self, db: Session):
        self.db = db

    def _orders_between(self, restaurant_id: int, start: datetime, end: datetime) -> List[Order]:
        return self.db.query(Order).filter(
            Order.restaurant_id == restaurant_id,
            Order.created_at >= start,
            Order.created_at < end,
        ).all()

    def _customers(self, restaurant_id: int, start: Optional[datetime], end: datetime) -> Set[str]:
        query = self.db.query(Order.customer_phone, Order.customer_email, Order.customer_name).filter(
            Order.restaurant_id == restaurant_id,
            Order.created_at < end,
        )
        if start is not None:
            query = query.filter(Order.created_at >= start)
        return {customer_key(*row) for row in query.distinct().all()}

    @staticmethod
    def _revenue(orders: Iterable[Order]) -> Decimal:
        return sum((o.total for o in orders if o.status not in NOT_REVENUE), Decimal("0"))

    def _popular_products(self, order_ids: List[int]) -> List[Dict[str, Any]]:
        if not order_ids:
            return []
        items = self.db.query(OrderItem).filter(
            OrderItem.order_id.in_(order_ids),
            OrderItem.product_id.isnot(None),
        ).all()

        sales: Dict[int, Dict[str, Any]] = defaultdict(lambda: {"sold": 0, "revenue": Decimal("0")})
        for item in items:
            entry = sales[item.product_id]
            entry["name"] = item.name
            entry["sold"] += item.quantity
            entry["revenue"] += item.line_total

        ranked = sorted(sales.items(), key=lambda kv: (-kv[1]["sold"], -kv[1]["revenue"], kv[1]["name"]))
        return [
            {
                "product_id": product_id,
                "name": entry["name"],
                "sold": entry["sold"],
                "revenue": float(entry["revenue"]),
            }
            for product_id, entry in ranked[:POPULAR_PRODUCTS]
        ]

    def _recent_orders(self, restaurant_id: int, end: datetime) -> List[Dict[str, Any]]:
        orders = (
            self.db.query(Order)
            .filter(Order.restaurant_id == restaurant_id, Order.created_at < end)
            .order_by(Order.created_at.desc(), Order.id.desc())
            .limit(RECENT_ORDERS)
            .all()
        )
        return [
            {
                "id": o.id,
                "order_number": o.order_number,
                "customer_name": o.customer_name,
                "status": o.status.value,
                "type": o.type.value,
                "total": float(o.total),
                "created_at": as_utc(o.created_at).isoformat(),
            }
            for o in orders
        ]

    def get_dashboard(self, restaurant_id: int, day: Optional[date] = None) -> Dict[str, Any]:
        """Sales figures for ``day`` (default: today), compared with the day before."""
        restaurant = self.db.query(Restaurant).filter(Restaurant.id == restaurant_id).first()
        if not restaurant:
            raise NotFoundError(f"Restaurant {restaurant_id} not found")

        day = day or utcnow().date()
        start, end = day_bounds(day)
        orders = self._orders_between(restaurant_id, start, end)
        previous = self._orders_between(restaurant_id, start - timedelta(days=1), start)

        revenue = self._revenue(orders)
        previous_revenue = self._revenue(previous)
        paying = [o for o in orders if o.status not in NOT_REVENUE]
        avg_ticket = (revenue / len(paying)) if paying else Decimal("0")

        by_status = {s.value: 0 for s in OrderStatus}
        for order in orders:
            by_status[order.status.value] += 1

        todays_customers = {customer_key(o.customer_phone, o.customer_email, o.customer_name) for o in orders}
        returning = self._customers(restaurant_id, None, start)
        active = self._customers(restaurant_id, end - timedelta(days=ACTIVE_CUSTOMER_DAYS), end)

        return {
            "date": day.isoformat(),
            "restaurant_id": restaurant_id,
            "stats": {
                "revenue": float(revenue),
                "orders": len(orders),
                "avg_ticket": round(float(avg_ticket), 2),
                "active_customers": len(active),
                "new_customers": len(todays_customers - returning),
                "revenue_change": percent_change(revenue, previous_revenue),
                "orders_change": percent_change(Decimal(len(orders)), Decimal(len(previous))),
            },
            "orders_by_status": by_status,
            "recent_orders": self._recent_orders(restaurant_id, end),
            "popular_products": self._popular_products([o.id for o in paying]),
        }
