"""SQLAlchemy models."""

from restodesk.models.restaurant import Restaurant
from restodesk.models.product import Category, Product
from restodesk.models.combo import Combo, ComboItem
from restodesk.models.order import (
    ALLOWED_TRANSITIONS,
    Order,
    OrderItem,
    OrderStatus,
    OrderStatusHistory,
    OrderType,
    PaymentStatus,
)
from restodesk.models.stock import MovementType, ProductionRecord, StockBatch, StockMovement
from restodesk.models.webhook import WebhookEvent

__all__ = [
    "ALLOWED_TRANSITIONS",
    "Category",
    "Combo",
    "ComboItem",
    "MovementType",
    "Order",
    "OrderItem",
    "OrderStatus",
    "OrderStatusHistory",
    "OrderType",
    "PaymentStatus",
    "Product",
    "ProductionRecord",
    "Restaurant",
    "StockBatch",
    "StockMovement",
    "WebhookEvent",
]
