"""Courier webhook receiver.

Events are matched to orders by the courier's order id. Every applied event
stores an idempotency key so a replayed delivery is acknowledged without
touching the order again. Notifications go out only after the state change
is committed, and their outcome never changes the acknowledgement.
"""

import hashlib
import logging
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from restodesk.core.alerting import alert_manager
from restodesk.core.errors import InvalidTransitionError
from restodesk.models.order import Order, OrderStatus
from restodesk.models.webhook import WebhookEvent
from restodesk.services.delivery import DeliveryService
from restodesk.services.notification_service import (
    NotificationKind,
    NotificationService,
    get_notification_service,
)
from restodesk.services.order_service import OrderWorkflow

logger = logging.getLogger(__name__)

# Courier order status -> our status
PROVIDER_STATUS_MAP = {
    "PENDING": OrderStatus.DRIVER_DISPATCHED,
    "ASSIGNING_DRIVER": OrderStatus.DRIVER_DISPATCHED,
    "ON_GOING": OrderStatus.OUT_FOR_DELIVERY,
    "COMPLETED": OrderStatus.DELIVERED,
    "CANCELLED": OrderStatus.DELIVERY_FAILED,
}

Notifications = List[Tuple[NotificationKind, Dict[str, Any]]]


def idempotency_key(event_type: str, payload: Dict[str, Any]) -> str:
    """The courier's event id, or a digest of what the event says."""
    if payload.get("event_id"):
        return str(payload["event_id"])
    data = payload.get("data") or {}
    raw = "|".join(str(part or "") for part in (
        event_type,
        data.get("orderId") or data.get("order_id"),
        data.get("status"),
        data.get("driverId") or (data.get("driver") or {}).get("id"),
    ))
    return hashlib.sha256(raw.encode()).hexdigest()


class DeliveryWebhookHandler:
    """Applies courier events to orders."""

    def __init__(
        self,
        db: Session,
        notifier: Optional[NotificationService] = None,
        provider: str = "lalamove",
        delivery: Optional[DeliveryService] = None,
    ):
        self.db = db
        self.provider = provider
        self.notifier = notifier or get_notification_service()
        self.workflow = OrderWorkflow(db, notifier=self.notifier, delivery=delivery)

    def find_order(self, provider_order_id: Optional[str]) -> Optional[Order]:
        if not provider_order_id:
            return None
        return self.db.query(Order).filter(Order.provider_order_id == str(provider_order_id)).first()

    async def handle_webhook(self, event_type: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Handle incoming webhook event."""
        handlers = {
            "order.status_changed": self._handle_status_changed,
            "driver.assigned": self._handle_driver_assigned,
            "order.picked_up": self._handle_picked_up,
            "order.completed": self._handle_completed,
            "order.cancelled": self._handle_cancelled,
        }

        handler = handlers.get(event_type)
        if handler is None:
            logger.info(f"Unhandled {self.provider} webhook event: {event_type}")
            return {"status": "unhandled", "event": event_type}

        data = payload.get("data") or {}
        provider_order_id = data.get("orderId") or data.get("order_id")
        order = self.find_order(provider_order_id)
        if order is None:
            logger.warning(
                f"{self.provider} webhook {event_type}: no order for provider order id {provider_order_id}"
            )
            return {"status": "ignored", "reason": "order not found"}

        key = idempotency_key(event_type, payload)
        seen = self.db.query(WebhookEvent.id).filter(WebhookEvent.idempotency_key == key).first()
        if seen:
            logger.info(f"Duplicate {self.provider} webhook {event_type} for order {order.id} ignored")
            return {"status": "duplicate", "order_id": order.id}

        order_id = order.id
        try:
            notifications = handler(order, data)
        except InvalidTransitionError as e:
            # Acknowledged and stored, so a replay is a duplicate
            self.db.rollback()
            logger.warning(f"{self.provider} webhook {event_type} for order {order_id} not applied: {e}")
            if not self._record_event(key, event_type, provider_order_id, order_id):
                return {"status": "duplicate", "order_id": order_id}
            return {"status": "ignored", "reason": "transition not allowed", "order_id": order_id}
        except Exception:
            self.db.rollback()
            raise

        if notifications is None:
            self.db.rollback()
            return {"status": "ignored", "reason": "unknown status", "order_id": order_id}
        if not self._record_event(key, event_type, provider_order_id, order_id):
            return {"status": "duplicate", "order_id": order_id}

        self.db.refresh(order)
        logger.info(
            f"{self.provider} webhook {event_type} applied to order {order.order_number}: "
            f"status {order.status.value}"
        )

        for kind, extra in notifications:
            await self.workflow.notify(order, kind, **extra)

        return {"status": "processed", "order_id": order.id, "order_status": order.status.value}

    def _record_event(self, key: str, event_type: str, provider_order_id: Any, order_id: int) -> bool:
        """Commit the event with any pending order changes; False if it was already stored."""
        self.db.add(WebhookEvent(
            idempotency_key=key,
            provider=self.provider,
            event=event_type,
            provider_order_id=str(provider_order_id),
            order_id=order_id,
        ))
        try:
            self.db.commit()
        except IntegrityError:
            # Same event committed concurrently
            self.db.rollback()
            return False
        except Exception:
            self.db.rollback()
            raise
        return True

    def _set_status(self, order: Order, status: OrderStatus, notes: str) -> bool:
        return self.workflow.apply_status(order, status, notes=notes, changed_by=self.provider)

    def _handle_status_changed(self, order: Order, data: Dict[str, Any]) -> Optional[Notifications]:
        provider_status = str(data.get("status") or "").upper()
        target = PROVIDER_STATUS_MAP.get(provider_status)
        if target is None:
            logger.warning(f"Unknown {self.provider} status '{data.get('status')}' for order {order.id}")
            return None

        if data.get("driver"):
            order.driver_info = data["driver"]
        changed = self._set_status(order, target, f"{self.provider} status {provider_status}")
        if changed and target == OrderStatus.DELIVERED:
            return [(NotificationKind.DELIVERY_COMPLETED, {})]
        return []

    def _handle_driver_assigned(self, order: Order, data: Dict[str, Any]) -> Notifications:
        driver = data.get("driver")
        if driver:
            order.driver_info = driver
        changed = self._set_status(order, OrderStatus.DRIVER_ASSIGNED, "Driver assigned")
        if not changed:
            return []
        return [(NotificationKind.DRIVER_DISPATCHED, {"driver": driver, "tracking_url": order.tracking_url})]

    def _handle_picked_up(self, order: Order, data: Dict[str, Any]) -> Notifications:
        changed = self._set_status(order, OrderStatus.OUT_FOR_DELIVERY, "Picked up by driver")
        return [(NotificationKind.OUT_FOR_DELIVERY, {})] if changed else []

    def _handle_completed(self, order: Order, data: Dict[str, Any]) -> Notifications:
        changed = self._set_status(order, OrderStatus.DELIVERED, "Delivery completed")
        if not changed:
            return []
        return [(NotificationKind.DELIVERY_COMPLETED, {}), (NotificationKind.THANK_YOU, {})]

    def _handle_cancelled(self, order: Order, data: Dict[str, Any]) -> Notifications:
        reason = data.get("reason")
        changed = self._set_status(
            order, OrderStatus.DELIVERY_FAILED,
            f"Delivery cancelled by {self.provider}: {reason or 'no reason given'}",
        )
        if not changed:
            return []
        order.cancellation_reason = reason
        alert_manager.alert(
            "warning",
            "Delivery cancelled by courier",
            f"Order {order.order_number}: {reason or 'no reason given'}",
            source="webhook",
            restaurant_id=order.restaurant_id,
            order_id=order.id,
        )
        return [
            (NotificationKind.DELIVERY_FAILED, {"reason": reason}),
            (NotificationKind.DELIVERY_FAILED_ALERT, {"reason": reason}),
        ]
