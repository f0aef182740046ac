"""Delivery dispatch routes: quotes, driver requests, tracking and cancellation."""

import logging
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Query, Request

from restodesk.api.deps import Delivery, Notifier, RestaurantId
from restodesk.core.errors import ValidationError
from restodesk.core.rate_limit import limiter
from restodesk.db.session import DbSession, SessionFactory
from restodesk.models.order import Order, OrderStatus
from restodesk.schemas.delivery import (
    DeliveryCancelRequest,
    DeliveryDispatchRequest,
    DeliveryQuoteOut,
    DeliveryQuoteRequest,
    DeliveryResponseOut,
    TrackingInfoOut,
    to_address,
)
from restodesk.services.order_service import OrderWorkflow, quote_request, run_after_transition

logger = logging.getLogger(__name__)

router = APIRouter()

# Orders still waiting for or travelling with a driver
CANCELLABLE = (
    OrderStatus.DRIVER_DISPATCHED,
    OrderStatus.DRIVER_ASSIGNED,
    OrderStatus.OUT_FOR_DELIVERY,
)


@router.get("/providers")
@limiter.limit("60/minute")
def list_providers(request: Request, delivery: Delivery):
    return {
        "providers": [
            {"name": p.provider_name, "configured": p.is_configured}
            for p in delivery.registry.all()
        ]
    }


@router.post("/quote")
@limiter.limit("30/minute")
async def get_quotes(
    request: Request,
    data: DeliveryQuoteRequest,
    db: DbSession,
    restaurant_id: RestaurantId,
    delivery: Delivery,
):
    """Quotes from every (or the selected) provider, cheapest first."""
    workflow = OrderWorkflow(db, delivery=delivery)
    if data.order_id is not None:
        order = workflow.get_order(restaurant_id, data.order_id)
        if not order.delivery_address:
            raise ValidationError("Order has no delivery address")
        delivery_request = workflow.build_delivery_request(order)
    else:
        restaurant = workflow.get_restaurant(restaurant_id)
        delivery_request = quote_request(
            restaurant, to_address(data.delivery_address), float(data.order_value)
        )

    quotes = await delivery.get_quotes(delivery_request, data.providers)
    return {
        "quotes": [DeliveryQuoteOut.model_validate(q) for q in quotes],
        "cheapest": DeliveryQuoteOut.model_validate(quotes[0]) if quotes else None,
    }


@router.post("/request")
@limiter.limit("30/minute")
async def request_delivery(
    request: Request,
    data: DeliveryDispatchRequest,
    db: DbSession,
    restaurant_id: RestaurantId,
    notifier: Notifier,
    delivery: Delivery,
):
    """Request a driver for an order; the order records the outcome either way."""
    delivery.registry.get(data.provider)
    workflow = OrderWorkflow(db, notifier, delivery)
    order = workflow.get_order(restaurant_id, data.order_id)
    workflow.ensure_dispatchable(order, force=True)

    response = await workflow.dispatch_driver(order, data.provider, changed_by="staff")
    return {
        "success": response.success,
        "order_id": order.id,
        "order_status": order.status.value,
        "delivery": DeliveryResponseOut.model_validate(response),
    }


@router.get("/track/{delivery_id}", response_model=TrackingInfoOut)
@limiter.limit("60/minute")
async def track_delivery(
    request: Request,
    delivery_id: str,
    delivery: Delivery,
    provider: str = Query("local"),
):
    return await delivery.track_delivery(delivery_id, provider)


@router.post("/cancel/{delivery_id}")
@limiter.limit("30/minute")
async def cancel_delivery(
    request: Request,
    delivery_id: str,
    background_tasks: BackgroundTasks,
    db: DbSession,
    session_factory: SessionFactory,
    restaurant_id: RestaurantId,
    notifier: Notifier,
    delivery: Delivery,
    data: Optional[DeliveryCancelRequest] = None,
):
    """Cancel a courier delivery and the orders travelling with it.

    Customers of the cancelled orders are notified after the response.
    """
    data = data or DeliveryCancelRequest()
    reason = data.reason or "Delivery cancelled"
    cancelled = await delivery.cancel_delivery(delivery_id, data.provider, reason)

    updated = []
    if cancelled:
        workflow = OrderWorkflow(db, notifier, delivery)
        orders = db.query(Order).filter(
            Order.restaurant_id == restaurant_id,
            Order.provider_order_id == delivery_id,
            Order.status.in_(CANCELLABLE),
        ).all()
        for order in orders:
            # The courier side is already cancelled; the order has to follow
            changed = workflow.transition_status(
                order, OrderStatus.CANCELLED, notes=reason, changed_by=data.provider, enforce=False,
            )
            if changed:
                background_tasks.add_task(
                    run_after_transition, session_factory, order.id, OrderStatus.CANCELLED, notifier
                )
            updated.append(order.id)
        logger.info(f"Delivery {delivery_id} cancelled via {data.provider}; orders {updated}")

    return {
        "success": cancelled,
        "delivery_id": delivery_id,
        "provider": data.provider,
        "cancelled_orders": updated,
    }
