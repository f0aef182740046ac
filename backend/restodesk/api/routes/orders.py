"""Customer order routes."""

from typing import Any, Dict, Optional

from fastapi import APIRouter, BackgroundTasks, Body, HTTPException, Query, Request, status
from fastapi.exceptions import RequestValidationError
from pydantic import ValidationError as PydanticValidationError

from restodesk.api.deps import Delivery, Notifier, RestaurantId
from restodesk.core.config import settings
from restodesk.core.errors import ValidationError
from restodesk.core.rate_limit import limiter
from restodesk.core.responses import paginated_response
from restodesk.db.session import DbSession, SessionFactory
from restodesk.models.order import OrderStatus
from restodesk.schemas.delivery import (
    CourierQuoteOut,
    CourierQuoteRequest,
    DeliveryResponseOut,
    TrackingInfoOut,
    to_address,
)
from restodesk.schemas.order import (
    CheckoutOrderCreate,
    DirectOrderCreate,
    DispatchDriverRequest,
    OrderDetailResponse,
    OrderResponse,
    OrderStatusUpdate,
    StatusHistoryResponse,
    is_direct_shape,
)
from restodesk.services.delivery.lalamove import select_vehicle_type
from restodesk.services.order_service import (
    OrderWorkflow,
    quote_request,
    run_after_create,
    run_after_transition,
)

router = APIRouter()


@router.post("/", response_model=OrderResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit("30/minute")
async def create_order(
    request: Request,
    background_tasks: BackgroundTasks,
    db: DbSession,
    session_factory: SessionFactory,
    restaurant_id: RestaurantId,
    notifier: Notifier,
    delivery: Delivery,
    body: Dict[str, Any] = Body(...),
):
    """Place an order.

    Accepts the storefront checkout body or the flat direct body (detected by
    ``order_number`` + ``customer_name``). Notifications and instant driver
    dispatch run after the response is sent.
    """
    model = DirectOrderCreate if is_direct_shape(body) else CheckoutOrderCreate
    try:
        payload = model.model_validate(body)
    except PydanticValidationError as e:
        raise RequestValidationError(e.errors(include_url=False))

    workflow = OrderWorkflow(db, notifier, delivery)
    order = workflow.create_order(restaurant_id, payload.to_draft())
    background_tasks.add_task(run_after_create, session_factory, order.id, notifier, delivery)
    return order


@router.get("/")
@limiter.limit("60/minute")
def list_orders(
    request: Request,
    db: DbSession,
    restaurant_id: RestaurantId,
    status_filter: Optional[str] = Query(None, alias="status", description="Filter by status"),
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=500),
):
    """List orders, newest first."""
    order_status = None
    if status_filter:
        try:
            order_status = OrderStatus.parse(status_filter)
        except ValueError as e:
            raise ValidationError(str(e))

    orders, total = OrderWorkflow(db).list_orders(restaurant_id, order_status, skip, limit)
    items = [OrderResponse.model_validate(o) for o in orders]
    return paginated_response(items, total, skip, limit)


@router.get("/delivery-quote")
@limiter.limit("60/minute")
def delivery_options(request: Request, db: DbSession, restaurant_id: RestaurantId):
    """Delivery zones, vehicle classes and service types offered by the restaurant."""
    restaurant = OrderWorkflow(db).get_restaurant(restaurant_id)
    return {
        "delivery_zones": [
            {
                "name": "Zona Central",
                "radius_km": float(restaurant.delivery_radius_km),
                "base_fee": float(restaurant.delivery_fee),
                "minimum_order": float(restaurant.minimum_order),
                "estimated_time": "25-35 minutos",
            },
            {
                "name": "Zona Estendida",
                "radius_km": float(restaurant.delivery_radius_km) + 5,
                "base_fee": float(restaurant.delivery_fee) + 3,
                "minimum_order": float(restaurant.minimum_order) + 10,
                "estimated_time": "35-45 minutos",
            },
        ],
        "vehicle_types": [
            {"type": "MOTORCYCLE", "name": "Moto", "max_order_value": settings.vehicle_motorcycle_max_value},
            {"type": "CAR", "name": "Carro", "max_order_value": settings.vehicle_car_max_value},
            {"type": "VAN", "name": "Van", "max_order_value": None},
        ],
        "service_types": [
            {"type": "INSTANT", "name": "Entrega Imediata"},
            {"type": "SCHEDULED", "name": "Entrega Agendada"},
        ],
        "restaurant": {
            "name": restaurant.name,
            "address": restaurant.address_line,
            "phone": restaurant.phone,
            "delivery_enabled": restaurant.delivery_enabled,
            "minimum_order": float(restaurant.minimum_order),
            "delivery_fee": float(restaurant.delivery_fee),
        },
    }


@router.post("/delivery-quote", response_model=CourierQuoteOut)
@limiter.limit("30/minute")
async def quote_delivery(
    request: Request,
    data: CourierQuoteRequest,
    db: DbSession,
    restaurant_id: RestaurantId,
    delivery: Delivery,
):
    """Courier price for an address; falls back to the configured flat fee."""
    restaurant = OrderWorkflow(db).get_restaurant(restaurant_id)
    provider = data.provider or ("lalamove" if settings.lalamove_configured else settings.dispatch_provider)
    quotes = await delivery.get_quotes(
        quote_request(restaurant, to_address(data.delivery_address), float(data.order_value)),
        [provider],
    )
    if quotes:
        quote = quotes[0]
        return CourierQuoteOut(
            provider=quote.provider,
            price=quote.price,
            currency=quote.currency,
            estimated_minutes=quote.estimated_minutes,
            distance_km=quote.distance_km,
            vehicle_type=quote.vehicle_type or select_vehicle_type(float(data.order_value)),
        )
    return CourierQuoteOut(
        provider=provider,
        price=settings.fallback_delivery_fee,
        currency=settings.currency,
        estimated_minutes=settings.fallback_delivery_minutes,
        vehicle_type=select_vehicle_type(float(data.order_value)),
        is_fallback=True,
        error="Delivery provider unavailable, using the standard fee",
    )


@router.get("/{order_id}", response_model=OrderDetailResponse)
@limiter.limit("60/minute")
def get_order(request: Request, order_id: int, db: DbSession, restaurant_id: RestaurantId):
    return OrderWorkflow(db).get_order(restaurant_id, order_id)


@router.patch("/{order_id}/status", response_model=OrderDetailResponse)
@limiter.limit("30/minute")
def update_order_status(
    request: Request,
    order_id: int,
    data: OrderStatusUpdate,
    background_tasks: BackgroundTasks,
    db: DbSession,
    session_factory: SessionFactory,
    restaurant_id: RestaurantId,
    notifier: Notifier,
    delivery: Delivery,
):
    """Move an order to a new status; the customer is notified afterwards."""
    workflow = OrderWorkflow(db, notifier, delivery)
    order = workflow.get_order(restaurant_id, order_id)
    changed = workflow.transition_status(order, data.status, notes=data.notes, changed_by=data.changed_by)
    if changed:
        background_tasks.add_task(run_after_transition, session_factory, order.id, order.status, notifier)
    return order


@router.get("/{order_id}/status")
@limiter.limit("60/minute")
def get_order_status(request: Request, order_id: int, db: DbSession, restaurant_id: RestaurantId):
    workflow = OrderWorkflow(db)
    order = workflow.get_order(restaurant_id, order_id)
    return {
        "order_id": order.id,
        "order_number": order.order_number,
        "status": order.status.value,
        "history": [StatusHistoryResponse.model_validate(h) for h in workflow.get_history(order)],
    }


@router.post("/{order_id}/dispatch-driver")
@limiter.limit("30/minute")
async def dispatch_driver(
    request: Request,
    order_id: int,
    db: DbSession,
    restaurant_id: RestaurantId,
    notifier: Notifier,
    delivery: Delivery,
    data: Optional[DispatchDriverRequest] = None,
):
    """Request a driver for a delivery order."""
    data = data or DispatchDriverRequest()
    workflow = OrderWorkflow(db, notifier, delivery)
    order = workflow.get_order(restaurant_id, order_id)
    workflow.ensure_dispatchable(order, force=data.force_dispatch)
    provider = data.provider or settings.dispatch_provider
    delivery.registry.get(provider)

    response = await workflow.dispatch_driver(order, provider, changed_by="staff")
    if not response.success:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail={
                "message": "Driver dispatch failed",
                "provider": response.provider,
                "error": response.error,
                "order_status": order.status.value,
            },
        )
    return {
        "success": True,
        "order": OrderResponse.model_validate(order),
        "delivery": DeliveryResponseOut.model_validate(response),
    }


@router.get("/{order_id}/dispatch-driver")
@limiter.limit("60/minute")
async def get_dispatch_status(
    request: Request,
    order_id: int,
    db: DbSession,
    restaurant_id: RestaurantId,
    delivery: Delivery,
):
    """The order with its current courier tracking, when a driver was requested."""
    order = OrderWorkflow(db).get_order(restaurant_id, order_id)
    tracking = None
    error = None
    if order.provider_order_id and order.delivery_provider:
        info = await delivery.track_delivery(order.provider_order_id, order.delivery_provider)
        if info.success:
            tracking = TrackingInfoOut.model_validate(info)
        else:
            error = info.error
    else:
        error = "No driver has been requested for this order"
    return {
        "order": OrderResponse.model_validate(order),
        "tracking": tracking,
        "error": error,
    }
