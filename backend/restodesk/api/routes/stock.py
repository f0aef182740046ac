"""Stock ledger routes: manual movements, batches and production."""

from typing import Optional

from fastapi import APIRouter, Query, Request, status

from restodesk.api.deps import RestaurantId
from restodesk.core.rate_limit import limiter
from restodesk.core.responses import list_response
from restodesk.db.session import DbSession
from restodesk.schemas.stock import (
    ProductionCreate,
    ProductionResponse,
    StockBatchCreate,
    StockBatchResponse,
    StockMovementCreate,
    StockMovementResponse,
)
from restodesk.services.stock_service import StockService

router = APIRouter()


@router.get("/movements")
@limiter.limit("60/minute")
def list_movements(
    request: Request,
    db: DbSession,
    restaurant_id: RestaurantId,
    product_id: Optional[int] = Query(None),
    limit: int = Query(100, ge=1, le=500),
):
    movements = StockService(db).list_movements(restaurant_id, product_id, limit)
    return list_response([StockMovementResponse.model_validate(m) for m in movements])


@router.post("/movements", response_model=StockMovementResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit("30/minute")
def create_movement(request: Request, data: StockMovementCreate, db: DbSession, restaurant_id: RestaurantId):
    """Book an entry, an exit or an absolute adjustment."""
    return StockService(db).record_movement(
        restaurant_id, data.product_id, data.movement_type, data.quantity,
        reason=data.reason, reference=data.reference,
    )


@router.get("/batches")
@limiter.limit("60/minute")
def list_batches(
    request: Request,
    db: DbSession,
    restaurant_id: RestaurantId,
    product_id: Optional[int] = Query(None),
):
    batches = StockService(db).list_batches(restaurant_id, product_id)
    return list_response([StockBatchResponse.model_validate(b) for b in batches])


@router.post("/batches", response_model=StockBatchResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit("30/minute")
def receive_batch(request: Request, data: StockBatchCreate, db: DbSession, restaurant_id: RestaurantId):
    return StockService(db).receive_batch(restaurant_id, **data.model_dump())


@router.get("/production")
@limiter.limit("60/minute")
def list_production(
    request: Request,
    db: DbSession,
    restaurant_id: RestaurantId,
    product_id: Optional[int] = Query(None),
):
    records = StockService(db).list_production(restaurant_id, product_id)
    return list_response([ProductionResponse.model_validate(r) for r in records])


@router.post("/production", response_model=ProductionResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit("30/minute")
def record_production(request: Request, data: ProductionCreate, db: DbSession, restaurant_id: RestaurantId):
    return StockService(db).record_production(restaurant_id, **data.model_dump())
