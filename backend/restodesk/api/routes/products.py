"""Product routes."""

from typing import Optional

from fastapi import APIRouter, Query, Request, status

from restodesk.api.deps import RestaurantId
from restodesk.core.cache import menu_cache
from restodesk.core.errors import NotFoundError
from restodesk.core.rate_limit import limiter
from restodesk.core.responses import list_response, paginated_response
from restodesk.db.session import DbSession
from restodesk.models.product import Category, Product
from restodesk.models.stock import MovementType
from restodesk.schemas.product import (
    MinimumStockUpdate,
    ProductCreate,
    ProductResponse,
    ProductUpdate,
    StockLevelUpdate,
)
from restodesk.services.stock_service import StockService

router = APIRouter()


def _check_category(db, restaurant_id: int, category_id: Optional[int]):
    if category_id is None:
        return
    exists = db.query(Category.id).filter(
        Category.id == category_id, Category.restaurant_id == restaurant_id
    ).first()
    if not exists:
        raise NotFoundError(f"Category {category_id} not found")


@router.get("/")
@limiter.limit("60/minute")
def list_products(
    request: Request,
    db: DbSession,
    restaurant_id: RestaurantId,
    category_id: Optional[int] = Query(None, description="Filter by category"),
    active_only: bool = Query(True, description="Only show active products"),
    search: Optional[str] = Query(None, description="Search by name"),
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=500),
):
    """List products with optional filters and pagination."""
    query = db.query(Product).filter(Product.restaurant_id == restaurant_id)
    if active_only:
        query = query.filter(Product.is_active == True)  # noqa: E712
    if category_id:
        query = query.filter(Product.category_id == category_id)
    if search:
        query = query.filter(Product.name.ilike(f"%{search}%"))

    total = query.count()
    products = query.order_by(Product.display_order, Product.name).offset(skip).limit(limit).all()
    return paginated_response([ProductResponse.model_validate(p) for p in products], total, skip, limit)


@router.get("/low-stock")
@limiter.limit("60/minute")
def list_low_stock(request: Request, db: DbSession, restaurant_id: RestaurantId):
    """Active products at or below their minimum stock."""
    products = StockService(db).low_stock_products(restaurant_id)
    return list_response([ProductResponse.model_validate(p) for p in products])


@router.get("/{product_id}", response_model=ProductResponse)
@limiter.limit("60/minute")
def get_product(request: Request, product_id: int, db: DbSession, restaurant_id: RestaurantId):
    return StockService(db).get_product(restaurant_id, product_id)


@router.post("/", response_model=ProductResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit("30/minute")
def create_product(request: Request, data: ProductCreate, db: DbSession, restaurant_id: RestaurantId):
    """Create a product; opening stock is booked as a stock entry."""
    _check_category(db, restaurant_id, data.category_id)
    opening_stock = data.stock
    product = Product(restaurant_id=restaurant_id, stock=0, **data.model_dump(exclude={"stock"}))
    db.add(product)
    db.commit()
    db.refresh(product)

    if opening_stock:
        StockService(db).record_movement(
            restaurant_id, product.id, MovementType.ENTRY, opening_stock, reason="Opening stock",
        )
        db.refresh(product)
    menu_cache.invalidate(restaurant_id)
    return product


@router.put("/{product_id}", response_model=ProductResponse)
@limiter.limit("30/minute")
def update_product(
    request: Request, product_id: int, data: ProductUpdate, db: DbSession, restaurant_id: RestaurantId
):
    product = StockService(db).get_product(restaurant_id, product_id)
    update_data = data.model_dump(exclude_unset=True)
    if "category_id" in update_data:
        _check_category(db, restaurant_id, update_data["category_id"])
    for field, value in update_data.items():
        setattr(product, field, value)
    db.commit()
    db.refresh(product)
    menu_cache.invalidate(restaurant_id)
    return product


@router.delete("/{product_id}")
@limiter.limit("30/minute")
def delete_product(request: Request, product_id: int, db: DbSession, restaurant_id: RestaurantId):
    """Deactivate a product. Order history keeps referencing it."""
    product = StockService(db).get_product(restaurant_id, product_id)
    product.is_active = False
    product.is_available = False
    db.commit()
    menu_cache.invalidate(restaurant_id)
    return {"success": True, "id": product_id}


@router.put("/{product_id}/stock", response_model=ProductResponse)
@limiter.limit("30/minute")
def set_product_stock(
    request: Request, product_id: int, data: StockLevelUpdate, db: DbSession, restaurant_id: RestaurantId
):
    """Set the absolute stock level, recorded as an adjustment."""
    service = StockService(db)
    service.record_movement(
        restaurant_id, product_id, MovementType.ADJUSTMENT, data.stock,
        reason=data.reason or "Manual stock update",
    )
    return service.get_product(restaurant_id, product_id)


@router.put("/{product_id}/minimum-stock", response_model=ProductResponse)
@limiter.limit("30/minute")
def set_minimum_stock(
    request: Request, product_id: int, data: MinimumStockUpdate, db: DbSession, restaurant_id: RestaurantId
):
    product = StockService(db).get_product(restaurant_id, product_id)
    product.minimum_stock = data.minimum_stock
    db.commit()
    db.refresh(product)
    return product
