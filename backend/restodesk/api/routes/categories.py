"""Category routes."""

from fastapi import APIRouter, Query, Request, status

from restodesk.api.deps import RestaurantId
from restodesk.core.cache import menu_cache
from restodesk.core.errors import NotFoundError
from restodesk.core.rate_limit import limiter
from restodesk.core.responses import list_response
from restodesk.db.session import DbSession
from restodesk.models.product import Category
from restodesk.schemas.product import CategoryCreate, CategoryResponse, CategoryUpdate

router = APIRouter()


def _get_category(db, restaurant_id: int, category_id: int) -> Category:
    category = db.query(Category).filter(
        Category.id == category_id, Category.restaurant_id == restaurant_id
    ).first()
    if not category:
        raise NotFoundError(f"Category {category_id} not found")
    return category


@router.get("/")
@limiter.limit("60/minute")
def list_categories(
    request: Request,
    db: DbSession,
    restaurant_id: RestaurantId,
    active_only: bool = Query(False),
):
    query = db.query(Category).filter(Category.restaurant_id == restaurant_id)
    if active_only:
        query = query.filter(Category.is_active == True)  # noqa: E712
    categories = query.order_by(Category.display_order, Category.name).all()
    return list_response([CategoryResponse.model_validate(c) for c in categories])


@router.get("/{category_id}", response_model=CategoryResponse)
@limiter.limit("60/minute")
def get_category(request: Request, category_id: int, db: DbSession, restaurant_id: RestaurantId):
    return _get_category(db, restaurant_id, category_id)


@router.post("/", response_model=CategoryResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit("30/minute")
def create_category(request: Request, data: CategoryCreate, db: DbSession, restaurant_id: RestaurantId):
    category = Category(restaurant_id=restaurant_id, **data.model_dump())
    db.add(category)
    db.commit()
    db.refresh(category)
    menu_cache.invalidate(restaurant_id)
    return category


@router.put("/{category_id}", response_model=CategoryResponse)
@limiter.limit("30/minute")
def update_category(
    request: Request, category_id: int, data: CategoryUpdate, db: DbSession, restaurant_id: RestaurantId
):
    category = _get_category(db, restaurant_id, category_id)
    for field, value in data.model_dump(exclude_unset=True).items():
        setattr(category, field, value)
    db.commit()
    db.refresh(category)
    menu_cache.invalidate(restaurant_id)
    return category


@router.delete("/{category_id}")
@limiter.limit("30/minute")
def delete_category(request: Request, category_id: int, db: DbSession, restaurant_id: RestaurantId):
    """Delete a category; its products become uncategorized."""
    category = _get_category(db, restaurant_id, category_id)
    for product in category.products:
        product.category_id = None
    db.delete(category)
    db.commit()
    menu_cache.invalidate(restaurant_id)
    return {"success": True, "id": category_id}
