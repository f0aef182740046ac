"""Combo routes."""

from typing import List

from fastapi import APIRouter, Query, Request, status
from sqlalchemy.orm import selectinload

from restodesk.api.deps import RestaurantId
from restodesk.core.cache import menu_cache
from restodesk.core.errors import NotFoundError
from restodesk.core.rate_limit import limiter
from restodesk.core.responses import list_response
from restodesk.db.session import DbSession
from restodesk.models.combo import Combo, ComboItem
from restodesk.models.product import Product
from restodesk.schemas.combo import ComboCreate, ComboItemIn, ComboResponse, ComboUpdate

router = APIRouter()


def _get_combo(db, restaurant_id: int, combo_id: int) -> Combo:
    combo = db.query(Combo).filter(Combo.id == combo_id, Combo.restaurant_id == restaurant_id).first()
    if not combo:
        raise NotFoundError(f"Combo {combo_id} not found")
    return combo


def _build_items(db, restaurant_id: int, items: List[ComboItemIn]) -> List[ComboItem]:
    built = []
    for item in items:
        product = db.query(Product).filter(
            Product.id == item.product_id, Product.restaurant_id == restaurant_id
        ).first()
        if not product:
            raise NotFoundError(f"Product {item.product_id} not found")
        built.append(ComboItem(product=product, **item.model_dump()))
    return built


@router.get("/")
@limiter.limit("60/minute")
def list_combos(
    request: Request,
    db: DbSession,
    restaurant_id: RestaurantId,
    active_only: bool = Query(False),
):
    query = (
        db.query(Combo)
        .options(selectinload(Combo.items).selectinload(ComboItem.product))
        .filter(Combo.restaurant_id == restaurant_id)
    )
    if active_only:
        query = query.filter(Combo.is_active == True)  # noqa: E712
    return list_response([ComboResponse.model_validate(c) for c in query.order_by(Combo.name).all()])


@router.get("/{combo_id}", response_model=ComboResponse)
@limiter.limit("60/minute")
def get_combo(request: Request, combo_id: int, db: DbSession, restaurant_id: RestaurantId):
    return _get_combo(db, restaurant_id, combo_id)


@router.post("/", response_model=ComboResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit("30/minute")
def create_combo(request: Request, data: ComboCreate, db: DbSession, restaurant_id: RestaurantId):
    """Create a combo from existing products."""
    combo = Combo(restaurant_id=restaurant_id, **data.model_dump(exclude={"items"}))
    combo.items = _build_items(db, restaurant_id, data.items)
    db.add(combo)
    db.commit()
    db.refresh(combo)
    menu_cache.invalidate(restaurant_id)
    return combo


@router.put("/{combo_id}", response_model=ComboResponse)
@limiter.limit("30/minute")
def update_combo(
    request: Request, combo_id: int, data: ComboUpdate, db: DbSession, restaurant_id: RestaurantId
):
    combo = _get_combo(db, restaurant_id, combo_id)
    update_data = data.model_dump(exclude_unset=True, exclude={"items"})
    for field, value in update_data.items():
        setattr(combo, field, value)
    if data.items is not None:
        combo.items = _build_items(db, restaurant_id, data.items)
    db.commit()
    db.refresh(combo)
    menu_cache.invalidate(restaurant_id)
    return combo


@router.delete("/{combo_id}")
@limiter.limit("30/minute")
def delete_combo(request: Request, combo_id: int, db: DbSession, restaurant_id: RestaurantId):
    """Deactivate a combo. Past orders keep referencing it."""
    combo = _get_combo(db, restaurant_id, combo_id)
    combo.is_active = False
    db.commit()
    menu_cache.invalidate(restaurant_id)
    return {"success": True, "id": combo_id}
