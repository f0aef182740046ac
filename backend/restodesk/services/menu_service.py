"""Public menu: active categories with their available products, plus combos."""

import logging
from typing import Any, Dict

from sqlalchemy.orm import Session, selectinload

from restodesk.core.cache import menu_cache
from restodesk.core.config import settings
from restodesk.core.errors import NotFoundError
from restodesk.models.combo import Combo, ComboItem
from restodesk.models.product import Category, Product
from restodesk.models.restaurant import Restaurant
from restodesk.schemas.combo import ComboResponse
from restodesk.schemas.product import ProductResponse

logger = logging.getLogger(__name__)


class MenuService:
    def __init__(self, db: Session):
        self.db = db

    def build_menu(self, restaurant_id: int) -> Dict[str, Any]:
        restaurant = self.db.query(Restaurant).filter(Restaurant.id == restaurant_id).first()
        if not restaurant:
            raise NotFoundError(f"Restaurant {restaurant_id} not found")

        categories = (
            self.db.query(Category)
            .filter(Category.restaurant_id == restaurant_id, Category.is_active == True)  # noqa: E712
            .order_by(Category.display_order, Category.name)
            .all()
        )
        products = (
            self.db.query(Product)
            .filter(
                Product.restaurant_id == restaurant_id,
                Product.is_active == True,  # noqa: E712
                Product.is_available == True,  # noqa: E712
            )
            .order_by(Product.display_order, Product.name)
            .all()
        )
        combos = (
            self.db.query(Combo)
            .options(selectinload(Combo.items).selectinload(ComboItem.product))
            .filter(Combo.restaurant_id == restaurant_id, Combo.is_active == True)  # noqa: E712
            .order_by(Combo.name)
            .all()
        )

        by_category: Dict[Any, list] = {}
        for product in products:
            by_category.setdefault(product.category_id, []).append(
                ProductResponse.model_validate(product).model_dump(mode="json")
            )

        sections = [
            {
                "id": category.id,
                "name": category.name,
                "description": category.description,
                "products": by_category.get(category.id, []),
            }
            for category in categories
        ]
        uncategorized = by_category.get(None)
        if uncategorized:
            sections.append({"id": None, "name": "Outros", "description": None, "products": uncategorized})

        return {
            "restaurant": {
                "id": restaurant.id,
                "name": restaurant.name,
                "phone": restaurant.phone,
                "delivery_fee": str(restaurant.delivery_fee),
                "minimum_order": str(restaurant.minimum_order),
                "delivery_enabled": restaurant.delivery_enabled,
            },
            "currency": settings.currency,
            "categories": sections,
            "combos": [ComboResponse.model_validate(c).model_dump(mode="json") for c in combos],
        }

    def get_menu(self, restaurant_id: int) -> Dict[str, Any]:
        """Cached menu; catalogue, stock and order writes invalidate it."""
        cached = menu_cache.get(restaurant_id)
        if cached is not None:
            return cached
        menu = self.build_menu(restaurant_id)
        menu_cache.set(restaurant_id, menu, settings.menu_cache_ttl_seconds)
        logger.debug(f"Menu built for restaurant {restaurant_id}")
        return menu
