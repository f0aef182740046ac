"""Public menu route."""

from fastapi import APIRouter, Request

from restodesk.api.deps import RestaurantId
from restodesk.core.rate_limit import limiter
from restodesk.db.session import DbSession
from restodesk.services.menu_service import MenuService

router = APIRouter()


@router.get("/menu")
@limiter.limit("60/minute")
def get_menu(request: Request, db: DbSession, restaurant_id: RestaurantId):
    """Active categories with available products, and active combos."""
    return MenuService(db).get_menu(restaurant_id)
