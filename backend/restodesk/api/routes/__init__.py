"""API routes."""

from fastapi import APIRouter

from restodesk.api.routes import (
    categories,
    combos,
    dashboard,
    delivery,
    menu,
    orders,
    products,
    stock,
    webhooks,
)

api_router = APIRouter()

api_router.include_router(menu.router, tags=["menu"])
api_router.include_router(dashboard.router, tags=["dashboard"])
api_router.include_router(orders.router, prefix="/orders", tags=["orders"])
api_router.include_router(delivery.router, prefix="/delivery", tags=["delivery"])
api_router.include_router(webhooks.router, prefix="/webhooks", tags=["webhooks"])
api_router.include_router(products.router, prefix="/products", tags=["products", "stock"])
api_router.include_router(categories.router, prefix="/categories", tags=["categories"])
api_router.include_router(combos.router, prefix="/combos", tags=["combos"])
api_router.include_router(stock.router, prefix="/stock", tags=["stock"])
