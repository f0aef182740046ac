"""Back-office dashboard route."""

from datetime import date
from typing import Optional

from fastapi import APIRouter, Query, Request

from restodesk.api.deps import RestaurantId
from restodesk.core.rate_limit import limiter
from restodesk.db.session import DbSession
from restodesk.services.dashboard_service import DashboardService

router = APIRouter()


@router.get("/dashboard")
@limiter.limit("60/minute")
def get_dashboard(
    request: Request,
    db: DbSession,
    restaurant_id: RestaurantId,
    day: Optional[date] = Query(None, alias="date", description="UTC day, YYYY-MM-DD; defaults to today"),
):
    """Revenue, order counts, recent orders and best sellers for one day."""
    return DashboardService(db).get_dashboard(restaurant_id, day)
