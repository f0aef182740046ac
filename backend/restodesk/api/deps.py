"""Shared route dependencies."""

from typing import Annotated, Optional

from fastapi import Depends, Header, HTTPException, status

from restodesk.core.config import settings
from restodesk.services.delivery import DeliveryService, get_delivery_service
from restodesk.services.notification_service import NotificationService, get_notification_service


def get_restaurant_id(
    x_restaurant_id: Annotated[Optional[str], Header()] = None,
) -> int:
    """Restaurant the request acts on: ``X-Restaurant-Id`` or the configured default."""
    if x_restaurant_id is None or not x_restaurant_id.strip():
        return settings.default_restaurant_id
    try:
        restaurant_id = int(x_restaurant_id)
    except ValueError:
        restaurant_id = 0
    if restaurant_id <= 0:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="X-Restaurant-Id must be a positive integer",
        )
    return restaurant_id


RestaurantId = Annotated[int, Depends(get_restaurant_id)]
Notifier = Annotated[NotificationService, Depends(get_notification_service)]
Delivery = Annotated[DeliveryService, Depends(get_delivery_service)]
