"""Delivery dispatch: providers, geocoding and the adapter boundary."""

from restodesk.services.delivery.base import (
    Address,
    DeliveryDriver,
    DeliveryItem,
    DeliveryProvider,
    DeliveryProviderError,
    DeliveryQuote,
    DeliveryRequest,
    DeliveryResponse,
    TrackingInfo,
)
from restodesk.services.delivery.service import (
    DeliveryService,
    ProviderRegistry,
    build_default_registry,
    delivery_service,
    get_delivery_service,
)

__all__ = [
    "Address",
    "DeliveryDriver",
    "DeliveryItem",
    "DeliveryProvider",
    "DeliveryProviderError",
    "DeliveryQuote",
    "DeliveryRequest",
    "DeliveryResponse",
    "DeliveryService",
    "ProviderRegistry",
    "TrackingInfo",
    "build_default_registry",
    "delivery_service",
    "get_delivery_service",
]
