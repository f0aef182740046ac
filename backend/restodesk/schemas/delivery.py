"""Delivery dispatch schemas."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, model_validator

from restodesk.schemas.order import DeliveryAddressIn
from restodesk.services.delivery import Address


def to_address(data: Optional[DeliveryAddressIn]) -> Address:
    return Address.from_dict(data.model_dump(exclude_none=True) if data else None)


class DeliveryQuoteRequest(BaseModel):
    """Quote either for a stored order or for an ad-hoc address and value."""

    order_id: Optional[int] = None
    delivery_address: Optional[DeliveryAddressIn] = None
    order_value: Optional[Decimal] = Field(default=None, ge=0)
    providers: Optional[List[str]] = None

    @model_validator(mode="after")
    def check_target(self):
        if self.order_id is None and (self.delivery_address is None or self.order_value is None):
            raise ValueError("Provide order_id, or delivery_address and order_value")
        return self


class DeliveryDispatchRequest(BaseModel):
    order_id: int
    provider: str = "local"


class DeliveryCancelRequest(BaseModel):
    provider: str = "local"
    reason: Optional[str] = Field(default=None, max_length=500)


class CourierQuoteRequest(BaseModel):
    delivery_address: DeliveryAddressIn
    order_value: Decimal = Field(..., ge=0)
    provider: Optional[str] = None


class DriverOut(BaseModel):
    name: str
    phone: str
    vehicle: str = ""
    plate: str = ""
    photo_url: Optional[str] = None
    rating: Optional[float] = None

    model_config = {"from_attributes": True}


class DeliveryQuoteOut(BaseModel):
    provider: str
    price: float
    currency: str
    estimated_minutes: int
    distance_km: float
    quote_id: Optional[str] = None
    vehicle_type: Optional[str] = None
    expires_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class DeliveryResponseOut(BaseModel):
    success: bool
    provider: str
    delivery_id: Optional[str] = None
    tracking_url: Optional[str] = None
    driver: Optional[DriverOut] = None
    estimated_pickup_at: Optional[datetime] = None
    estimated_delivery_at: Optional[datetime] = None
    price: Optional[float] = None
    error: Optional[str] = None

    model_config = {"from_attributes": True}


class TrackingInfoOut(BaseModel):
    success: bool
    provider: str
    delivery_id: str
    status: Optional[str] = None
    driver: Optional[DriverOut] = None
    driver_location: Optional[Dict[str, float]] = None
    estimated_arrival: Optional[datetime] = None
    progress: Optional[int] = None
    tracking_url: Optional[str] = None
    error: Optional[str] = None

    model_config = {"from_attributes": True}


class CourierQuoteOut(BaseModel):
    provider: str
    price: float
    currency: str
    estimated_minutes: int
    distance_km: Optional[float] = None
    vehicle_type: str
    is_fallback: bool = False
    error: Optional[str] = None
