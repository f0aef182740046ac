"""Abstract base class and shared types for delivery providers."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional


class DeliveryProviderError(Exception):
    """Provider-level failure carrying a human-readable message."""

    def __init__(self, provider: str, message: str):
        self.provider = provider
        self.message = message
        super().__init__(f"{provider}: {message}")


@dataclass
class Address:
    street: str = ""
    number: str = ""
    complement: str = ""
    neighborhood: str = ""
    city: str = ""
    state: str = ""
    zip_code: str = ""
    instructions: str = ""
    lat: Optional[float] = None
    lng: Optional[float] = None

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "Address":
        """Build from a stored order address (``address`` or ``street`` key)."""
        data = data or {}
        return cls(
            street=data.get("street") or data.get("address") or "",
            number=str(data.get("number") or ""),
            complement=data.get("complement") or "",
            neighborhood=data.get("neighborhood") or "",
            city=data.get("city") or "",
            state=data.get("state") or "",
            zip_code=data.get("zip_code") or data.get("zipCode") or "",
            instructions=data.get("instructions") or "",
            lat=data.get("lat"),
            lng=data.get("lng"),
        )

    def formatted(self) -> str:
        head = ", ".join(p for p in (self.street, self.number) if p)
        parts = [head, self.neighborhood]
        if self.city:
            parts.append(f"{self.city} - {self.state}" if self.state else self.city)
        return ", ".join(p for p in parts if p)

    @property
    def has_coordinates(self) -> bool:
        return self.lat is not None and self.lng is not None


@dataclass
class DeliveryItem:
    name: str
    quantity: int
    price: float = 0.0


@dataclass
class DeliveryRequest:
    pickup_address: Address
    delivery_address: Address
    customer_name: str
    customer_phone: str
    order_value: float
    items: List[DeliveryItem] = field(default_factory=list)
    order_id: Optional[int] = None
    order_number: Optional[str] = None
    restaurant_name: str = ""
    restaurant_phone: str = ""
    instructions: Optional[str] = None


@dataclass
class DeliveryDriver:
    name: str
    phone: str
    vehicle: str = ""
    plate: str = ""
    photo_url: Optional[str] = None
    rating: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class DeliveryQuote:
    provider: str
    price: float
    estimated_minutes: int
    distance_km: float
    currency: str = "BRL"
    quote_id: Optional[str] = None
    vehicle_type: Optional[str] = None
    expires_at: Optional[datetime] = None


@dataclass
class DeliveryResponse:
    """Outcome of a dispatch request; failures are values, not exceptions."""

    success: bool
    provider: str
    delivery_id: Optional[str] = None
    tracking_url: Optional[str] = None
    driver: Optional[DeliveryDriver] = None
    estimated_pickup_at: Optional[datetime] = None
    estimated_delivery_at: Optional[datetime] = None
    price: Optional[float] = None
    error: Optional[str] = None

    @classmethod
    def failed(cls, provider: str, error: str) -> "DeliveryResponse":
        return cls(success=False, provider=provider, error=error)


@dataclass
class TrackingInfo:
    success: bool
    provider: str
    delivery_id: str
    status: Optional[str] = None
    driver: Optional[DeliveryDriver] = None
    driver_location: Optional[Dict[str, float]] = None
    estimated_arrival: Optional[datetime] = None
    progress: Optional[int] = None  # percent
    tracking_url: Optional[str] = None
    error: Optional[str] = None


class DeliveryProvider(ABC):
    """Base interface for delivery providers."""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Registry key, e.g. 'lalamove' or 'local'."""

    @property
    def is_configured(self) -> bool:
        return True

    @abstractmethod
    async def get_quote(self, request: DeliveryRequest) -> DeliveryQuote:
        """Price and time estimate for a delivery."""

    @abstractmethod
    async def request_delivery(self, request: DeliveryRequest) -> DeliveryResponse:
        """Reserve a driver for the delivery."""

    @abstractmethod
    async def track_delivery(self, delivery_id: str) -> TrackingInfo:
        """Current state of a delivery."""

    @abstractmethod
    async def cancel_delivery(self, delivery_id: str, reason: str = "") -> bool:
        """Cancel a delivery; True when the provider accepted the cancellation."""

    def release(self, delivery_id: str) -> bool:
        """Free what the provider holds for a finished delivery.

        Couriers free their own drivers when a delivery ends, so the default
        does nothing and returns False.
        """
        return False
