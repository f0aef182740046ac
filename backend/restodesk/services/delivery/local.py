"""In-house driver pool, used where no courier integration is configured."""

from __future__ import annotations

import logging
import math
import secrets
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

from restodesk.core.config import settings
from restodesk.services.delivery.base import (
    DeliveryDriver,
    DeliveryProvider,
    DeliveryProviderError,
    DeliveryQuote,
    DeliveryRequest,
    DeliveryResponse,
    TrackingInfo,
)
from restodesk.services.delivery.geocoding import Coordinates, Geocoder

logger = logging.getLogger(__name__)

EARTH_RADIUS_KM = 6371.0


def haversine_km(a: Coordinates, b: Coordinates) -> float:
    lat1, lng1, lat2, lng2 = map(math.radians, (a.lat, a.lng, b.lat, b.lng))
    h = (
        math.sin((lat2 - lat1) / 2) ** 2
        + math.cos(lat1) * math.cos(lat2) * math.sin((lng2 - lng1) / 2) ** 2
    )
    return 2 * EARTH_RADIUS_KM * math.asin(math.sqrt(h))


@dataclass
class PoolDriver:
    id: str
    name: str
    phone: str
    vehicle: str
    plate: str
    rating: float
    lat: float
    lng: float
    delivery_id: Optional[str] = None

    @property
    def available(self) -> bool:
        return self.delivery_id is None

    def as_driver(self) -> DeliveryDriver:
        return DeliveryDriver(
            name=self.name, phone=self.phone, vehicle=self.vehicle,
            plate=self.plate, rating=self.rating,
        )


def default_drivers() -> List[PoolDriver]:
    return [
        PoolDriver("local_driver_1", "Carlos Santos", "+5511988888888",
                   "Carro Fiat Uno", "XYZ5678", 4.9, -23.5505, -46.6333),
        PoolDriver("local_driver_2", "Ana Oliveira", "+5511977777777",
                   "Moto Yamaha Factor", "DEF9012", 4.7, -23.5515, -46.6343),
    ]


@dataclass
class Assignment:
    driver: PoolDriver
    order_number: Optional[str]
    distance_km: float
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class LocalDriverProvider(DeliveryProvider):
    """Drivers employed by the restaurant, tracked in process memory."""

    provider_name = "local"

    def __init__(self, drivers: Optional[List[PoolDriver]] = None, geocoder: Optional[Geocoder] = None):
        self.drivers = default_drivers() if drivers is None else drivers
        self.geocoder = geocoder or Geocoder()
        self._assignments: Dict[str, Assignment] = {}
        self._lock = threading.Lock()

    def available_drivers(self) -> List[PoolDriver]:
        return [d for d in self.drivers if d.available]

    async def _distance(self, request: DeliveryRequest) -> float:
        pickup = await self.geocoder.geocode(request.pickup_address)
        dropoff = await self.geocoder.geocode(request.delivery_address)
        return round(haversine_km(pickup, dropoff), 2)

    @staticmethod
    def _minutes(distance_km: float) -> int:
        return round(settings.local_base_minutes + distance_km * settings.local_minutes_per_km)

    async def get_quote(self, request: DeliveryRequest) -> DeliveryQuote:
        distance = await self._distance(request)
        price = settings.local_base_price + distance * settings.local_price_per_km
        return DeliveryQuote(
            provider=self.provider_name,
            quote_id=f"local_{secrets.token_hex(6)}",
            price=round(price, 2),
            currency=settings.currency,
            estimated_minutes=self._minutes(distance),
            distance_km=distance,
        )

    async def request_delivery(self, request: DeliveryRequest) -> DeliveryResponse:
        distance = await self._distance(request)
        with self._lock:
            driver = next((d for d in self.drivers if d.available), None)
            if driver is None:
                return DeliveryResponse.failed(self.provider_name, "No drivers available")
            delivery_id = f"local_order_{secrets.token_hex(6)}"
            driver.delivery_id = delivery_id
            self._assignments[delivery_id] = Assignment(driver, request.order_number, distance)

        logger.info(f"Local driver {driver.name} assigned to {request.order_number} ({delivery_id})")
        now = datetime.now(timezone.utc)
        pickup_at = now + timedelta(minutes=settings.local_base_minutes)
        return DeliveryResponse(
            success=True,
            provider=self.provider_name,
            delivery_id=delivery_id,
            tracking_url=f"{settings.tracking_base_url.rstrip('/')}/{request.order_number or delivery_id}",
            driver=driver.as_driver(),
            estimated_pickup_at=pickup_at,
            estimated_delivery_at=now + timedelta(minutes=self._minutes(distance)),
            price=round(settings.local_base_price + distance * settings.local_price_per_km, 2),
        )

    async def track_delivery(self, delivery_id: str) -> TrackingInfo:
        assignment = self._assignments.get(delivery_id)
        if assignment is None:
            raise DeliveryProviderError(self.provider_name, f"Delivery {delivery_id} not found")
        driver = assignment.driver
        eta = assignment.created_at + timedelta(minutes=self._minutes(assignment.distance_km))
        return TrackingInfo(
            success=True,
            provider=self.provider_name,
            delivery_id=delivery_id,
            status="assigned",
            driver=driver.as_driver(),
            driver_location={"lat": driver.lat, "lng": driver.lng},
            estimated_arrival=eta,
            tracking_url=f"{settings.tracking_base_url.rstrip('/')}/{assignment.order_number or delivery_id}",
        )

    def _unassign(self, delivery_id: str) -> Optional[Assignment]:
        with self._lock:
            assignment = self._assignments.pop(delivery_id, None)
            if assignment is not None:
                assignment.driver.delivery_id = None
        return assignment

    def release(self, delivery_id: str) -> bool:
        """Put the driver of a finished delivery back in the pool."""
        assignment = self._unassign(delivery_id)
        if assignment is None:
            return False
        logger.info(f"Local delivery {delivery_id} finished, {assignment.driver.name} available again")
        return True

    async def cancel_delivery(self, delivery_id: str, reason: str = "") -> bool:
        assignment = self._unassign(delivery_id)
        if assignment is None:
            logger.warning(f"Cancel requested for unknown local delivery {delivery_id}")
            return False
        logger.info(
            f"Local delivery {delivery_id} cancelled, {assignment.driver.name} released: "
            f"{reason or 'no reason given'}"
        )
        return True
