"""Lalamove courier API (v3) integration."""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
import time
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import httpx

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
from restodesk.services.delivery.geocoding import Geocoder

logger = logging.getLogger(__name__)

# Lalamove does not return a duration; estimate it from distance
BASE_MINUTES = 15
MINUTES_PER_KM = 3

PROGRESS_BY_STATUS = {
    "ASSIGNING_DRIVER": 10,
    "ON_GOING": 40,
    "PICKED_UP": 70,
    "COMPLETED": 100,
}


def select_vehicle_type(order_value: float) -> str:
    """Vehicle class by order value: MOTORCYCLE, CAR, otherwise VAN."""
    if order_value < settings.vehicle_motorcycle_max_value:
        return "MOTORCYCLE"
    if order_value < settings.vehicle_car_max_value:
        return "CAR"
    return "VAN"


def sign_request(secret: str, timestamp: str, method: str, path: str, body: str = "") -> str:
    raw = f"{timestamp}\r\n{method}\r\n{path}\r\n\r\n{body}"
    return hmac.new(secret.encode(), raw.encode(), hashlib.sha256).hexdigest()


class LalamoveProvider(DeliveryProvider):
    """Lalamove REST client with HMAC request signing."""

    provider_name = "lalamove"

    def __init__(
        self,
        api_key: Optional[str] = None,
        api_secret: Optional[str] = None,
        base_url: Optional[str] = None,
        market: Optional[str] = None,
        geocoder: Optional[Geocoder] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._api_key = settings.lalamove_api_key if api_key is None else api_key
        self._api_secret = settings.lalamove_api_secret if api_secret is None else api_secret
        self._base_url = (base_url or settings.lalamove_base_url).rstrip("/")
        self._market = market or settings.lalamove_market
        self._timeout = settings.delivery_provider_timeout_seconds
        self._transport = transport
        self.geocoder = geocoder or Geocoder()

    @property
    def is_configured(self) -> bool:
        return bool(self._api_key and self._api_secret)

    def _headers(self, method: str, path: str, body: str) -> Dict[str, str]:
        timestamp = str(int(time.time() * 1000))
        signature = sign_request(self._api_secret, timestamp, method, path, body)
        return {
            "Authorization": f"hmac {self._api_key}:{timestamp}:{signature}",
            "Market": self._market,
            "Request-ID": str(uuid.uuid4()),
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    async def _call(
        self, method: str, path: str, payload: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        if not self.is_configured:
            raise DeliveryProviderError(self.provider_name, "Lalamove credentials not configured")

        body = json.dumps({"data": payload}, separators=(",", ":")) if payload is not None else ""
        try:
            async with httpx.AsyncClient(
                base_url=self._base_url, timeout=self._timeout, transport=self._transport
            ) as client:
                resp = await client.request(
                    method, path, content=body or None, headers=self._headers(method, path, body)
                )
        except httpx.HTTPError as e:
            raise DeliveryProviderError(self.provider_name, f"Request failed: {e}") from e

        if resp.status_code >= 400:
            raise DeliveryProviderError(
                self.provider_name,
                f"{method} {path} returned {resp.status_code}: {resp.text[:300]}",
            )
        if not resp.content:
            return {}
        try:
            return resp.json().get("data", {})
        except ValueError as e:
            raise DeliveryProviderError(self.provider_name, "Invalid JSON response") from e

    async def _quotation(self, request: DeliveryRequest) -> Dict[str, Any]:
        pickup = await self.geocoder.geocode(request.pickup_address)
        dropoff = await self.geocoder.geocode(request.delivery_address)
        return await self._call("POST", "/v3/quotations", {
            "serviceType": select_vehicle_type(request.order_value),
            "language": "pt_BR",
            "stops": [
                {
                    "coordinates": {"lat": str(pickup.lat), "lng": str(pickup.lng)},
                    "address": request.pickup_address.formatted(),
                },
                {
                    "coordinates": {"lat": str(dropoff.lat), "lng": str(dropoff.lng)},
                    "address": request.delivery_address.formatted(),
                },
            ],
            "item": {
                "quantity": str(sum(i.quantity for i in request.items) or 1),
                "categories": ["FOOD_DELIVERY"],
            },
        })

    @staticmethod
    def _distance_km(quotation: Dict[str, Any]) -> float:
        distance = quotation.get("distance") or {}
        value = float(distance.get("value") or 0)
        return round(value / 1000, 2) if distance.get("unit", "m") == "m" else round(value, 2)

    async def get_quote(self, request: DeliveryRequest) -> DeliveryQuote:
        quotation = await self._quotation(request)
        breakdown = quotation.get("priceBreakdown") or {}
        distance_km = self._distance_km(quotation)
        expires_at = quotation.get("expiresAt")
        return DeliveryQuote(
            provider=self.provider_name,
            quote_id=quotation.get("quotationId"),
            price=round(float(breakdown.get("total", 0)), 2),
            currency=breakdown.get("currency", settings.currency),
            estimated_minutes=round(BASE_MINUTES + distance_km * MINUTES_PER_KM),
            distance_km=distance_km,
            vehicle_type=quotation.get("serviceType") or select_vehicle_type(request.order_value),
            expires_at=datetime.fromisoformat(expires_at.replace("Z", "+00:00")) if expires_at else None,
        )

    async def _driver(self, order_id: str, driver_id: Optional[str]) -> Optional[Dict[str, Any]]:
        if not driver_id:
            return None
        try:
            return await self._call("GET", f"/v3/orders/{order_id}/drivers/{driver_id}")
        except DeliveryProviderError as e:
            logger.warning(f"Could not load Lalamove driver {driver_id} for {order_id}: {e}")
            return None

    @staticmethod
    def _to_driver(data: Optional[Dict[str, Any]]) -> Optional[DeliveryDriver]:
        if not data:
            return None
        return DeliveryDriver(
            name=data.get("name", ""),
            phone=data.get("phone", ""),
            vehicle=data.get("vehicleType", ""),
            plate=data.get("plateNumber", ""),
            photo_url=data.get("photo"),
        )

    async def request_delivery(self, request: DeliveryRequest) -> DeliveryResponse:
        quotation = await self._quotation(request)
        stops = quotation.get("stops") or []
        if len(stops) < 2:
            raise DeliveryProviderError(self.provider_name, "Quotation returned no stops")

        order = await self._call("POST", "/v3/orders", {
            "quotationId": quotation.get("quotationId"),
            "sender": {
                "stopId": stops[0].get("stopId"),
                "name": request.restaurant_name or settings.restaurant_name,
                "phone": request.restaurant_phone or settings.restaurant_phone,
            },
            "recipients": [{
                "stopId": stops[1].get("stopId"),
                "name": request.customer_name,
                "phone": request.customer_phone,
                "remarks": request.instructions or request.delivery_address.instructions,
            }],
            "isPODEnabled": False,
            "metadata": {"orderNumber": request.order_number or ""},
        })

        order_id = order.get("orderId")
        if not order_id:
            raise DeliveryProviderError(self.provider_name, "Order response has no orderId")

        driver = self._to_driver(await self._driver(order_id, order.get("driverId")))
        distance_km = self._distance_km(order if order.get("distance") else quotation)
        now = datetime.now(timezone.utc)
        pickup_at = now + timedelta(minutes=BASE_MINUTES)
        breakdown = order.get("priceBreakdown") or quotation.get("priceBreakdown") or {}
        logger.info(f"Lalamove order {order_id} created for {request.order_number}")
        return DeliveryResponse(
            success=True,
            provider=self.provider_name,
            delivery_id=order_id,
            tracking_url=order.get("shareLink"),
            driver=driver,
            estimated_pickup_at=pickup_at,
            estimated_delivery_at=pickup_at + timedelta(minutes=round(distance_km * MINUTES_PER_KM)),
            price=float(breakdown["total"]) if breakdown.get("total") is not None else None,
        )

    async def track_delivery(self, delivery_id: str) -> TrackingInfo:
        order = await self._call("GET", f"/v3/orders/{delivery_id}")
        driver_data = await self._driver(delivery_id, order.get("driverId"))
        location = None
        if driver_data and driver_data.get("coordinates"):
            coords = driver_data["coordinates"]
            location = {"lat": float(coords["lat"]), "lng": float(coords["lng"])}
        status = order.get("status")
        return TrackingInfo(
            success=True,
            provider=self.provider_name,
            delivery_id=delivery_id,
            status=status,
            driver=self._to_driver(driver_data),
            driver_location=location,
            progress=PROGRESS_BY_STATUS.get(status or "", 0),
            tracking_url=order.get("shareLink"),
        )

    async def cancel_delivery(self, delivery_id: str, reason: str = "") -> bool:
        await self._call("DELETE", f"/v3/orders/{delivery_id}")
        logger.info(f"Lalamove order {delivery_id} cancelled: {reason or 'no reason given'}")
        return True

    def verify_webhook(self, payload: bytes, signature: str, secret: Optional[str] = None) -> bool:
        secret = settings.lalamove_webhook_secret if secret is None else secret
        if not secret:
            return False
        expected = hmac.new(secret.encode(), payload, hashlib.sha256).hexdigest()
        return hmac.compare_digest(expected, signature or "")
