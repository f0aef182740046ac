"""Address geocoding through a Nominatim-compatible search API.

When the lookup fails the configured fallback point (the restaurant's city
centre) is returned instead, so quotes and dispatch still go through with a
less accurate distance. Set ``STRICT_GEOCODING`` to raise instead.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

import httpx

from restodesk.core.config import settings
from restodesk.services.delivery.base import Address

logger = logging.getLogger(__name__)


class GeocodingError(Exception):
    pass


@dataclass(frozen=True)
class Coordinates:
    lat: float
    lng: float
    is_fallback: bool = False


class Geocoder:
    def __init__(
        self,
        base_url: Optional[str] = None,
        user_agent: Optional[str] = None,
        timeout: Optional[float] = None,
        strict: Optional[bool] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url or settings.geocoder_url
        self.user_agent = user_agent or settings.geocoder_user_agent
        self.timeout = timeout or settings.delivery_provider_timeout_seconds
        self.strict = settings.strict_geocoding if strict is None else strict
        self._transport = transport

    @property
    def fallback(self) -> Coordinates:
        return Coordinates(settings.fallback_latitude, settings.fallback_longitude, is_fallback=True)

    async def geocode(self, address: Address) -> Coordinates:
        if address.has_coordinates:
            return Coordinates(address.lat, address.lng)

        query = address.formatted()
        try:
            if not query:
                raise GeocodingError("Address is empty")
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                resp = await client.get(
                    self.base_url,
                    params={"q": f"{query}, Brasil", "format": "jsonv2", "limit": 1},
                    headers={"User-Agent": self.user_agent, "Accept-Language": "pt-BR,en"},
                )
                resp.raise_for_status()
                payload = resp.json()
            if not payload:
                raise GeocodingError(f"No coordinates found for '{query}'")
            return Coordinates(float(payload[0]["lat"]), float(payload[0]["lon"]))
        except (httpx.HTTPError, GeocodingError, KeyError, TypeError, ValueError) as e:
            if self.strict:
                raise GeocodingError(f"Geocoding failed for '{query}': {e}") from e
            logger.warning(f"Geocoding failed for '{query}', using fallback point: {e}")
            return self.fallback
