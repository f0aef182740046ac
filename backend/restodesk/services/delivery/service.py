"""Provider registry and the adapter boundary used by the rest of the app.

Nothing raised by a provider escapes ``DeliveryService``: failed quotes are
dropped, failed dispatches come back as ``DeliveryResponse(success=False)``,
failed tracking as ``TrackingInfo(success=False)`` and failed cancels as
``False``. Only an unknown provider name raises, since that is a caller error.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Dict, Iterable, List, Optional

from restodesk.core.errors import UnknownProviderError
from restodesk.services.delivery.base import (
    DeliveryProvider,
    DeliveryQuote,
    DeliveryRequest,
    DeliveryResponse,
    TrackingInfo,
)
from restodesk.services.delivery.geocoding import Geocoder
from restodesk.services.delivery.lalamove import LalamoveProvider
from restodesk.services.delivery.local import LocalDriverProvider

logger = logging.getLogger(__name__)


class ProviderRegistry:
    def __init__(self, providers: Optional[Iterable[DeliveryProvider]] = None):
        self._providers: Dict[str, DeliveryProvider] = {}
        for provider in providers or []:
            self.register(provider)

    def register(self, provider: DeliveryProvider) -> None:
        self._providers[provider.provider_name] = provider

    def get(self, name: str) -> DeliveryProvider:
        provider = self._providers.get((name or "").strip().lower())
        if provider is None:
            raise UnknownProviderError(name, self.names())
        return provider

    def find(self, name: Optional[str]) -> Optional[DeliveryProvider]:
        return self._providers.get((name or "").strip().lower())

    def names(self) -> List[str]:
        return list(self._providers)

    def all(self) -> List[DeliveryProvider]:
        return list(self._providers.values())


def build_default_registry() -> ProviderRegistry:
    geocoder = Geocoder()
    return ProviderRegistry([
        LalamoveProvider(geocoder=geocoder),
        LocalDriverProvider(geocoder=geocoder),
    ])


class DeliveryService:
    """Normalized quote / dispatch / track / cancel over every registered provider."""

    def __init__(self, registry: ProviderRegistry):
        self.registry = registry

    async def _quote(self, provider: DeliveryProvider, request: DeliveryRequest) -> Optional[DeliveryQuote]:
        try:
            return await provider.get_quote(request)
        except Exception as e:
            logger.warning(
                f"Quote from {provider.provider_name} failed for order "
                f"{request.order_number or request.order_id}: {e}"
            )
            return None

    async def get_quotes(
        self,
        request: DeliveryRequest,
        providers: Optional[List[str]] = None,
    ) -> List[DeliveryQuote]:
        """Quotes from the named (default: all) providers, cheapest first."""
        selected = [self.registry.get(n) for n in providers] if providers else self.registry.all()
        results = await asyncio.gather(*(self._quote(p, request) for p in selected))
        return sorted((q for q in results if q is not None), key=lambda q: q.price)

    async def request_driver(self, request: DeliveryRequest, provider: str) -> DeliveryResponse:
        impl = self.registry.get(provider)
        try:
            response = await impl.request_delivery(request)
        except Exception as e:
            logger.error(
                f"Driver request to {impl.provider_name} failed for order "
                f"{request.order_number or request.order_id}: {e}"
            )
            return DeliveryResponse.failed(impl.provider_name, str(e) or e.__class__.__name__)
        if not response.success:
            logger.warning(
                f"{impl.provider_name} could not dispatch order "
                f"{request.order_number or request.order_id}: {response.error}"
            )
        return response

    async def track_delivery(self, delivery_id: str, provider: str) -> TrackingInfo:
        impl = self.registry.get(provider)
        try:
            return await impl.track_delivery(delivery_id)
        except Exception as e:
            logger.warning(f"Tracking {delivery_id} with {impl.provider_name} failed: {e}")
            return TrackingInfo(
                success=False,
                provider=impl.provider_name,
                delivery_id=delivery_id,
                error=str(e) or e.__class__.__name__,
            )

    async def cancel_delivery(self, delivery_id: str, provider: str, reason: str = "") -> bool:
        impl = self.registry.get(provider)
        try:
            return await impl.cancel_delivery(delivery_id, reason)
        except Exception as e:
            logger.error(f"Cancelling {delivery_id} with {impl.provider_name} failed: {e}")
            return False

    def release_driver(self, delivery_id: str, provider: Optional[str]) -> bool:
        """Hand back whatever the provider holds for a finished delivery.

        Orders can outlive the provider that served them, so an unregistered
        name is logged rather than raised.
        """
        impl = self.registry.find(provider)
        if impl is None:
            logger.warning(f"Cannot release {delivery_id}: provider '{provider}' is not registered")
            return False
        try:
            return impl.release(delivery_id)
        except Exception as e:
            logger.error(f"Releasing {delivery_id} with {impl.provider_name} failed: {e}")
            return False


delivery_service = DeliveryService(build_default_registry())


def get_delivery_service() -> DeliveryService:
    """FastAPI dependency; overridden in tests."""
    return delivery_service
