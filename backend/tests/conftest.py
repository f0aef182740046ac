"""Pytest configuration and fixtures."""

import os

# The app module builds its own engine at import; keep it off the on-disk database
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

from decimal import Decimal
from typing import Generator

import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from restodesk.core.alerting import alert_manager
from restodesk.core.cache import menu_cache
from restodesk.core.rate_limit import limiter
from restodesk.db.base import Base
from restodesk.db.session import enable_sqlite_foreign_keys, get_db, get_session_factory
from restodesk.main import app
# Import all models to ensure they're registered with Base.metadata
from restodesk.models import *  # noqa: F401,F403
from restodesk.models.combo import Combo, ComboItem
from restodesk.models.product import Category, Product
from restodesk.models.restaurant import Restaurant
from restodesk.services.delivery import (
    DeliveryDriver,
    DeliveryProvider,
    DeliveryProviderError,
    DeliveryQuote,
    DeliveryResponse,
    DeliveryService,
    ProviderRegistry,
    TrackingInfo,
    get_delivery_service,
)
from restodesk.services.delivery.geocoding import Geocoder
from restodesk.services.delivery.local import LocalDriverProvider
from restodesk.services.notification_service import NotificationService, get_notification_service
from restodesk.services.order_service import DraftItem, OrderDraft, OrderWorkflow

# Use in-memory SQLite for tests
TEST_DATABASE_URL = "sqlite:///:memory:"

RESTAURANT_PHONE = "+5511912345678"
CUSTOMER_PHONE = "+5511955554444"

# Dropoff with coordinates, so no geocoding lookup is needed for it
DELIVERY_ADDRESS = {
    "address": "Rua Frei Caneca",
    "number": "200",
    "neighborhood": "Consolação",
    "city": "São Paulo",
    "state": "SP",
    "zip_code": "01307-000",
    "lat": -23.5560,
    "lng": -46.6520,
}


# ============== Test doubles ==============

def geocoder_transport(lat: str = "-23.5610", lon: str = "-46.6560") -> httpx.MockTransport:
    """Nominatim stand-in that resolves every address to one point."""
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=[{"lat": lat, "lon": lon}])
    return httpx.MockTransport(handler)


class StubProvider(DeliveryProvider):
    """Courier double: fixed quote; dispatch succeeds, fails or raises."""

    def __init__(self, name: str, price: float = 10.0, dispatch: str = "ok", quote_error: Exception = None):
        self._name = name
        self.price = price
        self.dispatch = dispatch
        self.quote_error = quote_error
        self.requests = []
        self.cancelled = []

    @property
    def provider_name(self) -> str:
        return self._name

    async def get_quote(self, request):
        if self.quote_error:
            raise self.quote_error
        return DeliveryQuote(
            provider=self._name,
            price=self.price,
            estimated_minutes=30,
            distance_km=3.2,
            quote_id=f"{self._name}-quote",
            vehicle_type="MOTORCYCLE",
        )

    async def request_delivery(self, request):
        self.requests.append(request)
        if self.dispatch == "raise":
            raise DeliveryProviderError(self._name, "upstream timeout")
        if self.dispatch == "fail":
            return DeliveryResponse.failed(self._name, "No drivers available")
        delivery_id = f"{self._name}-{len(self.requests)}"
        return DeliveryResponse(
            success=True,
            provider=self._name,
            delivery_id=delivery_id,
            tracking_url=f"https://track.example.com/{delivery_id}",
            driver=DeliveryDriver(name="João Lima", phone="+5511966666666", vehicle="Moto", plate="ABC1D23"),
            price=self.price,
        )

    async def track_delivery(self, delivery_id):
        return TrackingInfo(
            success=True, provider=self._name, delivery_id=delivery_id, status="ON_GOING", progress=40,
        )

    async def cancel_delivery(self, delivery_id, reason=""):
        self.cancelled.append(delivery_id)
        return True


class RecordingNotifier(NotificationService):
    """Log-channel notifier that keeps every result it produced."""

    def __init__(self, fail_with: Exception = None):
        super().__init__(sms_provider="log", restaurant_phone="+5511900000000")
        self.fail_with = fail_with
        self.sent = []

    async def send_sms(self, to, message):
        if self.fail_with:
            raise self.fail_with
        return await super().send_sms(to, message)

    async def send_notification(self, recipient, message, priority="medium", kind="general", metadata=None):
        result = await super().send_notification(recipient, message, priority, kind, metadata)
        self.sent.append(result)
        return result

    @property
    def kinds(self):
        return [r.kind for r in self.sent]


# ============== Database ==============

@pytest.fixture(scope="function")
def db_engine():
    """Create a test database engine."""
    engine = create_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    enable_sqlite_foreign_keys(engine)
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def session_factory(db_engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=db_engine)


@pytest.fixture(scope="function")
def db_session(session_factory) -> Generator[Session, None, None]:
    """Create a test database session."""
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(autouse=True)
def reset_process_state():
    alert_manager.clear()
    menu_cache.clear()
    yield
    alert_manager.clear()
    menu_cache.clear()


# ============== Services ==============

@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def failing_notifier() -> RecordingNotifier:
    return RecordingNotifier(fail_with=RuntimeError("sms gateway down"))


@pytest.fixture
def courier() -> StubProvider:
    return StubProvider("lalamove", price=18.5)


@pytest.fixture
def local_pool() -> LocalDriverProvider:
    return LocalDriverProvider(geocoder=Geocoder(transport=geocoder_transport()))


@pytest.fixture
def delivery(courier, local_pool) -> DeliveryService:
    return DeliveryService(ProviderRegistry([courier, local_pool]))


@pytest.fixture
def workflow(db_session, notifier, delivery) -> OrderWorkflow:
    return OrderWorkflow(db_session, notifier, delivery)


@pytest.fixture(scope="function")
def client(db_session: Session, session_factory, notifier, delivery) -> Generator[TestClient, None, None]:
    """Create a test client with database and service overrides."""
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_notification_service] = lambda: notifier
    app.dependency_overrides[get_delivery_service] = lambda: delivery
    # Disable rate limiters during tests to avoid flaky failures
    limiter_was_enabled = limiter.enabled
    limiter.enabled = False
    # Don't raise server exceptions so we can test error status codes
    with TestClient(app, raise_server_exceptions=False) as test_client:
        yield test_client
    limiter.enabled = limiter_was_enabled
    app.dependency_overrides.clear()


# ============== Catalogue ==============

@pytest.fixture
def restaurant(db_session: Session) -> Restaurant:
    """Create the default restaurant (ID 1)."""
    restaurant = Restaurant(
        id=1,
        name="Cantina Teste",
        phone=RESTAURANT_PHONE,
        street="Rua Augusta",
        number="100",
        neighborhood="Consolação",
        city="São Paulo",
        state="SP",
        zip_code="01305-000",
        delivery_fee=Decimal("5.00"),
        minimum_order=Decimal("20.00"),
    )
    db_session.add(restaurant)
    db_session.commit()
    db_session.refresh(restaurant)
    return restaurant


@pytest.fixture
def category(db_session: Session, restaurant: Restaurant) -> Category:
    category = Category(restaurant_id=restaurant.id, name="Salgados", display_order=1)
    db_session.add(category)
    db_session.commit()
    db_session.refresh(category)
    return category


@pytest.fixture
def products(db_session: Session, restaurant: Restaurant, category: Category) -> dict:
    """Create test products with known stock levels."""
    coxinha = Product(
        restaurant_id=restaurant.id, category_id=category.id, name="Coxinha",
        price=Decimal("6.50"), stock=20, minimum_stock=5,
    )
    kibe = Product(
        restaurant_id=restaurant.id, category_id=category.id, name="Kibe",
        price=Decimal("7.00"), stock=3, minimum_stock=2,
    )
    suco = Product(
        restaurant_id=restaurant.id, name="Suco de Laranja",
        price=Decimal("8.00"), stock=10, minimum_stock=0,
    )
    db_session.add_all([coxinha, kibe, suco])
    db_session.commit()
    for product in (coxinha, kibe, suco):
        db_session.refresh(product)
    return {"coxinha": coxinha, "kibe": kibe, "suco": suco}


@pytest.fixture
def combo(db_session: Session, restaurant: Restaurant, products: dict) -> Combo:
    """Two coxinhas and a juice, with an optional kibe."""
    combo = Combo(restaurant_id=restaurant.id, name="Combo Lanche", price=Decimal("15.00"))
    combo.items = [
        ComboItem(product_id=products["coxinha"].id, quantity=2, display_order=0),
        ComboItem(product_id=products["suco"].id, quantity=1, display_order=1),
        ComboItem(product_id=products["kibe"].id, quantity=1, is_optional=True, display_order=2),
    ]
    db_session.add(combo)
    db_session.commit()
    db_session.refresh(combo)
    return combo


@pytest.fixture
def place_order(workflow: OrderWorkflow, restaurant: Restaurant, products: dict):
    """Create an order through the workflow; defaults to two coxinhas for delivery."""
    def _place(items=None, **fields):
        fields.setdefault("customer_name", "Maria Souza")
        fields.setdefault("customer_phone", CUSTOMER_PHONE)
        fields.setdefault("delivery_address", dict(DELIVERY_ADDRESS))
        fields.setdefault("payment_method", "card")
        draft = OrderDraft(
            items=items if items is not None else [DraftItem(quantity=2, product_id=products["coxinha"].id)],
            **fields,
        )
        return workflow.create_order(restaurant.id, draft)
    return _place
