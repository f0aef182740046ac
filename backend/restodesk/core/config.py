"""Application configuration using pydantic-settings.

All environment variables should be accessed through the settings object
rather than using os.getenv() directly.
"""

from functools import lru_cache
from typing import List, Literal, Optional

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",  # Ignore extra env vars
    )

    # Database
    database_url: str = "sqlite:///./data/restodesk.db"

    # Redis - optional, backs the menu cache when set
    redis_url: Optional[str] = None
    menu_cache_ttl_seconds: int = 300

    # CORS - comma-separated origins or "*" for development only
    cors_origins: str = "http://localhost:3000,http://localhost:8000"

    # Server
    debug: bool = True
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    # API
    api_v1_prefix: str = "/api/v1"

    # Rate limiting
    rate_limit_enabled: bool = True

    # ==========================================================================
    # Restaurant context
    # ==========================================================================
    # Used when a request carries no X-Restaurant-Id header
    default_restaurant_id: int = 1
    restaurant_name: str = "Restaurante"
    restaurant_phone: str = ""  # receives new-order and failure alerts
    support_phone: str = ""
    currency: str = "BRL"
    currency_symbol: str = "R$"

    # ==========================================================================
    # Order workflow
    # ==========================================================================
    # Payment methods that trigger driver dispatch right after checkout
    instant_dispatch_payment_methods: List[str] = ["cash", "pix"]
    dispatch_provider: str = "local"
    # False keeps free-form status setting (off-graph moves are only logged)
    enforce_status_transitions: bool = False
    default_cancellation_reason: str = "Cancelled by the system"
    totals_tolerance: float = 0.01

    # ==========================================================================
    # Delivery providers
    # ==========================================================================
    lalamove_api_key: str = ""
    lalamove_api_secret: str = ""
    lalamove_base_url: str = "https://rest.sandbox.lalamove.com"
    lalamove_market: str = "BR"
    lalamove_webhook_secret: str = ""
    delivery_provider_timeout_seconds: float = 10.0

    # Vehicle selection by order value
    vehicle_motorcycle_max_value: float = 50.0
    vehicle_car_max_value: float = 200.0

    # Geocoding
    geocoder_url: str = "https://nominatim.openstreetmap.org/search"
    geocoder_user_agent: str = "restodesk/1.0"
    fallback_latitude: float = -23.5505
    fallback_longitude: float = -46.6333
    # True surfaces geocoder failures instead of substituting the fallback point
    strict_geocoding: bool = False

    # Local driver pool pricing
    local_base_price: float = 12.0
    local_price_per_km: float = 2.0
    local_base_minutes: int = 20
    local_minutes_per_km: float = 2.0

    # Fallback quote used when the courier cannot price a delivery
    fallback_delivery_fee: float = 15.0
    fallback_delivery_minutes: int = 45

    # Public page that tracks deliveries handled by the local driver pool
    tracking_base_url: str = "http://localhost:3000/tracking"

    # ==========================================================================
    # SMS notifications
    # ==========================================================================
    sms_provider: Literal["twilio", "infobip", "log"] = "log"
    sms_api_key: str = ""
    sms_api_secret: str = ""
    sms_from_number: str = ""

    @field_validator("instant_dispatch_payment_methods")
    @classmethod
    def normalize_payment_methods(cls, v: List[str]) -> List[str]:
        return [m.strip().lower() for m in v if m.strip()]

    @model_validator(mode="after")
    def validate_vehicle_thresholds(self) -> "Settings":
        if self.vehicle_car_max_value <= self.vehicle_motorcycle_max_value:
            raise ValueError(
                "VEHICLE_CAR_MAX_VALUE must be greater than VEHICLE_MOTORCYCLE_MAX_VALUE"
            )
        return self

    @property
    def cors_origins_list(self) -> List[str]:
        """Parse CORS origins into a list."""
        if self.cors_origins == "*":
            return ["*"]
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    @property
    def lalamove_configured(self) -> bool:
        return bool(self.lalamove_api_key and self.lalamove_api_secret)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
