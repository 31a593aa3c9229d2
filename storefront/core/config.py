"""Application configuration management using Pydantic Settings."""

from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    All settings can be overridden via environment variables.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = Field(default="storefront-cart", description="Application name")
    app_env: str = Field(default="development", description="Environment (development/staging/production)")
    debug: bool = Field(default=False, description="Enable debug mode")

    # Server
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8080, description="Server port")

    # CORS
    cors_origins: str = Field(
        default="http://localhost:3000,http://localhost:5173",
        description="Comma-separated list of allowed CORS origins",
    )

    # Session
    session_cookie_name: str = Field(default="storefront_session", description="Session cookie name")
    session_cookie_max_age: int = Field(default=2592000, description="Session cookie max age in seconds (30 days)")
    session_cookie_secure: bool = Field(default=True, description="Use secure cookies (HTTPS only)")

    # Storage
    storage_backend: Literal["memory", "file"] = Field(default="memory", description="Key-value storage backend")
    storage_file_path: str = Field(default=".storefront/storage.json", description="JSON file used by the file backend")
    storage_prefix: str = Field(default="ecommerce_", description="Key prefix for every persisted entry")

    # Cart lifetimes
    cart_ttl_seconds: int = Field(default=420, description="Sliding cart reservation window (7 minutes)")
    cart_items_ttl_seconds: int = Field(default=604800, description="Expiry of the persisted cart items (7 days)")
    checkout_lock_ttl_seconds: int = Field(default=1800, description="Lifetime of a locked checkout amount")

    # Transactions and analytics
    transaction_ttl_seconds: int = Field(default=900, description="Lifetime of a stored transaction id (15 minutes)")
    tracked_purchase_ttl_seconds: int = Field(default=86400, description="How long a fired purchase event is remembered")
    tracking_use_offer_price: bool = Field(
        default=False,
        description="Track the paid (offer) amount instead of the MRP in analytics",
    )
    currency: str = Field(default="INR", description="ISO currency code for analytics events")

    # Offers
    offers_default_eligible: bool = Field(
        default=False,
        description="Eligibility used when the client does not send X-Offer-Eligible",
    )

    @field_validator("cart_ttl_seconds", "transaction_ttl_seconds", "checkout_lock_ttl_seconds")
    @classmethod
    def require_positive_ttl(cls, value: int) -> int:
        """Reject non-positive lifetimes."""
        if value <= 0:
            raise ValueError("TTL must be a positive number of seconds")
        return value

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS origins string into a list."""
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.app_env == "production"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings singleton.

    Returns:
        Settings: Application settings instance.

    Note:
        Settings are cached using lru_cache for performance.
        Call get_settings.cache_clear() to reload settings.
    """
    return Settings()
