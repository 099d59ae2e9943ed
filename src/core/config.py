"""Application configuration management using Pydantic Settings."""

from decimal import Decimal
from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    All settings can be overridden via environment variables.
    Required settings will raise validation errors if not provided.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = Field(default="storefront-checkout", description="Application name")
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

    # Supabase
    supabase_url: str = Field(..., description="Supabase project URL")
    supabase_secret_key: str = Field(..., description="Supabase secret key for backend operations")

    # Stripe
    stripe_secret_key: str = Field(default="", description="Stripe secret API key")
    stripe_webhook_secret: str = Field(default="", description="Stripe webhook signing secret")

    # PayPal
    paypal_client_id: str = Field(default="", description="PayPal REST client ID")
    paypal_client_secret: str = Field(default="", description="PayPal REST client secret")
    paypal_mode: Literal["sandbox", "live"] = Field(default="sandbox", description="PayPal environment")
    paypal_timeout_seconds: float = Field(default=15.0, description="Timeout for PayPal API calls")

    # Email (Resend)
    resend_api_key: str = Field(default="", description="Resend API key for sending emails")
    email_from_address: str = Field(
        default="D'Esse Pearls <commandes@desse-pearls.com>",
        description="From address for transactional emails",
    )

    # Frontend
    frontend_url: str = Field(
        default="http://localhost:5173",
        description="Storefront URL used for payment success/cancel redirects",
    )

    # Storefront
    store_brand_name: str = Field(default="D'Esse Pearls", description="Brand shown on hosted payment pages")
    store_locale: str = Field(default="fr", description="Locale for hosted payment pages")
    checkout_currency: str = Field(default="eur", description="Fixed settlement currency")
    order_number_prefix: str = Field(default="DP", description="Prefix of human-readable order numbers")
    shipping_countries: str = Field(
        default="FR,BE,CH,LU,MC",
        description="Comma-separated ISO country codes accepted for shipping",
    )

    # Cart validation
    max_shipping_cost: Decimal = Field(default=Decimal("1000"), description="Upper bound for shipping cost")
    min_item_quantity: int = Field(default=1, description="Minimum quantity per cart line")
    max_item_quantity: int = Field(default=100, description="Maximum quantity per cart line")
    price_mismatch_tolerance: Decimal = Field(
        default=Decimal("0.01"),
        description="Declared vs catalog price difference above which a mismatch is logged",
    )

    # Rate limiting
    rate_limit_backend: Literal["memory", "supabase"] = Field(
        default="memory",
        description="Counter store used by the checkout rate limiter",
    )
    rate_limit_checkout_requests: int = Field(default=10, description="Checkout attempts allowed per window")
    rate_limit_window_seconds: int = Field(default=600, description="Rate limit window in seconds")

    # Checkout session lookup
    checkout_lookup_max_age_hours: int = Field(
        default=24,
        description="Sessions older than this are no longer exposed to the confirmation page",
    )

    # Provider metadata bounds
    stripe_metadata_max_length: int = Field(default=500, description="Max length of a Stripe metadata value")
    paypal_custom_id_max_length: int = Field(default=127, description="Max length of a PayPal custom_id")

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS origins string into a list."""
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    @property
    def shipping_countries_list(self) -> list[str]:
        """Parse shipping countries string into a list of upper-case codes."""
        return [code.strip().upper() for code in self.shipping_countries.split(",") if code.strip()]

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.app_env == "production"

    @property
    def is_stripe_test_mode(self) -> bool:
        """Check if using Stripe test keys."""
        return self.stripe_secret_key.startswith("sk_test_")

    @property
    def paypal_base_url(self) -> str:
        """PayPal REST API base URL for the configured mode."""
        if self.paypal_mode == "live":
            return "https://api-m.paypal.com"
        return "https://api-m.sandbox.paypal.com"


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
