"""Application configuration management using Pydantic Settings."""
from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Get the directory where settings.py is located
BASE_DIR = Path(__file__).resolve().parent


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    # Application
    app_name: str = "Storefront Payments"
    app_version: str = "1.0.0"
    debug: bool = False
    environment: str = Field(default="development", pattern="^(development|staging|production)$")

    # API
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_prefix: str = "/api/v1"
    cors_origins: list[str] = ["http://localhost:3000", "http://localhost:5173"]

    # MongoDB
    mongodb_url: str = Field(default="mongodb://localhost:27017")
    mongodb_database: str = "storefront"
    mongodb_order_collection: str = "orders"
    mongodb_product_collection: str = "products"
    mongodb_prebuilt_pc_collection: str = "prebuiltpcs"
    mongodb_cart_collection: str = "carts"
    mongodb_user_collection: str = "users"
    mongodb_counter_collection: str = "counters"
    mongodb_max_pool_size: int = 10
    mongodb_min_pool_size: int = 1

    # Razorpay
    razorpay_key_id: str = Field(default="", description="Razorpay key id")
    razorpay_key_secret: str = Field(default="", description="Razorpay key secret")
    razorpay_webhook_secret: str = Field(default="", description="Razorpay webhook signing secret")
    razorpay_base_url: str = "https://api.razorpay.com/v1"
    gateway_timeout_seconds: float = 10.0

    # Payment policy
    max_payment_attempts: int = 5
    unpaid_order_ttl_hours: int = 24
    default_currency: str = "INR"

    # n8n automation
    n8n_base_url: str = Field(default="", description="n8n base URL, empty disables dispatch")
    n8n_webhook_secret: str = Field(default="", description="Shared secret sent as X-N8N-SECRET")
    n8n_timeout_seconds: float = 10.0
    n8n_workflows: dict[str, str] = {"paymentConfirmed": "/webhook/payment-confirmed"}

    # Invoices
    invoice_dir: Path = BASE_DIR.parent / "invoices"
    invoice_base_url: str = "/invoices"
    company_name: str = "Storefront"
    company_gstin: str = ""

    # Rate Limiting
    rate_limit_requests: int = 60
    rate_limit_period: int = 60  # seconds
    rate_limit_exempt_paths: list[str] = ["/webhook/"]

    # Logging
    log_level: str = Field(default="INFO", pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$")
    log_format: str = Field(default="json", pattern="^(json|text)$")

    model_config = SettingsConfigDict(
        env_file=BASE_DIR.parent / ".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("cors_origins", "rate_limit_exempt_paths", mode="before")
    @classmethod
    def parse_csv_list(cls, v: str | list[str]) -> list[str]:
        """Parse comma separated values from string or list."""
        if isinstance(v, str):
            return [item.strip() for item in v.split(",") if item.strip()]
        return v

    @property
    def gateway_configured(self) -> bool:
        return bool(self.razorpay_key_id and self.razorpay_key_secret)


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
