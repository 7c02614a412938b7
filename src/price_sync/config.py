"""Application configuration using pydantic-settings."""

from decimal import Decimal
from functools import lru_cache

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Scale of the Numeric(14, 2) price columns
PRICE_SCALE = 2


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Application
    app_name: str = "price-sync"
    debug: bool = False
    environment: str = "development"
    log_level: str = "INFO"

    # Database (SQLite for local dev, PostgreSQL for prod)
    database_url: str = "sqlite+aiosqlite:///./price_sync.db"

    # Admin frontend (CORS origin)
    frontend_url: str = "http://localhost:4290"

    # API
    api_prefix: str = "/api"

    # Pricing
    price_quantum: Decimal = Decimal("1")  # Storage granularity, whole currency units

    # Scheduler
    scheduler_enabled: bool = False
    scheduler_interval_seconds: int = 300
    scheduler_lookback_seconds: int = 1200  # Must exceed the interval

    @field_validator("price_quantum")
    @classmethod
    def validate_price_quantum(cls, v: Decimal) -> Decimal:
        """The quantum must be positive and no finer than the stored scale."""
        if not v.is_finite() or v <= 0:
            raise ValueError("price_quantum must be positive")
        if v.normalize().as_tuple().exponent < -PRICE_SCALE:
            raise ValueError(
                f"price_quantum {v} is finer than the {PRICE_SCALE} decimal places prices are stored with"
            )
        return v


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
