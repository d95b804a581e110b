"""
Application configuration using Pydantic Settings
"""
from functools import lru_cache
from pathlib import Path
from typing import Dict, List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Settings loaded from SUBTRACK_* environment variables or .env
    """
    # Currency
    base_currency: str = "USD"
    supported_currencies: List[str] = Field(default_factory=lambda: ["USD", "EUR", "RSD"])
    fallback_rates: Dict[str, float] = Field(
        default_factory=lambda: {"USD": 1.0, "EUR": 0.85, "RSD": 99.1}
    )

    # Exchange-rate service
    rates_url: str = "https://api.exchangerate.host/latest"
    rates_timeout: float = 5.0
    rates_max_age_hours: float = 8.0

    # Local device cache (display currency, rate table, monthly budget)
    cache_path: Path = Path("data") / "local_cache.json"

    # Hosted data store; empty URL keeps everything in memory
    store_url: str = ""
    store_api_key: str = ""
    store_timeout: float = 10.0
    user_id: str = "local"

    # Analytics and ledger
    savings_history_limit: int = 20
    upcoming_renewal_days: int = 7
    insight_limit: int = 5
    top_subscription_limit: int = 10
    high_volume_threshold: int = 10
    low_budget_ratio: float = 0.1

    model_config = SettingsConfigDict(
        env_prefix="SUBTRACK_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


@lru_cache
def get_settings() -> Settings:
    """
    Cached settings instance (singleton)
    """
    return Settings()
