"""Application configuration."""

from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Ledger store
    ledger_backend: Literal["postgres", "memory"] = "postgres"
    database_url: str = "postgresql://localhost/market_pulse"

    # Redis (latest-price mirror)
    redis_url: str = "redis://localhost:6379/0"

    # Advisory oracle (OpenAI-compatible chat completions)
    oracle_url: str = "https://api.openai.com/v1"
    oracle_api_key: str = ""
    oracle_model: str = "gpt-4o"
    oracle_timeout: float = 5.0
    recommendation_ttl: float = 10.0
    recommendation_wait: float = 0.5  # Max time a tick waits for a refresh

    # Scheduler
    market_interval: float = 1.0
    portfolio_interval: float = 1.0
    price_volatility: float = 0.001  # Random walk step (0.1% per tick)

    # Analytics (annualization and VaR quantile are conventions, not fixed law)
    history_capacity: int = 100
    analysis_window: int = 30
    pattern_threshold: float = 0.7
    annualization_factor: float = 252
    var_quantile: float = 0.05

    # Broadcast
    send_timeout: float = 1.0  # Per-subscriber send timeout

    # Server
    host: str = "0.0.0.0"
    port: int = 8000
    debug: bool = False


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
