"""Business services."""

from app.services.market_engine import MarketEngine, build_oracle_context, calculate_price_change
from app.services.scheduler import PeriodicLoop, Scheduler

__all__ = [
    "MarketEngine",
    "build_oracle_context",
    "calculate_price_change",
    "PeriodicLoop",
    "Scheduler",
]
