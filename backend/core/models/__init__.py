"""Data models."""

from core.models.market import (
    PriceTick,
    Pattern,
    VolatilityMetrics,
    Recommendation,
    MarketSnapshot,
    fallback_recommendation,
)
from core.models.ledger import (
    Holding,
    TradeSide,
    TradeEvent,
    PortfolioValuation,
    PortfolioPoint,
)

__all__ = [
    # Hot path (dataclass)
    "PriceTick",
    "Pattern",
    "VolatilityMetrics",
    "Recommendation",
    "MarketSnapshot",
    "fallback_recommendation",
    # Cold path (Pydantic)
    "Holding",
    "TradeSide",
    "TradeEvent",
    "PortfolioValuation",
    "PortfolioPoint",
]
