"""Hot path market data models.

Produced once per symbol per tick, so they use:
- @dataclass(slots=True) for minimal memory footprint
- float instead of Decimal for fast arithmetic
- Unix timestamps (float seconds) instead of datetime objects

``MarketSnapshot.to_message()`` produces the wire format broadcast to
WebSocket subscribers.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

PatternType = Literal["triangle", "head_and_shoulders", "double_top", "double_bottom"]
VolatilityTrend = Literal["increasing", "decreasing", "stable"]
Action = Literal["buy", "sell", "hold"]
RiskLevel = Literal["low", "medium", "high"]


@dataclass(slots=True)
class PriceTick:
    """A single simulated (or sourced) price observation."""

    symbol: str
    price: float
    timestamp: float  # Unix timestamp in seconds
    volume24h: float = 0.0


@dataclass(slots=True, frozen=True)
class Pattern:
    """Detected chart pattern.

    ``start_index`` and ``end_index`` are relative to the analysis window,
    not to the full price history.
    """

    type: PatternType
    confidence: float
    start_index: int
    end_index: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "confidence": self.confidence,
            "startIndex": self.start_index,
            "endIndex": self.end_index,
        }


@dataclass(slots=True, frozen=True)
class VolatilityMetrics:
    """Rolling volatility and tail-risk statistics for one symbol."""

    historical_volatility: float
    relative_volatility: float
    trend: VolatilityTrend
    value_at_risk: float
    # None when the tail below the VaR quantile is empty (small samples)
    expected_shortfall: float | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "historicalVolatility": self.historical_volatility,
            "relativeVolatility": self.relative_volatility,
            "volatilityTrend": self.trend,
            "riskMetrics": {
                "valueAtRisk": self.value_at_risk,
                "expectedShortfall": self.expected_shortfall,
            },
        }


@dataclass(slots=True, frozen=True)
class Recommendation:
    """Advisory verdict for a symbol."""

    action: Action
    confidence: float
    reasoning: tuple[str, ...]
    sentiment: str
    risk_level: RiskLevel
    fetched_at: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "recommendation": self.action,
            "confidence": self.confidence,
            "reasoning": list(self.reasoning),
            "marketSentiment": self.sentiment,
            "riskLevel": self.risk_level,
        }


def fallback_recommendation(fetched_at: float = 0.0) -> Recommendation:
    """Neutral verdict served when the advisory oracle is unavailable."""
    return Recommendation(
        action="hold",
        confidence=0.5,
        reasoning=("insufficient data",),
        sentiment="neutral",
        risk_level="medium",
        fetched_at=fetched_at,
    )


@dataclass(slots=True, frozen=True)
class MarketSnapshot:
    """Point-in-time view of one symbol, the unit broadcast to subscribers."""

    symbol: str
    price: float
    volume24h: float
    timestamp: int  # Unix seconds
    exchange: str = "crypto"
    patterns: tuple[Pattern, ...] = field(default_factory=tuple)
    volatility: VolatilityMetrics | None = None
    recommendation: Recommendation | None = None

    def to_message(self) -> dict[str, Any]:
        """Build the subscriber wire message.

        Optional sections are omitted entirely when absent; an empty
        pattern list counts as absent.
        """
        message: dict[str, Any] = {
            "symbol": self.symbol,
            "exchange": self.exchange,
            "price": self.price,
            "volume24h": self.volume24h,
            "timestamp": self.timestamp,
        }
        if self.patterns:
            message["patternAnalysis"] = {
                "patterns": [p.to_dict() for p in self.patterns],
            }
        if self.volatility is not None:
            message["volatilityMetrics"] = self.volatility.to_dict()
        if self.recommendation is not None:
            message["aiAnalysis"] = self.recommendation.to_dict()
        return message
