"""Market engine: per-symbol price state and analytics.

One engine instance owns all mutable market state: current prices,
bounded price history, the last snapshot per symbol and the
recommendation cache. It is created once by the ``Scheduler`` and
shared by reference with the broadcast layer (for connect-time
catch-up) and the REST routes.

Processing one symbol:
1. Advance the price via the injected ``PriceSource``
2. Append it to the history buffer
3. Run pattern detection and volatility on an immutable snapshot
4. Fetch the (cached) advisory verdict with a bounded wait
5. Publish a new ``MarketSnapshot`` as the symbol's latest state

Ticks for the same symbol are serialized by a per-symbol lock; ticks for
different symbols never share a lock.
"""

import asyncio
import logging
import time
from typing import Any, Callable, Mapping, Sequence

from core.analysis import PatternDetector, VolatilityEngine
from core.errors import UnknownSymbolError
from core.models import MarketSnapshot, Pattern, PriceTick, VolatilityMetrics
from core.price_history import PriceHistoryBuffer
from core.protocols import PriceSource
from core.recommendation_cache import RecommendationCache

logger = logging.getLogger(__name__)

# Lookbacks (in ticks) for the price change figures sent to the oracle
CHANGE_PERIOD_24H = 24
CHANGE_PERIOD_1H = 60


def calculate_price_change(prices: Sequence[float], period: int) -> str:
    """Percent change over the last ``period`` prices, e.g. ``"+1.25%"``.

    Returns ``"0.00%"`` when fewer than ``period`` prices are available.
    """
    if len(prices) < period:
        return "0.00%"

    current = prices[-1]
    previous = prices[-period]
    change = (current - previous) / previous * 100
    sign = "+" if change >= 0 else ""
    return f"{sign}{change:.2f}%"


def build_oracle_context(
    symbol: str,
    prices: Sequence[float],
    patterns: list[Pattern],
    volatility: VolatilityMetrics | None,
) -> dict[str, Any]:
    """Market context handed to the advisory oracle."""
    return {
        "symbol": symbol,
        "price": {
            "current": prices[-1] if prices else None,
            "change24h": calculate_price_change(prices, CHANGE_PERIOD_24H),
            "change1h": calculate_price_change(prices, CHANGE_PERIOD_1H),
        },
        "technicalAnalysis": {
            "patterns": [p.to_dict() for p in patterns],
            "volatility": volatility.to_dict() if volatility else None,
        },
    }


class MarketEngine:
    """Holds per-symbol market state and produces snapshots."""

    def __init__(
        self,
        base_prices: Mapping[str, float],
        price_source: PriceSource,
        recommendations: RecommendationCache,
        history: PriceHistoryBuffer | None = None,
        pattern_detector: PatternDetector | None = None,
        volatility_engine: VolatilityEngine | None = None,
        exchange: str = "crypto",
        recommendation_wait: float | None = 0.5,
        clock: Callable[[], float] = time.time,
    ):
        """
        Args:
            base_prices: Starting price per tracked symbol
            price_source: Produces the next price each tick
            recommendations: Advisory verdict cache
            history: Price history buffer (default capacity 100)
            pattern_detector: Pattern detector (default window 30)
            volatility_engine: Volatility engine (default window 30)
            exchange: Exchange label attached to snapshots
            recommendation_wait: Max seconds a tick waits for a verdict refresh
                (None waits for the oracle call to finish)
            clock: Wall-clock source for snapshot timestamps
        """
        self.price_source = price_source
        self.recommendations = recommendations
        self.history = history if history is not None else PriceHistoryBuffer()
        self.pattern_detector = pattern_detector if pattern_detector is not None else PatternDetector()
        self.volatility_engine = volatility_engine if volatility_engine is not None else VolatilityEngine()
        self.exchange = exchange
        self.recommendation_wait = recommendation_wait
        self._clock = clock

        self._prices: dict[str, float] = dict(base_prices)
        self._snapshots: dict[str, MarketSnapshot] = {}
        self._locks: dict[str, asyncio.Lock] = {s: asyncio.Lock() for s in self._prices}

    @property
    def symbols(self) -> list[str]:
        return list(self._prices)

    def current_price(self, symbol: str) -> float:
        try:
            return self._prices[symbol]
        except KeyError:
            raise UnknownSymbolError(symbol) from None

    def latest_prices(self) -> dict[str, float]:
        """Price of every symbol that has been broadcast at least once."""
        return {s: snap.price for s, snap in self._snapshots.items()}

    def latest_snapshots(self) -> dict[str, MarketSnapshot]:
        """Copy of the last snapshot per symbol."""
        return dict(self._snapshots)

    def get_snapshot(self, symbol: str) -> MarketSnapshot | None:
        return self._snapshots.get(symbol)

    def _next_tick(self, symbol: str) -> PriceTick:
        timestamp = int(self._clock())
        previous = self._snapshots.get(symbol)
        if previous is not None and timestamp < previous.timestamp:
            # Never let a symbol's timestamps go backwards (clock steps)
            timestamp = previous.timestamp

        return PriceTick(
            symbol=symbol,
            price=self.price_source.next_price(symbol, self._prices[symbol]),
            timestamp=timestamp,
            volume24h=self.price_source.next_volume(symbol),
        )

    async def tick_symbol(self, symbol: str) -> MarketSnapshot:
        """Advance one symbol by one tick and publish its new snapshot.

        Raises:
            UnknownSymbolError: symbol is not tracked
            MarketDataError: price or analytics failure for this symbol
        """
        lock = self._locks.get(symbol)
        if lock is None:
            raise UnknownSymbolError(symbol)

        async with lock:
            tick = self._next_tick(symbol)
            self.history.append(symbol, tick.price)
            self._prices[symbol] = tick.price

            prices = self.history.snapshot(symbol)
            patterns = self.pattern_detector.detect(prices)
            volatility = self.volatility_engine.calculate(prices, symbol)

            context = build_oracle_context(symbol, prices, patterns, volatility)
            recommendation = await self.recommendations.get(
                symbol, context, max_wait=self.recommendation_wait
            )

            snapshot = MarketSnapshot(
                symbol=symbol,
                price=tick.price,
                volume24h=tick.volume24h,
                timestamp=int(tick.timestamp),
                exchange=self.exchange,
                patterns=tuple(patterns),
                volatility=volatility,
                recommendation=recommendation,
            )
            self._snapshots[symbol] = snapshot
            return snapshot
