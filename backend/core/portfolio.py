"""Portfolio valuation against the latest price snapshot.

Values a user's holdings at current prices, appends the result to the
ledger's valuation series and serves merged history for charting.

The first valuation recorded for a user with no history is expanded
into 15 back-dated points over the previous week (each within +/-1% of
the real value) so charts have something to draw. This seed is written
once; afterwards every valuation is recorded as-is.
"""

from __future__ import annotations

import logging
import random
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterable, Mapping

from core.models.ledger import Holding, PortfolioPoint
from core.protocols import LedgerStore

logger = logging.getLogger(__name__)

# Offsets from "now" of the synthetic seed points, oldest first
SEED_OFFSETS: tuple[timedelta, ...] = (
    timedelta(days=7),
    timedelta(days=6),
    timedelta(days=5),
    timedelta(days=4),
    timedelta(days=3),
    timedelta(days=2),
    timedelta(days=1),
    timedelta(hours=20),
    timedelta(hours=16),
    timedelta(hours=12),
    timedelta(hours=8),
    timedelta(hours=4),
    timedelta(hours=2),
    timedelta(hours=1),
    timedelta(0),
)

SEED_NOISE = 0.01  # +/-1%

TIMEFRAMES: dict[str, timedelta] = {
    "1h": timedelta(hours=1),
    "24h": timedelta(hours=24),
}
DEFAULT_TIMEFRAME = "24h"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def value_holdings(holdings: Iterable[Holding], prices: Mapping[str, float]) -> float:
    """Sum quantity x current price over holdings.

    A symbol missing from ``prices`` contributes 0 and is logged.
    """
    total = 0.0
    for holding in holdings:
        price = prices.get(holding.symbol)
        if price is None:
            logger.warning(
                f"No current price for {holding.symbol} (user {holding.user_id}), valuing at 0"
            )
            continue
        total += float(holding.quantity) * price
    return total


def value_at_cost(holdings: Iterable[Holding]) -> float:
    """Sum quantity x average cost over holdings."""
    return sum(float(h.quantity * h.average_cost) for h in holdings)


class PortfolioValuer:
    """Values user portfolios and maintains their valuation series.

    Args:
        ledger: Ledger store holding positions, trades and valuations
        rng: Random source for seed noise (injectable for tests)
        clock: UTC time source (injectable for tests)
    """

    def __init__(
        self,
        ledger: LedgerStore,
        rng: random.Random | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.ledger = ledger
        self._rng = rng or random.Random()
        self._clock = clock
        # Users confirmed to have real history (skip the emptiness probe)
        self._has_history: set[int] = set()

    async def total_value(self, user_id: int, prices: Mapping[str, float]) -> float:
        """Current value of the user's holdings at ``prices``."""
        holdings = await self.ledger.get_holdings(user_id)
        return value_holdings(holdings, prices)

    async def record(self, user_id: int, prices: Mapping[str, float]) -> float | None:
        """Value the user's holdings and append the result to the ledger.

        Users without holdings are skipped.

        Returns:
            The recorded total value, or None if the user holds nothing
        """
        holdings = await self.ledger.get_holdings(user_id)
        if not holdings:
            return None

        total = value_holdings(holdings, prices)
        await self.record_value(user_id, total)
        return total

    async def record_value(self, user_id: int, total: float) -> None:
        """Append a valuation, seeding back-dated history on the first one."""
        now = self._clock()

        if user_id not in self._has_history:
            existing = await self.ledger.get_valuation_history(user_id)
            if not existing:
                await self._seed_history(user_id, total, now)
                self._has_history.add(user_id)
                return
            self._has_history.add(user_id)

        await self.ledger.record_valuation(user_id, total, now)

    async def _seed_history(self, user_id: int, total: float, now: datetime) -> None:
        logger.info(f"Creating initial portfolio history for user {user_id}")
        for offset in SEED_OFFSETS:
            variance = self._rng.uniform(-SEED_NOISE, SEED_NOISE)
            await self.ledger.record_valuation(user_id, total * (1 + variance), now - offset)

    async def history(
        self, user_id: int, timeframe: str = DEFAULT_TIMEFRAME
    ) -> list[PortfolioPoint]:
        """Merged chronological series of trade events and valuations.

        Unknown timeframes fall back to 24h. Overlapping points are not
        de-duplicated and ids are positional (1-based).

        If neither trades nor valuations exist in the window, the holdings
        are valued at average cost and, when positive, recorded before the
        series is rebuilt.
        """
        since = self._clock() - TIMEFRAMES.get(timeframe, TIMEFRAMES[DEFAULT_TIMEFRAME])

        timeline = await self._timeline(user_id, since)
        if not timeline:
            holdings = await self.ledger.get_holdings(user_id)
            total = value_at_cost(holdings)
            if total <= 0:
                return []
            await self.record_value(user_id, total)
            timeline = await self._timeline(user_id, since)

        return [
            PortfolioPoint(id=i, user_id=user_id, total_value=value, timestamp=ts)
            for i, (ts, value) in enumerate(timeline, start=1)
        ]

    async def _timeline(self, user_id: int, since: datetime) -> list[tuple[datetime, float]]:
        trades = await self.ledger.get_trades(user_id, since)
        snapshots = await self.ledger.get_valuation_history(user_id, since)

        points = [(t.timestamp, t.notional) for t in trades]
        points.extend((s.timestamp, s.total_value) for s in snapshots)
        # Stable: trades precede valuations sharing a timestamp
        points.sort(key=lambda p: p[0])
        return points
