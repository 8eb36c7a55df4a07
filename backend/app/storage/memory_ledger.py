"""In-memory ledger store.

Dict-backed ``LedgerStore`` for running without PostgreSQL
(``ledger_backend=memory``) and for tests. Nothing survives a restart.
"""

from __future__ import annotations

from collections import defaultdict
from datetime import datetime

from core.models import Holding, PortfolioValuation, TradeEvent


class InMemoryLedgerStore:
    """Ledger store keeping holdings, trades and valuations in memory."""

    def __init__(self, holdings: list[Holding] | None = None):
        self._holdings: dict[int, dict[str, Holding]] = defaultdict(dict)
        self._trades: dict[int, list[TradeEvent]] = defaultdict(list)
        self._valuations: dict[int, list[PortfolioValuation]] = defaultdict(list)
        self._users: set[int] = set()
        for holding in holdings or []:
            self.save_holding(holding)

    # ── Seeding helpers ─────────────────────────────────────────

    def save_holding(self, holding: Holding) -> None:
        self._users.add(holding.user_id)
        self._holdings[holding.user_id][holding.symbol] = holding

    def add_trade(self, trade: TradeEvent) -> None:
        self._users.add(trade.user_id)
        self._trades[trade.user_id].append(trade)

    # ── LedgerStore protocol ────────────────────────────────────

    async def get_user_ids(self) -> list[int]:
        return sorted(self._users)

    async def get_holdings(self, user_id: int) -> list[Holding]:
        return list(self._holdings.get(user_id, {}).values())

    async def record_valuation(
        self, user_id: int, value: float, timestamp: datetime
    ) -> None:
        self._users.add(user_id)
        self._valuations[user_id].append(
            PortfolioValuation(user_id=user_id, total_value=value, timestamp=timestamp)
        )

    async def get_valuation_history(
        self, user_id: int, since: datetime | None = None
    ) -> list[PortfolioValuation]:
        points = self._valuations.get(user_id, [])
        if since is not None:
            points = [p for p in points if p.timestamp >= since]
        return sorted(points, key=lambda p: p.timestamp)

    async def get_trades(
        self, user_id: int, since: datetime | None = None
    ) -> list[TradeEvent]:
        trades = self._trades.get(user_id, [])
        if since is not None:
            trades = [t for t in trades if t.timestamp >= since]
        return sorted(trades, key=lambda t: t.timestamp)
