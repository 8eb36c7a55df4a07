"""Tests for the in-memory ledger store."""

from datetime import timedelta
from decimal import Decimal

import pytest

from app.storage import InMemoryLedgerStore
from core.models import Holding, TradeEvent, TradeSide
from core.protocols import LedgerStore


class TestInMemoryLedgerStore:
    def test_satisfies_protocol(self):
        assert isinstance(InMemoryLedgerStore(), LedgerStore)

    @pytest.mark.asyncio
    async def test_holdings(self, ledger):
        holdings = await ledger.get_holdings(1)
        assert len(holdings) == 1
        assert holdings[0].quantity == Decimal("0.5")
        assert await ledger.get_holdings(2) == []
        assert await ledger.get_user_ids() == [1]

    @pytest.mark.asyncio
    async def test_save_holding_replaces_position(self, ledger):
        ledger.save_holding(Holding(
            user_id=1,
            symbol="BTC/USD",
            quantity=Decimal("0.75"),
            average_cost=Decimal("91000"),
        ))
        holdings = await ledger.get_holdings(1)
        assert [h.quantity for h in holdings] == [Decimal("0.75")]

    @pytest.mark.asyncio
    async def test_valuation_history_filters_and_sorts(self, ledger, utc_now):
        await ledger.record_valuation(1, 2.0, utc_now)
        await ledger.record_valuation(1, 1.0, utc_now - timedelta(hours=2))
        await ledger.record_valuation(1, 0.5, utc_now - timedelta(days=2))

        all_points = await ledger.get_valuation_history(1)
        assert [p.total_value for p in all_points] == [0.5, 1.0, 2.0]

        recent = await ledger.get_valuation_history(1, since=utc_now - timedelta(hours=24))
        assert [p.total_value for p in recent] == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_trades(self, ledger, utc_now):
        trade = TradeEvent(
            user_id=3,
            symbol="ETH/USD",
            side=TradeSide.SELL,
            amount=Decimal("2"),
            price=Decimal("3100"),
            timestamp=utc_now,
        )
        ledger.add_trade(trade)

        assert await ledger.get_trades(3) == [trade]
        assert await ledger.get_trades(3, since=utc_now + timedelta(seconds=1)) == []
        assert trade.notional == 6200.0
        assert 3 in await ledger.get_user_ids()
