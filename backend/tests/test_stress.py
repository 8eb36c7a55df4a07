"""Stress tests for the market pipeline.

Light versions of stress tests suitable for CI/CD.
"""

import asyncio
import time

import orjson
import pytest

from app.api.websocket import BroadcastHub
from app.market_config import DEFAULT_SYMBOLS
from app.services.market_engine import MarketEngine
from app.services.scheduler import Scheduler
from core.price_source import RandomWalkPriceSource
from core.recommendation_cache import RecommendationCache


class CountingChannel:
    def __init__(self):
        self.messages: list[dict] = []

    async def send_text(self, data: str) -> None:
        self.messages.append(orjson.loads(data))


class TestMarketLoad:
    """Many ticks across all symbols with many subscribers."""

    @pytest.mark.asyncio
    async def test_200_ticks_10_symbols_20_subscribers(self, make_oracle, rng):
        """Every subscriber sees every snapshot, in timestamp order per symbol."""
        oracle = make_oracle(delay=0.001)
        engine = MarketEngine(
            base_prices=DEFAULT_SYMBOLS,
            price_source=RandomWalkPriceSource(rng=rng),
            recommendations=RecommendationCache(oracle, ttl=10.0),
            recommendation_wait=None,
        )
        scheduler = Scheduler(engine, ledger=_EmptyLedger(), hub=BroadcastHub(), mirror_prices=False)
        channels = [CountingChannel() for _ in range(20)]
        for channel in channels:
            await scheduler.hub.subscribe(channel)

        start = time.perf_counter()
        for _ in range(200):
            await scheduler.market_tick()
        elapsed = time.perf_counter() - start

        assert scheduler.symbol_faults == 0
        # One oracle call per symbol inside the TTL
        assert oracle.calls == len(DEFAULT_SYMBOLS)
        for channel in channels:
            assert len(channel.messages) == 200 * len(DEFAULT_SYMBOLS)
            per_symbol: dict[str, list[int]] = {}
            for message in channel.messages:
                per_symbol.setdefault(message["symbol"], []).append(message["timestamp"])
            for stamps in per_symbol.values():
                assert stamps == sorted(stamps)

        # Every symbol is past the analysis window
        assert all("volatilityMetrics" in m for m in channels[0].messages[-len(DEFAULT_SYMBOLS):])
        assert elapsed < 30

    @pytest.mark.asyncio
    async def test_parallel_ticks_keep_history_bounded(self, oracle, rng):
        engine = MarketEngine(
            base_prices=DEFAULT_SYMBOLS,
            price_source=RandomWalkPriceSource(rng=rng),
            recommendations=RecommendationCache(oracle),
        )

        await asyncio.gather(*(
            engine.tick_symbol(symbol)
            for _ in range(150)
            for symbol in DEFAULT_SYMBOLS
        ))

        for symbol in DEFAULT_SYMBOLS:
            assert len(engine.history.snapshot(symbol)) == 100
            assert engine.history.latest(symbol) == engine.current_price(symbol)


class _EmptyLedger:
    async def get_user_ids(self):
        return []

    async def get_holdings(self, user_id):
        return []

    async def record_valuation(self, user_id, value, timestamp):
        pass

    async def get_valuation_history(self, user_id, since=None):
        return []

    async def get_trades(self, user_id, since=None):
        return []
