"""Periodic market and portfolio loops.

``PeriodicLoop`` runs an async body at a fixed period on its own task:

    Stopped --start()--> Running --stop()--> Stopped

``start()`` while running and ``stop()`` while stopped are no-ops. A
failing body is logged and the loop carries on with the next period;
if the loop task itself dies unexpectedly it is re-armed.

``Scheduler`` builds the ``MarketEngine`` and ``BroadcastHub`` once and
drives two loops over them:
- market loop: tick every symbol concurrently, broadcast each snapshot
- portfolio loop: value every known user against the latest prices
"""

import asyncio
import logging
from typing import Awaitable, Callable

from app.api.websocket import BroadcastHub
from app.config import Settings
from app.market_config import MarketConfig
from app.services.market_engine import MarketEngine
from app.storage import price_cache
from core.analysis import PatternDetector, VolatilityEngine
from core.portfolio import PortfolioValuer
from core.price_history import PriceHistoryBuffer
from core.price_source import RandomWalkPriceSource
from core.protocols import AdvisoryOracle, LedgerStore, PriceSource
from core.recommendation_cache import RecommendationCache

logger = logging.getLogger(__name__)

LoopBody = Callable[[], Awaitable[None]]


class PeriodicLoop:
    """Run ``body`` every ``interval`` seconds until stopped."""

    def __init__(self, name: str, interval: float, body: LoopBody):
        if interval <= 0:
            raise ValueError(f"interval must be positive, got {interval}")
        self.name = name
        self.interval = interval
        self._body = body
        self._running = False
        self._task: asyncio.Task | None = None

        self.iterations = 0
        self.failures = 0
        self.restarts = 0

    @property
    def is_running(self) -> bool:
        return self._running

    def get_stats(self) -> dict[str, int]:
        return {
            "iterations": self.iterations,
            "failures": self.failures,
            "restarts": self.restarts,
        }

    def start(self) -> None:
        """Start the loop (no-op if already running)."""
        if self._running:
            return
        self._running = True
        self._arm()
        logger.info(f"{self.name} loop started (every {self.interval}s)")

    def _arm(self) -> None:
        self._task = asyncio.create_task(self._run(), name=f"{self.name}-loop")
        self._task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: asyncio.Task) -> None:
        if not self._running or task.cancelled() or task is not self._task:
            return
        exc = task.exception()
        logger.error(f"{self.name} loop died unexpectedly ({exc!r}), restarting")
        self.restarts += 1
        self._arm()

    async def stop(self) -> None:
        """Stop the loop and wait for the task to finish (idempotent)."""
        if not self._running:
            return
        self._running = False

        task, self._task = self._task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        logger.info(f"{self.name} loop stopped")

    async def _run(self) -> None:
        loop = asyncio.get_running_loop()
        while self._running:
            started = loop.time()
            try:
                await self._body()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.failures += 1
                logger.exception(f"{self.name} loop iteration failed: {e}")
            self.iterations += 1

            elapsed = loop.time() - started
            await asyncio.sleep(max(0.0, self.interval - elapsed))


class Scheduler:
    """Owns the market engine and broadcast hub, and drives both loops."""

    def __init__(
        self,
        engine: MarketEngine,
        ledger: LedgerStore,
        hub: BroadcastHub | None = None,
        valuer: PortfolioValuer | None = None,
        users: list[int] | None = None,
        market_interval: float = 1.0,
        portfolio_interval: float = 1.0,
        mirror_prices: bool = True,
    ):
        """
        Args:
            engine: Market engine (shared with the hub for catch-up)
            ledger: Ledger store for holdings and valuations
            hub: Broadcast hub (created if omitted)
            valuer: Portfolio valuer (created over ``ledger`` if omitted)
            users: Users to value in addition to those the ledger reports
            market_interval: Market loop period in seconds
            portfolio_interval: Portfolio loop period in seconds
            mirror_prices: Mirror broadcast prices into the Redis price cache
        """
        self.engine = engine
        self.ledger = ledger
        self.hub = hub if hub is not None else BroadcastHub()
        self.hub.set_snapshot_source(engine.latest_snapshots)
        self.valuer = valuer if valuer is not None else PortfolioValuer(ledger)
        self.users = list(users or [])
        self.mirror_prices = mirror_prices

        self.market_loop = PeriodicLoop("market", market_interval, self.market_tick)
        self.portfolio_loop = PeriodicLoop("portfolio", portfolio_interval, self.portfolio_tick)

        self.symbol_faults = 0
        self.ledger_faults = 0

    @classmethod
    def create(
        cls,
        settings: Settings,
        market_config: MarketConfig,
        oracle: AdvisoryOracle,
        ledger: LedgerStore,
        price_source: PriceSource | None = None,
        mirror_prices: bool = True,
    ) -> "Scheduler":
        """Build the engine, hub and valuer once from configuration."""
        recommendations = RecommendationCache(
            oracle,
            ttl=settings.recommendation_ttl,
            oracle_timeout=settings.oracle_timeout,
        )
        engine = MarketEngine(
            base_prices=market_config.get_base_prices(),
            price_source=(
                price_source if price_source is not None
                else RandomWalkPriceSource(settings.price_volatility)
            ),
            recommendations=recommendations,
            history=PriceHistoryBuffer(settings.history_capacity),
            pattern_detector=PatternDetector(
                window=settings.analysis_window,
                threshold=settings.pattern_threshold,
            ),
            volatility_engine=VolatilityEngine(
                window=settings.analysis_window,
                annualization_factor=settings.annualization_factor,
                var_quantile=settings.var_quantile,
            ),
            exchange=market_config.exchange,
            recommendation_wait=settings.recommendation_wait,
        )
        return cls(
            engine=engine,
            ledger=ledger,
            hub=BroadcastHub(send_timeout=settings.send_timeout),
            users=market_config.users,
            market_interval=settings.market_interval,
            portfolio_interval=settings.portfolio_interval,
            mirror_prices=mirror_prices,
        )

    def start(self) -> None:
        self.market_loop.start()
        self.portfolio_loop.start()

    async def stop(self) -> None:
        """Stop both loops, cancel pending oracle calls, flush the price mirror."""
        was_running = self.is_running
        await self.market_loop.stop()
        await self.portfolio_loop.stop()
        if not was_running:
            return

        await self.engine.recommendations.close()
        await self.hub.close()
        if self.mirror_prices:
            await price_cache.flush_pending_prices()

    @property
    def is_running(self) -> bool:
        return self.market_loop.is_running or self.portfolio_loop.is_running

    async def _process_symbol(self, symbol: str) -> None:
        snapshot = await self.engine.tick_symbol(symbol)
        await self.hub.publish(snapshot)
        if self.mirror_prices:
            await price_cache.update_snapshot(snapshot)

    async def market_tick(self) -> None:
        """Tick every symbol concurrently; a failing symbol is skipped."""
        symbols = self.engine.symbols
        results = await asyncio.gather(
            *(self._process_symbol(s) for s in symbols),
            return_exceptions=True,
        )
        for symbol, result in zip(symbols, results):
            if isinstance(result, asyncio.CancelledError):
                raise result
            if isinstance(result, Exception):
                self.symbol_faults += 1
                logger.error(f"Error processing market data for {symbol}: {result}")

        if self.mirror_prices:
            await price_cache.flush_pending_prices()

    async def _known_users(self) -> list[int]:
        users = await self.ledger.get_user_ids()
        return sorted(set(users) | set(self.users))

    async def portfolio_tick(self) -> None:
        """Value every known user; ledger failures are retried next cycle."""
        prices = self.engine.latest_prices()
        if not prices:
            return

        try:
            users = await self._known_users()
        except Exception as e:
            self.ledger_faults += 1
            logger.warning(f"Error listing portfolio users: {e}")
            return

        for user_id in users:
            try:
                await self.valuer.record(user_id, prices)
            except Exception as e:
                self.ledger_faults += 1
                logger.warning(f"Error updating portfolio value for user {user_id}: {e}")
