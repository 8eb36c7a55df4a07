"""TTL cache with single-flight refresh around the advisory oracle.

Each symbol has at most one cached ``Recommendation`` and at most one
in-flight oracle call. Concurrent misses for the same symbol await the
same task instead of issuing duplicate calls. Oracle failures and
timeouts are replaced by a neutral fallback verdict that is cached for
the full TTL, which bounds retries against a failing oracle.

Single-flight relies on the event loop: the in-flight check and the
task registration in ``get()`` happen without an intervening await.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import replace
from typing import Any, Callable

from core.models.market import Recommendation, fallback_recommendation
from core.protocols import AdvisoryOracle

logger = logging.getLogger(__name__)

DEFAULT_TTL = 10.0
DEFAULT_ORACLE_TIMEOUT = 5.0


class RecommendationCache:
    """Per-symbol recommendation cache backed by an ``AdvisoryOracle``.

    Args:
        oracle: Advisory oracle to consult on a miss
        ttl: Seconds a cached verdict stays fresh
        oracle_timeout: Seconds before an oracle call is abandoned
        clock: Monotonic time source (injectable for tests)
    """

    def __init__(
        self,
        oracle: AdvisoryOracle,
        ttl: float = DEFAULT_TTL,
        oracle_timeout: float = DEFAULT_ORACLE_TIMEOUT,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._oracle = oracle
        self.ttl = ttl
        self.oracle_timeout = oracle_timeout
        self._clock = clock

        self._entries: dict[str, Recommendation] = {}
        self._inflight: dict[str, asyncio.Task[Recommendation]] = {}

        # Metrics
        self.oracle_calls = 0
        self.oracle_failures = 0
        self.hits = 0
        self.misses = 0

    def _is_fresh(self, entry: Recommendation) -> bool:
        return self._clock() - entry.fetched_at < self.ttl

    def peek(self, symbol: str) -> Recommendation | None:
        """Return the cached verdict (fresh or stale) without refreshing."""
        return self._entries.get(symbol)

    def is_inflight(self, symbol: str) -> bool:
        return symbol in self._inflight

    async def get(
        self,
        symbol: str,
        context: dict[str, Any],
        max_wait: float | None = None,
    ) -> Recommendation:
        """Get a verdict for ``symbol``, refreshing it when stale.

        Args:
            symbol: Trading symbol
            context: Market context forwarded to the oracle on a miss
            max_wait: Upper bound on how long to wait for a refresh. When it
                elapses, the previous (stale) verdict or the fallback is
                returned and the refresh keeps running in the background.
                None waits for the refresh to finish.

        Returns:
            The cached, freshly fetched, or fallback Recommendation
        """
        cached = self._entries.get(symbol)
        if cached is not None and self._is_fresh(cached):
            self.hits += 1
            return cached

        self.misses += 1
        task = self._inflight.get(symbol)
        if task is None:
            task = asyncio.create_task(self._refresh(symbol, context))
            self._inflight[symbol] = task

        if max_wait is None:
            return await asyncio.shield(task)

        try:
            return await asyncio.wait_for(asyncio.shield(task), timeout=max_wait)
        except asyncio.TimeoutError:
            logger.debug(f"Recommendation for {symbol} not ready after {max_wait}s")
            if cached is not None:
                return cached
            return fallback_recommendation(self._clock())

    async def _refresh(self, symbol: str, context: dict[str, Any]) -> Recommendation:
        """Call the oracle once and store the result (or the fallback)."""
        try:
            self.oracle_calls += 1
            try:
                result = await asyncio.wait_for(
                    self._oracle.advise(symbol, context),
                    timeout=self.oracle_timeout,
                )
                entry = replace(result, fetched_at=self._clock())
            except asyncio.TimeoutError:
                self.oracle_failures += 1
                logger.warning(
                    f"Advisory oracle timed out for {symbol} after {self.oracle_timeout}s"
                )
                entry = fallback_recommendation(self._clock())
            except Exception as e:
                self.oracle_failures += 1
                logger.warning(f"Advisory oracle failed for {symbol}: {e}")
                entry = fallback_recommendation(self._clock())

            self._entries[symbol] = entry
            return entry
        finally:
            self._inflight.pop(symbol, None)

    def invalidate(self, symbol: str) -> None:
        """Drop the cached verdict for a symbol."""
        self._entries.pop(symbol, None)

    async def close(self) -> None:
        """Cancel in-flight refreshes (process teardown)."""
        tasks = list(self._inflight.values())
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._inflight.clear()

    def get_stats(self) -> dict[str, int]:
        return {
            "entries": len(self._entries),
            "inflight": len(self._inflight),
            "oracle_calls": self.oracle_calls,
            "oracle_failures": self.oracle_failures,
            "hits": self.hits,
            "misses": self.misses,
        }
