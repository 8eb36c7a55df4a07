"""Bounded per-symbol price history.

Keeps the most recent ``capacity`` prices for each symbol in a FIFO
``deque`` (oldest evicted first). Readers never see the live buffer:
``snapshot()`` hands out an immutable tuple copy, so analysis running
against a snapshot is unaffected by later appends.

Writes are expected from a single producer (the market loop). Each
symbol owns its own deque, so ticks for different symbols never
contend with each other.
"""

from __future__ import annotations

import logging
import math
from collections import deque

from core.errors import InvalidPriceError

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY = 100


class PriceHistoryBuffer:
    """Per-symbol FIFO of recent prices."""

    def __init__(self, capacity: int = DEFAULT_CAPACITY):
        if capacity <= 0:
            raise ValueError(f"capacity must be positive, got {capacity}")
        self.capacity = capacity
        self._history: dict[str, deque[float]] = {}

    def append(self, symbol: str, price: float) -> None:
        """Append a price, evicting the oldest when at capacity.

        Raises:
            InvalidPriceError: price is not a finite positive number
        """
        if not (isinstance(price, (int, float)) and math.isfinite(price) and price > 0):
            raise InvalidPriceError(symbol, price)

        buf = self._history.get(symbol)
        if buf is None:
            buf = deque(maxlen=self.capacity)
            self._history[symbol] = buf
        buf.append(float(price))

    def snapshot(self, symbol: str) -> tuple[float, ...]:
        """Return an immutable copy of the symbol's history (oldest first)."""
        buf = self._history.get(symbol)
        if buf is None:
            return ()
        return tuple(buf)

    def latest(self, symbol: str) -> float | None:
        """Return the most recent price, or None if nothing was recorded."""
        buf = self._history.get(symbol)
        if not buf:
            return None
        return buf[-1]
