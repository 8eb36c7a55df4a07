"""Price sources for the market loop.

``RandomWalkPriceSource`` simulates prices with a bounded uniform step
of at most ``volatility`` (fractional) per tick. ``SequencePriceSource``
replays fixed sequences and is used wherever deterministic prices are
needed.
"""

from __future__ import annotations

import random
from collections import deque
from typing import Iterable, Mapping

DEFAULT_VOLATILITY = 0.001  # 0.1% per tick

VOLUME_BASE = 5000.0
VOLUME_SPREAD = 1000.0


class RandomWalkPriceSource:
    """Bounded random walk: new = last * (1 + volatility * U(-1, 1))."""

    def __init__(
        self,
        volatility: float = DEFAULT_VOLATILITY,
        rng: random.Random | None = None,
    ):
        if not 0 <= volatility < 1:
            raise ValueError(f"volatility must be in [0, 1), got {volatility}")
        self.volatility = volatility
        self._rng = rng or random.Random()

    def next_price(self, symbol: str, last_price: float) -> float:
        factor = self._rng.uniform(-1.0, 1.0)
        return last_price + last_price * self.volatility * factor

    def next_volume(self, symbol: str) -> float:
        return self._rng.random() * VOLUME_SPREAD + VOLUME_BASE


class SequencePriceSource:
    """Replays a fixed price sequence per symbol.

    Once a symbol's sequence is exhausted the last price is repeated.
    Symbols without a sequence keep their last price.
    """

    def __init__(
        self,
        sequences: Mapping[str, Iterable[float]],
        volume: float = VOLUME_BASE,
    ):
        self._pending = {symbol: deque(prices) for symbol, prices in sequences.items()}
        self.volume = volume

    def next_price(self, symbol: str, last_price: float) -> float:
        pending = self._pending.get(symbol)
        if not pending:
            return last_price
        return pending.popleft()

    def next_volume(self, symbol: str) -> float:
        return self.volume
