"""Rolling volatility, trend classification and tail-risk metrics.

All statistics are computed from log returns r_i = ln(p_i / p_{i-1})
across the full available history:

- historical volatility: population stddev of all returns, annualized
  by sqrt(annualization_factor)
- recent volatility: same, over the last ``window`` returns
- relative volatility: recent / historical
- trend: ``increasing`` above 110% of historical, ``decreasing`` below
  90%, otherwise ``stable``
- VaR: negated return at index floor(n * var_quantile) of the sorted
  returns (historical simulation)
- expected shortfall: negated mean of the sorted returns strictly below
  that index

The annualization factor of 252 and the floor() quantile truncation are
conventions, kept as constructor parameters.
"""

from __future__ import annotations

import logging
import math
from typing import Sequence

import numpy as np

from core.errors import InvalidPriceError
from core.models.market import VolatilityMetrics, VolatilityTrend

logger = logging.getLogger(__name__)

DEFAULT_WINDOW = 30
ANNUALIZATION_FACTOR = 252
VAR_QUANTILE = 0.05

TREND_UPPER = 1.1
TREND_LOWER = 0.9


def log_returns(prices: Sequence[float], symbol: str = "") -> np.ndarray:
    """Compute log returns of a price series.

    Raises:
        InvalidPriceError: a price is non-positive or not finite
    """
    arr = np.asarray(prices, dtype=np.float64)
    bad = ~np.isfinite(arr) | (arr <= 0)
    if bad.any():
        raise InvalidPriceError(symbol, float(arr[bad][0]))
    return np.log(arr[1:] / arr[:-1])


def classify_trend(recent: float, historical: float) -> VolatilityTrend:
    if recent > historical * TREND_UPPER:
        return "increasing"
    if recent < historical * TREND_LOWER:
        return "decreasing"
    return "stable"


class VolatilityEngine:
    """Computes ``VolatilityMetrics`` from a price snapshot."""

    def __init__(
        self,
        window: int = DEFAULT_WINDOW,
        annualization_factor: float = ANNUALIZATION_FACTOR,
        var_quantile: float = VAR_QUANTILE,
    ):
        if not 0 < var_quantile < 1:
            raise ValueError(f"var_quantile must be in (0, 1), got {var_quantile}")
        self.window = window
        self.annualization_factor = annualization_factor
        self.var_quantile = var_quantile
        self._scale = math.sqrt(annualization_factor)

    def calculate(
        self, prices: Sequence[float], symbol: str = ""
    ) -> VolatilityMetrics | None:
        """Compute volatility metrics.

        Args:
            prices: Price history, oldest first
            symbol: Used for error reporting only

        Returns:
            VolatilityMetrics, or None when fewer than ``window`` prices
            are available.
        """
        if len(prices) < self.window:
            return None

        returns = log_returns(prices, symbol)
        n = len(returns)

        historical = float(np.std(returns)) * self._scale
        recent = float(np.std(returns[-self.window:])) * self._scale

        if historical > 0:
            relative = recent / historical
        else:
            # Perfectly flat history: no dispersion to compare against
            relative = 1.0

        sorted_returns = np.sort(returns)
        var_index = math.floor(n * self.var_quantile)
        value_at_risk = -float(sorted_returns[var_index])
        if var_index > 0:
            expected_shortfall: float | None = -float(np.mean(sorted_returns[:var_index]))
        else:
            expected_shortfall = None

        return VolatilityMetrics(
            historical_volatility=historical,
            relative_volatility=relative,
            trend=classify_trend(recent, historical),
            value_at_risk=value_at_risk,
            expected_shortfall=expected_shortfall,
        )
