"""Technical analysis (pure math, no I/O)."""

from core.analysis.patterns import PatternDetector, KERNELS, normalize
from core.analysis.volatility import (
    VolatilityEngine,
    ANNUALIZATION_FACTOR,
    VAR_QUANTILE,
    classify_trend,
    log_returns,
)

__all__ = [
    "PatternDetector",
    "KERNELS",
    "normalize",
    "VolatilityEngine",
    "ANNUALIZATION_FACTOR",
    "VAR_QUANTILE",
    "classify_trend",
    "log_returns",
]
