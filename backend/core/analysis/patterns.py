"""Correlation-based chart pattern detection.

The most recent ``window`` prices are min-max normalized to [0, 1] and
cross-correlated with fixed length-5 shape kernels. Each kernel
response whose magnitude exceeds the threshold is reported as a
pattern spanning the five prices under the kernel.

Only ``triangle`` and ``head_and_shoulders`` kernels exist; the
``double_top`` / ``double_bottom`` pattern types are part of the data
model but have no detector.
"""

from __future__ import annotations

import logging
from typing import Sequence

import numpy as np

from core.models.market import Pattern, PatternType

logger = logging.getLogger(__name__)

DEFAULT_WINDOW = 30
DEFAULT_THRESHOLD = 0.7

KERNELS: dict[PatternType, np.ndarray] = {
    "triangle": np.array([1.0, 0.5, 0.0, -0.5, -1.0]),
    "head_and_shoulders": np.array([1.0, -1.0, 2.0, -1.0, 1.0]),
}


def normalize(values: Sequence[float]) -> np.ndarray | None:
    """Min-max normalize to [0, 1].

    Returns None for a flat series (max == min), which has no shape.
    """
    arr = np.asarray(values, dtype=np.float64)
    lo = arr.min()
    hi = arr.max()
    if hi == lo:
        return None
    return (arr - lo) / (hi - lo)


class PatternDetector:
    """Sliding-window shape matcher over a price snapshot."""

    def __init__(
        self,
        window: int = DEFAULT_WINDOW,
        threshold: float = DEFAULT_THRESHOLD,
        kernels: dict[PatternType, np.ndarray] | None = None,
    ):
        self.window = window
        self.threshold = threshold
        self.kernels = kernels if kernels is not None else KERNELS

    def detect(self, prices: Sequence[float]) -> list[Pattern]:
        """Detect patterns in the most recent window of ``prices``.

        Args:
            prices: Price history, oldest first

        Returns:
            Union of all kernel hits (unordered, possibly overlapping).
            Empty when fewer than ``window`` prices are available or the
            window is flat.
        """
        if len(prices) < self.window:
            return []

        normalized = normalize(prices[-self.window:])
        if normalized is None:
            return []

        patterns: list[Pattern] = []
        for pattern_type, kernel in self.kernels.items():
            # "valid" cross-correlation: len(window) - len(kernel) + 1 responses
            response = np.correlate(normalized, kernel, mode="valid")
            span = len(kernel) - 1
            for i in np.flatnonzero(np.abs(response) > self.threshold):
                patterns.append(
                    Pattern(
                        type=pattern_type,
                        confidence=float(abs(response[i])),
                        start_index=int(i),
                        end_index=int(i) + span,
                    )
                )

        if patterns:
            logger.debug(f"Detected {len(patterns)} patterns in price window")
        return patterns
