"""Shared fixtures."""

import asyncio
import random
from datetime import datetime, timezone
from decimal import Decimal

import pytest

from app.storage import InMemoryLedgerStore
from core.models import Holding, Recommendation


class FakeClock:
    """Manually advanced time source."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeOracle:
    """Advisory oracle returning a fixed verdict and counting calls."""

    def __init__(
        self,
        verdict: Recommendation | None = None,
        delay: float = 0.0,
        error: Exception | None = None,
    ):
        self.verdict = verdict or Recommendation(
            action="buy",
            confidence=0.8,
            reasoning=("uptrend",),
            sentiment="bullish",
            risk_level="low",
        )
        self.delay = delay
        self.error = error
        self.calls = 0

    async def advise(self, symbol, context):
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.verdict


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def oracle():
    return FakeOracle()


@pytest.fixture
def make_oracle():
    """Factory for oracles with a custom verdict, delay or error."""
    return FakeOracle


@pytest.fixture
def utc_now():
    return datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def ledger():
    """Ledger with user 1 holding 0.5 BTC/USD."""
    return InMemoryLedgerStore([
        Holding(
            user_id=1,
            symbol="BTC/USD",
            quantity=Decimal("0.5"),
            average_cost=Decimal("90000"),
        ),
    ])


@pytest.fixture
def rng():
    return random.Random(42)
