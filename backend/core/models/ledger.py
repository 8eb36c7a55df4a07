"""Ledger data models (holdings, trades, valuations)."""

from datetime import datetime
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, ConfigDict


class TradeSide(str, Enum):
    """Trade side."""

    BUY = "buy"
    SELL = "sell"


class Holding(BaseModel):
    """A user's open position in one symbol."""

    model_config = ConfigDict(frozen=True)

    user_id: int
    symbol: str
    quantity: Decimal
    average_cost: Decimal


class TradeEvent(BaseModel):
    """An executed trade, as recorded by the ledger."""

    model_config = ConfigDict(frozen=True)

    user_id: int
    symbol: str
    side: TradeSide
    amount: Decimal
    price: Decimal
    timestamp: datetime

    @property
    def notional(self) -> float:
        """Trade value (amount x price)."""
        return float(self.amount * self.price)


class PortfolioValuation(BaseModel):
    """Recorded total portfolio value at a point in time (append-only)."""

    model_config = ConfigDict(frozen=True)

    user_id: int
    total_value: float
    timestamp: datetime


class PortfolioPoint(BaseModel):
    """One point of a merged portfolio history series.

    ``id`` is positional within the returned series and is not stable
    across calls.
    """

    id: int
    user_id: int
    total_value: float
    timestamp: datetime
