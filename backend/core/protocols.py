"""Collaborator protocols.

Any backend (PostgreSQL, in-memory, HTTP, test double) can implement
these protocols to be used by the analytics and portfolio code.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Protocol, runtime_checkable

from core.models.ledger import Holding, PortfolioValuation, TradeEvent
from core.models.market import Recommendation


@runtime_checkable
class AdvisoryOracle(Protocol):
    """External source of buy/sell/hold verdicts. May fail or hang."""

    async def advise(self, symbol: str, context: dict[str, Any]) -> Recommendation:
        """Return a verdict for ``symbol`` given the market context."""
        ...


@runtime_checkable
class LedgerStore(Protocol):
    """Protocol that holdings/valuation storage backends must implement."""

    async def get_user_ids(self) -> list[int]:
        """Get all users known to the ledger."""
        ...

    async def get_holdings(self, user_id: int) -> list[Holding]:
        """Get the user's current holdings."""
        ...

    async def record_valuation(
        self, user_id: int, value: float, timestamp: datetime
    ) -> None:
        """Append a portfolio valuation point."""
        ...

    async def get_valuation_history(
        self, user_id: int, since: datetime | None = None
    ) -> list[PortfolioValuation]:
        """Get valuation points at or after ``since``, oldest first."""
        ...

    async def get_trades(
        self, user_id: int, since: datetime | None = None
    ) -> list[TradeEvent]:
        """Get trades at or after ``since``, oldest first."""
        ...


@runtime_checkable
class PriceSource(Protocol):
    """Produces the next price for a symbol on each market tick."""

    def next_price(self, symbol: str, last_price: float) -> float:
        ...

    def next_volume(self, symbol: str) -> float:
        ...
