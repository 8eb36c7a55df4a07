"""Ledger repository: holdings, trades and portfolio valuations."""

from contextlib import asynccontextmanager
from datetime import datetime
from decimal import Decimal
from typing import AsyncGenerator

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from core.errors import LedgerError
from core.models import Holding, PortfolioValuation, TradeEvent, TradeSide
from app.storage.database import (
    HoldingTable,
    PortfolioHistoryTable,
    TradeTable,
    get_database,
)


class LedgerRepository:
    """PostgreSQL-backed ``LedgerStore``.

    Database failures surface as ``LedgerError`` so callers can log and
    retry on the next cycle.
    """

    @asynccontextmanager
    async def _session(self) -> AsyncGenerator[AsyncSession, None]:
        try:
            async with get_database().session() as session:
                yield session
        except (SQLAlchemyError, OSError) as e:
            raise LedgerError(f"Ledger database error: {e}") from e

    async def get_user_ids(self) -> list[int]:
        """Get all users that hold at least one position."""
        async with self._session() as session:
            stmt = select(HoldingTable.user_id).distinct().order_by(HoldingTable.user_id)
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def get_holdings(self, user_id: int) -> list[Holding]:
        async with self._session() as session:
            stmt = (
                select(HoldingTable)
                .where(HoldingTable.user_id == user_id)
                .order_by(HoldingTable.symbol)
            )
            result = await session.execute(stmt)
            return [
                Holding(
                    user_id=row.user_id,
                    symbol=row.symbol,
                    quantity=row.amount,
                    average_cost=row.average_price,
                )
                for row in result.scalars().all()
            ]

    async def save_holding(self, holding: Holding) -> None:
        """Insert or replace a holding (upsert on user/symbol)."""
        async with self._session() as session:
            stmt = insert(HoldingTable).values(
                user_id=holding.user_id,
                symbol=holding.symbol,
                amount=holding.quantity,
                average_price=holding.average_cost,
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=["user_id", "symbol"],
                set_={
                    "amount": stmt.excluded.amount,
                    "average_price": stmt.excluded.average_price,
                },
            )
            await session.execute(stmt)

    async def record_valuation(
        self, user_id: int, value: float, timestamp: datetime
    ) -> None:
        async with self._session() as session:
            stmt = insert(PortfolioHistoryTable).values(
                user_id=user_id,
                total_value=Decimal(str(value)),
                timestamp=timestamp,
            )
            await session.execute(stmt)

    async def get_valuation_history(
        self, user_id: int, since: datetime | None = None
    ) -> list[PortfolioValuation]:
        async with self._session() as session:
            stmt = select(PortfolioHistoryTable).where(
                PortfolioHistoryTable.user_id == user_id
            )
            if since is not None:
                stmt = stmt.where(PortfolioHistoryTable.timestamp >= since)
            stmt = stmt.order_by(PortfolioHistoryTable.timestamp.asc())

            result = await session.execute(stmt)
            return [
                PortfolioValuation(
                    user_id=row.user_id,
                    total_value=float(row.total_value),
                    timestamp=row.timestamp,
                )
                for row in result.scalars().all()
            ]

    async def get_trades(
        self, user_id: int, since: datetime | None = None
    ) -> list[TradeEvent]:
        async with self._session() as session:
            stmt = select(TradeTable).where(TradeTable.user_id == user_id)
            if since is not None:
                stmt = stmt.where(TradeTable.timestamp >= since)
            stmt = stmt.order_by(TradeTable.timestamp.asc())

            result = await session.execute(stmt)
            return [
                TradeEvent(
                    user_id=row.user_id,
                    symbol=row.symbol,
                    side=TradeSide(row.side),
                    amount=row.amount,
                    price=row.price,
                    timestamp=row.timestamp,
                )
                for row in result.scalars().all()
            ]
