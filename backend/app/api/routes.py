"""REST API routes (read-only views over the running market state)."""

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, HTTPException, Query, Request
from pydantic import BaseModel

from app.storage import cache, price_cache
from core.errors import LedgerError
from core.portfolio import DEFAULT_TIMEFRAME, TIMEFRAMES

logger = logging.getLogger(__name__)

router = APIRouter()

VERSION = "0.1.0"


# Response models
class SystemStatus(BaseModel):
    """System status response."""

    status: str
    version: str
    exchange: str
    symbols: list[str]
    subscribers: int
    loops: dict[str, dict[str, int]]
    recommendations: dict[str, int]
    price_mirror: dict


class PriceResponse(BaseModel):
    """Latest price of one symbol."""

    price: float
    volume24h: float


class HoldingResponse(BaseModel):
    """One open position of a user."""

    symbol: str
    quantity: float
    average_cost: float


class PortfolioValueResponse(BaseModel):
    """Current valuation of one user's holdings."""

    user_id: int
    total_value: float


class PortfolioPointResponse(BaseModel):
    """One point of a user's portfolio history."""

    id: int
    user_id: int
    total_value: float
    timestamp: datetime


def _get_scheduler(request: Request):
    scheduler = getattr(request.app.state, "scheduler", None)
    if scheduler is None:
        raise HTTPException(status_code=503, detail="Market engine not running")
    return scheduler


@router.get("/status", response_model=SystemStatus)
async def get_status(request: Request):
    """Get system status."""
    scheduler = _get_scheduler(request)
    engine = scheduler.engine

    return SystemStatus(
        status="running" if scheduler.is_running else "stopped",
        version=VERSION,
        exchange=engine.exchange,
        symbols=engine.symbols,
        subscribers=scheduler.hub.connection_count,
        loops={
            loop.name: loop.get_stats()
            for loop in (scheduler.market_loop, scheduler.portfolio_loop)
        },
        recommendations=engine.recommendations.get_stats(),
        price_mirror=await cache.get_info(),
    )


@router.get("/market/prices", response_model=dict[str, PriceResponse])
async def get_prices(request: Request):
    """Latest price of every symbol that has ticked at least once."""
    engine = _get_scheduler(request).engine

    return {
        symbol: PriceResponse(price=s.price, volume24h=s.volume24h)
        for symbol, s in engine.latest_snapshots().items()
    }


@router.get("/market/mirror")
async def get_mirrored_prices(request: Request):
    """Prices as mirrored in Redis (None for symbols not mirrored yet)."""
    engine = _get_scheduler(request).engine
    return await price_cache.get_prices(engine.symbols)


@router.get("/market/{symbol:path}")
async def get_market_snapshot(symbol: str, request: Request):
    """Last broadcast snapshot of a symbol, in the WebSocket message format."""
    engine = _get_scheduler(request).engine
    if symbol not in engine.symbols:
        raise HTTPException(status_code=404, detail=f"Unknown symbol: {symbol}")

    snapshot = engine.get_snapshot(symbol)
    if snapshot is None:
        raise HTTPException(status_code=404, detail=f"No data yet for {symbol}")

    return snapshot.to_message()


@router.get("/portfolio/{user_id}", response_model=list[HoldingResponse])
async def get_portfolio(user_id: int, request: Request):
    """Open positions of a user."""
    scheduler = _get_scheduler(request)
    try:
        holdings = await scheduler.ledger.get_holdings(user_id)
    except LedgerError as e:
        logger.warning(f"Ledger unavailable for user {user_id}: {e}")
        raise HTTPException(status_code=503, detail="Ledger unavailable")

    return [
        HoldingResponse(
            symbol=h.symbol,
            quantity=float(h.quantity),
            average_cost=float(h.average_cost),
        )
        for h in holdings
    ]


@router.get("/portfolio/{user_id}/value", response_model=PortfolioValueResponse)
async def get_portfolio_value(user_id: int, request: Request):
    """Value a user's holdings at the latest broadcast prices."""
    scheduler = _get_scheduler(request)
    try:
        total = await scheduler.valuer.total_value(user_id, scheduler.engine.latest_prices())
    except LedgerError as e:
        logger.warning(f"Ledger unavailable for user {user_id}: {e}")
        raise HTTPException(status_code=503, detail="Ledger unavailable")

    return PortfolioValueResponse(user_id=user_id, total_value=total)


@router.get("/portfolio/{user_id}/history", response_model=list[PortfolioPointResponse])
async def get_portfolio_history(
    user_id: int,
    request: Request,
    timeframe: Optional[str] = Query(DEFAULT_TIMEFRAME, description="History window (1h, 24h)"),
):
    """Merged trade and valuation history for a user."""
    if timeframe not in TIMEFRAMES:
        raise HTTPException(
            status_code=400,
            detail=f"Unknown timeframe '{timeframe}', expected one of {sorted(TIMEFRAMES)}",
        )

    scheduler = _get_scheduler(request)
    try:
        points = await scheduler.valuer.history(user_id, timeframe)
    except LedgerError as e:
        logger.warning(f"Ledger unavailable for user {user_id}: {e}")
        raise HTTPException(status_code=503, detail="Ledger unavailable")

    return [
        PortfolioPointResponse(
            id=p.id,
            user_id=p.user_id,
            total_value=p.total_value,
            timestamp=p.timestamp,
        )
        for p in points
    ]
