"""Latest-price mirror in Redis.

The market loop records the price and 24h volume of every broadcast
snapshot here so that other processes can read current prices without
subscribing to the WebSocket feed.

Data structure:
- price:{symbol} -> JSON {price, volume24h, timestamp}

Updates are kept in memory and flushed to Redis in one pipeline per
interval to keep Redis traffic independent of the tick rate.
"""

from __future__ import annotations

import asyncio
import logging

import orjson

from app.storage import cache
from core.models import MarketSnapshot

logger = logging.getLogger(__name__)

# TTL for price data (60 seconds - prices become stale quickly)
PRICE_TTL = 60

# Latest price per symbol (in-memory, for batched updates)
_pending_prices: dict[str, dict] = {}
# Symbols updated since the last flush
_dirty_symbols: set[str] = set()
# Lock protecting the two structures above
_state_lock: asyncio.Lock | None = None


def _price_key(symbol: str) -> str:
    """Get the cache key for a symbol's price."""
    return f"{cache.KEY_PREFIX_PRICE}{symbol}"


def _get_state_lock() -> asyncio.Lock:
    global _state_lock
    if _state_lock is None:
        _state_lock = asyncio.Lock()
    return _state_lock


async def update_snapshot(snapshot: MarketSnapshot) -> None:
    """Record the latest price of a broadcast snapshot (batched)."""
    async with _get_state_lock():
        _pending_prices[snapshot.symbol] = {
            "price": snapshot.price,
            "volume24h": snapshot.volume24h,
            "timestamp": snapshot.timestamp,
        }
        _dirty_symbols.add(snapshot.symbol)


async def flush_pending_prices() -> bool:
    """Flush all pending price updates to Redis using a pipeline.

    Returns:
        True if flush was successful (or there was nothing to flush)
    """
    if not cache.is_cache_available():
        return False

    client = cache.get_client()
    if client is None:
        return False

    async with _get_state_lock():
        if not _dirty_symbols:
            return True

        data_to_flush = {
            symbol: orjson.dumps(_pending_prices[symbol])
            for symbol in _dirty_symbols
            if symbol in _pending_prices
        }
        _dirty_symbols.clear()

    # Redis round-trip outside the lock so updates are never blocked on I/O
    try:
        async with client.pipeline(transaction=False) as pipe:
            for symbol, data in data_to_flush.items():
                pipe.setex(_price_key(symbol), PRICE_TTL, data)
            await pipe.execute()
        return True

    except Exception as e:
        logger.warning(f"Failed to flush prices to Redis: {e}")
        return False


async def get_prices(symbols: list[str]) -> dict[str, dict | None]:
    """Get mirrored prices for multiple symbols.

    Args:
        symbols: List of trading symbols

    Returns:
        Dict mapping symbol to price data (or None if not found)
    """
    if not cache.is_cache_available() or not symbols:
        return {s: None for s in symbols}

    keys = [_price_key(s) for s in symbols]
    results = await cache.mget(keys)

    prices: dict[str, dict | None] = {}
    for symbol, data in zip(symbols, results):
        if data is None:
            prices[symbol] = None
            continue
        try:
            prices[symbol] = orjson.loads(data)
        except orjson.JSONDecodeError:
            prices[symbol] = None
    return prices
