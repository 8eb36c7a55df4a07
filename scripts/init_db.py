#!/usr/bin/env python3
"""Initialize the database, create tables and seed the demo holdings."""

import asyncio
import sys
from pathlib import Path

# Add backend to path
sys.path.insert(0, str(Path(__file__).parent.parent / "backend"))

from app.market_config import load_market_config
from app.storage.database import init_database
from app.storage.ledger_repo import LedgerRepository


async def main():
    print("Initializing database...")
    db = await init_database()
    print("Tables created: holdings, trades, portfolio_history")

    market_config = load_market_config()
    repo = LedgerRepository()
    if await repo.get_user_ids():
        print("Ledger already has holdings, skipping demo seed")
    else:
        for entry in market_config.demo_holdings:
            await repo.save_holding(entry.to_holding())
            print(f"Seeded user {entry.user_id}: {entry.quantity} {entry.symbol}")

    print("Database initialized successfully!")
    await db.close()


if __name__ == "__main__":
    asyncio.run(main())
