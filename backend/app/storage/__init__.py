"""Data storage layer."""

from app.storage.database import Database, get_database, init_database
from app.storage.ledger_repo import LedgerRepository
from app.storage.memory_ledger import InMemoryLedgerStore
from app.storage import cache
from app.storage import price_cache

__all__ = [
    "Database",
    "get_database",
    "init_database",
    "LedgerRepository",
    "InMemoryLedgerStore",
    "cache",
    "price_cache",
]
