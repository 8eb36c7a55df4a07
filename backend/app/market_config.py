"""Market configuration loaded from market.yaml.

Describes which symbols are simulated (with their starting prices),
the exchange label attached to broadcast messages, and which users
have their portfolios valued by the portfolio loop. ``demo_holdings``
are only written to a ledger that holds no positions yet.

No YAML file = the ten built-in demo symbols and user 1 (holding 0.5 BTC/USD).
"""

import logging
from decimal import Decimal
from pathlib import Path

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, model_validator

from core.models import Holding

logger = logging.getLogger(__name__)

# Simulated starting prices
DEFAULT_SYMBOLS: dict[str, float] = {
    "BTC/USD": 95000,
    "ETH/USD": 3200,
    "SOL/USD": 140,
    "ADA/USD": 0.70,
    "DOT/USD": 8.80,
    "AVAX/USD": 38,
    "MATIC/USD": 1.10,
    "LINK/USD": 22,
    "UNI/USD": 12,
    "AAVE/USD": 115,
}


class SymbolEntry(BaseModel):
    """A single tracked symbol in the YAML config."""

    symbol: str
    base_price: float
    enabled: bool = True


class HoldingEntry(BaseModel):
    """A starting position, seeded into an empty ledger."""

    user_id: int
    symbol: str
    quantity: Decimal
    average_cost: Decimal

    def to_holding(self) -> Holding:
        return Holding(
            user_id=self.user_id,
            symbol=self.symbol,
            quantity=self.quantity,
            average_cost=self.average_cost,
        )


class MarketConfig(BaseModel):
    """Top-level market.yaml configuration."""

    exchange: str = "crypto"
    symbols: list[SymbolEntry] = [
        SymbolEntry(symbol=s, base_price=p) for s, p in DEFAULT_SYMBOLS.items()
    ]
    users: list[int] = [1]
    demo_holdings: list[HoldingEntry] = [
        HoldingEntry(
            user_id=1,
            symbol="BTC/USD",
            quantity=Decimal("0.5"),
            average_cost=Decimal("90000"),
        ),
    ]

    @model_validator(mode="after")
    def _validate(self):
        seen: set[str] = set()
        for entry in self.symbols:
            if entry.base_price <= 0:
                raise ValueError(
                    f"base_price for {entry.symbol} must be positive, got {entry.base_price}"
                )
            if entry.symbol in seen:
                raise ValueError(f"duplicate symbol '{entry.symbol}'")
            seen.add(entry.symbol)
        return self

    def get_base_prices(self) -> dict[str, float]:
        """Starting price per enabled symbol."""
        return {e.symbol: e.base_price for e in self.symbols if e.enabled}


_DEFAULT_PATH = Path(__file__).parent.parent / "market.yaml"


def load_market_config(path: Path | None = None) -> MarketConfig:
    """Load market config from YAML file.

    Falls back to defaults if the file doesn't exist.
    """
    config_path = path or _DEFAULT_PATH

    # Load the adjacent .env so Settings can pick up secrets (oracle key, DB url)
    env_path = config_path.parent / ".env"
    load_dotenv(env_path, override=False)

    if not config_path.exists():
        logger.info("No market.yaml found at %s, using defaults", config_path)
        return MarketConfig()

    with open(config_path) as f:
        raw = yaml.safe_load(f) or {}

    config = MarketConfig(**raw)
    logger.info(
        "Loaded market config: exchange=%s, %d symbols (%d enabled), %d users",
        config.exchange,
        len(config.symbols),
        len(config.get_base_prices()),
        len(config.users),
    )
    return config
