"""Domain exceptions for the market analytics pipeline."""


class MarketDataError(Exception):
    """Base class for market data processing errors."""


class InvalidPriceError(MarketDataError, ValueError):
    """Price is non-positive or not finite."""

    def __init__(self, symbol: str, price: float):
        self.symbol = symbol
        self.price = price
        super().__init__(f"Invalid price for {symbol}: {price!r}")


class UnknownSymbolError(MarketDataError, KeyError):
    """Symbol is not tracked by the engine."""

    def __init__(self, symbol: str):
        self.symbol = symbol
        super().__init__(symbol)

    def __str__(self) -> str:
        return f"Unknown symbol: {self.symbol}"


class OracleError(MarketDataError):
    """Advisory oracle call failed or returned a malformed verdict."""


class LedgerError(Exception):
    """Ledger store is unavailable or rejected an operation."""
