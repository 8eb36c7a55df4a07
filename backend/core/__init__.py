"""Core market analytics logic: models, price history, pattern detection,
volatility, recommendation caching and portfolio valuation.

This package contains pure business logic with no I/O dependencies
(no database, Redis, or network access). Collaborators such as the
advisory oracle and the ledger store are reached only through the
protocols in ``core.protocols``.
"""
