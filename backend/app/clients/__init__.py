"""External service clients."""

from app.clients.advisory_client import AdvisoryVerdict, HttpAdvisoryOracle, RateLimiter

__all__ = [
    "AdvisoryVerdict",
    "HttpAdvisoryOracle",
    "RateLimiter",
]
