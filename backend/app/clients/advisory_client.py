"""HTTP advisory oracle backed by an OpenAI-compatible chat completions API."""

import asyncio
import logging
from typing import Any, Literal

import httpx
import orjson
from pydantic import BaseModel, Field, ValidationError

from core.errors import OracleError
from core.models import Recommendation

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """You are a trading analysis system. Given market data for one symbol, \
assess it and answer with a single JSON object:
{
  "recommendation": "buy/sell/hold",
  "confidence": <number between 0-1>,
  "reasoning": ["specific reasons"],
  "marketSentiment": "brief market sentiment",
  "riskLevel": "low/medium/high"
}"""


class RateLimiter:
    """Simple rate limiter for API calls."""

    def __init__(self, calls_per_minute: int = 120):
        self.calls_per_minute = calls_per_minute
        self.interval = 60.0 / calls_per_minute
        self.last_call = 0.0
        self._lock = asyncio.Lock()

    async def acquire(self) -> None:
        """Wait if necessary to respect rate limit."""
        async with self._lock:
            now = asyncio.get_running_loop().time()
            wait_time = self.last_call + self.interval - now
            if wait_time > 0:
                await asyncio.sleep(wait_time)
            self.last_call = asyncio.get_running_loop().time()


class AdvisoryVerdict(BaseModel):
    """Verdict payload returned by the model."""

    recommendation: Literal["buy", "sell", "hold"]
    confidence: float = Field(ge=0, le=1)
    reasoning: list[str] = []
    marketSentiment: str = "neutral"
    riskLevel: Literal["low", "medium", "high"] = "medium"

    def to_recommendation(self) -> Recommendation:
        return Recommendation(
            action=self.recommendation,
            confidence=self.confidence,
            reasoning=tuple(self.reasoning),
            sentiment=self.marketSentiment,
            risk_level=self.riskLevel,
        )


class HttpAdvisoryOracle:
    """Advisory oracle calling a chat completions endpoint.

    Timeouts are enforced by the caller (``RecommendationCache``); the
    HTTP client timeout is only a backstop.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        model: str = "gpt-4o",
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        self.rate_limiter = RateLimiter()
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers={"Authorization": f"Bearer {self.api_key}"},
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    def _build_request(self, context: dict[str, Any]) -> dict[str, Any]:
        return {
            "model": self.model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {
                    "role": "user",
                    "content": "Analyze this market data: "
                    + orjson.dumps(context).decode("utf-8"),
                },
            ],
            "response_format": {"type": "json_object"},
        }

    async def advise(self, symbol: str, context: dict[str, Any]) -> Recommendation:
        """Request a verdict for ``symbol``.

        Raises:
            OracleError: no API key, transport/HTTP failure, or a malformed verdict
        """
        if not self.api_key:
            raise OracleError("Advisory oracle API key not configured")

        await self.rate_limiter.acquire()
        client = await self._get_client()

        try:
            response = await client.post("/chat/completions", json=self._build_request(context))
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise OracleError(f"Advisory request for {symbol} failed: {e}") from e

        try:
            content = payload["choices"][0]["message"]["content"]
            verdict = AdvisoryVerdict(**orjson.loads(content))
        except (KeyError, IndexError, TypeError, orjson.JSONDecodeError, ValidationError) as e:
            raise OracleError(f"Malformed advisory verdict for {symbol}: {e}") from e

        logger.debug(f"Advisory verdict for {symbol}: {verdict.recommendation}")
        return verdict.to_recommendation()
