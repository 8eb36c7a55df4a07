"""Tests for the HTTP advisory oracle."""

import httpx
import orjson
import pytest

from app.clients.advisory_client import AdvisoryVerdict, HttpAdvisoryOracle
from core.errors import OracleError

CONTEXT = {"symbol": "BTC/USD", "price": {"current": 95000.0}}


def _completion(content: str) -> dict:
    return {"choices": [{"message": {"role": "assistant", "content": content}}]}


def _oracle(handler, api_key: str = "test-key") -> HttpAdvisoryOracle:
    return HttpAdvisoryOracle(
        base_url="https://oracle.test/v1",
        api_key=api_key,
        transport=httpx.MockTransport(handler),
    )


class TestHttpAdvisoryOracle:
    @pytest.mark.asyncio
    async def test_parses_verdict(self):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            verdict = {
                "recommendation": "sell",
                "confidence": 0.72,
                "reasoning": ["momentum fading", "volatility rising"],
                "marketSentiment": "bearish",
                "riskLevel": "high",
            }
            return httpx.Response(200, json=_completion(orjson.dumps(verdict).decode()))

        oracle = _oracle(handler)
        recommendation = await oracle.advise("BTC/USD", CONTEXT)
        await oracle.close()

        assert recommendation.action == "sell"
        assert recommendation.confidence == 0.72
        assert recommendation.reasoning == ("momentum fading", "volatility rising")
        assert recommendation.sentiment == "bearish"
        assert recommendation.risk_level == "high"

        request = requests[0]
        assert request.url.path == "/v1/chat/completions"
        assert request.headers["Authorization"] == "Bearer test-key"
        body = orjson.loads(request.content)
        assert body["response_format"] == {"type": "json_object"}
        assert "BTC/USD" in body["messages"][1]["content"]

    @pytest.mark.asyncio
    async def test_missing_api_key(self):
        def handler(request):
            raise AssertionError("no request expected")

        oracle = _oracle(handler, api_key="")
        with pytest.raises(OracleError):
            await oracle.advise("BTC/USD", CONTEXT)

    @pytest.mark.asyncio
    async def test_http_error(self):
        oracle = _oracle(lambda request: httpx.Response(500, text="upstream down"))
        with pytest.raises(OracleError):
            await oracle.advise("BTC/USD", CONTEXT)
        await oracle.close()

    @pytest.mark.asyncio
    async def test_transport_error(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        oracle = _oracle(handler)
        with pytest.raises(OracleError):
            await oracle.advise("BTC/USD", CONTEXT)
        await oracle.close()

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "content",
        [
            "not json",
            '{"recommendation": "moon", "confidence": 0.5}',
            '{"recommendation": "buy", "confidence": 1.5}',
        ],
    )
    async def test_malformed_verdict(self, content):
        oracle = _oracle(lambda request: httpx.Response(200, json=_completion(content)))
        with pytest.raises(OracleError):
            await oracle.advise("BTC/USD", CONTEXT)
        await oracle.close()

    @pytest.mark.asyncio
    async def test_missing_choices(self):
        oracle = _oracle(lambda request: httpx.Response(200, json={"choices": []}))
        with pytest.raises(OracleError):
            await oracle.advise("BTC/USD", CONTEXT)
        await oracle.close()


class TestAdvisoryVerdict:
    def test_defaults(self):
        verdict = AdvisoryVerdict(recommendation="hold", confidence=0.4)
        recommendation = verdict.to_recommendation()

        assert recommendation.reasoning == ()
        assert recommendation.sentiment == "neutral"
        assert recommendation.risk_level == "medium"
