"""Tests for the REST routes and the WebSocket endpoint."""

import asyncio
from unittest.mock import AsyncMock, patch

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from app.api import router, websocket_endpoint
from app.services.market_engine import MarketEngine
from app.services.scheduler import Scheduler
from core.errors import LedgerError
from core.price_source import SequencePriceSource
from core.recommendation_cache import RecommendationCache


@pytest.fixture
def scheduler(oracle, ledger):
    engine = MarketEngine(
        base_prices={"BTC/USD": 95000.0, "ETH/USD": 3200.0},
        price_source=SequencePriceSource({"BTC/USD": [96000.0]}),
        recommendations=RecommendationCache(oracle),
        recommendation_wait=None,
    )
    scheduler = Scheduler(engine, ledger, mirror_prices=False)
    asyncio.run(engine.tick_symbol("BTC/USD"))
    return scheduler


@pytest.fixture
def client(scheduler):
    app = FastAPI()
    app.include_router(router, prefix="/api")
    app.websocket("/ws/market")(websocket_endpoint)
    app.state.scheduler = scheduler
    app.state.hub = scheduler.hub
    return TestClient(app)


class TestMarketRoutes:
    def test_status(self, client):
        with patch("app.api.routes.cache.get_info", new_callable=AsyncMock, return_value={"status": "disconnected"}):
            response = client.get("/api/status")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "stopped"
        assert data["symbols"] == ["BTC/USD", "ETH/USD"]
        assert data["subscribers"] == 0
        assert data["loops"]["market"] == {"iterations": 0, "failures": 0, "restarts": 0}
        assert data["recommendations"]["oracle_calls"] == 1
        assert data["price_mirror"] == {"status": "disconnected"}

    def test_prices(self, client):
        response = client.get("/api/market/prices")

        assert response.status_code == 200
        assert response.json() == {"BTC/USD": {"price": 96000.0, "volume24h": 5000.0}}

    def test_snapshot(self, client):
        response = client.get("/api/market/BTC/USD")

        assert response.status_code == 200
        data = response.json()
        assert data["symbol"] == "BTC/USD"
        assert data["price"] == 96000.0
        assert data["aiAnalysis"]["recommendation"] == "buy"
        assert "patternAnalysis" not in data

    def test_unknown_symbol(self, client):
        assert client.get("/api/market/XRP/USD").status_code == 404

    def test_symbol_without_data(self, client):
        assert client.get("/api/market/ETH/USD").status_code == 404

    def test_not_running(self, client):
        client.app.state.scheduler = None
        assert client.get("/api/market/prices").status_code == 503


class TestPortfolioRoutes:
    def test_holdings(self, client):
        response = client.get("/api/portfolio/1")

        assert response.status_code == 200
        assert response.json() == [
            {"symbol": "BTC/USD", "quantity": 0.5, "average_cost": 90000.0},
        ]

    def test_holdings_unknown_user(self, client):
        response = client.get("/api/portfolio/2")

        assert response.status_code == 200
        assert response.json() == []

    def test_holdings_ledger_unavailable(self, client, ledger):
        with patch.object(ledger, "get_holdings", new_callable=AsyncMock, side_effect=LedgerError("down")):
            response = client.get("/api/portfolio/1")
        assert response.status_code == 503

    def test_value(self, client):
        response = client.get("/api/portfolio/1/value")

        assert response.status_code == 200
        assert response.json() == {"user_id": 1, "total_value": 48000.0}

    def test_history(self, client):
        response = client.get("/api/portfolio/1/history", params={"timeframe": "1h"})

        assert response.status_code == 200
        points = response.json()
        # Empty ledger history is seeded at cost; 1h window keeps the 1h and now points
        assert [p["id"] for p in points] == [1, 2]
        assert all(p["user_id"] == 1 for p in points)

    def test_unknown_timeframe(self, client):
        response = client.get("/api/portfolio/1/history", params={"timeframe": "1w"})
        assert response.status_code == 400

    def test_ledger_unavailable(self, client, ledger):
        with patch.object(ledger, "get_holdings", new_callable=AsyncMock, side_effect=LedgerError("down")):
            response = client.get("/api/portfolio/1/value")
        assert response.status_code == 503


class TestWebSocketEndpoint:
    def test_catch_up_then_ping(self, client):
        with client.websocket_connect("/ws/market") as ws:
            catch_up = ws.receive_json()
            assert catch_up["symbol"] == "BTC/USD"
            assert catch_up["price"] == 96000.0

            ws.send_json({"type": "ping"})
            assert ws.receive_json()["type"] == "pong"

            ws.send_text("not json")
            assert ws.receive_json()["type"] == "error"
